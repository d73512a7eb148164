from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ._errors import CreationNotAllowedError, CurrentlyInCreationError, ResolutionError


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)


@runtime_checkable
class Disposable(Protocol):
    def destroy(self) -> None: ...


class InstanceRegistry:
    """Shared instance storage for singleton components.

    Three mutually exclusive tiers per name:

    1. ``_instances``: fully initialized instances,
    2. ``_early_instances``: instances handed out before population finished,
    3. ``_factories``: callables producing the early instance on first request.

    Tier transitions and the in-creation set are guarded by one coarse lock.
    Dependency edges use their own lock.
    """

    SUPPRESSED_EXCEPTIONS_LIMIT = 100

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[str, object] = {}
        self._early_instances: dict[str, object] = {}
        self._factories: dict[str, Callable[[], object]] = {}
        self._registered: dict[str, None] = {}
        self._in_creation: set[str] = set()
        self._in_destruction = False
        self._suppressed: list[Exception] | None = None
        self._disposables: dict[str, Disposable] = {}

        self._edge_lock = threading.RLock()
        self._contained: dict[str, dict[str, None]] = {}
        self._dependents: dict[str, dict[str, None]] = {}
        self._dependencies: dict[str, dict[str, None]] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # --- tiers -----------------------------------------------------------

    def register_instance(self, name: str, instance: object) -> None:
        """Bind a pre-built instance under ``name`` (tier 1)."""
        with self._lock:
            if name in self._instances:
                msg = f"Could not register {instance!r} under name '{name}': there is already {self._instances[name]!r} bound"
                raise ValueError(msg)
            self.promote(name, instance)

    def promote(self, name: str, instance: object) -> None:
        with self._lock:
            self._instances[name] = instance
            self._factories.pop(name, None)
            self._early_instances.pop(name, None)
            self._registered[name] = None

    def register_factory(self, name: str, factory: Callable[[], object]) -> None:
        with self._lock:
            if name not in self._instances:
                self._factories[name] = factory
                self._early_instances.pop(name, None)
                self._registered[name] = None

    def get_raw(self, name: str, allow_early: bool = True) -> object | None:
        """Return the instance bound to ``name``, or an early reference while it is in creation."""
        instance = self._instances.get(name)
        if instance is not None or name not in self._in_creation:
            return instance

        # Tiers 2 and 3 are only read under the lock; another thread's in-progress
        # construction holds it, so early references never cross threads.
        with self._lock:
            instance = self._instances.get(name)
            if instance is not None:
                return instance
            instance = self._early_instances.get(name)
            if instance is None and allow_early:
                factory = self._factories.pop(name, None)
                if factory is not None:
                    instance = factory()
                    self._early_instances[name] = instance
            return instance

    def get_or_create(self, name: str, factory: Callable[[], object]) -> object:
        with self._lock:
            instance = self._instances.get(name)
            if instance is not None:
                return instance

            if self._in_destruction:
                raise CreationNotAllowedError(name)

            logger.debug("Creating shared instance of singleton component '%s'", name)
            self._before_creation(name)
            record_suppressed = self._suppressed is None
            if record_suppressed:
                self._suppressed = []
            try:
                instance = factory()
            except Exception as exc:
                # also drops components that already hold an early reference to it
                self.destroy(name)
                if record_suppressed and isinstance(exc, ResolutionError):
                    for suppressed in self._suppressed or ():
                        exc.add_related_cause(suppressed)
                raise
            finally:
                if record_suppressed:
                    self._suppressed = None
                self._after_creation(name)

            self.promote(name, instance)
            return instance

    def on_suppressed_exception(self, exc: Exception) -> None:
        """Record an exception swallowed during the current construction."""
        with self._lock:
            if self._suppressed is not None and len(self._suppressed) < self.SUPPRESSED_EXCEPTIONS_LIMIT:
                self._suppressed.append(exc)

    def remove(self, name: str) -> None:
        with self._lock:
            self._instances.pop(name, None)
            self._early_instances.pop(name, None)
            self._factories.pop(name, None)
            self._registered.pop(name, None)

    def contains(self, name: str) -> bool:
        return name in self._instances

    def names(self) -> list[str]:
        with self._lock:
            return list(self._registered)

    def is_in_creation(self, name: str) -> bool:
        return name in self._in_creation

    def _before_creation(self, name: str) -> None:
        if name in self._in_creation:
            raise CurrentlyInCreationError(name)
        self._in_creation.add(name)

    def _after_creation(self, name: str) -> None:
        self._in_creation.discard(name)

    # --- dependency edges -------------------------------------------------

    def register_contained(self, contained: str, containing: str) -> None:
        with self._edge_lock:
            contained_names = self._contained.setdefault(containing, {})
            if contained in contained_names:
                return
            contained_names[contained] = None
        self.register_dependent(contained, containing)

    def register_dependent(self, name: str, dependent: str) -> None:
        """Record that ``dependent`` depends on ``name``."""
        with self._edge_lock:
            self._dependents.setdefault(name, {})[dependent] = None
            self._dependencies.setdefault(dependent, {})[name] = None

    def is_dependent(self, name: str, dependent: str) -> bool:
        """Whether ``dependent`` depends on ``name``, directly or transitively."""
        with self._edge_lock:
            return self._is_dependent(name, dependent, set())

    def _is_dependent(self, name: str, dependent: str, seen: set[str]) -> bool:
        if name in seen:
            return False
        dependents = self._dependents.get(name)
        if not dependents:
            return False
        if dependent in dependents:
            return True
        seen.add(name)
        return any(self._is_dependent(transitive, dependent, seen) for transitive in list(dependents))

    def dependents_of(self, name: str) -> list[str]:
        with self._edge_lock:
            return list(self._dependents.get(name, ()))

    def dependencies_of(self, name: str) -> list[str]:
        with self._edge_lock:
            return list(self._dependencies.get(name, ()))

    def contained_in(self, name: str) -> list[str]:
        with self._edge_lock:
            return list(self._contained.get(name, ()))

    # --- destruction -----------------------------------------------------

    def register_disposable(self, name: str, disposable: Disposable) -> None:
        with self._lock:
            self._disposables[name] = disposable

    def has_disposable(self, name: str) -> bool:
        return name in self._disposables

    def destroy_all(self) -> None:
        """Destroy every disposable singleton, most recently registered first."""
        logger.debug("Destroying singletons in %r", self)
        with self._lock:
            self._in_destruction = True
            names = list(self._disposables)

        try:
            for name in reversed(names):
                self.destroy(name)

            with self._edge_lock:
                self._contained.clear()
                self._dependents.clear()
                self._dependencies.clear()

            with self._lock:
                self._instances.clear()
                self._early_instances.clear()
                self._factories.clear()
                self._registered.clear()
        finally:
            with self._lock:
                self._in_destruction = False

    def destroy(self, name: str) -> None:
        """Remove ``name`` and destroy it after everything depending on it."""
        self.remove(name)
        with self._lock:
            disposable = self._disposables.pop(name, None)
        self._destroy_component(name, disposable)

    def _destroy_component(self, name: str, disposable: Disposable | None) -> None:
        with self._edge_lock:
            dependents = self._dependents.pop(name, None)
        if dependents:
            logger.debug("Retrieved dependent components for '%s': %s", name, list(dependents))
            for dependent in dependents:
                self.destroy(dependent)

        with self._edge_lock:
            contained = self._contained.pop(name, None)
        if contained:
            for contained_name in contained:
                self.destroy(contained_name)

        if disposable is not None:
            try:
                disposable.destroy()
            except Exception:
                logger.warning("Destruction of component '%s' threw an exception", name, exc_info=True)

        with self._edge_lock:
            for dependent_name in list(self._dependents):
                names = self._dependents[dependent_name]
                names.pop(name, None)
                if not names:
                    del self._dependents[dependent_name]
            self._dependencies.pop(name, None)
