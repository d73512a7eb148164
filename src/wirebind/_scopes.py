from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)


@runtime_checkable
class ScopeStrategy(Protocol):
    """Storage for components living in a custom (non singleton, non prototype) scope."""

    def get(self, name: str, factory: Callable[[], object]) -> object: ...

    def remove(self, name: str) -> object | None: ...

    def register_destruction_callback(self, name: str, callback: Callable[[], None]) -> None: ...


class SimpleScope:
    """Dictionary-backed scope, e.g. one per request or per test.

    Calling ``close()`` runs the registered destruction callbacks, newest first,
    and forgets every instance.
    """

    def __init__(self) -> None:
        self._instances: dict[str, object] = {}
        self._callbacks: list[tuple[str, Callable[[], None]]] = []
        self._lock = threading.RLock()

    def get(self, name: str, factory: Callable[[], object]) -> object:
        with self._lock:
            if name in self._instances:
                return self._instances[name]

        # factory() re-enters the container, so it must not run under the scope lock;
        # when two threads race, the first stored instance wins
        instance = factory()
        with self._lock:
            return self._instances.setdefault(name, instance)

    def remove(self, name: str) -> object | None:
        with self._lock:
            self._callbacks = [(other, callback) for other, callback in self._callbacks if other != name]
            return self._instances.pop(name, None)

    def register_destruction_callback(self, name: str, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks.append((name, callback))

    def __contains__(self, name: str) -> bool:
        return name in self._instances

    def close(self) -> None:
        with self._lock:
            callbacks, self._callbacks = self._callbacks, []
            self._instances.clear()

        for name, callback in reversed(callbacks):
            try:
                callback()
            except Exception:
                logger.warning("Destruction callback for scoped component '%s' failed", name, exc_info=True)


class ThreadScope:
    """One instance per thread. Destruction callbacks are not supported."""

    def __init__(self) -> None:
        self._local = threading.local()

    def _instances(self) -> dict[str, object]:
        instances = getattr(self._local, "instances", None)
        if instances is None:
            instances = self._local.instances = {}
        return instances

    def get(self, name: str, factory: Callable[[], object]) -> object:
        instances = self._instances()
        if name not in instances:
            instances[name] = factory()
        return instances[name]

    def remove(self, name: str) -> object | None:
        return self._instances().pop(name, None)

    def register_destruction_callback(self, name: str, callback: Callable[[], None]) -> None:
        logger.warning(
            "ThreadScope does not support destruction callbacks. "
            "Consider using SimpleScope and closing it explicitly (component '%s').",
            name,
        )
