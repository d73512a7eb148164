from __future__ import annotations

import inspect
import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    TypeVar,
    get_type_hints,
    overload,
)

from ._definition import PROTOTYPE, SINGLETON, ComponentDefinition, Lifetime, MergedDefinition, scope_name
from ._errors import (
    AbstractDefinitionError,
    CircularPrototypeError,
    ComponentNotOfRequiredTypeError,
    ConstructionError,
    DependsOnCycleError,
    EarlyReferenceMismatchError,
    NoSuchComponentError,
    ResolutionError,
    UnknownScopeError,
    UnsatisfiedReferenceError,
)
from ._merge import DefinitionMergeResolver
from ._registry import Disposable, InstanceRegistry
from ._values import ValueResolver


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from ._scopes import ScopeStrategy
    from ._values import ExpressionEvaluator

    T = TypeVar("T")


# (container id, component name) pairs of prototypes being created in the current context
_prototypes_in_creation: ContextVar[frozenset[tuple[int, str]]] = ContextVar(
    "_WIREBIND_PROTOTYPES_IN_CREATION",
    default=frozenset(),
)


class CreationHook(Protocol):
    """Produces the raw, unpopulated instance for a merged definition."""

    def instantiate(self, name: str, definition: MergedDefinition, args: tuple[Any, ...]) -> object: ...


class ComponentHook:
    """Post-construction hook. Every method may return a replacement; ``None`` keeps the current instance."""

    def early_reference(self, instance: object, name: str) -> object | None:
        return instance

    def before_init(self, instance: object, name: str) -> object | None:
        return instance

    def after_init(self, instance: object, name: str) -> object | None:
        return instance

    def requires_destruction(self, instance: object) -> bool:
        return False

    def before_destruction(self, instance: object, name: str) -> None:
        return None


class DisposableAdapter:
    """Runs the destruction callbacks of one component instance."""

    def __init__(
        self,
        name: str,
        instance: object,
        destroy_method: str | None,
        hooks: list[ComponentHook],
    ) -> None:
        self.name = name
        self.instance = instance
        self._destroy_method = destroy_method
        self._hooks = [hook for hook in hooks if hook.requires_destruction(instance)]

    def destroy(self) -> None:
        for hook in self._hooks:
            hook.before_destruction(self.instance, self.name)

        is_disposable = isinstance(self.instance, Disposable)
        if is_disposable:
            logger.debug("Invoking destroy() on component '%s'", self.name)
            self.instance.destroy()  # type: ignore[attr-defined]

        if self._destroy_method and not (is_disposable and self._destroy_method == "destroy"):
            logger.debug("Invoking destroy method '%s' on component '%s'", self._destroy_method, self.name)
            getattr(self.instance, self._destroy_method)()


class Container:
    """Dependency-injection container.

    - register definitions, pre-built instances, aliases and custom scopes
    - builds components on demand, wiring references between them
    - singletons may reference each other in a cycle through properties
    - destroys singletons dependents first.
    """

    def __init__(
        self,
        parent: Container | None = None,
        *,
        allow_circular_references: bool = True,
        cache_metadata: bool = True,
        creation_hook: CreationHook | None = None,
        expression_evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self._parent = parent
        self._definitions: dict[str, ComponentDefinition] = {}
        self._aliases: dict[str, str] = {}
        self._scopes: dict[str, ScopeStrategy] = {}
        self._hooks: list[ComponentHook] = []
        self._lock = threading.RLock()
        self._registry = InstanceRegistry()
        self._merge = DefinitionMergeResolver(
            self,
            parent=parent._merge if parent is not None else None,
            cache_metadata=cache_metadata,
        )
        self.allow_circular_references = allow_circular_references
        self.creation_hook: CreationHook = creation_hook or Constructor(self)
        self.expression_evaluator = expression_evaluator

    def __enter__(self) -> Container:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy_all()

    @property
    def parent(self) -> Container | None:
        return self._parent

    @property
    def registry(self) -> InstanceRegistry:
        return self._registry

    @property
    def definitions(self) -> DefinitionMergeResolver:
        return self._merge

    def create_child(self) -> Container:
        """Create a container that prefers its own definitions and falls back to this one."""
        child = Container(
            self,
            allow_circular_references=self.allow_circular_references,
            expression_evaluator=self.expression_evaluator,
        )
        for name, strategy in self._scopes.items():
            child.register_scope(name, strategy)
        return child

    # --- registration ----------------------------------------------------

    def register(
        self,
        name: str,
        impl: type | None = None,
        *,
        factory: Callable[..., object] | None = None,
        scope: Lifetime | str | None = None,
        parent: str | None = None,
        depends_on: tuple[str, ...] | list[str] = (),
        args: tuple[Any, ...] | list[Any] = (),
        kwargs: dict[str, Any] | None = None,
        properties: dict[str, Any] | None = None,
        init_method: str | None = None,
        destroy_method: str | None = None,
        abstract: bool = False,
        autowire: bool | None = None,
        primary: bool = False,
        allow_early_reference: bool | None = None,
    ) -> ComponentDefinition:
        """Register a component built from a class or a factory.

        Example:
          container.register("repo", Repository, properties={"db": Ref("db")})
          container.register("db", factory=connect, args=("sqlite://",), destroy_method="close")

        """
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if impl is None and factory is None and parent is None and not abstract:
            msg = "Either `impl`, `factory` or `parent` must be provided."
            raise ValueError(msg)

        definition = ComponentDefinition(
            impl=impl,
            factory=factory,
            parent=parent,
            scope=scope_name(scope),
            depends_on=tuple(depends_on),
            args=tuple(args),
            kwargs=dict(kwargs or {}),
            properties=dict(properties or {}),
            init_method=init_method,
            destroy_method=destroy_method,
            abstract=abstract,
            autowire=autowire,
            primary=primary,
            allow_early_reference=allow_early_reference,
        )
        self.register_definition(name, definition)
        return definition

    def register_definition(self, name: str, definition: ComponentDefinition) -> None:
        with self._lock:
            existing = self._definitions.get(name)
            self._definitions[name] = definition
            self._aliases.pop(name, None)

        if existing is not None or self._registry.contains(name):
            self.reset_definition(name)

    def remove_definition(self, name: str) -> None:
        with self._lock:
            if self._definitions.pop(name, None) is None:
                raise NoSuchComponentError(name)
        self.reset_definition(name)

    def reset_definition(self, name: str) -> None:
        """Forget the merged form and the singleton of ``name`` and of its child definitions."""
        self._merge.mark_stale(name)
        self._registry.destroy(name)

        with self._lock:
            children = [other for other, definition in self._definitions.items() if definition.parent == name and other != name]
        for child in children:
            self.reset_definition(child)

    def mark_stale(self, name: str) -> None:
        self._merge.mark_stale(name)

    def clear_metadata_cache(self) -> None:
        self._merge.clear()

    def register_instance(self, name: str, instance: object) -> None:
        """Register a pre-built instance (always singleton)."""
        self._registry.register_instance(name, instance)

    def register_alias(self, name: str, alias: str) -> None:
        with self._lock:
            if alias == name:
                self._aliases.pop(alias, None)
                return
            if alias in self._definitions:
                msg = f"Cannot register alias '{alias}' for '{name}': a component definition uses that name"
                raise ValueError(msg)
            if self._resolve_alias(name) == alias:
                msg = f"Cannot register alias '{alias}' for '{name}': circular reference '{name}' -> '{alias}'"
                raise ValueError(msg)
            self._aliases[alias] = name

    def canonical_name(self, name: str) -> str:
        with self._lock:
            return self._resolve_alias(name)

    def _resolve_alias(self, name: str) -> str:
        while name in self._aliases:
            name = self._aliases[name]
        return name

    def register_scope(self, name: str, strategy: ScopeStrategy) -> None:
        if name in (SINGLETON, PROTOTYPE):
            msg = f"Cannot replace the built-in '{name}' scope"
            raise ValueError(msg)
        with self._lock:
            self._scopes[name] = strategy

    def registered_scope(self, name: str) -> ScopeStrategy | None:
        return self._scopes.get(name)

    def add_hook(self, hook: ComponentHook) -> None:
        """Append a post-construction hook; re-adding a hook moves it to the end."""
        with self._lock:
            if hook in self._hooks:
                self._hooks.remove(hook)
            self._hooks.append(hook)

    @property
    def hooks(self) -> list[ComponentHook]:
        return list(self._hooks)

    # --- definition source ------------------------------------------------

    def get_definition(self, name: str) -> ComponentDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise NoSuchComponentError(name) from None

    def contains_definition(self, name: str) -> bool:
        return name in self._definitions

    def definition_names(self) -> list[str]:
        with self._lock:
            return list(self._definitions)

    # --- queries -----------------------------------------------------------

    def contains(self, name: str) -> bool:
        name = self.canonical_name(name)
        if self._registry.contains(name) or self.contains_definition(name):
            return True
        return self._parent is not None and self._parent.contains(name)

    def is_name_in_use(self, name: str) -> bool:
        return (
            name in self._aliases
            or self.contains_definition(name)
            or self._registry.contains(name)
            or bool(self._registry.dependents_of(name))
        )

    def is_singleton(self, name: str) -> bool:
        name = self.canonical_name(name)
        if self._registry.contains(name) and not self.contains_definition(name):
            return True
        if self._parent is not None and not self.contains_definition(name):
            return self._parent.is_singleton(name)
        return self._merge.resolve(name).is_singleton

    def is_prototype(self, name: str) -> bool:
        name = self.canonical_name(name)
        if self._registry.contains(name) and not self.contains_definition(name):
            return False
        if self._parent is not None and not self.contains_definition(name):
            return self._parent.is_prototype(name)
        return self._merge.resolve(name).is_prototype

    def type_of(self, name: str) -> type | None:
        name = self.canonical_name(name)
        instance = self._registry.get_raw(name, allow_early=False)
        if instance is not None:
            return type(instance)
        if self._parent is not None and not self.contains_definition(name):
            return self._parent.type_of(name)
        return self._merge.resolve(name).target_type

    def names_for_type(self, required_type: type) -> list[str]:
        """Names of the non-abstract components whose type is ``required_type`` or a subclass."""
        names: list[str] = []
        for name in self.definition_names():
            try:
                merged = self._merge.resolve(name)
            except ResolutionError as exc:
                # the definition may reference a parent that is not registered yet
                logger.debug("Ignoring component '%s' while matching type %s: %s", name, required_type.__name__, exc)
                self._registry.on_suppressed_exception(exc)
                continue
            if merged.abstract:
                continue
            target = merged.target_type
            if target is None:
                instance = self._registry.get_raw(name, allow_early=False)
                target = type(instance) if instance is not None else None
            if target is not None and issubclass(target, required_type):
                names.append(name)

        for name in self._registry.names():
            if name in names or self.contains_definition(name):
                continue
            instance = self._registry.get_raw(name, allow_early=False)
            if isinstance(instance, required_type):
                names.append(name)

        if self._parent is not None:
            names.extend(name for name in self._parent.names_for_type(required_type) if name not in names)
        return names

    def unique_name_for_type(self, required_type: type, requester: str | None = None) -> str | None:
        candidates = self.names_for_type(required_type)
        if requester is not None and len(candidates) > 1:
            candidates = [name for name in candidates if name != requester]
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]

        primary = [name for name in candidates if self._is_primary(name)]
        if len(primary) == 1:
            return primary[0]

        msg = f"expected single matching component of type {required_type.__name__} but found {len(candidates)}: {', '.join(candidates)}"
        raise UnsatisfiedReferenceError(requester or required_type.__name__, msg)

    def _is_primary(self, name: str) -> bool:
        if self.contains_definition(name):
            return self._merge.resolve(name).primary
        return self._parent is not None and self._parent._is_primary(name)  # noqa: SLF001

    # --- resolution --------------------------------------------------------

    @overload
    def get(self, name: str, *args: Any, required_type: type[T]) -> T: ...

    @overload
    def get(self, name: str, *args: Any, required_type: None = ...) -> Any: ...

    def get(self, name: str, *args: Any, required_type: type | None = None) -> Any:
        """Return the instance of ``name``, creating it if needed.

        Positional ``args`` replace the declared constructor arguments when a new
        instance is created.
        """
        name = self.canonical_name(name)

        instance = self._registry.get_raw(name)
        if instance is not None and not args:
            if self._registry.is_in_creation(name):
                logger.debug(
                    "Returning eagerly cached instance of singleton component '%s' that is not fully "
                    "initialized yet - a consequence of a circular reference",
                    name,
                )
        else:
            instance = self._do_get(name, args)

        if required_type is not None and not isinstance(instance, required_type):
            raise ComponentNotOfRequiredTypeError(name, required_type, type(instance))
        return instance

    def _do_get(self, name: str, args: tuple[Any, ...]) -> Any:
        if self._is_prototype_in_creation(name):
            raise CircularPrototypeError(name)

        if self._parent is not None and not self.contains_definition(name):
            return self._parent.get(name, *args)

        merged = self._merge.resolve(name)
        if merged.abstract:
            raise AbstractDefinitionError(name)

        self._create_depends_on(name, merged)

        if merged.is_singleton:
            return self._registry.get_or_create(name, lambda: self._create(name, merged, args))

        if merged.is_prototype:
            with self._prototype_creation(name):
                return self._create(name, merged, args)

        scope = self._scopes.get(merged.scope)
        if scope is None:
            raise UnknownScopeError(name, merged.scope)

        def create_scoped() -> object:
            with self._prototype_creation(name):
                return self._create(name, merged, args)

        return scope.get(name, create_scoped)

    def _create_depends_on(self, name: str, merged: MergedDefinition) -> None:
        for dependency in merged.depends_on:
            dependency = self.canonical_name(dependency)
            if self._registry.is_dependent(name, dependency):
                raise DependsOnCycleError(name, dependency)
            self._registry.register_dependent(dependency, name)
            try:
                self.get(dependency)
            except NoSuchComponentError as exc:
                msg = f"'{name}' depends on missing component '{dependency}'"
                raise UnsatisfiedReferenceError(name, msg) from exc

    def _is_prototype_in_creation(self, name: str) -> bool:
        return (id(self), name) in _prototypes_in_creation.get()

    @contextmanager
    def _prototype_creation(self, name: str) -> Iterator[None]:
        token = _prototypes_in_creation.set(_prototypes_in_creation.get() | {(id(self), name)})
        try:
            yield
        finally:
            _prototypes_in_creation.reset(token)

    def create_nested(
        self,
        name: str,
        definition: ComponentDefinition,
        owner: str,
        owner_definition: MergedDefinition,
    ) -> object:
        """Create an anonymous component whose lifecycle is bound to ``owner``.

        It is never cached, whatever its declared scope.
        """
        merged = self._merge.resolve_nested(name, definition, owner_definition)
        if merged.abstract:
            raise AbstractDefinitionError(name)
        if not owner_definition.is_prototype:
            self._registry.register_contained(name, owner)
        self._create_depends_on(name, merged)
        return self._create(name, merged, ())

    def _create(self, name: str, merged: MergedDefinition, args: tuple[Any, ...]) -> object:
        try:
            instance = self.creation_hook.instantiate(name, merged, args)
        except ResolutionError:
            raise
        except Exception as exc:
            msg = f"instantiation failed: {exc}"
            raise ConstructionError(name, msg) from exc

        if instance is None:
            msg = "creation hook returned None"
            raise ConstructionError(name, msg)
        if merged.resolved_type is None:
            merged.resolved_type = type(instance)

        early_exposure = (
            merged.is_singleton and self._allows_early_reference(merged) and self._registry.is_in_creation(name)
        )
        if early_exposure:
            logger.debug("Eagerly caching component '%s' to allow for resolving potential circular references", name)
            self._registry.register_factory(name, lambda: self._early_reference(name, instance))

        try:
            self._populate(name, merged, instance)
            exposed = self._initialize(name, merged, instance)
        except ResolutionError:
            raise
        except Exception as exc:
            msg = f"initialization failed: {exc}"
            raise ConstructionError(name, msg) from exc

        if early_exposure:
            early = self._registry.get_raw(name, allow_early=False)
            if early is not None:
                if exposed is instance:
                    exposed = early
                elif exposed is not early:
                    raise EarlyReferenceMismatchError(name, self._registry.dependents_of(name))

        self._register_disposable_if_necessary(name, merged, exposed)
        return exposed

    def _allows_early_reference(self, merged: MergedDefinition) -> bool:
        if merged.allow_early_reference is not None:
            return merged.allow_early_reference
        return self.allow_circular_references

    def _early_reference(self, name: str, instance: object) -> object:
        exposed = instance
        for hook in self.hooks:
            result = hook.early_reference(exposed, name)
            if result is not None:
                exposed = result
        return exposed

    def _populate(self, name: str, merged: MergedDefinition, instance: object) -> None:
        if not merged.properties:
            return
        resolver = ValueResolver(self, name, merged)
        for prop, raw in merged.properties.items():
            setattr(instance, prop, resolver.resolve(f"property '{prop}'", raw))

    def _initialize(self, name: str, merged: MergedDefinition, instance: object) -> object:
        current = instance
        for hook in self.hooks:
            result = hook.before_init(current, name)
            if result is not None:
                current = result

        if merged.init_method:
            init = getattr(current, merged.init_method, None)
            if init is None:
                msg = f"could not find an init method named '{merged.init_method}'"
                raise ConstructionError(name, msg)
            logger.debug("Invoking init method '%s' on component '%s'", merged.init_method, name)
            init()

        for hook in self.hooks:
            result = hook.after_init(current, name)
            if result is not None:
                current = result
        return current

    def _requires_destruction(self, merged: MergedDefinition, instance: object) -> bool:
        return (
            isinstance(instance, Disposable)
            or bool(merged.destroy_method)
            or any(hook.requires_destruction(instance) for hook in self.hooks)
        )

    def _register_disposable_if_necessary(self, name: str, merged: MergedDefinition, instance: object) -> None:
        if merged.is_prototype or not self._requires_destruction(merged, instance):
            return

        adapter = DisposableAdapter(name, instance, merged.destroy_method, self.hooks)
        if merged.is_singleton:
            self._registry.register_disposable(name, adapter)
            return

        scope = self._scopes.get(merged.scope)
        if scope is None:
            raise UnknownScopeError(name, merged.scope)
        scope.register_destruction_callback(name, adapter.destroy)

    # --- destruction -------------------------------------------------------

    def destroy(self, name: str) -> None:
        """Destroy ``name`` after every component that depends on it."""
        name = self.canonical_name(name)
        if self.contains_definition(name):
            merged = self._merge.resolve(name)
            if not merged.is_singleton and not merged.is_prototype:
                self.destroy_scoped(name)
                return
        self._registry.destroy(name)

    def destroy_scoped(self, name: str) -> None:
        """Remove ``name`` from its custom scope and run its destruction callbacks."""
        name = self.canonical_name(name)
        merged = self._merge.resolve(name)
        if merged.is_singleton or merged.is_prototype:
            msg = f"Component '{name}' does not live in a custom scope"
            raise ValueError(msg)

        scope = self._scopes.get(merged.scope)
        if scope is None:
            raise UnknownScopeError(name, merged.scope)

        instance = scope.remove(name)
        if instance is None or not self._requires_destruction(merged, instance):
            return
        try:
            DisposableAdapter(name, instance, merged.destroy_method, self.hooks).destroy()
        except Exception:
            logger.warning("Destruction of scoped component '%s' threw an exception", name, exc_info=True)

    def destroy_all(self) -> None:
        """Destroy all singletons, dependents before their dependencies. Never raises for a failing hook."""
        self._registry.destroy_all()


class Constructor:
    """Default creation hook: calls the definition's factory or class.

    Declared arguments go through the value resolver. With ``autowire`` the
    remaining constructor parameters are filled by type, then by name, then
    from their default.
    """

    def __init__(self, container: Container) -> None:
        self._container = container

    def instantiate(self, name: str, definition: MergedDefinition, args: tuple[Any, ...]) -> object:
        target: Callable[..., object] | None = definition.factory or definition.impl
        if target is None:
            msg = "definition declares neither `impl` nor `factory`"
            raise ConstructionError(name, msg)

        if args:
            call_args, call_kwargs = list(args), {}
        else:
            resolver = ValueResolver(self._container, name, definition)
            call_args = [
                resolver.resolve(f"constructor argument {index}", value) for index, value in enumerate(definition.args)
            ]
            call_kwargs = {
                key: resolver.resolve(f"constructor argument '{key}'", value) for key, value in definition.kwargs.items()
            }

        if definition.autowire:
            return self._autowire(name, target, call_args, call_kwargs)
        return target(*call_args, **call_kwargs)

    def _autowire(
        self,
        name: str,
        target: Callable[..., object],
        args: list[Any],
        kwargs: dict[str, Any],
    ) -> object:
        sig = inspect.signature(target)
        bound = self._bind_explicit(sig, args, kwargs, target)
        hints = _get_init_type_hints(target)

        for param_name, p in sig.parameters.items():
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
                continue
            if param_name not in bound.arguments:
                value = self._resolve_param(name, target, param_name, p, hints)
                if value is not inspect.Parameter.empty:
                    bound.arguments[param_name] = value

        return target(*bound.args, **bound.kwargs)

    def _resolve_param(
        self,
        owner: str,
        target: Callable[..., object],
        param_name: str,
        p: inspect.Parameter,
        hints: dict[str, Any],
    ) -> Any:
        """Resolving param.

        Resolution precedence:
        1. type-based component
        2. name-based component
        3. default
        4. error.
        """
        container = self._container

        # 1) type-based
        ann = hints.get(param_name, inspect.Signature.empty)
        if _is_matchable(ann):
            candidate = container.unique_name_for_type(ann, owner)
            if candidate is not None:
                return self._get(owner, candidate)

        # 2) name-based
        if param_name != owner and container.contains(param_name):
            return self._get(owner, param_name)

        # 3) default
        if p.default is not inspect.Parameter.empty:
            return p.default

        # 4) error
        ann_repr = getattr(ann, "__name__", repr(ann)) if ann is not inspect.Signature.empty else "no-annotation"
        target_name = getattr(target, "__name__", repr(target))
        msg = (
            f"Cannot satisfy constructor parameter '{param_name}' for {target_name}. "
            f"No component/default found (annotation: {ann_repr})."
        )
        raise UnsatisfiedReferenceError(owner, msg)

    def _get(self, owner: str, dependency: str) -> Any:
        instance = self._container.get(dependency)
        self._container.registry.register_dependent(dependency, owner)
        return instance

    def _bind_explicit(
        self,
        sig: inspect.Signature,
        args: list[Any],
        kwargs: dict[str, Any],
        target: Callable[..., object],
    ) -> inspect.BoundArguments:
        try:
            return sig.bind_partial(*args, **kwargs)
        except TypeError as e:
            msg = f"Arguments don't match {getattr(target, '__name__', target)!r} signature: {e}"
            raise TypeError(msg) from e


def _is_matchable(ann: Any) -> bool:
    if not inspect.isclass(ann) or getattr(ann, "__module__", "") == "builtins":
        return False
    try:
        issubclass(object, ann)
    except TypeError:
        # plain Protocol classes reject issubclass checks
        return False
    return True


def _get_init_type_hints(target: Callable[..., object]) -> dict[str, Any]:
    try:
        if inspect.isclass(target):
            hints = get_type_hints(inspect.getattr_static(target, "__init__"))
        else:
            hints = get_type_hints(target)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning(
            "'%s' name error retrieving %s type hints", exc.name, getattr(target, "__qualname__", repr(target))
        )
        hints = {}

    return hints
