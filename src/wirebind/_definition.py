from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union


if TYPE_CHECKING:
    from collections.abc import Callable


class Lifetime(Enum):
    SINGLETON = "singleton"
    PROTOTYPE = "prototype"


SINGLETON = Lifetime.SINGLETON.value
PROTOTYPE = Lifetime.PROTOTYPE.value


def scope_name(scope: Lifetime | str | None) -> str:
    if scope is None:
        return ""
    if isinstance(scope, Lifetime):
        return scope.value
    return scope


# --- raw values --------------------------------------------------------------


@dataclass(frozen=True)
class Ref:
    """Reference to another component, by name or by type.

    An ``optional`` reference resolves to ``None`` when no target exists.
    ``to_parent`` looks the target up in the parent container only.
    """

    target: str | type
    optional: bool = False
    to_parent: bool = False


@dataclass(frozen=True)
class NameRef:
    """Injects the referenced component's name, after checking that it exists."""

    name: str


@dataclass(frozen=True)
class Nested:
    """Anonymous component declared inline; its lifecycle is bound to its owner."""

    definition: ComponentDefinition
    name: str | None = None


@dataclass(frozen=True)
class ListOf:
    items: tuple[Any, ...]

    def __init__(self, *items: Any) -> None:
        object.__setattr__(self, "items", items)


@dataclass(frozen=True)
class SetOf:
    items: tuple[Any, ...]

    def __init__(self, *items: Any) -> None:
        object.__setattr__(self, "items", items)


@dataclass(frozen=True)
class MapOf:
    entries: tuple[tuple[Any, Any], ...]

    def __init__(self, entries: Any = (), **kwargs: Any) -> None:
        pairs = list(entries.items()) if hasattr(entries, "items") else list(entries)
        pairs.extend(kwargs.items())
        object.__setattr__(self, "entries", tuple(pairs))


class Properties(MapOf):
    """Property-style mapping: resolving to a ``None`` key or value is an error."""


@dataclass(eq=False)
class Expression:
    """String value handed to the expression evaluator.

    ``dynamic`` is ``None`` until the first evaluation, then records whether the
    evaluator changed the text. Static literals skip the evaluator afterwards.
    """

    text: str
    dynamic: bool | None = None


RawValue = Union[Ref, NameRef, Nested, ListOf, SetOf, MapOf, Properties, Expression, str, Any]


# --- definitions -------------------------------------------------------------


@dataclass
class ComponentDefinition:
    """Declarative recipe for a component, as supplied by a definition source.

    Fields left at their defaults are "not declared" and are inherited from the
    parent definition when one is named.
    """

    impl: type | None = None
    factory: Callable[..., object] | None = None
    parent: str | None = None
    scope: str = ""
    depends_on: tuple[str, ...] = ()
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    init_method: str | None = None
    destroy_method: str | None = None
    abstract: bool = False
    autowire: bool | None = None
    primary: bool = False
    allow_early_reference: bool | None = None

    def __post_init__(self) -> None:
        self.scope = scope_name(self.scope)
        self.depends_on = tuple(self.depends_on)
        self.args = tuple(self.args)


@dataclass(eq=False)
class MergedDefinition:
    """Parent-resolved definition used for construction."""

    name: str
    impl: type | None
    factory: Callable[..., object] | None
    scope: str
    depends_on: tuple[str, ...]
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    properties: dict[str, Any]
    init_method: str | None
    destroy_method: str | None
    abstract: bool
    autowire: bool
    primary: bool
    allow_early_reference: bool | None
    stale: bool = False
    resolved_type: type | None = None

    @classmethod
    def from_definition(cls, name: str, definition: ComponentDefinition) -> MergedDefinition:
        return cls(
            name=name,
            impl=definition.impl,
            factory=definition.factory,
            scope=definition.scope,
            depends_on=definition.depends_on,
            args=definition.args,
            kwargs=dict(definition.kwargs),
            properties=dict(definition.properties),
            init_method=definition.init_method,
            destroy_method=definition.destroy_method,
            abstract=definition.abstract,
            autowire=bool(definition.autowire),
            primary=definition.primary,
            allow_early_reference=definition.allow_early_reference,
        )

    def copy(self, name: str) -> MergedDefinition:
        return MergedDefinition(
            name=name,
            impl=self.impl,
            factory=self.factory,
            scope=self.scope,
            depends_on=self.depends_on,
            args=self.args,
            kwargs=dict(self.kwargs),
            properties=dict(self.properties),
            init_method=self.init_method,
            destroy_method=self.destroy_method,
            abstract=self.abstract,
            autowire=self.autowire,
            primary=self.primary,
            allow_early_reference=self.allow_early_reference,
            resolved_type=self.resolved_type,
        )

    @property
    def is_singleton(self) -> bool:
        return self.scope == SINGLETON

    @property
    def is_prototype(self) -> bool:
        return self.scope == PROTOTYPE

    @property
    def target_type(self) -> type | None:
        return self.impl or self.resolved_type

    def same_recipe(self, other: MergedDefinition) -> bool:
        return self.impl is other.impl and self.factory is other.factory


def overlay(base: MergedDefinition, child: ComponentDefinition) -> MergedDefinition:
    """Apply the fields declared by ``child`` on top of ``base`` (a private copy).

    The child wins on every field it declares; properties and keyword arguments
    are merged key by key, positional arguments index by index.
    """
    if child.impl is not None or child.factory is not None:
        base.impl = child.impl
        base.factory = child.factory
        base.resolved_type = None
    if child.scope:
        base.scope = child.scope
    if child.depends_on:
        base.depends_on = child.depends_on
    if child.args:
        args = list(base.args)
        for index, value in enumerate(child.args):
            if index < len(args):
                args[index] = value
            else:
                args.append(value)
        base.args = tuple(args)
    base.kwargs.update(child.kwargs)
    base.properties.update(child.properties)
    if child.init_method is not None:
        base.init_method = child.init_method
    if child.destroy_method is not None:
        base.destroy_method = child.destroy_method
    if child.autowire is not None:
        base.autowire = child.autowire
    if child.allow_early_reference is not None:
        base.allow_early_reference = child.allow_early_reference
    base.abstract = child.abstract
    base.primary = child.primary
    return base
