"""Dependency injection container core.

Builds a graph of named components on demand from declarative definitions,
wires references between them (including circular references between
singletons), caches instances per scope and tears the graph down in
dependency-safe order.

Exports:
- `Container`: registers definitions and resolves components by name.
- `ComponentDefinition` and the raw values (`Ref`, `NameRef`, `Nested`,
  `ListOf`, `SetOf`, `MapOf`, `Properties`, `Expression`) used to declare them.
- `Lifetime`: built-in scopes (singleton, prototype).
- `SimpleScope` / `ThreadScope`: custom scope strategies.
- `ComponentHook`: post-construction hook base class.
- `PlaceholderEvaluator`: `${key}` placeholder evaluation for string values.
"""

from ._container import ComponentHook, Constructor, Container, CreationHook, DisposableAdapter
from ._definition import (
    PROTOTYPE,
    SINGLETON,
    ComponentDefinition,
    Expression,
    Lifetime,
    ListOf,
    MapOf,
    MergedDefinition,
    NameRef,
    Nested,
    Properties,
    Ref,
    SetOf,
)
from ._errors import (
    AbstractDefinitionError,
    CircularPrototypeError,
    ComponentNotOfRequiredTypeError,
    ConstructionError,
    CreationNotAllowedError,
    CurrentlyInCreationError,
    DefinitionStoreError,
    DependsOnCycleError,
    EarlyReferenceMismatchError,
    NoSuchComponentError,
    ResolutionError,
    UnknownScopeError,
    UnresolvableParentError,
    UnsatisfiedReferenceError,
)
from ._expressions import PlaceholderEvaluator
from ._merge import DefinitionMergeResolver, DefinitionSource
from ._registry import Disposable, InstanceRegistry
from ._scopes import ScopeStrategy, SimpleScope, ThreadScope
from ._values import ExpressionEvaluator, ValueResolver


__all__ = [
    "PROTOTYPE",
    "SINGLETON",
    "AbstractDefinitionError",
    "CircularPrototypeError",
    "ComponentDefinition",
    "ComponentHook",
    "ComponentNotOfRequiredTypeError",
    "ConstructionError",
    "Constructor",
    "Container",
    "CreationHook",
    "CreationNotAllowedError",
    "CurrentlyInCreationError",
    "DefinitionMergeResolver",
    "DefinitionSource",
    "DefinitionStoreError",
    "DependsOnCycleError",
    "Disposable",
    "DisposableAdapter",
    "EarlyReferenceMismatchError",
    "Expression",
    "ExpressionEvaluator",
    "InstanceRegistry",
    "Lifetime",
    "ListOf",
    "MapOf",
    "MergedDefinition",
    "NameRef",
    "Nested",
    "NoSuchComponentError",
    "PlaceholderEvaluator",
    "Properties",
    "Ref",
    "ResolutionError",
    "ScopeStrategy",
    "SetOf",
    "SimpleScope",
    "ThreadScope",
    "UnknownScopeError",
    "UnresolvableParentError",
    "UnsatisfiedReferenceError",
    "ValueResolver",
]
