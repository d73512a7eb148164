from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from ._definition import Expression, ListOf, MapOf, NameRef, Nested, Properties, Ref, SetOf
from ._errors import NoSuchComponentError, ResolutionError, UnsatisfiedReferenceError


if TYPE_CHECKING:
    from ._container import Container
    from ._definition import MergedDefinition, RawValue


logger = logging.getLogger(__name__)

GENERATED_NAME_SEPARATOR = "#"


class ExpressionEvaluator(Protocol):
    def evaluate(self, text: str, owner: str) -> object: ...


class ValueResolver:
    """Turns the raw values of one component's definition into runtime values.

    References re-enter the container and record a dependency edge from the
    referenced component to the owner.
    """

    def __init__(self, container: Container, owner: str, definition: MergedDefinition) -> None:
        self._container = container
        self._owner = owner
        self._definition = definition

    def resolve(self, label: str, value: RawValue) -> Any:
        if isinstance(value, Ref):
            return self._resolve_reference(label, value)
        if isinstance(value, NameRef):
            return self._resolve_name_reference(label, value)
        if isinstance(value, Nested):
            return self._resolve_nested(label, value)
        if isinstance(value, ListOf):
            return [self.resolve(f"{label}[{index}]", item) for index, item in enumerate(value.items)]
        if isinstance(value, SetOf):
            return {self.resolve(label, item) for item in value.items}
        if isinstance(value, Properties):
            return self._resolve_properties(label, value)
        if isinstance(value, MapOf):
            return {self.resolve(label, key): self.resolve(f"{label}[{key!r}]", item) for key, item in value.entries}
        if isinstance(value, Expression):
            return self._evaluate_expression(value)
        if isinstance(value, str):
            return self._evaluate(value)
        return value

    def _resolve_reference(self, label: str, ref: Ref) -> Any:
        container = self._container
        if ref.to_parent:
            if container.parent is None:
                msg = f"cannot resolve reference to '{ref.target}' in parent container for {label}: no parent container available"
                raise UnsatisfiedReferenceError(self._owner, msg)
            container = container.parent

        if isinstance(ref.target, type):
            name = container.unique_name_for_type(ref.target, self._owner)
            if name is None:
                if ref.optional:
                    return None
                msg = f"no component of type {ref.target.__name__} available for {label}"
                raise UnsatisfiedReferenceError(self._owner, msg)
        else:
            name = container.canonical_name(ref.target)
            if ref.optional and not container.contains(name):
                return None

        try:
            instance = container.get(name)
        except NoSuchComponentError as exc:
            msg = f"cannot resolve reference to component '{name}' while setting {label}"
            raise UnsatisfiedReferenceError(self._owner, msg) from exc

        self._container.registry.register_dependent(name, self._owner)
        return instance

    def _resolve_name_reference(self, label: str, ref: NameRef) -> str:
        if not self._container.contains(ref.name):
            msg = f"invalid name reference '{ref.name}' in {label}"
            raise NoSuchComponentError(ref.name, msg)
        return ref.name

    def _resolve_nested(self, label: str, nested: Nested) -> Any:
        definition = nested.definition
        if nested.name is not None:
            base = nested.name
        else:
            type_name = definition.impl.__name__ if definition.impl is not None else "component"
            base = f"(inner){type_name}{GENERATED_NAME_SEPARATOR}{id(definition):x}"
        name = self._unique_nested_name(base)
        try:
            return self._container.create_nested(name, definition, self._owner, self._definition)
        except ResolutionError:
            raise
        except Exception as exc:
            msg = f"cannot create nested component '{name}' while setting {label}"
            raise UnsatisfiedReferenceError(self._owner, msg) from exc

    def _unique_nested_name(self, base: str) -> str:
        name = base
        counter = 0
        while self._container.is_name_in_use(name):
            counter += 1
            name = f"{base}{GENERATED_NAME_SEPARATOR}{counter}"
        return name

    def _resolve_properties(self, label: str, value: Properties) -> dict[Any, Any]:
        resolved: dict[Any, Any] = {}
        for key, item in value.entries:
            resolved_key = self.resolve(label, key)
            resolved_value = self.resolve(f"{label}[{key!r}]", item)
            if resolved_key is None or resolved_value is None:
                msg = f"error converting properties for {label}: key {key!r} resolved to {resolved_key!r} with value {resolved_value!r}"
                raise UnsatisfiedReferenceError(self._owner, msg)
            resolved[resolved_key] = resolved_value
        return resolved

    def _evaluate_expression(self, value: Expression) -> Any:
        if value.dynamic is False:
            return value.text
        result = self._evaluate(value.text)
        value.dynamic = result != value.text
        return result

    def _evaluate(self, text: str) -> Any:
        evaluator = self._container.expression_evaluator
        if evaluator is None:
            return text
        return evaluator.evaluate(text, self._owner)
