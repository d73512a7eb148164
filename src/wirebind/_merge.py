from __future__ import annotations

import threading
from typing import Protocol

from ._definition import SINGLETON, ComponentDefinition, MergedDefinition, overlay
from ._errors import DefinitionStoreError, NoSuchComponentError, UnresolvableParentError


class DefinitionSource(Protocol):
    """Supplies raw component definitions by name."""

    def get_definition(self, name: str) -> ComponentDefinition: ...

    def contains_definition(self, name: str) -> bool: ...


class DefinitionMergeResolver:
    """Flattens a definition and its parent chain into a cached ``MergedDefinition``.

    A cached entry is reused until it is marked stale. Definitions of nested
    components are merged against their containing definition and never cached.
    """

    def __init__(
        self,
        source: DefinitionSource,
        *,
        parent: DefinitionMergeResolver | None = None,
        cache_metadata: bool = True,
    ) -> None:
        self._source = source
        self._parent = parent
        self._cache_metadata = cache_metadata
        self._merged: dict[str, MergedDefinition] = {}
        self._lock = threading.RLock()

    def resolve(self, name: str) -> MergedDefinition:
        merged = self._merged.get(name)
        if merged is not None and not merged.stale:
            return merged

        if not self._source.contains_definition(name) and self._parent is not None:
            return self._parent.resolve(name)

        return self._merge(name, self._source.get_definition(name), None)

    def resolve_nested(
        self,
        name: str,
        definition: ComponentDefinition,
        containing: MergedDefinition,
    ) -> MergedDefinition:
        return self._merge(name, definition, containing)

    def mark_stale(self, name: str) -> None:
        with self._lock:
            merged = self._merged.get(name)
            if merged is not None:
                merged.stale = True

    def clear(self) -> None:
        """Mark every cached definition stale; derived metadata survives re-merging."""
        with self._lock:
            for merged in self._merged.values():
                merged.stale = True

    def cached(self, name: str) -> MergedDefinition | None:
        return self._merged.get(name)

    def _merge(
        self,
        name: str,
        definition: ComponentDefinition,
        containing: MergedDefinition | None,
    ) -> MergedDefinition:
        with self._lock:
            merged = None
            previous = None

            if containing is None:
                merged = self._merged.get(name)

            if merged is None or merged.stale:
                previous = merged
                if definition.parent is None:
                    merged = MergedDefinition.from_definition(name, definition)
                else:
                    merged = overlay(self._resolve_parent(name, definition.parent).copy(name), definition)

                if not merged.scope:
                    merged.scope = SINGLETON

                # A component nested in a non-singleton cannot be a singleton itself.
                if containing is not None and not containing.is_singleton and merged.is_singleton:
                    merged.scope = containing.scope

                if containing is None and self._cache_metadata:
                    self._merged[name] = merged

            if previous is not None and merged.resolved_type is None and previous.same_recipe(merged):
                merged.resolved_type = previous.resolved_type

            return merged

    def _resolve_parent(self, name: str, parent_name: str) -> MergedDefinition:
        try:
            if parent_name != name:
                return self.resolve(parent_name)
            if self._parent is None:
                msg = f"parent name '{parent_name}' is equal to the component name and there is no parent container"
                raise UnresolvableParentError(name, msg)
            return self._parent.resolve(parent_name)
        except NoSuchComponentError as exc:
            msg = f"could not resolve parent definition '{parent_name}'"
            raise DefinitionStoreError(name, msg) from exc
