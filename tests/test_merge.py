import unittest

import pytest

from wirebind import (
    ComponentDefinition,
    Container,
    DefinitionMergeResolver,
    DefinitionStoreError,
    NoSuchComponentError,
    Ref,
    UnresolvableParentError,
)


class Service:
    x = None
    y = None


class OtherService(Service): ...


class DictSource:
    def __init__(self, **definitions):
        self.definitions = definitions

    def get_definition(self, name):
        try:
            return self.definitions[name]
        except KeyError:
            raise NoSuchComponentError(name) from None

    def contains_definition(self, name):
        return name in self.definitions


class TestDefinitionMerge(unittest.TestCase):
    def setUp(self):
        self.parent = ComponentDefinition(impl=Service, properties={"x": 1, "y": 2})
        self.child = ComponentDefinition(parent="base", properties={"y": 3})
        self.source = DictSource(base=self.parent, child=self.child)
        self.resolver = DefinitionMergeResolver(self.source)

    def test_child_overrides_parent_properties(self):
        merged = self.resolver.resolve("child")
        assert merged.properties == {"x": 1, "y": 3}
        assert merged.impl is Service
        assert merged.name == "child"

    def test_merging_does_not_touch_parent_merged_definition(self):
        self.resolver.resolve("child")
        assert self.resolver.resolve("base").properties == {"x": 1, "y": 2}

    def test_repeated_resolve_returns_cached_instance(self):
        first = self.resolver.resolve("child")
        assert self.resolver.resolve("child") is first

    def test_stale_definitions_are_merged_again(self):
        first = self.resolver.resolve("child")

        self.parent.properties["x"] = 10
        assert self.resolver.resolve("child").properties["x"] == 1

        self.resolver.mark_stale("base")
        self.resolver.mark_stale("child")
        merged = self.resolver.resolve("child")

        assert merged is not first
        assert merged.properties == {"x": 10, "y": 3}

    def test_clear_marks_everything_stale(self):
        first = self.resolver.resolve("child")
        self.resolver.clear()
        assert self.resolver.resolve("child") is not first

    def test_resolved_type_survives_restale_for_same_recipe(self):
        merged = self.resolver.resolve("child")
        merged.resolved_type = OtherService

        self.resolver.mark_stale("child")
        assert self.resolver.resolve("child").resolved_type is OtherService

    def test_resolved_type_is_dropped_when_recipe_changes(self):
        merged = self.resolver.resolve("child")
        merged.resolved_type = Service

        self.child.impl = OtherService
        self.resolver.mark_stale("child")
        assert self.resolver.resolve("child").resolved_type is None

    def test_unset_scope_defaults_to_singleton(self):
        assert self.resolver.resolve("base").scope == "singleton"

    def test_child_inherits_parent_scope(self):
        self.parent.scope = "prototype"
        assert self.resolver.resolve("child").is_prototype

    def test_child_scope_wins(self):
        self.parent.scope = "prototype"
        self.child.scope = "singleton"
        assert self.resolver.resolve("child").is_singleton

    def test_cache_can_be_disabled(self):
        resolver = DefinitionMergeResolver(self.source, cache_metadata=False)
        assert resolver.resolve("child") is not resolver.resolve("child")


def test_overlay_merges_args_by_index_and_kwargs_by_key():
    source = DictSource(
        base=ComponentDefinition(impl=Service, args=(1, 2), kwargs={"a": 1, "b": 2}, depends_on=("x",)),
        child=ComponentDefinition(parent="base", args=("one",), kwargs={"b": 3}, init_method="start"),
    )
    merged = DefinitionMergeResolver(source).resolve("child")

    assert merged.args == ("one", 2)
    assert merged.kwargs == {"a": 1, "b": 3}
    assert merged.depends_on == ("x",)
    assert merged.init_method == "start"


def test_abstract_flag_is_not_inherited():
    source = DictSource(
        base=ComponentDefinition(impl=Service, abstract=True),
        child=ComponentDefinition(parent="base"),
    )
    resolver = DefinitionMergeResolver(source)
    assert resolver.resolve("base").abstract
    assert not resolver.resolve("child").abstract


def test_missing_parent_raises_definition_store_error():
    source = DictSource(child=ComponentDefinition(parent="ghost"))
    with pytest.raises(DefinitionStoreError) as ctx:
        DefinitionMergeResolver(source).resolve("child")
    assert isinstance(ctx.value.__cause__, NoSuchComponentError)


def test_same_name_parent_without_parent_container_is_unresolvable():
    source = DictSource(service=ComponentDefinition(parent="service", properties={"x": 1}))
    with pytest.raises(UnresolvableParentError):
        DefinitionMergeResolver(source).resolve("service")


def test_same_name_parent_is_resolved_in_parent_container():
    root = Container()
    root.register("service", Service, properties={"x": 1, "y": 2})

    child = root.create_child()
    child.register("service", parent="service", properties={"y": 3})

    service = child.get("service")
    assert (service.x, service.y) == (1, 3)
    assert root.get("service").y == 2


def test_child_container_merges_against_parent_container_definitions():
    root = Container()
    root.register("base", Service, abstract=True, properties={"x": 1})

    child = root.create_child()
    child.register("concrete", parent="base", properties={"y": Ref("dep")})
    child.register("dep", object)

    service = child.get("concrete")
    assert service.x == 1
    assert service.y is child.get("dep")


def test_nested_definition_in_prototype_owner_is_forced_to_owner_scope():
    source = DictSource(owner=ComponentDefinition(impl=Service, scope="prototype"))
    resolver = DefinitionMergeResolver(source)
    owner = resolver.resolve("owner")

    inner = resolver.resolve_nested("(inner)Service#1", ComponentDefinition(impl=Service), owner)
    assert inner.scope == "prototype"
    assert resolver.cached("(inner)Service#1") is None


def test_nested_definition_keeps_declared_scope_in_singleton_owner():
    source = DictSource(owner=ComponentDefinition(impl=Service))
    resolver = DefinitionMergeResolver(source)
    owner = resolver.resolve("owner")

    inner = resolver.resolve_nested("inner", ComponentDefinition(impl=Service, scope="prototype"), owner)
    assert inner.scope == "prototype"


def test_container_reset_propagates_to_child_definitions():
    c = Container()
    c.register("base", Service, abstract=True, properties={"x": 1})
    c.register("child", parent="base")

    assert c.get("child").x == 1

    c.register("base", Service, abstract=True, properties={"x": 2})
    assert c.get("child").x == 2
