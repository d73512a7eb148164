import unittest

import pytest

from wirebind import (
    ConstructionError,
    CreationNotAllowedError,
    CurrentlyInCreationError,
    InstanceRegistry,
)


class TestTiers(unittest.TestCase):
    registry: InstanceRegistry

    def setUp(self):
        self.registry = InstanceRegistry()

    def test_get_raw_returns_none_for_unknown_name(self):
        assert self.registry.get_raw("a") is None

    def test_early_factory_is_invisible_unless_in_creation(self):
        self.registry.register_factory("a", object)
        assert self.registry.get_raw("a") is None

    def test_early_factory_is_invoked_once_and_moved_to_second_tier(self):
        calls: list[object] = []

        def early():
            instance = object()
            calls.append(instance)
            return instance

        def build():
            self.registry.register_factory("a", early)
            first = self.registry.get_raw("a")
            second = self.registry.get_raw("a")
            assert first is second
            return first

        built = self.registry.get_or_create("a", build)

        assert len(calls) == 1
        assert built is calls[0]
        assert self.registry.get_raw("a") is built

    def test_disallowed_early_reference_skips_factory(self):
        def build():
            self.registry.register_factory("a", object)
            assert self.registry.get_raw("a", allow_early=False) is None
            return "done"

        assert self.registry.get_or_create("a", build) == "done"

    def test_register_factory_is_ignored_for_created_instances(self):
        self.registry.register_instance("a", "final")
        self.registry.register_factory("a", lambda: "early")
        assert self.registry.get_raw("a") == "final"

    def test_promote_clears_lower_tiers(self):
        def build():
            self.registry.register_factory("a", lambda: "early")
            assert self.registry.get_raw("a") == "early"
            self.registry.promote("a", "final")
            return "final"

        self.registry.get_or_create("a", build)
        assert self.registry.get_raw("a") == "final"
        assert self.registry.names() == ["a"]

    def test_get_or_create_returns_existing_instance(self):
        self.registry.register_instance("a", "existing")
        assert self.registry.get_or_create("a", lambda: "new") == "existing"

    def test_reentrant_creation_of_same_name_raises(self):
        with pytest.raises(CurrentlyInCreationError):
            self.registry.get_or_create("a", lambda: self.registry.get_or_create("a", object))

    def test_failed_creation_evicts_every_tier(self):
        def build():
            self.registry.register_factory("a", lambda: "early")
            self.registry.get_raw("a")
            msg = "boom"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="boom"):
            self.registry.get_or_create("a", build)

        assert self.registry.get_raw("a") is None
        assert not self.registry.is_in_creation("a")
        assert self.registry.names() == []

    def test_suppressed_exceptions_are_attached_to_the_failure(self):
        def build():
            self.registry.on_suppressed_exception(KeyError("first"))
            self.registry.on_suppressed_exception(KeyError("second"))
            raise ConstructionError("a", "failed")

        with pytest.raises(ConstructionError) as ctx:
            self.registry.get_or_create("a", build)

        assert [str(exc) for exc in ctx.value.related_causes] == ["'first'", "'second'"]

    def test_suppressed_exceptions_are_bounded(self):
        def build():
            for i in range(InstanceRegistry.SUPPRESSED_EXCEPTIONS_LIMIT + 20):
                self.registry.on_suppressed_exception(KeyError(i))
            raise ConstructionError("a", "failed")

        with pytest.raises(ConstructionError) as ctx:
            self.registry.get_or_create("a", build)

        assert len(ctx.value.related_causes) == InstanceRegistry.SUPPRESSED_EXCEPTIONS_LIMIT

    def test_suppressed_exceptions_outside_creation_are_dropped(self):
        self.registry.on_suppressed_exception(KeyError("ignored"))

        def build():
            raise ConstructionError("a", "failed")

        with pytest.raises(ConstructionError) as ctx:
            self.registry.get_or_create("a", build)
        assert ctx.value.related_causes == []

    def test_nested_creation_attaches_suppressed_exceptions_to_outermost_failure(self):
        def inner():
            self.registry.on_suppressed_exception(KeyError("inner"))
            raise ConstructionError("b", "failed")

        with pytest.raises(ConstructionError) as ctx:
            self.registry.get_or_create("a", lambda: self.registry.get_or_create("b", inner))

        assert [str(exc) for exc in ctx.value.related_causes] == ["'inner'"]


class TestDependencyEdges(unittest.TestCase):
    registry: InstanceRegistry

    def setUp(self):
        self.registry = InstanceRegistry()

    def test_edges_are_symmetric(self):
        self.registry.register_dependent("db", "repo")
        self.registry.register_dependent("db", "audit")

        assert self.registry.dependents_of("db") == ["repo", "audit"]
        assert self.registry.dependencies_of("repo") == ["db"]
        assert self.registry.dependencies_of("audit") == ["db"]

    def test_is_dependent_is_transitive(self):
        self.registry.register_dependent("db", "repo")
        self.registry.register_dependent("repo", "service")

        assert self.registry.is_dependent("db", "service")
        assert not self.registry.is_dependent("service", "db")

    def test_is_dependent_terminates_on_cycles(self):
        self.registry.register_dependent("a", "b")
        self.registry.register_dependent("b", "a")

        assert self.registry.is_dependent("a", "a")
        assert not self.registry.is_dependent("a", "c")

    def test_contained_component_is_a_dependency_of_its_owner(self):
        self.registry.register_contained("inner", "outer")
        self.registry.register_contained("inner", "outer")

        assert self.registry.contained_in("outer") == ["inner"]
        assert self.registry.dependents_of("inner") == ["outer"]


class Resource:
    def __init__(self, name, log):
        self.name = name
        self.log = log

    def destroy(self):
        self.log.append(self.name)


class TestDestruction(unittest.TestCase):
    registry: InstanceRegistry

    def setUp(self):
        self.registry = InstanceRegistry()
        self.log: list[str] = []

    def add(self, name):
        resource = Resource(name, self.log)
        self.registry.register_instance(name, resource)
        self.registry.register_disposable(name, resource)
        return resource

    def test_destroy_all_runs_in_reverse_registration_order(self):
        for name in ("a", "b", "c"):
            self.add(name)

        self.registry.destroy_all()

        assert self.log == ["c", "b", "a"]
        assert self.registry.names() == []

    def test_dependents_are_destroyed_first(self):
        self.add("repo")
        self.add("db")
        self.registry.register_dependent("db", "repo")

        self.registry.destroy("db")

        assert self.log == ["repo", "db"]
        assert not self.registry.contains("repo")
        assert self.registry.dependents_of("db") == []
        assert self.registry.dependencies_of("repo") == []

    def test_failing_disposal_is_logged_and_swallowed(self):
        class Broken:
            def destroy(self):
                msg = "cannot close"
                raise OSError(msg)

        self.registry.register_instance("broken", Broken())
        self.registry.register_disposable("broken", Broken())
        self.add("after")

        with self.assertLogs("wirebind._registry", level="WARNING") as logs:
            self.registry.destroy_all()

        assert self.log == ["after"]
        assert "Destruction of component 'broken' threw an exception" in logs.output[0]

    def test_creation_is_refused_during_destroy_all(self):
        errors: list[Exception] = []

        def create_late():
            try:
                self.registry.get_or_create("late", object)
            except CreationNotAllowedError as exc:
                errors.append(exc)

        class Greedy:
            def destroy(self):
                create_late()

        self.registry.register_instance("greedy", Greedy())
        self.registry.register_disposable("greedy", self.registry.get_raw("greedy"))

        self.registry.destroy_all()

        assert len(errors) == 1
        assert self.registry.get_or_create("late", lambda: "created") == "created"
