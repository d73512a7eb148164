from __future__ import annotations


class ResolutionError(RuntimeError):
    """Base class of every error raised by the container.

    ``related_causes`` collects exceptions that were suppressed while the
    failing component was being built (see ``InstanceRegistry.on_suppressed_exception``).
    """

    def __init__(self, msg: str = "") -> None:
        super().__init__(msg)
        self.related_causes: list[Exception] = []

    def add_related_cause(self, exc: Exception) -> None:
        self.related_causes.append(exc)


class NoSuchComponentError(ResolutionError):
    def __init__(self, name: str, msg: str | None = None) -> None:
        super().__init__(msg or f"No component named '{name}' is defined")
        self.name = name


class DefinitionStoreError(ResolutionError):
    """A component definition is invalid and cannot be merged."""

    def __init__(self, name: str, msg: str) -> None:
        super().__init__(f"Invalid definition for component '{name}': {msg}")
        self.name = name


class UnresolvableParentError(DefinitionStoreError):
    pass


class AbstractDefinitionError(ResolutionError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Component '{name}' is defined as abstract and cannot be constructed")
        self.name = name


class DependsOnCycleError(ResolutionError):
    def __init__(self, name: str, dependency: str) -> None:
        super().__init__(f"Circular depends-on relationship between '{name}' and '{dependency}'")
        self.name = name
        self.dependency = dependency


class CurrentlyInCreationError(ResolutionError):
    """Requested component is already being created and no early reference exists."""

    def __init__(self, name: str, msg: str | None = None) -> None:
        super().__init__(
            msg or f"Requested component '{name}' is currently in creation: is there an unresolvable circular reference?"
        )
        self.name = name


class CircularPrototypeError(CurrentlyInCreationError):
    def __init__(self, name: str) -> None:
        super().__init__(
            name,
            f"Prototype component '{name}' is currently in creation: prototype scope cannot resolve circular references",
        )


class UnsatisfiedReferenceError(ResolutionError):
    def __init__(self, name: str, msg: str) -> None:
        super().__init__(f"Error creating component '{name}': unsatisfied reference: {msg}")
        self.name = name


class UnknownScopeError(ResolutionError):
    def __init__(self, name: str, scope: str) -> None:
        super().__init__(f"No scope strategy registered for scope '{scope}' (component '{name}')")
        self.name = name
        self.scope = scope


class EarlyReferenceMismatchError(ResolutionError):
    def __init__(self, name: str, dependents: list[str]) -> None:
        super().__init__(
            f"Component '{name}' was injected into {dependents!r} in its raw version as part of a circular "
            "reference, but has eventually been replaced by a different object. The early reference consumers "
            "do not hold the final instance."
        )
        self.name = name
        self.dependents = dependents


class ConstructionError(ResolutionError):
    """Wraps an exception raised by a creation or post-construction hook."""

    def __init__(self, name: str, msg: str) -> None:
        super().__init__(f"Error creating component '{name}': {msg}")
        self.name = name


class CreationNotAllowedError(ResolutionError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Creation of singleton '{name}' is not allowed while the container's singletons are being destroyed"
        )
        self.name = name


class ComponentNotOfRequiredTypeError(ResolutionError, TypeError):
    def __init__(self, name: str, required_type: type, actual_type: type) -> None:
        super().__init__(
            f"Component '{name}' is expected to be of type {required_type.__name__} "
            f"but was actually of type {actual_type.__name__}"
        )
        self.name = name
        self.required_type = required_type
        self.actual_type = actual_type
