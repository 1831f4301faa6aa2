"""Hierarchical inversion-of-control container.

This package maps service identifiers (classes, strings or `Token`s) to lazily
constructed instances, injects their dependencies transitively and manages
their lifecycle across a hierarchy of containers.

Exports:
- `ContainerInstance`: container with `set`/`get`/`get_async`/`get_many`, child
  containers, handlers, `init()` and `dispose()`.
- `ContainerRegistry`: named containers plus the root container holding every
  singleton; `get_default_container()` returns the process-wide root.
- `Scope`: singleton (process wide), container (one per container) or transient.
- `Token`: collision free identifier.
- `service`, `Inject`, `InjectMany`: decorators registering classes and handlers.
"""

from ._container import ContainerInstance
from ._decorators import Inject, InjectMany, service
from ._errors import (
    CannotInjectValueError,
    CannotInstantiateValueError,
    CircularDependencyError,
    ContainerDisposedError,
    ContainerError,
    ContainerRegistrationError,
    ServiceNotFoundError,
    ServiceResolutionError,
)
from ._records import (
    EMPTY,
    ContainerOptions,
    Handler,
    Lifecycle,
    LookupStrategy,
    ResetStrategy,
    Scope,
    ServiceRecord,
    Token,
)
from ._registry import (
    DEFAULT_CONTAINER_ID,
    ContainerRegistry,
    default_registry,
    get_container,
    get_default_container,
    has_container,
    register_container,
)


__all__ = [
    "DEFAULT_CONTAINER_ID",
    "EMPTY",
    "CannotInjectValueError",
    "CannotInstantiateValueError",
    "CircularDependencyError",
    "ContainerDisposedError",
    "ContainerError",
    "ContainerInstance",
    "ContainerOptions",
    "ContainerRegistrationError",
    "ContainerRegistry",
    "Handler",
    "Inject",
    "InjectMany",
    "Lifecycle",
    "LookupStrategy",
    "ResetStrategy",
    "Scope",
    "ServiceNotFoundError",
    "ServiceRecord",
    "ServiceResolutionError",
    "Token",
    "default_registry",
    "get_container",
    "get_default_container",
    "has_container",
    "register_container",
    "service",
]
