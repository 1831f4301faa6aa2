from __future__ import annotations

import inspect
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ._container import ContainerInstance

    ServiceIdentifier = type | str | Token[Any]
    Factory = Callable[[ContainerInstance, ServiceIdentifier], Any] | tuple[type, str]

T = TypeVar("T")


class Token(Generic[T]):
    """Nominal service identifier.

    Two tokens are never equal unless they are the same object, so a token
    never collides with a string id or another token carrying the same name.
    """

    __slots__ = ("name",)

    def __init__(self, name: str | None = None) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Token<{self.name or 'UNSET_NAME'}>"


class _Empty(Enum):
    EMPTY = "EMPTY"

    def __repr__(self) -> str:
        return "EMPTY"


# Value of a record whose instance has not been constructed (yet).
EMPTY: Final = _Empty.EMPTY


class Scope(Enum):
    SINGLETON = "singleton"
    CONTAINER = "container"
    TRANSIENT = "transient"


class LookupStrategy(Enum):
    ALLOW_LOOKUP = "allow_lookup"
    LOCAL_ONLY = "local_only"


class ResetStrategy(Enum):
    RESET_VALUE = "reset_value"
    RESET_SERVICES = "reset_services"


@dataclass(frozen=True)
class ContainerOptions:
    lookup_strategy: LookupStrategy = LookupStrategy.ALLOW_LOOKUP
    # Gates only the shortcut to singletons stored in the root container.
    allow_singleton_lookup: bool = True
    # `(FactoryClass, "method")` factories whose class is not registered are built bare.
    allow_unregistered_factory: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "lookup_strategy", LookupStrategy(self.lookup_strategy))


@dataclass(frozen=True)
class Lifecycle:
    """Hooks run by `ContainerInstance.init()`/`get_async()` and on teardown.

    Both hooks receive the service instance and may be coroutine functions.
    """

    on_init: Callable[[Any], Awaitable[None] | None] | None = None
    on_destroy: Callable[[Any], Awaitable[None] | None] | None = None


@dataclass
class ServiceRecord:
    id: ServiceIdentifier
    type: type | None = None
    factory: Factory | None = None
    value: Any = EMPTY
    multiple: bool = False
    eager: bool = False
    is_async: bool = False
    scope: Scope = Scope.CONTAINER
    lifecycle: Lifecycle | None = None
    referenced_by: dict[Any, ContainerInstance] = field(default_factory=dict, repr=False)
    initialized: bool = False  # lifecycle.on_init already ran for `value`
    owns_value: bool = True  # False when `value` is borrowed from a parent container's record

    def __post_init__(self) -> None:
        self.scope = Scope(self.scope)

    @property
    def is_constructable(self) -> bool:
        return self.type is not None or self.factory is not None

    @property
    def has_value(self) -> bool:
        return self.value is not EMPTY

    def merge(self, other: ServiceRecord) -> None:
        """Overwrite every field with `other`'s, keeping this object's identity."""
        for f in fields(self):
            if f.name == "referenced_by":
                self.referenced_by.update(other.referenced_by)
            else:
                setattr(self, f.name, getattr(other, f.name))


@dataclass
class MultiGroup:
    """Generated tokens standing for the values registered with `multiple=True`."""

    scope: Scope
    tokens: list[Token[Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Handler:
    """Injection directive for one constructor parameter or one instance attribute of `object`.

    `resolver` is called with the container performing the resolution, which
    is not necessarily the container the handler was registered on.
    `async_resolver`, when given, replaces it on the `get_async()`/`init()` path.
    """

    object: type
    resolver: Callable[[ContainerInstance], Any]
    property_name: str | None = None
    index: int | None = None
    async_resolver: Callable[[ContainerInstance], Awaitable[Any]] | None = None

    def __post_init__(self) -> None:
        if (self.property_name is None) == (self.index is None):
            msg = "Provide either `property_name` or `index`, not both."
            raise ValueError(msg)

    @property
    def is_property_handler(self) -> bool:
        return self.index is None

    async def resolve_async(self, container: ContainerInstance) -> Any:
        if self.async_resolver is not None:
            return await self.async_resolver(container)
        value = self.resolver(container)
        if inspect.isawaitable(value):
            value = await value
        return value
