from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

from ._records import Token


if TYPE_CHECKING:
    from collections.abc import Sequence


def describe_identifier(identifier: object) -> str:
    """Human readable name of a service identifier."""
    if identifier is None:
        return "<UNKNOWN_IDENTIFIER>"
    if isinstance(identifier, str):
        return identifier
    if isinstance(identifier, Token):
        return repr(identifier)
    if inspect.isclass(identifier):
        return identifier.__qualname__
    return repr(identifier)


class ContainerError(RuntimeError):
    """Base class of every error raised by the container.

    Carries a stable `code` for lookup and an optional `suggestion`.
    """

    code = "SB-000"

    def __init__(self, message: str, *, suggestion: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ServiceNotFoundError(ContainerError, KeyError):
    code = "SB-001"

    def __init__(self, identifier: object) -> None:
        self.identifier = identifier
        msg = f'Service with "{describe_identifier(identifier)}" identifier was not found in the container.'
        super().__init__(msg, suggestion="Register it via `container.set(...)` or the `@service()` decorator.")


class CircularDependencyError(ContainerError):
    code = "SB-002"

    def __init__(self, identifier: object, resolution_path: Sequence[object] = ()) -> None:
        self.identifier = identifier
        self.resolution_path = list(resolution_path)
        path = " -> ".join(describe_identifier(i) for i in [*self.resolution_path, identifier])
        msg = f'Circular dependency detected for service "{describe_identifier(identifier)}". Resolution path: {path}.'
        super().__init__(msg, suggestion="Break the cycle with property injection or a factory.")


class CannotInjectValueError(ContainerError):
    code = "SB-003"

    def __init__(self, target: Any, member: str | int) -> None:
        self.target = target
        self.member = member
        msg = f'Cannot inject value into "{describe_identifier(target)}.{member}".'
        super().__init__(msg, suggestion="Annotate the member with a registered type or pass an explicit identifier.")


class CannotInstantiateValueError(ContainerError):
    code = "SB-004"

    def __init__(self, identifier: object) -> None:
        self.identifier = identifier
        msg = (
            f'Cannot instantiate the requested value for the "{describe_identifier(identifier)}" identifier. '
            "The registration contains neither a factory nor a type."
        )
        super().__init__(msg, suggestion='Register the service with a "type" or a "factory".')


class ContainerDisposedError(ContainerError):
    code = "SB-005"

    def __init__(self, container_id: object) -> None:
        self.container_id = container_id
        msg = f'Cannot perform operation on disposed container "{container_id}".'
        super().__init__(msg, suggestion="Create a new container instance.")


class ContainerRegistrationError(ContainerError, ValueError):
    code = "SB-006"

    def __init__(self, container_id: object, identifier: object, reason: str) -> None:
        self.container_id = container_id
        self.identifier = identifier
        self.reason = reason
        msg = (
            f'Failed to register "{describe_identifier(identifier)}" in container "{container_id}". '
            f"Reason: {reason}"
        )
        super().__init__(msg)


class ServiceResolutionError(ContainerError):
    code = "SB-007"

    def __init__(
        self,
        container_id: object,
        identifier: object,
        cause: BaseException | None = None,
        *,
        reason: str | None = None,
    ) -> None:
        self.container_id = container_id
        self.identifier = identifier
        msg = f'Failed to resolve service "{describe_identifier(identifier)}" in container "{container_id}".'
        if reason is not None:
            msg += f" {reason}"
        if cause is not None:
            msg += f" Underlying error: {cause}"
        super().__init__(msg)
        self.__cause__ = cause
