from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from ._errors import ContainerRegistrationError


if TYPE_CHECKING:
    from ._container import ContainerInstance


logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_ID = "default"


class ContainerRegistry:
    """Named containers plus the root container owning every singleton.

    The root is created on first access of `default_container`, and again if
    the previous root has been disposed.
    """

    def __init__(self) -> None:
        self._containers: dict[Any, ContainerInstance] = {}
        self._default: ContainerInstance | None = None
        self._lock = threading.RLock()

    @property
    def default_container(self) -> ContainerInstance:
        with self._lock:
            if self._default is None or self._default.disposed:
                from ._container import ContainerInstance

                self._default = ContainerInstance(DEFAULT_CONTAINER_ID, registry=self)
            return self._default

    def register_container(self, container: ContainerInstance) -> None:
        with self._lock:
            existing = self._containers.get(container.id)
            if existing is container:
                return
            if existing is not None and not existing.disposed:
                msg = "a container with the same id is already registered"
                raise ContainerRegistrationError(container.id, container.id, msg)
            self._containers[container.id] = container
            if container.id == DEFAULT_CONTAINER_ID:
                self._default = container
            logger.debug("Registered container %r", container.id)

    def unregister_container(self, container: ContainerInstance) -> None:
        with self._lock:
            if self._containers.get(container.id) is container:
                del self._containers[container.id]
            if self._default is container:
                self._default = None

    def has_container(self, container_id: Any) -> bool:
        if container_id == DEFAULT_CONTAINER_ID:
            return True
        return container_id in self._containers

    def get_container(self, container_id: Any) -> ContainerInstance:
        if container_id == DEFAULT_CONTAINER_ID:
            return self.default_container

        try:
            return self._containers[container_id]
        except KeyError:
            msg = f"No container registered with id {container_id!r}"
            raise KeyError(msg) from None

    async def remove_container(self, container: ContainerInstance) -> None:
        """Dispose `container`, which drops it from this registry."""
        if container.disposed:
            self.unregister_container(container)
            return
        await container.dispose()


_registry = ContainerRegistry()


def default_registry() -> ContainerRegistry:
    return _registry


def get_default_container() -> ContainerInstance:
    return _registry.default_container


def get_container(container_id: Any) -> ContainerInstance:
    return _registry.get_container(container_id)


def has_container(container_id: Any) -> bool:
    return _registry.has_container(container_id)


def register_container(container: ContainerInstance) -> None:
    _registry.register_container(container)
