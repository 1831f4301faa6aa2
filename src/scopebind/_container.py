from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
import threading
from dataclasses import replace
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._constructor import Constructor
from ._errors import (
    CannotInstantiateValueError,
    CircularDependencyError,
    ContainerDisposedError,
    ContainerError,
    ContainerRegistrationError,
    ServiceNotFoundError,
    ServiceResolutionError,
    describe_identifier,
)
from ._records import (
    EMPTY,
    ContainerOptions,
    LookupStrategy,
    MultiGroup,
    ResetStrategy,
    Scope,
    ServiceRecord,
    Token,
)
from ._registry import DEFAULT_CONTAINER_ID, ContainerRegistry, default_registry


if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from types import TracebackType

    from ._records import Factory, Handler, Lifecycle, ServiceIdentifier

    T = TypeVar("T")


logger = logging.getLogger(__name__)

# (container, identifier) pairs the current asyncio task is constructing.
_async_resolution_path: contextvars.ContextVar[tuple[tuple[int, Any], ...]] = contextvars.ContextVar(
    "scopebind_async_resolution_path", default=()
)


class ContainerInstance:
    """Service container.

    - register types, factories or values under a class, string or `Token`
    - resolve with constructor and property injection driven by handlers
    - scopes: singleton (root container) / container / transient
    - child containers falling back to their parents
    - async initialization and disposal.
    """

    def __init__(
        self,
        container_id: Any,
        parent: ContainerInstance | None = None,
        options: ContainerOptions | None = None,
        *,
        registry: ContainerRegistry | None = None,
    ) -> None:
        if registry is None:
            registry = parent._registry if parent is not None else default_registry()

        self.id = container_id
        self._registry = registry
        self._options = options or ContainerOptions()
        self._records: dict[Any, ServiceRecord] = {}
        self._multi_groups: dict[Any, MultiGroup] = {}
        self._handlers: list[Handler] = []
        self._resolution_stack: list[Any] = []
        self._pending: dict[Any, tuple[asyncio.Future[Any], asyncio.Task[Any] | None]] = {}
        self._async_warned: set[Any] = set()
        self._disposed = False
        self._lock = threading.RLock()

        registry.register_container(self)

        # Containers created without a parent still inherit from the root.
        if parent is None and container_id != DEFAULT_CONTAINER_ID:
            parent = registry.default_container
        self._parent = parent

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    @property
    def parent(self) -> ContainerInstance | None:
        return self._parent

    @property
    def options(self) -> ContainerOptions:
        return self._options

    @property
    def registry(self) -> ContainerRegistry:
        return self._registry

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_root(self) -> bool:
        return self._parent is None and self.id == DEFAULT_CONTAINER_ID

    # -- hierarchy --------------------------------------------------------

    def create_child(self, child_id: Any, options: ContainerOptions | None = None) -> ContainerInstance:
        """Create a container inheriting registrations and handlers from this one."""
        self._throw_if_disposed()
        return ContainerInstance(child_id, self, options, registry=self._registry)

    def _ancestors(self) -> Iterator[ContainerInstance]:
        seen = {id(self)}
        current = self._parent
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            yield current
            current = current._parent

    # -- registration -----------------------------------------------------

    def has(self, identifier: ServiceIdentifier) -> bool:
        """Whether `identifier` is registered in this container (parents are not consulted)."""
        self._throw_if_disposed()
        return identifier in self._records or identifier in self._multi_groups

    def set(  # noqa: PLR0913
        self,
        id: ServiceIdentifier | None = None,  # noqa: A002
        *,
        type: type | None = None,  # noqa: A002
        factory: Factory | None = None,
        value: Any = EMPTY,
        scope: Scope | str = Scope.CONTAINER,
        multiple: bool = False,
        eager: bool = False,
        is_async: bool = False,
        lifecycle: Lifecycle | None = None,
    ) -> ContainerInstance:
        """Register a type, a factory or a value.

        Example:
          container.set(type=Mailer)
          container.set("db", factory=lambda c, _id: connect(), scope=Scope.SINGLETON)
          container.set(PLUGINS, value=GitPlugin(), multiple=True)

        """
        self._throw_if_disposed()

        identifier = id if id is not None else type
        if identifier is None:
            raise ContainerRegistrationError(self.id, None, "either `id` or `type` must be provided")

        # `set(Mailer)` registers the class itself.
        if type is None and factory is None and value is EMPTY and inspect.isclass(identifier):
            type = identifier  # noqa: A001

        if factory is not None and not callable(factory):
            if not (isinstance(factory, tuple | list) and len(factory) == 2 and isinstance(factory[1], str)):
                msg = "`factory` must be a callable or a (factory_type, method_name) pair"
                raise ContainerRegistrationError(self.id, identifier, msg)

        try:
            scope = Scope(scope)
        except ValueError as e:
            raise ContainerRegistrationError(self.id, identifier, str(e)) from e

        record = ServiceRecord(
            id=identifier,
            type=type,
            factory=factory,
            value=value,
            multiple=multiple,
            eager=eager,
            is_async=is_async,
            scope=scope,
            lifecycle=lifecycle,
        )
        return self.set_record(record)

    def set_record(self, record: ServiceRecord) -> ContainerInstance:
        """Store `record`; an existing record with the same id is updated in place."""
        self._throw_if_disposed()

        root = self._registry.default_container
        if record.scope is Scope.SINGLETON and root is not self:
            root.set_record(record)
            return self

        with self._lock:
            record.referenced_by[self.id] = self

            # Every value of a multi registration is stored under its own generated token.
            if record.multiple:
                masked = Token(f"MultiMaskToken-{describe_identifier(record.id)}")
                group = self._multi_groups.get(record.id)
                if group is None:
                    group = self._multi_groups[record.id] = MultiGroup(scope=record.scope)
                group.tokens.append(masked)
                record.id = masked
                record.multiple = False

            existing = self._records.get(record.id)
            if existing is not None and existing is not record:
                existing.merge(record)
                record = existing
            else:
                self._records[record.id] = record

        # Async eager services are constructed by `init()`.
        if record.eager and record.scope is not Scope.TRANSIENT and not record.is_async:
            logger.debug("Eagerly constructing %s in %r", describe_identifier(record.id), self.id)
            self.get(record.id)

        return self

    def remove(self, identifiers: ServiceIdentifier | Iterable[ServiceIdentifier]) -> ContainerInstance:
        """Tear down and drop the given registrations."""
        self._throw_if_disposed()

        if isinstance(identifiers, list | tuple | set | frozenset):
            for identifier in identifiers:
                self.remove(identifier)
            return self

        with self._lock:
            record = self._records.get(identifiers)
            if record is not None:
                self._dispose_service_instance(record)
                del self._records[identifiers]

            group = self._multi_groups.pop(identifiers, None)
            if group is not None:
                for token in group.tokens:
                    masked = self._records.pop(token, None)
                    if masked is not None:
                        self._dispose_service_instance(masked)

        return self

    # -- handlers ---------------------------------------------------------

    def register_handler(self, handler: Handler) -> ContainerInstance:
        self._throw_if_disposed()
        self._handlers.append(handler)
        return self

    def get_all_handlers(self) -> list[Handler]:
        """Handlers of this container followed by those of its ancestors."""
        self._throw_if_disposed()
        handlers = list(self._handlers)
        for ancestor in self._ancestors():
            handlers.extend(ancestor._handlers)
        return handlers

    def find_handler(self, target: type, index: int) -> Handler | None:
        """Constructor parameter handler for `target`, searching its bases most derived first."""
        self._throw_if_disposed()
        candidates = [h for h in self.get_all_handlers() if h.index == index]
        if not candidates:
            return None

        for cls in target.__mro__:
            if cls is object:
                break
            for handler in candidates:
                if handler.object is cls:
                    return handler
        return None

    def _property_handlers(self, target: type) -> list[Handler]:
        lineage = [cls for cls in target.__mro__ if cls is not object]
        matched: dict[str, Handler] = {}
        for handler in self.get_all_handlers():
            if not handler.is_property_handler or handler.property_name in matched:
                continue
            if any(handler.object is cls for cls in lineage):
                matched[handler.property_name] = handler  # type: ignore[index]
        return list(matched.values())

    def _apply_property_handlers(self, record: ServiceRecord, instance: Any) -> None:
        if record.type is None:
            return
        for handler in self._property_handlers(record.type):
            setattr(instance, handler.property_name, handler.resolver(self))  # type: ignore[arg-type]

    async def _apply_property_handlers_async(self, record: ServiceRecord, instance: Any) -> None:
        if record.type is None:
            return
        for handler in self._property_handlers(record.type):
            setattr(instance, handler.property_name, await handler.resolve_async(self))  # type: ignore[arg-type]

    # -- lookup -----------------------------------------------------------

    def _find_record(self, identifier: Any) -> tuple[ServiceRecord | None, ContainerInstance | None]:
        """Locate the record `identifier` resolves to.

        Returns the record with the container that owns its value. The owner is
        None when the record was found on an ancestor and must be adopted first.
        """
        options = self._options
        local_only = options.lookup_strategy is LookupStrategy.LOCAL_ONLY

        if not local_only and options.allow_singleton_lookup:
            root = self._registry.default_container
            global_record = root._records.get(identifier)
            if global_record is not None and global_record.scope is Scope.SINGLETON:
                return global_record, root

        local = self._records.get(identifier)
        if local is not None:
            return local, self

        if local_only:
            return None, None

        for ancestor in self._ancestors():
            candidate = ancestor._records.get(identifier)
            # Singletons are reachable only through the root shortcut above.
            if candidate is not None and candidate.scope is not Scope.SINGLETON:
                return candidate, None

        return None, None

    def can_resolve(self, identifier: Any) -> bool:
        self._throw_if_disposed()
        try:
            record, _ = self._find_record(identifier)
        except TypeError:  # unhashable annotation
            return False
        return record is not None

    def _resolve_record(self, identifier: Any) -> tuple[ServiceRecord, ContainerInstance]:
        record, owner = self._find_record(identifier)

        if record is not None and record.multiple:
            raise ServiceResolutionError(
                self.id, identifier, reason="Multiple values are registered for it, use get_many()."
            )

        if record is not None and owner is not None:
            return record, owner

        if record is not None:
            return self._adopt(record), self

        if identifier in self._multi_groups:
            raise ServiceResolutionError(
                self.id, identifier, reason="It was registered with multiple=True, use get_many()."
            )

        raise ServiceNotFoundError(identifier)

    def _adopt(self, inherited: ServiceRecord) -> ServiceRecord:
        """Copy an ancestor's registration into this container, which then caches its own instance."""
        # Values without type or factory cannot be rebuilt and are shared as is.
        constructable = inherited.is_constructable
        value = EMPTY if constructable else inherited.value
        clone = replace(
            inherited,
            value=value,
            referenced_by={self.id: self},
            initialized=False,
            owns_value=constructable,
        )

        # Stored before construction so that cyclic lookups find it.
        with self._lock:
            self._records[clone.id] = clone
        logger.debug("Adopted %s into %r from a parent container", describe_identifier(clone.id), self.id)
        return clone

    def _find_group(self, identifier: Any) -> MultiGroup:
        options = self._options
        if options.lookup_strategy is not LookupStrategy.LOCAL_ONLY and options.allow_singleton_lookup:
            root = self._registry.default_container
            global_group = root._multi_groups.get(identifier)
            if global_group is not None and global_group.scope is Scope.SINGLETON:
                return global_group

        group = self._multi_groups.get(identifier)
        if group is not None:
            return group

        raise ServiceNotFoundError(identifier)

    # -- resolution -------------------------------------------------------

    @overload
    def get(self, identifier: type[T]) -> T: ...

    @overload
    def get(self, identifier: str | Token[Any]) -> Any: ...

    def get(self, identifier: ServiceIdentifier) -> Any:
        """Resolve `identifier` to an instance, constructing it if needed."""
        self._throw_if_disposed()

        with self._lock:
            record, _ = self._resolve_record(identifier)

        if record.is_async:
            self._warn_sync_resolution(record)
        # Root singletons are built here too; their value lands in the root's record.
        return self._get_service_value(record)

    @overload
    async def get_async(self, identifier: type[T]) -> T: ...

    @overload
    async def get_async(self, identifier: str | Token[Any]) -> Any: ...

    async def get_async(self, identifier: ServiceIdentifier) -> Any:
        """Resolve `identifier`, awaiting async factories, dependencies and `on_init` hooks."""
        self._throw_if_disposed()

        with self._lock:
            record, owner = self._resolve_record(identifier)

        return await self._get_service_value_async(record, owner)

    def get_many(self, identifier: ServiceIdentifier) -> list[Any]:
        """Every value registered with `multiple=True` under `identifier`, in registration order."""
        self._throw_if_disposed()

        group = self._find_group(identifier)
        return [self.get(token) for token in list(group.tokens)]

    async def get_many_async(self, identifier: ServiceIdentifier) -> list[Any]:
        self._throw_if_disposed()

        group = self._find_group(identifier)
        return [await self.get_async(token) for token in list(group.tokens)]

    def _warn_sync_resolution(self, record: ServiceRecord) -> None:
        if record.id in self._async_warned:
            return
        self._async_warned.add(record.id)
        logger.warning(
            "%s is registered with is_async=True but resolved with get(); "
            "its on_init hook does not run, use get_async() or init() instead",
            describe_identifier(record.id),
        )

    def _get_service_value(self, record: ServiceRecord) -> Any:
        """Construct phase (cycle checked) followed by the wiring phase (property handlers)."""
        with self._lock:
            if record.has_value:
                return record.value

            if not record.is_constructable:
                raise CannotInstantiateValueError(record.id)

            if record.id in self._resolution_stack:
                raise CircularDependencyError(record.id, self._resolution_stack)

            self._resolution_stack.append(record.id)
            try:
                value = self._construct(record)
                if inspect.iscoroutine(value):
                    value.close()
                    raise ServiceResolutionError(
                        self.id, record.id, reason="Its factory is asynchronous, use get_async()."
                    )

                if record.scope is not Scope.TRANSIENT:
                    record.value = value
            finally:
                self._resolution_stack.remove(record.id)

            # Off the stack already: property back-references get the cached instance.
            self._apply_property_handlers(record, value)
            return value

    def _construct(self, record: ServiceRecord) -> Any:
        try:
            if record.factory is not None:
                return self._call_factory(record, self._get_factory_instance)
            return Constructor(self).construct(record.type)  # type: ignore[arg-type]
        except ContainerError:
            raise
        except Exception as e:
            raise ServiceResolutionError(self.id, record.id, e) from e

    def _call_factory(self, record: ServiceRecord, get_factory_instance: Any) -> Any:
        factory = record.factory
        if isinstance(factory, tuple | list):
            factory_type, method_name = factory
            factory_instance = get_factory_instance(factory_type)
            return getattr(factory_instance, method_name)(self, record.id)
        return factory(self, record.id)  # type: ignore[misc]

    def _get_factory_instance(self, factory_type: type) -> Any:
        try:
            return self.get(factory_type)
        except ServiceNotFoundError as e:
            if e.identifier is not factory_type or not self._options.allow_unregistered_factory:
                raise
        return self._bare_factory(factory_type)

    async def _get_factory_instance_async(self, factory_type: type) -> Any:
        try:
            return await self.get_async(factory_type)
        except ServiceNotFoundError as e:
            if e.identifier is not factory_type or not self._options.allow_unregistered_factory:
                raise
        return self._bare_factory(factory_type)

    def _bare_factory(self, factory_type: type) -> Any:
        logger.warning(
            "Factory class %s is not registered in %r, constructing it without injection",
            factory_type.__qualname__,
            self.id,
        )
        return factory_type()

    async def _get_service_value_async(self, record: ServiceRecord, owner: ContainerInstance | None = None) -> Any:
        """Async construction in this container; in-flight work is shared through `owner`, the record's holder."""
        path = _async_resolution_path.get()
        current = asyncio.current_task()
        in_flight = (owner or self)._pending

        pending = in_flight.get(record.id)
        if pending is not None:
            future, builder = pending
            if builder is not current:
                return await _wait_for_construction(future, builder, current, record.id, path)
            # Re-entered by the task building it: back-reference while wiring, or a cycle.
            if record.has_value:
                return record.value
        elif record.has_value:
            await self._run_on_init(record, record.value)
            return record.value

        if not record.is_constructable:
            raise CannotInstantiateValueError(record.id)

        key = (id(self), record.id)
        if key in path:
            raise CircularDependencyError(record.id, [identifier for _, identifier in path])

        # Concurrent requests for a cached service share this construction.
        shared = record.scope is not Scope.TRANSIENT
        future = asyncio.get_running_loop().create_future()
        if shared:
            in_flight[record.id] = (future, current)

        try:
            token = _async_resolution_path.set((*path, key))
            try:
                value = await self._construct_async(record)
            finally:
                _async_resolution_path.reset(token)

            if shared:
                record.value = value
            await self._apply_property_handlers_async(record, value)
            await self._run_on_init(record, value)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            future.exception()  # consumed here, waiters get it through `await`
            raise
        else:
            future.set_result(value)
            return value
        finally:
            if shared:
                in_flight.pop(record.id, None)

    async def _construct_async(self, record: ServiceRecord) -> Any:
        try:
            if record.factory is not None:
                value = self._call_factory(record, self._get_factory_instance_async)
                if inspect.isawaitable(value):
                    value = await value
                return value
            return await Constructor(self).construct_async(record.type)  # type: ignore[arg-type]
        except ContainerError:
            raise
        except Exception as e:
            raise ServiceResolutionError(self.id, record.id, e) from e

    async def _run_on_init(self, record: ServiceRecord, instance: Any) -> None:
        lifecycle = record.lifecycle
        if lifecycle is None or lifecycle.on_init is None or record.initialized:
            return

        transient = record.scope is Scope.TRANSIENT
        if not transient:
            record.initialized = True
        try:
            result = lifecycle.on_init(instance)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            record.initialized = False
            if isinstance(e, ContainerError):
                raise
            raise ServiceResolutionError(self.id, record.id, e) from e

    # -- lifecycle --------------------------------------------------------

    async def init(self) -> None:
        """Construct every eager or async service and run pending `on_init` hooks."""
        self._throw_if_disposed()

        records = [
            record
            for record in list(self._records.values())
            if (record.eager or record.is_async) and record.scope is not Scope.TRANSIENT
        ]
        results = await asyncio.gather(
            *(self._get_service_value_async(record) for record in records),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def reset(self, strategy: ResetStrategy | str = ResetStrategy.RESET_VALUE) -> ContainerInstance:
        """Drop constructed instances; `RESET_SERVICES` also drops registrations and handlers."""
        self._throw_if_disposed()
        strategy = ResetStrategy(strategy)

        with self._lock:
            for record in list(self._records.values()):
                self._dispose_service_instance(record)

            if strategy is ResetStrategy.RESET_SERVICES:
                self._records.clear()
                self._multi_groups.clear()
                self._handlers.clear()
                self._async_warned.clear()

        return self

    async def dispose(self) -> None:
        """Tear down every instance, then refuse any further use of this container."""
        self._throw_if_disposed()

        records = list(self._records.values())
        await asyncio.gather(*(self._destroy(record) for record in records))

        with self._lock:
            self._records.clear()
            self._multi_groups.clear()
            self._handlers.clear()
            self._pending.clear()
            self._disposed = True
        self._registry.unregister_container(self)

    async def __aenter__(self) -> ContainerInstance:
        self._throw_if_disposed()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if not self._disposed:
            await self.dispose()

    def _dispose_service_instance(self, record: ServiceRecord) -> None:
        # Only values we can construct again, and own, are reset.
        if not record.is_constructable or not record.owns_value:
            return

        if record.has_value:
            instance = record.value
            for hook in _teardown_hooks(record, instance):
                try:
                    result = hook()
                except Exception:
                    logger.exception("Failed to tear down %s in %r", describe_identifier(record.id), self.id)
                    continue
                if inspect.isawaitable(result):
                    if inspect.iscoroutine(result):
                        result.close()
                    logger.warning(
                        "Teardown of %s is asynchronous and was skipped by reset(), use dispose()",
                        describe_identifier(record.id),
                    )

        record.value = EMPTY
        record.initialized = False

    async def _destroy(self, record: ServiceRecord) -> None:
        if not record.has_value or not record.owns_value:
            return

        instance = record.value
        try:
            for hook in _teardown_hooks(record, instance):
                result = hook()
                if inspect.isawaitable(result):
                    await result
        except Exception:
            logger.exception("Failed to dispose %s in %r", describe_identifier(record.id), self.id)
        finally:
            record.value = EMPTY
            record.initialized = False

    def _throw_if_disposed(self) -> None:
        if self._disposed:
            raise ContainerDisposedError(self.id)


# Task -> task it awaits a shared construction from.
_task_waits: dict[asyncio.Task[Any], asyncio.Task[Any]] = {}


async def _wait_for_construction(
    future: asyncio.Future[Any],
    owner: asyncio.Task[Any] | None,
    current: asyncio.Task[Any] | None,
    identifier: Any,
    path: tuple[tuple[int, Any], ...],
) -> Any:
    if current is None or owner is None:
        return await asyncio.shield(future)

    # Waiting on a task that (transitively) waits on us is a constructor cycle across tasks.
    seen = set()
    node: asyncio.Task[Any] | None = owner
    while node is not None and node not in seen:
        if node is current:
            raise CircularDependencyError(identifier, [i for _, i in path])
        seen.add(node)
        node = _task_waits.get(node)

    _task_waits[current] = owner
    try:
        return await asyncio.shield(future)
    finally:
        _task_waits.pop(current, None)


def _teardown_hooks(record: ServiceRecord, instance: Any) -> list[Any]:
    """`on_destroy` first, then the instance's own `dispose()`."""
    hooks = []
    if record.lifecycle is not None and record.lifecycle.on_destroy is not None:
        on_destroy = record.lifecycle.on_destroy
        hooks.append(lambda: on_destroy(instance))
    dispose = getattr(instance, "dispose", None)
    if callable(dispose):
        hooks.append(dispose)
    return hooks
