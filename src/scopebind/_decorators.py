"""Class decorator and injection markers.

They translate class definitions into `ContainerInstance.set()` and
`ContainerInstance.register_handler()` calls and nothing more:

    @service()
    class Mailer:
        transport = Inject(SMTP_TRANSPORT)

        def __init__(self, config: Config, templates: Annotated[Any, Inject("templates")]): ...

"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, TypeVar, get_args, get_type_hints

from ._constructor import injectable_parameters
from ._errors import CannotInjectValueError
from ._records import EMPTY, Handler, Scope, Token
from ._registry import get_default_container


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._container import ContainerInstance
    from ._records import Factory, Lifecycle, ServiceIdentifier

    C = TypeVar("C", bound=type)


logger = logging.getLogger(__name__)


class Inject:
    """Injects the service registered under `identifier`.

    Use it as a class attribute (property injection) or as `Annotated`
    metadata of a constructor parameter. `identifier` may also be a
    zero-argument callable returning the identifier, for classes defined
    later. When omitted, the annotation of the attribute or parameter is used.
    """

    def __init__(self, identifier: ServiceIdentifier | Callable[[], ServiceIdentifier] | None = None) -> None:
        self.identifier = identifier

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier!r})"

    def handler(
        self,
        target: type,
        annotation: Callable[[], Any],
        *,
        property_name: str | None = None,
        index: int | None = None,
    ) -> Handler:
        member: str | int = property_name if property_name is not None else index  # type: ignore[assignment]

        def resolver(container: ContainerInstance) -> Any:
            return self._fetch(container, self._identifier(target, member, annotation))

        async def async_resolver(container: ContainerInstance) -> Any:
            return await self._fetch_async(container, self._identifier(target, member, annotation))

        return Handler(target, resolver, property_name=property_name, index=index, async_resolver=async_resolver)

    def _identifier(self, target: type, member: str | int, annotation: Callable[[], Any]) -> Any:
        identifier = self.identifier
        if identifier is None:
            identifier = annotation()
        elif callable(identifier) and not inspect.isclass(identifier) and not isinstance(identifier, Token):
            identifier = identifier()

        if identifier is None or identifier is object:
            raise CannotInjectValueError(target, member)
        return identifier

    def _fetch(self, container: ContainerInstance, identifier: Any) -> Any:
        return container.get(identifier)

    async def _fetch_async(self, container: ContainerInstance, identifier: Any) -> Any:
        return await container.get_async(identifier)


class InjectMany(Inject):
    """Injects the list of values registered with `multiple=True` under `identifier`.

    Without identifier, the item type of a `list[...]` annotation is used.
    """

    def _identifier(self, target: type, member: str | int, annotation: Callable[[], Any]) -> Any:
        def item_type() -> Any:
            hint = annotation()
            args = get_args(hint)
            return args[0] if args else hint

        return super()._identifier(target, member, item_type)

    def _fetch(self, container: ContainerInstance, identifier: Any) -> Any:
        return container.get_many(identifier)

    async def _fetch_async(self, container: ContainerInstance, identifier: Any) -> Any:
        return await container.get_many_async(identifier)


def service(  # noqa: PLR0913
    id: ServiceIdentifier | None = None,  # noqa: A002
    *,
    scope: Scope | str = Scope.CONTAINER,
    multiple: bool = False,
    eager: bool = False,
    is_async: bool = False,
    factory: Factory | None = None,
    lifecycle: Lifecycle | None = None,
    container: ContainerInstance | None = None,
) -> Callable[[C], C]:
    """Register the decorated class, and its injection markers, in `container`.

    Defaults to the process-wide root container.
    """

    def decorator(cls: C) -> C:
        target = container if container is not None else get_default_container()

        # Handlers first, an eager service is constructed by `set`.
        for handler in _collect_handlers(cls):
            target.register_handler(handler)

        target.set(
            id if id is not None else cls,
            type=cls,
            factory=factory,
            value=EMPTY,
            scope=scope,
            multiple=multiple,
            eager=eager,
            is_async=is_async,
            lifecycle=lifecycle,
        )
        return cls

    return decorator


def _collect_handlers(cls: type) -> list[Handler]:
    handlers = []

    annotations = inspect.get_annotations(cls)
    for name, member in vars(cls).items():
        if not isinstance(member, Inject):
            continue
        if member.identifier is None and name not in annotations:
            raise CannotInjectValueError(cls, name)
        handlers.append(member.handler(cls, _attribute_annotation(cls, name), property_name=name))

    # Inherited constructors are matched through the base class handlers.
    if "__init__" in vars(cls):
        try:
            hints = get_type_hints(cls.__init__, include_extras=True)  # type: ignore[misc]
        except NameError as exc:
            logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)
            hints = {}

        for index, p in enumerate(injectable_parameters(cls)):
            hint = hints.get(p.name)
            marker = next((m for m in getattr(hint, "__metadata__", ()) if isinstance(m, Inject)), None)
            if marker is not None:
                base = get_args(hint)[0]
                handlers.append(marker.handler(cls, lambda base=base: base, index=index))

    return handlers


def _attribute_annotation(cls: type, name: str) -> Callable[[], Any]:
    def annotation() -> Any:
        try:
            return get_type_hints(cls).get(name)
        except NameError as exc:
            raise CannotInjectValueError(cls, name) from exc

    return annotation
