from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, get_type_hints

from ._errors import CannotInjectValueError
from ._records import EMPTY


if TYPE_CHECKING:
    from ._container import ContainerInstance
    from ._records import Handler

    T = TypeVar("T")


logger = logging.getLogger(__name__)

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass
class Dependency:
    """How one constructor parameter gets its value.

    Exactly one of `handler`, `identifier` or `value` is set.
    """

    parameter: inspect.Parameter
    handler: Handler | None = None
    identifier: Any = EMPTY
    value: Any = EMPTY


class Constructor:
    """Builds instances of a registered type, injecting its constructor parameters.

    Parameters are indexed in declaration order, skipping `self` and variadic
    parameters. For each index the first applicable rule wins:

    1. an index handler registered for the class or one of its bases
    2. a `ContainerInstance` annotation, which receives the requesting container
    3. an annotation registered in the container
    4. a registration named like the parameter
    5. the parameter default
    6. a non-builtin class annotation (missing registrations surface as not found)
    7. the unannotated trailing parameter, which receives the requesting container.
    """

    def __init__(self, container: ContainerInstance) -> None:
        self._container = container

    def construct(self, cls: type[T]) -> T:
        args, kwargs = self._materialize_call(self._resolve(cls))
        return cls(*args, **kwargs)

    async def construct_async(self, cls: type[T]) -> T:
        args, kwargs = self._materialize_call(await self._resolve_async(cls))
        return cls(*args, **kwargs)

    def _resolve(self, cls: type) -> list[tuple[inspect.Parameter, Any]]:
        resolved = []
        for dep in self.dependencies(cls):
            if dep.handler is not None:
                value = dep.handler.resolver(self._container)
            elif dep.identifier is not EMPTY:
                value = self._container.get(dep.identifier)
            else:
                value = dep.value
            resolved.append((dep.parameter, value))
        return resolved

    async def _resolve_async(self, cls: type) -> list[tuple[inspect.Parameter, Any]]:
        resolved = []
        for dep in self.dependencies(cls):
            if dep.handler is not None:
                value = await dep.handler.resolve_async(self._container)
            elif dep.identifier is not EMPTY:
                value = await self._container.get_async(dep.identifier)
            else:
                value = dep.value
            resolved.append((dep.parameter, value))
        return resolved

    def dependencies(self, cls: type) -> list[Dependency]:
        params = injectable_parameters(cls)
        if not params:
            return []

        hints = _get_init_type_hints(cls)
        last = len(params) - 1
        return [
            self._plan_parameter(cls, index, p, hints, is_trailing=index == last) for index, p in enumerate(params)
        ]

    def _plan_parameter(
        self,
        cls: type,
        index: int,
        p: inspect.Parameter,
        hints: dict[str, Any],
        *,
        is_trailing: bool,
    ) -> Dependency:
        from ._container import ContainerInstance

        container = self._container

        handler = container.find_handler(cls, index)
        if handler is not None:
            return Dependency(p, handler=handler)

        ann = hints.get(p.name, inspect.Parameter.empty)
        if inspect.isclass(ann) and issubclass(ann, ContainerInstance):
            return Dependency(p, value=container)

        if ann is not inspect.Parameter.empty and container.can_resolve(ann):
            return Dependency(p, identifier=ann)

        if container.can_resolve(p.name):
            return Dependency(p, identifier=p.name)

        if p.default is not inspect.Parameter.empty:
            return Dependency(p, value=p.default)

        if inspect.isclass(ann) and ann.__module__ != "builtins":
            return Dependency(p, identifier=ann)

        if ann is inspect.Parameter.empty and is_trailing:
            return Dependency(p, value=container)

        raise CannotInjectValueError(cls, p.name)

    def _materialize_call(self, resolved: list[tuple[inspect.Parameter, Any]]) -> tuple[list[Any], dict[str, Any]]:
        args, kwargs = [], {}
        for p, value in resolved:
            if p.kind is p.POSITIONAL_ONLY:
                args.append(value)
            else:
                kwargs[p.name] = value
        return args, kwargs


def injectable_parameters(cls: type) -> list[inspect.Parameter]:
    """Constructor parameters in index order, without `self` and variadics."""
    if cls.__init__ is object.__init__:  # type: ignore[misc]
        return []

    try:
        params = inspect.signature(cls).parameters.values()
    except (TypeError, ValueError):
        # builtins and extension types without introspectable signature
        return []
    return [p for p in params if p.kind not in _VARIADIC]


def _get_init_type_hints(cls: type) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)
        hints = {}

    return hints
