import pytest

from scopebind import (
    ContainerInstance,
    ContainerRegistry,
    Scope,
    ServiceNotFoundError,
    ServiceResolutionError,
    Token,
)


PLUGINS = Token("plugins")


class GitPlugin: ...


class LintPlugin: ...


def make_root() -> ContainerInstance:
    return ContainerRegistry().default_container


def test_get_many_returns_values_in_registration_order():
    c = make_root()
    first, second, third = object(), object(), object()

    c.set(PLUGINS, value=first, multiple=True)
    c.set(PLUGINS, value=second, multiple=True)
    c.set(PLUGINS, value=third, multiple=True)

    assert c.get_many(PLUGINS) == [first, second, third]


def test_get_on_multiple_identifier_raises_resolution_error():
    c = make_root()
    c.set("plugins", value=1, multiple=True)

    with pytest.raises(ServiceResolutionError, match="get_many"):
        c.get("plugins")


def test_get_many_of_unknown_identifier_raises_not_found():
    c = make_root()

    with pytest.raises(ServiceNotFoundError):
        c.get_many("plugins")


def test_multiple_types_are_constructed_once_per_container():
    c = make_root()
    c.set(PLUGINS, type=GitPlugin, multiple=True)
    c.set(PLUGINS, type=LintPlugin, multiple=True)

    plugins = c.get_many(PLUGINS)

    assert [type(p) for p in plugins] == [GitPlugin, LintPlugin]
    assert c.get_many(PLUGINS) == plugins


def test_transient_multiple_types_are_constructed_on_every_call():
    c = make_root()
    c.set(PLUGINS, type=GitPlugin, multiple=True, scope=Scope.TRANSIENT)

    first = c.get_many(PLUGINS)
    second = c.get_many(PLUGINS)

    assert isinstance(first[0], GitPlugin)
    assert first[0] is not second[0]


def test_singleton_group_is_visible_from_every_container():
    root = make_root()
    child = root.create_child("child")

    child.set(PLUGINS, type=GitPlugin, multiple=True, scope=Scope.SINGLETON)

    assert root.has(PLUGINS)
    assert child.get_many(PLUGINS) == root.get_many(PLUGINS)
    assert child.get_many(PLUGINS)[0] is root.get_many(PLUGINS)[0]


def test_container_group_is_local_to_its_container():
    root = make_root()
    child = root.create_child("child")

    child.set(PLUGINS, value="git", multiple=True)

    assert child.get_many(PLUGINS) == ["git"]
    with pytest.raises(ServiceNotFoundError):
        root.get_many(PLUGINS)


def test_has_and_remove_multiple_identifier():
    c = make_root()

    class Disposable:
        disposed = False

        def dispose(self):
            self.disposed = True

    c.set(PLUGINS, type=Disposable, multiple=True)
    instance = c.get_many(PLUGINS)[0]
    assert c.has(PLUGINS)

    c.remove(PLUGINS)

    assert not c.has(PLUGINS)
    assert instance.disposed
    with pytest.raises(ServiceNotFoundError):
        c.get_many(PLUGINS)


def test_multiple_registrations_do_not_interfere_with_single_ones():
    c = make_root()

    c.set("name", value="single")
    c.set(PLUGINS, value="multi", multiple=True)

    assert c.get("name") == "single"
    assert c.get_many(PLUGINS) == ["multi"]


@pytest.mark.asyncio
async def test_get_many_async_awaits_async_factories():
    c = make_root()

    async def make_plugin(container, identifier):
        return "async-plugin"

    c.set(PLUGINS, factory=make_plugin, multiple=True)
    c.set(PLUGINS, value="plain", multiple=True)

    assert await c.get_many_async(PLUGINS) == ["async-plugin", "plain"]
