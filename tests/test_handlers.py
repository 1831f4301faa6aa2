import unittest

import pytest

from scopebind import ContainerInstance, ContainerRegistry, Handler, ResetStrategy


class DepA: ...


class TestHandlerRegistry(unittest.TestCase):
    root: ContainerInstance

    def setUp(self):
        self.registry = ContainerRegistry()
        self.root = self.registry.default_container

    def test_handler_requires_exactly_one_of_property_name_and_index(self):
        with pytest.raises(ValueError):  # noqa: PT011
            Handler(DepA, lambda c: None)
        with pytest.raises(ValueError):  # noqa: PT011
            Handler(DepA, lambda c: None, property_name="dep", index=0)

    def test_register_handler_only_touches_own_list(self):
        child = self.root.create_child("child")
        handler = Handler(DepA, lambda c: None, property_name="dep")

        child.register_handler(handler)

        assert child.get_all_handlers() == [handler]
        assert self.root.get_all_handlers() == []

    def test_all_handlers_lists_local_handlers_before_ancestors(self):
        child = self.root.create_child("child")
        grandchild = child.create_child("grandchild")
        root_handler = Handler(DepA, lambda c: "root", property_name="a")
        child_handler = Handler(DepA, lambda c: "child", property_name="b")
        local_handler = Handler(DepA, lambda c: "local", property_name="c")

        self.root.register_handler(root_handler)
        child.register_handler(child_handler)
        grandchild.register_handler(local_handler)

        assert grandchild.get_all_handlers() == [local_handler, child_handler, root_handler]

    def test_handler_on_unrelated_container_is_never_applied(self):
        class Consumer: ...

        x = self.root.create_child("x")
        y = self.root.create_child("y")
        x.register_handler(Handler(Consumer, lambda c: c.get(DepA), property_name="dep"))
        y.set(DepA).set(Consumer)

        assert not hasattr(y.get(Consumer), "dep")

    def test_child_inherits_parent_handlers(self):
        class Consumer: ...

        child = self.root.create_child("child")
        self.root.register_handler(Handler(Consumer, lambda c: c.get(DepA), property_name="dep"))
        child.set(DepA).set(Consumer)

        consumer = child.get(Consumer)
        assert consumer.dep is child.get(DepA)

    def test_resolver_receives_the_requesting_container(self):
        class Consumer: ...

        child = self.root.create_child("child")
        self.root.register_handler(Handler(Consumer, lambda c: c.id, property_name="resolved_in"))
        child.set(Consumer)

        assert child.get(Consumer).resolved_in == "child"

    def test_most_local_handler_wins_for_the_same_property(self):
        class Consumer: ...

        child = self.root.create_child("child")
        self.root.register_handler(Handler(Consumer, lambda c: "root", property_name="origin"))
        child.register_handler(Handler(Consumer, lambda c: "child", property_name="origin"))
        child.set(Consumer)

        assert child.get(Consumer).origin == "child"

    def test_index_handler_supplies_constructor_argument(self):
        class Consumer:
            def __init__(self, dep: DepA):
                self.dep = dep

        sentinel = object()
        self.root.register_handler(Handler(Consumer, lambda c: sentinel, index=0))
        self.root.set(Consumer)

        assert self.root.get(Consumer).dep is sentinel

    def test_find_handler_prefers_most_derived_class(self):
        class Base:
            def __init__(self, dep):
                self.dep = dep

        class Derived(Base): ...

        base_handler = Handler(Base, lambda c: "base", index=0)
        derived_handler = Handler(Derived, lambda c: "derived", index=0)
        self.root.register_handler(base_handler)

        assert self.root.find_handler(Derived, 0) is base_handler
        assert self.root.find_handler(Derived, 1) is None

        self.root.register_handler(derived_handler)
        assert self.root.find_handler(Derived, 0) is derived_handler
        assert self.root.find_handler(Base, 0) is base_handler

    def test_base_class_constructor_handler_applies_to_subclass(self):
        class Base:
            def __init__(self, dep):
                self.dep = dep

        class Derived(Base): ...

        self.root.register_handler(Handler(Base, lambda c: "injected", index=0))
        self.root.set(Derived)

        assert self.root.get(Derived).dep == "injected"

    def test_base_class_property_handler_applies_to_subclass(self):
        class Parent: ...

        class Child(Parent): ...

        class GrandChild(Child): ...

        self.root.register_handler(Handler(Parent, lambda c: c.get(DepA), property_name="dep"))
        self.root.set(DepA).set(GrandChild)

        assert self.root.get(GrandChild).dep is self.root.get(DepA)

    def test_property_handlers_are_not_applied_to_factory_results(self):
        class Consumer: ...

        self.root.register_handler(Handler(Consumer, lambda c: "x", property_name="dep"))
        self.root.set(Consumer, factory=lambda c, _: Consumer())

        assert not hasattr(self.root.get(Consumer), "dep")


class TestHandlerReset(unittest.TestCase):
    root: ContainerInstance

    def setUp(self):
        self.registry = ContainerRegistry()
        self.root = self.registry.default_container
        self.apply_count = 0

    def _count_and_get(self, container):
        self.apply_count += 1
        return container.get(DepA)

    def test_reset_services_clears_handlers(self):
        class Consumer: ...

        self.root.set(DepA).set(Consumer)
        self.root.register_handler(Handler(Consumer, self._count_and_get, property_name="dep"))

        self.root.get(Consumer)
        assert self.apply_count == 1

        self.root.reset(ResetStrategy.RESET_SERVICES)
        self.root.set(DepA).set(Consumer)

        self.apply_count = 0
        fresh = self.root.get(Consumer)
        assert self.apply_count == 0
        assert not hasattr(fresh, "dep")
        assert self.root.get_all_handlers() == []

    def test_reset_value_keeps_handlers(self):
        class Consumer: ...

        self.root.set(DepA).set(Consumer)
        self.root.register_handler(Handler(Consumer, self._count_and_get, property_name="dep"))

        self.root.get(Consumer)
        self.root.reset(ResetStrategy.RESET_VALUE)

        self.apply_count = 0
        assert isinstance(self.root.get(Consumer).dep, DepA)
        assert self.apply_count == 1

    def test_reset_services_leaves_other_containers_handlers(self):
        child = self.root.create_child("child")
        handler = Handler(DepA, lambda c: None, property_name="dep")
        child.register_handler(handler)

        self.root.reset(ResetStrategy.RESET_SERVICES)

        assert child.get_all_handlers() == [handler]
