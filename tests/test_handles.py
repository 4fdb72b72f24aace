"""Tests for the handle registry."""

import pytest

from alarm_engine.exceptions import AlarmValidationError
from alarm_engine.handles import HandleRegistry


class TestHandleRegistry:
    def test_issues_increasing_handles(self):
        registry = HandleRegistry()
        a, b = object(), object()
        assert registry.register(a) == 1
        assert registry.register(b) == 2
        assert registry.get(1) is a
        assert registry.next_handle == 3

    def test_reuses_requested_handle(self):
        registry = HandleRegistry(next_handle=10)
        obj = object()
        assert registry.register(obj, 4) == 4
        assert registry.get(4) is obj
        assert registry.next_handle == 10

    def test_requested_handle_in_use_gets_new_one(self):
        registry = HandleRegistry()
        registry.register(object(), 1)
        assert registry.register(object(), 1) == 2

    def test_requested_handle_advances_counter(self):
        registry = HandleRegistry()
        registry.register(object(), 41)
        assert registry.next_handle == 42

    def test_unregister(self):
        registry = HandleRegistry()
        obj = object()
        handle = registry.register(obj)
        registry.unregister(handle, obj)
        assert registry.get(handle) is None
        assert len(registry) == 0

    def test_unregister_wrong_owner(self):
        registry = HandleRegistry()
        handle = registry.register(object())
        with pytest.raises(AlarmValidationError, match="Invalid handle"):
            registry.unregister(handle, object())

    def test_unregister_unknown(self):
        with pytest.raises(AlarmValidationError, match="Invalid handle"):
            HandleRegistry().unregister(99)

    def test_handles_not_reused_after_unregister(self):
        registry = HandleRegistry()
        handle = registry.register(object())
        registry.unregister(handle)
        assert registry.register(object()) != handle

    def test_clear_keeps_counter(self):
        registry = HandleRegistry()
        registry.register(object())
        registry.clear()
        assert registry.get(1) is None
        assert registry.next_handle == 2

    def test_get_none(self):
        assert HandleRegistry().get(None) is None
