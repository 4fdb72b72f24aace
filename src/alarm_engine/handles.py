"""Integer handle registry for fast reverse lookup of classes and watches.

Records store handles instead of object references. Handles are issued
from a monotonically increasing counter that is persisted with the config,
so a handle keeps pointing at the same object across restarts and is never
reused for a different one.
"""

from __future__ import annotations

import threading
from typing import Any

from .exceptions import AlarmValidationError


class HandleRegistry:
    def __init__(self, next_handle: int = 1) -> None:
        self._next = max(1, int(next_handle))
        self._objects: dict[int, Any] = {}
        self._lock = threading.Lock()

    @property
    def next_handle(self) -> int:
        """The handle the next ``register`` without a handle will issue."""
        with self._lock:
            return self._next

    def register(self, obj: Any, handle: int | None = None) -> int:
        """Register ``obj``, reusing ``handle`` when it is free."""
        with self._lock:
            if handle is None or handle in self._objects:
                handle = self._next
            self._objects[handle] = obj
            self._next = max(self._next, handle + 1)
            return handle

    def unregister(self, handle: int, obj: Any = None) -> None:
        """Free ``handle``. When ``obj`` is given it must own the handle."""
        with self._lock:
            current = self._objects.get(handle)
            if current is None or (obj is not None and current is not obj):
                raise AlarmValidationError(f"Invalid handle: {handle}")
            del self._objects[handle]

    def get(self, handle: int | None) -> Any:
        if handle is None:
            return None
        with self._lock:
            return self._objects.get(handle)

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)
