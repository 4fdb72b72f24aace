"""Stale algorithm: alarms when the input stops changing.

The timer restarts on every distinct value. Housekeeping re-evaluates the
last input, which is how a source that goes quiet eventually alarms.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from ..config import AlgorithmConfig
from ..models import AlarmState
from .base import AlarmAlgorithm

_UNSET = object()


class StaleAlgorithm(AlarmAlgorithm):
    type_name = "stale"

    def __init__(
        self,
        config: AlgorithmConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config)
        self._clock = clock
        self._value: Any = _UNSET
        self._changed_at = clock()

    @property
    def time_based(self) -> bool:
        return True

    def _evaluate(self, value: Any) -> AlarmState:
        now = self._clock()
        if self._value is _UNSET or value != self._value:
            self._value = value
            self._changed_at = now
        if now - self._changed_at >= self.config.stale_seconds:
            return self.alarm_type
        return AlarmState.NORMAL

    def _describe(self, value: Any) -> str:
        return f"No change for {self.config.stale_seconds:g}s (last value {value!r})"
