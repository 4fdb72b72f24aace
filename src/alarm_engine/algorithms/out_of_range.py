"""Out-of-range algorithm: alarms when a numeric input leaves [min, max]."""

from __future__ import annotations

from typing import Any

from ..models import AlarmState
from .base import AlarmAlgorithm


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OutOfRangeAlgorithm(AlarmAlgorithm):
    """Either bound may be omitted; non-numeric input is a FAULT."""

    type_name = "out_of_range"

    def _evaluate(self, value: Any) -> AlarmState:
        number = _as_number(value)
        if number is None:
            return AlarmState.FAULT
        low, high = self.config.min_value, self.config.max_value
        if low is not None and number < low:
            return self.alarm_type
        if high is not None and number > high:
            return self.alarm_type
        return AlarmState.NORMAL

    def _describe(self, value: Any) -> str:
        number = _as_number(value)
        if number is None:
            return f"Not a number: {value!r}"
        low, high = self.config.min_value, self.config.max_value
        if low is not None and number < low:
            return f"{number:g} is below {low:g}"
        if high is not None and number > high:
            return f"{number:g} is above {high:g}"
        return f"{number:g} is in range"
