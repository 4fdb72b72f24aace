"""Boolean algorithm: alarms when the input equals a configured value."""

from __future__ import annotations

from typing import Any

from ..models import AlarmState
from .base import AlarmAlgorithm

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return None


class BooleanAlgorithm(AlarmAlgorithm):
    type_name = "boolean"

    def _evaluate(self, value: Any) -> AlarmState:
        flag = _as_bool(value)
        if flag is None:
            return AlarmState.FAULT
        if flag == self.config.alarm_value:
            return self.alarm_type
        return AlarmState.NORMAL

    def _describe(self, value: Any) -> str:
        if _as_bool(value) is None:
            return f"Not a boolean: {value!r}"
        return f"Value is {str(self.config.alarm_value).lower()}"
