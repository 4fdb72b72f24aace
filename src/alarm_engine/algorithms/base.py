"""Alarm algorithm abstraction — every detection policy implements this interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..config import AlgorithmConfig
from ..models import AlarmState


class AlarmAlgorithm(ABC):
    """Maps the latest input of a watched source to a target AlarmState."""

    type_name = ""

    def __init__(self, config: AlgorithmConfig | None = None) -> None:
        self.config = config or AlgorithmConfig(type=self.type_name)
        self._last_state = AlarmState.NORMAL

    @property
    def alarm_type(self) -> AlarmState:
        """Severity raised when the condition holds."""
        return self.config.alarm_type

    @property
    def last_state(self) -> AlarmState:
        """Output of the most recent evaluation."""
        return self._last_state

    def evaluate(self, value: Any) -> AlarmState:
        self._last_state = self._evaluate(value)
        return self._last_state

    def restore(self, state: AlarmState) -> None:
        """Seed the last known output, e.g. from a persisted watch cache."""
        self._last_state = state

    def message_for(self, value: Any) -> str:
        if self.config.message:
            return self.config.message
        return self._describe(value)

    @abstractmethod
    def _evaluate(self, value: Any) -> AlarmState: ...

    def _describe(self, value: Any) -> str:
        return f"Value {value!r} raised {self.alarm_type.value}"

    @property
    def time_based(self) -> bool:
        """True when the output can change without a new input."""
        return False
