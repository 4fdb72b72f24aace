"""Tests for alarm detection algorithms."""

import pytest

from alarm_engine.algorithms import (
    BooleanAlgorithm,
    OutOfRangeAlgorithm,
    StaleAlgorithm,
    create_algorithm,
)
from alarm_engine.config import AlgorithmConfig
from alarm_engine.exceptions import ConfigError
from alarm_engine.models import AlarmState


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestBooleanAlgorithm:
    def test_alarms_on_true_by_default(self):
        algo = BooleanAlgorithm()
        assert algo.evaluate(True) is AlarmState.ALARM
        assert algo.evaluate(False) is AlarmState.NORMAL
        assert algo.last_state is AlarmState.NORMAL

    def test_alarm_value_false(self):
        algo = BooleanAlgorithm(
            AlgorithmConfig(alarm_value=False, alarm_type=AlarmState.ALERT)
        )
        assert algo.evaluate("false") is AlarmState.ALERT
        assert algo.evaluate("on") is AlarmState.NORMAL

    def test_unparseable_is_fault(self):
        assert BooleanAlgorithm().evaluate("banana") is AlarmState.FAULT

    def test_custom_message(self):
        algo = BooleanAlgorithm(AlgorithmConfig(message="Door open"))
        assert algo.message_for(True) == "Door open"


class TestOutOfRangeAlgorithm:
    def _algo(self, low=0.0, high=100.0):
        return OutOfRangeAlgorithm(
            AlgorithmConfig(type="out_of_range", min_value=low, max_value=high)
        )

    def test_in_range(self):
        assert self._algo().evaluate(50) is AlarmState.NORMAL
        assert self._algo().evaluate(100) is AlarmState.NORMAL

    def test_out_of_range(self):
        algo = self._algo()
        assert algo.evaluate(-1) is AlarmState.ALARM
        assert algo.evaluate("101.5") is AlarmState.ALARM
        assert "above" in algo.message_for(101.5)
        assert "below" in algo.message_for(-3)

    def test_open_ended(self):
        algo = self._algo(low=None, high=10.0)
        assert algo.evaluate(-1e9) is AlarmState.NORMAL
        assert algo.evaluate(11) is AlarmState.ALARM

    def test_non_numeric_is_fault(self):
        algo = self._algo()
        assert algo.evaluate("n/a") is AlarmState.FAULT
        assert algo.evaluate(None) is AlarmState.FAULT
        assert algo.evaluate(True) is AlarmState.FAULT


class TestStaleAlgorithm:
    def test_alarms_after_no_change(self):
        clock = _Clock()
        algo = StaleAlgorithm(AlgorithmConfig(type="stale", stale_seconds=30), clock)
        assert algo.time_based
        assert algo.evaluate(5) is AlarmState.NORMAL
        clock.now += 29
        assert algo.evaluate(5) is AlarmState.NORMAL
        clock.now += 1
        assert algo.evaluate(5) is AlarmState.ALARM

    def test_change_resets_timer(self):
        clock = _Clock()
        algo = StaleAlgorithm(AlgorithmConfig(type="stale", stale_seconds=10), clock)
        algo.evaluate("a")
        clock.now += 15
        assert algo.evaluate("b") is AlarmState.NORMAL
        clock.now += 10
        assert algo.evaluate("b") is AlarmState.ALARM


class TestCreateAlgorithm:
    @pytest.mark.parametrize(
        "tag, cls",
        [
            ("boolean", BooleanAlgorithm),
            ("out_of_range", OutOfRangeAlgorithm),
            ("Out-Of-Range", OutOfRangeAlgorithm),
            ("stale", StaleAlgorithm),
        ],
    )
    def test_known_tags(self, tag, cls):
        assert isinstance(create_algorithm(AlgorithmConfig(type=tag)), cls)

    def test_unknown_tag(self):
        with pytest.raises(ConfigError, match="Unknown algorithm type"):
            create_algorithm(AlgorithmConfig(type="fuzzy"))

    def test_normal_alarm_type_rejected(self):
        with pytest.raises(ConfigError):
            create_algorithm(AlgorithmConfig(alarm_type=AlarmState.NORMAL))
