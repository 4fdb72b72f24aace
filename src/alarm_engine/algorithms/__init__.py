"""Alarm detection algorithms — boolean, out-of-range and stale."""

from .base import AlarmAlgorithm
from .boolean import BooleanAlgorithm
from .factory import create_algorithm
from .out_of_range import OutOfRangeAlgorithm
from .stale import StaleAlgorithm

__all__ = [
    "AlarmAlgorithm",
    "BooleanAlgorithm",
    "OutOfRangeAlgorithm",
    "StaleAlgorithm",
    "create_algorithm",
]
