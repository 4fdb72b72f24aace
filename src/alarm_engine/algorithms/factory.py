"""Algorithm creation from config."""

from __future__ import annotations

from ..config import AlgorithmConfig
from ..exceptions import ConfigError
from .base import AlarmAlgorithm
from .boolean import BooleanAlgorithm
from .out_of_range import OutOfRangeAlgorithm
from .stale import StaleAlgorithm

_ALGORITHMS: dict[str, type[AlarmAlgorithm]] = {
    BooleanAlgorithm.type_name: BooleanAlgorithm,
    OutOfRangeAlgorithm.type_name: OutOfRangeAlgorithm,
    StaleAlgorithm.type_name: StaleAlgorithm,
}


def create_algorithm(config: AlgorithmConfig) -> AlarmAlgorithm:
    """Create an algorithm instance keyed by ``config.type``."""
    tag = config.type.strip().lower().replace("-", "_")
    cls = _ALGORITHMS.get(tag)
    if cls is None:
        supported = ", ".join(sorted(_ALGORITHMS))
        raise ConfigError(f"Unknown algorithm type: {config.type!r}. Supported: {supported}")
    if config.alarm_type.is_normal:
        raise ConfigError("Algorithm alarm_type must be a non-normal state")
    return cls(config)
