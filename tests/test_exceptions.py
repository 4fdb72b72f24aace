"""Tests for custom exception hierarchy."""

import pytest

import alarm_engine
from alarm_engine.exceptions import (
    AlarmClassNotFoundError,
    AlarmEngineError,
    AlarmValidationError,
    ConfigError,
    NotFoundError,
    NotSteadyError,
    PreconditionError,
    RecordNotFoundError,
    StorageError,
)


class TestExceptionHierarchy:
    def test_base_exception(self):
        with pytest.raises(AlarmEngineError):
            raise AlarmEngineError("test")

    def test_validation_error_inherits(self):
        with pytest.raises(AlarmEngineError):
            raise AlarmValidationError("bad parameter")

    def test_not_found_errors_inherit(self):
        with pytest.raises(NotFoundError):
            raise RecordNotFoundError("no record")
        with pytest.raises(NotFoundError):
            raise AlarmClassNotFoundError("no class")
        with pytest.raises(AlarmEngineError):
            raise RecordNotFoundError("no record")

    def test_storage_error_inherits(self):
        with pytest.raises(AlarmEngineError):
            raise StorageError("disk full")

    def test_not_steady_is_precondition(self):
        with pytest.raises(PreconditionError):
            raise NotSteadyError("starting")
        with pytest.raises(AlarmEngineError):
            raise NotSteadyError("starting")

    def test_config_error_inherits(self):
        with pytest.raises(AlarmEngineError):
            raise ConfigError("bad config")

    def test_not_found_is_not_validation(self):
        assert not issubclass(RecordNotFoundError, AlarmValidationError)

    def test_catch_all_pattern(self):
        """Verify the catch-all pattern works for any subclass."""
        errors = [
            AlarmValidationError("a"),
            RecordNotFoundError("b"),
            AlarmClassNotFoundError("c"),
            StorageError("d"),
            NotSteadyError("e"),
            ConfigError("f"),
        ]
        for err in errors:
            with pytest.raises(AlarmEngineError):
                raise err


class TestPackageExports:
    def test_exceptions_exported(self):
        for name in alarm_engine.__all__:
            assert hasattr(alarm_engine, name)

    def test_version(self):
        assert alarm_engine.__version__
