"""Tests for reprocache.core.errors — typed error hierarchy."""

from __future__ import annotations

import pytest

from reprocache.core.errors import (
    ConfigError,
    CycleError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    MalformedUnitError,
    ReproError,
    StorageError,
    is_retryable,
)


class TestReproError:
    def test_defaults(self):
        err = ReproError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        cause = OSError("disk")
        err = StorageError("write failed", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "disk"

    def test_with_context_known_and_extra_keys(self):
        err = StorageError("x").with_context(fingerprint="ab12", attempts=3)
        assert err.context.fingerprint == "ab12"
        assert err.context.metadata == {"attempts": 3}

    def test_to_dict(self):
        err = ExecutionError("fit", "ValueError: bad")
        data = err.to_dict()
        assert data["error_type"] == "ExecutionError"
        assert data["category"] == "EXECUTION"
        assert data["context"] == {"unit_id": "fit"}

    def test_repr(self):
        assert "ConfigError" in repr(ConfigError("bad"))


class TestSubclasses:
    @pytest.mark.parametrize(
        "err, category",
        [
            (MalformedUnitError("a", "bad"), ErrorCategory.VALIDATION),
            (CycleError(["a", "b", "a"]), ErrorCategory.VALIDATION),
            (ExecutionError("a", "bad"), ErrorCategory.EXECUTION),
            (StorageError("bad"), ErrorCategory.STORAGE),
            (ConfigError("bad"), ErrorCategory.CONFIG),
        ],
    )
    def test_categories(self, err, category):
        assert isinstance(err, ReproError)
        assert err.category == category

    def test_malformed_unit_message(self):
        err = MalformedUnitError("fit", "duplicate unit id")
        assert err.unit_id == "fit"
        assert err.message == "Unit 'fit': duplicate unit id"

    def test_cycle_message(self):
        err = CycleError(["a", "b", "a"])
        assert err.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in err.message

    def test_execution_error_keeps_traceback(self):
        err = ExecutionError("fit", "boom", traceback="Traceback ...")
        assert err.traceback == "Traceback ..."


class TestIsRetryable:
    def test_flags(self):
        assert is_retryable(StorageError("x", retryable=True))
        assert not is_retryable(StorageError("x"))
        assert is_retryable(OSError("io"))
        assert not is_retryable(ValueError("v"))


def test_error_context_omits_empty_fields():
    assert ErrorContext().to_dict() == {}
    assert ErrorContext(run_id="r1").to_dict() == {"run_id": "r1"}
