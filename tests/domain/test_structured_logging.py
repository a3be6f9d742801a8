"""Tests for the structured logging system (authorization_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from authorization_kernel.exceptions import UnitsExceededError
from authorization_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    get_logger,
)


@pytest.fixture
def stream():
    """Attach a JSON handler to the kernel root logger for one test."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("authorization_kernel")
    root.addHandler(handler)
    yield buffer
    root.removeHandler(handler)


def _parse_all(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self, stream):
        get_logger("test").info("hello")
        record = _parse_all(stream)[0]
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "authorization_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self, stream):
        auth_id = uuid4()
        get_logger("test").info(
            "utilization_adjusted", extra={"authorization_id": auth_id, "units": 4}
        )
        record = _parse_all(stream)[0]
        assert record["authorization_id"] == str(auth_id)
        assert record["units"] == 4

    def test_exception_fields(self, stream):
        try:
            raise UnitsExceededError("a-1", used_units=95, requested_units=10, authorized_units=100)
        except UnitsExceededError:
            get_logger("test").exception("rejected")

        record = _parse_all(stream)[0]
        assert record["exc_type"] == "UnitsExceededError"
        assert record["exc_code"] == "authorization.units.exceeded"
        assert record["exc_used_units"] == 95
        assert "traceback" in record


class TestLogContext:
    def test_bound_fields_appear_and_reset(self, stream):
        correlation = uuid4()
        logger = get_logger("test")
        with LogContext.bind(correlation_id=correlation, client_id=None):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all(stream)
        assert inside["correlation_id"] == str(correlation)
        assert "client_id" not in inside
        assert "correlation_id" not in outside

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(actor_id="outer"):
            with LogContext.bind(actor_id="inner"):
                assert LogContext.get_all()["actor_id"] == "inner"
            assert LogContext.get_all()["actor_id"] == "outer"
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="trace_id"):
            LogContext.set(trace_id="x")
