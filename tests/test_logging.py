"""Tests for the structured logging system (mfg_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from mfg_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from mfg_modules.manufacturing.models import MOStatus


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    """Parse all JSON log lines from a stream."""
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "mfg_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("mo_created", extra={"bom_entries": 3, "mo_number": "MO-2024-0001"})

        record = _parse_log(stream)
        assert record["bom_entries"] == 3
        assert record["mo_number"] == "MO-2024-0001"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(correlation_id="abc-123", actor_id="user-7")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["actor_id"] == "user-7"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_manufacturing_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from mfg_kernel.exceptions import InvalidTransitionError

        try:
            raise InvalidTransitionError("mo-1", "ready", "order is already at the final stage")
        except InvalidTransitionError:
            logger.error("advance_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_type"] == "InvalidTransitionError"
        assert record["exc_current_state"] == "ready"
        assert record["exc_entity_id"] == "mo-1"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "actor_id" not in record

    def test_uuid_decimal_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info(
            "typed_values",
            extra={"mo_id": uid, "total": Decimal("12.50"), "status": MOStatus.ON_HOLD},
        )

        record = _parse_log(stream)
        assert record["mo_id"] == str(uid)
        assert record["total"] == "12.50"
        assert record["status"] == "on-hold"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug record is dropped
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", entity_id="y")
        ctx = LogContext.get_all()
        assert ctx == {"correlation_id": "x", "entity_id": "y"}

    def test_unknown_fields_ignored(self):
        LogContext.set(correlation_id="x", po_number="PO-1")
        assert LogContext.get_all() == {"correlation_id": "x"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner"):
            assert LogContext.get_all()["operation"] == "inner"
        assert LogContext.get_all()["operation"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "batch_id" not in LogContext.get_all()
        with LogContext.bind(batch_id="bulk-1"):
            assert LogContext.get_all()["batch_id"] == "bulk-1"
        assert "batch_id" not in LogContext.get_all()

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            entity_id="e",
            operation="o",
            batch_id="b",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 5
        assert ctx["batch_id"] == "b"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        root = logging.getLogger("mfg_kernel")
        assert root.handlers.count(h1) == 1
        assert h2 not in root.handlers

    def test_get_logger_returns_child(self):
        logger = get_logger("modules.manufacturing.service")
        assert logger.name == "mfg_kernel.modules.manufacturing.service"

    def test_logger_hierarchy(self):
        """Child loggers inherit the mfg_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("deep.nested.module")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "mfg_kernel.deep.nested.module"
