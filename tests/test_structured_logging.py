"""Tests for JSON log output and context propagation (funding_kernel/logging_config.py)."""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from funding_kernel.domain.types import ContractStatus
from funding_kernel.exceptions import InsufficientBalanceError
from funding_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def log_stream():
    """Configure logging into a StringIO and return a reader of parsed lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler, level=logging.DEBUG)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _records


class TestStructuredFormatter:
    def test_base_fields(self, log_stream):
        get_logger("ledger").info("transaction_posted")
        (record,) = log_stream()
        assert record["level"] == "INFO"
        assert record["message"] == "transaction_posted"
        assert record["logger"] == "funding_kernel.ledger"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_extras_are_serialised(self, log_stream):
        contract_id = uuid4()
        get_logger("ledger").info(
            "balance_changed",
            extra={
                "contract_id_extra": contract_id,
                "new_balance": Decimal("700.00"),
                "occurred_at": date(2026, 2, 1),
                "status": ContractStatus.ACTIVE,
            },
        )
        (record,) = log_stream()
        assert record["contract_id_extra"] == str(contract_id)
        assert record["new_balance"] == "700.00"
        assert record["occurred_at"] == "2026-02-01"
        assert record["status"] == "Active"

    def test_dataclass_extra(self, log_stream):
        @dataclass(frozen=True)
        class Totals:
            posted: int
            voided: int

        get_logger("bulk").info("bulk_done", extra={"totals": Totals(3, 1)})
        assert log_stream()[0]["totals"] == {"posted": 3, "voided": 1}

    def test_context_fields(self, log_stream):
        LogContext.set(contract_id="c-1", actor_id="user:7")
        get_logger("ledger").info("context_check")
        record = log_stream()[0]
        assert record["contract_id"] == "c-1"
        assert record["actor_id"] == "user:7"
        assert "transaction_id" not in record

    def test_ledger_error_fields(self, log_stream):
        try:
            raise InsufficientBalanceError("c-9", Decimal("800.00"), Decimal("700.00"))
        except InsufficientBalanceError:
            get_logger("ledger").error("post_rejected", exc_info=True)

        record = log_stream()[0]
        assert record["exc_type"] == "InsufficientBalanceError"
        assert record["exc_code"] == "INSUFFICIENT_BALANCE"
        assert record["exc_contract_id"] == "c-9"
        assert record["exc_shortfall"] == "100.00"
        assert record["exc_message"] == "Insufficient balance. Would exceed by $100.00"
        assert "Traceback" in record["traceback"]

    def test_plain_exception(self, log_stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("scheduler").exception("runner_crashed")
        record = log_stream()[0]
        assert record["exc_type"] == "ValueError"
        assert "exc_code" not in record

    def test_one_json_object_per_line(self, log_stream):
        logger = get_logger("x")
        logger.debug("one")
        logger.warning("two", extra={"k": "v"})
        logger.error("three")
        assert [r["level"] for r in log_stream()] == ["DEBUG", "WARNING", "ERROR"]


class TestLogContext:
    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(tenant="acme")

    def test_none_does_not_overwrite(self):
        LogContext.set(actor_id="user:1")
        LogContext.set(actor_id=None, run_id="r-1")
        assert LogContext.get_all() == {"actor_id": "user:1", "run_id": "r-1"}

    def test_bind_nests_and_restores(self):
        LogContext.set(automation_id="outer")
        with LogContext.bind(automation_id="inner", transaction_id=uuid4()):
            assert LogContext.get_all()["automation_id"] == "inner"
            assert "transaction_id" in LogContext.get_all()
        assert LogContext.get_all() == {"automation_id": "outer"}

    def test_bind_skips_none(self):
        with LogContext.bind(contract_id=None, actor_id="system:scheduler"):
            assert LogContext.get_all() == {"actor_id": "system:scheduler"}
        assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(correlation_id="req-1", contract_id="c-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_second_call_is_noop(self):
        configure_logging(stream=StringIO())
        configure_logging(stream=StringIO())
        assert len(logging.getLogger("funding_kernel").handlers) == 1

    def test_level_filters(self):
        stream = StringIO()
        configure_logging(stream=stream, level="WARNING")
        get_logger("ledger").info("hidden")
        get_logger("ledger").warning("shown")
        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [r["message"] for r in lines] == ["shown"]

    def test_does_not_propagate_to_root(self):
        configure_logging(stream=StringIO())
        assert logging.getLogger("funding_kernel").propagate is False

    def test_reset_removes_handlers(self):
        configure_logging(stream=StringIO())
        reset_logging()
        assert logging.getLogger("funding_kernel").handlers == []
