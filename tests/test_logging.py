"""
Tests for structured logging.
"""
import io
import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import structlog
from pythonjsonlogger.json import JsonFormatter

from emi_ledger.core.payment_processor import PaymentState
from emi_ledger.monitoring.logging import json_default, setup_logging


@pytest.fixture
def log_stream():
    """Configure logging and capture rendered lines in a buffer."""
    setup_logging()
    root_logger = logging.getLogger()
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(root_logger.handlers[0].formatter)
    root_logger.addHandler(handler)
    logging.getLogger("emi_ledger.tests").setLevel(logging.DEBUG)
    yield stream
    root_logger.removeHandler(handler)


def rendered_lines(stream: io.StringIO) -> list:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestStructuredLogging:
    """Test suite for the JSON log pipeline."""

    @pytest.mark.unit
    def test_root_handler_renders_json(self) -> None:
        """Test every root record goes through the JSON formatter."""
        setup_logging()

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @pytest.mark.unit
    def test_money_fields_keep_two_decimals(self, log_stream: io.StringIO) -> None:
        """Test a Decimal due is logged as its exact string, not a float."""
        structlog.get_logger("emi_ledger.tests").info(
            "payment_state_changed",
            state=PaymentState.COMMITTED.value,
            previous_due=Decimal("100.00"),
            new_due=Decimal("40.00"),
        )

        line = [r for r in rendered_lines(log_stream) if r["event"] == "payment_state_changed"][-1]
        assert line["new_due"] == "40.00"
        assert line["previous_due"] == "100.00"
        assert line["state"] == "committed"
        assert line["level"] == "INFO"
        assert line["logger"] == "emi_ledger.tests"
        assert "timestamp" in line

    @pytest.mark.unit
    def test_events_carry_service_context(self, log_stream: io.StringIO) -> None:
        """Test the service name and environment are stamped on each event."""
        structlog.get_logger("emi_ledger.tests").warning("lock_wait_slow", waited_seconds=1.5)

        line = [r for r in rendered_lines(log_stream) if r["event"] == "lock_wait_slow"][-1]
        assert line["service"]
        assert line["env"]
        assert line["waited_seconds"] == 1.5

    @pytest.mark.unit
    def test_stdlib_records_share_the_format(self, log_stream: io.StringIO) -> None:
        """Test third-party stdlib logging is rendered as JSON too."""
        logging.getLogger("emi_ledger.tests").info("plain stdlib message")

        line = [r for r in rendered_lines(log_stream) if r["event"] == "plain stdlib message"][-1]
        assert line["level"] == "INFO"

    @pytest.mark.unit
    def test_json_default(self) -> None:
        """Test the fallback encoder for non-JSON types."""
        assert json_default(Decimal("0.10")) == "0.10"
        assert json_default(date(2024, 1, 15)) == "2024-01-15"
        assert json_default(datetime(2025, 1, 6, 10, tzinfo=timezone.utc)) == "2025-01-06T10:00:00+00:00"
        assert json_default(PaymentState.REJECTED) == "rejected"
