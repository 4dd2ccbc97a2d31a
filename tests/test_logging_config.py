"""Tests for structured logging and metering context."""

import io
import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from clustermeter.exceptions import LedgerValidationError
from clustermeter.logging_config.config import LogFormat, LoggingConfig, LogLevel
from clustermeter.logging_config.context import (
    MeteringContext,
    generate_run_id,
    get_context_dict,
    get_run_id,
)
from clustermeter.logging_config.performance import PerformanceTimer, log_performance
from clustermeter.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
)
from clustermeter.resources.ledger import (
    AppCost,
    BillingLedger,
    Payment,
    create_consumption_billing,
)
from clustermeter.resources.records import Monitor, meter_monitor
from clustermeter.resources.registry import DEFAULT_REGISTRY
from clustermeter.resources.repository import save_billing, settle_billing

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def _record(msg="test", level=logging.INFO, name="test", lineno=1, exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


def _billing(order_id="ord-1"):
    return create_consumption_billing(
        namespace="ns-alice", owner="alice",
        app_costs=[AppCost.compute("web", {0: 1000, 1: 500}, DEFAULT_REGISTRY)],
        payment=Payment(method="balance", user_id="user-1"),
        time=T0, order_id=order_id,
    )


@pytest.fixture
def json_lines():
    """JSON log lines from the clustermeter loggers, formatted as they are emitted."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter(include_caller=False))
    logger = logging.getLogger("clustermeter")
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines()]
    logger.removeHandler(handler)
    logger.setLevel(previous)


class TestLoggingConfig:
    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.slow_threshold_ms == 1000.0
        assert config.service_name == "clustermeter"


class TestMeteringContext:
    def test_auto_generates_run_id(self):
        with MeteringContext() as ctx:
            assert ctx.run_id != ""
            assert get_run_id() == ctx.run_id
        assert get_run_id() == ""

    def test_run_ids_unique(self):
        assert len({generate_run_id() for _ in range(50)}) == 50

    def test_context_dict(self):
        with MeteringContext(run_id="r1", category="ns-a", order_id="ord-1"):
            assert get_context_dict() == {"run_id": "r1", "category": "ns-a", "order_id": "ord-1"}
        assert get_context_dict() == {}

    def test_inner_context_inherits_empty_fields(self):
        with MeteringContext(run_id="run-1", category="ns-a") as outer:
            outer.bind(source="cron")
            with MeteringContext(order_id="ord-9") as inner:
                assert inner.run_id == "run-1"
                assert get_context_dict() == {
                    "run_id": "run-1", "category": "ns-a", "order_id": "ord-9", "source": "cron",
                }
            assert get_context_dict() == {"run_id": "run-1", "category": "ns-a", "source": "cron"}
        assert get_context_dict() == {}

    def test_restored_after_exception(self):
        with pytest.raises(ValueError):
            with MeteringContext(order_id="ord-1"):
                raise ValueError("boom")
        assert get_context_dict() == {}


class TestContextInBillingPaths:
    def test_ledger_settle_logs_order_and_category(self, json_lines):
        ledger = BillingLedger()
        with MeteringContext(run_id="run-7", category="ns-alice"):
            ledger.record(_billing())
            ledger.settle("ord-1")
            ledger.settle("ord-1")
        lines = json_lines()
        settled = next(l for l in lines if l["message"] == "Billing ord-1 settled")
        assert settled["order_id"] == "ord-1"
        assert settled["category"] == "ns-alice"
        assert settled["run_id"] == "run-7"
        assert settled["amount"] == 83500
        duplicate = next(l for l in lines if "already settled" in l["message"])
        assert duplicate["level"] == "WARNING"
        assert duplicate["order_id"] == "ord-1"

    def test_ledger_unsettled_rewrite_logs_order(self, json_lines):
        ledger = BillingLedger()
        ledger.record(_billing())
        ledger.settle("ord-1")
        ledger.record(_billing())
        warning = next(l for l in json_lines() if "Ignoring unsettled rewrite" in l["message"])
        assert warning["order_id"] == "ord-1"
        assert warning["category"] == "ns-alice"

    def test_repository_paths_log_order(self, json_lines, session):
        save_billing(session, _billing("ord-db"))
        settle_billing(session, "ord-db")
        with pytest.raises(LedgerValidationError):
            settle_billing(session, "missing")
        lines = json_lines()
        stored = next(l for l in lines if l["message"] == "Billing ord-db stored")
        assert stored["category"] == "ns-alice"
        settled = next(l for l in lines if l["message"] == "Billing ord-db settled")
        assert settled["order_id"] == "ord-db"
        assert get_context_dict() == {}

    def test_meter_monitor_logs_category(self, json_lines):
        monitor = Monitor(time=T0, category="ns-bob", name="db", property="app", used={0: 10})
        meter_monitor(monitor, DEFAULT_REGISTRY)
        (line,) = [l for l in json_lines() if l["message"].startswith("Metered db")]
        assert line["category"] == "ns-bob"
        assert line["amount"] == 670
        assert "run_id" in line


class TestFormatters:
    def test_structured_fields(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world", lineno=42)))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["service"] == "clustermeter"
        assert parsed["line"] == 42

    def test_structured_without_caller(self):
        parsed = json.loads(StructuredFormatter(include_caller=False).format(_record()))
        assert "line" not in parsed

    def test_structured_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            parsed = json.loads(StructuredFormatter().format(_record("failed", logging.ERROR, exc_info=sys.exc_info())))
        assert parsed["exception"]["type"] == "ValueError"

    def test_structured_extra_fields(self):
        record = _record()
        record.duration_ms = 42.5
        record.source = "defaults"
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["duration_ms"] == 42.5
        assert parsed["source"] == "defaults"

    def test_console_includes_context(self):
        with MeteringContext(run_id="abc", category="ns-a"):
            output = ConsoleFormatter().format(_record("warn", logging.WARNING))
        assert "run_id=abc" in output
        assert "category=ns-a" in output
        assert "\033[33m" in output


class TestConfigureLogging:
    def test_json_format(self):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_quiets_sqlalchemy(self):
        configure_logging()
        assert logging.getLogger("sqlalchemy.engine").level >= logging.WARNING

    def test_env_var_override_level(self, monkeypatch):
        monkeypatch.setenv("CLUSTERMETER_LOG_LEVEL", "debug")
        configure_logging(LoggingConfig(level=LogLevel.ERROR))
        assert logging.getLogger().level == logging.DEBUG

    def test_env_var_override_format(self, monkeypatch):
        monkeypatch.setenv("CLUSTERMETER_LOG_FORMAT", "CONSOLE")
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)


class TestPerformanceLogging:
    def test_log_performance_reraises(self, caplog):
        @log_performance(threshold_ms=10000)
        def failing_func():
            raise ValueError("test error")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ValueError, match="test error"):
                failing_func()
        assert any("failing_func failed" in r.getMessage() for r in caplog.records)

    def test_slow_call_logs_warning(self, caplog):
        @log_performance(threshold_ms=0)
        def slow_func():
            return 42

        with caplog.at_level(logging.WARNING):
            assert slow_func() == 42
        assert any("Slow operation" in r.getMessage() for r in caplog.records)

    def test_performance_timer(self):
        with PerformanceTimer("meter namespace", threshold_ms=10000) as timer:
            pass
        assert 0 <= timer.duration_ms < 10000
