from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from callsift_agent.utilities.logger_manager import (
    LoggerConfig,
    LoggerManager,
    MetricType,
    StructuredFormatter,
    _ContextFilter,
)


def _record(message: str = "hello", **extra: Any) -> logging.LogRecord:
    record = logging.LogRecord("callsift", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_counters_gauges_and_histograms(logger_manager: LoggerManager) -> None:
    logger_manager.log_metric("cache.hits", 1)
    logger_manager.log_metric("cache.hits", 2)
    logger_manager.log_metric("quality", 80.0, MetricType.GAUGE)
    logger_manager.log_metric("quality", 65.0, MetricType.GAUGE)
    logger_manager.log_metric("latency", 0.2, MetricType.HISTOGRAM, {"agent": "x"})

    metrics = logger_manager.get_metrics()
    assert metrics["cache.hits"]["value"] == 3
    assert metrics["quality"]["value"] == 65.0
    assert metrics["latency"]["histogram"] == {"le_0.25": 1}
    assert metrics["latency"]["tags"] == {"agent": "x"}

    logger_manager.reset_metrics()
    assert logger_manager.get_metrics() == {}
    assert logger_manager.metric_value("cache.hits") == 0


def test_disabled_telemetry_records_nothing() -> None:
    manager = LoggerManager(LoggerConfig(telemetry_enabled=False))
    manager.log_metric("cache.hits", 1)
    assert manager.get_metrics() == {}


def test_export_callback_failures_are_contained() -> None:
    exported: list[dict[str, Any]] = []

    def failing(snapshot: dict[str, Any]) -> None:
        exported.append(snapshot)
        raise RuntimeError("sink down")

    manager = LoggerManager(LoggerConfig(metric_export_callback=failing))
    manager.log_metric("recovery.errors", 1)
    assert exported[0]["name"] == "recovery.errors"
    assert manager.metric_value("recovery.errors") == 1


def test_context_is_stamped_on_records(logger_manager: LoggerManager) -> None:
    context_filter = _ContextFilter()
    with logger_manager.context(call_id="call-9"):
        with logger_manager.get_logger().context(agent="summary"):
            record = _record(context={"attempt": 2})
            assert context_filter.filter(record)
    assert record.context == {"call_id": "call-9", "agent": "summary", "attempt": 2}

    outside = _record()
    context_filter.filter(outside)
    assert not hasattr(outside, "context")


def test_structured_formatter_emits_json() -> None:
    record = _record("pipeline finished", context={"call_id": "c1"})
    payload = json.loads(StructuredFormatter().format(record))
    assert payload["message"] == "pipeline finished"
    assert payload["context"] == {"call_id": "c1"}
    assert payload["level"] == "INFO"


def test_export_metrics_to_file(logger_manager: LoggerManager, tmp_path: Path) -> None:
    logger_manager.log_metric("agent.executions", 4)
    target = tmp_path / "metrics.json"
    logger_manager.export_metrics_to_file(target)
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["agent.executions"]["value"] == 4


def test_later_managers_reuse_the_named_logger_unchanged() -> None:
    first = LoggerManager("callsift.shared", LoggerConfig(log_level="DEBUG"))
    handlers = list(first.get_logger().logger.handlers)

    second = LoggerManager(
        "callsift.shared", LoggerConfig(log_level="ERROR", structured_logging=True)
    )

    logger = second.get_logger().logger
    assert logger is first.get_logger().logger
    assert logger.level == logging.DEBUG
    assert logger.handlers == handlers

    second.log_metric("only.second", 1)
    assert first.metric_value("only.second") == 0


def test_distinct_names_are_configured_separately() -> None:
    quiet = LoggerManager("callsift.quiet", LoggerConfig(log_level="ERROR"))
    verbose = LoggerManager("callsift.verbose", LoggerConfig(log_level="DEBUG"))
    assert quiet.get_logger().logger.level == logging.ERROR
    assert verbose.get_logger().logger.level == logging.DEBUG
