"""Logger manager with colored console output, JSON records, and in-memory metrics.

Every reliability service logs through a `CustomLogger` obtained from a
`LoggerManager`. The manager also keeps counters, gauges and histograms that
the optimizer, monitor and recovery system update as they work, so a test or
a dashboard can read them back without a metrics backend.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import datetime
from enum import Enum
import json
import logging
from logging import Handler, Logger, LogRecord, getLevelName
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
import threading
from typing import Any, ClassVar

import colorlog


class MetricType(Enum):
    """Enum for supported metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class LoggerConfig:
    """Configuration for LoggerManager.

    `log_dir=None` keeps logging console-only, which is what services use
    unless a deployment wires a directory in.
    """

    log_dir: Path | None = None
    log_level: str = "INFO"
    log_file_name: str = "callsift.log"
    max_file_size_mb: int = 10
    backup_count: int = 3
    structured_logging: bool = False
    telemetry_enabled: bool = True
    log_colors: dict[str, str] | None = None
    metric_export_callback: Callable[[dict[str, Any]], None] | None = None
    histogram_buckets: list[float] | None = None

    DEFAULT_LOG_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "cyan",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "red,bg_white",
    }
    # Seconds; sized for agent calls that range from cached to multi-second LLM calls.
    DEFAULT_HISTOGRAM_BUCKETS: ClassVar[list[float]] = [
        0.05,
        0.25,
        1.0,
        5.0,
        10.0,
        30.0,
        float("inf"),
    ]

    def __post_init__(self) -> None:
        """Normalize and validate configuration."""
        self.log_level = self.log_level.upper()
        if self.log_dir is not None:
            self.log_dir = Path(self.log_dir).resolve()
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_colors = self.log_colors or self.DEFAULT_LOG_COLORS
        self.histogram_buckets = (
            self.histogram_buckets or self.DEFAULT_HISTOGRAM_BUCKETS
        )


# Per-task so concurrent agents in one event loop keep separate fields.
_BOUND_CONTEXT: ContextVar[tuple[dict[str, Any], ...]] = ContextVar(
    "callsift_log_context", default=()
)


def bound_context() -> dict[str, Any]:
    """Return the context fields bound in the current task or thread."""
    merged: dict[str, Any] = {}
    for frame in _BOUND_CONTEXT.get():
        merged.update(frame)
    return merged


class _ContextFilter(logging.Filter):
    """Stamp the active `LoggerManager.context` fields on every record."""

    def filter(self, record: LogRecord) -> bool:
        bound = bound_context()
        if bound:
            existing = getattr(record, "context", None)
            merged = dict(bound)
            if isinstance(existing, Mapping):
                merged.update(existing)
            record.context = merged
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging with context and metric fields."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "context": getattr(record, "context", {}),
            "metrics": getattr(record, "metrics", {}),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


class CustomLogger:
    """Thin logger wrapper exposing the manager's context and metric helpers."""

    def __init__(self, logger: Logger, manager: LoggerManager) -> None:
        self.logger = logger
        self.manager = manager

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.critical(msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.exception(msg, *args, **kwargs)

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        self.logger.log(level, msg, *args, **kwargs)

    @contextmanager
    def context(self, **context_kwargs: Any) -> Iterator[CustomLogger]:
        """Delegate to LoggerManager's context method."""
        with self.manager.context(**context_kwargs):
            yield self


class LoggerManager:
    """Owns one configured stdlib logger plus the telemetry metric store.

    Stdlib loggers are process-wide per name. The first manager created for
    a name configures its level and handlers; later managers with the same
    name reuse that logger unchanged and only own their own metric store.
    Pass a distinct `name` to get separately configured output.
    """

    def __init__(
        self,
        name: str | LoggerConfig = "callsift",
        config: LoggerConfig | None = None,
    ) -> None:
        if isinstance(name, LoggerConfig):
            config = name
            name = "callsift"
        self.name = name
        self.config = config or LoggerConfig()
        self._telemetry_metrics: dict[str, dict[str, Any]] = defaultdict(
            lambda: {
                "type": MetricType.COUNTER.value,
                "value": 0,
                "histogram": defaultdict(int),
            }
        )
        self._metrics_lock = threading.Lock()
        self._file_handler: RotatingFileHandler | None = None
        self._logger = self._configure_logger()

    def get_logger(self) -> CustomLogger:
        """Return the configured custom logger."""
        return CustomLogger(self._logger, self)

    def _configure_logger(self) -> Logger:
        logger = logging.getLogger(self.name)
        if getattr(logger, "_callsift_configured", False):
            return logger

        logger.setLevel(getLevelName(self.config.log_level))
        context_filter = _ContextFilter()
        for handler in self._build_handlers():
            handler.addFilter(context_filter)
            logger.addHandler(handler)

        logger.propagate = False
        logger._callsift_configured = True  # type: ignore[attr-defined]
        return logger

    def _build_handlers(self) -> list[Handler]:
        handlers: list[Handler] = []
        console = colorlog.StreamHandler(sys.stderr)
        console.setFormatter(
            StructuredFormatter()
            if self.config.structured_logging
            else colorlog.ColoredFormatter(
                "%(log_color)s%(asctime)s - [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
                log_colors=self.config.log_colors,
            )
        )
        handlers.append(console)

        if self.config.log_dir is not None:
            file_path = self.config.log_dir / self.config.log_file_name
            try:
                file_handler = RotatingFileHandler(
                    file_path,
                    maxBytes=self.config.max_file_size_mb * 1024 * 1024,
                    backupCount=self.config.backup_count,
                )
            except OSError as e:
                print(f"Failed to create RotatingFileHandler: {e}", file=sys.stderr)
            else:
                file_handler.setFormatter(
                    StructuredFormatter()
                    if self.config.structured_logging
                    else logging.Formatter(
                        "%(asctime)s - [%(levelname)s] %(name)s: %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S",
                    )
                )
                self._file_handler = file_handler
                handlers.append(file_handler)
        return handlers

    @contextmanager
    def context(self, **context_kwargs: Any) -> Iterator[Logger]:
        """Bind contextual fields to every record logged inside the block."""
        token = _BOUND_CONTEXT.set((*_BOUND_CONTEXT.get(), dict(context_kwargs)))
        try:
            yield self._logger
        finally:
            _BOUND_CONTEXT.reset(token)

    def log_metric(
        self,
        metric_name: str,
        value: int | float,
        metric_type: MetricType = MetricType.COUNTER,
        tags: Mapping[str, str] | None = None,
    ) -> None:
        """Record a counter increment, gauge value, or histogram observation."""
        if not self.config.telemetry_enabled:
            return

        tags_dict: dict[str, str] = dict(tags or {})
        with self._metrics_lock:
            metric = self._telemetry_metrics[metric_name]
            metric["type"] = metric_type.value
            metric["tags"] = tags_dict
            if metric_type == MetricType.COUNTER:
                metric["value"] += value
            elif metric_type == MetricType.GAUGE:
                metric["value"] = value
            else:
                metric["value"] += value
                for bucket in self.config.histogram_buckets or ():
                    if value <= bucket:
                        metric["histogram"][f"le_{bucket}"] += 1
                        break
            snapshot = {
                "name": metric_name,
                "type": metric_type.value,
                "value": metric["value"],
                "tags": tags_dict,
                "timestamp": datetime.datetime.now().isoformat(),
            }

        callback = self.config.metric_export_callback
        if callback is not None:
            try:
                callback(snapshot)
            except Exception as e:
                self._logger.error(
                    f"Metric export failed: {e}",
                    extra={"context": {"metric_name": metric_name}},
                )

    def get_metrics(self) -> dict[str, dict[str, Any]]:
        """Return a copy of collected telemetry metrics."""
        with self._metrics_lock:
            return {
                name: {**metric, "histogram": dict(metric["histogram"])}
                for name, metric in self._telemetry_metrics.items()
            }

    def metric_value(self, metric_name: str) -> int | float:
        with self._metrics_lock:
            metric = self._telemetry_metrics.get(metric_name)
            return metric["value"] if metric else 0

    def reset_metrics(self) -> None:
        """Reset all telemetry metrics."""
        with self._metrics_lock:
            self._telemetry_metrics.clear()
        self._logger.debug("Telemetry metrics reset")

    def export_metrics_to_file(self, file_path: str | Path) -> None:
        """Write a JSON snapshot of telemetry metrics."""
        metrics = self.get_metrics()
        try:
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(metrics, f, indent=2)
        except OSError as e:
            self._logger.error(
                f"Metrics export to file failed: {e}",
                extra={"context": {"file_path": str(file_path)}},
            )

    def flush(self) -> None:
        """Flush all handlers to ensure logs are written."""
        for handler in self._logger.handlers:
            handler.flush()
