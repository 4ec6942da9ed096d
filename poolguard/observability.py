"""
PoolGuard Observability Module - Logging and metrics.

Provides:
1. Structured JSON logging
2. Prometheus-compatible metrics for the claims pipeline
3. Timing decorator

Usage:
    from poolguard.observability import setup_logging, metrics

    setup_logging(format="json", level="INFO")
    metrics.claims_submitted.inc()
    metrics.round_duration.observe(0.002)
"""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .config import LoggingConfig

ROOT_LOGGER = "poolguard"


# =============================================================================
# Structured Logging
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-10T15:30:00.000000+00:00",
        "level": "INFO",
        "logger": "poolguard.coordinator",
        "message": "Claim approved",
        "context": {...}
    }
    """

    def __init__(self, include_timestamps: bool = True):
        super().__init__()
        self._include_timestamps = include_timestamps

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self._include_timestamps:
            log_entry["timestamp"] = datetime.now(timezone.utc).isoformat()

        if hasattr(record, "context") and record.context:
            log_entry["context"] = record.context

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if record.levelno <= logging.DEBUG:
            log_entry["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to log records."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        extra["context"] = {**self.extra, **extra.get("context", {})}
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    config: Optional[LoggingConfig] = None,
    format: str = "json",
    level: str = "INFO",
    file: Optional[str] = None,
) -> logging.Logger:
    """
    Setup PoolGuard logging.

    Args:
        config: LoggingConfig object (overrides other args)
        format: "json" or "text"
        level: Log level name
        file: Optional log file path

    Returns:
        The configured ``poolguard`` root logger
    """
    include_timestamps = True
    max_bytes = 100 * 1024 * 1024
    backup_count = 5
    if config:
        format = config.format
        level = config.level
        file = config.file
        include_timestamps = config.include_timestamps
        max_bytes = config.max_size_mb * 1024 * 1024
        backup_count = config.backup_count

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if format == "json":
        formatter: logging.Formatter = JSONFormatter(include_timestamps=include_timestamps)
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.info("Logging initialized", extra={"context": {"format": format, "level": level}})
    return logger


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Get a logger with optional context.

    Args:
        name: Logger name (prefixed with ``poolguard.``)
        **context: Fields included in every message
    """
    logger = logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return ContextAdapter(logger, context)


# =============================================================================
# Metrics
# =============================================================================

def _labels(labels: Dict[str, str]) -> str:
    return ",".join(f'{k}="{v}"' for k, v in labels.items())


@dataclass
class Counter:
    """Monotonic counter."""
    name: str
    help: str
    labels: Dict[str, str] = field(default_factory=dict)
    _value: float = 0

    def inc(self, amount: float = 1) -> None:
        if amount < 0:
            raise ValueError("Counter can only increase")
        self._value += amount

    @property
    def value(self) -> float:
        return self._value

    def to_prometheus(self) -> str:
        labels_str = _labels(self.labels)
        if labels_str:
            return f"{self.name}{{{labels_str}}} {self._value}"
        return f"{self.name} {self._value}"


@dataclass
class Gauge:
    """Value that moves both ways."""
    name: str
    help: str
    labels: Dict[str, str] = field(default_factory=dict)
    _value: float = 0

    def set(self, value: float) -> None:
        self._value = value

    def inc(self, amount: float = 1) -> None:
        self._value += amount

    def dec(self, amount: float = 1) -> None:
        self._value -= amount

    @property
    def value(self) -> float:
        return self._value

    def to_prometheus(self) -> str:
        labels_str = _labels(self.labels)
        if labels_str:
            return f"{self.name}{{{labels_str}}} {self._value}"
        return f"{self.name} {self._value}"


@dataclass
class Histogram:
    """Cumulative-bucket histogram."""
    name: str
    help: str
    buckets: tuple = (0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0)
    labels: Dict[str, str] = field(default_factory=dict)
    _sum: float = 0
    _count: int = 0
    _bucket_counts: Dict[float, int] = field(default_factory=dict)

    def __post_init__(self):
        self._bucket_counts = {b: 0 for b in self.buckets}
        self._bucket_counts[float("inf")] = 0

    def observe(self, value: float) -> None:
        self._sum += value
        self._count += 1
        for bucket in self.buckets:
            if value <= bucket:
                self._bucket_counts[bucket] += 1
        self._bucket_counts[float("inf")] += 1

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def count(self) -> int:
        return self._count

    def to_prometheus(self) -> str:
        lines = []
        labels_str = _labels(self.labels)
        prefix = f"{labels_str}," if labels_str else ""

        for bucket, count in sorted(self._bucket_counts.items()):
            le = "+Inf" if bucket == float("inf") else str(bucket)
            lines.append(f'{self.name}_bucket{{{prefix}le="{le}"}} {count}')

        suffix = f"{{{labels_str}}}" if labels_str else ""
        lines.append(f"{self.name}_sum{suffix} {self._sum}")
        lines.append(f"{self.name}_count{suffix} {self._count}")
        return "\n".join(lines)


class ProtocolMetrics:
    """
    Claims pipeline metrics.

    Provides Prometheus-compatible metrics for monitoring.
    """

    def __init__(self, namespace: str = "poolguard"):
        self._namespace = namespace

        # Claim lifecycle
        self.claims_submitted = Counter(
            f"{namespace}_claims_submitted_total",
            "Total claims submitted",
        )
        self.committees_assigned = Counter(
            f"{namespace}_committees_assigned_total",
            "Total committees assigned to claims",
        )
        self.votes_cast = Counter(
            f"{namespace}_votes_cast_total",
            "Total committee votes recorded",
        )
        self.claims_approved = Counter(
            f"{namespace}_claims_approved_total",
            "Total claims finalized as approved",
        )
        self.claims_rejected = Counter(
            f"{namespace}_claims_rejected_total",
            "Total claims finalized as rejected",
        )

        # Validators
        self.validators_rewarded = Counter(
            f"{namespace}_validators_rewarded_total",
            "Validator outcomes aligned with the majority",
        )
        self.validators_slashed = Counter(
            f"{namespace}_validators_slashed_total",
            "Validator outcomes slashed for voting against the majority",
        )
        self.stake_slashed = Counter(
            f"{namespace}_stake_slashed_total",
            "Total stake removed by slashing",
        )

        # Distribution
        self.rounds_total = Counter(
            f"{namespace}_distribution_rounds_total",
            "Total distribution rounds computed",
        )
        self.oversubscribed_rounds = Counter(
            f"{namespace}_oversubscribed_rounds_total",
            "Distribution rounds where demand exceeded liquidity",
        )
        self.payouts_total = Counter(
            f"{namespace}_payouts_total",
            "Total claims paid out",
        )
        self.payout_amount = Counter(
            f"{namespace}_payout_amount_total",
            "Sum of amounts paid out",
        )
        self.distribution_queue_depth = Gauge(
            f"{namespace}_distribution_queue_depth",
            "Approved claims awaiting payout across pools",
        )
        self.round_duration = Histogram(
            f"{namespace}_round_duration_seconds",
            "Distribution round computation time in seconds",
        )
        self.selection_duration = Histogram(
            f"{namespace}_committee_selection_seconds",
            "Committee sampling time in seconds",
        )

        # Errors by code
        self.errors_by_code: Dict[str, Counter] = {}

    def record_error(self, code: str) -> None:
        """Record a failed operation by error code."""
        if code not in self.errors_by_code:
            self.errors_by_code[code] = Counter(
                f"{self._namespace}_errors_total",
                "Failed operations by error code",
                labels={"code": code},
            )
        self.errors_by_code[code].inc()

    def _all(self) -> List[Any]:
        return [
            self.claims_submitted,
            self.committees_assigned,
            self.votes_cast,
            self.claims_approved,
            self.claims_rejected,
            self.validators_rewarded,
            self.validators_slashed,
            self.stake_slashed,
            self.rounds_total,
            self.oversubscribed_rounds,
            self.payouts_total,
            self.payout_amount,
            self.distribution_queue_depth,
            self.round_duration,
            self.selection_duration,
        ]

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        for metric in self._all():
            kind = (
                "histogram" if isinstance(metric, Histogram)
                else "counter" if isinstance(metric, Counter)
                else "gauge"
            )
            lines.append(f"# HELP {metric.name} {metric.help}")
            lines.append(f"# TYPE {metric.name} {kind}")
            lines.append(metric.to_prometheus())
            lines.append("")

        for counter in self.errors_by_code.values():
            lines.append(counter.to_prometheus())

        return "\n".join(lines)


# Global metrics instance
metrics = ProtocolMetrics()


# =============================================================================
# Decorators
# =============================================================================

F = TypeVar("F", bound=Callable[..., Any])


def timed(metric: Optional[Histogram] = None) -> Callable[[F], F]:
    """
    Decorator to time function execution.

    Args:
        metric: Histogram to record duration (optional)
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                if metric is not None:
                    metric.observe(time.monotonic() - start)
        return wrapper  # type: ignore
    return decorator
