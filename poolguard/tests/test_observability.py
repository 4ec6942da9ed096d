"""
Tests for structured logging and metrics.
"""

import io
import json
import logging

import pytest

from poolguard.config import LoggingConfig
from poolguard.observability import (
    ContextAdapter,
    Counter,
    Gauge,
    Histogram,
    JSONFormatter,
    ProtocolMetrics,
    get_logger,
    setup_logging,
    timed,
)


def _record(message: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("poolguard.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record("claim approved")))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "poolguard.test"
        assert entry["message"] == "claim approved"
        assert "timestamp" in entry

    def test_context(self):
        entry = json.loads(JSONFormatter().format(_record("x", context={"claim_id": "c1"})))
        assert entry["context"] == {"claim_id": "c1"}

    def test_without_timestamps(self):
        entry = json.loads(JSONFormatter(include_timestamps=False).format(_record("x")))
        assert "timestamp" not in entry

    def test_debug_includes_source(self):
        entry = json.loads(JSONFormatter().format(_record("x", level=logging.DEBUG)))
        assert entry["source"]["line"] == 1


class TestLoggers:
    """Tests for setup_logging and get_logger."""

    def test_get_logger_namespaced(self):
        adapter = get_logger("distribution", pool_id="p")
        assert isinstance(adapter, ContextAdapter)
        assert adapter.logger.name == "poolguard.distribution"

    def test_context_merged(self):
        adapter = get_logger("test", pool_id="p")
        _, kwargs = adapter.process("msg", {"extra": {"context": {"claim_id": "c"}}})
        assert kwargs["extra"]["context"] == {"pool_id": "p", "claim_id": "c"}

    def test_setup_from_config(self, tmp_path):
        log_file = tmp_path / "poolguard.log"
        logger = setup_logging(LoggingConfig(level="DEBUG", format="text", file=str(log_file)))
        try:
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            logger.info("hello")
            for handler in logger.handlers:
                handler.flush()
            assert "hello" in log_file.read_text()
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()

    def test_json_output(self, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr("sys.stdout", stream)
        logger = setup_logging(level="INFO")
        try:
            get_logger("coordinator").info("ready", extra={"context": {"n": 1}})
            lines = [json.loads(line) for line in stream.getvalue().splitlines()]
            assert lines[-1]["message"] == "ready"
            assert lines[-1]["context"] == {"n": 1}
        finally:
            logger.handlers.clear()


class TestMetrics:
    """Tests for metric primitives."""

    def test_counter(self):
        counter = Counter("c_total", "help")
        counter.inc()
        counter.inc(2)
        assert counter.value == 3
        assert counter.to_prometheus() == "c_total 3"

    def test_counter_cannot_decrease(self):
        with pytest.raises(ValueError, match="only increase"):
            Counter("c_total", "help").inc(-1)

    def test_counter_labels(self):
        counter = Counter("errors_total", "help", labels={"code": "X"})
        counter.inc()
        assert counter.to_prometheus() == 'errors_total{code="X"} 1'

    def test_gauge(self):
        gauge = Gauge("g", "help")
        gauge.set(5)
        gauge.inc()
        gauge.dec(3)
        assert gauge.value == 3

    def test_histogram(self):
        histogram = Histogram("h", "help", buckets=(0.1, 1.0))
        histogram.observe(0.05)
        histogram.observe(0.5)
        histogram.observe(5)

        text = histogram.to_prometheus()
        assert 'h_bucket{le="0.1"} 1' in text
        assert 'h_bucket{le="1.0"} 2' in text
        assert 'h_bucket{le="+Inf"} 3' in text
        assert histogram.count == 3
        assert histogram.sum == pytest.approx(5.55)

    def test_protocol_metrics_export(self):
        metrics = ProtocolMetrics(namespace="test")
        metrics.claims_submitted.inc()
        metrics.record_error("DuplicateVote")
        metrics.record_error("DuplicateVote")

        text = metrics.to_prometheus()

        assert "# TYPE test_claims_submitted_total counter" in text
        assert "# TYPE test_distribution_queue_depth gauge" in text
        assert "# TYPE test_round_duration_seconds histogram" in text
        assert 'test_errors_total{code="DuplicateVote"} 2' in text

    def test_timed(self):
        histogram = Histogram("h", "help")

        @timed(histogram)
        def work():
            return 42

        assert work() == 42
        assert histogram.count == 1

    def test_timed_records_failures(self):
        histogram = Histogram("h", "help")

        @timed(histogram)
        def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            fail()
        assert histogram.count == 1
