"""
Unit tests for MetricBatcher flush triggers and failure policy.
"""
import logging
import threading

import pytest

from dashstate.telemetry import (
    MetricBatcher,
    MetricRecord,
    get_metric_batcher,
    shutdown_metric_batcher,
    static_principal,
)


class RecordingSink:
    """Sink that keeps every batch it receives."""

    def __init__(self, error=None, gate=None):
        self.batches = []
        self.principals = []
        self.error = error
        self.gate = gate
        self.received = threading.Event()

    def insert(self, principal_id, records):
        if self.gate is not None:
            self.gate.wait(5.0)
        self.principals.append(principal_id)
        self.batches.append(list(records))
        self.received.set()
        if self.error is not None:
            raise self.error


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def batcher(sink):
    batcher = MetricBatcher(sink, static_principal("user-1"), batch_size=5, flush_interval=60.0)
    yield batcher
    batcher.shutdown(flush=False)


def _record(batcher, n, start=0):
    return [
        batcher.record("/payables", f"load-{i}", float(i))
        for i in range(start, start + n)
    ]


# =============================================================================
# Size Threshold Tests
# =============================================================================

class TestSizeThreshold:
    """Tests for the batch-size flush trigger."""

    def test_fifth_record_flushes_all_five(self, batcher, sink):
        """Test that 4 records do not flush and the 5th flushes all of them."""
        _record(batcher, 4)
        assert sink.batches == []
        assert batcher.queue_size == 4

        batcher.record("/payables", "load-4", 4.0)
        assert batcher.queue_size == 0

        assert sink.received.wait(5.0)
        batcher.shutdown()
        assert len(sink.batches) == 1
        assert [r.label for r in sink.batches[0]] == [f"load-{i}" for i in range(5)]
        assert sink.principals == ["user-1"]

    def test_each_full_batch_flushes_once(self, batcher, sink):
        _record(batcher, 12)
        assert batcher.queue_size == 2

        batcher.shutdown()
        assert [len(b) for b in sink.batches] == [5, 5, 2]

    def test_record_returns_immutable_record(self, batcher):
        record = batcher.record("/dashboard", "kpis", 12, {"rows": 3})
        assert record == MetricRecord("/dashboard", "kpis", 12.0, {"rows": 3})
        with pytest.raises(AttributeError):
            record.label = "changed"

    def test_invalid_configuration(self, sink):
        with pytest.raises(ValueError):
            MetricBatcher(sink, static_principal("u"), batch_size=0)
        with pytest.raises(ValueError):
            MetricBatcher(sink, static_principal("u"), flush_interval=0)


# =============================================================================
# Flush Tests
# =============================================================================

class TestFlush:
    """Tests for explicit and timer-driven flushes."""

    def test_flush_empty_queue_is_noop(self, batcher, sink):
        """Test that flushing nothing makes no delivery call."""
        assert batcher.flush() is None
        batcher.shutdown()
        assert sink.batches == []

    def test_flush_partial_queue(self, batcher, sink):
        _record(batcher, 2)

        future = batcher.flush()

        assert batcher.queue_size == 0
        assert future.result(5.0) is True
        assert [len(b) for b in sink.batches] == [2]
        assert batcher.get_stats()["records_delivered"] == 2

    def test_records_during_delivery_start_new_batch(self, sink):
        """Test that the in-flight batch is a snapshot of the queue."""
        gate = threading.Event()
        sink.gate = gate
        batcher = MetricBatcher(sink, static_principal("u"), batch_size=5, flush_interval=60.0)

        _record(batcher, 2)
        in_flight = batcher.flush()
        _record(batcher, 3, start=2)
        assert batcher.queue_size == 3

        gate.set()
        in_flight.result(5.0)
        batcher.shutdown()

        assert [[r.label for r in b] for b in sink.batches] == [
            ["load-0", "load-1"],
            ["load-2", "load-3", "load-4"],
        ]

    def test_timer_flushes_partial_queue(self, sink):
        """Test that the periodic timer flushes fewer than batch_size records."""
        batcher = MetricBatcher(sink, static_principal("u"), batch_size=5, flush_interval=0.05)
        with batcher:
            _record(batcher, 2)
            assert sink.received.wait(5.0)
            assert [len(b) for b in sink.batches] == [2]

    def test_timer_with_empty_queue_delivers_nothing(self, sink):
        batcher = MetricBatcher(sink, static_principal("u"), batch_size=5, flush_interval=0.01)
        batcher.start()
        assert not sink.received.wait(0.1)
        batcher.shutdown()
        assert sink.batches == []

    def test_start_is_idempotent(self, batcher):
        assert batcher.start() is batcher
        assert batcher.start() is batcher

    def test_shutdown_flushes_remaining(self, sink):
        batcher = MetricBatcher(sink, static_principal("u")).start()
        _record(batcher, 3)

        batcher.shutdown()
        batcher.shutdown()

        assert [len(b) for b in sink.batches] == [3]

    def test_shutdown_without_flush_discards(self, sink):
        batcher = MetricBatcher(sink, static_principal("u"))
        _record(batcher, 3)

        batcher.shutdown(flush=False)

        assert sink.batches == []
        assert batcher.queue_size == 0
        stats = batcher.get_stats()
        assert stats["batches_dropped"] == 1
        assert stats["records_dropped"] == 3

    def test_start_after_shutdown_raises(self, sink):
        batcher = MetricBatcher(sink, static_principal("u"))
        batcher.shutdown()
        with pytest.raises(RuntimeError):
            batcher.start()


# =============================================================================
# Failure Policy Tests
# =============================================================================

class TestFailurePolicy:
    """Tests that failed or unattributed batches are dropped, never retried."""

    def test_no_principal_drops_silently(self, sink):
        batcher = MetricBatcher(sink, static_principal(None))
        _record(batcher, 2)

        assert batcher.flush().result(5.0) is False
        batcher.shutdown()

        assert sink.batches == []
        stats = batcher.get_stats()
        assert stats["batches_dropped"] == 1
        assert stats["records_dropped"] == 2

    def test_sink_failure_logged_and_dropped(self, caplog):
        sink = RecordingSink(error=ConnectionError("sink down"))
        batcher = MetricBatcher(sink, static_principal("u"))
        _record(batcher, 2)

        with caplog.at_level(logging.ERROR, logger="telemetry.batcher"):
            assert batcher.flush().result(5.0) is False

        assert "Failed to flush 2 metrics" in caplog.text
        assert batcher.queue_size == 0

        # Nothing is re-queued, so the next flush has nothing to send
        assert batcher.flush() is None
        batcher.shutdown()
        assert len(sink.batches) == 1
        assert batcher.get_stats()["batches_dropped"] == 1

    def test_principal_resolver_failure_dropped(self, sink):
        def broken_resolver():
            raise RuntimeError("session lookup failed")

        batcher = MetricBatcher(sink, broken_resolver)
        _record(batcher, 1)

        assert batcher.flush().result(5.0) is False
        batcher.shutdown()
        assert sink.batches == []


# =============================================================================
# Process Default Tests
# =============================================================================

class TestProcessDefault:

    def test_get_and_shutdown_default_batcher(self, sink):
        batcher = get_metric_batcher(sink=sink, principal_resolver=static_principal("u"))
        try:
            assert get_metric_batcher() is batcher
            _record(batcher, 2)
        finally:
            shutdown_metric_batcher()

        assert [len(b) for b in sink.batches] == [2]
        assert get_metric_batcher(sink=sink, principal_resolver=static_principal("u")) is not batcher
        shutdown_metric_batcher(flush=False)
