"""
Timing helpers that feed MetricBatcher.
"""
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .batcher import MetricBatcher, get_metric_batcher
from .models import MetricRecord


class Measurement:
    """A running timer; end() records the elapsed milliseconds once."""

    def __init__(self, category: str, label: str, batcher: Optional[MetricBatcher] = None):
        self.category = category
        self.label = label
        self._batcher = batcher
        self._started = time.perf_counter()
        self.record: Optional[MetricRecord] = None

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def end(self, attributes: Any = None) -> Optional[MetricRecord]:
        """
        Stop the timer and queue the record.

        Returns None when already ended or when metrics are disabled and
        no batcher was given.
        """
        if self.record is not None:
            return None

        batcher = self._batcher
        if batcher is None:
            from config.settings import settings
            if not settings.metrics_enabled:
                return None
            batcher = get_metric_batcher()

        self.record = batcher.record(self.category, self.label, self.elapsed_ms, attributes)
        return self.record


def start_measure(category: str, label: str, batcher: Optional[MetricBatcher] = None) -> Measurement:
    """Start timing an operation."""
    return Measurement(category, label, batcher)


@contextmanager
def measure(
    category: str,
    label: str,
    attributes: Optional[Dict[str, Any]] = None,
    batcher: Optional[MetricBatcher] = None,
) -> Iterator[Measurement]:
    """
    Time the enclosed block. A raised exception is recorded as
    attributes["error"] and re-raised.
    """
    measurement = start_measure(category, label, batcher)
    try:
        yield measurement
    except Exception as e:
        measurement.end({**(attributes or {}), "error": type(e).__name__})
        raise
    measurement.end(attributes)
