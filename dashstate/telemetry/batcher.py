"""
Size- and time-triggered batching of telemetry records.

Records queue up in memory and are handed to a MetricSink when the queue
reaches batch_size or when the periodic timer fires, whichever comes
first. Delivery is best-effort: a batch is taken off the queue before it
is delivered, and a batch that cannot be delivered is dropped.
"""
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .models import MetricRecord
from .sinks import MetricSink, PrincipalResolver

logger = logging.getLogger("telemetry.batcher")

DEFAULT_BATCH_SIZE = 5
DEFAULT_FLUSH_INTERVAL_SECONDS = 10.0


class MetricBatcher:
    """
    Accumulates MetricRecords and flushes them to a sink.

    Batch lifecycle:
    - queued until the size threshold or the timer triggers a flush
    - flush swaps the queue for an empty one under the lock, so records
      arriving during delivery start the next batch
    - the batch is delivered on the flush thread, then discarded whether
      delivery succeeded or not; nothing is ever retried
    - no principal means no delivery

    Usage:
        batcher = MetricBatcher(sink, static_principal("user-1"))
        batcher.start()
        batcher.record("/payables", "load", 123.4)
        ...
        batcher.shutdown()
    """

    def __init__(
        self,
        sink: MetricSink,
        principal_resolver: PrincipalResolver,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
    ):
        """
        Args:
            sink: Destination for delivered batches
            principal_resolver: Returns the identity batches are attributed to
            batch_size: Queue length that triggers an immediate flush
            flush_interval: Seconds between timer-driven flushes
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")

        self._sink = sink
        self._resolve_principal = principal_resolver
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self._queue: List[MetricRecord] = []
        self._lock = threading.Lock()

        # Single worker keeps deliveries in flush order
        self._delivery_pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="metric-flush",
        )
        self._timer: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._closed = False

        self._stats = {
            "batches_delivered": 0,
            "records_delivered": 0,
            "batches_dropped": 0,
            "records_dropped": 0,
        }

    # ===== LIFECYCLE =====

    def start(self) -> "MetricBatcher":
        """Start the periodic flush timer. Calling it again is a no-op."""
        with self._lock:
            if self._closed:
                raise RuntimeError("MetricBatcher has been shut down")
            if self._timer is not None:
                return self
            self._timer = threading.Thread(
                target=self._run_timer,
                name="metric-batcher-timer",
                daemon=True,
            )
        self._timer.start()
        logger.debug(f"Flush timer started [interval={self.flush_interval}s]")
        return self

    def shutdown(self, flush: bool = True, wait: bool = True) -> None:
        """
        Stop the timer, optionally flush what is queued, and stop delivery.

        Args:
            flush: Deliver the remaining queue before stopping
            wait: Block until in-flight deliveries have finished
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timer = self._timer

        self._stop_event.set()
        if timer is not None and timer is not threading.current_thread():
            timer.join()

        if flush:
            self._submit(self._take_batch())
        else:
            discarded = self._take_batch()
            if discarded:
                logger.debug(f"Discarding {len(discarded)} queued metrics on shutdown")
                self._count_dropped(discarded)
        self._delivery_pool.shutdown(wait=wait)
        logger.debug("MetricBatcher shut down")

    def __enter__(self) -> "MetricBatcher":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ===== RECORDING =====

    def record(
        self,
        category: str,
        label: str,
        duration_ms: float,
        attributes: Any = None,
    ) -> MetricRecord:
        """
        Queue a record; reaching batch_size flushes immediately.

        Returns:
            The queued record
        """
        record = MetricRecord(
            category=category,
            label=label,
            duration_ms=float(duration_ms),
            attributes=attributes,
        )
        batch = None
        with self._lock:
            self._queue.append(record)
            if len(self._queue) >= self.batch_size:
                batch, self._queue = self._queue, []

        if batch is not None:
            self._submit(batch)
        return record

    def flush(self) -> Optional[Future]:
        """
        Take everything queued and deliver it in the background.

        Returns:
            Future for the delivery, or None when the queue was empty
        """
        return self._submit(self._take_batch())

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_stats(self) -> Dict[str, Any]:
        """Get batcher statistics."""
        with self._lock:
            return {"queued": len(self._queue), **self._stats}

    # ===== INTERNALS =====

    def _take_batch(self) -> List[MetricRecord]:
        with self._lock:
            batch, self._queue = self._queue, []
        return batch

    def _submit(self, batch: List[MetricRecord]) -> Optional[Future]:
        if not batch:
            return None
        try:
            return self._delivery_pool.submit(self._deliver, batch)
        except RuntimeError:
            # Pool already shut down
            logger.warning(f"Dropping {len(batch)} metrics submitted after shutdown")
            self._count_dropped(batch)
            return None

    def _deliver(self, batch: List[MetricRecord]) -> bool:
        try:
            principal_id = self._resolve_principal()
            if not principal_id:
                logger.debug(f"No principal, dropping {len(batch)} metrics")
                self._count_dropped(batch)
                return False
            self._sink.insert(principal_id, batch)
        except Exception:
            logger.exception(f"Failed to flush {len(batch)} metrics")
            self._count_dropped(batch)
            return False

        with self._lock:
            self._stats["batches_delivered"] += 1
            self._stats["records_delivered"] += len(batch)
        return True

    def _count_dropped(self, batch: List[MetricRecord]) -> None:
        with self._lock:
            self._stats["batches_dropped"] += 1
            self._stats["records_dropped"] += len(batch)

    def _run_timer(self) -> None:
        while not self._stop_event.wait(self.flush_interval):
            self.flush()


# Process-default batcher
_metric_batcher: Optional[MetricBatcher] = None
_metric_batcher_lock = threading.Lock()


def _default_sink() -> MetricSink:
    from config.settings import settings
    from .sinks import RestMetricSink, SqlMetricSink

    if settings.metrics_sink_url:
        return RestMetricSink(
            base_url=settings.metrics_sink_url,
            api_key=settings.metrics_sink_api_key,
            table=settings.metrics_table,
            timeout=settings.metrics_request_timeout,
        )
    from ..db import get_session_factory
    return SqlMetricSink(get_session_factory())


def get_metric_batcher(
    sink: Optional[MetricSink] = None,
    principal_resolver: Optional[PrincipalResolver] = None,
) -> MetricBatcher:
    """
    Get or create the started process-default batcher.

    sink and principal_resolver are only used when the batcher is created;
    otherwise they come from settings.
    """
    global _metric_batcher
    with _metric_batcher_lock:
        if _metric_batcher is None:
            from config.settings import settings
            from .sinks import static_principal

            _metric_batcher = MetricBatcher(
                sink=sink or _default_sink(),
                principal_resolver=principal_resolver
                or static_principal(settings.metrics_principal_id),
                batch_size=settings.metrics_batch_size,
                flush_interval=settings.metrics_flush_interval_seconds,
            ).start()
        return _metric_batcher


def shutdown_metric_batcher(flush: bool = True) -> None:
    """Shut down the process-default batcher, flushing what is queued."""
    global _metric_batcher
    with _metric_batcher_lock:
        batcher, _metric_batcher = _metric_batcher, None
    if batcher is not None:
        batcher.shutdown(flush=flush)
