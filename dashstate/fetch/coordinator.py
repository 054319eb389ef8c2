"""
Fetch coordination on top of the shared TTL cache.

A FetchCoordinator belongs to one calling context (a view, a widget, a
report). It is driven by repeated coordinate() calls: whenever the key,
the enabled flag or any dependency differs from the previous call, the
coordinator re-activates, serving from the cache when it can and
otherwise running the producer on a worker thread. Callers never block
on a producer; they read the latest FetchResult instead.
"""
import asyncio
import inspect
import threading
import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence, Tuple

from ..cache.coalescer import RequestCoalescer
from ..cache.core import TTLCache, get_cache

logger = logging.getLogger("fetch.coordinator")

_MISSING = object()

Producer = Callable[[], Any]


@dataclass
class FetchOptions:
    """
    Options recognized by coordinate().

    enabled: When False the producer is never called and the state is idle
    stale_time: TTL in seconds for values written to the cache
    dependencies: Values whose change re-triggers the fetch
    """
    enabled: bool = True
    stale_time: Optional[float] = None
    dependencies: Sequence[Any] = ()

    def __post_init__(self):
        if self.stale_time is not None and self.stale_time < 0:
            raise ValueError("stale_time must be non-negative")


@dataclass
class FetchState:
    """Per-coordinator view of the last fetch. data is None when absent."""
    data: Any = None
    is_loading: bool = False
    error: Optional[Exception] = None


@dataclass(frozen=True)
class FetchResult:
    """Snapshot returned to callers, with a bound forced refetch."""
    data: Any
    is_loading: bool
    error: Optional[Exception]
    refetch: Callable[[], Optional[Future]]


def _call_producer(producer: Producer) -> Any:
    """Call producer, running it to completion if it returns an awaitable."""
    result = producer()
    if inspect.isawaitable(result):
        async def _await():
            return await result
        return asyncio.run(_await())
    return result


class FetchCoordinator:
    """
    Returns cached or freshly produced values and tracks loading/error state.

    - A cache hit adopts the cached value without calling the producer
    - A miss (or refetch) marks the state loading and submits the producer
    - Success writes the value back to the cache with stale_time
    - Failure sets error and keeps any previous data
    - Only the latest activation may update the state; results from
      superseded activations are still cached but otherwise ignored

    Concurrent misses for the same key from different coordinators each
    call their producer unless a RequestCoalescer is supplied.

    Usage:
        coordinator = FetchCoordinator(cache)
        result = coordinator.coordinate("orders:page=1", load_orders)
        ...
        result = coordinator.result()
    """

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        executor: Optional[Executor] = None,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        """
        Args:
            cache: Shared cache (defaults to the process-default cache)
            executor: Where producers run (defaults to the shared fetch pool)
            coalescer: Optional in-flight de-duplication across coordinators
        """
        self._cache = cache if cache is not None else get_cache()
        self._executor = executor
        self._coalescer = coalescer

        self._lock = threading.Lock()
        self._state = FetchState()
        self._generation = 0
        self._activation: Optional[Tuple[Any, ...]] = None
        self._key: Optional[str] = None
        self._producer: Optional[Producer] = None
        self._options = FetchOptions()
        self._last_future: Optional[Future] = None

    def coordinate(
        self,
        key: str,
        producer: Producer,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """
        Register the current key/producer/options and return the state.

        Re-activates only when key, enabled or dependencies changed since
        the previous call. The latest producer is always the one used.
        """
        options = options or FetchOptions()
        activation = (key, options.enabled, tuple(options.dependencies))

        with self._lock:
            changed = activation != self._activation
            self._activation = activation
            self._key = key
            self._producer = producer
            self._options = options

        if changed:
            self._activate(force=False)
        return self.result()

    def refetch(self) -> Optional[Future]:
        """
        Run the producer even if the cache holds a value for the key.

        Returns:
            Future resolving to the FetchResult after completion, or None
            when the coordinator is disabled
        """
        if self._activation is None:
            raise RuntimeError("coordinate() must be called before refetch()")
        return self._activate(force=True)

    def result(self) -> FetchResult:
        """Current state as an immutable snapshot."""
        with self._lock:
            state = self._state
            return FetchResult(
                data=state.data,
                is_loading=state.is_loading,
                error=state.error,
                refetch=self.refetch,
            )

    @property
    def state(self) -> FetchState:
        """Copy of the current state."""
        with self._lock:
            return replace(self._state)

    def wait(self, timeout: Optional[float] = None) -> FetchResult:
        """Block until the most recently started fetch has completed."""
        future = self._last_future
        if future is not None:
            future.result(timeout=timeout)
        return self.result()

    def _activate(self, force: bool) -> Optional[Future]:
        with self._lock:
            key = self._key
            producer = self._producer
            options = self._options
            self._generation += 1
            generation = self._generation

            if not options.enabled:
                self._state = FetchState()
                return None

            if not force:
                cached = self._cache.get(key, _MISSING)
                if cached is not _MISSING:
                    logger.debug(f"CACHE HIT: {key}")
                    self._state = FetchState(data=cached)
                    return None

            logger.debug(f"{'FORCE REFRESH' if force else 'CACHE MISS'}: {key}")
            self._state.is_loading = True
            self._state.error = None

        executor = self._executor or get_fetch_executor()
        try:
            future = executor.submit(self._run, key, producer, options.stale_time, generation)
        except RuntimeError as e:
            # Executor already shut down
            self._fail(key, generation, e)
            return None
        self._last_future = future
        return future

    def _fail(self, key: str, generation: int, error: Exception) -> None:
        logger.warning(f"Fetch failed for {key}: {error}")
        with self._lock:
            if generation == self._generation:
                self._state.error = error
                self._state.is_loading = False
            else:
                logger.debug(f"Discarding superseded failure for {key}")

    def _run(
        self,
        key: str,
        producer: Producer,
        stale_time: Optional[float],
        generation: int,
    ) -> FetchResult:
        try:
            if self._coalescer is not None:
                value = self._coalescer.get_or_fetch(key, lambda: _call_producer(producer))
            else:
                value = _call_producer(producer)
            self._cache.set(key, value, stale_time)
        except Exception as e:
            self._fail(key, generation, e)
            return self.result()

        with self._lock:
            if generation == self._generation:
                self._state.data = value
                self._state.is_loading = False
            else:
                logger.debug(f"Discarding superseded result for {key}")
        return self.result()


# Shared producer pool
_fetch_executor: Optional[ThreadPoolExecutor] = None
_fetch_executor_lock = threading.Lock()

# Shared coalescer, only built when de-duplication is switched on
_coalescer: Optional[RequestCoalescer] = None


def get_fetch_executor() -> ThreadPoolExecutor:
    """Get or create the shared producer thread pool."""
    global _fetch_executor
    with _fetch_executor_lock:
        if _fetch_executor is None:
            from config.settings import settings
            _fetch_executor = ThreadPoolExecutor(
                max_workers=settings.fetch_max_workers,
                thread_name_prefix="fetch",
            )
        return _fetch_executor


def shutdown_fetch_executor(wait: bool = True) -> None:
    """Shut down the shared pool; the next get_fetch_executor() builds a new one."""
    global _fetch_executor
    with _fetch_executor_lock:
        executor, _fetch_executor = _fetch_executor, None
    if executor is not None:
        executor.shutdown(wait=wait)


def create_coordinator(cache: Optional[TTLCache] = None) -> FetchCoordinator:
    """Build a coordinator wired to the process defaults from settings."""
    global _coalescer
    from config.settings import settings

    coalescer = None
    if settings.fetch_dedupe_in_flight:
        with _fetch_executor_lock:
            if _coalescer is None:
                _coalescer = RequestCoalescer(timeout=settings.fetch_coalesce_timeout)
            coalescer = _coalescer

    return FetchCoordinator(
        cache=cache if cache is not None else get_cache(),
        executor=None,
        coalescer=coalescer,
    )
