"""
In-flight request de-duplication.

When several fetches for the same key overlap, only the first one calls
its producer; the others wait on the same Future and share the outcome.
FetchCoordinator uses this only when explicitly asked to.
"""
import threading
import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Maps each cache key to the Future of its in-flight producer call.

    Pattern:
    - First request for a key registers a Future and runs the producer
    - Later requests for the same key block on that Future
    - The entry is removed as soon as the producer finishes, so the next
      request after completion starts a fresh call

    Usage:
        coalescer = RequestCoalescer()
        result = coalescer.get_or_fetch("orders:page=1", load_orders)
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a waiter blocks on someone else's call
        """
        self._in_flight: Dict[str, Future] = {}
        self._waiters: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Either join an existing in-flight call for key or start one.

        Raises:
            TimeoutError: If a joined call does not finish within the timeout
            Exception: Whatever fetch_fn raised, for the initiator and waiters alike
        """
        with self._lock:
            future = self._in_flight.get(key)
            is_initiator = future is None
            if is_initiator:
                future = Future()
                self._in_flight[key] = future
                logger.debug(f"Initiating fetch for {key}")
            else:
                self._waiters[key] = self._waiters.get(key, 0) + 1
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {self._waiters[key]})"
                )

        if is_initiator:
            try:
                future.set_result(fetch_fn())
            except Exception as e:
                future.set_exception(e)
            finally:
                with self._lock:
                    if self._in_flight.get(key) is future:
                        del self._in_flight[key]
                        self._waiters.pop(key, None)
            return future.result()

        try:
            return future.result(timeout=self._timeout)
        except FutureTimeoutError:
            logger.error(f"Timeout waiting for coalesced request: {key}")
            raise TimeoutError(f"Request for {key} timed out after {self._timeout}s")

    def waiter_count(self, key: str) -> int:
        """Requests currently joined to the in-flight call for key."""
        with self._lock:
            return self._waiters.get(key, 0)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)
