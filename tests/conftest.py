"""
Shared fixtures: simulated clock, inline executor, isolated components.
"""
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor

import pytest

from dashstate.cache import TTLCache


class FakeClock:
    """Manually advanced time source, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or the timeout passes."""
    return _wait_until


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(default_ttl=60.0, clock=clock)


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def thread_executor():
    executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="test-fetch")
    yield executor
    executor.shutdown(wait=True)
