"""
Fetch coordination: cached-or-produced values with loading/error state.
"""
from .coordinator import (
    FetchOptions,
    FetchState,
    FetchResult,
    FetchCoordinator,
    create_coordinator,
    get_fetch_executor,
    shutdown_fetch_executor,
)

__all__ = [
    "FetchOptions",
    "FetchState",
    "FetchResult",
    "FetchCoordinator",
    "create_coordinator",
    "get_fetch_executor",
    "shutdown_fetch_executor",
]
