"""
Cache key composition.

Keys are "<resource>:<name>=<value>&..." with parameters sorted and None
values dropped, so one parameterization always maps to one key and every
parameterization of a resource shares the "<resource>:" prefix.
"""
from typing import Any, Dict, Optional

KEY_SEPARATOR = ":"


def resource_prefix(resource: str) -> str:
    """Prefix shared by every cached variant of a resource."""
    return f"{resource}{KEY_SEPARATOR}"


def cache_key(resource: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Generate a cache key from a resource name and its parameters."""
    sorted_params = sorted(
        (k, v) for k, v in (params or {}).items() if v is not None
    )
    encoded = "&".join(f"{k}={v}" for k, v in sorted_params)
    return f"{resource_prefix(resource)}{encoded}"
