"""
Metric sinks and principal resolvers consumed by MetricBatcher.

A sink receives one batch per call and raises on failure; the batcher
decides what a failure means. A principal resolver returns the current
identity, or None when nobody is signed in.
"""
import logging
from typing import Callable, List, Optional, Protocol, Sequence

import requests
from sqlalchemy.orm import sessionmaker

from ..models import PerformanceLog
from .models import MetricRecord

logger = logging.getLogger("telemetry.sinks")

PrincipalResolver = Callable[[], Optional[str]]


class MetricSink(Protocol):
    """Batch insert of records attributed to one principal."""

    def insert(self, principal_id: str, records: Sequence[MetricRecord]) -> None:
        ...


def _rows(principal_id: str, records: Sequence[MetricRecord]) -> List[dict]:
    return [record.to_row(principal_id).model_dump(mode="json") for record in records]


class RestMetricSink:
    """
    Posts batches to a PostgREST-style table endpoint.

    POST {base_url}/rest/v1/{table} with a JSON array of rows.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        table: str = "performance_logs",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def _get_headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def insert(self, principal_id: str, records: Sequence[MetricRecord]) -> None:
        response = self._session.post(
            self.url,
            headers=self._get_headers(),
            json=_rows(principal_id, records),
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.debug(f"Inserted {len(records)} rows into {self.url}")


class SqlMetricSink:
    """Inserts batches as PerformanceLog rows through a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(self, principal_id: str, records: Sequence[MetricRecord]) -> None:
        session = self._session_factory()
        try:
            session.add_all(
                PerformanceLog(**row) for row in _rows(principal_id, records)
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def static_principal(principal_id: Optional[str]) -> PrincipalResolver:
    """Resolver that always returns the same identity (or always None)."""
    def resolve() -> Optional[str]:
        return principal_id
    return resolve


class RestPrincipalResolver:
    """
    Resolves the signed-in user through GET {base_url}/auth/v1/user.

    token_provider returns the current access token, or None when signed
    out. A 401 also means "nobody"; any other failure raises.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]],
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/auth/v1/user"
        self.api_key = api_key
        self.timeout = timeout
        self._token_provider = token_provider
        self._session = session or requests.Session()

    def __call__(self) -> Optional[str]:
        token = self._token_provider()
        if not token:
            return None

        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        response = self._session.get(self.url, headers=headers, timeout=self.timeout)
        if response.status_code == 401:
            return None
        response.raise_for_status()
        return response.json().get("id")
