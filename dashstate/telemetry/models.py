"""
Telemetry records and the row shape delivered to metric sinks.
"""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class MetricRecord:
    """One timed operation, created when the operation completes."""
    category: str
    label: str
    duration_ms: float
    attributes: Any = None

    def to_row(self, principal_id: str) -> "PerformanceLogRow":
        """Attribute this record to a principal for delivery."""
        return PerformanceLogRow(
            user_id=principal_id,
            route=self.category,
            action=self.label,
            duration_ms=self.duration_ms,
            meta=self.attributes,
        )


class PerformanceLogRow(BaseModel):
    """Row written to the performance_logs table"""
    user_id: str
    route: str
    action: str
    duration_ms: float
    meta: Optional[Any] = None
