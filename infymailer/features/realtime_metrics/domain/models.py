"""
Domain models for the real-time metrics feature.

The mutable aggregate (MetricsSnapshot, HourlyBucket) is kept as plain
dataclasses owned by MetricsState. The pydantic models describe the two
shapes that cross a boundary: the typed patch accepted by update_metrics
and the message pushed to WebSocket subscribers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HOURS_PER_DAY = 24
METRICS_UPDATE_TYPE = "email-metrics-update"
METRICS_CHANNEL = "email-metrics"


def hour_label(hour: int) -> str:
    """Canonical bucket label for an hour of day, e.g. 5 -> "5:00"."""
    return f"{hour}:00"


class ConnectionState(str, Enum):
    """Lifecycle of a subscriber connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(slots=True)
class HourlyBucket:
    """Opens/clicks accumulated for one hour of the day."""

    hour: str
    opens: int = 0
    clicks: int = 0


@dataclass(slots=True)
class MetricsSnapshot:
    """Aggregate counters and the scores derived from them."""

    opens: int = 0
    clicks: int = 0
    bounces: int = 0
    delivered: int = 0
    unique_opens: int = 0
    click_rate: float = 0.0
    engagement_score: float = 0.0
    updated_at_ms: int | None = None


class MetricsPatch(BaseModel):
    """
    Partial update for the aggregate counters.

    Only fields that are present and not null are merged; everything else
    keeps its current value. Keys may be snake_case or camelCase.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    opens: int | None = Field(default=None, ge=0)
    clicks: int | None = Field(default=None, ge=0)
    bounces: int | None = Field(default=None, ge=0)
    delivered: int | None = Field(default=None, ge=0)
    unique_opens: int | None = Field(default=None, ge=0)
    click_rate: float | None = Field(default=None, ge=0)
    engagement_score: float | None = Field(default=None, ge=0, le=100)

    def changes(self) -> dict[str, int | float]:
        """Fields to merge, keyed by snapshot attribute name."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class HourlyActivity(BaseModel):
    hour: str
    opens: int
    clicks: int


class MetricsUpdateMessage(BaseModel):
    """Full snapshot pushed to subscribers on connect and on every change."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: Literal["email-metrics-update"] = METRICS_UPDATE_TYPE
    opens: int
    clicks: int
    bounces: int
    delivered: int
    unique_opens: int
    click_rate: float
    engagement_score: float
    hourly_activity: list[HourlyActivity]
    timestamp: int = Field(..., description="Epoch milliseconds when the message was built")

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)
