"""
Domain subpackage for the real-time metrics feature.
"""

from .errors import InvalidHourError, RealtimeMetricsError
from .models import (
    HOURS_PER_DAY,
    METRICS_CHANNEL,
    METRICS_UPDATE_TYPE,
    ConnectionState,
    HourlyActivity,
    HourlyBucket,
    MetricsPatch,
    MetricsSnapshot,
    MetricsUpdateMessage,
    hour_label,
)

__all__ = [
    "HOURS_PER_DAY",
    "METRICS_CHANNEL",
    "METRICS_UPDATE_TYPE",
    "ConnectionState",
    "HourlyActivity",
    "HourlyBucket",
    "InvalidHourError",
    "MetricsPatch",
    "MetricsSnapshot",
    "MetricsUpdateMessage",
    "RealtimeMetricsError",
    "hour_label",
]
