"""
Authoritative in-memory aggregate for real-time email metrics.

MetricsState holds the counters and the 24-slot hourly table and keeps the
derived scores in sync. It performs no I/O; broadcasting is the caller's
job (see RealtimeMetricsService).
"""

import re
import time
from collections.abc import Callable
from dataclasses import fields
from datetime import datetime

from infymailer.features.realtime_metrics.domain import (
    HOURS_PER_DAY,
    HourlyActivity,
    HourlyBucket,
    InvalidHourError,
    MetricsPatch,
    MetricsSnapshot,
    MetricsUpdateMessage,
    hour_label,
)

OPEN_RATE_WEIGHT = 0.25
CLICK_RATE_WEIGHT = 0.75
MIN_ENGAGEMENT_SCORE = 0.0
MAX_ENGAGEMENT_SCORE = 100.0

_HOUR_PATTERN = re.compile(r"^\s*(\d{1,2}):00\s*$")

Clock = Callable[[], datetime]


def normalize_hour(label: str) -> str:
    """Return the canonical "H:00" bucket label or raise InvalidHourError."""
    match = _HOUR_PATTERN.match(label) if isinstance(label, str) else None
    if not match:
        raise InvalidHourError(str(label))

    hour = int(match.group(1))
    if hour >= HOURS_PER_DAY:
        raise InvalidHourError(label)
    return hour_label(hour)


def _now_ms() -> int:
    return int(time.time() * 1000)


class MetricsState:
    """Counters, hourly buckets and derived scores for one metrics stream."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or datetime.now
        self.snapshot = MetricsSnapshot()
        # dicts keep insertion order, which is hour order here
        self._hourly: dict[str, HourlyBucket] = {
            hour_label(hour): HourlyBucket(hour=hour_label(hour)) for hour in range(HOURS_PER_DAY)
        }

    def current_hour(self) -> str:
        return hour_label(self._clock().hour)

    def resolve_hour(self, hour: str | None) -> str:
        if hour is None:
            return self.current_hour()
        return normalize_hour(hour)

    def record_activity(
        self,
        opens: int = 0,
        clicks: int = 0,
        delivered: int = 0,
        unique_opens: int = 0,
        hour: str | None = None,
    ) -> MetricsSnapshot:
        """
        Apply activity increments to the counters and the hour's bucket.

        This is the single increment path used by real tracking events and
        by the simulator, so derived scores are always recomputed the same way.

        Raises:
            ValueError: if any delta is negative
            InvalidHourError: if hour is not a valid bucket label
        """
        deltas = {
            "opens": opens,
            "clicks": clicks,
            "delivered": delivered,
            "unique_opens": unique_opens,
        }
        negative = {name: value for name, value in deltas.items() if value < 0}
        if negative:
            raise ValueError(f"Activity deltas must be non-negative: {negative}")

        # Resolve before mutating so a bad label leaves state untouched
        bucket = self._hourly[self.resolve_hour(hour)]

        self.snapshot.opens += opens
        self.snapshot.clicks += clicks
        self.snapshot.delivered += delivered
        self.snapshot.unique_opens += unique_opens

        bucket.opens += opens
        bucket.clicks += clicks

        self.recompute_derived_scores()
        self.snapshot.updated_at_ms = _now_ms()
        return self.snapshot

    def record_open(self, hour: str | None = None) -> MetricsSnapshot:
        return self.record_activity(opens=1, unique_opens=1, hour=hour)

    def record_click(self, hour: str | None = None) -> MetricsSnapshot:
        return self.record_activity(clicks=1, hour=hour)

    def apply_patch(self, patch: MetricsPatch) -> MetricsSnapshot:
        """
        Merge the fields present in patch into the snapshot.

        Derived scores are left as they are; only the record_* paths
        recompute them.
        """
        for name, value in patch.changes().items():
            setattr(self.snapshot, name, value)

        self.snapshot.updated_at_ms = _now_ms()
        return self.snapshot

    def recompute_derived_scores(self) -> None:
        snapshot = self.snapshot

        # click_rate keeps its previous value while there are no unique opens
        if snapshot.unique_opens > 0:
            snapshot.click_rate = snapshot.clicks / snapshot.unique_opens * 100

        open_rate = snapshot.unique_opens / max(1, snapshot.delivered) * 100
        score = OPEN_RATE_WEIGHT * open_rate + CLICK_RATE_WEIGHT * snapshot.click_rate
        snapshot.engagement_score = min(MAX_ENGAGEMENT_SCORE, max(MIN_ENGAGEMENT_SCORE, score))

    def hourly_activity(self) -> list[HourlyBucket]:
        return [
            HourlyBucket(hour=bucket.hour, opens=bucket.opens, clicks=bucket.clicks)
            for bucket in self._hourly.values()
        ]

    def bucket(self, hour: str) -> HourlyBucket:
        bucket = self._hourly[normalize_hour(hour)]
        return HourlyBucket(hour=bucket.hour, opens=bucket.opens, clicks=bucket.clicks)

    def as_dict(self) -> dict:
        return {f.name: getattr(self.snapshot, f.name) for f in fields(self.snapshot)}

    def build_message(self, timestamp_ms: int | None = None) -> MetricsUpdateMessage:
        snapshot = self.snapshot
        return MetricsUpdateMessage(
            opens=snapshot.opens,
            clicks=snapshot.clicks,
            bounces=snapshot.bounces,
            delivered=snapshot.delivered,
            unique_opens=snapshot.unique_opens,
            click_rate=snapshot.click_rate,
            engagement_score=snapshot.engagement_score,
            hourly_activity=[
                HourlyActivity(hour=bucket.hour, opens=bucket.opens, clicks=bucket.clicks)
                for bucket in self._hourly.values()
            ],
            timestamp=timestamp_ms if timestamp_ms is not None else _now_ms(),
        )
