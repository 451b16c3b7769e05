"""
Synthetic activity generator for the real-time metrics stream.

Keeps dashboards moving while no real tracking events arrive. It feeds the
same record_activity path as real opens/clicks, so swapping it for
NullSimulator changes nothing else.
"""

import asyncio
import random
from typing import Protocol

from infymailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 3.0

# Inclusive ranges per tick
OPENS_RANGE = (1, 5)
CLICKS_RANGE = (0, 2)
DELIVERED_RANGE = (3, 10)
UNIQUE_OPENS_RANGE = (1, 3)


class ActivitySink(Protocol):
    def record_activity(
        self,
        opens: int = 0,
        clicks: int = 0,
        delivered: int = 0,
        unique_opens: int = 0,
        hour: str | None = None,
    ) -> object: ...

    @property
    def subscriber_count(self) -> int: ...


class NullSimulator:
    """Simulator stand-in that never produces activity."""

    is_running = False
    ticks = 0

    def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    def tick(self) -> bool:
        return False


class MetricsSimulator:
    """Periodically records random opens, clicks and deliveries."""

    def __init__(
        self,
        sink: ActivitySink,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        rng: random.Random | None = None,
        require_subscribers: bool = True,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.sink = sink
        self.interval_seconds = interval_seconds
        self.rng = rng or random.Random()
        self.require_subscribers = require_subscribers
        self.ticks = 0
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop."""
        if self.is_running:
            return

        self._task = asyncio.create_task(self._run(), name="metrics-simulator")
        logger.info("Metrics simulator started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return

        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Metrics simulator stopped", ticks=self.ticks)

    def tick(self) -> bool:
        """
        Record one batch of synthetic activity.

        Returns:
            False when the tick was skipped because nobody is subscribed
        """
        if self.require_subscribers and self.sink.subscriber_count == 0:
            return False

        self.sink.record_activity(
            opens=self.rng.randint(*OPENS_RANGE),
            clicks=self.rng.randint(*CLICKS_RANGE),
            delivered=self.rng.randint(*DELIVERED_RANGE),
            unique_opens=self.rng.randint(*UNIQUE_OPENS_RANGE),
        )
        self.ticks += 1
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.tick()
            except Exception as e:
                logger.error("Metrics simulator tick failed", error=str(e))
