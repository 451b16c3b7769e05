"""
Real-time metrics service facade.

RealtimeMetricsService owns one metrics stream: the state, the subscriber
registry, the broadcaster, the connection handler and the simulator. All
mutations go through its methods and each one broadcasts the new snapshot.

Mutations are plain synchronous calls made on the event loop, so the
broadcast order always matches the mutation order.
"""

import random
from typing import Any

from fastapi import FastAPI, WebSocket
from fastapi.requests import HTTPConnection

from infymailer.config import Settings, settings
from infymailer.features.realtime_metrics.domain import MetricsPatch, MetricsUpdateMessage
from infymailer.features.realtime_metrics.services.broadcaster import (
    ConnectionRegistry,
    MetricsBroadcaster,
)
from infymailer.features.realtime_metrics.services.connection_handler import (
    MetricsConnectionHandler,
)
from infymailer.features.realtime_metrics.services.metrics_state import Clock, MetricsState
from infymailer.features.realtime_metrics.services.simulator import MetricsSimulator, NullSimulator
from infymailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

APP_STATE_KEY = "realtime_metrics"
WS_CLOSE_GOING_AWAY = 1001


class RealtimeMetricsService:
    def __init__(
        self,
        state: MetricsState | None = None,
        clock: Clock | None = None,
        queue_size: int = 32,
        send_timeout_seconds: float | None = 5.0,
        simulator_enabled: bool = True,
        simulator_interval_seconds: float = 3.0,
        simulator_require_subscribers: bool = True,
        rng: random.Random | None = None,
    ):
        self.state = state or MetricsState(clock=clock)
        self.registry = ConnectionRegistry(
            queue_size=queue_size, send_timeout_seconds=send_timeout_seconds
        )
        self.broadcaster = MetricsBroadcaster(self.registry)
        self.handler = MetricsConnectionHandler(
            self.registry,
            self.broadcaster,
            snapshot_provider=self.snapshot_message,
            on_last_subscriber_left=self._on_last_subscriber_left,
        )

        if simulator_enabled:
            self.simulator: MetricsSimulator | NullSimulator = MetricsSimulator(
                self,
                interval_seconds=simulator_interval_seconds,
                rng=rng,
                require_subscribers=simulator_require_subscribers,
            )
        else:
            self.simulator = NullSimulator()

    @classmethod
    def from_settings(cls, config: Settings | None = None, **overrides) -> "RealtimeMetricsService":
        metrics_config = (config or settings).get_realtime_metrics_config()
        kwargs = {
            "queue_size": metrics_config["subscriber_queue_size"],
            "send_timeout_seconds": metrics_config["send_timeout_seconds"],
            "simulator_enabled": metrics_config["simulator_enabled"],
            "simulator_interval_seconds": metrics_config["simulator_interval_seconds"],
            "simulator_require_subscribers": metrics_config["simulator_require_subscribers"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Update triggers
    # ------------------------------------------------------------------

    def record_open(self, hour: str | None = None) -> MetricsUpdateMessage:
        """Record one email open, optionally into a specific "H:00" bucket."""
        self.state.record_open(hour)
        return self._broadcast()

    def record_click(self, hour: str | None = None) -> MetricsUpdateMessage:
        """Record one link click, optionally into a specific "H:00" bucket."""
        self.state.record_click(hour)
        return self._broadcast()

    def record_activity(
        self,
        opens: int = 0,
        clicks: int = 0,
        delivered: int = 0,
        unique_opens: int = 0,
        hour: str | None = None,
    ) -> MetricsUpdateMessage:
        self.state.record_activity(
            opens=opens, clicks=clicks, delivered=delivered, unique_opens=unique_opens, hour=hour
        )
        return self._broadcast()

    def update_metrics(self, patch: MetricsPatch | dict[str, Any]) -> MetricsUpdateMessage:
        """
        Merge a partial update into the counters and broadcast.

        Dicts are validated into a MetricsPatch first, so unknown keys and
        negative values raise pydantic.ValidationError.
        """
        if not isinstance(patch, MetricsPatch):
            patch = MetricsPatch.model_validate(patch)

        self.state.apply_patch(patch)
        logger.debug("Metrics updated from patch", fields=sorted(patch.changes()))
        return self._broadcast()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot_message(self) -> MetricsUpdateMessage:
        return self.state.build_message()

    @property
    def subscriber_count(self) -> int:
        return len(self.registry)

    def stats(self) -> dict:
        return {
            "subscribers": self.subscriber_count,
            "messages_published": self.broadcaster.messages_published,
            "simulator_enabled": not isinstance(self.simulator, NullSimulator),
            "simulator_running": self.simulator.is_running,
            "simulator_ticks": self.simulator.ticks,
            "last_updated_ms": self.state.snapshot.updated_at_ms,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        await self.handler.serve(websocket)

    def start(self) -> None:
        self.simulator.start()

    async def shutdown(self) -> None:
        await self.simulator.stop()

        for subscriber in self.registry:
            subscriber.mark_closed()
            try:
                await subscriber.websocket.close(code=WS_CLOSE_GOING_AWAY)
            except Exception as e:
                logger.debug(
                    "Error closing subscriber on shutdown",
                    subscriber_id=subscriber.id,
                    error=str(e),
                )

        logger.info("Real-time metrics service shut down", **self.stats())

    def _broadcast(self) -> MetricsUpdateMessage:
        message = self.snapshot_message()
        self.broadcaster.publish(message)
        return message

    def _on_last_subscriber_left(self) -> None:
        logger.info(
            "No real-time metrics subscribers remaining",
            simulator_running=self.simulator.is_running,
        )


def init_realtime_metrics(
    app: FastAPI,
    service: RealtimeMetricsService | None = None,
    path: str | None = None,
) -> RealtimeMetricsService:
    """
    Attach the metrics WebSocket endpoint and HTTP routes to an app.

    Calling it again on the same app returns the already attached service.
    """
    existing = getattr(app.state, APP_STATE_KEY, None)
    if existing is not None:
        return existing

    from infymailer.features.realtime_metrics.api.router import router, metrics_websocket

    service = service or RealtimeMetricsService.from_settings()
    ws_path = path or settings.METRICS_WS_PATH

    setattr(app.state, APP_STATE_KEY, service)
    app.add_api_websocket_route(ws_path, metrics_websocket, name="metrics_websocket")
    app.include_router(router)

    logger.info("Real-time metrics attached", ws_path=ws_path, **service.stats())
    return service


def get_realtime_metrics_service(connection: HTTPConnection) -> RealtimeMetricsService:
    """FastAPI dependency returning the service attached to the current app."""
    service = getattr(connection.app.state, APP_STATE_KEY, None)
    if service is None:
        raise RuntimeError("Real-time metrics are not initialized for this application")
    return service
