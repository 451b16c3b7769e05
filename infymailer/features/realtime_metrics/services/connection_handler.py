"""
WebSocket lifecycle for metrics subscribers.

A subscriber is registered, sent the current snapshot, and then only read
from until it disconnects. Inbound messages are advisory; nothing is ever
sent back in response to them.
"""

import asyncio
import contextlib
import json
from collections.abc import Callable

from fastapi import WebSocket, WebSocketDisconnect

from infymailer.features.realtime_metrics.domain import METRICS_CHANNEL, MetricsUpdateMessage
from infymailer.features.realtime_metrics.services.broadcaster import (
    ConnectionRegistry,
    MetricsBroadcaster,
    Subscriber,
)
from infymailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SnapshotProvider = Callable[[], MetricsUpdateMessage]


class MetricsConnectionHandler:
    """Accepts subscribers, keeps the registry current and reads inbound frames."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: MetricsBroadcaster,
        snapshot_provider: SnapshotProvider,
        on_last_subscriber_left: Callable[[], None] | None = None,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.snapshot_provider = snapshot_provider
        self.on_last_subscriber_left = on_last_subscriber_left

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        subscriber = self.connect(websocket)
        sender = self.start_sender(subscriber)

        try:
            await self._read_until_disconnect(subscriber)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("WebSocket client error", subscriber_id=subscriber.id, error=str(e))
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            self.disconnect(subscriber)

    def connect(self, websocket: WebSocket) -> Subscriber:
        """
        Register an accepted socket and queue the current snapshot for it.

        Both steps run without yielding to the event loop, so the snapshot is
        always the first message a subscriber receives.
        """
        subscriber = self.registry.add(websocket)
        self.broadcaster.send_snapshot(subscriber, self.snapshot_provider())
        logger.info(
            "WebSocket client connected for real-time metrics",
            subscriber_id=subscriber.id,
            subscribers=len(self.registry),
        )
        return subscriber

    def start_sender(self, subscriber: Subscriber) -> asyncio.Task:
        """
        Run the subscriber's sender task.

        A sender only finishes on its own after a failed send; the subscriber
        is deregistered right away instead of waiting for the reader to exit.
        """
        sender = asyncio.create_task(
            subscriber.run_sender(), name=f"metrics-sender-{subscriber.id}"
        )

        def _on_sender_done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            logger.info("Metrics sender stopped after send failure", subscriber_id=subscriber.id)
            self.disconnect(subscriber)

        sender.add_done_callback(_on_sender_done)
        return sender

    def disconnect(self, subscriber: Subscriber) -> None:
        if subscriber not in self.registry:
            return

        self.registry.discard(subscriber)
        logger.info(
            "WebSocket client disconnected from real-time metrics",
            subscriber_id=subscriber.id,
            sent=subscriber.sent,
            dropped=subscriber.dropped,
            subscribers=len(self.registry),
        )

        if len(self.registry) == 0 and self.on_last_subscriber_left:
            self.on_last_subscriber_left()

    async def _read_until_disconnect(self, subscriber: Subscriber) -> None:
        while True:
            message = await subscriber.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

            payload = message.get("text")
            if payload is None and message.get("bytes") is not None:
                payload = message["bytes"].decode("utf-8", errors="replace")
            if payload is not None:
                self.handle_inbound(subscriber, payload)

    def handle_inbound(self, subscriber: Subscriber, payload: str) -> None:
        """Interpret one inbound frame. Malformed input is logged and ignored."""
        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning(
                "Error processing WebSocket message", subscriber_id=subscriber.id, error=str(e)
            )
            return

        if not isinstance(data, dict):
            logger.warning(
                "Ignoring non-object WebSocket message",
                subscriber_id=subscriber.id,
                payload_type=type(data).__name__,
            )
            return

        if data.get("type") == "subscribe" and data.get("channel") == METRICS_CHANNEL:
            logger.info("Client subscribed to email-metrics channel", subscriber_id=subscriber.id)
            return

        logger.debug(
            "Ignoring unrecognized WebSocket message",
            subscriber_id=subscriber.id,
            message_type=data.get("type"),
        )
