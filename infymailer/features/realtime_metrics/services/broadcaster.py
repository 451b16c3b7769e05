"""
Subscriber registry and snapshot fan-out.

Every subscriber owns a bounded outbound queue drained by its own sender
task, so publishing never awaits a socket: a slow or dead subscriber only
loses its own (oldest) messages.
"""

import asyncio
import itertools

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from infymailer.features.realtime_metrics.domain import ConnectionState, MetricsUpdateMessage
from infymailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 32
DEFAULT_SEND_TIMEOUT_SECONDS = 5.0

_subscriber_ids = itertools.count(1)


class Subscriber:
    """One WebSocket connection registered for metrics updates."""

    def __init__(
        self,
        websocket: WebSocket,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout_seconds: float | None = DEFAULT_SEND_TIMEOUT_SECONDS,
    ):
        self.id = f"sub-{next(_subscriber_ids)}"
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, queue_size))
        self.send_timeout_seconds = send_timeout_seconds
        self.sent = 0
        self.dropped = 0

    @property
    def is_open(self) -> bool:
        if self.state is not ConnectionState.OPEN:
            return False
        return (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    def mark_open(self) -> None:
        self.state = ConnectionState.OPEN

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    def enqueue(self, text: str) -> None:
        """Queue a message without blocking, dropping the oldest on overflow."""
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.queue.task_done()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            logger.debug("Subscriber queue full, dropped oldest message", subscriber_id=self.id)
        self.queue.put_nowait(text)

    async def run_sender(self) -> None:
        """Drain the queue until the subscriber closes or a send fails."""
        while self.state is not ConnectionState.CLOSED:
            text = await self.queue.get()
            try:
                if not self.is_open:
                    continue
                await self._send(text)
            except asyncio.TimeoutError:
                self.dropped += 1
                logger.warning(
                    "Timed out sending metrics update",
                    subscriber_id=self.id,
                    timeout_seconds=self.send_timeout_seconds,
                )
            except Exception as e:
                self.mark_closed()
                logger.warning("Failed to send metrics update", subscriber_id=self.id, error=str(e))
            finally:
                self.queue.task_done()

    async def _send(self, text: str) -> None:
        if self.send_timeout_seconds:
            await asyncio.wait_for(self.websocket.send_text(text), self.send_timeout_seconds)
        else:
            await self.websocket.send_text(text)
        self.sent += 1


class ConnectionRegistry:
    """The set of currently registered subscribers."""

    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        send_timeout_seconds: float | None = DEFAULT_SEND_TIMEOUT_SECONDS,
    ):
        self.queue_size = queue_size
        self.send_timeout_seconds = send_timeout_seconds
        self._subscribers: dict[str, Subscriber] = {}

    def add(self, websocket: WebSocket) -> Subscriber:
        subscriber = Subscriber(
            websocket,
            queue_size=self.queue_size,
            send_timeout_seconds=self.send_timeout_seconds,
        )
        subscriber.mark_open()
        self._subscribers[subscriber.id] = subscriber
        return subscriber

    def discard(self, subscriber: Subscriber) -> None:
        subscriber.mark_closed()
        self._subscribers.pop(subscriber.id, None)

    def __len__(self) -> int:
        return len(self._subscribers)

    def __iter__(self):
        return iter(list(self._subscribers.values()))

    def __contains__(self, subscriber: Subscriber) -> bool:
        return subscriber.id in self._subscribers


class MetricsBroadcaster:
    """Serialize a snapshot once and queue it for every open subscriber."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self.messages_published = 0

    def publish(self, message: MetricsUpdateMessage) -> int:
        """
        Queue message for all open subscribers.

        Subscribers that are not open are skipped but stay registered;
        removal happens only when their connection handler exits.

        Returns:
            Number of subscribers the message was queued for
        """
        text = message.to_wire()
        delivered = 0

        for subscriber in self.registry:
            if not subscriber.is_open:
                continue
            try:
                subscriber.enqueue(text)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Failed to queue metrics update", subscriber_id=subscriber.id, error=str(e)
                )

        self.messages_published += 1
        logger.debug(
            "Metrics update published",
            subscribers=delivered,
            registered=len(self.registry),
        )
        return delivered

    def send_snapshot(self, subscriber: Subscriber, message: MetricsUpdateMessage) -> None:
        subscriber.enqueue(message.to_wire())
