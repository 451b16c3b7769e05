import asyncio
import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from infymailer.features.realtime_metrics.services.metrics_service import RealtimeMetricsService
from infymailer.features.realtime_metrics.services.metrics_state import MetricsState

FIXED_NOW = datetime(2026, 3, 10, 14, 30)


def fixed_clock() -> datetime:
    return FIXED_NOW


class FakeWebSocket:
    """Just enough of a Starlette WebSocket for the broadcaster."""

    def __init__(self, fail_on_send: bool = False):
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED
        self.fail_on_send = fail_on_send
        self.messages: list[dict] = []
        self.close_code: int | None = None

    async def send_text(self, text: str) -> None:
        if self.fail_on_send:
            raise RuntimeError("socket is gone")
        self.messages.append(json.loads(text))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer vanishing without the registry being told."""
        self.client_state = WebSocketState.DISCONNECTED


async def drain(subscriber, timeout: float = 1.0) -> None:
    """Run the subscriber's sender until its queue is empty."""
    sender = asyncio.create_task(subscriber.run_sender())
    try:
        await asyncio.wait_for(subscriber.queue.join(), timeout)
    finally:
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass


@pytest.fixture
def fake_websocket():
    def _make(**kwargs):
        return FakeWebSocket(**kwargs)

    return _make


@pytest.fixture
def metrics_state():
    return MetricsState(clock=fixed_clock)


@pytest.fixture
def metrics_service():
    return RealtimeMetricsService(
        clock=fixed_clock,
        simulator_enabled=False,
        send_timeout_seconds=1.0,
    )


@pytest.fixture
def metrics_app(metrics_service):
    from infymailer.main import create_app

    return create_app(metrics_service)


@pytest.fixture
def client(metrics_app):
    with TestClient(metrics_app) as test_client:
        yield test_client


@pytest.fixture
def drain_subscriber():
    return drain
