import asyncio

import pytest

from infymailer.features.realtime_metrics.domain import ConnectionState
from infymailer.features.realtime_metrics.services.broadcaster import (
    ConnectionRegistry,
    MetricsBroadcaster,
)


@pytest.mark.asyncio
async def test_late_joiner_gets_current_snapshot_first(
    metrics_service, fake_websocket, drain_subscriber
):
    for _ in range(3):
        metrics_service.record_open("9:00")
    metrics_service.record_click("9:00")

    subscriber = metrics_service.handler.connect(fake_websocket())
    metrics_service.record_open("9:00")
    await drain_subscriber(subscriber)

    first, second = subscriber.websocket.messages
    assert first["type"] == "email-metrics-update"
    assert (first["opens"], first["clicks"], first["uniqueOpens"]) == (3, 1, 3)
    assert first["hourlyActivity"][9] == {"hour": "9:00", "opens": 3, "clicks": 1}
    assert second["opens"] == 4


@pytest.mark.asyncio
async def test_vanished_connection_is_skipped_and_others_still_receive(
    metrics_service, fake_websocket, drain_subscriber
):
    healthy = [metrics_service.handler.connect(fake_websocket()) for _ in range(2)]
    vanished = metrics_service.handler.connect(fake_websocket())
    for subscriber in healthy + [vanished]:
        await drain_subscriber(subscriber)

    vanished.websocket.drop()
    metrics_service.record_open()
    metrics_service.record_click()

    for subscriber in healthy:
        await drain_subscriber(subscriber)
        latest = subscriber.websocket.messages[-1]
        assert (latest["opens"], latest["clicks"]) == (1, 1)

    assert len(vanished.websocket.messages) == 1
    # skipped, not removed
    assert vanished in metrics_service.registry


@pytest.mark.asyncio
async def test_send_failure_is_contained_to_one_subscriber(
    metrics_state, fake_websocket, drain_subscriber
):
    registry = ConnectionRegistry(queue_size=4, send_timeout_seconds=1.0)
    broadcaster = MetricsBroadcaster(registry)
    broken = registry.add(fake_websocket(fail_on_send=True))
    working = registry.add(fake_websocket())

    metrics_state.record_open()
    queued = broadcaster.publish(metrics_state.build_message())

    assert queued == 2
    await drain_subscriber(broken)
    await drain_subscriber(working)

    assert broken.state is ConnectionState.CLOSED
    assert working.websocket.messages[-1]["opens"] == 1

    metrics_state.record_open()
    assert broadcaster.publish(metrics_state.build_message()) == 1


@pytest.mark.asyncio
async def test_full_queue_drops_oldest_message(metrics_state, fake_websocket, drain_subscriber):
    registry = ConnectionRegistry(queue_size=2)
    broadcaster = MetricsBroadcaster(registry)
    subscriber = registry.add(fake_websocket())

    for _ in range(3):
        metrics_state.record_open()
        broadcaster.publish(metrics_state.build_message())

    assert subscriber.dropped == 1
    await drain_subscriber(subscriber)
    assert [m["opens"] for m in subscriber.websocket.messages] == [2, 3]


@pytest.mark.asyncio
async def test_updates_arrive_in_mutation_order(metrics_service, fake_websocket, drain_subscriber):
    subscriber = metrics_service.handler.connect(fake_websocket())

    for _ in range(5):
        metrics_service.record_open()
    await drain_subscriber(subscriber)

    assert [m["opens"] for m in subscriber.websocket.messages] == [0, 1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_slow_subscriber_times_out_without_closing(metrics_state, fake_websocket):
    registry = ConnectionRegistry(queue_size=4, send_timeout_seconds=0.01)
    broadcaster = MetricsBroadcaster(registry)
    websocket = fake_websocket()

    async def hang(text):
        await asyncio.sleep(1)

    websocket.send_text = hang
    subscriber = registry.add(websocket)
    broadcaster.publish(metrics_state.build_message())

    sender = asyncio.create_task(subscriber.run_sender())
    await asyncio.wait_for(subscriber.queue.join(), 1)
    sender.cancel()
    with pytest.raises(asyncio.CancelledError):
        await sender

    assert subscriber.dropped == 1
    assert subscriber.state is ConnectionState.OPEN


def test_publish_with_no_subscribers(metrics_state):
    broadcaster = MetricsBroadcaster(ConnectionRegistry())

    assert broadcaster.publish(metrics_state.build_message()) == 0
    assert broadcaster.messages_published == 1


@pytest.mark.asyncio
async def test_disconnect_removes_subscriber(metrics_service, fake_websocket):
    subscriber = metrics_service.handler.connect(fake_websocket())
    assert metrics_service.subscriber_count == 1

    metrics_service.handler.disconnect(subscriber)
    metrics_service.handler.disconnect(subscriber)

    assert metrics_service.subscriber_count == 0
    assert subscriber.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_failed_sender_deregisters_subscriber(metrics_service, fake_websocket):
    broken = metrics_service.handler.connect(fake_websocket(fail_on_send=True))
    healthy = metrics_service.handler.connect(fake_websocket())
    assert metrics_service.subscriber_count == 2

    sender = metrics_service.handler.start_sender(broken)
    await asyncio.wait_for(sender, 1)
    # done callbacks run on the next loop iteration
    await asyncio.sleep(0)

    assert broken not in metrics_service.registry
    assert healthy in metrics_service.registry
    assert metrics_service.subscriber_count == 1
    assert metrics_service.stats()["subscribers"] == 1
