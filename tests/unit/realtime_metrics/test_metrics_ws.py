"""
End-to-end tests for the metrics WebSocket and HTTP routes.
"""

import time


def _wait_for_subscribers(client, expected: int, timeout: float = 2.0) -> int:
    deadline = time.monotonic() + timeout
    count = client.get("/api/metrics/realtime/stats").json()["subscribers"]
    while count != expected and time.monotonic() < deadline:
        time.sleep(0.01)
        count = client.get("/api/metrics/realtime/stats").json()["subscribers"]
    return count


def test_connect_receives_snapshot_immediately(client):
    client.post("/api/metrics/realtime/opens", json={"hour": "8:00"})

    with client.websocket_connect("/metrics-ws") as websocket:
        snapshot = websocket.receive_json()

    assert snapshot["type"] == "email-metrics-update"
    assert snapshot["opens"] == 1
    assert [entry["hour"] for entry in snapshot["hourlyActivity"]] == [
        f"{h}:00" for h in range(24)
    ]
    assert snapshot["hourlyActivity"][8]["opens"] == 1
    assert isinstance(snapshot["timestamp"], int)


def test_open_then_click_end_to_end(client):
    with client.websocket_connect("/metrics-ws") as websocket:
        initial = websocket.receive_json()
        assert initial["opens"] == 0

        client.post("/api/metrics/realtime/opens")
        websocket.receive_json()
        client.post("/api/metrics/realtime/clicks")
        message = websocket.receive_json()

    assert message["opens"] == 1
    assert message["clicks"] == 1
    assert message["uniqueOpens"] == 1
    assert message["clickRate"] == 100
    assert message["engagementScore"] == 100


def test_malformed_and_subscribe_messages_keep_connection_open(client):
    with client.websocket_connect("/metrics-ws") as websocket:
        websocket.receive_json()
        websocket.send_text("this is not json")
        websocket.send_json({"type": "subscribe", "channel": "email-metrics"})
        websocket.send_json({"type": "unsubscribe"})

        client.post("/api/metrics/realtime/clicks", json={"hour": "2:00"})
        message = websocket.receive_json()

    assert message["clicks"] == 1
    assert message["hourlyActivity"][2] == {"hour": "2:00", "opens": 0, "clicks": 1}


def test_every_subscriber_receives_each_update(client):
    with client.websocket_connect("/metrics-ws") as first:
        first.receive_json()
        with client.websocket_connect("/metrics-ws") as second:
            second.receive_json()

            client.patch("/api/metrics/realtime", json={"delivered": 50})

            assert first.receive_json()["delivered"] == 50
            assert second.receive_json()["delivered"] == 50


def test_disconnect_deregisters_subscriber(client):
    with client.websocket_connect("/metrics-ws") as websocket:
        websocket.receive_json()
        assert _wait_for_subscribers(client, 1) == 1

    assert _wait_for_subscribers(client, 0) == 0


def test_get_snapshot(client):
    response = client.get("/api/metrics/realtime")

    assert response.status_code == 200
    data = response.json()
    assert data["type"] == "email-metrics-update"
    assert len(data["hourlyActivity"]) == 24


def test_invalid_hour_returns_422(client):
    response = client.post("/api/metrics/realtime/opens", json={"hour": "27:00"})

    assert response.status_code == 422
    assert client.get("/api/metrics/realtime").json()["opens"] == 0


def test_patch_merges_camel_case_fields(client):
    response = client.patch(
        "/api/metrics/realtime", json={"uniqueOpens": 4, "bounces": 2}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["uniqueOpens"] == 4
    assert data["bounces"] == 2
    assert data["opens"] == 0


def test_patch_rejects_invalid_fields(client):
    assert client.patch("/api/metrics/realtime", json={"opens": -3}).status_code == 422
    assert client.patch("/api/metrics/realtime", json={"unknown": 1}).status_code == 422


def test_simulator_control_when_disabled(client):
    response = client.post("/api/metrics/realtime/simulator/start")
    assert response.status_code == 409

    response = client.post("/api/metrics/realtime/simulator/stop")
    assert response.status_code == 200
    assert response.json()["simulator_running"] is False
