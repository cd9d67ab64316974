"""API smoke tests using FastAPI TestClient."""

import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLink
from podbridge.config import Settings
from podbridge.main import create_app

TELEMETRY = json.dumps({"VB1": 12.0, "VB2": 48.0, "VB3": 24.0, "dsTemperature": 31.0, "accel": [0, 0, 9.81]})


def _wait_for(predicate, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def _receive_kind(ws, kind: str, limit: int = 20):
    for _ in range(limit):
        msg = ws.receive_json()
        if msg.get("kind") == kind:
            return msg
    raise AssertionError(f"no {kind} message received")


@pytest.fixture(scope="module")
def link():
    return FakeLink([TELEMETRY])


@pytest.fixture(scope="module")
def client(link):
    cfg = Settings(serial_port="loop://", reconnect_delay_ms=20)
    app = create_app(cfg, link_factory=lambda: link)
    with TestClient(app) as c:
        _wait_for(lambda: c.get("/pod/status").json()["connected"])
        _wait_for(lambda: c.get("/telemetry/latest").status_code == 200)
        yield c


@pytest.fixture(scope="module")
def offline_client():
    def factory():
        return FakeLink(fail_open=True)

    cfg = Settings(serial_port="/dev/ttyUSB9", reconnect_delay_ms=60000)
    app = create_app(cfg, link_factory=factory)
    with TestClient(app) as c:
        _wait_for(lambda: c.get("/pod/status").json()["last_error"] is not None)
        yield c


def test_root(client: TestClient):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_health(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["link_state"] == "connected"


def test_pod_status(client: TestClient):
    data = client.get("/pod/status").json()
    assert data["connected"] is True
    assert data["dialect"] == "letter"
    assert data["frames_received"] >= 1
    assert data["decode_errors"] == 0


def test_latest_frame(client: TestClient):
    data = client.get("/telemetry/latest").json()
    assert data["voltage"] == {"inverter": 48.0, "lvs": 12.0, "contacter": 24.0}
    assert data["temperature"]["motor"] == 31.0
    assert "busVoltage" in data


def test_history(client: TestClient):
    r = client.get("/telemetry/history", params={"limit": 5})
    assert r.status_code == 200
    assert 1 <= len(r.json()) <= 5
    assert client.get("/telemetry/history", params={"limit": 0}).status_code == 422


def test_pod_health(client: TestClient):
    data = client.get("/pod/health").json()
    assert isinstance(data["overallScore"], int)
    assert data["overallStatus"] in ("excellent", "good", "warning", "critical", "offline")
    assert [m["name"] for m in data["metrics"]] == [
        "Connection",
        "Power System",
        "Thermal System",
        "Motion Sensors",
        "Data Stream",
    ]
    assert "criticalIssues" in data


def test_health_metric_catalog(client: TestClient):
    data = client.get("/pod/health/metrics").json()
    assert len(data) == 5
    assert sum(m["weight"] for m in data) == 100


def test_serial_ports(client: TestClient):
    r = client.get("/pod/ports")
    assert r.status_code == 200
    assert isinstance(r.json(), list)


def test_toggle_relay(client: TestClient, link: FakeLink):
    before = client.get("/relays").json()["state"]["A"]
    r = client.post("/relays/A/toggle")
    assert r.status_code == 200
    data = r.json()
    assert data["relayStates"]["A"] is (not before)
    assert data["sent"] == ["A" if not before else "a"]
    assert data["sent"][0] in link.commands


def test_set_relay(client: TestClient):
    r = client.put("/relays/b", json={"on": True})
    assert r.status_code == 200
    assert r.json()["sent"] == ["B"]
    assert client.get("/relays").json()["state"]["B"] is True


def test_unknown_relay(client: TestClient):
    assert client.post("/relays/Z/toggle").status_code == 404


def test_emergency_stop_and_resume(client: TestClient, link: FakeLink):
    r = client.post("/relays/emergency-stop")
    assert r.status_code == 200
    assert r.json()["sent"] == ["a", "d", "b", "c"]
    assert not any(client.get("/relays").json()["state"].values())

    r = client.post("/relays/resume")
    assert r.json()["sent"] == ["D", "A", "B", "c"]
    assert link.commands[-8:] == ["a", "d", "b", "c", "D", "A", "B", "c"]


def test_ws_late_joiner_and_commands(client: TestClient, link: FakeLink):
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert "frame" in first
        assert first["VB1"] == 12.0

        ws.send_text("EMERGENCY_BRAKE")
        ack = _receive_kind(ws, "command_ack")
        assert ack["data"]["command"] == "EMERGENCY_BRAKE"
        assert ack["data"]["sent"] == ["a", "d", "b", "c"]
        assert ack["data"]["relayStates"] == {"A": False, "B": False, "C": False, "D": False}

        ws.send_text("C")
        ack = _receive_kind(ws, "command_ack")
        assert ack["data"]["relayStates"]["C"] is True

        ws.send_text("LAUNCH")
        rejected = _receive_kind(ws, "command_rejected")
        assert rejected["data"]["command"] == "LAUNCH"

        link.push("STATE:0,1,0,1")
        update = _receive_kind(ws, "relay_state")
        assert update["data"]["state"] == {"A": False, "B": True, "C": False, "D": True}


def test_ws_streams_new_frames(client: TestClient, link: FakeLink):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        link.push(json.dumps({"VB1": 11.0}))
        msg = ws.receive_json()
        while "frame" not in msg:
            msg = ws.receive_json()
        assert msg["VB1"] == 11.0
        assert msg["frame"]["voltage"]["lvs"] == 11.0


def test_clear_history(client: TestClient):
    assert client.delete("/telemetry/history").json() == {"ok": True}
    assert client.get("/telemetry/history").json() == []


def test_offline_commands_are_rejected(offline_client: TestClient):
    status = offline_client.get("/pod/status").json()
    assert status["connected"] is False
    assert status["last_error"] == "no such device"

    r = offline_client.post("/relays/A/toggle")
    assert r.status_code == 503
    assert offline_client.get("/relays").json()["state"]["A"] is False
    assert offline_client.get("/telemetry/latest").status_code == 404


def test_offline_health_is_zero(offline_client: TestClient):
    data = offline_client.get("/pod/health").json()
    assert data["overallScore"] == 0
    assert data["overallStatus"] == "offline"
    assert "Pod connection lost" in data["criticalIssues"]


def test_offline_ws_command_rejected(offline_client: TestClient):
    with offline_client.websocket_connect("/ws") as ws:
        ws.send_text("EMERGENCY_BRAKE")
        rejected = _receive_kind(ws, "command_rejected")
        assert "not connected" in rejected["data"]["error"]


def test_routes_unavailable_before_startup():
    # Without entering the client context the lifespan never creates the bridge
    c = TestClient(create_app(Settings(serial_port="loop://")))
    r = c.get("/pod/status")
    assert r.status_code == 503
