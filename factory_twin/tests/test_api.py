import json

from fastapi.testclient import TestClient
import pytest

from factory_twin import main


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "log_path", lambda: tmp_path / "app.log")
    with TestClient(main.app) as test_client:
        yield test_client


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_index_serves_viewer_page(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert "Digital Twin" in resp.text


def test_static_traversal_is_rejected(client):
    resp = client.get("/static/../settings.py")
    assert resp.status_code == 404
    resp = client.get("/static/%2e%2e/settings.py")
    assert resp.status_code in {400, 403, 404}


def test_post_log_appends_and_export_downloads(client, tmp_path):
    resp = client.post("/log", content=json.dumps({"message": "button pressed"}))
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    resp = client.post("/log", content="{not json")
    assert resp.status_code == 400
    assert resp.json() == {"status": "bad request"}

    resp = client.post("/log", content=json.dumps({"message": ["not", "text"]}))
    assert resp.status_code == 400

    resp = client.post("/log", content="[" * 100000 + "]" * 100000)
    assert resp.status_code == 400

    export = client.get("/log")
    assert export.status_code == 200
    assert "attachment" in export.headers["content-disposition"]
    assert "button pressed" in export.text
    assert "button pressed" in (tmp_path / "app.log").read_text(encoding="utf-8")


def test_websocket_relay_round_trip(client):
    with client.websocket_connect("/ws") as producer, client.websocket_connect("/ws") as consumer:
        assert producer.receive_json()["kind"] == "welcome"
        welcome = consumer.receive_json()
        assert welcome["kind"] == "welcome"
        assert welcome["payload"]["type"] == "connected"

        producer.send_text(json.dumps({"throughput": 12.5}))
        for ws in (producer, consumer):
            event = ws.receive_json()
            assert event["kind"] == "relay"
            assert event["payload"] == {"throughput": 12.5}
            assert event["receivedAt"]

    assert "throughput" in client.get("/log").text


def test_websocket_malformed_payload_gets_error_reply(client):
    with client.websocket_connect("/ws") as producer:
        producer.receive_json()
        producer.send_text("not json at all")
        event = producer.receive_json()
        assert event["kind"] == "error"
        assert event["payload"]["error"] == "malformed_payload"


@pytest.mark.parametrize(
    "raw",
    [pytest.param("[" * 100000 + "]" * 100000, id="deeply-nested"), '{"throughput": NaN}'],
)
def test_websocket_rejected_payload_keeps_producer_connected(client, raw):
    with client.websocket_connect("/ws") as producer:
        producer.receive_json()
        producer.send_text(raw)
        assert producer.receive_json()["kind"] == "error"

        producer.send_text(json.dumps({"throughput": 11.0}))
        event = producer.receive_json()
        assert event["kind"] == "relay"
        assert event["payload"] == {"throughput": 11.0}


def test_sim_controls(client):
    resp = client.post("/api/sim/pause")
    assert resp.json()["paused"] is True
    tick = client.get("/api/sim").json()["tick"]
    assert client.get("/api/sim").json()["tick"] == tick

    resp = client.post("/api/sim/reset")
    assert resp.json()["population"] == 0

    resp = client.post("/api/sim/gantry", json={"offset": 5.0})
    assert resp.json() == {"requested": 5.0, "applied": 0.5}
    client.post("/api/sim/gantry", json={"offset": -0.5})

    resp = client.post("/api/sim/toggle")
    assert resp.json()["paused"] is False


def test_sim_stream_sends_snapshots(client):
    client.post("/api/sim/resume")
    with client.websocket_connect("/ws/sim") as viewer:
        assert viewer.receive_json()["kind"] == "welcome"
        event = viewer.receive_json()
        assert event["kind"] == "sim"
        assert "units" in event["payload"]
        assert "transporter" in event["payload"]


def test_application_log_lines_reach_the_export(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "log_path", lambda: tmp_path / "app.log")
    with TestClient(main.app) as test_client:
        test_client.post("/api/sim/pause")
    # Shutdown stops the listener, which drains queued records first.
    exported = main.sink.export()
    assert "INFO factory-twin App start" in exported
    assert "App start" in (tmp_path / "app.log").read_text(encoding="utf-8")
