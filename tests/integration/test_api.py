"""Integration tests for the HTTP control plane and the session WebSocket."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from character_engine.api import create_app
from character_engine.orchestrator import CharacterEngineApp

pytestmark = pytest.mark.integration


@pytest.fixture
def client(settings, registry, mock_generator, mock_synthesizer, mock_recognizer, mock_vad):
    engine = CharacterEngineApp(
        settings,
        registry=registry,
        generator=mock_generator,
        synthesizer=mock_synthesizer,
        recognizer=mock_recognizer,
        vad=mock_vad,
    )
    with TestClient(create_app(engine=engine)) as test_client:
        yield test_client


def load(client, key: str, name: str = "Ada"):
    return client.post(
        "/load",
        params={"key": key},
        json={"agent": {"name": name, "description": "An inventor"}, "userName": "Grace"},
    )


def receive_interaction(websocket):
    events = []
    while True:
        event = websocket.receive_json()
        events.append(event)
        if event["type"] == "INTERACTION_END":
            return events


class TestControlPlane:
    """Tests for /health, /load and /unload."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["active_sessions"] == 0

    def test_load(self, client, registry):
        response = load(client, "k1")

        assert response.status_code == 200
        agent = response.json()["agent"]
        assert agent["name"] == "Ada"
        assert agent["id"]
        assert "k1" in registry

    def test_load_duplicate_key(self, client):
        load(client, "k1")

        response = load(client, "k1", name="Other")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "SESSION_EXISTS"

    def test_load_requires_agent_name(self, client):
        response = client.post("/load", params={"key": "k1"}, json={"agent": {}})

        assert response.status_code == 422

    def test_load_requires_key(self, client):
        response = client.post("/load", json={"agent": {"name": "Ada"}})

        assert response.status_code == 422

    def test_unload(self, client, registry):
        load(client, "k1")

        response = client.post("/unload", params={"key": "k1"})

        assert response.status_code == 200
        assert response.json() == {"message": "Session unloaded"}
        assert "k1" not in registry

    def test_unload_unknown_key(self, client):
        response = client.post("/unload", params={"key": "missing"})

        assert response.status_code == 200


class TestSessionWebSocket:
    """Tests for /session."""

    def test_text_interaction(self, client):
        agent_id = load(client, "k1").json()["agent"]["id"]

        with client.websocket_connect("/session?key=k1") as websocket:
            websocket.send_json({"type": "text", "text": "Hi Ada"})
            events = receive_interaction(websocket)

        assert [event["type"] for event in events] == ["TEXT", "TEXT", "AUDIO", "TEXT", "AUDIO", "INTERACTION_END"]
        assert events[0]["routing"]["source"] == {"isUser": True}
        assert events[1]["routing"]["source"] == {"isAgent": True, "name": agent_id}

    def test_malformed_message(self, client):
        load(client, "k1")

        with client.websocket_connect("/session?key=k1") as websocket:
            websocket.send_text("not json")
            event = websocket.receive_json()

            assert event["type"] == "ERROR"

            websocket.send_json({"type": "text", "text": "Still there?"})
            events = receive_interaction(websocket)

        assert events[-1]["type"] == "INTERACTION_END"

    def test_unknown_key_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/session?key=missing") as websocket:
                websocket.receive_json()

        assert exc_info.value.code == 4404

    def test_second_connection_rejected(self, client):
        load(client, "k1")

        with client.websocket_connect("/session?key=k1"):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/session?key=k1") as second:
                    second.receive_json()

        assert exc_info.value.code == 4409
