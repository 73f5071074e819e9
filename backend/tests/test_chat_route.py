from __future__ import annotations

import json
import logging
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import finnova.chat.routes as chat_routes
from finnova.ai.gemini_client import GeminiRequestError
from finnova.chat.registry import SessionRegistry
from finnova.chat.session import ChatSessionManager
from finnova.identity import Identity


class FakeStore:
    async def list_by_owner(self, collection, owner_id):
        if collection == "savings":
            return [{"amount": 500}]
        return [{"amount": 125}]


class StubProvider:
    def __init__(self, chunks, fail=False):
        self.chunks = chunks
        self.fail = fail
        self.calls = []

    def start_chat(self, seed_instruction, acknowledgment):
        return {"seed": seed_instruction}

    async def stream_message(self, session, text):
        self.calls.append(text)
        for chunk in self.chunks:
            yield chunk
        if self.fail:
            raise GeminiRequestError(502, "bad gateway")


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    current = None
    for line in body.splitlines():
        if line.startswith("event:"):
            current = line[len("event:"):].strip()
        elif line.startswith("data:"):
            events.append((current, json.loads(line[len("data:"):].strip())))
    return events


def _build_client(monkeypatch, provider, identity=None):
    monkeypatch.setattr(chat_routes.settings, "gemini_api_key", "test-key")
    test_app = FastAPI()
    test_app.include_router(chat_routes.router)
    test_app.state.chat_sessions = SessionRegistry(lambda: ChatSessionManager(FakeStore(), provider))
    if identity is not None:
        test_app.dependency_overrides[chat_routes.get_current_identity] = lambda: identity
    return test_app


@pytest.fixture
def identity():
    return Identity(id=uuid4(), email="user@example.com")


def test_get_chat_initializes_with_welcome(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["hi"]), identity)

    with TestClient(test_app) as client:
        response = client.get("/chat")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert len(data["messages"]) == 1
    assert data["messages"][0]["role"] == "assistant"
    assert "$375.00" in data["messages"][0]["text"]


def test_send_message_streams_snapshots_then_done(monkeypatch, identity) -> None:
    provider = StubProvider(["Build ", "an emergency fund."])
    test_app = _build_client(monkeypatch, provider, identity)

    with TestClient(test_app) as client:
        client.get("/chat")
        response = client.post("/chat/messages", json={"text": "  What first?  "})
        state = client.get("/chat").json()

    assert response.status_code == 200
    events = _sse_events(response.text)
    names = [name for name, _ in events]
    assert names[-1] == "done"
    assert set(names[:-1]) == {"message"}
    assert events[-1][1] == {"accepted": True, "status": "ready"}

    final = events[-2][1]
    assert [msg["role"] for msg in final["messages"]] == ["assistant", "user", "assistant"]
    assert final["messages"][-1]["text"] == "Build an emergency fund."
    assert provider.calls == ["What first?"]
    assert state["messages"] == final["messages"]


def test_send_message_failure_reports_inline_error(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["Part"], fail=True), identity)

    with TestClient(test_app) as client:
        client.get("/chat")
        response = client.post("/chat/messages", json={"text": "hello"})

    events = _sse_events(response.text)
    final = events[-2][1]
    assert final["status"] == "ready"
    assert final["messages"][-1]["text"] == "Connection error. Please try again."
    assert final["messages"][-2]["text"] == "Part"
    assert final["messages"][-2]["streaming"] is False


def test_send_message_without_session_returns_409(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["x"]), identity)

    with TestClient(test_app) as client:
        response = client.post("/chat/messages", json={"text": "hello"})

    assert response.status_code == 409


def test_send_message_rejects_blank_text(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["x"]), identity)

    with TestClient(test_app) as client:
        client.get("/chat")
        response = client.post("/chat/messages", json={"text": "   "})

    assert response.status_code == 422


def test_delete_chat_ends_session(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["x"]), identity)

    with TestClient(test_app) as client:
        client.get("/chat")
        deleted = client.delete("/chat")
        response = client.post("/chat/messages", json={"text": "hello"})

    assert deleted.status_code == 204
    assert response.status_code == 409
    assert test_app.state.chat_sessions.get(identity.id) is None


def test_chat_requires_auth(monkeypatch) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["x"]))

    with TestClient(test_app) as client:
        response = client.get("/chat")

    assert response.status_code == 401


def test_chat_returns_503_when_gemini_key_missing(monkeypatch, identity) -> None:
    test_app = _build_client(monkeypatch, StubProvider(["x"]), identity)
    monkeypatch.setattr(chat_routes.settings, "gemini_api_key", "")

    with TestClient(test_app) as client:
        response = client.get("/chat")

    assert response.status_code == 503
    assert "GEMINI_API_KEY" in response.json()["detail"]


def test_send_while_another_send_is_in_flight_returns_409(monkeypatch, identity) -> None:
    provider = StubProvider(["x"])
    test_app = _build_client(monkeypatch, provider, identity)

    with TestClient(test_app) as client:
        client.get("/chat")
        manager = test_app.state.chat_sessions.get(identity.id)
        assert manager.start_send("first") is not None

        response = client.post("/chat/messages", json={"text": "second"})

    assert response.status_code == 409
    assert provider.calls == []
    assert sum(1 for msg in manager.messages if msg.role == "user") == 1


class BrokenProvider(StubProvider):
    async def stream_message(self, session, text):
        self.calls.append(text)
        yield "Half"
        raise RuntimeError("decoder bug")


def test_unexpected_send_failure_is_logged_and_stream_still_finishes(monkeypatch, identity, caplog) -> None:
    test_app = _build_client(monkeypatch, BrokenProvider([]), identity)

    with caplog.at_level(logging.ERROR, logger="finnova.chat.routes"):
        with TestClient(test_app) as client:
            client.get("/chat")
            response = client.post("/chat/messages", json={"text": "hello"})

    events = _sse_events(response.text)
    assert events[-1] == ("done", {"accepted": True, "status": "ready"})
    assert events[-2][1]["messages"][-1]["text"] == "Half"
    assert events[-2][1]["messages"][-1]["streaming"] is False
    assert any("Chat send failed" in message for message in caplog.messages)
