from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from kiosk_voice.config import Settings
from kiosk_voice.models import ChatReply, Role, Turn
from kiosk_voice.relay import RelayError
from kiosk_voice.server import FixedWindowRateLimiter, create_app


class StubRelay:
    def __init__(self, reply: ChatReply | None = None, error: Exception | None = None) -> None:
        self.reply = reply or ChatReply(text="Second floor, past the elevators.")
        self.error = error
        self.calls: list[list[Turn]] = []

    async def send(self, history):
        self.calls.append(list(history))
        if self.error is not None:
            raise self.error
        return self.reply


def _client(relay: StubRelay, **overrides) -> TestClient:
    config = Settings(**overrides)
    return TestClient(create_app(config, relay=relay))


def test_health() -> None:
    response = _client(StubRelay()).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_chat_returns_reply_and_detected_language() -> None:
    relay = StubRelay()
    client = _client(relay)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Where is the cafeteria?"}]})

    assert response.status_code == 200
    assert response.json() == {"reply": "Second floor, past the elevators.", "lang": "en"}
    assert relay.calls == [[Turn(role=Role.USER, content="Where is the cafeteria?")]]


def test_chat_prefers_relay_language() -> None:
    client = _client(StubRelay(ChatReply(text="Hola", lang="es")))

    response = client.post("/api/chat", json={"messages": []})

    assert response.json()["lang"] == "es"


def test_chat_treats_non_list_messages_as_empty() -> None:
    relay = StubRelay()
    client = _client(relay)

    response = client.post("/api/chat", json={"messages": "hello"})

    assert response.status_code == 200
    assert relay.calls == [[]]


def test_chat_backend_failure_is_500() -> None:
    client = _client(StubRelay(error=RelayError("upstream down")))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "Chat backend error"}


def test_requests_over_quota_are_rejected() -> None:
    client = _client(StubRelay(), rate_limit_requests=2, rate_limit_window_seconds=30)
    body = {"messages": [{"role": "user", "content": "hi"}]}

    statuses = [client.post("/api/chat", json=body).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]


def test_oversized_body_is_rejected() -> None:
    relay = StubRelay()
    client = _client(relay, max_body_bytes=64)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "x" * 500}]})

    assert response.status_code == 413
    assert relay.calls == []


def test_rate_limiter_resets_after_window() -> None:
    now = [0.0]
    limiter = FixedWindowRateLimiter(2, 30.0, clock=lambda: now[0])

    assert limiter.allow("kiosk-1") is True
    assert limiter.allow("kiosk-1") is True
    assert limiter.allow("kiosk-1") is False
    assert limiter.allow("kiosk-2") is True

    now[0] = 30.0
    assert limiter.allow("kiosk-1") is True


def test_settings_reject_zero_guard_delay() -> None:
    with pytest.raises(ValueError):
        Settings(guard_delay_seconds=0)


def test_chunked_body_over_the_cap_is_rejected() -> None:
    relay = StubRelay()
    client = _client(relay, max_body_bytes=64)

    def chunks():
        yield b'{"messages": [{"role": "user", "content": "'
        for _ in range(50):
            yield b"x" * 100
        yield b'"}]}'

    response = client.post("/api/chat", content=chunks(), headers={"content-type": "application/json"})

    assert response.status_code == 413
    assert relay.calls == []


def test_chunked_body_within_the_cap_is_accepted() -> None:
    relay = StubRelay()
    client = _client(relay)

    def chunks():
        yield b'{"messages": [{"role": "user", '
        yield b'"content": "hi"}]}'

    response = client.post("/api/chat", content=chunks(), headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert relay.calls == [[Turn(role=Role.USER, content="hi")]]


def test_malformed_json_is_rejected() -> None:
    relay = StubRelay()

    response = _client(relay).post("/api/chat", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert relay.calls == []


def test_unexpected_relay_exception_is_500_json() -> None:
    client = _client(StubRelay(error=ConnectionResetError("socket closed")))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "Chat backend error"}
