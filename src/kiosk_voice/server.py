"""HTTP relay between the kiosk front end and the hosted chat model."""

from __future__ import annotations

import logging
import time
from typing import Callable, Literal

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError, field_validator

from kiosk_voice import __version__
from kiosk_voice.config import Settings, settings
from kiosk_voice.language import detect_language
from kiosk_voice.models import Role, Turn
from kiosk_voice.relay import ChatRelay, OpenAIChatRelay

logger = logging.getLogger("kiosk_voice.server")


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def _messages_must_be_list(cls, value: object) -> object:
        return value if isinstance(value, list) else []


class ChatResponse(BaseModel):
    reply: str
    lang: str | None = None


class BodyTooLarge(ValueError):
    pass


async def read_capped_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, giving up as soon as it grows past ``max_bytes``."""
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise BodyTooLarge(f"request body exceeds {max_bytes} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


class FixedWindowRateLimiter:
    """Counts requests per client key in fixed, non-overlapping windows."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self._window_seconds:
            started, count = now, 0
        if count >= self._max_requests:
            return False
        self._windows[key] = (started, count + 1)
        self._prune(now)
        return True

    def _prune(self, now: float) -> None:
        if len(self._windows) < 1_024:
            return
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self._window_seconds]
        for key in expired:
            del self._windows[key]


def _too_large() -> JSONResponse:
    return JSONResponse(status_code=413, content={"error": "Request body too large"})


def build_relay(config: Settings) -> OpenAIChatRelay:
    return OpenAIChatRelay(
        api_key=config.openai_api_key,
        model=config.openai_model,
        temperature=config.temperature,
        system_prompt=config.system_prompt,
        max_messages=config.relay_max_messages,
    )


def create_app(config: Settings | None = None, relay: ChatRelay | None = None) -> FastAPI:
    """Create the relay application.

    Args:
        config: Runtime settings (default: module-level settings)
        relay: Chat relay used to answer requests (default: OpenAI upstream)

    Returns:
        FastAPI application
    """
    config = config or settings
    relay = relay or build_relay(config)
    limiter = FixedWindowRateLimiter(config.rate_limit_requests, config.rate_limit_window_seconds)

    app = FastAPI(
        title="Kiosk Voice Relay",
        description="Forwards kiosk conversation turns to a hosted chat model",
        version=__version__,
    )
    app.state.relay = relay
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def enforce_limits(request: Request, call_next):
        length = request.headers.get("content-length", "")
        if length.isdigit() and int(length) > config.max_body_bytes:
            logger.warning("request_too_large", extra={"content_length": int(length)})
            return _too_large()

        client = request.client.host if request.client else "unknown"
        if not limiter.allow(client):
            logger.warning("rate_limited", extra={"client": client})
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests, please try again later."},
            )
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(request: Request):
        try:
            body = await read_capped_body(request, config.max_body_bytes)
        except BodyTooLarge:
            logger.warning("request_too_large", extra={"max_body_bytes": config.max_body_bytes})
            return _too_large()
        try:
            payload = ChatRequest.model_validate_json(body or b"{}")
        except ValidationError as exc:
            logger.info("invalid_chat_request", extra={"error_count": exc.error_count()})
            return JSONResponse(status_code=400, content={"error": "Invalid request body"})

        history = [Turn(role=Role(message.role), content=message.content) for message in payload.messages]
        try:
            reply = await relay.send(history)
        except Exception:  # noqa: BLE001 - every upstream failure maps to the same reply.
            logger.exception("chat_backend_error")
            return JSONResponse(status_code=500, content={"error": "Chat backend error"})

        return ChatResponse(reply=reply.text, lang=reply.lang or detect_language(reply.text))

    return app
