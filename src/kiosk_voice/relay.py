"""Chat relays: the upstream completion call and the kiosk-side HTTP client."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

import httpx
from openai import AsyncOpenAI, OpenAIError

from kiosk_voice.config import DEFAULT_SYSTEM_PROMPT
from kiosk_voice.language import detect_language
from kiosk_voice.models import ChatReply, Role, Turn

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_MESSAGES = 12


class RelayError(RuntimeError):
    """Raised when no reply could be obtained from the chat backend."""


class ChatRelay(Protocol):
    """Produces the assistant's next turn for an ordered conversation."""

    async def send(self, history: Sequence[Turn]) -> ChatReply:
        """Return the reply for ``history`` or raise ``RelayError``."""


def build_messages(
    history: Sequence[Turn],
    *,
    system_prompt: str,
    max_messages: int = DEFAULT_MAX_MESSAGES,
) -> list[dict[str, str]]:
    """System instruction followed by the most recent turns, ``max_messages`` in total."""
    recent = [turn for turn in history if turn.role != Role.SYSTEM]
    keep = max(max_messages - 1, 0)
    recent = recent[-keep:] if keep else []
    system = Turn(role=Role.SYSTEM, content=system_prompt)
    return [system.as_message(), *(turn.as_message() for turn in recent)]


class OpenAIChatRelay:
    """Calls the hosted chat-completion API directly."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        client: Any | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._system_prompt = system_prompt
        self._max_messages = max_messages
        self._client = client
        self._logger = logger or logging.getLogger("kiosk_voice.relay")

    async def send(self, history: Sequence[Turn]) -> ChatReply:
        messages = build_messages(history, system_prompt=self._system_prompt, max_messages=self._max_messages)
        try:
            completion = await self._get_client().chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                messages=messages,
            )
        except OpenAIError as exc:
            self._logger.warning("upstream_completion_failed", extra={"error": f"{type(exc).__name__}: {exc}"})
            raise RelayError(f"Chat completion failed: {exc}") from exc

        reply = _first_choice_text(completion)
        self._logger.info("upstream_completion_succeeded", extra={"messages": len(messages), "reply_chars": len(reply)})
        return ChatReply(text=reply, lang=detect_language(reply))

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self._api_key)
            except OpenAIError as exc:
                raise RelayError(f"Chat backend is not configured: {exc}") from exc
        return self._client


def _first_choice_text(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return (content or "").strip()


class HttpChatRelay:
    """Posts the conversation to the relay server's ``/api/chat`` route."""

    def __init__(
        self,
        endpoint: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 20.0,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._logger = logger or logging.getLogger("kiosk_voice.relay")

    async def send(self, history: Sequence[Turn]) -> ChatReply:
        payload = {"messages": [turn.as_message() for turn in history]}
        try:
            if self._client is not None:
                response = await self._client.post(self._endpoint, json=payload, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.post(self._endpoint, json=payload, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            self._logger.warning("relay_http_status", extra={"status_code": exc.response.status_code})
            raise RelayError(f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            self._logger.warning("relay_http_error", extra={"error": f"{type(exc).__name__}: {exc}"})
            raise RelayError(f"Relay request failed: {exc}") from exc
        except ValueError as exc:
            raise RelayError("Relay response was not valid JSON") from exc

        if not isinstance(data, dict):
            raise RelayError("Relay response was not a JSON object")
        reply = str(data.get("reply") or "").strip()
        lang = data.get("lang") or None
        return ChatReply(text=reply, lang=str(lang) if lang else None)
