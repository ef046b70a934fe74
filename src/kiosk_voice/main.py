"""CLI entrypoint for Kiosk Voice."""

from __future__ import annotations

import asyncio

import typer
from rich import print

from kiosk_voice.cli import KeyboardShortcuts, ShortcutAction
from kiosk_voice.config import settings
from kiosk_voice.language import detect_language
from kiosk_voice.models import Role, Turn
from kiosk_voice.relay import ChatRelay, HttpChatRelay, RelayError
from kiosk_voice.server import build_relay, create_app
from kiosk_voice.session import SessionController, SessionObserver
from kiosk_voice.telemetry import configure_logging
from kiosk_voice.voice import SessionStatus, SpeechCapture, SpeechPlayback

app = typer.Typer(help="Kiosk voice assistant and chat relay")

_STATUS_LABELS = {
    SessionStatus.IDLE: "Idle",
    SessionStatus.LISTENING: "Listening",
    SessionStatus.SPEAKING: "Speaking",
}


class _ConsoleObserver(SessionObserver):
    """Mirrors session events to the terminal in place of the kiosk page."""

    def on_status(self, status: SessionStatus) -> None:
        print(f"[bold]{_STATUS_LABELS[status]}[/bold]")

    def on_partial_text(self, text: str) -> None:
        print(f"[dim]… {text}[/dim]")

    def on_final_text(self, text: str) -> None:
        print({"heard": text})

    def on_error(self, error: Exception) -> None:
        print({"error": f"{type(error).__name__}: {error}"})


def _http_relay(endpoint: str | None) -> HttpChatRelay:
    return HttpChatRelay(endpoint or settings.relay_endpoint, timeout_seconds=settings.relay_timeout_seconds)


@app.command()
def start() -> None:
    """Show runtime configuration."""
    print(
        {
            "app_name": settings.app_name,
            "openai_model": settings.openai_model,
            "openai_api_key_configured": bool(settings.openai_api_key),
            "relay_endpoint": settings.relay_endpoint,
            "history_limit": settings.history_limit,
            "guard_delay_seconds": settings.guard_delay_seconds,
            "rate_limit": f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds:g}s",
        }
    )


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (default: KIOSK_VOICE_HOST)"),
    port: int = typer.Option(None, help="Bind port (default: KIOSK_VOICE_PORT)"),
) -> None:
    """Run the chat relay HTTP server."""
    import uvicorn

    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)


@app.command()
def sniff(text: str) -> None:
    """Print the language tag the kiosk would speak ``text`` in."""
    print({"lang": detect_language(text)})


@app.command()
def ask(
    text: str,
    endpoint: str = typer.Option(None, help="Relay URL (default: KIOSK_VOICE_RELAY_ENDPOINT)"),
) -> None:
    """Send one question through the relay server and print the reply."""
    relay = _http_relay(endpoint)
    try:
        reply = asyncio.run(relay.send([Turn(role=Role.USER, content=text)]))
    except RelayError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    print({"reply": reply.text, "lang": reply.lang or detect_language(reply.text)})


async def _run_voice_chat(capture: SpeechCapture, playback: SpeechPlayback, relay: ChatRelay) -> None:
    controller = SessionController(
        capture=capture,
        playback=playback,
        relay=relay,
        observer=_ConsoleObserver(),
        history_limit=settings.history_limit,
        guard_delay_seconds=settings.guard_delay_seconds,
        fallback_reply=settings.fallback_reply,
    )
    shortcuts = KeyboardShortcuts(controller)
    await controller.start()
    try:
        while True:
            line = await asyncio.to_thread(input, "[m] mic on/off  [s] stop speaking  [q] quit > ")
            if shortcuts.handle(line) == ShortcutAction.QUIT:
                break
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await controller.stop()


@app.command("voice-chat")
def voice_chat(
    direct: bool = typer.Option(False, help="Call the chat model directly instead of the relay server"),
    endpoint: str = typer.Option(None, help="Relay URL (default: KIOSK_VOICE_RELAY_ENDPOINT)"),
    language: str = typer.Option(None, help="Recognition language, e.g. en-US"),
    phrase_time_limit: float = typer.Option(8.0, help="Per-utterance capture limit in seconds"),
) -> None:
    """Run the kiosk turn-taking loop with local STT/TTS backends."""
    try:
        from kiosk_voice.voice.stt_speechrecognition import SpeechRecognitionCapture
        from kiosk_voice.voice.tts_pyttsx3 import Pyttsx3Playback
    except ImportError:
        print({"error": "Voice extras are missing. Install with: pip install 'kiosk-voice[voice]'"})
        raise typer.Exit(code=1)

    try:
        capture = SpeechRecognitionCapture(
            language=language or settings.recognition_language,
            phrase_time_limit=phrase_time_limit,
        )
        playback = Pyttsx3Playback()
    except RuntimeError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    configure_logging(settings.log_level)
    relay = build_relay(settings) if direct else _http_relay(endpoint)
    print({"voice_chat": "started", "relay": "direct" if direct else (endpoint or settings.relay_endpoint)})
    try:
        asyncio.run(_run_voice_chat(capture, playback, relay))
    finally:
        playback.close()
    print({"voice_chat": "stopped"})


if __name__ == "__main__":
    app()
