"""Turn-taking session for the kiosk: listen, think, speak, listen again."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Coroutine

from kiosk_voice.language import detect_language
from kiosk_voice.models import ChatReply, Turn
from kiosk_voice.relay import ChatRelay, RelayError
from kiosk_voice.voice.dialogue import DEFAULT_HISTORY_LIMIT, ConversationState, SessionStatus
from kiosk_voice.voice.interfaces import (
    CaptureEnded,
    CaptureError,
    CaptureFailed,
    CaptureResult,
    CaptureStarted,
    PlaybackEnded,
    PlaybackError,
    PlaybackFailed,
    PlaybackStarted,
    SpeechCapture,
    SpeechPlayback,
    Utterance,
)

DEFAULT_GUARD_DELAY_SECONDS = 0.3
DEFAULT_FALLBACK_REPLY = "Sorry, I had trouble reaching the server."


class SessionObserver:
    """Receives session lifecycle notifications.

    Every method is a no-op; subclasses override only the ones they care about.
    """

    def on_status(self, status: SessionStatus) -> None:
        pass

    def on_partial_text(self, text: str) -> None:
        pass

    def on_final_text(self, text: str) -> None:
        pass

    def on_speak_start(self) -> None:
        pass

    def on_speak_end(self) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


@dataclass(frozen=True, slots=True)
class _VoiceToggled:
    enabled: bool


@dataclass(frozen=True, slots=True)
class _StopSpeaking:
    pass


@dataclass(frozen=True, slots=True)
class _SpeakRequested:
    text: str
    lang: str | None = None


@dataclass(frozen=True, slots=True)
class _RecognitionLanguage:
    lang: str | None


@dataclass(frozen=True, slots=True)
class _ReplyReady:
    request_id: int
    reply: ChatReply


@dataclass(frozen=True, slots=True)
class _ReplyFailed:
    request_id: int
    error: RelayError


@dataclass(frozen=True, slots=True)
class _ResumeCapture:
    pass


class SessionController:
    """Drives one kiosk conversation from capture events to spoken replies.

    Events from the UI, the capture and playback backends, the relay call and
    the guard timer all go through one queue. A single worker task handles them
    in order, and every handler runs to completion before the next one starts.
    """

    def __init__(
        self,
        *,
        capture: SpeechCapture,
        playback: SpeechPlayback,
        relay: ChatRelay,
        observer: SessionObserver | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        guard_delay_seconds: float = DEFAULT_GUARD_DELAY_SECONDS,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
        logger: logging.Logger | None = None,
    ) -> None:
        if guard_delay_seconds <= 0:
            raise ValueError("guard_delay_seconds must be greater than zero")

        self._capture = capture
        self._playback = playback
        self._relay = relay
        self._observer = observer or SessionObserver()
        self._state = ConversationState(history_limit=history_limit)
        self._guard_delay_seconds = guard_delay_seconds
        self._fallback_reply = fallback_reply
        self._logger = logger or logging.getLogger("kiosk_voice.session")

        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[Any] | None = None
        self._worker_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._resume_task: asyncio.Task[None] | None = None

        self._request_ids = itertools.count(1)
        self._utterance_ids = itertools.count(1)
        self._pending_request: int | None = None
        self._current_utterance: Utterance | None = None
        self._speak_announced = False

        self._toggle_lock = threading.Lock()
        self._voice_target = False

        self._handlers = {
            _VoiceToggled: self._on_voice_toggled,
            _StopSpeaking: self._on_stop_speaking,
            _SpeakRequested: self._on_speak_requested,
            _RecognitionLanguage: self._on_recognition_language,
            _ReplyReady: self._on_reply_ready,
            _ReplyFailed: self._on_reply_failed,
            _ResumeCapture: self._on_resume_capture,
            CaptureStarted: self._on_capture_started,
            CaptureResult: self._on_capture_result,
            CaptureEnded: self._on_capture_ended,
            CaptureFailed: self._on_capture_failed,
            PlaybackStarted: self._on_playback_started,
            PlaybackEnded: self._on_playback_ended,
            PlaybackFailed: self._on_playback_failed,
        }

        capture.bind(self.dispatch)
        playback.bind(self.dispatch)

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def voice_enabled(self) -> bool:
        return self._state.voice_enabled

    @property
    def processing(self) -> bool:
        return self._state.processing

    @property
    def history(self) -> list[Turn]:
        return self._state.history

    async def start(self) -> None:
        """Start the event worker once for this session."""
        if self._worker_task and not self._worker_task.done():
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker_task = asyncio.create_task(self._worker_loop(), name="session-controller-worker")
        self._logger.info("session_started", extra={"history_limit": self._state.history_limit})

    async def stop(self) -> None:
        """Silence capture and playback and stop the event worker."""
        if not self._worker_task:
            return

        self._cancel_resume()
        self._abandon_pending_reply()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._stop_capture()
        self._cancel_playback()
        self._release_utterance()
        with self._toggle_lock:
            self._voice_target = False
        self._state.voice_enabled = False
        self._set_status(SessionStatus.IDLE)

        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        finally:
            self._worker_task = None

        self._logger.info("session_stopped")

    async def settle(self) -> None:
        """Wait until queued events, guard timers and relay calls have all been handled."""
        if self._queue is None:
            return

        while True:
            await asyncio.sleep(0)
            await self._queue.join()
            pending = [task for task in self._tasks if not task.done()]
            if not pending and self._queue.empty():
                return
            if pending:
                await asyncio.wait(pending)

    def dispatch(self, event: Any) -> None:
        """Queue an event for the worker. Safe to call from any thread."""
        if self._loop is None or self._queue is None:
            raise RuntimeError("Session controller is not started")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def toggle_voice(self, enabled: bool | None = None) -> bool:
        """Flip (or set) the mic toggle and return the requested state."""
        with self._toggle_lock:
            target = (not self._voice_target) if enabled is None else bool(enabled)
            self.dispatch(_VoiceToggled(enabled=target))
            self._voice_target = target
        return target

    def stop_speaking(self) -> None:
        """Cut off the current utterance. Does nothing when nothing is playing."""
        self.dispatch(_StopSpeaking())

    def say(self, text: str, lang: str | None = None) -> None:
        """Speak ``text`` outside of the conversation, preempting current speech."""
        self.dispatch(_SpeakRequested(text=text, lang=lang))

    def set_recognition_language(self, lang: str | None) -> None:
        self.dispatch(_RecognitionLanguage(lang=lang))

    async def _worker_loop(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                self._handle(event)
            except Exception:  # noqa: BLE001 - one bad event must not end the session.
                self._logger.exception("session_event_failed", extra={"event": type(event).__name__})
            finally:
                self._queue.task_done()

    def _handle(self, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            self._logger.warning("session_event_unknown", extra={"event": type(event).__name__})
            return
        handler(event)

    def _on_voice_toggled(self, event: _VoiceToggled) -> None:
        if event.enabled:
            if self._state.voice_enabled:
                return
            self._state.voice_enabled = True
            self._abandon_pending_reply()
            self._interrupt_speech()
            self._set_status(SessionStatus.LISTENING)
            self._start_capture()
            return

        self._state.voice_enabled = False
        self._cancel_resume()
        self._abandon_pending_reply()
        self._stop_capture()
        self._interrupt_speech()
        self._set_status(SessionStatus.IDLE)

    def _on_stop_speaking(self, event: _StopSpeaking) -> None:
        self._cancel_playback()
        if self._current_utterance is None:
            return
        self._release_utterance()
        self._finish_speaking()

    def _on_speak_requested(self, event: _SpeakRequested) -> None:
        text = event.text.strip()
        if text:
            self._speak(text, event.lang)

    def _on_recognition_language(self, event: _RecognitionLanguage) -> None:
        try:
            self._capture.set_language(event.lang)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("capture_language_failed", extra={"lang": event.lang, "error": str(exc)})

    def _on_capture_started(self, event: CaptureStarted) -> None:
        if self._state.status != SessionStatus.LISTENING:
            self._logger.debug("capture_started_while_not_listening")
            self._stop_capture()

    def _on_capture_result(self, event: CaptureResult) -> None:
        if self._state.status != SessionStatus.LISTENING or self._state.processing:
            self._logger.debug("capture_result_discarded", extra={"status": self._state.status.value})
            return

        text = event.transcript.strip()
        if not text:
            return
        if not event.is_final:
            self._notify("on_partial_text", event.transcript)
            return

        self._notify("on_final_text", text)
        self._stop_capture()
        self._cancel_resume()
        self._state.processing = True
        self._set_status(SessionStatus.SPEAKING)
        self._state.add_user(text)

        request_id = next(self._request_ids)
        self._pending_request = request_id
        self._logger.info("relay_requested", extra={"request_id": request_id, "turns": len(self._state.history)})
        self._spawn(self._request_reply(request_id, self._state.history))

    def _on_capture_ended(self, event: CaptureEnded) -> None:
        if self._state.status != SessionStatus.LISTENING or not self._state.voice_enabled:
            return
        if self._resume_task is not None and not self._resume_task.done():
            return
        self._logger.debug("capture_restart_scheduled")
        self._schedule_capture_resume()

    def _on_capture_failed(self, event: CaptureFailed) -> None:
        if self._state.status != SessionStatus.LISTENING:
            self._logger.debug("capture_error_ignored", extra={"error": str(event.error)})
            return

        self._logger.warning("capture_failed", extra={"error": f"{type(event.error).__name__}: {event.error}"})
        with self._toggle_lock:
            self._voice_target = False
        self._state.voice_enabled = False
        self._cancel_resume()
        self._set_status(SessionStatus.IDLE)
        self._notify("on_error", event.error)

    def _on_playback_started(self, event: PlaybackStarted) -> None:
        if self._is_current(event.utterance_id):
            self._speak_announced = True
            self._notify("on_speak_start")

    def _on_playback_ended(self, event: PlaybackEnded) -> None:
        if not self._is_current(event.utterance_id):
            return
        self._release_utterance()
        self._finish_speaking()

    def _on_playback_failed(self, event: PlaybackFailed) -> None:
        if not self._is_current(event.utterance_id):
            return
        self._logger.warning("playback_failed", extra={"error": f"{type(event.error).__name__}: {event.error}"})
        self._release_utterance()
        self._notify("on_error", event.error)
        self._finish_speaking()

    def _on_reply_ready(self, event: _ReplyReady) -> None:
        if event.request_id != self._pending_request:
            self._logger.info("relay_reply_discarded", extra={"request_id": event.request_id})
            return
        self._pending_request = None
        self._state.processing = False

        text = event.reply.text.strip()
        if not text:
            self._logger.info("relay_reply_empty", extra={"request_id": event.request_id})
            self._finish_speaking()
            return

        self._state.add_assistant(text)
        self._speak(text, event.reply.lang or detect_language(text))

    def _on_reply_failed(self, event: _ReplyFailed) -> None:
        if event.request_id != self._pending_request:
            return
        self._pending_request = None
        self._state.processing = False

        self._logger.warning("relay_failed", extra={"request_id": event.request_id, "error": str(event.error)})
        self._notify("on_error", event.error)
        self._state.add_assistant(self._fallback_reply)
        self._speak(self._fallback_reply, None)

    def _on_resume_capture(self, event: _ResumeCapture) -> None:
        if (
            self._state.status == SessionStatus.LISTENING
            and self._state.voice_enabled
            and not self._state.processing
            and self._current_utterance is None
        ):
            self._start_capture()

    async def _request_reply(self, request_id: int, history: list[Turn]) -> None:
        try:
            reply = await self._relay.send(history)
        except RelayError as exc:
            self._post(_ReplyFailed(request_id=request_id, error=exc))
        except Exception as exc:  # noqa: BLE001 - relay failures must not end the session.
            error = RelayError(f"{type(exc).__name__}: {exc}")
            self._post(_ReplyFailed(request_id=request_id, error=error))
        else:
            self._post(_ReplyReady(request_id=request_id, reply=reply))

    async def _resume_after_guard(self) -> None:
        await asyncio.sleep(self._guard_delay_seconds)
        self._post(_ResumeCapture())

    def _speak(self, text: str, lang: str | None) -> None:
        self._interrupt_speech()
        self._cancel_resume()
        if self._state.status == SessionStatus.LISTENING:
            self._stop_capture()

        utterance = Utterance(id=next(self._utterance_ids), text=text, lang=lang)
        self._current_utterance = utterance
        self._set_status(SessionStatus.SPEAKING)
        try:
            self._playback.speak(utterance)
        except Exception as exc:  # noqa: BLE001
            error = exc if isinstance(exc, PlaybackError) else PlaybackError(f"{type(exc).__name__}: {exc}")
            self._on_playback_failed(PlaybackFailed(utterance_id=utterance.id, error=error))

    def _finish_speaking(self) -> None:
        if self._state.processing:
            return
        if self._state.voice_enabled:
            self._set_status(SessionStatus.LISTENING)
            self._schedule_capture_resume()
        else:
            self._set_status(SessionStatus.IDLE)

    def _interrupt_speech(self) -> None:
        self._cancel_playback()
        self._release_utterance()

    def _release_utterance(self) -> None:
        """Forget the current utterance, closing the speak_start/speak_end pair if it was opened."""
        announced, self._speak_announced = self._speak_announced, False
        self._current_utterance = None
        if announced:
            self._notify("on_speak_end")

    def _start_capture(self) -> None:
        try:
            self._capture.start()
        except Exception as exc:  # noqa: BLE001
            error = exc if isinstance(exc, CaptureError) else CaptureError(f"{type(exc).__name__}: {exc}")
            self._on_capture_failed(CaptureFailed(error=error))

    def _stop_capture(self) -> None:
        try:
            self._capture.stop()
        except Exception as exc:  # noqa: BLE001 - stopping is best-effort.
            self._logger.warning("capture_stop_failed", extra={"error": str(exc)})

    def _cancel_playback(self) -> None:
        try:
            self._playback.cancel()
        except Exception as exc:  # noqa: BLE001 - cancelling is best-effort.
            self._logger.warning("playback_cancel_failed", extra={"error": str(exc)})

    def _schedule_capture_resume(self) -> None:
        self._cancel_resume()
        self._resume_task = self._spawn(self._resume_after_guard())

    def _cancel_resume(self) -> None:
        if self._resume_task is not None:
            self._resume_task.cancel()
            self._resume_task = None

    def _abandon_pending_reply(self) -> None:
        if self._pending_request is not None:
            self._logger.info("relay_reply_abandoned", extra={"request_id": self._pending_request})
        self._pending_request = None
        self._state.processing = False

    def _is_current(self, utterance_id: int) -> bool:
        return self._current_utterance is not None and self._current_utterance.id == utterance_id

    def _set_status(self, status: SessionStatus) -> None:
        if self._state.set_status(status):
            self._logger.info("session_status", extra={"status": status.value})
            self._notify("on_status", status)

    def _notify(self, method: str, *args: Any) -> None:
        try:
            getattr(self._observer, method)(*args)
        except Exception:  # noqa: BLE001 - observers must not break the session.
            self._logger.exception("observer_failed", extra={"callback": method})

    def _post(self, event: Any) -> None:
        assert self._queue is not None
        self._queue.put_nowait(event)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
