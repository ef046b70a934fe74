"""Speech capture backend powered by ``speech_recognition``."""

from __future__ import annotations

import threading
from typing import Any

from .interfaces import (
    CaptureEnded,
    CaptureError,
    CaptureFailed,
    CaptureResult,
    CaptureStarted,
    EventSink,
    SpeechCapture,
    SpeechEvent,
)


def _discard(event: SpeechEvent) -> None:
    pass


class SpeechRecognitionCapture(SpeechCapture):
    """Listen on the default microphone in the background and emit final transcripts.

    ``speech_recognition`` does not produce interim hypotheses, so only final
    ``CaptureResult`` events are emitted. Each start runs its own listener
    thread, and results and failures are delivered from that thread.
    """

    def __init__(
        self,
        *,
        language: str = "en-US",
        phrase_time_limit: float | None = 8.0,
        sample_rate: int = 16_000,
        chunk_size: int = 1024,
        adjust_noise_seconds: float = 0.3,
        listen_timeout: float = 1.0,
    ) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Voice STT backend unavailable. Install extras with: pip install 'kiosk-voice[voice]'"
            ) from exc
        self._sr = sr
        self._recognizer = sr.Recognizer()
        self._default_language = language
        self._language = language
        self._phrase_time_limit = phrase_time_limit
        self._sample_rate = sample_rate
        self._chunk_size = chunk_size
        self._adjust_noise_seconds = max(0.0, adjust_noise_seconds)

        self._listen_timeout = listen_timeout
        self._calibrated = False
        self._running: threading.Event | None = None
        self._lock = threading.Lock()
        self._emit: EventSink = _discard

    def bind(self, emit: EventSink) -> None:
        self._emit = emit

    def set_language(self, lang: str | None) -> None:
        self._language = lang or self._default_language

    def start(self) -> None:
        with self._lock:
            if self._running is not None:
                return
            try:
                # A fresh microphone per session: the previous listener may still hold its own for up to a second.
                microphone = self._sr.Microphone(sample_rate=self._sample_rate, chunk_size=self._chunk_size)
            except (OSError, AttributeError) as exc:
                raise CaptureError(f"Microphone unavailable: {exc}") from exc
            running = threading.Event()
            running.set()
            self._running = running
            threading.Thread(
                target=self._listen,
                args=(microphone, running),
                name="speech-recognition-capture",
                daemon=True,
            ).start()
        self._emit(CaptureStarted())

    def stop(self) -> None:
        with self._lock:
            running, self._running = self._running, None
        if running is None:
            return
        running.clear()
        self._emit(CaptureEnded())

    def _listen(self, microphone: Any, running: threading.Event) -> None:
        try:
            with microphone as source:
                if not self._calibrated and self._adjust_noise_seconds > 0:
                    self._recognizer.adjust_for_ambient_noise(source, duration=self._adjust_noise_seconds)
                    self._calibrated = True
                while running.is_set():
                    try:
                        audio = self._recognizer.listen(
                            source,
                            timeout=self._listen_timeout,
                            phrase_time_limit=self._phrase_time_limit,
                        )
                    except self._sr.WaitTimeoutError:
                        continue
                    if running.is_set():
                        self._on_audio(self._recognizer, audio)
        except Exception as exc:  # noqa: BLE001 - reported to the session instead of dying with the thread.
            if running.is_set():
                self._emit(CaptureFailed(error=CaptureError(f"Microphone capture failed: {exc}")))

    def _on_audio(self, recognizer: Any, audio: Any) -> None:
        try:
            transcript = recognizer.recognize_google(audio, language=self._language)
        except self._sr.UnknownValueError:
            return
        except self._sr.RequestError:
            self._emit(
                CaptureFailed(
                    error=CaptureError(
                        "Speech recognition service request failed. Check internet access or switch STT backend."
                    )
                )
            )
            return

        transcript = (transcript or "").strip()
        if transcript:
            self._emit(CaptureResult(transcript=transcript, is_final=True))
