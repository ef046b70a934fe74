"""Speech playback backend powered by ``pyttsx3``."""

from __future__ import annotations

import queue
import threading
from typing import Any

from .interfaces import (
    EventSink,
    PlaybackEnded,
    PlaybackError,
    PlaybackFailed,
    PlaybackStarted,
    SpeechEvent,
    SpeechPlayback,
    Utterance,
)
from .voices import Voice, VoiceCatalog


def _discard(event: SpeechEvent) -> None:
    pass


def rate_factor(lang: str | None) -> float:
    """Arabic reads better slightly slower, everything else slightly faster."""
    if lang and lang.lower().startswith("ar"):
        return 0.95
    return 1.05


def voice_language(voice: Any) -> str | None:
    """Normalise the first language advertised by a pyttsx3 voice (espeak reports bytes)."""
    languages = getattr(voice, "languages", None) or []
    if not languages:
        return None
    first = languages[0]
    if isinstance(first, bytes):
        first = first.decode("utf-8", errors="ignore")
    cleaned = "".join(ch for ch in str(first) if ch.isprintable()).strip().replace("_", "-")
    return cleaned or None


class Pyttsx3Playback(SpeechPlayback):
    """Speaker playback through a pyttsx3 engine owned by a dedicated thread.

    The engine and its voice list are initialised on that thread, so the voice
    catalog is empty until initialisation finishes.
    """

    def __init__(self, *, rate: int | None = None, volume: float | None = None, default_lang: str = "en") -> None:
        try:
            import pyttsx3
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "Audio output backend unavailable. Install extras with: pip install 'kiosk-voice[voice]'"
            ) from exc

        self._pyttsx3 = pyttsx3
        self._rate = rate
        self._volume = volume
        self._catalog = VoiceCatalog(default_lang=default_lang)
        self._lang: str | None = None
        self._emit: EventSink = _discard

        self._queue: queue.Queue[tuple[int, Utterance] | None] = queue.Queue()
        self._lock = threading.Lock()
        self._generation = 0
        self._engine: Any | None = None
        self._init_error: PlaybackError | None = None
        self._speaking = threading.Event()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name="pyttsx3-playback", daemon=True)
        self._thread.start()

    @property
    def catalog(self) -> VoiceCatalog:
        return self._catalog

    def bind(self, emit: EventSink) -> None:
        self._emit = emit

    def speak(self, utterance: Utterance) -> None:
        if self._init_error is not None:
            raise self._init_error
        with self._lock:
            generation = self._generation
        self._queue.put((generation, utterance))

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
        engine = self._engine
        if engine is not None and self._speaking.is_set():
            engine.stop()

    def close(self, timeout: float = 2.0) -> None:
        self.cancel()
        self._queue.put(None)
        self._thread.join(timeout=timeout)

    def _run(self) -> None:
        try:
            engine = self._pyttsx3.init()
        except Exception as exc:  # noqa: BLE001 - reported on the next speak call.
            self._init_error = PlaybackError(f"Speech synthesis unavailable: {exc}")
            self._ready.set()
            return

        if self._volume is not None:
            engine.setProperty("volume", max(0.0, min(1.0, self._volume)))
        if self._rate is None:
            self._rate = int(engine.getProperty("rate") or 200)
        self._catalog.update(
            Voice(id=voice.id, name=getattr(voice, "name", None) or voice.id, lang=voice_language(voice))
            for voice in engine.getProperty("voices") or []
        )
        self._engine = engine
        self._ready.set()

        while True:
            item = self._queue.get()
            if item is None:
                return
            generation, utterance = item
            with self._lock:
                stale = generation != self._generation
            if not stale:
                self._play(engine, utterance)

    def _play(self, engine: Any, utterance: Utterance) -> None:
        # An utterance without a language keeps the voice of the last one that had it.
        if utterance.lang:
            self._lang = utterance.lang
            voice = self._catalog.select(utterance.lang)
        else:
            voice = self._catalog.resolve(None)
        if voice is not None:
            engine.setProperty("voice", voice.id)
        engine.setProperty("rate", int((self._rate or 200) * rate_factor(self._lang)))

        self._speaking.set()
        self._emit(PlaybackStarted(utterance_id=utterance.id))
        try:
            engine.say(utterance.text)
            engine.runAndWait()
        except Exception as exc:  # noqa: BLE001
            self._emit(PlaybackFailed(utterance_id=utterance.id, error=PlaybackError(str(exc))))
            return
        finally:
            self._speaking.clear()
        self._emit(PlaybackEnded(utterance_id=utterance.id))
