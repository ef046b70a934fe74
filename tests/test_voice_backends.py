from __future__ import annotations

import queue
import sys
import threading
import time
import types

import pytest

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
    Utterance,
)


def _wait_for(condition, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("timed out waiting for backend thread")
        time.sleep(0.01)


class FakeEngine:
    def __init__(self, voices, fail_on: str | None = None) -> None:
        self.properties = {"rate": 200, "voices": voices}
        self.spoken: list[tuple[str, str | None, int]] = []
        self.fail_on = fail_on
        self.hold_on: str | None = None
        self.gate = threading.Event()
        self.stops = 0
        self._pending = ""

    def getProperty(self, name):
        return self.properties.get(name)

    def setProperty(self, name, value) -> None:
        self.properties[name] = value

    def say(self, text: str) -> None:
        self._pending = text
        self.spoken.append((text, self.properties.get("voice"), self.properties["rate"]))

    def runAndWait(self) -> None:
        if self._pending == self.fail_on:
            raise OSError("audio device lost")
        if self._pending == self.hold_on:
            self.gate.wait(timeout=2.0)

    def stop(self) -> None:
        self.stops += 1
        self.gate.set()


KIOSK_VOICES = [
    types.SimpleNamespace(id="voice-en", name="English", languages=["en_US"]),
    types.SimpleNamespace(id="voice-ar", name="Arabic", languages=[b"\x05ar"]),
]


def _playback(monkeypatch, engine: FakeEngine | None = None, init_error: Exception | None = None):
    fake = types.ModuleType("pyttsx3")

    def init():
        if init_error is not None:
            raise init_error
        return engine

    fake.init = init
    monkeypatch.setitem(sys.modules, "pyttsx3", fake)

    from kiosk_voice.voice.tts_pyttsx3 import Pyttsx3Playback

    events: list = []
    playback = Pyttsx3Playback()
    playback.bind(events.append)
    return playback, events


def _ended(events, utterance_id: int) -> bool:
    return any(isinstance(event, (PlaybackEnded, PlaybackFailed)) and event.utterance_id == utterance_id for event in events)


def test_unlabelled_utterance_keeps_the_last_reply_voice(monkeypatch) -> None:
    engine = FakeEngine(KIOSK_VOICES)
    playback, events = _playback(monkeypatch, engine)

    playback.speak(Utterance(id=1, text="مرحبا بك", lang="ar"))
    playback.speak(Utterance(id=2, text="Sorry, I had trouble reaching the server."))
    _wait_for(lambda: _ended(events, 2))
    playback.close()

    assert engine.spoken == [
        ("مرحبا بك", "voice-ar", 190),
        ("Sorry, I had trouble reaching the server.", "voice-ar", 190),
    ]
    assert playback.catalog.selected.id == "voice-ar"


def test_cancel_drops_speech_queued_before_it(monkeypatch) -> None:
    engine = FakeEngine(KIOSK_VOICES)
    engine.hold_on = "Welcome to the lobby."
    playback, events = _playback(monkeypatch, engine)

    playback.speak(Utterance(id=1, text="Welcome to the lobby.", lang="en"))
    _wait_for(lambda: PlaybackStarted(utterance_id=1) in events)
    playback.speak(Utterance(id=2, text="Please mind the step.", lang="en"))
    playback.cancel()
    playback.speak(Utterance(id=3, text="How can I help?", lang="en"))
    _wait_for(lambda: _ended(events, 3))
    playback.close()

    started = [event.utterance_id for event in events if isinstance(event, PlaybackStarted)]
    assert started == [1, 3]
    assert engine.stops >= 1
    assert [text for text, _, _ in engine.spoken] == ["Welcome to the lobby.", "How can I help?"]


def test_engine_error_is_reported_as_playback_failure(monkeypatch) -> None:
    engine = FakeEngine(KIOSK_VOICES, fail_on="Hello")
    playback, events = _playback(monkeypatch, engine)

    playback.speak(Utterance(id=7, text="Hello", lang="en"))
    _wait_for(lambda: _ended(events, 7))
    playback.close()

    failure = events[-1]
    assert isinstance(failure, PlaybackFailed)
    assert failure.utterance_id == 7
    assert isinstance(failure.error, PlaybackError)


def test_engine_init_failure_surfaces_on_speak(monkeypatch) -> None:
    playback, _ = _playback(monkeypatch, init_error=RuntimeError("no driver"))
    playback.close()

    with pytest.raises(PlaybackError):
        playback.speak(Utterance(id=1, text="Hello"))


class _UnknownValueError(Exception):
    pass


class _RequestError(Exception):
    pass


class _WaitTimeoutError(Exception):
    pass


class FakeMicrophone:
    fail_on_enter: Exception | None = None

    def __init__(self, sample_rate=None, chunk_size=1024) -> None:
        self.sample_rate = sample_rate

    def __enter__(self):
        if FakeMicrophone.fail_on_enter is not None:
            raise FakeMicrophone.fail_on_enter
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeRecognizer:
    def __init__(self) -> None:
        self.phrases: queue.Queue = queue.Queue()
        self.languages: list[str] = []

    def adjust_for_ambient_noise(self, source, duration=1.0) -> None:
        pass

    def listen(self, source, timeout=None, phrase_time_limit=None):
        try:
            return self.phrases.get(timeout=0.02)
        except queue.Empty:
            raise _WaitTimeoutError() from None

    def recognize_google(self, audio, language=None):
        self.languages.append(language)
        if isinstance(audio, Exception):
            raise audio
        return audio


def _capture(monkeypatch, **kwargs):
    fake = types.ModuleType("speech_recognition")
    fake.Recognizer = FakeRecognizer
    fake.Microphone = FakeMicrophone
    fake.UnknownValueError = _UnknownValueError
    fake.RequestError = _RequestError
    fake.WaitTimeoutError = _WaitTimeoutError
    monkeypatch.setitem(sys.modules, "speech_recognition", fake)
    monkeypatch.setattr(FakeMicrophone, "fail_on_enter", None)

    from kiosk_voice.voice.stt_speechrecognition import SpeechRecognitionCapture

    events: list = []
    capture = SpeechRecognitionCapture(language="en-US", adjust_noise_seconds=0, **kwargs)
    capture.bind(events.append)
    return capture, capture._recognizer, events


def test_capture_reports_start_results_and_end(monkeypatch) -> None:
    capture, recognizer, events = _capture(monkeypatch)

    capture.start()
    capture.start()
    recognizer.phrases.put(_UnknownValueError())
    recognizer.phrases.put("Where is the cafeteria?")
    _wait_for(lambda: any(isinstance(event, CaptureResult) for event in events))
    capture.stop()
    capture.stop()

    assert events == [
        CaptureStarted(),
        CaptureResult(transcript="Where is the cafeteria?", is_final=True),
        CaptureEnded(),
    ]


def test_recognition_service_error_becomes_capture_failure(monkeypatch) -> None:
    capture, recognizer, events = _capture(monkeypatch)

    capture.start()
    recognizer.phrases.put(_RequestError("offline"))
    _wait_for(lambda: any(isinstance(event, CaptureFailed) for event in events))
    capture.stop()

    failure = next(event for event in events if isinstance(event, CaptureFailed))
    assert isinstance(failure.error, CaptureError)


def test_microphone_error_in_listener_becomes_capture_failure(monkeypatch) -> None:
    capture, _, events = _capture(monkeypatch)
    FakeMicrophone.fail_on_enter = AssertionError("This audio source is already being used")

    capture.start()
    _wait_for(lambda: any(isinstance(event, CaptureFailed) for event in events))
    capture.stop()

    assert CaptureStarted() in events
    assert isinstance(events[-1], CaptureEnded)


def test_quick_restart_opens_a_new_listener(monkeypatch) -> None:
    capture, recognizer, events = _capture(monkeypatch)

    capture.start()
    capture.stop()
    capture.start()
    time.sleep(0.1)
    recognizer.phrases.put("Hello again")
    _wait_for(lambda: any(isinstance(event, CaptureResult) for event in events))
    capture.stop()

    assert CaptureResult(transcript="Hello again", is_final=True) in events
    assert not any(isinstance(event, CaptureFailed) for event in events)


def test_set_language_none_restores_the_default(monkeypatch) -> None:
    capture, recognizer, events = _capture(monkeypatch)

    capture.set_language("ar-SA")
    capture.start()
    recognizer.phrases.put("مرحبا")
    _wait_for(lambda: len(recognizer.languages) == 1)
    capture.set_language(None)
    recognizer.phrases.put("hello")
    _wait_for(lambda: len(recognizer.languages) == 2)
    capture.stop()

    assert recognizer.languages == ["ar-SA", "en-US"]
