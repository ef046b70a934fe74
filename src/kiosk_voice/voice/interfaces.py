"""Contracts for speech capture and speech playback.

Platform backends push lifecycle events into the session through the ``emit``
callback handed to ``bind``. They may call it from any thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Union


class CaptureError(RuntimeError):
    """Raised or reported when speech capture fails to start or errors mid-stream."""


class PlaybackError(RuntimeError):
    """Raised or reported when speech synthesis fails."""


@dataclass(frozen=True, slots=True)
class Utterance:
    """A single speak request."""

    id: int
    text: str
    lang: str | None = None


@dataclass(frozen=True, slots=True)
class CaptureStarted:
    pass


@dataclass(frozen=True, slots=True)
class CaptureResult:
    transcript: str
    is_final: bool


@dataclass(frozen=True, slots=True)
class CaptureEnded:
    pass


@dataclass(frozen=True, slots=True)
class CaptureFailed:
    error: Exception


@dataclass(frozen=True, slots=True)
class PlaybackStarted:
    utterance_id: int


@dataclass(frozen=True, slots=True)
class PlaybackEnded:
    utterance_id: int


@dataclass(frozen=True, slots=True)
class PlaybackFailed:
    utterance_id: int
    error: Exception


SpeechEvent = Union[
    CaptureStarted,
    CaptureResult,
    CaptureEnded,
    CaptureFailed,
    PlaybackStarted,
    PlaybackEnded,
    PlaybackFailed,
]
EventSink = Callable[[SpeechEvent], None]


class SpeechCapture(Protocol):
    """Turns live microphone audio into interim and final transcripts."""

    def bind(self, emit: EventSink) -> None:
        """Register the sink that receives capture events."""

    def start(self) -> None:
        """Begin capturing; emits ``CaptureStarted`` then results."""

    def stop(self) -> None:
        """Stop capturing. Best-effort: a trailing result may still arrive."""

    def set_language(self, lang: str | None) -> None:
        """Change the recognition language; ``None`` restores the default."""


class SpeechPlayback(Protocol):
    """Speaks text aloud and supports immediate cancellation."""

    def bind(self, emit: EventSink) -> None:
        """Register the sink that receives playback events."""

    def speak(self, utterance: Utterance) -> None:
        """Start speaking; emits ``PlaybackStarted`` and ``PlaybackEnded`` with the utterance id."""

    def cancel(self) -> None:
        """Stop any speech in progress. Safe to call when nothing is playing."""
