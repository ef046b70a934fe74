"""Voice capture, playback and turn-taking state."""

from .dialogue import ConversationState, SessionStatus
from .interfaces import (
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
from .voices import Voice, VoiceCatalog

__all__ = [
    "CaptureEnded",
    "CaptureError",
    "CaptureFailed",
    "CaptureResult",
    "CaptureStarted",
    "ConversationState",
    "PlaybackEnded",
    "PlaybackError",
    "PlaybackFailed",
    "PlaybackStarted",
    "SessionStatus",
    "SpeechCapture",
    "SpeechPlayback",
    "Utterance",
    "Voice",
    "VoiceCatalog",
]
