"""Turn-taking state and the bounded conversation window."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from kiosk_voice.models import Role, Turn

DEFAULT_HISTORY_LIMIT = 8


class SessionStatus(str, Enum):
    """What the kiosk is doing right now."""

    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


@dataclass(slots=True)
class ConversationState:
    """Tracks session status, the mic toggle and the most recent conversation turns.

    Only user and assistant turns are stored. The system instruction is added by
    the relay on every outbound request and never enters this window.
    """

    history_limit: int = DEFAULT_HISTORY_LIMIT
    status: SessionStatus = SessionStatus.IDLE
    voice_enabled: bool = False
    processing: bool = False
    _history: deque[Turn] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._history = deque(maxlen=self.history_limit)

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    def append(self, turn: Turn) -> None:
        if turn.role == Role.SYSTEM:
            raise ValueError("System turns are not stored in the conversation history")
        self._history.append(turn)

    def add_user(self, text: str) -> Turn:
        turn = Turn(role=Role.USER, content=text)
        self.append(turn)
        return turn

    def add_assistant(self, text: str) -> Turn:
        turn = Turn(role=Role.ASSISTANT, content=text)
        self.append(turn)
        return turn

    def set_status(self, status: SessionStatus) -> bool:
        """Move to ``status`` and report whether anything changed."""
        if self.status == status:
            return False
        self.status = status
        return True

    def clear(self) -> None:
        self._history.clear()
        self.status = SessionStatus.IDLE
        self.voice_enabled = False
        self.processing = False
