from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class Turn:
    """One conversation message; immutable once created."""

    role: Role
    content: str

    def as_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_message(cls, payload: dict) -> Turn:
        return cls(role=Role(payload["role"]), content=str(payload.get("content") or ""))


@dataclass(frozen=True, slots=True)
class ChatReply:
    text: str
    lang: str | None = None
