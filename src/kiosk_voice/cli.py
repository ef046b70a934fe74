"""Terminal keyboard shortcuts for a running kiosk session."""

from __future__ import annotations

from enum import Enum

from kiosk_voice.session import SessionController


class ShortcutAction(str, Enum):
    TOGGLE_VOICE = "toggle_voice"
    STOP_SPEAKING = "stop_speaking"
    SAY = "say"
    QUIT = "quit"
    UNKNOWN = "unknown"


class KeyboardShortcuts:
    """Maps typed keys onto session actions; Enter and ``m`` both toggle the mic."""

    def __init__(self, controller: SessionController) -> None:
        self._controller = controller

    def handle(self, line: str) -> ShortcutAction:
        text = line.strip()
        key = text.lower()
        if key in ("", "m"):
            self._controller.toggle_voice()
            return ShortcutAction.TOGGLE_VOICE
        if key == "s":
            self._controller.stop_speaking()
            return ShortcutAction.STOP_SPEAKING
        if key in ("q", "quit", "exit"):
            return ShortcutAction.QUIT
        if key.startswith("say "):
            self._controller.say(text[4:])
            return ShortcutAction.SAY
        return ShortcutAction.UNKNOWN
