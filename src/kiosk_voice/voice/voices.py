"""Synthesis voice catalog and language-based voice selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

logger = logging.getLogger("kiosk_voice.voice.voices")


@dataclass(frozen=True, slots=True)
class Voice:
    id: str
    name: str
    lang: str | None = None


class VoiceCatalog:
    """Holds the voices a synthesizer offers and the one currently selected.

    The catalog may be empty while the platform is still discovering voices;
    lookups then return ``None`` and selection is retried on the next update.
    """

    def __init__(self, voices: Iterable[Voice] = (), *, default_lang: str = "en") -> None:
        self._voices: list[Voice] = []
        self._default_lang = default_lang
        self._selected: Voice | None = None
        self.update(voices)

    @property
    def voices(self) -> list[Voice]:
        return list(self._voices)

    @property
    def selected(self) -> Voice | None:
        return self._selected

    def update(self, voices: Iterable[Voice]) -> None:
        """Replace the known voices and pick a default if none is selected yet."""
        self._voices = list(voices)
        if self._selected is not None and self._selected not in self._voices:
            self._selected = None
        if self._selected is None and self._voices:
            self._selected = self.closest(self._default_lang)
        logger.debug("voice_catalog_updated", extra={"voice_count": len(self._voices)})

    def closest(self, lang: str) -> Voice | None:
        """Exact tag match, then two-letter prefix match, then any voice."""
        if not self._voices:
            return None

        wanted = lang.lower()
        for voice in self._voices:
            if voice.lang and voice.lang.lower() == wanted:
                return voice

        prefix = wanted[:2]
        for voice in self._voices:
            if voice.lang and voice.lang.lower().startswith(prefix):
                return voice
        return self._voices[0]

    def select(self, lang: str) -> Voice | None:
        """Make the closest voice for ``lang`` the default one, if any exists."""
        voice = self.closest(lang)
        if voice is not None:
            self._selected = voice
        return voice

    def resolve(self, lang: str | None) -> Voice | None:
        """Voice to use for one utterance."""
        if lang:
            return self.closest(lang)
        return self._selected or self.closest(self._default_lang)
