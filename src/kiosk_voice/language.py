"""Best-effort script detection for choosing a speech voice.

This is not language identification. Each rule keys on characters that are
typical for a script or a set of diacritics, and the first matching rule wins,
so for example French cannot be told apart from other Latin-script languages
that share its accents.
"""

from __future__ import annotations

import re

DEFAULT_LANGUAGE = "en"
SAMPLE_CHARS = 160

_ITALIAN_WORDS = re.compile(r"[gl]li|che|per\b", re.IGNORECASE)

# Priority order matters: overlapping ranges resolve to the earliest entry.
_SCRIPT_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("ar", re.compile(r"[ء-ي]")),
    ("ru", re.compile(r"[а-яё]", re.IGNORECASE)),
    ("ko", re.compile(r"[ㄱ-ㅎㅏ-ㅣ가-힣]")),
    ("ja", re.compile(r"[一-龯]")),
    ("zh", re.compile(r"[一-鿿]")),
    ("fr", re.compile(r"[àâçéèêëîïôûùüÿœæ]", re.IGNORECASE)),
    ("de", re.compile(r"[äöüß]", re.IGNORECASE)),
    ("es", re.compile(r"[áéíóúñ¿¡]", re.IGNORECASE)),
)
_ITALIAN_ACCENTS = re.compile(r"[ìòàéù]", re.IGNORECASE)


def detect_language(text: str | None) -> str:
    """Return a short language tag for ``text``, defaulting to ``"en"``."""
    sample = (text or "")[:SAMPLE_CHARS]
    if not sample:
        return DEFAULT_LANGUAGE

    for tag, pattern in _SCRIPT_RULES:
        if pattern.search(sample):
            return tag

    if _ITALIAN_ACCENTS.search(sample) and _ITALIAN_WORDS.search(sample):
        return "it"
    return DEFAULT_LANGUAGE
