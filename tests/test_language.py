from kiosk_voice.language import detect_language


def test_detects_arabic_and_defaults_to_english() -> None:
    assert detect_language("مرحبا") == "ar"
    assert detect_language("Hello there") == "en"
    assert detect_language("") == "en"
    assert detect_language(None) == "en"


def test_detects_each_script_rule() -> None:
    assert detect_language("Привет, как дела?") == "ru"
    assert detect_language("안녕하세요") == "ko"
    assert detect_language("東京駅はどこですか") == "ja"
    assert detect_language("Où est le café ?") == "fr"
    assert detect_language("Die Straße ist lang") == "de"
    assert detect_language("¿Dónde está la salida?") == "es"


def test_italian_needs_accent_and_word_cue() -> None:
    assert detect_language("Però gli uffici sono chiusi") == "it"
    assert detect_language("Però") == "en"


def test_mixed_scripts_resolve_to_earliest_rule() -> None:
    assert detect_language("Hello مرحبا Привет") == "ar"
    assert detect_language("Привет 안녕") == "ru"
    assert detect_language("Straße café") == "fr"


def test_only_the_leading_sample_is_inspected() -> None:
    assert detect_language("a" * 160 + "مرحبا") == "en"
    assert detect_language("a" * 159 + "مرحبا") == "ar"


def test_pipe_character_is_not_treated_as_korean() -> None:
    assert detect_language("left | right") == "en"
