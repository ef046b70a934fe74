import types

from kiosk_voice.voice.tts_pyttsx3 import rate_factor, voice_language


def test_rate_factor_slows_down_arabic_only() -> None:
    assert rate_factor("ar") == 0.95
    assert rate_factor("ar-SA") == 0.95
    assert rate_factor("en") == 1.05
    assert rate_factor(None) == 1.05


def test_voice_language_normalises_espeak_bytes() -> None:
    espeak_voice = types.SimpleNamespace(languages=[b"\x05en-us"])
    sapi_voice = types.SimpleNamespace(languages=["en_US"])
    bare_voice = types.SimpleNamespace(languages=[])

    assert voice_language(espeak_voice) == "en-us"
    assert voice_language(sapi_voice) == "en-US"
    assert voice_language(bare_voice) is None
