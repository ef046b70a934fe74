"""Runtime configuration for Kiosk Voice."""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a concise, helpful, multilingual assistant for a visitor kiosk.\n"
    "Always respond in the same language as the user's last message.\n"
    "Keep replies crisp for speech: short sentences, friendly, and contextual "
    "(directions, offices, safety notes).\n"
    "If the user asks for directions, provide a brief route description."
)


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="KIOSK_VOICE_", env_file=".env", extra="ignore")

    app_name: str = "kiosk-voice"
    log_level: str = "INFO"

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KIOSK_VOICE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_model: str = "gpt-4o-mini"
    temperature: float = 0.4
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    relay_max_messages: int = Field(default=12, ge=2, description="Outbound messages including the system turn.")

    history_limit: int = Field(default=8, ge=1, description="Turns kept in the kiosk-side conversation window.")
    relay_endpoint: str = "http://127.0.0.1:3000/api/chat"
    relay_timeout_seconds: float = 20.0

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    rate_limit_requests: int = 60
    rate_limit_window_seconds: float = 30.0
    max_body_bytes: int = 1_000_000

    guard_delay_seconds: float = 0.3
    recognition_language: str = "en-US"
    fallback_reply: str = "Sorry, I had trouble reaching the server."

    @field_validator("guard_delay_seconds")
    @classmethod
    def _guard_delay_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("guard_delay_seconds must be greater than zero")
        return value


settings = Settings()
