"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("caregiver.config")

SUPPORTED_LANGUAGES = ("en", "ml", "hi", "ta", "kn")


class Settings(BaseSettings):
    # Gemini
    google_api_key: str = ""
    live_model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    chat_model: str = "gemini-3-flash-preview"

    # Assistant
    language: str = "en"

    # Record store (empty = in-memory)
    record_store_url: str = ""

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False
    cors_origins: str = "*"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"your-api-key", "AIza...", "changeme"}

        # Gemini key: a placeholder is a mistake, a blank one only disables voice
        if self.google_api_key in _placeholders:
            raise ValueError(
                "GOOGLE_API_KEY is still a placeholder. "
                "Set it in .env or leave it empty to disable the voice assistant."
            )
        if not self.google_api_key:
            warnings.append("GOOGLE_API_KEY not set. Voice assistant and TTS are disabled.")

        if self.language not in SUPPORTED_LANGUAGES:
            raise ValueError(
                f"LANGUAGE={self.language!r} is not supported. "
                f"Choose one of: {', '.join(SUPPORTED_LANGUAGES)}."
            )

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if not self.record_store_url:
            warnings.append("RECORD_STORE_URL not set. Records are kept in memory only.")

        return warnings


settings = Settings()

# Runtime-mutable settings (admin API can change these)
runtime_settings = {
    "tts_voice": "Kore",
    # addMedicine without a stock (or with zero) starts at this many doses
    "default_medicine_stock": 30,
    # Stock strictly below this raises one critical alert per medicine
    "low_stock_threshold": 5,
    "snooze_minutes": 5,
    # Completed turns kept in the rolling transcript
    "transcript_history": 10,
}
