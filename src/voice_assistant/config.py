"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote chat-completion model
    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    remote_model: str = Field(
        default="gpt-3.5-turbo",
        validation_alias=AliasChoices("REMOTE_MODEL", "remote_model"),
    )

    # Locally hosted model (Ollama-compatible /api/chat)
    local_model_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("LOCAL_MODEL_URL", "local_model_url"),
    )
    local_model_name: str = Field(
        default="llama3",
        validation_alias=AliasChoices("LOCAL_MODEL_NAME", "local_model_name"),
    )

    system_prompt: str = Field(
        default=(
            "You are a helpful voice assistant. Provide clear, concise responses "
            "that are appropriate for speaking aloud."
        ),
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    max_tokens: int = Field(
        default=150,
        ge=1,
        validation_alias=AliasChoices("MAX_TOKENS", "max_tokens"),
    )
    temperature: float = Field(
        default=0.7,
        ge=0,
        le=2,
        validation_alias=AliasChoices("TEMPERATURE", "temperature"),
    )
    inference_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("INFERENCE_TIMEOUT", "inference_timeout_seconds"),
    )

    # Speech-to-text; falls back to the chat key when no dedicated key is set
    stt_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("STT_API_KEY", "OPENAI_API_KEY", "stt_api_key"),
    )
    stt_model: str = Field(
        default="whisper-1",
        validation_alias=AliasChoices("STT_MODEL", "stt_model"),
    )
    max_upload_bytes: int = Field(
        default=25 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices("MAX_UPLOAD_BYTES", "max_upload_bytes"),
    )

    # Text-to-speech; missing key forces on-device synthesis on the client
    tts_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("TTS_API_KEY", "OPENAI_API_KEY", "tts_api_key"),
    )
    tts_model: str = Field(
        default="tts-1",
        validation_alias=AliasChoices("TTS_MODEL", "tts_model"),
    )
    tts_voice: str = Field(
        default="alloy",
        validation_alias=AliasChoices("TTS_VOICE", "tts_voice"),
    )
    gtts_language: str = Field(
        default="en",
        validation_alias=AliasChoices("GTTS_LANGUAGE", "gtts_language"),
    )

    audio_cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("AUDIO_CACHE_TTL", "audio_cache_ttl_seconds"),
    )
    audio_cache_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("AUDIO_CACHE_DIR", "audio_cache_dir"),
    )

    @staticmethod
    def _secret(value: SecretStr | None) -> str | None:
        if value is None:
            return None
        raw = value.get_secret_value().strip()
        return raw or None

    @property
    def remote_api_key(self) -> str | None:
        return self._secret(self.openai_api_key)

    @property
    def transcription_api_key(self) -> str | None:
        return self._secret(self.stt_api_key)

    @property
    def speech_api_key(self) -> str | None:
        return self._secret(self.tts_api_key)

    @property
    def local_model_base_url(self) -> str | None:
        if self.local_model_url is None:
            return None
        return str(self.local_model_url).rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
