"""Speech-to-text adapter backed by the OpenAI transcription API."""

from __future__ import annotations

import logging
from typing import Optional

import openai

from ..config import Settings
from ..errors import ServiceError, ValidationError

logger = logging.getLogger(__name__)


class TranscriptionService:
    """Turn a finite audio buffer into best-effort transcript text."""

    def __init__(
        self,
        settings: Settings,
        *,
        openai_client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self._settings = settings
        self._openai_client = openai_client

    @property
    def available(self) -> bool:
        return self._openai_client is not None or bool(self._settings.transcription_api_key)

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._openai_client is None:
            api_key = self._settings.transcription_api_key
            if not api_key:
                raise ServiceError("Speech-to-text API key is not configured")
            self._openai_client = openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        return self._openai_client

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "recording.wav",
        content_type: str = "audio/wav",
    ) -> str:
        if not audio:
            raise ValidationError("No audio file provided")
        if len(audio) > self._settings.max_upload_bytes:
            raise ValidationError(
                f"Audio file exceeds {self._settings.max_upload_bytes} bytes"
            )

        client = self._get_client()
        logger.info("Transcribing %d bytes (%s)", len(audio), content_type)
        try:
            transcription = await client.audio.transcriptions.create(
                model=self._settings.stt_model,
                file=(filename, audio, content_type),
            )
        except openai.OpenAIError as exc:
            logger.error("Transcription failed: %s", exc)
            raise ServiceError("An error occurred while transcribing the audio.") from exc

        text = getattr(transcription, "text", "") or ""
        logger.debug("Transcript: %s", text[:80])
        return text.strip()


__all__ = ["TranscriptionService"]
