"""Text-to-speech adapter with cloud, server-rendered and on-device paths."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional

import openai
from gtts import gTTS

from ..config import Settings
from ..errors import ServiceError
from .audio_cache import AudioCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SynthesisResult:
    """Exactly one of: on-device flag, cached server audio, or a data URL."""

    audio_url: str | None = None
    use_browser_tts: bool = False
    use_gtts: bool = False
    text: str | None = None

    @classmethod
    def browser_fallback(cls, text: str) -> "SynthesisResult":
        return cls(use_browser_tts=True, text=text)


class SpeechSynthesisService:
    """
    Service for Text-to-Speech generation.

    - OpenAI speech returns an inline ``data:audio/mpeg;base64`` URL.
    - gTTS renders an MP3 into the :class:`AudioCache` and returns an
      ``/audio/<id>`` URL that stays valid for the cache window.
    - Anything else (explicit request, missing credentials, backend failure)
      tells the client to synthesize on the device.
    """

    def __init__(
        self,
        settings: Settings,
        cache: AudioCache,
        *,
        openai_client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self._settings = settings
        self._cache = cache
        self._openai_client = openai_client

        if self.cloud_available:
            logger.info("TTS providers available: openai, gtts")
        else:
            logger.warning(
                "No TTS API key configured. Cloud voice unavailable; clients fall back to on-device speech."
            )

    @property
    def cloud_available(self) -> bool:
        return self._openai_client is not None or bool(self._settings.speech_api_key)

    def _get_openai_client(self) -> openai.AsyncOpenAI:
        if self._openai_client is None:
            api_key = self._settings.speech_api_key
            if not api_key:
                raise ServiceError("Text-to-speech API key is not configured")
            self._openai_client = openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        return self._openai_client

    async def synthesize(
        self,
        text: str,
        *,
        use_browser_tts: bool = False,
        use_gtts: bool = False,
    ) -> SynthesisResult:
        if use_browser_tts:
            return SynthesisResult.browser_fallback(text)

        if use_gtts:
            try:
                return await self._synthesize_gtts(text)
            except Exception as exc:
                logger.error("gTTS synthesis failed, falling back to browser TTS: %s", exc)
                return SynthesisResult.browser_fallback(text)

        if not self.cloud_available:
            return SynthesisResult.browser_fallback(text)

        try:
            return await self._synthesize_openai(text)
        except ServiceError as exc:
            logger.error("Error generating TTS with OpenAI: %s", exc)
            return SynthesisResult.browser_fallback(text)

    async def _synthesize_openai(self, text: str) -> SynthesisResult:
        client = self._get_openai_client()
        try:
            speech = await client.audio.speech.create(
                model=self._settings.tts_model,
                voice=self._settings.tts_voice,  # type: ignore[arg-type]
                input=text,
            )
        except openai.OpenAIError as exc:
            raise ServiceError(f"OpenAI TTS request failed: {exc}") from exc

        audio = speech.content
        if not audio:
            raise ServiceError("OpenAI TTS returned no audio")
        logger.info("OpenAI TTS synthesized %d bytes for text: %s...", len(audio), text[:50])
        encoded = base64.b64encode(audio).decode("ascii")
        return SynthesisResult(audio_url=f"data:audio/mpeg;base64,{encoded}")

    def _render_gtts(self, text: str) -> bytes:
        buffer = io.BytesIO()
        gTTS(text=text, lang=self._settings.gtts_language).write_to_fp(buffer)
        return buffer.getvalue()

    async def _synthesize_gtts(self, text: str) -> SynthesisResult:
        audio = await asyncio.to_thread(self._render_gtts, text)
        if not audio:
            raise ServiceError("gTTS returned no audio")
        filepath = await asyncio.to_thread(self._cache.write_temp_file, audio, suffix=".mp3")
        identifier = self._cache.put(audio, filepath=filepath)
        logger.info("gTTS synthesized %d bytes as %s", len(audio), identifier)
        return SynthesisResult(audio_url=f"/audio/{identifier}", use_gtts=True, text=text)


__all__ = ["SpeechSynthesisService", "SynthesisResult"]
