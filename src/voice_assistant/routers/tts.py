from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..errors import NotFoundError, ServiceError, ValidationError
from ..schemas.voice import SynthesizeRequest, SynthesizeResponse
from ..services.audio_cache import AudioCache
from ..services.tts_service import SpeechSynthesisService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tts"])


def get_synthesis_service(request: Request) -> SpeechSynthesisService:
    service = getattr(request.app.state, "synthesis_service", None)
    if service is None:
        raise ServiceError("Speech synthesis service unavailable")
    return service


def get_audio_cache(request: Request) -> AudioCache:
    cache = getattr(request.app.state, "audio_cache", None)
    if cache is None:
        raise ServiceError("Audio cache unavailable")
    return cache


@router.post("/synthesize")
async def synthesize(
    payload: SynthesizeRequest,
    service: SpeechSynthesisService = Depends(get_synthesis_service),
) -> dict[str, Any]:
    text = payload.text
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Invalid request. Please provide text.")

    result = await service.synthesize(
        text,
        use_browser_tts=payload.use_browser_tts,
        use_gtts=payload.use_gtts,
    )
    response = SynthesizeResponse(
        use_browser_tts=True if result.use_browser_tts else None,
        use_gtts=True if result.use_gtts else None,
        audio_url=result.audio_url,
        text=result.text,
    )
    return response.to_payload()


def _audio_response(cache: AudioCache, identifier: str) -> Response:
    buffer = cache.get(identifier)
    if buffer is None:
        logger.info("Audio not found for UUID: %s", identifier)
        raise NotFoundError("Audio not found or expired")

    logger.info("Serving audio file for UUID: %s, size: %d bytes", identifier, len(buffer))
    return Response(
        content=buffer,
        media_type="audio/mpeg",
        headers={
            "Content-Length": str(len(buffer)),
            "Cache-Control": f"public, max-age={int(cache.ttl_seconds)}",
        },
    )


@router.get("/audio")
async def get_audio_by_query(
    uuid: Optional[str] = None,
    cache: AudioCache = Depends(get_audio_cache),
) -> Response:
    if not uuid:
        raise ValidationError("Missing UUID parameter")
    return _audio_response(cache, uuid)


@router.get("/audio/{uuid}")
async def get_audio(
    uuid: str,
    cache: AudioCache = Depends(get_audio_cache),
) -> Response:
    return _audio_response(cache, uuid)
