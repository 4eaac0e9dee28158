from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile

from ..errors import ServiceError, ValidationError
from ..schemas.voice import TranscribeResponse
from ..services.stt_service import TranscriptionService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["stt"])


def get_transcription_service(request: Request) -> TranscriptionService:
    service = getattr(request.app.state, "transcription_service", None)
    if service is None:
        raise ServiceError("Transcription service unavailable")
    return service


@router.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(
    audio: UploadFile | None = File(default=None),
    service: TranscriptionService = Depends(get_transcription_service),
) -> TranscribeResponse:
    if audio is None:
        raise ValidationError("No audio file provided")

    data = await audio.read()
    logger.info(
        "Transcription upload received: %s (%s, %d bytes)",
        audio.filename,
        audio.content_type,
        len(data),
    )
    text = await service.transcribe(
        data,
        filename=audio.filename or "recording.wav",
        content_type=audio.content_type or "audio/wav",
    )
    return TranscribeResponse(text=text)
