from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..errors import ServiceError, ValidationError
from ..schemas.voice import InferRequest, InferResponse
from ..services.inference_service import InferenceService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["llm"])

DISCONNECT_POLL_SECONDS = 0.5


def get_inference_service(request: Request) -> InferenceService:
    service = getattr(request.app.state, "inference_service", None)
    if service is None:
        raise ServiceError("Inference service unavailable")
    return service


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    """Set ``cancel_event`` once the caller drops the connection."""

    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected during inference; cancelling")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/infer")
async def infer(
    payload: InferRequest,
    request: Request,
    service: InferenceService = Depends(get_inference_service),
) -> dict[str, Any]:
    text = payload.text
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Invalid request. Please provide text.")

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        result = await service.infer(
            text,
            use_local_model=payload.use_local_model,
            cancel_event=cancel_event,
        )
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher

    if result.cancelled:
        return InferResponse(response=result.response, cancelled=True).to_payload()
    return InferResponse(response=result.response).to_payload()
