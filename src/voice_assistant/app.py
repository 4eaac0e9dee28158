"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import Settings, get_settings
from .errors import VoiceAssistantError
from .routers.llm import router as llm_router
from .routers.stt import router as stt_router
from .routers.tts import router as tts_router
from .services.audio_cache import AudioCache
from .services.inference_service import InferenceService
from .services.stt_service import TranscriptionService
from .services.tts_service import SpeechSynthesisService

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = os.getenv("LOG_FILE")
    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("voice_assistant").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet the HTTP client libraries unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)


def _install_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": ...}`` with the mapped status."""

    @app.exception_handler(VoiceAssistantError)
    async def _voice_error(request: Request, exc: VoiceAssistantError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected malformed request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request body."},
        )

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "An error occurred while processing your request."},
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()

    audio_cache = AudioCache(
        ttl_seconds=settings.audio_cache_ttl_seconds,
        directory=settings.audio_cache_dir,
    )
    transcription_service = TranscriptionService(settings)
    inference_service = InferenceService(settings)
    synthesis_service = SpeechSynthesisService(settings, audio_cache)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Voice backends: remote_model=%s local_model=%s stt=%s cloud_tts=%s",
            inference_service.remote_available,
            inference_service.local_available,
            transcription_service.available,
            synthesis_service.cloud_available,
        )
        try:
            yield
        finally:
            audio_cache.close()

    app = FastAPI(
        title="Voice Assistant Backend",
        version="0.1.0",
        description="Speech-to-text, chat inference and text-to-speech adapters for the voice assistant.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.audio_cache = audio_cache
    app.state.transcription_service = transcription_service
    app.state.inference_service = inference_service
    app.state.synthesis_service = synthesis_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _install_error_handlers(app)

    app.include_router(stt_router)
    app.include_router(llm_router)
    app.include_router(tts_router)

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        """Serve a 1x1 transparent PNG to keep browser consoles quiet."""
        png_data = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x00\x01\x00\x18\xdd\x8d\xb4\x00\x00\x00\x00IEND\xaeB`\x82"
        return Response(content=png_data, media_type="image/png")

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, object]:
        return {
            "status": "ok",
            "remote_model": inference_service.remote_available,
            "local_model": inference_service.local_available,
            "transcription": transcription_service.available,
            "cloud_tts": synthesis_service.cloud_available,
            "cached_audio": len(audio_cache),
        }

    return app


__all__ = ["create_app"]
