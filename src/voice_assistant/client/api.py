"""HTTP client for the transcribe / infer / synthesize adapters."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..errors import CancellationError, ServiceError
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

# Server bounds inference at five minutes; leave headroom for transport.
DEFAULT_TIMEOUT = httpx.Timeout(330.0, connect=10.0)


@dataclass(frozen=True)
class InferOutcome:
    response: str
    cancelled: bool = False


@dataclass(frozen=True)
class SpeechOutcome:
    audio_url: str | None = None
    use_browser_tts: bool = False
    text: str | None = None

    @property
    def playable(self) -> bool:
        return bool(self.audio_url) and not self.use_browser_tts


class VoiceApiClient:
    """Single-attempt client; the caller decides on any fallback."""

    def __init__(
        self,
        server_url: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "VoiceApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def resolve_url(self, url: str) -> str:
        if url.startswith("/"):
            return f"{self.server_url}{url}"
        return url

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("detail")
            if message:
                return str(message)
        return f"Request failed ({resp.status_code})"

    async def _post(
        self,
        path: str,
        token: Optional[CancellationToken],
        **kwargs: Any,
    ) -> dict[str, Any]:
        request = self._client.post(f"{self.server_url}{path}", **kwargs)
        try:
            resp = await (token.guard(request) if token else request)
        except httpx.RequestError as exc:
            raise ServiceError(f"Network error contacting {path}: {exc}") from exc

        if resp.status_code >= 400:
            raise ServiceError(self._error_message(resp), status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ServiceError(f"Malformed response from {path}") from exc
        if not isinstance(data, dict):
            raise ServiceError(f"Malformed response from {path}")
        return data

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "recording.wav",
        content_type: str = "audio/wav",
        token: Optional[CancellationToken] = None,
    ) -> str:
        data = await self._post(
            "/transcribe",
            token,
            files={"audio": (filename, audio, content_type)},
        )
        return str(data.get("text") or "")

    async def infer(
        self,
        text: str,
        *,
        use_local_model: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> InferOutcome:
        try:
            data = await self._post(
                "/infer",
                token,
                json={"text": text, "useLocalModel": use_local_model},
            )
        except CancellationError:
            logger.info("Inference request aborted by user")
            return InferOutcome(response="", cancelled=True)

        if data.get("cancelled"):
            return InferOutcome(response=str(data.get("response") or ""), cancelled=True)
        response = data.get("response")
        if not isinstance(response, str):
            raise ServiceError(str(data.get("error") or "Inference returned no response"))
        return InferOutcome(response=response)

    async def synthesize(
        self,
        text: str,
        *,
        use_browser_tts: bool = False,
        use_gtts: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> SpeechOutcome:
        data = await self._post(
            "/synthesize",
            token,
            json={"text": text, "useBrowserTTS": use_browser_tts, "useGTTS": use_gtts},
        )
        if data.get("useBrowserTTS"):
            return SpeechOutcome(use_browser_tts=True, text=str(data.get("text") or text))
        audio_url = data.get("audioUrl")
        if not isinstance(audio_url, str) or not audio_url:
            raise ServiceError("Synthesis returned no audio")
        return SpeechOutcome(audio_url=self.resolve_url(audio_url), text=data.get("text"))

    async def fetch_audio(self, url: str) -> bytes:
        """Return raw bytes for a ``data:`` URL or a server audio URL."""

        if url.startswith("data:"):
            _, _, encoded = url.partition(",")
            try:
                return base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ServiceError("Malformed audio data URL") from exc

        try:
            resp = await self._client.get(self.resolve_url(url))
        except httpx.RequestError as exc:
            raise ServiceError(f"Network error fetching audio: {exc}") from exc
        if resp.status_code >= 400:
            raise ServiceError(self._error_message(resp), status_code=resp.status_code)
        return resp.content


__all__ = ["InferOutcome", "SpeechOutcome", "VoiceApiClient"]
