"""Chat-completion adapter for the remote and the locally hosted model."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional

import httpx
import openai

from ..config import Settings
from ..errors import InferenceTimeoutError, ServiceError

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "I'm sorry, I couldn't process that request."


def degraded_response(query: str) -> str:
    """Spoken apology used whenever the model cannot answer."""

    return (
        "I'm sorry, I wasn't able to get an answer from the language model "
        f'right now. You asked: "{query}". Please try again in a moment.'
    )


@dataclass(frozen=True)
class InferenceResult:
    response: str
    cancelled: bool = False
    degraded: bool = False


class InferenceService:
    """Send a finalized transcript to a chat model and return its answer.

    Failures never propagate: the caller always receives some text to speak.
    A set ``cancel_event`` aborts the upstream call and yields a cancelled
    result instead.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        openai_client: Optional[openai.AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._openai_client = openai_client
        self._http_client = http_client

    @property
    def remote_available(self) -> bool:
        return self._openai_client is not None or bool(self._settings.remote_api_key)

    @property
    def local_available(self) -> bool:
        return self._settings.local_model_base_url is not None

    def _get_openai_client(self) -> openai.AsyncOpenAI:
        if self._openai_client is None:
            api_key = self._settings.remote_api_key
            if not api_key:
                raise ServiceError("Remote model API key is not configured")
            self._openai_client = openai.AsyncOpenAI(
                api_key=api_key, max_retries=0, http_client=self._http_client
            )
        return self._openai_client

    def _messages(self, text: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self._settings.system_prompt},
            {"role": "user", "content": text},
        ]

    async def _infer_remote(self, text: str) -> str:
        client = self._get_openai_client()
        try:
            completion = await client.chat.completions.create(
                model=self._settings.remote_model,
                messages=self._messages(text),  # type: ignore[arg-type]
                max_tokens=self._settings.max_tokens,
                temperature=self._settings.temperature,
            )
        except openai.OpenAIError as exc:
            raise ServiceError(f"Remote model request failed: {exc}") from exc

        choices = completion.choices or []
        content = choices[0].message.content if choices else None
        return (content or "").strip()

    async def _infer_local(self, text: str) -> str:
        base_url = self._settings.local_model_base_url
        if base_url is None:
            raise ServiceError("Local model endpoint is not configured")

        payload = {
            "model": self._settings.local_model_name,
            "messages": self._messages(text),
            "stream": False,
            "options": {
                "temperature": self._settings.temperature,
                "num_predict": self._settings.max_tokens,
            },
        }
        try:
            if self._http_client is not None:
                resp = await self._http_client.post(f"{base_url}/api/chat", json=payload)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    resp = await client.post(f"{base_url}/api/chat", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ServiceError(
                f"Local model returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.RequestError, ValueError) as exc:
            raise ServiceError(f"Local model request failed: {exc}") from exc

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return (content or "").strip() if isinstance(content, str) else ""

    async def _bounded(self, text: str, use_local_model: bool) -> str:
        call = self._infer_local(text) if use_local_model else self._infer_remote(text)
        try:
            return await asyncio.wait_for(call, timeout=self._settings.inference_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise InferenceTimeoutError(
                f"Model did not answer within {self._settings.inference_timeout_seconds:.0f}s"
            ) from exc

    async def infer(
        self,
        text: str,
        *,
        use_local_model: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> InferenceResult:
        target = "local" if use_local_model else "remote"
        logger.info("Inference request (%s model, %d chars)", target, len(text))

        task = asyncio.create_task(self._bounded(text, use_local_model))
        waiter: asyncio.Task | None = None
        try:
            if cancel_event is not None:
                waiter = asyncio.create_task(cancel_event.wait())
                await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if not task.done():
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task
                    logger.info("Inference cancelled by user")
                    return InferenceResult(response="", cancelled=True)
            response = await task
        except ServiceError as exc:
            logger.warning("Inference failed (%s model): %s", target, exc)
            return InferenceResult(response=degraded_response(text), degraded=True)
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()
            if not task.done():
                task.cancel()

        if not response:
            logger.warning("Model returned an empty response")
            response = EMPTY_RESPONSE_TEXT
        return InferenceResult(response=response)


__all__ = [
    "EMPTY_RESPONSE_TEXT",
    "InferenceResult",
    "InferenceService",
    "degraded_response",
]
