"""Tests for the chat-completion adapter."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from pydantic import SecretStr

from voice_assistant.config import Settings
from voice_assistant.services.inference_service import (
    EMPTY_RESPONSE_TEXT,
    InferenceService,
)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"openai_api_key": SecretStr("test-key")}
    values.update(overrides)
    return Settings(**values)


class FakeCompletions:
    def __init__(self, content: str | None = "4", delay: float = 0.0, error: Exception | None = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai(completions: FakeCompletions) -> Any:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.anyio
async def test_remote_inference_returns_model_text() -> None:
    completions = FakeCompletions(content=" 4 ")
    service = InferenceService(make_settings(), openai_client=fake_openai(completions))

    result = await service.infer("What is 2+2?")

    assert result.response == "4"
    assert not result.cancelled
    assert not result.degraded
    call = completions.calls[0]
    assert call["model"] == "gpt-3.5-turbo"
    assert call["max_tokens"] == 150
    assert call["messages"][-1] == {"role": "user", "content": "What is 2+2?"}
    assert call["messages"][0]["role"] == "system"


@pytest.mark.anyio
async def test_timeout_returns_apology_quoting_the_question() -> None:
    completions = FakeCompletions(delay=1.0)
    service = InferenceService(
        make_settings(inference_timeout_seconds=0.05),
        openai_client=fake_openai(completions),
    )

    result = await service.infer("What is 2+2?")

    assert result.degraded
    assert not result.cancelled
    assert '"What is 2+2?"' in result.response
    assert result.response.startswith("I'm sorry")


@pytest.mark.anyio
async def test_upstream_error_is_degraded_not_raised() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    completions = FakeCompletions(error=openai.APIConnectionError(request=request))
    service = InferenceService(make_settings(), openai_client=fake_openai(completions))

    result = await service.infer("hello there")

    assert result.degraded
    assert "hello there" in result.response


@pytest.mark.anyio
async def test_missing_remote_key_is_degraded() -> None:
    service = InferenceService(make_settings(openai_api_key=None))

    assert not service.remote_available
    result = await service.infer("anyone home?")

    assert result.degraded
    assert "anyone home?" in result.response


@pytest.mark.anyio
async def test_cancel_event_aborts_inference() -> None:
    completions = FakeCompletions(delay=5.0)
    service = InferenceService(make_settings(), openai_client=fake_openai(completions))
    cancel_event = asyncio.Event()

    async def _cancel_soon() -> None:
        await asyncio.sleep(0.02)
        cancel_event.set()

    canceller = asyncio.create_task(_cancel_soon())
    result = await asyncio.wait_for(
        service.infer("long question", cancel_event=cancel_event), timeout=1.0
    )
    await canceller

    assert result.cancelled
    assert result.response == ""
    assert not result.degraded


@pytest.mark.anyio
async def test_empty_model_content_uses_canned_text() -> None:
    service = InferenceService(
        make_settings(), openai_client=fake_openai(FakeCompletions(content=None))
    )

    result = await service.infer("hmm")

    assert result.response == EMPTY_RESPONSE_TEXT


@pytest.mark.anyio
async def test_local_model_uses_chat_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "local answer"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        service = InferenceService(
            make_settings(local_model_url="http://ollama.local:11434", local_model_name="llama3"),
            http_client=http_client,
        )
        result = await service.infer("hi", use_local_model=True)

    assert result.response == "local answer"
    assert str(seen[0].url) == "http://ollama.local:11434/api/chat"
    body = json.loads(seen[0].content)
    assert body["model"] == "llama3"
    assert body["stream"] is False
    assert body["messages"][-1] == {"role": "user", "content": "hi"}


@pytest.mark.anyio
async def test_local_model_http_error_is_degraded() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="model loading")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        service = InferenceService(
            make_settings(local_model_url="http://ollama.local:11434"),
            http_client=http_client,
        )
        result = await service.infer("hi", use_local_model=True)

    assert result.degraded
    assert '"hi"' in result.response


@pytest.mark.anyio
async def test_local_model_without_endpoint_is_degraded() -> None:
    service = InferenceService(make_settings())

    assert not service.local_available
    result = await service.infer("hi", use_local_model=True)

    assert result.degraded


@pytest.mark.anyio
async def test_remote_failure_is_attempted_once() -> None:
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(request.url.path)
        return httpx.Response(
            500, json={"error": {"message": "upstream down", "type": "server_error"}}
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        service = InferenceService(make_settings(), http_client=http_client)
        result = await service.infer("hi")

    assert result.degraded
    assert len(hits) == 1
    assert hits[0].endswith("/chat/completions")
