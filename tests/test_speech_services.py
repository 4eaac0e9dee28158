"""Tests for the transcription and speech synthesis adapters."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from pydantic import SecretStr

from voice_assistant.config import Settings
from voice_assistant.errors import ServiceError, ValidationError
from voice_assistant.services.audio_cache import AudioCache
from voice_assistant.services.stt_service import TranscriptionService
from voice_assistant.services.tts_service import SpeechSynthesisService


def _api_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))


class FakeTranscriptions:
    def __init__(self, text: str = " hello world ", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeSpeech:
    def __init__(self, content: bytes = b"mp3", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


class FakeGTTS:
    instances: list["FakeGTTS"] = []

    def __init__(self, text: str, lang: str = "en") -> None:
        self.text = text
        self.lang = lang
        FakeGTTS.instances.append(self)

    def write_to_fp(self, fp) -> None:
        fp.write(b"ID3-gtts-" + self.text.encode())


class BrokenGTTS:
    def __init__(self, text: str, lang: str = "en") -> None:
        raise RuntimeError("translate endpoint unreachable")


# -- transcription --------------------------------------------------------


@pytest.mark.anyio
async def test_transcribe_returns_stripped_text() -> None:
    transcriptions = FakeTranscriptions()
    client = SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))
    service = TranscriptionService(Settings(), openai_client=client)

    text = await service.transcribe(b"RIFFdata", filename="clip.wav", content_type="audio/wav")

    assert text == "hello world"
    assert transcriptions.calls[0]["model"] == "whisper-1"
    assert transcriptions.calls[0]["file"] == ("clip.wav", b"RIFFdata", "audio/wav")


@pytest.mark.anyio
async def test_transcribe_rejects_empty_audio() -> None:
    service = TranscriptionService(Settings(stt_api_key=SecretStr("k")))
    with pytest.raises(ValidationError):
        await service.transcribe(b"")


@pytest.mark.anyio
async def test_transcribe_rejects_oversized_audio() -> None:
    service = TranscriptionService(Settings(stt_api_key=SecretStr("k"), max_upload_bytes=4))
    with pytest.raises(ValidationError):
        await service.transcribe(b"12345")


@pytest.mark.anyio
async def test_transcribe_without_key_is_service_error() -> None:
    service = TranscriptionService(Settings())
    assert not service.available
    with pytest.raises(ServiceError):
        await service.transcribe(b"audio")


@pytest.mark.anyio
async def test_transcribe_upstream_failure_is_service_error() -> None:
    client = SimpleNamespace(
        audio=SimpleNamespace(transcriptions=FakeTranscriptions(error=_api_error()))
    )
    service = TranscriptionService(Settings(), openai_client=client)
    with pytest.raises(ServiceError) as excinfo:
        await service.transcribe(b"audio")
    assert excinfo.value.status_code == 500


# -- synthesis ------------------------------------------------------------


@pytest.mark.anyio
async def test_browser_tts_requested_explicitly(tmp_path) -> None:
    service = SpeechSynthesisService(
        Settings(tts_api_key=SecretStr("k")), AudioCache(directory=tmp_path)
    )

    result = await service.synthesize("hello", use_browser_tts=True)

    assert result.use_browser_tts
    assert result.text == "hello"
    assert result.audio_url is None


@pytest.mark.anyio
async def test_missing_credentials_force_browser_tts(tmp_path) -> None:
    service = SpeechSynthesisService(Settings(), AudioCache(directory=tmp_path))

    result = await service.synthesize("hello")

    assert result.use_browser_tts
    assert result.text == "hello"


@pytest.mark.anyio
async def test_openai_voice_returns_data_url(tmp_path) -> None:
    speech = FakeSpeech(content=b"abc")
    client = SimpleNamespace(audio=SimpleNamespace(speech=speech))
    service = SpeechSynthesisService(Settings(), AudioCache(directory=tmp_path), openai_client=client)

    result = await service.synthesize("4")

    assert result.audio_url == "data:audio/mpeg;base64," + base64.b64encode(b"abc").decode()
    assert not result.use_browser_tts
    assert speech.calls[0] == {"model": "tts-1", "voice": "alloy", "input": "4"}


@pytest.mark.anyio
async def test_openai_voice_failure_falls_back_to_browser(tmp_path) -> None:
    client = SimpleNamespace(audio=SimpleNamespace(speech=FakeSpeech(error=_api_error())))
    service = SpeechSynthesisService(Settings(), AudioCache(directory=tmp_path), openai_client=client)

    result = await service.synthesize("the full response text")

    assert result.use_browser_tts
    assert result.text == "the full response text"


@pytest.mark.anyio
async def test_gtts_voice_is_cached_and_referenced(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr("voice_assistant.services.tts_service.gTTS", FakeGTTS)
    cache = AudioCache(ttl_seconds=60, directory=tmp_path)
    service = SpeechSynthesisService(Settings(gtts_language="en"), cache)

    result = await service.synthesize("hi", use_gtts=True)

    assert result.use_gtts
    assert result.text == "hi"
    assert result.audio_url is not None and result.audio_url.startswith("/audio/")
    identifier = result.audio_url.rsplit("/", 1)[-1]
    assert cache.get(identifier) == b"ID3-gtts-hi"
    assert [p.suffix for p in tmp_path.iterdir()] == [".mp3"]
    cache.close()


@pytest.mark.anyio
async def test_gtts_failure_falls_back_to_browser(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr("voice_assistant.services.tts_service.gTTS", BrokenGTTS)
    cache = AudioCache(directory=tmp_path)
    service = SpeechSynthesisService(Settings(), cache)

    result = await service.synthesize("hi", use_gtts=True)

    assert result.use_browser_tts
    assert result.text == "hi"
    assert len(cache) == 0


# -- client construction --------------------------------------------------


@pytest.mark.anyio
async def test_transcription_client_never_retries(monkeypatch) -> None:
    built: list[dict[str, Any]] = []

    def fake_async_openai(**kwargs: Any) -> SimpleNamespace:
        built.append(kwargs)
        return SimpleNamespace(audio=SimpleNamespace(transcriptions=FakeTranscriptions()))

    monkeypatch.setattr(openai, "AsyncOpenAI", fake_async_openai)
    service = TranscriptionService(Settings(stt_api_key=SecretStr("k")))

    assert await service.transcribe(b"audio") == "hello world"
    assert built == [{"api_key": "k", "max_retries": 0}]


@pytest.mark.anyio
async def test_speech_client_never_retries(monkeypatch, tmp_path) -> None:
    built: list[dict[str, Any]] = []

    def fake_async_openai(**kwargs: Any) -> SimpleNamespace:
        built.append(kwargs)
        return SimpleNamespace(audio=SimpleNamespace(speech=FakeSpeech()))

    monkeypatch.setattr(openai, "AsyncOpenAI", fake_async_openai)
    service = SpeechSynthesisService(
        Settings(tts_api_key=SecretStr("k")), AudioCache(directory=tmp_path)
    )

    result = await service.synthesize("hi")

    assert result.audio_url is not None and result.audio_url.startswith("data:audio/mpeg")
    assert built == [{"api_key": "k", "max_retries": 0}]
