from __future__ import annotations

import asyncio
import shutil

import pytest

from voice_assistant.client.audio import FfplayAudioOutput


class SlowAudioSource:
    def __init__(self, delay: float = 0.05) -> None:
        self.delay = delay
        self.fetched: list[str] = []

    async def fetch_audio(self, url: str) -> bytes:
        self.fetched.append(url)
        await asyncio.sleep(self.delay)
        return b"ID3-audio"


class FakeProcess:
    def __init__(self) -> None:
        self.returncode = None
        self.killed = False

    async def wait(self) -> int:
        self.returncode = -9 if self.killed else 0
        return self.returncode

    def kill(self) -> None:
        self.killed = True


@pytest.fixture
def spawned(monkeypatch) -> list[tuple]:
    calls: list[tuple] = []

    async def fake_exec(*args, **kwargs) -> FakeProcess:
        calls.append(args)
        return FakeProcess()

    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return calls


@pytest.mark.anyio
async def test_play_runs_ffplay_on_fetched_audio(spawned: list[tuple]) -> None:
    source = SlowAudioSource(delay=0)
    output = FfplayAudioOutput(source)

    await output.play("/audio/abc123")

    assert source.fetched == ["/audio/abc123"]
    assert len(spawned) == 1
    args = spawned[0]
    assert args[0] == "/usr/bin/ffplay"
    assert "-nodisp" in args and "-autoexit" in args
    assert args[-1].endswith(".mp3")


@pytest.mark.anyio
async def test_stop_during_download_skips_playback(spawned: list[tuple]) -> None:
    output = FfplayAudioOutput(SlowAudioSource())

    playing = asyncio.create_task(output.play("/audio/abc123"))
    await asyncio.sleep(0.01)
    output.stop()
    await asyncio.wait_for(playing, timeout=1.0)

    assert spawned == []


@pytest.mark.anyio
async def test_stop_then_new_play_still_plays(spawned: list[tuple]) -> None:
    output = FfplayAudioOutput(SlowAudioSource(delay=0))

    output.stop()
    await output.play("/audio/next")

    assert len(spawned) == 1
