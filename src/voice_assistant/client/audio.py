"""Audio capture and playback collaborators for the turn controller.

The controller only depends on the three protocols below. The concrete
classes wrap PyAudio (microphone), ffplay (playback) and pyttsx3 (on-device
speech). PyAudio and pyttsx3 are imported on first use.
"""

from __future__ import annotations

import asyncio
import io
import logging
import shutil
import tempfile
import threading
import wave
from pathlib import Path
from typing import Any, Optional, Protocol

from ..errors import ServiceError
from .api import VoiceApiClient

logger = logging.getLogger(__name__)

# Audio parameters
RATE = 16000        # 16kHz for speech
CHANNELS = 1        # Mono
CHUNK = 1024        # Frames per buffer
FORMAT_WIDTH = 2    # 16-bit (2 bytes)


class Microphone(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> Optional[bytes]:
        """Stop capturing; return recorded audio when the device records."""
        ...

    def release(self) -> None: ...


class AudioOutput(Protocol):
    async def play(self, url: str) -> None: ...

    def stop(self) -> None: ...


class SpeechSynthesizer(Protocol):
    async def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...


class NullMicrophone:
    """Microphone stand-in for recognizers that deliver text directly."""

    async def start(self) -> None:
        return None

    async def stop(self) -> Optional[bytes]:
        return None

    def release(self) -> None:
        return None


class PyAudioRecorder:
    """Record from the default input device until stopped; return WAV bytes."""

    def __init__(self, *, rate: int = RATE, device_index: Optional[int] = None):
        self._rate = rate
        self._device_index = device_index
        self._pa: Any = None
        self._stream: Any = None
        self._frames: list[bytes] = []
        self._recording = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _open(self) -> None:
        import pyaudio

        if self._pa is None:
            self._pa = pyaudio.PyAudio()
        self._stream = self._pa.open(
            format=pyaudio.paInt16,
            channels=CHANNELS,
            rate=self._rate,
            input=True,
            input_device_index=self._device_index,
            frames_per_buffer=CHUNK,
        )

    def _capture_loop(self) -> None:
        while self._recording.is_set():
            try:
                data = self._stream.read(CHUNK, exception_on_overflow=False)
            except OSError as exc:
                logger.error("Microphone read failed: %s", exc)
                self._recording.clear()
                return
            self._frames.append(data)

    async def start(self) -> None:
        if self._recording.is_set():
            return
        try:
            await asyncio.to_thread(self._open)
        except Exception as exc:
            raise ServiceError(
                "Could not start recording. Please check microphone permissions."
            ) from exc
        self._frames = []
        self._recording.set()
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()
        logger.debug("Recording started")

    async def stop(self) -> Optional[bytes]:
        if self._thread is None:
            return None
        self._recording.clear()
        await asyncio.to_thread(self._thread.join, 2.0)
        self._thread = None
        self._close_stream()

        if not self._frames:
            return None
        logger.debug("Recorded %d frames", len(self._frames))
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(CHANNELS)
            wf.setsampwidth(FORMAT_WIDTH)
            wf.setframerate(self._rate)
            wf.writeframes(b"".join(self._frames))
        self._frames = []
        return buf.getvalue()

    def _close_stream(self) -> None:
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as exc:
                logger.debug("Ignoring error closing input stream: %s", exc)
            self._stream = None

    def release(self) -> None:
        """Stop capturing immediately and free the device."""
        self._recording.clear()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        self._close_stream()
        self._frames = []
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None


class FfplayAudioOutput:
    """Play MP3 audio (data URL or server URL) through an ffplay subprocess."""

    def __init__(self, api: VoiceApiClient, *, binary: str = "ffplay") -> None:
        self._api = api
        self._binary = binary
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stopped = False

    async def play(self, url: str) -> None:
        executable = shutil.which(self._binary)
        if executable is None:
            raise ServiceError(f"{self._binary} is not installed")

        self._stopped = False
        audio = await self._api.fetch_audio(url)
        if self._stopped:
            logger.debug("Playback stopped before audio arrived")
            return

        with tempfile.NamedTemporaryFile(suffix=".mp3", delete=False) as handle:
            handle.write(audio)
        path = Path(handle.name)
        try:
            self._process = await asyncio.create_subprocess_exec(
                executable,
                "-nodisp",
                "-autoexit",
                "-loglevel",
                "error",
                str(path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            if self._stopped:
                self._process.kill()
            returncode = await self._process.wait()
            if returncode not in (0, -9, -15):
                raise ServiceError(f"Playback exited with status {returncode}")
        finally:
            self._process = None
            path.unlink(missing_ok=True)

    def stop(self) -> None:
        self._stopped = True
        process = self._process
        if process is not None and process.returncode is None:
            process.kill()


class Pyttsx3Synthesizer:
    """On-device speech through the operating system's voices."""

    def __init__(self, *, rate: Optional[int] = None) -> None:
        self._rate = rate
        self._engine: Any = None
        self._lock = threading.Lock()

    def _speak_blocking(self, text: str) -> None:
        import pyttsx3

        engine = pyttsx3.init()
        if self._rate:
            engine.setProperty("rate", self._rate)
        with self._lock:
            self._engine = engine
        try:
            engine.say(text)
            engine.runAndWait()
        finally:
            with self._lock:
                self._engine = None

    async def speak(self, text: str) -> None:
        await asyncio.to_thread(self._speak_blocking, text)

    def cancel(self) -> None:
        with self._lock:
            engine = self._engine
        if engine is not None:
            engine.stop()


__all__ = [
    "AudioOutput",
    "FfplayAudioOutput",
    "Microphone",
    "NullMicrophone",
    "PyAudioRecorder",
    "Pyttsx3Synthesizer",
    "SpeechSynthesizer",
]
