"""Ephemeral in-memory cache for server-rendered audio."""

from __future__ import annotations

import asyncio
import logging
import tempfile
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CachedAudio:
    buffer: bytes
    created_at: float
    filepath: Path | None = None


class AudioCache:
    """Map opaque identifiers to audio buffers for a fixed window.

    Every entry is deleted ``ttl`` seconds after creation whether or not it
    was ever read. The expiry timer is the only deleter; it also removes the
    backing temp file when one was written.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        directory: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._directory = Path(directory) if directory else Path(tempfile.gettempdir())
        self._clock = clock
        self._entries: dict[str, CachedAudio] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and self.get(identifier) is not None

    def write_temp_file(self, audio: bytes, *, suffix: str = ".mp3") -> Path:
        """Persist ``audio`` to a fresh file under the cache directory."""

        self._directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=self._directory, prefix="tts_", suffix=suffix, delete=False
        ) as handle:
            handle.write(audio)
        return Path(handle.name)

    def put(self, audio: bytes, *, filepath: Path | None = None) -> str:
        """Store ``audio`` and return its identifier.

        Must be called from inside a running event loop; the loop owns the
        expiry timer.
        """

        loop = asyncio.get_running_loop()
        identifier = uuid.uuid4().hex
        self._entries[identifier] = CachedAudio(
            buffer=audio, created_at=self._clock(), filepath=filepath
        )
        self._timers[identifier] = loop.call_later(self._ttl, self._expire, identifier)
        logger.debug(
            "Cached %d bytes of audio as %s (ttl=%.0fs)", len(audio), identifier, self._ttl
        )
        return identifier

    def get(self, identifier: str) -> bytes | None:
        """Return the buffer for ``identifier`` or ``None`` when absent."""

        entry = self._entries.get(identifier)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self._ttl:
            return None
        return entry.buffer

    def _expire(self, identifier: str) -> None:
        self._timers.pop(identifier, None)
        entry = self._entries.pop(identifier, None)
        if entry is None:
            return
        if entry.filepath is not None:
            try:
                entry.filepath.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to delete cached audio file %s: %s", entry.filepath, exc)
        logger.debug("Expired cached audio %s", identifier)

    def close(self) -> None:
        """Cancel pending timers and drop every entry with its backing file."""

        for handle in self._timers.values():
            handle.cancel()
        for identifier in list(self._entries):
            self._expire(identifier)
        self._timers.clear()


__all__ = ["AudioCache", "CachedAudio", "DEFAULT_TTL_SECONDS"]
