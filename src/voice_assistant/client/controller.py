"""Single-session turn-taking controller.

State machine:
    IDLE -> LISTENING -> FINALIZING -> INFERRING -> SYNTHESIZING -> SPEAKING -> IDLE

A listening session is finalized by whichever trigger fires first: a
recognizer-reported final segment (after a short settle delay), silence past
the threshold with a non-empty transcript, the hard listening bound, or the
user pressing stop. Every callback checks the liveness flag before touching
state, so nothing is published after :meth:`TurnController.teardown`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Optional, Protocol

from ..errors import CancellationError
from .api import InferOutcome, SpeechOutcome
from .audio import AudioOutput, Microphone, NullMicrophone, SpeechSynthesizer
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

STOPPED_BY_USER = "Stopped by user"
INFERENCE_FAILED = "Error processing your request. Please try again."
TRANSCRIPTION_FAILED = "Error processing your audio. Please try again."


class TurnState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING = "finalizing"
    INFERRING = "inferring"
    SYNTHESIZING = "synthesizing"
    SPEAKING = "speaking"
    CANCELLED = "cancelled"


class TurnOutcome(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ControllerTimings:
    settle_delay: float = 0.3
    silence_threshold: float = 1.5
    max_listening: float = 15.0
    poll_interval: float = 0.1
    status_clear_delay: float = 3.0
    speaking_timeout: float = 15.0


@dataclass
class ListeningSession:
    started_at: float
    last_activity: float
    transcript: str = ""
    finalized: bool = False
    silent_polls: int = 0

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def idle_for(self, now: float) -> float:
        return now - self.last_activity


@dataclass
class Turn:
    transcript: str
    token: CancellationToken = field(default_factory=CancellationToken)
    response: Optional[str] = None
    audio_url: Optional[str] = None
    outcome: TurnOutcome = TurnOutcome.PENDING


@dataclass(frozen=True)
class ControllerView:
    state: TurnState
    transcript: str = ""
    response: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None


class VoiceBackend(Protocol):
    async def transcribe(self, audio: bytes, **kwargs: Any) -> str: ...

    async def infer(
        self,
        text: str,
        *,
        use_local_model: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> InferOutcome: ...

    async def synthesize(
        self,
        text: str,
        *,
        use_browser_tts: bool = False,
        use_gtts: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> SpeechOutcome: ...


class TurnController:
    """Coordinate capture, finalization, inference, synthesis and playback."""

    def __init__(
        self,
        backend: VoiceBackend,
        *,
        player: AudioOutput,
        synthesizer: SpeechSynthesizer,
        microphone: Optional[Microphone] = None,
        on_change: Optional[Callable[[ControllerView], None]] = None,
        timings: Optional[ControllerTimings] = None,
        use_local_model: bool = False,
        use_browser_tts: bool = False,
        use_gtts: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._player = player
        self._synthesizer = synthesizer
        self._microphone: Microphone = microphone or NullMicrophone()
        self._on_change = on_change
        self._timings = timings or ControllerTimings()
        self._use_local_model = use_local_model
        self._use_browser_tts = use_browser_tts
        self._use_gtts = use_gtts
        self._clock = clock

        self._alive = True
        self._state = TurnState.IDLE
        self._session: Optional[ListeningSession] = None
        self._turn: Optional[Turn] = None

        self._transcript = ""
        self._response: Optional[str] = None
        self._audio_url: Optional[str] = None
        self._error: Optional[str] = None
        self._status: Optional[str] = None

        self._tasks: set[asyncio.Task] = set()
        self._watchdog: Optional[asyncio.Task] = None
        self._settle: Optional[asyncio.Task] = None
        self._status_timer: Optional[asyncio.TimerHandle] = None

    # -- inspection -------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def session(self) -> Optional[ListeningSession]:
        return self._session

    @property
    def turn(self) -> Optional[Turn]:
        return self._turn

    @property
    def view(self) -> ControllerView:
        return ControllerView(
            state=self._state,
            transcript=self._transcript,
            response=self._response,
            audio_url=self._audio_url,
            error=self._error,
            status=self._status,
        )

    # -- internals --------------------------------------------------------

    def _notify(self) -> None:
        if not self._alive or self._on_change is None:
            return
        self._on_change(self.view)

    def _set_state(self, new_state: TurnState) -> None:
        if not self._alive:
            return
        old = self._state
        self._state = new_state
        if old is not new_state:
            logger.debug("Turn state %s -> %s", old.value, new_state.value)
        self._notify()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_listening_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._watchdog, self._settle):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._watchdog = None
        self._settle = None

    # -- listening --------------------------------------------------------

    async def start_listening(self) -> bool:
        """Begin a listening session; a no-op unless the controller is idle."""

        if not self._alive or self._state is not TurnState.IDLE:
            logger.debug("Ignoring start while %s", self._state.value)
            return False

        now = self._clock()
        session = ListeningSession(started_at=now, last_activity=now)
        self._session = session
        self._transcript = ""
        self._response = None
        self._audio_url = None
        self._error = None
        self._status = None
        self._set_state(TurnState.LISTENING)

        try:
            await self._microphone.start()
        except Exception as exc:
            logger.error("Could not start listening: %s", exc)
            if not self._alive:
                return False
            self._session = None
            self._error = str(exc) or "Could not start listening"
            self._set_state(TurnState.IDLE)
            return False

        if not self._alive or self._session is not session:
            # Torn down or stopped while the device was opening.
            self._microphone.release()
            return False
        self._watchdog = self._spawn(self._watch_silence(session))
        return True

    def _accept_speech(self, text: str) -> Optional[ListeningSession]:
        session = self._session
        if (
            not self._alive
            or self._state is not TurnState.LISTENING
            or session is None
            or session.finalized
        ):
            return None
        session.transcript = text
        session.last_activity = self._clock()
        session.silent_polls = 0
        self._transcript = text
        return session

    def on_partial(self, text: str) -> None:
        """Recognizer interim result; replaces the running transcript."""

        if self._accept_speech(text) is not None:
            self._notify()

    def on_final(self, text: str) -> None:
        """Recognizer final segment; finalize after the settle delay."""

        session = self._accept_speech(text)
        if session is None:
            return
        self._notify()
        if self._settle is not None and not self._settle.done():
            self._settle.cancel()
        self._settle = self._spawn(self._settle_then_finalize(session))

    def on_recognition_error(self, message: str) -> None:
        if not self._alive or self._state is not TurnState.LISTENING:
            return
        logger.error("Speech recognition error: %s", message)
        if self._session is not None:
            self._session.finalized = True
        self._session = None
        self._cancel_listening_tasks()
        self._microphone.release()
        self._error = f"Speech recognition error: {message}"
        self._set_state(TurnState.IDLE)

    async def stop_listening(self) -> bool:
        """User stop: finalize the current session immediately."""

        session = self._session
        if not self._alive or self._state is not TurnState.LISTENING or session is None:
            return False
        await self._finalize(session, "user stop")
        return True

    async def _settle_then_finalize(self, session: ListeningSession) -> None:
        await asyncio.sleep(self._timings.settle_delay)
        await self._finalize(session, "final segment")

    async def _watch_silence(self, session: ListeningSession) -> None:
        timings = self._timings
        while self._alive and self._session is session and not session.finalized:
            await asyncio.sleep(timings.poll_interval)
            if self._session is not session or session.finalized:
                return
            now = self._clock()
            if session.elapsed(now) >= timings.max_listening:
                await self._finalize(session, "max listening duration")
                return
            session.silent_polls += 1
            if (
                session.idle_for(now) >= timings.silence_threshold
                and session.transcript.strip()
            ):
                await self._finalize(session, "silence")
                return

    async def _finalize(self, session: ListeningSession, reason: str) -> None:
        if not self._alive or session.finalized or session is not self._session:
            return
        session.finalized = True
        self._cancel_listening_tasks()
        logger.info("Finalizing transcript (%s)", reason)
        self._set_state(TurnState.FINALIZING)

        try:
            audio = await self._microphone.stop()
        except Exception as exc:
            logger.warning("Microphone did not stop cleanly: %s", exc)
            audio = None
        if not self._alive:
            return

        text = session.transcript
        if not text.strip() and audio:
            try:
                text = await self._backend.transcribe(audio)
            except Exception as exc:
                logger.error("Transcription failed: %s", exc)
                if not self._alive:
                    return
                self._session = None
                self._error = TRANSCRIPTION_FAILED
                self._set_state(TurnState.IDLE)
                return
            if not self._alive:
                return
            self._transcript = text

        self._session = None
        text = text.strip()
        if not text:
            logger.info("Empty transcript; nothing to send")
            self._set_state(TurnState.IDLE)
            return
        self._begin_turn(text)

    # -- turn -------------------------------------------------------------

    def _begin_turn(self, text: str) -> None:
        # Only reachable from FINALIZING, which only follows IDLE, so no
        # other turn can be active here.
        turn = Turn(transcript=text)
        self._turn = turn
        self._spawn(self._run_turn(turn))

    async def _run_turn(self, turn: Turn) -> None:
        self._set_state(TurnState.INFERRING)
        try:
            outcome = await turn.token.guard(
                self._backend.infer(
                    turn.transcript,
                    use_local_model=self._use_local_model,
                    token=turn.token,
                )
            )
        except CancellationError:
            self._cancelled(turn)
            return
        except Exception as exc:
            logger.error("Inference failed: %s", exc)
            self._failed(turn, INFERENCE_FAILED)
            return

        if not self._alive:
            return
        if outcome.cancelled or turn.token.cancelled:
            self._cancelled(turn)
            return

        turn.response = outcome.response
        self._response = outcome.response
        self._set_state(TurnState.SYNTHESIZING)

        speech: Optional[SpeechOutcome]
        try:
            speech = await turn.token.guard(
                self._backend.synthesize(
                    outcome.response,
                    use_browser_tts=self._use_browser_tts,
                    use_gtts=self._use_gtts,
                    token=turn.token,
                )
            )
        except CancellationError:
            self._cancelled(turn)
            return
        except Exception as exc:
            logger.warning("Speech synthesis failed, using on-device voice: %s", exc)
            speech = None

        if not self._alive:
            return
        if turn.token.cancelled:
            self._cancelled(turn)
            return

        turn.audio_url = speech.audio_url if speech is not None and speech.playable else None
        self._audio_url = turn.audio_url
        self._set_state(TurnState.SPEAKING)

        try:
            await asyncio.wait_for(self._speak(turn), timeout=self._timings.speaking_timeout)
        except asyncio.TimeoutError:
            logger.warning("No playback completion after %.0fs; releasing", self._timings.speaking_timeout)
            self._player.stop()
            self._synthesizer.cancel()

        if not self._alive:
            return
        turn.outcome = TurnOutcome.COMPLETED
        self._turn = None
        self._set_state(TurnState.IDLE)

    async def _speak(self, turn: Turn) -> None:
        if turn.audio_url:
            try:
                await self._player.play(turn.audio_url)
                return
            except Exception as exc:
                logger.warning("Audio playback failed, using on-device voice: %s", exc)
            if not self._alive:
                return
        try:
            await self._synthesizer.speak(turn.response or "")
        except Exception as exc:
            logger.error("On-device speech failed: %s", exc)

    def _cancelled(self, turn: Turn) -> None:
        turn.outcome = TurnOutcome.CANCELLED
        if self._turn is turn:
            self._turn = None
        if not self._alive:
            return
        logger.info("Turn cancelled by user")
        self._response = None
        self._status = STOPPED_BY_USER
        self._set_state(TurnState.CANCELLED)
        loop = asyncio.get_running_loop()
        if self._status_timer is not None:
            self._status_timer.cancel()
        self._status_timer = loop.call_later(
            self._timings.status_clear_delay, self._clear_status
        )

    def _clear_status(self) -> None:
        self._status_timer = None
        if not self._alive:
            return
        self._status = None
        if self._state is TurnState.CANCELLED:
            self._set_state(TurnState.IDLE)
        else:
            self._notify()

    def _failed(self, turn: Turn, message: str) -> None:
        turn.outcome = TurnOutcome.FAILED
        if self._turn is turn:
            self._turn = None
        if not self._alive:
            return
        self._error = message
        self._set_state(TurnState.IDLE)

    # -- user actions -----------------------------------------------------

    def cancel(self) -> bool:
        """Abort the in-flight turn, or silence playback while speaking."""

        if not self._alive:
            return False
        turn = self._turn
        if self._state in (TurnState.INFERRING, TurnState.SYNTHESIZING) and turn is not None:
            turn.token.cancel()
            return True
        if self._state is TurnState.SPEAKING:
            self._player.stop()
            self._synthesizer.cancel()
            return True
        return False

    async def toggle(self) -> bool:
        """Start when idle, stop when listening; otherwise do nothing."""

        if self._state is TurnState.IDLE:
            return await self.start_listening()
        if self._state is TurnState.LISTENING:
            return await self.stop_listening()
        return False

    def teardown(self) -> None:
        """Release every resource; no state is published afterwards."""

        if not self._alive:
            return
        self._alive = False
        logger.info("Tearing down turn controller (state=%s)", self._state.value)

        try:
            self._microphone.release()
        except Exception as exc:
            logger.warning("Failed to release microphone: %s", exc)

        if self._turn is not None:
            self._turn.token.cancel()
            self._turn.outcome = TurnOutcome.CANCELLED
        for task in list(self._tasks):
            task.cancel()
        if self._status_timer is not None:
            self._status_timer.cancel()
            self._status_timer = None

        try:
            self._synthesizer.cancel()
        except Exception as exc:
            logger.warning("Failed to stop on-device speech: %s", exc)
        try:
            self._player.stop()
        except Exception as exc:
            logger.warning("Failed to stop playback: %s", exc)

        self._session = None
        self._turn = None
        self._watchdog = None
        self._settle = None
        self._state = TurnState.IDLE


__all__ = [
    "ControllerTimings",
    "ControllerView",
    "ListeningSession",
    "STOPPED_BY_USER",
    "Turn",
    "TurnController",
    "TurnOutcome",
    "TurnState",
    "VoiceBackend",
]
