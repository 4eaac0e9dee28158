"""
Voice assistant client package.

- api: single-attempt HTTP client for /transcribe, /infer, /synthesize
- cancellation: per-turn cancellation token
- audio: microphone, playback and on-device speech collaborators
- controller: the turn-taking state machine

    start_listening ──▶ LISTENING ──(final / silence / max / stop)──▶ FINALIZING
                                                                        │
          IDLE ◀── SPEAKING ◀── SYNTHESIZING ◀── INFERRING ◀────────────┘
"""

from .api import InferOutcome, SpeechOutcome, VoiceApiClient
from .cancellation import CancellationToken
from .controller import (
    ControllerTimings,
    ControllerView,
    TurnController,
    TurnOutcome,
    TurnState,
)

__all__ = [
    "CancellationToken",
    "ControllerTimings",
    "ControllerView",
    "InferOutcome",
    "SpeechOutcome",
    "TurnController",
    "TurnOutcome",
    "TurnState",
    "VoiceApiClient",
]
