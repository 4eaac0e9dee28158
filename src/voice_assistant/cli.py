#!/usr/bin/env python3
"""Voice Shell - terminal front end for the voice assistant backend.

Drives the turn controller from the keyboard: in ``type`` mode each line is
fed to the controller as recognized speech, in ``record`` mode Enter starts
and stops a microphone recording that is transcribed server-side.
"""

from __future__ import annotations

import argparse
import asyncio
import os
from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style

from .client.api import VoiceApiClient
from .client.audio import (
    FfplayAudioOutput,
    Microphone,
    NullMicrophone,
    PyAudioRecorder,
    Pyttsx3Synthesizer,
)
from .client.controller import ControllerView, TurnController, TurnState

# Styles
USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
STATUS_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class VoiceShell:
    """Keyboard-driven voice assistant session."""

    def __init__(
        self,
        server_url: str,
        *,
        mode: str = "type",
        use_local_model: bool = False,
        use_browser_tts: bool = False,
        use_gtts: bool = False,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.mode = mode
        self.console = Console()
        self.running = True
        self.api = VoiceApiClient(self.server_url)
        self._last_view: Optional[ControllerView] = None

        microphone: Microphone = PyAudioRecorder() if mode == "record" else NullMicrophone()
        self.controller = TurnController(
            self.api,
            player=FfplayAudioOutput(self.api),
            synthesizer=Pyttsx3Synthesizer(),
            microphone=microphone,
            on_change=self._render,
            use_local_model=use_local_model,
            use_browser_tts=use_browser_tts,
            use_gtts=use_gtts,
        )

    def _render(self, view: ControllerView) -> None:
        last = self._last_view
        self._last_view = view
        if last is None or last.state is not view.state:
            self.console.print(f"[dim]· {view.state.value}[/dim]")
        if view.response and (last is None or last.response != view.response):
            self.console.print("Assistant: ", style=ASSISTANT_STYLE, end="")
            self.console.print(view.response)
        if view.error and (last is None or last.error != view.error):
            self.console.print(view.error, style=ERROR_STYLE)
        if view.status and (last is None or last.status != view.status):
            self.console.print(view.status, style=STATUS_STYLE)

    async def _check_health(self) -> bool:
        """Check if backend is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    data = resp.json()
                    backends = [
                        name
                        for name in ("remote_model", "local_model", "transcription", "cloud_tts")
                        if data.get(name)
                    ]
                    self.console.print(
                        f"[dim]Connected to backend. Available: {', '.join(backends) or 'none'}[/dim]"
                    )
                    return True
        except httpx.HTTPError as e:
            self.console.print(f"Cannot connect to backend: {e}", style=ERROR_STYLE)
        return False

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /stop              Stop the current request or playback
  /quit              Exit voice shell

[bold]Input:[/bold]
  type mode          Each line is sent as what you said
  record mode        Enter starts recording, Enter again stops it
"""
        self.console.print(
            Panel(help_text.strip(), title="Voice Shell Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        command = cmd.strip().split(maxsplit=1)[0].lower()

        if command == "/help":
            self._show_help()
            return True
        if command == "/stop":
            if not self.controller.cancel():
                self.console.print("[dim]Nothing to stop[/dim]")
            return True
        if command == "/quit":
            self.running = False
            return True
        return False

    async def _say(self, text: str) -> None:
        """Feed typed text through the controller as recognized speech."""
        if not await self.controller.start_listening():
            self.console.print(
                f"[dim]Busy ({self.controller.state.value}); try again shortly[/dim]"
            )
            return
        self.controller.on_partial(text)
        self.controller.on_final(text)

    async def _toggle_recording(self) -> None:
        state = self.controller.state
        if state is TurnState.IDLE:
            if await self.controller.start_listening():
                self.console.print("Recording... press Enter to stop", style=STATUS_STYLE)
        elif state is TurnState.LISTENING:
            await self.controller.stop_listening()
        else:
            self.console.print(f"[dim]Busy ({state.value})[/dim]")

    async def run(self) -> None:
        """Main input loop."""
        if not await self._check_health():
            await self.api.aclose()
            return

        self.console.print()
        self.console.print(
            f"[bold]Voice Shell[/bold] ({self.mode} mode) - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        try:
            while self.running:
                try:
                    user_input = await asyncio.to_thread(
                        Prompt.ask, "[bold blue]You[/bold blue]", default=""
                    )
                except EOFError:
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break

                if user_input.startswith("/"):
                    if await self._handle_command(user_input):
                        continue

                if self.mode == "record":
                    await self._toggle_recording()
                elif user_input.strip():
                    await self._say(user_input)
        finally:
            self.controller.teardown()
            await self.api.aclose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Voice Shell - terminal client for the voice assistant backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  voice-assistant                          Type questions, hear answers
  voice-assistant --mode record            Speak into the microphone
  voice-assistant --local-model --gtts     Local model, server-rendered voice

Environment Variables:
  VOICE_ASSISTANT_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("VOICE_ASSISTANT_SERVER", "http://localhost:8000"),
        help="Backend server URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--mode",
        choices=("type", "record"),
        default="type",
        help="Input mode (default: type)",
    )
    parser.add_argument(
        "--local-model",
        action="store_true",
        help="Answer with the locally hosted model",
    )
    voice = parser.add_mutually_exclusive_group()
    voice.add_argument(
        "--browser-tts",
        action="store_true",
        help="Always speak with the on-device voice",
    )
    voice.add_argument(
        "--gtts",
        action="store_true",
        help="Use the server-rendered gTTS voice",
    )

    args = parser.parse_args()

    shell = VoiceShell(
        server_url=args.server,
        mode=args.mode,
        use_local_model=args.local_model,
        use_browser_tts=args.browser_tts,
        use_gtts=args.gtts,
    )
    try:
        asyncio.run(shell.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
