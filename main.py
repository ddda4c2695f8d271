"""Console entrypoint: type to send text, /rec and /stop to send speech."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from config import JsonConfigStore
from dashscope_transport import DashscopeTransport
from interfaces import ConfigStore
from models import InputStatus, format_duration
from recorder import SoundDeviceSource
from session_controller import SubmissionController

HELP = "commands: /rec /stop /cancel /reset /key <api key> /status /quit, anything else is sent"


class ConsoleApp:
    def __init__(self, config_store: ConfigStore) -> None:
        self.config_store = config_store
        transport = DashscopeTransport(api_key=config_store.get_api_key())
        self.controller = SubmissionController(
            send=transport,
            audio_source=SoundDeviceSource(),
            rate_limit=config_store.get_rate_limit(),
            audio_config=config_store.get_audio_config(),
            on_success=self._on_success,
            on_error=self._on_error,
            on_transcription=self._on_transcription,
            on_state_change=self._on_state_change,
            on_levels=self._on_levels,
        )
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Controller callbacks
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: InputStatus, to_state: InputStatus) -> None:
        if to_state == InputStatus.RATE_LIMITED:
            wait = self.controller.rate_limiter.retry_after()
            print(f"[rate-limited] wait {format_duration(wait)}")
        elif to_state == InputStatus.RECORDING:
            print("[recording] /stop to send, /cancel to discard")
        elif to_state == InputStatus.LOADING:
            print("[loading]")

    def _on_success(self, result: Any) -> None:
        text = result.get("text") if isinstance(result, dict) else result
        print(f"< {text}")

    def _on_error(self, exc: BaseException) -> None:
        code = getattr(exc, "code", type(exc).__name__)
        print(f"[error] {code}: {exc}")

    def _on_transcription(self, text: str) -> None:
        print(f"[transcribed] {text}")

    def _on_levels(self, elapsed_ms: int, levels: tuple[float, ...]) -> None:
        bars = "".join(" ▁▂▃▄▅▆▇█"[min(8, int(level * 8))] for level in levels)
        limit = format_duration(self.controller.capture.max_duration_ms)
        sys.stdout.write(f"\r{bars} {format_duration(elapsed_ms)} / {limit}")
        sys.stdout.flush()

    # ------------------------------------------------------------------
    # Command loop
    # ------------------------------------------------------------------

    async def handle(self, line: str) -> bool:
        command, _, arg = line.strip().partition(" ")
        if command == "/quit":
            return False
        if command == "/rec":
            await self.controller.start_recording()
        elif command == "/stop":
            self.controller.stop_recording()
        elif command == "/cancel":
            self.controller.cancel_recording()
        elif command == "/reset":
            self.controller.reset()
        elif command == "/key":
            self.config_store.set_api_key(arg.strip())
            print("API key saved; restart to apply.")
        elif command == "/status":
            print(self.controller.snapshot())
        elif line.strip():
            self.controller.set_text(line.rstrip("\n"))
            task = asyncio.ensure_future(self.controller.submit())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return True

    async def run(self) -> int:
        print(HELP)
        try:
            while True:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break
                if not await self.handle(line):
                    break
        finally:
            self.controller.close()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = ConsoleApp(JsonConfigStore(path=args.config))
    try:
        return asyncio.run(app.run())
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
