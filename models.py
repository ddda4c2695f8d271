"""Core data models for the input controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from errors import ConfigurationError


class InputStatus(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate-limited"


class CaptureStatus(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"


class CaptureOutcome(str, Enum):
    FINALIZED = "finalized"
    DISCARDED = "discarded"
    ERROR = "error"


@dataclass(frozen=True)
class RateLimitConfig:
    cooldown_ms: int = 1000
    max_requests: int = 10
    window_ms: int = 60000

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ConfigurationError(f"max_requests must be positive, got {self.max_requests}")
        if self.cooldown_ms < 0 or self.window_ms < 0:
            raise ConfigurationError("cooldown_ms and window_ms must not be negative")


@dataclass(frozen=True)
class AudioConfig:
    max_duration_ms: int = 60000
    mime_types: tuple[str, ...] = ("audio/wav", "audio/pcm")
    tick_interval_ms: int = 100
    level_bars: int = 12
    level_gain: float = 2.0

    def __post_init__(self) -> None:
        if self.max_duration_ms <= 0:
            raise ConfigurationError(f"max_duration_ms must be positive, got {self.max_duration_ms}")
        if self.tick_interval_ms <= 0:
            raise ConfigurationError("tick_interval_ms must be positive")
        if self.level_bars <= 0:
            raise ConfigurationError("level_bars must be positive")
        # Accept any iterable (e.g. a JSON list) but store a tuple.
        object.__setattr__(self, "mime_types", tuple(self.mime_types))


@dataclass(frozen=True)
class AudioPayload:
    data: bytes
    mime_type: str
    duration_ms: int = 0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class InputSnapshot:
    """Everything a presentation layer needs to render the input."""

    status: InputStatus
    text: str = ""
    result: Any = None
    error: BaseException | None = None
    can_submit: bool = False
    is_recording: bool = False
    pending_commit: bool = False
    recording_duration_ms: int = 0
    max_recording_duration_ms: int = 0
    audio_levels: tuple[float, ...] = field(default_factory=tuple)
    cooldown_remaining_ms: int = 0
    requests_remaining: int = 0


def format_duration(ms: int) -> str:
    """Format milliseconds as M:SS for timers and cooldown countdowns."""
    seconds = max(0, int(ms)) // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"
