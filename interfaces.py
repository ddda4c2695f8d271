"""Protocol interfaces used by SubmissionController."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence, Union

from models import AudioConfig, AudioPayload, RateLimitConfig

SendInput = Union[str, AudioPayload]


class Transport(Protocol):
    def __call__(self, value: SendInput) -> Awaitable[Any]: ...


class AudioSource(Protocol):
    """Platform microphone backend driven by AudioCaptureEngine.

    Callbacks passed to ``open`` must be invoked on the event loop thread.
    ``on_stopped`` fires once after ``request_stop`` when every buffered
    chunk has been delivered.
    """

    default_mime_type: str

    def is_supported(self) -> bool: ...

    def supports_mime_type(self, mime_type: str) -> bool: ...

    async def open(
        self,
        mime_type: str,
        on_chunk: Callable[[bytes], None],
        on_stopped: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...

    def request_stop(self) -> None: ...

    def waveform(self) -> Sequence[float]: ...

    def encode(self, chunks: Sequence[bytes], mime_type: str) -> bytes: ...

    def release(self) -> None: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_rate_limit(self) -> RateLimitConfig: ...

    def get_audio_config(self) -> AudioConfig: ...
