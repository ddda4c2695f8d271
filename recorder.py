"""Microphone source backed by sounddevice."""

from __future__ import annotations

import asyncio
import io
import logging
import threading
import wave
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from typing import Any, Callable, Optional, Sequence

import numpy as np

from errors import DEVICE_UNAVAILABLE, HARDWARE_ERROR, PERMISSION_DENIED, UNSUPPORTED, CaptureError
from levels import pcm16_to_float

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

WAV = "audio/wav"
PCM = "audio/pcm"


def pcm_to_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw PCM bytes in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def _to_capture_error(exc: Exception) -> CaptureError:
    message = str(exc)
    low = message.lower()
    if "permission" in low or "denied" in low or "not authorized" in low:
        return CaptureError(message, code=PERMISSION_DENIED)
    return CaptureError(message, code=DEVICE_UNAVAILABLE)


class SoundDeviceSource:
    default_mime_type = WAV
    supported_mime_types = (WAV, PCM)

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        analysis_samples: int = 2048,
        device: Optional[Any] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._finishing = False
        self._lock = threading.Lock()
        # Stream open/stop/close block on PortAudio; one worker keeps them ordered.
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audio-stream")
        self._window = np.zeros(analysis_samples, dtype=np.float32)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_chunk: Optional[Callable[[bytes], None]] = None
        self._on_stopped: Optional[Callable[[], None]] = None
        self._on_error: Optional[Callable[[Exception], None]] = None

    def is_supported(self) -> bool:
        return sd is not None

    def supports_mime_type(self, mime_type: str) -> bool:
        return mime_type in self.supported_mime_types

    async def open(
        self,
        mime_type: str,
        on_chunk: Callable[[bytes], None],
        on_stopped: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        if sd is None:
            raise CaptureError("sounddevice is not installed", code=UNSUPPORTED)
        self._loop = asyncio.get_running_loop()
        self._on_chunk = on_chunk
        self._on_stopped = on_stopped
        self._on_error = on_error
        with self._lock:
            self._window[:] = 0.0
            self._finishing = False
        try:
            await self._loop.run_in_executor(self._executor, self._open_stream)
        except CaptureError:
            raise
        except Exception as exc:
            raise _to_capture_error(exc) from exc

    def request_stop(self) -> None:
        with self._lock:
            stream = self._stream
            self._finishing = True
        self._run_blocking(self._stop_stream, stream)

    def waveform(self) -> Sequence[float]:
        with self._lock:
            return self._window.copy()

    def encode(self, chunks: Sequence[bytes], mime_type: str) -> bytes:
        pcm = b"".join(chunks)
        if mime_type == PCM:
            return pcm
        return pcm_to_wav(pcm, self.sample_rate, self.channels)

    def release(self) -> None:
        with self._lock:
            stream = self._stream
            self._stream = None
            self._running = False
            self._finishing = True
        if stream is not None:
            self._run_blocking(self._close_stream, stream)

    def _run_blocking(self, func: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.run_in_executor(self._executor, func, *args)
        else:
            func(*args)

    # ------------------------------------------------------------------
    # Internal (PortAudio thread)
    # ------------------------------------------------------------------

    def _open_stream(self) -> None:
        blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
        stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            blocksize=blocksize,
            device=self.device,
            callback=self._on_audio,
            finished_callback=self._on_finished,
        )
        with self._lock:
            self._stream = stream
            self._running = True
        try:
            stream.start()
        except Exception:
            with self._lock:
                self._stream = None
                self._running = False
                self._finishing = True
            self._close_stream(stream)
            raise

    def _stop_stream(self, stream: Any) -> None:
        if stream is not None:
            try:
                # Returns once the audio callback has delivered its last block.
                stream.stop()
            except Exception as exc:
                logger.warning("failed to stop audio stream: %s", exc)
                if self._on_error is not None:
                    self._post(self._on_error, _to_capture_error(exc))
                return
        with self._lock:
            self._running = False
        if self._on_stopped is not None:
            self._post(self._on_stopped)

    def _close_stream(self, stream: Any) -> None:
        try:
            stream.close()
        except Exception:
            logger.exception("failed to close audio stream")
            return
        logger.info("microphone released")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._on_chunk is None:
            return
        if status:
            logger.debug("audio callback status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        samples = pcm16_to_float(payload)[:: self.channels]
        with self._lock:
            self._push_window(samples)
        self._post(self._on_chunk, payload)

    def _on_finished(self) -> None:
        with self._lock:
            expected = self._finishing
        if expected or self._on_error is None:
            return
        self._post(self._on_error, CaptureError("audio stream ended unexpectedly", code=HARDWARE_ERROR))

    def _push_window(self, samples: np.ndarray) -> None:
        size = self._window.size
        if samples.size == 0:
            return
        if samples.size >= size:
            self._window[:] = samples[-size:]
            return
        self._window = np.roll(self._window, -samples.size)
        self._window[-samples.size:] = samples

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            return
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(callback, *args)
