"""State-machine based submission orchestration.

One controller owns the editable text, the last result/error, a rate
limiter and a capture engine, and drives everything through a single
``InputStatus``. All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional

from capture import AudioCaptureEngine
from errors import CaptureError, TransportError
from interfaces import AudioSource, SendInput, Transport
from models import AudioConfig, AudioPayload, InputSnapshot, InputStatus, RateLimitConfig
from rate_limiter import Clock, RateLimiter, now_ms
from recorder import SoundDeviceSource

logger = logging.getLogger(__name__)

StateCallback = Callable[[InputStatus, InputStatus], None]
ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]
TranscriptionCallback = Callable[[str], None]
LevelsCallback = Callable[[int, tuple[float, ...]], None]

TRANSCRIPT_FIELDS = ("text", "transcript", "transcription", "content")

_BUSY_STATES = (InputStatus.LOADING, InputStatus.RECORDING)


def extract_transcript(result: Any) -> str | None:
    """Return the first non-empty transcript-like string field of ``result``."""
    if result is None or isinstance(result, (str, bytes)):
        return None
    for name in TRANSCRIPT_FIELDS:
        if isinstance(result, Mapping):
            value = result.get(name)
        else:
            value = getattr(result, name, None)
        if isinstance(value, str) and value.strip():
            return value
    return None


class SubmissionController:
    def __init__(
        self,
        send: Transport,
        send_audio: Optional[Transport] = None,
        audio_source: Optional[AudioSource] = None,
        rate_limit: Optional[RateLimitConfig] = None,
        audio_config: Optional[AudioConfig] = None,
        on_success: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_transcription: Optional[TranscriptionCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        on_levels: Optional[LevelsCallback] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._send = send
        self._send_audio = send_audio
        self._on_success = on_success
        self._on_error = on_error
        self._on_transcription = on_transcription
        self._on_state_change = on_state_change
        self._on_levels = on_levels

        self._rate_limiter = RateLimiter(rate_limit, clock=clock)
        self._capture = AudioCaptureEngine(
            audio_source if audio_source is not None else SoundDeviceSource(),
            audio_config,
            on_finalized=self._handle_capture_finalized,
            on_error=self._handle_capture_error,
            on_tick=self._handle_tick,
            on_limit=self._handle_capture_limit,
            clock=clock,
        )

        self._state = InputStatus.IDLE
        self._text = ""
        self._result: Any = None
        self._error: BaseException | None = None
        self._pending_commit = False
        self._starting = False
        self._closed = False
        # Bumped by reset/close so late completions from before are dropped.
        self._epoch = 0
        self._transport_task: asyncio.Future[Any] | None = None
        self._audio_task: asyncio.Task[None] | None = None
        self._rate_limit_handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def state(self) -> InputStatus:
        return self._state

    @property
    def text(self) -> str:
        return self._text

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def pending_commit(self) -> bool:
        return self._pending_commit

    @property
    def is_recording(self) -> bool:
        return self._state == InputStatus.RECORDING

    @property
    def can_submit(self) -> bool:
        return (
            self._rate_limiter.can_request()
            and not self._is_busy()
            and bool(self._text.strip())
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def capture(self) -> AudioCaptureEngine:
        return self._capture

    def snapshot(self) -> InputSnapshot:
        return InputSnapshot(
            status=self._state,
            text=self._text,
            result=self._result,
            error=self._error,
            can_submit=self.can_submit,
            is_recording=self.is_recording,
            pending_commit=self._pending_commit,
            recording_duration_ms=self._capture.elapsed_ms,
            max_recording_duration_ms=self._capture.max_duration_ms,
            audio_levels=self._capture.levels,
            cooldown_remaining_ms=self._rate_limiter.cooldown_remaining(),
            requests_remaining=self._rate_limiter.requests_remaining(),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def set_text(self, value: str) -> None:
        self._text = value

    async def submit(self) -> None:
        """Stop-and-send while recording, otherwise send the current text."""
        if self._state == InputStatus.RECORDING:
            self.stop_recording()
            return
        if self._text.strip():
            await self.submit_text()

    async def submit_text(self) -> None:
        if self._closed or self._is_busy():
            return
        text = self._text
        if not text.strip():
            return
        if not self._admit():
            return
        epoch = self._begin_submission()
        await self._run_submission(self._send, text, epoch, audio=False)

    async def start_recording(self) -> None:
        if self._closed or self._is_busy():
            return
        if not self._admit():
            return
        self._error = None
        self._starting = True
        epoch = self._epoch
        try:
            started = await self._capture.start()
        except CaptureError as exc:
            if epoch == self._epoch:
                self._fail(exc)
            return
        finally:
            self._starting = False
        if not started or epoch != self._epoch:
            return
        self._transition(InputStatus.RECORDING)

    def stop_recording(self) -> None:
        if self._state != InputStatus.RECORDING or self._pending_commit:
            return
        self._pending_commit = True
        self._capture.stop()

    def cancel_recording(self) -> None:
        if self._state != InputStatus.RECORDING and not self._starting:
            return
        self._pending_commit = False
        self._capture.cancel()
        if self._state == InputStatus.RECORDING:
            self._transition(InputStatus.IDLE)

    def reset(self) -> None:
        self._epoch += 1
        self._pending_commit = False
        self._capture.reset()
        self._cancel_inflight()
        self._cancel_rate_limit_timer()
        self._text = ""
        self._result = None
        self._error = None
        self._rate_limiter.reset()
        self._transition(InputStatus.IDLE)

    def refresh_rate_limit(self) -> None:
        """Leave ``rate-limited`` once the limiter allows requests again."""
        self._cancel_rate_limit_timer()
        if self._closed or self._state != InputStatus.RATE_LIMITED:
            return
        if self._rate_limiter.can_request():
            self._transition(InputStatus.IDLE)
        else:
            self._schedule_rate_limit_refresh()

    async def wait_for_submission(self) -> None:
        """Wait until the audio submission dispatched on finalize has settled."""
        task = self._audio_task
        if task is not None:
            await asyncio.wait([task])

    def close(self) -> None:
        """Tear down: release the microphone and drop any in-flight work."""
        if self._closed:
            return
        self._closed = True
        self._epoch += 1
        self._pending_commit = False
        self._capture.close()
        self._cancel_inflight()
        self._cancel_rate_limit_timer()

    # ------------------------------------------------------------------
    # Capture engine callbacks
    # ------------------------------------------------------------------

    def _handle_capture_finalized(self, payload: AudioPayload) -> None:
        if not self._pending_commit or self._closed:
            logger.debug("ignoring finalized audio without a pending commit")
            return
        # Cleared in the same step as the dispatch below.
        self._pending_commit = False
        epoch = self._begin_submission()
        send = self._send_audio or self._send
        self._audio_task = asyncio.ensure_future(
            self._run_submission(send, payload, epoch, audio=True)
        )

    def _handle_capture_error(self, exc: CaptureError) -> None:
        self._pending_commit = False
        if self._closed:
            return
        self._fail(exc)

    def _handle_capture_limit(self) -> None:
        self.stop_recording()

    def _handle_tick(self, elapsed_ms: int, levels: tuple[float, ...]) -> None:
        self._notify(self._on_levels, elapsed_ms, levels)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_busy(self) -> bool:
        return self._state in _BUSY_STATES or self._starting or self._capture.is_active

    def _admit(self) -> bool:
        if self._rate_limiter.can_request():
            return True
        logger.info(
            "request denied by rate limiter (retry in %d ms)", self._rate_limiter.retry_after()
        )
        self._transition(InputStatus.RATE_LIMITED)
        self._schedule_rate_limit_refresh()
        return False

    def _begin_submission(self) -> int:
        self._rate_limiter.record_request()
        self._error = None
        self._transition(InputStatus.LOADING)
        return self._epoch

    async def _run_submission(self, send: Transport, value: SendInput, epoch: int, audio: bool) -> None:
        kind = "audio" if audio else "text"
        logger.info("submitting %s", kind)
        try:
            task = asyncio.ensure_future(send(value))
        except Exception as exc:
            logger.warning("%s submission failed: %s", kind, exc)
            self._fail(exc)
            return
        self._transport_task = task
        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            # The caller stopped waiting; the transport call goes with it.
            task.cancel()
            if epoch == self._epoch:
                logger.warning("%s submission cancelled by caller", kind)
                self._fail(TransportError(f"{kind} submission cancelled"))
            raise
        finally:
            if self._transport_task is task:
                self._transport_task = None
        if epoch != self._epoch:
            return
        if task.cancelled():
            logger.warning("%s transport call was cancelled", kind)
            self._fail(TransportError(f"{kind} submission cancelled"))
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("%s submission failed: %s", kind, exc)
            self._fail(exc)
            return
        self._succeed(task.result(), audio)

    def _succeed(self, result: Any, audio: bool) -> None:
        self._result = result
        if audio:
            transcript = extract_transcript(result)
            if transcript is not None:
                self._text = transcript
                self._notify(self._on_transcription, transcript)
        else:
            self._text = ""
        self._transition(InputStatus.SUCCESS)
        self._notify(self._on_success, result)

    def _fail(self, exc: BaseException) -> None:
        self._error = exc
        self._transition(InputStatus.ERROR)
        self._notify(self._on_error, exc)

    def _schedule_rate_limit_refresh(self) -> None:
        self._cancel_rate_limit_timer()
        delay_ms = max(self._rate_limiter.retry_after(), 1)
        loop = asyncio.get_running_loop()
        self._rate_limit_handle = loop.call_later(delay_ms / 1000.0, self.refresh_rate_limit)

    def _cancel_rate_limit_timer(self) -> None:
        if self._rate_limit_handle is not None:
            self._rate_limit_handle.cancel()
            self._rate_limit_handle = None

    def _cancel_inflight(self) -> None:
        for task in (self._transport_task, self._audio_task):
            if task is not None and not task.done():
                task.cancel()
        self._transport_task = None
        self._audio_task = None

    def _notify(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("host callback %r failed", callback)

    def _transition(self, to_state: InputStatus) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if to_state != InputStatus.RATE_LIMITED:
            self._cancel_rate_limit_timer()
        logger.debug("state %s -> %s", from_state.value, to_state.value)
        self._notify(self._on_state_change, from_state, to_state)
