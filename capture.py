"""Audio capture engine: one recording session at a time over an AudioSource.

A session ends exactly once, on one of three paths:

* ``stop()`` (or reaching ``max_duration_ms``) asks the source to flush; when
  the source reports it has stopped, the buffered chunks are encoded into a
  single ``AudioPayload`` and handed to ``on_finalized``.
* ``cancel()`` releases the source at once and drops every chunk; nothing is
  ever finalized for that session.
* a source error releases the source and is reported through ``on_error``.

Source callbacks are tagged with their session, so a chunk or stop signal
that arrives after the session ended is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional

from errors import DEVICE_UNAVAILABLE, HARDWARE_ERROR, UNSUPPORTED, CaptureError
from interfaces import AudioSource
from levels import idle_levels, sample_levels
from models import AudioConfig, AudioPayload, CaptureOutcome, CaptureStatus
from rate_limiter import Clock, now_ms

logger = logging.getLogger(__name__)

FinalizedCallback = Callable[[AudioPayload], None]
CaptureErrorCallback = Callable[[CaptureError], None]
TickCallback = Callable[[int, tuple[float, ...]], None]
LimitCallback = Callable[[], None]


@dataclass
class CaptureSession:
    session_id: int
    mime_type: str
    started_at: int = 0
    elapsed_ms: int = 0
    chunks: list[bytes] = field(default_factory=list)
    capturing: bool = False
    stopping: bool = False
    outcome: Optional[CaptureOutcome] = None

    @property
    def ended(self) -> bool:
        return self.outcome is not None


class AudioCaptureEngine:
    def __init__(
        self,
        source: AudioSource,
        config: AudioConfig | None = None,
        on_finalized: Optional[FinalizedCallback] = None,
        on_error: Optional[CaptureErrorCallback] = None,
        on_tick: Optional[TickCallback] = None,
        on_limit: Optional[LimitCallback] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._source = source
        self._config = config or AudioConfig()
        self._on_finalized = on_finalized
        self._on_error = on_error
        self._on_tick = on_tick
        self._on_limit = on_limit
        self._clock = clock

        self._session: CaptureSession | None = None
        self._session_id = 0
        self._elapsed_ms = 0
        self._levels = idle_levels(self._config.level_bars)
        self._tick_task: asyncio.Task[None] | None = None
        self._limit_handle: asyncio.TimerHandle | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def status(self) -> CaptureStatus:
        if self._session is not None and self._session.capturing:
            return CaptureStatus.CAPTURING
        return CaptureStatus.IDLE

    @property
    def is_capturing(self) -> bool:
        return self.status == CaptureStatus.CAPTURING

    @property
    def is_active(self) -> bool:
        """True from the start of acquisition until the session ends."""
        return self._session is not None

    @property
    def is_supported(self) -> bool:
        return self._source.is_supported()

    @property
    def elapsed_ms(self) -> int:
        return self._elapsed_ms

    @property
    def levels(self) -> tuple[float, ...]:
        return self._levels

    @property
    def max_duration_ms(self) -> int:
        return self._config.max_duration_ms

    @property
    def mime_type(self) -> str | None:
        return self._session.mime_type if self._session is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Acquire the microphone and begin capturing.

        Returns False when a session is already active or when the session
        was cancelled while the source was still being acquired. Raises
        ``CaptureError`` when the source cannot be acquired.
        """
        if self._session is not None or self._closed:
            return False
        if not self._source.is_supported():
            raise CaptureError(code=UNSUPPORTED)

        self._session_id += 1
        session = CaptureSession(session_id=self._session_id, mime_type=self._resolve_mime_type())
        self._session = session
        self._elapsed_ms = 0
        self._levels = idle_levels(self._config.level_bars)

        try:
            await self._source.open(
                session.mime_type,
                on_chunk=partial(self._handle_chunk, session),
                on_stopped=partial(self._handle_stopped, session),
                on_error=partial(self._handle_error, session),
            )
        except asyncio.CancelledError:
            self._end(session, CaptureOutcome.DISCARDED)
            raise
        except Exception as exc:
            if session.ended:
                # Cancelled while acquiring; the failure no longer matters.
                self._release_source()
                logger.info("capture session %d cancelled during acquisition", session.session_id)
                return False
            self._end(session, CaptureOutcome.ERROR)
            if isinstance(exc, CaptureError):
                raise
            raise CaptureError(str(exc), code=DEVICE_UNAVAILABLE) from exc

        if session.ended:
            # Cancelled while acquiring; the source may have finished opening
            # after the first release.
            self._release_source()
            logger.info("capture session %d cancelled during acquisition", session.session_id)
            return False

        session.started_at = self._clock()
        session.capturing = True
        loop = asyncio.get_running_loop()
        self._tick_task = loop.create_task(self._tick_loop(session))
        self._limit_handle = loop.call_later(
            self._config.max_duration_ms / 1000.0, self._handle_limit, session
        )
        logger.info("capture session %d started (%s)", session.session_id, session.mime_type)
        return True

    def stop(self) -> None:
        """Finish the session and deliver the captured audio via ``on_finalized``."""
        session = self._session
        if session is None or session.ended or session.stopping:
            return
        if not session.capturing:
            # Nothing has been captured yet.
            self.cancel()
            return
        session.stopping = True
        self._update_elapsed(session)
        self._cancel_timers()
        logger.info("capture session %d stopping after %d ms", session.session_id, session.elapsed_ms)
        try:
            self._source.request_stop()
        except Exception as exc:
            self._fail(session, exc)

    def cancel(self) -> None:
        """Discard the session without producing any audio."""
        session = self._session
        if session is None or session.ended:
            return
        session.chunks.clear()
        self._end(session, CaptureOutcome.DISCARDED)
        self._elapsed_ms = 0
        logger.info("capture session %d discarded", session.session_id)

    def reset(self) -> None:
        """Discard any session and clear the duration and level readouts."""
        self.cancel()
        self._elapsed_ms = 0
        self._levels = idle_levels(self._config.level_bars)

    def close(self) -> None:
        self._closed = True
        self.cancel()

    # ------------------------------------------------------------------
    # Source callbacks
    # ------------------------------------------------------------------

    def _handle_chunk(self, session: CaptureSession, chunk: bytes) -> None:
        if session.ended:
            logger.debug("dropping chunk for ended session %d", session.session_id)
            return
        if chunk:
            session.chunks.append(chunk)

    def _handle_stopped(self, session: CaptureSession) -> None:
        if session.ended:
            return
        if not session.stopping:
            self._fail(session, CaptureError("capture stopped unexpectedly", code=HARDWARE_ERROR))
            return
        try:
            data = self._source.encode(session.chunks, session.mime_type)
        except Exception as exc:
            self._fail(session, exc)
            return
        payload = AudioPayload(data=data, mime_type=session.mime_type, duration_ms=session.elapsed_ms)
        session.chunks.clear()
        self._end(session, CaptureOutcome.FINALIZED)
        logger.info("capture session %d finalized (%d bytes)", session.session_id, payload.size)
        if self._on_finalized:
            self._on_finalized(payload)

    def _handle_error(self, session: CaptureSession, exc: Exception) -> None:
        if session.ended:
            return
        self._fail(session, exc)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _tick_loop(self, session: CaptureSession) -> None:
        interval = self._config.tick_interval_ms / 1000.0
        while not session.ended and not session.stopping:
            await asyncio.sleep(interval)
            if session.ended or session.stopping:
                break
            self._tick(session)

    def _tick(self, session: CaptureSession) -> None:
        self._update_elapsed(session)
        self._levels = sample_levels(
            self._source.waveform(),
            bars=self._config.level_bars,
            gain=self._config.level_gain,
        )
        if self._on_tick:
            self._on_tick(session.elapsed_ms, self._levels)
        if session.elapsed_ms >= self._config.max_duration_ms:
            self._handle_limit(session)

    def _handle_limit(self, session: CaptureSession) -> None:
        if session is not self._session or session.ended or session.stopping:
            return
        logger.info("capture session %d reached max duration", session.session_id)
        if self._on_limit:
            self._on_limit()
        self.stop()

    def _cancel_timers(self) -> None:
        if self._limit_handle is not None:
            self._limit_handle.cancel()
            self._limit_handle = None
        task = self._tick_task
        self._tick_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve_mime_type(self) -> str:
        for mime_type in self._config.mime_types:
            if self._source.supports_mime_type(mime_type):
                return mime_type
        return self._source.default_mime_type

    def _update_elapsed(self, session: CaptureSession) -> None:
        if session.capturing:
            session.elapsed_ms = min(
                max(0, self._clock() - session.started_at), self._config.max_duration_ms
            )
            self._elapsed_ms = session.elapsed_ms

    def _fail(self, session: CaptureSession, exc: Exception) -> None:
        error = exc if isinstance(exc, CaptureError) else CaptureError(str(exc), code=HARDWARE_ERROR)
        session.chunks.clear()
        self._end(session, CaptureOutcome.ERROR)
        logger.warning("capture session %d failed: %s", session.session_id, error)
        if self._on_error:
            self._on_error(error)

    def _end(self, session: CaptureSession, outcome: CaptureOutcome) -> None:
        session.outcome = outcome
        session.capturing = False
        self._cancel_timers()
        if self._session is session:
            self._session = None
        self._levels = idle_levels(self._config.level_bars)
        self._release_source()

    def _release_source(self) -> None:
        try:
            self._source.release()
        except Exception:
            logger.exception("failed to release audio source")
