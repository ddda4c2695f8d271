"""Amplitude metering for the recording waveform display.

The waveform buffer is split into ``bars`` equal segments; each bar is the
peak absolute deviation of its segment, scaled by ``gain`` and clamped to
[0, 1]. Silence maps to 0, a clipping signal to 1, and louder input never
yields a lower bar.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

DEFAULT_BARS = 12
DEFAULT_GAIN = 2.0


def sample_levels(
    waveform: Sequence[float],
    bars: int = DEFAULT_BARS,
    gain: float = DEFAULT_GAIN,
) -> tuple[float, ...]:
    samples = np.abs(np.asarray(waveform, dtype=np.float64).ravel())
    if samples.size == 0:
        return idle_levels(bars)
    peaks = np.array(
        [segment.max() if segment.size else 0.0 for segment in np.array_split(samples, bars)]
    )
    levels = np.clip(peaks * gain, 0.0, 1.0)
    return tuple(float(level) for level in levels)


def idle_levels(bars: int = DEFAULT_BARS) -> tuple[float, ...]:
    return (0.0,) * bars


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    """Convert little-endian int16 PCM to floats in [-1, 1]."""
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
