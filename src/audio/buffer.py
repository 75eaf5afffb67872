"""PCM buffer container and the small conversions every render stage shares.

Buffers hold ``float32`` samples shaped ``(frames, channels)``, matching the
layout used by the mixer graph and the effect inserts.  Helpers return the
input object untouched when there is nothing to do, so callers can rely on
identity checks for their fast paths.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PCMBuffer:
    """Multichannel sample block at a fixed sample rate."""

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples[:, None]
        if samples.ndim != 2:
            raise ValueError(f"PCM samples must be 1-D or 2-D, got shape {samples.shape}")
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @classmethod
    def from_channels(cls, channels: Sequence[np.ndarray], sample_rate: int) -> "PCMBuffer":
        """Build a buffer from per-channel 1-D arrays of equal length."""

        if not channels:
            return cls(np.zeros((0, 1), dtype=np.float32), sample_rate)
        stacked = np.stack([np.asarray(data, dtype=np.float32) for data in channels], axis=1)
        return cls(stacked, sample_rate)

    @property
    def number_of_channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def length(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.length / float(self.sample_rate)

    def channel(self, index: int) -> np.ndarray:
        """Return a view on a single channel."""

        return self.samples[:, index]

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return (
            f"PCMBuffer(frames={self.length}, channels={self.number_of_channels}, "
            f"sample_rate={self.sample_rate})"
        )


def frames_for_duration(duration: float, sample_rate: int) -> int:
    """Return ``ceil(duration * sample_rate)`` clamped at zero."""

    if duration <= 0.0 or sample_rate <= 0:
        return 0
    return int(math.ceil(duration * sample_rate))


def silent_buffer(duration: float, sample_rate: int, channels: int = 2) -> PCMBuffer:
    """Return a zero-filled buffer covering *duration* seconds."""

    frames = frames_for_duration(duration, sample_rate)
    return PCMBuffer(np.zeros((frames, max(1, channels)), dtype=np.float32), sample_rate)


def conform_channels(buffer: PCMBuffer, channels: int) -> PCMBuffer:
    """Up- or down-mix *buffer* to *channels*.

    Mono is copied to every output channel, any layout folds to mono by
    averaging, and other mismatches keep the leading channels (padding with
    silence when the target is wider).
    """

    current = buffer.number_of_channels
    if current == channels:
        return buffer
    if current == 1:
        return PCMBuffer(np.repeat(buffer.samples, channels, axis=1), buffer.sample_rate)
    if channels == 1:
        return PCMBuffer(buffer.samples.mean(axis=1, keepdims=True), buffer.sample_rate)
    conformed = np.zeros((buffer.length, channels), dtype=np.float32)
    shared = min(current, channels)
    conformed[:, :shared] = buffer.samples[:, :shared]
    return PCMBuffer(conformed, buffer.sample_rate)


def to_stereo(buffer: PCMBuffer) -> PCMBuffer:
    """Duplicate a mono buffer onto two channels; wider buffers pass through."""

    if buffer.number_of_channels >= 2:
        return buffer
    return conform_channels(buffer, 2)


def resample_linear(buffer: PCMBuffer, target_rate: int) -> PCMBuffer:
    """Resample with linear interpolation, preserving duration."""

    target_rate = int(target_rate)
    if buffer.sample_rate == target_rate:
        return buffer
    target_frames = frames_for_duration(buffer.duration, target_rate)
    if buffer.length == 0 or target_frames == 0:
        return PCMBuffer(
            np.zeros((target_frames, buffer.number_of_channels), dtype=np.float32),
            target_rate,
        )
    positions = np.arange(target_frames, dtype=np.float64) * (buffer.sample_rate / float(target_rate))
    source_index = np.arange(buffer.length, dtype=np.float64)
    resampled = np.empty((target_frames, buffer.number_of_channels), dtype=np.float32)
    for channel in range(buffer.number_of_channels):
        resampled[:, channel] = np.interp(positions, source_index, buffer.samples[:, channel])
    logger.debug(
        "Resampled %s frames @ %sHz -> %s frames @ %sHz",
        buffer.length,
        buffer.sample_rate,
        target_frames,
        target_rate,
    )
    return PCMBuffer(resampled, target_rate)


def trim_buffer(buffer: PCMBuffer, start_time: float, end_time: float) -> PCMBuffer:
    """Cut ``[start_time, end_time)`` out of *buffer*.

    An empty result becomes a 1 ms silent buffer so downstream stages never
    see a zero-length trim.
    """

    rate = buffer.sample_rate
    start_sample = max(0, int(math.floor(start_time * rate)))
    end_sample = min(int(math.ceil(end_time * rate)), buffer.length)
    if end_sample - start_sample <= 0:
        logger.warning("Trim %.3fs-%.3fs resulted in empty buffer", start_time, end_time)
        return silent_buffer(0.001, rate, buffer.number_of_channels)
    return PCMBuffer(buffer.samples[start_sample:end_sample].copy(), rate)


__all__ = [
    "PCMBuffer",
    "conform_channels",
    "frames_for_duration",
    "resample_linear",
    "silent_buffer",
    "to_stereo",
    "trim_buffer",
]
