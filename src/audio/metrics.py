"""Level and loudness metrics for rendered mixes."""
from __future__ import annotations

import math

import numpy as np
from scipy import signal


def db_to_linear(value_db: float) -> float:
    """Convert a decibel value to a linear gain multiplier."""

    return math.pow(10.0, value_db / 20.0)


def linear_to_db(value: float) -> float:
    if value <= 0.0:
        return -float("inf")
    return 20.0 * math.log10(value)


def _as_frames(buffer: np.ndarray) -> np.ndarray:
    if buffer.ndim == 1:
        return buffer[:, None]
    return buffer


def peak_dbfs(buffer: np.ndarray) -> float:
    """Return the absolute sample peak across all channels in dBFS."""

    if buffer.size == 0:
        return -float("inf")
    return linear_to_db(float(np.max(np.abs(buffer))))


def rms_per_channel(buffer: np.ndarray) -> np.ndarray:
    """Return root-mean-square level for each channel.

    The calculation assumes the buffer uses floating-point -1..1 headroom.
    """

    if buffer.size == 0:
        return np.zeros(buffer.shape[1] if buffer.ndim == 2 else 1, dtype=np.float32)
    buffer = _as_frames(buffer)
    squared = np.square(buffer, dtype=np.float64)
    return np.sqrt(np.mean(squared, axis=0)).astype(np.float32)


def rms_dbfs(buffer: np.ndarray) -> float:
    """Return the RMS of every sample of every channel in dBFS.

    Silence and empty buffers report ``-inf``.
    """

    if buffer.size == 0:
        return -float("inf")
    mean_square = float(np.mean(np.square(buffer, dtype=np.float64)))
    return linear_to_db(math.sqrt(mean_square))


def integrated_lufs(buffer: np.ndarray, *, sample_rate: int) -> float:
    """Return a simplified BS.1770 integrated LUFS estimate.

    The helper applies the K-weighting high-shelf and RLB high-pass used by
    the broadcast standard and averages power across all channels, without
    gating.
    """

    if buffer.size == 0:
        return float("-inf")
    buffer = _as_frames(buffer)

    weighted = _apply_k_weighting(buffer, sample_rate)
    power = np.mean(np.square(weighted), axis=0)
    mean_power = float(np.mean(power))
    if mean_power <= 0.0:
        return float("-inf")
    return -0.691 + 10.0 * math.log10(mean_power)


def _apply_k_weighting(buffer: np.ndarray, sample_rate: int) -> np.ndarray:
    """Apply the BS.1770 pre-filter and RLB weighting."""

    if sample_rate != 48_000:
        # The constants below are derived for 48 kHz; other rates fall back
        # to a plain RMS scaling.
        return buffer * np.sqrt(2.0)

    # Pre-filter (high shelf)
    shelf_b = (1.53512485958697, -2.69169618940638, 1.19839281085285)
    shelf_a = (1.0, -1.69065929318241, 0.73248077421585)
    prefiltered = signal.lfilter(shelf_b, shelf_a, buffer.astype(np.float64), axis=0)

    # RLB weighting (high-pass)
    rlb_b = (1.0, -2.0, 1.0)
    rlb_a = (1.0, -1.99004745483398, 0.99007225036621)
    return signal.lfilter(rlb_b, rlb_a, prefiltered, axis=0)


__all__ = [
    "db_to_linear",
    "integrated_lufs",
    "linear_to_db",
    "peak_dbfs",
    "rms_dbfs",
    "rms_per_channel",
]
