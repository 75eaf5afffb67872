"""Second-order IIR sections shared by the EQ graph and the loudness meter."""
from __future__ import annotations

import math
from typing import Iterable, Tuple

import numpy as np
from scipy import signal

Coefficients = Tuple[np.ndarray, np.ndarray]


def clamp_frequency(freq: float, sample_rate: int) -> float:
    nyquist = sample_rate / 2.0
    return float(max(10.0, min(freq, nyquist - 10.0)))


def normalise(b: Iterable[float], a: Iterable[float]) -> Coefficients:
    """Return ``(b, a)`` arrays scaled so that ``a[0] == 1``."""

    b = np.asarray(list(b), dtype=np.float64)
    a = np.asarray(list(a), dtype=np.float64)
    if not math.isclose(a[0], 1.0):
        b = b / a[0]
        a = a / a[0]
    return b, a


def peak_coefficients(sample_rate: int, freq: float, gain_db: float, q: float) -> Coefficients:
    """RBJ cookbook peaking filter.

    A gain of 0 dB yields ``b == a`` so the section is an exact pass-through.
    """

    freq = clamp_frequency(freq, sample_rate)
    a = math.pow(10.0, gain_db / 40.0)
    w0 = 2.0 * math.pi * freq / sample_rate
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)
    alpha = sin_w0 / (2.0 * max(q, 1e-3))
    b0 = 1.0 + alpha * a
    b1 = -2.0 * cos_w0
    b2 = 1.0 - alpha * a
    a0 = 1.0 + alpha / a
    a1 = -2.0 * cos_w0
    a2 = 1.0 - alpha / a
    return normalise((b0, b1, b2), (a0, a1, a2))


class Biquad:
    """Stateful transposed direct form II section over ``(frames, channels)``.

    Filter state is kept between :meth:`process` calls, so a buffer may be
    fed in blocks and coefficients swapped between blocks without clicks.
    """

    def __init__(self, b: Iterable[float], a: Iterable[float], channels: int) -> None:
        self._b, self._a = normalise(b, a)
        self._zi = np.zeros((2, channels), dtype=np.float64)

    @classmethod
    def peaking(
        cls, sample_rate: int, freq: float, gain_db: float, q: float, channels: int
    ) -> "Biquad":
        b, a = peak_coefficients(sample_rate, freq, gain_db, q)
        return cls(b, a, channels)

    def set_coefficients(self, coefficients: Coefficients) -> None:
        self._b, self._a = normalise(*coefficients)

    def process(self, buffer: np.ndarray) -> np.ndarray:
        if buffer.size == 0:
            return buffer
        output, self._zi = signal.lfilter(self._b, self._a, buffer, axis=0, zi=self._zi)
        return output.astype(np.float32, copy=False)


__all__ = ["Biquad", "clamp_frequency", "normalise", "peak_coefficients"]
