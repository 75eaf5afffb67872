"""Sample-accurate parameter automation for offline render graphs.

An :class:`AutomatedParam` collects timed events (set, linear ramp,
exponential ramp) and expands them into one value per output frame.  Ramps
start at the time and value of the preceding event; after the last event the
final value is held.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import heapq
import itertools
import math
from typing import List

import numpy as np

SET = "set"
LINEAR = "linear"
EXPONENTIAL = "exponential"


@dataclass(order=True)
class ParamEvent:
    """A scheduled value change expressed in seconds."""

    time: float
    sequence: int
    kind: str = field(compare=False)
    value: float = field(compare=False)


class AutomatedParam:
    """Value curve for one node parameter."""

    def __init__(self, name: str, default_value: float) -> None:
        self.name = name
        self.default_value = float(default_value)
        self._events: List[ParamEvent] = []
        self._sequence = itertools.count()

    def _schedule(self, kind: str, value: float, time: float) -> "AutomatedParam":
        if time < 0.0 or not math.isfinite(time):
            raise ValueError(f"Automation time must be finite and >= 0, got {time}")
        heapq.heappush(self._events, ParamEvent(float(time), next(self._sequence), kind, float(value)))
        return self

    def set_value_at_time(self, value: float, time: float) -> "AutomatedParam":
        return self._schedule(SET, value, time)

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> "AutomatedParam":
        return self._schedule(LINEAR, value, time)

    def exponential_ramp_to_value_at_time(self, value: float, time: float) -> "AutomatedParam":
        if value <= 0.0:
            raise ValueError("Exponential ramps require a strictly positive target")
        return self._schedule(EXPONENTIAL, value, time)

    @property
    def events(self) -> List[ParamEvent]:
        return sorted(self._events)

    def is_static(self) -> bool:
        """Return ``True`` when no event changes the default value."""

        return all(event.value == self.default_value for event in self._events)

    def values(self, frames: int, sample_rate: int) -> np.ndarray:
        """Expand the automation into ``frames`` per-sample values."""

        curve = np.empty(max(0, frames), dtype=np.float64)
        if frames <= 0:
            return curve

        cursor = 0
        prev_time = 0.0
        prev_value = self.default_value
        for event in self.events:
            stop = min(frames, max(cursor, _frame_at(event.time, sample_rate)))
            if stop > cursor:
                if event.kind == SET:
                    curve[cursor:stop] = prev_value
                else:
                    times = np.arange(cursor, stop, dtype=np.float64) / sample_rate
                    curve[cursor:stop] = _ramp(event.kind, prev_time, prev_value, event.time, event.value, times)
                cursor = stop
            prev_time = event.time
            prev_value = event.value
        curve[cursor:] = prev_value
        return curve

    def value_at(self, time: float, sample_rate: int) -> float:
        frame = int(math.floor(time * sample_rate))
        return float(self.values(frame + 1, sample_rate)[frame])


def _frame_at(time: float, sample_rate: int) -> int:
    # First frame at or after *time*, tolerant of float noise in time * rate.
    return int(math.ceil(time * sample_rate - 1e-9))


def _ramp(
    kind: str,
    t0: float,
    v0: float,
    t1: float,
    v1: float,
    times: np.ndarray,
) -> np.ndarray:
    span = t1 - t0
    if span <= 0.0:
        return np.full(times.shape, v1)
    progress = np.clip((times - t0) / span, 0.0, 1.0)
    if kind == EXPONENTIAL:
        if v0 <= 0.0:
            # No exponential path from a non-positive start; hold it.
            return np.full(times.shape, v0)
        return v0 * np.power(v1 / v0, progress)
    return v0 + (v1 - v0) * progress


__all__ = ["AutomatedParam", "ParamEvent"]
