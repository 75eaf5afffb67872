"""Pure keyframe-curve queries shared by the render stages.

These mirror the evaluator the editing layer uses for preview so exported
audio follows the same curves the user sees on the timeline.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Sequence

from .models import SPEED_PROPERTY, BezierHandle, Keyframe

DEFAULT_HANDLE_OUT = BezierHandle(x=0.33, y=0.0)
DEFAULT_HANDLE_IN = BezierHandle(x=-0.33, y=0.0)


def _ease_in(t: float) -> float:
    return t * t


def _ease_out(t: float) -> float:
    return t * (2.0 - t)


def _ease_in_out(t: float) -> float:
    if t < 0.5:
        return 2.0 * t * t
    return -1.0 + (4.0 - 2.0 * t) * t


EASING_CURVES: Dict[str, Callable[[float], float]] = {
    "linear": lambda t: t,
    "ease-in": _ease_in,
    "ease-out": _ease_out,
    "ease-in-out": _ease_in_out,
}


def sorted_keyframes(keyframes: Iterable[Keyframe], property_name: str) -> List[Keyframe]:
    """Return the keyframes targeting *property_name* ordered by time."""

    return sorted(
        (keyframe for keyframe in keyframes if keyframe.property == property_name),
        key=lambda keyframe: keyframe.time,
    )


def bezier_interpolate(prev_kf: Keyframe, next_kf: Keyframe, t: float) -> float:
    """Evaluate the cubic bezier segment between two keyframes at ``t`` in [0, 1].

    Handles are read as value-space offsets scaled by the value difference, so
    the curve always starts at ``prev_kf.value`` and ends at ``next_kf.value``.
    Without any handle the segment is a straight line.
    """

    if prev_kf.handle_out is None and next_kf.handle_in is None:
        return prev_kf.value + (next_kf.value - prev_kf.value) * t

    p0 = prev_kf.value
    p3 = next_kf.value
    handle_out = prev_kf.handle_out or DEFAULT_HANDLE_OUT
    handle_in = next_kf.handle_in or DEFAULT_HANDLE_IN

    value_diff = p3 - p0
    p1 = p0 + handle_out.y * value_diff
    p2 = p3 + handle_in.y * value_diff

    mt = 1.0 - t
    return mt * mt * mt * p0 + 3.0 * mt * mt * t * p1 + 3.0 * mt * t * t * p2 + t * t * t * p3


def _segment_value(prev_kf: Keyframe, next_kf: Keyframe, time: float) -> float:
    span = next_kf.time - prev_kf.time
    if span <= 0.0:
        return next_kf.value
    t = (time - prev_kf.time) / span
    easing = prev_kf.easing
    if easing == "step":
        return prev_kf.value
    if easing == "bezier":
        return bezier_interpolate(prev_kf, next_kf, t)
    curve = EASING_CURVES.get(easing, EASING_CURVES["linear"])
    return prev_kf.value + (next_kf.value - prev_kf.value) * curve(t)


def evaluate_curve(keyframes: Sequence[Keyframe], time: float, default: float) -> float:
    """Evaluate an already filtered, time-sorted keyframe list at *time*."""

    if not keyframes:
        return default
    if time <= keyframes[0].time:
        return keyframes[0].value
    if time >= keyframes[-1].time:
        return keyframes[-1].value
    for prev_kf, next_kf in zip(keyframes, keyframes[1:]):
        if prev_kf.time <= time <= next_kf.time:
            return _segment_value(prev_kf, next_kf, time)
    return default


def interpolate_keyframes(
    keyframes: Iterable[Keyframe],
    property_name: str,
    time: float,
    default: float,
) -> float:
    """Return the eased value of *property_name* at clip-local *time*."""

    return evaluate_curve(sorted_keyframes(keyframes, property_name), time, default)


def speed_at_time(keyframes: Iterable[Keyframe], time: float, default_speed: float) -> float:
    return interpolate_keyframes(keyframes, SPEED_PROPERTY, time, default_speed)


def calculate_source_time(
    keyframes: Iterable[Keyframe],
    clip_local_time: float,
    default_speed: float,
    *,
    samples_per_segment: int = 10,
) -> float:
    """Integrate the speed curve from 0 to *clip_local_time*.

    Sample points are placed at every keyframe inside the interval plus
    ``samples_per_segment`` points between neighbours, then summed with the
    trapezoidal rule.  Negative speeds move the source position backwards.
    """

    speed_keyframes = sorted_keyframes(keyframes, SPEED_PROPERTY)
    if not speed_keyframes:
        return clip_local_time * default_speed
    if len(speed_keyframes) == 1:
        return clip_local_time * speed_keyframes[0].value
    if clip_local_time <= 0.0:
        return 0.0

    anchors = [0.0]
    anchors.extend(kf.time for kf in speed_keyframes if 0.0 < kf.time < clip_local_time)
    anchors.append(clip_local_time)

    points: List[float] = []
    for start, end in zip(anchors, anchors[1:]):
        step = (end - start) / samples_per_segment
        points.extend(start + index * step for index in range(samples_per_segment))
    points.append(clip_local_time)
    points = sorted(set(points))

    integral = 0.0
    for t0, t1 in zip(points, points[1:]):
        s0 = evaluate_curve(speed_keyframes, t0, default_speed)
        s1 = evaluate_curve(speed_keyframes, t1, default_speed)
        integral += (s0 + s1) * 0.5 * (t1 - t0)
    return integral


__all__ = [
    "EASING_CURVES",
    "bezier_interpolate",
    "calculate_source_time",
    "evaluate_curve",
    "interpolate_keyframes",
    "sorted_keyframes",
    "speed_at_time",
]
