"""Timeline snapshot models and keyframe-curve queries."""
from .keyframes import (
    bezier_interpolate,
    calculate_source_time,
    interpolate_keyframes,
    speed_at_time,
)
from .models import (
    BezierHandle,
    Effect,
    Keyframe,
    MediaSource,
    TimelineClip,
    TimelineDocument,
    TimelineSnapshot,
    TimelineTrack,
    effect_property,
)

__all__ = [
    "BezierHandle",
    "Effect",
    "Keyframe",
    "MediaSource",
    "TimelineClip",
    "TimelineDocument",
    "TimelineSnapshot",
    "TimelineTrack",
    "bezier_interpolate",
    "calculate_source_time",
    "effect_property",
    "interpolate_keyframes",
    "speed_at_time",
]
