"""Pydantic models describing the timeline snapshot an export reads.

The editing layer owns and mutates the live timeline; the export pipeline
only ever receives one of these snapshots and never writes back to it.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SPEED_PROPERTY = "speed"


def effect_property(effect_id: str, param: str) -> str:
    """Return the keyframe property name for an effect parameter."""

    return f"effect.{effect_id}.{param}"


class BezierHandle(BaseModel):
    """Control point relative to its keyframe (seconds, value offset)."""

    x: float = 0.0
    y: float = 0.0


class Keyframe(BaseModel):
    """Automation point on a clip property."""

    id: Optional[str] = None
    clip_id: Optional[str] = None
    property: str
    time: float = Field(..., description="Clip-local time in seconds")
    value: float
    easing: str = Field(
        "linear",
        description="step, linear, ease-in, ease-out, ease-in-out or bezier",
    )
    handle_in: Optional[BezierHandle] = None
    handle_out: Optional[BezierHandle] = None


class Effect(BaseModel):
    """Clip effect with a flat parameter map."""

    id: str
    type: str
    enabled: bool = True
    params: Dict[str, float] = Field(default_factory=dict)


class MediaSource(BaseModel):
    """Where a clip's audio comes from: a file path or decoded samples."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal["audio", "video", "image"] = "audio"
    handle: Optional[Any] = Field(None, description="Path string or PCMBuffer")
    media_file_id: Optional[str] = None


class TimelineTrack(BaseModel):
    id: str
    name: str = ""
    type: Literal["audio", "video"] = "audio"
    muted: bool = False
    solo: bool = False
    visible: bool = True


class TimelineClip(BaseModel):
    """Clip placement on a track together with its playback parameters."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str = ""
    track_id: str
    start_time: float = Field(..., ge=0.0)
    duration: float = Field(..., ge=0.0)
    in_point: float = Field(0.0, ge=0.0)
    out_point: Optional[float] = None
    speed: float = 1.0
    preserves_pitch: bool = True
    volume: float = Field(1.0, ge=0.0, le=2.0)
    effects: List[Effect] = Field(default_factory=list)
    source: Optional[MediaSource] = None
    is_composition: bool = False
    mixdown_buffer: Optional[Any] = Field(None, description="Pre-rendered PCMBuffer of a nested timeline")
    has_mixdown_audio: bool = False

    @model_validator(mode="after")
    def default_out_point(self) -> "TimelineClip":
        if self.out_point is None:
            self.out_point = self.in_point + self.duration * abs(self.speed or 1.0)
        if self.out_point < self.in_point:
            raise ValueError("Clip out_point must not precede in_point")
        return self

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class TimelineSnapshot(BaseModel):
    """Clips, tracks, and keyframes frozen at export time."""

    clips: List[TimelineClip] = Field(default_factory=list)
    tracks: List[TimelineTrack] = Field(default_factory=list)
    clip_keyframes: Dict[str, List[Keyframe]] = Field(default_factory=dict)

    def track(self, track_id: str) -> TimelineTrack | None:
        for track in self.tracks:
            if track.id == track_id:
                return track
        return None

    def keyframes_for(self, clip_id: str) -> List[Keyframe]:
        return list(self.clip_keyframes.get(clip_id, []))

    @property
    def duration(self) -> float:
        """Return the end time of the last clip."""

        return max((clip.end_time for clip in self.clips), default=0.0)


class TimelineDocument(TimelineSnapshot):
    """JSON timeline file consumed by the render CLI.

    Clip sources are file paths resolved relative to the document.
    """

    @classmethod
    def load(cls, path: Path) -> "TimelineDocument":
        payload = json.loads(path.read_text(encoding="utf-8"))
        document = cls.model_validate(payload)
        base = path.parent
        for clip in document.clips:
            source = clip.source
            if source is not None and isinstance(source.handle, str):
                candidate = Path(source.handle)
                if not candidate.is_absolute():
                    source.handle = str(base / candidate)
        return document


__all__ = [
    "SPEED_PROPERTY",
    "BezierHandle",
    "Effect",
    "Keyframe",
    "MediaSource",
    "TimelineClip",
    "TimelineDocument",
    "TimelineSnapshot",
    "TimelineTrack",
    "effect_property",
]
