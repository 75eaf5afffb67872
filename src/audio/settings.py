"""Validated settings models for the export, mixer, and time-stretch stages."""
from __future__ import annotations

from typing import Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field


class AudioExportSettings(BaseModel):
    """Output format requested for a timeline export."""

    model_config = ConfigDict(frozen=True)

    sample_rate: Literal[44100, 48000] = 48_000
    bitrate: int = Field(256_000, ge=128_000, le=320_000, description="Encoder bitrate in bit/s")
    normalize: bool = Field(False, description="Peak normalise the mix before encoding")
    codec_preferences: Tuple[str, ...] = Field(
        ("mp3", "ogg"),
        min_length=1,
        description="Codecs to negotiate, widely compatible first",
    )


class MixerSettings(BaseModel):
    """Output layout and normalisation policy of :class:`audio.mixer.AudioMixer`."""

    model_config = ConfigDict(frozen=True)

    sample_rate: int = Field(48_000, gt=0)
    number_of_channels: int = Field(2, ge=1, le=8)
    normalize: bool = False
    headroom: float = Field(-1.0, le=0.0, description="Normalisation ceiling in dBFS")


class TimeStretchSettings(BaseModel):
    """Defaults for :class:`audio.time_stretch.TimeStretchProcessor`."""

    model_config = ConfigDict(frozen=True)

    preserve_pitch: bool = True
    quality: Literal["fast", "normal", "high"] = "normal"


__all__ = ["AudioExportSettings", "MixerSettings", "TimeStretchSettings"]
