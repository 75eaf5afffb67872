"""Offline audio rendering stages for timeline exports."""
from .automation import AutomatedParam
from .buffer import PCMBuffer, conform_channels, resample_linear, silent_buffer, to_stereo, trim_buffer
from .effects import AudioEffectRenderer, EQ_BAND_PARAMS, EQ_FREQUENCIES
from .metrics import integrated_lufs, peak_dbfs, rms_dbfs, rms_per_channel
from .mixer import AudioMixer, AudioTrackData, MixProgress
from .node_graph import NodeKind, RenderGraph, RenderNode
from .scheduling import YieldPoint
from .settings import AudioExportSettings, MixerSettings, TimeStretchSettings
from .time_stretch import PhaseVocoderStretch, TimeStretchProcessor, TimeStretchProgress

__all__ = [
    "AudioEffectRenderer",
    "AudioExportSettings",
    "AudioMixer",
    "AudioTrackData",
    "AutomatedParam",
    "EQ_BAND_PARAMS",
    "EQ_FREQUENCIES",
    "MixProgress",
    "MixerSettings",
    "NodeKind",
    "PCMBuffer",
    "PhaseVocoderStretch",
    "RenderGraph",
    "RenderNode",
    "TimeStretchProcessor",
    "TimeStretchProgress",
    "TimeStretchSettings",
    "YieldPoint",
    "conform_channels",
    "integrated_lufs",
    "peak_dbfs",
    "resample_linear",
    "rms_dbfs",
    "rms_per_channel",
    "silent_buffer",
    "to_stereo",
    "trim_buffer",
]
