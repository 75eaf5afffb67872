"""Timeline mixdown: positioned summing of processed clip buffers.

Each active clip becomes a source node on a :class:`RenderGraph`, optionally
followed by a clip-volume gain node, and every chain ends on a shared sink
where overlapping audio sums.  Track mute and solo decide which clips take
part.  Peak normalisation is the only step that touches samples in place and
only ever attenuates.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from .buffer import PCMBuffer, conform_channels, frames_for_duration, resample_linear, silent_buffer
from .metrics import db_to_linear, linear_to_db
from .node_graph import RenderGraph, RenderNode
from .settings import MixerSettings

logger = logging.getLogger(__name__)


@dataclass
class AudioTrackData:
    """One processed clip placed on the export window."""

    clip_id: str
    buffer: Optional[PCMBuffer]
    start_time: float
    track_id: str
    track_muted: bool = False
    track_solo: bool = False
    clip_volume: Optional[float] = None


@dataclass(frozen=True)
class MixProgress:
    phase: str
    percent: float
    tracks_processed: int
    total_tracks: int


@dataclass
class MeterReading:
    """Represents a snapshot of signal level in decibels."""

    peak_db: float
    rms_db: float


MixProgressCallback = Callable[[MixProgress], None]


def get_active_tracks(tracks: Sequence[AudioTrackData]) -> List[AudioTrackData]:
    """Drop muted and empty tracks; when any track is soloed keep only soloed ones."""

    has_solo = any(track.track_solo for track in tracks)
    active: List[AudioTrackData] = []
    for track in tracks:
        if track.track_muted:
            continue
        if has_solo and not track.track_solo:
            continue
        if track.buffer is None or track.buffer.length == 0:
            continue
        active.append(track)
    return active


def normalization_gain(peak: float, headroom_db: float) -> float:
    """Return the attenuation that brings *peak* to the headroom ceiling.

    Silence and mixes already under the ceiling get ``1.0``.
    """

    if peak <= 0.0:
        return 1.0
    gain = db_to_linear(headroom_db) / peak
    return min(1.0, gain)


def normalize_in_place(buffer: PCMBuffer, headroom_db: float) -> float:
    """Scale *buffer* so its peak sits at *headroom_db*; return the applied gain."""

    if buffer.length == 0:
        return 1.0
    peak = float(np.max(np.abs(buffer.samples)))
    gain = normalization_gain(peak, headroom_db)
    if gain < 1.0:
        logger.debug("Normalizing: peak=%.4f, gain=%.4f", peak, gain)
        buffer.samples *= np.float32(gain)
    return gain


class AudioMixer:
    """Mix processed clip buffers into one multichannel buffer."""

    def __init__(self, settings: MixerSettings | None = None) -> None:
        self._settings = settings or MixerSettings()

    @property
    def settings(self) -> MixerSettings:
        return self._settings.model_copy()

    def update_settings(self, **changes: object) -> MixerSettings:
        self._settings = MixerSettings.model_validate({**self._settings.model_dump(), **changes})
        return self.settings

    def mix_tracks(
        self,
        tracks: Sequence[AudioTrackData],
        duration: float,
        on_progress: MixProgressCallback | None = None,
    ) -> PCMBuffer:
        settings = self._settings
        total_frames = frames_for_duration(duration, settings.sample_rate)
        logger.info("Mixing %d tracks into %.2fs output", len(tracks), duration)

        if on_progress:
            on_progress(MixProgress("preparing", 0.0, 0, len(tracks)))

        active = get_active_tracks(tracks)
        if not active:
            logger.debug("No active tracks, returning silence")
            return silent_buffer(duration, settings.sample_rate, settings.number_of_channels)
        logger.debug("%d active tracks after mute/solo filtering", len(active))

        graph = RenderGraph(settings.sample_rate, settings.number_of_channels, total_frames)
        sink = graph.add_node(RenderNode.sink()).node_id
        for index, track in enumerate(active):
            if on_progress:
                on_progress(MixProgress("mixing", round(index / len(active) * 80), index, len(active)))
            self._add_track(graph, sink, index, track)

        if on_progress:
            on_progress(MixProgress("mixing", 80.0, len(active), len(active)))

        mixed = graph.render()

        if settings.normalize:
            if on_progress:
                on_progress(MixProgress("normalizing", 90.0, len(active), len(active)))
            normalize_in_place(mixed, settings.headroom)

        if on_progress:
            on_progress(MixProgress("normalizing", 100.0, len(active), len(active)))
        logger.info("Mix complete: %.2fs", mixed.duration)
        return mixed

    def _add_track(self, graph: RenderGraph, sink: str, index: int, track: AudioTrackData) -> None:
        buffer = track.buffer
        assert buffer is not None
        if buffer.sample_rate != graph.sample_rate:
            buffer = resample_linear(buffer, graph.sample_rate)
        buffer = conform_channels(buffer, graph.channels)

        start_time = max(0.0, track.start_time)
        source = graph.add_node(RenderNode.source(f"clip-{index}-{track.clip_id}", buffer, start_time))
        if track.clip_volume is not None and track.clip_volume != 1.0:
            volume = max(0.0, min(2.0, track.clip_volume))
            gain = graph.add_node(RenderNode.gain(f"gain-{index}-{track.clip_id}", volume))
            graph.chain(source.node_id, gain.node_id, sink)
        else:
            graph.connect(source.node_id, sink)
        logger.debug("Added clip %s at %.2fs (%.2fs)", track.clip_id, start_time, buffer.duration)

    # ------------------------------------------------------------------
    # Level analysis
    # ------------------------------------------------------------------
    @staticmethod
    def get_peak_level(buffer: PCMBuffer) -> float:
        if buffer.length == 0:
            return -float("inf")
        return linear_to_db(float(np.max(np.abs(buffer.samples))))

    @staticmethod
    def get_rms_level(buffer: PCMBuffer) -> float:
        if buffer.length == 0:
            return -float("inf")
        mean_square = float(np.mean(np.square(buffer.samples, dtype=np.float64)))
        return linear_to_db(float(np.sqrt(mean_square)))

    @classmethod
    def meter(cls, buffer: PCMBuffer) -> MeterReading:
        return MeterReading(peak_db=cls.get_peak_level(buffer), rms_db=cls.get_rms_level(buffer))


__all__ = [
    "AudioMixer",
    "AudioTrackData",
    "MeterReading",
    "MixProgress",
    "get_active_tracks",
    "normalization_gain",
    "normalize_in_place",
]
