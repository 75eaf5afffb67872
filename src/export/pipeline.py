"""Staged, cancellable export of a timeline's audio.

Stages run in a fixed order (extract, speed, effects, mix, encode) over the
clips selected from a :class:`~timeline.models.TimelineSnapshot`.  A clip that
fails to extract degrades to silence for that clip; failures in later
stages abort the export.  The extractor cache is cleared however the
export ends.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Dict, List, Optional, Sequence

from audio.buffer import PCMBuffer
from audio.effects import AudioEffectRenderer
from audio.mixer import AudioMixer, AudioTrackData
from audio.scheduling import yield_now
from audio.settings import AudioExportSettings, MixerSettings
from audio.time_stretch import TimeStretchProcessor
from timeline.keyframes import sorted_keyframes
from timeline.models import SPEED_PROPERTY, TimelineClip, TimelineSnapshot, TimelineTrack

from .encoder import AudioEncoder, EncodedAudioResult, EncoderProgress, EncoderSettings, SoundFileEncoder
from .errors import AudioEncodingError, AudioExtractionError
from .extractor import AudioExtractor, SoundFileExtractor

logger = logging.getLogger(__name__)


class ExportPhase(str, Enum):
    EXTRACTING = "extracting"
    PROCESSING = "processing"
    EFFECTS = "effects"
    MIXING = "mixing"
    ENCODING = "encoding"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ExportProgress:
    phase: ExportPhase
    percent: float
    current_clip: Optional[str] = None
    message: Optional[str] = None


ExportProgressCallback = Callable[[ExportProgress], None]
EncoderFactory = Callable[[], AudioEncoder]


def select_audio_clips(
    snapshot: TimelineSnapshot, start_time: float, end_time: float
) -> List[TimelineClip]:
    """Return the clips that contribute audio to ``[start_time, end_time)``.

    Nested compositions count when they carry a mixdown and their track is
    visible; plain clips count when their source is audio and their track is
    not muted.
    """

    selected: List[TimelineClip] = []
    for clip in snapshot.clips:
        if clip.end_time <= start_time or clip.start_time >= end_time:
            continue
        track = snapshot.track(clip.track_id)
        if clip.is_composition and clip.mixdown_buffer is not None and clip.has_mixdown_audio:
            if track is not None and not track.visible:
                continue
            selected.append(clip)
            continue
        if clip.source is None or clip.source.handle is None:
            continue
        if clip.source.type != "audio":
            continue
        if track is not None and track.muted:
            continue
        selected.append(clip)
    return selected


class AudioExportPipeline:
    """Render a timeline window to a mixed buffer and optionally encode it."""

    def __init__(
        self,
        settings: AudioExportSettings | None = None,
        *,
        extractor: AudioExtractor | None = None,
        encoder_factory: EncoderFactory | None = None,
        mixer: AudioMixer | None = None,
        time_stretch: TimeStretchProcessor | None = None,
        effect_renderer: AudioEffectRenderer | None = None,
    ) -> None:
        self._settings = settings or AudioExportSettings()
        self._extractor = extractor or SoundFileExtractor()
        self._encoder_factory: EncoderFactory = encoder_factory or SoundFileEncoder
        self._mixer = mixer or AudioMixer(
            MixerSettings(sample_rate=self._settings.sample_rate, normalize=self._settings.normalize)
        )
        self._time_stretch = time_stretch or TimeStretchProcessor()
        self._effect_renderer = effect_renderer or AudioEffectRenderer()
        self._cancelled = False

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @property
    def settings(self) -> AudioExportSettings:
        return self._settings.model_copy()

    def update_settings(self, **changes: object) -> AudioExportSettings:
        self._settings = AudioExportSettings.model_validate({**self._settings.model_dump(), **changes})
        self._mixer.update_settings(sample_rate=self._settings.sample_rate, normalize=self._settings.normalize)
        return self.settings

    def is_supported(self, encoder: AudioEncoder | None = None) -> bool:
        """Return whether any preferred codec can be produced."""

        encoder = encoder or self._encoder_factory()
        return encoder.negotiate(self._settings.codec_preferences) is not None

    def cancel(self) -> None:
        self._cancelled = True
        logger.info("Export cancelled")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def export_audio(
        self,
        timeline: TimelineSnapshot,
        start_time: float,
        end_time: float,
        on_progress: ExportProgressCallback | None = None,
    ) -> Optional[EncodedAudioResult]:
        self._cancelled = False
        logger.info(
            "Starting export: %.2fs - %.2fs (%.2fs)", start_time, end_time, end_time - start_time
        )
        try:
            mixed = await self._render_mix(timeline, start_time, end_time, on_progress)
            if mixed is None or self._cancelled:
                return None
            _emit(on_progress, ExportPhase.ENCODING, 0, message="Encoding audio...")
            result = await self._encode(mixed, on_progress)
            if result is None or self._cancelled:
                return None
        except Exception:
            logger.exception("Export failed")
            raise
        finally:
            self._extractor.clear_cache()

        _emit(on_progress, ExportPhase.COMPLETE, 100, message="Audio export complete")
        logger.info("Export complete: %d chunks", len(result.chunks))
        return result

    async def export_raw_audio(
        self,
        timeline: TimelineSnapshot,
        start_time: float,
        end_time: float,
        on_progress: ExportProgressCallback | None = None,
    ) -> Optional[PCMBuffer]:
        self._cancelled = False
        logger.info("Starting raw audio export: %.2fs - %.2fs", start_time, end_time)
        try:
            mixed = await self._render_mix(timeline, start_time, end_time, on_progress)
        except Exception:
            logger.exception("Raw audio export failed")
            raise
        finally:
            self._extractor.clear_cache()

        if mixed is None:
            return None
        _emit(on_progress, ExportPhase.COMPLETE, 100, message="Audio mixing complete")
        logger.info(
            "Raw audio export complete: %.2fs, %dch", mixed.duration, mixed.number_of_channels
        )
        return mixed

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _render_mix(
        self,
        timeline: TimelineSnapshot,
        start_time: float,
        end_time: float,
        on_progress: ExportProgressCallback | None,
    ) -> Optional[PCMBuffer]:
        clips = select_audio_clips(timeline, start_time, end_time)
        if not clips:
            logger.info("No audio clips found in export range")
            return None
        logger.info("Found %d clips with audio", len(clips))

        _emit(on_progress, ExportPhase.EXTRACTING, 0, message="Extracting audio...")
        extracted = await self._extract_all(clips, on_progress)
        if self._cancelled:
            return None
        await yield_now()

        _emit(on_progress, ExportPhase.PROCESSING, 0, message="Processing speed changes...")
        processed = await self._process_all_speed(clips, extracted, timeline, on_progress)
        if self._cancelled:
            return None
        await yield_now()

        _emit(on_progress, ExportPhase.EFFECTS, 0, message="Applying effects...")
        rendered = await self._render_all_effects(clips, processed, timeline, on_progress)
        if self._cancelled:
            return None
        await yield_now()

        _emit(on_progress, ExportPhase.MIXING, 0, message="Mixing tracks...")
        track_data = prepare_track_data(clips, rendered, timeline.tracks, start_time)
        mixed = self._mixer.mix_tracks(track_data, end_time - start_time)
        if self._cancelled:
            return None
        return mixed

    async def _extract_all(
        self, clips: Sequence[TimelineClip], on_progress: ExportProgressCallback | None
    ) -> Dict[str, PCMBuffer]:
        buffers: Dict[str, PCMBuffer] = {}
        for index, clip in enumerate(clips):
            if self._cancelled:
                break
            _emit(
                on_progress,
                ExportPhase.EXTRACTING,
                round(index / len(clips) * 100),
                current_clip=clip.name,
                message=f"Extracting: {clip.name}",
            )
            try:
                if clip.is_composition and clip.mixdown_buffer is not None:
                    logger.debug("Using mixdown buffer for nested comp %s", clip.name)
                    source = clip.mixdown_buffer
                elif clip.source is not None and clip.source.handle is not None:
                    cache_key = clip.source.media_file_id or clip.id
                    source = await asyncio.to_thread(self._extractor.extract, clip.source.handle, cache_key)
                else:
                    logger.warning("No audio source for clip %s", clip.id)
                    continue
                buffers[clip.id] = self._extractor.trim(source, clip.in_point, clip.out_point)
            except AudioExtractionError as exc:
                logger.error("Failed to extract audio from %s: %s", clip.name, exc)
                buffers[clip.id] = self._extractor.silent_buffer(clip.duration)
            except Exception:
                logger.exception("Unexpected error extracting audio from %s", clip.name)
                buffers[clip.id] = self._extractor.silent_buffer(clip.duration)
            await yield_now()
        return buffers

    async def _process_all_speed(
        self,
        clips: Sequence[TimelineClip],
        buffers: Dict[str, PCMBuffer],
        timeline: TimelineSnapshot,
        on_progress: ExportProgressCallback | None,
    ) -> Dict[str, PCMBuffer]:
        processed: Dict[str, PCMBuffer] = {}
        for index, clip in enumerate(clips):
            buffer = buffers.get(clip.id)
            if buffer is None or self._cancelled:
                continue
            _emit(
                on_progress,
                ExportPhase.PROCESSING,
                round(index / len(clips) * 100),
                current_clip=clip.name,
                message=f"Processing: {clip.name}",
            )
            keyframes = timeline.keyframes_for(clip.id)
            if sorted_keyframes(keyframes, SPEED_PROPERTY):
                buffer = await self._time_stretch.process_with_keyframes(
                    buffer, keyframes, clip.speed, clip.duration, clip.preserves_pitch
                )
            elif abs(clip.speed - 1.0) > 0.01:
                buffer = self._time_stretch.process_constant_speed(
                    buffer, abs(clip.speed), clip.preserves_pitch
                )
            processed[clip.id] = buffer
            await yield_now()
        return processed

    async def _render_all_effects(
        self,
        clips: Sequence[TimelineClip],
        buffers: Dict[str, PCMBuffer],
        timeline: TimelineSnapshot,
        on_progress: ExportProgressCallback | None,
    ) -> Dict[str, PCMBuffer]:
        rendered: Dict[str, PCMBuffer] = {}
        for index, clip in enumerate(clips):
            buffer = buffers.get(clip.id)
            if buffer is None or self._cancelled:
                continue
            _emit(
                on_progress,
                ExportPhase.EFFECTS,
                round(index / len(clips) * 100),
                current_clip=clip.name,
                message=f"Effects: {clip.name}",
            )
            rendered[clip.id] = self._effect_renderer.render_effects(
                buffer, clip.effects, timeline.keyframes_for(clip.id), clip.duration
            )
            await yield_now()
        return rendered

    async def _encode(
        self, buffer: PCMBuffer, on_progress: ExportProgressCallback | None
    ) -> Optional[EncodedAudioResult]:
        stereo = self._extractor.to_stereo(buffer)
        if stereo.sample_rate != self._settings.sample_rate:
            stereo = self._extractor.resample(stereo, self._settings.sample_rate)

        encoder = self._encoder_factory()
        codec = encoder.negotiate(self._settings.codec_preferences)
        if codec is None:
            raise AudioEncodingError(
                f"None of the codecs {', '.join(self._settings.codec_preferences)} can be encoded"
            )
        encoder_settings = EncoderSettings(
            codec=codec,
            sample_rate=self._settings.sample_rate,
            number_of_channels=2,
            bitrate=self._settings.bitrate,
        )
        if not encoder.configure(encoder_settings):
            raise AudioEncodingError(f"Encoder rejected {codec} at {self._settings.sample_rate}Hz")

        def forward(progress: EncoderProgress) -> None:
            _emit(on_progress, ExportPhase.ENCODING, progress.percent, message=f"Encoding: {progress.percent}%")

        await encoder.encode(stereo, forward, should_stop=lambda: self._cancelled)
        result = encoder.finalize()
        if self._cancelled:
            logger.info("Discarding encoded output after cancel")
            return None
        return result


def prepare_track_data(
    clips: Sequence[TimelineClip],
    buffers: Dict[str, PCMBuffer],
    tracks: Sequence[TimelineTrack],
    export_start: float,
) -> List[AudioTrackData]:
    """Place processed clips relative to the export window.

    Solo is resolved across audio tracks only; clips whose track is missing
    are dropped.
    """

    by_id = {track.id: track for track in tracks}
    has_solo = any(track.type == "audio" and track.solo for track in tracks)
    track_data: List[AudioTrackData] = []
    for clip in clips:
        buffer = buffers.get(clip.id)
        if buffer is None:
            continue
        track = by_id.get(clip.track_id)
        if track is None:
            continue
        if track.muted or (has_solo and not track.solo):
            continue
        track_data.append(
            AudioTrackData(
                clip_id=clip.id,
                buffer=buffer,
                start_time=clip.start_time - export_start,
                track_id=clip.track_id,
                track_muted=track.muted,
                track_solo=track.solo,
                clip_volume=clip.volume,
            )
        )
    return track_data


def _emit(
    callback: ExportProgressCallback | None,
    phase: ExportPhase,
    percent: float,
    *,
    current_clip: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    if callback is not None:
        callback(ExportProgress(phase, percent, current_clip, message))


__all__ = [
    "AudioExportPipeline",
    "ExportPhase",
    "ExportProgress",
    "prepare_track_data",
    "select_audio_clips",
]
