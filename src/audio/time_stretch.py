"""Speed changes for clip audio, with optional pitch preservation.

Constant speeds are handled in one pass.  Keyframed speed curves are
rendered in 100 ms segments: each segment reads the stretch of source audio
the speed integral says it consumes, stretches or resamples it, and is fitted
into its exact slot in the output so the result always spans the clip's
timeline duration.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Callable, Dict, Iterable, Optional, Sequence

import librosa
import numpy as np

from timeline.keyframes import sorted_keyframes, speed_at_time
from timeline.models import SPEED_PROPERTY, Keyframe

from .buffer import PCMBuffer, frames_for_duration
from .scheduling import YieldPoint
from .settings import TimeStretchSettings

logger = logging.getLogger(__name__)

MIN_SPEED = 0.1
MAX_SPEED = 10.0
SEGMENT_DURATION = 0.1
INTEGRATION_STEPS = 20
FFT_SIZES: Dict[str, int] = {"fast": 1024, "normal": 2048, "high": 4096}


@dataclass(frozen=True)
class TimeStretchProgress:
    processed_samples: int
    total_samples: int
    percent: int
    current_speed: float


TimeStretchProgressCallback = Callable[[TimeStretchProgress], None]


# ----------------------------------------------------------------------
# Sample-level helpers
# ----------------------------------------------------------------------


def integrate_speed(
    keyframes: Iterable[Keyframe],
    start_time: float,
    end_time: float,
    default_speed: float,
    steps: int = INTEGRATION_STEPS,
) -> float:
    """Return the source seconds consumed between two clip-local times.

    Uses the trapezoidal rule over ``steps`` equal sub-intervals.  A
    zero-width interval consumes nothing.
    """

    speed_keyframes = sorted_keyframes(keyframes, SPEED_PROPERTY)
    if not speed_keyframes:
        return (end_time - start_time) * default_speed
    if end_time == start_time:
        return 0.0

    dt = (end_time - start_time) / steps
    integral = 0.0
    for index in range(steps):
        t0 = start_time + index * dt
        t1 = start_time + (index + 1) * dt
        s0 = speed_at_time(speed_keyframes, t0, default_speed)
        s1 = speed_at_time(speed_keyframes, t1, default_speed)
        integral += (s0 + s1) / 2.0 * dt
    return integral


def resample_for_speed(samples: np.ndarray, speed: float) -> np.ndarray:
    """Linear-interpolation resample of ``(frames, channels)`` for *speed*.

    Output frame ``i`` is read at source position ``i * speed``; reads past
    the end use the last available neighbour, or silence.
    """

    frames = samples.shape[0]
    output_length = int(math.ceil(frames / speed))
    if frames == 0 or output_length == 0:
        return np.zeros((output_length, samples.shape[1]), dtype=np.float32)

    positions = np.arange(output_length, dtype=np.float64) * speed
    lower = np.floor(positions).astype(np.int64)
    frac = (positions - lower)[:, None]

    padded = np.concatenate([samples, np.zeros((1, samples.shape[1]), dtype=samples.dtype)])
    s1 = padded[np.minimum(lower, frames)]
    upper = lower + 1
    s2 = np.where((upper < frames)[:, None], padded[np.minimum(upper, frames)], s1)
    return (s1 + (s2 - s1) * frac).astype(np.float32)


def resample_to_length(samples: np.ndarray, length: int) -> np.ndarray:
    """Nearest-index resample of ``(frames, channels)`` to exactly *length*."""

    if length <= 0 or samples.shape[0] == 0:
        return np.zeros((max(0, length), samples.shape[1]), dtype=np.float32)
    indices = (np.arange(length, dtype=np.int64) * samples.shape[0]) // length
    return samples[indices]


def _stretch_channels(samples: np.ndarray, stretch: float, fft_size: int) -> np.ndarray:
    # librosa works on (channels, frames) and stretches by 1 / rate.
    stretched = librosa.effects.time_stretch(
        np.ascontiguousarray(samples.T, dtype=np.float32),
        rate=1.0 / stretch,
        n_fft=fft_size,
        hop_length=fft_size // 4,
    )
    return np.ascontiguousarray(stretched.T, dtype=np.float32)


class PhaseVocoderStretch:
    """Streaming-style tempo/pitch processor over librosa's phase vocoder.

    Samples are queued with :meth:`put_samples`, rendered by :meth:`process`
    and drained with :meth:`receive_samples`.  After ``process()`` exactly
    ``ceil(input_frames / tempo)`` frames are available.  Instances are not
    reusable across unrelated inputs.
    """

    def __init__(
        self,
        sample_rate: int,
        channels: int,
        tempo: float,
        pitch: float = 1.0,
        fft_size: int = 2048,
    ) -> None:
        if tempo <= 0.0 or pitch <= 0.0:
            raise ValueError("Tempo and pitch must be positive")
        self.sample_rate = sample_rate
        self.channels = channels
        self.tempo = tempo
        self.pitch = pitch
        self.fft_size = fft_size
        self._pending: list[np.ndarray] = []
        self._output = np.zeros((0, channels), dtype=np.float32)

    @property
    def available_frames(self) -> int:
        return int(self._output.shape[0])

    def put_samples(self, interleaved: np.ndarray) -> None:
        data = np.asarray(interleaved, dtype=np.float32).reshape(-1, self.channels)
        self._pending.append(data)

    def process(self) -> None:
        if not self._pending:
            return
        source = np.concatenate(self._pending, axis=0)
        self._pending.clear()
        target = int(math.ceil(source.shape[0] / self.tempo))

        if source.shape[0] < self.fft_size:
            rendered = resample_for_speed(source, self.tempo)
        else:
            # Stretch by pitch/tempo, then resample by pitch back to the tempo length.
            stretch = self.pitch / self.tempo
            rendered = _stretch_channels(source, stretch, self.fft_size)
            if self.pitch != 1.0:
                rendered = resample_for_speed(rendered, self.pitch)

        fitted = np.zeros((target, self.channels), dtype=np.float32)
        count = min(target, rendered.shape[0])
        fitted[:count] = rendered[:count]
        self._output = np.concatenate([self._output, fitted], axis=0)

    def receive_samples(self, max_frames: int) -> np.ndarray:
        """Pop up to *max_frames* interleaved frames from the output queue."""

        count = min(max_frames, self.available_frames)
        chunk = self._output[:count]
        self._output = self._output[count:]
        return chunk.reshape(-1)


def stretch_samples(samples: np.ndarray, speed: float, sample_rate: int, fft_size: int) -> np.ndarray:
    """Pitch-preserving tempo change of ``(frames, channels)`` by *speed*."""

    channels = samples.shape[1]
    engine = PhaseVocoderStretch(sample_rate, channels, tempo=speed, pitch=1.0, fft_size=fft_size)
    engine.put_samples(samples.reshape(-1))
    engine.process()
    chunks = []
    while engine.available_frames > 0:
        chunks.append(engine.receive_samples(4096).reshape(-1, channels))
    if not chunks:
        return np.zeros((0, channels), dtype=np.float32)
    return np.concatenate(chunks, axis=0)


# ----------------------------------------------------------------------
# Processor
# ----------------------------------------------------------------------


class TimeStretchProcessor:
    """Apply constant or keyframed speed to a clip's audio."""

    def __init__(self, settings: TimeStretchSettings | None = None) -> None:
        self._settings = settings or TimeStretchSettings()

    @property
    def settings(self) -> TimeStretchSettings:
        return self._settings.model_copy()

    def update_settings(self, **changes: object) -> TimeStretchSettings:
        self._settings = TimeStretchSettings.model_validate({**self._settings.model_dump(), **changes})
        return self.settings

    @property
    def fft_size(self) -> int:
        return FFT_SIZES[self._settings.quality]

    def process_constant_speed(
        self,
        buffer: PCMBuffer,
        speed: float,
        preserve_pitch: Optional[bool] = None,
    ) -> PCMBuffer:
        should_preserve = self._settings.preserve_pitch if preserve_pitch is None else preserve_pitch
        clamped = max(MIN_SPEED, min(MAX_SPEED, speed))
        logger.debug("Processing constant speed: %sx, preserve_pitch: %s", clamped, should_preserve)

        if abs(clamped - 1.0) < 0.001:
            return buffer
        if not should_preserve:
            return PCMBuffer(resample_for_speed(buffer.samples, clamped), buffer.sample_rate)
        stretched = stretch_samples(buffer.samples, clamped, buffer.sample_rate, self.fft_size)
        return PCMBuffer(stretched, buffer.sample_rate)

    async def process_with_keyframes(
        self,
        buffer: PCMBuffer,
        keyframes: Sequence[Keyframe],
        default_speed: float,
        clip_duration: float,
        preserve_pitch: Optional[bool] = None,
        on_progress: TimeStretchProgressCallback | None = None,
    ) -> PCMBuffer:
        should_preserve = self._settings.preserve_pitch if preserve_pitch is None else preserve_pitch
        speed_keyframes = sorted_keyframes(keyframes, SPEED_PROPERTY)

        if not speed_keyframes:
            return self.process_constant_speed(buffer, default_speed, should_preserve)
        if len(speed_keyframes) == 1:
            return self.process_constant_speed(buffer, speed_keyframes[0].value, should_preserve)

        logger.debug("Processing with %d speed keyframes", len(speed_keyframes))
        return await self._process_variable_speed(
            buffer, speed_keyframes, default_speed, clip_duration, should_preserve, on_progress
        )

    async def _process_variable_speed(
        self,
        buffer: PCMBuffer,
        speed_keyframes: Sequence[Keyframe],
        default_speed: float,
        clip_duration: float,
        preserve_pitch: bool,
        on_progress: TimeStretchProgressCallback | None,
    ) -> PCMBuffer:
        sample_rate = buffer.sample_rate
        channels = buffer.number_of_channels
        total = frames_for_duration(clip_duration, sample_rate)
        output = np.zeros((total, channels), dtype=np.float32)
        segment_count = int(math.ceil(clip_duration / SEGMENT_DURATION)) if clip_duration > 0 else 0
        yield_point = YieldPoint(every=10)

        source_position = 0.0
        for segment in range(segment_count):
            seg_start = segment * SEGMENT_DURATION
            seg_end = min((segment + 1) * SEGMENT_DURATION, clip_duration)
            speed = speed_at_time(speed_keyframes, (seg_start + seg_end) / 2.0, default_speed)
            abs_speed = abs(speed)

            source_start = source_position
            source_position += integrate_speed(speed_keyframes, seg_start, seg_end, default_speed)
            source_end = source_position

            out_start = int(math.floor(seg_start * sample_rate))
            out_end = int(math.floor(seg_end * sample_rate))
            target_length = min(out_end, total) - out_start

            source = self._extract_segment(
                buffer,
                max(0.0, min(source_start, source_end)),
                min(buffer.duration, max(source_start, source_end)),
            )
            if source.shape[0] > 0 and target_length > 0:
                if abs(abs_speed - 1.0) > 0.01 and abs_speed > 0.0:
                    if preserve_pitch:
                        source = stretch_samples(source, abs_speed, sample_rate, self.fft_size)
                    else:
                        source = resample_for_speed(source, abs_speed)
                if speed < 0:
                    source = source[::-1]
                output[out_start : out_start + target_length] = resample_to_length(source, target_length)

            if on_progress:
                on_progress(
                    TimeStretchProgress(
                        processed_samples=out_start + max(0, target_length),
                        total_samples=total,
                        percent=int(round((segment + 1) / segment_count * 100)),
                        current_speed=speed,
                    )
                )
            await yield_point.tick()

        return PCMBuffer(output, sample_rate)

    @staticmethod
    def _extract_segment(buffer: PCMBuffer, start_time: float, end_time: float) -> np.ndarray:
        start = int(math.floor(start_time * buffer.sample_rate))
        end = int(math.ceil(end_time * buffer.sample_rate))
        length = max(0, min(end - start, buffer.length - start))
        return buffer.samples[start : start + length]


__all__ = [
    "FFT_SIZES",
    "PhaseVocoderStretch",
    "TimeStretchProcessor",
    "TimeStretchProgress",
    "integrate_speed",
    "resample_for_speed",
    "resample_to_length",
    "speed_at_time",
    "stretch_samples",
]
