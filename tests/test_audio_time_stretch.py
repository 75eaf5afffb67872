import math

import numpy as np
import pytest
from pydantic import ValidationError

from audio.time_stretch import (
    PhaseVocoderStretch,
    TimeStretchProcessor,
    integrate_speed,
    resample_for_speed,
    resample_to_length,
)
from timeline.models import Keyframe

from conftest import make_ramp, make_sine


def _speed(time: float, value: float, easing: str = "linear") -> Keyframe:
    return Keyframe(property="speed", time=time, value=value, easing=easing)


def test_integrate_speed_for_constant_keyframe() -> None:
    assert integrate_speed([_speed(0.0, 2.0)], 0.0, 5.0, 1.0) == pytest.approx(10.0)
    assert integrate_speed([_speed(0.0, 2.0)], 1.0, 1.0, 1.0) == 0.0
    assert integrate_speed([], 0.0, 2.0, 1.5) == pytest.approx(3.0)


def test_integrate_speed_follows_linear_ramp() -> None:
    keyframes = [_speed(0.0, 1.0), _speed(1.0, 3.0)]
    assert integrate_speed(keyframes, 0.0, 1.0, 1.0) == pytest.approx(2.0)


def test_resample_for_speed_output_length() -> None:
    samples = np.ones((1_000, 2), dtype=np.float32)
    assert resample_for_speed(samples, 3.0).shape == (334, 2)
    assert resample_for_speed(samples, 0.5).shape == (2_000, 2)
    assert resample_for_speed(np.zeros((0, 2), dtype=np.float32), 2.0).shape == (0, 2)


def test_resample_for_speed_interpolates_between_frames() -> None:
    samples = np.arange(4, dtype=np.float32)[:, None]
    np.testing.assert_allclose(resample_for_speed(samples, 0.5)[:, 0], [0, 0.5, 1, 1.5, 2, 2.5, 3, 3])


def test_resample_to_length_is_exact() -> None:
    samples = np.arange(10, dtype=np.float32)[:, None]
    assert resample_to_length(samples, 7).shape == (7, 1)
    assert resample_to_length(samples, 0).shape == (0, 1)


def test_phase_vocoder_emits_tempo_scaled_frame_count() -> None:
    tone = make_sine(duration=1.0)
    engine = PhaseVocoderStretch(tone.sample_rate, 2, tempo=1.5)
    engine.put_samples(tone.samples.reshape(-1))
    engine.process()
    assert engine.available_frames == math.ceil(tone.length / 1.5)

    first = engine.receive_samples(1_000)
    assert first.shape == (2_000,)
    assert engine.available_frames == math.ceil(tone.length / 1.5) - 1_000


def test_phase_vocoder_rejects_non_positive_tempo() -> None:
    with pytest.raises(ValueError):
        PhaseVocoderStretch(48_000, 2, tempo=0.0)


def test_constant_speed_near_one_returns_input(sine_buffer) -> None:
    processor = TimeStretchProcessor()
    assert processor.process_constant_speed(sine_buffer, 1.0005) is sine_buffer


def test_constant_speed_changes_length(sine_buffer) -> None:
    processor = TimeStretchProcessor()
    faster = processor.process_constant_speed(sine_buffer, 2.0, preserve_pitch=False)
    slower = processor.process_constant_speed(sine_buffer, 0.5, preserve_pitch=True)
    assert faster.length == 24_000
    assert slower.length == 96_000


def test_constant_speed_is_clamped_to_supported_range() -> None:
    processor = TimeStretchProcessor()
    buffer = make_ramp(1_000)
    clamped = processor.process_constant_speed(buffer, 50.0, preserve_pitch=False)
    assert clamped.length == 100


def test_quality_setting_selects_fft_size() -> None:
    processor = TimeStretchProcessor()
    assert processor.fft_size == 2048
    processor.update_settings(quality="high")
    assert processor.fft_size == 4096
    with pytest.raises(ValidationError):
        processor.update_settings(quality="ultra")


@pytest.mark.asyncio
async def test_single_keyframe_uses_constant_speed() -> None:
    processor = TimeStretchProcessor()
    buffer = make_ramp(1_000)
    result = await processor.process_with_keyframes(buffer, [_speed(0.0, 2.0)], 1.0, 0.5, preserve_pitch=False)
    assert result.length == 500


@pytest.mark.asyncio
async def test_variable_speed_fills_clip_duration() -> None:
    processor = TimeStretchProcessor()
    buffer = make_ramp(3_000)
    updates = []

    result = await processor.process_with_keyframes(
        buffer,
        [_speed(0.0, 1.0), _speed(1.0, 2.0)],
        1.0,
        1.0,
        preserve_pitch=False,
        on_progress=updates.append,
    )

    assert result.length == 1_000
    assert result.sample_rate == 1_000
    assert len(updates) == 10
    assert updates[-1].percent == 100
    assert updates[-1].processed_samples == updates[-1].total_samples == 1_000
    # Faster playback consumes source material quicker than real time.
    assert result.samples[-1, 0] > result.samples[0, 0]


@pytest.mark.asyncio
async def test_negative_speed_plays_segments_backwards() -> None:
    processor = TimeStretchProcessor()
    buffer = make_ramp(1_000)

    result = await processor.process_with_keyframes(
        buffer,
        [_speed(0.0, 1.0, "step"), _speed(0.5, -1.0)],
        1.0,
        1.0,
        preserve_pitch=False,
    )

    forward = result.samples[0:100, 0]
    backward = result.samples[500:600, 0]
    assert np.all(np.diff(forward) >= 0.0)
    assert np.all(np.diff(backward) <= 0.0)
    assert backward[0] > backward[-1]


@pytest.mark.asyncio
async def test_variable_speed_with_pitch_preservation_keeps_length() -> None:
    processor = TimeStretchProcessor()
    tone = make_sine(duration=2.0, sample_rate=8_000)

    result = await processor.process_with_keyframes(
        tone,
        [_speed(0.0, 0.5), _speed(1.0, 1.5)],
        1.0,
        1.0,
    )

    assert result.length == 8_000
    assert result.number_of_channels == 2
