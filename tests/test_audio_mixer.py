import math

import numpy as np
import pytest

from audio.buffer import PCMBuffer
from audio.mixer import (
    AudioMixer,
    AudioTrackData,
    MeterReading,
    get_active_tracks,
    normalization_gain,
    normalize_in_place,
)
from audio.settings import MixerSettings


def _constant(value: float, frames: int, rate: int = 1_000, channels: int = 1) -> PCMBuffer:
    return PCMBuffer(np.full((frames, channels), value, dtype=np.float32), rate)


def _track(clip_id: str, buffer: PCMBuffer | None, start: float = 0.0, **kwargs) -> AudioTrackData:
    return AudioTrackData(clip_id=clip_id, buffer=buffer, start_time=start, track_id=f"t-{clip_id}", **kwargs)


def _mixer(**overrides) -> AudioMixer:
    return AudioMixer(MixerSettings(sample_rate=1_000, number_of_channels=1, **overrides))


def test_peak_level_in_dbfs() -> None:
    assert AudioMixer.get_peak_level(_constant(1.0, 8)) == pytest.approx(0.0)
    assert AudioMixer.get_peak_level(_constant(-0.5, 8)) == pytest.approx(-6.0206, abs=1e-3)


def test_rms_matches_peak_for_constant_signal() -> None:
    reading = AudioMixer.meter(_constant(0.25, 16))
    assert isinstance(reading, MeterReading)
    assert reading.rms_db == pytest.approx(reading.peak_db)


def test_rms_never_exceeds_peak(sine_buffer) -> None:
    assert AudioMixer.get_rms_level(sine_buffer) <= AudioMixer.get_peak_level(sine_buffer)


def test_silence_reports_negative_infinity() -> None:
    silent = _constant(0.0, 8)
    empty = PCMBuffer(np.zeros((0, 2), dtype=np.float32), 48_000)
    assert AudioMixer.get_peak_level(silent) == -math.inf
    assert AudioMixer.get_rms_level(silent) == -math.inf
    assert AudioMixer.get_peak_level(empty) == -math.inf


def test_solo_excludes_other_tracks_and_mute_always_wins() -> None:
    tracks = [
        _track("a", _constant(0.1, 4), track_solo=True),
        _track("b", _constant(0.1, 4)),
        _track("c", _constant(0.1, 4), track_solo=True, track_muted=True),
        _track("d", None, track_solo=True),
    ]
    assert [track.clip_id for track in get_active_tracks(tracks)] == ["a"]


def test_without_solo_only_muted_tracks_drop() -> None:
    tracks = [_track("a", _constant(0.1, 4)), _track("b", _constant(0.1, 4), track_muted=True)]
    assert [track.clip_id for track in get_active_tracks(tracks)] == ["a"]


def test_normalization_gain_only_attenuates() -> None:
    assert normalization_gain(2.0, -1.0) == pytest.approx(10 ** (-1 / 20) / 2.0)
    assert normalization_gain(0.5, -1.0) == 1.0
    assert normalization_gain(0.0, -1.0) == 1.0


def test_normalize_in_place_scales_peak_to_headroom() -> None:
    buffer = _constant(1.5, 4)
    gain = normalize_in_place(buffer, -3.0)
    assert gain < 1.0
    assert float(np.max(np.abs(buffer.samples))) == pytest.approx(10 ** (-3 / 20), rel=1e-6)


def test_overlapping_clips_sum_at_their_offsets() -> None:
    mixer = _mixer()
    tracks = [_track("a", _constant(0.25, 4)), _track("b", _constant(0.5, 4), start=0.002)]

    mixed = mixer.mix_tracks(tracks, 0.006)

    np.testing.assert_allclose(mixed.channel(0), [0.25, 0.25, 0.75, 0.75, 0.5, 0.5])


def test_clip_volume_is_applied_and_clamped() -> None:
    mixer = _mixer()
    tracks = [
        _track("a", _constant(0.2, 2), clip_volume=0.5),
        _track("b", _constant(0.1, 2), start=0.002, clip_volume=5.0),
    ]
    mixed = mixer.mix_tracks(tracks, 0.004)
    np.testing.assert_allclose(mixed.channel(0), [0.1, 0.1, 0.2, 0.2], rtol=1e-6)


def test_mix_resamples_and_conforms_tracks() -> None:
    mixer = AudioMixer(MixerSettings(sample_rate=1_000, number_of_channels=2))
    mixed = mixer.mix_tracks([_track("a", _constant(0.3, 5, rate=500))], 0.01)
    assert mixed.samples.shape == (10, 2)
    np.testing.assert_allclose(mixed.samples, np.full((10, 2), 0.3), atol=1e-6)


def test_no_active_tracks_returns_silence() -> None:
    mixer = AudioMixer(MixerSettings(sample_rate=1_000, number_of_channels=2))
    mixed = mixer.mix_tracks([_track("a", _constant(0.3, 5), track_muted=True)], 0.5)
    assert mixed.samples.shape == (500, 2)
    assert not mixed.samples.any()


def test_normalize_setting_limits_mix_peak() -> None:
    mixer = _mixer(normalize=True, headroom=-1.0)
    updates = []
    tracks = [_track("a", _constant(0.8, 4)), _track("b", _constant(0.8, 4))]

    mixed = mixer.mix_tracks(tracks, 0.004, on_progress=updates.append)

    assert float(np.max(np.abs(mixed.samples))) == pytest.approx(10 ** (-1 / 20), rel=1e-5)
    assert updates[0].phase == "preparing"
    assert updates[-1].percent == 100.0
    assert "normalizing" in [update.phase for update in updates]


def test_update_settings_validates_changes() -> None:
    mixer = AudioMixer()
    assert mixer.update_settings(normalize=True).normalize is True
    with pytest.raises(ValueError):
        mixer.update_settings(headroom=3.0)


def test_level_literals_for_short_buffers() -> None:
    mixed = PCMBuffer(np.array([1.0, 0.0, -0.5, 0.3, 0.0], dtype=np.float32), 48_000)
    peaked = PCMBuffer(np.array([0.0, 0.5, 1.0, -0.5, 0.0], dtype=np.float32), 48_000)
    half = PCMBuffer(np.array([0.5, -0.25, 0.1], dtype=np.float32), 48_000)
    assert AudioMixer.get_rms_level(mixed) <= AudioMixer.get_peak_level(mixed)
    assert AudioMixer.get_peak_level(peaked) == pytest.approx(0.0, abs=0.1)
    assert AudioMixer.get_peak_level(half) == pytest.approx(-6.02, abs=0.01)


def test_normalization_attenuates_hot_mixes_only() -> None:
    assert normalization_gain(0.95, -1.0) < 1.0
    assert normalization_gain(0.3, -1.0) >= 1.0
