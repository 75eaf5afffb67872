import math

import numpy as np
import pytest

from audio.metrics import (
    db_to_linear,
    integrated_lufs,
    linear_to_db,
    peak_dbfs,
    rms_dbfs,
    rms_per_channel,
)

from conftest import make_sine


def test_db_conversions_are_inverse() -> None:
    assert db_to_linear(0.0) == pytest.approx(1.0)
    assert db_to_linear(-6.0) == pytest.approx(0.501, abs=1e-3)
    assert linear_to_db(db_to_linear(-12.5)) == pytest.approx(-12.5)
    assert linear_to_db(0.0) == -math.inf


def test_rms_per_channel_reports_each_channel() -> None:
    buffer = np.stack([np.full(8, 0.5), np.zeros(8)], axis=1).astype(np.float32)
    np.testing.assert_allclose(rms_per_channel(buffer), [0.5, 0.0])


def test_sine_rms_sits_three_db_under_peak() -> None:
    tone = make_sine(amplitude=1.0).samples
    assert peak_dbfs(tone) == pytest.approx(0.0, abs=1e-3)
    assert rms_dbfs(tone) == pytest.approx(-3.01, abs=0.01)


def test_empty_and_silent_buffers_are_negative_infinity() -> None:
    empty = np.zeros((0, 2), dtype=np.float32)
    assert peak_dbfs(empty) == -math.inf
    assert rms_dbfs(empty) == -math.inf
    assert integrated_lufs(np.zeros((480, 2), dtype=np.float32), sample_rate=48_000) == -math.inf


def test_integrated_lufs_tracks_level_changes() -> None:
    loud = make_sine(frequency=1_000.0, amplitude=0.5).samples
    quiet = make_sine(frequency=1_000.0, amplitude=0.25).samples
    difference = integrated_lufs(loud, sample_rate=48_000) - integrated_lufs(quiet, sample_rate=48_000)
    assert difference == pytest.approx(6.02, abs=0.05)
