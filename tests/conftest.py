import sys
from pathlib import Path

import numpy as np
import pytest

from audio.buffer import PCMBuffer

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def make_sine(
    frequency: float = 440.0,
    duration: float = 1.0,
    sample_rate: int = 48_000,
    channels: int = 2,
    amplitude: float = 0.5,
) -> PCMBuffer:
    t = np.arange(int(round(duration * sample_rate)), dtype=np.float64) / sample_rate
    tone = (amplitude * np.sin(2.0 * np.pi * frequency * t)).astype(np.float32)
    return PCMBuffer(np.repeat(tone[:, None], channels, axis=1), sample_rate)


def make_ramp(frames: int, sample_rate: int = 1_000, channels: int = 1) -> PCMBuffer:
    ramp = np.linspace(0.0, 1.0, frames, dtype=np.float32)
    return PCMBuffer(np.repeat(ramp[:, None], channels, axis=1), sample_rate)


@pytest.fixture()
def sine_buffer() -> PCMBuffer:
    return make_sine()
