import numpy as np
import pytest

from audio.automation import AutomatedParam


def test_default_value_fills_curve_without_events() -> None:
    param = AutomatedParam("gain", 0.5)
    np.testing.assert_array_equal(param.values(4, 10), np.full(4, 0.5))
    assert param.is_static()


def test_set_value_switches_at_event_frame() -> None:
    param = AutomatedParam("gain", 1.0).set_value_at_time(0.25, 0.3)
    np.testing.assert_allclose(param.values(5, 10), [1.0, 1.0, 1.0, 0.25, 0.25])


def test_linear_ramp_starts_from_previous_event() -> None:
    param = AutomatedParam("gain", 0.0)
    param.set_value_at_time(0.0, 0.0)
    param.linear_ramp_to_value_at_time(1.0, 1.0)
    curve = param.values(15, 10)
    np.testing.assert_allclose(curve[:10], np.arange(10) / 10.0)
    np.testing.assert_allclose(curve[10:], 1.0)


def test_exponential_ramp_is_geometric() -> None:
    param = AutomatedParam("gain", 1.0)
    param.set_value_at_time(1.0, 0.0)
    param.exponential_ramp_to_value_at_time(4.0, 1.0)
    curve = param.values(11, 10)
    assert curve[5] == pytest.approx(2.0)
    assert curve[10] == pytest.approx(4.0)


def test_exponential_ramp_rejects_non_positive_targets() -> None:
    with pytest.raises(ValueError):
        AutomatedParam("gain", 1.0).exponential_ramp_to_value_at_time(0.0, 1.0)


def test_events_at_same_time_keep_insertion_order() -> None:
    param = AutomatedParam("gain", 0.0)
    param.set_value_at_time(0.2, 0.5)
    param.set_value_at_time(0.8, 0.5)
    assert param.value_at(0.9, 10) == pytest.approx(0.8)


def test_negative_event_time_is_rejected() -> None:
    with pytest.raises(ValueError):
        AutomatedParam("gain", 1.0).set_value_at_time(0.0, -0.1)
