import json

import pytest
from pydantic import ValidationError

from timeline.keyframes import (
    bezier_interpolate,
    calculate_source_time,
    interpolate_keyframes,
    speed_at_time,
)
from timeline.models import BezierHandle, Keyframe, TimelineClip, TimelineDocument, effect_property


def _kf(time: float, value: float, easing: str = "linear", prop: str = "speed", **kwargs) -> Keyframe:
    return Keyframe(property=prop, time=time, value=value, easing=easing, **kwargs)


def test_effect_property_naming() -> None:
    assert effect_property("eq1", "band1k") == "effect.eq1.band1k"


def test_interpolation_clamps_outside_keyframe_range() -> None:
    keyframes = [_kf(1.0, 2.0), _kf(3.0, 4.0)]
    assert interpolate_keyframes(keyframes, "speed", 0.0, 1.0) == 2.0
    assert interpolate_keyframes(keyframes, "speed", 5.0, 1.0) == 4.0
    assert interpolate_keyframes(keyframes, "speed", 2.0, 1.0) == pytest.approx(3.0)


def test_interpolation_falls_back_to_default_without_keyframes() -> None:
    assert speed_at_time([_kf(0.0, 3.0, prop="opacity")], 1.0, 1.5) == 1.5


def test_step_easing_holds_previous_value() -> None:
    keyframes = [_kf(0.0, 1.0, easing="step"), _kf(1.0, 5.0)]
    assert interpolate_keyframes(keyframes, "speed", 0.99, 0.0) == 1.0


def test_ease_in_starts_slower_than_linear() -> None:
    eased = interpolate_keyframes([_kf(0.0, 0.0, "ease-in"), _kf(1.0, 1.0)], "speed", 0.25, 0.0)
    assert eased == pytest.approx(0.0625)


def test_bezier_endpoints_match_keyframe_values() -> None:
    prev_kf = _kf(0.0, 1.0, "bezier", handle_out=BezierHandle(x=0.4, y=0.8))
    next_kf = _kf(1.0, 3.0, handle_in=BezierHandle(x=-0.4, y=-0.1))
    assert bezier_interpolate(prev_kf, next_kf, 0.0) == pytest.approx(1.0)
    assert bezier_interpolate(prev_kf, next_kf, 1.0) == pytest.approx(3.0)


def test_bezier_without_handles_is_linear() -> None:
    assert bezier_interpolate(_kf(0.0, 0.0), _kf(1.0, 10.0), 0.3) == pytest.approx(3.0)


def test_source_time_for_constant_speed() -> None:
    assert calculate_source_time([], 4.0, 2.0) == pytest.approx(8.0)
    assert calculate_source_time([_kf(0.0, 0.5)], 4.0, 1.0) == pytest.approx(2.0)


def test_source_time_integrates_linear_ramp() -> None:
    keyframes = [_kf(0.0, 1.0), _kf(2.0, 3.0)]
    # Area under a 1 -> 3 ramp over two seconds.
    assert calculate_source_time(keyframes, 2.0, 1.0) == pytest.approx(4.0)


def test_clip_out_point_defaults_from_speed() -> None:
    clip = TimelineClip(id="c", track_id="t", start_time=1.0, duration=2.0, in_point=0.5, speed=-2.0)
    assert clip.out_point == pytest.approx(4.5)
    assert clip.end_time == pytest.approx(3.0)


def test_clip_rejects_out_point_before_in_point() -> None:
    with pytest.raises(ValidationError):
        TimelineClip(id="c", track_id="t", start_time=0.0, duration=1.0, in_point=2.0, out_point=1.0)


def test_document_resolves_relative_sources(tmp_path) -> None:
    payload = {
        "tracks": [{"id": "a1", "type": "audio"}],
        "clips": [
            {
                "id": "c1",
                "track_id": "a1",
                "start_time": 0.0,
                "duration": 1.5,
                "source": {"type": "audio", "handle": "media/tone.wav"},
            }
        ],
        "clip_keyframes": {"c1": [{"property": "speed", "time": 0.0, "value": 1.0}]},
    }
    path = tmp_path / "timeline.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    document = TimelineDocument.load(path)

    assert document.clips[0].source.handle == str(tmp_path / "media" / "tone.wav")
    assert document.duration == pytest.approx(1.5)
    assert document.keyframes_for("c1")[0].value == 1.0
    assert document.keyframes_for("missing") == []
    assert document.track("a1").type == "audio"
