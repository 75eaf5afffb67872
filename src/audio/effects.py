"""Clip effect rendering: 10-band peaking EQ and volume with keyframes.

Effects are rendered offline through a :class:`~audio.node_graph.RenderGraph`
shaped ``source -> 10 x peaking -> gain -> sink``.  Keyframed parameters
become automation events on the graph's parameters, so a buffer renders
identically no matter how it is later split or mixed.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from timeline.keyframes import bezier_interpolate
from timeline.models import Effect, Keyframe, effect_property

from .automation import AutomatedParam
from .buffer import PCMBuffer
from .node_graph import RenderGraph, RenderNode

logger = logging.getLogger(__name__)

EQ_FREQUENCIES = (31, 62, 125, 250, 500, 1000, 2000, 4000, 8000, 16000)
EQ_BAND_PARAMS = (
    "band31",
    "band62",
    "band125",
    "band250",
    "band500",
    "band1k",
    "band2k",
    "band4k",
    "band8k",
    "band16k",
)
EQ_Q = 1.4
EQ_EFFECT = "audio-eq"
VOLUME_EFFECT = "audio-volume"

MIN_GAIN = 0.0001
BEZIER_STEPS = 10


@dataclass(frozen=True)
class EffectRenderProgress:
    phase: str
    percent: float


EffectProgressCallback = Callable[[EffectRenderProgress], None]


def interpolate_value(keyframes: Sequence[Keyframe], time: float, default_value: float) -> float:
    """Linearly interpolate *keyframes* at *time*, clamping outside the range."""

    if not keyframes:
        return default_value
    ordered = sorted(keyframes, key=lambda keyframe: keyframe.time)
    if time <= ordered[0].time:
        return ordered[0].value
    if time >= ordered[-1].time:
        return ordered[-1].value
    for prev_kf, next_kf in zip(ordered, ordered[1:]):
        if prev_kf.time <= time <= next_kf.time:
            t = (time - prev_kf.time) / (next_kf.time - prev_kf.time)
            return prev_kf.value + (next_kf.value - prev_kf.value) * t
    return default_value


def has_effect_keyframes(keyframes: Iterable[Keyframe], effect_id: str) -> bool:
    prefix = f"effect.{effect_id}."
    return any(keyframe.property.startswith(prefix) for keyframe in keyframes)


def has_non_default_eq(effect: Effect) -> bool:
    return any(
        abs(effect.params[param]) > 0.01 for param in EQ_BAND_PARAMS if param in effect.params
    )


def automate_param(
    param: AutomatedParam,
    keyframes: Sequence[Keyframe],
    default_value: float,
    duration: float,
    *,
    floor_gain: bool = False,
) -> AutomatedParam:
    """Translate *keyframes* into automation events on *param*.

    A segment takes its easing from the keyframe that ends it.
    Ease curves become exponential ramps when both ends are positive, bezier
    segments are sampled into short linear ramps, and unknown easings hold.
    Gain parameters are floored at ``MIN_GAIN``, bezier samples included,
    so exponential ramps stay defined.
    """

    if not keyframes:
        return param.set_value_at_time(default_value, 0.0)

    ordered = sorted(keyframes, key=lambda keyframe: keyframe.time)

    def clamp(value: float) -> float:
        return max(MIN_GAIN, value) if floor_gain else value

    if ordered[0].time > 0.0:
        param.set_value_at_time(interpolate_value(ordered, 0.0, default_value), 0.0)

    previous_value = 0.0
    for index, keyframe in enumerate(ordered):
        time = max(0.0, keyframe.time)
        value = clamp(keyframe.value)
        if index == 0:
            param.set_value_at_time(value, time)
        elif keyframe.easing == "linear":
            param.linear_ramp_to_value_at_time(value, time)
        elif keyframe.easing in ("ease-in", "ease-out", "ease-in-out"):
            if value > 0.0 and previous_value > 0.0:
                param.exponential_ramp_to_value_at_time(value, time)
            else:
                param.linear_ramp_to_value_at_time(value, time)
        elif keyframe.easing == "bezier":
            _automate_bezier(param, ordered[index - 1], keyframe, clamp)
        else:
            param.set_value_at_time(value, time)
        previous_value = value

    last = ordered[-1]
    if last.time < duration:
        param.set_value_at_time(clamp(last.value), max(0.0, last.time))
    return param


def _automate_bezier(
    param: AutomatedParam, prev_kf: Keyframe, keyframe: Keyframe, clamp: Callable[[float], float]
) -> None:
    span = keyframe.time - prev_kf.time
    for step in range(1, BEZIER_STEPS + 1):
        t = step / BEZIER_STEPS
        param.linear_ramp_to_value_at_time(
            clamp(bezier_interpolate(prev_kf, keyframe, t)),
            max(0.0, prev_kf.time + t * span),
        )


def _first_effect(effects: Iterable[Effect], effect_type: str) -> Optional[Effect]:
    for effect in effects:
        if effect.type == effect_type and effect.enabled:
            return effect
    return None


class AudioEffectRenderer:
    """Apply the EQ and volume effects of one clip to its audio."""

    def render_effects(
        self,
        buffer: PCMBuffer,
        effects: Sequence[Effect],
        keyframes: Sequence[Keyframe],
        clip_duration: float | None = None,
        on_progress: EffectProgressCallback | None = None,
    ) -> PCMBuffer:
        duration = buffer.duration if clip_duration is None else clip_duration
        volume_effect = _first_effect(effects, VOLUME_EFFECT)
        eq_effect = _first_effect(effects, EQ_EFFECT)

        has_volume_keyframes = volume_effect is not None and has_effect_keyframes(keyframes, volume_effect.id)
        has_eq_keyframes = eq_effect is not None and has_effect_keyframes(keyframes, eq_effect.id)
        has_volume = volume_effect is not None and volume_effect.params.get("volume", 1.0) != 1.0
        has_eq = eq_effect is not None and has_non_default_eq(eq_effect)

        if not (has_volume_keyframes or has_eq_keyframes or has_volume or has_eq):
            logger.debug("No effects to apply, returning original")
            return buffer

        if on_progress:
            on_progress(EffectRenderProgress("preparing", 0.0))

        graph = RenderGraph(buffer.sample_rate, buffer.number_of_channels, buffer.length)
        chain: List[str] = [graph.add_node(RenderNode.source("source", buffer)).node_id]
        if eq_effect is not None:
            chain.extend(self._add_eq_chain(graph, eq_effect, keyframes, duration))
        if volume_effect is not None:
            chain.append(self._add_gain_node(graph, volume_effect, keyframes, duration))
        chain.append(graph.add_node(RenderNode.sink()).node_id)
        graph.chain(*chain)

        if on_progress:
            on_progress(EffectRenderProgress("rendering", 50.0))
        rendered = graph.render()
        if on_progress:
            on_progress(EffectRenderProgress("complete", 100.0))
        logger.debug("Rendered %.2fs with effects", rendered.duration)
        return rendered

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------
    def _add_eq_chain(
        self,
        graph: RenderGraph,
        effect: Effect,
        keyframes: Sequence[Keyframe],
        duration: float,
    ) -> List[str]:
        node_ids: List[str] = []
        for frequency, param_name in zip(EQ_FREQUENCIES, EQ_BAND_PARAMS):
            default_gain = float(effect.params.get(param_name, 0.0))
            node = RenderNode.peaking(f"eq-{param_name}", frequency, EQ_Q)
            band_property = effect_property(effect.id, param_name)
            band_keyframes = [keyframe for keyframe in keyframes if keyframe.property == band_property]
            if band_keyframes:
                automate_param(node.param("gain"), band_keyframes, default_gain, duration)
            else:
                node.param("gain").default_value = default_gain
            node_ids.append(graph.add_node(node).node_id)
        return node_ids

    def _add_gain_node(
        self,
        graph: RenderGraph,
        effect: Effect,
        keyframes: Sequence[Keyframe],
        duration: float,
    ) -> str:
        default_volume = float(effect.params.get("volume", 1.0))
        node = RenderNode.gain("volume")
        volume_property = effect_property(effect.id, "volume")
        volume_keyframes = [keyframe for keyframe in keyframes if keyframe.property == volume_property]
        if volume_keyframes:
            automate_param(node.param("gain"), volume_keyframes, default_volume, duration, floor_gain=True)
        else:
            node.param("gain").default_value = default_volume
        return graph.add_node(node).node_id

    # ------------------------------------------------------------------
    # Static utilities
    # ------------------------------------------------------------------
    def apply_gain(self, buffer: PCMBuffer, gain: float) -> PCMBuffer:
        if abs(gain - 1.0) < 0.001:
            return buffer
        return PCMBuffer((buffer.samples * np.float32(gain)).astype(np.float32), buffer.sample_rate)

    def apply_eq(self, buffer: PCMBuffer, gains: Sequence[float]) -> PCMBuffer:
        if all(abs(gain) < 0.01 for gain in gains):
            return buffer
        graph = RenderGraph(buffer.sample_rate, buffer.number_of_channels, buffer.length)
        chain = [graph.add_node(RenderNode.source("source", buffer)).node_id]
        for index, frequency in enumerate(EQ_FREQUENCIES):
            gain_db = float(gains[index]) if index < len(gains) else 0.0
            chain.append(graph.add_node(RenderNode.peaking(f"eq-{frequency}", frequency, EQ_Q, gain_db)).node_id)
        chain.append(graph.add_node(RenderNode.sink()).node_id)
        graph.chain(*chain)
        return graph.render()


__all__ = [
    "AudioEffectRenderer",
    "EQ_BAND_PARAMS",
    "EQ_FREQUENCIES",
    "EQ_Q",
    "EffectRenderProgress",
    "automate_param",
    "bezier_interpolate",
    "has_effect_keyframes",
    "has_non_default_eq",
    "interpolate_value",
]
