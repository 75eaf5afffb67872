import numpy as np
import pytest

from audio.buffer import PCMBuffer
from audio.node_graph import NodeKind, RenderGraph, RenderNode


def _constant(value: float, frames: int, channels: int = 2, rate: int = 1_000) -> PCMBuffer:
    return PCMBuffer(np.full((frames, channels), value, dtype=np.float32), rate)


def test_topological_order_places_sources_before_sink() -> None:
    graph = RenderGraph(1_000, 2, 8)
    graph.add_node(RenderNode.source("a", _constant(0.1, 4)))
    graph.add_node(RenderNode.gain("g", 0.5))
    graph.add_node(RenderNode.sink())
    graph.chain("a", "g", "sink")

    order = [node.node_id for node in graph.topological_order()]
    assert order == ["a", "g", "sink"]


def test_duplicate_node_ids_are_rejected() -> None:
    graph = RenderGraph(1_000, 2, 8)
    graph.add_node(RenderNode.sink())
    with pytest.raises(ValueError):
        graph.add_node(RenderNode.sink())


def test_connect_validates_direction() -> None:
    graph = RenderGraph(1_000, 2, 8)
    graph.add_node(RenderNode.source("a", _constant(0.1, 4)))
    graph.add_node(RenderNode.sink())
    with pytest.raises(ValueError):
        graph.connect("sink", "a")
    with pytest.raises(KeyError):
        graph.connect("a", "missing")


def test_cycles_are_detected() -> None:
    graph = RenderGraph(1_000, 2, 8)
    graph.add_node(RenderNode.gain("g1"))
    graph.add_node(RenderNode.gain("g2"))
    graph.connect("g1", "g2")
    graph.connect("g2", "g1")
    with pytest.raises(ValueError):
        graph.topological_order()


def test_sources_sum_at_sink_with_offsets() -> None:
    graph = RenderGraph(1_000, 2, 6)
    graph.add_node(RenderNode.source("a", _constant(0.25, 4)))
    graph.add_node(RenderNode.source("b", _constant(0.5, 4), start_time=0.003))
    graph.add_node(RenderNode.sink())
    graph.connect("a", "sink")
    graph.connect("b", "sink")

    rendered = graph.render()

    np.testing.assert_allclose(rendered.channel(0), [0.25, 0.25, 0.25, 0.75, 0.5, 0.5])


def test_mono_sources_are_spread_to_graph_channels() -> None:
    graph = RenderGraph(1_000, 2, 3)
    graph.add_node(RenderNode.source("a", _constant(0.4, 3, channels=1)))
    graph.add_node(RenderNode.sink())
    graph.connect("a", "sink")
    rendered = graph.render()
    np.testing.assert_allclose(rendered.samples, np.full((3, 2), 0.4))


def test_automated_gain_follows_curve() -> None:
    graph = RenderGraph(10, 1, 10)
    graph.add_node(RenderNode.source("a", _constant(1.0, 10, channels=1, rate=10)))
    gain = graph.add_node(RenderNode.gain("g", 0.0))
    gain.param("gain").set_value_at_time(0.0, 0.0)
    gain.param("gain").linear_ramp_to_value_at_time(1.0, 1.0)
    graph.add_node(RenderNode.sink())
    graph.chain("a", "g", "sink")

    rendered = graph.render()

    np.testing.assert_allclose(rendered.channel(0), np.arange(10) / 10.0, atol=1e-6)


def test_flat_peaking_node_passes_audio_through() -> None:
    rate = 48_000
    noise = np.random.default_rng(3).uniform(-0.5, 0.5, size=(512, 2)).astype(np.float32)
    graph = RenderGraph(rate, 2, 512)
    graph.add_node(RenderNode.source("a", PCMBuffer(noise, rate)))
    graph.add_node(RenderNode.peaking("eq", 1_000.0, 1.4, 0.0))
    graph.add_node(RenderNode.sink())
    graph.chain("a", "eq", "sink")
    np.testing.assert_array_equal(graph.render().samples, noise)


def test_render_requires_single_sink() -> None:
    graph = RenderGraph(1_000, 2, 4)
    graph.add_node(RenderNode.source("a", _constant(0.1, 4)))
    with pytest.raises(ValueError):
        graph.render()
    assert graph.node("a").kind is NodeKind.SOURCE
