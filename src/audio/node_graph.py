"""Offline render graph used by the effect renderer and the mixer.

Nodes form a directed acyclic graph that is rendered once, in dependency
order, into a fixed number of frames.  Every node type is a tagged variant
of :class:`RenderNode`; the graph interprets the tag when rendering.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Dict, List, Mapping, Optional, Set

import numpy as np

from .automation import AutomatedParam
from .biquad import Biquad, peak_coefficients
from .buffer import PCMBuffer, conform_channels

logger = logging.getLogger(__name__)

# Frames per coefficient update when a filter parameter is automated.
RENDER_QUANTUM = 128


class NodeKind(str, Enum):
    SOURCE = "source"
    PEAKING = "peaking"
    GAIN = "gain"
    SINK = "sink"


@dataclass
class RenderNode:
    """A node placement with its automatable parameters."""

    node_id: str
    kind: NodeKind
    params: Dict[str, AutomatedParam] = field(default_factory=dict)
    buffer: Optional[PCMBuffer] = None
    start_time: float = 0.0

    def param(self, name: str) -> AutomatedParam:
        return self.params[name]

    @classmethod
    def source(cls, node_id: str, buffer: PCMBuffer, start_time: float = 0.0) -> "RenderNode":
        return cls(node_id, NodeKind.SOURCE, buffer=buffer, start_time=max(0.0, start_time))

    @classmethod
    def peaking(cls, node_id: str, frequency: float, q: float, gain_db: float = 0.0) -> "RenderNode":
        params = {
            "frequency": AutomatedParam("frequency", frequency),
            "q": AutomatedParam("q", q),
            "gain": AutomatedParam("gain", gain_db),
        }
        return cls(node_id, NodeKind.PEAKING, params=params)

    @classmethod
    def gain(cls, node_id: str, gain: float = 1.0) -> "RenderNode":
        return cls(node_id, NodeKind.GAIN, params={"gain": AutomatedParam("gain", gain)})

    @classmethod
    def sink(cls, node_id: str = "sink") -> "RenderNode":
        return cls(node_id, NodeKind.SINK)


@dataclass(frozen=True)
class Connection:
    """Directed edge from one node's output to another node's input."""

    source_node: str
    target_node: str


class RenderGraph:
    """Single-use graph rendered into ``frames`` samples per channel."""

    def __init__(self, sample_rate: int, channels: int, frames: int) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.frames = max(0, int(frames))
        self._nodes: Dict[str, RenderNode] = {}
        self._connections: Set[Connection] = set()

    # ------------------------------------------------------------------
    # Node management
    # ------------------------------------------------------------------
    def add_node(self, node: RenderNode) -> RenderNode:
        if node.node_id in self._nodes:
            raise ValueError(f"Node {node.node_id!r} already exists")
        if node.kind is NodeKind.SOURCE and node.buffer is None:
            raise ValueError(f"Source node {node.node_id!r} has no buffer")
        self._nodes[node.node_id] = node
        return node

    def node(self, node_id: str) -> RenderNode:
        return self._nodes[node_id]

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------
    def connect(self, source_node: str, target_node: str) -> Connection:
        if source_node not in self._nodes:
            raise KeyError(f"Unknown source node {source_node!r}")
        if target_node not in self._nodes:
            raise KeyError(f"Unknown target node {target_node!r}")
        if self._nodes[source_node].kind is NodeKind.SINK:
            raise ValueError("Sink nodes have no output")
        if self._nodes[target_node].kind is NodeKind.SOURCE:
            raise ValueError("Source nodes have no input")
        connection = Connection(source_node, target_node)
        self._connections.add(connection)
        return connection

    def chain(self, *node_ids: str) -> None:
        """Connect *node_ids* in series."""

        for source, target in zip(node_ids, node_ids[1:]):
            self.connect(source, target)

    def upstream(self, node_id: str) -> List[Connection]:
        return sorted(
            (connection for connection in self._connections if connection.target_node == node_id),
            key=lambda conn: conn.source_node,
        )

    def topological_order(self) -> List[RenderNode]:
        """Return nodes ordered by dependency, raising on cycles."""

        indegree: Dict[str, int] = {node_id: 0 for node_id in self._nodes}
        adjacency: Dict[str, Set[str]] = {node_id: set() for node_id in self._nodes}
        for connection in self._connections:
            adjacency[connection.source_node].add(connection.target_node)
            indegree[connection.target_node] += 1

        queue: List[str] = sorted(node_id for node_id, count in indegree.items() if count == 0)
        order: List[RenderNode] = []
        while queue:
            node_id = queue.pop(0)
            order.append(self._nodes[node_id])
            for neighbour in sorted(adjacency[node_id]):
                indegree[neighbour] -= 1
                if indegree[neighbour] == 0:
                    queue.append(neighbour)

        if len(order) != len(self._nodes):
            raise ValueError("Graph contains a cycle")
        return order

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self) -> PCMBuffer:
        """Render every node once and return the sink's output."""

        sinks = [node for node in self._nodes.values() if node.kind is NodeKind.SINK]
        if len(sinks) != 1:
            raise ValueError(f"Render graph needs exactly one sink, found {len(sinks)}")

        outputs: Dict[str, np.ndarray] = {}
        for node in self.topological_order():
            mixed = self._sum_inputs(node.node_id, outputs)
            outputs[node.node_id] = self._render_node(node, mixed)
        logger.debug(
            "Rendered graph with %d nodes into %d frames @ %dHz",
            len(self._nodes),
            self.frames,
            self.sample_rate,
        )
        return PCMBuffer(outputs[sinks[0].node_id], self.sample_rate)

    def _silence(self) -> np.ndarray:
        return np.zeros((self.frames, self.channels), dtype=np.float32)

    def _sum_inputs(self, node_id: str, outputs: Mapping[str, np.ndarray]) -> np.ndarray:
        mixed = self._silence()
        for connection in self.upstream(node_id):
            mixed += outputs[connection.source_node]
        return mixed

    def _render_node(self, node: RenderNode, mixed: np.ndarray) -> np.ndarray:
        if node.kind is NodeKind.SOURCE:
            return self._render_source(node)
        if node.kind is NodeKind.PEAKING:
            return self._render_peaking(node, mixed)
        if node.kind is NodeKind.GAIN:
            gain = node.param("gain")
            if gain.is_static():
                if gain.default_value == 1.0:
                    return mixed
                return (mixed * np.float32(gain.default_value)).astype(np.float32)
            curve = gain.values(self.frames, self.sample_rate)
            return (mixed * curve[:, None]).astype(np.float32)
        return mixed

    def _render_source(self, node: RenderNode) -> np.ndarray:
        output = self._silence()
        buffer = node.buffer
        assert buffer is not None
        if buffer.sample_rate != self.sample_rate:
            raise ValueError(
                f"Source {node.node_id!r} runs at {buffer.sample_rate}Hz, graph at {self.sample_rate}Hz"
            )
        buffer = conform_channels(buffer, self.channels)
        offset = int(round(node.start_time * self.sample_rate))
        if offset >= self.frames:
            return output
        count = min(buffer.length, self.frames - offset)
        output[offset : offset + count] = buffer.samples[:count]
        return output

    def _render_peaking(self, node: RenderNode, mixed: np.ndarray) -> np.ndarray:
        frequency = node.param("frequency")
        q = node.param("q")
        gain = node.param("gain")
        if frequency.is_static() and q.is_static() and gain.is_static():
            if gain.default_value == 0.0:
                return mixed
            section = Biquad.peaking(
                self.sample_rate, frequency.default_value, gain.default_value, q.default_value, self.channels
            )
            return section.process(mixed)

        freq_curve = frequency.values(self.frames, self.sample_rate)
        q_curve = q.values(self.frames, self.sample_rate)
        gain_curve = gain.values(self.frames, self.sample_rate)
        section = Biquad.peaking(
            self.sample_rate, frequency.default_value, gain.default_value, q.default_value, self.channels
        )
        output = np.empty_like(mixed)
        for start in range(0, self.frames, RENDER_QUANTUM):
            stop = min(self.frames, start + RENDER_QUANTUM)
            section.set_coefficients(
                peak_coefficients(self.sample_rate, freq_curve[start], gain_curve[start], q_curve[start])
            )
            output[start:stop] = section.process(mixed[start:stop])
        return output


__all__ = ["Connection", "NodeKind", "RENDER_QUANTUM", "RenderGraph", "RenderNode"]
