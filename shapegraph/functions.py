"""Built-in Function nodes for shape-dependent host data.

Both builders size their output from the realized length of one axis of a
peer tensor, which is only known once the graph runs.
"""

import numpy as np

from shapegraph.dimension import Shape
from shapegraph.graph import Graph
from shapegraph.ops import Payload
from shapegraph.tensor import GraphTensor, normalize_axis
from shapegraph.tracker import ShapeTracker, TensorView

__all__ = ["arange", "causal_mask"]


def _peer_length(inputs: list[tuple[int, TensorView]], axis: int) -> int:
    _, view = inputs[0]
    return view.shape.concrete_shape()[axis]


def _arange_payload(axis: int, dtype: type) -> Payload:
    def payload(inputs: list[tuple[int, TensorView]], node_id: int) -> tuple[np.ndarray, TensorView]:
        length = _peer_length(inputs, axis)
        return np.arange(length, dtype=dtype), TensorView(node_id, ShapeTracker.new([length]))

    return payload


def _causal_mask_payload(axis: int, dtype: type) -> Payload:
    def payload(inputs: list[tuple[int, TensorView]], node_id: int) -> tuple[np.ndarray, TensorView]:
        length = _peer_length(inputs, axis)
        mask = np.triu(np.full((length, length), -np.inf, dtype=dtype), k=1)
        return mask, TensorView(node_id, ShapeTracker.new([length, length]))

    return payload


def arange(graph: Graph, peer: GraphTensor, axis: int) -> GraphTensor:
    """Index sequence ``[0, N)`` where N is the realized size of ``peer``'s ``axis``.

    Args:
        graph: Graph that owns ``peer`` and receives the new node.
        peer: Tensor whose axis length sizes the output.
        axis: Axis of ``peer`` to measure.

    Returns:
        Rank-1 tensor with the same Dimension as the measured axis.

    Raises:
        ValueError: If ``peer`` belongs to a different Graph.
    """
    graph.check_owns(peer)
    axis = normalize_axis(axis, peer.rank, "arange")
    payload = _arange_payload(axis, graph.config.float_dtype)
    return graph.add_function("ARange", payload, [peer], Shape((peer.shape[axis],)))


def causal_mask(graph: Graph, peer: GraphTensor, axis: int) -> GraphTensor:
    """Square ``(S, S)`` mask with ``-inf`` strictly above the diagonal and 0 elsewhere.

    S is the realized size of ``peer``'s ``axis``.

    Raises:
        ValueError: If ``peer`` belongs to a different Graph.
    """
    graph.check_owns(peer)
    axis = normalize_axis(axis, peer.rank, "causal_mask")
    dim = peer.shape[axis]
    payload = _causal_mask_payload(axis, graph.config.float_dtype)
    return graph.add_function("CausalMask", payload, [peer], Shape((dim, dim)))
