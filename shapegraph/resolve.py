"""Run-time shape resolution.

Binds every symbol to a concrete size by walking the finalized node list in
insertion order, the same walk an execution backend performs. Function
payloads are invoked with fully resolved input views, and the sizes they
report bind the fresh symbols of their anonymous axes. Equalities recorded at
build time are checked as soon as the node they belong to is resolved.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field

import numpy as np

from shapegraph.dimension import Constant
from shapegraph.errors import FunctionPayloadError, InvalidRange, UnboundSymbol, UnresolvedDynamicMismatch
from shapegraph.graph import Graph, Node, Obligation, fresh_symbol
from shapegraph.ops import Function
from shapegraph.tensor import GraphTensor
from shapegraph.tracker import TensorView

logger = logging.getLogger(__name__)

__all__ = ["Resolution", "resolve"]


@dataclass
class Resolution:
    """Concrete views of every node for one set of bindings.

    Attributes:
        bindings: Every symbol value, caller-supplied and discovered.
        views: Resolved view per node id.
        data: Host data produced by Function payloads, per node id.
    """

    bindings: dict[str, int]
    views: dict[int, TensorView] = field(default_factory=dict)
    data: dict[int, np.ndarray] = field(default_factory=dict)

    @property
    def shapes(self) -> dict[int, tuple[int, ...]]:
        """Concrete logical shape per node id."""
        return {node_id: view.shape.concrete_shape() for node_id, view in self.views.items()}

    def shape(self, tensor: GraphTensor | int) -> tuple[int, ...]:
        node_id = tensor.id if isinstance(tensor, GraphTensor) else tensor
        return self.views[node_id].shape.concrete_shape()


def _check_obligation(obligation: Obligation, bindings: dict[str, int]) -> None:
    """Verify one recorded equality, binding a bare unbound symbol if one side is one."""
    lhs = obligation.lhs.substitute(bindings)
    rhs = obligation.rhs.substitute(bindings)
    for known, other in ((lhs, rhs), (rhs, lhs)):
        if known.is_constant and other.sympy.is_Symbol:
            name = next(iter(other.symbols))
            bindings[name] = known.to_int()
            logger.debug(f"bound {name}={bindings[name]} from {obligation.reason}")
            return
    left, right = lhs.resolve(bindings), rhs.resolve(bindings)
    if left != right:
        raise UnresolvedDynamicMismatch(
            f"Node {obligation.node_id}: {obligation.reason} expected "
            f"{obligation.lhs} == {obligation.rhs}, resolved to {left} != {right}",
            obligation=obligation,
            lhs=left,
            rhs=right,
        )


def _run_function(node: Node, resolution: Resolution) -> TensorView:
    """Invoke a Function node's payload and validate what it returns.

    Raises:
        FunctionPayloadError: If the payload raises or breaks its contract.
        UnresolvedDynamicMismatch: If a named axis disagrees with its binding.
    """
    op: Function = node.op
    bindings = resolution.bindings

    def fail(message: str) -> FunctionPayloadError:
        return FunctionPayloadError(f"Function {op.name} (node {node.id}): {message}", node.id, op.name)

    inputs = [(i, resolution.views[i]) for i in node.inputs]
    try:
        result = op.payload(inputs, node.id)
    except Exception as e:
        raise fail(f"payload raised {type(e).__name__}: {e}") from e

    if not isinstance(result, tuple) or len(result) != 2 or not isinstance(result[1], TensorView):
        raise fail(f"payload must return (data, TensorView), got {type(result).__name__}")
    data, view = result
    if view.tensor_id != node.id:
        raise fail(f"returned view for node {view.tensor_id}")
    if view.shape.rank != node.shape.rank:
        raise fail(f"returned rank {view.shape.rank}, declared {node.shape}")
    try:
        tracker = view.shape.resolve(bindings)
    except UnboundSymbol as e:
        raise fail(f"returned view is not concrete: {e}") from e
    except InvalidRange as e:
        raise fail(f"returned an invalid view: {e}") from e
    sizes = tracker.concrete_shape()

    for axis, (dim, size) in enumerate(zip(node.shape, sizes)):
        if isinstance(dim, Constant):
            if dim.size != size:
                raise fail(f"axis {axis} declared {dim.size}, payload returned {size}")
            continue
        name = fresh_symbol(node.id, axis) if dim.is_anonymous else dim.symbol
        if name in bindings and bindings[name] != size:
            raise UnresolvedDynamicMismatch(
                f"Function {op.name} (node {node.id}) axis {axis}: {name} is bound to {bindings[name]}, "
                f"payload returned {size}",
                lhs=size,
                rhs=bindings[name],
            )
        bindings[name] = size

    if data is not None:
        data = np.asarray(data)
        if tracker.is_contiguous:
            if data.size != math.prod(sizes):
                raise fail(f"returned {data.size} elements for view of shape {sizes}")
            data = data.reshape(sizes)
        resolution.data[node.id] = data
    return TensorView(node.id, tracker)


def resolve(graph: Graph, bindings: Mapping[str, int]) -> Resolution:
    """Resolve every node of ``graph`` to a concrete view.

    Args:
        graph: Graph to resolve.
        bindings: Values of the run-time size symbols (e.g., batch, seq).

    Returns:
        The Resolution, including symbols discovered from Function nodes.

    Raises:
        ValueError: If a binding is not a non-negative int.
        UnboundSymbol: If a node needs a symbol nobody binds.
        FunctionPayloadError: If a Function payload fails.
        UnresolvedDynamicMismatch: If a recorded equality does not hold.
        InvalidRange: If a slice range becomes inverted under the bindings.
    """
    for name, value in bindings.items():
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 0:
            raise ValueError(f"Binding {name}={value!r} must be a non-negative int")
    resolution = Resolution(bindings={name: int(value) for name, value in bindings.items()})

    obligations: dict[int, list[Obligation]] = defaultdict(list)
    for obligation in graph.obligations:
        obligations[obligation.node_id].append(obligation)

    for node in graph.finalized():
        if isinstance(node.op, Function):
            view = _run_function(node, resolution)
        else:
            try:
                tracker = node.tracker.resolve(resolution.bindings)
            except InvalidRange as e:
                raise InvalidRange(f"Node {node.id} ({node.op.describe()}): {e}") from e
            view = TensorView(node.id, tracker)
        resolution.views[node.id] = view
        for obligation in obligations[node.id]:
            _check_obligation(obligation, resolution.bindings)

    logger.info(
        f"resolved {len(resolution.views)} nodes, {len(graph.obligations)} obligations, "
        f"bindings={resolution.bindings}"
    )
    return resolution
