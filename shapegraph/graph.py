"""Append-only operation graph.

The Graph owns every node. Node ids are assigned from ``len(self.nodes)`` at
insertion and are never reused or removed, so a GraphTensor is just an id
plus its view and stays valid as long as the Graph is alive.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import networkx as nx
from tabulate import tabulate

from shapegraph.config import GraphConfig
from shapegraph.dimension import Constant as ConstantDim
from shapegraph.dimension import Dimension, Shape, to_dimension
from shapegraph.errors import ShapeMismatch
from shapegraph.expression import Expression, ExprLike
from shapegraph.ops import Constant, Function, Input, Op, Payload
from shapegraph.tracker import ShapeTracker

if TYPE_CHECKING:
    from shapegraph.tensor import GraphTensor

logger = logging.getLogger(__name__)

__all__ = ["Node", "Obligation", "PendingEquality", "Graph", "check_equal", "fresh_symbol"]


@dataclass(frozen=True)
class Node:
    """A finalized graph node.

    Attributes:
        id: Position in the graph's insertion order.
        op: Operation and its build-time parameters.
        inputs: Ids of the input nodes, in operand order.
        shape: Declared output Shape.
        tracker: View of the node's output.
    """

    id: int
    op: Op
    inputs: tuple[int, ...]
    shape: Shape
    tracker: ShapeTracker

    @property
    def kind(self) -> str:
        return self.op.kind

    @property
    def payload(self) -> Payload | None:
        """Function payload, or None for every other op."""
        return self.op.payload if isinstance(self.op, Function) else None


@dataclass(frozen=True)
class Obligation:
    """Equality between two sizes that could not be decided at build time.

    Attributes:
        node_id: Node whose construction relied on the equality.
        lhs: Left-hand size.
        rhs: Right-hand size.
        reason: What recorded it (e.g., ``"realize axis 2"``).
    """

    node_id: int
    lhs: Expression
    rhs: Expression
    reason: str


PendingEquality = tuple[Expression, Expression, str]


def check_equal(lhs: ExprLike, rhs: ExprLike, reason: str) -> PendingEquality | None:
    """Compare two sizes expected to be equal.

    Args:
        lhs: First size.
        rhs: Second size.
        reason: Context for error messages and the recorded obligation.

    Returns:
        None if provably equal, else the pending equality to record.

    Raises:
        ShapeMismatch: If the sizes provably differ.
    """
    lhs, rhs = Expression(lhs), Expression(rhs)
    verdict = lhs.known_eq(rhs)
    if verdict is False:
        raise ShapeMismatch(f"{reason}: size {lhs} != {rhs}")
    return None if verdict else (lhs, rhs, reason)


def fresh_symbol(node_id: int, axis: int) -> str:
    """Symbol standing for an anonymous axis size of a leaf or Function node."""
    return f"_f{node_id}_{axis}"


class Graph(nx.DiGraph):
    """Append-only DAG of operation nodes.

    Each networkx node ``i`` stores its finalized Node under the ``"node"``
    attribute. Edges run from input to consumer and record the operand slots
    they feed.

    Attributes:
        config: Settings shared by every operation on this graph.
        obligations: Dynamic size equalities to check at resolution.
    """

    def __init__(self, incoming_graph_data: object = None, config: GraphConfig | None = None, **attr: object) -> None:
        super().__init__(incoming_graph_data, **attr)
        self.config = config or GraphConfig()
        self.obligations: list[Obligation] = []

    def add_op(
        self,
        op: Op,
        shape: Shape,
        inputs: Sequence[int] = (),
        tracker: ShapeTracker | None = None,
        obligations: Iterable[PendingEquality | None] = (),
    ) -> int:
        """Validate and insert one node.

        Nothing is inserted if validation fails.

        Args:
            op: Operation of the node.
            shape: Declared output Shape.
            inputs: Input node ids in operand order.
            tracker: Output view. Defaults to a contiguous tracker derived
                from ``shape`` (see ``declared_tracker``).
            obligations: Pending equalities this node relies on; None entries
                are skipped.

        Returns:
            The new node id.

        Raises:
            ValueError: If an input id is unknown or the input count does not
                match the op's arity.
            ShapeMismatch: If the tracker rank differs from the Shape rank.
        """
        inputs = tuple(inputs)
        node_id = len(self.nodes)
        if op.arity is not None and len(inputs) != op.arity:
            raise ValueError(f"{op.kind} expects {op.arity} inputs, got {len(inputs)}")
        unknown = [i for i in inputs if i not in self]
        if unknown:
            raise ValueError(f"{op.kind} references unknown node ids {unknown}")
        if tracker is None:
            tracker = self.declared_tracker(shape, node_id)
        if tracker.rank != shape.rank:
            raise ShapeMismatch(f"{op.kind}: view rank {tracker.rank} does not match shape rank {shape.rank}")

        node = Node(id=node_id, op=op, inputs=inputs, shape=shape, tracker=tracker)
        self.add_node(node_id, node=node)
        for slot, src in enumerate(inputs):
            if self.has_edge(src, node_id):
                self.edges[src, node_id]["slots"].append(slot)
            else:
                self.add_edge(src, node_id, slots=[slot])
        logger.debug(f"node {node_id}: {op.describe()} inputs={list(inputs)} shape={shape} view={tracker}")
        for pending in obligations:
            if pending is not None:
                self.record_obligation(node_id, *pending)
        return node_id

    def declared_tracker(self, shape: Shape, node_id: int) -> ShapeTracker:
        """Contiguous tracker for a declared Shape.

        Constant axes use their size, named Dynamic axes their symbol, and
        anonymous Dynamic axes a fresh per-node symbol.
        """
        sizes: list[ExprLike] = []
        for axis, dim in enumerate(shape):
            if isinstance(dim, ConstantDim):
                sizes.append(dim.size)
            elif dim.is_anonymous:
                sizes.append(fresh_symbol(node_id, axis))
            else:
                sizes.append(dim.symbol)
        return ShapeTracker.new(sizes)

    def record_obligation(self, node_id: int, lhs: Expression, rhs: Expression, reason: str) -> None:
        """Record an equality to check once symbols are bound."""
        if not self.config.record_obligations:
            return
        self.obligations.append(Obligation(node_id=node_id, lhs=lhs, rhs=rhs, reason=reason))
        logger.debug(f"obligation on node {node_id}: {lhs} == {rhs} ({reason})")

    def add_node(self, node_for_adding: object, **attr: object) -> None:
        """Insert a new node; finalized nodes cannot be replaced.

        Raises:
            TypeError: If the id already exists.
        """
        if node_for_adding in self:
            raise TypeError(f"Node {node_for_adding} is finalized and cannot be replaced")
        super().add_node(node_for_adding, **attr)

    def add_nodes_from(self, nodes_for_adding: Iterable[object], **attr: object) -> None:
        nodes = list(nodes_for_adding)
        existing = [n for n in nodes if (n[0] if isinstance(n, tuple) else n) in self]
        if existing:
            raise TypeError(f"Nodes {existing} are finalized and cannot be replaced")
        super().add_nodes_from(nodes, **attr)

    def remove_node(self, n: object) -> None:
        raise TypeError("Graph nodes are append-only and cannot be removed")

    def remove_nodes_from(self, nodes: Iterable[object]) -> None:
        raise TypeError("Graph nodes are append-only and cannot be removed")

    def remove_edge(self, u: object, v: object) -> None:
        raise TypeError("Graph edges are append-only and cannot be removed")

    def remove_edges_from(self, ebunch: Iterable[object]) -> None:
        raise TypeError("Graph edges are append-only and cannot be removed")

    def clear(self) -> None:
        raise TypeError("Graph is append-only and cannot be cleared")

    def clear_edges(self) -> None:
        raise TypeError("Graph is append-only and cannot be cleared")

    def node(self, node_id: int) -> Node:
        """Return the finalized Node for an id.

        Raises:
            KeyError: If the id was never allocated.
        """
        if node_id not in self:
            raise KeyError(f"Unknown node id {node_id}")
        return self.nodes[node_id]["node"]

    def finalized(self) -> list[Node]:
        """All nodes in insertion order, as handed to the execution backend."""
        return [self.nodes[i]["node"] for i in range(len(self.nodes))]

    def tensor(self, node_id: int) -> "GraphTensor":
        """Handle for an existing node's output."""
        from shapegraph.tensor import GraphTensor

        node = self.node(node_id)
        return GraphTensor(node.id, node.shape, node.tracker, self)

    def new_tensor(self, name: str, shape: "Shape | Sequence[int | str | Dimension]") -> "GraphTensor":
        """Allocate a named leaf tensor.

        Args:
            name: Leaf name (used for checkpoint enumeration).
            shape: Declared Shape, or items accepted by ``Shape.of``.

        Returns:
            Handle to the new Input node.

        Raises:
            ValueError: If an axis is anonymous Dynamic, since nothing could
                bind its size.
        """
        if not isinstance(shape, Shape):
            shape = Shape.of(*shape)
        if any(not dim.is_static and dim.is_anonymous for dim in shape):
            raise ValueError(f"Leaf {name!r} needs constant or named axes, got {shape}")
        return self.tensor(self.add_op(Input(name), shape))

    def constant(self, value: float | ExprLike) -> "GraphTensor":
        """Rank-0 scalar node; Expression values are resolved at run time."""
        if isinstance(value, (Expression, str)):
            value = Expression(value)
        elif not isinstance(value, (int, float)) or isinstance(value, bool):
            raise TypeError(f"Unsupported constant {value!r}")
        else:
            value = float(value)
        return self.tensor(self.add_op(Constant(value), Shape()))

    def add_function(
        self,
        name: str,
        payload: Payload,
        inputs: Sequence["GraphTensor"],
        shape: "Shape | Sequence[int | str | Dimension]",
    ) -> "GraphTensor":
        """Add a Function node computed on the host at run time.

        Args:
            name: Diagnostic name.
            payload: ``(list[(input_id, TensorView)], node_id) ->
                (data | None, TensorView)``; must be pure.
            inputs: Tensors whose resolved views the payload reads.
            shape: Declared output Shape; the payload's view must have the
                same rank.

        Returns:
            Handle to the Function node.

        Raises:
            ValueError: If an input belongs to another Graph.
        """
        for tensor in inputs:
            self.check_owns(tensor)
        if not isinstance(shape, Shape):
            shape = Shape.of(*(to_dimension(d) for d in shape))
        node_id = self.add_op(Function(name, payload), shape, [t.id for t in inputs])
        return self.tensor(node_id)

    def check_owns(self, tensor: "GraphTensor") -> None:
        """Raise ValueError unless ``tensor`` is a handle into this Graph."""
        if tensor.graph is not self:
            raise ValueError(f"Tensor {tensor.id} belongs to a different Graph")

    def named_leaves(self) -> list[tuple[str, Shape]]:
        """Named Input nodes with their declared Shapes, in insertion order."""
        return [(node.op.name, node.shape) for node in self.finalized() if isinstance(node.op, Input)]

    def ancestors_of(self, node_id: int) -> list[int]:
        """Ids of every node ``node_id`` depends on, ascending."""
        return sorted(nx.ancestors(self, node_id))

    def summary(self) -> str:
        """Tabulated node list."""
        rows = [
            [node.id, node.op.describe(), list(node.inputs), repr(node.shape), repr(node.tracker)]
            for node in self.finalized()
        ]
        return tabulate(rows, headers=["id", "op", "inputs", "shape", "view"], tablefmt="simple")

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self.nodes)}, obligations={len(self.obligations)})"
