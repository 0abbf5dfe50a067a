"""GraphTensor: a shape-checked handle into a Graph.

A GraphTensor carries no data. It is a node id, the compile-time Shape the
caller sees, and the ShapeTracker describing the view, plus a weak reference
to the owning Graph. Every operation validates fully before asking the Graph
for a node, so a rejected call never leaves a partial node behind.
"""

import math
import weakref
from collections.abc import Sequence
from typing import TYPE_CHECKING, Union

from shapegraph import ops
from shapegraph.dimension import (
    Constant,
    ConstDim,
    Dimension,
    Dynamic,
    PrevDim,
    ReshapeDim,
    Shape,
    dims_compatible,
    infer_reshape_dims,
    to_dimension,
)
from shapegraph.errors import InvalidRange, ShapeMismatch
from shapegraph.expression import Expression, ExprLike
from shapegraph.graph import PendingEquality, check_equal
from shapegraph.slicing import SliceLike, slice_shape, to_ranges
from shapegraph.tracker import ShapeTracker

if TYPE_CHECKING:
    from shapegraph.graph import Graph

__all__ = ["GraphTensor", "Operand", "concat", "normalize_axis"]

Operand = Union["GraphTensor", int, float]

LOG2_E = math.log2(math.e)
LN_2 = math.log(2.0)


def _merge_dims(a: Dimension, b: Dimension) -> Dimension:
    """Pick the more informative of two compatible Dimensions."""
    if isinstance(a, Constant):
        return a
    if isinstance(b, Constant):
        return b
    if isinstance(a, Dynamic) and not a.is_anonymous:
        return a
    return b


def _elementwise(
    kind: str, lhs: "GraphTensor", rhs: "GraphTensor"
) -> tuple[Shape, list[Expression], list[PendingEquality | None]]:
    """Output Shape, sizes and pending equalities of an elementwise op.

    Raises:
        ShapeMismatch: If ranks differ or an axis provably differs.
    """
    if lhs.rank != rhs.rank:
        raise ShapeMismatch(f"{kind}: rank {lhs.rank} {lhs.shape} vs rank {rhs.rank} {rhs.shape}")
    dims, sizes, obligations = [], [], []
    for axis, (a, b, sa, sb) in enumerate(zip(lhs.shape, rhs.shape, lhs.sizes(), rhs.sizes())):
        if not dims_compatible(a, b):
            raise ShapeMismatch(f"{kind}: axis {axis} is {a} vs {b}")
        obligations.append(check_equal(sa, sb, f"{kind} axis {axis}"))
        dims.append(_merge_dims(a, b))
        sizes.append(sb if sb.is_constant and not sa.is_constant else sa)
    return Shape(tuple(dims)), sizes, obligations


def normalize_axis(axis: int, rank: int, what: str) -> int:
    """Map a possibly negative axis into ``[0, rank)``."""
    if not -rank <= axis < rank:
        raise InvalidRange(f"{what}: axis {axis} out of range for rank {rank}")
    return axis % rank


class GraphTensor:
    """Handle (node id, Shape, view) into one Graph.

    Attributes:
        id: Node id in the owning Graph.
        shape: Compile-time Shape of this handle.
        tracker: View of the node's output.
    """

    __slots__ = ("id", "shape", "tracker", "_graph_ref")

    def __init__(self, node_id: int, shape: Shape, tracker: ShapeTracker, graph: "Graph") -> None:
        self.id = node_id
        self.shape = shape
        self.tracker = tracker
        self._graph_ref = weakref.ref(graph)

    @property
    def graph(self) -> "Graph":
        """Owning Graph.

        Raises:
            ReferenceError: If the Graph has been discarded.
        """
        graph = self._graph_ref()
        if graph is None:
            raise ReferenceError(f"Tensor {self.id} outlived its Graph")
        return graph

    @property
    def rank(self) -> int:
        return self.shape.rank

    def sizes(self) -> tuple[Expression, ...]:
        """Per-axis sizes of the view."""
        return self.tracker.shape()

    def size(self, axis: int) -> Expression:
        return self.sizes()[normalize_axis(axis, self.rank, "size")]

    def _emit(
        self,
        op: ops.Op,
        shape: Shape,
        inputs: Sequence["GraphTensor"],
        tracker: ShapeTracker,
        obligations: Sequence[PendingEquality | None] = (),
    ) -> "GraphTensor":
        graph = self.graph
        node_id = graph.add_op(op, shape, [t.id for t in inputs], tracker, obligations)
        return GraphTensor(node_id, shape, tracker, graph)

    def _operand(self, other: Operand) -> "GraphTensor":
        """Coerce a scalar into a Constant node broadcast to this tensor."""
        if isinstance(other, GraphTensor):
            self.graph.check_owns(other)
            return other
        if isinstance(other, bool) or not isinstance(other, (int, float)):
            raise TypeError(f"Unsupported operand {other!r}")
        return self.graph.constant(float(other)).expand(self)

    # View operations

    def slice(self, *specs: SliceLike) -> "GraphTensor":
        """Restrict the view to per-axis ranges.

        Args:
            *specs: One RangeSpec or ``slice`` per leading axis; missing
                trailing axes keep their full range.

        Returns:
            The sliced view. Full-range axes keep their Dimension, every
            other axis becomes anonymous Dynamic.

        Raises:
            InvalidRange: If a range has start > end (before or after
                composing with the current view) or there are too many specs.
        """
        ranges = to_ranges(specs, self.sizes(), self.graph.config.unbounded_size)
        tracker = self.tracker.slice(ranges)
        shape = slice_shape(self.shape, specs)
        return self._emit(ops.Slice(tuple(ranges)), shape, [self], tracker)

    def __getitem__(self, item: "SliceLike | tuple") -> "GraphTensor":
        items = item if isinstance(item, tuple) else (item,)
        if any(i is Ellipsis for i in items):
            if items.count(Ellipsis) > 1:
                raise IndexError("Only one Ellipsis is allowed in a slice")
            at = items.index(Ellipsis)
            fill = (slice(None),) * (self.rank - len(items) + 1)
            items = items[:at] + fill + items[at + 1 :]
        if any(isinstance(i, int) for i in items):
            raise TypeError("Integer indexing drops an axis; slice with a range and reshape instead")
        return self.slice(*items)

    def permute(self, *axes: int | Sequence[int]) -> "GraphTensor":
        """Reorder axes; ``axes[i]`` is the source axis of output axis i.

        Raises:
            InvalidRange: If ``axes`` is not a bijection over the axes.
        """
        if len(axes) == 1 and isinstance(axes[0], Sequence):
            axes = tuple(axes[0])
        tracker = self.tracker.permute(axes)
        return self._emit(ops.Permute(tuple(axes)), self.shape.permute(axes), [self], tracker)

    def transpose(self, axis0: int, axis1: int) -> "GraphTensor":
        """Swap two axes."""
        axes = list(range(self.rank))
        a = normalize_axis(axis0, self.rank, "transpose")
        b = normalize_axis(axis1, self.rank, "transpose")
        axes[a], axes[b] = axes[b], axes[a]
        return self.permute(axes)

    def expand(self, target: "Shape | GraphTensor", axes: Sequence[int] | None = None) -> "GraphTensor":
        """Broadcast to ``target`` by inserting fake axes.

        Args:
            target: Shape, or tensor whose Shape and sizes to broadcast to.
            axes: Output positions of the inserted axes. Defaults to the
                leading ``target.rank - self.rank`` positions.

        Returns:
            A view whose inserted axes have no backing storage.

        Raises:
            InvalidRange: If ``axes`` are not distinct positions of ``target``
                or their count does not make up the rank difference.
            ShapeMismatch: If a kept axis conflicts with ``target``, or an
                inserted axis has no size (anonymous Dimension in a Shape).
        """
        if isinstance(target, GraphTensor):
            self.graph.check_owns(target)
            target_shape, target_sizes = target.shape, target.sizes()
        else:
            target_shape = target
            target_sizes = tuple(None if not d.is_static and d.is_anonymous else d.expression for d in target)
        added = target_shape.rank - self.rank
        if axes is None:
            axes = range(added)
        axes = sorted(normalize_axis(a, target_shape.rank, "expand") for a in axes)
        if len(set(axes)) != len(axes) or len(axes) != added:
            raise InvalidRange(f"Cannot expand {self.shape} to {target_shape} by inserting axes {axes}")

        kept = [a for a in range(target_shape.rank) if a not in axes]
        dims = list(target_shape.dims)
        obligations = []
        for src, out in enumerate(kept):
            if not dims_compatible(self.shape[src], target_shape[out]):
                raise ShapeMismatch(f"expand: axis {src} of {self.shape} conflicts with {target_shape}[{out}]")
            dims[out] = _merge_dims(self.shape[src], target_shape[out])
            if target_sizes[out] is not None:
                obligations.append(check_equal(self.sizes()[src], target_sizes[out], f"expand axis {out}"))

        tracker = self.tracker
        for out in axes:
            if target_sizes[out] is None:
                raise ShapeMismatch(f"expand: inserted axis {out} of {target_shape} has no size")
            tracker = tracker.expand(out, target_sizes[out])
        op = ops.Expand(tuple(axes), tuple(target_sizes[a] for a in axes))
        return self._emit(op, Shape(tuple(dims)), [self], tracker, obligations)

    def expand_axis(self, axis: int, dim: "int | str | Dimension", size: ExprLike | None = None) -> "GraphTensor":
        """Insert one broadcast axis before position ``axis``.

        Args:
            axis: Output position of the new axis.
            dim: Dimension of the new axis.
            size: Size of the new axis; defaults to the Dimension's size.
        """
        dim = to_dimension(dim)
        if size is None:
            if not dim.is_static and dim.is_anonymous:
                raise ShapeMismatch("expand_axis: an anonymous Dimension needs an explicit size")
            size = dim.expression
        if not 0 <= axis <= self.rank:
            raise InvalidRange(f"expand_axis: cannot insert axis {axis} into rank {self.rank}")
        size = Expression(size)
        tracker = self.tracker.expand(axis, size)
        return self._emit(ops.Expand((axis,), (size,)), self.shape.insert(axis, dim), [self], tracker)

    def contiguous(self) -> "GraphTensor":
        """Materialize the view into fresh contiguous storage."""
        return self._emit(ops.Contiguous(), self.shape, [self], self.tracker.contiguous())

    def reshape(
        self, target: "Shape | Sequence[int | str | Dimension]", dims: Sequence[ReshapeDim] | None = None
    ) -> "GraphTensor":
        """Reinterpret the elements under a new Shape.

        Args:
            target: Output Shape.
            dims: Per-output-axis size rule (ConstDim or PrevDim). Inferred
                from ``target`` when omitted.

        Returns:
            The reshaped tensor. A Contiguous node is inserted first when the
            current view is not contiguous.

        Raises:
            InvalidRange: If the axis mapping is not total.
            ShapeMismatch: If the element counts or a constant axis provably
                differ.
        """
        if not isinstance(target, Shape):
            target = Shape.of(*target)
        dims = infer_reshape_dims(self.shape, target) if dims is None else list(dims)
        if len(dims) != target.rank:
            raise InvalidRange(f"reshape: {len(dims)} axis rules for target {target}")
        sizes = self.sizes()
        new_sizes: list[Expression] = []
        for out, (rule, dim) in enumerate(zip(dims, target)):
            if isinstance(rule, ConstDim):
                size = Expression(rule.size)
            elif isinstance(rule, PrevDim) and 0 <= rule.axis < self.rank:
                size = sizes[rule.axis]
            else:
                raise InvalidRange(f"reshape: output axis {out} has no valid size rule ({rule})")
            if isinstance(dim, Constant) and size.known_eq(dim.size) is False:
                raise ShapeMismatch(f"reshape: output axis {out} is {dim} but its rule gives {size}")
            new_sizes.append(size)
        count = check_equal(
            math.prod(sizes, start=Expression(1)), math.prod(new_sizes, start=Expression(1)), "reshape element count"
        )

        source = self if self.tracker.is_contiguous else self.contiguous()
        tracker = source.tracker.reshape(new_sizes)
        return source._emit(ops.Reshape(tuple(new_sizes)), target, [source], tracker, [count])

    def realize(self, shape: "Shape | Sequence[int | str | Dimension]") -> "GraphTensor":
        """Relabel this tensor's Shape without adding a node.

        The node id and view stay the same. Sizes that cannot be compared now
        are recorded on the Graph and checked at resolution.

        Raises:
            ShapeMismatch: If the rank differs or a constant size provably
                differs.
        """
        if not isinstance(shape, Shape):
            shape = Shape.of(*shape)
        if shape.rank != self.rank:
            raise ShapeMismatch(f"realize: rank {self.rank} shape {self.shape} cannot become {shape}")
        pending = []
        for axis, (dim, size) in enumerate(zip(shape, self.sizes())):
            if dim.is_static or not dim.is_anonymous:
                pending.append(check_equal(size, dim.expression, f"realize axis {axis}"))
        graph = self.graph
        for item in pending:
            if item is not None:
                graph.record_obligation(self.id, *item)
        return GraphTensor(self.id, shape, self.tracker, graph)

    def concat_along(self, others: Sequence["GraphTensor"], axis: int) -> "GraphTensor":
        """Concatenate this tensor with ``others`` along ``axis``."""
        return concat([self, *others], axis)

    # Elementwise operations

    def _unary(self, op: ops.Op) -> "GraphTensor":
        return self._emit(op, self.shape, [self], ShapeTracker.new(self.sizes()))

    def _binary(self, op: ops.Op, other: Operand, reverse: bool = False) -> "GraphTensor":
        rhs = self._operand(other)
        lhs = self
        if reverse:
            lhs, rhs = rhs, lhs
        shape, sizes, obligations = _elementwise(op.kind, lhs, rhs)
        return self._emit(op, shape, [lhs, rhs], ShapeTracker.new(sizes), obligations)

    def __add__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Add(), other)

    def __radd__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Add(), other, reverse=True)

    def __mul__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Mul(), other)

    def __rmul__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Mul(), other, reverse=True)

    def __neg__(self) -> "GraphTensor":
        return self * -1

    def __sub__(self, other: Operand) -> "GraphTensor":
        rhs = self._operand(other)
        _elementwise("Sub", self, rhs)
        return self + (-rhs)

    def __rsub__(self, other: Operand) -> "GraphTensor":
        return self._operand(other) + (-self)

    def __truediv__(self, other: Operand) -> "GraphTensor":
        rhs = self._operand(other)
        _elementwise("Div", self, rhs)
        return self * rhs.recip()

    def __rtruediv__(self, other: Operand) -> "GraphTensor":
        return self._operand(other) * self.recip()

    def __mod__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Mod(), other)

    def __lt__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.LessThan(), other)

    def __gt__(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.LessThan(), other, reverse=True)

    def maximum(self, other: Operand) -> "GraphTensor":
        return self._binary(ops.Max(), other)

    def log2(self) -> "GraphTensor":
        return self._unary(ops.Log2())

    def exp2(self) -> "GraphTensor":
        return self._unary(ops.Exp2())

    def sin(self) -> "GraphTensor":
        return self._unary(ops.Sin())

    def cos(self) -> "GraphTensor":
        return self._unary(ops.Cos())

    def sqrt(self) -> "GraphTensor":
        return self._unary(ops.Sqrt())

    def recip(self) -> "GraphTensor":
        return self._unary(ops.Recip())

    def exp(self) -> "GraphTensor":
        return (self * LOG2_E).exp2()

    def log(self) -> "GraphTensor":
        return self.log2() * LN_2

    def sigmoid(self) -> "GraphTensor":
        return ((-self).exp() + 1).recip()

    def relu(self) -> "GraphTensor":
        return self.maximum(0)

    # Reductions

    def _reduce(self, op_type: type[ops.Op], axis: int) -> "GraphTensor":
        axis = normalize_axis(axis, self.rank, op_type.kind)
        sizes = self.sizes()
        tracker = ShapeTracker.new(sizes[:axis] + sizes[axis + 1 :])
        return self._emit(op_type(axis), self.shape.remove(axis), [self], tracker)

    def sum_reduce(self, axis: int) -> "GraphTensor":
        """Sum over ``axis``, removing it."""
        return self._reduce(ops.SumReduce, axis)

    def max_reduce(self, axis: int) -> "GraphTensor":
        """Max over ``axis``, removing it."""
        return self._reduce(ops.MaxReduce, axis)

    def mean_reduce(self, axis: int) -> "GraphTensor":
        """Mean over ``axis``; the divisor is the axis size, symbolic if need be."""
        axis = normalize_axis(axis, self.rank, "mean_reduce")
        count = self.size(axis)
        total = self.sum_reduce(axis)
        value = float(count.to_int()) if count.is_constant else count
        return total * self.graph.constant(value).expand(total).recip()

    def softmax(self, axis: int) -> "GraphTensor":
        """Numerically stable softmax along ``axis``."""
        axis = normalize_axis(axis, self.rank, "softmax")
        dim, size = self.shape[axis], self.size(axis)
        peak = self.max_reduce(axis).expand_axis(axis, dim, size)
        shifted = (self - peak).exp()
        total = shifted.sum_reduce(axis).expand_axis(axis, dim, size)
        return shifted / total

    def matmul(self, other: "GraphTensor") -> "GraphTensor":
        """Matrix product over the last axis of ``self``.

        Supports ``(M, K) @ (K, N)``, ``(..., M, K) @ (K, N)`` and batched
        ``(..., M, K) @ (..., K, N)`` for rank-3 and rank-4 operands.

        Raises:
            ShapeMismatch: On unsupported ranks or conflicting sizes.
        """
        self.graph.check_owns(other)
        rank = self.rank
        if rank < 2 or rank > 4 or other.rank not in (2, rank):
            raise ShapeMismatch(f"matmul: unsupported operand shapes {self.shape} @ {other.shape}")
        paired = [(rank - 1, other.rank - 2)]
        if other.rank == rank:
            paired.extend((axis, axis) for axis in range(rank - 2))
        for a, b in paired:
            if not dims_compatible(self.shape[a], other.shape[b]) or self.size(a).known_eq(other.size(b)) is False:
                raise ShapeMismatch(f"matmul: axis {a} of {self.shape} does not match axis {b} of {other.shape}")
        lhs = self.expand_axis(rank, other.shape[-1], other.size(-1))
        if other.rank == 2:
            rhs = other.expand(lhs, axes=range(rank - 1))
        else:
            rhs = other.expand_axis(rank - 2, self.shape[-2], self.size(-2))
        return (lhs * rhs).sum_reduce(rank - 1)

    def __matmul__(self, other: "GraphTensor") -> "GraphTensor":
        return self.matmul(other)

    def __repr__(self) -> str:
        return f"GraphTensor(id={self.id}, shape={self.shape}, view={self.tracker})"


def concat(tensors: Sequence[GraphTensor], axis: int) -> GraphTensor:
    """Concatenate tensors along ``axis``.

    Args:
        tensors: Operands from one Graph, all of the same rank.
        axis: Axis to join along.

    Returns:
        The joined tensor. Its ``axis`` Dimension is the Constant sum when
        every input is Constant there, else anonymous Dynamic.

    Raises:
        ShapeMismatch: If ranks differ or another axis provably differs.
        ValueError: If the tensors do not share one Graph.
    """
    if not tensors:
        raise ValueError("concat needs at least one tensor")
    first = tensors[0]
    graph = first.graph
    for tensor in tensors[1:]:
        graph.check_owns(tensor)
        if tensor.rank != first.rank:
            raise ShapeMismatch(f"concat: rank {first.rank} {first.shape} vs rank {tensor.rank} {tensor.shape}")
    axis = normalize_axis(axis, first.rank, "concat")

    dims = list(first.shape.dims)
    sizes = list(first.sizes())
    obligations = []
    for tensor in tensors[1:]:
        for i, (dim, size) in enumerate(zip(tensor.shape, tensor.sizes())):
            if i == axis:
                continue
            if not dims_compatible(dims[i], dim):
                raise ShapeMismatch(f"concat: axis {i} is {dims[i]} vs {dim}")
            obligations.append(check_equal(sizes[i], size, f"concat axis {i}"))
            dims[i] = _merge_dims(dims[i], dim)

    joined = [t.shape[axis] for t in tensors]
    if all(isinstance(d, Constant) for d in joined):
        dims[axis] = Constant(sum(d.size for d in joined))
    else:
        dims[axis] = Dynamic()
    sizes[axis] = sum((t.size(axis) for t in tensors), start=Expression(0))
    return first._emit(ops.Concat(axis), Shape(tuple(dims)), tensors, ShapeTracker.new(sizes), obligations)
