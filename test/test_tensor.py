"""Unit tests for shapegraph.tensor module.

Tests view operations (slice, permute, expand, reshape, concat, realize),
elementwise and reduction primitives, and composite ops built from them.

Run with: pytest test/test_tensor.py -v
"""

from collections.abc import Callable

import pytest
from conftest import kinds, static_sizes

from shapegraph.dimension import ConstDim, Constant, Dynamic, PrevDim, Shape
from shapegraph.errors import InvalidRange, ShapeMismatch
from shapegraph.expression import Expression
from shapegraph.graph import Graph
from shapegraph.resolve import resolve
from shapegraph.slicing import RangeSpec
from shapegraph.tensor import GraphTensor, concat


class TestSlice:
    """Tests for GraphTensor.slice() and indexing."""

    def test_full_slice_preserves_shape(self, activations: GraphTensor) -> None:
        """Full-range slices keep the exact Dimensions."""
        assert activations.slice().shape == activations.shape
        assert activations[...].shape == activations.shape
        assert activations[:, :, :].shape == activations.shape

    @pytest.mark.parametrize("axis", [0, 1, 2])
    def test_partial_slice_is_dynamic(self, activations: GraphTensor, axis: int) -> None:
        """A partial slice with constant bounds makes only that axis Dynamic."""
        specs = [RangeSpec.full()] * 3
        specs[axis] = RangeSpec.bounded(0, 1)
        result = activations.slice(*specs)
        assert result.shape == activations.shape.replace(axis, Dynamic())

    def test_nested_slice(self, graph: Graph) -> None:
        """[2, 8) then [1, 4) equals a single [3, 6)."""
        x = graph.new_tensor("x", [10])
        nested = x[2:8][1:4]
        single = x[3:6]
        assert nested.tracker == single.tracker
        assert static_sizes(nested) == (3,)

    def test_invalid_range_leaves_graph_unmodified(self, graph: Graph) -> None:
        """start=6, end=3 raises InvalidRange without inserting a node."""
        x = graph.new_tensor("x", [10])
        before = len(graph)
        with pytest.raises(InvalidRange):
            x.slice(RangeSpec.bounded(6, 3))
        with pytest.raises(InvalidRange):
            x[6:3]
        assert len(graph) == before

    def test_integer_index_rejected(self, activations: GraphTensor) -> None:
        """Integer indexing is not a view."""
        with pytest.raises(TypeError):
            activations[0]

    def test_ellipsis(self, activations: GraphTensor) -> None:
        """Ellipsis fills the leading axes with full ranges."""
        result = activations[..., 2:6]
        assert result.shape == Shape((Dynamic("batch"), Dynamic("seq"), Dynamic()))
        assert static_sizes(result) == (None, None, 4)


class TestPermute:
    """Tests for permute and transpose."""

    def test_round_trip(self, activations: GraphTensor) -> None:
        """Permuting by p then its inverse restores order and Dimensions."""
        perm = (2, 0, 1)
        inverse = tuple(perm.index(axis) for axis in range(3))
        permuted = activations.permute(perm)
        assert permuted.shape == Shape.of(8, "batch", "seq")
        restored = permuted.permute(*inverse)
        assert restored.shape == activations.shape
        assert restored.tracker == activations.tracker

    def test_transpose(self, activations: GraphTensor) -> None:
        """transpose swaps two axes."""
        assert activations.transpose(-1, 0).shape == Shape.of(8, "seq", "batch")

    def test_not_a_bijection(self, activations: GraphTensor, graph: Graph) -> None:
        """Invalid permutations insert nothing."""
        with pytest.raises(InvalidRange):
            activations.permute(0, 0, 1)
        assert len(graph) == 1


class TestExpand:
    """Tests for expand and expand_axis."""

    def test_expand_to_shape(self, graph: Graph) -> None:
        """Leading axes are inserted as fake axes."""
        bias = graph.new_tensor("bias", [8])
        result = bias.expand(Shape.of("batch", "seq", 8))
        assert result.shape == Shape.of("batch", "seq", 8)
        assert result.tracker.fake_axes() == (0, 1)

    def test_expand_explicit_axes(self, graph: Graph) -> None:
        """Inserted axes may sit anywhere in the target."""
        x = graph.new_tensor("x", ["seq"])
        result = x.expand(Shape.of("seq", 4), axes=[1])
        assert result.shape == Shape.of("seq", 4)
        assert result.tracker.fake_axes() == (1,)

    def test_expand_to_tensor(self, activations: GraphTensor, graph: Graph) -> None:
        """Expanding to a tensor copies its sizes."""
        scalar = graph.constant(1.0)
        result = scalar.expand(activations)
        assert result.shape == activations.shape
        assert result.sizes() == activations.sizes()

    @pytest.mark.parametrize(
        "target,axes,error",
        [
            (Shape.of("b", 7), None, ShapeMismatch),
            (Shape((Dynamic(), Constant(8))), None, ShapeMismatch),
            (Shape.of("b", 8), [0, 1], InvalidRange),
        ],
        ids=["conflicting-size", "anonymous-target", "wrong-axis-count"],
    )
    def test_invalid(self, graph: Graph, target: Shape, axes: list[int] | None, error: type) -> None:
        """Invalid expansions raise before insertion."""
        x = graph.new_tensor("x", [8])
        with pytest.raises(error):
            x.expand(target, axes)
        assert len(graph) == 1

    def test_expand_axis(self, graph: Graph) -> None:
        """expand_axis inserts one axis with its Dimension."""
        x = graph.new_tensor("x", ["b", 8])
        result = x.expand_axis(1, "heads")
        assert result.shape == Shape.of("b", "heads", 8)
        assert result.size(1) == Expression("heads")


class TestReshape:
    """Tests for reshape."""

    def test_dynamic_reshape_passthrough(self, activations: GraphTensor, graph: Graph) -> None:
        """Run-time axes pass through a reshape unchanged."""
        result = activations.reshape(Shape.of("batch", "seq", 2, 4))
        assert result.shape == Shape.of("batch", "seq", 2, 4)
        assert kinds(graph) == ["Input", "Reshape"]
        assert resolve(graph, {"batch": 2, "seq": 5}).shape(result) == (2, 5, 2, 4)

    def test_explicit_rules(self, activations: GraphTensor) -> None:
        """Explicit ConstDim/PrevDim rules size an anonymous target axis."""
        target = Shape((Dynamic("batch"), Dynamic(), Constant(8)))
        result = activations.reshape(target, [PrevDim(0), PrevDim(1), ConstDim(8)])
        assert result.size(1) == Expression("seq")

    def test_merge_axes(self, activations: GraphTensor, graph: Graph) -> None:
        """Merged axes keep the element count."""
        split = activations.reshape(Shape.of("batch", "seq", 2, 4))
        merged = split.reshape(["batch", "seq", 8])
        assert merged.shape == activations.shape
        assert graph.obligations == []

    def test_non_contiguous_inserts_contiguous(self, graph: Graph) -> None:
        """A permuted view is materialized before reshaping."""
        x = graph.new_tensor("x", [4, 6])
        result = x.transpose(0, 1).reshape([24])
        assert kinds(graph) == ["Input", "Permute", "Contiguous", "Reshape"]
        assert static_sizes(result) == (24,)

    @pytest.mark.parametrize(
        "target,error",
        [([4, 5], ShapeMismatch), (["other", 6], InvalidRange)],
        ids=["element-count", "not-total"],
    )
    def test_invalid(self, graph: Graph, target: list, error: type) -> None:
        """Invalid reshapes raise before any node is inserted."""
        x = graph.new_tensor("x", [4, 6]).transpose(0, 1)
        before = len(graph)
        with pytest.raises(error):
            x.reshape(target)
        assert len(graph) == before


class TestConcat:
    """Tests for concat."""

    def test_constant_axis_sums(self, graph: Graph) -> None:
        """(4, 3) ++ (4, 5) along axis 1 is (4, 8)."""
        a = graph.new_tensor("a", [4, 3])
        b = graph.new_tensor("b", [4, 5])
        joined = concat([a, b], axis=1)
        assert joined.shape == Shape.of(4, 8)
        assert static_sizes(joined) == (4, 8)

    def test_slices_recover_inputs(self, graph: Graph) -> None:
        """Slicing [0, 3) and [3, 8) recovers the input shapes."""
        a = graph.new_tensor("a", [4, 3])
        b = graph.new_tensor("b", [4, 5])
        joined = a.concat_along([b], axis=1)
        left = joined[:, 0:3]
        right = joined[:, 3:8]
        assert static_sizes(left) == (4, 3)
        assert static_sizes(right) == (4, 5)
        assert left.realize(a.shape).shape == a.shape
        assert right.realize(b.shape).shape == b.shape
        assert graph.obligations == []

    def test_dynamic_axis(self, graph: Graph) -> None:
        """A Dynamic input axis makes the joined axis anonymous Dynamic."""
        past = graph.new_tensor("past", ["batch", "prev", 8])
        new = graph.new_tensor("new", ["batch", "seq", 8])
        joined = concat([past, new], axis=-2)
        assert joined.shape == Shape((Dynamic("batch"), Dynamic(), Constant(8)))
        assert resolve(graph, {"batch": 1, "prev": 3, "seq": 2}).shape(joined) == (1, 5, 8)

    @pytest.mark.parametrize(
        "shapes",
        [([4, 3], [5, 3]), ([4, 3], [4, 3, 1])],
        ids=["other-axis-differs", "rank-differs"],
    )
    def test_mismatch(self, graph: Graph, shapes: tuple[list[int], list[int]]) -> None:
        """Disagreeing inputs raise ShapeMismatch."""
        a = graph.new_tensor("a", shapes[0])
        b = graph.new_tensor("b", shapes[1])
        with pytest.raises(ShapeMismatch):
            concat([a, b], axis=1)
        assert len(graph) == 2


class TestRealize:
    """Tests for realize."""

    def test_same_node_and_view(self, activations: GraphTensor, graph: Graph) -> None:
        """realize relabels without inserting a node."""
        result = activations.realize(Shape.of("batch", "tokens", 8))
        assert result.id == activations.id
        assert result.tracker == activations.tracker
        assert result.shape == Shape.of("batch", "tokens", 8)
        assert len(graph) == 1
        assert [o.reason for o in graph.obligations] == ["realize axis 1"]

    @pytest.mark.parametrize(
        "target",
        [Shape.of("batch", "seq"), Shape.of("batch", "seq", 9)],
        ids=["rank", "constant-size"],
    )
    def test_static_contradiction(self, activations: GraphTensor, target: Shape) -> None:
        """Provable mismatches raise ShapeMismatch at build time."""
        with pytest.raises(ShapeMismatch):
            activations.realize(target)


class TestElementwise:
    """Tests for elementwise primitives."""

    @pytest.mark.parametrize(
        "method", ["log2", "exp2", "sin", "cos", "sqrt", "recip", "exp", "log", "sigmoid", "relu", "__neg__"]
    )
    def test_unary_preserves_shape(self, activations: GraphTensor, method: str) -> None:
        """Unary ops keep the input Shape."""
        assert getattr(activations, method)().shape == activations.shape

    @pytest.mark.parametrize(
        "fn",
        [
            lambda x: x + 1,
            lambda x: 1 + x,
            lambda x: x - 1,
            lambda x: 1 - x,
            lambda x: x * 2,
            lambda x: x / 2,
            lambda x: 2 / x,
            lambda x: x % 3,
            lambda x: x < 0,
            lambda x: x > 0,
            lambda x: x.maximum(0),
        ],
        ids=["add", "radd", "sub", "rsub", "mul", "div", "rdiv", "mod", "lt", "gt", "maximum"],
    )
    def test_scalar_broadcast(self, activations: GraphTensor, fn: Callable[[GraphTensor], GraphTensor]) -> None:
        """Scalar operands broadcast to the tensor's Shape."""
        assert fn(activations).shape == activations.shape

    def test_dimension_merge(self, graph: Graph) -> None:
        """The output keeps the most specific Dimension per axis."""
        x = graph.new_tensor("x", ["batch", 8])[:, 0:4]
        y = graph.new_tensor("y", ["batch", 4])
        assert (x + y).shape == Shape.of("batch", 4)

    @pytest.mark.parametrize(
        "op",
        [lambda a, b: a + b, lambda a, b: a - b, lambda a, b: a / b],
        ids=["add", "sub", "div"],
    )
    def test_constant_mismatch(self, graph: Graph, op: Callable[[GraphTensor, GraphTensor], GraphTensor]) -> None:
        """Differing Constant axes raise without inserting nodes."""
        a = graph.new_tensor("a", [4, 8])
        b = graph.new_tensor("b", [4, 7])
        with pytest.raises(ShapeMismatch):
            op(a, b)
        assert len(graph) == 2

    def test_rank_mismatch(self, graph: Graph) -> None:
        """Non-scalar operands must have equal rank."""
        a = graph.new_tensor("a", [4, 8])
        b = graph.new_tensor("b", [8])
        with pytest.raises(ShapeMismatch):
            a * b

    def test_foreign_graph(self, graph: Graph) -> None:
        """Operands from different Graphs are rejected."""
        a = graph.new_tensor("a", [4])
        other = Graph()
        b = other.new_tensor("b", [4])
        with pytest.raises(ValueError):
            a + b


class TestReductions:
    """Tests for reductions and composites."""

    @pytest.mark.parametrize("method", ["sum_reduce", "max_reduce", "mean_reduce"])
    def test_reduce_removes_axis(self, activations: GraphTensor, method: str) -> None:
        """Reducing an axis removes it from the Shape."""
        assert getattr(activations, method)(-1).shape == Shape.of("batch", "seq")
        assert getattr(activations, method)(1).shape == Shape.of("batch", 8)

    def test_reduce_axis_out_of_range(self, activations: GraphTensor) -> None:
        """Reduction axes are range checked."""
        with pytest.raises(InvalidRange):
            activations.sum_reduce(3)

    def test_mean_divides_by_symbolic_size(self, activations: GraphTensor, graph: Graph) -> None:
        """mean over a run-time axis divides by that axis's size Expression."""
        activations.mean_reduce(1)
        constants = [node.op.value for node in graph.finalized() if node.kind == "Constant"]
        assert constants == [Expression("seq")]

    def test_softmax(self, activations: GraphTensor, graph: Graph) -> None:
        """softmax keeps the Shape and resolves to the input's sizes."""
        result = activations.softmax(-1)
        assert result.shape == activations.shape
        assert resolve(graph, {"batch": 2, "seq": 5}).shape(result) == (2, 5, 8)


class TestMatmul:
    """Tests for matmul."""

    @pytest.mark.parametrize(
        "lhs,rhs,expected,resolved",
        [
            ([4, 8], [8, 3], Shape.of(4, 3), (4, 3)),
            (["batch", "seq", 8], [8, 16], Shape.of("batch", "seq", 16), (2, 5, 16)),
            (["batch", "seq", 8], ["batch", 8, "seq"], Shape.of("batch", "seq", "seq"), (2, 5, 5)),
            (["batch", 4, "seq", 8], ["batch", 4, 8, "seq"], Shape.of("batch", 4, "seq", "seq"), (2, 4, 5, 5)),
        ],
        ids=["2d", "3d-by-2d", "batched-3d", "batched-4d"],
    )
    def test_shapes(self, graph: Graph, lhs: list, rhs: list, expected: Shape, resolved: tuple[int, ...]) -> None:
        """matmul contracts the last axis of lhs with the second-last of rhs."""
        a = graph.new_tensor("a", lhs)
        b = graph.new_tensor("b", rhs)
        result = a @ b
        assert result.shape == expected
        assert resolve(graph, {"batch": 2, "seq": 5}).shape(result) == resolved

    @pytest.mark.parametrize(
        "lhs,rhs",
        [([4, 8], [7, 3]), ([2, 4, 8], [3, 8, 4]), ([8], [8, 3])],
        ids=["contraction", "batch", "rank"],
    )
    def test_mismatch(self, graph: Graph, lhs: list, rhs: list) -> None:
        """Mismatched operands raise before any node is inserted."""
        a = graph.new_tensor("a", lhs)
        b = graph.new_tensor("b", rhs)
        with pytest.raises(ShapeMismatch):
            a.matmul(b)
        assert len(graph) == 2
