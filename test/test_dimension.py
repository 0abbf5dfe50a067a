"""Unit tests for shapegraph.dimension module.

Tests the Constant/Dynamic axis classification, Shape construction and
derivation, and inference of reshape size rules.

Run with: pytest test/test_dimension.py -v
"""

import pytest

from shapegraph.dimension import (
    ConstDim,
    Constant,
    Dynamic,
    PrevDim,
    Shape,
    dims_compatible,
    infer_reshape_dims,
    to_dimension,
)
from shapegraph.errors import InvalidRange
from shapegraph.expression import Expression


class TestDimension:
    """Tests for Constant and Dynamic."""

    def test_constant_expression(self) -> None:
        """A Constant exposes its size as a literal Expression."""
        dim = Constant(8)
        assert dim.is_static
        assert dim.expression.to_int() == 8

    @pytest.mark.parametrize("size", [-1, 2.0, True], ids=["negative", "float", "bool"])
    def test_constant_rejects_invalid_size(self, size: object) -> None:
        """Constant sizes are non-negative ints."""
        with pytest.raises(ValueError):
            Constant(size)

    def test_named_dynamic(self) -> None:
        """A named Dynamic exposes its symbol."""
        dim = Dynamic("seq")
        assert not dim.is_static
        assert not dim.is_anonymous
        assert dim.expression == Expression("seq")

    def test_anonymous_dynamic(self) -> None:
        """The default Dynamic is anonymous and has no size expression."""
        dim = Dynamic()
        assert dim.is_anonymous
        with pytest.raises(ValueError):
            dim.expression

    @pytest.mark.parametrize(
        "item,expected",
        [(4, Constant(4)), ("batch", Dynamic("batch")), (Dynamic(), Dynamic())],
        ids=["int", "str", "dimension"],
    )
    def test_to_dimension(self, item: object, expected: object) -> None:
        """ints become Constant, strs become Dynamic, Dimensions pass through."""
        assert to_dimension(item) == expected

    def test_to_dimension_rejects_bool(self) -> None:
        """bool is not accepted as a size."""
        with pytest.raises(TypeError):
            to_dimension(True)

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            (Constant(4), Constant(4), True),
            (Constant(4), Constant(5), False),
            (Constant(4), Dynamic("n"), True),
            (Dynamic("n"), Dynamic("m"), True),
        ],
        ids=["same-constant", "different-constant", "constant-dynamic", "two-dynamic"],
    )
    def test_dims_compatible(self, a: object, b: object, expected: bool) -> None:
        """Only two differing Constants are incompatible."""
        assert dims_compatible(a, b) is expected


class TestShape:
    """Tests for Shape."""

    def test_of(self) -> None:
        """Shape.of classifies each item."""
        shape = Shape.of("batch", "seq", 8)
        assert shape.rank == 3
        assert len(shape) == 3
        assert list(shape) == [Dynamic("batch"), Dynamic("seq"), Constant(8)]
        assert shape[2] == Constant(8)

    def test_repr(self) -> None:
        """repr lists sizes and symbol names."""
        assert repr(Shape.of("batch", 8)) == "Shape(batch, 8)"

    def test_derivations_do_not_mutate(self) -> None:
        """replace/insert/remove/permute return new Shapes."""
        shape = Shape.of("b", 4)
        assert shape.replace(1, Dynamic()) == Shape((Dynamic("b"), Dynamic()))
        assert shape.insert(0, Constant(2)) == Shape.of(2, "b", 4)
        assert shape.remove(0) == Shape.of(4)
        assert shape.permute((1, 0)) == Shape.of(4, "b")
        assert shape == Shape.of("b", 4)

    def test_static_sizes(self) -> None:
        """static_sizes is None unless every axis is Constant."""
        assert Shape.of(2, 3).static_sizes() == (2, 3)
        assert Shape.of(2, "n").static_sizes() is None

    def test_hashable(self) -> None:
        """Equal Shapes hash equal."""
        assert hash(Shape.of("b", 4)) == hash(Shape.of("b", 4))


class TestInferReshapeDims:
    """Tests for infer_reshape_dims."""

    def test_split_last_axis(self) -> None:
        """Named axes reuse their source axis; constants become ConstDim."""
        dims = infer_reshape_dims(Shape.of("batch", "seq", 8), Shape.of("batch", "seq", 2, 4))
        assert dims == [PrevDim(0), PrevDim(1), ConstDim(2), ConstDim(4)]

    def test_swapped_symbols(self) -> None:
        """A named axis is found wherever it sits in the source."""
        dims = infer_reshape_dims(Shape.of("a", "b", 6), Shape.of("b", "a", 6))
        assert dims == [PrevDim(1), PrevDim(0), ConstDim(6)]

    def test_repeated_symbol_prefers_same_position(self) -> None:
        """Each source axis is used at most once, same position first."""
        dims = infer_reshape_dims(Shape.of("s", "s"), Shape.of("s", "s"))
        assert dims == [PrevDim(0), PrevDim(1)]

    @pytest.mark.parametrize(
        "target",
        [Shape.of("other", 8), Shape((Dynamic(), Constant(8)))],
        ids=["unknown-symbol", "anonymous"],
    )
    def test_not_total(self, target: Shape) -> None:
        """A dynamic target axis with no source axis is rejected."""
        with pytest.raises(InvalidRange):
            infer_reshape_dims(Shape.of("batch", 8), target)
