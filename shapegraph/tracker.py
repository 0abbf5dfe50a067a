"""ShapeTracker: the zero-copy view representation of a tensor.

A tracker records the physical axis sizes of the underlying storage, a
half-open ``[start, end)`` range per physical axis, which physical axes are
fake (broadcast, no storage), and the logical axis order. Slice, permute and
expand only rewrite this bookkeeping; no data moves at build time.

Ranges are stored absolutely (relative to the physical axis), so composing a
slice of a slice is plain range intersection and applying transforms one by
one yields the same tracker as applying the fused transform once.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import NamedTuple

from shapegraph.errors import InvalidRange
from shapegraph.expression import Expression, ExprLike

__all__ = ["ShapeTracker", "TensorView"]


@dataclass(frozen=True)
class ShapeTracker:
    """Per-axis ranges plus axis order.

    Attributes:
        dims: Size of each physical axis.
        indexes: Physical axis of each logical axis, in logical order.
        fake: Per physical axis, True if it was introduced by expand.
        slices: Absolute ``[start, end)`` per physical axis.
    """

    dims: tuple[Expression, ...]
    indexes: tuple[int, ...]
    fake: tuple[bool, ...]
    slices: tuple[tuple[Expression, Expression], ...]

    @classmethod
    def new(cls, sizes: Sequence[ExprLike]) -> "ShapeTracker":
        """Create a contiguous tracker over storage of the given sizes.

        Args:
            sizes: Per-axis sizes (ints, symbol names or Expressions).

        Returns:
            Tracker with identity order and full ranges.
        """
        dims = tuple(Expression(s) for s in sizes)
        return cls(
            dims=dims,
            indexes=tuple(range(len(dims))),
            fake=(False,) * len(dims),
            slices=tuple((Expression(0), d) for d in dims),
        )

    @property
    def rank(self) -> int:
        return len(self.indexes)

    def shape(self) -> tuple[Expression, ...]:
        """Logical per-axis sizes."""
        return tuple(self.slices[i][1] - self.slices[i][0] for i in self.indexes)

    def ranges(self) -> tuple[tuple[Expression, Expression], ...]:
        """Logical per-axis ``[start, end)`` ranges over the physical axes."""
        return tuple(self.slices[i] for i in self.indexes)

    def fake_axes(self) -> tuple[int, ...]:
        """Logical axes that are broadcast; consumers replicate along them."""
        return tuple(axis for axis, i in enumerate(self.indexes) if self.fake[i])

    @property
    def is_contiguous(self) -> bool:
        """True if the view is the whole storage in storage order."""
        in_order = self.indexes == tuple(range(len(self.dims)))
        full = all(start == 0 and end == dim for (start, end), dim in zip(self.slices, self.dims))
        return in_order and full and not any(self.fake)

    @property
    def is_concrete(self) -> bool:
        """True if every size and bound is an integer literal."""
        bounds = [b for pair in self.slices for b in pair]
        return all(e.is_constant for e in (*self.dims, *bounds))

    @property
    def symbols(self) -> frozenset[str]:
        """Run-time symbols this view depends on."""
        names: set[str] = set()
        for expr in (*self.dims, *(b for pair in self.slices for b in pair)):
            names |= expr.symbols
        return frozenset(names)

    def slice(self, ranges: Sequence[tuple[ExprLike, ExprLike]]) -> "ShapeTracker":
        """Intersect the current view with new per-axis ranges.

        Each range is relative to the current view of its axis. The composed
        range is ``[cur_start + start, min(cur_start + end, cur_end))``.

        Args:
            ranges: One ``(start, end)`` pair per logical axis.

        Returns:
            The composed tracker.

        Raises:
            InvalidRange: If the number of ranges differs from the rank, or
                start > end before or after composition (when decidable).
        """
        if len(ranges) != self.rank:
            raise InvalidRange(f"Got {len(ranges)} ranges for a rank-{self.rank} view")
        slices = list(self.slices)
        for axis, (start, end) in enumerate(ranges):
            start, end = Expression(start), Expression(end)
            if start.known_le(end) is False:
                raise InvalidRange(f"Axis {axis}: slice start {start} is past end {end}")
            phys = self.indexes[axis]
            cur_start, cur_end = slices[phys]
            new_start = cur_start + start
            new_end = Expression.min(cur_start + end, cur_end)
            if new_start.known_le(new_end) is False:
                raise InvalidRange(
                    f"Axis {axis}: slice [{start}, {end}) of view [{cur_start}, {cur_end}) "
                    f"composes to empty-inverted range [{new_start}, {new_end})"
                )
            slices[phys] = (new_start, new_end)
        return replace(self, slices=tuple(slices))

    def permute(self, axes: Sequence[int]) -> "ShapeTracker":
        """Reorder logical axes; ``axes[i]`` is the source axis of output axis i.

        Raises:
            InvalidRange: If ``axes`` is not a permutation of ``range(rank)``.
        """
        axes = tuple(axes)
        if sorted(axes) != list(range(self.rank)):
            raise InvalidRange(f"Permutation {axes} is not a bijection over {self.rank} axes")
        return replace(self, indexes=tuple(self.indexes[a] for a in axes))

    def expand(self, axis: int, size: ExprLike) -> "ShapeTracker":
        """Insert a broadcast axis of ``size`` before logical position ``axis``.

        Raises:
            InvalidRange: If ``axis`` is outside ``[0, rank]``.
        """
        if not 0 <= axis <= self.rank:
            raise InvalidRange(f"Cannot insert axis {axis} into a rank-{self.rank} view")
        size = Expression(size)
        indexes = list(self.indexes)
        indexes.insert(axis, len(self.dims))
        return ShapeTracker(
            dims=self.dims + (size,),
            indexes=tuple(indexes),
            fake=self.fake + (True,),
            slices=self.slices + ((Expression(0), size),),
        )

    def reshape(self, sizes: Sequence[ExprLike]) -> "ShapeTracker":
        """Reinterpret contiguous storage with new sizes.

        Raises:
            InvalidRange: If the view is not contiguous.
        """
        if not self.is_contiguous:
            raise InvalidRange(f"Cannot reshape non-contiguous view {self}")
        return ShapeTracker.new(sizes)

    def contiguous(self) -> "ShapeTracker":
        """Tracker of a fresh buffer holding this view's elements."""
        return ShapeTracker.new(self.shape())

    def substitute(self, bindings: Mapping[str, ExprLike]) -> "ShapeTracker":
        """Substitute bound symbols in every size and bound."""
        return ShapeTracker(
            dims=tuple(d.substitute(bindings) for d in self.dims),
            indexes=self.indexes,
            fake=self.fake,
            slices=tuple((s.substitute(bindings), e.substitute(bindings)) for s, e in self.slices),
        )

    def resolve(self, bindings: Mapping[str, int]) -> "ShapeTracker":
        """Bind every symbol, producing a concrete tracker.

        Ranges whose order was undecidable at build time are checked again
        here, once their bounds are concrete.

        Raises:
            UnboundSymbol: If a symbol has no binding.
            InvalidRange: If a bound range has start > end.
        """
        slices = []
        for axis, (start, end) in enumerate(self.slices):
            lo, hi = start.resolve(bindings), end.resolve(bindings)
            if lo > hi:
                raise InvalidRange(f"Range [{start}, {end}) on physical axis {axis} resolves to [{lo}, {hi})")
            slices.append((Expression(lo), Expression(hi)))
        return ShapeTracker(
            dims=tuple(Expression(d.resolve(bindings)) for d in self.dims),
            indexes=self.indexes,
            fake=self.fake,
            slices=tuple(slices),
        )

    def concrete_shape(self) -> tuple[int, ...]:
        """Logical sizes of a concrete tracker.

        Raises:
            ValueError: If a size still depends on a symbol.
        """
        sizes = [s.to_int() for s in self.shape()]
        if any(s is None for s in sizes):
            raise ValueError(f"Tracker {self} is not concrete")
        return tuple(sizes)

    def __repr__(self) -> str:
        ranges = ", ".join(
            f"{'*' if self.fake[i] else ''}[{self.slices[i][0]}:{self.slices[i][1]}]" for i in self.indexes
        )
        return f"ShapeTracker({ranges})"


class TensorView(NamedTuple):
    """A node id paired with the view of its output.

    Attributes:
        tensor_id: Graph node id.
        shape: View of the node's output.
    """

    tensor_id: int
    shape: ShapeTracker
