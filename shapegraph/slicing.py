"""Range specifications and the Range-to-Dimension mapping rule.

Callers describe a per-axis slice in any bound style (full, from-X, to-X,
to-X-inclusive, [X, Y), [X, Y]). This module canonicalizes every style to a
half-open ``[start, end)`` pair of Expressions, which is the only form the
ShapeTracker deals in, and decides the output Dimension of each sliced axis.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from shapegraph.config import UNBOUNDED_SIZE
from shapegraph.dimension import Dimension, Dynamic, Shape
from shapegraph.errors import InvalidRange
from shapegraph.expression import Expression, ExprLike

__all__ = [
    "BoundKind",
    "Bound",
    "RangeSpec",
    "SliceLike",
    "as_range_spec",
    "start_bound",
    "end_bound",
    "range_to_dim",
    "normalize_specs",
    "slice_shape",
    "to_ranges",
]


class BoundKind(Enum):
    """How a range endpoint relates to its value."""

    INCLUDED = "included"
    EXCLUDED = "excluded"
    UNBOUNDED = "unbounded"


@dataclass(frozen=True)
class Bound:
    """One endpoint of a range.

    Attributes:
        kind: Whether ``value`` is included, excluded, or absent.
        value: Endpoint value; None when unbounded.
    """

    kind: BoundKind
    value: Expression | None = None

    @classmethod
    def included(cls, value: ExprLike) -> "Bound":
        return cls(BoundKind.INCLUDED, Expression(value))

    @classmethod
    def excluded(cls, value: ExprLike) -> "Bound":
        return cls(BoundKind.EXCLUDED, Expression(value))

    @classmethod
    def unbounded(cls) -> "Bound":
        return cls(BoundKind.UNBOUNDED)


@dataclass(frozen=True)
class RangeSpec:
    """Per-axis slice specification.

    Attributes:
        start: Start endpoint.
        end: End endpoint.
    """

    start: Bound = field(default_factory=Bound.unbounded)
    end: Bound = field(default_factory=Bound.unbounded)

    @classmethod
    def full(cls) -> "RangeSpec":
        """``..``: the whole axis."""
        return cls()

    @classmethod
    def from_(cls, start: ExprLike) -> "RangeSpec":
        """``start..``: from ``start`` to the end of the axis."""
        return cls(start=Bound.included(start))

    @classmethod
    def to(cls, end: ExprLike) -> "RangeSpec":
        """``..end``: from 0 up to ``end`` exclusive."""
        return cls(end=Bound.excluded(end))

    @classmethod
    def to_inclusive(cls, end: ExprLike) -> "RangeSpec":
        """``..=end``: from 0 up to ``end`` inclusive."""
        return cls(end=Bound.included(end))

    @classmethod
    def bounded(cls, start: ExprLike, end: ExprLike) -> "RangeSpec":
        """``start..end``: half-open ``[start, end)``."""
        return cls(start=Bound.included(start), end=Bound.excluded(end))

    @classmethod
    def bounded_inclusive(cls, start: ExprLike, end: ExprLike) -> "RangeSpec":
        """``start..=end``: closed ``[start, end]``."""
        return cls(start=Bound.included(start), end=Bound.included(end))

    @classmethod
    def from_slice(cls, item: slice) -> "RangeSpec":
        """Convert a Python ``slice``; ``slice(None)`` is full-range.

        Raises:
            InvalidRange: If the slice has a step other than 1.
        """
        if item.step not in (None, 1):
            raise InvalidRange(f"Strided slices are not supported: {item}")
        start = Bound.unbounded() if item.start is None else Bound.included(item.start)
        end = Bound.unbounded() if item.stop is None else Bound.excluded(item.stop)
        return cls(start=start, end=end)

    @property
    def is_full(self) -> bool:
        return self.start.kind is BoundKind.UNBOUNDED and self.end.kind is BoundKind.UNBOUNDED


SliceLike = Union[RangeSpec, slice]


def as_range_spec(item: SliceLike) -> RangeSpec:
    """Accept a RangeSpec or a Python slice."""
    if isinstance(item, RangeSpec):
        return item
    if isinstance(item, slice):
        return RangeSpec.from_slice(item)
    raise TypeError(f"Expected a RangeSpec or slice, got {type(item).__name__}")


def start_bound(bound: Bound) -> Expression:
    """Resolve a start endpoint to an inclusive start.

    Inclusive ``X`` gives ``X``, exclusive ``X`` gives ``X + 1``, and
    unbounded gives 0.
    """
    if bound.kind is BoundKind.INCLUDED:
        return bound.value
    if bound.kind is BoundKind.EXCLUDED:
        return bound.value + 1
    return Expression(0)


def end_bound(bound: Bound, size: ExprLike | None, unbounded_size: int = UNBOUNDED_SIZE) -> Expression:
    """Resolve an end endpoint to an exclusive end.

    Args:
        bound: End endpoint.
        size: Full size of the axis, or None when unknown.
        unbounded_size: Sentinel used for an unbounded end with unknown size.

    Returns:
        Exclusive ``X`` gives ``X``, inclusive ``X`` gives ``X + 1``, unbounded
        gives the axis size (or the sentinel).
    """
    if bound.kind is BoundKind.EXCLUDED:
        return bound.value
    if bound.kind is BoundKind.INCLUDED:
        return bound.value + 1
    return Expression(unbounded_size if size is None else size)


def range_to_dim(spec: RangeSpec, dim: Dimension) -> Dimension:
    """Map a slice specification to the output axis classification.

    A full-range slice keeps the input Dimension (Constant stays Constant).
    Any other specification yields an anonymous Dynamic axis, even when both
    bounds are literals: bounds are Expressions and the mapper never tries to
    prove a partial slice's length constant.
    """
    return dim if spec.is_full else Dynamic()


def normalize_specs(specs: Sequence[SliceLike], rank: int) -> list[RangeSpec]:
    """Convert specs and pad missing trailing axes with full-range.

    Raises:
        InvalidRange: If there are more specs than axes.
    """
    if len(specs) > rank:
        raise InvalidRange(f"Got {len(specs)} slice specs for a rank-{rank} tensor")
    normalized = [as_range_spec(s) for s in specs]
    normalized.extend(RangeSpec.full() for _ in range(rank - len(normalized)))
    return normalized


def slice_shape(shape: Shape, specs: Sequence[SliceLike]) -> Shape:
    """Apply range_to_dim axis by axis, each axis against its own Dimension."""
    normalized = normalize_specs(specs, shape.rank)
    return Shape(tuple(range_to_dim(spec, dim) for spec, dim in zip(normalized, shape)))


def to_ranges(
    specs: Sequence[SliceLike], sizes: Sequence[ExprLike | None], unbounded_size: int = UNBOUNDED_SIZE
) -> list[tuple[Expression, Expression]]:
    """Canonicalize specs to half-open ``[start, end)`` pairs.

    Args:
        specs: Per-axis specifications (missing trailing axes are full-range).
        sizes: Current per-axis sizes, None where unknown.
        unbounded_size: Sentinel for unbounded ends over unknown sizes.

    Returns:
        One ``(start, end)`` pair per axis.

    Raises:
        InvalidRange: If a pair has ``start > end`` (when decidable) or there
            are more specs than axes.
    """
    normalized = normalize_specs(specs, len(sizes))
    ranges: list[tuple[Expression, Expression]] = []
    for axis, (spec, size) in enumerate(zip(normalized, sizes)):
        start = start_bound(spec.start)
        end = end_bound(spec.end, size, unbounded_size)
        if Expression(0).known_le(start) is False:
            raise InvalidRange(f"Axis {axis}: negative slice start {start}")
        if start.known_le(end) is False:
            raise InvalidRange(f"Axis {axis}: slice start {start} is past end {end}")
        ranges.append((start, end))
    return ranges
