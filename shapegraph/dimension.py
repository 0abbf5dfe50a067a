"""Axis classification: build-time Constant or run-time Dynamic.

A Shape is the compile-time label of a tensor (its rank and which axes have
a known size). Actual per-axis sizes, including sliced and broadcast ones,
live in the tensor's ShapeTracker as Expressions.
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Union

from shapegraph.errors import InvalidRange
from shapegraph.expression import Expression

__all__ = [
    "ANONYMOUS",
    "Constant",
    "Dynamic",
    "Dimension",
    "Shape",
    "ConstDim",
    "PrevDim",
    "ReshapeDim",
    "dims_compatible",
    "infer_reshape_dims",
    "to_dimension",
]

ANONYMOUS = "-"


@dataclass(frozen=True)
class Constant:
    """Axis whose size is fixed when the graph is built.

    Attributes:
        size: Axis length.
    """

    size: int

    def __post_init__(self) -> None:
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 0:
            raise ValueError(f"Constant size must be a non-negative int, got {self.size!r}")

    @property
    def is_static(self) -> bool:
        """Always True: the size is known at build time."""
        return True

    @property
    def expression(self) -> Expression:
        """Size as a literal Expression."""
        return Expression(self.size)

    def __repr__(self) -> str:
        return f"Constant({self.size})"


@dataclass(frozen=True)
class Dynamic:
    """Axis whose size is only known at run time.

    Attributes:
        symbol: Name of the run-time size symbol. ``"-"`` marks an anonymous
            dynamic axis (e.g., the result of a partial slice) whose size is
            tracked only by the ShapeTracker.
    """

    symbol: str = ANONYMOUS

    @property
    def is_static(self) -> bool:
        """Always False: the size is bound at run time."""
        return False

    @property
    def is_anonymous(self) -> bool:
        """True when the axis has no symbol and only the tracker knows its size."""
        return self.symbol == ANONYMOUS

    @property
    def expression(self) -> Expression:
        """Size as a symbolic Expression.

        Raises:
            ValueError: If the dimension is anonymous.
        """
        if self.is_anonymous:
            raise ValueError("Anonymous Dynamic dimension has no size expression")
        return Expression(self.symbol)

    def __repr__(self) -> str:
        return f"Dynamic({self.symbol!r})"


Dimension = Union[Constant, Dynamic]


def to_dimension(item: "int | str | Dimension") -> Dimension:
    """Build a Dimension from an int (Constant) or str (Dynamic)."""
    if isinstance(item, (Constant, Dynamic)):
        return item
    if isinstance(item, str):
        return Dynamic(item)
    if isinstance(item, int) and not isinstance(item, bool):
        return Constant(item)
    raise TypeError(f"Cannot build a Dimension from {item!r}")


def dims_compatible(a: Dimension, b: Dimension) -> bool:
    """Return False only when both dimensions are Constant and differ."""
    if isinstance(a, Constant) and isinstance(b, Constant):
        return a.size == b.size
    return True


@dataclass(frozen=True)
class Shape:
    """Ordered, immutable sequence of Dimensions (one per axis).

    Attributes:
        dims: Per-axis classification.
    """

    dims: tuple[Dimension, ...] = ()

    @classmethod
    def of(cls, *items: "int | str | Dimension") -> "Shape":
        """Build a shape from ints (Constant), strs (Dynamic) or Dimensions.

        Example:
            ``Shape.of("batch", "seq", 8)``
        """
        return cls(tuple(to_dimension(item) for item in items))

    @property
    def rank(self) -> int:
        return len(self.dims)

    def __len__(self) -> int:
        return len(self.dims)

    def __iter__(self) -> Iterator[Dimension]:
        return iter(self.dims)

    def __getitem__(self, axis: int) -> Dimension:
        return self.dims[axis]

    def replace(self, axis: int, dim: Dimension) -> "Shape":
        """Return a copy with ``axis`` set to ``dim``."""
        dims = list(self.dims)
        dims[axis] = dim
        return Shape(tuple(dims))

    def insert(self, axis: int, dim: Dimension) -> "Shape":
        """Return a copy with ``dim`` inserted before position ``axis``."""
        dims = list(self.dims)
        dims.insert(axis, dim)
        return Shape(tuple(dims))

    def remove(self, axis: int) -> "Shape":
        """Return a copy without ``axis``."""
        return Shape(self.dims[:axis] + self.dims[axis + 1 :])

    def permute(self, axes: Sequence[int]) -> "Shape":
        """Reorder axes; ``axes[i]`` is the source axis of output axis i."""
        return Shape(tuple(self.dims[a] for a in axes))

    def static_sizes(self) -> tuple[int, ...] | None:
        """Sizes as ints if every axis is Constant, else None."""
        if all(isinstance(d, Constant) for d in self.dims):
            return tuple(d.size for d in self.dims)
        return None

    def __repr__(self) -> str:
        inner = ", ".join(str(d.size) if isinstance(d, Constant) else d.symbol for d in self.dims)
        return f"Shape({inner})"


@dataclass(frozen=True)
class ConstDim:
    """Reshape target axis with a literal size."""

    size: int


@dataclass(frozen=True)
class PrevDim:
    """Reshape target axis reusing the size of input axis ``axis``.

    Needed because batch and sequence sizes only exist at run time.
    """

    axis: int


ReshapeDim = Union[ConstDim, PrevDim]


def infer_reshape_dims(source: Shape, target: Shape) -> list[ReshapeDim]:
    """Derive reshape markers for ``target`` from its Dimensions.

    Constant target axes become ConstDim. A named Dynamic target axis becomes
    PrevDim of the first source axis carrying the same symbol.

    Args:
        source: Shape being reshaped.
        target: Requested output shape.

    Returns:
        One marker per target axis.

    Raises:
        InvalidRange: If a Dynamic target axis has no source axis to copy.
    """
    dims: list[ReshapeDim] = []
    used: set[int] = set()
    for out_axis, dim in enumerate(target):
        if isinstance(dim, Constant):
            dims.append(ConstDim(dim.size))
            continue
        matches = [i for i, src in enumerate(source) if src == dim and i not in used and not dim.is_anonymous]
        if not matches:
            raise InvalidRange(
                f"Reshape to {target} is not total: output axis {out_axis} ({dim}) has no source axis in {source}"
            )
        src_axis = out_axis if out_axis in matches else matches[0]
        used.add(src_axis)
        dims.append(PrevDim(src_axis))
    return dims
