"""Operation kinds recorded on graph nodes.

Ops are small frozen dataclasses carrying only their build-time parameters.
Concrete subclasses register themselves by ``kind`` so the execution backend
can dispatch on ``Op.get(node.op.kind)``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from shapegraph.expression import Expression
from shapegraph.tracker import TensorView

__all__ = [
    "Payload",
    "Op",
    "Input",
    "Constant",
    "Function",
    "Slice",
    "Permute",
    "Expand",
    "Reshape",
    "Contiguous",
    "Concat",
    "Log2",
    "Exp2",
    "Sin",
    "Cos",
    "Sqrt",
    "Recip",
    "Add",
    "Mul",
    "Mod",
    "LessThan",
    "Max",
    "SumReduce",
    "MaxReduce",
]

Payload = Callable[[list[tuple[int, TensorView]], int], tuple[np.ndarray | None, TensorView]]


@dataclass(frozen=True)
class Op:
    """Base class for node operations.

    Attributes:
        kind: Unique name used for registry lookup.
        category: ``"leaf"``, ``"view"``, ``"compute"`` or ``"function"``.
        arity: Number of inputs, or None for variadic ops.
    """

    kind: ClassVar[str]
    category: ClassVar[str] = "compute"
    arity: ClassVar[int | None] = None

    _registry: ClassVar[dict[str, type["Op"]]] = {}

    def __init_subclass__(cls, **kwargs: object) -> None:
        """Auto-register concrete Op subclasses by kind."""
        super().__init_subclass__(**kwargs)
        if "kind" in cls.__dict__:
            Op._registry[cls.kind] = cls

    @classmethod
    def get(cls, kind: str) -> type["Op"]:
        """Look up a registered op by kind.

        Raises:
            KeyError: If no op is registered with the given kind.
        """
        if kind not in cls._registry:
            raise KeyError(f"Unknown op: {kind}")
        return cls._registry[kind]

    @classmethod
    def all_ops(cls) -> dict[str, type["Op"]]:
        """Return a copy of all registered op classes."""
        return dict(cls._registry)

    def describe(self) -> str:
        """Short human-readable form used in summaries and DOT labels."""
        return self.kind


@dataclass(frozen=True)
class Input(Op):
    """Named leaf tensor supplied by the caller (weights, token ids, ...)."""

    kind: ClassVar[str] = "Input"
    category: ClassVar[str] = "leaf"
    arity: ClassVar[int | None] = 0

    name: str

    def describe(self) -> str:
        return f"Input({self.name})"


@dataclass(frozen=True)
class Constant(Op):
    """Rank-0 scalar. An Expression value is a size known only at run time."""

    kind: ClassVar[str] = "Constant"
    category: ClassVar[str] = "leaf"
    arity: ClassVar[int | None] = 0

    value: float | Expression

    def describe(self) -> str:
        return f"Constant({self.value})"


@dataclass(frozen=True)
class Function(Op):
    """Escape hatch: host-computed, shape-dependent node.

    The payload receives ``(input_id, resolved TensorView)`` pairs and the
    node's own id, and returns optional materialized data plus the view of
    its output. It must be a pure function of its inputs.

    Attributes:
        name: Diagnostic name (e.g., ``"ARange"``).
        payload: Host computation.
    """

    kind: ClassVar[str] = "Function"
    category: ClassVar[str] = "function"

    name: str
    payload: Payload

    def describe(self) -> str:
        return f"Function({self.name})"


@dataclass(frozen=True)
class Slice(Op):
    """View restricted to per-axis ranges (relative to the input view)."""

    kind: ClassVar[str] = "Slice"
    category: ClassVar[str] = "view"
    arity: ClassVar[int | None] = 1

    ranges: tuple[tuple[Expression, Expression], ...]

    def describe(self) -> str:
        return "Slice(" + ", ".join(f"{s}:{e}" for s, e in self.ranges) + ")"


@dataclass(frozen=True)
class Permute(Op):
    kind: ClassVar[str] = "Permute"
    category: ClassVar[str] = "view"
    arity: ClassVar[int | None] = 1

    axes: tuple[int, ...]

    def describe(self) -> str:
        return f"Permute{self.axes}"


@dataclass(frozen=True)
class Expand(Op):
    """Broadcast: inserts fake axes (output positions ``axes``) with no backing storage."""

    kind: ClassVar[str] = "Expand"
    category: ClassVar[str] = "view"
    arity: ClassVar[int | None] = 1

    axes: tuple[int, ...]
    sizes: tuple[Expression, ...]

    def describe(self) -> str:
        inserted = ", ".join(f"{a}:{s}" for a, s in zip(self.axes, self.sizes))
        return f"Expand({inserted})"


@dataclass(frozen=True)
class Reshape(Op):
    kind: ClassVar[str] = "Reshape"
    category: ClassVar[str] = "view"
    arity: ClassVar[int | None] = 1

    sizes: tuple[Expression, ...]

    def describe(self) -> str:
        return "Reshape(" + ", ".join(str(s) for s in self.sizes) + ")"


@dataclass(frozen=True)
class Contiguous(Op):
    """Materialize a view into fresh contiguous storage."""

    kind: ClassVar[str] = "Contiguous"
    arity: ClassVar[int | None] = 1


@dataclass(frozen=True)
class Concat(Op):
    """Join inputs along one axis; interleaving is left to the backend."""

    kind: ClassVar[str] = "Concat"

    axis: int

    def describe(self) -> str:
        return f"Concat(axis={self.axis})"


@dataclass(frozen=True)
class _Unary(Op):
    arity: ClassVar[int | None] = 1


@dataclass(frozen=True)
class Log2(_Unary):
    kind: ClassVar[str] = "Log2"


@dataclass(frozen=True)
class Exp2(_Unary):
    kind: ClassVar[str] = "Exp2"


@dataclass(frozen=True)
class Sin(_Unary):
    kind: ClassVar[str] = "Sin"


@dataclass(frozen=True)
class Cos(_Unary):
    kind: ClassVar[str] = "Cos"


@dataclass(frozen=True)
class Sqrt(_Unary):
    kind: ClassVar[str] = "Sqrt"


@dataclass(frozen=True)
class Recip(_Unary):
    kind: ClassVar[str] = "Recip"


@dataclass(frozen=True)
class _Binary(Op):
    arity: ClassVar[int | None] = 2


@dataclass(frozen=True)
class Add(_Binary):
    kind: ClassVar[str] = "Add"


@dataclass(frozen=True)
class Mul(_Binary):
    kind: ClassVar[str] = "Mul"


@dataclass(frozen=True)
class Mod(_Binary):
    kind: ClassVar[str] = "Mod"


@dataclass(frozen=True)
class LessThan(_Binary):
    kind: ClassVar[str] = "LessThan"


@dataclass(frozen=True)
class Max(_Binary):
    kind: ClassVar[str] = "Max"


@dataclass(frozen=True)
class SumReduce(Op):
    kind: ClassVar[str] = "SumReduce"
    arity: ClassVar[int | None] = 1

    axis: int

    def describe(self) -> str:
        return f"SumReduce(axis={self.axis})"


@dataclass(frozen=True)
class MaxReduce(Op):
    kind: ClassVar[str] = "MaxReduce"
    arity: ClassVar[int | None] = 1

    axis: int

    def describe(self) -> str:
        return f"MaxReduce(axis={self.axis})"
