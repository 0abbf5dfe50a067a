"""Exception types raised while building and resolving shape graphs.

Build-time errors (ShapeMismatch, InvalidRange) are raised before any node
is inserted. Run-time errors (UnresolvedDynamicMismatch, FunctionPayloadError)
surface only once concrete sizes are bound.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shapegraph.graph import Obligation

__all__ = [
    "ShapeGraphError",
    "ShapeMismatch",
    "InvalidRange",
    "UnresolvedDynamicMismatch",
    "FunctionPayloadError",
    "UnboundSymbol",
]


class ShapeGraphError(Exception):
    """Base class for all shapegraph errors."""


class ShapeMismatch(ShapeGraphError, ValueError):
    """Operands disagree in rank or in a statically known axis size."""


class InvalidRange(ShapeGraphError, ValueError):
    """A slice, permute or reshape specification is internally inconsistent."""


class UnresolvedDynamicMismatch(ShapeGraphError, ValueError):
    """Two sizes expected equal at build time differ once resolved.

    Attributes:
        obligation: The recorded equality that failed, if any.
        lhs: Resolved left-hand size.
        rhs: Resolved right-hand size.
    """

    def __init__(self, message: str, obligation: "Obligation | None" = None, lhs: int = 0, rhs: int = 0) -> None:
        super().__init__(message)
        self.obligation = obligation
        self.lhs = lhs
        self.rhs = rhs


class FunctionPayloadError(ShapeGraphError, RuntimeError):
    """A Function node's host computation failed or broke its contract.

    Attributes:
        node_id: Id of the failing Function node.
        name: Diagnostic name of the Function node.
    """

    def __init__(self, message: str, node_id: int, name: str) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.name = name


class UnboundSymbol(ShapeGraphError, KeyError):
    """An expression was resolved without a binding for one of its symbols."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
