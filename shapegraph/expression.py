"""Symbolic integer expressions for axis sizes and ranges.

Every size and range bound in shapegraph is an Expression: a thin immutable
wrapper over a sympy expression whose free symbols are non-negative integer
run-time sizes (batch, sequence length, ...). Literal sub-terms fold eagerly
through sympy's canonicalization, so an Expression with no remaining symbols
converts to a concrete int.
"""

from collections.abc import Mapping
from typing import Union

import numpy as np
import sympy

from shapegraph.errors import UnboundSymbol

__all__ = ["Expression", "ExprLike", "symbol"]

ExprLike = Union[int, str, "Expression", sympy.Expr]


def symbol(name: str) -> sympy.Symbol:
    """Create the sympy symbol used for a run-time size.

    Args:
        name: Symbol name (e.g., ``"batch"``).

    Returns:
        A non-negative integer sympy symbol. Symbols with the same name
        compare equal.

    Raises:
        ValueError: If the name is empty or the anonymous marker ``"-"``.
    """
    if not name or name == "-":
        raise ValueError(f"Invalid symbol name {name!r}")
    return sympy.Symbol(name, integer=True, nonnegative=True)


def _to_sympy(value: ExprLike) -> sympy.Expr:
    """Coerce an int, symbol name, Expression or sympy expression."""
    if isinstance(value, Expression):
        return value._expr
    if isinstance(value, bool):
        raise TypeError("bool is not a valid expression value")
    if isinstance(value, (int, np.integer)):
        return sympy.Integer(int(value))
    if isinstance(value, str):
        return symbol(value)
    if isinstance(value, sympy.Expr):
        return value
    raise TypeError(f"Cannot build an Expression from {type(value).__name__}")


class Expression:
    """Immutable symbolic integer term.

    Arithmetic (``+ - * // %``) accepts Expressions or ints on either side and
    returns a new Expression. ``//`` is floor division. Equality and hashing
    are structural.
    """

    __slots__ = ("_expr",)

    def __init__(self, value: ExprLike) -> None:
        """Initialize from an int literal, a symbol name, or another expression.

        Args:
            value: ``int`` literal, ``str`` symbol name, Expression, or sympy
                expression.
        """
        self._expr = _to_sympy(value)

    @property
    def sympy(self) -> sympy.Expr:
        """Underlying sympy expression."""
        return self._expr

    @property
    def symbols(self) -> frozenset[str]:
        """Names of the free symbols left in this expression."""
        return frozenset(s.name for s in self._expr.free_symbols)

    @property
    def is_constant(self) -> bool:
        """True when the expression has folded to an integer literal."""
        return bool(self._expr.is_Integer)

    def to_int(self) -> int | None:
        """Convert to a concrete int.

        Returns:
            The integer value, or None if symbols remain and resolution must
            be deferred to run time.
        """
        result = int(self._expr) if self._expr.is_Integer else None
        return result

    def substitute(self, bindings: Mapping[str, ExprLike]) -> "Expression":
        """Replace bound symbols by name, leaving unbound ones symbolic.

        Args:
            bindings: Maps symbol name to a value or expression.

        Returns:
            The substituted (and re-folded) expression.
        """
        replacements = {s: _to_sympy(bindings[s.name]) for s in self._expr.free_symbols if s.name in bindings}
        if not replacements:
            return self
        return Expression(self._expr.xreplace(replacements))

    def resolve(self, bindings: Mapping[str, int]) -> int:
        """Bind every symbol and return the concrete value.

        Args:
            bindings: Maps symbol name to its run-time integer value.

        Returns:
            The concrete integer.

        Raises:
            UnboundSymbol: If a symbol has no binding.
        """
        missing = sorted(self.symbols - set(bindings))
        if missing:
            raise UnboundSymbol(f"No binding for symbol(s) {missing} in {self}")
        value = self.substitute(bindings).to_int()
        if value is None:
            raise UnboundSymbol(f"Expression {self} did not fold to an integer")
        return value

    def known_eq(self, other: ExprLike) -> bool | None:
        """Decide equality if it does not depend on symbol values.

        Args:
            other: Expression to compare against.

        Returns:
            True or False when decidable, None otherwise.
        """
        diff = sympy.expand(self._expr - _to_sympy(other))
        return diff.is_zero

    def known_le(self, other: ExprLike) -> bool | None:
        """Decide ``self <= other`` if it does not depend on symbol values.

        Args:
            other: Expression to compare against.

        Returns:
            True or False when decidable, None otherwise.
        """
        diff = sympy.expand(_to_sympy(other) - self._expr)
        return diff.is_nonnegative

    @staticmethod
    def min(a: ExprLike, b: ExprLike) -> "Expression":
        """Symbolic minimum, folded when the ordering is decidable."""
        return Expression(sympy.Min(_to_sympy(a), _to_sympy(b)))

    @staticmethod
    def max(a: ExprLike, b: ExprLike) -> "Expression":
        """Symbolic maximum, folded when the ordering is decidable."""
        return Expression(sympy.Max(_to_sympy(a), _to_sympy(b)))

    def __add__(self, other: ExprLike) -> "Expression":
        return Expression(self._expr + _to_sympy(other))

    def __radd__(self, other: ExprLike) -> "Expression":
        return Expression(_to_sympy(other) + self._expr)

    def __sub__(self, other: ExprLike) -> "Expression":
        return Expression(self._expr - _to_sympy(other))

    def __rsub__(self, other: ExprLike) -> "Expression":
        return Expression(_to_sympy(other) - self._expr)

    def __mul__(self, other: ExprLike) -> "Expression":
        return Expression(self._expr * _to_sympy(other))

    def __rmul__(self, other: ExprLike) -> "Expression":
        return Expression(_to_sympy(other) * self._expr)

    def __floordiv__(self, other: ExprLike) -> "Expression":
        return _floordiv(self._expr, _to_sympy(other))

    def __rfloordiv__(self, other: ExprLike) -> "Expression":
        return _floordiv(_to_sympy(other), self._expr)

    def __mod__(self, other: ExprLike) -> "Expression":
        return _mod(self._expr, _to_sympy(other))

    def __rmod__(self, other: ExprLike) -> "Expression":
        return _mod(_to_sympy(other), self._expr)

    def __neg__(self) -> "Expression":
        return Expression(-self._expr)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, (Expression, int, str, sympy.Expr)) or isinstance(other, bool):
            return NotImplemented
        try:
            return bool(self._expr == _to_sympy(other))
        except ValueError:
            return False

    def __hash__(self) -> int:
        return hash(self._expr)

    def __repr__(self) -> str:
        return f"Expression({self._expr})"

    def __str__(self) -> str:
        return str(self._expr)


def _floordiv(lhs: sympy.Expr, rhs: sympy.Expr) -> Expression:
    if rhs.is_zero:
        raise ZeroDivisionError(f"Expression division by zero: {lhs} // {rhs}")
    return Expression(sympy.floor(lhs / rhs))


def _mod(lhs: sympy.Expr, rhs: sympy.Expr) -> Expression:
    if rhs.is_zero:
        raise ZeroDivisionError(f"Expression modulo by zero: {lhs} % {rhs}")
    return Expression(sympy.Mod(lhs, rhs))
