"""Expression tree for scalar position functions.

An expression is built from four kinds of frozen nodes:

- `Const` a literal number,
- `Var` one of the position variables ``x``, ``y``, ``z``, ``t``,
- `Ref` a reference to an embedded external object, bound at compile time,
- `Apply` a named operation applied to argument expressions.

Expressions overload the arithmetic operators so that position closures can
be written directly, e.g. ``lambda p: p[0] * p[0] + p[1]``. Equality stays
structural.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
import enum
import numbers
from typing import Union

from .errors import ConversionError

POSITION_NAMES: tuple[str, ...] = ("x", "y", "z", "t")


class _Arithmetic:
    """Operator overloads shared by all expression nodes."""

    __slots__ = ()

    def __add__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("+", (self, other))

    def __radd__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("+", (other, self))

    def __sub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("-", (self, other))

    def __rsub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("-", (other, self))

    def __mul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("*", (self, other))

    def __rmul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("*", (other, self))

    def __truediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("/", (self, other))

    def __rtruediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("/", (other, self))

    def __pow__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("pow", (self, other))

    def __rpow__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Apply("pow", (other, self))

    def __neg__(self):
        return Apply("neg", (self,))

    def __abs__(self):
        return Apply("abs", (self,))


@dataclass(frozen=True)
class Const(_Arithmetic):
    value: float


@dataclass(frozen=True)
class Var(_Arithmetic):
    name: str


@dataclass(frozen=True)
class Ref(_Arithmetic):
    key: str


@dataclass(frozen=True)
class Apply(_Arithmetic):
    op: str
    args: tuple["Expr", ...] = ()


Expr = Union[Const, Var, Ref, Apply]
EXPR_TYPES = (Const, Var, Ref, Apply)

# Handed to position closures in place of the actual coordinates.
POSITION: tuple[Var, ...] = tuple(Var(name) for name in POSITION_NAMES)


def is_expr(value: object) -> bool:
    return isinstance(value, EXPR_TYPES)


def is_real_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, (bool, enum.Enum))


def as_expr(value: object) -> Expr:
    """Coerce numbers and position-variable names to expressions."""
    if isinstance(value, EXPR_TYPES):
        return value
    if is_real_number(value):
        return Const(float(value))
    if isinstance(value, str) and value in POSITION_NAMES:
        return Var(value)
    raise ConversionError(f"Can't convert {type(value).__name__} to an expression: {value!r}")


def _coerce(value: object) -> Expr | None:
    if isinstance(value, EXPR_TYPES):
        return value
    if is_real_number(value):
        return Const(float(value))
    return None


def walk(expr: Expr) -> Iterator[Expr]:
    """Yield every node of an expression, parents before children."""
    stack = [expr]
    while stack:
        item = stack.pop()
        yield item
        if isinstance(item, Apply):
            stack.extend(reversed(item.args))


def free_variables(expr: Expr) -> frozenset[str]:
    return frozenset(item.name for item in walk(expr) if isinstance(item, Var))


def references(expr: Expr) -> frozenset[str]:
    return frozenset(item.key for item in walk(expr) if isinstance(item, Ref))
