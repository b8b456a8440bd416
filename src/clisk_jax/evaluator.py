"""Evaluate nodes at a position."""

from __future__ import annotations

from .build import node
from .errors import StructuralError
from .ir import compile_scalar
from .nodes import is_scalar, is_vector


def evaluate(n, x=0.0, y=0.0, z=0.0, t=0.0) -> float | list[float]:
    """Evaluate a node at a given position (defaults to the origin).

    Scalars give a float; vectors a list with one float per component, each
    component compiled on its own.
    """
    n = node(n)
    if is_scalar(n):
        return compile_scalar(n)(x, y, z, t)
    if not is_vector(n):
        raise StructuralError("Node must have either an expression or components")
    return [compile_scalar(c)(x, y, z, t) for c in n.components]
