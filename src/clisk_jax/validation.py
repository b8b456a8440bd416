"""Opt-in structural and type validation of nodes."""

from __future__ import annotations

import jax
import jax.numpy as jnp

from .ast import Const, Ref
from .errors import NodeCompileError, NodeTypeError, StructuralError
from .ir import FLOAT_DTYPE, evaluate_ir, lower_to_ir
from .nodes import Node


def _check_structure(n: object) -> None:
    if not isinstance(n, Node):
        raise StructuralError(f"Expected a node, got {type(n).__name__}")
    if (n.expr is None) == (n.components is None):
        raise StructuralError("AST node must have exactly one of an expression or components")
    if n.components is not None:
        if not n.components:
            raise StructuralError("Vector node has no components")
        if n.constant and not all(isinstance(c, Node) and c.constant for c in n.components):
            raise StructuralError("Constant vector node has non-constant components")
    elif n.constant and not isinstance(n.expr, (Const, Ref)):
        raise StructuralError(f"Constant scalar node holds an unfolded expression: {n.expr!r}")


def expression_dtype(n: Node):
    """Abstractly evaluate a scalar node's expression with float coordinates.

    Returns the `jax.ShapeDtypeStruct` of the raw result.
    """
    try:
        ir = lower_to_ir(n.expr, n.objects)
    except NodeCompileError as err:
        raise NodeTypeError(f"Expression does not resolve: {err}") from err

    def _raw(x, y, z, t):
        return jnp.asarray(evaluate_ir(ir, (x, y, z, t)))

    coordinate = jax.ShapeDtypeStruct((), FLOAT_DTYPE)
    try:
        return jax.eval_shape(_raw, coordinate, coordinate, coordinate, coordinate)
    except NodeTypeError:
        raise
    except Exception as err:
        raise NodeTypeError(f"Expression does not resolve to a number: {err}") from err


def _check_primitive(n: Node) -> None:
    out = expression_dtype(n)
    if out.shape != ():
        raise NodeTypeError(f"AST code must be a scalar, got shape {tuple(out.shape)}: {n.expr!r}")
    if not (jnp.issubdtype(out.dtype, jnp.floating) or jnp.issubdtype(out.dtype, jnp.integer)):
        raise NodeTypeError(f"AST code must be of primitive numeric type, got {out.dtype}: {n.expr!r}")


def validate(n):
    """Validate the structure and types of a node.

    Raises StructuralError or NodeTypeError on the first problem found,
    returns the node unchanged otherwise.
    """
    _check_structure(n)
    if n.components is not None:
        for c in n.components:
            validate(c)
            if c.components is not None:
                raise StructuralError("Vector components must be scalar nodes")
        return n
    _check_primitive(n)
    return n
