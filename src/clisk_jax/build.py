"""Node constructors, the `node()` normalizer and the composition layer."""

from __future__ import annotations

from collections.abc import Callable
import enum
from functools import lru_cache
import logging
import numbers
from types import MappingProxyType

from .ast import POSITION, POSITION_NAMES, Apply, Const, Ref, Var, as_expr, free_variables, is_expr, is_real_number
from .errors import ConversionError, NotConstantError, ShapeError
from .nodes import DEFAULT_IDS, EMPTY_OBJECTS, Node, ObjectIdSource, is_constant, is_node, is_scalar, is_vector, merge_objects

logger = logging.getLogger(__name__)


def _is_sequence(value: object) -> bool:
    return isinstance(value, (list, tuple))


# ========================================
# Node constructors


def value_node(v) -> Node:
    """Constant node holding a literal number or a flat sequence of numbers."""
    if _is_sequence(v):
        if not v:
            raise ShapeError("A vector node needs at least one component")
        return Node(components=tuple(value_node(item) for item in v), constant=True)
    if not is_real_number(v):
        raise ConversionError(f"value_node expects a real number, got {type(v).__name__}")
    return Node(expr=Const(float(v)), constant=True)


def object_node(v, *, ids: ObjectIdSource | None = None) -> Node:
    """Constant scalar node whose expression refers to the embedded object `v`."""
    key = (ids or DEFAULT_IDS).mint()
    return Node(expr=Ref(key), constant=True, objects=MappingProxyType({key: v}))


def code_node(form) -> Node:
    """Non-constant node around a ready-made expression (or nested sequence of them).

    Embedded objects are not carried over; callers that reference objects in
    `form` must merge the tables themselves.
    """
    if _is_sequence(form):
        return vec_node([code_node(item) for item in form])
    return Node(expr=as_expr(form), objects=EMPTY_OBJECTS)


def vec_node(xs) -> Node:
    """Vector node from a sequence of scalar inputs."""
    nodes = [node(x) for x in xs]
    if not nodes:
        raise ShapeError("vec_node requires at least one component")
    if not all(is_scalar(n) for n in nodes):
        raise ShapeError("vec_node requires scalar values as input")
    return Node(
        components=tuple(nodes),
        objects=merge_objects(*(n.objects for n in nodes)),
        constant=all(is_constant(n) for n in nodes),
    )


def vector_node(*xs) -> Node:
    return vec_node(xs)


def constant_node(v) -> Node:
    """Node guaranteed to be constant: a literal scalar or all-literal vector."""
    if is_node(v):
        n = v
    elif _is_sequence(v):
        n = vec_node(v)
    elif is_real_number(v):
        return value_node(float(v))
    else:
        raise ConversionError(f"Can't build a constant node from {type(v).__name__}: {v!r}")

    parts = n.components if is_vector(n) else (n,)
    if not n.constant or not all(isinstance(part.expr, Const) for part in parts):
        raise NotConstantError(f"Not a constant {'vector' if is_vector(n) else 'scalar'}: {n!r}")
    return n


def node(a, *, ids: ObjectIdSource | None = None) -> Node:
    """Create a node from arbitrary input. Idempotent on nodes.

    Numbers become constant scalars, lists/tuples vectors, expressions code
    nodes. A callable is invoked once with the position placeholder
    ``(x, y, z, t)`` and its result normalized. Any other value is embedded
    as an object node; enum members, booleans, strings other than position
    names, complex numbers and None are rejected.
    """
    if is_node(a):
        return a
    if isinstance(a, enum.Enum):
        raise ConversionError(f"Can't convert enum member to node: {a!r}")
    if isinstance(a, bool):
        raise ConversionError(f"Can't convert boolean to node: {a!r}")
    if isinstance(a, numbers.Number):
        if not is_real_number(a):
            raise ConversionError(f"Can't convert non-real number to node: {a!r}")
        return constant_node(a)
    if _is_sequence(a):
        return vec_node([node(item, ids=ids) for item in a])
    if is_expr(a):
        return code_node(a)
    if isinstance(a, str):
        if a in POSITION_NAMES:
            return code_node(Var(a))
        raise ConversionError(f"Can't convert string to node: {a!r}")
    if a is None:
        raise ConversionError("Can't convert None to node")
    if callable(a) and not isinstance(a, type):
        return node(a(POSITION), ids=ids)
    return object_node(a, ids=ids)


@lru_cache(maxsize=None)
def zero_node() -> Node:
    return value_node(0.0)


# ==============================
# Shape helpers


def dimensions(a) -> int:
    """Number of components of a vector node, or 1 for a scalar."""
    n = node(a)
    if is_vector(n):
        return len(n.components)
    return 1


def component(i: int, n) -> Node:
    """Scalar node for component `i`.

    A scalar is its own component at every index; out-of-range indices of a
    vector give the zero node.
    """
    n = node(n)
    if is_vector(n):
        if 0 <= i < len(n.components):
            return n.components[i]
        return zero_node()
    return n


# ========================================
# Composition


def transform(f: Callable, *nodes) -> Node:
    """Scalar node built by applying `f` to the normalized input nodes.

    `f` returns the new expression (anything `node()` accepts that yields a
    scalar). When every input is constant and the result does not depend on
    position, it is folded to a literal.
    """
    nodes = [node(n) for n in nodes]
    generated = node(f(*nodes))
    if not is_scalar(generated):
        raise ShapeError("transform function must produce a scalar expression")

    if isinstance(generated.expr, Const) and generated.constant:
        return generated
    objects = merge_objects(generated.objects, *(n.objects for n in nodes))
    if generated.constant:
        # A bare embedded object.
        return Node(expr=generated.expr, constant=True, objects=objects)
    if all(is_constant(n) for n in nodes) and not free_variables(generated.expr):
        from .evaluator import evaluate

        folded = evaluate(Node(expr=generated.expr, objects=objects))
        logger.debug("folded constant expression %r to %r", generated.expr, folded)
        return value_node(folded)
    return Node(expr=generated.expr, objects=objects)


def transform_components(f: Callable, *nodes) -> Node:
    """Apply `transform` per component, broadcasting scalars across vectors.

    Returns a scalar iff all inputs are scalar.
    """
    if not nodes:
        raise ShapeError("transform_components requires at least one input node")
    nodes = [node(n) for n in nodes]
    if any(is_vector(n) for n in nodes):
        dims = max(dimensions(n) for n in nodes)
        return vec_node([transform(f, *(component(i, n) for n in nodes)) for i in range(dims)])
    return transform(f, *nodes)


def apply_form(op: str) -> Callable:
    """Expression builder applying the named operation to its input nodes."""

    def build(*nodes: Node) -> Apply:
        return Apply(op, tuple(n.expr for n in nodes))

    build.__name__ = f"apply_{op}"
    return build


def function_node(f: str, *scalars) -> Node:
    """Scalar node applying the named operation `f` to scalar inputs."""
    scalars = [node(s) for s in scalars]
    if not all(is_scalar(s) for s in scalars):
        raise ShapeError("Input nodes to function_node must be scalar")
    return transform(apply_form(f), *scalars)


def position_node() -> Node:
    """Vector node of the four position variables."""
    return code_node(list(POSITION))

