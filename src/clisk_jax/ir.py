"""Lowering of scalar expressions to JAX kernels.

A scalar node's expression is lowered to a flat, SSA-like list of `IRNode`s
(`KernelIR`). Embedded references are resolved to their external objects
during lowering, so every compilation binds its own values and shares no
state with any other compilation. `ScalarFunction` wraps the IR as a callable
of up to four coordinates and exposes `jit`/`vmap`/`trace` for hot loops.

Importing this module (and therefore `clisk_jax`) turns on JAX's
``jax_enable_x64`` flag for the whole process, so kernels run in float64.
That flag is global: other JAX code in the same interpreter will also default
to 64-bit types. Set ``CLISK_JAX_DISABLE_X64=1`` before import to leave the
flag alone and compile in float32.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache, reduce
import logging
import math
import numbers
import os
from typing import Final

import jax
import jax.numpy as jnp

from .ast import POSITION_NAMES, Apply, Const, Expr, Ref, Var
from .build import node
from .errors import NodeCompileError, NodeError, NodeTypeError, classify_exception
from .nodes import EMPTY_OBJECTS, is_scalar

logger = logging.getLogger(__name__)

_USE_X64: Final[bool] = os.environ.get("CLISK_JAX_DISABLE_X64", "0") != "1"
_USE_CSE: Final[bool] = os.environ.get("CLISK_JAX_DISABLE_CSE", "0") != "1"

if _USE_X64:
    jax.config.update("jax_enable_x64", True)

FLOAT_DTYPE: Final = jnp.float64 if _USE_X64 else jnp.float32


def _as_float(value):
    return jnp.asarray(value).astype(FLOAT_DTYPE)


def _compare(cmp: Callable) -> Callable:
    def _op(a, b):
        return _as_float(cmp(a, b))

    return _op


def _sub(a, b=None):
    if b is None:
        return jnp.negative(a)
    return jnp.subtract(a, b)


def _frac(a):
    return a - jnp.floor(a)


def _select(cond, when_true, when_false):
    return jnp.where(cond > 0, when_true, when_false)


def _lerp(a, b, amount):
    """Linear interpolation from `a` (amount 0) to `b` (amount 1)."""
    return a + (b - a) * amount


def _call(fn, *args):
    if not callable(fn):
        raise NodeTypeError(f"Embedded object of type {type(fn).__name__} is not callable")
    return fn(*args)


def _lookup(table, *indices):
    # Indices are floored and wrap around each axis.
    arr = jnp.asarray(table)
    if len(indices) > arr.ndim:
        raise NodeTypeError(f"lookup got {len(indices)} indices for a {arr.ndim}-d table")
    wrapped = tuple(
        jnp.mod(jnp.floor(index).astype(jnp.int32), arr.shape[axis])
        for axis, index in enumerate(indices)
    )
    return arr[wrapped]


@dataclass(frozen=True)
class OpSpec:
    fn: Callable
    min_arity: int
    max_arity: int | None


OPERATIONS: Final[dict[str, OpSpec]] = {
    # unary
    "neg": OpSpec(jnp.negative, 1, 1),
    "abs": OpSpec(jnp.abs, 1, 1),
    "sign": OpSpec(jnp.sign, 1, 1),
    "sqrt": OpSpec(jnp.sqrt, 1, 1),
    "exp": OpSpec(jnp.exp, 1, 1),
    "log": OpSpec(jnp.log, 1, 1),
    "sin": OpSpec(jnp.sin, 1, 1),
    "cos": OpSpec(jnp.cos, 1, 1),
    "tan": OpSpec(jnp.tan, 1, 1),
    "asin": OpSpec(jnp.arcsin, 1, 1),
    "acos": OpSpec(jnp.arccos, 1, 1),
    "atan": OpSpec(jnp.arctan, 1, 1),
    "sinh": OpSpec(jnp.sinh, 1, 1),
    "cosh": OpSpec(jnp.cosh, 1, 1),
    "tanh": OpSpec(jnp.tanh, 1, 1),
    "floor": OpSpec(jnp.floor, 1, 1),
    "ceil": OpSpec(jnp.ceil, 1, 1),
    "round": OpSpec(jnp.round, 1, 1),
    "frac": OpSpec(_frac, 1, 1),
    # binary
    "-": OpSpec(_sub, 1, 2),
    "/": OpSpec(jnp.divide, 2, 2),
    "pow": OpSpec(jnp.power, 2, 2),
    "mod": OpSpec(jnp.mod, 2, 2),
    "atan2": OpSpec(jnp.arctan2, 2, 2),
    "hypot": OpSpec(jnp.hypot, 2, 2),
    "lt": OpSpec(_compare(jnp.less), 2, 2),
    "le": OpSpec(_compare(jnp.less_equal), 2, 2),
    "gt": OpSpec(_compare(jnp.greater), 2, 2),
    "ge": OpSpec(_compare(jnp.greater_equal), 2, 2),
    "eq": OpSpec(_compare(jnp.equal), 2, 2),
    "ne": OpSpec(_compare(jnp.not_equal), 2, 2),
    # n-ary
    "+": OpSpec(lambda *xs: reduce(jnp.add, xs), 1, None),
    "*": OpSpec(lambda *xs: reduce(jnp.multiply, xs), 1, None),
    "min": OpSpec(lambda *xs: reduce(jnp.minimum, xs), 1, None),
    "max": OpSpec(lambda *xs: reduce(jnp.maximum, xs), 1, None),
    # ternary
    "select": OpSpec(_select, 3, 3),
    "clamp": OpSpec(jnp.clip, 3, 3),
    "lerp": OpSpec(_lerp, 3, 3),
    # embedded objects; the first argument must be a reference
    "call": OpSpec(_call, 1, None),
    "lookup": OpSpec(_lookup, 1, None),
}

_OBJECT_OPS: Final = frozenset({"call", "lookup"})


def _check_arity(op: str, count: int) -> OpSpec:
    spec = OPERATIONS.get(op)
    if spec is None:
        raise NodeCompileError(f"Unknown operation {op!r}")
    if count < spec.min_arity or (spec.max_arity is not None and count > spec.max_arity):
        if spec.max_arity is None:
            expected = f"at least {spec.min_arity}"
        elif spec.min_arity == spec.max_arity:
            expected = str(spec.min_arity)
        else:
            expected = f"{spec.min_arity}-{spec.max_arity}"
        raise NodeCompileError(f"Operation {op!r} expects {expected} arguments, got {count}")
    return spec


@dataclass(frozen=True)
class IRNode:
    """Single SSA-like IR node of a lowered scalar expression."""

    id: int
    op: str
    inputs: tuple[int, ...] = ()
    value: object | None = field(default=None, compare=False)
    name: str | None = None


@dataclass(frozen=True)
class KernelIR:
    """Lowered IR container."""

    nodes: tuple[IRNode, ...]
    output: int

    @property
    def references(self) -> tuple[str, ...]:
        return tuple(node.name for node in self.nodes if node.op == "ref")


class _Lowerer:
    def __init__(self, *, objects: Mapping[str, object]) -> None:
        self.objects = objects
        self.nodes: list[IRNode] = []
        self._leaf_nodes: dict[tuple[str, str], int] = {}
        # Keyed on already-lowered input ids, so lookups never hash a whole subtree.
        self._expr_cache: dict[tuple, int] = {}
        self._lowered: dict[int, int] = {}
        self._seen: list[Expr] = []

    def _add(self, op: str, *, inputs: tuple[int, ...] = (), value: object | None = None, name: str | None = None) -> int:
        node_id = len(self.nodes)
        self.nodes.append(IRNode(id=node_id, op=op, inputs=inputs, value=value, name=name))
        return node_id

    def _leaf(self, op: str, name: str, value: object | None = None) -> int:
        # Position arguments and references are bound once per kernel.
        key = (op, name)
        if key not in self._leaf_nodes:
            self._leaf_nodes[key] = self._add(op, value=value, name=name)
        return self._leaf_nodes[key]

    def lower_expr(self, expr: Expr) -> int:
        # Post-order over an explicit stack; arbitrarily deep trees are fine.
        stack: list[tuple[Expr, bool]] = [(expr, False)]
        while stack:
            current, expanded = stack.pop()
            if id(current) in self._lowered:
                continue
            if isinstance(current, Apply) and not expanded:
                _check_arity(current.op, len(current.args))
                if current.op in _OBJECT_OPS and not isinstance(current.args[0], Ref):
                    raise NodeCompileError(f"Operation {current.op!r} needs an embedded reference as first argument")
                stack.append((current, True))
                stack.extend((arg, False) for arg in reversed(current.args))
                continue
            self._lowered[id(current)] = self._lower_one(current)
            # ids stay valid only while the expression is alive.
            self._seen.append(current)
        return self._lowered[id(expr)]

    def _cached(self, key: tuple, make: Callable[[], int]) -> int:
        if not _USE_CSE:
            return make()
        node_id = self._expr_cache.get(key)
        if node_id is None:
            node_id = self._expr_cache[key] = make()
        return node_id

    def _lower_one(self, expr: Expr) -> int:
        if isinstance(expr, Const):
            value = expr.value
            # 0.0 == -0.0, so the sign is part of the key.
            key = ("const", value, math.copysign(1.0, value) if isinstance(value, float) else None)
            return self._cached(key, lambda: self._add("const", value=value))

        if isinstance(expr, Var):
            if expr.name not in POSITION_NAMES:
                raise NodeCompileError(f"Unknown position variable {expr.name!r}")
            return self._leaf("arg", expr.name)

        if isinstance(expr, Ref):
            if expr.key not in self.objects:
                raise NodeCompileError(f"Unbound embedded reference {expr.key!r}")
            return self._leaf("ref", expr.key, self.objects[expr.key])

        if isinstance(expr, Apply):
            input_ids = tuple(self._lowered[id(arg)] for arg in expr.args)
            op = f"apply:{expr.op}"
            return self._cached((op, input_ids), lambda: self._add(op, inputs=input_ids))

        raise NodeCompileError(f"Unsupported expression type {type(expr).__name__}")


@lru_cache(maxsize=256)
def _decode_node_op(op: str) -> tuple[str, str]:
    head, sep, tail = op.partition(":")
    if sep:
        return head, tail
    return op, ""


def evaluate_ir(ir: KernelIR, args: tuple[object, ...]) -> object:
    """Execute lowered IR with JAX operations at the given coordinates."""
    if len(args) != len(POSITION_NAMES):
        raise NodeTypeError(f"Expected {len(POSITION_NAMES)} coordinates, got {len(args)}")

    arg_values = dict(zip(POSITION_NAMES, args))
    values: list[object] = [None] * len(ir.nodes)

    for item in ir.nodes:
        op = item.op
        if op == "arg":
            values[item.id] = arg_values[item.name]
            continue
        if op in ("const", "ref"):
            values[item.id] = item.value
            continue

        kind, payload = _decode_node_op(op)
        if kind == "apply":
            spec = OPERATIONS[payload]
            values[item.id] = spec.fn(*(values[idx] for idx in item.inputs))
            continue

        raise NodeCompileError(f"Unknown IR op {op!r}")

    return values[ir.output]


def lower_to_ir(expr: Expr, objects: Mapping[str, object] = EMPTY_OBJECTS) -> KernelIR:
    """Lower an expression, binding its references from `objects`."""
    lowerer = _Lowerer(objects=objects)
    out = lowerer.lower_expr(expr)
    return KernelIR(nodes=tuple(lowerer.nodes), output=out)


def _check_scalar_output(out):
    out = jnp.asarray(out)
    if jnp.iscomplexobj(out):
        raise NodeTypeError(f"Kernel produced complex dtype {out.dtype}")
    if out.shape != ():
        raise NodeTypeError(f"Kernel produced shape {tuple(out.shape)} instead of a scalar")
    return out.astype(FLOAT_DTYPE)


def _coordinate(value) -> float:
    if isinstance(value, numbers.Real):
        return float(value)
    shape = getattr(value, "shape", None)
    if shape == () and hasattr(value, "__float__"):
        return float(value)
    raise NodeTypeError(f"Coordinates must be real numbers, got {type(value).__name__}")


@dataclass
class ScalarFunction:
    """Callable of up to four coordinates backed by a lowered scalar expression.

    Missing trailing coordinates default to 0. Plain calls run the IR eagerly
    and return a Python float; `jit()` and `vmap()` return XLA-compiled
    kernels for repeated sampling.
    """

    ir: KernelIR
    expr: Expr | None = None
    _jit_fn: object | None = field(default=None, init=False, repr=False)
    _vmap_fn: object | None = field(default=None, init=False, repr=False)

    def kernel(self, x, y, z, t):
        """Traceable kernel taking all four coordinates."""
        return _check_scalar_output(evaluate_ir(self.ir, (x, y, z, t)))

    @staticmethod
    def _resolve_call_args(*args, **kwargs) -> tuple[object, ...]:
        if len(args) > len(POSITION_NAMES):
            raise NodeTypeError(f"Expected at most {len(POSITION_NAMES)} coordinates, got {len(args)}")
        values = dict(zip(POSITION_NAMES, args))
        for name, value in kwargs.items():
            if name not in POSITION_NAMES:
                raise NodeTypeError(f"Unknown coordinate {name!r}")
            if name in values:
                raise NodeTypeError(f"Coordinate {name!r} given twice")
            values[name] = value
        return tuple(values.get(name, 0.0) for name in POSITION_NAMES)

    @staticmethod
    def _call_wrapped(fn, values: tuple[object, ...]):
        try:
            return fn(*values)
        except NodeError:
            raise
        except Exception as err:
            raise classify_exception(err) from err

    def __call__(self, *args, **kwargs) -> float:
        values = tuple(_coordinate(v) for v in self._resolve_call_args(*args, **kwargs))
        return float(self._call_wrapped(self.kernel, values))

    def jit(self):
        """Return a JIT-compiled kernel; results are 0-d JAX arrays."""
        if self._jit_fn is None:
            self._jit_fn = jax.jit(self.kernel)
        jitted = self._jit_fn

        def compiled(*args, **kwargs):
            return self._call_wrapped(jitted, self._resolve_call_args(*args, **kwargs))

        return compiled

    def vmap(self):
        """Return a JIT-compiled kernel over coordinate arrays.

        Coordinates broadcast against each other (e.g. a meshgrid for x/y and
        scalars for z/t); the result has the broadcast shape.
        """
        if self._vmap_fn is None:
            vectorized = jax.vmap(self.kernel)
            self._vmap_fn = jax.jit(vectorized)
        batched = self._vmap_fn

        def sample(*args, **kwargs):
            values = self._resolve_call_args(*args, **kwargs)
            arrays = jnp.broadcast_arrays(*(jnp.asarray(v, dtype=FLOAT_DTYPE) for v in values))
            shape = arrays[0].shape
            flat = tuple(arr.reshape(-1) for arr in arrays)
            return self._call_wrapped(batched, flat).reshape(shape)

        return sample

    def trace(self, *args, **kwargs):
        """Emit the jaxpr of the kernel at sample coordinates."""
        values = self._resolve_call_args(*args, **kwargs)
        return jax.make_jaxpr(self.kernel)(*values)


def compile_scalar(n) -> ScalarFunction:
    """Compile a scalar node into a callable of up to four coordinates.

    Every call lowers afresh; nothing is shared between compilations.
    """
    n = node(n)
    if not is_scalar(n):
        raise NodeCompileError("Trying to compile a non-scalar node")
    ir = lower_to_ir(n.expr, n.objects)
    logger.debug("compiled scalar node: %d IR nodes, %d embedded objects", len(ir.nodes), len(ir.references))
    return ScalarFunction(ir=ir, expr=n.expr)
