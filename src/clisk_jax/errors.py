"""Structured error types for node construction, compilation and validation."""

from __future__ import annotations


class NodeError(Exception):
    """Base class for structured clisk-jax errors."""


class ConversionError(NodeError):
    """Input cannot be turned into a node."""


class NotConstantError(NodeError):
    """A constant node was requested but the input does not fold to literals."""


class ShapeError(NodeError):
    """Scalar/vector mismatch, e.g. a vector where a scalar is required."""


class StructuralError(NodeError):
    """Node has neither or both of the expression and component slots."""


class NodeTypeError(NodeError, TypeError):
    """Scalar expression does not resolve to a primitive numeric value."""


class NodeCompileError(NodeError):
    """Node cannot be lowered to a kernel."""


class EmbeddingError(NodeError):
    """Two embedded-object tables bind one identifier to different objects."""


def classify_exception(err: Exception) -> NodeError:
    """Best-effort classification of foreign errors raised inside a kernel."""
    message = str(err)
    lowered = message.lower()

    shape_markers = (
        "shape",
        "rank",
        "broadcast",
        "incompatible",
        "index",
        "out of bounds",
    )
    if any(marker in lowered for marker in shape_markers):
        return ShapeError(message)

    type_markers = (
        "type",
        "dtype",
        "float",
        "complex",
        "integer",
        "not callable",
        "concrete",
        "tracer",
    )
    if any(marker in lowered for marker in type_markers):
        return NodeTypeError(message)

    return NodeError(message)
