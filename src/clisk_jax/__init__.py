"""clisk-jax public API."""

from .ast import POSITION, Apply, Const, Expr, Ref, Var
from .build import (
    apply_form,
    code_node,
    component,
    constant_node,
    dimensions,
    function_node,
    node,
    object_node,
    position_node,
    transform,
    transform_components,
    value_node,
    vec_node,
    vector_node,
    zero_node,
)
from .errors import (
    ConversionError,
    EmbeddingError,
    NodeCompileError,
    NodeError,
    NodeTypeError,
    NotConstantError,
    ShapeError,
    StructuralError,
)
from .evaluator import evaluate
from .ir import KernelIR, ScalarFunction, compile_scalar, lower_to_ir
from .nodes import Node, ObjectIdSource, is_constant, is_node, is_scalar, is_vector
from .validation import validate

__all__ = [
    "POSITION",
    "Expr",
    "Const",
    "Var",
    "Ref",
    "Apply",
    "Node",
    "ObjectIdSource",
    "is_node",
    "is_constant",
    "is_scalar",
    "is_vector",
    "value_node",
    "object_node",
    "code_node",
    "vec_node",
    "vector_node",
    "constant_node",
    "node",
    "zero_node",
    "position_node",
    "dimensions",
    "component",
    "transform",
    "transform_components",
    "apply_form",
    "function_node",
    "compile_scalar",
    "lower_to_ir",
    "KernelIR",
    "ScalarFunction",
    "evaluate",
    "validate",
    "NodeError",
    "ConversionError",
    "NotConstantError",
    "ShapeError",
    "StructuralError",
    "NodeTypeError",
    "NodeCompileError",
    "EmbeddingError",
]
