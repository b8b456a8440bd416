"""Node data model: scalar/vector expression nodes and embedded-object tables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import itertools
from types import MappingProxyType

from .ast import Expr
from .errors import EmbeddingError

EMPTY_OBJECTS: Mapping[str, object] = MappingProxyType({})


@dataclass(frozen=True)
class Node:
    """Immutable handle to a scalar or vector expression.

    A scalar node has only `expr` set, a vector node only `components` (a
    non-empty tuple of scalar nodes). The constructors in `clisk_jax.build`
    never produce anything else; `clisk_jax.validation.validate` diagnoses
    hand-assembled nodes that break this.

    `objects` maps embedded-reference keys to the external values they stand
    for. Vector nodes carry the merged table of their components.
    """

    expr: Expr | None = None
    components: tuple["Node", ...] | None = None
    constant: bool = False
    objects: Mapping[str, object] = field(default_factory=lambda: EMPTY_OBJECTS, hash=False)


def is_node(value: object) -> bool:
    return isinstance(value, Node)


def is_constant(value: object) -> bool:
    return isinstance(value, Node) and value.constant


def is_scalar(value: object) -> bool:
    return isinstance(value, Node) and value.expr is not None and value.components is None


def is_vector(value: object) -> bool:
    return isinstance(value, Node) and value.components is not None and value.expr is None


class ObjectIdSource:
    """Mints embedded-reference keys from a monotonically increasing counter.

    Pass an explicit source to `object_node`/`node` to scope keys to one
    expression-building session; otherwise `DEFAULT_IDS` is used.
    """

    def __init__(self, prefix: str = "obj") -> None:
        self.prefix = prefix
        self._counter = itertools.count()

    def mint(self) -> str:
        return f"{self.prefix}{next(self._counter)}"


DEFAULT_IDS = ObjectIdSource()


def merge_objects(*tables: Mapping[str, object]) -> Mapping[str, object]:
    """Merge embedded-object tables, failing on conflicting bindings."""
    non_empty = [table for table in tables if table]
    if not non_empty:
        return EMPTY_OBJECTS
    if len(non_empty) == 1:
        return non_empty[0]

    merged: dict[str, object] = {}
    for table in non_empty:
        for key, value in table.items():
            if key in merged and merged[key] is not value:
                raise EmbeddingError(f"Embedded reference {key!r} is bound to two different objects")
            merged[key] = value
    return MappingProxyType(merged)
