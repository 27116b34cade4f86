"""
Expression handles.

An ``Expr`` is the user-facing handle to one graph node. Handles compare by
identity: two handles are equal only when they are the same object, which
the graph guarantees for deduplicated nodes. Arithmetic operators build new
nodes through ``tunegraph.operators``.
"""

from typing import TYPE_CHECKING, Optional, Union

from .ir import Node, OpKind, Tag
from .shape import Shape

if TYPE_CHECKING:
    import torch

    from .graph import Graph
    from .tuner import AutoTuner

Operand = Union["Expr", float, int]


class Expr:
    """Handle to a node; carries its shape and a back-reference to the graph."""

    def __init__(self, node: Node, graph: "Graph"):
        self._node = node
        self._graph = graph

    @property
    def node(self) -> Node:
        return self._node

    @property
    def graph(self) -> "Graph":
        return self._graph

    @property
    def shape(self) -> Shape:
        return self._node.shape

    @property
    def kind(self) -> OpKind:
        return self._node.kind

    @property
    def name(self) -> Optional[str]:
        return self._node.name

    @property
    def value(self) -> Optional["torch.Tensor"]:
        """Tensor computed by the last forward pass (or the leaf's data)."""
        return self._node.value

    def debug(self, message: str) -> "Expr":
        self._node.debug = message
        return self

    def record(self, tuner: "AutoTuner", fingerprint: int, is_final: bool = False,
               ordinal: int = 0) -> "Expr":
        """Tag this node so its execution time is charged to candidate ``ordinal`` of ``fingerprint``."""
        self._node.tag = Tag(tuner, fingerprint, is_final, ordinal)
        return self

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return f"Expr(#{self._node.id} {self.kind.value}{label} {list(self.shape.dims)})"

    # identity semantics are inherited from object: __eq__ is `is`, __hash__ is id-based

    def __neg__(self) -> "Expr":
        return operators.negate(self)

    def __add__(self, other: Operand) -> "Expr":
        return operators.add(self, other)

    def __radd__(self, other: Operand) -> "Expr":
        return operators.add(other, self)

    def __sub__(self, other: Operand) -> "Expr":
        return operators.subtract(self, other)

    def __rsub__(self, other: Operand) -> "Expr":
        return operators.subtract(other, self)

    def __mul__(self, other: Operand) -> "Expr":
        return operators.multiply(self, other)

    def __rmul__(self, other: Operand) -> "Expr":
        return operators.multiply(other, self)

    def __truediv__(self, other: Operand) -> "Expr":
        return operators.divide(self, other)

    def __rtruediv__(self, other: Operand) -> "Expr":
        return operators.divide(other, self)


from . import operators  # noqa: E402
