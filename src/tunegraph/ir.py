"""
Node representation for the expression graph.

Every node is one of a closed set of operator kinds. The output shape of a
node is a pure function of its kind, its input shapes and its scalar
parameters (``infer_shape``); no other state takes part.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, NamedTuple, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError, ShapeMismatch
from .shape import Shape, broadcast_shape, broadcast_shapes

if TYPE_CHECKING:
    import torch

    from .expression import Expr
    from .tuner import AutoTuner

AttrV = Union[int, float, str, bool, Tuple[int, ...]]


class OpKind(Enum):
    """Operator kinds a node can carry."""
    # leaves
    CONSTANT = "constant"
    PARAM = "param"
    INPUT = "input"
    INDICES = "indices"

    # unary element-wise
    SIGMOID = "sigmoid"
    RELU = "relu"
    PRELU = "prelu"
    CLIP = "clip"
    LOG = "log"
    EXP = "exp"
    SWISH = "swish"
    NEG = "neg"
    SQRT = "sqrt"
    SQUARE = "square"
    TANH = "tanh"
    SOFTMAX = "softmax"
    LOGSOFTMAX = "logsoftmax"
    SCALAR_ADD = "scalar_add"
    SCALAR_MULT = "scalar_mult"

    # binary element-wise
    PLUS = "plus"
    MINUS = "minus"
    MULT = "mult"
    DIV = "div"
    LOGADDEXP = "logaddexp"
    MAXIMUM = "maximum"
    MINIMUM = "minimum"

    # shape manipulation and gathering
    RESHAPE = "reshape"
    TRANSPOSE = "transpose"
    CONCATENATE = "concatenate"
    ROWS = "rows"
    COLS = "cols"
    SELECT = "select"
    STEP = "step"
    SHIFT = "shift"

    # reductions
    SUM = "sum"
    MEAN = "mean"
    SCALAR_PRODUCT = "scalar_product"
    CROSS_ENTROPY = "cross_entropy"

    # products
    DOT = "dot"
    DOT_BATCHED = "dot_batched"
    AFFINE = "affine"

    # composite layers
    LAYER_NORM = "layer_norm"
    HIGHWAY = "highway"
    AVG_POOLING = "avg_pooling"
    MAX_POOLING = "max_pooling"

    # reduced precision
    QUANTIZE = "quantize"
    INT16_DOT = "int16_dot"
    INT16_AFFINE = "int16_affine"

    @property
    def is_leaf(self) -> bool:
        return self in LEAF_KINDS


LEAF_KINDS = frozenset({OpKind.CONSTANT, OpKind.PARAM, OpKind.INPUT, OpKind.INDICES})


class Tag(NamedTuple):
    """Timing tag attached to nodes built by a tuner candidate."""
    tuner: "AutoTuner"
    fingerprint: int
    is_final: bool
    ordinal: int = 0


@dataclass(eq=False)
class Node:
    """One operation instance: kind, inputs, parameters and derived shape."""
    id: int
    kind: OpKind
    inputs: Tuple["Expr", ...]
    attrs: Tuple[AttrV, ...]
    shape: Shape
    name: Optional[str] = None
    value: Optional["torch.Tensor"] = None
    tag: Optional[Tag] = None
    debug: Optional[str] = None


ShapeRule = Callable[[Sequence[Shape], Tuple[AttrV, ...]], Shape]


def _same(shapes, attrs):
    return shapes[0]


def _broadcast(shapes, attrs):
    return broadcast_shapes(*shapes)


def _reduce_axis(shapes, attrs):
    (axis,) = attrs
    return shapes[0].with_dim(axis, 1)


def _scalar_product(shapes, attrs):
    (axis,) = attrs
    return broadcast_shape(shapes[0], shapes[1]).with_dim(axis, 1)


def _reshape(shapes, attrs):
    (dims,) = attrs
    new_shape = Shape(dims)
    if new_shape.elements != shapes[0].elements:
        raise ShapeMismatch(
            f"cannot reshape {list(shapes[0].dims)} into {list(new_shape.dims)}",
            context={'from': shapes[0].elements, 'to': new_shape.elements},
        )
    return new_shape


def _transpose(shapes, attrs):
    (axes,) = attrs
    shape = shapes[0]
    if sorted(axes) != list(range(len(shape))):
        raise ShapeMismatch(
            f"{list(axes)} is not a permutation of the axes of {list(shape.dims)}",
            context={'axes': axes, 'rank': len(shape)},
        )
    return Shape(tuple(shape.dims[a] for a in axes))


def _concatenate(shapes, attrs):
    (axis,) = attrs
    first = shapes[0]
    total = 0
    for shape in shapes:
        if len(shape) != len(first) or any(
            d != f for i, (d, f) in enumerate(zip(shape, first)) if i != axis
        ):
            raise ShapeMismatch(
                f"cannot concatenate {list(shape.dims)} with {list(first.dims)} along axis {axis}",
                context={'axis': axis},
            )
        total += shape[axis]
    return first.with_dim(axis, total)


def _rows(shapes, attrs):
    shape, idx = shapes
    if len(shape) < 2:
        raise ShapeMismatch("rows requires rank >= 2", context={'rank': len(shape)})
    return shape.with_dim(-2, idx.elements)


def _cols(shapes, attrs):
    shape, idx = shapes
    return shape.with_dim(-1, idx.elements)


def _select(shapes, attrs):
    (axis,) = attrs
    shape, idx = shapes
    return shape.with_dim(axis, idx.elements)


def _step(shapes, attrs):
    index, axis = attrs
    shape = shapes[0]
    if not 0 <= index < shape[axis]:
        raise ShapeMismatch(
            f"step index {index} out of range for axis {axis} of size {shape[axis]}",
            context={'index': index, 'axis': axis},
        )
    return shape.with_dim(axis, 1)


def _shift(shapes, attrs):
    offsets, _ = attrs
    if len(offsets) != len(shapes[0]):
        raise ShapeMismatch(
            f"shift needs one offset per axis, got {len(offsets)} for rank {len(shapes[0])}",
            context={'offsets': offsets},
        )
    return shapes[0]


def _cross_entropy(shapes, attrs):
    logits, idx = shapes
    rows = logits.elements // logits[-1]
    if idx.elements != rows:
        raise ShapeMismatch(
            f"cross_entropy needs {rows} indices, got {idx.elements}",
            context={'rows': rows, 'indices': idx.elements},
        )
    return logits.with_dim(-1, 1)


def _product_shape(a: Shape, b: Shape, trans_a: bool, trans_b: bool) -> Shape:
    if len(a) < 2 or len(b) < 2:
        raise ShapeMismatch(
            "matrix products require rank >= 2 operands",
            context={'a': a.dims, 'b': b.dims},
        )
    if trans_a:
        a = a.swapped(-1, -2)
    if trans_b:
        b = b.swapped(-1, -2)
    if a[-1] != b[-2]:
        raise ShapeMismatch(
            f"inner dimensions differ: {list(a.dims)} x {list(b.dims)}",
            context={'a': a.dims, 'b': b.dims},
        )
    return a.with_dim(-1, b[-1])


def _dot(shapes, attrs):
    trans_a, trans_b, _ = attrs
    return _product_shape(shapes[0], shapes[1], trans_a, trans_b)


def _dot_batched(shapes, attrs):
    trans_a, trans_b, _ = attrs
    a, b = shapes
    out = _product_shape(a, b, trans_a, trans_b)
    batch = broadcast_shape(Shape(a.dims[:-2]), Shape(b.dims[:-2]))
    return Shape(batch.dims + out.dims[-2:])


def _check_bias(out: Shape, bias: Shape) -> None:
    if bias.elements != out[-1]:
        raise ShapeMismatch(
            f"bias {list(bias.dims)} does not match output width {out[-1]}",
            context={'bias': bias.dims, 'out': out.dims},
        )


def _affine(shapes, attrs):
    trans_a, trans_b, _ = attrs
    a, b, bias, ones = shapes
    out = _product_shape(a, b, trans_a, trans_b)
    _check_bias(out, bias)
    rows = out.elements // out[-1]
    if ones.dims != (rows, 1):
        raise ShapeMismatch(
            f"ones column must be [{rows}, 1], got {list(ones.dims)}",
            context={'rows': rows},
        )
    return out


def _layer_norm(shapes, attrs):
    x = shapes[0]
    for param in shapes[1:]:
        if broadcast_shape(x, param) != x:
            raise ShapeMismatch(
                f"layer_norm parameter {list(param.dims)} would expand input {list(x.dims)}",
                context={'input': x.dims, 'param': param.dims},
            )
    return x


def _pooling(shapes, attrs):
    height, width, pad_h, pad_w, stride_h, stride_w = attrs
    x = shapes[0]
    if len(x) != 4:
        raise ShapeMismatch("pooling expects [N, C, H, W] input", context={'shape': x.dims})
    out_h = (x[2] + 2 * pad_h - height) // stride_h + 1
    out_w = (x[3] + 2 * pad_w - width) // stride_w + 1
    return Shape((x[0], x[1], out_h, out_w))


def _int16_dot(shapes, attrs):
    qa, qb = shapes[0], shapes[1]
    if len(qb) != 2 or qa[-1] != qb[-1]:
        raise ShapeMismatch(
            f"int16 product expects A[..., k] and B^T[n, k], got {list(qa.dims)} and {list(qb.dims)}",
            context={'a': qa.dims, 'b': qb.dims},
        )
    return qa.with_dim(-1, qb[0])


def _int16_affine(shapes, attrs):
    out = _int16_dot(shapes, attrs)
    _check_bias(out, shapes[2])
    return out


_SHAPE_RULES: Dict[OpKind, ShapeRule] = {
    OpKind.SIGMOID: _same,
    OpKind.RELU: _same,
    OpKind.PRELU: _same,
    OpKind.CLIP: _same,
    OpKind.LOG: _same,
    OpKind.EXP: _same,
    OpKind.SWISH: _same,
    OpKind.NEG: _same,
    OpKind.SQRT: _same,
    OpKind.SQUARE: _same,
    OpKind.TANH: _broadcast,
    OpKind.SOFTMAX: _same,
    OpKind.LOGSOFTMAX: _same,
    OpKind.SCALAR_ADD: _same,
    OpKind.SCALAR_MULT: _same,
    OpKind.PLUS: _broadcast,
    OpKind.MINUS: _broadcast,
    OpKind.MULT: _broadcast,
    OpKind.DIV: _broadcast,
    OpKind.LOGADDEXP: _broadcast,
    OpKind.MAXIMUM: _broadcast,
    OpKind.MINIMUM: _broadcast,
    OpKind.RESHAPE: _reshape,
    OpKind.TRANSPOSE: _transpose,
    OpKind.CONCATENATE: _concatenate,
    OpKind.ROWS: _rows,
    OpKind.COLS: _cols,
    OpKind.SELECT: _select,
    OpKind.STEP: _step,
    OpKind.SHIFT: _shift,
    OpKind.SUM: _reduce_axis,
    OpKind.MEAN: _reduce_axis,
    OpKind.SCALAR_PRODUCT: _scalar_product,
    OpKind.CROSS_ENTROPY: _cross_entropy,
    OpKind.DOT: _dot,
    OpKind.DOT_BATCHED: _dot_batched,
    OpKind.AFFINE: _affine,
    OpKind.LAYER_NORM: _layer_norm,
    OpKind.HIGHWAY: _broadcast,
    OpKind.AVG_POOLING: _pooling,
    OpKind.MAX_POOLING: _pooling,
    OpKind.QUANTIZE: _same,
    OpKind.INT16_DOT: _int16_dot,
    OpKind.INT16_AFFINE: _int16_affine,
}


def infer_shape(kind: OpKind, shapes: Sequence[Shape], attrs: Tuple[AttrV, ...] = ()) -> Shape:
    """
    Compute the output shape of a non-leaf node.

    Args:
        kind: Operator kind
        shapes: Shapes of the node's inputs, in order
        attrs: Scalar parameters of the node

    Returns:
        Output shape

    Raises:
        ShapeMismatch: if the inputs violate the operator's shape contract
    """
    rule = _SHAPE_RULES.get(kind)
    if rule is None:
        raise ConfigurationError(f"no shape rule for {kind.value}", context={'kind': kind.value})
    if not shapes:
        raise ConfigurationError(f"{kind.value} needs at least one input")
    return rule(shapes, attrs)


def describe(node: Node) -> Dict[str, Any]:
    """Summarize a node as plain data (for logging and debugging)."""
    return {
        'id': node.id,
        'kind': node.kind.value,
        'inputs': [e.node.id for e in node.inputs],
        'attrs': list(node.attrs),
        'shape': list(node.shape.dims),
        'name': node.name,
        'debug': node.debug,
    }
