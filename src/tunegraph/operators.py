"""
Operator library.

Every function validates its operands, normalizes axes and returns a new
expression wrapping the node (or the small pipeline of nodes) it builds.
Functions that have nothing to do return their input unchanged, by
identity: ``clip(a, 0) is a``, ``repeat(a, 1) is a``.
"""

import logging
import math
from typing import List, Optional, Sequence, Union

from .config import DeviceType
from .errors import ConfigurationError, ShapeMismatch
from .expression import Expr
from .inits import NodeInitializer, from_value
from .ir import OpKind
from .kernels import int16
from .shape import Shape, ShapeLike, as_shape, broadcast_shape, resolve_axis
from .tuner import AutoTuner, Candidate, candidate_key, fingerprint

logger = logging.getLogger(__name__)

# additive bias for masked-out softmax positions
MASK_BIAS = -99999999.0

Operand = Union[Expr, float, int]
IndexSet = Union[Expr, Sequence[int]]


def _node(kind: OpKind, inputs: Sequence[Expr], *attrs) -> Expr:
    return inputs[0].graph.add_node(kind, inputs, tuple(attrs))


def _not_implemented(name: str):
    raise ConfigurationError(f"{name} over a list of expressions is not implemented")


def _is_list(a) -> bool:
    return isinstance(a, (list, tuple))


def debug(a: Expr, message: str) -> Expr:
    return a.debug(message)


# unary element-wise

def sigmoid(a: Expr) -> Expr:
    """Logistic function (scipy's expit)."""
    if _is_list(a):
        _not_implemented("sigmoid")
    return _node(OpKind.SIGMOID, (a,))


def relu(a: Expr) -> Expr:
    if _is_list(a):
        _not_implemented("relu")
    return _node(OpKind.RELU, (a,))


def leakyrelu(a: Expr) -> Expr:
    if _is_list(a):
        _not_implemented("leakyrelu")
    return _node(OpKind.PRELU, (a,), 0.01)


def prelu(a: Expr, alpha: float = 0.01) -> Expr:
    if _is_list(a):
        _not_implemented("prelu")
    return _node(OpKind.PRELU, (a,), float(alpha))


def clip(a: Expr, c: float) -> Expr:
    """Clip to [-c, c]; a clip value of 0 disables clipping."""
    if c == 0:
        return a
    return _node(OpKind.CLIP, (a,), float(c))


def log(a: Expr) -> Expr:
    return _node(OpKind.LOG, (a,))


def exp(a: Expr) -> Expr:
    return _node(OpKind.EXP, (a,))


def swish(a: Expr) -> Expr:
    if _is_list(a):
        _not_implemented("swish")
    return _node(OpKind.SWISH, (a,))


def negate(a: Expr) -> Expr:
    return _node(OpKind.NEG, (a,))


def sqrt(a: Expr, eps: float = 0.0) -> Expr:
    return _node(OpKind.SQRT, (a,), float(eps))


def square(a: Expr) -> Expr:
    return _node(OpKind.SQUARE, (a,))


def tanh(*nodes: Expr) -> Expr:
    """tanh of the (broadcast) element-wise sum of the inputs."""
    if len(nodes) == 1 and _is_list(nodes[0]):
        nodes = tuple(nodes[0])
    if not nodes:
        raise ConfigurationError("tanh needs at least one input")
    return _node(OpKind.TANH, nodes)


def plus(nodes: Sequence[Expr]) -> Expr:
    _not_implemented("plus")


# softmax family

def softmax(a: Expr, axis: Union[int, Expr] = -1, mask: Optional[Expr] = None) -> Expr:
    """
    Softmax along ``axis``.

    A non-last axis is swapped to the end, normalized there and swapped
    back. With ``mask`` (zeros and ones), masked-out positions get a large
    negative bias before normalization so their probability is ~0.

    The masked form may also be called positionally as
    ``softmax(a, mask, axis)``.
    """
    if isinstance(axis, Expr):
        axis, mask = (-1 if mask is None else mask), axis
    if mask is not None:
        log_mask = (1 - mask) * MASK_BIAS
        return softmax(a + log_mask, axis=axis)

    axis = resolve_axis(a.shape, axis)
    last = len(a.shape) - 1
    if axis != last:
        return swap_axes(softmax(swap_axes(a, axis, last)), axis, last)
    return _node(OpKind.SOFTMAX, (a,))


def logsoftmax(a: Expr) -> Expr:
    return _node(OpKind.LOGSOFTMAX, (a,))


# binary element-wise

def _constant_scalar(graph, value: float) -> Expr:
    return graph.constant(Shape(()), from_value(value))


def add(a: Operand, b: Operand) -> Expr:
    if isinstance(a, Expr) and isinstance(b, Expr):
        return _node(OpKind.PLUS, (a, b))
    if isinstance(a, Expr):
        return _node(OpKind.SCALAR_ADD, (a,), float(b))
    return _node(OpKind.SCALAR_ADD, (b,), float(a))


def subtract(a: Operand, b: Operand) -> Expr:
    if isinstance(a, Expr) and isinstance(b, Expr):
        return _node(OpKind.MINUS, (a, b))
    if isinstance(a, Expr):
        return _node(OpKind.SCALAR_ADD, (a,), -float(b))
    return _node(OpKind.SCALAR_ADD, (negate(b),), float(a))


def multiply(a: Operand, b: Operand) -> Expr:
    if isinstance(a, Expr) and isinstance(b, Expr):
        return _node(OpKind.MULT, (a, b))
    if isinstance(a, Expr):
        return _node(OpKind.SCALAR_MULT, (a,), float(b))
    return _node(OpKind.SCALAR_MULT, (b,), float(a))


def divide(a: Operand, b: Operand) -> Expr:
    if isinstance(a, Expr) and isinstance(b, Expr):
        return _node(OpKind.DIV, (a, b))
    if isinstance(a, Expr):
        b = float(b)
        # dividing by zero scales by a signed infinity, left to execution
        inverse = math.copysign(math.inf, b) if b == 0.0 else 1.0 / b
        return _node(OpKind.SCALAR_MULT, (a,), inverse)
    # TODO: add a scalar-over-tensor node so the numerator is not materialized
    numerator = _constant_scalar(b.graph, float(a))
    return _node(OpKind.DIV, (numerator, b))


def logaddexp(a: Expr, b: Expr) -> Expr:
    return _node(OpKind.LOGADDEXP, (a, b))


def maximum(a: Expr, b: Expr) -> Expr:
    return _node(OpKind.MAXIMUM, (a, b))


def minimum(a: Expr, b: Expr) -> Expr:
    return _node(OpKind.MINIMUM, (a, b))


# shape manipulation

def concatenate(concats: Sequence[Expr], axis: int = 0) -> Expr:
    if not concats:
        raise ConfigurationError("concatenate needs at least one input")
    axis = resolve_axis(concats[0].shape, axis)
    return _node(OpKind.CONCATENATE, tuple(concats), axis)


def repeat(a: Expr, repeats: int, axis: int = 0) -> Expr:
    if repeats < 1:
        raise ShapeMismatch(f"repeats must be >= 1, got {repeats}", context={'repeats': repeats})
    if repeats == 1:
        return a
    return concatenate([a] * repeats, axis)


def reshape(a: Expr, shape: ShapeLike) -> Expr:
    return _node(OpKind.RESHAPE, (a,), as_shape(shape).dims)


def atleast_nd(a: Expr, dims: int) -> Expr:
    """Left-pad the shape of ``a`` with 1s up to rank ``dims``."""
    if len(a.shape) >= dims:
        return a
    padded = (1,) * (dims - len(a.shape)) + a.shape.dims
    return reshape(a, padded)


def atleast_1d(a: Expr) -> Expr:
    return atleast_nd(a, 1)


def atleast_2d(a: Expr) -> Expr:
    return atleast_nd(a, 2)


def atleast_3d(a: Expr) -> Expr:
    return atleast_nd(a, 3)


def atleast_4d(a: Expr) -> Expr:
    return atleast_nd(a, 4)


def flatten(a: Expr) -> Expr:
    return reshape(a, (a.shape.elements,))


def flatten_2d(a: Expr) -> Expr:
    last = a.shape[-1]
    return reshape(a, (a.shape.elements // last, last))


def constant_like(a: Expr, init: NodeInitializer) -> Expr:
    return a.graph.constant(a.shape, init)


def transpose(a: Expr, axes: Optional[Sequence[int]] = None) -> Expr:
    """
    Permute axes; without ``axes`` the last two axes are swapped.

    A rank-1 input gets the identity permutation.
    """
    rank = len(a.shape)
    if axes is None:
        if rank < 1:
            raise ShapeMismatch("transpose requires rank >= 1", context={'rank': rank})
        perm = list(range(rank))
        if rank > 1:
            perm[-1], perm[-2] = perm[-2], perm[-1]
    else:
        if len(axes) != rank:
            raise ShapeMismatch(
                f"transpose needs {rank} axes, got {len(axes)}",
                context={'axes': tuple(axes)},
            )
        perm = [resolve_axis(a.shape, ax) for ax in axes]
    return _node(OpKind.TRANSPOSE, (a,), tuple(perm))


def swap_axes(x: Expr, axis1: int, axis2: int) -> Expr:
    axis1 = resolve_axis(x.shape, axis1)
    axis2 = resolve_axis(x.shape, axis2)
    if axis1 == axis2:
        return x
    axes = list(range(len(x.shape)))
    axes[axis1], axes[axis2] = axes[axis2], axes[axis1]
    return transpose(x, axes)


def step(a: Expr, index: int, axis: int) -> Expr:
    """Slice of size 1 at ``index`` along ``axis``."""
    axis = resolve_axis(a.shape, axis)
    return _node(OpKind.STEP, (a,), int(index), axis)


def shift(a: Expr, offsets: Sequence[int], pad_value: float = 0.0) -> Expr:
    return _node(OpKind.SHIFT, (a,), tuple(int(o) for o in offsets), float(pad_value))


# gathering

def rows(a: Expr, indices: IndexSet) -> Expr:
    if not isinstance(indices, Expr):
        indices = a.graph.indices(indices)
    return _node(OpKind.ROWS, (a, indices))


def cols(a: Expr, indices: IndexSet) -> Expr:
    if not isinstance(indices, Expr):
        indices = a.graph.indices(indices)
    return _node(OpKind.COLS, (a, indices))


def select(a: Expr, indices: IndexSet, axis: int) -> Expr:
    if not isinstance(indices, Expr):
        indices = a.graph.indices(indices, a, axis)
    return _node(OpKind.SELECT, (a, indices), resolve_axis(a.shape, axis))


# reductions

def sum(a: Expr, axis: int = 0) -> Expr:
    """Sum over ``axis``; the axis is kept with size 1."""
    return _node(OpKind.SUM, (a,), resolve_axis(a.shape, axis))


def mean(a: Expr, axis: int = 0) -> Expr:
    """Mean over ``axis``; the axis is kept with size 1."""
    return _node(OpKind.MEAN, (a,), resolve_axis(a.shape, axis))


def scalar_product(a: Expr, b: Expr, axis: int = 0) -> Expr:
    """Sum of ``a * b`` over ``axis`` of the broadcast shape, kept with size 1."""
    return _node(OpKind.SCALAR_PRODUCT, (a, b),
                 resolve_axis(broadcast_shape(a.shape, b.shape), axis))


def weighted_average(values: Expr, weights: Expr, axis: int = 0) -> Expr:
    p = scalar_product(values, weights, axis)
    s = sum(weights, axis)
    return p / s


def cross_entropy(logits: Expr, indices: IndexSet) -> Expr:
    if not isinstance(indices, Expr):
        indices = logits.graph.indices(indices)
    return _node(OpKind.CROSS_ENTROPY, (logits, indices))


# products

def _uses_int16(a: Expr) -> bool:
    graph = a.graph
    return graph.is_optimized() and graph.get_device_id().type is DeviceType.CPU


def dot(a: Expr, b: Expr, trans_a: bool = False, trans_b: bool = False, scale: float = 1.0) -> Expr:
    """
    Matrix product ``op(a) . op(b) * scale``.

    Optimized CPU graphs multiply in int16; otherwise both operands are
    clipped to the backend's clip value (0 disables) and multiplied in full
    precision.
    """
    clip_value = a.graph.get_backend().get_clip()
    if _uses_int16(a):
        # the int16 kernel computes A . B^T
        return int16.dot(
            int16.quantize(transpose(a) if trans_a else a, clip_value),
            int16.quantize(b if trans_b else transpose(b), clip_value),
            scale,
        )
    return _node(OpKind.DOT, (clip(a, clip_value), clip(b, clip_value)),
                 bool(trans_a), bool(trans_b), float(scale))


def bdot(a: Expr, b: Expr, trans_a: bool = False, trans_b: bool = False, scale: float = 1.0) -> Expr:
    return _node(OpKind.DOT_BATCHED, (a, b), bool(trans_a), bool(trans_b), float(scale))


def _ones_column(a: Expr, trans_a: bool) -> Expr:
    shape = a.shape.swapped(-1, -2) if trans_a and len(a.shape) > 1 else a.shape
    return a.graph.ones((shape.elements // shape[-1], 1))


def _affine_node(a: Expr, b: Expr, bias: Expr, ones: Expr,
                 trans_a: bool, trans_b: bool, scale: float) -> Expr:
    return _node(OpKind.AFFINE, (a, b, bias, ones), bool(trans_a), bool(trans_b), float(scale))


def _int16_affine(a: Expr, b: Expr, bias: Expr, trans_a: bool, trans_b: bool,
                  scale: float, clip_value: float, record=None) -> Expr:
    def rec(e, is_final=False):
        return record(e, is_final) if record is not None else e

    qa = rec(int16.quantize(rec(transpose(a)) if trans_a else a, clip_value))
    qb = rec(int16.quantize(b if trans_b else rec(transpose(b)), clip_value))
    return rec(int16.affine(qa, qb, bias, scale), True)


def affine(a: Expr, b: Expr, bias: Expr, trans_a: bool = False, trans_b: bool = False,
           scale: float = 1.0, tuner: Optional[AutoTuner] = None) -> Expr:
    """
    ``op(a) . op(b) * scale + bias``.

    On optimized CPU graphs the int16 product and the full-precision product
    compete inside the tuner (``tuner`` or the graph's own), keyed by the
    coarsened operand shapes; the faster one for that shape bucket is used.
    Elsewhere the full-precision product is built directly. Either way the
    full-precision variant folds the bias into the product through a column
    of ones.
    """
    graph = a.graph
    clip_value = graph.get_backend().get_clip()

    if not _uses_int16(a):
        return _affine_node(clip(a, clip_value), clip(b, clip_value), bias,
                            _ones_column(a, trans_a), trans_a, trans_b, scale)

    if not graph.config.autotune:
        return _int16_affine(a, b, bias, trans_a, trans_b, scale, clip_value)

    tuner = tuner if tuner is not None else graph.tuner
    tuner.clear()

    base = fingerprint(a.shape, b.shape, bias.shape, flags=(bool(trans_a), bool(trans_b)))

    def quantized(record):
        return _int16_affine(a, b, bias, trans_a, trans_b, scale, clip_value, record)

    def blas(record):
        ac = clip(a, clip_value)
        if ac is not a:
            ac = record(ac)
        bc = clip(b, clip_value)
        if bc is not b:
            bc = record(bc)
        ones = _ones_column(ac, trans_a)
        return record(_affine_node(ac, bc, bias, ones, trans_a, trans_b, scale), True)

    tuner.insert(Candidate(candidate_key(base, 1), 1, quantized))
    tuner.insert(Candidate(candidate_key(base, 2), 2, blas))
    logger.debug("tuning affine %s x %s", list(a.shape.dims), list(b.shape.dims))
    return tuner.run()


# normalization and composite layers

def layer_norm(x: Expr, gamma: Expr, beta: Optional[Expr] = None, eps: float = 1e-9) -> Expr:
    nodes: List[Expr] = [x, gamma]
    if beta is not None:
        nodes.append(beta)
    return _node(OpKind.LAYER_NORM, nodes, float(eps))


def highway(y: Expr, x: Expr, t: Expr) -> Expr:
    """Gate between ``y`` and ``x`` with ``sigmoid(t)``."""
    return _node(OpKind.HIGHWAY, (y, x, t))


def avg_pooling(x: Expr, height: int, width: int, pad_height: int = 0, pad_width: int = 0,
                stride_height: int = 1, stride_width: int = 1) -> Expr:
    return _node(OpKind.AVG_POOLING, (x,), height, width, pad_height, pad_width,
                 stride_height, stride_width)


def max_pooling(x: Expr, height: int, width: int, pad_height: int = 0, pad_width: int = 0,
                stride_height: int = 1, stride_width: int = 1) -> Expr:
    return _node(OpKind.MAX_POOLING, (x,), height, width, pad_height, pad_width,
                 stride_height, stride_width)
