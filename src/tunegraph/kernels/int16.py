"""
Reduced-precision (int16) matrix products.

Values are clipped, scaled by ``2**QUANT_BITS`` and rounded to int16. The
product kernels compute ``A . B^T`` on the integer values and rescale the
result, so callers pass the second operand already transposed.
"""

from typing import TYPE_CHECKING, List

import torch

from ..ir import Node, OpKind

if TYPE_CHECKING:
    from ..expression import Expr

QUANT_BITS = 10
QUANT_MULT = float(2 ** QUANT_BITS)

_INT16_MIN = -(2 ** 15)
_INT16_MAX = 2 ** 15 - 1


def quantize(a: "Expr", clip_value: float = 0.0) -> "Expr":
    """Quantize ``a`` to int16, clipping to [-clip_value, clip_value] when non-zero."""
    return a.graph.add_node(OpKind.QUANTIZE, (a,), (float(clip_value),))


def dot(qa: "Expr", qb: "Expr", scale: float = 1.0) -> "Expr":
    """Multiply quantized ``qa`` [..., k] with quantized ``qb`` [n, k] (B transposed)."""
    return qa.graph.add_node(OpKind.INT16_DOT, (qa, qb), (float(scale),))


def affine(qa: "Expr", qb: "Expr", bias: "Expr", scale: float = 1.0) -> "Expr":
    """Like ``dot`` with a full-precision bias row added to every output row."""
    return qa.graph.add_node(OpKind.INT16_AFFINE, (qa, qb, bias), (float(scale),))


def quantize_kernel(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (clip_value,) = node.attrs
    x = inputs[0]
    if clip_value != 0:
        x = x.clamp(-clip_value, clip_value)
    q = torch.round(x * QUANT_MULT).clamp(_INT16_MIN, _INT16_MAX)
    return q.to(torch.int16)


def _int_product(qa: torch.Tensor, qb: torch.Tensor, scale: float) -> torch.Tensor:
    k = qa.shape[-1]
    flat = qa.reshape(-1, k).to(torch.int64)
    acc = torch.matmul(flat, qb.to(torch.int64).t())
    out = acc.to(torch.float32) * (scale / (QUANT_MULT * QUANT_MULT))
    return out.reshape(*qa.shape[:-1], qb.shape[0])


def dot_kernel(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (scale,) = node.attrs
    return _int_product(inputs[0], inputs[1], scale)


def affine_kernel(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (scale,) = node.attrs
    out = _int_product(inputs[0], inputs[1], scale)
    return out + inputs[2].reshape(-1)
