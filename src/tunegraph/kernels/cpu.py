"""
Full-precision CPU kernels backed by torch.

Each kernel takes the node being executed and the already computed input
tensors, and returns the node's output tensor.
"""

from typing import List

import torch
import torch.nn.functional as F

from ..ir import Node


def sigmoid(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.sigmoid(inputs[0])


def relu(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.relu(inputs[0])


def prelu(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (alpha,) = node.attrs
    x = inputs[0]
    return torch.where(x > 0, x, alpha * x)


def clip(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (c,) = node.attrs
    return inputs[0].clamp(-c, c)


def log(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.log(inputs[0])


def exp(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.exp(inputs[0])


def swish(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    x = inputs[0]
    return x * torch.sigmoid(x)


def neg(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return -inputs[0]


def sqrt(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (eps,) = node.attrs
    return torch.sqrt(inputs[0] + eps)


def square(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0] * inputs[0]


def tanh(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    total = inputs[0]
    for x in inputs[1:]:
        total = total + x
    return torch.tanh(total)


def softmax(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.softmax(inputs[0], dim=-1)


def logsoftmax(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.log_softmax(inputs[0], dim=-1)


def scalar_add(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (s,) = node.attrs
    return inputs[0] + s


def scalar_mult(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (s,) = node.attrs
    return inputs[0] * s


def plus(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0] + inputs[1]


def minus(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0] - inputs[1]


def mult(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0] * inputs[1]


def div(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0] / inputs[1]


def logaddexp(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    a, b = torch.broadcast_tensors(inputs[0], inputs[1])
    return torch.logaddexp(a, b)


def maximum(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.maximum(inputs[0], inputs[1])


def minimum(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return torch.minimum(inputs[0], inputs[1])


def reshape(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    return inputs[0].reshape(node.shape.dims)


def transpose(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axes,) = node.attrs
    return inputs[0].permute(*axes).contiguous()


def concatenate(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axis,) = node.attrs
    return torch.cat(inputs, dim=axis)


def rows(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    x, idx = inputs
    return x.index_select(x.dim() - 2, idx.reshape(-1))


def cols(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    x, idx = inputs
    return x.index_select(x.dim() - 1, idx.reshape(-1))


def select(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axis,) = node.attrs
    x, idx = inputs
    return x.index_select(axis, idx.reshape(-1))


def step(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    index, axis = node.attrs
    return inputs[0].narrow(axis, index, 1)


def shift(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    offsets, pad_value = node.attrs
    x = inputs[0]
    out = torch.full_like(x, pad_value)
    src = [slice(None)] * x.dim()
    dst = [slice(None)] * x.dim()
    for axis, offset in enumerate(offsets):
        size = x.shape[axis]
        if abs(offset) >= size:
            return out
        if offset > 0:
            src[axis] = slice(0, size - offset)
            dst[axis] = slice(offset, size)
        elif offset < 0:
            src[axis] = slice(-offset, size)
            dst[axis] = slice(0, size + offset)
    out[tuple(dst)] = x[tuple(src)]
    return out


def sum(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axis,) = node.attrs
    return inputs[0].sum(dim=axis, keepdim=True)


def mean(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axis,) = node.attrs
    return inputs[0].mean(dim=axis, keepdim=True)


def scalar_product(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (axis,) = node.attrs
    return (inputs[0] * inputs[1]).sum(dim=axis, keepdim=True)


def cross_entropy(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    logits, idx = inputs
    flat = torch.log_softmax(logits, dim=-1).reshape(-1, logits.shape[-1])
    picked = flat.gather(1, idx.reshape(-1, 1))
    return (-picked).reshape(node.shape.dims)


def _operands(node: Node, a: torch.Tensor, b: torch.Tensor):
    trans_a, trans_b, scale = node.attrs
    if trans_a:
        a = a.transpose(-1, -2)
    if trans_b:
        b = b.transpose(-1, -2)
    return a, b, scale


def dot(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    a, b, scale = _operands(node, inputs[0], inputs[1])
    return torch.matmul(a, b) * scale


def dot_batched(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    a, b, scale = _operands(node, inputs[0], inputs[1])
    return torch.matmul(a, b) * scale


def affine(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    """Product plus bias, the bias folded in as ``ones . bias``."""
    a, b, scale = _operands(node, inputs[0], inputs[1])
    bias, ones = inputs[2], inputs[3]
    out = torch.matmul(a, b) * scale
    biased = torch.matmul(ones, bias.reshape(1, -1))
    return out + biased.reshape(out.shape)


def layer_norm(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    (eps,) = node.attrs
    x, gamma = inputs[0], inputs[1]
    mu = x.mean(dim=-1, keepdim=True)
    var = ((x - mu) ** 2).mean(dim=-1, keepdim=True)
    out = gamma * (x - mu) / torch.sqrt(var + eps)
    if len(inputs) > 2:
        out = out + inputs[2]
    return out


def highway(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    y, x, t = inputs
    g = torch.sigmoid(t)
    return g * y + (1 - g) * x


def avg_pooling(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    height, width, pad_h, pad_w, stride_h, stride_w = node.attrs
    return F.avg_pool2d(inputs[0], (height, width), stride=(stride_h, stride_w), padding=(pad_h, pad_w))


def max_pooling(node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
    height, width, pad_h, pad_w, stride_h, stride_w = node.attrs
    return F.max_pool2d(inputs[0], (height, width), stride=(stride_h, stride_w), padding=(pad_h, pad_w))
