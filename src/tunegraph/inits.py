"""
Node initializers.

An initializer is a callable taking the target Shape and returning a
float32 torch tensor of exactly that shape.
"""

from typing import Callable, Optional

import numpy as np
import torch

from .errors import ShapeMismatch
from .shape import Shape

NodeInitializer = Callable[[Shape], torch.Tensor]


def _generator(seed: Optional[int]) -> Optional[torch.Generator]:
    if seed is None:
        return None
    return torch.Generator().manual_seed(seed)


def from_value(value: float) -> NodeInitializer:
    """Fill every element with ``value``."""
    def init(shape: Shape) -> torch.Tensor:
        return torch.full(shape.dims, float(value), dtype=torch.float32)
    return init


def zeros() -> NodeInitializer:
    return from_value(0.0)


def ones() -> NodeInitializer:
    return from_value(1.0)


def from_vector(values) -> NodeInitializer:
    """
    Initialize from a flat or nested sequence, numpy array or tensor.

    The number of elements must match the target shape; values are laid out
    in row-major order.
    """
    array = np.asarray(
        values.detach().cpu().numpy() if isinstance(values, torch.Tensor) else values,
        dtype=np.float32,
    )

    def init(shape: Shape) -> torch.Tensor:
        if array.size != shape.elements:
            raise ShapeMismatch(
                f"initializer holds {array.size} values, shape {list(shape.dims)} needs {shape.elements}",
                context={'values': array.size, 'elements': shape.elements},
            )
        return torch.from_numpy(array.reshape(shape.dims).copy())
    return init


def normal(mean: float = 0.0, std: float = 1.0, seed: Optional[int] = None) -> NodeInitializer:
    def init(shape: Shape) -> torch.Tensor:
        out = torch.empty(shape.dims, dtype=torch.float32)
        return out.normal_(mean, std, generator=_generator(seed))
    return init


def uniform(low: float = 0.0, high: float = 1.0, seed: Optional[int] = None) -> NodeInitializer:
    def init(shape: Shape) -> torch.Tensor:
        out = torch.empty(shape.dims, dtype=torch.float32)
        return out.uniform_(low, high, generator=_generator(seed))
    return init
