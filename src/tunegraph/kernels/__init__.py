"""
Tunegraph kernel implementations: full-precision torch kernels and the
int16 quantized products.
"""

from .registry import KernelBackend, KernelRegistry, KernelSpec, get_registry, register_kernel
from . import cpu, int16

__all__ = [
    'KernelBackend',
    'KernelRegistry',
    'KernelSpec',
    'get_registry',
    'register_kernel',
    'cpu',
    'int16',
]
