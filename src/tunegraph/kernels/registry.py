"""Kernel registry mapping node kinds to executable implementations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import torch

from ..errors import ConfigurationError
from ..ir import LEAF_KINDS, Node, OpKind
from . import cpu, int16

KernelFn = Callable[[Node, List[torch.Tensor]], torch.Tensor]


class KernelBackend(Enum):
    """Available kernel backends."""
    TORCH = "torch"  # torch element-wise and shape ops
    BLAS = "blas"  # full-precision matrix products
    INT16 = "int16"  # quantized integer products
    CUSTOM = "custom"  # user-registered kernels


@dataclass
class KernelSpec:
    """Specification for a kernel implementation."""
    name: str
    backend: KernelBackend
    op_kind: OpKind
    fn: KernelFn
    precision_support: List[str] = field(default_factory=lambda: ["fp32"])
    priority: int = 0  # higher wins among matching kernels

    def supports_precision(self, precision: str) -> bool:
        """Check if kernel supports given precision."""
        return precision.lower() in [p.lower() for p in self.precision_support]

    def __call__(self, node: Node, inputs: List[torch.Tensor]) -> torch.Tensor:
        return self.fn(node, inputs)


_TORCH_KERNELS = {
    OpKind.SIGMOID: cpu.sigmoid,
    OpKind.RELU: cpu.relu,
    OpKind.PRELU: cpu.prelu,
    OpKind.CLIP: cpu.clip,
    OpKind.LOG: cpu.log,
    OpKind.EXP: cpu.exp,
    OpKind.SWISH: cpu.swish,
    OpKind.NEG: cpu.neg,
    OpKind.SQRT: cpu.sqrt,
    OpKind.SQUARE: cpu.square,
    OpKind.TANH: cpu.tanh,
    OpKind.SOFTMAX: cpu.softmax,
    OpKind.LOGSOFTMAX: cpu.logsoftmax,
    OpKind.SCALAR_ADD: cpu.scalar_add,
    OpKind.SCALAR_MULT: cpu.scalar_mult,
    OpKind.PLUS: cpu.plus,
    OpKind.MINUS: cpu.minus,
    OpKind.MULT: cpu.mult,
    OpKind.DIV: cpu.div,
    OpKind.LOGADDEXP: cpu.logaddexp,
    OpKind.MAXIMUM: cpu.maximum,
    OpKind.MINIMUM: cpu.minimum,
    OpKind.RESHAPE: cpu.reshape,
    OpKind.TRANSPOSE: cpu.transpose,
    OpKind.CONCATENATE: cpu.concatenate,
    OpKind.ROWS: cpu.rows,
    OpKind.COLS: cpu.cols,
    OpKind.SELECT: cpu.select,
    OpKind.STEP: cpu.step,
    OpKind.SHIFT: cpu.shift,
    OpKind.SUM: cpu.sum,
    OpKind.MEAN: cpu.mean,
    OpKind.SCALAR_PRODUCT: cpu.scalar_product,
    OpKind.CROSS_ENTROPY: cpu.cross_entropy,
    OpKind.LAYER_NORM: cpu.layer_norm,
    OpKind.HIGHWAY: cpu.highway,
    OpKind.AVG_POOLING: cpu.avg_pooling,
    OpKind.MAX_POOLING: cpu.max_pooling,
}

_BLAS_KERNELS = {
    OpKind.DOT: cpu.dot,
    OpKind.DOT_BATCHED: cpu.dot_batched,
    OpKind.AFFINE: cpu.affine,
}

_INT16_KERNELS = {
    OpKind.QUANTIZE: int16.quantize_kernel,
    OpKind.INT16_DOT: int16.dot_kernel,
    OpKind.INT16_AFFINE: int16.affine_kernel,
}


class KernelRegistry:
    """
    Registry for managing kernel implementations.
    Selects the kernel a node kind executes with during a forward pass.
    """

    def __init__(self):
        """Initialize kernel registry."""
        self.kernels: Dict[OpKind, List[KernelSpec]] = {}
        self._register_default_kernels()

    def _register_default_kernels(self):
        """Register default kernel implementations."""
        for kind, fn in _TORCH_KERNELS.items():
            self.register(KernelSpec(
                name=f"torch_{kind.value}",
                backend=KernelBackend.TORCH,
                op_kind=kind,
                fn=fn,
            ))

        for kind, fn in _BLAS_KERNELS.items():
            self.register(KernelSpec(
                name=f"blas_{kind.value}",
                backend=KernelBackend.BLAS,
                op_kind=kind,
                fn=fn,
                precision_support=["fp32"],
            ))

        for kind, fn in _INT16_KERNELS.items():
            self.register(KernelSpec(
                name=f"int16_{kind.value}",
                backend=KernelBackend.INT16,
                op_kind=kind,
                fn=fn,
                precision_support=["int16"],
            ))

    def register(self, kernel: KernelSpec):
        """
        Register a kernel implementation.

        Args:
            kernel: Kernel specification to register
        """
        if kernel.op_kind in LEAF_KINDS:
            raise ConfigurationError(
                f"leaf kind {kernel.op_kind.value} cannot have a kernel",
                context={'kernel': kernel.name},
            )
        self.kernels.setdefault(kernel.op_kind, []).append(kernel)

    def find_kernel(self, op_kind: OpKind, precision: Optional[str] = None) -> Optional[KernelSpec]:
        """
        Find the best kernel for a node kind.

        Args:
            op_kind: Node kind to execute
            precision: Required precision, or None for any

        Returns:
            Highest priority match (latest registration breaks ties) or None
        """
        candidates = [
            k for k in self.kernels.get(op_kind, [])
            if precision is None or k.supports_precision(precision)
        ]
        if not candidates:
            return None
        # max() keeps the first maximum, so scan newest first
        return max(reversed(candidates), key=lambda k: k.priority)

    def kernel_for(self, node: Node) -> KernelSpec:
        """
        Kernel a node executes with; raises if none is registered.

        Quantized kinds only match kernels that declare int16 support.
        """
        precision = "int16" if node.kind in _INT16_KERNELS else None
        kernel = self.find_kernel(node.kind, precision)
        if kernel is None:
            raise ConfigurationError(
                f"no kernel registered for {node.kind.value}",
                context={'node': node.id},
            )
        return kernel

    def get_kernel_info(self, kernel_name: str) -> Optional[KernelSpec]:
        """Get kernel info by name."""
        for kernels in self.kernels.values():
            for kernel in kernels:
                if kernel.name == kernel_name:
                    return kernel
        return None

    def list_kernels(self, op_kind: Optional[OpKind] = None) -> List[KernelSpec]:
        """List all registered kernels, optionally filtered by node kind."""
        if op_kind:
            return list(self.kernels.get(op_kind, []))

        all_kernels = []
        for kernels in self.kernels.values():
            all_kernels.extend(kernels)
        return all_kernels

    def missing_kinds(self) -> List[OpKind]:
        """Non-leaf node kinds that have no kernel."""
        return [k for k in OpKind if k not in LEAF_KINDS and not self.kernels.get(k)]


# Global registry instance
_global_registry = KernelRegistry()


def get_registry() -> KernelRegistry:
    """Get the global kernel registry."""
    return _global_registry


def register_kernel(kernel: KernelSpec):
    """Register a kernel in the global registry."""
    _global_registry.register(kernel)
