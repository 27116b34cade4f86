"""
Tunegraph - lazily built tensor expression graphs with adaptive kernel selection.

Operators compose nodes into a graph; ``affine`` on optimized CPU graphs
times an int16 and a full-precision implementation per shape bucket and
replays the faster one.
"""

__version__ = "0.1.0"

# Core imports
from .errors import TunegraphError, ShapeMismatch, AxisOutOfRange, ConfigurationError
from .shape import Shape, as_shape, resolve_axis, is_broadcastable, broadcast_shape, element_count
from .config import GraphConfig, DeviceType, DeviceId, Backend
from .graph import Graph
from .expression import Expr
from .ir import OpKind, Node, infer_shape
from .tuner import AutoTuner, Candidate, TimingStats, TunerState, fingerprint, candidate_key
from . import inits
from . import operators

# Kernel management
from .kernels.registry import KernelRegistry, KernelSpec, KernelBackend, get_registry, register_kernel

# Operator library
from .operators import (
    debug, sigmoid, relu, leakyrelu, prelu, clip, log, exp, swish, negate, sqrt, square, tanh, plus,
    softmax, logsoftmax,
    add, subtract, multiply, divide, logaddexp, maximum, minimum,
    concatenate, repeat, reshape, atleast_nd, atleast_1d, atleast_2d, atleast_3d, atleast_4d,
    flatten, flatten_2d, constant_like, transpose, swap_axes, step, shift,
    rows, cols, select,
    sum, mean, scalar_product, weighted_average, cross_entropy,
    dot, bdot, affine,
    layer_norm, highway, avg_pooling, max_pooling,
)


__all__ = [
    # Errors
    'TunegraphError',
    'ShapeMismatch',
    'AxisOutOfRange',
    'ConfigurationError',

    # Classes
    'Shape',
    'Graph',
    'GraphConfig',
    'DeviceType',
    'DeviceId',
    'Backend',
    'Expr',
    'OpKind',
    'Node',
    'AutoTuner',
    'Candidate',
    'TimingStats',
    'TunerState',
    'KernelRegistry',
    'KernelSpec',
    'KernelBackend',

    # Functions
    'as_shape',
    'resolve_axis',
    'is_broadcastable',
    'broadcast_shape',
    'element_count',
    'infer_shape',
    'fingerprint',
    'candidate_key',
    'get_registry',
    'register_kernel',

    # Modules
    'inits',
    'operators',

    # Version
    '__version__',
]
