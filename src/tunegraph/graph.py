"""
Expression graph container.

The graph owns every node created through it, hands out ``Expr`` handles,
deduplicates structurally identical nodes and executes nodes in creation
order (which is always a valid topological order) on torch CPU tensors.
"""

import logging
import warnings
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import torch

from .config import Backend, DeviceId, DeviceType, GraphConfig
from .errors import ConfigurationError, ShapeMismatch
from .expression import Expr
from .inits import NodeInitializer, from_value
from .ir import AttrV, Node, OpKind, infer_shape
from .kernels.registry import KernelRegistry, get_registry
from .shape import Shape, ShapeLike, as_shape, resolve_axis
from .tuner import AutoTuner

logger = logging.getLogger(__name__)


class Graph:
    """Builds and executes a graph of tensor operations."""

    def __init__(self,
                 config: Optional[GraphConfig] = None,
                 registry: Optional[KernelRegistry] = None,
                 tuner: Optional[AutoTuner] = None):
        """
        Initialize an empty graph.

        Args:
            config: Graph settings, defaults to GraphConfig()
            registry: Kernel registry, defaults to the global registry
            tuner: Selection context used by affine, defaults to a new one
        """
        self.config = config or GraphConfig()
        self.registry = registry or get_registry()
        self.tuner = tuner or AutoTuner(rounds=self.config.tuner_rounds)
        self._backend = Backend(device=self.config.device_id, clip=self.config.clip)
        self._nodes: List[Expr] = []
        self._cache: Dict[Hashable, Expr] = {}
        self._params: Dict[str, Expr] = {}

        if self.config.optimize and self.config.device is not DeviceType.CPU:
            warnings.warn(
                f"optimize is set but the graph runs on {self.config.device.value}; "
                "the int16 path only applies to CPU graphs"
            )

    # collaborator interface used by the operators

    def get_device_id(self) -> DeviceId:
        return self._backend.device

    def get_backend(self) -> Backend:
        return self._backend

    def is_optimized(self) -> bool:
        return self.config.optimize

    def set_optimized(self, optimize: bool):
        self.config.optimize = bool(optimize)

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> List[Expr]:
        return list(self._nodes)

    @property
    def params(self) -> Dict[str, Expr]:
        return dict(self._params)

    # leaves

    def _add_leaf(self, kind: OpKind, shape: Shape, value: torch.Tensor,
                  name: Optional[str] = None) -> Expr:
        if tuple(value.shape) != shape.dims:
            raise ShapeMismatch(
                f"initializer produced {list(value.shape)}, expected {list(shape.dims)}",
                context={'name': name},
            )
        node = Node(id=len(self._nodes), kind=kind, inputs=(), attrs=(),
                    shape=shape, name=name, value=value)
        expr = Expr(node, self)
        self._nodes.append(expr)
        return expr

    def constant(self, shape: ShapeLike, init: NodeInitializer) -> Expr:
        """Create a constant leaf filled by ``init``."""
        shape = as_shape(shape)
        return self._add_leaf(OpKind.CONSTANT, shape, init(shape))

    def ones(self, shape: ShapeLike) -> Expr:
        return self.constant(shape, from_value(1.0))

    def zeros(self, shape: ShapeLike) -> Expr:
        return self.constant(shape, from_value(0.0))

    def param(self, name: str, shape: ShapeLike, init: NodeInitializer) -> Expr:
        """
        Create or look up a named parameter.

        A second request for the same name returns the existing handle; the
        shape must match.
        """
        shape = as_shape(shape)
        existing = self._params.get(name)
        if existing is not None:
            if existing.shape != shape:
                raise ShapeMismatch(
                    f"parameter {name!r} exists with shape {list(existing.shape.dims)}",
                    context={'requested': shape.dims},
                )
            return existing
        expr = self._add_leaf(OpKind.PARAM, shape, init(shape), name=name)
        self._params[name] = expr
        return expr

    def input(self, data, name: Optional[str] = None) -> Expr:
        """Create an input leaf from a tensor, numpy array or nested list."""
        value = torch.as_tensor(data, dtype=torch.float32)
        return self._add_leaf(OpKind.INPUT, Shape(tuple(value.shape)), value, name=name)

    def indices(self, indices: Sequence[int], context: Optional[Expr] = None,
                axis: Optional[int] = None) -> Expr:
        """
        Create an index leaf.

        With ``context`` and ``axis`` the index tensor is shaped to line up
        with that axis of ``context`` (all other dimensions 1).
        """
        value = torch.as_tensor(list(indices), dtype=torch.int64)
        count = value.numel()
        if context is not None and axis is not None:
            dims = [1] * len(context.shape)
            dims[resolve_axis(context.shape, axis)] = count
            shape = Shape(tuple(dims))
        else:
            shape = Shape((count,))
        return self._add_leaf(OpKind.INDICES, shape, value.reshape(shape.dims))

    # operations

    def add_node(self, kind: OpKind, inputs: Sequence[Expr],
                 attrs: Tuple[AttrV, ...] = ()) -> Expr:
        """
        Create (or reuse) a non-leaf node.

        Args:
            kind: Operator kind
            inputs: Input handles, all owned by this graph
            attrs: Hashable scalar parameters

        Returns:
            Handle to the new node, or to an identical existing node
        """
        inputs = tuple(inputs)
        for e in inputs:
            if e.graph is not self:
                raise ConfigurationError(
                    "inputs belong to a different graph",
                    context={'kind': kind.value, 'input': e.node.id},
                )

        key = (kind, tuple(id(e) for e in inputs), attrs)
        if self.config.deduplicate:
            hit = self._cache.get(key)
            if hit is not None:
                logger.debug("reusing node #%d for %s", hit.node.id, kind.value)
                return hit

        shape = infer_shape(kind, [e.shape for e in inputs], attrs)
        node = Node(id=len(self._nodes), kind=kind, inputs=inputs, attrs=attrs, shape=shape)
        expr = Expr(node, self)
        self._nodes.append(expr)
        if self.config.deduplicate:
            self._cache[key] = expr
        return expr

    # execution

    def _reachable(self, outputs: Sequence[Expr]) -> List[Node]:
        seen: Dict[int, Node] = {}
        stack = [e.node for e in outputs]
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen[node.id] = node
            stack.extend(e.node for e in node.inputs)
        return [seen[i] for i in sorted(seen)]

    def forward(self, *outputs: Expr, reuse: bool = False) -> Optional[torch.Tensor]:
        """
        Execute the nodes needed for ``outputs`` (every node when empty).

        Called without outputs this also runs the nodes of candidates the
        tuner measured and discarded; they remain ordinary graph nodes.

        Args:
            outputs: Handles whose values are wanted
            reuse: Skip nodes that already hold a value from an earlier pass

        Returns:
            The value of the first output, or None when called without outputs
        """
        order = self._reachable(outputs) if outputs else [e.node for e in self._nodes]
        for node in order:
            if node.kind.is_leaf or (reuse and node.value is not None):
                continue
            kernel = self.registry.kernel_for(node)
            tag = node.tag
            if tag is not None:
                tag.tuner.start(tag.fingerprint, tag.ordinal)
            node.value = kernel(node, [e.node.value for e in node.inputs])
            if tag is not None and tag.is_final:
                tag.tuner.stop(tag.fingerprint, tag.ordinal)
        return outputs[0].value if outputs else None
