"""Shape model: dimensions, axis resolution and broadcasting rules."""

from dataclasses import dataclass
from functools import reduce
from typing import Iterable, Iterator, Sequence, Tuple, Union

from .errors import AxisOutOfRange, ShapeMismatch


@dataclass(frozen=True)
class Shape:
    """
    Immutable tensor shape.

    Every dimension must be at least 1; a rank-0 shape describes a scalar
    and holds a single element.
    """
    dims: Tuple[int, ...] = ()

    def __post_init__(self):
        dims = tuple(int(d) for d in self.dims)
        for d in dims:
            if d < 1:
                raise ShapeMismatch(
                    f"dimensions must be >= 1, got {list(dims)}",
                    context={'dims': dims},
                )
        object.__setattr__(self, 'dims', dims)

    def __len__(self) -> int:
        return len(self.dims)

    def __iter__(self) -> Iterator[int]:
        return iter(self.dims)

    def __getitem__(self, index: int) -> int:
        return self.dims[resolve_axis(self, index)]

    def __repr__(self) -> str:
        return f"Shape({list(self.dims)})"

    @property
    def rank(self) -> int:
        return len(self.dims)

    @property
    def elements(self) -> int:
        return element_count(self)

    def axis(self, axis: int) -> int:
        """Resolve a possibly negative axis against this shape."""
        return resolve_axis(self, axis)

    def with_dim(self, axis: int, size: int) -> "Shape":
        """Return a copy with the dimension at ``axis`` replaced by ``size``."""
        ax = resolve_axis(self, axis)
        dims = list(self.dims)
        dims[ax] = size
        return Shape(tuple(dims))

    def swapped(self, axis1: int, axis2: int) -> "Shape":
        """Return a copy with two axes exchanged."""
        ax1 = resolve_axis(self, axis1)
        ax2 = resolve_axis(self, axis2)
        dims = list(self.dims)
        dims[ax1], dims[ax2] = dims[ax2], dims[ax1]
        return Shape(tuple(dims))


ShapeLike = Union[Shape, Sequence[int], int]


def as_shape(value: ShapeLike) -> Shape:
    """Coerce a Shape, a sequence of ints or a single int into a Shape."""
    if isinstance(value, Shape):
        return value
    if isinstance(value, int):
        return Shape((value,))
    return Shape(tuple(value))


def resolve_axis(shape: ShapeLike, axis: int) -> int:
    """
    Resolve ``axis`` against ``shape``.

    Negative axes count from the end, so -1 is always the last axis.

    Raises:
        AxisOutOfRange: if the resolved index is outside [0, rank)
    """
    rank = len(as_shape(shape))
    resolved = axis + rank if axis < 0 else axis
    if not 0 <= resolved < rank:
        raise AxisOutOfRange(
            f"axis {axis} out of range for rank {rank}",
            context={'axis': axis, 'rank': rank},
        )
    return resolved


def element_count(shape: ShapeLike) -> int:
    return reduce(lambda acc, d: acc * d, as_shape(shape).dims, 1)


def _aligned(a: Shape, b: Shape) -> Iterable[Tuple[int, int]]:
    rank = max(len(a), len(b))
    pa = (1,) * (rank - len(a)) + a.dims
    pb = (1,) * (rank - len(b)) + b.dims
    return zip(pa, pb)


def is_broadcastable(a: ShapeLike, b: ShapeLike) -> bool:
    """Check trailing-aligned compatibility: each pair equal or one of them 1."""
    return all(
        da == db or da == 1 or db == 1
        for da, db in _aligned(as_shape(a), as_shape(b))
    )


def broadcast_shape(a: ShapeLike, b: ShapeLike) -> Shape:
    """
    Compute the element-wise result shape of two operands.

    Raises:
        ShapeMismatch: if the shapes are not broadcast-compatible
    """
    a, b = as_shape(a), as_shape(b)
    if not is_broadcastable(a, b):
        raise ShapeMismatch(
            f"cannot broadcast {list(a.dims)} with {list(b.dims)}",
            context={'a': a.dims, 'b': b.dims},
        )
    return Shape(tuple(max(da, db) for da, db in _aligned(a, b)))


def broadcast_shapes(*shapes: ShapeLike) -> Shape:
    """Broadcast any number of shapes left to right."""
    return reduce(broadcast_shape, shapes[1:], as_shape(shapes[0]))
