"""Integer index-space boxes for block-structured meshes.

A :class:`Box` is an inclusive ``[lo, hi]`` index range together with an
index type (0 = cell-centered, 1 = nodal along each axis). Every box stores
three entries per corner regardless of the simulated dimensionality; axes
beyond ``ndim`` are pinned to ``lo = hi = 0`` so kernels can always iterate
over fixed-size arrays.

Simulated axes map onto vector components as:

    3D: axes (0, 1, 2) -> components (x, y, z)
    2D: axes (0, 1)    -> components (x, z)
    1D: axis  0        -> component  z

Cell-centered indexing convention (for one axis, spacing dx):

    node i   sits at  x_lo + i * dx
    cell i   sits at  x_lo + (i + 0.5) * dx
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

# Vector component carried by each simulated axis, keyed by ndim.
AXIS_COMPONENTS: dict[int, tuple[int, ...]] = {
    1: (2,),
    2: (0, 2),
    3: (0, 1, 2),
}


def _pad3(values: Sequence[int], fill: int = 0) -> tuple[int, int, int]:
    out = [fill, fill, fill]
    for idim, v in enumerate(values):
        out[idim] = int(v)
    return out[0], out[1], out[2]


@dataclass(frozen=True)
class Box:
    """Inclusive index range with staggering.

    Attributes:
        lo: Low corner, length 3.
        hi: High corner (inclusive), length 3.
        ndim: Number of simulated axes.
        ix_type: 1 where the box indexes nodes along that axis, else 0.
    """

    lo: tuple[int, int, int]
    hi: tuple[int, int, int]
    ndim: int = 3
    ix_type: tuple[int, int, int] = (0, 0, 0)

    @classmethod
    def from_bounds(
        cls,
        lo: Sequence[int],
        hi: Sequence[int],
        ix_type: Sequence[int] | None = None,
    ) -> Box:
        """Build a box from per-axis bounds of length ``ndim``."""
        ndim = len(lo)
        if len(hi) != ndim:
            raise ValueError(f"lo and hi must have equal length, got {len(lo)} and {len(hi)}")
        return cls(_pad3(lo), _pad3(hi), ndim, _pad3(ix_type or ()))

    # ----------------------------------------------------------
    # Properties
    # ----------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int, int]:
        """Number of points along each of the three axes."""
        return (
            self.hi[0] - self.lo[0] + 1,
            self.hi[1] - self.lo[1] + 1,
            self.hi[2] - self.lo[2] + 1,
        )

    @property
    def num_points(self) -> int:
        s = self.shape
        return s[0] * s[1] * s[2]

    @property
    def is_empty(self) -> bool:
        return any(h < l for l, h in zip(self.lo, self.hi))

    def lo_array(self) -> np.ndarray:
        return np.asarray(self.lo, dtype=np.int64)

    def hi_array(self) -> np.ndarray:
        return np.asarray(self.hi, dtype=np.int64)

    def contains(self, iv: Sequence[int]) -> bool:
        return all(self.lo[d] <= iv[d] <= self.hi[d] for d in range(self.ndim))

    # ----------------------------------------------------------
    # Transformations
    # ----------------------------------------------------------

    def grow(self, n: int | Sequence[int]) -> Box:
        """Extend the box by ``n`` points on both sides of every simulated axis."""
        if isinstance(n, int):
            n = [n] * self.ndim
        lo = list(self.lo)
        hi = list(self.hi)
        for idim in range(self.ndim):
            lo[idim] -= n[idim]
            hi[idim] += n[idim]
        return Box(tuple(lo), tuple(hi), self.ndim, self.ix_type)

    def surrounding_nodes(self, nodal: Sequence[int] | None = None) -> Box:
        """Convert a cell-centered box to the given staggering.

        Along each axis flagged nodal the box gains one point at the high
        end (the node closing the last cell). With ``nodal=None`` every
        simulated axis becomes nodal.
        """
        if nodal is None:
            nodal = [1] * self.ndim
        nodal3 = _pad3(nodal[: self.ndim])
        hi = list(self.hi)
        for idim in range(self.ndim):
            hi[idim] += nodal3[idim] - self.ix_type[idim]
        return Box(self.lo, tuple(hi), self.ndim, nodal3)

    def enclosed_cells(self) -> Box:
        """Inverse of :meth:`surrounding_nodes`: back to a cell-centered box."""
        hi = list(self.hi)
        for idim in range(self.ndim):
            hi[idim] -= self.ix_type[idim]
        return Box(self.lo, tuple(hi), self.ndim, (0, 0, 0))

    def coarsen(self, ratio: int) -> Box:
        """Coarsen by an integer ratio (nodal high ends round up)."""
        if ratio == 1:
            return self
        lo = list(self.lo)
        hi = list(self.hi)
        for idim in range(self.ndim):
            lo[idim] = self.lo[idim] // ratio
            if self.ix_type[idim]:
                hi[idim] = -((-self.hi[idim]) // ratio)
            else:
                hi[idim] = self.hi[idim] // ratio
        return Box(tuple(lo), tuple(hi), self.ndim, self.ix_type)

    def refine(self, ratio: int) -> Box:
        """Refine by an integer ratio."""
        if ratio == 1:
            return self
        lo = list(self.lo)
        hi = list(self.hi)
        for idim in range(self.ndim):
            lo[idim] = self.lo[idim] * ratio
            if self.ix_type[idim]:
                hi[idim] = self.hi[idim] * ratio
            else:
                hi[idim] = (self.hi[idim] + 1) * ratio - 1
        return Box(tuple(lo), tuple(hi), self.ndim, self.ix_type)

    def intersect(self, other: Box) -> Box | None:
        """Overlap of two boxes with the same index type, or None."""
        lo = tuple(max(a, b) for a, b in zip(self.lo, other.lo))
        hi = tuple(min(a, b) for a, b in zip(self.hi, other.hi))
        box = Box(lo, hi, self.ndim, self.ix_type)
        return None if box.is_empty else box

    def __repr__(self) -> str:
        d = self.ndim
        return f"Box(lo={self.lo[:d]}, hi={self.hi[:d]}, ix_type={self.ix_type[:d]})"


def decompose_domain(domain: Box, max_grid_size: int) -> list[Box]:
    """Chop a cell-centered domain into blocks of at most ``max_grid_size`` cells per axis.

    Args:
        domain: Cell-centered box to decompose.
        max_grid_size: Largest block extent along any axis.

    Returns:
        Blocks in lexicographic order (last axis fastest).
    """
    if max_grid_size < 1:
        raise ValueError(f"max_grid_size must be positive, got {max_grid_size}")

    chunks: list[list[tuple[int, int]]] = []
    for idim in range(3):
        if idim >= domain.ndim:
            chunks.append([(0, 0)])
            continue
        starts = range(domain.lo[idim], domain.hi[idim] + 1, max_grid_size)
        chunks.append([(s, min(s + max_grid_size - 1, domain.hi[idim])) for s in starts])

    blocks: list[Box] = []
    for lo0, hi0 in chunks[0]:
        for lo1, hi1 in chunks[1]:
            for lo2, hi2 in chunks[2]:
                blocks.append(Box((lo0, lo1, lo2), (hi0, hi1, hi2), domain.ndim, domain.ix_type))
    return blocks


def bounding_box(boxes: Sequence[Box]) -> Box:
    """Smallest box enclosing all of ``boxes``."""
    if not boxes:
        raise ValueError("bounding_box() requires at least one box")
    first = boxes[0]
    lo = tuple(min(b.lo[d] for b in boxes) for d in range(3))
    hi = tuple(max(b.hi[d] for b in boxes) for d in range(3))
    return Box(lo, hi, first.ndim, first.ix_type)
