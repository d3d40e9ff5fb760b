"""Distributed staggered grids: blocks of field data with guard cells.

A :class:`StaggeredGrid` is one scalar quantity (possibly with several
channels) stored on a list of rectangular blocks. All blocks share a
staggering descriptor ``nodal`` (one flag per axis telling whether values
sit on nodes (1) or cell centers (0) along that axis) and a fixed guard
("halo") width. Three grids with different staggering make up one vector
field on a Yee mesh.

Block data layout::

    data.shape == (n_comp, n0, n1, n2)

where ``n_d`` is the staggered valid extent plus ``2 * n_ghost`` along each
simulated axis, and 1 along unused axes. The global index ``iv`` lives at
``data[n, iv[0] - origin[0], iv[1] - origin[1], iv[2] - origin[2]]``.

Level-wide operations (halo exchange, ghost summation, assembly into one
array) go through a canonical per-level array in which a periodic axis keeps
each physical point once, so the duplicated closing node of a periodic
nodal axis folds onto node 0.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from yeepic.mesh.box import Box

logger = logging.getLogger(__name__)


@dataclass
class FieldBlock:
    """One rectangular block of a :class:`StaggeredGrid`.

    Attributes:
        valid_box: Cell-centered box owned by this block.
        box: ``valid_box`` converted to the grid staggering.
        n_ghost: Guard width on every simulated axis.
        data: Field values, shape ``(n_comp, n0, n1, n2)``.
    """

    valid_box: Box
    box: Box
    n_ghost: int
    data: np.ndarray

    @property
    def origin(self) -> np.ndarray:
        """Global index of ``data[:, 0, 0, 0]``."""
        return self.box.grow(self.n_ghost).lo_array()

    @property
    def grown_box(self) -> Box:
        return self.box.grow(self.n_ghost)

    def tilebox(self, n_grow: int = 0) -> Box:
        """Staggered valid box, optionally extended into the guard region."""
        return self.box.grow(n_grow)

    def local_index(self, iv: Sequence[int]) -> tuple[int, int, int]:
        o = self.origin
        iv3 = tuple(iv) + (0,) * (3 - len(iv))
        return (iv3[0] - int(o[0]), iv3[1] - int(o[1]), iv3[2] - int(o[2]))

    def get(self, iv: Sequence[int], n: int = 0) -> float:
        return float(self.data[(n, *self.local_index(iv))])

    def set(self, iv: Sequence[int], value: float, n: int = 0) -> None:
        self.data[(n, *self.local_index(iv))] = value

    def view(self, box: Box) -> np.ndarray:
        """Writable slice of ``data`` covering ``box`` (global indices)."""
        o = self.origin
        sl = tuple(
            slice(box.lo[d] - int(o[d]), box.hi[d] - int(o[d]) + 1) for d in range(3)
        )
        return self.data[(slice(None), *sl)]


class StaggeredGrid:
    """Block-decomposed scalar field with a staggering descriptor.

    Args:
        boxes: Cell-centered block layout.
        nodal: Staggering flag per simulated axis (1 = nodal).
        n_comp: Number of channels stored per point.
        n_ghost: Guard cells on each side of every simulated axis.
        name: Label used in logs and diagnostics.
    """

    def __init__(
        self,
        boxes: Sequence[Box],
        nodal: Sequence[int],
        n_comp: int = 1,
        n_ghost: int = 0,
        name: str = "",
    ) -> None:
        if not boxes:
            raise ValueError("StaggeredGrid requires at least one block")
        self.ndim = boxes[0].ndim
        nodal3 = [0, 0, 0]
        for idim in range(self.ndim):
            nodal3[idim] = int(nodal[idim])
        self.nodal: tuple[int, int, int] = (nodal3[0], nodal3[1], nodal3[2])
        self.n_comp = n_comp
        self.n_ghost = n_ghost
        self.name = name

        self.blocks: list[FieldBlock] = []
        for cell_box in boxes:
            box = cell_box.surrounding_nodes(self.nodal[: self.ndim])
            grown = box.grow(n_ghost)
            data = np.zeros((n_comp, *grown.shape), dtype=np.float64)
            self.blocks.append(FieldBlock(cell_box, box, n_ghost, data))

    # ----------------------------------------------------------
    # Container protocol
    # ----------------------------------------------------------

    def __iter__(self) -> Iterator[FieldBlock]:
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def __repr__(self) -> str:
        return (
            f"StaggeredGrid(name={self.name!r}, blocks={len(self.blocks)}, "
            f"nodal={self.nodal[: self.ndim]}, n_comp={self.n_comp}, n_ghost={self.n_ghost})"
        )

    @property
    def nodal_array(self) -> np.ndarray:
        return np.asarray(self.nodal, dtype=np.int64)

    @property
    def cell_boxes(self) -> list[Box]:
        return [b.valid_box for b in self.blocks]

    # ----------------------------------------------------------
    # Whole-grid arithmetic
    # ----------------------------------------------------------

    def set_val(self, value: float) -> None:
        """Set every point, guards included."""
        for block in self.blocks:
            block.data[...] = value

    def mult(self, scale: float) -> None:
        for block in self.blocks:
            block.data *= scale

    def copy(self) -> StaggeredGrid:
        out = StaggeredGrid(self.cell_boxes, self.nodal[: self.ndim], self.n_comp, self.n_ghost, self.name)
        for dst, src in zip(out.blocks, self.blocks):
            dst.data[...] = src.data
        return out

    def max_abs(self) -> float:
        """Largest magnitude over valid points of all blocks."""
        return max(float(np.max(np.abs(b.view(b.box)))) for b in self.blocks)

    # ----------------------------------------------------------
    # Level-wide index mapping
    # ----------------------------------------------------------

    def _axis_map(
        self,
        first: int,
        count: int,
        domain: Box,
        periodic: Sequence[bool],
        idim: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Map global indices ``first .. first+count-1`` onto the canonical level array.

        Returns ``(src, dst)`` index arrays; indices that fall outside a
        non-periodic domain are dropped.
        """
        g = np.arange(first, first + count, dtype=np.int64)
        if idim >= self.ndim:
            return np.arange(count, dtype=np.int64), np.zeros(count, dtype=np.int64)
        n_cell = domain.hi[idim] - domain.lo[idim] + 1
        p = g - domain.lo[idim]
        if periodic[idim]:
            return np.arange(count, dtype=np.int64), np.mod(p, n_cell)
        n_pts = n_cell + self.nodal[idim]
        keep = (p >= 0) & (p < n_pts)
        return np.nonzero(keep)[0].astype(np.int64), p[keep]

    def _canonical_shape(self, domain: Box, periodic: Sequence[bool]) -> tuple[int, int, int]:
        shape = [1, 1, 1]
        for idim in range(self.ndim):
            n_cell = domain.hi[idim] - domain.lo[idim] + 1
            shape[idim] = n_cell if periodic[idim] else n_cell + self.nodal[idim]
        return shape[0], shape[1], shape[2]

    def _block_maps(
        self,
        block: FieldBlock,
        box: Box,
        domain: Box,
        periodic: Sequence[bool],
    ) -> tuple[tuple[np.ndarray, ...], tuple[np.ndarray, ...]]:
        o = block.origin
        src, dst = [], []
        for idim in range(3):
            s, d = self._axis_map(box.lo[idim], box.shape[idim], domain, periodic, idim)
            src.append(s + (box.lo[idim] - int(o[idim])))
            dst.append(d)
        return tuple(src), tuple(dst)

    # ----------------------------------------------------------
    # Level-wide operations
    # ----------------------------------------------------------

    def to_canonical(self, domain: Box, periodic: Sequence[bool]) -> np.ndarray:
        """Copy valid data of every block into one canonical level array.

        Points not covered by any block are zero.
        """
        canon = np.zeros((self.n_comp, *self._canonical_shape(domain, periodic)))
        for block in self.blocks:
            src, dst = self._block_maps(block, block.box, domain, periodic)
            for n in range(self.n_comp):
                canon[n][np.ix_(*dst)] = block.data[n][np.ix_(*src)]
        return canon

    def from_canonical(
        self,
        canon: np.ndarray,
        domain: Box,
        periodic: Sequence[bool],
        include_ghosts: bool = False,
    ) -> None:
        """Write a canonical level array back into the blocks.

        With ``include_ghosts`` the guard cells that map inside the domain
        (or onto a periodic image) are filled too.
        """
        for block in self.blocks:
            box = block.grown_box if include_ghosts else block.box
            src, dst = self._block_maps(block, box, domain, periodic)
            for n in range(self.n_comp):
                block.data[n][np.ix_(*src)] = canon[n][np.ix_(*dst)]

    def fill_boundary(self, domain: Box, periodic: Sequence[bool]) -> None:
        """Fill guard cells from neighbouring blocks and periodic images."""
        canon = self.to_canonical(domain, periodic)
        self.from_canonical(canon, domain, periodic, include_ghosts=True)

    def sum_boundary(self, domain: Box, periodic: Sequence[bool]) -> None:
        """Add guard-cell contributions into the blocks that own those points.

        Every block's data (guards included) is summed into the canonical
        level array, folding periodic images; the totals are then written
        back to every copy of each point. Guard cells lying outside a
        non-periodic domain are left as deposited.
        """
        canon = np.zeros((self.n_comp, *self._canonical_shape(domain, periodic)))
        for block in self.blocks:
            src, dst = self._block_maps(block, block.grown_box, domain, periodic)
            for n in range(self.n_comp):
                np.add.at(canon[n], np.ix_(*dst), block.data[n][np.ix_(*src)])
        self.from_canonical(canon, domain, periodic, include_ghosts=True)
        logger.debug("sum_boundary(%s): %d blocks reduced", self.name, len(self.blocks))

    def gather(
        self,
        domain: Box,
        periodic: Sequence[bool],
        n_pad: int = 0,
        odd_reflect: bool = True,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Assemble the level into one padded array over the staggered domain.

        Padding along periodic axes comes from periodic images. Along
        non-periodic axes it is the odd reflection about the boundary point
        (consistent with a zero Dirichlet value) or zero.

        Args:
            domain: Cell-centered level domain.
            periodic: Periodicity per simulated axis.
            n_pad: Extra points on each side of every simulated axis.
            odd_reflect: Use odd reflection (True) or zeros (False) outside
                non-periodic boundaries.

        Returns:
            ``(array, origin)`` where ``array`` has shape
            ``(n_comp, m0, m1, m2)`` and ``origin`` is the global index of
            ``array[:, 0, 0, 0]``.
        """
        canon = self.to_canonical(domain, periodic)
        stag = domain.surrounding_nodes(self.nodal[: self.ndim]).grow(n_pad)

        index, sign = [], []
        for idim in range(3):
            if idim >= self.ndim:
                index.append(np.zeros(1, dtype=np.int64))
                sign.append(np.ones(1))
                continue
            g = np.arange(stag.lo[idim], stag.hi[idim] + 1, dtype=np.int64)
            n_cell = domain.hi[idim] - domain.lo[idim] + 1
            p = g - domain.lo[idim]
            if periodic[idim]:
                index.append(np.mod(p, n_cell))
                sign.append(np.ones(len(g)))
                continue
            nodal = self.nodal[idim]
            n_pts = n_cell + nodal
            s = np.ones(len(g))
            low = p < 0
            high = p >= n_pts
            q = p.copy()
            q[low] = -p[low] - (1 - nodal)
            q[high] = 2 * (n_pts - 1) + (1 - nodal) - p[high]
            s[low | high] = -1.0 if odd_reflect else 0.0
            index.append(np.clip(q, 0, n_pts - 1))
            sign.append(s)

        weights = sign[0][:, None, None] * sign[1][None, :, None] * sign[2][None, None, :]
        out = np.empty((self.n_comp, *stag.shape))
        for n in range(self.n_comp):
            out[n] = canon[n][np.ix_(*index)] * weights
        return out, stag.lo_array()
