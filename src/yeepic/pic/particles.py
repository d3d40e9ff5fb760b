"""Macro-particle container with nodal charge deposition.

Key components:
    - ``shape_weights``: 1-D B-spline shape factors of order 1 (CIC),
      2 (TSC) and 3 (cubic) evaluated at node positions.
    - ``_deposit_block_kernel``: Numba kernel scattering particle charge
      onto one nodal block, guard cells included.
    - ``ParticleContainer``: a single species of macro-particles that
      deposits its charge density on every level of a hierarchy and reports
      its weighted mean velocity.

Positions are stored with three columns (x, y, z). Only the columns carried
by the simulated axes are used: (x, y, z) in 3D, (x, z) in 2D, (z) in 1D.

Units: SI throughout (m, s, kg, C).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from numba import njit

from yeepic.core.bases import ParticleSourceBase
from yeepic.mesh.box import AXIS_COMPONENTS
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.mesh.staggered import StaggeredGrid

logger = logging.getLogger(__name__)

# =====================================================================
# Numba-accelerated kernels
# =====================================================================

@njit(cache=True)
def shape_weights(x: float, order: int, w: np.ndarray) -> int:
    """Nodal shape factors of a particle at node coordinate ``x``.

    Parameters
    ----------
    x : float
        Position in units of the cell size, measured from node 0.
    order : int
        Shape order (1, 2 or 3).
    w : ndarray, shape (4,)
        Output: weights of the ``order + 1`` nodes touched.

    Returns
    -------
    first : int
        Index of the first node touched.
    """
    if order == 1:
        i0 = int(np.floor(x))
        f = x - i0
        w[0] = 1.0 - f
        w[1] = f
        return i0
    if order == 2:
        i0 = int(np.floor(x + 0.5))
        d = x - i0
        w[0] = 0.5 * (0.5 - d) ** 2
        w[1] = 0.75 - d * d
        w[2] = 0.5 * (0.5 + d) ** 2
        return i0 - 1
    i0 = int(np.floor(x))
    f = x - i0
    f2 = f * f
    f3 = f2 * f
    w[0] = (1.0 - f) ** 3 / 6.0
    w[1] = (4.0 - 6.0 * f2 + 3.0 * f3) / 6.0
    w[2] = (1.0 + 3.0 * f + 3.0 * f2 - 3.0 * f3) / 6.0
    w[3] = f3 / 6.0
    return i0 - 1


@njit(cache=True)
def _deposit_block_kernel(
    data: np.ndarray,
    origin: np.ndarray,
    cell_lo: np.ndarray,
    cell_hi: np.ndarray,
    xi: np.ndarray,
    qw: np.ndarray,
    order: int,
    ndim: int,
    inv_volume: float,
) -> int:
    """Scatter the charge of particles owned by one block onto its nodes.

    A particle is owned by the block whose valid cells contain
    ``floor(xi)``; its shape may reach into the block's guard cells.

    Parameters
    ----------
    data : ndarray, shape (1, n0, n1, n2)
        Nodal block data, accumulated in place [C/m^3].
    origin : ndarray, shape (3,)
        Global index of ``data[0, 0, 0, 0]``.
    cell_lo, cell_hi : ndarray, shape (3,)
        Valid cell range of the block.
    xi : ndarray, shape (N, 3)
        Node coordinates of the particles (unused axes are 0).
    qw : ndarray, shape (N,)
        Charge times weight per particle [C].
    order : int
        Shape order.
    ndim : int
        Number of simulated axes.
    inv_volume : float
        Inverse cell volume [1/m^3].

    Returns
    -------
    n_owned : int
        Number of particles deposited by this block.
    """
    w = np.zeros((3, 4))
    first = np.zeros(3, dtype=np.int64)
    count = np.ones(3, dtype=np.int64)
    n_owned = 0

    for p in range(xi.shape[0]):
        inside = True
        for d in range(ndim):
            ci = int(np.floor(xi[p, d]))
            if ci < cell_lo[d] or ci > cell_hi[d]:
                inside = False
        if not inside:
            continue
        n_owned += 1

        for d in range(3):
            if d < ndim:
                first[d] = shape_weights(xi[p, d], order, w[d])
                count[d] = order + 1
            else:
                first[d] = 0
                count[d] = 1
                w[d, 0] = 1.0

        q = qw[p] * inv_volume
        for a in range(count[0]):
            i = first[0] + a - origin[0]
            for b in range(count[1]):
                j = first[1] + b - origin[1]
                wab = w[0, a] * w[1, b]
                for g in range(count[2]):
                    k = first[2] + g - origin[2]
                    data[0, i, j, k] += q * wab * w[2, g]

    return n_owned


# =====================================================================
# Particle container
# =====================================================================

@dataclass
class ParticleContainer(ParticleSourceBase):
    """A single species of macro-particles.

    Attributes
    ----------
    hierarchy : MeshHierarchy
        Mesh the charge is deposited on.
    name : str
        Species identifier (e.g. ``"electrons"``, ``"beam"``).
    charge : float
        Particle charge [C].
    mass : float
        Particle mass [kg].
    positions : ndarray, shape (N, 3)
        Macro-particle positions [m].
    velocities : ndarray, shape (N, 3)
        Macro-particle velocities [m/s].
    weights : ndarray, shape (N,)
        Physical particles per macro-particle.
    shape_order : int
        Deposition shape order (1, 2 or 3).
    """

    hierarchy: MeshHierarchy
    name: str
    charge: float
    mass: float
    positions: np.ndarray
    velocities: np.ndarray
    weights: np.ndarray
    shape_order: int = 1

    def __post_init__(self) -> None:
        self.positions = np.ascontiguousarray(self.positions, dtype=np.float64).reshape(-1, 3)
        self.velocities = np.ascontiguousarray(self.velocities, dtype=np.float64).reshape(-1, 3)
        self.weights = np.ascontiguousarray(self.weights, dtype=np.float64).reshape(-1)
        n = self.positions.shape[0]
        if self.velocities.shape[0] != n or self.weights.shape[0] != n:
            raise ValueError(
                f"particle arrays disagree: {n} positions, {self.velocities.shape[0]} "
                f"velocities, {self.weights.shape[0]} weights"
            )
        if self.shape_order not in (1, 2, 3):
            raise ValueError(f"shape_order must be 1, 2 or 3, got {self.shape_order}")

    @classmethod
    def from_npz(
        cls,
        path: str | Path,
        hierarchy: MeshHierarchy,
        shape_order: int = 1,
    ) -> ParticleContainer:
        """Load a species from an ``.npz`` archive.

        The archive holds ``positions``, ``velocities``, ``weights`` and the
        scalars ``charge`` and ``mass``; ``name`` is optional.
        """
        with np.load(Path(path)) as f:
            name = str(f["name"]) if "name" in f else Path(path).stem
            species = cls(
                hierarchy=hierarchy,
                name=name,
                charge=float(f["charge"]),
                mass=float(f["mass"]),
                positions=f["positions"],
                velocities=f["velocities"],
                weights=f["weights"],
                shape_order=shape_order,
            )
        logger.info("Loaded species '%s': %d macro-particles", species.name, species.n_particles())
        return species

    def n_particles(self) -> int:
        """Return the number of macro-particles."""
        return int(self.positions.shape[0])

    def node_coordinates(self, lev: int) -> np.ndarray:
        """Particle positions in node units of level ``lev``, shape (N, 3)."""
        h = self.hierarchy
        dx = h.cell_size(lev)
        xi = np.zeros((self.n_particles(), 3), dtype=np.float64)
        for idim, comp in enumerate(AXIS_COMPONENTS[h.ndim]):
            xi[:, idim] = (self.positions[:, comp] - h.prob_lo[idim]) / dx[idim]
        return xi

    # ----------------------------------------------------------
    # ParticleSourceBase
    # ----------------------------------------------------------

    def deposit_charge(
        self,
        rho: list[StaggeredGrid],
        local: bool = False,
        reset: bool = True,
    ) -> None:
        """Deposit the charge density on every level.

        Args:
            rho: Nodal grids for levels 0..max_level; guard width must be at
                least the shape order.
            local: Keep guard-cell contributions where they were deposited
                instead of summing them into the owning points.
            reset: Zero ``rho`` first.
        """
        h = self.hierarchy
        qw = self.charge * self.weights
        for lev, grid in enumerate(rho):
            if grid.n_ghost < self.shape_order:
                raise ValueError(
                    f"rho[{lev}] has {grid.n_ghost} guard cells, shape order {self.shape_order} needs more"
                )
            # without reset, deposit on a scratch copy and add it afterwards
            target = grid if reset else grid.copy()
            target.set_val(0.0)
            dx = h.cell_size(lev)
            inv_volume = 1.0 / float(np.prod(dx))
            xi = self.node_coordinates(lev)

            n_owned = 0
            for block in target:
                n_owned += _deposit_block_kernel(
                    block.data,
                    block.origin,
                    block.valid_box.lo_array(),
                    block.valid_box.hi_array(),
                    xi,
                    qw,
                    self.shape_order,
                    h.ndim,
                    inv_volume,
                )
            if not local:
                target.sum_boundary(h.domain(lev), h.periodic)
            if target is not grid:
                for dst, src in zip(grid.blocks, target.blocks):
                    dst.data += src.data
            logger.debug(
                "Deposited '%s' on level %d: %d/%d particles, local=%s",
                self.name, lev, n_owned, self.n_particles(), local,
            )

    def mean_particle_velocity(self, local: bool = False) -> np.ndarray:
        """Weight-averaged velocity [m/s] (zero for an empty species).

        All particles live in this process, so ``local`` does not change
        the result.
        """
        total = float(np.sum(self.weights))
        if self.n_particles() == 0 or total == 0.0:
            return np.zeros(3)
        return np.sum(self.weights[:, None] * self.velocities, axis=0) / total
