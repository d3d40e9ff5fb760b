"""Static block-structured refinement hierarchy.

Level 0 covers the whole problem domain, chopped into blocks of at most
``max_grid_size`` cells per axis. Each finer level covers the refined
regions listed in the configuration; its index space is the level-0 index
space refined by the accumulated refinement ratio.

The hierarchy is the single source of domain bounds, cell sizes,
periodicity and coordinate system for the boundary and initialization code;
it is passed explicitly to every call instead of living in global state.

Reference:
    Berger & Colella, "Local adaptive mesh refinement for shock
    hydrodynamics", JCP 82, 64-84 (1989).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from yeepic.config import PatchType, SimulationConfig
from yeepic.mesh.box import Box, decompose_domain

logger = logging.getLogger(__name__)


@dataclass
class MeshLevel:
    """One refinement level.

    Attributes:
        level: Level index (0 = coarsest).
        domain: Cell-centered box covering the whole problem domain at this level.
        boxes: Cell-centered blocks owned at this level.
        dx: Cell size along each simulated axis [m].
    """

    level: int
    domain: Box
    boxes: list[Box]
    dx: tuple[float, ...]

    @property
    def num_cells(self) -> int:
        return sum(b.num_points for b in self.boxes)


class MeshHierarchy:
    """Levels, domain bounds and refinement ratios for one simulation.

    Args:
        n_cell: Base-level cells per simulated axis.
        prob_lo: Physical low corner [m].
        prob_hi: Physical high corner [m].
        periodic: Periodicity per simulated axis.
        max_grid_size: Largest block extent per axis.
        coord_sys: ``"cartesian"`` or ``"rz"``.
        ref_ratio: Refinement ratio between successive levels.
        fine_regions: Per level >= 1, the refined blocks in that level's
            index space as ``(lo, hi)`` pairs.
    """

    def __init__(
        self,
        n_cell: list[int],
        prob_lo: list[float],
        prob_hi: list[float],
        periodic: tuple[bool, ...],
        max_grid_size: int = 32,
        coord_sys: str = "cartesian",
        ref_ratio: int = 2,
        fine_regions: dict[int, list[tuple[list[int], list[int]]]] | None = None,
    ) -> None:
        self.ndim = len(n_cell)
        self.prob_lo = np.asarray(prob_lo, dtype=np.float64)
        self.prob_hi = np.asarray(prob_hi, dtype=np.float64)
        self.periodic = tuple(bool(p) for p in periodic)
        self.coord_sys = coord_sys
        self._ref_ratio = ref_ratio
        fine_regions = fine_regions or {}

        base_domain = Box.from_bounds([0] * self.ndim, [n - 1 for n in n_cell])
        base_dx = tuple(float(h - l) / n for l, h, n in zip(prob_lo, prob_hi, n_cell))

        self.levels: list[MeshLevel] = [
            MeshLevel(0, base_domain, decompose_domain(base_domain, max_grid_size), base_dx)
        ]
        lev = 1
        while lev in fine_regions:
            ratio = ref_ratio**lev
            domain = base_domain.refine(ratio)
            boxes: list[Box] = []
            for lo, hi in fine_regions[lev]:
                boxes.extend(decompose_domain(Box.from_bounds(lo, hi), max_grid_size))
            dx = tuple(d / ratio for d in base_dx)
            self.levels.append(MeshLevel(lev, domain, boxes, dx))
            lev += 1

        logger.info(
            "MeshHierarchy initialized: %dD %s, base cells %s, %d level(s), ratio=%d, periodic=%s",
            self.ndim,
            coord_sys,
            list(n_cell),
            len(self.levels),
            ref_ratio,
            self.periodic,
        )

    @classmethod
    def from_config(cls, config: SimulationConfig) -> MeshHierarchy:
        """Build the hierarchy described by a :class:`SimulationConfig`."""
        regions: dict[int, list[tuple[list[int], list[int]]]] = {}
        for region in config.amr.fine_regions:
            regions.setdefault(region.level, []).append((region.lo, region.hi))
        geom = config.geometry
        return cls(
            n_cell=geom.n_cell,
            prob_lo=geom.prob_lo,
            prob_hi=geom.prob_hi,
            periodic=config.boundary.periodicity(),
            max_grid_size=geom.max_grid_size,
            coord_sys=geom.coord_sys,
            ref_ratio=config.amr.refinement_ratio,
            fine_regions=regions,
        )

    # ----------------------------------------------------------
    # Queries
    # ----------------------------------------------------------

    @property
    def max_level(self) -> int:
        return len(self.levels) - 1

    @property
    def is_rz(self) -> bool:
        return self.coord_sys == "rz"

    def domain(self, lev: int) -> Box:
        return self.levels[lev].domain

    def boxes(self, lev: int) -> list[Box]:
        return self.levels[lev].boxes

    def cell_size(self, lev: int) -> tuple[float, ...]:
        return self.levels[lev].dx

    def ref_ratio(self, lev: int) -> int:
        """Ratio between level ``lev`` and level ``lev + 1``."""
        return self._ref_ratio

    def coarse_boxes(self, lev: int) -> list[Box]:
        """Blocks of level ``lev`` coarsened to the resolution of ``lev - 1``."""
        ratio = self.ref_ratio(lev - 1) if lev > 0 else 1
        return [b.coarsen(ratio) for b in self.boxes(lev)]

    def pec_domain(self, lev: int, patch_type: PatchType) -> Box:
        """Domain bounds used by boundary rules on a fine or coarse patch."""
        domain = self.domain(lev)
        if patch_type == PatchType.COARSE:
            ratio = self.ref_ratio(lev - 1) if lev > 0 else 1
            domain = domain.coarsen(ratio)
        return domain

    def node_positions(self, lev: int, idim: int) -> np.ndarray:
        """Physical node coordinates along one axis of the level domain [m]."""
        domain = self.domain(lev)
        i = np.arange(domain.lo[idim], domain.hi[idim] + 2)
        return self.prob_lo[idim] + i * self.levels[lev].dx[idim]

    def total_cells(self) -> int:
        return sum(level.num_cells for level in self.levels)
