"""Field state: E and B grids per refinement level.

Clean per-level storage of the electromagnetic field on a staggered mesh.
Each vector field is a list of three :class:`StaggeredGrid` (x, y, z
components). On a Yee mesh:

    E_c is cell-centered along the axis carrying component c, nodal elsewhere
    B_c is nodal along the axis carrying component c, cell-centered elsewhere

so in 3D Ex=(0,1,1), Ey=(1,0,1), Ez=(1,1,0), Bx=(1,0,0), By=(0,1,0),
Bz=(0,0,1). In 2D (x, z) Ey is nodal in both axes and By cell-centered in
both. A collocated mesh stores every component on nodes.

Levels above 0 also carry a coarse patch: the same blocks coarsened by the
ratio to the level below, used for inter-level coupling.
"""

from __future__ import annotations

import logging

from yeepic.config import PatchType, SimulationConfig
from yeepic.mesh.box import AXIS_COMPONENTS
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.mesh.staggered import StaggeredGrid

logger = logging.getLogger(__name__)

_COMPONENT_NAMES = ("x", "y", "z")


def yee_staggering(kind: str, ndim: int, grid_type: str = "yee") -> list[tuple[int, ...]]:
    """Nodal flags of the three components of ``E`` or ``B``.

    Args:
        kind: ``"E"`` or ``"B"``.
        ndim: Number of simulated axes.
        grid_type: ``"yee"`` or ``"collocated"``.

    Returns:
        Three tuples of ``ndim`` flags, one per vector component.
    """
    if kind not in ("E", "B"):
        raise ValueError(f"kind must be 'E' or 'B', got '{kind}'")
    if grid_type == "collocated":
        return [(1,) * ndim for _ in range(3)]

    axis_comp = AXIS_COMPONENTS[ndim]
    out = []
    for icomp in range(3):
        along = tuple(int(axis_comp[idim] == icomp) for idim in range(ndim))
        if kind == "E":
            out.append(tuple(1 - a for a in along))
        else:
            out.append(along)
    return out


class FieldState:
    """Electromagnetic field grids for every level of a hierarchy.

    Args:
        hierarchy: Mesh hierarchy providing blocks per level.
        n_guard: Guard cells allocated on every field grid.
        ng_fieldgather: Guard cells read by the particle field gather
            (0 without particles or lasers).
        grid_type: ``"yee"`` or ``"collocated"``.
    """

    def __init__(
        self,
        hierarchy: MeshHierarchy,
        n_guard: int,
        ng_fieldgather: int,
        grid_type: str = "yee",
    ) -> None:
        if ng_fieldgather > n_guard:
            raise ValueError(
                f"ng_fieldgather={ng_fieldgather} exceeds allocated guard cells n_guard={n_guard}"
            )
        self.hierarchy = hierarchy
        self.n_guard = n_guard
        self.ng_fieldgather = ng_fieldgather
        self.grid_type = grid_type
        ndim = hierarchy.ndim
        self.E_nodal = yee_staggering("E", ndim, grid_type)
        self.B_nodal = yee_staggering("B", ndim, grid_type)

        self.Efield_fp: list[list[StaggeredGrid]] = []
        self.Bfield_fp: list[list[StaggeredGrid]] = []
        self.Efield_cp: list[list[StaggeredGrid] | None] = []
        self.Bfield_cp: list[list[StaggeredGrid] | None] = []

        for lev in range(hierarchy.max_level + 1):
            boxes = hierarchy.boxes(lev)
            self.Efield_fp.append(self._vector(boxes, self.E_nodal, f"E_fp[{lev}]"))
            self.Bfield_fp.append(self._vector(boxes, self.B_nodal, f"B_fp[{lev}]"))
            if lev == 0:
                self.Efield_cp.append(None)
                self.Bfield_cp.append(None)
            else:
                cboxes = hierarchy.coarse_boxes(lev)
                self.Efield_cp.append(self._vector(cboxes, self.E_nodal, f"E_cp[{lev}]"))
                self.Bfield_cp.append(self._vector(cboxes, self.B_nodal, f"B_cp[{lev}]"))

        logger.debug(
            "FieldState allocated: %d level(s), grid_type=%s, n_guard=%d, ng_fieldgather=%d",
            hierarchy.max_level + 1,
            grid_type,
            n_guard,
            ng_fieldgather,
        )

    @classmethod
    def from_config(cls, config: SimulationConfig, hierarchy: MeshHierarchy) -> FieldState:
        return cls(
            hierarchy,
            n_guard=config.n_guard(),
            ng_fieldgather=config.ng_fieldgather(),
            grid_type=config.fields.grid_type,
        )

    def _vector(self, boxes, nodal, label: str) -> list[StaggeredGrid]:
        return [
            StaggeredGrid(boxes, nodal[icomp], n_comp=1, n_ghost=self.n_guard, name=f"{label}.{c}")
            for icomp, c in enumerate(_COMPONENT_NAMES)
        ]

    def efield(self, lev: int, patch_type: PatchType = PatchType.FINE) -> list[StaggeredGrid]:
        grids = self.Efield_fp[lev] if patch_type == PatchType.FINE else self.Efield_cp[lev]
        if grids is None:
            raise ValueError(f"level {lev} has no coarse patch")
        return grids

    def bfield(self, lev: int, patch_type: PatchType = PatchType.FINE) -> list[StaggeredGrid]:
        grids = self.Bfield_fp[lev] if patch_type == PatchType.FINE else self.Bfield_cp[lev]
        if grids is None:
            raise ValueError(f"level {lev} has no coarse patch")
        return grids

    def snapshot(self) -> dict[str, list]:
        """Copy of every block array, keyed ``E_fp``/``B_fp``.

        Returns:
            ``{"E_fp": [[...per component...] per level], "B_fp": ...}`` with
            each entry a list of block arrays.
        """
        out: dict[str, list] = {"E_fp": [], "B_fp": []}
        for key, store in (("E_fp", self.Efield_fp), ("B_fp", self.Bfield_fp)):
            for grids in store:
                out[key].append([[b.data.copy() for b in g] for g in grids])
        return out
