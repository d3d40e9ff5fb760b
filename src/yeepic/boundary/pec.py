"""Perfect electric conductor (PEC) boundary for staggered E and B fields.

At a PEC surface the tangential electric field and the normal magnetic field
vanish. On a staggered mesh this becomes a per-cell rule evaluated for every
PEC side of every simulated axis ``a``:

    ig = dom_lo[a] - iv[a]                   (low side)
    ig = iv[a] - (dom_hi[a] + nodal[a])      (high side)

* ``ig == 0``: the point sits on the boundary node. If the component is
  nodal along ``a`` and is tangential (E) or normal (B) to ``a`` it is set
  to zero.
* ``ig > 0``: guard point. Its value is the value at the mirror index

      dom_lo[a] + ig - (1 - nodal[a])        (low side)
      dom_hi[a] + 1 - ig                     (high side)

  with a sign flip for components tangential to ``a`` and no flip for the
  normal component.

Zeroing takes precedence over reflection. Reflections along several PEC
axes compose: the mirror index is taken in every such axis and the signs
multiply. Interior points and non-PEC sides are left alone.

The rule reads mirror values from the array being written. Mirror points
are interior along every reflected axis, so no point read in a pass is
written in the same pass and repeated application changes nothing.

Reference:
    Vay et al., "Warp-X: a new exascale computing platform for beam-plasma
    simulations", NIMA 909, 476-479 (2018).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
from numba import njit, prange

from yeepic.config import BoundaryTable, FieldBoundaryType, PatchType
from yeepic.mesh.box import AXIS_COMPONENTS
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.mesh.staggered import StaggeredGrid

logger = logging.getLogger(__name__)

# Actions returned by pec_cell_rule
UNTOUCHED = 0
ZERO = 1
MIRROR = 2

_PEC = int(FieldBoundaryType.PEC)


def is_any_boundary_pec(boundary: BoundaryTable) -> bool:
    """True if any side of any axis of ``boundary`` is PEC.

    Callers use this to skip the boundary passes entirely.
    """
    return boundary.is_any_pec()


def axis_component_array(ndim: int) -> np.ndarray:
    """Vector component carried by each axis, padded to length 3 with -1."""
    out = np.full(3, -1, dtype=np.int64)
    for idim, comp in enumerate(AXIS_COMPONENTS[ndim]):
        out[idim] = comp
    return out


# =====================================================================
# Numba-accelerated per-cell rule
# =====================================================================

@njit(cache=True)
def pec_cell_rule(
    icomp: int,
    is_efield: bool,
    iv: np.ndarray,
    mirror: np.ndarray,
    dom_lo: np.ndarray,
    dom_hi: np.ndarray,
    nodal: np.ndarray,
    bnd_lo: np.ndarray,
    bnd_hi: np.ndarray,
    axis_comp: np.ndarray,
    ndim: int,
) -> tuple[int, float]:
    """Decide what the PEC boundary does to one point of one component.

    Parameters
    ----------
    icomp : int
        Vector component (0=x, 1=y, 2=z).
    is_efield : bool
        True for E (tangential zeroed), False for B (normal zeroed).
    iv : ndarray, shape (3,)
        Global index of the point, possibly in the guard region.
    mirror : ndarray, shape (3,)
        Output: index to copy from when the action is ``MIRROR``.
    dom_lo, dom_hi : ndarray, shape (3,)
        Cell-centered domain corners.
    nodal : ndarray, shape (3,)
        Staggering of the component.
    bnd_lo, bnd_hi : ndarray, shape (3,)
        ``FieldBoundaryType`` codes per axis.
    axis_comp : ndarray, shape (3,)
        Component carried by each simulated axis.
    ndim : int
        Number of simulated axes.

    Returns
    -------
    action : int
        ``UNTOUCHED``, ``ZERO`` or ``MIRROR``.
    sign : float
        Factor applied to the mirror value.
    """
    action = UNTOUCHED
    sign = 1.0
    for d in range(3):
        mirror[d] = iv[d]

    for a in range(ndim):
        is_normal = icomp == axis_comp[a]
        if is_efield:
            zero_on_node = not is_normal
        else:
            zero_on_node = is_normal
        for side in range(2):
            if side == 0:
                if bnd_lo[a] != _PEC:
                    continue
                ig = dom_lo[a] - iv[a]
            else:
                if bnd_hi[a] != _PEC:
                    continue
                ig = iv[a] - (dom_hi[a] + nodal[a])

            if ig == 0:
                if nodal[a] == 1 and zero_on_node:
                    return ZERO, 0.0
            elif ig > 0:
                if side == 0:
                    mirror[a] = dom_lo[a] + ig - (1 - nodal[a])
                else:
                    mirror[a] = dom_hi[a] + 1 - ig
                if not is_normal:
                    sign = -sign
                action = MIRROR

    return action, sign


@njit(cache=True)
def _set_on_pec(
    is_efield: bool,
    icomp: int,
    dom_lo: np.ndarray,
    dom_hi: np.ndarray,
    iv: np.ndarray,
    n: int,
    data: np.ndarray,
    origin: np.ndarray,
    nodal: np.ndarray,
    bnd_lo: np.ndarray,
    bnd_hi: np.ndarray,
    axis_comp: np.ndarray,
    ndim: int,
) -> None:
    mirror = np.empty(3, dtype=np.int64)
    action, sign = pec_cell_rule(
        icomp, is_efield, iv, mirror, dom_lo, dom_hi, nodal, bnd_lo, bnd_hi, axis_comp, ndim
    )
    if action == UNTOUCHED:
        return
    i = iv[0] - origin[0]
    j = iv[1] - origin[1]
    k = iv[2] - origin[2]
    if action == ZERO:
        data[n, i, j, k] = 0.0
    else:
        data[n, i, j, k] = sign * data[
            n, mirror[0] - origin[0], mirror[1] - origin[1], mirror[2] - origin[2]
        ]


@njit(cache=True)
def set_efield_on_pec(
    icomp: int,
    dom_lo: np.ndarray,
    dom_hi: np.ndarray,
    iv: np.ndarray,
    n: int,
    data: np.ndarray,
    origin: np.ndarray,
    nodal: np.ndarray,
    bnd_lo: np.ndarray,
    bnd_hi: np.ndarray,
    axis_comp: np.ndarray,
    ndim: int,
) -> None:
    """Apply the PEC rule for E component ``icomp`` at ``iv``, channel ``n``."""
    _set_on_pec(True, icomp, dom_lo, dom_hi, iv, n, data, origin, nodal, bnd_lo, bnd_hi, axis_comp, ndim)


@njit(cache=True)
def set_bfield_on_pec(
    icomp: int,
    dom_lo: np.ndarray,
    dom_hi: np.ndarray,
    iv: np.ndarray,
    n: int,
    data: np.ndarray,
    origin: np.ndarray,
    nodal: np.ndarray,
    bnd_lo: np.ndarray,
    bnd_hi: np.ndarray,
    axis_comp: np.ndarray,
    ndim: int,
) -> None:
    """Apply the PEC rule for B component ``icomp`` at ``iv``, channel ``n``."""
    _set_on_pec(False, icomp, dom_lo, dom_hi, iv, n, data, origin, nodal, bnd_lo, bnd_hi, axis_comp, ndim)


@njit(cache=True, parallel=True)
def _apply_pec_tile(
    data: np.ndarray,
    origin: np.ndarray,
    lo: np.ndarray,
    hi: np.ndarray,
    icomp: int,
    is_efield: bool,
    dom_lo: np.ndarray,
    dom_hi: np.ndarray,
    nodal: np.ndarray,
    bnd_lo: np.ndarray,
    bnd_hi: np.ndarray,
    axis_comp: np.ndarray,
    ndim: int,
) -> None:
    """Run the per-cell rule over ``[lo, hi]`` for every channel of one block."""
    n_outer = hi[0] - lo[0] + 1
    for ii in prange(n_outer):
        iv = np.empty(3, dtype=np.int64)
        iv[0] = lo[0] + ii
        for j in range(lo[1], hi[1] + 1):
            for k in range(lo[2], hi[2] + 1):
                iv[1] = j
                iv[2] = k
                for n in range(data.shape[0]):
                    if is_efield:
                        set_efield_on_pec(
                            icomp, dom_lo, dom_hi, iv, n, data, origin,
                            nodal, bnd_lo, bnd_hi, axis_comp, ndim,
                        )
                    else:
                        set_bfield_on_pec(
                            icomp, dom_lo, dom_hi, iv, n, data, origin,
                            nodal, bnd_lo, bnd_hi, axis_comp, ndim,
                        )


# =====================================================================
# Applicators
# =====================================================================

def _apply_pec(
    fields: Sequence[StaggeredGrid],
    lev: int,
    patch_type: PatchType,
    boundary: BoundaryTable,
    hierarchy: MeshHierarchy,
    n_grow: int,
    is_efield: bool,
) -> None:
    for grid in fields:
        if grid.n_ghost < n_grow:
            raise ValueError(
                f"{grid.name or 'field'} has {grid.n_ghost} guard cells, "
                f"PEC pass needs {n_grow}"
            )

    domain = hierarchy.pec_domain(lev, patch_type)
    dom_lo = domain.lo_array()
    dom_hi = domain.hi_array()
    bnd_lo, bnd_hi = boundary.codes()
    ndim = hierarchy.ndim
    axis_comp = axis_component_array(ndim)

    for icomp, grid in enumerate(fields):
        nodal = grid.nodal_array
        for block in grid:
            tile = block.tilebox(n_grow)
            _apply_pec_tile(
                block.data,
                block.origin,
                tile.lo_array(),
                tile.hi_array(),
                icomp,
                is_efield,
                dom_lo,
                dom_hi,
                nodal,
                bnd_lo,
                bnd_hi,
                axis_comp,
                ndim,
            )

    logger.debug(
        "PEC applied to %s field: level=%d patch=%s grow=%d",
        "E" if is_efield else "B",
        lev,
        patch_type.name,
        n_grow,
    )


def apply_pec_to_efield(
    efield: Sequence[StaggeredGrid],
    lev: int,
    patch_type: PatchType,
    boundary: BoundaryTable,
    hierarchy: MeshHierarchy,
    ng_fieldgather: int,
    split_pml_field: bool = False,
) -> None:
    """Enforce E_tangential = 0 on PEC sides of one level, in place.

    Args:
        efield: The three E component grids (x, y, z).
        lev: Refinement level of the grids.
        patch_type: Fine patch or coarse patch.
        boundary: Field boundary table.
        hierarchy: Source of the level domain and refinement ratios.
        ng_fieldgather: Guard cells read by particle gather; the pass covers
            the valid region grown by this width (0 leaves guards untouched).
        split_pml_field: The grids are split PML auxiliary fields; only the
            staggered valid region is processed.

    Raises:
        ValueError: If a grid has fewer guard cells than the pass covers.
    """
    n_grow = 0 if split_pml_field else ng_fieldgather
    _apply_pec(efield, lev, patch_type, boundary, hierarchy, n_grow, is_efield=True)


def apply_pec_to_bfield(
    bfield: Sequence[StaggeredGrid],
    lev: int,
    patch_type: PatchType,
    boundary: BoundaryTable,
    hierarchy: MeshHierarchy,
    ng_fieldgather: int,
) -> None:
    """Enforce B_normal = 0 on PEC sides of one level, in place.

    Args:
        bfield: The three B component grids (x, y, z).
        lev: Refinement level of the grids.
        patch_type: Fine patch or coarse patch.
        boundary: Field boundary table.
        hierarchy: Source of the level domain and refinement ratios.
        ng_fieldgather: Guard cells read by particle gather.

    Raises:
        ValueError: If a grid has fewer guard cells than the pass covers.
    """
    _apply_pec(bfield, lev, patch_type, boundary, hierarchy, ng_fieldgather, is_efield=False)
