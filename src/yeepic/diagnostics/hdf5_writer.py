"""HDF5 field diagnostics writer.

Writes the per-level fields of an initialized setup (charge density,
potential, E and B) to an HDF5 file for post-processing. Each grid is
assembled into one array over its level domain before writing, so readers
do not need to know the block layout.

Layout::

    /attrs: ndim, coord_sys, prob_lo, prob_hi, periodic, [beta]
    /level_<n>/attrs: dx, domain_lo, domain_hi
    /level_<n>/<name>         dataset, attrs: nodal
"""

from __future__ import annotations

import logging
from pathlib import Path

import h5py
import numpy as np

from yeepic.fields.field_state import FieldState
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.mesh.staggered import StaggeredGrid

logger = logging.getLogger(__name__)

_COMPONENTS = ("x", "y", "z")


class FieldWriter:
    """Write mesh fields of every level to an HDF5 file.

    Args:
        filename: Output HDF5 file path.
        hierarchy: Mesh hierarchy the grids live on.
    """

    def __init__(self, filename: str | Path, hierarchy: MeshHierarchy) -> None:
        self.filename = Path(filename)
        self.hierarchy = hierarchy
        self._grids: dict[int, dict[str, StaggeredGrid]] = {}
        self._attrs: dict[str, object] = {}

    def add_grid(self, lev: int, name: str, grid: StaggeredGrid) -> None:
        """Queue one grid for output under ``/level_<lev>/<name>``."""
        self._grids.setdefault(lev, {})[name] = grid

    def add_fields(self, fields: FieldState) -> None:
        """Queue the fine-patch E and B components of every level."""
        for lev in range(len(fields.Efield_fp)):
            for icomp, comp in enumerate(_COMPONENTS):
                self.add_grid(lev, f"E{comp}", fields.Efield_fp[lev][icomp])
                self.add_grid(lev, f"B{comp}", fields.Bfield_fp[lev][icomp])

    def add_levels(self, name: str, grids: list[StaggeredGrid]) -> None:
        """Queue one grid per level (e.g. ``rho`` or ``phi``)."""
        for lev, grid in enumerate(grids):
            self.add_grid(lev, name, grid)

    def set_attr(self, key: str, value: object) -> None:
        self._attrs[key] = value

    def write(self) -> Path:
        """Write all queued grids and return the file path."""
        h = self.hierarchy
        logger.info("Writing fields to %s", self.filename)
        with h5py.File(self.filename, "w") as f:
            f.attrs["ndim"] = h.ndim
            f.attrs["coord_sys"] = h.coord_sys
            f.attrs["prob_lo"] = h.prob_lo
            f.attrs["prob_hi"] = h.prob_hi
            f.attrs["periodic"] = np.asarray(h.periodic, dtype=bool)
            for key, value in self._attrs.items():
                f.attrs[key] = value

            for lev in sorted(self._grids):
                domain = h.domain(lev)
                grp = f.create_group(f"level_{lev}")
                grp.attrs["dx"] = np.asarray(h.cell_size(lev))
                grp.attrs["domain_lo"] = np.asarray(domain.lo[: h.ndim])
                grp.attrs["domain_hi"] = np.asarray(domain.hi[: h.ndim])
                for name, grid in self._grids[lev].items():
                    arr, _ = grid.gather(domain, h.periodic, n_pad=0, odd_reflect=False)
                    spatial = (slice(None),) * h.ndim + (0,) * (3 - h.ndim)
                    data = arr[0][spatial] if grid.n_comp == 1 else arr[(slice(None), *spatial)]
                    dset = grp.create_dataset(name, data=data)
                    dset.attrs["nodal"] = np.asarray(grid.nodal[: h.ndim])

        n_written = sum(len(v) for v in self._grids.values())
        logger.info("Wrote %d dataset(s) over %d level(s)", n_written, len(self._grids))
        return self.filename
