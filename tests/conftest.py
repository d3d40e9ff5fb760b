"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from yeepic.config import BoundaryTable, SimulationConfig
from yeepic.mesh.hierarchy import MeshHierarchy


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def pec_boundary_3d():
    """PEC on every side of a 3D domain."""
    return BoundaryTable(lo=["pec"] * 3, hi=["pec"] * 3)


@pytest.fixture
def periodic_boundary_3d():
    return BoundaryTable(lo=["periodic"] * 3, hi=["periodic"] * 3)


@pytest.fixture
def make_hierarchy():
    """Factory for unit-cube hierarchies with ``n`` cells per axis."""

    def _make(
        ndim: int = 3,
        n: int = 8,
        periodic: bool | tuple[bool, ...] = False,
        max_grid_size: int = 32,
        fine_regions=None,
        coord_sys: str = "cartesian",
    ) -> MeshHierarchy:
        if isinstance(periodic, bool):
            periodic = (periodic,) * ndim
        return MeshHierarchy(
            n_cell=[n] * ndim,
            prob_lo=[0.0] * ndim,
            prob_hi=[1.0] * ndim,
            periodic=periodic,
            max_grid_size=max_grid_size,
            coord_sys=coord_sys,
            fine_regions=fine_regions,
        )

    return _make


@pytest.fixture
def sample_config_dict():
    """Minimal valid 2D configuration as a dictionary."""
    return {
        "geometry": {
            "n_dim": 2,
            "n_cell": [8, 8],
            "prob_lo": [0.0, 0.0],
            "prob_hi": [1.0, 1.0],
        },
        "boundary": {"lo": ["pec", "periodic"], "hi": ["pec", "periodic"]},
    }


@pytest.fixture
def small_config(sample_config_dict):
    """Small SimulationConfig for fast unit tests."""
    return SimulationConfig(**sample_config_dict)


def fill_nodal(grid, hierarchy, lev, func):
    """Set every valid point of a nodal grid to ``func(x, y, z)`` of node positions."""
    dx = hierarchy.cell_size(lev)
    for block in grid:
        b = block.box
        axes = []
        for d in range(3):
            i = np.arange(b.lo[d], b.hi[d] + 1)
            if d < hierarchy.ndim:
                axes.append(hierarchy.prob_lo[d] + i * dx[d])
            else:
                axes.append(np.zeros(1))
        X, Y, Z = np.meshgrid(*axes, indexing="ij")
        block.view(b)[0] = func(X, Y, Z)


@pytest.fixture
def fill():
    """The :func:`fill_nodal` helper."""
    return fill_nodal
