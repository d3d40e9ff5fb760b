"""Core abstract base classes for the collaborators of field initialization.

Defines the interface contracts consumed by the space-charge initializer:
- ``ParticleSourceBase``: charge deposition and mean velocity of a particle population
- ``LinearSolverBase``: solve of the drift-corrected Poisson operator over all levels
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from yeepic.mesh.staggered import StaggeredGrid


class ParticleSourceBase(ABC):
    """Abstract base for particle populations that source a space-charge field."""

    @abstractmethod
    def deposit_charge(
        self,
        rho: list[StaggeredGrid],
        local: bool = False,
        reset: bool = True,
    ) -> None:
        """Deposit charge density onto nodal grids, one per level.

        Args:
            rho: Nodal charge-density grids for levels 0..max_level [C/m^3].
            local: Skip the global ghost-cell summation when True.
            reset: Zero ``rho`` before depositing.
        """

    @abstractmethod
    def mean_particle_velocity(self, local: bool = False) -> np.ndarray:
        """Weighted mean velocity of the population.

        Args:
            local: Average over locally owned particles only.

        Returns:
            Array of 3 components [m/s].
        """


class LinearSolverBase(ABC):
    """Abstract base for potential solvers."""

    @abstractmethod
    def solve(
        self,
        operator: Any,
        phi: list[StaggeredGrid],
        rho: list[StaggeredGrid],
        rel_tol: float,
        abs_tol: float,
    ) -> None:
        """Solve ``operator(phi) = rho`` on every level, filling ``phi`` in place.

        Args:
            operator: Operator description understood by the solver.
            phi: Nodal solution grids, one per level (initial guess on entry).
            rho: Nodal right-hand sides, one per level.
            rel_tol: Relative residual tolerance.
            abs_tol: Absolute residual tolerance.

        Raises:
            SolverConvergenceError: If any level fails to converge.
        """
