"""Potential solvers."""

from yeepic.solvers.poisson import MultiLevelSolver, NodalTensorLaplacian

__all__ = ["MultiLevelSolver", "NodalTensorLaplacian"]
