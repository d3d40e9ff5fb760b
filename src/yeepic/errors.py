"""Exception hierarchy for yeepic.

Configuration mistakes surface as pydantic ``ValidationError`` when the
config is built. The classes here cover the two runtime failures that the
field-initialization path can report.
"""

from __future__ import annotations


class YeePicError(Exception):
    """Base class for all yeepic runtime errors."""


class UnsupportedGeometryError(YeePicError, NotImplementedError):
    """Requested operation is not implemented for the mesh coordinate system."""


class SolverConvergenceError(YeePicError, RuntimeError):
    """Iterative linear solve stopped before reaching its tolerance.

    Attributes:
        level: Refinement level being solved when the failure happened.
        iterations: Iteration count reported by the solver.
        residual: Final relative residual norm.
    """

    def __init__(self, message: str, level: int, iterations: int, residual: float) -> None:
        super().__init__(message)
        self.level = level
        self.iterations = iterations
        self.residual = residual
