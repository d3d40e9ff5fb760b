"""Drift-corrected Poisson solve on nodal grids of a refinement hierarchy.

Solves

    L phi = rho,    L = laplacian - (beta . grad)^2

where ``beta`` is the source drift velocity over c restricted to the
simulated axes. Expanding the square,

    L = sum_a (1 - beta_a^2) d_aa  -  2 sum_{a<b} beta_a beta_b d_a d_b

The second derivatives use the compact 3-point stencil and the mixed
derivatives a product of centered first differences. The matrix is built
as a Kronecker sum of 1-D operators with ``scipy.sparse``.

Each axis is periodic or Dirichlet. Dirichlet nodes are held fixed: zero on
the domain boundary, and values interpolated from the level below on the
edge of a refined region. Levels are solved coarsest first, each with
conjugate gradients on ``-L`` (symmetric positive definite for |beta| < 1).
A fully periodic problem is singular: the mean of the right-hand side is
removed and the zero-mean solution returned.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from scipy.ndimage import map_coordinates

from yeepic.core.bases import LinearSolverBase
from yeepic.errors import SolverConvergenceError
from yeepic.mesh.box import bounding_box
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.mesh.staggered import StaggeredGrid

logger = logging.getLogger(__name__)


# =====================================================================
# Operator assembly
# =====================================================================

def _second_difference(n: int, dx: float, wrap: bool) -> sp.csr_matrix:
    """1-D ``d^2/dx^2`` on ``n`` nodes."""
    inv = 1.0 / (dx * dx)
    mat = sp.diags(
        [np.full(n - 1, inv), np.full(n, -2.0 * inv), np.full(n - 1, inv)],
        [-1, 0, 1],
        shape=(n, n),
        format="csr",
    )
    if wrap:
        corner = sp.coo_matrix(([inv, inv], ([0, n - 1], [n - 1, 0])), shape=(n, n))
        mat = (mat + corner).tocsr()
    return mat


def _first_difference(n: int, dx: float, wrap: bool) -> sp.csr_matrix:
    """1-D centered ``d/dx`` on ``n`` nodes."""
    half = 0.5 / dx
    mat = sp.diags(
        [np.full(n - 1, -half), np.full(n - 1, half)],
        [-1, 1],
        shape=(n, n),
        format="csr",
    )
    if wrap:
        corner = sp.coo_matrix(([-half, half], ([0, n - 1], [n - 1, 0])), shape=(n, n))
        mat = (mat + corner).tocsr()
    return mat


def _kron_all(mats: Sequence[sp.spmatrix]) -> sp.csr_matrix:
    out = mats[0]
    for m in mats[1:]:
        out = sp.kron(out, m, format="csr")
    return sp.csr_matrix(out)


class NodalTensorLaplacian:
    """Sparse ``laplacian - (beta . grad)^2`` on a rectangular nodal array.

    Args:
        beta: Drift velocity over c, one entry per simulated axis.
        periodic: Per axis, periodic (True) or Dirichlet (False) boundary.
    """

    def __init__(self, beta: Sequence[float], periodic: Sequence[bool]) -> None:
        if len(beta) != len(periodic):
            raise ValueError(f"beta has {len(beta)} entries but periodic has {len(periodic)}")
        self.beta = np.asarray(beta, dtype=np.float64)
        self.periodic = tuple(bool(p) for p in periodic)

    @property
    def ndim(self) -> int:
        return len(self.periodic)

    def assemble(
        self,
        shape: Sequence[int],
        dx: Sequence[float],
        wrap: Sequence[bool] | None = None,
    ) -> sp.csr_matrix:
        """Build the operator on an array of ``shape`` nodes (C order).

        Args:
            shape: Nodes per simulated axis.
            dx: Node spacing per axis [m].
            wrap: Per axis, connect the last node to the first. Defaults to
                ``self.periodic``.

        Returns:
            ``(N, N)`` CSR matrix with ``N = prod(shape)``.
        """
        wrap = self.periodic if wrap is None else tuple(wrap)
        ndim = self.ndim
        eye = [sp.identity(n, format="csr") for n in shape]

        terms = sp.csr_matrix((int(np.prod(shape)),) * 2)
        for a in range(ndim):
            coeff = 1.0 - self.beta[a] ** 2
            mats = list(eye)
            mats[a] = _second_difference(shape[a], dx[a], wrap[a])
            terms = terms + coeff * _kron_all(mats)

        for a, b in itertools.combinations(range(ndim), 2):
            coeff = 2.0 * self.beta[a] * self.beta[b]
            if coeff == 0.0:
                continue
            mats = list(eye)
            mats[a] = _first_difference(shape[a], dx[a], wrap[a])
            mats[b] = _first_difference(shape[b], dx[b], wrap[b])
            terms = terms - coeff * _kron_all(mats)

        return terms.tocsr()


# =====================================================================
# Multi-level solver
# =====================================================================

def _shifted(mask: np.ndarray, axis: int, step: int, wrap: bool) -> np.ndarray:
    """``out[i] = mask[i + step]`` along ``axis``; False past a non-wrapped edge."""
    if wrap:
        return np.roll(mask, -step, axis=axis)
    out = np.zeros_like(mask)
    n = mask.shape[axis]
    src = [slice(None)] * mask.ndim
    dst = [slice(None)] * mask.ndim
    if step > 0:
        src[axis] = slice(step, n)
        dst[axis] = slice(0, n - step)
    else:
        src[axis] = slice(0, n + step)
        dst[axis] = slice(-step, n)
    out[tuple(dst)] = mask[tuple(src)]
    return out


def _interior_mask(covered: np.ndarray, wrap: Sequence[bool]) -> np.ndarray:
    """Covered nodes whose full 3^ndim neighbourhood is covered too."""
    out = covered.copy()
    for offset in itertools.product((-1, 0, 1), repeat=covered.ndim):
        shifted = covered
        for axis, step in enumerate(offset):
            if step:
                shifted = _shifted(shifted, axis, step, wrap[axis])
        out &= shifted
    return out


class MultiLevelSolver(LinearSolverBase):
    """Level-by-level conjugate-gradient solve of a :class:`NodalTensorLaplacian`.

    Args:
        hierarchy: Mesh hierarchy the grids live on.
        max_iter: Iteration cap per level.
    """

    def __init__(self, hierarchy: MeshHierarchy, max_iter: int = 20000) -> None:
        self.hierarchy = hierarchy
        self.max_iter = max_iter
        self.last_iterations: list[int] = []
        self.last_residuals: list[float] = []

    def solve(
        self,
        operator: NodalTensorLaplacian,
        phi: list[StaggeredGrid],
        rho: list[StaggeredGrid],
        rel_tol: float,
        abs_tol: float,
    ) -> None:
        """Fill ``phi`` with the solution of ``operator(phi) = rho`` on every level.

        Raises:
            SolverConvergenceError: If a level does not reach the tolerance
                within ``max_iter`` iterations.
        """
        self.last_iterations = []
        self.last_residuals = []
        for lev in range(len(phi)):
            self._solve_level(lev, operator, phi, rho[lev], rel_tol, abs_tol)

    # ----------------------------------------------------------
    # Per-level pieces
    # ----------------------------------------------------------

    def _region_indices(
        self, lev: int, periodic: Sequence[bool]
    ) -> tuple[list[np.ndarray], list[np.ndarray], list[bool]]:
        """Nodes of the solve region of ``lev``.

        Returns ``(global_idx, canon_idx, wrap)`` per simulated axis. Level 0
        covers the whole domain; finer levels the bounding box of their blocks.
        """
        h = self.hierarchy
        domain = h.domain(lev)
        region = domain if lev == 0 else bounding_box(h.boxes(lev))

        global_idx, canon_idx, wrap = [], [], []
        for d in range(h.ndim):
            n_cell = domain.hi[d] - domain.lo[d] + 1
            full = region.lo[d] == domain.lo[d] and region.hi[d] == domain.hi[d]
            if periodic[d] and full:
                g = np.arange(domain.lo[d], domain.lo[d] + n_cell, dtype=np.int64)
                wrap.append(True)
            else:
                g = np.arange(region.lo[d], region.hi[d] + 2, dtype=np.int64)
                wrap.append(False)
            p = g - domain.lo[d]
            global_idx.append(g)
            canon_idx.append(np.mod(p, n_cell) if periodic[d] else p)
        return global_idx, canon_idx, wrap

    def _coarse_values(
        self, lev: int, coarse_phi: StaggeredGrid, global_idx: list[np.ndarray], periodic: Sequence[bool]
    ) -> np.ndarray:
        """Linear interpolation of the level-below potential onto fine nodes."""
        h = self.hierarchy
        ndim = h.ndim
        ratio = h.ref_ratio(lev - 1)
        arr, origin = coarse_phi.gather(h.domain(lev - 1), periodic, n_pad=1)
        arr = arr[0][tuple(slice(None) if d < ndim else 0 for d in range(3))]
        axes = [g / ratio - origin[d] for d, g in enumerate(global_idx)]
        coords = np.meshgrid(*axes, indexing="ij")
        return map_coordinates(arr, coords, order=1, mode="nearest")

    def _solve_level(
        self,
        lev: int,
        operator: NodalTensorLaplacian,
        phi: list[StaggeredGrid],
        rho: StaggeredGrid,
        rel_tol: float,
        abs_tol: float,
    ) -> None:
        h = self.hierarchy
        periodic = operator.periodic
        domain = h.domain(lev)
        global_idx, canon_idx, wrap = self._region_indices(lev, periodic)
        sel = np.ix_(*canon_idx)
        spatial = (slice(None),) * h.ndim + (0,) * (3 - h.ndim)

        rhs = rho.to_canonical(domain, periodic)[0][spatial][sel]
        shape = rhs.shape

        ones = StaggeredGrid(phi[lev].cell_boxes, phi[lev].nodal[: h.ndim])
        ones.set_val(1.0)
        covered = ones.to_canonical(domain, periodic)[0][spatial][sel] > 0.5
        unknown = _interior_mask(covered, wrap)

        if lev == 0:
            fixed = np.zeros(shape)
        else:
            fixed = self._coarse_values(lev, phi[lev - 1], global_idx, periodic)

        A = operator.assemble(shape, h.cell_size(lev), wrap)
        u = unknown.ravel()
        b = rhs.ravel()[u]
        g = fixed.ravel().copy()
        g[u] = 0.0
        A_uu = A[u][:, u]
        if not np.all(u):
            b = b - A[u][:, ~u] @ g[~u]

        singular = bool(np.all(u)) and all(wrap)
        if singular:
            mean = float(np.mean(b))
            if mean != 0.0:
                logger.warning(
                    "Level %d: periodic solve with net source %.3e; removing mean (neutralizing background)",
                    lev, mean,
                )
                b = b - mean

        n_iter = 0
        b_norm = float(np.linalg.norm(b))
        if b_norm == 0.0:
            x = np.zeros(b.shape)
            residual = 0.0
        else:
            def _count(_xk: np.ndarray) -> None:
                nonlocal n_iter
                n_iter += 1

            x, info = spla.cg(
                -A_uu, -b, rtol=rel_tol, atol=abs_tol, maxiter=self.max_iter, callback=_count
            )
            residual = float(np.linalg.norm(b - A_uu @ x)) / b_norm
            if info != 0:
                raise SolverConvergenceError(
                    f"Level {lev}: conjugate gradients stopped after {n_iter} iterations "
                    f"(relative residual {residual:.3e}, target {rel_tol:.1e})",
                    level=lev,
                    iterations=n_iter,
                    residual=residual,
                )
            if singular:
                x = x - np.mean(x)

        g[u] = x
        canon = np.zeros_like(phi[lev].to_canonical(domain, periodic))
        canon[0][spatial][sel] = g.reshape(shape)
        phi[lev].from_canonical(canon, domain, periodic)

        self.last_iterations.append(n_iter)
        self.last_residuals.append(residual)
        logger.info(
            "Level %d potential solve: %d unknowns, %d iterations, relative residual %.2e",
            lev, int(u.sum()), n_iter, residual,
        )
