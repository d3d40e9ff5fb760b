"""Tests for space-charge field initialization.

Test categories:
1. Geometry guard (RZ aborts before touching any grid)
2. Field reconstruction from the potential, with and without drift
3. Solver wiring: tolerances, drift restricted to simulated axes, failures
4. Refined levels use their own potential
5. End-to-end with a real particle container
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from yeepic.config import SimulationConfig
from yeepic.constants import c, epsilon_0
from yeepic.core.bases import LinearSolverBase, ParticleSourceBase
from yeepic.errors import SolverConvergenceError, UnsupportedGeometryError
from yeepic.fields.field_state import FieldState
from yeepic.initialization.space_charge import SpaceChargeInitializer, init_space_charge_field
from yeepic.mesh.hierarchy import MeshHierarchy
from yeepic.pic.particles import ParticleContainer

# ═══════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════


class FakeSource(ParticleSourceBase):
    """Deposits a prescribed nodal profile and reports a fixed velocity."""

    def __init__(self, hierarchy, fill, profile, velocity=(0.0, 0.0, 0.0)):
        self.hierarchy = hierarchy
        self.fill = fill
        self.profile = profile
        self.velocity = np.asarray(velocity, dtype=np.float64)
        self.calls = []

    def deposit_charge(self, rho, local=False, reset=True):
        self.calls.append(("deposit", local, reset))
        for lev, grid in enumerate(rho):
            self.fill(grid, self.hierarchy, lev, self.profile)

    def mean_particle_velocity(self, local=False):
        self.calls.append(("velocity", local))
        return self.velocity


class RecordingSolver(LinearSolverBase):
    """Leaves phi untouched and records how it was called."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def solve(self, operator, phi, rho, rel_tol, abs_tol):
        self.calls.append({"operator": operator, "rel_tol": rel_tol, "abs_tol": abs_tol, "n_levels": len(phi)})
        if self.error is not None:
            raise self.error


def _config(ndim=1, n=16, bc="pec", coord_sys="cartesian", **extra):
    data = {
        "geometry": {
            "n_dim": ndim,
            "coord_sys": coord_sys,
            "n_cell": [n] * ndim,
            "prob_lo": [0.0] * ndim,
            "prob_hi": [1.0] * ndim,
        },
        "boundary": {"lo": [bc] * ndim, "hi": [bc] * ndim},
    }
    data.update(extra)
    return SimulationConfig(**data)


def _setup(config):
    h = MeshHierarchy.from_config(config)
    return h, FieldState.from_config(config, h)


def _gaussian(X, Y, Z):
    return 1e-6 * np.exp(-(((X - 0.5) / 0.1) ** 2))


def _phi_line(result, h):
    return result.phi[0].to_canonical(h.domain(0), h.periodic)[0, :, 0, 0]


# ═══════════════════════════════════════════════════════
# Geometry guard
# ═══════════════════════════════════════════════════════

class TestGeometryGuard:
    """RZ geometry is refused before any side effect."""

    def test_rz_aborts(self, fill):
        config = _config(ndim=2, n=8, coord_sys="rz")
        h, fields = _setup(config)
        before = fields.snapshot()
        source = FakeSource(h, fill, _gaussian)
        solver = RecordingSolver()

        with pytest.raises(UnsupportedGeometryError) as excinfo:
            SpaceChargeInitializer(h, fields, config, solver).initialize(source)

        assert isinstance(excinfo.value, NotImplementedError)
        assert source.calls == []
        assert solver.calls == []
        after = fields.snapshot()
        for lev_before, lev_after in zip(before["E_fp"], after["E_fp"]):
            for comp_before, comp_after in zip(lev_before, lev_after):
                for a, b in zip(comp_before, comp_after):
                    np.testing.assert_array_equal(a, b)


# ═══════════════════════════════════════════════════════
# Field reconstruction
# ═══════════════════════════════════════════════════════

class TestFieldFromPotential:
    """E follows from phi with the drift-corrected stencil."""

    def test_static_source_1d(self, fill):
        config = _config(ndim=1, n=16)
        h, fields = _setup(config)
        source = FakeSource(h, fill, _gaussian)

        result = SpaceChargeInitializer(h, fields, config).initialize(source)

        assert source.calls == [("deposit", False, True), ("velocity", False)]
        phi = _phi_line(result, h)
        assert phi.max() > 0.0
        assert phi[0] == 0.0 and phi[-1] == 0.0

        dx = h.cell_size(0)[0]
        Ez = fields.Efield_fp[0][2].blocks[0]
        for i in range(16):
            assert Ez.get((i,)) == pytest.approx(-(phi[i + 1] - phi[i]) / dx, rel=1e-10)
        assert fields.Efield_fp[0][0].max_abs() == 0.0
        assert fields.Efield_fp[0][1].max_abs() == 0.0

    def test_longitudinal_drift_1d(self, fill):
        config = _config(ndim=1, n=16)
        h, fields_static = _setup(config)
        static = SpaceChargeInitializer(h, fields_static, config).initialize(FakeSource(h, fill, _gaussian))

        _, fields = _setup(config)
        source = FakeSource(h, fill, _gaussian, velocity=(0.0, 0.0, 0.5 * c))
        result = SpaceChargeInitializer(h, fields, config).initialize(source)

        np.testing.assert_allclose(result.beta, [0.0, 0.0, 0.5])
        phi = _phi_line(result, h)
        phi_static = _phi_line(static, h)
        np.testing.assert_allclose(phi, phi_static / 0.75, rtol=1e-8, atol=1e-8 * phi.max())

        dx = h.cell_size(0)[0]
        Ez = fields.Efield_fp[0][2].blocks[0]
        for i in range(16):
            assert Ez.get((i,)) == pytest.approx(-0.75 * (phi[i + 1] - phi[i]) / dx, rel=1e-10)

    def test_transverse_drift_couples_components(self, fill):
        config = _config(ndim=1, n=16)
        h, fields = _setup(config)
        source = FakeSource(h, fill, _gaussian, velocity=(0.3 * c, 0.0, 0.4 * c))

        result = SpaceChargeInitializer(h, fields, config).initialize(source)

        phi = _phi_line(result, h)
        dx = h.cell_size(0)[0]
        Ex = fields.Efield_fp[0][0].blocks[0]
        for i in range(1, 16):
            expected = 0.3 * 0.4 * (phi[i + 1] - phi[i - 1]) / (2.0 * dx)
            assert Ex.get((i,)) == pytest.approx(expected, rel=1e-8)
        assert fields.Efield_fp[0][1].max_abs() == 0.0

    def test_out_of_plane_component_in_2d(self, fill):
        config = _config(ndim=2, n=8)
        h, fields = _setup(config)
        init = SpaceChargeInitializer(h, fields, config)
        _, phi = init.allocate()
        fill(phi[0], h, 0, lambda X, Y, Z: X + 2.0 * Y)

        init.compute_e(phi, np.array([0.3, 0.4, 0.5]))

        # E_y = beta_y beta_x d_x phi + beta_y beta_z d_z phi
        Ey = fields.Efield_fp[0][1].blocks[0]
        for i in range(1, 8):
            for j in range(1, 8):
                assert Ey.get((i, j)) == pytest.approx(0.12 + 0.4)

    def test_point_charge_points_outward(self, fill):
        config = _config(ndim=2, n=16, bc="periodic")
        h, fields = _setup(config)

        def point(X, Y, Z):
            center = (np.abs(X - 0.5) < 1e-12) & (np.abs(Y - 0.5) < 1e-12)
            return np.where(center, 1e-9, 0.0)

        result = SpaceChargeInitializer(h, fields, config).initialize(FakeSource(h, fill, point))

        # Ex is cell-centered along x: cell 8 lies right of the charge, cell 7 left
        Ex = fields.Efield_fp[0][0].blocks[0]
        assert Ex.get((8, 8)) > 0.0
        assert Ex.get((7, 8)) < 0.0
        assert Ex.get((8, 8)) == pytest.approx(-Ex.get((7, 8)), rel=1e-8)
        Ez = fields.Efield_fp[0][2].blocks[0]
        assert Ez.get((8, 8)) > 0.0
        assert Ez.get((8, 7)) < 0.0
        assert Ez.get((8, 8)) == pytest.approx(Ex.get((8, 8)), rel=1e-8)

        # discrete Poisson equation against the neutralized charge
        phi = result.phi[0].to_canonical(h.domain(0), h.periodic)[0, :, :, 0]
        rho = result.rho[0].to_canonical(h.domain(0), h.periodic)[0, :, :, 0]
        dx, dz = h.cell_size(0)
        lap = (np.roll(phi, 1, 0) + np.roll(phi, -1, 0) - 2.0 * phi) / dx**2
        lap += (np.roll(phi, 1, 1) + np.roll(phi, -1, 1) - 2.0 * phi) / dz**2
        expected = -(rho - rho.mean()) / epsilon_0
        np.testing.assert_allclose(lap, expected, atol=1e-6 * np.abs(expected).max())

    def test_accumulates_into_existing_field(self, fill):
        config = _config(ndim=1, n=8)
        h, fields = _setup(config)
        fields.Efield_fp[0][2].set_val(1.0)

        SpaceChargeInitializer(h, fields, config).initialize(FakeSource(h, fill, lambda X, Y, Z: 0.0 * X))

        Ez = fields.Efield_fp[0][2].blocks[0]
        assert all(Ez.get((i,)) == 1.0 for i in range(8))


# ═══════════════════════════════════════════════════════
# Solver wiring
# ═══════════════════════════════════════════════════════

class TestSolverWiring:
    """The initializer hands the right problem to the solver."""

    def test_tolerances_and_beta_restriction(self, fill):
        config = _config(ndim=2, n=8)
        h, fields = _setup(config)
        solver = RecordingSolver()
        source = FakeSource(h, fill, _gaussian, velocity=(0.1 * c, 0.2 * c, 0.3 * c))

        SpaceChargeInitializer(h, fields, config, solver).initialize(source)

        (call,) = solver.calls
        assert call["rel_tol"] == 1e-11
        assert call["abs_tol"] == 0.0
        assert call["n_levels"] == 1
        np.testing.assert_allclose(call["operator"].beta, [0.1, 0.3])
        assert call["operator"].periodic == (False, False)

    def test_solver_failure_propagates(self, fill):
        config = _config(ndim=1, n=8)
        h, fields = _setup(config)
        error = SolverConvergenceError("stalled", level=0, iterations=5, residual=1.0)
        solver = RecordingSolver(error=error)

        with pytest.raises(SolverConvergenceError):
            SpaceChargeInitializer(h, fields, config, solver).initialize(FakeSource(h, fill, _gaussian))
        assert fields.Efield_fp[0][2].max_abs() == 0.0

    def test_superluminal_drift_warns(self, fill, caplog):
        config = _config(ndim=1, n=8)
        h, fields = _setup(config)
        source = FakeSource(h, fill, _gaussian, velocity=(0.0, 0.0, 1.2 * c))

        with caplog.at_level(logging.WARNING, logger="yeepic.initialization.space_charge"):
            SpaceChargeInitializer(h, fields, config, RecordingSolver()).initialize(source)

        assert any("sub-luminal" in r.message for r in caplog.records)

    def test_phi_scaled_by_vacuum_permittivity(self, fill):
        config = _config(ndim=1, n=16)
        h, fields = _setup(config)
        init = SpaceChargeInitializer(h, fields, config)
        rho, phi = init.allocate()
        for grid in rho:
            grid.set_val(1.0)

        init.compute_phi(rho, phi, np.zeros(3))

        x = h.node_positions(0, 0)
        values = phi[0].to_canonical(h.domain(0), h.periodic)[0, :, 0, 0]
        np.testing.assert_allclose(values, -0.5 * x * (x - 1.0) / epsilon_0, rtol=1e-8, atol=1e-3)


# ═══════════════════════════════════════════════════════
# Refined levels
# ═══════════════════════════════════════════════════════

class TestRefinedLevels:
    """Each level reconstructs E from its own potential."""

    def test_per_level_potential(self, fill):
        config = _config(
            ndim=1,
            n=8,
            amr={"max_level": 1, "fine_regions": [{"level": 1, "lo": [4], "hi": [11]}]},
        )
        h, fields = _setup(config)
        init = SpaceChargeInitializer(h, fields, config)
        _, phi = init.allocate()
        fill(phi[0], h, 0, lambda X, Y, Z: 1.0 * X)
        fill(phi[1], h, 1, lambda X, Y, Z: 2.0 * X)

        init.compute_e(phi, np.zeros(3))

        coarse = fields.Efield_fp[0][2].blocks[0]
        fine = fields.Efield_fp[1][2].blocks[0]
        assert coarse.get((3,)) == pytest.approx(-1.0)
        for i in range(4, 12):
            assert fine.get((i,)) == pytest.approx(-2.0)

    def test_collocated_gradient_across_refined_edge(self, fill):
        config = _config(
            ndim=1,
            n=8,
            amr={"max_level": 1, "fine_regions": [{"level": 1, "lo": [4], "hi": [11]}]},
            fields={"grid_type": "collocated"},
        )
        h, fields = _setup(config)
        init = SpaceChargeInitializer(h, fields, config)
        _, phi = init.allocate()
        for lev in range(2):
            fill(phi[lev], h, lev, lambda X, Y, Z: 1.0 * X)

        init.compute_e(phi, np.zeros(3))

        # nodes 4 and 12 reach one node past the refined region
        fine = fields.Efield_fp[1][2].blocks[0]
        for i in range(4, 13):
            assert fine.get((i,)) == pytest.approx(-1.0)

    def test_transverse_drift_across_refined_edge(self, fill):
        config = _config(
            ndim=2,
            n=8,
            amr={"max_level": 1, "fine_regions": [{"level": 1, "lo": [4, 4], "hi": [11, 11]}]},
        )
        h, fields = _setup(config)
        init = SpaceChargeInitializer(h, fields, config)
        _, phi = init.allocate()
        for lev in range(2):
            fill(phi[lev], h, lev, lambda X, Y, Z: 1.0 * Y)

        init.compute_e(phi, np.array([0.5, 0.0, 0.5]))

        Ex = fields.Efield_fp[1][0].blocks[0]
        Ez = fields.Efield_fp[1][2].blocks[0]
        for i in range(4, 12):
            for j in range(4, 13):
                assert Ex.get((i, j)) == pytest.approx(0.25)
        for i in range(4, 13):
            for j in range(4, 12):
                assert Ez.get((i, j)) == pytest.approx(-0.75)
        assert fields.Efield_fp[1][1].max_abs() == 0.0


# ═══════════════════════════════════════════════════════
# End to end
# ═══════════════════════════════════════════════════════

class TestEndToEnd:
    """Real particles through the convenience entry point."""

    def test_beam_in_pec_box(self, rng):
        config = _config(ndim=2, n=16, particles={"shape_order": 2})
        h, fields = _setup(config)
        n = 64
        positions = np.zeros((n, 3))
        positions[:, 0] = rng.normal(0.5, 0.05, size=n)
        positions[:, 2] = rng.normal(0.5, 0.05, size=n)
        velocities = np.zeros((n, 3))
        velocities[:, 2] = 0.2 * c
        pc = ParticleContainer(
            hierarchy=h,
            name="beam",
            charge=-1.602176634e-19,
            mass=9.1093837015e-31,
            positions=positions,
            velocities=velocities,
            weights=np.full(n, 1e6),
            shape_order=2,
        )

        result = init_space_charge_field(pc, h, fields, config)

        np.testing.assert_allclose(result.beta, [0.0, 0.0, 0.2], rtol=1e-12)
        assert result.rho[0].n_ghost == 2
        assert result.phi[0].n_ghost == 0
        phi = result.phi[0].to_canonical(h.domain(0), h.periodic)[0, :, :, 0]
        # negative charge: potential well
        assert phi.min() < 0.0
        assert np.all(phi[0, :] == 0.0)
        assert fields.Efield_fp[0][0].max_abs() > 0.0
        assert fields.Efield_fp[0][2].max_abs() > 0.0
        assert fields.Bfield_fp[0][1].max_abs() == 0.0
