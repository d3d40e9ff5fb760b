"""Pydantic v2 configuration system for yeepic field setups.

Provides validated, typed configuration with submodels for the mesh
geometry, field boundary table, refinement hierarchy, particle shape, and
the potential solver. Supports JSON I/O and cross-field validation, so
invariants such as periodic-axis consistency are checked once here and
never in the per-cell kernels.
"""

from __future__ import annotations

import json
from enum import IntEnum
from pathlib import Path

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator


class FieldBoundaryType(IntEnum):
    """Field boundary condition on one side of one axis.

    Integer valued so the table can be handed to numba kernels as an
    ``int64`` array.
    """

    PML = 0
    PERIODIC = 1
    PEC = 2
    OPEN = 3
    NONE = 4

    @classmethod
    def parse(cls, value: object) -> FieldBoundaryType:
        """Accept enum members, integers, or case-insensitive names."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                names = ", ".join(m.name.lower() for m in cls)
                raise ValueError(f"unknown field boundary '{value}' (expected one of: {names})") from None
        return cls(value)


class PatchType(IntEnum):
    """Fine patch (native level resolution) or coarse patch (coarsened by the level ratio)."""

    FINE = 0
    COARSE = 1


class BoundaryTable(BaseModel):
    """Per-axis, per-side field boundary types.

    Attributes:
        lo: Boundary type on the low side of each simulated axis.
        hi: Boundary type on the high side of each simulated axis.
    """

    lo: list[FieldBoundaryType] = Field(..., min_length=1, max_length=3)
    hi: list[FieldBoundaryType] = Field(..., min_length=1, max_length=3)

    @field_validator("lo", "hi", mode="before")
    @classmethod
    def parse_types(cls, value: object) -> object:
        if isinstance(value, (list, tuple)):
            return [FieldBoundaryType.parse(v) for v in value]
        return value

    @model_validator(mode="after")
    def check_consistency(self) -> BoundaryTable:
        if len(self.lo) != len(self.hi):
            raise ValueError(
                f"boundary lo/hi must have the same length, got {len(self.lo)} and {len(self.hi)}"
            )
        for idim, (blo, bhi) in enumerate(zip(self.lo, self.hi)):
            if (blo == FieldBoundaryType.PERIODIC) != (bhi == FieldBoundaryType.PERIODIC):
                raise ValueError(
                    f"axis {idim}: periodic boundary must be set on both sides, got {blo.name}/{bhi.name}"
                )
        return self

    @property
    def ndim(self) -> int:
        return len(self.lo)

    def is_periodic(self, idim: int) -> bool:
        return self.lo[idim] == FieldBoundaryType.PERIODIC

    def periodicity(self) -> tuple[bool, ...]:
        return tuple(self.is_periodic(idim) for idim in range(self.ndim))

    def is_any_pec(self) -> bool:
        """True if any side of any axis is a perfect electric conductor."""
        return any(b == FieldBoundaryType.PEC for b in (*self.lo, *self.hi))

    def codes(self) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(lo, hi)`` as length-3 ``int64`` arrays for numba kernels.

        Unused axes are padded with ``NONE``.
        """
        lo = np.full(3, int(FieldBoundaryType.NONE), dtype=np.int64)
        hi = np.full(3, int(FieldBoundaryType.NONE), dtype=np.int64)
        for idim in range(self.ndim):
            lo[idim] = int(self.lo[idim])
            hi[idim] = int(self.hi[idim])
        return lo, hi


class GeometryConfig(BaseModel):
    """Base-level mesh geometry."""

    n_dim: int = Field(3, ge=1, le=3, description="Number of simulated spatial axes")
    coord_sys: str = Field(
        "cartesian",
        description="Coordinate system: 'cartesian' or 'rz' (2D azimuthally symmetric)",
    )
    n_cell: list[int] = Field(..., min_length=1, max_length=3, description="Base cells per axis")
    prob_lo: list[float] = Field(..., min_length=1, max_length=3, description="Domain low corner [m]")
    prob_hi: list[float] = Field(..., min_length=1, max_length=3, description="Domain high corner [m]")
    max_grid_size: int = Field(32, ge=1, description="Maximum block extent per axis [cells]")

    @model_validator(mode="after")
    def validate_geometry(self) -> GeometryConfig:
        if self.coord_sys not in ("cartesian", "rz"):
            raise ValueError(f"coord_sys must be 'cartesian' or 'rz', got '{self.coord_sys}'")
        if self.coord_sys == "rz" and self.n_dim != 2:
            raise ValueError(f"rz geometry requires n_dim=2, got {self.n_dim}")
        for name in ("n_cell", "prob_lo", "prob_hi"):
            if len(getattr(self, name)) != self.n_dim:
                raise ValueError(f"{name} must have n_dim={self.n_dim} entries")
        if any(n <= 0 for n in self.n_cell):
            raise ValueError("n_cell values must be positive integers")
        if any(hi <= lo for lo, hi in zip(self.prob_lo, self.prob_hi)):
            raise ValueError("prob_hi must exceed prob_lo on every axis")
        return self


class RefinedRegion(BaseModel):
    """A refined block at ``level``, in that level's own cell index space."""

    level: int = Field(..., ge=1)
    lo: list[int] = Field(..., min_length=1, max_length=3)
    hi: list[int] = Field(..., min_length=1, max_length=3)

    @model_validator(mode="after")
    def check_box(self) -> RefinedRegion:
        if len(self.lo) != len(self.hi):
            raise ValueError("refined region lo/hi must have the same length")
        if any(h < l for l, h in zip(self.lo, self.hi)):
            raise ValueError(f"refined region is empty: lo={self.lo}, hi={self.hi}")
        return self


class AMRConfig(BaseModel):
    """Static mesh refinement hierarchy.

    Attributes:
        max_level: Finest level index (0 = single level).
        refinement_ratio: Integer ratio between successive levels.
        fine_regions: Refined blocks for levels 1..max_level.
    """

    max_level: int = Field(0, ge=0, le=4)
    refinement_ratio: int = Field(2, ge=2, le=4)
    fine_regions: list[RefinedRegion] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_levels(self) -> AMRConfig:
        for lev in range(1, self.max_level + 1):
            if not any(r.level == lev for r in self.fine_regions):
                raise ValueError(f"level {lev} has no refined region")
        for region in self.fine_regions:
            if region.level > self.max_level:
                raise ValueError(
                    f"refined region at level {region.level} exceeds max_level={self.max_level}"
                )
        return self


class ParticleConfig(BaseModel):
    """Macro-particle shape and presence."""

    shape_order: int = Field(1, ge=1, le=3, description="Shape factor order (1=CIC, 2=TSC, 3=cubic)")
    has_particles: bool = Field(
        True,
        description="Particles or lasers present; when False no guard cells are touched by boundaries",
    )


class FieldConfig(BaseModel):
    """Electromagnetic field storage."""

    grid_type: str = Field("yee", description="Staggering: 'yee' or 'collocated'")
    n_guard: int | None = Field(
        None, ge=0,
        description="Guard cells on E/B grids (default: particle gather width)",
    )

    @model_validator(mode="after")
    def validate_grid_type(self) -> FieldConfig:
        if self.grid_type not in ("yee", "collocated"):
            raise ValueError(f"grid_type must be 'yee' or 'collocated', got '{self.grid_type}'")
        return self


class SolverConfig(BaseModel):
    """Potential solver tolerances."""

    rel_tol: float = Field(1e-11, gt=0, lt=1, description="Relative residual tolerance")
    abs_tol: float = Field(0.0, ge=0, description="Absolute residual tolerance")
    max_iter: int = Field(20000, ge=1, description="Maximum Krylov iterations per level")


class DiagnosticsConfig(BaseModel):
    """Field output parameters."""

    hdf5_filename: str = Field("fields.h5", description="Output HDF5 file")


class SimulationConfig(BaseModel):
    """Top-level configuration."""

    geometry: GeometryConfig
    boundary: BoundaryTable
    amr: AMRConfig = Field(default_factory=AMRConfig)
    particles: ParticleConfig = Field(default_factory=ParticleConfig)
    fields: FieldConfig = Field(default_factory=FieldConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)

    @model_validator(mode="after")
    def validate_dims(self) -> SimulationConfig:
        n_dim = self.geometry.n_dim
        if self.boundary.ndim != n_dim:
            raise ValueError(
                f"boundary table has {self.boundary.ndim} axes but geometry n_dim={n_dim}"
            )
        for region in self.amr.fine_regions:
            if len(region.lo) != n_dim:
                raise ValueError(f"refined region {region.lo}..{region.hi} must have {n_dim} entries")
            n_fine = [n * self.amr.refinement_ratio**region.level for n in self.geometry.n_cell]
            if any(l < 0 or h >= n for l, h, n in zip(region.lo, region.hi, n_fine)):
                raise ValueError(
                    f"refined region {region.lo}..{region.hi} lies outside level {region.level} "
                    f"domain of {n_fine} cells"
                )
        if self.fields.n_guard is not None:
            if self.fields.n_guard < self.ng_fieldgather():
                raise ValueError(
                    f"n_guard={self.fields.n_guard} is smaller than the particle gather "
                    f"width {self.ng_fieldgather()}"
                )
        if min(self.geometry.max_grid_size, *self.geometry.n_cell) < self.ng_fieldgather():
            raise ValueError("blocks must be at least as wide as the particle gather width")
        return self

    def ng_fieldgather(self) -> int:
        """Guard cells read by particle field gather (0 without particles)."""
        if not self.particles.has_particles:
            return 0
        order = self.particles.shape_order
        return order + order % 2

    def n_guard(self) -> int:
        if self.fields.n_guard is not None:
            return self.fields.n_guard
        return max(self.ng_fieldgather(), 1)

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> SimulationConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
