"""Command-line interface for yeepic.

Usage:
    yeepic verify config.json
    yeepic boundaries config.json
    yeepic init-fields config.json particles.npz -o fields.h5
"""

from __future__ import annotations

import logging
import sys

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """yeepic: PEC boundaries and space-charge fields on staggered AMR meshes."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
def verify(config_file: str) -> None:
    """Verify a configuration file is valid."""
    from yeepic.config import SimulationConfig

    try:
        config = SimulationConfig.from_file(config_file)
        geom = config.geometry
        click.echo("Configuration is valid:")
        click.echo(f"  Geometry: {geom.n_dim}D {geom.coord_sys}, cells {geom.n_cell}")
        click.echo(f"  Domain: {geom.prob_lo} .. {geom.prob_hi} m")
        click.echo(f"  Levels: {config.amr.max_level + 1} (ratio {config.amr.refinement_ratio})")
        click.echo(f"  Grid type: {config.fields.grid_type}, guard cells: {config.n_guard()}")
        click.echo(f"  Shape order: {config.particles.shape_order}")
    except Exception as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
def boundaries(config_file: str) -> None:
    """Show the field boundary table and the guard width PEC passes touch."""
    from yeepic.boundary.pec import is_any_boundary_pec
    from yeepic.config import SimulationConfig

    try:
        config = SimulationConfig.from_file(config_file)
    except Exception as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    table = config.boundary
    click.echo("Field boundaries:")
    for idim in range(table.ndim):
        click.echo(f"  axis {idim}: lo={table.lo[idim].name.lower()}, hi={table.hi[idim].name.lower()}")
    if is_any_boundary_pec(table):
        click.echo(f"PEC active; guard cells processed: {config.ng_fieldgather()}")
    else:
        click.echo("No PEC boundary; boundary passes are skipped")


@cli.command("init-fields")
@click.argument("config_file", type=click.Path(exists=True))
@click.argument("particles_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=str, default=None, help="Override output HDF5 filename.")
def init_fields(config_file: str, particles_file: str, output: str | None) -> None:
    """Initialize E from particle space charge, apply PEC, and write HDF5."""
    from yeepic.boundary.pec import apply_pec_to_bfield, apply_pec_to_efield, is_any_boundary_pec
    from yeepic.config import PatchType, SimulationConfig
    from yeepic.diagnostics.hdf5_writer import FieldWriter
    from yeepic.errors import YeePicError
    from yeepic.fields.field_state import FieldState
    from yeepic.initialization.space_charge import init_space_charge_field
    from yeepic.mesh.hierarchy import MeshHierarchy
    from yeepic.pic.particles import ParticleContainer

    click.echo(f"Loading config from {config_file}")
    try:
        config = SimulationConfig.from_file(config_file)
    except Exception as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    if output:
        config.diagnostics.hdf5_filename = output

    hierarchy = MeshHierarchy.from_config(config)
    fields = FieldState.from_config(config, hierarchy)
    species = ParticleContainer.from_npz(
        particles_file, hierarchy, shape_order=config.particles.shape_order
    )

    try:
        result = init_space_charge_field(species, hierarchy, fields, config)
    except YeePicError as exc:
        click.echo(f"Initialization failed: {exc}", err=True)
        sys.exit(1)

    if is_any_boundary_pec(config.boundary):
        ngfg = config.ng_fieldgather()
        for lev in range(hierarchy.max_level + 1):
            for grid in fields.Efield_fp[lev]:
                grid.fill_boundary(hierarchy.domain(lev), hierarchy.periodic)
            patches = [PatchType.FINE] if lev == 0 else [PatchType.FINE, PatchType.COARSE]
            for patch in patches:
                apply_pec_to_efield(fields.efield(lev, patch), lev, patch, config.boundary, hierarchy, ngfg)
                apply_pec_to_bfield(fields.bfield(lev, patch), lev, patch, config.boundary, hierarchy, ngfg)

    writer = FieldWriter(config.diagnostics.hdf5_filename, hierarchy)
    writer.add_levels("rho", result.rho)
    writer.add_levels("phi", result.phi)
    writer.add_fields(fields)
    writer.set_attr("beta", result.beta)
    path = writer.write()

    click.echo("\n--- Initialization Summary ---")
    click.echo(f"  particles: {species.n_particles()}")
    click.echo(f"  beta: ({result.beta[0]:.6e}, {result.beta[1]:.6e}, {result.beta[2]:.6e})")
    for lev, phi in enumerate(result.phi):
        click.echo(f"  level {lev} max|phi|: {phi.max_abs():.6e} V")
    click.echo(f"  output: {path}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
