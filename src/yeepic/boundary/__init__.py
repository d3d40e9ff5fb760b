"""Field boundary conditions: perfect electric conductor on staggered E and B."""

from yeepic.boundary.pec import (
    apply_pec_to_bfield,
    apply_pec_to_efield,
    is_any_boundary_pec,
    pec_cell_rule,
    set_bfield_on_pec,
    set_efield_on_pec,
)

__all__ = [
    "apply_pec_to_bfield",
    "apply_pec_to_efield",
    "is_any_boundary_pec",
    "pec_cell_rule",
    "set_bfield_on_pec",
    "set_efield_on_pec",
]
