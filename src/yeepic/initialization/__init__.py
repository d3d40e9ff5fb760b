"""Field initialization from particle sources."""

from yeepic.initialization.space_charge import (
    SpaceChargeInitializer,
    SpaceChargeResult,
    accumulate_e_from_phi,
    init_space_charge_field,
)

__all__ = [
    "SpaceChargeInitializer",
    "SpaceChargeResult",
    "accumulate_e_from_phi",
    "init_space_charge_field",
]
