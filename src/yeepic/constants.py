"""Physical constants used throughout the package.

All values sourced from ``scipy.constants``.
Import from here instead of defining local constants.
"""

import scipy.constants as _sc

# Electromagnetic
epsilon_0 = _sc.epsilon_0     # Vacuum permittivity [F/m]
c = _sc.c                     # Speed of light [m/s]
