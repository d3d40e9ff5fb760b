"""Macro-particle package.

Exports all public symbols from :mod:`yeepic.pic.particles`.
"""

from yeepic.pic.particles import ParticleContainer, shape_weights

__all__ = [
    "ParticleContainer",
    "shape_weights",
]
