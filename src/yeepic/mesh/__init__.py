"""Block-structured staggered meshes: index boxes, field grids, refinement hierarchy."""

from yeepic.mesh.box import AXIS_COMPONENTS, Box, bounding_box, decompose_domain
from yeepic.mesh.hierarchy import MeshHierarchy, MeshLevel
from yeepic.mesh.staggered import FieldBlock, StaggeredGrid

__all__ = [
    "AXIS_COMPONENTS",
    "Box",
    "FieldBlock",
    "MeshHierarchy",
    "MeshLevel",
    "StaggeredGrid",
    "bounding_box",
    "decompose_domain",
]
