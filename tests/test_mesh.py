"""Tests for index boxes, staggered grids and the mesh hierarchy.

Test categories:
1. Box staggering conversions, coarsening and refinement
2. Domain decomposition into blocks
3. StaggeredGrid layout, halo exchange and ghost summation
4. Level assembly with periodic images and odd reflection
5. MeshHierarchy levels, cell sizes and patch domains
"""

from __future__ import annotations

import numpy as np
import pytest

from yeepic.config import PatchType
from yeepic.mesh.box import Box, bounding_box, decompose_domain
from yeepic.mesh.staggered import StaggeredGrid

# ═══════════════════════════════════════════════════════
# Box
# ═══════════════════════════════════════════════════════

class TestBox:
    """Tests for index-space boxes."""

    def test_from_bounds_pads_unused_axes(self):
        box = Box.from_bounds([2, 3], [5, 9])
        assert box.ndim == 2
        assert box.lo == (2, 3, 0)
        assert box.hi == (5, 9, 0)
        assert box.shape == (4, 7, 1)
        assert box.num_points == 28

    def test_grow_only_simulated_axes(self):
        box = Box.from_bounds([0, 0], [3, 3]).grow(2)
        assert box.lo == (-2, -2, 0)
        assert box.hi == (5, 5, 0)

    def test_surrounding_nodes_and_back(self):
        cells = Box.from_bounds([0, 0, 0], [7, 7, 7])
        ex = cells.surrounding_nodes((0, 1, 1))
        assert ex.hi == (7, 8, 8)
        assert ex.ix_type == (0, 1, 1)
        assert ex.enclosed_cells() == cells

    def test_coarsen_rounds_nodal_up(self):
        cells = Box.from_bounds([0], [15])
        assert cells.coarsen(2).hi == (7, 0, 0)
        nodes = Box.from_bounds([0], [17], ix_type=[1])
        assert nodes.coarsen(2).hi == (9, 0, 0)

    def test_refine_cells(self):
        box = Box.from_bounds([1, 2], [3, 4]).refine(2)
        assert box.lo == (2, 4, 0)
        assert box.hi == (7, 9, 0)

    def test_intersect(self):
        a = Box.from_bounds([0, 0], [5, 5])
        b = Box.from_bounds([3, 4], [9, 9])
        assert a.intersect(b) == Box.from_bounds([3, 4], [5, 5])
        assert a.intersect(Box.from_bounds([6, 6], [7, 7])) is None

    def test_contains(self):
        box = Box.from_bounds([0, 0], [3, 3])
        assert box.contains((3, 0))
        assert not box.contains((4, 0))


class TestDecomposition:
    """Tests for chopping domains into blocks."""

    def test_uneven_chunks(self):
        blocks = decompose_domain(Box.from_bounds([0], [9]), 4)
        assert [(b.lo[0], b.hi[0]) for b in blocks] == [(0, 3), (4, 7), (8, 9)]

    def test_2d_block_count(self):
        blocks = decompose_domain(Box.from_bounds([0, 0], [7, 7]), 4)
        assert len(blocks) == 4
        assert sum(b.num_points for b in blocks) == 64

    def test_bounding_box(self):
        blocks = decompose_domain(Box.from_bounds([4, 2], [11, 9]), 4)
        assert bounding_box(blocks) == Box.from_bounds([4, 2], [11, 9])

    def test_invalid_grid_size(self):
        with pytest.raises(ValueError):
            decompose_domain(Box.from_bounds([0], [3]), 0)


# ═══════════════════════════════════════════════════════
# StaggeredGrid
# ═══════════════════════════════════════════════════════

class TestStaggeredGrid:
    """Tests for block layout and level-wide operations."""

    def test_block_layout(self):
        grid = StaggeredGrid([Box.from_bounds([0], [7])], nodal=(1,), n_ghost=2)
        block = grid.blocks[0]
        assert block.data.shape == (1, 13, 1, 1)
        np.testing.assert_array_equal(block.origin, [-2, 0, 0])
        assert block.tilebox(1).lo == (-1, 0, 0)
        assert block.tilebox(1).hi == (9, 0, 0)

    def test_get_set_global_index(self):
        grid = StaggeredGrid([Box.from_bounds([0, 0], [3, 3])], nodal=(0, 1), n_ghost=1)
        block = grid.blocks[0]
        block.set((-1, 4), 2.5)
        assert block.get((-1, 4)) == 2.5
        assert block.data[0, 0, 5, 0] == 2.5

    def test_fill_boundary_periodic(self):
        boxes = decompose_domain(Box.from_bounds([0], [7]), 4)
        domain = Box.from_bounds([0], [7])
        grid = StaggeredGrid(boxes, nodal=(1,), n_ghost=2)
        for block in grid:
            for i in range(block.box.lo[0], block.box.hi[0] + 1):
                block.set((i,), float(i % 8))

        grid.fill_boundary(domain, (True,))

        left, right = grid.blocks
        assert left.get((-1,)) == 7.0
        assert left.get((-2,)) == 6.0
        assert left.get((6,)) == 6.0
        assert right.get((9,)) == 1.0
        assert right.get((10,)) == 2.0
        assert right.get((2,)) == 2.0

    def test_sum_boundary_periodic_folds_images(self):
        domain = Box.from_bounds([0], [7])
        grid = StaggeredGrid([domain], nodal=(1,), n_ghost=1)
        grid.set_val(1.0)

        grid.sum_boundary(domain, (True,))

        block = grid.blocks[0]
        assert block.get((0,)) == 2.0
        assert block.get((8,)) == 2.0
        assert block.get((1,)) == 2.0
        assert block.get((7,)) == 2.0
        assert block.get((4,)) == 1.0
        assert block.get((-1,)) == 2.0

    def test_sum_boundary_between_blocks(self):
        domain = Box.from_bounds([0], [7])
        grid = StaggeredGrid(decompose_domain(domain, 4), nodal=(1,), n_ghost=1)
        grid.set_val(1.0)

        grid.sum_boundary(domain, (False,))

        left, right = grid.blocks
        assert left.get((0,)) == 1.0
        assert left.get((3,)) == 2.0
        assert left.get((4,)) == 2.0
        assert right.get((4,)) == 2.0
        assert right.get((5,)) == 2.0
        assert right.get((8,)) == 1.0
        # guard outside a non-periodic domain keeps its deposit
        assert left.get((-1,)) == 1.0

    def test_gather_odd_reflection(self):
        domain = Box.from_bounds([0], [3])
        grid = StaggeredGrid([domain], nodal=(1,))
        values = np.array([0.0, 3.0, 4.0, 3.0, 0.0])
        grid.blocks[0].data[0, :, 0, 0] = values

        arr, origin = grid.gather(domain, (False,), n_pad=1)

        assert origin[0] == -1
        np.testing.assert_allclose(arr[0, :, 0, 0], [-3.0, 0.0, 3.0, 4.0, 3.0, 0.0, -3.0])

    def test_gather_periodic_cell_centered(self):
        domain = Box.from_bounds([0], [3])
        grid = StaggeredGrid([domain], nodal=(0,))
        grid.blocks[0].data[0, :, 0, 0] = [1.0, 2.0, 3.0, 4.0]

        arr, _ = grid.gather(domain, (True,), n_pad=1)

        np.testing.assert_allclose(arr[0, :, 0, 0], [4.0, 1.0, 2.0, 3.0, 4.0, 1.0])

    def test_copy_is_independent(self):
        grid = StaggeredGrid([Box.from_bounds([0], [3])], nodal=(1,), n_ghost=1)
        grid.set_val(2.0)
        dup = grid.copy()
        grid.mult(3.0)
        assert dup.max_abs() == 2.0
        assert grid.max_abs() == 6.0


# ═══════════════════════════════════════════════════════
# MeshHierarchy
# ═══════════════════════════════════════════════════════

class TestMeshHierarchy:
    """Tests for the refinement hierarchy."""

    def test_single_level(self, make_hierarchy):
        h = make_hierarchy(ndim=2, n=8, max_grid_size=4)
        assert h.max_level == 0
        assert len(h.boxes(0)) == 4
        assert h.cell_size(0) == pytest.approx((0.125, 0.125))
        assert h.total_cells() == 64

    def test_fine_level(self, make_hierarchy):
        h = make_hierarchy(ndim=1, n=16, fine_regions={1: [([8], [23])]})
        assert h.max_level == 1
        assert h.domain(1).hi == (31, 0, 0)
        assert h.cell_size(1) == pytest.approx((1.0 / 32,))
        assert h.coarse_boxes(1)[0] == Box.from_bounds([4], [11])

    def test_pec_domain_coarse_patch(self, make_hierarchy):
        h = make_hierarchy(ndim=3, n=8, fine_regions={1: [([8, 8, 8], [15, 15, 15])]})
        assert h.pec_domain(1, PatchType.FINE).hi == (15, 15, 15)
        assert h.pec_domain(1, PatchType.COARSE).hi == (7, 7, 7)
        assert h.pec_domain(0, PatchType.COARSE).hi == (7, 7, 7)

    def test_node_positions(self, make_hierarchy):
        h = make_hierarchy(ndim=1, n=4)
        np.testing.assert_allclose(h.node_positions(0, 0), [0.0, 0.25, 0.5, 0.75, 1.0])

    def test_from_config(self, small_config):
        from yeepic.mesh.hierarchy import MeshHierarchy

        h = MeshHierarchy.from_config(small_config)
        assert h.ndim == 2
        assert h.periodic == (False, True)
        assert not h.is_rz
