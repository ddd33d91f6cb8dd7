"""
tests/test_arena.py
===================
Merge-tree arena layout (_arena.py) together with the split and divide
kernels that fill it.
"""

import numpy as np
import pytest

from tridc._arena import MAX_LEAVES, MergeArena, level_base, num_levels
from tridc._cpu_kernels import _divide_njit, _split_njit

EPS = np.finfo(np.float64).eps


def _divide(D, E, arena):
    _divide_njit(
        D,
        E,
        arena.tree_instance,
        arena.tree_start,
        arena.tree_size,
        arena.tree_levels,
        arena.tree_offsets,
        arena.node_offset,
        arena.node_size,
    )


class TestLevelTable:
    def test_table_boundaries(self):
        sizes = [1, 2, 3, 4, 5, 32, 33, 232, 233, 295, 296, 1946, 1947, 10**6]
        expected = [0, 0, 1, 1, 2, 2, 4, 4, 5, 5, 7, 7, 8, 8]
        assert [num_levels(n) for n in sizes] == expected

    @pytest.mark.parametrize("n", [3, 5, 33, 233, 296, 1947, 5000])
    def test_leaves_nonempty_and_capped(self, n):
        levels = num_levels(n)
        assert 2**levels <= MAX_LEAVES
        # the smallest leaf after repeated halving is floor(n / 2**levels)
        assert n // 2**levels >= 1

    def test_level_base(self):
        assert level_base(2, 0) == 0
        assert level_base(2, 1) == 4
        assert level_base(2, 2) == 6
        assert level_base(0, 0) == 0


class TestMergeArena:
    @pytest.fixture
    def arena(self):
        return MergeArena([0, 0, 1], [0, 5, 0], [5, 3, 40])

    def test_tree_levels(self, arena):
        np.testing.assert_array_equal(arena.tree_levels, [2, 1, 4])

    def test_tree_offsets(self, arena):
        np.testing.assert_array_equal(arena.tree_offsets, [0, 7, 10, 41])
        assert len(arena.node_offset) == 41

    def test_counts(self, arena):
        assert arena.n_trees == 3
        assert arena.max_levels == 4
        assert arena.n_leaves == 4 + 2 + 16
        assert arena.nbytes > 0

    def test_leaves_work_list(self, arena):
        trees, ids = arena.leaves()
        np.testing.assert_array_equal(trees, [0] * 4 + [1] * 2 + [2] * 16)
        np.testing.assert_array_equal(ids, list(range(4)) + [0, 1] + list(range(16)))

    def test_merge_work_lists(self, arena):
        trees, ids = arena.work_items(0)
        np.testing.assert_array_equal(trees, [0, 0, 1] + [2] * 8)
        np.testing.assert_array_equal(ids, [0, 1, 0] + list(range(8)))

        trees, ids = arena.work_items(1)
        np.testing.assert_array_equal(trees, [0] + [2] * 4)
        np.testing.assert_array_equal(ids, [0, 0, 1, 2, 3])

        trees, ids = arena.work_items(3)
        np.testing.assert_array_equal(trees, [2])
        np.testing.assert_array_equal(ids, [0])

    def test_from_splits(self):
        splits = np.array([[0, 2, 6, 0], [0, 3, 0, 0]], dtype=np.int64)
        nsplit = np.array([2, 1], dtype=np.int64)
        arena = MergeArena.from_splits(splits, nsplit)
        np.testing.assert_array_equal(arena.tree_instance, [0, 0, 1])
        np.testing.assert_array_equal(arena.tree_start, [0, 2, 0])
        np.testing.assert_array_equal(arena.tree_size, [2, 4, 3])


class TestSplitKernel:
    def test_zero_offdiagonals_split(self):
        D = np.array([[1.0, 2.0, 3.0, 4.0, 5.0]])
        E = np.array([[1.0, 0.0, 1.0, 0.0]])
        splits = np.zeros((1, 6), dtype=np.int64)
        nsplit = np.zeros(1, dtype=np.int64)
        _split_njit(D, E, EPS, splits, nsplit)
        assert nsplit[0] == 3
        np.testing.assert_array_equal(splits[0, :4], [0, 2, 4, 5])

    def test_tiny_offdiagonal_is_negligible(self):
        D = np.array([[1.0, 1.0, 1.0]])
        E = np.array([[1e-20, 0.5]])
        splits = np.zeros((1, 4), dtype=np.int64)
        nsplit = np.zeros(1, dtype=np.int64)
        _split_njit(D, E, EPS, splits, nsplit)
        np.testing.assert_array_equal(splits[0, : nsplit[0] + 1], [0, 1, 3])

    def test_no_split(self):
        D = np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]])
        E = np.array([[0.5, 0.5], [0.0, 0.0]])
        splits = np.zeros((2, 4), dtype=np.int64)
        nsplit = np.zeros(2, dtype=np.int64)
        _split_njit(D, E, EPS, splits, nsplit)
        # zero diagonals give a zero threshold, so nothing splits
        np.testing.assert_array_equal(nsplit, [1, 1])
        np.testing.assert_array_equal(splits[:, :2], [[0, 3], [0, 3]])


class TestDivideKernel:
    def test_even_halving_and_coupling(self):
        D = np.zeros((1, 10))
        E = np.arange(1.0, 10.0)[None, :]
        arena = MergeArena([0], [0], [10])
        _divide(D, E, arena)

        offsets, sizes = arena.leaf_ranges(0)
        np.testing.assert_array_equal(sizes, [3, 2, 3, 2])
        np.testing.assert_array_equal(offsets, [0, 3, 5, 8])
        np.testing.assert_array_equal(
            D[0], [0, 0, -3, -3, -5, -5, 0, -8, -8, 0]
        )

    def test_internal_nodes(self):
        D = np.zeros((1, 10))
        E = np.ones((1, 9))
        arena = MergeArena([0], [0], [10])
        _divide(D, E, arena)
        # level 1 then root
        np.testing.assert_array_equal(arena.node_offset[4:], [0, 5, 0])
        np.testing.assert_array_equal(arena.node_size[4:], [5, 5, 10])

    def test_larger_half_first(self):
        D = np.zeros((1, 7))
        E = np.ones((1, 6))
        arena = MergeArena([0], [0], [7])
        _divide(D, E, arena)
        _, sizes = arena.leaf_ranges(0)
        np.testing.assert_array_equal(sizes, [2, 2, 2, 1])

    def test_trees_respect_split_offsets(self):
        D = np.zeros((1, 9))
        E = np.ones((1, 8))
        arena = MergeArena([0, 0], [0, 4], [4, 5])
        _divide(D, E, arena)
        offsets0, sizes0 = arena.leaf_ranges(0)
        offsets1, sizes1 = arena.leaf_ranges(1)
        np.testing.assert_array_equal(offsets0, [0, 2])
        np.testing.assert_array_equal(sizes0, [2, 2])
        np.testing.assert_array_equal(offsets1, [4, 6, 7, 8])
        np.testing.assert_array_equal(sizes1, [2, 1, 1, 1])
        # the split boundary at 4 is never decoupled
        np.testing.assert_array_equal(D[0], [0, -1, -1, 0, 0, -1, -2, -2, -1])

    def test_single_leaf_tree_untouched(self):
        D = np.array([[2.0, 3.0]])
        E = np.array([[1.0]])
        arena = MergeArena([0], [0], [2])
        _divide(D, E, arena)
        np.testing.assert_array_equal(D, [[2.0, 3.0]])
        np.testing.assert_array_equal(arena.node_offset, [0])
        np.testing.assert_array_equal(arena.node_size, [2])
