"""
tests/test_cpu_kernels.py
=========================
Tests for the phase kernels (_cpu_kernels.py).

These tests verify that the kernel module exposes the expected njit
dispatchers and exercise the kernels that can be checked in isolation:
sort, direct solve, leaf solve and a single merge.  The full pipeline is
tested through stedc() in test_solver.py.
"""

import inspect

import numpy as np
import pytest

from tridc._arena import MergeArena
from tridc._backend import import_cpu_kernels
from tridc._utils import orthogonality_error, tridiagonal_to_dense

KERNELS_AVAILABLE, _ = import_cpu_kernels()

# Skip all tests if kernels not available
pytestmark = pytest.mark.skipif(
    not KERNELS_AVAILABLE, reason="CPU kernels module not available"
)

if KERNELS_AVAILABLE:
    from tridc._cpu_kernels import (
        _direct_njit,
        _divide_njit,
        _fold_into,
        _leaf_solve_njit,
        _merge_njit,
        _scale_njit,
        _sort_njit,
        _split_njit,
        _unscale_njit,
    )

EPS = np.finfo(np.float64).eps


class TestKernelImports:
    """Test that kernel imports work correctly."""

    def test_all_kernels_registered(self):
        _, kernels = import_cpu_kernels()
        assert set(kernels) == {
            "split", "scale", "divide", "leaf", "merge", "unscale", "sort", "direct",
        }

    def test_kernels_have_python_reference(self):
        """Every njit dispatcher keeps its interpreted py_func."""
        for kernel in (
            _split_njit,
            _scale_njit,
            _divide_njit,
            _leaf_solve_njit,
            _merge_njit,
            _unscale_njit,
            _sort_njit,
            _direct_njit,
        ):
            assert callable(kernel.py_func)

    def test_merge_kernel_parameters(self):
        params = list(inspect.signature(_merge_njit.py_func).parameters)
        assert params[:5] == ["level", "D", "E", "Q", "eps"]
        assert params[-1] == "work_info"

    def test_module_has_no_unexpected_exports(self):
        import tridc._cpu_kernels as _cpu_kernels

        public_symbols = [n for n in dir(_cpu_kernels) if not n.startswith("_")]
        assert len(public_symbols) < 10


class TestSortKernel:
    def test_sorts_values_and_columns(self):
        D = np.array([[3.0, 1.0, 2.0]])
        C = np.array([[[1.0, 2.0, 3.0], [4.0, 5.0, 6.0], [7.0, 8.0, 9.0]]])
        _sort_njit(D, C, True)
        np.testing.assert_array_equal(D, [[1.0, 2.0, 3.0]])
        np.testing.assert_array_equal(
            C[0], [[2.0, 3.0, 1.0], [5.0, 6.0, 4.0], [8.0, 9.0, 7.0]]
        )

    def test_idempotent(self):
        rng = np.random.default_rng(0)
        D = rng.standard_normal((3, 12))
        C = rng.standard_normal((3, 12, 12))
        _sort_njit(D, C, True)
        D1, C1 = D.copy(), C.copy()
        _sort_njit(D, C, True)
        np.testing.assert_array_equal(D, D1)
        np.testing.assert_array_equal(C, C1)

    def test_equal_values_keep_columns(self):
        D = np.full((1, 4), 4.0)
        C = np.eye(4)[None]
        _sort_njit(D, C, True)
        np.testing.assert_array_equal(C[0], np.eye(4))

    def test_values_only(self):
        D = np.array([[2.0, -1.0, 0.5]])
        _sort_njit(D, np.zeros((1, 0, 0)), False)
        np.testing.assert_array_equal(D, [[-1.0, 0.5, 2.0]])

    def test_complex_columns(self):
        D = np.array([[1.0, 0.0]])
        C = np.array([[[1j, 2.0], [3.0, 4j]]])
        _sort_njit(D, C, True)
        np.testing.assert_array_equal(C[0], [[2.0, 1j], [4j, 3.0]])


class TestDirectKernel:
    def test_batch_matches_dense(self):
        rng = np.random.default_rng(1)
        D = rng.standard_normal((4, 9))
        E = rng.standard_normal((4, 8))
        T = tridiagonal_to_dense(D, E)
        C = np.broadcast_to(np.eye(9), (4, 9, 9)).copy()
        info = np.zeros(4, dtype=np.int64)
        _direct_njit(D, E, C, True, info)
        np.testing.assert_array_equal(info, 0)
        for b in range(4):
            np.testing.assert_allclose(
                np.sort(D[b]), np.linalg.eigvalsh(T[b]), rtol=0, atol=1e-12
            )
            np.testing.assert_allclose(T[b] @ C[b], C[b] * D[b], rtol=0, atol=1e-12)

    def test_does_not_modify_offdiagonal(self):
        D = np.array([[1.0, 2.0, 3.0]])
        E = np.array([[0.5, 0.5]])
        _direct_njit(D, E, np.zeros((1, 0, 0)), False, np.zeros(1, dtype=np.int64))
        np.testing.assert_array_equal(E, [[0.5, 0.5]])


class TestScaleKernels:
    def _arena(self):
        # two split-blocks of instance 0: rows 0-1 and rows 2-4
        return MergeArena([0, 0], [0, 2], [2, 3])

    def test_blocks_scaled_to_unit_norm(self):
        D = np.array([[4.0, -8.0, 2.0, 1.0, 0.5]])
        E = np.array([[2.0, 0.0, 1.0, 0.25]])
        arena = self._arena()
        tree_scale = np.zeros(2)
        _scale_njit(D, E, arena.tree_instance, arena.tree_start, arena.tree_size, tree_scale)
        np.testing.assert_array_equal(tree_scale, [8.0, 2.0])
        np.testing.assert_array_equal(D, [[0.5, -1.0, 1.0, 0.5, 0.25]])
        # the coupling between the blocks is not part of either block
        np.testing.assert_array_equal(E, [[0.25, 0.0, 0.5, 0.125]])

    def test_unscale_restores_values(self):
        D = np.array([[4.0, -8.0, 2.0, 1.0, 0.5]])
        E = np.array([[2.0, 0.0, 1.0, 0.25]])
        arena = self._arena()
        tree_scale = np.zeros(2)
        _scale_njit(D, E, arena.tree_instance, arena.tree_start, arena.tree_size, tree_scale)
        _unscale_njit(D, arena.tree_instance, arena.tree_start, arena.tree_size, tree_scale)
        np.testing.assert_array_equal(D, [[4.0, -8.0, 2.0, 1.0, 0.5]])

    def test_zero_block_keeps_unit_scale(self):
        D = np.zeros((1, 3))
        E = np.zeros((1, 2))
        tree_scale = np.zeros(1)
        _scale_njit(D, E, np.array([0]), np.array([0]), np.array([3]), tree_scale)
        np.testing.assert_array_equal(tree_scale, [1.0])
        np.testing.assert_array_equal(D, np.zeros((1, 3)))


class TestFoldInto:
    def test_near_equal_values_fold(self):
        """A gap above tol still folds when the leftover coupling is below it."""
        tol = 8.0 * EPS
        Db = np.array([1.0, 1.0 + 16.0 * EPS, 5.0])
        Qb = np.eye(3)
        z = np.array([0.6, 0.8, 0.1])
        T = np.diag(Db) + np.outer(z, z)
        assert _fold_into(Db, Qb, z, 0, 0, 1, tol)
        assert z[1] == 0.0
        assert abs(z[0] - 1.0) < 1e-15
        assert orthogonality_error(Qb) < 1e-15
        # the rotated system equals T up to the neglected coupling
        rotated = Qb.T @ T @ Qb
        np.testing.assert_allclose(
            rotated, np.diag(Db) + np.outer(z, z), rtol=0, atol=tol + 1e-14
        )

    def test_distant_values_do_not_fold(self):
        Db = np.array([1.0, 1.1])
        Qb = np.eye(2)
        z = np.array([0.6, 0.8])
        assert not _fold_into(Db, Qb, z, 0, 0, 1, 8.0 * EPS)
        np.testing.assert_array_equal(Db, [1.0, 1.1])
        np.testing.assert_array_equal(z, [0.6, 0.8])
        np.testing.assert_array_equal(Qb, np.eye(2))

    def test_exact_duplicates_keep_values(self):
        Db = np.array([2.0, 2.0])
        Qb = np.eye(2)
        z = np.array([0.3, 0.4])
        assert _fold_into(Db, Qb, z, 0, 0, 1, 8.0 * EPS)
        np.testing.assert_array_equal(Db, [2.0, 2.0])
        assert z[1] == 0.0


class TestLeafAndMerge:
    def _run(self, d, e):
        D = np.array([d], dtype=np.float64)
        E = np.array([e], dtype=np.float64)
        n = D.shape[1]
        arena = MergeArena([0], [0], [n])
        _divide_njit(
            D, E, arena.tree_instance, arena.tree_start, arena.tree_size,
            arena.tree_levels, arena.tree_offsets, arena.node_offset, arena.node_size,
        )
        Q = np.eye(n)[None].copy()
        leaf_tree, leaf_id = arena.leaves()
        leaf_info = np.zeros(len(leaf_tree), dtype=np.int64)
        _leaf_solve_njit(
            D, E, Q, arena.tree_instance, arena.tree_size, arena.tree_offsets,
            leaf_tree, leaf_id, arena.node_offset, arena.node_size, leaf_info,
        )
        infos = [leaf_info]
        for level in range(arena.max_levels):
            work_tree, work_id = arena.work_items(level)
            work_info = np.zeros(len(work_tree), dtype=np.int64)
            _merge_njit(
                level, D, E, Q, EPS, arena.tree_instance, arena.tree_levels,
                arena.tree_offsets, work_tree, work_id, arena.node_offset,
                arena.node_size, work_info,
            )
            infos.append(work_info)
        return D[0], Q[0], np.concatenate(infos)

    def test_single_merge(self):
        d = [1.0, 2.0, 3.0, 4.0]
        e = [0.5, 0.7, 0.3]
        w, Q, info = self._run(d, e)
        T = tridiagonal_to_dense(d, e)
        assert not info.any()
        np.testing.assert_allclose(np.sort(w), np.linalg.eigvalsh(T), rtol=0, atol=1e-12)
        np.testing.assert_allclose(T @ Q, Q * w, rtol=0, atol=1e-12)
        assert orthogonality_error(Q) < 1e-12

    def test_negative_coupling(self):
        """rho < 0 is solved through the sign-flipped system."""
        d = [1.0, 2.0, 3.0, 4.0]
        e = [0.5, -0.7, 0.3]
        w, Q, info = self._run(d, e)
        T = tridiagonal_to_dense(d, e)
        assert not info.any()
        np.testing.assert_allclose(np.sort(w), np.linalg.eigvalsh(T), rtol=0, atol=1e-12)
        np.testing.assert_allclose(T @ Q, Q * w, rtol=0, atol=1e-12)

    def test_two_levels(self):
        rng = np.random.default_rng(7)
        d = rng.standard_normal(20)
        e = rng.standard_normal(19)
        w, Q, info = self._run(d, e)
        T = tridiagonal_to_dense(d, e)
        assert not info.any()
        np.testing.assert_allclose(np.sort(w), np.linalg.eigvalsh(T), rtol=0, atol=1e-11)
        np.testing.assert_allclose(T @ Q, Q * w, rtol=0, atol=1e-11)
        assert orthogonality_error(Q) < 1e-11
