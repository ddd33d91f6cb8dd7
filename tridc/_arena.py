"""
_arena.py
=========
Static merge-tree layout for the divide-and-conquer phases.

Every split-block of every batch instance becomes one *tree*.  A tree with
``L`` levels has ``2**L`` leaves and ``2**(L+1) - 1`` nodes, stored level by
level in a flat arena, leaves first:

    level 0 (leaves) : 2**L nodes
    level 1          : 2**(L-1) nodes
    ...
    level L (root)   : 1 node

Node ``m`` on level ``l`` has children ``2m`` and ``2m+1`` on level ``l-1``.
For each node the arena records the absolute row offset and the size of the
index range it covers.  All trees are concatenated into flat buffers that are
addressed through ``tree_offsets`` (one entry per tree plus a sentinel).

Tree shapes depend only on split-block sizes, so the arena is allocated once
after the split phase.  The divide kernel fills in the node records.
"""

import logging
from typing import Tuple

import numpy as np
from numba import njit


logger = logging.getLogger(__name__)


MAX_LEAVES = 256

# Upper block sizes for each entry of _LEVELS.  The table keeps every leaf
# non-empty and the leaf count at or below MAX_LEAVES.
_SIZE_LIMITS = np.array([2, 4, 32, 232, 295, 1946], dtype=np.int64)
_LEVELS = np.array([0, 1, 2, 4, 5, 7, 8], dtype=np.int64)


def num_levels(n: int) -> int:
    """
    Number of times a block of size ``n`` is halved by the divide phase.

    Parameters
    ----------
    n : int
        Split-block size.

    Returns
    -------
    int
        Level count; the block becomes ``2**levels`` leaves.

    Examples
    --------
    >>> [num_levels(n) for n in (1, 2, 3, 16, 100, 250, 1000, 5000)]
    [0, 0, 1, 2, 4, 5, 7, 8]
    """
    return int(_LEVELS[np.searchsorted(_SIZE_LIMITS, n, side="left")])


def levels_for_sizes(sizes: np.ndarray) -> np.ndarray:
    """Vectorised :func:`num_levels`."""
    return _LEVELS[np.searchsorted(_SIZE_LIMITS, sizes, side="left")]


@njit(cache=True)
def level_base(levels, level):
    """Index of the first node of ``level`` inside a tree with ``levels``."""
    return (1 << (levels + 1)) - (1 << (levels + 1 - level))


class MergeArena:
    """
    Flat (offset, size) records for every node of every merge tree.

    Attributes
    ----------
    tree_instance : int64[n_trees]
        Batch instance owning each tree.
    tree_start, tree_size : int64[n_trees]
        Row range ``[start, start + size)`` of the split-block.
    tree_levels : int64[n_trees]
        Levels of each tree.
    tree_offsets : int64[n_trees + 1]
        CSR offsets of each tree's nodes in the node buffers.
    node_offset, node_size : int64[total_nodes]
        Row range of every node.  Filled by the divide kernel.
    """

    def __init__(self, tree_instance, tree_start, tree_size):
        self.tree_instance = np.asarray(tree_instance, dtype=np.int64)
        self.tree_start = np.asarray(tree_start, dtype=np.int64)
        self.tree_size = np.asarray(tree_size, dtype=np.int64)
        self.tree_levels = levels_for_sizes(self.tree_size).astype(np.int64)

        n_nodes = (np.int64(1) << (self.tree_levels + 1)) - 1
        self.tree_offsets = np.zeros(len(self.tree_size) + 1, dtype=np.int64)
        np.cumsum(n_nodes, out=self.tree_offsets[1:])

        total = int(self.tree_offsets[-1])
        self.node_offset = np.zeros(total, dtype=np.int64)
        self.node_size = np.zeros(total, dtype=np.int64)
        logger.debug(
            "Merge arena: %d trees, %d nodes, max %d levels",
            self.n_trees,
            total,
            self.max_levels,
        )

    @classmethod
    def from_splits(cls, splits: np.ndarray, nsplit: np.ndarray) -> "MergeArena":
        """
        Build the arena from the output of the split kernel.

        Parameters
        ----------
        splits : int64[batch, n + 1]
            ``splits[b, :nsplit[b] + 1]`` are the split-block boundaries of
            instance ``b`` (starting with 0, ending with n).
        nsplit : int64[batch]
            Number of split-blocks per instance.
        """
        instance = np.repeat(np.arange(len(nsplit), dtype=np.int64), nsplit)
        bounds = [splits[b, : nsplit[b] + 1] for b in range(len(nsplit))]
        starts = np.concatenate([bd[:-1] for bd in bounds])
        sizes = np.concatenate([np.diff(bd) for bd in bounds])
        return cls(instance, starts, sizes)

    @property
    def n_trees(self) -> int:
        return len(self.tree_size)

    @property
    def max_levels(self) -> int:
        return int(self.tree_levels.max()) if self.n_trees else 0

    @property
    def n_leaves(self) -> int:
        return int((np.int64(1) << self.tree_levels).sum())

    @property
    def nbytes(self) -> int:
        return sum(
            arr.nbytes
            for arr in (
                self.tree_instance,
                self.tree_start,
                self.tree_size,
                self.tree_levels,
                self.tree_offsets,
                self.node_offset,
                self.node_size,
            )
        )

    def leaves(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Work list for the leaf solver.

        Returns
        -------
        (trees, ids) : tuple of int64 arrays
            Tree index and level-0 node id of every leaf.
        """
        counts = np.int64(1) << self.tree_levels
        return self._expand(np.arange(self.n_trees, dtype=np.int64), counts)

    def work_items(self, level: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Work list for merge level ``level``.

        A merge at level ``k`` joins sibling nodes of level ``k`` into their
        parent on level ``k + 1``.  Only trees with more than ``k`` levels
        take part.

        Returns
        -------
        (trees, ids) : tuple of int64 arrays
            Tree index and parent node id (on level ``level + 1``) of every
            merge node.
        """
        trees = np.flatnonzero(self.tree_levels > level).astype(np.int64)
        counts = np.int64(1) << (self.tree_levels[trees] - level - 1)
        return self._expand(trees, counts)

    @staticmethod
    def _expand(trees, counts):
        rep = np.repeat(trees, counts)
        first = np.repeat(np.cumsum(counts) - counts, counts)
        ids = np.arange(len(rep), dtype=np.int64) - first
        return rep, ids

    def leaf_ranges(self, tree: int) -> Tuple[np.ndarray, np.ndarray]:
        """Offsets and sizes of the leaves of one tree (after dividing)."""
        base = self.tree_offsets[tree]
        count = 1 << int(self.tree_levels[tree])
        return (
            self.node_offset[base : base + count].copy(),
            self.node_size[base : base + count].copy(),
        )
