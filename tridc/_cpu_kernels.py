"""
_cpu_kernels.py
===============
Batched divide-and-conquer phase kernels using Numba.

This module contains ONLY numba-accelerated code and imports nothing from
the package except other numba-compiled helpers.  Each kernel runs one phase
of the solver over a whole batch; the outer loop is a ``prange`` over
independent units of work and every unit writes to a disjoint slice of the
outputs.

Exported Functions
------------------
_split_njit : njit function
    Split every instance into independent split-blocks.
_scale_njit : njit function
    Scale every split-block to unit max-norm.
_divide_njit : njit function
    Halve every split-block into its merge tree and tear the leaves apart.
_leaf_solve_njit : njit function
    Direct QL on every leaf, eigenvectors into the accumulator.
_merge_njit : njit function
    One level of rank-one merges: deflation, secular solves, eigenvectors.
_unscale_njit : njit function
    Undo the block scaling on the eigenvalues.
_sort_njit : njit function
    Selection-sort eigenvalues ascending, permuting eigenvector columns.
_direct_njit : njit function
    Direct QL on whole instances (small or eigenvalue-only problems).

Notes
-----
- parallel=True kernels iterate with prange; cache=True persists the
  compiled binary to disk for faster subsequent runs
- Status counts go to per-unit slots (one per leaf or merge node) and are
  summed by the caller, so there are no shared counters
- Row/column conventions: ``Q[b, row, col]``; column ``j`` of the
  accumulator always belongs to diagonal position ``j``
"""

import numpy as np
from numba import njit, prange

from tridc._arena import level_base
from tridc._direct import givens, tridiagonal_ql
from tridc._secular import solve_interior, solve_last


_SQRT2 = np.sqrt(2.0)


# ======================================================================== #
# Split and divide                                                         #
# ======================================================================== #


@njit(parallel=True, cache=True)
def _split_njit(D, E, eps, splits, nsplit):
    """
    Find independent split-blocks.

    ``E[b, j]`` is negligible when
    ``|E[b, j]| < eps * sqrt|D[b, j]| * sqrt|D[b, j+1]|``.

    Parameters
    ----------
    D : float64[batch, n]
    E : float64[batch, n-1]
    eps : float
        Machine epsilon.
    splits : int64[batch, n+1]
        Output.  ``splits[b, 0..nsplit[b]]`` are the block boundaries,
        starting at 0 and ending at n.
    nsplit : int64[batch]
        Output.  Number of split-blocks per instance.
    """
    batch, n = D.shape
    for b in prange(batch):
        nb = 0
        splits[b, 0] = 0
        for j in range(n - 1):
            tol = eps * np.sqrt(abs(D[b, j])) * np.sqrt(abs(D[b, j + 1]))
            if abs(E[b, j]) < tol:
                nb += 1
                splits[b, nb] = j + 1
        nb += 1
        splits[b, nb] = n
        nsplit[b] = nb


@njit(parallel=True, cache=True)
def _scale_njit(D, E, tree_instance, tree_start, tree_size, tree_scale):
    """
    Divide every split-block by its largest ``|D|`` or ``|E|`` entry.

    The merge deflation tolerance and the secular iteration assume a block
    of norm about one.  A block of zeros keeps scale 1.

    Parameters
    ----------
    D : float64[batch, n]
        Modified in place.
    E : float64[batch, n-1]
        Modified in place inside each block; the negligible entries between
        blocks are left alone.
    tree_instance, tree_start, tree_size : int64[n_trees]
        Tree records from MergeArena.
    tree_scale : float64[n_trees]
        Output.  The divisor applied to each block.
    """
    for t in prange(tree_size.shape[0]):
        b = tree_instance[t]
        p = tree_start[t]
        s = tree_size[t]
        anorm = 0.0
        for j in range(p, p + s):
            anorm = max(anorm, abs(D[b, j]))
        for j in range(p, p + s - 1):
            anorm = max(anorm, abs(E[b, j]))
        if anorm == 0.0:
            anorm = 1.0
        tree_scale[t] = anorm
        for j in range(p, p + s):
            D[b, j] /= anorm
        for j in range(p, p + s - 1):
            E[b, j] /= anorm


@njit(parallel=True, cache=True)
def _unscale_njit(D, tree_instance, tree_start, tree_size, tree_scale):
    """Multiply each split-block's eigenvalues by its ``tree_scale``."""
    for t in prange(tree_size.shape[0]):
        b = tree_instance[t]
        p = tree_start[t]
        for j in range(p, p + tree_size[t]):
            D[b, j] *= tree_scale[t]


@njit(parallel=True, cache=True)
def _divide_njit(D, E,
                 tree_instance, tree_start, tree_size, tree_levels, tree_offsets,
                 node_offset, node_size):
    """
    Fill the merge-tree arena and decouple the leaves.

    Sizes are assigned top-down (a range of odd size gives its larger half
    to the left child), offsets bottom-up.  At every internal leaf boundary
    ``p`` the coupling ``E[b, p-1]`` is subtracted from ``D[b, p-1]`` and
    ``D[b, p]``; the merge phase adds it back as a rank-one update.

    Parameters
    ----------
    D : float64[batch, n]
        Modified in place.
    E : float64[batch, n-1]
    tree_* : int64[n_trees]
        Tree records from MergeArena.
    tree_offsets : int64[n_trees + 1]
    node_offset, node_size : int64[total_nodes]
        Output arena records.
    """
    for t in prange(tree_size.shape[0]):
        b = tree_instance[t]
        L = tree_levels[t]
        base = tree_offsets[t]

        node_size[base + level_base(L, L)] = tree_size[t]
        for level in range(L, 0, -1):
            parent0 = base + level_base(L, level)
            child0 = base + level_base(L, level - 1)
            for m in range(1 << (L - level)):
                size = node_size[parent0 + m]
                half = size // 2
                node_size[child0 + 2 * m] = size - half
                node_size[child0 + 2 * m + 1] = half

        p = tree_start[t]
        for i in range(1 << L):
            node_offset[base + i] = p
            if i > 0:
                coupling = E[b, p - 1]
                D[b, p - 1] -= coupling
                D[b, p] -= coupling
            p += node_size[base + i]

        for level in range(1, L + 1):
            parent0 = base + level_base(L, level)
            child0 = base + level_base(L, level - 1)
            for m in range(1 << (L - level)):
                node_offset[parent0 + m] = node_offset[child0 + 2 * m]


# ======================================================================== #
# Leaf and direct solves                                                   #
# ======================================================================== #


@njit(parallel=True, cache=True)
def _leaf_solve_njit(D, E, Q,
                     tree_instance, tree_size, tree_offsets,
                     leaf_tree, leaf_id,
                     node_offset, node_size,
                     leaf_info):
    """
    Solve every leaf with the direct QL solver.

    The leaf's eigenvectors are accumulated into the diagonal block
    ``Q[b, p:p+s, p:p+s]``, which must hold the identity on entry.  The
    sweep budget is 30 times the size of the enclosing split-block.

    Parameters
    ----------
    D : float64[batch, n]
        Leaf diagonals in, leaf eigenvalues out.
    E : float64[batch, n-1]
        Read only.
    Q : float64[batch, n, n]
        Eigenvector accumulator.
    leaf_tree, leaf_id : int64[n_leaves]
        Work list from MergeArena.leaves().
    leaf_info : int64[n_leaves]
        Output status per leaf.
    """
    for i in prange(leaf_tree.shape[0]):
        t = leaf_tree[i]
        b = tree_instance[t]
        node = tree_offsets[t] + leaf_id[i]
        p = node_offset[node]
        s = node_size[node]

        work = np.zeros(s)
        for j in range(s - 1):
            work[j] = E[b, p + j]
        leaf_info[i] = tridiagonal_ql(D[b, p:p + s], work, Q[b, p:p + s, p:p + s],
                                      True, 30 * tree_size[t])


@njit(parallel=True, cache=True)
def _direct_njit(D, E, C, want_vectors, info):
    """
    Solve whole instances with the direct QL solver.

    Parameters
    ----------
    D : float64[batch, n]
        Diagonal in, unsorted eigenvalues out.
    E : float64[batch, n-1]
        Read only.
    C : float64[batch, n, n] or complex128[batch, n, n]
        Basis whose columns are rotated along (identity for the
        eigenvectors of T).  Ignored unless ``want_vectors``.
    want_vectors : bool
    info : int64[batch]
        Output status per instance.
    """
    batch, n = D.shape
    for b in prange(batch):
        work = np.zeros(n)
        for j in range(n - 1):
            work[j] = E[b, j]
        info[b] = tridiagonal_ql(D[b], work, C[b], want_vectors, 30 * n)


# ======================================================================== #
# Merge                                                                    #
# ======================================================================== #


@njit(cache=True)
def _fold_into(Db, Qb, z, start, j, i, tol):
    """
    Fold z[i] into z[j] with a Givens rotation of columns j and i.

    The rotation leaves a coupling ``(d_i - d_j)*c*s`` between the two
    positions.  The fold only happens when that coupling is at most ``tol``;
    the two diagonal values then become the rotated ones.

    Returns
    -------
    bool
        Whether entry i was folded.
    """
    c, s, r = givens(z[j], z[i])
    cj = start + j
    ci = start + i
    dj = Db[cj]
    di = Db[ci]
    if abs((di - dj) * c * s) > tol:
        return False
    if di != dj:
        Db[cj] = dj * c * c + di * s * s
        Db[ci] = dj * s * s + di * c * c
    z[j] = r
    z[i] = 0.0
    for row in range(Qb.shape[0]):
        vj = Qb[row, cj]
        vi = Qb[row, ci]
        Qb[row, cj] = vj * c - vi * s
        Qb[row, ci] = vj * s + vi * c
    return True


@njit(cache=True)
def _deflate(b, D, Q, z, active, rho, tol, start, level, m, L, base,
             node_offset, node_size):
    """
    Mark negligible and duplicate entries of one merge node.

    First every leaf is scanned on its own: an entry with ``|rho*z| <= tol``
    is dropped, and an entry that ``_fold_into`` can fold into an earlier
    active entry of the same leaf is rotated into it.  Then, level by level,
    the active entries of each later sibling group are tried against the
    earlier group and folded into the first that accepts them.  Exactly
    repeated values always fold.
    """
    first_leaf = m << (level + 1)
    for li in range(1 << (level + 1)):
        leaf = base + first_leaf + li
        lo = node_offset[leaf] - start
        for i in range(lo, lo + node_size[leaf]):
            if abs(rho * z[i]) <= tol:
                continue
            active[i] = True
            for j in range(lo, i):
                if active[j] and _fold_into(D[b], Q[b], z, start, j, i, tol):
                    active[i] = False
                    break

    for sub in range(level + 1):
        first = m << (level - sub)
        for q in range(1 << (level - sub)):
            earlier = base + level_base(L, sub) + 2 * (first + q)
            later = earlier + 1
            e0 = node_offset[earlier] - start
            en = node_size[earlier]
            l0 = node_offset[later] - start
            for i in range(l0, l0 + node_size[later]):
                if not active[i]:
                    continue
                for j in range(e0, e0 + en):
                    if active[j] and _fold_into(D[b], Q[b], z, start, j, i, tol):
                        active[i] = False
                        break


@njit(cache=True, error_model="numpy")
def _secular_update(b, D, Q, eps, start, size, z, active, rho):
    """
    Solve the deflated rank-one system of one merge node.

    The active poles (negated when ``rho < 0``) are compacted and sorted
    with an odd-even transposition sort that carries their positions.  Each
    root is found on its own copy of the poles, z is rescaled from the roots
    (Loewner formula), and the eigenvectors ``v = z / (d - lambda)`` are
    mapped through the node's accumulator block.  Eigenvalues and columns
    are written back at the active positions only.

    Returns
    -------
    int
        Number of roots that did not converge.
    """
    per = np.empty(size, dtype=np.int64)
    poles = np.empty(size)
    zz = np.empty(size)
    dd = 0
    for i in range(size):
        if active[i]:
            per[dd] = i
            poles[dd] = -D[b, start + i] if rho < 0.0 else D[b, start + i]
            zz[dd] = z[i]
            dd += 1
    if dd == 0:
        return 0

    for sweep in range(dd):
        for j in range(sweep % 2, dd - 1, 2):
            if poles[j] > poles[j + 1]:
                tmp = poles[j]
                poles[j] = poles[j + 1]
                poles[j + 1] = tmp
                tmp = zz[j]
                zz[j] = zz[j + 1]
                zz[j + 1] = tmp
                it = per[j]
                per[j] = per[j + 1]
                per[j + 1] = it

    # row r of diffs ends up as poles - root_r
    arho = abs(rho)
    zs = zz[:dd]
    roots = np.empty(dd)
    diffs = np.empty((dd, dd))
    failures = 0
    for r in range(dd):
        for i in range(dd):
            diffs[r, i] = poles[i]
        if dd == 1:
            roots[r] = poles[0] + arho * zs[0] * zs[0]
            diffs[r, 0] = -arho * zs[0] * zs[0]
        elif r == dd - 1:
            root, flag = solve_last(diffs[r], zs, arho, eps)
            roots[r] = root
            failures += flag
        else:
            root, flag = solve_interior(diffs[r], zs, arho, r, eps)
            roots[r] = root
            failures += flag

    for i in range(dd):
        valf = 1.0
        for r in range(dd):
            if r == i:
                valf *= diffs[r, i]
            else:
                valf *= diffs[r, i] / (poles[i] - poles[r])
        mag = np.sqrt(abs(valf))
        zs[i] = -mag if zs[i] < 0.0 else mag

    vecs = np.empty((size, dd))
    v = np.empty(dd)
    for r in range(dd):
        nrm = 0.0
        for i in range(dd):
            v[i] = zs[i] / diffs[r, i]
            nrm += v[i] * v[i]
        nrm = np.sqrt(nrm)
        for row in range(size):
            acc = 0.0
            for i in range(dd):
                acc += Q[b, start + row, start + per[i]] * v[i]
            vecs[row, r] = acc / nrm

    for r in range(dd):
        col = start + per[r]
        D[b, col] = -roots[r] if rho < 0.0 else roots[r]
        for row in range(size):
            Q[b, start + row, col] = vecs[row, r]

    return failures


@njit(parallel=True, cache=True, error_model="numpy")
def _merge_njit(level, D, E, Q, eps,
                tree_instance, tree_levels, tree_offsets,
                work_tree, work_id,
                node_offset, node_size,
                work_info):
    """
    Merge every sibling pair of ``level`` into its parent.

    Each merge node is one prange iteration over a disjoint row/column
    range of the accumulator:

    1. rank-one update ``rho = 2*E[junction-1]`` with ``z`` taken from the
       accumulator rows flanking the junction, scaled by ``1/sqrt(2)``
    2. deflation tolerance ``8*eps*max(max|D|, max|z|)`` over the node
    3. deflation (``_deflate``)
    4. secular solve and eigenvector update (``_secular_update``)

    Parameters
    ----------
    level : int
        Level of the children being merged.
    D : float64[batch, n]
    E : float64[batch, n-1]
    Q : float64[batch, n, n]
        Accumulator, updated in place.
    eps : float
    tree_instance, tree_levels, tree_offsets : int64 arrays
        Tree records from MergeArena.
    work_tree, work_id : int64[n_work]
        Work list from MergeArena.work_items(level).
    node_offset, node_size : int64[total_nodes]
    work_info : int64[n_work]
        Output.  Number of secular roots that did not converge.
    """
    for w in prange(work_tree.shape[0]):
        t = work_tree[w]
        b = tree_instance[t]
        L = tree_levels[t]
        base = tree_offsets[t]
        m = work_id[w]

        node = base + level_base(L, level + 1) + m
        right = base + level_base(L, level) + 2 * m + 1
        start = node_offset[node]
        size = node_size[node]
        junction = node_offset[right]
        rho = 2.0 * E[b, junction - 1]

        z = np.empty(size)
        split = junction - start
        for j in range(split):
            z[j] = Q[b, junction - 1, start + j] / _SQRT2
        for j in range(split, size):
            z[j] = Q[b, junction, start + j] / _SQRT2

        maxd = 0.0
        maxz = 0.0
        for j in range(size):
            maxd = max(maxd, abs(D[b, start + j]))
            maxz = max(maxz, abs(z[j]))
        tol = 8.0 * eps * max(maxd, maxz)

        active = np.zeros(size, dtype=np.bool_)
        _deflate(b, D, Q, z, active, rho, tol, start, level, m, L, base,
                 node_offset, node_size)
        work_info[w] = _secular_update(b, D, Q, eps, start, size, z, active, rho)


# ======================================================================== #
# Sort                                                                     #
# ======================================================================== #


@njit(parallel=True, cache=True)
def _sort_njit(D, C, want_vectors):
    """
    Selection-sort each instance's eigenvalues ascending.

    Columns of ``C[b]`` are swapped in lockstep when ``want_vectors``.
    Already sorted input is left untouched.
    """
    batch, n = D.shape
    for b in prange(batch):
        for ii in range(1, n):
            l = ii - 1
            m = l
            p = D[b, l]
            for j in range(ii, n):
                if D[b, j] < p:
                    m = j
                    p = D[b, j]
            if m != l:
                D[b, m] = D[b, l]
                D[b, l] = p
                if want_vectors:
                    for row in range(n):
                        tmp = C[b, row, l]
                        C[b, row, l] = C[b, row, m]
                        C[b, row, m] = tmp
