"""
_solver.py
==========
Batched divide-and-conquer eigensolver for symmetric tridiagonal matrices.

Public API
----------
  stedc(evect, D, E, C=None, backend='best', min_dc_size=16) -> info
      In-place solver for one instance or a batch of instances.  D is
      overwritten with ascending eigenvalues and, for the eigenvector modes,
      C with the matching orthonormal eigenvectors as columns.

  TridiagonalBatch(d, e)
      Packed batch of tridiagonal matrices with non-mutating .eigh() and
      .eigh_range() methods.

  eigh_tridiagonal(d, e, eigvals_only=False, select='a', ...)
      Single-matrix convenience function.

Eigenvector modes
-----------------
  'none'         eigenvalues only (always the direct QL path)
  'tridiagonal'  eigenvectors of T itself; C is output only
  'original'     C holds a reduction basis (real or complex) on entry and
                 is overwritten with C @ Q, Q the eigenvectors of T

Phases
------
Problems with n >= min_dc_size and wanted eigenvectors run the phase
kernels in order, each a full barrier:

  split -> scale -> divide -> leaf solve -> merge level 0 .. L-1
        -> unscale -> sort

Every split-block is scaled to unit max-norm for the merges, so results do
not depend on the magnitude of T.

Status
------
``info[b]`` counts unconverged secular roots plus unconverged QL
off-diagonals of instance b.  The numerical core never raises; nonzero
info is reported through a consolidated WARNING log message.

Logging
-------
  logging.getLogger('tridc._solver')
      INFO level:    system and backend status on import, solve path per
                     call, split statistics, first compilation of a kernel.
      DEBUG level:   per-level merge progress.
      WARNING level: convergence failures, unavailable backend fallbacks,
                     large workspaces, numba performance warnings.
"""

import logging
import warnings
from collections import namedtuple
from typing import Optional, Tuple

import numpy as np

from tridc._arena import MergeArena
from tridc._backend import (
    check_numba_available,
    get_available_backends,
    get_best_backend,
    import_cpu_kernels,
    resolve_backend,
)
from tridc._context import get_backend_override
from tridc._logging import (
    compute_workspace_footprint,
    install_numba_warning_filter,
    log_backend_availability,
    log_convergence_failures,
    log_optimization_status,
    log_solve_path,
    log_split_statistics,
    log_workspace_footprint,
)
from tridc._utils import machine_epsilon, tridiagonal_to_dense


MIN_DC_SIZE = 16

EVECT_MODES = ("none", "tridiagonal", "original")
SELECT_MODES = ("a", "v", "i")


class ConvergenceWarning(RuntimeWarning):
    """Some eigenpairs did not converge to full precision."""


EighResult = namedtuple("EighResult", ["eigenvalues", "eigenvectors", "info"])
RangeResult = namedtuple(
    "RangeResult", ["nev", "eigenvalues", "eigenvectors", "info"]
)


_NUMBA_AVAILABLE = check_numba_available()
_cpu_import_ok, _KERNELS = import_cpu_kernels()
if not _cpu_import_ok:
    raise ImportError("tridc requires numba: pip install numba")

logger = logging.getLogger(__name__)

_BACKENDS_AVAILABLE = get_available_backends()

# Track first calls to kernels for compilation logging
_kernel_first_call = {name: True for name in _KERNELS}

log_optimization_status(_NUMBA_AVAILABLE)
log_backend_availability(_BACKENDS_AVAILABLE, _NUMBA_AVAILABLE)
install_numba_warning_filter(_NUMBA_AVAILABLE)


# ======================================================================== #
# Backend dispatch                                                         #
# ======================================================================== #


def _select_backend(backend: str) -> str:
    backend_override = get_backend_override()
    if backend_override is not None:
        backend = backend_override

    try:
        return resolve_backend(backend)
    except ValueError as e:
        # Backend not available, fall back to best available
        logger.warning(str(e))
        return get_best_backend()


def _kernel(name: str, backend: str):
    """The phase kernel ``name`` as run by ``backend``."""
    kernel = _KERNELS[name]
    if backend == "python":
        return kernel.py_func
    if _kernel_first_call.get(name, False):
        logger.info(f"  Compiling {name} kernel (cached for future calls)")
        _kernel_first_call[name] = False
    return kernel


# ======================================================================== #
# Input validation                                                         #
# ======================================================================== #


def _as_work_arrays(evect, D, E, C):
    """
    Validate the stedc arguments and build contiguous batched work copies.

    Returns
    -------
    (Dw, Ew, Cw) : float64[batch, n], float64[batch, n-1], array or None
    """
    if evect not in EVECT_MODES:
        raise ValueError(
            f"evect must be one of {', '.join(EVECT_MODES)}, got {evect!r}"
        )
    if not isinstance(D, np.ndarray) or not isinstance(E, np.ndarray):
        raise TypeError("D and E must be numpy arrays (they are written in place)")
    if not np.issubdtype(D.dtype, np.floating):
        raise TypeError(f"D must be a real floating array, got {D.dtype}")
    if D.ndim not in (1, 2):
        raise ValueError(f"D must have shape (n,) or (batch, n), got {D.shape}")
    if E.ndim != D.ndim:
        raise ValueError(f"E has {E.ndim} dimensions, D has {D.ndim}")

    Dw = np.array(D, dtype=np.float64, ndmin=2)
    batch, n = Dw.shape
    E2 = np.array(E, dtype=np.float64, ndmin=2)
    if E2.shape[0] != batch:
        raise ValueError(f"E batch size {E2.shape[0]} does not match D ({batch})")
    if n > 0 and E2.shape[1] not in (n - 1, n):
        raise ValueError(f"E must have length {n - 1} or {n}, got {E2.shape[1]}")
    Ew = np.ascontiguousarray(E2[:, : max(n - 1, 0)])

    if not (np.all(np.isfinite(Dw)) and np.all(np.isfinite(Ew))):
        raise ValueError("D and E must be finite")

    if evect == "none":
        return Dw, Ew, None

    if C is None:
        raise ValueError(f"C is required for evect={evect!r}")
    if not isinstance(C, np.ndarray):
        raise TypeError("C must be a numpy array (it is written in place)")
    if not (np.issubdtype(C.dtype, np.floating) or np.issubdtype(C.dtype, np.complexfloating)):
        raise TypeError(f"C must be a real floating or complex array, got {C.dtype}")
    expected = (n, n) if D.ndim == 1 else (batch, n, n)
    if C.shape != expected:
        raise ValueError(f"C must have shape {expected}, got {C.shape}")

    dtype = np.complex128 if np.iscomplexobj(C) else np.float64
    Cw = np.array(C, dtype=dtype).reshape(batch, n, n)
    if evect == "original" and not np.all(np.isfinite(Cw)):
        raise ValueError("C must be finite")
    return Dw, Ew, Cw


# ======================================================================== #
# Driver                                                                   #
# ======================================================================== #


def _divide_and_conquer(Dw, Ew, info, backend):
    """
    Run split, scale, divide, leaf solve, every merge level and unscale.

    Each split-block is scaled to unit max-norm before the divide and its
    eigenvalues are scaled back after the last merge.  Ew is overwritten.

    Returns
    -------
    np.ndarray
        float64[batch, n, n] eigenvectors of T (columns unsorted).
    """
    batch, n = Dw.shape
    eps = machine_epsilon()

    splits = np.zeros((batch, n + 1), dtype=np.int64)
    nsplit = np.zeros(batch, dtype=np.int64)
    _kernel("split", backend)(Dw, Ew, eps, splits, nsplit)

    arena = MergeArena.from_splits(splits, nsplit)
    log_split_statistics(batch, arena.n_trees, arena.max_levels, arena.n_leaves)
    log_workspace_footprint(compute_workspace_footprint(batch, n, arena.nbytes))

    tree_scale = np.ones(arena.n_trees)
    _kernel("scale", backend)(
        Dw, Ew, arena.tree_instance, arena.tree_start, arena.tree_size, tree_scale
    )
    _kernel("divide", backend)(
        Dw,
        Ew,
        arena.tree_instance,
        arena.tree_start,
        arena.tree_size,
        arena.tree_levels,
        arena.tree_offsets,
        arena.node_offset,
        arena.node_size,
    )

    Q = np.zeros((batch, n, n))
    idx = np.arange(n)
    Q[:, idx, idx] = 1.0

    leaf_tree, leaf_id = arena.leaves()
    leaf_info = np.zeros(len(leaf_tree), dtype=np.int64)
    _kernel("leaf", backend)(
        Dw,
        Ew,
        Q,
        arena.tree_instance,
        arena.tree_size,
        arena.tree_offsets,
        leaf_tree,
        leaf_id,
        arena.node_offset,
        arena.node_size,
        leaf_info,
    )
    np.add.at(info, arena.tree_instance[leaf_tree], leaf_info)

    merge = _kernel("merge", backend)
    for level in range(arena.max_levels):
        work_tree, work_id = arena.work_items(level)
        logger.debug("Merge level %d: %d merge nodes", level, len(work_tree))
        work_info = np.zeros(len(work_tree), dtype=np.int64)
        merge(
            level,
            Dw,
            Ew,
            Q,
            eps,
            arena.tree_instance,
            arena.tree_levels,
            arena.tree_offsets,
            work_tree,
            work_id,
            arena.node_offset,
            arena.node_size,
            work_info,
        )
        np.add.at(info, arena.tree_instance[work_tree], work_info)

    _kernel("unscale", backend)(
        Dw, arena.tree_instance, arena.tree_start, arena.tree_size, tree_scale
    )
    return Q


def stedc(
    evect: str,
    D: np.ndarray,
    E: np.ndarray,
    C: Optional[np.ndarray] = None,
    backend: str = "best",
    min_dc_size: int = MIN_DC_SIZE,
):
    """
    Eigen-decompose symmetric tridiagonal matrices in place.

    Parameters
    ----------
    evect : {'none', 'tridiagonal', 'original'}
        Eigenvector mode (see module docstring).
    D : np.ndarray, shape (n,) or (batch, n)
        Diagonals.  Overwritten with ascending eigenvalues.
    E : np.ndarray, shape (n-1,) or (batch, n-1)
        Off-diagonals.  A length-n E is accepted; its last entry is
        ignored.  Not modified.
    C : np.ndarray, shape (n, n) or (batch, n, n), optional
        Real or complex.  Required for the eigenvector modes; overwritten
        with the eigenvectors as columns.
    backend : str, default 'best'
        'python', 'cpu-parallel' or 'best'.  An active use_backend()
        context takes precedence.
    min_dc_size : int, default 16
        Problems smaller than this use the direct QL solver.

    Returns
    -------
    int or np.ndarray
        Status, 0 on success.  A scalar for 1-D input, int64[batch]
        otherwise.

    Raises
    ------
    ValueError
        Unknown evect, mismatched shapes, missing C, non-finite input.
    TypeError
        Non-array D, E or C, or C neither real floating nor complex.

    Examples
    --------
    >>> D = np.array([1.0, 3.0])
    >>> E = np.array([1.0])
    >>> C = np.empty((2, 2))
    >>> stedc('tridiagonal', D, E, C)
    0
    >>> D
    array([0.58578644, 3.41421356])
    """
    Dw, Ew, Cw = _as_work_arrays(evect, D, E, C)
    resolved_backend = _select_backend(backend)
    batch, n = Dw.shape
    want_vectors = evect != "none"
    info = np.zeros(batch, dtype=np.int64)
    # placeholder passed to the kernels when C is not touched
    no_vectors = np.zeros((batch, 0, 0))

    if batch == 0 or n <= 1:
        log_solve_path("quick", batch, n, evect, resolved_backend)
        if want_vectors:
            Cw[:] = 1.0
    elif not want_vectors or n < min_dc_size:
        log_solve_path("direct", batch, n, evect, resolved_backend)
        if evect == "tridiagonal":
            Cw[:] = np.eye(n)
        basis = Cw if want_vectors else no_vectors
        _kernel("direct", resolved_backend)(Dw, Ew, basis, want_vectors, info)
        _kernel("sort", resolved_backend)(Dw, basis, want_vectors)
    else:
        log_solve_path("divide-and-conquer", batch, n, evect, resolved_backend)
        Q = _divide_and_conquer(Dw, Ew, info, resolved_backend)
        if evect == "tridiagonal":
            Cw[:] = Q
        else:
            Cw = Cw @ Q
        _kernel("sort", resolved_backend)(Dw, Cw, True)

    D[...] = Dw.reshape(D.shape)
    if want_vectors:
        C[...] = Cw.reshape(C.shape)

    log_convergence_failures(np.flatnonzero(info).tolist(), batch)
    if D.ndim == 1:
        return int(info[0])
    return info


# ======================================================================== #
# Range selection                                                          #
# ======================================================================== #


def _check_select(select: str, select_range, n: int):
    if select not in SELECT_MODES:
        raise ValueError(
            f"select must be one of {', '.join(SELECT_MODES)}, got {select!r}"
        )
    if select == "a":
        return None
    if select_range is None or len(select_range) != 2:
        raise ValueError(f"select={select!r} requires select_range=(low, high)")
    lo, hi = select_range
    if select == "v":
        if not lo < hi:
            raise ValueError(f"select_range must satisfy vl < vu, got ({lo}, {hi})")
        return float(lo), float(hi)
    lo, hi = int(lo), int(hi)
    if not 0 <= lo <= hi < n:
        raise ValueError(
            f"select_range must satisfy 0 <= il <= iu < {n}, got ({lo}, {hi})"
        )
    return lo, hi


def select_eigenpairs(
    w: np.ndarray,
    V: Optional[np.ndarray],
    select: str = "a",
    select_range=None,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Compact a selected subset of eigenpairs to the front.

    Parameters
    ----------
    w : np.ndarray, shape (batch, n)
        Ascending eigenvalues.
    V : np.ndarray, shape (batch, n, n), or None
        Eigenvectors as columns.
    select : {'a', 'v', 'i'}
        All, half-open value interval ``(vl, vu]``, or 0-based inclusive
        index interval ``[il, iu]``.
    select_range : tuple, optional
        ``(vl, vu)`` or ``(il, iu)``.

    Returns
    -------
    nev : int64[batch]
        Number of selected eigenpairs per instance.
    w : float64[batch, n]
        Selected eigenvalues first, NaN after ``nev``.
    V : array or None
        Selected eigenvectors first, zero columns after ``nev``.

    Examples
    --------
    >>> w = np.array([[1.0, 2.0, 3.0, 4.0]])
    >>> nev, ws, _ = select_eigenpairs(w, None, 'v', (1.5, 3.0))
    >>> nev, ws
    (array([2]), array([[ 2.,  3., nan, nan]]))
    """
    batch, n = w.shape
    bounds = _check_select(select, select_range, n)

    if select == "a":
        mask = np.ones(w.shape, dtype=bool)
    elif select == "v":
        vl, vu = bounds
        mask = (w > vl) & (w <= vu)
    else:
        il, iu = bounds
        mask = np.zeros(w.shape, dtype=bool)
        mask[:, il : iu + 1] = True

    nev = mask.sum(axis=1).astype(np.int64)
    order = np.argsort(~mask, axis=1, kind="stable")
    keep = np.arange(n)[None, :] < nev[:, None]

    w_sel = np.take_along_axis(w, order, axis=1)
    w_sel[~keep] = np.nan
    if V is None:
        return nev, w_sel, None
    V_sel = np.take_along_axis(V, order[:, None, :], axis=2)
    V_sel *= keep[:, None, :]
    return nev, w_sel, V_sel


# ======================================================================== #
# Object and convenience interfaces                                        #
# ======================================================================== #


class TridiagonalBatch:
    """
    A batch of symmetric tridiagonal matrices of equal size.

    Parameters
    ----------
    d : array_like, shape (n,) or (batch, n)
        Diagonals.
    e : array_like, shape (n-1,) or (batch, n-1)
        Off-diagonals.  A length-n e is accepted; its last entry is ignored.

    Examples
    --------
    >>> tb = TridiagonalBatch([[2.0, 2.0, 2.0]], [[1.0, 1.0]])
    >>> tb.batch_size, tb.n
    (1, 3)
    >>> res = tb.eigh()
    >>> res.eigenvalues.round(6)
    array([[0.585786, 2.      , 3.414214]])
    """

    def __init__(self, d, e):
        d = np.array(d, dtype=np.float64, ndmin=1)
        e = np.array(e, dtype=np.float64, ndmin=1)
        if d.ndim not in (1, 2) or e.ndim != d.ndim:
            raise ValueError(
                f"d and e must both be 1-D or both 2-D, got {d.shape} and {e.shape}"
            )
        Dw, Ew, _ = _as_work_arrays("none", d, e, None)
        self.d = Dw
        self.e = Ew

    @property
    def n(self) -> int:
        return self.d.shape[1]

    @property
    def batch_size(self) -> int:
        return self.d.shape[0]

    def __len__(self) -> int:
        return self.batch_size

    def __repr__(self) -> str:
        return f"TridiagonalBatch(batch_size={self.batch_size}, n={self.n})"

    def to_dense(self) -> np.ndarray:
        """Dense matrices, shape (batch, n, n)."""
        return tridiagonal_to_dense(self.d, self.e)

    def eigh(
        self,
        evect: str = "tridiagonal",
        C: Optional[np.ndarray] = None,
        backend: str = "best",
    ) -> EighResult:
        """
        Eigen-decompose every matrix without touching the stored data.

        Parameters
        ----------
        evect : {'none', 'tridiagonal', 'original'}
        C : np.ndarray, shape (batch, n, n), optional
            Reduction basis for evect='original'.  Not modified.
        backend : str, default 'best'

        Returns
        -------
        EighResult
            ``(eigenvalues, eigenvectors, info)``; eigenvectors is None
            for evect='none'.
        """
        D = self.d.copy()
        E = self.e.copy()
        if evect == "tridiagonal":
            basis = np.zeros((self.batch_size, self.n, self.n))
        elif evect == "original":
            if C is None:
                raise ValueError("C is required for evect='original'")
            basis = np.array(C, copy=True)
        else:
            basis = None
        info = stedc(evect, D, E, basis, backend=backend)
        return EighResult(D, basis, info)

    def eigh_range(
        self,
        select: str = "a",
        select_range=None,
        evect: str = "tridiagonal",
        backend: str = "best",
    ) -> RangeResult:
        """
        Eigen-decompose and keep a value or index range of eigenpairs.

        See select_eigenpairs for the selection semantics.

        Returns
        -------
        RangeResult
            ``(nev, eigenvalues, eigenvectors, info)``.
        """
        _check_select(select, select_range, self.n)
        res = self.eigh(evect=evect, backend=backend)
        nev, w, V = select_eigenpairs(
            res.eigenvalues, res.eigenvectors, select, select_range
        )
        return RangeResult(nev, w, V, res.info)


def eigh_tridiagonal(
    d,
    e,
    eigvals_only: bool = False,
    select: str = "a",
    select_range=None,
    backend: str = "best",
):
    """
    Eigenvalues (and eigenvectors) of one symmetric tridiagonal matrix.

    Parameters
    ----------
    d : array_like, shape (n,)
        Diagonal.
    e : array_like, shape (n-1,)
        Off-diagonal.
    eigvals_only : bool, default False
        Skip the eigenvectors.
    select : {'a', 'v', 'i'}, default 'a'
    select_range : tuple, optional
        ``(vl, vu)`` for select='v', ``(il, iu)`` for select='i'.
    backend : str, default 'best'

    Returns
    -------
    w : np.ndarray, shape (m,)
        Selected eigenvalues in ascending order.
    v : np.ndarray, shape (n, m)
        Matching eigenvectors as columns (omitted if eigvals_only).

    Warns
    -----
    ConvergenceWarning
        If some eigenpairs did not converge.

    Examples
    --------
    >>> w, v = eigh_tridiagonal([1.0, 3.0], [1.0])
    >>> w
    array([0.58578644, 3.41421356])
    """
    d = np.asarray(d, dtype=np.float64)
    if d.ndim != 1:
        raise ValueError(f"d must be 1-D, got shape {d.shape}")
    batch = TridiagonalBatch(d, e)
    evect = "none" if eigvals_only else "tridiagonal"
    res = batch.eigh_range(select, select_range, evect=evect, backend=backend)

    if res.info[0] > 0:
        warnings.warn(
            f"{int(res.info[0])} eigenpair(s) did not converge to full precision",
            ConvergenceWarning,
            stacklevel=2,
        )

    nev = int(res.nev[0])
    w = res.eigenvalues[0, :nev]
    if eigvals_only:
        return w
    return w, res.eigenvectors[0, :, :nev]
