"""
tridc
=====

Batched divide-and-conquer eigensolver for real symmetric tridiagonal
matrices, compiled with numba.

Every instance of a batch is split at negligible off-diagonals, each
split-block is halved into a static merge tree, the leaves are solved with
an implicit-shift QL iteration, and sibling spectra are merged level by
level through rank-one updates (deflation plus secular equation roots).

Main Functions
--------------
stedc : In-place solver (eigenvalues, tridiagonal or back-transformed eigenvectors)
eigh_tridiagonal : Single-matrix convenience function with range selection
TridiagonalBatch : Packed batch with non-mutating eigh() / eigh_range()

Context Managers
----------------
quiet : Suppress logging during operations
suppress_logger : Suppress specific logger
suppress_warnings : Suppress specific warnings
use_backend : Force specific computational backend
silent_benchmark : Combine quiet + backend selection + warning suppression

Utilities
---------
tridiagonal_to_dense : Dense matrices from (d, e)
orthogonality_error : max |V^H V - I|
reconstruction_error : Relative residual of T = V diag(w) V^H
num_levels : Merge-tree depth for a block size

Backend Information
-------------------
get_available_backends : Query available computational backends
get_backend_info : Get comprehensive backend status
check_numba_available : Check if numba is available

Examples
--------
Basic usage:

>>> import numpy as np
>>> from tridc import eigh_tridiagonal
>>> w, v = eigh_tridiagonal([1.0, 3.0], [1.0])
>>> w
array([0.58578644, 3.41421356])

Batched, in place:

>>> from tridc import stedc
>>> D = np.random.rand(64, 500)
>>> E = np.random.rand(64, 499)
>>> C = np.empty((64, 500, 500))
>>> info = stedc('tridiagonal', D, E, C)

With context managers:

>>> from tridc import quiet, use_backend
>>> with quiet(), use_backend('python'):
...     w = eigh_tridiagonal(d, e, eigvals_only=True)
"""

__version__ = "0.1.0"

# Main functions and classes
from ._solver import (
    MIN_DC_SIZE,
    ConvergenceWarning,
    EighResult,
    RangeResult,
    TridiagonalBatch,
    eigh_tridiagonal,
    select_eigenpairs,
    stedc,
)

# Context managers (user-facing utilities)
from ._context import (
    suppress_logger,
    quiet,
    suppress_warnings,
    use_backend,
    silent_benchmark,
)

# Utilities (generally useful functions)
from ._utils import (
    tridiagonal_to_dense,
    orthogonality_error,
    reconstruction_error,
)
from ._arena import num_levels

# Backend information (useful for checking capabilities)
from ._backend import (
    get_available_backends,
    get_backend_info,
    check_numba_available,
)

# Public API
__all__ = [
    # Main functions and classes
    "stedc",
    "eigh_tridiagonal",
    "TridiagonalBatch",
    "select_eigenpairs",
    "EighResult",
    "RangeResult",
    "ConvergenceWarning",
    "MIN_DC_SIZE",
    # Context managers
    "suppress_logger",
    "quiet",
    "suppress_warnings",
    "use_backend",
    "silent_benchmark",
    # Utilities
    "tridiagonal_to_dense",
    "orthogonality_error",
    "reconstruction_error",
    "num_levels",
    # Backend information
    "get_available_backends",
    "get_backend_info",
    "check_numba_available",
    # Version info
    "__version__",
]
