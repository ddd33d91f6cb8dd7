"""
_direct.py
==========
Direct eigensolver for small symmetric tridiagonal blocks.

Implicit-shift QL iteration (the tql2/tqli scheme) with optional accumulation
of the plane rotations into the columns of an eigenvector block.  It is the
leaf solver of the divide-and-conquer tree and, for eigenvalue-only or small
problems, the solver for the whole matrix.

Exported Functions
------------------
givens : njit function
    Plane rotation used by the QL sweep and by merge deflation.
tridiagonal_ql : njit function
    In-place QL eigensolver with a sweep budget and LAPACK-style status.
"""

import numpy as np
from numba import njit


@njit(cache=True)
def givens(f, g):
    """
    Plane rotation annihilating ``g`` against ``f``.

    Returns
    -------
    tuple[float, float, float]
        ``(c, s, r)`` with ``c*f - s*g == r`` and ``s*f + c*g == 0``.
    """
    if g == 0.0:
        return 1.0, 0.0, f
    if f == 0.0:
        return 0.0, -1.0, g
    r = np.hypot(f, g)
    return f / r, -g / r, r


@njit(cache=True)
def tridiagonal_ql(d, e, z, want_vectors, max_sweeps):
    """
    Eigen-decompose a symmetric tridiagonal block in place.

    Parameters
    ----------
    d : float64[n]
        Diagonal.  Overwritten with the (unsorted) eigenvalues.
    e : float64[n]
        Workspace holding the off-diagonal in ``e[0..n-2]``
        (``e[i]`` couples rows i and i+1).  Destroyed.
    z : float64[m, n] or complex128[m, n]
        Columns are rotated along with the iteration when ``want_vectors``
        is True: pass the identity to get the eigenvectors of the block, or
        a basis to back-transform into.
    want_vectors : bool
        Whether to update ``z``.
    max_sweeps : int
        Total number of QL sweeps allowed for the whole block.

    Returns
    -------
    int
        0 on success, otherwise the number of off-diagonal entries that had
        not converged to zero when the sweep budget ran out.
    """
    n = d.shape[0]
    if n <= 1:
        return 0
    eps = np.finfo(np.float64).eps
    e[n - 1] = 0.0
    sweeps = 0

    for l in range(n):
        while True:
            # look for a negligible off-diagonal at or below l
            m = l
            while m < n - 1:
                dd = abs(d[m]) + abs(d[m + 1])
                if abs(e[m]) <= eps * dd:
                    break
                m += 1
            if m == l:
                break

            if sweeps >= max_sweeps:
                info = 0
                for i in range(n - 1):
                    if e[i] != 0.0:
                        info += 1
                return info
            sweeps += 1

            # Wilkinson-style shift from the leading 2x2
            g = (d[l + 1] - d[l]) / (2.0 * e[l])
            r = np.hypot(g, 1.0)
            g = d[m] - d[l] + e[l] / (g + np.copysign(r, g))
            s = 1.0
            c = 1.0
            p = 0.0
            underflow = False
            i = m - 1
            while i >= l:
                f = s * e[i]
                b = c * e[i]
                r = np.hypot(f, g)
                e[i + 1] = r
                if r == 0.0:
                    d[i + 1] -= p
                    e[m] = 0.0
                    underflow = True
                    break
                s = f / r
                c = g / r
                g = d[i + 1] - p
                r = (d[i] - g) * s + 2.0 * c * b
                p = s * r
                d[i + 1] = g + p
                g = c * r - b
                if want_vectors:
                    for row in range(z.shape[0]):
                        t = z[row, i + 1]
                        z[row, i + 1] = s * z[row, i] + c * t
                        z[row, i] = c * z[row, i] - s * t
                i -= 1
            if underflow:
                continue
            d[l] -= p
            e[l] = g
            e[m] = 0.0

    return 0
