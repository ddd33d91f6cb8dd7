"""
_utils.py
=========
General-purpose utility functions for the eigensolver.

These are standalone functions that don't depend on the solver and are
useful for building test problems and checking results.
"""

from typing import Union

import numpy as np


def machine_epsilon() -> float:
    """
    Relative machine precision of float64.

    Examples
    --------
    >>> machine_epsilon()
    2.220446049250313e-16
    """
    return float(np.finfo(np.float64).eps)


def tridiagonal_to_dense(d, e) -> np.ndarray:
    """
    Build the dense symmetric tridiagonal matrix (or batch of matrices).

    Parameters
    ----------
    d : array_like, shape (n,) or (batch, n)
        Diagonal.
    e : array_like, shape (n-1,) or (batch, n-1)
        Off-diagonal.

    Returns
    -------
    np.ndarray
        Shape (n, n) or (batch, n, n).

    Examples
    --------
    >>> tridiagonal_to_dense([1.0, 3.0], [1.0])
    array([[1., 1.],
           [1., 3.]])
    """
    d = np.asarray(d, dtype=np.float64)
    e = np.asarray(e, dtype=np.float64)
    single = d.ndim == 1
    d2 = np.atleast_2d(d)
    e2 = np.atleast_2d(e)
    batch, n = d2.shape

    T = np.zeros((batch, n, n))
    idx = np.arange(n)
    T[:, idx, idx] = d2
    if n > 1:
        off = e2[:, : n - 1]
        T[:, idx[:-1], idx[1:]] = off
        T[:, idx[1:], idx[:-1]] = off
    return T[0] if single else T


def orthogonality_error(V) -> Union[float, np.ndarray]:
    """
    Largest entry of ``|V^H V - I|``.

    Parameters
    ----------
    V : array_like, shape (n, n) or (batch, n, n)
        Eigenvectors as columns.

    Returns
    -------
    float or np.ndarray
        Scalar for a single matrix, shape (batch,) for a batch.
    """
    V = np.asarray(V)
    G = np.conj(np.swapaxes(V, -1, -2)) @ V
    n = V.shape[-1]
    err = np.abs(G - np.eye(n)).max(axis=(-2, -1)) if n else np.zeros(V.shape[:-2])
    return float(err) if V.ndim == 2 else err


def reconstruction_error(d, e, w, V) -> Union[float, np.ndarray]:
    """
    Relative residual of the eigen-decomposition.

    Computes ``max|T - V diag(w) V^H| / max(max|T|, tiny)``.

    Parameters
    ----------
    d, e : array_like
        Tridiagonal matrix (as for tridiagonal_to_dense).
    w : array_like, shape (n,) or (batch, n)
        Eigenvalues.
    V : array_like, shape (n, n) or (batch, n, n)
        Eigenvectors as columns.

    Returns
    -------
    float or np.ndarray
        Scalar for a single matrix, shape (batch,) for a batch.
    """
    T = tridiagonal_to_dense(d, e)
    w = np.asarray(w, dtype=np.float64)
    V = np.asarray(V)
    R = (V * w[..., None, :]) @ np.conj(np.swapaxes(V, -1, -2))
    n = T.shape[-1]
    if n == 0:
        err = np.zeros(T.shape[:-2])
    else:
        scale = np.maximum(np.abs(T).max(axis=(-2, -1)), np.finfo(np.float64).tiny)
        err = np.abs(T - R).max(axis=(-2, -1)) / scale
    return float(err) if T.ndim == 2 else err
