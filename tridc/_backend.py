"""
_backend.py
===========
Backend detection and selection for the eigensolver.

Two execution backends exist:

- 'python'       : phase kernels run serially as plain Python (their
                   ``py_func``); the scalar helpers they call stay compiled
- 'cpu-parallel' : phase kernels run compiled, batch and tree loops in
                   parallel through numba's ``prange``

Functions in this module have NO side effects - they only query system state.
Logging is done by the calling code, not here.
"""

from typing import Dict, List, Optional, Tuple


# ============================================================================ #
# Backend Detection (No Side Effects)
# ============================================================================ #


def check_numba_available() -> bool:
    """
    Check if numba is available for CPU parallelization.

    Returns
    -------
    bool
        True if numba can be imported, False otherwise.
    """
    try:
        import numba  # noqa: F401

        return True
    except ImportError:
        return False


def get_available_backends() -> List[str]:
    """
    Get list of available execution backends.

    Returns
    -------
    list[str]
        Available backends in preference order, best last.

    Examples
    --------
    >>> get_available_backends()
    ['python', 'cpu-parallel']
    """
    backends = ["python"]
    if check_numba_available() and import_cpu_kernels()[0]:
        backends.append("cpu-parallel")
    return backends


def get_best_backend() -> str:
    """
    Get the most optimized available backend.

    Returns
    -------
    str
        'cpu-parallel' when the compiled kernels load, else 'python'.
    """
    return get_available_backends()[-1]


def resolve_backend(backend: str) -> str:
    """
    Resolve a backend specification to an actual backend.

    Parameters
    ----------
    backend : str
        'best', 'python' or 'cpu-parallel'.

    Returns
    -------
    str
        Resolved backend name.

    Raises
    ------
    ValueError
        If the requested backend is unknown or not available.

    Examples
    --------
    >>> resolve_backend('best')
    'cpu-parallel'
    """
    if backend == "best":
        return get_best_backend()

    available = get_available_backends()
    if backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    return backend


# ============================================================================ #
# Kernel Import Helpers
# ============================================================================ #


def import_cpu_kernels() -> Tuple[bool, Optional[Dict[str, object]]]:
    """
    Try to import the phase kernels from the _cpu_kernels module.

    Returns
    -------
    tuple
        (success, kernels)
        - success: Whether import succeeded
        - kernels: dict mapping phase name ('split', 'scale', 'divide',
          'leaf', 'merge', 'unscale', 'sort', 'direct') to its njit
          dispatcher, or None
    """
    try:
        from tridc._cpu_kernels import (
            _direct_njit,
            _divide_njit,
            _leaf_solve_njit,
            _merge_njit,
            _scale_njit,
            _sort_njit,
            _split_njit,
            _unscale_njit,
        )
    except ImportError:
        return (False, None)

    return (
        True,
        {
            "split": _split_njit,
            "scale": _scale_njit,
            "divide": _divide_njit,
            "leaf": _leaf_solve_njit,
            "merge": _merge_njit,
            "unscale": _unscale_njit,
            "sort": _sort_njit,
            "direct": _direct_njit,
        },
    )


# ============================================================================ #
# Module-Level State Query (Read-Only)
# ============================================================================ #


def get_backend_info() -> dict:
    """
    Get comprehensive backend information.

    Returns
    -------
    dict
        Dictionary with keys:
        - 'numba_available': bool
        - 'backends': list[str]
        - 'best_backend': str
        - 'cpu_kernels_available': bool

    Examples
    --------
    >>> info = get_backend_info()
    >>> info['backends']
    ['python', 'cpu-parallel']
    """
    cpu_kernels_ok, _ = import_cpu_kernels()
    return {
        "numba_available": check_numba_available(),
        "backends": get_available_backends(),
        "best_backend": get_best_backend(),
        "cpu_kernels_available": cpu_kernels_ok,
    }
