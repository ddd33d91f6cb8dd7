"""
_context.py
===========
Context managers for the eigensolver.

Provides context managers for temporarily changing state:
- Logging control (suppress/change levels)
- Warning control (suppress specific warnings)
- Backend selection (force specific backend)

All context managers restore state on exit, even if exceptions occur.
"""

import logging
import warnings
from contextlib import contextmanager
from typing import Optional, Type


# Module-level state for backend override
_backend_override = None

# Parent of every module logger in the package
_PACKAGE_LOGGER = "tridc"


# ============================================================================ #
# Logging Context Managers
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Temporarily change a logger's level.

    Parameters
    ----------
    logger_name : str
        Name of the logger to suppress (e.g., 'tridc._solver').
    level : int, default logging.CRITICAL
        Temporary logging level.

    Yields
    ------
    None
        Control is yielded back to the with-block.

    Examples
    --------
    >>> # Hide the per-call solve path messages
    >>> with suppress_logger('tridc._solver', logging.WARNING):
    ...     info = stedc('tridiagonal', D, E, C)

    Notes
    -----
    - Exception-safe: Logger level restored even if exception raised
    - Nesting-safe: Can nest multiple suppress_logger contexts
    """
    logger = logging.getLogger(logger_name)
    original_level = logger.level

    try:
        logger.setLevel(level)
        yield
    finally:
        logger.setLevel(original_level)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Temporarily suppress all package logging.

    Sets the level of the 'tridc' package logger, which every module
    logger inherits from unless it has its own level.

    Parameters
    ----------
    level : int, default logging.CRITICAL
        Temporary logging level.

    Yields
    ------
    None
        Control is yielded back to the with-block.

    Examples
    --------
    >>> with quiet():
    ...     w, v = eigh_tridiagonal(d, e)

    >>> # Show only warnings
    >>> with quiet(logging.WARNING):
    ...     info = stedc('tridiagonal', D, E, C)
    """
    with suppress_logger(_PACKAGE_LOGGER, level):
        yield


# ============================================================================ #
# Warning Context Managers
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Temporarily suppress warnings.

    Parameters
    ----------
    category : Type[Warning] or None, default None
        Warning category to suppress. If None, suppresses all warnings.
        Useful categories here are ConvergenceWarning and
        NumbaPerformanceWarning.

    Yields
    ------
    None
        Control is yielded back to the with-block.

    Examples
    --------
    >>> from tridc import ConvergenceWarning
    >>> with suppress_warnings(ConvergenceWarning):
    ...     w = eigh_tridiagonal(d, e, eigvals_only=True)

    Notes
    -----
    - Uses Python's warnings.catch_warnings() internally
    - Fully restores warning state on exit
    """
    with warnings.catch_warnings():
        if category is None:
            warnings.simplefilter("ignore")
        else:
            warnings.filterwarnings("ignore", category=category)
        yield


# ============================================================================ #
# Backend Context Managers
# ============================================================================ #


@contextmanager
def use_backend(backend: str):
    """
    Temporarily force a specific backend for every solve.

    Parameters
    ----------
    backend : str
        'python', 'cpu-parallel' or 'best'.

    Yields
    ------
    None
        Control is yielded back to the with-block.

    Raises
    ------
    ValueError
        If requested backend is not available.

    Examples
    --------
    >>> with use_backend('python'):
    ...     # No JIT compilation of the phase kernels, easier to debug
    ...     info = stedc('tridiagonal', D, E, C)

    Notes
    -----
    - **Not thread-safe**: Uses module-level state. Pass ``backend=``
      to stedc() directly for thread-safe selection.
    - Overrides the ``backend`` argument of every call inside the block.
    """
    global _backend_override

    from ._backend import get_available_backends

    available = get_available_backends()

    if backend != "best" and backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    original_override = _backend_override

    try:
        _backend_override = backend
        yield
    finally:
        _backend_override = original_override


def get_backend_override() -> Optional[str]:
    """
    Get the current backend override, if any.

    Returns
    -------
    str or None
        Current backend override, or None if no override active.

    Examples
    --------
    >>> get_backend_override()
    None

    >>> with use_backend('python'):
    ...     print(get_backend_override())
    python
    """
    return _backend_override


# ============================================================================ #
# Combined Context Managers
# ============================================================================ #


@contextmanager
def silent_benchmark(backend: str = "best"):
    """
    Suppress logging and warnings while forcing a specific backend.

    Parameters
    ----------
    backend : str, default 'best'
        Backend to use for operations.

    Examples
    --------
    >>> for backend in ['python', 'cpu-parallel']:
    ...     with silent_benchmark(backend):
    ...         start = time.time()
    ...         stedc('tridiagonal', D.copy(), E.copy(), C)
    ...         print(f"{backend}: {time.time() - start:.3f}s")
    """
    with quiet():
        with use_backend(backend):
            with suppress_warnings():
                yield
