"""
_logging.py
===========
Logging functions for the eigensolver.

All functions in this module have NO side effects except logging. They take
computed data as parameters and format/emit log messages.

This separation ensures:
- Logging can be easily disabled/mocked in tests
- Computation is separate from presentation
"""

import logging
from typing import List


logger = logging.getLogger(__name__)


# ============================================================================ #
# System and Backend Logging (called at module import time)
# ============================================================================ #


def log_optimization_status(numba_available: bool) -> None:
    """
    Log system capabilities and optimization library availability at INFO level.

    Called once at module import time. Reports CPU count, memory (when psutil
    is installed), numba and llvmlite versions, and threading configuration.

    Parameters
    ----------
    numba_available : bool
        Whether numba was successfully imported.
    """
    import os
    import platform

    cpu_count = os.cpu_count() or 1
    logger.info(
        f"System: {platform.machine()} ({platform.system()}), "
        f"{cpu_count} CPU cores, Python {platform.python_version()}"
    )

    try:
        import psutil

        mem = psutil.virtual_memory()
        logger.info(
            f"Memory: {mem.total / (1024**3):.1f} GB total, "
            f"{mem.available / (1024**3):.1f} GB available"
        )
    except ImportError:
        pass  # psutil not required

    if numba_available:
        import numba

        logger.info(f"Numba {numba.__version__} loaded successfully")

        try:
            import llvmlite

            logger.info(f"LLVM backend: llvmlite {llvmlite.__version__}")
        except (ImportError, AttributeError):
            pass  # LLVM version unavailable

        # threading_layer() raises until a parallel kernel has run
        try:
            num_threads = numba.get_num_threads()
            threading_layer = numba.threading_layer()
            logger.info(
                f"Numba threading: {threading_layer} layer, "
                f"{num_threads} threads active"
            )
        except ValueError:
            logger.info(f"Numba threading: {numba.get_num_threads()} threads")
    else:
        logger.info("Numba not installed - phase kernels are unavailable")


def install_numba_warning_filter(numba_available: bool) -> None:
    """
    Capture NumbaPerformanceWarning and route it through our logger.

    numba issues performance warnings via Python's warnings module. This
    filter intercepts them and logs them at WARNING level so they appear in
    the same stream as other solver diagnostics.

    Parameters
    ----------
    numba_available : bool
        Whether numba was successfully imported.
    """
    import warnings

    if not numba_available:
        return

    from numba.core.errors import NumbaPerformanceWarning

    original_showwarning = warnings.showwarning

    def custom_showwarning(message, category, filename, lineno, file=None, line=None):
        if issubclass(category, NumbaPerformanceWarning):
            logger.warning(f"Numba performance issue: {message}")
            logger.warning(f"  at {filename}:{lineno}")
            return
        original_showwarning(message, category, filename, lineno, file, line)

    warnings.showwarning = custom_showwarning


def log_backend_availability(
    backends_available: List[str], numba_available: bool
) -> None:
    """
    Log which execution backends are available for the phase kernels.

    Parameters
    ----------
    backends_available : List[str]
        List of available backends (e.g., ['python', 'cpu-parallel'])
    numba_available : bool
        Whether numba was successfully imported.
    """
    logger.info(f"Available backends: {', '.join(backends_available)}")

    if "cpu-parallel" in backends_available:
        logger.info("  cpu-parallel: LLVM-compiled parallel code (numba.njit + prange)")
    elif numba_available:
        logger.info("  cpu-parallel: unavailable (kernel module failed to import)")

    if "python" in backends_available:
        logger.info("  python: serial reference run of the phase kernels")

    best = backends_available[-1]
    logger.info(f"Default backend='best' will use: {best}")


# ============================================================================ #
# Solve Logging (called once per stedc call)
# ============================================================================ #


def log_solve_path(path: str, batch: int, n: int, evect: str, backend: str) -> None:
    """
    Log which algorithm path a call takes.

    Parameters
    ----------
    path : str
        'quick', 'direct' or 'divide-and-conquer'.
    batch : int
        Number of instances.
    n : int
        Matrix size.
    evect : str
        Eigenvector mode.
    backend : str
        Resolved backend.
    """
    logger.info(
        "stedc: %s path, batch=%d, n=%d, evect=%s, backend=%s",
        path,
        batch,
        n,
        evect,
        backend,
    )


def log_split_statistics(
    batch: int, n_trees: int, max_levels: int, n_leaves: int
) -> None:
    """
    Log how the split and divide phases partitioned the batch.

    Parameters
    ----------
    batch : int
        Number of instances.
    n_trees : int
        Total number of split-blocks across the batch.
    max_levels : int
        Deepest merge tree.
    n_leaves : int
        Total number of leaves solved directly.
    """
    logger.info(
        "Split phase: %d split-blocks over %d instances (%.1f per instance)",
        n_trees,
        batch,
        n_trees / max(batch, 1),
    )
    logger.info(
        "Divide phase: %d leaves, %d merge levels", n_leaves, max_levels
    )


def log_convergence_failures(failed_indices: List[int], batch: int) -> None:
    """
    Emit consolidated convergence warning.

    Parameters
    ----------
    failed_indices : List[int]
        Batch indices whose info is nonzero.
    batch : int
        Number of instances in the call.
    """
    n_failed = len(failed_indices)
    if n_failed == 0:
        return
    if n_failed == 1:
        logger.warning(
            "1 instance did not converge (batch index %d). "
            "Its eigenvalues and eigenvectors are unreliable.",
            failed_indices[0],
        )
    elif n_failed <= 5:
        logger.warning(
            "%d instances did not converge (batch indices: %s). "
            "Their eigenvalues and eigenvectors are unreliable.",
            n_failed,
            ", ".join(map(str, failed_indices)),
        )
    else:
        logger.warning(
            "%d instances did not converge (%.1f%% of batch). "
            "Their eigenvalues and eigenvectors are unreliable.",
            n_failed,
            100.0 * n_failed / batch,
        )


def log_workspace_footprint(memory_bytes: int) -> None:
    """
    Log the workspace size of a divide-and-conquer call.

    Parameters
    ----------
    memory_bytes : int
        Bytes allocated for the accumulator and arena.
    """
    mem_mb = memory_bytes / (1024**2)
    mem_gb = memory_bytes / (1024**3)

    if mem_gb >= 1.0:
        logger.info("Workspace footprint: %.2f GB", mem_gb)
    else:
        logger.debug("Workspace footprint: %.1f MB", mem_mb)

    # default threshold: 80% of a 16 GB system
    system_threshold_gb = 16 * 0.8

    if mem_gb > system_threshold_gb:
        logger.warning(
            "Workspace footprint (%.2f GB) exceeds typical system memory threshold "
            "(%.1f GB = 80%% of 16 GB). Consider solving the batch in chunks.",
            mem_gb,
            system_threshold_gb,
        )


# ============================================================================ #
# Helper Functions for Computing Data (not logging)
# ============================================================================ #


def compute_workspace_footprint(batch: int, n: int, arena_bytes: int) -> int:
    """
    Compute the bytes held by the divide-and-conquer workspace.

    Parameters
    ----------
    batch : int
        Number of instances.
    n : int
        Matrix size.
    arena_bytes : int
        Size of the merge-tree arena (MergeArena.nbytes).

    Returns
    -------
    int
        Accumulator (float64[batch, n, n]) plus split table plus arena.
    """
    accumulator = 8 * batch * n * n
    splits = 8 * batch * (n + 2)
    return accumulator + splits + arena_bytes
