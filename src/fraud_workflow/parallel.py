"""
Worker pool for independent units of work.

Cross-validation folds and tuning candidates are independent of each other:
each unit receives its own data subsets and seed, and returns its own result.
``map_units`` fans such units out over a thread pool and collects the results
in input order.

Example:
    from fraud_workflow.parallel import map_units

    results = map_units(fit_one_fold, folds, n_jobs=4)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def map_units(func: Callable[[T], R], units: Sequence[T], n_jobs: int = 1) -> List[R]:
    """
    Apply ``func`` to every unit, optionally on worker threads.

    Args:
        func: Callable taking one unit. It must not mutate shared state.
        units: Units of work.
        n_jobs: Number of worker threads; 1 runs inline.

    Returns:
        Results in the same order as ``units``.

    Raises:
        The first exception raised by ``func``, in input order, once every
        submitted unit has finished.
    """
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be at least 1, got {n_jobs}")
    units = list(units)
    if n_jobs == 1 or len(units) <= 1:
        return [func(unit) for unit in units]

    workers = min(n_jobs, len(units))
    logger.debug(f"Dispatching {len(units)} units to {workers} workers")
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(func, unit) for unit in units]
        return [future.result() for future in futures]
