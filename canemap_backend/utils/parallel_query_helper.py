"""
Parallel Query Helper for CaneMap
Runs independent document-store reads concurrently (fan-out/fan-in)
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging

from canemap_backend.config.environment import PARALLEL_MAX_WORKERS, PARALLEL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def fetch_collections_parallel(fetch_functions, max_workers=PARALLEL_MAX_WORKERS,
                               timeout=PARALLEL_TIMEOUT_SECONDS, defaults=None):
    """
    Execute multiple fetch functions in parallel using ThreadPoolExecutor.

    A failing fetch never fails the batch: its slot gets the matching entry
    from ``defaults`` (or an empty list) and the error is logged.

    Args:
        fetch_functions: Dict of {name: callable}
        max_workers: Maximum number of concurrent threads
        timeout: Maximum time to wait for all fetches
        defaults: Optional dict of {name: value} used when a fetch fails

    Returns:
        Dict of {name: result}

    Example:
        results = fetch_collections_parallel({
            'bought_items': lambda: store.get_many('bought_items', {'recordId': rid}),
            'vehicle_updates': lambda: store.get_many('vehicle_updates', {'recordId': rid}),
        })
    """
    defaults = defaults or {}
    results = {}
    errors = {}

    if not fetch_functions:
        return results

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(fetch_functions)))) as executor:
        future_to_name = {
            executor.submit(func): name
            for name, func in fetch_functions.items()
        }

        for future in as_completed(future_to_name, timeout=timeout):
            name = future_to_name[future]
            try:
                results[name] = future.result()
            except Exception as e:
                errors[name] = str(e)
                results[name] = defaults.get(name, [])
                logger.debug(f"Parallel fetch failed for {name}: {e}")

    if errors:
        logger.warning(f"Parallel fetch completed with {len(errors)} error(s): {errors}")

    return results


def map_parallel(func, items, max_workers=PARALLEL_MAX_WORKERS, timeout=PARALLEL_TIMEOUT_SECONDS):
    """
    Apply ``func`` to every item concurrently and return results in input order.

    Unlike fetch_collections_parallel, errors propagate: callers wrap ``func``
    themselves when a single failure must not abort the batch.
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as executor:
        futures = [executor.submit(func, item) for item in items]
        return [future.result(timeout=timeout) for future in futures]
