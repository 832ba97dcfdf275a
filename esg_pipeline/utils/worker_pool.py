"""Async worker pool with exception handling for bounded-concurrency fan-out.

Each item runs as its own task; a semaphore caps how many are in flight.
Results come back in completion order, not input order.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Tuple


class AsyncWorkerPool:
    """Semaphore-bounded asyncio fan-out for pipeline tasks."""

    def __init__(self, max_workers: int = 3, logger=None):
        """
        Initialize worker pool.

        Args:
            max_workers: Maximum number of concurrently running tasks (default: 3)
            logger: Optional logger instance for logging
        """
        self.max_workers = max(1, max_workers)
        self.logger = logger or logging.getLogger(__name__)
        self.stats = {
            "max_workers": self.max_workers,
            "total_submitted": 0,
            "total_completed": 0,
            "total_successful": 0,
            "total_failed": 0,
            "peak_in_flight": 0,
        }
        self._in_flight = 0

    async def map(
        self,
        func: Callable[[Any], Awaitable[Any]],
        items: Iterable[Any],
        desc: str = "Processing",
    ) -> List[Tuple[bool, Any, Any]]:
        """
        Process items concurrently with exception handling.

        Args:
            func: Async worker function taking one item
            items: Items to process
            desc: Description for progress reporting

        Returns:
            List of tuples: (success: bool, item: any, result_or_error: any),
            in completion order
        """
        items = list(items)
        semaphore = asyncio.Semaphore(self.max_workers)
        self.stats["total_submitted"] += len(items)

        async def run(item):
            async with semaphore:
                self._in_flight += 1
                self.stats["peak_in_flight"] = max(self.stats["peak_in_flight"], self._in_flight)
                try:
                    return True, item, await func(item)
                except Exception as e:
                    return False, item, e
                finally:
                    self._in_flight -= 1

        results = []
        for future in asyncio.as_completed([run(item) for item in items]):
            success, item, outcome = await future
            self.stats["total_completed"] += 1
            if success:
                self.stats["total_successful"] += 1
                self.logger.debug(f"{desc}: Success for item {item}")
            else:
                self.stats["total_failed"] += 1
                self.logger.error(f"{desc}: Failed for item {item}: {outcome}", exc_info=outcome)
            results.append((success, item, outcome))

        self.logger.info(
            f"{desc} complete: {self.stats['total_successful']} successful, {self.stats['total_failed']} failed"
        )
        return results

    def get_stats(self) -> dict:
        """Get worker pool statistics."""
        return dict(self.stats)
