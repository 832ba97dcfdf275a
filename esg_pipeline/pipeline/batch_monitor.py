"""
Batch monitor - the polling scheduler for BatchCoordinator.

check_active_batches() looks at every batch the status store still
considers active, exactly once:
- ended batches have their results processed
- running batches get a progress line, and a warning once they pass the
  near-expiry threshold
run() repeats that on an interval until nothing is active.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from ..constants import BATCH_EXPIRY_HOURS, BATCH_WARNING_HOURS
from ..db.status_store import StatusStore
from ..schemas.records import BatchJob
from ..utils.errors import format_error_message
from .batch_coordinator import BatchCoordinator, BatchProcessing, is_near_expiry


def progress_percent(job: BatchJob) -> float:
    """Share of requests that finished, 0-100."""
    total = job.counts.total
    if total == 0:
        return 0.0
    return round(job.counts.finished / total * 100, 1)


@dataclass
class MonitorCycle:
    """Summary of one check_active_batches pass."""

    checked: int = 0
    processed: List[BatchProcessing] = field(default_factory=list)
    running: List[BatchJob] = field(default_factory=list)
    near_expiry: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def still_active(self) -> bool:
        return bool(self.running) or bool(self.errors)


class BatchMonitor:
    """Polls active batches through a BatchCoordinator."""

    def __init__(
        self,
        coordinator: BatchCoordinator,
        status_store: StatusStore,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None,
    ):
        self.coordinator = coordinator
        self.status_store = status_store
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def check_batch(self, job_id: str, cycle: MonitorCycle, now: Optional[datetime] = None) -> None:
        processing = await self.coordinator.process_results(job_id)
        if processing.ended:
            cycle.processed.append(processing)
            return

        job = processing.job
        cycle.running.append(job)
        hours = job.hours_elapsed(now)
        self.logger.info(
            f"Batch {job_id}: {progress_percent(job)}% complete "
            f"({job.counts.finished}/{job.counts.total}), running for {hours:.1f}h"
        )
        if is_near_expiry(job, now):
            cycle.near_expiry.append(job_id)
            self.logger.warning(
                f"Batch {job_id} has been running for {hours:.1f}h "
                f"(warning at {BATCH_WARNING_HOURS}h, expires after {BATCH_EXPIRY_HOURS}h)"
            )

    async def check_active_batches(self, now: Optional[datetime] = None) -> MonitorCycle:
        """Poll every active batch once. A failed poll is logged and retried next cycle."""
        cycle = MonitorCycle()
        active = self.status_store.get_active_batches()
        if not active:
            self.logger.info("No active batches")
            return cycle

        for batch in active:
            job_id = batch["batch_id"]
            cycle.checked += 1
            try:
                await self.check_batch(job_id, cycle, now)
            except Exception as e:
                message = format_error_message("batch status check", e, job_id)
                cycle.errors.append(message)
                self.logger.error(message)
        return cycle

    async def run(self, interval_seconds: float, max_cycles: Optional[int] = None) -> List[MonitorCycle]:
        """
        Check active batches every interval_seconds until none is left.

        Args:
            interval_seconds: Delay between cycles
            max_cycles: Stop after this many cycles even if batches remain
        """
        cycles = []
        while True:
            cycle = await self.check_active_batches()
            cycles.append(cycle)
            if not cycle.still_active:
                self.logger.info("All batches processed")
                break
            if max_cycles is not None and len(cycles) >= max_cycles:
                self.logger.info(f"Stopping after {len(cycles)} monitor cycles with batches still active")
                break
            self.logger.info(f"Next batch check in {interval_seconds:.0f}s")
            await self._sleep(interval_seconds)
        return cycles
