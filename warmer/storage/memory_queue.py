from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence

from warmer.jobs.job import Job
from warmer.storage.queue import RETRY_THRESHOLD, completed_ids, job_from_row


@dataclass
class QueueRow:
    id: int
    url: str
    entity_id: int
    entity_type: str
    customer_group: Optional[str] = None
    priority: int = 0
    processing_started_at: Optional[float] = None


class MemoryQueue:
    """In-process queue with the same lease semantics as ``DatabaseQueue``.

    Useful for tests and dry runs; rows live only as long as the instance.
    """

    def __init__(
        self,
        retry_threshold: timedelta = RETRY_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retry_threshold = retry_threshold.total_seconds()
        self.clock = clock
        self.rows: Dict[int, QueueRow] = {}
        self._next_id = 1

    def enqueue(
        self,
        url: str,
        entity_id: int = 0,
        entity_type: str = "page",
        customer_group: Optional[str] = None,
        priority: int = 0,
    ) -> int:
        row_id = self._next_id
        self._next_id += 1
        self.rows[row_id] = QueueRow(row_id, url, entity_id, entity_type, customer_group, priority)
        return row_id

    def _is_eligible(self, row: QueueRow, now: float) -> bool:
        return row.processing_started_at is None or row.processing_started_at < now - self.retry_threshold

    async def acquire(self, count: int) -> List[Job]:
        if count <= 0:
            return []

        now = self.clock()
        while True:
            eligible = sorted(
                (row for row in self.rows.values() if self._is_eligible(row, now)),
                key=lambda row: (-row.priority, row.id),
            )[:count]
            if not eligible:
                return []

            for row in eligible:
                row.processing_started_at = now

            jobs = [job for job in (job_from_row(asdict(row)) for row in eligible) if job is not None]
            if jobs:
                return jobs

    async def update_status(self, jobs: Sequence[Job]) -> None:
        for job_id in completed_ids(jobs):
            self.rows.pop(job_id, None)

    async def count_pending(self) -> int:
        now = self.clock()
        return sum(1 for row in self.rows.values() if self._is_eligible(row, now))
