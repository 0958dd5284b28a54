from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List, Optional, Protocol, Sequence

import asyncpg
from loguru import logger

from warmer.jobs.job import Job
from warmer.utils.db_utils import resolve_database_url
from warmer.utils.logger import log_event


JOB_TABLE = "cache_warmup_queue"
# Must exceed the longest plausible processing time of a batch, otherwise
# jobs still being worked on are leased a second time.
RETRY_THRESHOLD = timedelta(minutes=20)


class LeaseQueue(Protocol):
    async def acquire(self, count: int) -> List[Job]:
        """Lease up to ``count`` eligible jobs, highest priority first."""
        ...

    async def update_status(self, jobs: Sequence[Job]) -> None:
        """Remove completed jobs; everything else waits for its lease to expire."""
        ...


def job_from_row(row) -> Optional[Job]:
    """Build a job from a queue row, or None when the row cannot be warmed.

    Malformed rows are still leased by the caller, so they fall back to the
    retry cadence instead of blocking the head of the queue.
    """
    try:
        return Job(
            id=row["id"],
            url=row["url"],
            entity_id=row["entity_id"],
            entity_type=row["entity_type"],
            customer_group=row["customer_group"],
        )
    except (TypeError, ValueError, AttributeError) as exc:
        log_event("ERROR", "Queue", "MALFORMED-JOB", {"job_id": row["id"], "url": row["url"]}, note=str(exc))
        return None


def completed_ids(jobs: Iterable[Job]) -> List[int]:
    return [job.id for job in jobs if job.is_completed]


class DatabaseQueue:
    """Lease based job queue on top of a PostgreSQL table.

    Eligible rows (never leased, or leased longer than ``retry_threshold``
    ago) are selected ``FOR UPDATE``, stamped with the current time and
    returned, all inside one transaction. Finished jobs are deleted. Failed or
    untouched jobs keep their stamp and are picked up again once it expires;
    there is no retry limit.
    """

    ACQUIRE_QUERY = f"""
        SELECT id, url, entity_id, entity_type, customer_group
        FROM {JOB_TABLE}
        WHERE processing_started_at IS NULL
           OR processing_started_at < NOW() - $1::interval
        ORDER BY priority DESC, id ASC
        LIMIT $2
        FOR UPDATE SKIP LOCKED
    """

    START_QUERY = f"UPDATE {JOB_TABLE} SET processing_started_at = NOW() WHERE id = ANY($1::bigint[])"

    FINISH_QUERY = f"DELETE FROM {JOB_TABLE} WHERE id = ANY($1::bigint[])"

    def __init__(
        self,
        database_url: Optional[str] = None,
        retry_threshold: timedelta = RETRY_THRESHOLD,
    ) -> None:
        self.database_url = resolve_database_url(database_url)
        self.retry_threshold = retry_threshold
        self.pool: Optional[asyncpg.Pool] = None

    # -------------------------------------------------------
    # Connection
    # -------------------------------------------------------

    async def connect(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=4)
            logger.info("Connected to warm-up queue database")

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError("Queue is not connected")
        return self.pool

    # -------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------

    async def acquire(self, count: int) -> List[Job]:
        if count <= 0:
            return []

        pool = self._require_pool()
        async with pool.acquire() as conn:
            # Leases that only held malformed rows are committed and the next
            # rows are tried, so bad rows never look like an empty queue.
            while True:
                # Rolled back on any error, so a failure never leaves partial leases.
                async with conn.transaction():
                    rows = await conn.fetch(self.ACQUIRE_QUERY, self.retry_threshold, count)
                    if not rows:
                        return []

                    await conn.execute(self.START_QUERY, [row["id"] for row in rows])

                jobs = [job for job in map(job_from_row, rows) if job is not None]
                if jobs:
                    break

        log_event("DEBUG", "Queue", "ACQUIRED", {"count": len(jobs), "leased": len(rows), "requested": count})
        return jobs

    async def update_status(self, jobs: Sequence[Job]) -> None:
        ids = completed_ids(jobs)
        if not ids:
            return

        pool = self._require_pool()
        async with pool.acquire() as conn:
            await conn.execute(self.FINISH_QUERY, ids)

        log_event("DEBUG", "Queue", "FINISHED", {"count": len(ids)})

    async def enqueue(
        self,
        url: str,
        entity_id: int,
        entity_type: str,
        customer_group: Optional[str] = None,
        priority: int = 0,
    ) -> int:
        pool = self._require_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(
                f"""
                INSERT INTO {JOB_TABLE} (url, entity_id, entity_type, customer_group, priority)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                url,
                entity_id,
                entity_type,
                customer_group,
                priority,
            )

    async def count_pending(self) -> int:
        if not self.pool:
            return 0
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                f"SELECT count(*) FROM {JOB_TABLE} "
                "WHERE processing_started_at IS NULL OR processing_started_at < NOW() - $1::interval",
                self.retry_threshold,
            )
