import asyncio
import resource
from typing import Optional

from loguru import logger

from warmer.http.client_factory import ClientFactory
from warmer.jobs.executor import JobExecutor
from warmer.jobs.stats import Stats
from warmer.monitoring.metrics_server import BATCHES_PROCESSED, EMERGENCY_PAUSES
from warmer.sessions.credentials import CredentialsProvider
from warmer.sessions.provider import SessionProvider
from warmer.sessions.storage import SessionStorage
from warmer.storage.queue import LeaseQueue
from warmer.throttling.throttler import Throttler, TransferTimeThrottler
from warmer.utils.config_loader import WorkerSettings
from warmer.utils.logger import log_event


def create_throttler(settings: WorkerSettings) -> Optional[Throttler]:
    throttle_settings = settings.throttle_settings()
    if throttle_settings is None:
        return None
    return TransferTimeThrottler(throttle_settings)


def _peak_memory_mb() -> float:
    # ru_maxrss is in kilobytes on Linux
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024.0


class Worker:
    """Runs one bounded warm-up run against a queue.

    Batches are leased, executed, reported back and fed to the throttler until
    the queue is empty and either ``min_runtime`` has passed or ``max_jobs``
    jobs were processed.
    """

    def __init__(
        self,
        queue: LeaseQueue,
        credentials: CredentialsProvider,
        settings: Optional[WorkerSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        throttler: Optional[Throttler] = None,
    ):
        self.queue = queue
        self.credentials = credentials
        self.settings = settings or WorkerSettings()
        self.client_factory = client_factory or ClientFactory(
            varnish_uri=self.settings.varnish_uri,
            log_requests=self.settings.log_requests,
        )
        self.throttler = throttler if throttler is not None else create_throttler(self.settings)

    def _create_session_provider(self) -> SessionProvider:
        return SessionProvider(
            self.credentials,
            self.client_factory,
            storage=SessionStorage(self.settings.session_storage_dir),
            request_timeout=self.settings.session_requests_timeout,
            login_scheme=self.settings.login_scheme,
        )

    async def run(self) -> Stats:
        settings = self.settings

        async with self.client_factory.create_warmup_client(settings.warmup_requests_timeout) as client:
            executor = JobExecutor(
                self._create_session_provider(),
                client,
                warmup_headers=settings.warmup_headers,
                cache_status_header=settings.cache_status_header,
            )
            return await self.work(executor)

    def _concurrency(self) -> int:
        if self.throttler is None:
            return self.settings.concurrency
        return self.throttler.get_suggested_concurrency()

    def _delay(self) -> float:
        if self.throttler is None:
            return 0.0
        return self.throttler.get_suggested_request_delay()

    async def work(self, executor: JobExecutor) -> Stats:
        settings = self.settings
        max_jobs = settings.max_jobs

        jobs_left = max_jobs
        jobs_processed = 0
        batch_nr = 0
        total_stats = Stats("run")
        total_stats.start_timer()

        while True:
            while jobs_left > 0:
                job_batch = await self.queue.acquire(min(jobs_left, settings.batch_size))
                if not job_batch:
                    break

                batch_nr += 1
                log_event("DEBUG", "Worker", "BATCH-START", {
                    "batch_nr": batch_nr,
                    "jobs_acquired": len(job_batch),
                    "jobs_left_max": jobs_left,
                })

                await executor.execute(job_batch, self._concurrency(), self._delay())
                await self.queue.update_status(job_batch)

                batch_stats = Stats("batch", job_batch)
                total_stats.add(batch_stats)
                BATCHES_PROCESSED.inc()

                jobs_processed += len(job_batch)
                jobs_left = max_jobs - jobs_processed

                log_event("INFO", "Worker", "BATCH-FINISHED", {"batch_nr": batch_nr, **batch_stats.summary()})

                if self.throttler is not None:
                    self.throttler.process_batch_stats(batch_stats)
                    pause = self.throttler.get_suggested_emergency_pause()
                    if pause > 0:
                        EMERGENCY_PAUSES.inc()
                        log_event("WARNING", "Worker", "EMERGENCY-PAUSE", {"pause_for": pause})
                        await asyncio.sleep(pause)

            if total_stats.duration > settings.min_runtime or jobs_left <= 0:
                break

            log_event("DEBUG", "Worker", "WAITING-FOR-JOBS", {
                "delay_for": settings.min_runtime_delay,
                "runtime": int(total_stats.duration),
                "runtime_min": settings.min_runtime,
                "jobs_left": jobs_left,
                "max_jobs": max_jobs,
            })
            await asyncio.sleep(settings.min_runtime_delay)

        total_stats.stop_timer()

        if total_stats.total == 0:
            log_event("DEBUG", "Worker", "NO-WORK-TO-DO")
        else:
            log_event("INFO", "Worker", "WORK-FINISHED", {
                "batch_count": batch_nr,
                "runtime": total_stats.duration,
                "memory_usage_peak": _peak_memory_mb(),
                **total_stats.summary(),
            })
            logger.info(f"Run summary:\n{total_stats.as_string(extended=True)}")

        return total_stats
