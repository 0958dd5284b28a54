from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx
from loguru import logger

from warmer.jobs.job import FailReason, Job
from warmer.monitoring.metrics_server import CACHE_HITS, WARMUP_REQUESTS, WARMUP_TTFB
from warmer.sessions.provider import SessionError, SessionProvider
from warmer.utils.config_loader import DEFAULT_CACHE_STATUS_HEADER, DEFAULT_WARMUP_HEADERS
from warmer.utils.logger import log_event


SUCCESS_CODES = frozenset({200, 204})
UNAVAILABLE_CODES = frozenset({502, 503, 504})


@dataclass
class WarmupResponse:
    response: httpx.Response
    ttfb: float
    transfer_time: float

    @property
    def status_code(self) -> int:
        return self.response.status_code


class JobExecutor:
    """Sends warm-up requests for jobs in concurrent batches.

    Every batch of ``concurrency`` requests is awaited as a whole before the
    next one starts; outcomes are written onto the jobs, never raised.
    """

    def __init__(
        self,
        sessions: SessionProvider,
        client: httpx.AsyncClient,
        warmup_headers: Optional[Dict[str, str]] = None,
        cache_status_header: str = DEFAULT_CACHE_STATUS_HEADER,
    ) -> None:
        self.sessions = sessions
        self.client = client
        self.warmup_headers = dict(DEFAULT_WARMUP_HEADERS if warmup_headers is None else warmup_headers)
        self.cache_status_header = cache_status_header

    # --------------------------
    #  Request
    # --------------------------
    async def _send(self, job: Job) -> WarmupResponse:
        headers = dict(self.warmup_headers)
        cookie_header = job.session.cookie_header() if job.session is not None else ""
        if cookie_header:
            headers["Cookie"] = cookie_header

        request = self.client.build_request("GET", job.url, headers=headers)

        start = time.perf_counter()
        response = await self.client.send(request, stream=True)
        ttfb = time.perf_counter() - start
        try:
            await response.aread()
        finally:
            await response.aclose()

        return WarmupResponse(response, ttfb, time.perf_counter() - start)

    # --------------------------
    #  Classification
    # --------------------------
    def _is_cache_hit(self, response: httpx.Response) -> bool:
        value = response.headers.get(self.cache_status_header, "")
        return value.strip().upper() == "HIT"

    def _record(self, job: Job, result: object) -> None:
        if isinstance(result, httpx.TimeoutException):
            job.mark_failed(FailReason.TIMEOUT)
        elif isinstance(result, httpx.TransportError):
            job.mark_failed(FailReason.CONNECTION)
        elif isinstance(result, WarmupResponse):
            self._record_response(job, result)
        elif isinstance(result, BaseException):
            raise result
        else:
            raise TypeError(f"Unexpected warm-up result {result!r}")

        WARMUP_REQUESTS.labels(outcome=job.fail_reason.value if job.is_failed else "completed").inc()
        if job.is_failed:
            log_event(
                "DEBUG", "Executor", "JOB-FAILED",
                {"job_id": job.id, "url": job.url, "reason": job.fail_reason.value, "status_code": job.status_code},
            )

    def _record_response(self, job: Job, result: WarmupResponse) -> None:
        status_code = result.status_code

        if status_code not in SUCCESS_CODES:
            reason = FailReason.UNAVAILABLE if status_code in UNAVAILABLE_CODES else FailReason.INVALID_CODE
            job.mark_failed(reason, status_code, result.ttfb)
            return

        session = job.session
        if session is not None and not session.is_valid():
            job.mark_failed(FailReason.SESSION_EXPIRED, status_code, result.ttfb)
            return

        already_warm = self._is_cache_hit(result.response)
        job.mark_completed(status_code, result.ttfb, already_warm)

        WARMUP_TTFB.observe(result.ttfb)
        if already_warm:
            CACHE_HITS.inc()

    def _apply_logouts(self, jobs: Sequence[Job], results: Sequence[object]) -> None:
        # Must run over the whole batch before any job is classified.
        for job, result in zip(jobs, results):
            session = job.session
            if session is None or session.invalidated or not isinstance(result, WarmupResponse):
                continue
            if session.response_logs_out(result.response):
                session.invalidate()
                log_event("WARNING", "Sessions", "INVALIDATED", session.describe(), note="logged out by response")

        for session in {id(job.session): job.session for job in jobs if job.session is not None}.values():
            self.sessions.sync_invalidation(session)

    # --------------------------
    #  Batches
    # --------------------------
    async def _resolve_sessions(self, batch: Sequence[Job]) -> List[Job]:
        # Resolved one by one so jobs sharing a session reuse a single log in.
        ready = []
        for job in batch:
            try:
                job.session = await self.sessions.get_session(job.url_host, job.customer_group)
            except SessionError as exc:
                logger.error(f"Could not get session for {job}, leaving it for a later lease: {exc}")
                continue
            ready.append(job)
        return ready

    async def _execute_batch(self, batch: Sequence[Job]) -> None:
        ready = await self._resolve_sessions(batch)
        if not ready:
            return

        results = await asyncio.gather(*(self._send(job) for job in ready), return_exceptions=True)
        self._apply_logouts(ready, results)

        unexpected: Optional[BaseException] = None
        for job, result in zip(ready, results):
            try:
                self._record(job, result)
            except BaseException as exc:
                unexpected = unexpected or exc

        if unexpected is not None:
            raise unexpected

    async def execute(self, jobs: Sequence[Job], concurrency: int = 1, delay: float = 0.0) -> None:
        """Warm up ``jobs``.

        The pacing unit is the batch: ``delay`` is waited once between two
        consecutive batches of ``concurrency`` requests and is not divided or
        multiplied by the concurrency. The throttler lowers concurrency before it
        adds delay, so the width of a batch is already accounted for.

        :param jobs: Jobs to execute, updated in place
        :param concurrency: Number of requests made in parallel
        :param delay: Wait in seconds between consecutive concurrent batches
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency is {concurrency} and cannot be lower than 1")

        for batch_nr, offset in enumerate(range(0, len(jobs), concurrency)):
            if batch_nr > 0 and delay > 0:
                await asyncio.sleep(delay)

            await self._execute_batch(jobs[offset:offset + concurrency])
