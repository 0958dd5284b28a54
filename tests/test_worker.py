import asyncio

import httpx
import pytest
from pydantic import ValidationError

from warmer.http.client_factory import ClientFactory
from warmer.monitoring.metrics_server import EMERGENCY_PAUSES
from warmer.sessions.credentials import PreconfiguredCredentialsProvider
from warmer.storage.memory_queue import MemoryQueue
from warmer.throttling.throttler import TransferTimeThrottler
from warmer.utils.config_loader import WorkerSettings
from warmer.worker import Worker, create_throttler


def shop(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/customer/account/login/":
        return httpx.Response(200, headers={"Set-Cookie": "PHPSESSID=sess; Max-Age=3600; Path=/"})
    if request.url.path.startswith("/slow"):
        raise httpx.ReadTimeout("timed out", request=request)
    return httpx.Response(200, headers={"X-Magento-Cache-Debug": "MISS"})


class RecordingThrottler:
    def __init__(self):
        self.batches = []

    def process_batch_stats(self, stats):
        self.batches.append(stats)

    def get_suggested_concurrency(self):
        return 1

    def get_suggested_request_delay(self):
        return 0.0

    def get_suggested_emergency_pause(self):
        return 0.0


def _worker(tmp_path, queue, handler=shop, throttler=None, **options):
    options.setdefault("min_runtime", 0)
    settings = WorkerSettings(session_storage_dir=str(tmp_path), **options)
    return Worker(
        queue,
        PreconfiguredCredentialsProvider("secret", "shop"),
        settings,
        client_factory=ClientFactory(transport=httpx.MockTransport(handler)),
        throttler=throttler,
    )


def _fill(queue, count, path="/page"):
    for i in range(count):
        queue.enqueue(f"https://shop.test{path}/{i}")


@pytest.mark.anyio
async def test_worker_drains_queue(tmp_path):
    queue = MemoryQueue()
    _fill(queue, 5)

    stats = await _worker(tmp_path, queue, concurrency=2, batch_size=2).run()

    assert stats.total == 5
    assert stats.completed == 5
    assert queue.rows == {}


@pytest.mark.anyio
async def test_worker_stops_after_max_jobs(tmp_path):
    queue = MemoryQueue()
    _fill(queue, 5)

    stats = await _worker(tmp_path, queue, max_jobs=3, batch_size=2, throttle=False).run()

    assert stats.total == 3
    assert len(queue.rows) == 2


@pytest.mark.anyio
async def test_failed_jobs_stay_in_queue(tmp_path):
    queue = MemoryQueue()
    _fill(queue, 2, path="/slow")
    _fill(queue, 1)

    stats = await _worker(tmp_path, queue, throttle=False).run()

    assert stats.failed == 2
    assert stats.completed == 1
    assert len(queue.rows) == 2


@pytest.mark.anyio
async def test_throttler_is_consulted_after_each_batch(tmp_path):
    queue = MemoryQueue()
    _fill(queue, 5)
    throttler = RecordingThrottler()

    await _worker(tmp_path, queue, throttler=throttler, concurrency=4, batch_size=2).run()

    assert [batch.total for batch in throttler.batches] == [2, 2, 1]


@pytest.mark.anyio
async def test_timeouts_trigger_emergency_pause(tmp_path, monkeypatch):
    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr("warmer.worker.asyncio.sleep", fake_sleep)

    queue = MemoryQueue()
    _fill(queue, 3, path="/slow")
    before = EMERGENCY_PAUSES._value.get()

    stats = await _worker(
        tmp_path, queue, concurrency=3, batch_size=3, max_jobs=3, throttle={"fail_delay": 5}
    ).run()

    assert stats.failed == 3
    assert sleeps == [15.0]
    assert EMERGENCY_PAUSES._value.get() == before + 1


@pytest.mark.anyio
async def test_idle_worker_waits_for_new_jobs(tmp_path, monkeypatch):
    queue = MemoryQueue()
    waits = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds):
        waits.append(seconds)
        if len(waits) == 1:
            _fill(queue, 1)
        await real_sleep(0)

    monkeypatch.setattr("warmer.worker.asyncio.sleep", fake_sleep)
    # stops once the job arriving during the first wait is processed
    worker = _worker(tmp_path, queue, min_runtime=3600, min_runtime_delay=0.25, max_jobs=1, throttle=False)

    stats = await worker.run()

    assert waits == [0.25]
    assert stats.completed == 1


@pytest.mark.anyio
async def test_worker_without_jobs_finishes_after_min_runtime(tmp_path):
    queue = MemoryQueue()

    stats = await _worker(tmp_path, queue, min_runtime=0.05, min_runtime_delay=0.01).run()

    assert stats.total == 0
    assert stats.duration > 0.05


def test_create_throttler_follows_settings():
    assert create_throttler(WorkerSettings(throttle=False)) is None

    throttler = create_throttler(WorkerSettings(concurrency=6))
    assert isinstance(throttler, TransferTimeThrottler)
    assert throttler.get_suggested_concurrency() == 6


def test_concurrency_below_one_is_rejected():
    with pytest.raises(ValidationError):
        WorkerSettings(concurrency=0)
