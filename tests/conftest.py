import sys
import time
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from warmer.jobs.job import Job
from warmer.sessions.cookies import Cookie
from warmer.sessions.session import Session


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment out of configuration dependent tests."""

    for key in [
        "DATABASE_URL",
        "WARMUP_DATABASE_URL",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_HOST",
        "POSTGRES_PORT",
        "POSTGRES_DB",
        "WARMER_CONFIG",
        "CREDENTIALS_PASSWORD",
        "CREDENTIALS_DOMAIN",
        "LOG_LEVEL",
        "METRICS_PORT",
        "WORKER__CONCURRENCY",
        "WORKER__BATCH_SIZE",
        "WORKER__THROTTLE",
    ]:
        monkeypatch.delenv(key, raising=False)

    yield


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_job():
    counter = {"id": 0}

    def factory(url="https://shop.test/product/1", customer_group=None, entity_id=1, entity_type="product"):
        counter["id"] += 1
        return Job(counter["id"], url, entity_id, entity_type, customer_group)

    return factory


@pytest.fixture
def live_session_cookies():
    """Cookies of a logged in customer, valid for the next hour."""
    expires = time.time() + 3600
    return [
        Cookie(Session.SESSION_COOKIE, "abc123", expires=expires),
        Cookie(Session.VARY_COOKIE, "f00d", expires=expires),
    ]
