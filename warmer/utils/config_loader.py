from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PathLike = Union[str, Path]

DEFAULT_TIMEOUT = 30
DEFAULT_WARMUP_HEADERS = {
    # Tells the cache layer to store the page but skip sending the body back.
    "X-Warmup": "yes",
    # Must match what browsers send if the backend compresses responses,
    # otherwise the warmed variant is never served.
    "Accept-Encoding": "gzip, deflate",
}
DEFAULT_CACHE_STATUS_HEADER = "X-Magento-Cache-Debug"


class ThrottleSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # TTFB should be kept below this value or throttling starts
    target_ttfb: float = Field(default=10.0, gt=0)
    # Concurrency restored once the server is healthy; the worker's
    # concurrency is used when unset.
    target_concurrency: Optional[int] = Field(default=None, ge=1)
    # How much to multiply the slowdown delay
    slowdown_delay_multiplier: float = Field(default=1.0, ge=0)
    # Pause per timed out / unavailable request, in seconds
    fail_delay: float = Field(default=10.0, ge=0)


class WorkerSettings(BaseModel):
    """Options recognized by a single worker run."""

    model_config = ConfigDict(extra="forbid")

    concurrency: int = Field(default=1, ge=1)
    # Max number of jobs processed before terminating.
    max_jobs: int = Field(default=100, ge=0)
    # Time spent polling for jobs when the queue is empty, so that an idle
    # worker does not exit (and get restarted) in a tight loop.
    min_runtime: float = Field(default=10.0, ge=0)
    min_runtime_delay: float = Field(default=0.5, ge=0)
    # Throttling adjustments are made only in-between batches, so this
    # should be larger than the concurrency.
    batch_size: int = Field(default=10, ge=1)
    throttle: Union[bool, ThrottleSettings] = True
    warmup_requests_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    session_requests_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    warmup_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_WARMUP_HEADERS))
    cache_status_header: str = DEFAULT_CACHE_STATUS_HEADER
    # e.g. http://10.13.37.1:8080/ to send warm-up requests straight to the cache node
    varnish_uri: Optional[str] = None
    log_requests: bool = False
    session_storage_dir: Optional[str] = None
    login_scheme: str = "https"

    def throttle_settings(self) -> Optional[ThrottleSettings]:
        """Resolved throttler settings, or None when throttling is off."""
        if self.throttle is False:
            return None

        settings = self.throttle if isinstance(self.throttle, ThrottleSettings) else ThrottleSettings()
        if settings.target_concurrency is None:
            settings = settings.model_copy(update={"target_concurrency": self.concurrency})
        return settings


class Config(BaseSettings):
    database_url: Optional[str] = None
    credentials_password: str = ""
    credentials_domain: str = ""
    log_level: str = "INFO"
    log_path: Optional[str] = None
    metrics_port: Optional[int] = 8000
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__", extra="ignore")


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Returns True if an env file was found and loaded.
    """

    path = dotenv_path
    if path is None:
        path = find_dotenv(usecwd=True)

    if not path:
        return False

    return load_dotenv(dotenv_path=path, override=override)


def _load_yaml_config(path: PathLike | None = None) -> Dict[str, Any]:
    if path is None:
        path = os.getenv("WARMER_CONFIG") or os.path.join(
            os.path.dirname(__file__), "../config/config.yaml"
        )
    if not os.path.exists(path):
        return {}

    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(path: PathLike | None = None) -> Config:
    """Build the configuration: defaults < YAML file < environment."""
    load_environment()
    file_data = _load_yaml_config(path)

    env_config = Config()

    # Environment entries (DATABASE_URL, WORKER__CONCURRENCY, ...) win over the file.
    top: Dict[str, Any] = {k: v for k, v in file_data.items() if k != "worker"}
    top.update(env_config.model_dump(exclude_unset=True, exclude={"worker"}))

    worker_data: Dict[str, Any] = dict(file_data.get("worker") or {})
    worker_data.update(env_config.worker.model_dump(exclude_unset=True))

    return Config(**top, worker=WorkerSettings(**worker_data))
