from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from warmer.utils.url_utils import split_url

if TYPE_CHECKING:
    from warmer.sessions.session import Session


class JobStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FailReason(str, Enum):
    # Connection timeout exceeded, server overloaded?
    TIMEOUT = "CONNECTION_TIMEOUT"
    # Any other transport level failure (refused, reset, DNS...)
    CONNECTION = "CONNECTION_FAILED"
    # Site is not available - codes 502, 503, 504
    UNAVAILABLE = "SITE_NOT_AVAILABLE"
    # Status code other than the expected 200 / 204
    INVALID_CODE = "INVALID_STATUS_CODE"
    # Session stopped being valid while the request was in flight
    SESSION_EXPIRED = "SESSION_EXPIRED"


class JobStateError(RuntimeError):
    """Raised when an already finished job is finished again."""


@dataclass
class Job:
    """One URL to warm, as leased from the queue.

    The outcome fields are written exactly once, by ``mark_completed`` or
    ``mark_failed``; a job that is not pending is never modified again.
    """

    id: int
    url: str
    entity_id: int
    entity_type: str
    customer_group: Optional[str] = None

    status: JobStatus = field(default=JobStatus.PENDING, init=False)
    status_code: Optional[int] = field(default=None, init=False)
    fail_reason: Optional[FailReason] = field(default=None, init=False)
    transfer_time: Optional[float] = field(default=None, init=False)
    already_warm: bool = field(default=False, init=False)

    # Session used for the last attempt; lives for one run only.
    session: Optional["Session"] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.customer_group == "":
            self.customer_group = None
        elif self.customer_group is not None:
            self.customer_group = str(self.customer_group)
        self._url_parts = split_url(self.url)

    @property
    def url_scheme(self) -> str:
        return self._url_parts.scheme

    @property
    def url_host(self) -> str:
        return self._url_parts.host

    @property
    def url_location(self) -> str:
        """Path with the query string (if present)."""
        return self._url_parts.location

    @property
    def is_anonymous(self) -> bool:
        return self.customer_group is None

    @property
    def is_pending(self) -> bool:
        return self.status is JobStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status is JobStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status is JobStatus.FAILED

    def _ensure_pending(self) -> None:
        if not self.is_pending:
            raise JobStateError(f"Job {self.id} is already {self.status.value}")

    def mark_completed(
        self,
        status_code: int,
        transfer_time: Optional[float] = None,
        already_warm: bool = False,
    ) -> None:
        self._ensure_pending()
        self.status = JobStatus.COMPLETED
        self.status_code = status_code
        self.transfer_time = transfer_time
        self.already_warm = already_warm

    def mark_failed(
        self,
        reason: FailReason,
        status_code: Optional[int] = None,
        transfer_time: Optional[float] = None,
    ) -> None:
        self._ensure_pending()
        self.status = JobStatus.FAILED
        self.fail_reason = reason
        self.status_code = status_code
        self.transfer_time = transfer_time

    def __str__(self) -> str:
        group = self.customer_group or "anon"
        return f"Job #{self.id} {self.url} [{group}] {self.status.value}"
