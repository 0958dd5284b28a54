from __future__ import annotations

import time
from collections import Counter
from typing import Iterable, Optional

from warmer.jobs.job import FailReason, Job


class Stats:
    """Aggregated outcome of a set of jobs.

    Instances merge with ``add`` so a run total can be kept without walking
    every job again. Only successful cache misses feed the cache-miss transfer
    time.
    """

    def __init__(self, name: str = "batch", jobs: Iterable[Job] = ()) -> None:
        self.name = name
        self.total = 0
        self.pending = 0
        self.completed = 0
        self.failed = 0
        self.already_warm = 0
        self.fail_reasons: Counter[str] = Counter()
        self.status_codes: Counter[int] = Counter()

        self.transfer_time_sum = 0.0
        self.transfer_time_count = 0
        self.cache_miss_transfer_time_sum = 0.0
        self.cache_miss_transfer_time_count = 0

        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None

        for job in jobs:
            self.add_for_job(job)

    def add_for_job(self, job: Job) -> None:
        self.total += 1

        if job.transfer_time is not None:
            self.transfer_time_sum += job.transfer_time
            self.transfer_time_count += 1

        if job.is_completed:
            self.completed += 1

            if job.already_warm:
                self.already_warm += 1
            elif job.transfer_time is not None:
                self.cache_miss_transfer_time_sum += job.transfer_time
                self.cache_miss_transfer_time_count += 1
        elif job.is_failed:
            self.failed += 1
            if job.fail_reason is not None:
                self.fail_reasons[job.fail_reason.value] += 1
            if job.status_code is not None:
                self.status_codes[job.status_code] += 1
        else:
            self.pending += 1

    def add(self, other: "Stats") -> "Stats":
        self.total += other.total
        self.pending += other.pending
        self.completed += other.completed
        self.failed += other.failed
        self.already_warm += other.already_warm
        self.fail_reasons.update(other.fail_reasons)
        self.status_codes.update(other.status_codes)
        self.transfer_time_sum += other.transfer_time_sum
        self.transfer_time_count += other.transfer_time_count
        self.cache_miss_transfer_time_sum += other.cache_miss_transfer_time_sum
        self.cache_miss_transfer_time_count += other.cache_miss_transfer_time_count
        return self

    def get_fail_reason_count(self, reason: FailReason) -> int:
        return self.fail_reasons.get(reason.value, 0)

    def get_status_code_count(self, status_code: int) -> int:
        return self.status_codes.get(status_code, 0)

    @property
    def average_transfer_time(self) -> float:
        if not self.transfer_time_count:
            return 0.0
        return self.transfer_time_sum / self.transfer_time_count

    @property
    def average_cache_miss_transfer_time(self) -> float:
        if not self.cache_miss_transfer_time_count:
            return 0.0
        return self.cache_miss_transfer_time_sum / self.cache_miss_transfer_time_count

    # --------------------------
    #  Timer
    # --------------------------
    def start_timer(self) -> None:
        self._started_at = time.monotonic()
        self._stopped_at = None

    def stop_timer(self) -> None:
        if self._started_at is not None:
            self._stopped_at = time.monotonic()

    @property
    def duration(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else time.monotonic()
        return end - self._started_at

    # --------------------------
    #  Reporting
    # --------------------------
    def counts(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
            "already_warm": self.already_warm,
        }

    def summary(self) -> dict:
        data = self.counts()
        data["avg_transfer_time"] = self.average_transfer_time
        data["avg_cache_miss_transfer_time"] = self.average_cache_miss_transfer_time
        for reason, count in sorted(self.fail_reasons.items()):
            data[f"fail_{reason.lower()}"] = count
        for code, count in sorted(self.status_codes.items()):
            data[f"status_{code}"] = count
        return data

    @staticmethod
    def _format_counts(values: dict) -> str:
        return ", ".join(f"{name}: {value}" for name, value in values.items())

    def as_string(self, extended: bool = False) -> str:
        text = self._format_counts(
            {name.replace("_", " ").capitalize(): value for name, value in self.counts().items()}
        )

        if extended:
            if self.fail_reasons:
                text += "\nFail reasons - " + self._format_counts(dict(sorted(self.fail_reasons.items())))
            if self.status_codes:
                text += "\nStatus codes - " + self._format_counts(dict(sorted(self.status_codes.items())))

        return text

    def __str__(self) -> str:
        return self.as_string()
