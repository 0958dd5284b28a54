from __future__ import annotations

import math
from typing import Optional, Protocol

from warmer.jobs.job import FailReason
from warmer.jobs.stats import Stats
from warmer.monitoring.metrics_server import THROTTLE_CONCURRENCY, THROTTLE_DELAY
from warmer.utils.config_loader import ThrottleSettings
from warmer.utils.logger import log_event


class Throttler(Protocol):
    """Throttling strategy fed with batch statistics.

    ``process_batch_stats`` adjusts the internal state for the next batch and
    never sleeps itself. The getters are pure reads: between two calls of
    ``process_batch_stats`` they always return the same values.
    """

    def process_batch_stats(self, stats: Stats) -> None: ...

    def get_suggested_concurrency(self) -> int: ...

    def get_suggested_request_delay(self) -> float: ...

    def get_suggested_emergency_pause(self) -> float: ...


def _format_relative_slowdown(relative_slowdown: float) -> str:
    return "{}{}% {}".format(
        "+" if relative_slowdown > 0 else "-",
        math.floor(abs(relative_slowdown) * 100.0),
        "slower" if relative_slowdown > 0 else "faster",
    )


class TransferTimeThrottler:
    """Keeps the average cache-miss time to first byte near a target.

    When the origin is slower than ``target_ttfb`` the concurrency is cut by
    the slowdown ratio first; whatever slowdown that does not cover becomes a
    delay between batches. As soon as a batch is within target both go back
    to their baselines. Timeouts and unavailable responses additionally ask
    for an emergency pause of ``fail_delay`` seconds per failure.
    """

    def __init__(self, settings: Optional[ThrottleSettings] = None) -> None:
        settings = settings or ThrottleSettings()
        if settings.target_concurrency is None:
            settings = settings.model_copy(update={"target_concurrency": 10})
        self.settings = settings

        self._concurrency: int = settings.target_concurrency
        self._request_delay: float = 0.0
        self._emergency_pause: float = 0.0
        self._publish()

    def _publish(self) -> None:
        THROTTLE_CONCURRENCY.set(self._concurrency)
        THROTTLE_DELAY.set(self._request_delay)

    def _adjust_for_transfer_time(self, stats: Stats) -> None:
        target_ttfb = self.settings.target_ttfb
        slowdown = stats.average_cache_miss_transfer_time - target_ttfb
        relative_slowdown = slowdown / target_ttfb

        if relative_slowdown <= 0.0:
            self._concurrency = self.settings.target_concurrency
            self._request_delay = 0.0
            log_event(
                "DEBUG", "Throttler", "SLOWDOWN",
                {"relative": _format_relative_slowdown(relative_slowdown), "slowdown": slowdown},
            )
            return

        log_event(
            "WARNING", "Throttler", "SLOWDOWN",
            {"relative": _format_relative_slowdown(relative_slowdown), "slowdown": slowdown},
            note="throttling...",
        )

        suggested = max(1, math.floor(self._concurrency / math.ceil(relative_slowdown)))
        relative_decrease = (self._concurrency - suggested) / self._concurrency

        if suggested < self._concurrency:
            self._concurrency = suggested
            log_event("WARNING", "Throttler", "CONCURRENCY-DECREASED", {"concurrency": suggested})

        remaining = relative_slowdown - relative_decrease
        if remaining > 0.0:
            self._request_delay = remaining * target_ttfb * self.settings.slowdown_delay_multiplier
            log_event("WARNING", "Throttler", "DELAY-ADDED", {"delay": self._request_delay})

    def process_batch_stats(self, stats: Stats) -> None:
        # Nothing was fetched from the origin, so there is no signal to react to.
        if stats.cache_miss_transfer_time_count > 0:
            self._adjust_for_transfer_time(stats)

        fail_count = stats.get_fail_reason_count(FailReason.TIMEOUT) + stats.get_fail_reason_count(
            FailReason.UNAVAILABLE
        )

        if fail_count > 0:
            self._emergency_pause = self.settings.fail_delay * fail_count
            log_event(
                "WARNING", "Throttler", "EMERGENCY-PAUSE",
                {"fails": fail_count, "pause": self._emergency_pause},
            )
        else:
            self._emergency_pause = 0.0

        self._publish()

    def get_suggested_concurrency(self) -> int:
        return self._concurrency

    def get_suggested_request_delay(self) -> float:
        return self._request_delay

    def get_suggested_emergency_pause(self) -> float:
        return self._emergency_pause
