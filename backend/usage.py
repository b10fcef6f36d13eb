import logging
import threading
from datetime import datetime
from typing import Callable, Literal

import config
from errors import QuotaExceeded
from models import QuotaStatus

logger = logging.getLogger(__name__)

UsageKind = Literal["chat", "whisper", "tts"]

# Estimated cost per call in USD
CHAT_PER_REQUEST = 0.001
WHISPER_PER_SECOND = 0.0001  # ~$0.006/minute
TTS_PER_CHAR = 0.000015  # ~$0.015/1000 chars

DEFAULT_WHISPER_SECONDS = 5
DEFAULT_TTS_CHARS = 100


def estimate_cost(kind: UsageKind, seconds: float | None = None, chars: int | None = None) -> float:
    if kind == "whisper":
        return (seconds or DEFAULT_WHISPER_SECONDS) * WHISPER_PER_SECOND
    if kind == "tts":
        return (chars or DEFAULT_TTS_CHARS) * TTS_PER_CHAR
    return CHAT_PER_REQUEST


class UsageTracker:
    """
    Monthly spend ledger shared by every session.

    try_acquire() checks the ceiling and records the cost under one lock, so
    concurrent sessions can overshoot the limit by at most the request that
    crossed it. Totals reset when the calendar month changes.
    """

    def __init__(self, monthly_limit: float | None = None, clock: Callable[[], datetime] = datetime.now):
        self.monthly_limit = config.MONTHLY_USAGE_LIMIT if monthly_limit is None else monthly_limit
        self._clock = clock
        self._lock = threading.Lock()
        now = clock()
        self._period = (now.year, now.month)
        self._total_cost = 0.0
        self._request_count = 0
        self._last_updated = now

    def _reset_if_new_month(self) -> None:
        now = self._clock()
        if (now.year, now.month) != self._period:
            logger.info("Resetting usage for new month: %d/%d", now.month, now.year)
            self._period = (now.year, now.month)
            self._total_cost = 0.0
            self._request_count = 0
            self._last_updated = now

    def _status(self) -> QuotaStatus:
        remaining = max(0.0, self.monthly_limit - self._total_cost)
        return QuotaStatus(
            allowed=remaining > 0,
            remaining=round(remaining, 2),
            used=round(self._total_cost, 2),
        )

    def _record(self, kind: UsageKind, cost: float) -> None:
        self._total_cost += cost
        self._request_count += 1
        self._last_updated = self._clock()
        logger.info(
            "Usage: +$%.4f (%s) | Total: $%.2f/%s", cost, kind, self._total_cost, self.monthly_limit
        )

    def check_quota(self) -> QuotaStatus:
        with self._lock:
            self._reset_if_new_month()
            return self._status()

    def record_usage(self, kind: UsageKind, seconds: float | None = None, chars: int | None = None) -> float:
        cost = estimate_cost(kind, seconds, chars)
        with self._lock:
            self._reset_if_new_month()
            self._record(kind, cost)
        return cost

    def try_acquire(self, kind: UsageKind, seconds: float | None = None, chars: int | None = None) -> float:
        """Check the ceiling and record the call in one step. Raises QuotaExceeded."""
        cost = estimate_cost(kind, seconds, chars)
        with self._lock:
            self._reset_if_new_month()
            if not self._status().allowed:
                stats = self._stats()
                logger.warning("Monthly usage limit reached ($%.2f)", self.monthly_limit)
                raise QuotaExceeded(
                    f"Monthly usage limit of ${self.monthly_limit:g} reached. Resets next month.",
                    stats,
                )
            self._record(kind, cost)
        return cost

    def _stats(self) -> dict:
        year, month = self._period
        percent = round(self._total_cost / self.monthly_limit * 100) if self.monthly_limit else 100
        return {
            "month": month,
            "year": year,
            "total_cost_usd": round(self._total_cost, 2),
            "limit_usd": self.monthly_limit,
            "percent_used": percent,
            "request_count": self._request_count,
            "last_updated": self._last_updated.isoformat(),
        }

    def stats(self) -> dict:
        with self._lock:
            self._reset_if_new_month()
            return self._stats()
