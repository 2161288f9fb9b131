"""
Daily token quota.

The counter is denominated in tokens (see tokens.py) and resets once per
local calendar day. The reset is checked lazily on every access, so a process
that sat idle across midnight never admits against yesterday's count.
"""

import logging
from datetime import date, datetime
from threading import Lock
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

DAILY_TOKEN_LIMIT = 100_000


class QuotaManager:
    """
    Tracks tokens spent today against a daily limit.

    admit() and commit() are separate checks for single-caller use; concurrent
    callers use reserve() and release(), which check and count under one lock.

    Attributes:
        daily_limit: Maximum tokens admitted per calendar day
    """

    def __init__(self, daily_limit: int = DAILY_TOKEN_LIMIT, now: Callable[[], datetime] = datetime.now):
        self.daily_limit = daily_limit
        self._now = now
        self._lock = Lock()
        self._count = 0
        self._last_reset_day: date = now().date()

    def _maybe_reset(self) -> None:
        """Reset the counter if a day boundary has passed. Must be called with lock held."""
        today = self._now().date()
        if today > self._last_reset_day:
            logger.info(
                f"Daily token counter reset ({self._count} tokens used on {self._last_reset_day})"
            )
            self._count = 0
            self._last_reset_day = today

    def admit(self, estimated_tokens: int) -> bool:
        """
        Check whether a request of estimated_tokens fits in today's budget.

        Reaching the limit exactly is allowed; exceeding it is not.
        """
        with self._lock:
            self._maybe_reset()
            allowed = self._count + estimated_tokens <= self.daily_limit
            if not allowed:
                logger.warning(
                    f"Quota rejected request: {self._count} + {estimated_tokens} > {self.daily_limit}"
                )
            return allowed

    def commit(self, tokens: int) -> None:
        """Record tokens spent by a completed request."""
        with self._lock:
            self._maybe_reset()
            self._count += tokens

    def reserve(self, estimated_tokens: int) -> bool:
        """
        Admit and commit in one step.

        Concurrent callers each see the tokens reserved by the others, so the
        counter never passes daily_limit. A reservation for a request that
        then fails should be handed back with release().

        Returns:
            True if the tokens were reserved, False if they do not fit.
        """
        with self._lock:
            self._maybe_reset()
            if self._count + estimated_tokens > self.daily_limit:
                logger.warning(
                    f"Quota rejected request: {self._count} + {estimated_tokens} > {self.daily_limit}"
                )
                return False
            self._count += estimated_tokens
            return True

    def release(self, tokens: int) -> None:
        """Return reserved tokens for a request that was not completed."""
        with self._lock:
            self._maybe_reset()
            self._count = max(self._count - tokens, 0)

    def reset(self) -> None:
        """Zero the counter for today."""
        with self._lock:
            self._count = 0
            self._last_reset_day = self._now().date()

    @property
    def daily_token_count(self) -> int:
        with self._lock:
            self._maybe_reset()
            return self._count

    @property
    def remaining(self) -> int:
        with self._lock:
            self._maybe_reset()
            return max(self.daily_limit - self._count, 0)

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._maybe_reset()
            return {
                "daily_limit": self.daily_limit,
                "used": self._count,
                "remaining": max(self.daily_limit - self._count, 0),
                "day": self._last_reset_day.isoformat(),
            }
