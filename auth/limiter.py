"""
auth/limiter.py -- Rate Limiter: per-(action, actor) sliding-window counters.

Backed by the `limits` library (the same engine slowapi uses for the HTTP
layer). MovingWindowRateLimiter keeps the timestamps of recent hits per key,
which is a true trailing 60-second window rather than a fixed bucket.

The storage URI picks the counter backend: "memory://" for a single process,
"redis://host:6379" when several workers must share counters. Counters are
ephemeral; losing them only weakens throttling for a while.

Failure policy when the counter backend itself errors:
  check_and_record(fail_closed=True)  -- deny (the throttled write is refused)
  is_allowed()                        -- allow (read paths stay available)

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import math
import time

from limits import RateLimitItemPerMinute
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from auth.models import RateLimitDecision

logger = logging.getLogger("identity.limiter")

WINDOW_SECONDS = 60


class RateLimiter:
    def __init__(self, storage_uri: str = "memory://") -> None:
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def _retry_after(self, item, action: str, actor: str) -> int:
        reset_time, _remaining = self._strategy.get_window_stats(item, action, actor)
        return max(1, math.ceil(reset_time - time.time()))

    def check_and_record(
        self, action: str, actor: str, limit_per_minute: int, fail_closed: bool = True
    ) -> RateLimitDecision:
        """Count one attempt of action by actor and say whether it may proceed."""
        item = RateLimitItemPerMinute(limit_per_minute)
        try:
            if self._strategy.hit(item, action, actor):
                return RateLimitDecision(allowed=True)
            retry_after = self._retry_after(item, action, actor)
        except Exception:
            logger.exception("Rate limit backend failed for %s/%s", action, actor)
            return RateLimitDecision(allowed=not fail_closed, retry_after=WINDOW_SECONDS if fail_closed else 0)
        logger.warning("Rate limit hit: %s by %s (retry in %ds)", action, actor, retry_after)
        return RateLimitDecision(allowed=False, retry_after=retry_after)

    def is_allowed(self, action: str, actor: str, limit_per_minute: int) -> bool:
        """Peek without recording. Backend failures allow."""
        item = RateLimitItemPerMinute(limit_per_minute)
        try:
            return self._strategy.test(item, action, actor)
        except Exception:
            logger.exception("Rate limit backend failed for %s/%s", action, actor)
            return True

    def reset(self) -> None:
        """Drop every counter. Maintenance and test helper."""
        self._storage.reset()
