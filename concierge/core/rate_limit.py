import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from concierge.core.config import settings
from concierge.core.logging import get_logger
from concierge.core.metrics import RATE_LIMIT_DECISIONS, RATE_LIMIT_WINDOWS
from concierge.domain.models.rate_limit import AI_CONCIERGE_FAMILY, RateLimitDecision, RateLimitKey, RateLimitWindow

logger = get_logger("rate_limit")


@dataclass(frozen=True)
class EndpointFamily:
    """A group of routes sharing one quota per caller."""
    name: str
    path_prefix: str
    max_requests: int
    window_seconds: int

    def matches(self, path: str) -> bool:
        return path.startswith(self.path_prefix)


def default_endpoint_families() -> Dict[str, EndpointFamily]:
    return {
        AI_CONCIERGE_FAMILY: EndpointFamily(
            name=AI_CONCIERGE_FAMILY,
            path_prefix=f"{settings.API_PREFIX}/ai/",
            max_requests=settings.AI_RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.AI_RATE_LIMIT_WINDOW_SECONDS,
        )
    }


class InMemoryRateLimiter:
    """
    Fixed-window rate limiter keyed by (user, endpoint family).

    Counters live in process memory and reset on restart. Every operation is
    synchronous, so a check-and-consume for one key cannot interleave with
    another on the same event loop.
    """

    def __init__(
        self,
        families: Optional[Dict[str, EndpointFamily]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.families = families if families is not None else default_endpoint_families()
        self._clock = clock
        self._windows: Dict[RateLimitKey, RateLimitWindow] = {}

    def family_for_path(self, path: str) -> Optional[EndpointFamily]:
        for family in self.families.values():
            if family.matches(path):
                return family
        return None

    def _family(self, key: RateLimitKey) -> EndpointFamily:
        family = self.families.get(key.endpoint_family)
        if family is None:
            raise KeyError(f"Unknown endpoint family: {key.endpoint_family}")
        return family

    def _current_window(self, key: RateLimitKey, now: float) -> RateLimitWindow:
        window = self._windows.get(key)
        if window is None or window.is_expired(now):
            family = self._family(key)
            window = RateLimitWindow(
                window_started_at=now,
                request_count=0,
                limit=family.max_requests,
                window_seconds=family.window_seconds,
            )
            self._windows[key] = window
            RATE_LIMIT_WINDOWS.set(len(self._windows))
        return window

    def check_and_consume(self, key: RateLimitKey, now: Optional[float] = None) -> RateLimitDecision:
        """
        Admit or reject one request for ``key`` and record it when admitted.
        """
        now = self._clock() if now is None else now
        window = self._current_window(key, now)

        if window.request_count < window.limit:
            window.request_count += 1
            RATE_LIMIT_DECISIONS.labels(family=key.endpoint_family, outcome="admitted").inc()
            return RateLimitDecision(
                admitted=True,
                limit=window.limit,
                remaining=window.limit - window.request_count,
                retry_after_seconds=0,
                resets_at=window.resets_at,
            )

        retry_after = max(1, math.ceil(window.resets_at - now))
        RATE_LIMIT_DECISIONS.labels(family=key.endpoint_family, outcome="rejected").inc()
        logger.warning(
            f"Rate limit exceeded for {key}: {window.limit} requests per {window.window_seconds} seconds",
            extra={"rate_limit_key": str(key), "retry_after": retry_after}
        )
        return RateLimitDecision(
            admitted=False,
            limit=window.limit,
            remaining=0,
            retry_after_seconds=retry_after,
            resets_at=window.resets_at,
        )

    def peek(self, key: RateLimitKey, now: Optional[float] = None) -> RateLimitDecision:
        """
        Report the quota for ``key`` without consuming a request.
        """
        now = self._clock() if now is None else now
        family = self._family(key)
        window = self._windows.get(key)

        if window is None or window.is_expired(now):
            return RateLimitDecision(
                admitted=True,
                limit=family.max_requests,
                remaining=family.max_requests,
                retry_after_seconds=0,
                resets_at=now + family.window_seconds,
            )

        remaining = max(0, window.limit - window.request_count)
        return RateLimitDecision(
            admitted=remaining > 0,
            limit=window.limit,
            remaining=remaining,
            retry_after_seconds=0 if remaining > 0 else max(1, math.ceil(window.resets_at - now)),
            resets_at=window.resets_at,
        )

    def reset(self, key: RateLimitKey) -> None:
        if self._windows.pop(key, None) is not None:
            RATE_LIMIT_WINDOWS.set(len(self._windows))
            logger.info(f"Rate limit reset for {key}")

    def clean_expired_records(self, now: Optional[float] = None) -> int:
        """
        Drop expired windows so idle callers do not accumulate in memory.
        """
        now = self._clock() if now is None else now
        expired = [key for key, window in self._windows.items() if window.is_expired(now)]
        for key in expired:
            del self._windows[key]

        RATE_LIMIT_WINDOWS.set(len(self._windows))
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired rate limit windows")
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


# Singleton instance
_rate_limiter: Optional[InMemoryRateLimiter] = None

def get_rate_limiter() -> InMemoryRateLimiter:
    """Get singleton instance of InMemoryRateLimiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = InMemoryRateLimiter()
    return _rate_limiter
