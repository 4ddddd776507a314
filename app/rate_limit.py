"""
Per-IP sliding-window rate limiting via the limits library (moving window).

Every (bucket, client IP) pair has its own window. Handlers call
check_rate_limit() first and return its response when it is not None.
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from app.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"
RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_ms: int


# Reported categories. The lowercased name doubles as the bucket key.
RATE_LIMITS = {
    "KEY_GEN": RateLimitRule(limit=5, window_ms=60_000),
    "WRITE": RateLimitRule(limit=30, window_ms=60_000),
    "READ": RateLimitRule(limit=60, window_ms=60_000),
}


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then "unknown"."""
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return UNKNOWN_IP


def _item(limit: int, window_ms: int) -> RateLimitItem:
    # limits works in whole seconds
    return RateLimitItemPerSecond(limit, max(1, math.ceil(window_ms / 1000)))


class SlidingWindowLimiter:
    def __init__(self, storage_uri: str = "memory://"):
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def check(self, request: Request, limit: int, window_ms: int, bucket: str) -> Optional[JSONResponse]:
        """
        Count one request against ``bucket`` for the caller's IP.

        Returns None when allowed, or a ready-to-send 429 response. Rejected
        requests are not counted.
        """
        ip = client_ip(request)
        item = _item(limit, window_ms)
        if self._strategy.hit(item, bucket, ip):
            return None

        reset_time, _ = self._strategy.get_window_stats(item, bucket, ip)
        retry_after = max(1, math.ceil(reset_time - time.time()))
        logger.info("Rate limit exceeded: bucket=%s ip=%s", bucket, ip)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": RATE_LIMITED_MESSAGE, "retry_after": retry_after},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )

    def stats(self, ip: str) -> list[dict]:
        """Current consumption of each RATE_LIMITS category for ``ip``."""
        snapshot = []
        for name, rule in RATE_LIMITS.items():
            prefix = name.lower()
            reset_time, remaining = self._strategy.get_window_stats(
                _item(rule.limit, rule.window_ms), prefix, ip
            )
            remaining = max(0, min(rule.limit, remaining))
            used = rule.limit - remaining
            # camelCase keys are part of the public /rate-limits payload
            snapshot.append({
                "prefix": prefix,
                "used": used,
                "limit": rule.limit,
                "windowMs": rule.window_ms,
                "remaining": remaining,
                "resetsAt": (
                    datetime.fromtimestamp(reset_time, tz=timezone.utc).isoformat()
                    if used else None
                ),
            })
        return snapshot

    def reset(self) -> None:
        self._storage.reset()


limiter = SlidingWindowLimiter(settings.rate_limit_storage_uri)


def check_rate_limit(request: Request, limit: int, window_ms: int, bucket: str) -> Optional[JSONResponse]:
    return limiter.check(request, limit, window_ms, bucket)


def get_rate_limit_stats(ip: str) -> list[dict]:
    return limiter.stats(ip)
