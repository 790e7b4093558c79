"""
Rate limiter: in-process sliding window, one bucket per key.

Buckets:
  - apikey:<account_id>  every account-key endpoint (default 120/min)
  - ip:<client ip>       the unauthenticated device-facing endpoints,
                         subscribe and click reports (default 60/min)

State lives in this process only; behind several workers each one limits
on its own.
"""

import time
from collections import deque

from fastapi import HTTPException, Request

from app.config import get_settings

import structlog

logger = structlog.get_logger()

WINDOW_SECONDS = 60
MAX_BUCKETS = 10000  # sweep idle buckets once the map grows past this

_buckets: dict[str, deque[float]] = {}

_PRIVATE_PREFIXES = ("10.", "192.168.", "127.", "::1") + tuple(f"172.{n}." for n in range(16, 32))


def _sweep(now: float, window_seconds: int):
    """Drop buckets with no hit inside the window."""
    cutoff = now - window_seconds
    idle = [key for key, hits in _buckets.items() if not hits or hits[-1] <= cutoff]
    for key in idle:
        del _buckets[key]


def _take(key: str, limit: int, window_seconds: int) -> int | None:
    """Record one hit. Returns the remaining allowance, or None when full."""
    now = time.monotonic()
    if key not in _buckets and len(_buckets) >= MAX_BUCKETS:
        _sweep(now, window_seconds)
    hits = _buckets.setdefault(key, deque())
    while hits and hits[0] <= now - window_seconds:
        hits.popleft()
    if len(hits) >= limit:
        return None
    hits.append(now)
    return limit - len(hits)


def check_rate_limit(key: str, limit: int, window: int = WINDOW_SECONDS) -> int:
    remaining = _take(key, limit, window)
    if remaining is None:
        logger.info("rate_limited", bucket=key.split(":", 1)[0], limit=limit)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def reset_rate_limits():
    _buckets.clear()


def get_real_ip(request: Request) -> str:
    """First public address in X-Forwarded-For, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",")]
        public = [ip for ip in ips if not ip.startswith(_PRIVATE_PREFIXES)]
        return public[0] if public else ips[0]
    return request.client.host if request.client else "unknown"


def rate_limit_ip(request: Request, limit: int | None = None) -> int:
    settings = get_settings()
    return check_rate_limit(f"ip:{get_real_ip(request)}", limit or settings.rate_limit_per_ip_per_minute)


def rate_limit_api_key(key_id: str, limit: int | None = None) -> int:
    settings = get_settings()
    return check_rate_limit(f"apikey:{key_id}", limit or settings.rate_limit_per_api_key_per_minute)
