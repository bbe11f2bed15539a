# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""In-memory rate limiting for login (brute-force protection)."""

import time
from collections import defaultdict

from fastapi import Request

from sonance_server.errors import RateLimited

# (client_key, endpoint) -> list of request timestamps in window
_buckets: defaultdict[tuple[str, str], list[float]] = defaultdict(list)
# Window seconds; max requests per window per endpoint
WINDOW = 60
LIMITS: dict[str, int] = {
    "login": 10,
}


def _client_key(request: Request) -> str:
    """Prefer X-Forwarded-For when behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host or "unknown"
    return "unknown"


def _clean_old(bucket: list[float], now: float) -> None:
    cutoff = now - WINDOW
    while bucket and bucket[0] < cutoff:
        bucket.pop(0)


def _drop_idle(now: float) -> None:
    """Forget clients with no requests left in the window."""
    cutoff = now - WINDOW
    for key in [k for k, bucket in _buckets.items() if not bucket or bucket[-1] < cutoff]:
        del _buckets[key]


def check_rate_limit(request: Request, endpoint: str) -> None:
    """Raise RateLimited if the client has exceeded the limit for this endpoint."""
    limit = LIMITS.get(endpoint)
    if limit is None:
        return
    now = time.monotonic()
    _drop_idle(now)
    bucket = _buckets[(_client_key(request), endpoint)]
    _clean_old(bucket, now)
    if len(bucket) >= limit:
        raise RateLimited()
    bucket.append(now)


def reset() -> None:
    _buckets.clear()


async def rate_limit_login(request: Request) -> None:
    """FastAPI dependency: add Depends(rate_limit_login) to login routes."""
    check_rate_limit(request, "login")
