"""Rate limit response headers.

Renders the legacy ``X-RateLimit-*`` set and the IETF ``RateLimit`` drafts:

- draft-6: https://datatracker.ietf.org/doc/html/draft-ietf-httpapi-ratelimit-headers-06
- draft-7: https://datatracker.ietf.org/doc/html/draft-ietf-httpapi-ratelimit-headers-07
- draft-8: https://datatracker.ietf.org/doc/html/draft-ietf-httpapi-ratelimit-headers-08

All setters write into a Starlette ``MutableHeaders`` view of the response
start message.
"""

from __future__ import annotations

import base64
import hashlib
import math
import time
from datetime import datetime

from starlette.datastructures import MutableHeaders

from windowguard.core.options import RateLimitInfo


def get_reset_seconds(
    reset_time: datetime | None,
    window_ms: int | None = None,
    *,
    now: float | None = None,
) -> int | None:
    """Seconds until the client's count resets.

    Falls back to the window length when the store gave no reset time, and to
    None when neither is known.
    """

    if reset_time is not None:
        current = time.time() if now is None else now
        return max(0, math.ceil(reset_time.timestamp() - current))
    if window_ms is not None:
        return math.ceil(window_ms / 1000)
    return None


def get_partition_key(key: str) -> str:
    """Opaque partition key for draft-8 policies; does not reveal the client key."""

    digest = hashlib.sha256(str(key).encode()).hexdigest()[:12]
    return base64.b64encode(digest.encode()).decode()


def set_legacy_headers(headers: MutableHeaders, info: RateLimitInfo) -> None:
    headers["X-RateLimit-Limit"] = str(info.limit)
    headers["X-RateLimit-Remaining"] = str(info.remaining)
    if info.reset_time is not None:
        headers["X-RateLimit-Reset"] = str(math.ceil(info.reset_time.timestamp()))


def set_draft6_headers(
    headers: MutableHeaders,
    info: RateLimitInfo,
    window_ms: int,
    *,
    now: float | None = None,
) -> None:
    window_seconds = math.ceil(window_ms / 1000)
    reset_seconds = get_reset_seconds(info.reset_time, now=now)

    headers["RateLimit-Policy"] = f"{info.limit};w={window_seconds}"
    headers["RateLimit-Limit"] = str(info.limit)
    headers["RateLimit-Remaining"] = str(info.remaining)
    if reset_seconds is not None:
        headers["RateLimit-Reset"] = str(reset_seconds)


def set_draft7_headers(
    headers: MutableHeaders,
    info: RateLimitInfo,
    window_ms: int,
    *,
    now: float | None = None,
) -> None:
    window_seconds = math.ceil(window_ms / 1000)
    reset_seconds = get_reset_seconds(info.reset_time, window_ms, now=now)

    headers["RateLimit-Policy"] = f"{info.limit};w={window_seconds}"
    headers["RateLimit"] = f"limit={info.limit}, remaining={info.remaining}, reset={reset_seconds}"


def set_draft8_headers(
    headers: MutableHeaders,
    info: RateLimitInfo,
    window_ms: int,
    name: str,
    *,
    now: float | None = None,
) -> None:
    """Append draft-8 headers; several limiters on one route each add a policy."""

    window_seconds = math.ceil(window_ms / 1000)
    reset_seconds = get_reset_seconds(info.reset_time, window_ms, now=now)
    partition_key = get_partition_key(info.key)

    headers.append(
        "RateLimit-Policy",
        f'"{name}"; q={info.limit}; w={window_seconds}; pk=:{partition_key}:',
    )
    headers.append("RateLimit", f'"{name}"; r={info.remaining}; t={reset_seconds}')


def set_retry_after_header(
    headers: MutableHeaders,
    info: RateLimitInfo,
    window_ms: int,
    *,
    now: float | None = None,
) -> None:
    headers["Retry-After"] = str(get_reset_seconds(info.reset_time, window_ms, now=now))
