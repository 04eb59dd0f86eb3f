"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment so settings never load a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "plain")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from starlette.requests import Request  # noqa: E402


def make_request(
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("1.2.3.4", 50000),
    path: str = "/",
) -> Request:
    """Build a bare Starlette request for unit tests."""

    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": client,
    }
    return Request(scope)


def utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


@pytest.fixture
def clock() -> Mock:
    """Frozen clock at t=1000s; set ``return_value`` to move time."""
    return Mock(return_value=1000.0)


async def send_while_allowed(store, clock: Mock, times: list[float], limit: int) -> list[float]:
    """At each instant, send hits until the limit is reached.

    Returns the instant of every hit the store would allow.
    """

    allowed: list[float] = []
    for instant in times:
        clock.return_value = instant
        while True:
            current = await store.get("k")
            if current is not None and current.total_hits >= limit:
                break
            info = await store.increment("k")
            assert info.total_hits <= limit
            allowed.append(instant)
    return allowed


def busiest_span(instants: list[float], span: float) -> int:
    """Largest number of instants inside any half-open interval of ``span`` seconds."""

    return max(
        (sum(1 for other in instants if start <= other < start + span) for start in instants),
        default=0,
    )
