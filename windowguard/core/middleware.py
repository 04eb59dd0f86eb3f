"""ASGI middleware enforcing a rate limit.

For every HTTP request the middleware:
- skips counting when the ``skip`` predicate says so
- derives the client key and increments its hit count in the store
- attaches a ``RateLimitInfo`` to ``request.state``
- injects rate limit headers into the response start message
- rejects the request through ``handler`` once the count exceeds the limit

When ``skip_successful_requests`` or ``skip_failed_requests`` is set, the hit
is given back after the response, at most once per request, depending on how
the response ended (finished, connection closed early, or error).

Usage:
    app.add_middleware(RateLimitMiddleware, limiter=RateLimiter(limit=100))
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from windowguard.core.errors import ConfigurationError
from windowguard.core.headers import (
    set_draft6_headers,
    set_draft7_headers,
    set_draft8_headers,
    set_legacy_headers,
    set_retry_after_header,
)
from windowguard.core.limiter import RateLimiter
from windowguard.core.options import Configuration, RateLimitInfo
from windowguard.core.validations import mark_request_finished, mark_request_started
from windowguard.utils.resolve import maybe_await, resolve_value

logger = logging.getLogger(__name__)


def _is_final_message(message: Message) -> bool:
    if message["type"] == "http.response.pathsend":
        return True
    return message["type"] == "http.response.body" and not message.get("more_body", False)


def _hash_key(key: Any) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(str(key).encode()).hexdigest()[:16]


class _Uncount:
    """Gives one hit back to the store; later calls do nothing."""

    def __init__(self, store: Any, key: str) -> None:
        self.store = store
        self.key = key
        self.done = False

    async def __call__(self, reason: str) -> None:
        if self.done:
            return
        # Flip first so a concurrent lifecycle event cannot decrement twice.
        self.done = True
        try:
            await maybe_await(self.store.decrement(self.key))
        except Exception:
            logger.exception(
                "rate_limit.uncount_failed",
                extra={"key_hash": _hash_key(self.key), "reason": reason},
            )
            return
        logger.debug(
            "rate_limit.uncounted",
            extra={"key_hash": _hash_key(self.key), "reason": reason},
        )


def apply_headers(
    headers: MutableHeaders,
    config: Configuration,
    info: RateLimitInfo,
    *,
    identifier: str | None,
    blocked: bool,
    now: float,
) -> None:
    """Write every enabled header set for ``info`` into ``headers``."""

    if config.legacy_headers:
        set_legacy_headers(headers, info)

    if config.standard_headers == "draft-6":
        set_draft6_headers(headers, info, config.window_ms, now=now)
    elif config.standard_headers == "draft-7":
        set_draft7_headers(headers, info, config.window_ms, now=now)
    elif config.standard_headers == "draft-8":
        set_draft8_headers(headers, info, config.window_ms, str(identifier), now=now)

    if blocked and (config.legacy_headers or config.standard_headers):
        set_retry_after_header(headers, info, config.window_ms, now=now)


class RateLimitMiddleware:
    """Pure ASGI rate limiting middleware.

    Args:
        app: Downstream ASGI application.
        limiter: A prebuilt limiter. Share one limiter between several
            middleware instances only if they should count the same hits.
        **options: Options for a new ``RateLimiter``, when ``limiter`` is not
            given.

    Raises:
        ConfigurationError: If both a limiter and options are given, or the
            options are invalid.
    """

    def __init__(self, app: ASGIApp, limiter: RateLimiter | None = None, **options: Any) -> None:
        if limiter is not None and options:
            raise ConfigurationError(
                code="invalid_options",
                message="Pass either a prebuilt limiter or limiter options, not both.",
            )
        self.app = app
        self.limiter = limiter if limiter is not None else RateLimiter(**options)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        token = mark_request_started()
        try:
            await self._handle(scope, receive, send)
        finally:
            mark_request_finished(token)

    async def _handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        config = self.limiter.config
        validations = config.validations
        request = Request(scope, receive)

        if await resolve_value(config.skip, request):
            await self.app(scope, receive, send)
            return

        key = await resolve_value(config.key_generator, request)
        if not config.uses_default_key_generator:
            validations.key_generator_ip_fallback(key)
        key_hash = _hash_key(key)

        try:
            client = await maybe_await(config.store.increment(key))
        except Exception:
            if not config.pass_on_store_error:
                raise
            logger.exception(
                "rate_limit.store_error",
                extra={"key_hash": key_hash, "store": type(config.store).__name__},
            )
            await self.app(scope, receive, send)
            return

        validations.positive_hits(client.total_hits)
        validations.single_count(request, config.store, key)

        limit = await resolve_value(config.limit, request)
        validations.limit(limit)

        info = RateLimitInfo(
            limit=limit,
            used=client.total_hits,
            remaining=max(limit - client.total_hits, 0),
            reset_time=client.reset_time,
            key=key,
        )
        setattr(request.state, config.request_property_name, info)

        identifier = None
        if config.standard_headers == "draft-8":
            identifier = await resolve_value(config.identifier, request)
        if config.standard_headers in ("draft-7", "draft-8"):
            validations.headers_reset_time(info.reset_time)

        uncount = None
        if config.skip_failed_requests or config.skip_successful_requests:
            uncount = _Uncount(config.store, key)

        validations.disable()

        blocked = info.used > info.limit
        now = time.time()
        status_code: int | None = None
        finished = False

        async def on_finish() -> None:
            if uncount is None:
                return
            successful = await maybe_await(config.request_was_successful(request, status_code))
            if (config.skip_failed_requests and not successful) or (
                config.skip_successful_requests and successful
            ):
                await uncount("finish")

        async def on_failure(reason: str) -> None:
            if uncount is not None and config.skip_failed_requests:
                await uncount(reason)

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, finished
            if message["type"] == "http.response.start":
                status_code = message["status"]
                apply_headers(
                    MutableHeaders(scope=message),
                    config,
                    info,
                    identifier=identifier,
                    blocked=blocked,
                    now=now,
                )
            await send(message)
            if _is_final_message(message):
                finished = True
                await on_finish()

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.disconnect" and not finished:
                await on_failure("close")
            return message

        log_extra = {
            "key_hash": key_hash,
            "limit": info.limit,
            "used": info.used,
            "remaining": info.remaining,
            "window_ms": config.window_ms,
        }
        if blocked:
            if info.used == info.limit + 1 and config.on_limit_reached is not None:
                await maybe_await(config.on_limit_reached(request, config))
            logger.warning("rate_limit.blocked", extra=log_extra)
            downstream: ASGIApp = await maybe_await(config.handler(request, config))
        else:
            logger.info("rate_limit.allowed", extra=log_extra)
            downstream = self.app

        try:
            await downstream(scope, receive_wrapper, send_wrapper)
        except Exception:
            if not finished:
                await on_failure("error")
            raise

        if not finished:
            await on_failure("close")
