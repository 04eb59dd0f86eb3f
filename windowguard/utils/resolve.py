"""Helpers for options that may be constants, callables or coroutines."""

from __future__ import annotations

import inspect
from typing import Any, Mapping


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""

    if inspect.isawaitable(value):
        return await value
    return value


async def resolve_value(value: Any, *args: Any) -> Any:
    """Resolve a constant-or-resolver option.

    Callables are invoked with ``args`` and their result awaited when needed,
    so constant, sync and async resolvers share one code path. Exceptions raised
    by the resolver propagate unchanged.

    Args:
        value: A constant, or a function returning a value or an awaitable.
        *args: Arguments forwarded to the resolver (usually the request).

    Returns:
        The resolved value.
    """

    if callable(value):
        return await maybe_await(value(*args))
    return value


def omit_none(options: Mapping[str, Any]) -> dict[str, Any]:
    """Drop entries whose value is ``None`` so they fall back to defaults."""

    return {key: value for key, value in options.items() if value is not None}
