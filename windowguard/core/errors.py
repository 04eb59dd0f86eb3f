"""Package-level exception types.

Construction-time misconfiguration and unsupported store operations are
raised as ``AppError`` subclasses so callers (and the demo app's exception
handlers) can treat them uniformly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    option: str
    store: str
    missing_methods: list[str]
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when limiter options cannot be resolved into a configuration."""


class UnsupportedStoreOperation(AppError):
    """Raised when the bound store does not implement an optional method."""
