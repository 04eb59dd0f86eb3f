"""Pydantic schemas for rate limit status responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class RateLimitStatus(BaseModel):
    """The caller's rate limit state, as counted for this very request."""

    enabled: bool = Field(
        ..., description="Whether rate limiting is active for this application."
    )
    limit: int | None = Field(
        default=None, description="Maximum requests allowed per window."
    )
    used: int | None = Field(
        default=None, description="Requests counted in the current window, including this one."
    )
    remaining: int | None = Field(
        default=None, description="Requests left before the caller is rejected."
    )
    reset_time: datetime | None = Field(
        default=None,
        description="When the count resets (UTC), if the store reports it.",
    )
