from __future__ import annotations

from fastapi import APIRouter, Request

from windowguard.core.options import RateLimitInfo
from windowguard.schemas.limits import RateLimitStatus

router = APIRouter(tags=["Rate limits"])


@router.get("/limits", response_model=RateLimitStatus)
def read_limits(request: Request) -> RateLimitStatus:
    """Report the caller's rate limit state.

    The lookup counts as a request itself, so ``used`` includes it.
    """

    limiter = request.app.state.limiter
    if limiter is None:
        return RateLimitStatus(enabled=False)

    info: RateLimitInfo | None = getattr(
        request.state, limiter.config.request_property_name, None
    )
    if info is None:
        return RateLimitStatus(enabled=True)

    return RateLimitStatus(
        enabled=True,
        limit=info.limit,
        used=info.used,
        remaining=info.remaining,
        reset_time=info.reset_time,
    )
