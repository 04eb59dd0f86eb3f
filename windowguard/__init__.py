"""windowguard: request rate limiting for ASGI applications.

Typical use:

    from windowguard import RateLimiter, RateLimitMiddleware

    limiter = RateLimiter(window_ms=15 * 60 * 1000, limit=100, standard_headers="draft-8")
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
"""

from windowguard.adapters.stores import BucketedMemoryStore, ClientRateLimitInfo, MemoryStore, Store
from windowguard.core.errors import AppError, ConfigurationError, UnsupportedStoreOperation
from windowguard.core.keys import ip_key_generator
from windowguard.core.limiter import RateLimiter
from windowguard.core.middleware import RateLimitMiddleware
from windowguard.core.options import Configuration, RateLimitInfo

__all__ = [
    "AppError",
    "BucketedMemoryStore",
    "ClientRateLimitInfo",
    "Configuration",
    "ConfigurationError",
    "MemoryStore",
    "RateLimitInfo",
    "RateLimitMiddleware",
    "RateLimiter",
    "Store",
    "UnsupportedStoreOperation",
    "ip_key_generator",
]
