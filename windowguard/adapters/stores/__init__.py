"""Hit counter stores.

This package provides the store contract and the in-memory implementations, so
an application can start with a per-process store and later migrate to Redis or
another shared backend without changing the middleware.
"""

from windowguard.adapters.stores.base import ClientRateLimitInfo, Store
from windowguard.adapters.stores.in_memory import BucketedMemoryStore, MemoryStore

__all__ = [
    "BucketedMemoryStore",
    "ClientRateLimitInfo",
    "MemoryStore",
    "Store",
]
