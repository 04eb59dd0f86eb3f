"""Hit counter store interface.

The limiter depends on this contract, not on a concrete implementation, so the
in-memory stores can be swapped for a shared backend (Redis, Memcached, a SQL
table) without touching the middleware. Conformance is structural: a store
only needs the methods below, and each of them may be a plain function or a
coroutine function.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

REQUIRED_METHODS = ("increment", "reset_key")
OPTIONAL_METHODS = ("init", "get", "reset_all", "shutdown")


@dataclass(frozen=True)
class ClientRateLimitInfo:
    """Hit count of one client as reported by a store.

    Attributes:
        total_hits: Hits recorded for the client in the current window.
        reset_time: When the count next drops to zero, if the store knows it.
    """

    total_hits: int
    reset_time: datetime | None = None


class Store(ABC):
    """Interface for hit counter stores.

    Attributes:
        local_keys: True when two instances of the store never share counts.
            Used by diagnostics to detect a store shared between limiters.
    """

    local_keys: bool = False

    @abstractmethod
    async def increment(self, key: str) -> ClientRateLimitInfo:
        """Increment the hit counter of ``key`` by exactly one.

        Args:
            key: Client identifier produced by the key generator.

        Returns:
            ClientRateLimitInfo with the new total and reset time.
        """
        raise NotImplementedError

    @abstractmethod
    async def decrement(self, key: str) -> None:
        """Undo one hit for ``key``."""
        raise NotImplementedError

    @abstractmethod
    async def reset_key(self, key: str) -> None:
        """Remove the record for ``key``."""
        raise NotImplementedError


def missing_methods(store: object, *, needs_decrement: bool) -> list[str]:
    """List the contract methods ``store`` lacks or exposes as non-callables.

    Args:
        store: Candidate store instance.
        needs_decrement: Whether ``decrement`` is required (uncounting enabled).

    Returns:
        Names of the missing or invalid methods, empty when the store conforms.
    """

    required = REQUIRED_METHODS + (("decrement",) if needs_decrement else ())
    missing = [name for name in required if not callable(getattr(store, name, None))]
    missing.extend(
        name
        for name in OPTIONAL_METHODS
        if getattr(store, name, None) is not None and not callable(getattr(store, name))
    )
    return missing
