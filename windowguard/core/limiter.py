"""Rate limiter facade.

A ``RateLimiter`` owns one resolved configuration and its store. It is built
once, when the application starts, and handed to ``RateLimitMiddleware``; the
store-level operations below let the application inspect or reset clients
outside the request path (admin endpoints, tests, shutdown hooks).
"""

from __future__ import annotations

import logging
from typing import Any

from windowguard.adapters.stores.base import ClientRateLimitInfo
from windowguard.core.errors import UnsupportedStoreOperation
from windowguard.core.options import Configuration, parse_options
from windowguard.utils.resolve import maybe_await

logger = logging.getLogger(__name__)


class RateLimiter:
    """Resolved limiter configuration plus store management.

    Args:
        **options: Limiter options, see ``parse_options``.

    Raises:
        ConfigurationError: If the options are invalid.
    """

    def __init__(self, **options: Any) -> None:
        self.config: Configuration = parse_options(options)

        validations = self.config.validations
        validations.creation_stack(self.config.store)
        validations.unshared_store(self.config.store)

    @property
    def store(self) -> Any:
        return self.config.store

    def _store_method(self, name: str) -> Any:
        method = getattr(self.store, name, None)
        if method is None:
            raise UnsupportedStoreOperation(
                code="unsupported_store_operation",
                message=f"The store {type(self.store).__name__} does not implement '{name}'.",
                details={"store": type(self.store).__name__, "missing_methods": [name]},
            )
        return method

    async def reset_key(self, key: str) -> None:
        """Forget the hits recorded for ``key``."""

        await maybe_await(self.store.reset_key(key))

    async def get_key(self, key: str) -> ClientRateLimitInfo | None:
        """Return the stored hit record for ``key``, or None if there is none.

        Raises:
            UnsupportedStoreOperation: If the store has no ``get`` method.
        """

        return await maybe_await(self._store_method("get")(key))

    async def reset_all(self) -> None:
        await maybe_await(self._store_method("reset_all")())
        logger.info("rate_limit.reset_all", extra={"store": type(self.store).__name__})

    async def shutdown(self) -> None:
        """Release store resources. A no-op for stores without ``shutdown``."""

        shutdown = getattr(self.store, "shutdown", None)
        if shutdown is not None:
            await maybe_await(shutdown())
