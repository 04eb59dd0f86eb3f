"""Limiter options: defaults, legacy aliases and validation.

``parse_options`` turns the keyword options given to ``RateLimiter`` into an
immutable ``Configuration``. Everything that can be wrong with the options is
detected here, at construction time, so a misconfigured limiter never serves a
request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from windowguard.adapters.stores.base import missing_methods
from windowguard.adapters.stores.in_memory import MemoryStore
from windowguard.core.errors import ConfigurationError
from windowguard.core.keys import DEFAULT_IPV6_SUBNET, IpKeyGenerator
from windowguard.core.validations import SUPPORTED_DRAFTS, Validations
from windowguard.utils.resolve import omit_none, resolve_value

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 60 * 1000
DEFAULT_LIMIT = 5
DEFAULT_MESSAGE = "Too many requests, please try again later."
DEFAULT_STATUS_CODE = 429
DEFAULT_REQUEST_PROPERTY_NAME = "rate_limit"

# Old option name -> current name
LEGACY_OPTION_NAMES = {"max": "limit", "headers": "legacy_headers"}

DraftVersion = Literal["draft-6", "draft-7", "draft-8"]


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit state of the current request's client.

    Attached to ``request.state`` under the configured property name.

    Attributes:
        limit: Maximum hits allowed in the window.
        used: Hits counted so far, including this request.
        remaining: Hits left before the client is blocked.
        reset_time: When the count resets, if the store knows.
        key: Client key the hits are counted under.
    """

    limit: int
    used: int
    remaining: int
    reset_time: datetime | None
    key: str

    @property
    def current(self) -> int:
        return self.used


def _never_skip(request: Request) -> bool:
    return False


def _status_below_400(request: Request, status_code: int) -> bool:
    return status_code < 400


def build_rejection_response(message: Any, status_code: int) -> Response:
    """Wrap a message value in a response: text for strings, JSON otherwise."""

    if isinstance(message, Response):
        return message
    if isinstance(message, (str, bytes)):
        return PlainTextResponse(message, status_code=status_code)
    return JSONResponse(message, status_code=status_code)


async def default_handler(request: Request, options: Configuration) -> Response:
    """Respond with the configured status code and message."""

    message = await resolve_value(options.message, request)
    return build_rejection_response(message, options.status_code)


def format_window(window_ms: int) -> str:
    """Human readable window length, e.g. ``30sec``, ``15min``, ``2hrs``."""

    seconds = window_ms / 1000
    minutes = seconds / 60
    hours = minutes / 60
    days = hours / 24

    if seconds < 60:
        return f"{seconds:g}sec"
    if minutes < 60:
        return f"{minutes:g}min"
    if hours < 24:
        return f"{hours:g}hr{'s' if hours > 1 else ''}"
    return f"{days:g}day{'s' if days > 1 else ''}"


class DefaultIdentifier:
    """Draft-8 policy name derived from the limit and window, e.g. ``5-in-1min``."""

    def __init__(self, window_ms: int, request_property_name: str) -> None:
        self.window_ms = window_ms
        self.request_property_name = request_property_name

    def __call__(self, request: Request) -> str:
        info: RateLimitInfo = getattr(request.state, self.request_property_name)
        return f"{info.limit}-in-{format_window(self.window_ms)}"


class Configuration(BaseModel):
    """Resolved limiter configuration. Read-only once built."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    window_ms: int = Field(DEFAULT_WINDOW_MS, ge=1)
    limit: int | Callable[..., Any] = DEFAULT_LIMIT
    message: Any = DEFAULT_MESSAGE
    status_code: int = Field(DEFAULT_STATUS_CODE, ge=100, le=599)
    legacy_headers: bool = True
    standard_headers: Literal[False] | DraftVersion = False
    identifier: str | Callable[..., Any] | None = None
    request_property_name: str = DEFAULT_REQUEST_PROPERTY_NAME
    skip_failed_requests: bool = False
    skip_successful_requests: bool = False
    key_generator: Callable[..., Any] | None = None
    ipv6_subnet: Literal[False] | Annotated[int, Field(ge=1, le=128)] | Callable[..., Any] = DEFAULT_IPV6_SUBNET
    trust_proxy: bool | int | list[str] = False
    handler: Callable[..., Any] = default_handler
    on_limit_reached: Callable[..., Any] | None = None
    skip: Callable[..., Any] = _never_skip
    request_was_successful: Callable[..., Any] = _status_below_400
    store: Any
    validations: Validations
    pass_on_store_error: bool = False

    @property
    def uses_default_key_generator(self) -> bool:
        return isinstance(self.key_generator, IpKeyGenerator)


def _resolve_standard_headers(value: Any, validations: Validations) -> Literal[False] | DraftVersion:
    if value is True:
        return "draft-6"
    if value is False or value in SUPPORTED_DRAFTS:
        return value

    validations.headers_draft_version(value)
    raise ConfigurationError(
        code="unsupported_standard_headers",
        message=(
            f"Unsupported 'standard_headers' value {value!r}; expected False, True "
            f"or one of {', '.join(SUPPORTED_DRAFTS)}."
        ),
        details={"option": "standard_headers"},
    )


def parse_options(options: Mapping[str, Any]) -> Configuration:
    """Fill in defaults and validate the options passed to a limiter.

    Passing ``None`` for an option is the same as leaving it out. The legacy
    names ``max`` and ``headers`` are accepted for ``limit`` and
    ``legacy_headers``; the new name wins when both are given.

    Args:
        options: Keyword options given to the limiter.

    Returns:
        Configuration: The complete, frozen configuration.

    Raises:
        ConfigurationError: If an option is unknown or invalid, or the store
            does not implement the methods the options need.
    """

    passed = omit_none(options)

    validations = Validations(passed.pop("validate", True))
    validations.validations_config()

    for old_name, new_name in LEGACY_OPTION_NAMES.items():
        legacy = passed.pop(old_name, None)
        if legacy is not None:
            passed.setdefault(new_name, legacy)

    draft_polli = passed.pop("draft_polli_ratelimit_headers", None)
    validations.draft_polli_headers(draft_polli)
    if draft_polli and "standard_headers" not in passed:
        passed["standard_headers"] = "draft-6"

    # A resolver is checked per request instead.
    if "ipv6_subnet" in passed and not callable(passed["ipv6_subnet"]):
        validations.ipv6_subnet(passed["ipv6_subnet"])
    validations.ipv6_subnet_or_key_generator(passed)

    passed["standard_headers"] = _resolve_standard_headers(
        passed.get("standard_headers", False), validations
    )

    store = passed.setdefault("store", MemoryStore(validations))
    uncounting = bool(passed.get("skip_failed_requests") or passed.get("skip_successful_requests"))
    missing = missing_methods(store, needs_decrement=uncounting)
    if missing:
        raise ConfigurationError(
            code="invalid_store",
            message=(
                f"An invalid store was passed: {type(store).__name__} does not implement "
                f"{', '.join(missing)}. Please ensure that the store implements the Store interface."
            ),
            details={"store": type(store).__name__, "missing_methods": missing},
        )

    try:
        config = Configuration.model_validate({**passed, "validations": validations})
    except PydanticValidationError as exc:
        raise ConfigurationError(
            code="invalid_options",
            message=f"Invalid rate limiter options: {exc}",
        ) from exc

    updates: dict[str, Any] = {}
    if config.key_generator is None:
        updates["key_generator"] = IpKeyGenerator(
            ipv6_subnet=config.ipv6_subnet,
            trust_proxy=config.trust_proxy,
            validations=validations,
        )
    if config.identifier is None:
        updates["identifier"] = DefaultIdentifier(config.window_ms, config.request_property_name)
    if updates:
        config = config.model_copy(update=updates)

    init = getattr(config.store, "init", None)
    if callable(init):
        init(config.window_ms)

    logger.debug(
        "rate_limit.configured",
        extra={
            "window_ms": config.window_ms,
            "store": type(config.store).__name__,
            "standard_headers": config.standard_headers,
            "legacy_headers": config.legacy_headers,
        },
    )
    return config
