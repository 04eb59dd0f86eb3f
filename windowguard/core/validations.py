"""Self-diagnostics for common limiter misconfigurations.

Each check is a named method on ``Validations``. A failing check is logged
through the ``windowguard.core.validations`` logger and never changes whether a
request is allowed. Checks can be switched off one by one with the ``validate``
option (``{"ip": False}``, ``{"default": False, "limit": True}``) or all at once
with ``validate=False``. The middleware disables the whole subsystem after the
first request it has evaluated.
"""

from __future__ import annotations

import ipaddress
import logging
import math
import threading
import weakref
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Literal, Mapping

from starlette.requests import Request

from windowguard.core.errors import AppError

logger = logging.getLogger(__name__)

Severity = Literal["error", "warning"]

SUPPORTED_DRAFTS = ("draft-6", "draft-7", "draft-8")

CHECKS = frozenset(
    {
        "ip",
        "trust_proxy",
        "x_forwarded_for_header",
        "forwarded_header",
        "positive_hits",
        "unshared_store",
        "single_count",
        "limit",
        "draft_polli_headers",
        "headers_draft_version",
        "headers_reset_time",
        "validations_config",
        "creation_stack",
        "ipv6_subnet",
        "ipv6_subnet_or_key_generator",
        "key_generator_ip_fallback",
        "window_ms",
    }
)

# Set by the middleware while it is handling a request.
_handling_request: ContextVar[bool] = ContextVar("windowguard_handling_request", default=False)

_COUNTED_KEYS_ATTR = "windowguard_counted_keys"


def mark_request_started() -> Token:
    return _handling_request.set(True)


def mark_request_finished(token: Token) -> None:
    _handling_request.reset(token)


class ValidationError(AppError):
    """A detected misconfiguration."""

    severity: ClassVar[Severity] = "error"


class ValidationWarning(ValidationError):
    """A configuration that works but probably does not do what was intended."""

    severity: ClassVar[Severity] = "warning"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a failed check, as logged."""

    check: str
    severity: Severity
    code: str
    message: str


def _has_port(address: str) -> bool:
    if address.startswith("[") and "]:" in address:
        return True
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return False
    try:
        ipaddress.IPv4Address(host)
    except ValueError:
        return False
    return True


class Validations:
    """Registry of diagnostic checks for one limiter.

    Attributes:
        enabled: Per-check switches; ``"default"`` applies to unlisted checks.
        active: False once the first request has been evaluated.
    """

    # Local-keys stores already bound to a limiter.
    _bound_stores: ClassVar[weakref.WeakSet] = weakref.WeakSet()
    _bound_stores_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, enabled: bool | Mapping[str, bool] = True) -> None:
        if isinstance(enabled, Mapping):
            self.enabled: dict[str, bool] = {key: bool(value) for key, value in enabled.items()}
        else:
            self.enabled = {"default": bool(enabled)}
        self.active = True

    def is_enabled(self, check: str) -> bool:
        return self.active and self.enabled.get(check, self.enabled.get("default", True))

    def enable(self) -> None:
        self.active = True

    def disable(self) -> None:
        self.active = False

    def _run(self, check: str, validation: Callable[[], None]) -> ValidationResult | None:
        if not self.is_enabled(check):
            return None

        try:
            validation()
        except ValidationError as error:
            result = ValidationResult(
                check=check,
                severity=error.severity,
                code=error.code,
                message=error.message,
            )
            logger.log(
                logging.WARNING if error.severity == "warning" else logging.ERROR,
                error.message,
                extra={"check": check, "code": error.code, "severity": error.severity},
            )
            return result
        return None

    def ip(self, ip: str | None) -> ValidationResult | None:
        """Client address must be present, valid and without a port number."""

        def validation() -> None:
            if ip is None:
                raise ValidationError(
                    code="ERR_RL_UNDEFINED_IP_ADDRESS",
                    message=(
                        "An undefined client address was detected. This might indicate "
                        "a misconfiguration or the connection being destroyed prematurely."
                    ),
                )
            try:
                ipaddress.ip_address(ip)
            except ValueError:
                if _has_port(ip):
                    raise ValidationError(
                        code="ERR_RL_IP_WITH_PORT",
                        message=(
                            f"The client address ({ip}) includes a port number. Strip the "
                            "port or pass a custom 'key_generator' to the rate limiter."
                        ),
                    ) from None
                raise ValidationError(
                    code="ERR_RL_INVALID_IP_ADDRESS",
                    message=(
                        f"An invalid client address ({ip}) was detected. Consider passing "
                        "a custom 'key_generator' to the rate limiter."
                    ),
                ) from None

        return self._run("ip", validation)

    def trust_proxy(self, trust_proxy: Any) -> ValidationResult | None:
        def validation() -> None:
            if trust_proxy is True:
                raise ValidationError(
                    code="ERR_RL_PERMISSIVE_TRUST_PROXY",
                    message=(
                        "The 'trust_proxy' setting is True, which allows anyone to "
                        "trivially bypass IP-based rate limiting by sending X-Forwarded-For."
                    ),
                )

        return self._run("trust_proxy", validation)

    def x_forwarded_for_header(self, request: Request, trust_proxy: Any) -> ValidationResult | None:
        def validation() -> None:
            if request.headers.get("x-forwarded-for") and trust_proxy is False:
                raise ValidationError(
                    code="ERR_RL_UNEXPECTED_X_FORWARDED_FOR",
                    message=(
                        "The 'X-Forwarded-For' header is set but 'trust_proxy' is False "
                        "(default). This could indicate a misconfiguration which would "
                        "prevent the rate limiter from accurately identifying clients."
                    ),
                )

        return self._run("x_forwarded_for_header", validation)

    def forwarded_header(self, request: Request) -> ValidationResult | None:
        def validation() -> None:
            if "forwarded" in request.headers:
                raise ValidationError(
                    code="ERR_RL_FORWARDED_HEADER",
                    message=(
                        "The 'Forwarded' header (standardized X-Forwarded-For) is set but "
                        "currently being ignored. Add a custom 'key_generator' to use a "
                        "value from this header."
                    ),
                )

        return self._run("forwarded_header", validation)

    def positive_hits(self, hits: Any) -> ValidationResult | None:
        def validation() -> None:
            if isinstance(hits, bool) or not isinstance(hits, int) or hits < 1:
                raise ValidationError(
                    code="ERR_RL_INVALID_HITS",
                    message=f"The totalHits value returned from the store must be a positive integer, got {hits!r}.",
                )

        return self._run("positive_hits", validation)

    def unshared_store(self, store: object) -> ValidationResult | None:
        def validation() -> None:
            if not getattr(store, "local_keys", False):
                return
            with self._bound_stores_lock:
                if store in self._bound_stores:
                    raise ValidationError(
                        code="ERR_RL_STORE_REUSE",
                        message=(
                            f"A {type(store).__name__} instance must not be shared across "
                            "multiple rate limiters. Create a new instance for each limiter."
                        ),
                    )
                self._bound_stores.add(store)

        return self._run("unshared_store", validation)

    def single_count(self, request: Request, store: object, key: str) -> ValidationResult | None:
        """A key must be incremented at most once per request and store."""

        def validation() -> None:
            counted: dict[Any, set[str]] | None = getattr(request.state, _COUNTED_KEYS_ATTR, None)
            if counted is None:
                counted = {}
                setattr(request.state, _COUNTED_KEYS_ATTR, counted)

            # Stores without local keys usually share state between instances.
            store_key = id(store) if getattr(store, "local_keys", False) else type(store).__name__
            keys = counted.setdefault(store_key, set())
            if key in keys:
                raise ValidationError(
                    code="ERR_RL_DOUBLE_COUNT",
                    message=f"The hit count for {key} was incremented more than once for a single request.",
                )
            keys.add(key)

        return self._run("single_count", validation)

    def limit(self, limit: Any) -> ValidationResult | None:
        def validation() -> None:
            if limit == 0:
                raise ValidationWarning(
                    code="WRN_RL_LIMIT_ZERO",
                    message="The limit is 0, so every request will be blocked.",
                )

        return self._run("limit", validation)

    def draft_polli_headers(self, draft_polli_ratelimit_headers: Any) -> ValidationResult | None:
        def validation() -> None:
            if draft_polli_ratelimit_headers is not None:
                raise ValidationWarning(
                    code="WRN_RL_DEPRECATED_DRAFT_POLLI_HEADERS",
                    message=(
                        "The 'draft_polli_ratelimit_headers' option is deprecated. "
                        "Use 'standard_headers' instead."
                    ),
                )

        return self._run("draft_polli_headers", validation)

    def headers_draft_version(self, version: Any) -> ValidationResult | None:
        def validation() -> None:
            if version is not False and version not in SUPPORTED_DRAFTS:
                raise ValidationError(
                    code="ERR_RL_HEADERS_UNSUPPORTED_DRAFT_VERSION",
                    message=(
                        f"Standard headers version {version!r} is not supported. "
                        f"Use one of: {', '.join(SUPPORTED_DRAFTS)}."
                    ),
                )

        return self._run("headers_draft_version", validation)

    def headers_reset_time(self, reset_time: Any) -> ValidationResult | None:
        def validation() -> None:
            if reset_time is None:
                raise ValidationError(
                    code="ERR_RL_HEADERS_NO_RESET",
                    message=(
                        "standard_headers 'draft-7' and 'draft-8' require a reset time, but "
                        "the store did not provide one. The window length will be used "
                        "instead, which may cause clients to wait longer than necessary."
                    ),
                )

        return self._run("headers_reset_time", validation)

    def validations_config(self) -> ValidationResult | None:
        def validation() -> None:
            unknown = sorted(set(self.enabled) - CHECKS - {"default"})
            if unknown:
                raise ValidationError(
                    code="ERR_RL_UNKNOWN_VALIDATION",
                    message=(
                        f"Unknown validation(s) in the 'validate' option: {', '.join(unknown)}. "
                        f"Supported: {', '.join(sorted(CHECKS))}."
                    ),
                )

        return self._run("validations_config", validation)

    def creation_stack(self, store: object) -> ValidationResult | None:
        """Limiters with per-instance state must be created at startup."""

        def validation() -> None:
            if _handling_request.get() and getattr(store, "local_keys", False):
                raise ValidationError(
                    code="ERR_RL_CREATED_IN_REQUEST_HANDLER",
                    message=(
                        "A rate limiter was created while handling a request. Its hit "
                        "counts are lost when the request ends; create limiters when the "
                        "application starts instead."
                    ),
                )

        return self._run("creation_stack", validation)

    def ipv6_subnet(self, ipv6_subnet: Any) -> ValidationResult | None:
        def validation() -> None:
            if ipv6_subnet is False:
                return
            if isinstance(ipv6_subnet, bool) or not isinstance(ipv6_subnet, int) or not 32 <= ipv6_subnet <= 64:
                raise ValidationError(
                    code="ERR_RL_IPV6_SUBNET",
                    message=(
                        f"Unexpected ipv6_subnet value: {ipv6_subnet!r}. Expected an integer "
                        "between 32 and 64 (usually 48-64)."
                    ),
                )

        return self._run("ipv6_subnet", validation)

    def ipv6_subnet_or_key_generator(self, options: Mapping[str, Any]) -> ValidationResult | None:
        def validation() -> None:
            if "ipv6_subnet" in options and "key_generator" in options:
                raise ValidationWarning(
                    code="WRN_RL_IPV6_SUBNET_WITH_KEY_GENERATOR",
                    message=(
                        "Both 'ipv6_subnet' and a custom 'key_generator' were set; "
                        "'ipv6_subnet' is ignored. Call ip_key_generator() inside the "
                        "key generator to apply a subnet."
                    ),
                )

        return self._run("ipv6_subnet_or_key_generator", validation)

    def key_generator_ip_fallback(self, key: Any) -> ValidationResult | None:
        """A custom key generator must not return a bare IPv6 address."""

        def validation() -> None:
            if not isinstance(key, str):
                return
            try:
                ipaddress.IPv6Address(key.split("%", 1)[0])
            except ValueError:
                return
            raise ValidationError(
                code="ERR_RL_KEY_GEN_IPV6",
                message=(
                    "The custom key_generator returned an unmasked IPv6 address, which lets "
                    "a client bypass the limit by rotating addresses in its range. Return "
                    "ip_key_generator(ip) instead."
                ),
            )

        return self._run("key_generator_ip_fallback", validation)

    def window_ms(self, window_ms: Any) -> ValidationResult | None:
        def validation() -> None:
            if (
                isinstance(window_ms, bool)
                or not isinstance(window_ms, (int, float))
                or not math.isfinite(window_ms)
                or window_ms < 1
                or window_ms > threading.TIMEOUT_MAX * 1000
            ):
                raise ValidationError(
                    code="ERR_RL_WINDOW_MS",
                    message=f"Invalid window_ms value: {window_ms!r}. Must be a positive number of milliseconds.",
                )

        return self._run("window_ms", validation)
