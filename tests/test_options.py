"""Tests for option resolution and validation."""

from __future__ import annotations

import json
from unittest.mock import Mock

import pytest
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse, PlainTextResponse

from conftest import make_request
from windowguard.adapters.stores.base import ClientRateLimitInfo
from windowguard.adapters.stores.in_memory import MemoryStore
from windowguard.core.errors import ConfigurationError
from windowguard.core.keys import IpKeyGenerator
from windowguard.core.options import (
    DefaultIdentifier,
    RateLimitInfo,
    default_handler,
    format_window,
    parse_options,
)


class MinimalStore:
    """Implements only the required methods."""

    def __init__(self) -> None:
        self.hits: dict[str, int] = {}

    async def increment(self, key: str) -> ClientRateLimitInfo:
        self.hits[key] = self.hits.get(key, 0) + 1
        return ClientRateLimitInfo(total_hits=self.hits[key])

    async def reset_key(self, key: str) -> None:
        self.hits.pop(key, None)


class TestDefaults:
    def test_defaults_are_filled_in(self) -> None:
        config = parse_options({"validate": False})

        assert config.window_ms == 60_000
        assert config.limit == 5
        assert config.status_code == 429
        assert config.message == "Too many requests, please try again later."
        assert config.legacy_headers is True
        assert config.standard_headers is False
        assert config.request_property_name == "rate_limit"
        assert config.skip_failed_requests is False
        assert config.skip_successful_requests is False
        assert config.pass_on_store_error is False
        assert config.ipv6_subnet == 56
        assert config.trust_proxy is False
        assert isinstance(config.key_generator, IpKeyGenerator)
        assert isinstance(config.identifier, DefaultIdentifier)
        assert config.uses_default_key_generator is True

    def test_default_store_is_initialized_memory_store(self) -> None:
        config = parse_options({"window_ms": 30_000, "validate": False})

        assert isinstance(config.store, MemoryStore)
        assert config.store.window_ms == 30_000
        config.store.shutdown()

    def test_none_values_are_treated_as_omitted(self) -> None:
        config = parse_options({"limit": None, "message": None, "validate": False})

        assert config.limit == 5
        assert config.message == "Too many requests, please try again later."

    def test_default_success_predicate(self) -> None:
        config = parse_options({"validate": False})
        request = make_request()

        assert config.request_was_successful(request, 200) is True
        assert config.request_was_successful(request, 399) is True
        assert config.request_was_successful(request, 400) is False
        assert config.skip(request) is False

    def test_configuration_is_read_only(self) -> None:
        config = parse_options({"validate": False})
        with pytest.raises(PydanticValidationError):
            config.limit = 10


class TestLegacyAliases:
    def test_max_is_alias_for_limit(self) -> None:
        assert parse_options({"max": 3, "validate": False}).limit == 3

    def test_limit_wins_over_max(self) -> None:
        assert parse_options({"limit": 2, "max": 3, "validate": False}).limit == 2

    def test_headers_is_alias_for_legacy_headers(self) -> None:
        assert parse_options({"headers": False, "validate": False}).legacy_headers is False

    def test_legacy_headers_wins_over_headers(self) -> None:
        config = parse_options({"legacy_headers": True, "headers": False, "validate": False})
        assert config.legacy_headers is True

    def test_none_for_new_name_falls_back_to_max(self) -> None:
        assert parse_options({"limit": None, "max": 3, "validate": False}).limit == 3

    def test_draft_polli_flag_selects_draft_6(self) -> None:
        config = parse_options({"draft_polli_ratelimit_headers": True, "validate": False})
        assert config.standard_headers == "draft-6"

    def test_explicit_standard_headers_wins_over_draft_polli(self) -> None:
        config = parse_options(
            {"draft_polli_ratelimit_headers": True, "standard_headers": "draft-7", "validate": False}
        )
        assert config.standard_headers == "draft-7"


class TestStandardHeaders:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (True, "draft-6"),
            (False, False),
            ("draft-6", "draft-6"),
            ("draft-7", "draft-7"),
            ("draft-8", "draft-8"),
        ],
    )
    def test_supported_values(self, value, expected) -> None:
        assert parse_options({"standard_headers": value, "validate": False}).standard_headers == expected

    @pytest.mark.parametrize("value", ["draft-9", "yes", 7])
    def test_unsupported_value_raises(self, value) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            parse_options({"standard_headers": value, "validate": False})

        assert exc_info.value.code == "unsupported_standard_headers"


class TestInvalidOptions:
    def test_unknown_option_raises(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            parse_options({"windowMs": 1000, "validate": False})

        assert exc_info.value.code == "invalid_options"

    @pytest.mark.parametrize(
        "options",
        [
            {"window_ms": 0},
            {"window_ms": "soon"},
            {"status_code": 42},
            {"ipv6_subnet": 129},
            {"key_generator": "not callable"},
        ],
    )
    def test_ill_typed_values_raise(self, options: dict) -> None:
        with pytest.raises(ConfigurationError):
            parse_options({**options, "validate": False})

    def test_ipv6_subnet_false_is_accepted(self) -> None:
        assert parse_options({"ipv6_subnet": False, "validate": False}).ipv6_subnet is False


class TestStoreCapabilities:
    def test_minimal_store_is_accepted(self) -> None:
        store = MinimalStore()
        assert parse_options({"store": store, "validate": False}).store is store

    @pytest.mark.parametrize("flag", ["skip_failed_requests", "skip_successful_requests"])
    def test_uncounting_requires_decrement(self, flag: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            parse_options({"store": MinimalStore(), flag: True, "validate": False})

        assert exc_info.value.code == "invalid_store"
        assert exc_info.value.details["missing_methods"] == ["decrement"]

    def test_store_without_increment_is_rejected(self) -> None:
        class NoIncrement:
            async def reset_key(self, key: str) -> None:
                pass

        with pytest.raises(ConfigurationError) as exc_info:
            parse_options({"store": NoIncrement(), "validate": False})

        assert exc_info.value.details["missing_methods"] == ["increment"]

    def test_non_callable_optional_method_is_rejected(self) -> None:
        store = MinimalStore()
        store.get = "not a method"

        with pytest.raises(ConfigurationError) as exc_info:
            parse_options({"store": store, "validate": False})

        assert exc_info.value.details["missing_methods"] == ["get"]

    def test_store_init_receives_window(self) -> None:
        store = MinimalStore()
        store.init = Mock()

        parse_options({"store": store, "window_ms": 15_000, "validate": False})

        store.init.assert_called_once_with(15_000)


class TestDefaultIdentifier:
    @pytest.mark.parametrize(
        ("window_ms", "expected"),
        [
            (500, "0.5sec"),
            (1000, "1sec"),
            (30_000, "30sec"),
            (60_000, "1min"),
            (90_000, "1.5min"),
            (3_600_000, "1hr"),
            (7_200_000, "2hrs"),
            (86_400_000, "1day"),
            (172_800_000, "2days"),
        ],
    )
    def test_format_window(self, window_ms: int, expected: str) -> None:
        assert format_window(window_ms) == expected

    def test_identifier_uses_resolved_limit(self) -> None:
        request = make_request()
        request.state.rate_limit = RateLimitInfo(limit=10, used=1, remaining=9, reset_time=None, key="k")

        assert DefaultIdentifier(60_000, "rate_limit")(request) == "10-in-1min"


class TestDefaultHandler:
    @pytest.mark.asyncio
    async def test_text_message(self) -> None:
        config = parse_options({"message": "slow down", "status_code": 503, "validate": False})
        response = await default_handler(make_request(), config)

        assert isinstance(response, PlainTextResponse)
        assert response.status_code == 503
        assert response.body == b"slow down"

    @pytest.mark.asyncio
    async def test_structured_message_is_json(self) -> None:
        config = parse_options({"message": {"error": "rate_limited"}, "validate": False})
        response = await default_handler(make_request(), config)

        assert isinstance(response, JSONResponse)
        assert response.status_code == 429
        assert json.loads(response.body) == {"error": "rate_limited"}

    @pytest.mark.asyncio
    async def test_message_resolver_is_awaited(self) -> None:
        async def message(request):
            return f"too many from {request.client.host}"

        config = parse_options({"message": message, "validate": False})
        response = await default_handler(make_request(), config)

        assert response.body == b"too many from 1.2.3.4"
