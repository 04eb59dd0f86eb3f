"""Tests for the misconfiguration diagnostics."""

from __future__ import annotations

import logging

import pytest

from conftest import make_request
from windowguard.adapters.stores.in_memory import MemoryStore
from windowguard.core.validations import (
    Validations,
    mark_request_finished,
    mark_request_started,
)

LOGGER = "windowguard.core.validations"


@pytest.fixture
def validations() -> Validations:
    return Validations()


@pytest.fixture
def caplog(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.WARNING, logger=LOGGER)
    return caplog


class TestIpCheck:
    @pytest.mark.parametrize("ip", ["1.2.3.4", "::1", "2001:db8::1"])
    def test_valid_addresses_pass(self, validations: Validations, ip: str) -> None:
        assert validations.ip(ip) is None

    @pytest.mark.parametrize(
        ("ip", "code"),
        [
            (None, "ERR_RL_UNDEFINED_IP_ADDRESS"),
            ("1.2.3.4:8080", "ERR_RL_IP_WITH_PORT"),
            ("[::1]:8080", "ERR_RL_IP_WITH_PORT"),
            ("testclient", "ERR_RL_INVALID_IP_ADDRESS"),
        ],
    )
    def test_bad_addresses_are_reported(
        self, validations: Validations, caplog: pytest.LogCaptureFixture, ip, code: str
    ) -> None:
        result = validations.ip(ip)

        assert result is not None
        assert result.code == code
        assert result.severity == "error"
        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].code == code


class TestProxyChecks:
    def test_permissive_trust_proxy(self, validations: Validations) -> None:
        assert validations.trust_proxy(True).code == "ERR_RL_PERMISSIVE_TRUST_PROXY"
        assert validations.trust_proxy(1) is None
        assert validations.trust_proxy(False) is None

    def test_forwarded_for_without_trust(self, validations: Validations) -> None:
        request = make_request({"X-Forwarded-For": "9.9.9.9"})

        assert validations.x_forwarded_for_header(request, False).code == "ERR_RL_UNEXPECTED_X_FORWARDED_FOR"
        assert validations.x_forwarded_for_header(request, 1) is None
        assert validations.x_forwarded_for_header(make_request(), False) is None

    def test_forwarded_header_is_reported(self, validations: Validations) -> None:
        request = make_request({"Forwarded": "for=9.9.9.9"})

        assert validations.forwarded_header(request).code == "ERR_RL_FORWARDED_HEADER"
        assert validations.forwarded_header(make_request()) is None


class TestStoreChecks:
    @pytest.mark.parametrize("hits", [0, -1, 1.5, "1", True, None])
    def test_non_positive_hits(self, validations: Validations, hits) -> None:
        assert validations.positive_hits(hits).code == "ERR_RL_INVALID_HITS"

    def test_positive_hits(self, validations: Validations) -> None:
        assert validations.positive_hits(1) is None

    def test_local_store_shared_between_limiters(self) -> None:
        store = MemoryStore()

        assert Validations().unshared_store(store) is None
        assert Validations().unshared_store(store).code == "ERR_RL_STORE_REUSE"

    def test_shared_backend_stores_may_be_reused(self) -> None:
        class SharedStore:
            local_keys = False

        store = SharedStore()
        assert Validations().unshared_store(store) is None
        assert Validations().unshared_store(store) is None

    def test_key_counted_twice_in_one_request(self, validations: Validations) -> None:
        request = make_request()
        store = MemoryStore()

        assert validations.single_count(request, store, "k") is None
        assert validations.single_count(request, store, "other") is None
        assert validations.single_count(request, store, "k").code == "ERR_RL_DOUBLE_COUNT"

    def test_same_key_in_different_local_stores(self, validations: Validations) -> None:
        request = make_request()
        first, second = MemoryStore(), MemoryStore()

        assert validations.single_count(request, first, "k") is None
        assert validations.single_count(request, second, "k") is None

    def test_same_key_in_new_request(self, validations: Validations) -> None:
        store = MemoryStore()

        assert validations.single_count(make_request(), store, "k") is None
        assert validations.single_count(make_request(), store, "k") is None

    @pytest.mark.parametrize("window_ms", [0, -5, float("inf"), 10**15, "60000"])
    def test_invalid_window(self, validations: Validations, window_ms) -> None:
        assert validations.window_ms(window_ms).code == "ERR_RL_WINDOW_MS"

    def test_valid_window(self, validations: Validations) -> None:
        assert validations.window_ms(60_000) is None

    def test_memory_store_init_runs_window_check(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MemoryStore(Validations())
        with pytest.raises(ValueError):
            store.init(0)

        assert any(record.code == "ERR_RL_WINDOW_MS" for record in caplog.records)


class TestOptionChecks:
    def test_zero_limit_is_a_warning(self, validations: Validations, caplog: pytest.LogCaptureFixture) -> None:
        result = validations.limit(0)

        assert result.code == "WRN_RL_LIMIT_ZERO"
        assert result.severity == "warning"
        assert caplog.records[-1].levelno == logging.WARNING

    def test_positive_limit_passes(self, validations: Validations) -> None:
        assert validations.limit(10) is None

    def test_deprecated_draft_polli_flag(self, validations: Validations) -> None:
        assert validations.draft_polli_headers(True).severity == "warning"
        assert validations.draft_polli_headers(None) is None

    @pytest.mark.parametrize("version", ["draft-5", "draft-9", True])
    def test_unsupported_draft(self, validations: Validations, version) -> None:
        assert validations.headers_draft_version(version).code == "ERR_RL_HEADERS_UNSUPPORTED_DRAFT_VERSION"

    def test_missing_reset_time(self, validations: Validations) -> None:
        assert validations.headers_reset_time(None).code == "ERR_RL_HEADERS_NO_RESET"

    @pytest.mark.parametrize("subnet", [16, 65, 128, True, "56"])
    def test_unusual_ipv6_subnet(self, validations: Validations, subnet) -> None:
        assert validations.ipv6_subnet(subnet).code == "ERR_RL_IPV6_SUBNET"

    @pytest.mark.parametrize("subnet", [32, 48, 56, 64, False])
    def test_usual_ipv6_subnet(self, validations: Validations, subnet) -> None:
        assert validations.ipv6_subnet(subnet) is None

    def test_subnet_with_custom_key_generator(self, validations: Validations) -> None:
        options = {"ipv6_subnet": 64, "key_generator": lambda request: "k"}

        assert validations.ipv6_subnet_or_key_generator(options).severity == "warning"
        assert validations.ipv6_subnet_or_key_generator({"ipv6_subnet": 64}) is None

    def test_unmasked_ipv6_from_key_generator(self, validations: Validations) -> None:
        assert validations.key_generator_ip_fallback("2001:db8::1").code == "ERR_RL_KEY_GEN_IPV6"
        assert validations.key_generator_ip_fallback("2001:db8::/56") is None
        assert validations.key_generator_ip_fallback("user-42") is None


class TestCreationStack:
    def test_limiter_created_during_request(self, validations: Validations) -> None:
        token = mark_request_started()
        try:
            result = validations.creation_stack(MemoryStore())
        finally:
            mark_request_finished(token)

        assert result.code == "ERR_RL_CREATED_IN_REQUEST_HANDLER"

    def test_limiter_created_at_startup(self, validations: Validations) -> None:
        assert validations.creation_stack(MemoryStore()) is None


class TestSwitches:
    def test_validate_false_disables_every_check(self, caplog: pytest.LogCaptureFixture) -> None:
        validations = Validations(False)

        assert validations.limit(0) is None
        assert validations.ip(None) is None
        assert caplog.records == []

    def test_individual_check_can_be_disabled(self) -> None:
        validations = Validations({"ip": False})

        assert validations.ip(None) is None
        assert validations.limit(0) is not None

    def test_default_applies_to_unlisted_checks(self) -> None:
        validations = Validations({"default": False, "limit": True})

        assert validations.ip(None) is None
        assert validations.limit(0) is not None

    def test_disable_turns_off_all_checks(self) -> None:
        validations = Validations()
        validations.disable()

        assert validations.active is False
        assert validations.limit(0) is None

        validations.enable()
        assert validations.limit(0) is not None

    def test_unknown_check_name(self) -> None:
        result = Validations({"ip": False, "no_such_check": True}).validations_config()

        assert result.code == "ERR_RL_UNKNOWN_VALIDATION"
        assert "no_such_check" in result.message

    def test_known_check_names(self) -> None:
        assert Validations({"ip": False, "default": True}).validations_config() is None
