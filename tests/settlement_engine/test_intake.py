"""
Intake, Validation and Configuration Tests.

============================================================
PURPOSE
============================================================
Tests for request schemas, caller IP extraction, settle
address validation, error registry and configuration.

============================================================
"""

from decimal import Decimal

import pytest

from settlement_engine import (
    ERROR_CODES,
    ErrorCategory,
    FormatAddressValidator,
    InvalidObligationError,
    RECIPIENT_ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    RetryEligibility,
    SettlementEngineConfig,
    classify_http_status,
    extract_caller_ip,
    get_error_info,
    parse_settlement_request,
    validate_settle_details,
)


# ============================================================
# SCHEMA TESTS
# ============================================================

class TestSchemas:
    """Tests for pydantic intake models."""

    def test_converts_to_dataclasses(self):
        """Test camelCase payload to core types."""
        request = parse_settlement_request({
            "obligations": [
                {"from": "a", "to": "b", "amount": "12.5", "token": "ETH", "chain": "Ethereum",
                 "reference": "INV-1"},
            ],
            "recipientPreferences": [
                {"party": "b", "receiveToken": "USDC", "receiveChain": "Base",
                 "receiveAddress": "0x" + "1" * 40, "refundAddress": "0x" + "2" * 40},
            ],
        })

        [obligation] = request.to_obligations()
        [pref] = request.to_preferences()
        assert obligation.amount == Decimal("12.5")
        assert obligation.unit == "eth"
        assert obligation.chain == "ethereum"
        assert obligation.reference == "INV-1"
        assert pref.receive_unit == "usdc"
        assert pref.receive_chain == "base"
        assert pref.memo == ""

    @pytest.mark.parametrize("obligation", [
        {"from": "a", "to": "a", "amount": "1", "token": "usdc"},
        {"from": "a", "to": "b", "amount": "0", "token": "usdc"},
        {"from": "a", "to": "b", "amount": "-3", "token": "usdc"},
        {"from": "", "to": "b", "amount": "1", "token": "usdc"},
        {"from": "a", "to": "b", "amount": "1"},
    ])
    def test_rejects_bad_obligations(self, obligation):
        """Test input errors surface as InvalidObligationError."""
        with pytest.raises(InvalidObligationError):
            parse_settlement_request({"obligations": [obligation]})

    def test_requires_obligations(self):
        """Test that an empty obligation list is rejected."""
        with pytest.raises(InvalidObligationError, match="obligations"):
            parse_settlement_request({"obligations": []})

    def test_short_address_rejected(self):
        """Test the minimum receive address length."""
        with pytest.raises(InvalidObligationError):
            parse_settlement_request({
                "obligations": [{"from": "a", "to": "b", "amount": "1", "token": "usdc"}],
                "recipientPreferences": [
                    {"party": "b", "receiveToken": "usdc", "receiveChain": "base",
                     "receiveAddress": "0x1"},
                ],
            })

    def test_name_length(self):
        """Test the settlement name limit."""
        with pytest.raises(InvalidObligationError):
            parse_settlement_request({
                "name": "x" * 101,
                "obligations": [{"from": "a", "to": "b", "amount": "1", "token": "usdc"}],
            })


class TestCallerIp:
    """Tests for extract_caller_ip."""

    def test_forced_ip_wins(self):
        """Test the FORCE_USER_IP override."""
        assert extract_caller_ip({"x-user-ip": "1.1.1.1"}, "2.2.2.2", force_ip=" 9.9.9.9 ") == "9.9.9.9"

    def test_user_ip_header(self):
        """Test the explicit caller header, case-insensitive."""
        assert extract_caller_ip({"X-User-IP": "1.1.1.1, 3.3.3.3"}, "2.2.2.2") == "1.1.1.1"

    def test_forwarded_first_hop(self):
        """Test the first x-forwarded-for hop."""
        assert extract_caller_ip({"x-forwarded-for": "4.4.4.4, 10.0.0.1"}) == "4.4.4.4"

    def test_remote_addr_stripped(self):
        """Test IPv4-mapped IPv6 prefix removal."""
        assert extract_caller_ip({}, "::ffff:5.5.5.5") == "5.5.5.5"


# ============================================================
# ADDRESS VALIDATION TESTS
# ============================================================

class TestAddressValidation:
    """Tests for validate_settle_details."""

    @pytest.mark.parametrize("chain,address", [
        ("ethereum", "0x" + "ab" * 20),
        ("base", "0x" + "AB" * 20),
        ("bitcoin", "bc1q" + "a" * 38),
        ("bitcoin", "1BoatSLRHtKNngkdXEeobR76b53LETtpyT"),
        ("solana", "7EYnhQoR9YM3N7UoaKRoA44Uy8JeaZV3qyouov87awMs"),
        ("tron", "TJCnKsPa7y5okkXvQAidZBzqx3QyQ6sxMW"),
    ])
    def test_valid(self, chain, address):
        """Test addresses accepted per network."""
        assert validate_settle_details("x", chain, address).ok

    def test_taproot_rejected(self):
        """Test Taproot addresses are refused with a dedicated message."""
        check = validate_settle_details("btc", "bitcoin", "bc1p" + "a" * 58)

        assert not check.ok
        assert "Taproot" in check.reason

    def test_bad_evm(self):
        """Test a malformed EVM address includes a hint."""
        check = validate_settle_details("usdc", "ethereum", "0x123")

        assert not check.ok
        assert "42 characters" in check.reason

    def test_unsupported_network(self):
        """Test unknown networks are rejected."""
        check = validate_settle_details("abc", "moonchain", "whatever")

        assert check.reason.startswith("Unsupported network: moonchain")

    def test_xrp_tag(self):
        """Test XRP destination tag rules."""
        address = "rPEPPER7kfTD9w2To4CQk6UCfuHM9c6GDY"

        assert validate_settle_details("xrp", "xrp", address, "123456").ok
        assert validate_settle_details("xrp", "xrp", address).requires_memo
        assert "must be a number" in validate_settle_details("xrp", "xrp", address, "abc").reason

    def test_stellar_memo_required(self):
        """Test Stellar requires a memo."""
        address = "G" + "A" * 55

        assert not validate_settle_details("xlm", "stellar", address).ok
        assert validate_settle_details("xlm", "stellar", address, "note").ok

    @pytest.mark.asyncio
    async def test_format_validator(self):
        """Test the async validator wraps the format checks."""
        check = await FormatAddressValidator().validate_address("eth", "ethereum", "0x" + "0" * 40)

        assert check.ok


# ============================================================
# ERROR REGISTRY TESTS
# ============================================================

class TestErrorRegistry:
    """Tests for the error code registry."""

    @pytest.mark.parametrize("status,category,eligibility", [
        (429, ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
        (500, ErrorCategory.EXCHANGE_ERROR, RetryEligibility.BACKOFF),
        (403, ErrorCategory.COMPLIANCE, RetryEligibility.NO_RETRY),
        (400, ErrorCategory.INVALID_REQUEST, RetryEligibility.NO_RETRY),
    ])
    def test_classify_http_status(self, status, category, eligibility):
        """Test HTTP status classification."""
        assert classify_http_status(status) == (category, eligibility)

    def test_recipient_codes_registered(self):
        """Test every per-recipient failure code is in the registry."""
        for code in (
            "PREFERENCE_MISSING", "ADDRESS_MISSING", "ADDRESS_INVALID", "PAIR_UNAVAILABLE",
            "AMOUNT_BELOW_MINIMUM", "AMOUNT_ABOVE_MAXIMUM", "QUOTE_FAILED", "QUOTE_EXPIRED",
            "ORDER_CREATION_FAILED", "RETRIES_EXHAUSTED", "INTERNAL_ERROR",
        ):
            assert code in ERROR_CODES

    def test_derived_sets(self):
        """Test retryable and recipient code sets."""
        assert "RATE_LIMITED" in RETRYABLE_ERROR_CODES
        assert "ADDRESS_INVALID" not in RETRYABLE_ERROR_CODES
        assert "ADDRESS_INVALID" in RECIPIENT_ERROR_CODES

    def test_unknown_code(self):
        """Test unknown codes get a default entry."""
        info = get_error_info("SOMETHING_NEW")

        assert info.category == ErrorCategory.INTERNAL
        assert not info.is_retryable


# ============================================================
# CONFIGURATION TESTS
# ============================================================

class TestConfiguration:
    """Tests for SettlementEngineConfig."""

    def test_defaults(self):
        """Test documented defaults."""
        config = SettlementEngineConfig()

        assert config.retry.max_retries == 4
        assert config.rate_limit.orders.min_interval_seconds == 12.0
        assert config.rate_limit.reads.max_concurrency == 2
        assert config.exchange.deposit_unit == "usdc"
        assert config.exchange.deposit_chain == "base"
        assert config.price_oracle.fallback_for("btc") == Decimal("45000")
        assert config.price_oracle.fallback_for("unknown") == Decimal("1")

    def test_from_env(self, monkeypatch, tmp_path):
        """Test environment loading."""
        monkeypatch.setenv("SIDESHIFT_API_BASE", "https://example.test/v2")
        monkeypatch.setenv("SIDESHIFT_SECRET", "env-secret")
        monkeypatch.setenv("AFFILIATE_ID", "env-aff")
        monkeypatch.setenv("COMMISSION_RATE", "0.01")
        monkeypatch.setenv("COINGECKO_API_KEY", "cg-key")
        monkeypatch.setenv("FORCE_USER_IP", "7.7.7.7")

        config = SettlementEngineConfig.from_env(str(tmp_path / "missing.env"))

        assert config.exchange.rest_url == "https://example.test/v2"
        assert config.exchange.secret == "env-secret"
        assert config.exchange.affiliate_id == "env-aff"
        assert config.exchange.commission_rate == Decimal("0.01")
        assert config.exchange.force_user_ip == "7.7.7.7"
        assert config.price_oracle.api_key == "cg-key"

    def test_from_dotenv_file(self, monkeypatch, tmp_path):
        """Test values read from a .env file."""
        # set then delete so teardown also removes the value loaded from the file
        monkeypatch.setenv("SIDESHIFT_SECRET", "placeholder")
        monkeypatch.delenv("SIDESHIFT_SECRET")
        env_file = tmp_path / ".env"
        env_file.write_text("SIDESHIFT_SECRET=file-secret\n")

        config = SettlementEngineConfig.from_env(str(env_file))

        assert config.exchange.secret == "file-secret"

    def test_for_testing(self):
        """Test the testing preset disables spacing."""
        config = SettlementEngineConfig.for_testing()

        assert config.retry.max_retries == 1
        assert all(limit.min_interval_seconds == 0.0 for limit in config.rate_limit.channels().values())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
