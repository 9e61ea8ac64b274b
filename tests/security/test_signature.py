"""Tests for webhook signature and token verification."""

import pytest

from domo_ingest.security.signature import (
    VerifierConfig,
    extract_signature,
    extract_signature_timestamp,
    generate_hmac_sha256_signature,
    validate_webhook_timestamp,
    verify_hmac_sha256_signature,
    verify_webhook,
)

SECRET = "whsec_test"
BODY = b'{"event_type":"application.objective_completed","conversation_id":"c1"}'


class TestExtractSignature:
    """Tests for signature header parsing."""

    def test_raw_value(self) -> None:
        assert extract_signature("  abc123  ") == "abc123"

    def test_sha256_prefix(self) -> None:
        assert extract_signature("sha256=abc123") == "abc123"

    def test_comma_list_v1(self) -> None:
        assert extract_signature("t=1700000000,v1=abc123") == "abc123"

    def test_comma_list_signature_key(self) -> None:
        assert extract_signature("t=1700000000, signature=abc123") == "abc123"

    @pytest.mark.parametrize("header", ["sha1=abc", "md5=abc", "sha512=abc"])
    def test_other_algorithms_rejected(self, header: str) -> None:
        assert extract_signature(header) is None

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_empty_header(self, header: str | None) -> None:
        assert extract_signature(header) is None

    def test_timestamp_component(self) -> None:
        assert extract_signature_timestamp("t=1700000000,v1=abc") == "1700000000"
        assert extract_signature_timestamp("abc") is None


class TestHmacVerification:
    """HMAC round trip in both encodings, and single-byte tamper rejection."""

    @pytest.mark.parametrize("encoding", ["hex", "base64"])
    def test_valid_signature_verifies(self, encoding: str) -> None:
        signature = generate_hmac_sha256_signature(BODY, SECRET, encoding=encoding)
        assert verify_hmac_sha256_signature(BODY, signature, SECRET) is True

    @pytest.mark.parametrize("encoding", ["hex", "base64"])
    def test_single_byte_change_rejected(self, encoding: str) -> None:
        signature = generate_hmac_sha256_signature(BODY, SECRET, encoding=encoding)
        tampered = BODY.replace(b"c1", b"c2")
        assert verify_hmac_sha256_signature(tampered, signature, SECRET) is False

    def test_prefixed_hex_header(self) -> None:
        signature = generate_hmac_sha256_signature(BODY, SECRET)
        assert verify_hmac_sha256_signature(BODY, f"sha256={signature}", SECRET) is True

    def test_wrong_secret_rejected(self) -> None:
        signature = generate_hmac_sha256_signature(BODY, "other-secret")
        assert verify_hmac_sha256_signature(BODY, signature, SECRET) is False

    def test_truncated_signature_rejected(self) -> None:
        signature = generate_hmac_sha256_signature(BODY, SECRET)
        assert verify_hmac_sha256_signature(BODY, signature[:-2], SECRET) is False

    def test_garbage_signature_rejected(self) -> None:
        assert verify_hmac_sha256_signature(BODY, "not-a-signature!", SECRET) is False

    def test_str_payload_matches_bytes(self) -> None:
        assert generate_hmac_sha256_signature(BODY.decode(), SECRET) == (
            generate_hmac_sha256_signature(BODY, SECRET)
        )


class TestTimestampValidation:
    def test_within_tolerance(self) -> None:
        assert validate_webhook_timestamp("1000", 300, now=1200) is True

    def test_outside_tolerance(self) -> None:
        assert validate_webhook_timestamp("1000", 300, now=1400) is False

    def test_non_numeric(self) -> None:
        assert validate_webhook_timestamp("yesterday", 300, now=1000) is False


class TestVerifyWebhook:
    """Tests for the combined HMAC / token / development-mode decision."""

    def test_hmac_accepted(self) -> None:
        config = VerifierConfig(secret=SECRET)
        headers = {"X-Tavus-Signature": generate_hmac_sha256_signature(BODY, SECRET)}
        result = verify_webhook(BODY, headers, None, config)
        assert result.valid is True
        assert result.method == "hmac"

    def test_alternate_header_names(self) -> None:
        config = VerifierConfig(secret=SECRET)
        signature = generate_hmac_sha256_signature(BODY, SECRET, encoding="base64")
        for header in ("tavus-signature", "x-signature"):
            assert verify_webhook(BODY, {header: signature}, None, config).valid is True

    def test_hmac_mismatch(self) -> None:
        config = VerifierConfig(secret=SECRET)
        headers = {"x-tavus-signature": generate_hmac_sha256_signature(b"other", SECRET)}
        result = verify_webhook(BODY, headers, None, config)
        assert result.valid is False
        assert result.reason == "signature_mismatch"

    def test_stale_timestamp_rejected(self) -> None:
        config = VerifierConfig(secret=SECRET, timestamp_tolerance_seconds=300)
        signature = generate_hmac_sha256_signature(BODY, SECRET)
        headers = {"x-tavus-signature": f"t=1000,v1={signature}"}
        result = verify_webhook(BODY, headers, None, config, now=5000)
        assert result.valid is False
        assert result.reason == "stale_timestamp"

    def test_fresh_timestamp_accepted(self) -> None:
        config = VerifierConfig(secret=SECRET, timestamp_tolerance_seconds=300)
        signature = generate_hmac_sha256_signature(BODY, SECRET)
        headers = {"x-tavus-signature": f"t=1000,v1={signature}"}
        assert verify_webhook(BODY, headers, None, config, now=1100).valid is True

    def test_token_fallback_when_no_signature(self) -> None:
        config = VerifierConfig(secret=SECRET, token="callback-token")
        result = verify_webhook(BODY, {}, "callback-token", config)
        assert result.valid is True
        assert result.method == "token"

    def test_token_mismatch(self) -> None:
        config = VerifierConfig(token="callback-token")
        result = verify_webhook(BODY, {}, "wrong", config)
        assert result.valid is False
        assert result.reason == "token_mismatch"

    def test_missing_token(self) -> None:
        config = VerifierConfig(token="callback-token")
        assert verify_webhook(BODY, {}, None, config).valid is False

    def test_secret_without_signature_or_token(self) -> None:
        config = VerifierConfig(secret=SECRET)
        result = verify_webhook(BODY, {}, None, config)
        assert result.valid is False
        assert result.reason == "missing_signature"

    def test_unauthenticated_allowed_only_when_flagged(self) -> None:
        allowed = verify_webhook(BODY, {}, None, VerifierConfig(allow_unauthenticated=True))
        assert allowed.valid is True
        assert allowed.method == "none"

        refused = verify_webhook(BODY, {}, None, VerifierConfig())
        assert refused.valid is False
        assert refused.reason == "auth_not_configured"
