"""
Tests for webhook signature verification.
"""

import hashlib
import hmac
import logging

import pytest

from payments.exceptions import AuthenticationError
from payments.webhooks.verification import WebhookSignatureVerifier

SECRET = "whsec_unit"
BODY = b'{"event":"charge.success","data":{"reference":"CS_1"}}'


def signature_for(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


class TestWebhookSignatureVerifier:
    def test_compute_is_hmac_sha512_hex(self):
        assert WebhookSignatureVerifier(SECRET).compute(BODY) == signature_for(BODY)

    def test_valid_signature(self):
        WebhookSignatureVerifier(SECRET).verify(BODY, signature_for(BODY))

    def test_signature_is_case_and_whitespace_tolerant(self):
        WebhookSignatureVerifier(SECRET).verify(BODY, f"  {signature_for(BODY).upper()} ")

    def test_missing_signature(self):
        with pytest.raises(AuthenticationError) as exc_info:
            WebhookSignatureVerifier(SECRET).verify(BODY, None)

        assert "Missing" in exc_info.value.message

    def test_wrong_secret(self):
        with pytest.raises(AuthenticationError):
            WebhookSignatureVerifier(SECRET).verify(BODY, signature_for(BODY, "other"))

    def test_body_tampering_detected(self):
        """The digest covers the exact bytes, so re-serialized JSON fails."""
        tampered = b'{"event": "charge.success", "data": {"reference": "CS_1"}}'

        with pytest.raises(AuthenticationError):
            WebhookSignatureVerifier(SECRET).verify(tampered, signature_for(BODY))

    @pytest.mark.parametrize("secret", ["", None])
    def test_unconfigured_secret_rejects_everything(self, secret):
        with pytest.raises(AuthenticationError) as exc_info:
            WebhookSignatureVerifier(secret).verify(BODY, signature_for(BODY))

        assert exc_info.value.error_code == "WEBHOOK_SECRET_NOT_CONFIGURED"

    def test_non_ascii_signature_is_rejected(self, caplog):
        with caplog.at_level(logging.WARNING, logger="payments.security"):
            with pytest.raises(AuthenticationError) as exc_info:
                WebhookSignatureVerifier(SECRET).verify(BODY, "é" * 128)

        assert exc_info.value.message == "Invalid webhook signature"
        assert "signature mismatch" in caplog.text
