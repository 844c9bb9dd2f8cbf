"""
Webhook signature verification.

The gateway signs every webhook with HMAC-SHA512 over the exact request
bytes and sends the hex digest in the x-paystack-signature header. The
digest must be computed over the raw body, never a re-serialized parse.

Usage:
    from payments.webhooks.verification import WebhookSignatureVerifier

    verifier = WebhookSignatureVerifier(config.verification_secret)
    verifier.verify(request.body, request.headers.get("x-paystack-signature"))
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from payments.exceptions import AuthenticationError

SIGNATURE_HEADER = "x-paystack-signature"

security_logger = logging.getLogger("payments.security")


class WebhookSignatureVerifier:
    """
    Checks webhook signatures against a shared secret.

    Args:
        secret: Verification secret (resolved once in settings)
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def compute(self, raw_body: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()

    def verify(self, raw_body: bytes, signature: str | None) -> None:
        """
        Verify a signature, raising on any mismatch.

        Raises:
            AuthenticationError: Secret not configured, header missing, or
                digest mismatch
        """
        if not self.secret:
            security_logger.warning("Webhook rejected: no verification secret configured")
            raise AuthenticationError(
                "Webhook verification secret is not configured",
                error_code="WEBHOOK_SECRET_NOT_CONFIGURED",
            )

        if not signature:
            security_logger.warning(
                "Webhook rejected: missing signature header",
                extra={"body_length": len(raw_body)},
            )
            raise AuthenticationError("Missing webhook signature")

        expected = self.compute(raw_body).encode("ascii")
        # Header values may carry arbitrary characters; compare as bytes
        provided = signature.strip().lower().encode("utf-8", "replace")
        if not hmac.compare_digest(expected, provided):
            security_logger.warning(
                "Webhook rejected: signature mismatch",
                extra={"body_length": len(raw_body)},
            )
            raise AuthenticationError("Invalid webhook signature")
