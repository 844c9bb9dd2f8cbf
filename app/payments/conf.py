"""
Gateway configuration resolved from Django settings.

The webhook verification secret is decided once, in settings; this module
only carries the result. Nothing downstream inspects key prefixes.

Usage:
    from payments.conf import GatewayConfig

    config = GatewayConfig.from_settings()
    verifier = WebhookSignatureVerifier(config.verification_secret)
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class GatewayConfig:
    """
    Immutable gateway configuration.

    Attributes:
        secret_key: Bearer credential for API calls
        base_url: Gateway API base URL
        timeout: Per-request timeout in seconds
        callback_url: Redirect target after hosted checkout
        verification_secret: Secret used to verify webhook signatures
        currency: Deployment currency
    """

    secret_key: str
    base_url: str
    timeout: float
    callback_url: str
    verification_secret: str
    currency: str

    @classmethod
    def from_settings(cls) -> GatewayConfig:
        return cls(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL.rstrip("/"),
            timeout=float(settings.PAYSTACK_API_TIMEOUT_SECONDS),
            callback_url=settings.PAYSTACK_CALLBACK_URL,
            verification_secret=settings.PAYSTACK_WEBHOOK_SECRET,
            currency=settings.PLATFORM_CURRENCY,
        )

    @property
    def can_verify_webhooks(self) -> bool:
        return bool(self.verification_secret)
