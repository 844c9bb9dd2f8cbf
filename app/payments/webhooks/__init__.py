"""
Webhook handling for payment events from the gateway.

This module provides signature verification, the ingestion service,
the handler registry and the HTTP endpoint. Events are verified, stored
idempotently on their natural key, and applied through the escrow ledger.

Usage:
    # In urls.py
    from payments.webhooks.views import paystack_webhook

    urlpatterns = [
        path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.ingestion import (
    IngestionResult,
    IngestionStatus,
    WebhookIngestionService,
)
from payments.webhooks.verification import WebhookSignatureVerifier
from payments.webhooks.views import paystack_webhook

__all__ = [
    "IngestionResult",
    "IngestionStatus",
    "WebhookIngestionService",
    "WebhookSignatureVerifier",
    "dispatch_webhook",
    "paystack_webhook",
    "register_handler",
]
