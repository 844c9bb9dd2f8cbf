"""
Webhook endpoint view for the payment gateway.

The view:
1. Refuses to run without a verification secret (503, logged as an error)
2. Hands the raw body and signature header to WebhookIngestionService
3. Maps the ingestion outcome to an HTTP status

Status codes:
    200 - processed, duplicate, orphan, ignored, conflict, stale, rejected
    400 - bad signature or malformed envelope (never worth redelivering)
    503 - transient failure, the gateway should redeliver

Usage:
    # In urls.py
    from payments.webhooks.views import paystack_webhook

    urlpatterns = [
        path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.conf import GatewayConfig
from payments.exceptions import AuthenticationError, MalformedWebhookError
from payments.webhooks.ingestion import WebhookIngestionService
from payments.webhooks.verification import SIGNATURE_HEADER, WebhookSignatureVerifier


logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def paystack_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and apply gateway webhook events.

    Processing is synchronous: the ledger transitions are short row-locked
    updates, and answering with the real outcome lets the gateway's own
    redelivery act as the first retry layer.

    Security:
    - HMAC-SHA512 signature over the raw body, constant-time comparison
    - CSRF exemption required for external webhooks
    - Only POST requests accepted
    """
    config = GatewayConfig.from_settings()
    if not config.can_verify_webhooks:
        logger.error("Webhook received but PAYSTACK_WEBHOOK_SECRET is not configured")
        return HttpResponse("Webhook verification unavailable", status=503)

    service = WebhookIngestionService(
        verifier=WebhookSignatureVerifier(config.verification_secret),
    )

    try:
        result = service.ingest(request.body, request.headers.get(SIGNATURE_HEADER))
    except AuthenticationError:
        return HttpResponse("Invalid signature", status=400)
    except MalformedWebhookError as e:
        logger.warning(f"Malformed webhook: {e.message}", extra=e.details)
        return HttpResponse("Invalid event", status=400)

    if not result.acknowledged:
        return HttpResponse("Processing failed, retry later", status=503)

    return HttpResponse(result.status.value, status=200)
