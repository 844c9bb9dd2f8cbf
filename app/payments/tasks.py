"""
Celery tasks for payment processing.

This module provides async tasks for:
- Re-processing webhook events whose first processing attempt failed
- Periodic retry of unprocessed webhook events

and re-exports the worker tasks so Celery autodiscovery finds them:
- Disbursing provider payouts
- Auto-confirming overdue completed bookings
- The reconciliation sweep

Usage:
    from payments.tasks import process_webhook_event

    # Re-run a recorded webhook event
    process_webhook_event.delay(str(webhook_event_id))

    # Retry everything still unprocessed (typically via celery-beat)
    from payments.tasks import retry_unprocessed_webhooks
    retry_unprocessed_webhooks.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from payments.models import WebhookEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum webhook events queued per retry run
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Apply a recorded webhook event that has not been processed yet.

    The signature was verified when the event was first received, so the
    stored payload is trusted here.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with the ingestion status and event id
    """
    from payments.webhooks.ingestion import WebhookIngestionService

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.processed:
        return {"status": "duplicate", "webhook_event_id": str(webhook_event_id)}

    result = WebhookIngestionService().process(webhook_event)
    return {
        "status": result.status.value,
        "webhook_event_id": str(webhook_event_id),
        "detail": result.detail,
    }


@shared_task
def retry_unprocessed_webhooks() -> dict:
    """
    Periodic task to retry unprocessed webhook events.

    Finds events that are still unprocessed and have retry budget left
    (retry_count below WEBHOOK_MAX_RETRIES) and queues them for processing.
    Events that exhaust the budget stay unprocessed for investigation.

    Returns:
        Dict with count of webhooks queued for retry
    """
    pending = WebhookEvent.objects.filter(
        processed=False,
        retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
    ).order_by("received_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in pending:
        try:
            process_webhook_event.delay(str(webhook.id))
            queued_count += 1
            logger.info(
                "Queued unprocessed webhook for retry",
                extra={
                    "webhook_event_id": str(webhook.id),
                    "event_type": webhook.event_type,
                    "retry_count": webhook.retry_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )

    logger.info(
        f"Queued {queued_count} unprocessed webhooks for retry",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================
# These tasks are defined in payments.workers but re-exported here for
# convenience and to ensure Celery autodiscover finds them.

from payments.workers import (  # noqa: E402, F401
    auto_confirm_completed_bookings,
    disburse_payout,
    run_reconciliation_sweep,
)
