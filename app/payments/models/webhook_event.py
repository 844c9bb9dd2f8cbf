"""
WebhookEvent model for gateway webhook tracking.

Stores every webhook event received from the payment gateway for
idempotent processing and audit trails. The gateway does not send a
per-delivery event id, so (event_type, external_reference) is the natural
deduplication key.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_type="charge.success",
        external_reference="CS_1718000000000_a1B2c3",
        defaults={"payload": payload},
    )

    if not created and event.processed:
        # Duplicate delivery - already applied
        return

    # ... dispatch to handler ...
    event.mark_processed()
    event.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Durable log of inbound gateway notifications.

    Processing Flow:
        1. Webhook arrives, signature verified against the raw body
        2. get_or_create on (event_type, external_reference)
        3. If exists and processed -> duplicate, acknowledge
        4. Lock the row, dispatch to the registered handler
        5. Mark processed (optionally with an error note)
        6. On unexpected failure, increment retry_count and keep it
           unprocessed for the retry task

    Fields:
        event_type: Gateway event name (e.g., 'charge.success')
        external_reference: Charge reference or transfer reference
        payload: Full JSON envelope
        processed: Whether the event has been applied (or deliberately skipped)
        processed_at: When processing finished
        retry_count: Failed processing attempts
        last_error: Error note (orphan, conflict, stale or exception text)
        received_at: When the first delivery arrived
    """

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Gateway event type (e.g., 'charge.success')",
    )

    external_reference = models.CharField(
        max_length=100,
        help_text="Charge or transfer reference the event refers to",
    )

    payload = models.JSONField(
        help_text="Full webhook envelope from the gateway (JSON)",
    )

    processed = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the event has been applied",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When processing finished",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of failed processing attempts",
    )

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Error note from the latest processing attempt",
    )

    received_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the first delivery arrived",
    )

    class Meta:
        ordering = ["-received_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(
                fields=["event_type", "external_reference"],
                name="webhook_event_natural_key",
            ),
        ]
        indexes = [
            models.Index(fields=["processed", "retry_count"], name="webhook_event_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_type}, {self.external_reference})"

    @property
    def can_retry(self) -> bool:
        """Check if an unprocessed event still has retry budget."""
        return not self.processed and self.retry_count < settings.WEBHOOK_MAX_RETRIES

    def mark_processed(self, note: str = "") -> None:
        """
        Mark event as processed.

        Args:
            note: Error note for orphan, conflict or stale events

        Note: Does not save - caller must save after calling.
        """
        self.processed = True
        self.processed_at = timezone.now()
        self.last_error = note

    def mark_failed(self, error: str) -> None:
        """
        Record a failed processing attempt.

        Note: Does not save - caller must save after calling.
        """
        self.retry_count += 1
        self.last_error = error
