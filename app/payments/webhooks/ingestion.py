"""
Webhook ingestion: verify, deduplicate, apply, record.

Flow for one delivery:
    1. Verify the HMAC signature over the raw body (AuthenticationError)
    2. Parse the envelope {event, data: {reference, ...}} (MalformedWebhookError)
    3. get_or_create the WebhookEvent on (event_type, external_reference);
       an already processed record is a duplicate and is acknowledged
    4. In one transaction: lock the record, dispatch to the registered
       handler, mark it processed
    5. Orphans, state conflicts, stale transfer results and unhandled event
       types are marked processed with an error note; they are answered 200
       because redelivery cannot change the outcome
    6. Any other failure rolls the transaction back, increments retry_count
       and reports RETRY so the gateway (or the retry task) tries again

Usage:
    from payments.webhooks.ingestion import WebhookIngestionService

    result = WebhookIngestionService().ingest(request.body, signature)
    if result.acknowledged:
        return HttpResponse(status=200)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService

from payments.conf import GatewayConfig
from payments.exceptions import MalformedWebhookError, OrphanEvent, StateConflict
from payments.models import WebhookEvent
from payments.services.ledger import EscrowLedger, LedgerOutcome
from payments.webhooks.handlers import dispatch_webhook
from payments.webhooks.verification import WebhookSignatureVerifier

if TYPE_CHECKING:
    from typing import Any


# WebhookEvent.external_reference column width
MAX_REFERENCE_LENGTH = 100


class IngestionStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    ORPHAN = "orphan"
    IGNORED = "ignored"
    CONFLICT = "conflict"
    STALE = "stale"
    REJECTED = "rejected"
    RETRY = "retry"


@dataclass
class IngestionResult:
    """
    Outcome of ingesting one webhook delivery.

    Attributes:
        status: What happened to the event
        event_id: WebhookEvent id, when a record exists
        detail: Error note or ledger detail
    """

    status: IngestionStatus
    event_id: str | None = None
    detail: str = ""

    @property
    def acknowledged(self) -> bool:
        """Whether the gateway should stop redelivering this event."""
        return self.status != IngestionStatus.RETRY


@dataclass(frozen=True)
class WebhookEnvelope:
    event_type: str
    reference: str
    payload: dict[str, Any]


# Ledger outcome -> ingestion status
LEDGER_OUTCOME_STATUS = {
    LedgerOutcome.APPLIED: IngestionStatus.PROCESSED,
    LedgerOutcome.NOOP: IngestionStatus.PROCESSED,
    LedgerOutcome.STALE: IngestionStatus.STALE,
    LedgerOutcome.REJECTED: IngestionStatus.REJECTED,
}


class WebhookIngestionService(BaseService):
    """
    Turns authenticated gateway deliveries into ledger calls exactly once.

    Args:
        verifier: Signature verifier (defaults to the configured secret)
        ledger: EscrowLedger events are applied through
    """

    def __init__(
        self,
        verifier: WebhookSignatureVerifier | None = None,
        ledger: EscrowLedger | None = None,
    ) -> None:
        if verifier is None:
            verifier = WebhookSignatureVerifier(GatewayConfig.from_settings().verification_secret)
        self.verifier = verifier
        self.ledger = ledger or EscrowLedger()

    def ingest(self, raw_body: bytes, signature: str | None) -> IngestionResult:
        """
        Verify, record and apply one delivery.

        Raises:
            AuthenticationError: Signature missing or invalid
            MalformedWebhookError: Body is not a usable envelope
        """
        self.verifier.verify(raw_body, signature)
        envelope = self.parse(raw_body)

        event, created = WebhookEvent.objects.get_or_create(
            event_type=envelope.event_type,
            external_reference=envelope.reference,
            defaults={"payload": envelope.payload},
        )

        if not created and event.processed:
            self.get_logger().info(
                "Webhook already processed, acknowledging duplicate",
                extra={"event_type": event.event_type, "external_reference": event.external_reference},
            )
            return IngestionResult(IngestionStatus.DUPLICATE, str(event.id))

        return self.process(event)

    def process(self, event: WebhookEvent) -> IngestionResult:
        """
        Apply a recorded event under a row lock on the record.

        Safe to call concurrently for the same record: the second caller
        waits for the lock and then sees it processed.
        """
        logger = self.get_logger()
        log_context = {
            "webhook_event_id": str(event.id),
            "event_type": event.event_type,
            "external_reference": event.external_reference,
        }

        try:
            with transaction.atomic():
                locked = WebhookEvent.objects.select_for_update().get(pk=event.pk)
                if locked.processed:
                    return IngestionResult(IngestionStatus.DUPLICATE, str(locked.id))

                status, note = self._apply(locked)
                locked.mark_processed(note)
                locked.save(update_fields=["processed", "processed_at", "last_error", "updated_at"])
        except Exception as e:
            logger.error(
                f"Webhook processing failed: {type(e).__name__}: {e}",
                extra=log_context,
                exc_info=True,
            )
            self._record_failure(event.pk, f"{type(e).__name__}: {e}")
            return IngestionResult(IngestionStatus.RETRY, str(event.id), str(e))

        logger.info(f"Webhook {status.value}", extra={**log_context, "note": note})
        return IngestionResult(status, str(event.id), note)

    @staticmethod
    def parse(raw_body: bytes) -> WebhookEnvelope:
        """
        Parse the gateway envelope.

        Raises:
            MalformedWebhookError: Not JSON, event/data.reference missing, or
                data.amount present but not an integer
        """
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedWebhookError("Webhook body is not valid JSON") from e

        if not isinstance(payload, dict):
            raise MalformedWebhookError("Webhook body is not a JSON object")

        event_type = payload.get("event")
        data = payload.get("data")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedWebhookError("Webhook is missing the event type")
        if not isinstance(data, dict):
            raise MalformedWebhookError(
                "Webhook is missing the data object",
                details={"event_type": event_type},
            )

        reference = data.get("reference")
        if not isinstance(reference, str) or not reference:
            raise MalformedWebhookError(
                "Webhook is missing data.reference",
                details={"event_type": event_type},
            )
        if len(reference) > MAX_REFERENCE_LENGTH:
            raise MalformedWebhookError(
                "Webhook reference is too long",
                details={"event_type": event_type},
            )

        amount = data.get("amount")
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise MalformedWebhookError(
                "Webhook amount is not an integer",
                details={"event_type": event_type},
            )

        return WebhookEnvelope(event_type=event_type, reference=reference, payload=payload)

    def _apply(self, event: WebhookEvent) -> tuple[IngestionStatus, str]:
        logger = self.get_logger()

        try:
            result = dispatch_webhook(event, self.ledger)
        except OrphanEvent as e:
            logger.warning(
                f"Orphan webhook event: {e.message}",
                extra={"event_type": event.event_type, "external_reference": event.external_reference},
            )
            return IngestionStatus.ORPHAN, e.message
        except StateConflict as e:
            logger.error(
                f"Webhook event conflicts with ledger state: {e.message}",
                extra={"event_type": event.event_type, **e.details},
            )
            return IngestionStatus.CONFLICT, e.message
        except MalformedWebhookError as e:
            logger.warning(
                f"Stored webhook payload is unusable: {e.message}",
                extra={"event_type": event.event_type, "external_reference": event.external_reference},
            )
            return IngestionStatus.REJECTED, e.message

        if result is None:
            return IngestionStatus.IGNORED, f"No handler for {event.event_type}"

        return LEDGER_OUTCOME_STATUS[result.outcome], result.detail

    @staticmethod
    def _record_failure(event_pk, error: str) -> None:
        event = WebhookEvent.objects.get(pk=event_pk)
        event.mark_failed(error)
        event.save(update_fields=["retry_count", "last_error", "updated_at"])
