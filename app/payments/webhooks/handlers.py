"""
Webhook event handlers for gateway events.

This module provides a handler registry and implementations for
processing the gateway events the escrow lifecycle depends on.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types
- One ledger call per event, so handlers stay thin

Every handler returns the ledger's LedgerResult. Ledger exceptions
(OrphanEvent, StateConflict) and MalformedWebhookError propagate to the
ingestion service, which decides how the event is recorded.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("custom.event")
    def handle_custom_event(webhook_event, ledger) -> LedgerResult:
        ...

    # Dispatch an event to its handler (None when unhandled)
    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from payments.exceptions import MalformedWebhookError
from payments.services.ledger import EscrowLedger

if TYPE_CHECKING:
    from typing import Any

    from payments.models import WebhookEvent
    from payments.services.ledger import LedgerResult


logger = logging.getLogger(__name__)

Handler = Callable[["WebhookEvent", EscrowLedger], "LedgerResult"]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(event_type: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("charge.success")
        def handle_charge_success(webhook_event, ledger) -> LedgerResult:
            ...

    Args:
        event_type: The gateway event type (e.g., "charge.success")

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def has_handler(event_type: str) -> bool:
    return event_type in WEBHOOK_HANDLERS


def dispatch_webhook(
    webhook_event: WebhookEvent,
    ledger: EscrowLedger | None = None,
) -> LedgerResult | None:
    """
    Dispatch a webhook event to the appropriate handler.

    Looks up the handler by event type and calls it. If no handler is
    registered, logs and returns None so unknown events are acknowledged
    rather than redelivered forever.

    Args:
        webhook_event: The WebhookEvent to process
        ledger: EscrowLedger to apply the event through

    Returns:
        LedgerResult from the handler, or None if unhandled
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"external_reference": webhook_event.external_reference},
        )
        return None

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"external_reference": webhook_event.external_reference},
    )

    return handler(webhook_event, ledger or EscrowLedger())


def _data(webhook_event: WebhookEvent) -> dict[str, Any]:
    data = webhook_event.payload.get("data")
    return data if isinstance(data, dict) else {}


def _failure_reason(data: dict[str, Any], default: str) -> str:
    return str(data.get("gateway_response") or data.get("reason") or default)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.success")
def handle_charge_success(webhook_event: WebhookEvent, ledger: EscrowLedger) -> LedgerResult:
    """
    Handle a captured charge: the client's money is now held in escrow.

    The reported amount is passed through so the ledger can reject a
    charge that does not match the entry.
    """
    data = _data(webhook_event)
    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
        raise MalformedWebhookError(
            "Charge amount is not an integer",
            details={"external_reference": webhook_event.external_reference},
        )
    return ledger.record_charge_success(webhook_event.external_reference, amount=amount)


@register_handler("charge.failed")
def handle_charge_failed(webhook_event: WebhookEvent, ledger: EscrowLedger) -> LedgerResult:
    data = _data(webhook_event)
    return ledger.record_charge_failure(
        webhook_event.external_reference,
        reason=_failure_reason(data, "Charge failed"),
    )


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("transfer.success")
def handle_transfer_success(webhook_event: WebhookEvent, ledger: EscrowLedger) -> LedgerResult:
    """
    Handle a completed payout.

    The transfer reference is the idempotency key of the payout episode,
    which lets the ledger discard results for superseded episodes.
    """
    data = _data(webhook_event)
    return ledger.record_transfer_success(
        webhook_event.external_reference,
        transfer_code=data.get("transfer_code"),
    )


@register_handler("transfer.failed")
def handle_transfer_failed(webhook_event: WebhookEvent, ledger: EscrowLedger) -> LedgerResult:
    data = _data(webhook_event)
    return ledger.record_transfer_failure(
        webhook_event.external_reference,
        reason=_failure_reason(data, "Transfer failed"),
    )


@register_handler("transfer.reversed")
def handle_transfer_reversed(webhook_event: WebhookEvent, ledger: EscrowLedger) -> LedgerResult:
    # A reversal means the provider never received the funds
    data = _data(webhook_event)
    return ledger.record_transfer_failure(
        webhook_event.external_reference,
        reason=_failure_reason(data, "Transfer reversed"),
    )
