"""
Payment domain models.

This module contains all payment-related models:
- EscrowEntry: Per-booking record of held funds and their lifecycle
- PayoutAttempt: One row per release episode, keyed by idempotency key
- WebhookEvent: Gateway webhook tracking for idempotent processing
"""

from payments.models.escrow_entry import EscrowEntry
from payments.models.payout_attempt import PayoutAttempt
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "EscrowEntry",
    "PayoutAttempt",
    "WebhookEvent",
]
