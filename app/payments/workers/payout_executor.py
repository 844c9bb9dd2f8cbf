"""
Payout executor worker for disbursing released escrow funds.

This module provides the Celery task that runs the PayoutDisburser for
one escrow entry. The ledger enqueues it on commit whenever a payout
episode starts (client confirmation, auto-confirmation, or an operator
re-queue), and the reconciliation sweep re-dispatches it for episodes
whose transfer never reached the gateway.

Tasks:
- disburse_payout: Request the provider transfer for one escrow entry

Usage:
    from payments.workers import disburse_payout

    disburse_payout.delay(str(entry.id))
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db import OperationalError

logger = logging.getLogger(__name__)


# Celery-level retries for database trouble only; gateway retries happen
# inside the disburser under the episode's idempotency key
MAX_TASK_RETRIES = 3


@shared_task(
    bind=True,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_TASK_RETRIES},
    acks_late=True,
)
def disburse_payout(self, entry_id: str) -> dict:
    """
    Disburse the provider payout for an escrow entry.

    Safe to run more than once for the same entry: the disburser skips
    entries that are not PROCESSING_RELEASE or already have an accepted
    transfer, and every attempt reuses the episode's idempotency key.

    Args:
        entry_id: UUID of the EscrowEntry

    Returns:
        Dict with:
        - status: "accepted", "rejected" or "skipped"
        - escrow_entry_id: The entry processed
        - idempotency_key: Key the transfer was requested with
        - transfer_code: Gateway transfer code when accepted
        - attempts: Transfer attempts made
        - error: Why the disbursement was rejected or skipped
    """
    from payments.services import PayoutDisburser

    logger.info(
        "Processing payout disbursement",
        extra={"escrow_entry_id": str(entry_id), "celery_retries": self.request.retries},
    )

    disburser = PayoutDisburser()
    try:
        result = disburser.disburse(entry_id)
    finally:
        disburser.close()

    return {
        "status": result.status.value,
        "escrow_entry_id": result.entry_id,
        "idempotency_key": result.idempotency_key,
        "transfer_code": result.transfer_code,
        "attempts": result.attempts,
        "error": result.error,
    }
