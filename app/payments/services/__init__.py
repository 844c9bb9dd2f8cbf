"""
Payment services for coordinating the escrow lifecycle.

This module provides:
- EscrowLedger: Idempotent, row-locked state transitions of escrow entries
- EscrowService: Payment initialization, refunds and payout re-queues
- PayoutDisburser: Initiates provider transfers with bounded retry
- ReconciliationService: Polls the gateway for entries stuck waiting
- EscrowStatsService: Cached aggregate statistics for staff

Usage:
    from payments.services import EscrowService

    result = EscrowService.initialize_payment(booking, request.user)

    from payments.services import EscrowLedger

    EscrowLedger().begin_release(entry.id, trigger="client_confirmation")

    from payments.services import PayoutDisburser

    PayoutDisburser().disburse(entry.id)

    from payments.services import ReconciliationService

    ReconciliationService().run_sweep()
"""

from payments.services.escrow_service import EscrowService, PaymentInitialization
from payments.services.ledger import EscrowLedger, LedgerOutcome, LedgerResult
from payments.services.payout_service import (
    DisbursementResult,
    DisbursementStatus,
    PayoutDisburser,
)
from payments.services.reconciliation_service import ReconciliationService, SweepResult
from payments.services.stats_service import EscrowStatsService

__all__ = [
    "DisbursementResult",
    "DisbursementStatus",
    "EscrowLedger",
    "EscrowService",
    "EscrowStatsService",
    "LedgerOutcome",
    "LedgerResult",
    "PaymentInitialization",
    "PayoutDisburser",
    "ReconciliationService",
    "SweepResult",
]
