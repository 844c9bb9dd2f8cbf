"""
Workers for async payment processing.

This module contains Celery tasks for background payment operations:
- PayoutExecutor: Disburses the provider payout for one escrow entry
- AutoConfirmation: Confirms overdue completed bookings and starts release
- ReconciliationWorker: Polls the gateway for entries stuck waiting

Usage:
    from payments.workers import (
        auto_confirm_completed_bookings,
        disburse_payout,
        run_reconciliation_sweep,
    )

    # Trigger manual processing
    disburse_payout.delay(str(entry_id))

    # Run reconciliation
    run_reconciliation_sweep.delay()
"""

from payments.workers.auto_confirmation import auto_confirm_completed_bookings
from payments.workers.payout_executor import disburse_payout
from payments.workers.reconciliation_worker import run_reconciliation_sweep

__all__ = [
    # Auto Confirmation
    "auto_confirm_completed_bookings",
    # Payout Executor
    "disburse_payout",
    # Reconciliation Worker
    "run_reconciliation_sweep",
]
