"""
Reconciliation worker for the periodic gateway sweep.

Runs ReconciliationService under a non-blocking distributed lock so two
beat ticks (or a manual trigger and a tick) never sweep concurrently.
The sweep itself is idempotent; the lock only avoids duplicate gateway
traffic.

Tasks:
- run_reconciliation_sweep: Periodic sweep (celery-beat, every 15 minutes)

Usage:
    from payments.workers import run_reconciliation_sweep

    run_reconciliation_sweep.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SWEEP_LOCK_KEY = "reconciliation:sweep"

# Longer than any realistic sweep, short enough to recover from a crash
SWEEP_LOCK_TTL_SECONDS = 600


@shared_task(bind=True)
def run_reconciliation_sweep(self, stale_after_minutes: int | None = None) -> dict:
    """
    Reconcile stale PENDING and PROCESSING_RELEASE entries with the gateway.

    Args:
        stale_after_minutes: Override RECONCILIATION_STALE_AFTER_MINUTES

    Returns:
        Dict with the SweepResult counters and a "status" of
        "completed" or "skipped" (another sweep holds the lock)
    """
    from payments.services import ReconciliationService

    stale_after = timedelta(minutes=stale_after_minutes) if stale_after_minutes else None

    try:
        with DistributedLock(SWEEP_LOCK_KEY, ttl=SWEEP_LOCK_TTL_SECONDS, blocking=False):
            service = ReconciliationService()
            try:
                result = service.run_sweep(stale_after=stale_after)
            finally:
                service.close()
    except LockAcquisitionError:
        logger.info("Reconciliation sweep already running, skipping")
        return {"status": "skipped"}

    return {"status": "completed", **result.to_dict()}
