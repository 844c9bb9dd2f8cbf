"""
Reconciliation sweep for escrow entries stuck waiting on the gateway.

Webhooks can be lost. The sweep asks the gateway directly about entries
that have waited longer than RECONCILIATION_STALE_AFTER_MINUTES and feeds
what it learns through the same ledger methods webhook ingestion uses, so
a late webhook and the sweep can never both apply a transition.

Checks:
    PROCESSING_RELEASE -> verify_transfer(idempotency key)
        success          -> record_transfer_success
        failed/reversed  -> record_transfer_failure
        not found, no transfer accepted yet -> re-dispatch disbursement
        anything else    -> left for the next sweep
    PENDING -> verify_charge(charge reference)
        success          -> record_charge_success
        anything else    -> left as is (abandoned checkouts stay PENDING)

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService().run_sweep()
    print(result.to_dict())
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.services import BaseService

from payments.adapters import GatewayOwnerMixin
from payments.exceptions import GatewayError, OrphanEvent, StateConflict
from payments.models import EscrowEntry
from payments.services.ledger import EscrowLedger
from payments.state_machines import EscrowState

if TYPE_CHECKING:
    from datetime import datetime

    from payments.adapters import PaymentGateway


# Maximum entries checked per state per sweep
SWEEP_BATCH_SIZE = 200

# Gateway transfer statuses that end an episode as FAILED
FAILED_TRANSFER_STATUSES = frozenset({"failed", "reversed"})


@dataclass
class SweepResult:
    """
    Summary of one sweep.

    Attributes:
        checked: Entries queried at the gateway
        funded: PENDING entries moved to ESCROW
        released: PROCESSING_RELEASE entries moved to RELEASED
        failed: PROCESSING_RELEASE entries moved to FAILED
        redispatched: Episodes whose disbursement was enqueued again
        unchanged: Entries the gateway had no final answer for
        errors: Entries skipped because of gateway or ledger errors
    """

    checked: int = 0
    funded: int = 0
    released: int = 0
    failed: int = 0
    redispatched: int = 0
    unchanged: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconciliationService(GatewayOwnerMixin, BaseService):
    """Polls the gateway for stale entries and applies what it finds."""

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        ledger: EscrowLedger | None = None,
    ) -> None:
        if gateway is None:
            from payments.adapters import PaystackAdapter

            gateway = self._owned_gateway = PaystackAdapter.from_settings()
        self.gateway = gateway
        self.ledger = ledger or EscrowLedger(gateway=gateway)

    def run_sweep(
        self,
        stale_after: timedelta | None = None,
        now: datetime | None = None,
    ) -> SweepResult:
        """
        Reconcile every entry older than the staleness threshold.

        Args:
            stale_after: Age after which an entry is checked
                (defaults to RECONCILIATION_STALE_AFTER_MINUTES)
            now: Reference time (defaults to timezone.now())
        """
        if stale_after is None:
            stale_after = timedelta(minutes=settings.RECONCILIATION_STALE_AFTER_MINUTES)
        threshold = (now or timezone.now()) - stale_after
        result = SweepResult()

        releases = EscrowEntry.objects.filter(
            state=EscrowState.PROCESSING_RELEASE,
            release_requested_at__lte=threshold,
        ).order_by("release_requested_at")[:SWEEP_BATCH_SIZE]
        for entry in releases:
            self._reconcile_release(entry, result)

        charges = EscrowEntry.objects.filter(
            state=EscrowState.PENDING,
            created_at__lte=threshold,
        ).order_by("created_at")[:SWEEP_BATCH_SIZE]
        for entry in charges:
            self._reconcile_charge(entry, result)

        self.get_logger().info("Reconciliation sweep completed", extra=result.to_dict())
        return result

    def _reconcile_release(self, entry: EscrowEntry, result: SweepResult) -> None:
        logger = self.get_logger()
        key = entry.idempotency_key
        result.checked += 1

        try:
            verification = self.gateway.verify_transfer(key)
        except GatewayError as e:
            if e.status_code == 404 and not entry.transfer_reference:
                self._redispatch(entry)
                result.redispatched += 1
                return
            logger.warning(
                f"Could not verify transfer: {e.message}",
                extra={"escrow_entry_id": str(entry.id), "idempotency_key": key},
            )
            result.errors += 1
            return

        try:
            if verification.status == "success":
                outcome = self.ledger.record_transfer_success(key, verification.transfer_code)
                if outcome.applied:
                    result.released += 1
                else:
                    result.unchanged += 1
            elif verification.status in FAILED_TRANSFER_STATUSES:
                outcome = self.ledger.record_transfer_failure(
                    key, f"Reconciliation: gateway reports transfer {verification.status}"
                )
                if outcome.applied:
                    result.failed += 1
                else:
                    result.unchanged += 1
            else:
                result.unchanged += 1
        except (StateConflict, OrphanEvent) as e:
            logger.error(
                f"Reconciliation could not apply transfer result: {e.message}",
                extra={"escrow_entry_id": str(entry.id), "idempotency_key": key, **e.details},
            )
            result.errors += 1

    def _reconcile_charge(self, entry: EscrowEntry, result: SweepResult) -> None:
        logger = self.get_logger()
        result.checked += 1

        try:
            verification = self.gateway.verify_charge(entry.charge_reference)
        except GatewayError as e:
            logger.warning(
                f"Could not verify charge: {e.message}",
                extra={"escrow_entry_id": str(entry.id), "charge_reference": entry.charge_reference},
            )
            result.errors += 1
            return

        if not verification.succeeded:
            result.unchanged += 1
            return

        try:
            outcome = self.ledger.record_charge_success(entry.charge_reference, verification.amount)
        except (StateConflict, OrphanEvent) as e:
            logger.error(
                f"Reconciliation could not apply charge result: {e.message}",
                extra={"escrow_entry_id": str(entry.id), **e.details},
            )
            result.errors += 1
            return

        if outcome.applied:
            result.funded += 1
        else:
            result.unchanged += 1

    def _redispatch(self, entry: EscrowEntry) -> None:
        from payments.workers.payout_executor import disburse_payout

        self.get_logger().warning(
            "Payout episode never reached the gateway, re-dispatching",
            extra={"escrow_entry_id": str(entry.id), "idempotency_key": entry.idempotency_key},
        )
        disburse_payout.delay(str(entry.id))
