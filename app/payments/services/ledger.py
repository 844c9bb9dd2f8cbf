"""
Escrow ledger: every mutation of an EscrowEntry goes through here.

The ledger serializes work per entry with a row lock (select_for_update)
inside transaction.atomic(), and each save increments the entry's version.
Webhook ingestion, the payout disburser, the reconciliation sweep and
operator actions all call the same methods, so a redelivered webhook and a
sweep that observes the same gateway outcome collapse into one applied
transition and one no-op.

Outcomes:
    APPLIED  - the event changed the entry
    NOOP     - the entry already reflects the event (duplicate / late)
    STALE    - transfer result for a superseded payout episode, discarded
    REJECTED - event authenticated but inconsistent (e.g., amount mismatch)

Illegal transitions raise StateConflict and leave the entry untouched.
Unknown references raise OrphanEvent.

No row lock is ever held across a gateway call.

Usage:
    from payments.services import EscrowLedger

    ledger = EscrowLedger()
    result = ledger.record_charge_success("CS_1718000000000_K3J9XQ2M7A1B", amount=50000)
    if result.applied:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from django_fsm import can_proceed

from core.services import BaseService
from notifications.services import NotificationFanout

from payments.adapters import GatewayOwnerMixin, IdempotencyKeyGenerator
from payments.exceptions import OrphanEvent, PaymentNotFoundError, StateConflict
from payments.locks import check_version
from payments.models import EscrowEntry, PayoutAttempt
from payments.state_machines import (
    EscrowEvent,
    EscrowState,
    PayoutAttemptOutcome,
    has_reached,
)

if TYPE_CHECKING:
    from typing import Any

    from bookings.models import Booking
    from payments.adapters import PaymentGateway
    from payments.pricing import PaymentBreakdown


# Idempotency key operation tag for payouts
PAYOUT_KEY_OPERATION = "po"

# Metadata flag set while a refund call is in flight
REFUND_PENDING_FLAG = "refund_pending"


class LedgerOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    STALE = "stale"
    REJECTED = "rejected"


@dataclass
class LedgerResult:
    """
    Result of a ledger operation.

    Attributes:
        outcome: What happened to the entry
        entry: The entry after the operation
        detail: Why the event was not applied, if it wasn't
    """

    outcome: LedgerOutcome
    entry: EscrowEntry
    detail: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome == LedgerOutcome.APPLIED


class EscrowLedger(GatewayOwnerMixin, BaseService):
    """
    Authoritative, idempotent state transitions for escrow entries.

    The gateway is only needed for refunds; it is created lazily from
    settings when not injected, and closed by close().
    """

    def __init__(self, gateway: PaymentGateway | None = None) -> None:
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            from payments.adapters import PaystackAdapter

            self._gateway = self._owned_gateway = PaystackAdapter.from_settings()
        return self._gateway

    def close(self) -> None:
        if self._owned_gateway is not None:
            self._gateway = None
        super().close()

    # =========================================================================
    # Charges
    # =========================================================================

    def open_entry(
        self,
        booking: Booking,
        breakdown: PaymentBreakdown,
        charge_reference: str,
        authorization_url: str = "",
        currency: str = "ZAR",
    ) -> LedgerResult:
        """
        Create the PENDING entry for a booking's charge.

        A booking whose entry is still PENDING keeps its original charge
        reference; the existing entry is returned as a no-op.

        Raises:
            StateConflict: The booking already has an entry past PENDING
        """
        with self.atomic():
            existing = (
                EscrowEntry.objects.select_for_update().filter(booking_id=booking.pk).first()
            )
            if existing is not None:
                if existing.state == EscrowState.PENDING:
                    return LedgerResult(LedgerOutcome.NOOP, existing, "entry already pending")
                raise StateConflict(
                    "Booking already has an escrow entry",
                    details={
                        "booking_id": str(booking.pk),
                        "escrow_entry_id": str(existing.id),
                        "current_state": existing.state,
                    },
                )

            entry = EscrowEntry.objects.create(
                booking=booking,
                amount_held=breakdown.total_amount,
                platform_fee=breakdown.platform_fee,
                provider_payout=breakdown.provider_payout,
                currency=currency,
                charge_reference=charge_reference,
                authorization_url=authorization_url,
            )

            booking.platform_fee = breakdown.platform_fee
            booking.save(update_fields=["platform_fee", "updated_at"])

        self.get_logger().info(
            "Escrow entry opened",
            extra={
                "escrow_entry_id": str(entry.id),
                "booking_id": str(booking.pk),
                "charge_reference": charge_reference,
                "amount_held": entry.amount_held,
            },
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def record_charge_success(
        self,
        charge_reference: str,
        amount: int | None = None,
    ) -> LedgerResult:
        """
        Apply a confirmed charge: PENDING -> ESCROW.

        Args:
            charge_reference: Gateway charge reference
            amount: Amount the gateway reports as charged (minor units)

        Raises:
            OrphanEvent: No entry has this charge reference
            StateConflict: Entry was refunded before the charge was recorded
        """
        logger = self.get_logger()

        with self.atomic():
            entry = self._lock_by(charge_reference=charge_reference)
            if entry is None:
                raise OrphanEvent(
                    f"No escrow entry for charge {charge_reference}",
                    details={"charge_reference": charge_reference},
                )

            if entry.funded_at is not None or has_reached(entry.state, EscrowState.ESCROW):
                return LedgerResult(LedgerOutcome.NOOP, entry, "charge already recorded")

            if entry.state != EscrowState.PENDING:
                entry.apply(EscrowEvent.CHARGE_SUCCEEDED)  # raises StateConflict

            if amount is not None and amount != entry.amount_held:
                entry.last_error = (
                    f"Charge amount mismatch: gateway reported {amount}, "
                    f"expected {entry.amount_held}"
                )
                entry.save(update_fields=["last_error", "version", "updated_at"])
                logger.error(
                    "Charge amount mismatch, escrow not funded",
                    extra={
                        "escrow_entry_id": str(entry.id),
                        "charge_reference": charge_reference,
                        "reported_amount": amount,
                        "expected_amount": entry.amount_held,
                    },
                )
                return LedgerResult(LedgerOutcome.REJECTED, entry, entry.last_error)

            entry.apply(EscrowEvent.CHARGE_SUCCEEDED)
            entry.save()
            self._notify(entry, "payment.escrow_funded")

        logger.info(
            "Escrow funded",
            extra={"escrow_entry_id": str(entry.id), "charge_reference": charge_reference},
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def record_charge_failure(self, charge_reference: str, reason: str = "") -> LedgerResult:
        """
        Record a failed charge attempt on a PENDING entry.

        The entry stays PENDING so the client can retry checkout.

        Raises:
            OrphanEvent: No entry has this charge reference
        """
        with self.atomic():
            entry = self._lock_by(charge_reference=charge_reference)
            if entry is None:
                raise OrphanEvent(
                    f"No escrow entry for charge {charge_reference}",
                    details={"charge_reference": charge_reference},
                )

            if entry.state != EscrowState.PENDING:
                return LedgerResult(LedgerOutcome.NOOP, entry, f"entry is {entry.state}")

            entry.last_error = reason or "Charge failed"
            entry.save(update_fields=["last_error", "version", "updated_at"])
            self._notify(entry, "payment.charge_failed", provider=False)

        self.get_logger().info(
            "Charge failure recorded",
            extra={"escrow_entry_id": str(entry.id), "charge_reference": charge_reference},
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    # =========================================================================
    # Release
    # =========================================================================

    def begin_release(self, entry_id, trigger: str = "client_confirmation") -> LedgerResult:
        """
        Start the payout episode: ESCROW -> PROCESSING_RELEASE.

        Records a fresh idempotency key and a PayoutAttempt row, and
        enqueues disbursement once the transaction commits.

        Args:
            entry_id: EscrowEntry primary key
            trigger: What asked for release ('client_confirmation',
                'auto_confirmation', ...)

        Raises:
            PaymentNotFoundError: Unknown entry
            StateConflict: Entry is PENDING, FAILED, REFUNDED or mid-refund
        """
        with self.atomic():
            entry = self._lock(entry_id)

            if entry.state in (EscrowState.PROCESSING_RELEASE, EscrowState.RELEASED):
                return LedgerResult(LedgerOutcome.NOOP, entry, f"entry is {entry.state}")

            if entry.metadata.get(REFUND_PENDING_FLAG):
                raise StateConflict(
                    "Escrow entry has a refund in progress",
                    details={"escrow_entry_id": str(entry.id), "current_state": entry.state},
                )

            key = self._payout_key(entry)
            entry.apply(EscrowEvent.RELEASE_REQUESTED, idempotency_key=key)
            entry.metadata = {**entry.metadata, "release_trigger": trigger}
            entry.save()
            self._open_attempt(entry)
            self._enqueue_disbursement(entry)
            self._notify(entry, "payment.release_started")

        self.get_logger().info(
            "Escrow release started",
            extra={
                "escrow_entry_id": str(entry.id),
                "idempotency_key": key,
                "release_epoch": entry.release_epoch,
                "trigger": trigger,
            },
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def requeue(self, entry_id, expected_version: int | None = None) -> LedgerResult:
        """
        Operator action: FAILED -> PROCESSING_RELEASE under a new key.

        Args:
            entry_id: EscrowEntry primary key
            expected_version: Version the operator saw, for optimistic locking

        Raises:
            PaymentNotFoundError: Unknown entry
            StaleRecordError: Entry changed since the operator loaded it
            StateConflict: Entry is not FAILED
        """
        with self.atomic():
            if expected_version is not None:
                entry = check_version(EscrowEntry, entry_id, expected_version)
            else:
                entry = self._lock(entry_id)

            PayoutAttempt.objects.filter(
                escrow_entry=entry,
                outcome=PayoutAttemptOutcome.IN_FLIGHT,
            ).update(outcome=PayoutAttemptOutcome.SUPERSEDED, finished_at=timezone.now())

            key = self._payout_key(entry)
            entry.apply(EscrowEvent.RELEASE_REQUEUED, idempotency_key=key)
            entry.save()
            self._open_attempt(entry)

            booking = entry.booking
            booking.payout_delayed = False
            booking.save(update_fields=["payout_delayed", "updated_at"])

            self._enqueue_disbursement(entry)
            self._notify(entry, "payment.release_requeued", client=False)

        self.get_logger().info(
            "Escrow release re-queued",
            extra={
                "escrow_entry_id": str(entry.id),
                "idempotency_key": key,
                "release_epoch": entry.release_epoch,
            },
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    # =========================================================================
    # Transfers
    # =========================================================================

    def register_transfer_attempt(self, entry_id, idempotency_key: str) -> int | None:
        """
        Count one transfer attempt for the current episode.

        Returns:
            The new attempt_count, or None if the episode is no longer current
        """
        with self.atomic():
            entry = self._lock(entry_id)
            if (
                entry.state != EscrowState.PROCESSING_RELEASE
                or entry.idempotency_key != idempotency_key
            ):
                return None
            entry.attempt_count += 1
            entry.save(update_fields=["attempt_count", "version", "updated_at"])
            return entry.attempt_count

    def record_transfer_accepted(
        self,
        entry_id,
        idempotency_key: str,
        transfer_code: str,
    ) -> LedgerResult:
        """
        Store the gateway transfer code once a transfer request is accepted.

        No state change: RELEASED arrives via webhook or reconciliation.
        """
        with self.atomic():
            entry = self._lock(entry_id)
            if entry.idempotency_key != idempotency_key:
                return LedgerResult(LedgerOutcome.STALE, entry, "episode superseded")
            if entry.state != EscrowState.PROCESSING_RELEASE or not transfer_code:
                return LedgerResult(LedgerOutcome.NOOP, entry, f"entry is {entry.state}")

            entry.transfer_reference = transfer_code
            entry.save(update_fields=["transfer_reference", "version", "updated_at"])
            PayoutAttempt.objects.filter(idempotency_key=idempotency_key).update(
                transfer_reference=transfer_code
            )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def record_transfer_success(
        self,
        reference: str,
        transfer_code: str | None = None,
    ) -> LedgerResult:
        """
        Apply a confirmed payout: PROCESSING_RELEASE -> RELEASED.

        Only a result for the current in-flight key is applied. An entry
        that is already RELEASED absorbs any further success, whatever key
        it carries.

        Raises:
            OrphanEvent: Reference matches no payout episode
            StateConflict: Current key but entry not in PROCESSING_RELEASE
        """
        logger = self.get_logger()

        with self.atomic():
            entry, attempt = self._lock_for_transfer(reference)

            if entry.state == EscrowState.RELEASED:
                return LedgerResult(LedgerOutcome.NOOP, entry, "already released")

            if entry.idempotency_key != attempt.idempotency_key:
                return self._stale(entry, reference, "transfer.success")

            entry.apply(EscrowEvent.TRANSFER_SUCCEEDED, transfer_code=transfer_code)
            entry.save()
            attempt.finish(PayoutAttemptOutcome.SUCCEEDED, transfer_reference=transfer_code)
            attempt.save()
            self._notify(entry, "payment.released")

        logger.info(
            "Escrow released",
            extra={
                "escrow_entry_id": str(entry.id),
                "idempotency_key": reference,
                "transfer_code": transfer_code,
            },
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def record_transfer_failure(self, reference: str, reason: str = "") -> LedgerResult:
        """
        Apply a failed payout: PROCESSING_RELEASE -> FAILED.

        Raises:
            OrphanEvent: Reference matches no payout episode
            StateConflict: Current key but entry not in PROCESSING_RELEASE
        """
        with self.atomic():
            entry, attempt = self._lock_for_transfer(reference)

            if entry.idempotency_key != attempt.idempotency_key:
                return self._stale(entry, reference, "transfer.failed")

            if entry.state == EscrowState.FAILED:
                return LedgerResult(LedgerOutcome.NOOP, entry, "already failed")

            self._fail(entry, attempt, reason or "Transfer failed")

        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def fail_release(self, entry_id, idempotency_key: str, reason: str) -> LedgerResult:
        """
        End the episode as FAILED from the disburser side.

        Used when retries are exhausted or the gateway rejects the payout.
        """
        with self.atomic():
            entry = self._lock(entry_id)

            if entry.idempotency_key != idempotency_key:
                return self._stale(entry, idempotency_key, "disbursement")

            if entry.state in (EscrowState.FAILED, EscrowState.RELEASED):
                return LedgerResult(LedgerOutcome.NOOP, entry, f"entry is {entry.state}")

            attempt = PayoutAttempt.objects.filter(idempotency_key=idempotency_key).first()
            self._fail(entry, attempt, reason)

        return LedgerResult(LedgerOutcome.APPLIED, entry)

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, entry_id, reason: str = "") -> LedgerResult:
        """
        Refund the client: PENDING/ESCROW -> REFUNDED once the gateway confirms.

        Three steps, with no row lock held during the gateway call:
            1. Lock, check the entry is refundable, flag the refund in flight
            2. Ask the gateway (a PENDING entry whose charge never succeeded
               has nothing to refund; the gateway's verification confirms it)
            3. Lock again and transition

        Raises:
            PaymentNotFoundError: Unknown entry
            StateConflict: Entry is not refundable
            GatewayError: The gateway failed; the entry is unchanged
        """
        logger = self.get_logger()

        with self.atomic():
            entry = self._lock(entry_id)
            if entry.state == EscrowState.REFUNDED:
                return LedgerResult(LedgerOutcome.NOOP, entry, "already refunded")
            if not can_proceed(entry.mark_refunded):
                raise StateConflict(
                    f"Cannot refund escrow entry in state {entry.state}",
                    details={
                        "escrow_entry_id": str(entry.id),
                        "current_state": entry.state,
                        "event": EscrowEvent.REFUND_CONFIRMED.value,
                    },
                )
            if entry.metadata.get(REFUND_PENDING_FLAG):
                return LedgerResult(LedgerOutcome.NOOP, entry, "refund already in progress")

            entry.metadata = {**entry.metadata, REFUND_PENDING_FLAG: True}
            entry.save(update_fields=["metadata", "version", "updated_at"])
            charge_reference = entry.charge_reference
            amount = entry.amount_held
            was_pending = entry.state == EscrowState.PENDING

        try:
            refund_reference = self._request_refund(charge_reference, amount, was_pending)
        except Exception:
            self._clear_refund_flag(entry.id)
            raise

        with self.atomic():
            entry = self._lock(entry.id)
            metadata = {k: v for k, v in entry.metadata.items() if k != REFUND_PENDING_FLAG}
            entry.metadata = {**metadata, "refund_reason": reason}
            try:
                entry.apply(EscrowEvent.REFUND_CONFIRMED, refund_reference=refund_reference)
            except StateConflict:
                logger.critical(
                    "Gateway confirmed refund but escrow entry left refundable state",
                    extra={
                        "escrow_entry_id": str(entry.id),
                        "current_state": entry.state,
                        "refund_reference": refund_reference,
                    },
                )
                raise
            entry.save()
            self._notify(entry, "payment.refunded")

        logger.info(
            "Escrow refunded",
            extra={
                "escrow_entry_id": str(entry.id),
                "refund_reference": refund_reference,
                "reason": reason,
            },
        )
        return LedgerResult(LedgerOutcome.APPLIED, entry)

    def _request_refund(self, charge_reference: str, amount: int, was_pending: bool) -> str | None:
        if was_pending:
            verification = self.gateway.verify_charge(charge_reference)
            if not verification.succeeded:
                # Nothing was captured, so there is nothing to return
                return None
        result = self.gateway.refund(charge_reference, amount)
        return result.refund_id or None

    def _clear_refund_flag(self, entry_id) -> None:
        with self.atomic():
            entry = self._lock(entry_id)
            if entry.metadata.pop(REFUND_PENDING_FLAG, None) is not None:
                entry.save(update_fields=["metadata", "version", "updated_at"])

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _lock(entry_id) -> EscrowEntry:
        entry = EscrowEntry.objects.select_for_update().filter(pk=entry_id).first()
        if entry is None:
            raise PaymentNotFoundError(
                f"EscrowEntry {entry_id} not found",
                details={"escrow_entry_id": str(entry_id)},
            )
        return entry

    @staticmethod
    def _lock_by(**lookup) -> EscrowEntry | None:
        return EscrowEntry.objects.select_for_update().filter(**lookup).first()

    def _lock_for_transfer(self, reference: str) -> tuple[EscrowEntry, PayoutAttempt]:
        """Find the episode a transfer reference belongs to and lock its entry."""
        attempt = PayoutAttempt.objects.filter(idempotency_key=reference).first()
        if attempt is None:
            attempt = PayoutAttempt.objects.filter(transfer_reference=reference).first()
        if attempt is None:
            raise OrphanEvent(
                f"No payout episode for transfer {reference}",
                details={"reference": reference},
            )
        entry = self._lock(attempt.escrow_entry_id)
        return entry, attempt

    def _stale(self, entry: EscrowEntry, reference: str, source: str) -> LedgerResult:
        self.get_logger().warning(
            "Discarding transfer result for superseded payout episode",
            extra={
                "escrow_entry_id": str(entry.id),
                "reference": reference,
                "current_key": entry.idempotency_key,
                "source": source,
            },
        )
        return LedgerResult(LedgerOutcome.STALE, entry, "idempotency key does not match in-flight payout")

    def _fail(self, entry: EscrowEntry, attempt: PayoutAttempt | None, reason: str) -> None:
        entry.apply(EscrowEvent.TRANSFER_FAILED, reason=reason)
        entry.save()
        if attempt is not None:
            attempt.finish(PayoutAttemptOutcome.FAILED, error=reason)
            attempt.save()

        booking = entry.booking
        booking.payout_delayed = True
        booking.save(update_fields=["payout_delayed", "updated_at"])

        self._notify(entry, "payment.payout_delayed")
        self.get_logger().error(
            "Escrow payout failed",
            extra={
                "escrow_entry_id": str(entry.id),
                "idempotency_key": entry.idempotency_key,
                "attempt_count": entry.attempt_count,
                "reason": reason,
            },
        )

    @staticmethod
    def _payout_key(entry: EscrowEntry) -> str:
        return IdempotencyKeyGenerator.generate(
            PAYOUT_KEY_OPERATION,
            entry.booking_id,
            attempt=entry.release_epoch + 1,
        )

    @staticmethod
    def _open_attempt(entry: EscrowEntry) -> PayoutAttempt:
        return PayoutAttempt.objects.create(
            escrow_entry=entry,
            epoch=entry.release_epoch,
            idempotency_key=entry.idempotency_key,
        )

    def _enqueue_disbursement(self, entry: EscrowEntry) -> None:
        transaction.on_commit(partial(_dispatch_disbursement, str(entry.id), self.get_logger()))

    @staticmethod
    def _notify(
        entry: EscrowEntry,
        event_type: str,
        client: bool = True,
        provider: bool = True,
    ) -> None:
        booking = entry.booking
        user_ids = []
        if client:
            user_ids.append(booking.client_id)
        if provider:
            user_ids.append(booking.provider.user_id)

        payload: dict[str, Any] = {
            "booking_id": str(booking.pk),
            "escrow_entry_id": str(entry.id),
            "state": entry.state,
            "amount": entry.amount_held,
            "currency": entry.currency,
        }
        transaction.on_commit(partial(NotificationFanout.publish, user_ids, event_type, payload))


def _dispatch_disbursement(entry_id: str, logger) -> None:
    from payments.workers.payout_executor import disburse_payout

    try:
        disburse_payout.delay(entry_id)
    except Exception as e:
        # The reconciliation sweep re-dispatches episodes that never reached the gateway
        logger.error(
            f"Failed to enqueue disbursement: {e}",
            extra={"escrow_entry_id": entry_id},
        )
