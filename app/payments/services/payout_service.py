"""
Payout disburser: sends the provider's share once release has started.

Flow for one PROCESSING_RELEASE episode:
    1. Load the entry; skip unless it is PROCESSING_RELEASE with no
       transfer accepted yet
    2. Resolve the provider's transfer recipient (cached recipient code,
       or create one from their bank details via the bank table)
    3. Request the transfer, reusing the episode's idempotency key on
       every attempt, with backoff between transient failures. The attempt
       budget belongs to the episode, so a redelivered task resumes the count
    4. Accepted -> store the transfer code; RELEASED arrives later via
       webhook or reconciliation
       Rejected or retries exhausted -> the ledger moves the entry to FAILED

No row lock is held while talking to the gateway: each attempt is counted
in its own short transaction and the gateway call happens after it commits.

Usage:
    from payments.services import PayoutDisburser

    result = PayoutDisburser().disburse(entry_id)
    if result.status == DisbursementStatus.ACCEPTED:
        ...
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService

from payments.adapters import GatewayOwnerMixin, backoff_delay
from payments.banks import resolve_bank_code
from payments.exceptions import (
    InvalidPayoutDestinationError,
    PermanentGatewayError,
    TransientGatewayError,
)
from payments.models import EscrowEntry
from payments.services.ledger import EscrowLedger
from payments.state_machines import EscrowState

if TYPE_CHECKING:
    from collections.abc import Callable

    from bookings.models import ServiceProvider
    from payments.adapters import PaymentGateway


# Immediate transfer statuses that mean the transfer will not happen
REJECTED_TRANSFER_STATUSES = frozenset({"failed", "otp", "abandoned"})


class DisbursementStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"


@dataclass
class DisbursementResult:
    """
    Synchronous outcome of a disbursement.

    Attributes:
        status: accepted (transfer requested), rejected (episode FAILED),
            or skipped (nothing to do)
        entry_id: EscrowEntry the disbursement was for
        idempotency_key: Key used for the transfer
        transfer_code: Gateway transfer code when accepted
        attempts: Transfer attempts made by this call
        error: Why the disbursement was rejected or skipped
    """

    status: DisbursementStatus
    entry_id: str
    idempotency_key: str | None = None
    transfer_code: str | None = None
    attempts: int = 0
    error: str = ""


class PayoutDisburser(GatewayOwnerMixin, BaseService):
    """
    Initiates the provider transfer for an entry in PROCESSING_RELEASE.

    Args:
        gateway: PaymentGateway (defaults to PaystackAdapter.from_settings(),
            closed by close())
        sleep: Called with the backoff delay between attempts
        max_attempts: Transfer attempts per episode (PAYOUT_MAX_ATTEMPTS)
        base_delay: Backoff base in seconds (PAYOUT_BACKOFF_BASE_SECONDS)
        max_delay: Backoff cap in seconds (PAYOUT_BACKOFF_MAX_SECONDS)
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        ledger: EscrowLedger | None = None,
    ) -> None:
        if gateway is None:
            from payments.adapters import PaystackAdapter

            gateway = self._owned_gateway = PaystackAdapter.from_settings()
        self.gateway = gateway
        self.sleep = sleep
        self.max_attempts = max_attempts or settings.PAYOUT_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.PAYOUT_BACKOFF_BASE_SECONDS
        self.max_delay = max_delay if max_delay is not None else settings.PAYOUT_BACKOFF_MAX_SECONDS
        self.ledger = ledger or EscrowLedger(gateway=gateway)

    def disburse(self, entry_id) -> DisbursementResult:
        """
        Request the transfer for an entry's current payout episode.

        Never raises for gateway failures: they end the episode as FAILED.
        """
        logger = self.get_logger()

        entry = (
            EscrowEntry.objects.select_related("booking__provider").filter(pk=entry_id).first()
        )
        if entry is None:
            logger.warning("Escrow entry not found for disbursement", extra={"escrow_entry_id": str(entry_id)})
            return DisbursementResult(DisbursementStatus.SKIPPED, str(entry_id), error="not found")

        if entry.state != EscrowState.PROCESSING_RELEASE:
            return DisbursementResult(
                DisbursementStatus.SKIPPED,
                str(entry.id),
                error=f"entry is {entry.state}",
            )

        key = entry.idempotency_key
        if entry.transfer_reference:
            return DisbursementResult(
                DisbursementStatus.SKIPPED,
                str(entry.id),
                idempotency_key=key,
                transfer_code=entry.transfer_reference,
                error="transfer already accepted",
            )

        provider = entry.booking.provider
        reason = f"Payout for booking {entry.booking_id}"
        log_context = {"escrow_entry_id": str(entry.id), "idempotency_key": key}

        recipient_code = provider.recipient_code
        last_error = ""
        attempts = 0

        # The budget is per episode: a redelivered task continues the count
        if entry.attempt_count >= self.max_attempts:
            return self._reject(
                entry,
                key,
                attempts,
                f"Transfer retries exhausted after {entry.attempt_count} attempts",
            )

        while True:
            attempt_count = self.ledger.register_transfer_attempt(entry.id, key)
            if attempt_count is None:
                # Episode resolved or superseded while we were retrying
                return DisbursementResult(
                    DisbursementStatus.SKIPPED,
                    str(entry.id),
                    idempotency_key=key,
                    attempts=attempts,
                    error="episode no longer current",
                )
            if attempt_count > self.max_attempts:
                # Another worker spent the rest of the budget
                break
            attempts += 1

            try:
                if not recipient_code:
                    recipient_code = self._resolve_recipient(provider, entry.currency)
                result = self.gateway.execute_transfer(
                    recipient_code,
                    entry.provider_payout,
                    key,
                    reason,
                    entry.currency,
                )
            except TransientGatewayError as e:
                last_error = e.message
                logger.warning(
                    f"Transient gateway error on transfer attempt {attempt_count}/{self.max_attempts}",
                    extra={**log_context, "attempt": attempt_count, "error": e.message},
                )
                if attempt_count >= self.max_attempts:
                    break
                self.sleep(backoff_delay(attempt_count - 1, self.base_delay, self.max_delay))
                continue
            except PermanentGatewayError as e:
                return self._reject(entry, key, attempts, e.message)

            if result.status in REJECTED_TRANSFER_STATUSES:
                return self._reject(
                    entry, key, attempts, f"Gateway returned transfer status '{result.status}'"
                )

            self.ledger.record_transfer_accepted(entry.id, key, result.transfer_code)
            logger.info(
                "Transfer accepted by gateway",
                extra={**log_context, "transfer_code": result.transfer_code, "attempts": attempts},
            )
            return DisbursementResult(
                DisbursementStatus.ACCEPTED,
                str(entry.id),
                idempotency_key=key,
                transfer_code=result.transfer_code,
                attempts=attempts,
            )

        return self._reject(
            entry,
            key,
            attempts,
            f"Transfer retries exhausted after {self.max_attempts} attempts: {last_error}",
        )

    def _reject(self, entry: EscrowEntry, key: str, attempts: int, error: str) -> DisbursementResult:
        self.ledger.fail_release(entry.id, key, error)
        return DisbursementResult(
            DisbursementStatus.REJECTED,
            str(entry.id),
            idempotency_key=key,
            attempts=attempts,
            error=error,
        )

    def _resolve_recipient(self, provider: ServiceProvider, currency: str) -> str:
        """
        Create and cache the provider's transfer recipient.

        Raises:
            InvalidPayoutDestinationError: Bank details missing or unknown bank
        """
        if not provider.has_payout_destination:
            raise InvalidPayoutDestinationError(
                "Provider has no payout bank details",
                details={"provider_id": str(provider.pk)},
            )

        bank_code = resolve_bank_code(provider.bank_name, provider.bank_code)
        recipient_code = self.gateway.create_transfer_recipient(
            bank_code,
            provider.account_number,
            provider.account_holder_name,
            currency,
        )

        type(provider).objects.filter(pk=provider.pk).update(recipient_code=recipient_code)
        provider.recipient_code = recipient_code

        self.get_logger().info(
            "Transfer recipient created",
            extra={"provider_id": str(provider.pk), "bank_code": bank_code},
        )
        return recipient_code
