"""
Escrow service: the request-facing entry points of the payment lifecycle.

Views call these classmethods and get a ServiceResult back; the ledger
underneath raises for conflicts, and this layer turns the expected ones
into failures with error codes.

Usage:
    from payments.services import EscrowService

    result = EscrowService.initialize_payment(booking, request.user)
    if result.success:
        redirect_to(result.data.authorization_url)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult

from payments.exceptions import (
    GatewayError,
    PaymentNotFoundError,
    PaymentValidationError,
    StaleRecordError,
    StateConflict,
)
from payments.models import EscrowEntry
from payments.pricing import (
    PaymentBreakdown,
    calculate_breakdown,
    generate_reference,
    validate_amount,
)
from payments.services.ledger import EscrowLedger
from payments.state_machines import EscrowState

if TYPE_CHECKING:
    from bookings.models import Booking
    from payments.adapters import PaymentGateway


# Booking statuses that can no longer be paid for
UNPAYABLE_BOOKING_STATUSES = ("cancelled", "completed")


@dataclass
class PaymentInitialization:
    """
    What the client needs to complete checkout.

    Attributes:
        entry: The PENDING escrow entry
        authorization_url: Hosted checkout URL
        reference: Charge reference
        breakdown: Fee split of the charge
    """

    entry: EscrowEntry
    authorization_url: str
    reference: str
    breakdown: PaymentBreakdown


class EscrowService(BaseService):
    """Payment initialization, refunds and payout re-queues."""

    @classmethod
    def initialize_payment(
        cls,
        booking: Booking,
        client,
        gateway: PaymentGateway | None = None,
    ) -> ServiceResult[PaymentInitialization]:
        """
        Start checkout for a booking.

        A booking with a still-PENDING entry gets its existing checkout
        back without a new gateway call.

        Returns:
            ServiceResult with PaymentInitialization, or failure codes
            NOT_BOOKING_CLIENT, BOOKING_NOT_PAYABLE, ALREADY_PAID,
            CLIENT_EMAIL_REQUIRED, PAYMENT_VALIDATION_ERROR, GATEWAY_*
        """
        if booking.client_id != client.pk:
            return ServiceResult.failure(
                "Only the booking's client can pay for it",
                error_code="NOT_BOOKING_CLIENT",
            )

        if booking.status in UNPAYABLE_BOOKING_STATUSES:
            return ServiceResult.failure(
                f"Booking is {booking.status} and cannot be paid",
                error_code="BOOKING_NOT_PAYABLE",
            )

        existing = EscrowEntry.objects.filter(booking=booking).first()
        if existing is not None:
            if existing.state == EscrowState.PENDING and existing.authorization_url:
                return ServiceResult.success(cls._initialization(existing))
            return ServiceResult.failure(
                "Booking has already been paid",
                error_code="ALREADY_PAID",
            )

        if not client.email:
            return ServiceResult.failure(
                "An email address is required to pay",
                error_code="CLIENT_EMAIL_REQUIRED",
            )

        try:
            validate_amount(booking.total_amount)
            breakdown = calculate_breakdown(booking.total_amount)
        except PaymentValidationError as e:
            return ServiceResult.from_exception(e)

        if gateway is not None:
            return cls._start_charge(booking, client, breakdown, gateway)

        from payments.adapters import PaystackAdapter

        owned_gateway = PaystackAdapter.from_settings()
        try:
            return cls._start_charge(booking, client, breakdown, owned_gateway)
        finally:
            owned_gateway.close()

    @classmethod
    def _start_charge(
        cls,
        booking: Booking,
        client,
        breakdown: PaymentBreakdown,
        gateway: PaymentGateway,
    ) -> ServiceResult[PaymentInitialization]:
        logger = cls.get_logger()

        reference = generate_reference("CS")
        try:
            charge = gateway.initialize_charge(
                amount=breakdown.total_amount,
                currency=settings.PLATFORM_CURRENCY,
                reference=reference,
                email=client.email,
                metadata={
                    "booking_id": str(booking.pk),
                    "client_id": str(client.pk),
                    "service_name": booking.service_name,
                },
                callback_url=settings.PAYSTACK_CALLBACK_URL or None,
            )
        except GatewayError as e:
            logger.error(
                f"Charge initialization failed: {e.message}",
                extra={"booking_id": str(booking.pk), "reference": reference},
            )
            return ServiceResult.failure(
                "Payment could not be started, please try again",
                error_code=e.error_code,
            )

        try:
            result = EscrowLedger(gateway=gateway).open_entry(
                booking,
                breakdown,
                charge_reference=reference,
                authorization_url=charge.authorization_url,
                currency=settings.PLATFORM_CURRENCY,
            )
        except StateConflict as e:
            return ServiceResult.failure(e.message, error_code="ALREADY_PAID")

        logger.info(
            "Payment initialized",
            extra={
                "booking_id": str(booking.pk),
                "escrow_entry_id": str(result.entry.id),
                "reference": result.entry.charge_reference,
            },
        )
        return ServiceResult.success(cls._initialization(result.entry))

    @classmethod
    def refund(
        cls,
        entry_id,
        reason: str = "",
        gateway: PaymentGateway | None = None,
    ) -> ServiceResult[EscrowEntry]:
        """Refund an entry that has not started release."""
        try:
            with EscrowLedger(gateway=gateway) as ledger:
                result = ledger.refund(entry_id, reason=reason)
        except (PaymentNotFoundError, StateConflict, GatewayError) as e:
            cls.get_logger().warning(
                f"Refund failed: {e.message}",
                extra={"escrow_entry_id": str(entry_id), "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)
        return ServiceResult.success(result.entry)

    @classmethod
    def requeue(cls, entry_id, expected_version: int | None = None) -> ServiceResult[EscrowEntry]:
        """Re-queue a FAILED payout under a new idempotency key."""
        try:
            result = EscrowLedger().requeue(entry_id, expected_version=expected_version)
        except (NotFoundError, PaymentNotFoundError, StateConflict, StaleRecordError) as e:
            return ServiceResult.from_exception(e)
        return ServiceResult.success(result.entry)

    @staticmethod
    def _initialization(entry: EscrowEntry) -> PaymentInitialization:
        return PaymentInitialization(
            entry=entry,
            authorization_url=entry.authorization_url,
            reference=entry.charge_reference,
            breakdown=PaymentBreakdown(
                total_amount=entry.amount_held,
                platform_fee=entry.platform_fee,
                provider_payout=entry.provider_payout,
            ),
        )
