"""
Booking lifecycle service.

Each status change is made by one party: the provider accepts, starts and
completes the job; the client confirms completion, which releases the
escrowed payment to the provider. Either party may cancel before work
starts.

Cancelling a paid booking does not refund it automatically; refunds are
a staff action on the escrow entry.

Usage:
    from bookings.services import BookingService

    result = BookingService.confirm_completion(booking, request.user)
    if not result.success:
        return Response({"error": result.error, "error_code": result.error_code})
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction

from django_fsm import TransitionNotAllowed

from core.services import BaseService, ServiceResult

from bookings.models import Booking, BookingStatus
from payments.exceptions import PaymentNotFoundError, StateConflict

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser


class BookingService(BaseService):
    """Status transitions for bookings, with ownership checks."""

    @classmethod
    def accept(cls, booking: Booking, provider_user: AbstractBaseUser) -> ServiceResult[Booking]:
        return cls._provider_transition(booking, provider_user, "accept")

    @classmethod
    def start(cls, booking: Booking, provider_user: AbstractBaseUser) -> ServiceResult[Booking]:
        return cls._provider_transition(booking, provider_user, "start")

    @classmethod
    def mark_completed(cls, booking: Booking, provider_user: AbstractBaseUser) -> ServiceResult[Booking]:
        """
        Provider marks the job done; starts the auto-confirmation window.
        """
        return cls._provider_transition(booking, provider_user, "mark_completed")

    @classmethod
    def confirm_completion(cls, booking: Booking, client_user: AbstractBaseUser) -> ServiceResult[Booking]:
        """
        Client confirms the job was done and the payment can be released.

        Confirmation and the start of the release commit together: if the
        ledger refuses to release (payment not held in escrow), the
        confirmation is rolled back too. Confirming twice is harmless.

        Returns:
            ServiceResult with the booking, or failure codes
            NOT_BOOKING_CLIENT, INVALID_BOOKING_TRANSITION,
            PAYMENT_NOT_FOUND, STATE_CONFLICT
        """
        from payments.models import EscrowEntry
        from payments.services import EscrowLedger

        if booking.client_id != client_user.pk:
            return ServiceResult.failure(
                "Only the booking's client can confirm completion",
                error_code="NOT_BOOKING_CLIENT",
            )

        try:
            with transaction.atomic():
                locked = Booking.objects.select_for_update().get(pk=booking.pk)
                if locked.status != BookingStatus.COMPLETED:
                    return ServiceResult.failure(
                        f"Booking is {locked.status}, not completed",
                        error_code="INVALID_BOOKING_TRANSITION",
                    )

                if not locked.is_confirmed_by_client:
                    locked.record_confirmation(auto=False)
                    locked.save(update_fields=["client_confirmed_at", "auto_confirmed", "updated_at"])

                entry_id = (
                    EscrowEntry.objects.filter(booking=locked).values_list("id", flat=True).first()
                )
                if entry_id is None:
                    raise PaymentNotFoundError(
                        "Booking has no payment to release",
                        details={"booking_id": str(locked.pk)},
                    )
                EscrowLedger().begin_release(entry_id, trigger="client_confirmation")
        except (PaymentNotFoundError, StateConflict) as e:
            cls.get_logger().warning(
                f"Completion confirmation refused: {e.message}",
                extra={"booking_id": str(booking.pk), "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)

        cls.get_logger().info(
            "Booking completion confirmed by client",
            extra={"booking_id": str(booking.pk)},
        )
        return ServiceResult.success(locked)

    @classmethod
    def cancel(cls, booking: Booking, user: AbstractBaseUser, reason: str = "") -> ServiceResult[Booking]:
        """Cancel a booking before work starts (either party)."""
        if user.pk not in booking.participant_user_ids():
            return ServiceResult.failure(
                "Only the booking's client or provider can cancel it",
                error_code="NOT_BOOKING_PARTICIPANT",
            )

        try:
            booking.cancel(reason=reason)
        except TransitionNotAllowed:
            return cls._invalid_transition(booking, "cancel")

        booking.save()
        cls.get_logger().info(
            "Booking cancelled",
            extra={"booking_id": str(booking.pk), "cancelled_by": str(user.pk)},
        )
        return ServiceResult.success(booking)

    @classmethod
    def _provider_transition(
        cls,
        booking: Booking,
        provider_user: AbstractBaseUser,
        transition_name: str,
    ) -> ServiceResult[Booking]:
        if booking.provider.user_id != provider_user.pk:
            return ServiceResult.failure(
                "Only the booking's provider can do this",
                error_code="NOT_BOOKING_PROVIDER",
            )

        try:
            getattr(booking, transition_name)()
        except TransitionNotAllowed:
            return cls._invalid_transition(booking, transition_name)

        booking.save()
        cls.get_logger().info(
            f"Booking {transition_name} applied",
            extra={"booking_id": str(booking.pk), "status": booking.status},
        )
        return ServiceResult.success(booking)

    @staticmethod
    def _invalid_transition(booking: Booking, transition_name: str) -> ServiceResult[Booking]:
        return ServiceResult.failure(
            f"Cannot {transition_name.replace('_', ' ')} a booking that is {booking.status}",
            error_code="INVALID_BOOKING_TRANSITION",
        )
