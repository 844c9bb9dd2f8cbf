"""
Auto-confirmation worker for completed bookings.

A provider marks a job completed; the client has ESCROW_AUTO_CONFIRMATION_DAYS
to confirm (or dispute by contacting support). When the window passes
without a confirmation, the booking is confirmed on the client's behalf
and the escrowed funds start releasing to the provider.

Tasks:
- auto_confirm_completed_bookings: Periodic task (celery-beat, hourly)

Usage:
    from payments.workers import auto_confirm_completed_bookings

    auto_confirm_completed_bookings.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking, BookingStatus
from payments.state_machines import EscrowState

logger = logging.getLogger(__name__)


# Maximum bookings confirmed per run
BATCH_SIZE = 200

AUTO_CONFIRMATION_TRIGGER = "auto_confirmation"


def bookings_due_for_auto_confirmation(now=None):
    """
    Completed, unconfirmed bookings past the window with funds in escrow.
    """
    cutoff = (now or timezone.now()) - timedelta(days=settings.ESCROW_AUTO_CONFIRMATION_DAYS)
    return Booking.objects.filter(
        status=BookingStatus.COMPLETED,
        provider_completed_at__lte=cutoff,
        client_confirmed_at__isnull=True,
        escrow_entry__state=EscrowState.ESCROW,
    ).order_by("provider_completed_at")


@shared_task(bind=True)
def auto_confirm_completed_bookings(self) -> dict:
    """
    Confirm overdue bookings and begin releasing their escrow.

    Each booking is handled in its own transaction; a failure on one is
    logged and does not stop the others.

    Returns:
        Dict with:
        - confirmed_count: Bookings confirmed and released
        - error_count: Bookings skipped because of an error
    """
    from payments.services import EscrowLedger

    ledger = EscrowLedger()
    confirmed_count = 0
    error_count = 0

    booking_ids = list(
        bookings_due_for_auto_confirmation().values_list("id", flat=True)[:BATCH_SIZE]
    )

    for booking_id in booking_ids:
        try:
            with transaction.atomic():
                booking = Booking.objects.select_for_update().get(pk=booking_id)
                if booking.client_confirmed_at is not None:
                    # Client confirmed while we were working through the batch
                    continue

                booking.record_confirmation(auto=True)
                booking.save(update_fields=["client_confirmed_at", "auto_confirmed", "updated_at"])
                ledger.begin_release(booking.escrow_entry.id, trigger=AUTO_CONFIRMATION_TRIGGER)
        except Exception as e:
            error_count += 1
            logger.error(
                f"Auto-confirmation failed: {e}",
                extra={"booking_id": str(booking_id)},
                exc_info=True,
            )
            continue

        confirmed_count += 1
        logger.info(
            "Booking auto-confirmed, escrow release started",
            extra={"booking_id": str(booking_id)},
        )

    logger.info(
        f"Auto-confirmation run complete: confirmed {confirmed_count} bookings",
        extra={"confirmed_count": confirmed_count, "error_count": error_count},
    )

    return {"confirmed_count": confirmed_count, "error_count": error_count}
