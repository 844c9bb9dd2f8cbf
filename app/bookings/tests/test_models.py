"""
Tests for booking models.
"""

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from bookings.models import BookingStatus
from bookings.tests.factories import BookingFactory


class TestBookingTransitions:
    """Tests for the Booking status FSM."""

    def test_happy_path(self, db, booking):
        booking.accept()
        booking.start()
        booking.mark_completed()
        booking.save()

        booking.refresh_from_db()
        assert booking.status == BookingStatus.COMPLETED
        assert booking.provider_completed_at is not None

    def test_cannot_complete_before_start(self, db, booking):
        with pytest.raises(TransitionNotAllowed):
            booking.mark_completed()

        assert booking.status == BookingStatus.REQUESTED

    @pytest.mark.parametrize("status", [BookingStatus.REQUESTED, BookingStatus.CONFIRMED])
    def test_cancel_before_work(self, db, status):
        booking = BookingFactory(status=status)

        booking.cancel(reason="Changed plans")

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_at is not None
        assert booking.cancellation_reason == "Changed plans"

    @pytest.mark.parametrize("status", [BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED])
    def test_cannot_cancel_after_work_starts(self, db, status):
        booking = BookingFactory(status=status)

        with pytest.raises(TransitionNotAllowed):
            booking.cancel()


class TestBooking:
    def test_record_confirmation(self, db, completed_booking):
        completed_booking.record_confirmation(auto=True)

        assert completed_booking.is_confirmed_by_client
        assert completed_booking.auto_confirmed is True

    def test_participant_user_ids(self, db, booking, client_user, provider):
        assert booking.participant_user_ids() == [client_user.pk, provider.user_id]

    def test_total_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            BookingFactory(total_amount=0)


class TestServiceProvider:
    def test_has_payout_destination(self, db, provider):
        assert provider.has_payout_destination

    def test_missing_account_number(self, db, provider):
        provider.account_number = ""

        assert not provider.has_payout_destination

    def test_bank_code_without_name_is_enough(self, db, provider):
        provider.bank_name = ""
        provider.bank_code = "051"

        assert provider.has_payout_destination
