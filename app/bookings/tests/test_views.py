"""
Tests for the bookings API.
"""

import pytest
from django.urls import reverse
from rest_framework import status

from bookings.models import BookingStatus
from bookings.tests.factories import BookingFactory, UserFactory
from payments.state_machines import EscrowState
from payments.tests.factories import EscrowEntryFactory


def action_url(booking, action):
    return reverse(f"bookings:booking-{action}", kwargs={"pk": booking.pk})


class TestBookingList:
    def test_lists_only_own_bookings(self, db, api_client, client_user, booking):
        BookingFactory()
        api_client.force_authenticate(client_user)

        response = api_client.get(reverse("bookings:booking-list"))

        assert response.status_code == status.HTTP_200_OK
        results = response.data["results"] if isinstance(response.data, dict) else response.data
        assert [item["id"] for item in results] == [str(booking.pk)]

    def test_provider_sees_their_bookings(self, db, api_client, provider, booking):
        api_client.force_authenticate(provider.user)

        response = api_client.get(reverse("bookings:booking-detail", kwargs={"pk": booking.pk}))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["provider_name"] == "Sparkle Cleaning"
        assert response.data["escrow_state"] is None

    def test_outsider_gets_404(self, db, api_client, booking):
        api_client.force_authenticate(UserFactory())

        response = api_client.get(reverse("bookings:booking-detail", kwargs={"pk": booking.pk}))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_requires_authentication(self, db, api_client):
        response = api_client.get(reverse("bookings:booking-list"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestProviderActions:
    def test_accept(self, db, api_client, provider, booking):
        api_client.force_authenticate(provider.user)

        response = api_client.post(action_url(booking, "accept"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == BookingStatus.CONFIRMED

    def test_client_cannot_accept(self, db, api_client, client_user, booking):
        api_client.force_authenticate(client_user)

        response = api_client.post(action_url(booking, "accept"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_illegal_transition_conflicts(self, db, api_client, provider, booking):
        api_client.force_authenticate(provider.user)

        response = api_client.post(action_url(booking, "complete"))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_BOOKING_TRANSITION"

    def test_complete(self, db, api_client, provider, client_user):
        booking = BookingFactory(client=client_user, provider=provider, status=BookingStatus.IN_PROGRESS)
        api_client.force_authenticate(provider.user)

        response = api_client.post(action_url(booking, "complete"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["provider_completed_at"] is not None


class TestConfirmCompletion:
    def test_releases_payment(self, db, api_client, client_user, completed_booking):
        EscrowEntryFactory(booking=completed_booking, state=EscrowState.ESCROW)
        api_client.force_authenticate(client_user)

        response = api_client.post(action_url(completed_booking, "confirm-completion"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["client_confirmed_at"] is not None
        assert response.data["escrow_state"] == EscrowState.PROCESSING_RELEASE

    def test_url_path(self, db, completed_booking):
        assert action_url(completed_booking, "confirm-completion").endswith("/confirm-completion/")

    def test_provider_forbidden(self, db, api_client, provider, completed_booking):
        api_client.force_authenticate(provider.user)

        response = api_client.post(action_url(completed_booking, "confirm-completion"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_no_payment_is_404(self, db, api_client, client_user, completed_booking):
        api_client.force_authenticate(client_user)

        response = api_client.post(action_url(completed_booking, "confirm-completion"))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "PAYMENT_NOT_FOUND"

    def test_unfunded_payment_conflicts(self, db, api_client, client_user, completed_booking):
        EscrowEntryFactory(booking=completed_booking)
        api_client.force_authenticate(client_user)

        response = api_client.post(action_url(completed_booking, "confirm-completion"))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "STATE_CONFLICT"


class TestCancel:
    @pytest.mark.parametrize("who", ["client", "provider"])
    def test_either_party_cancels(self, db, api_client, client_user, provider, booking, who):
        api_client.force_authenticate(client_user if who == "client" else provider.user)

        response = api_client.post(action_url(booking, "cancel"), {"reason": "Rain"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == BookingStatus.CANCELLED

    def test_cannot_cancel_completed(self, db, api_client, client_user, completed_booking):
        api_client.force_authenticate(client_user)

        response = api_client.post(action_url(completed_booking, "cancel"))

        assert response.status_code == status.HTTP_409_CONFLICT
