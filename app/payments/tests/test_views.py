"""
Tests for payments API views.

Gateway calls are intercepted at PaystackAdapter.from_settings, which the
services use when no gateway is injected.
"""

import uuid
from unittest.mock import patch

import pytest
from django.apps import apps
from django.urls import reverse
from rest_framework import status

from bookings.tests.factories import UserFactory
from payments.exceptions import TransientGatewayError
from payments.state_machines import EscrowState
from payments.tests.factories import EscrowEntryFactory


@pytest.fixture
def gateway(mock_gateway):
    with patch("payments.adapters.PaystackAdapter.from_settings", return_value=mock_gateway):
        yield mock_gateway


@pytest.fixture(autouse=True)
def _fresh_stats():
    apps.get_app_config("payments").stats_service.invalidate()


def initialize_url(booking_id):
    return reverse("payments:initialize-payment", kwargs={"booking_id": booking_id})


# =============================================================================
# Checkout
# =============================================================================


class TestInitializePaymentView:
    def test_returns_checkout(self, db, api_client, client_user, booking, gateway):
        api_client.force_authenticate(client_user)

        response = api_client.post(initialize_url(booking.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["reference"].startswith("CS_")
        assert response.data["authorization_url"].startswith("https://checkout.paystack.test/")
        assert response.data["breakdown"] == {
            "total_amount": 50000,
            "platform_fee": 5000,
            "provider_payout": 45000,
        }

    def test_repeat_returns_same_checkout(self, db, api_client, client_user, booking, gateway):
        api_client.force_authenticate(client_user)

        first = api_client.post(initialize_url(booking.id))
        second = api_client.post(initialize_url(booking.id))

        assert second.status_code == status.HTTP_200_OK
        assert second.data["reference"] == first.data["reference"]
        assert gateway.initialize_charge.call_count == 1

    def test_requires_authentication(self, db, api_client, booking):
        response = api_client.post(initialize_url(booking.id))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_other_user_forbidden(self, db, api_client, booking, gateway):
        api_client.force_authenticate(UserFactory())

        response = api_client.post(initialize_url(booking.id))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "NOT_BOOKING_CLIENT"

    def test_unknown_booking(self, db, api_client, client_user, gateway):
        api_client.force_authenticate(client_user)

        response = api_client.post(initialize_url(uuid.uuid4()))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_already_paid_conflicts(self, db, api_client, client_user, funded_entry, gateway):
        api_client.force_authenticate(client_user)

        response = api_client.post(initialize_url(funded_entry.booking_id))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "ALREADY_PAID"

    def test_gateway_down(self, db, api_client, client_user, booking, gateway):
        gateway.initialize_charge.side_effect = TransientGatewayError("Gateway unavailable")
        api_client.force_authenticate(client_user)

        response = api_client.post(initialize_url(booking.id))

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["error_code"] == "GATEWAY_UNAVAILABLE"


# =============================================================================
# Escrow Detail
# =============================================================================


class TestEscrowEntryDetailView:
    def test_client_sees_entry(self, db, api_client, client_user, funded_entry):
        api_client.force_authenticate(client_user)

        response = api_client.get(reverse("payments:escrow-detail", kwargs={"pk": funded_entry.id}))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["state"] == EscrowState.ESCROW
        assert response.data["amount_held"] == 50000
        assert response.data["payout_delayed"] is False
        assert "idempotency_key" not in response.data

    def test_provider_sees_entry(self, db, api_client, provider, funded_entry):
        api_client.force_authenticate(provider.user)

        response = api_client.get(reverse("payments:escrow-detail", kwargs={"pk": funded_entry.id}))

        assert response.status_code == status.HTTP_200_OK

    def test_staff_sees_payout_bookkeeping(self, db, api_client, staff_user, releasing_entry):
        api_client.force_authenticate(staff_user)

        response = api_client.get(reverse("payments:escrow-detail", kwargs={"pk": releasing_entry.id}))

        assert response.data["idempotency_key"] == releasing_entry.idempotency_key
        assert len(response.data["payout_attempts"]) == 1
        assert response.data["payout_attempts"][0]["outcome"] == "in_flight"

    def test_outsider_forbidden(self, db, api_client, funded_entry):
        api_client.force_authenticate(UserFactory())

        response = api_client.get(reverse("payments:escrow-detail", kwargs={"pk": funded_entry.id}))

        assert response.status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# Operator Actions
# =============================================================================


class TestRefundView:
    def test_staff_refunds(self, db, api_client, staff_user, funded_entry, gateway):
        api_client.force_authenticate(staff_user)

        response = api_client.post(
            reverse("payments:escrow-refund", kwargs={"pk": funded_entry.id}),
            {"reason": "Provider no-show"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["state"] == EscrowState.REFUNDED
        assert response.data["metadata"]["refund_reason"] == "Provider no-show"

    def test_release_in_progress_conflicts(self, db, api_client, staff_user, releasing_entry, gateway):
        api_client.force_authenticate(staff_user)

        response = api_client.post(reverse("payments:escrow-refund", kwargs={"pk": releasing_entry.id}))

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_non_staff_forbidden(self, db, api_client, client_user, funded_entry, gateway):
        api_client.force_authenticate(client_user)

        response = api_client.post(reverse("payments:escrow-refund", kwargs={"pk": funded_entry.id}))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        gateway.refund.assert_not_called()

    def test_unknown_entry(self, db, api_client, staff_user, gateway):
        api_client.force_authenticate(staff_user)

        response = api_client.post(reverse("payments:escrow-refund", kwargs={"pk": uuid.uuid4()}))

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestRequeuePayoutView:
    def test_staff_requeues(self, db, api_client, staff_user, failed_entry):
        api_client.force_authenticate(staff_user)

        response = api_client.post(
            reverse("payments:escrow-requeue", kwargs={"pk": failed_entry.id}),
            {"expected_version": failed_entry.version},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["state"] == EscrowState.PROCESSING_RELEASE
        assert response.data["release_epoch"] == 2

    def test_stale_version_conflicts(self, db, api_client, staff_user, failed_entry):
        api_client.force_authenticate(staff_user)

        response = api_client.post(
            reverse("payments:escrow-requeue", kwargs={"pk": failed_entry.id}),
            {"expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "STALE_RECORD"

    def test_invalid_version(self, db, api_client, staff_user, failed_entry):
        api_client.force_authenticate(staff_user)

        response = api_client.post(
            reverse("payments:escrow-requeue", kwargs={"pk": failed_entry.id}),
            {"expected_version": 0},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestEscrowStatsView:
    def test_staff_sees_summary(self, db, api_client, staff_user):
        EscrowEntryFactory(state=EscrowState.ESCROW)
        api_client.force_authenticate(staff_user)

        response = api_client.get(reverse("payments:escrow-stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["counts"]["escrow"] == 1
        assert response.data["held_in_escrow"] == 50000
        assert response.data["currency"] == "ZAR"

    def test_cached_until_refresh(self, db, api_client, staff_user):
        api_client.force_authenticate(staff_user)
        api_client.get(reverse("payments:escrow-stats"))
        EscrowEntryFactory(state=EscrowState.ESCROW)

        cached = api_client.get(reverse("payments:escrow-stats"))
        refreshed = api_client.get(reverse("payments:escrow-stats"), {"refresh": "1"})

        assert cached.data["counts"]["escrow"] == 0
        assert refreshed.data["counts"]["escrow"] == 1

    def test_non_staff_forbidden(self, db, api_client, client_user):
        api_client.force_authenticate(client_user)

        response = api_client.get(reverse("payments:escrow-stats"))

        assert response.status_code == status.HTTP_403_FORBIDDEN
