"""
Pytest fixtures shared by every payments test package.

Entries past ESCROW are built through EscrowLedger so their payout
episode rows and idempotency keys are real. The gateway is always a
Mock(spec=PaymentGateway); no test reaches the network.

Usage:
    def test_release(funded_entry, ledger):
        result = ledger.begin_release(funded_entry.id)
        assert result.entry.state == EscrowState.PROCESSING_RELEASE
"""

import hashlib
import hmac
import json
from unittest.mock import Mock

import pytest
from django.conf import settings

from bookings.models import BookingStatus
from bookings.tests.factories import BookingFactory, ServiceProviderFactory, UserFactory
from payments.adapters import (
    ChargeInitialization,
    ChargeVerification,
    PaymentGateway,
    RefundResult,
    TransferResult,
    TransferVerification,
)
from payments.services import EscrowLedger
from payments.state_machines import EscrowState
from payments.tests.factories import EscrowEntryFactory


# =============================================================================
# Parties
# =============================================================================


@pytest.fixture
def client_user(db):
    """The paying client."""
    return UserFactory(username="client", email="client@example.com")


@pytest.fixture
def provider(db):
    """A provider with complete bank details."""
    return ServiceProviderFactory(
        user=UserFactory(username="provider", email="provider@example.com"),
        business_name="Sparkle Cleaning",
        bank_name="Capitec Bank",
        account_number="1234567890",
        account_holder_name="Sparkle Cleaning (Pty) Ltd",
    )


@pytest.fixture
def staff_user(db):
    return UserFactory(username="operator", email="ops@example.com", is_staff=True)


@pytest.fixture
def booking(db, client_user, provider):
    """A confirmed booking for 50000 minor units."""
    return BookingFactory(
        client=client_user,
        provider=provider,
        status=BookingStatus.CONFIRMED,
        total_amount=50000,
    )


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture
def mock_gateway():
    """
    Gateway double with successful defaults.

    Override per test, e.g.:
        mock_gateway.execute_transfer.side_effect = TransientGatewayError("down")
    """
    gateway = Mock(spec=PaymentGateway)
    gateway.initialize_charge.side_effect = lambda amount, currency, reference, email, **kwargs: (
        ChargeInitialization(
            authorization_url=f"https://checkout.paystack.test/{reference.lower()}",
            access_code="ac_test",
            reference=reference,
        )
    )
    gateway.verify_charge.return_value = ChargeVerification(
        reference="", status="success", amount=50000, currency="ZAR"
    )
    gateway.create_transfer_recipient.return_value = "RCP_test123"
    gateway.execute_transfer.return_value = TransferResult(
        transfer_code="TRF_test123", reference="", status="pending"
    )
    gateway.verify_transfer.return_value = TransferVerification(
        reference="", status="pending", transfer_code="TRF_test123"
    )
    gateway.refund.return_value = RefundResult(refund_id="3018284", status="pending", amount=50000)
    return gateway


@pytest.fixture
def ledger(mock_gateway):
    return EscrowLedger(gateway=mock_gateway)


# =============================================================================
# Escrow Entries
# =============================================================================


@pytest.fixture
def pending_entry(db, booking):
    """A PENDING entry awaiting the client's charge."""
    return EscrowEntryFactory(booking=booking)


@pytest.fixture
def funded_entry(db, booking):
    """An entry whose charge succeeded (ESCROW)."""
    return EscrowEntryFactory(booking=booking, state=EscrowState.ESCROW)


@pytest.fixture
def releasing_entry(db, funded_entry, ledger):
    """An entry in its first PROCESSING_RELEASE episode."""
    return ledger.begin_release(funded_entry.id, trigger="client_confirmation").entry


@pytest.fixture
def failed_entry(db, releasing_entry, ledger):
    """An entry whose first payout episode failed."""
    return ledger.fail_release(
        releasing_entry.id,
        releasing_entry.idempotency_key,
        "Bank rejected transfer",
    ).entry


# =============================================================================
# Webhooks
# =============================================================================


@pytest.fixture
def sign():
    """Sign a raw body the way the gateway does."""

    def _sign(raw_body: bytes, secret: str | None = None) -> str:
        key = (secret or settings.PAYSTACK_WEBHOOK_SECRET).encode("utf-8")
        return hmac.new(key, raw_body, hashlib.sha512).hexdigest()

    return _sign


@pytest.fixture
def webhook_body():
    """Build a gateway envelope as raw bytes."""

    def _body(event: str, reference: str, **data) -> bytes:
        return json.dumps({"event": event, "data": {"reference": reference, **data}}).encode()

    return _body
