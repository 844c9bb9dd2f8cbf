"""
Pytest fixtures for bookings tests.
"""

import pytest

from bookings.models import BookingStatus
from bookings.tests.factories import BookingFactory, ServiceProviderFactory, UserFactory


@pytest.fixture
def client_user(db):
    return UserFactory(username="client", email="client@example.com")


@pytest.fixture
def provider(db):
    return ServiceProviderFactory(
        user=UserFactory(username="provider", email="provider@example.com"),
        business_name="Sparkle Cleaning",
    )


@pytest.fixture
def booking(db, client_user, provider):
    """A requested booking awaiting the provider."""
    return BookingFactory(client=client_user, provider=provider)


@pytest.fixture
def completed_booking(db, client_user, provider):
    booking = BookingFactory(
        client=client_user,
        provider=provider,
        status=BookingStatus.IN_PROGRESS,
    )
    booking.mark_completed()
    booking.save()
    return booking
