"""
Booking domain models.

This module defines:
- BookingStatus: Lifecycle states of a booking
- ServiceProvider: A provider account and its payout destination
- Booking: A scheduled service engagement between a client and a provider

Booking State Flow:
    REQUESTED → CONFIRMED → IN_PROGRESS → COMPLETED
    REQUESTED/CONFIRMED → CANCELLED

Each transition is performed by a distinct actor: the provider accepts,
starts and completes the job; the client (or the auto-confirmation timer)
confirms completion, which is recorded on the booking without a status
change and triggers escrow release in the payments app.

Usage:
    from bookings.models import Booking, BookingStatus

    booking.accept()
    booking.save()

    booking.mark_completed()
    booking.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


# =============================================================================
# Enums
# =============================================================================


class BookingStatus(models.TextChoices):
    """
    Lifecycle states for a Booking.

    Terminal states: COMPLETED, CANCELLED
    """

    REQUESTED = "requested", "Requested"
    CONFIRMED = "confirmed", "Confirmed"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


# =============================================================================
# Service Provider
# =============================================================================


class ServiceProvider(BaseModel):
    """
    A user offering services on the marketplace.

    Holds the bank details payouts are sent to. The gateway recipient code
    is created lazily on the first payout and cached here so later payouts
    skip recipient creation.

    Fields:
        user: The provider's user account
        business_name: Display name shown to clients
        bank_name: Bank name as entered during onboarding
        bank_code: Gateway bank code (resolved from bank_name when blank)
        account_number: Destination account number
        account_holder_name: Name on the destination account
        recipient_code: Gateway transfer recipient (RCP_xxx), once created
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="service_provider",
        help_text="User account of the provider",
    )

    business_name = models.CharField(
        max_length=200,
        help_text="Business or trading name shown to clients",
    )

    # ==========================================================================
    # Payout Destination
    # ==========================================================================

    bank_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="Bank name as captured during onboarding",
    )

    bank_code = models.CharField(
        max_length=20,
        blank=True,
        help_text="Gateway bank code; resolved from bank_name when blank",
    )

    account_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="Destination bank account number",
    )

    account_holder_name = models.CharField(
        max_length=200,
        blank=True,
        help_text="Name on the destination bank account",
    )

    recipient_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Gateway transfer recipient code (RCP_xxx)",
    )

    class Meta:
        ordering = ["business_name"]
        verbose_name = "Service Provider"
        verbose_name_plural = "Service Providers"

    def __str__(self) -> str:
        return f"ServiceProvider({self.business_name})"

    @property
    def has_payout_destination(self) -> bool:
        """Check whether enough bank details exist to create a recipient."""
        return bool(
            self.account_number
            and self.account_holder_name
            and (self.bank_code or self.bank_name)
        )


# =============================================================================
# Booking
# =============================================================================


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """
    A scheduled service engagement between a client and a provider.

    The booking subsystem owns this record; the escrow ledger entry in the
    payments app references it but never changes its status. The only
    payment-facing field written from the payments side is payout_delayed,
    the user-visible flag raised when a payout fails.

    Fields:
        client: User who booked and pays
        provider: ServiceProvider performing the job
        service_name: Name of the booked service
        scheduled_at: When the job takes place
        address: Where the job takes place
        status: Current FSM status
        total_amount: Amount charged to the client (minor units)
        platform_fee: Platform share of total_amount (minor units)
        provider_completed_at: When the provider marked the job done
        client_confirmed_at: When completion was confirmed (client or timer)
        auto_confirmed: True when the auto-confirmation timer confirmed
        payout_delayed: Payout failed; support has been notified
        cancelled_at: When the booking was cancelled
        cancellation_reason: Free-text reason for cancellation
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_bookings",
        help_text="User who booked the service",
    )

    provider = models.ForeignKey(
        ServiceProvider,
        on_delete=models.PROTECT,
        related_name="bookings",
        help_text="Provider performing the service",
    )

    # ==========================================================================
    # Engagement Details
    # ==========================================================================

    service_name = models.CharField(
        max_length=200,
        help_text="Name of the booked service",
    )

    scheduled_at = models.DateTimeField(
        help_text="When the service is scheduled",
    )

    address = models.TextField(
        help_text="Service address",
    )

    status = FSMField(
        default=BookingStatus.REQUESTED,
        choices=BookingStatus.choices,
        db_index=True,
        help_text="Current booking status (managed by FSM)",
    )

    # ==========================================================================
    # Amounts (minor units)
    # ==========================================================================

    total_amount = models.PositiveBigIntegerField(
        help_text="Total charged to the client in minor units",
    )

    platform_fee = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform fee in minor units (set at payment initialization)",
    )

    # ==========================================================================
    # Completion & Cancellation
    # ==========================================================================

    provider_completed_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the provider marked the job completed",
    )

    client_confirmed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When completion was confirmed",
    )

    auto_confirmed = models.BooleanField(
        default=False,
        help_text="Completion was confirmed by the auto-confirmation timer",
    )

    payout_delayed = models.BooleanField(
        default=False,
        help_text="Payout failed and support has been notified",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the booking was cancelled",
    )

    cancellation_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason given for cancellation",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-scheduled_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(fields=["status", "provider_completed_at"], name="booking_status_completed_idx"),
            models.Index(fields=["client", "status"], name="booking_client_status_idx"),
            models.Index(fields=["provider", "status"], name="booking_provider_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gt=0),
                name="booking_total_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.service_name}, {self.status})"

    @property
    def is_confirmed_by_client(self) -> bool:
        """Check whether completion has been confirmed."""
        return self.client_confirmed_at is not None

    def participant_user_ids(self) -> list:
        """User ids of everyone party to this booking."""
        return [self.client_id, self.provider.user_id]

    def record_confirmation(self, auto: bool = False) -> None:
        """
        Record that completion was confirmed.

        Args:
            auto: True when the auto-confirmation timer confirmed

        Note: Does not save - caller must save after calling.
        """
        self.client_confirmed_at = timezone.now()
        self.auto_confirmed = auto

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=BookingStatus.REQUESTED,
        target=BookingStatus.CONFIRMED,
    )
    def accept(self):
        """
        Provider accepts the booking.

        Transition: REQUESTED -> CONFIRMED
        """

    @transition(
        field=status,
        source=BookingStatus.CONFIRMED,
        target=BookingStatus.IN_PROGRESS,
    )
    def start(self):
        """
        Provider starts the job.

        Transition: CONFIRMED -> IN_PROGRESS
        """

    @transition(
        field=status,
        source=BookingStatus.IN_PROGRESS,
        target=BookingStatus.COMPLETED,
    )
    def mark_completed(self):
        """
        Provider marks the job completed.

        Transition: IN_PROGRESS -> COMPLETED

        Starts the auto-confirmation window.
        """
        self.provider_completed_at = timezone.now()

    @transition(
        field=status,
        source=[BookingStatus.REQUESTED, BookingStatus.CONFIRMED],
        target=BookingStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        """
        Cancel the booking before work starts.

        Transition: REQUESTED/CONFIRMED -> CANCELLED
        """
        self.cancelled_at = timezone.now()
        self.cancellation_reason = reason
