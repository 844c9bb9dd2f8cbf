"""
EscrowEntry model: the authoritative per-booking record of held funds.

One entry exists per booking with an associated payment. It records what
was charged, how the charge splits between platform and provider, and
where the funds are in their lifecycle. Every state change goes through a
django-fsm transition whose source and target come from ESCROW_TRANSITIONS.

Usage:
    from payments.models import EscrowEntry
    from payments.state_machines import EscrowEvent

    entry = EscrowEntry.objects.select_for_update().get(id=entry_id)
    entry.apply(EscrowEvent.CHARGE_SUCCEEDED)
    entry.save()

    # Or call the transition directly
    entry.mark_funded()
    entry.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, TransitionNotAllowed, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.exceptions import StateConflict
from payments.state_machines import (
    TERMINAL_ESCROW_STATES,
    EscrowEvent,
    EscrowState,
    sources_for,
    target_for,
)


class EscrowEntry(UUIDPrimaryKeyMixin, BaseModel):
    """
    Funds collected for a booking and held until completion is confirmed.

    State Flow:
        PENDING -> ESCROW -> PROCESSING_RELEASE -> RELEASED
        PROCESSING_RELEASE -> FAILED -> PROCESSING_RELEASE (operator re-queue)
        PENDING/ESCROW -> REFUNDED

    Fields:
        booking: The booking this entry holds funds for (one per booking)
        amount_held: Amount charged to the client (minor units)
        platform_fee: Platform share of amount_held
        provider_payout: Provider share of amount_held
        currency: ISO 4217 currency code
        state: Current FSM state
        charge_reference: Gateway transaction reference for the charge
        authorization_url: Hosted checkout URL for the charge
        transfer_reference: Gateway transfer code of the current payout
        idempotency_key: Key of the in-flight payout episode
        release_epoch: Number of release episodes started
        attempt_count: Transfer attempts in the current episode
        last_error: Most recent failure message (operators only)
        refund_reference: Gateway refund identifier
        version: Optimistic locking version
        *_at timestamps: Track state transition times

    Invariant:
        amount_held == platform_fee + provider_payout, enforced by a
        database check constraint.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="escrow_entry",
        help_text="Booking whose payment this entry holds",
    )

    # ==========================================================================
    # Amounts (minor units)
    # ==========================================================================

    amount_held = models.PositiveBigIntegerField(
        help_text="Amount charged to the client in minor units",
    )

    platform_fee = models.PositiveBigIntegerField(
        help_text="Platform fee in minor units",
    )

    provider_payout = models.PositiveBigIntegerField(
        help_text="Amount due to the provider in minor units",
    )

    currency = models.CharField(
        max_length=3,
        default="ZAR",
        help_text="ISO 4217 currency code",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    state = FSMField(
        default=EscrowState.PENDING,
        choices=EscrowState.choices,
        db_index=True,
        help_text="Current escrow state (managed by FSM)",
    )

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    charge_reference = models.CharField(
        max_length=100,
        unique=True,
        help_text="Gateway transaction reference for the client charge",
    )

    authorization_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Hosted checkout URL returned by the gateway",
    )

    transfer_reference = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway transfer code (TRF_xxx) of the current payout",
    )

    idempotency_key = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        unique=True,
        help_text="Key of the in-flight payout episode; never reused",
    )

    refund_reference = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Gateway refund identifier",
    )

    # ==========================================================================
    # Payout Episode Tracking
    # ==========================================================================

    release_epoch = models.PositiveIntegerField(
        default=0,
        help_text="Number of release episodes started for this entry",
    )

    attempt_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Transfer attempts made in the current release episode",
    )

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Most recent failure message (never shown to end users)",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    funded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge was confirmed and funds entered escrow",
    )

    release_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the current release episode started",
    )

    released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payout was confirmed",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund was confirmed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the current release episode failed",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow Entry"
        verbose_name_plural = "Escrow Entries"
        indexes = [
            models.Index(fields=["state", "release_requested_at"], name="escrow_state_release_idx"),
            models.Index(fields=["state", "created_at"], name="escrow_state_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_held__gt=0),
                name="escrow_entry_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    amount_held=F("platform_fee") + F("provider_payout")
                ),
                name="escrow_entry_amount_split",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, state, and amount."""
        amount_display = f"{self.amount_held / 100:.2f} {self.currency}"
        return f"EscrowEntry({self.id}, {self.state}, {amount_display})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        On update, atomically increments the version field so concurrent
        writers can be detected with check_version().
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        """Check if the entry can never change state again."""
        return self.state in TERMINAL_ESCROW_STATES

    @property
    def amounts_balance(self) -> bool:
        """Check the amount split invariant on the in-memory values."""
        return self.amount_held == self.platform_fee + self.provider_payout

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=sources_for(EscrowEvent.CHARGE_SUCCEEDED),
        target=target_for(EscrowEvent.CHARGE_SUCCEEDED),
    )
    def mark_funded(self):
        """
        Record a confirmed client charge.

        Transition: PENDING -> ESCROW
        """
        self.funded_at = timezone.now()
        self.last_error = ""

    @transition(
        field=state,
        source=sources_for(EscrowEvent.RELEASE_REQUESTED),
        target=target_for(EscrowEvent.RELEASE_REQUESTED),
    )
    def request_release(self, idempotency_key: str):
        """
        Start the first payout episode.

        Transition: ESCROW -> PROCESSING_RELEASE

        Args:
            idempotency_key: Fresh key for this episode
        """
        self._start_episode(idempotency_key)

    @transition(
        field=state,
        source=sources_for(EscrowEvent.TRANSFER_SUCCEEDED),
        target=target_for(EscrowEvent.TRANSFER_SUCCEEDED),
    )
    def mark_released(self, transfer_code: str | None = None):
        """
        Record a confirmed payout.

        Transition: PROCESSING_RELEASE -> RELEASED
        """
        self.released_at = timezone.now()
        if transfer_code:
            self.transfer_reference = transfer_code
        self.last_error = ""

    @transition(
        field=state,
        source=sources_for(EscrowEvent.TRANSFER_FAILED),
        target=target_for(EscrowEvent.TRANSFER_FAILED),
    )
    def mark_failed(self, reason: str = ""):
        """
        Record a failed payout episode.

        Transition: PROCESSING_RELEASE -> FAILED

        Args:
            reason: Failure detail kept for operators
        """
        self.failed_at = timezone.now()
        self.last_error = reason

    @transition(
        field=state,
        source=sources_for(EscrowEvent.RELEASE_REQUEUED),
        target=target_for(EscrowEvent.RELEASE_REQUEUED),
    )
    def requeue_release(self, idempotency_key: str):
        """
        Re-queue a failed payout under a new key.

        Transition: FAILED -> PROCESSING_RELEASE
        """
        self.failed_at = None
        self._start_episode(idempotency_key)

    @transition(
        field=state,
        source=sources_for(EscrowEvent.REFUND_CONFIRMED),
        target=target_for(EscrowEvent.REFUND_CONFIRMED),
    )
    def mark_refunded(self, refund_reference: str | None = None):
        """
        Record a gateway-confirmed refund.

        Transition: PENDING/ESCROW -> REFUNDED
        """
        self.refunded_at = timezone.now()
        self.refund_reference = refund_reference

    def _start_episode(self, idempotency_key: str) -> None:
        self.release_epoch += 1
        self.idempotency_key = idempotency_key
        self.transfer_reference = None
        self.attempt_count = 0
        self.release_requested_at = timezone.now()
        self.last_error = ""

    # ==========================================================================
    # Event Dispatch
    # ==========================================================================

    EVENT_TRANSITIONS = {
        EscrowEvent.CHARGE_SUCCEEDED: "mark_funded",
        EscrowEvent.RELEASE_REQUESTED: "request_release",
        EscrowEvent.TRANSFER_SUCCEEDED: "mark_released",
        EscrowEvent.TRANSFER_FAILED: "mark_failed",
        EscrowEvent.RELEASE_REQUEUED: "requeue_release",
        EscrowEvent.REFUND_CONFIRMED: "mark_refunded",
    }

    def apply(self, event: str, **kwargs) -> str:
        """
        Apply an event through its FSM transition.

        Args:
            event: An EscrowEvent value
            **kwargs: Passed to the transition method

        Returns:
            The new state

        Raises:
            StateConflict: If the event is illegal in the current state.
                The entry is left unchanged.

        Note: Does not save - caller must save after calling.
        """
        method_name = self.EVENT_TRANSITIONS.get(event)
        if method_name is None:
            raise ValueError(f"Unknown escrow event: {event!r}")

        previous_state = self.state
        try:
            getattr(self, method_name)(**kwargs)
        except TransitionNotAllowed as e:
            raise StateConflict(
                f"Cannot apply {event} to escrow entry in state {previous_state}",
                details={
                    "escrow_entry_id": str(self.id),
                    "current_state": previous_state,
                    "event": str(event),
                },
            ) from e
        return self.state
