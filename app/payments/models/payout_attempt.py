"""
PayoutAttempt model: one row per release episode of an escrow entry.

Each time an entry enters PROCESSING_RELEASE it gets a fresh idempotency
key, and a PayoutAttempt row records that key. The rows let incoming
transfer results be classified:

- key matches the entry's current in-flight key: apply it
- key belongs to an earlier episode of a known entry: stale, discard
- key unknown: orphan event

Usage:
    from payments.models import PayoutAttempt

    attempt = PayoutAttempt.objects.filter(idempotency_key=reference).first()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import PayoutAttemptOutcome


class PayoutAttempt(UUIDPrimaryKeyMixin, BaseModel):
    """
    A single PROCESSING_RELEASE episode.

    Fields:
        escrow_entry: Entry being paid out
        epoch: Episode number (matches EscrowEntry.release_epoch when current)
        idempotency_key: Gateway transfer reference used for every try
        transfer_reference: Gateway transfer code once accepted
        outcome: How the episode ended
        error: Failure detail, if any
        finished_at: When the outcome was recorded
    """

    escrow_entry = models.ForeignKey(
        "payments.EscrowEntry",
        on_delete=models.PROTECT,
        related_name="payout_attempts",
        help_text="Escrow entry being paid out",
    )

    epoch = models.PositiveIntegerField(
        help_text="Release episode number",
    )

    idempotency_key = models.CharField(
        max_length=64,
        unique=True,
        help_text="Transfer reference shared by every try in this episode",
    )

    transfer_reference = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Gateway transfer code (TRF_xxx)",
    )

    outcome = models.CharField(
        max_length=20,
        choices=PayoutAttemptOutcome.choices,
        default=PayoutAttemptOutcome.IN_FLIGHT,
        db_index=True,
        help_text="Outcome of this episode",
    )

    error = models.TextField(
        blank=True,
        default="",
        help_text="Failure detail if the episode failed",
    )

    finished_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the outcome was recorded",
    )

    class Meta:
        ordering = ["escrow_entry", "-epoch"]
        verbose_name = "Payout Attempt"
        verbose_name_plural = "Payout Attempts"
        constraints = [
            models.UniqueConstraint(
                fields=["escrow_entry", "epoch"],
                name="payout_attempt_unique_epoch",
            ),
            # At most one successful payout per entry
            models.UniqueConstraint(
                fields=["escrow_entry"],
                condition=models.Q(outcome=PayoutAttemptOutcome.SUCCEEDED),
                name="payout_attempt_single_success",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutAttempt({self.escrow_entry_id}, epoch={self.epoch}, {self.outcome})"

    @property
    def is_in_flight(self) -> bool:
        return self.outcome == PayoutAttemptOutcome.IN_FLIGHT

    def finish(self, outcome: str, error: str = "", transfer_reference: str | None = None) -> None:
        """
        Record the episode outcome.

        Note: Does not save - caller must save after calling.
        """
        self.outcome = outcome
        self.error = error
        self.finished_at = timezone.now()
        if transfer_reference:
            self.transfer_reference = transfer_reference
