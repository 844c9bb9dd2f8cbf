"""
State enums and the escrow transition table.

The escrow ledger is a single enumerated state machine: every legal
(state, event) pair and its resulting state appears exactly once in
ESCROW_TRANSITIONS. The django-fsm transitions on EscrowEntry derive their
sources and targets from this table, so there is no second place where
legality is decided.

Escrow Ledger States:
    PENDING → ESCROW → PROCESSING_RELEASE → RELEASED
                                          → FAILED → PROCESSING_RELEASE (re-queue)
    PENDING/ESCROW → REFUNDED

Payout Attempt Outcomes:
    IN_FLIGHT → SUCCEEDED | FAILED | SUPERSEDED
"""

from __future__ import annotations

from django.db import models


class EscrowState(models.TextChoices):
    """
    States for the EscrowEntry lifecycle.

    Terminal states: RELEASED, REFUNDED
    FAILED is terminal until an operator re-queues the payout.
    """

    PENDING = "pending", "Pending"
    ESCROW = "escrow", "Held in Escrow"
    PROCESSING_RELEASE = "processing_release", "Processing Release"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class EscrowEvent(models.TextChoices):
    """Events that move an EscrowEntry between states."""

    CHARGE_SUCCEEDED = "charge_succeeded", "Charge Succeeded"
    RELEASE_REQUESTED = "release_requested", "Release Requested"
    TRANSFER_SUCCEEDED = "transfer_succeeded", "Transfer Succeeded"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"
    RELEASE_REQUEUED = "release_requeued", "Release Re-queued"
    REFUND_CONFIRMED = "refund_confirmed", "Refund Confirmed"


class PayoutAttemptOutcome(models.TextChoices):
    """
    Outcome of one PROCESSING_RELEASE episode.

    SUPERSEDED marks an episode whose key was replaced by a re-queue
    before any transfer result arrived.
    """

    IN_FLIGHT = "in_flight", "In Flight"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    SUPERSEDED = "superseded", "Superseded"


# =============================================================================
# Transition Table
# =============================================================================

ESCROW_TRANSITIONS: dict[tuple[str, str], str] = {
    (EscrowState.PENDING, EscrowEvent.CHARGE_SUCCEEDED): EscrowState.ESCROW,
    (EscrowState.ESCROW, EscrowEvent.RELEASE_REQUESTED): EscrowState.PROCESSING_RELEASE,
    (EscrowState.PROCESSING_RELEASE, EscrowEvent.TRANSFER_SUCCEEDED): EscrowState.RELEASED,
    (EscrowState.PROCESSING_RELEASE, EscrowEvent.TRANSFER_FAILED): EscrowState.FAILED,
    (EscrowState.FAILED, EscrowEvent.RELEASE_REQUEUED): EscrowState.PROCESSING_RELEASE,
    (EscrowState.PENDING, EscrowEvent.REFUND_CONFIRMED): EscrowState.REFUNDED,
    (EscrowState.ESCROW, EscrowEvent.REFUND_CONFIRMED): EscrowState.REFUNDED,
}

# States from which the ledger never moves again
TERMINAL_ESCROW_STATES = frozenset({EscrowState.RELEASED, EscrowState.REFUNDED})

# Order used to decide whether an entry is already past a state
ESCROW_PROGRESSION = (
    EscrowState.PENDING,
    EscrowState.ESCROW,
    EscrowState.PROCESSING_RELEASE,
    EscrowState.RELEASED,
)


def next_escrow_state(state: str, event: str) -> str | None:
    """Return the state reached by applying event in state, or None if illegal."""
    return ESCROW_TRANSITIONS.get((state, event))


def sources_for(event: str) -> list[str]:
    """All states from which event is legal."""
    return [source for (source, evt) in ESCROW_TRANSITIONS if evt == event]


def target_for(event: str) -> str:
    """
    The single state an event leads to.

    Raises:
        ValueError: If the table maps the event to zero or several targets
    """
    targets = {target for (_, evt), target in ESCROW_TRANSITIONS.items() if evt == event}
    if len(targets) != 1:
        raise ValueError(f"Event {event!r} must have exactly one target, found {targets}")
    return targets.pop()


def has_reached(state: str, milestone: str) -> bool:
    """
    Check whether state is at or beyond milestone on the release path.

    REFUNDED and FAILED are off the release path and never count as
    having reached a release milestone.
    """
    if state not in ESCROW_PROGRESSION or milestone not in ESCROW_PROGRESSION:
        return False
    return ESCROW_PROGRESSION.index(state) >= ESCROW_PROGRESSION.index(milestone)
