"""
Tests for the escrow transition table and the django-fsm transitions
derived from it.
"""

import pytest
from django_fsm import TransitionNotAllowed

from payments.exceptions import StateConflict
from payments.state_machines import (
    ESCROW_TRANSITIONS,
    EscrowEvent,
    EscrowState,
    has_reached,
    next_escrow_state,
    sources_for,
    target_for,
)
from payments.tests.factories import EscrowEntryFactory


# =============================================================================
# Transition Table
# =============================================================================


class TestEscrowTransitionTable:
    """Tests for the pure transition table helpers."""

    @pytest.mark.parametrize(
        "state,event,expected",
        [
            (EscrowState.PENDING, EscrowEvent.CHARGE_SUCCEEDED, EscrowState.ESCROW),
            (EscrowState.ESCROW, EscrowEvent.RELEASE_REQUESTED, EscrowState.PROCESSING_RELEASE),
            (EscrowState.PROCESSING_RELEASE, EscrowEvent.TRANSFER_SUCCEEDED, EscrowState.RELEASED),
            (EscrowState.PROCESSING_RELEASE, EscrowEvent.TRANSFER_FAILED, EscrowState.FAILED),
            (EscrowState.FAILED, EscrowEvent.RELEASE_REQUEUED, EscrowState.PROCESSING_RELEASE),
            (EscrowState.PENDING, EscrowEvent.REFUND_CONFIRMED, EscrowState.REFUNDED),
            (EscrowState.ESCROW, EscrowEvent.REFUND_CONFIRMED, EscrowState.REFUNDED),
        ],
    )
    def test_legal_transitions(self, state, event, expected):
        """Every legal pair maps to exactly its target."""
        assert next_escrow_state(state, event) == expected

    def test_table_has_exactly_seven_transitions(self):
        """No transition exists beyond the documented lifecycle."""
        assert len(ESCROW_TRANSITIONS) == 7

    @pytest.mark.parametrize(
        "state,event",
        [
            (EscrowState.PENDING, EscrowEvent.RELEASE_REQUESTED),
            (EscrowState.ESCROW, EscrowEvent.TRANSFER_SUCCEEDED),
            (EscrowState.PROCESSING_RELEASE, EscrowEvent.REFUND_CONFIRMED),
            (EscrowState.FAILED, EscrowEvent.REFUND_CONFIRMED),
            (EscrowState.RELEASED, EscrowEvent.TRANSFER_FAILED),
            (EscrowState.REFUNDED, EscrowEvent.CHARGE_SUCCEEDED),
        ],
    )
    def test_illegal_transitions(self, state, event):
        """Pairs outside the table have no next state."""
        assert next_escrow_state(state, event) is None

    def test_terminal_states_have_no_outgoing_transitions(self):
        """RELEASED and REFUNDED never move again."""
        for state in (EscrowState.RELEASED, EscrowState.REFUNDED):
            assert all(source != state for source, _ in ESCROW_TRANSITIONS)

    def test_refund_sources(self):
        """Only PENDING and ESCROW can be refunded."""
        assert set(sources_for(EscrowEvent.REFUND_CONFIRMED)) == {
            EscrowState.PENDING,
            EscrowState.ESCROW,
        }

    def test_target_for_single_target(self):
        assert target_for(EscrowEvent.RELEASE_REQUEUED) == EscrowState.PROCESSING_RELEASE

    def test_has_reached(self):
        """Milestones are ordered along the release path only."""
        assert has_reached(EscrowState.RELEASED, EscrowState.ESCROW)
        assert has_reached(EscrowState.ESCROW, EscrowState.ESCROW)
        assert not has_reached(EscrowState.PENDING, EscrowState.ESCROW)
        assert not has_reached(EscrowState.REFUNDED, EscrowState.ESCROW)
        assert not has_reached(EscrowState.FAILED, EscrowState.ESCROW)


# =============================================================================
# EscrowEntry FSM Transitions
# =============================================================================


class TestEscrowEntryTransitions:
    """Tests for EscrowEntry transition methods."""

    # -------------------------------------------------------------------------
    # Valid Transitions
    # -------------------------------------------------------------------------

    def test_pending_to_escrow(self, db):
        """Should fund a pending entry and stamp funded_at."""
        entry = EscrowEntryFactory()
        entry.mark_funded()
        entry.save()

        assert entry.state == EscrowState.ESCROW
        assert entry.funded_at is not None

    def test_escrow_to_processing_release(self, db):
        """Should start the first payout episode."""
        entry = EscrowEntryFactory(state=EscrowState.ESCROW)
        entry.request_release(idempotency_key="po_key_1")
        entry.save()

        assert entry.state == EscrowState.PROCESSING_RELEASE
        assert entry.idempotency_key == "po_key_1"
        assert entry.release_epoch == 1
        assert entry.attempt_count == 0
        assert entry.release_requested_at is not None

    def test_processing_release_to_released(self, db):
        entry = EscrowEntryFactory(state=EscrowState.PROCESSING_RELEASE, idempotency_key="po_key_2")
        entry.mark_released(transfer_code="TRF_abc")
        entry.save()

        assert entry.state == EscrowState.RELEASED
        assert entry.released_at is not None
        assert entry.transfer_reference == "TRF_abc"

    def test_processing_release_to_failed(self, db):
        entry = EscrowEntryFactory(state=EscrowState.PROCESSING_RELEASE, idempotency_key="po_key_3")
        entry.mark_failed(reason="Account closed")
        entry.save()

        assert entry.state == EscrowState.FAILED
        assert entry.failed_at is not None
        assert entry.last_error == "Account closed"

    def test_failed_requeue_starts_new_episode(self, db):
        """Re-queue replaces the key and clears the previous transfer."""
        entry = EscrowEntryFactory(
            state=EscrowState.FAILED,
            idempotency_key="po_key_4",
            transfer_reference="TRF_old",
            release_epoch=1,
            attempt_count=5,
        )
        entry.requeue_release(idempotency_key="po_key_5")
        entry.save()

        assert entry.state == EscrowState.PROCESSING_RELEASE
        assert entry.idempotency_key == "po_key_5"
        assert entry.release_epoch == 2
        assert entry.attempt_count == 0
        assert entry.transfer_reference is None
        assert entry.failed_at is None

    def test_pending_to_refunded(self, db):
        entry = EscrowEntryFactory()
        entry.mark_refunded(refund_reference=None)
        entry.save()

        assert entry.state == EscrowState.REFUNDED
        assert entry.refunded_at is not None

    def test_escrow_to_refunded(self, db):
        entry = EscrowEntryFactory(state=EscrowState.ESCROW)
        entry.mark_refunded(refund_reference="3018284")
        entry.save()

        assert entry.state == EscrowState.REFUNDED
        assert entry.refund_reference == "3018284"

    # -------------------------------------------------------------------------
    # Invalid Transitions
    # -------------------------------------------------------------------------

    def test_cannot_release_pending(self, db):
        """Should not start release before the charge succeeded."""
        entry = EscrowEntryFactory()

        with pytest.raises(TransitionNotAllowed):
            entry.request_release(idempotency_key="po_key_6")

    def test_cannot_refund_processing_release(self, db):
        """Once release starts, the money is committed to the provider."""
        entry = EscrowEntryFactory(state=EscrowState.PROCESSING_RELEASE, idempotency_key="po_key_7")

        with pytest.raises(TransitionNotAllowed):
            entry.mark_refunded()

    def test_cannot_leave_released(self, db):
        entry = EscrowEntryFactory(state=EscrowState.RELEASED)

        with pytest.raises(TransitionNotAllowed):
            entry.mark_failed(reason="late failure")


# =============================================================================
# Event Dispatch
# =============================================================================


class TestEscrowEntryApply:
    """Tests for EscrowEntry.apply()."""

    def test_apply_returns_new_state(self, db):
        entry = EscrowEntryFactory()

        assert entry.apply(EscrowEvent.CHARGE_SUCCEEDED) == EscrowState.ESCROW

    def test_illegal_event_raises_state_conflict(self, db):
        """Illegal events raise StateConflict and leave the state unchanged."""
        entry = EscrowEntryFactory(state=EscrowState.REFUNDED)

        with pytest.raises(StateConflict) as exc_info:
            entry.apply(EscrowEvent.CHARGE_SUCCEEDED)

        assert entry.state == EscrowState.REFUNDED
        assert exc_info.value.details["current_state"] == EscrowState.REFUNDED
        assert exc_info.value.error_code == "STATE_CONFLICT"

    def test_unknown_event_raises_value_error(self, db):
        entry = EscrowEntryFactory()

        with pytest.raises(ValueError):
            entry.apply("teleported")
