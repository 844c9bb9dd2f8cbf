"""
Tests for payment models.

Covers:
- EscrowEntry versioning, amount invariants and properties
- PayoutAttempt episode constraints
- WebhookEvent deduplication key and retry bookkeeping
"""

import pytest
from django.db import IntegrityError, transaction
from django.test import override_settings

from payments.models import EscrowEntry, PayoutAttempt, WebhookEvent
from payments.state_machines import EscrowState, PayoutAttemptOutcome
from payments.tests.factories import EscrowEntryFactory, WebhookEventFactory


# =============================================================================
# EscrowEntry
# =============================================================================


class TestEscrowEntry:
    """Tests for the EscrowEntry model."""

    def test_create_defaults(self, db):
        """Should start PENDING at version 1 with no payout episode."""
        entry = EscrowEntryFactory()

        assert entry.state == EscrowState.PENDING
        assert entry.version == 1
        assert entry.release_epoch == 0
        assert entry.idempotency_key is None
        assert entry.amounts_balance

    def test_save_increments_version(self, db):
        """Every update bumps the version by one."""
        entry = EscrowEntryFactory()

        entry.last_error = "first"
        entry.save()
        assert entry.version == 2

        entry.last_error = "second"
        entry.save(update_fields=["last_error", "version", "updated_at"])
        assert entry.version == 3
        assert EscrowEntry.objects.get(pk=entry.pk).version == 3

    def test_amount_split_enforced_by_database(self, db, booking):
        """amount_held must equal platform_fee + provider_payout."""
        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowEntry.objects.create(
                booking=booking,
                amount_held=50000,
                platform_fee=5000,
                provider_payout=40000,
                charge_reference="CS_1_BROKENSPLIT",
            )

    def test_amount_must_be_positive(self, db, booking):
        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowEntry.objects.create(
                booking=booking,
                amount_held=0,
                platform_fee=0,
                provider_payout=0,
                charge_reference="CS_1_ZERO",
            )

    def test_one_entry_per_booking(self, db, pending_entry):
        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowEntryFactory(booking=pending_entry.booking)

    def test_charge_reference_unique(self, db, pending_entry):
        with pytest.raises(IntegrityError), transaction.atomic():
            EscrowEntryFactory(charge_reference=pending_entry.charge_reference)

    @pytest.mark.parametrize(
        "state,terminal",
        [
            (EscrowState.PENDING, False),
            (EscrowState.ESCROW, False),
            (EscrowState.PROCESSING_RELEASE, False),
            (EscrowState.FAILED, False),
            (EscrowState.RELEASED, True),
            (EscrowState.REFUNDED, True),
        ],
    )
    def test_is_terminal(self, db, state, terminal):
        entry = EscrowEntryFactory(state=state)

        assert entry.is_terminal is terminal

    def test_str_shows_major_units(self, db):
        entry = EscrowEntryFactory(booking__total_amount=123456)

        assert "1234.56 ZAR" in str(entry)


# =============================================================================
# PayoutAttempt
# =============================================================================


class TestPayoutAttempt:
    """Tests for the PayoutAttempt model."""

    def test_begin_release_opens_in_flight_attempt(self, db, releasing_entry):
        attempt = PayoutAttempt.objects.get(escrow_entry=releasing_entry)

        assert attempt.is_in_flight
        assert attempt.epoch == 1
        assert attempt.idempotency_key == releasing_entry.idempotency_key

    def test_finish_records_outcome(self, db, releasing_entry):
        attempt = PayoutAttempt.objects.get(escrow_entry=releasing_entry)
        attempt.finish(PayoutAttemptOutcome.FAILED, error="Account closed")
        attempt.save()

        attempt.refresh_from_db()
        assert attempt.outcome == PayoutAttemptOutcome.FAILED
        assert attempt.error == "Account closed"
        assert attempt.finished_at is not None

    def test_epoch_unique_per_entry(self, db, releasing_entry):
        with pytest.raises(IntegrityError), transaction.atomic():
            PayoutAttempt.objects.create(
                escrow_entry=releasing_entry,
                epoch=1,
                idempotency_key="po_duplicate_epoch",
            )

    def test_at_most_one_success_per_entry(self, db, releasing_entry):
        """The database refuses a second successful payout."""
        PayoutAttempt.objects.filter(escrow_entry=releasing_entry).update(
            outcome=PayoutAttemptOutcome.SUCCEEDED
        )

        with pytest.raises(IntegrityError), transaction.atomic():
            PayoutAttempt.objects.create(
                escrow_entry=releasing_entry,
                epoch=2,
                idempotency_key="po_second_success",
                outcome=PayoutAttemptOutcome.SUCCEEDED,
            )


# =============================================================================
# WebhookEvent
# =============================================================================


class TestWebhookEvent:
    """Tests for the WebhookEvent model."""

    def test_natural_key_unique(self, db):
        """(event_type, external_reference) identifies a delivery."""
        event = WebhookEventFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            WebhookEvent.objects.create(
                event_type=event.event_type,
                external_reference=event.external_reference,
                payload={},
            )

    def test_same_reference_different_event_type_allowed(self, db):
        event = WebhookEventFactory(event_type="charge.success")

        other = WebhookEventFactory(
            event_type="charge.failed",
            external_reference=event.external_reference,
        )

        assert other.pk != event.pk

    def test_mark_processed(self, db):
        event = WebhookEventFactory()
        event.mark_processed("orphan")
        event.save()

        event.refresh_from_db()
        assert event.processed
        assert event.processed_at is not None
        assert event.last_error == "orphan"

    def test_mark_failed_counts_retries(self, db):
        event = WebhookEventFactory()
        event.mark_failed("boom")
        event.mark_failed("boom again")

        assert event.retry_count == 2
        assert event.last_error == "boom again"
        assert not event.processed

    @override_settings(WEBHOOK_MAX_RETRIES=2)
    def test_can_retry_respects_budget(self, db):
        assert WebhookEventFactory(retry_count=1).can_retry
        assert not WebhookEventFactory(retry_count=2).can_retry
        assert not WebhookEventFactory(processed=True).can_retry
