"""
Tests for ReconciliationService.

The sweep is run with `now` an hour ahead so every fixture entry counts
as stale.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from payments.adapters import ChargeVerification, TransferVerification
from payments.exceptions import PermanentGatewayError, TransientGatewayError
from payments.services import ReconciliationService
from payments.state_machines import EscrowState
from payments.workers.payout_executor import disburse_payout


@pytest.fixture
def service(mock_gateway, ledger):
    return ReconciliationService(gateway=mock_gateway, ledger=ledger)


@pytest.fixture
def later():
    return timezone.now() + timedelta(hours=1)


class TestReleaseReconciliation:
    """PROCESSING_RELEASE entries are resolved from verify_transfer."""

    def test_success_releases_entry(self, db, service, mock_gateway, releasing_entry, later):
        mock_gateway.verify_transfer.return_value = TransferVerification(
            reference=releasing_entry.idempotency_key,
            status="success",
            transfer_code="TRF_swept",
        )

        result = service.run_sweep(now=later)

        assert result.checked == 1
        assert result.released == 1
        mock_gateway.verify_transfer.assert_called_once_with(releasing_entry.idempotency_key)
        releasing_entry.refresh_from_db()
        assert releasing_entry.state == EscrowState.RELEASED
        assert releasing_entry.transfer_reference == "TRF_swept"

    @pytest.mark.parametrize("status", ["failed", "reversed"])
    def test_failure_fails_entry(self, db, service, mock_gateway, releasing_entry, later, status):
        mock_gateway.verify_transfer.return_value = TransferVerification(
            reference=releasing_entry.idempotency_key, status=status
        )

        result = service.run_sweep(now=later)

        assert result.failed == 1
        releasing_entry.refresh_from_db()
        assert releasing_entry.state == EscrowState.FAILED
        assert status in releasing_entry.last_error

    def test_pending_transfer_left_alone(self, db, service, releasing_entry, later):
        result = service.run_sweep(now=later)

        assert result.unchanged == 1
        releasing_entry.refresh_from_db()
        assert releasing_entry.state == EscrowState.PROCESSING_RELEASE

    def test_unknown_transfer_is_redispatched(self, db, service, mock_gateway, releasing_entry, later):
        """An episode whose transfer never reached the gateway is sent again."""
        mock_gateway.verify_transfer.side_effect = PermanentGatewayError(
            "Transfer not found", status_code=404
        )

        with patch.object(disburse_payout, "delay") as mock_delay:
            result = service.run_sweep(now=later)

        assert result.redispatched == 1
        mock_delay.assert_called_once_with(str(releasing_entry.id))

    def test_unknown_transfer_with_accepted_code_is_not_redispatched(
        self, db, service, ledger, mock_gateway, releasing_entry, later
    ):
        ledger.record_transfer_accepted(
            releasing_entry.id, releasing_entry.idempotency_key, "TRF_known"
        )
        mock_gateway.verify_transfer.side_effect = PermanentGatewayError(
            "Transfer not found", status_code=404
        )

        with patch.object(disburse_payout, "delay") as mock_delay:
            result = service.run_sweep(now=later)

        assert result.errors == 1
        mock_delay.assert_not_called()

    def test_gateway_error_counts_and_continues(self, db, service, mock_gateway, releasing_entry, later):
        mock_gateway.verify_transfer.side_effect = TransientGatewayError("down")

        result = service.run_sweep(now=later)

        assert result.errors == 1
        releasing_entry.refresh_from_db()
        assert releasing_entry.state == EscrowState.PROCESSING_RELEASE

    def test_recent_entries_are_skipped(self, db, service, mock_gateway, releasing_entry):
        result = service.run_sweep(stale_after=timedelta(minutes=15), now=timezone.now())

        assert result.checked == 0
        mock_gateway.verify_transfer.assert_not_called()

    def test_webhook_and_sweep_apply_once(self, db, service, ledger, mock_gateway, releasing_entry, later):
        """A webhook that already released the entry turns the sweep into a no-op."""
        ledger.record_transfer_success(releasing_entry.idempotency_key, "TRF_hook")
        mock_gateway.verify_transfer.return_value = TransferVerification(
            reference=releasing_entry.idempotency_key, status="success", transfer_code="TRF_hook"
        )

        result = service.run_sweep(now=later)

        assert result.checked == 0
        assert result.released == 0
        mock_gateway.verify_transfer.assert_not_called()
        releasing_entry.refresh_from_db()
        assert releasing_entry.state == EscrowState.RELEASED


class TestChargeReconciliation:
    """PENDING entries are funded from verify_charge."""

    def test_success_funds_entry(self, db, service, mock_gateway, pending_entry, later):
        result = service.run_sweep(now=later)

        assert result.funded == 1
        mock_gateway.verify_charge.assert_called_once_with(pending_entry.charge_reference)
        pending_entry.refresh_from_db()
        assert pending_entry.state == EscrowState.ESCROW

    def test_abandoned_checkout_stays_pending(self, db, service, mock_gateway, pending_entry, later):
        mock_gateway.verify_charge.return_value = ChargeVerification(
            reference=pending_entry.charge_reference, status="abandoned", amount=0, currency="ZAR"
        )

        result = service.run_sweep(now=later)

        assert result.unchanged == 1
        pending_entry.refresh_from_db()
        assert pending_entry.state == EscrowState.PENDING

    def test_amount_mismatch_is_not_funded(self, db, service, mock_gateway, pending_entry, later):
        mock_gateway.verify_charge.return_value = ChargeVerification(
            reference=pending_entry.charge_reference, status="success", amount=100, currency="ZAR"
        )

        result = service.run_sweep(now=later)

        assert result.funded == 0
        assert result.unchanged == 1
        pending_entry.refresh_from_db()
        assert pending_entry.state == EscrowState.PENDING

    def test_funded_entries_are_not_checked(self, db, service, mock_gateway, funded_entry, later):
        result = service.run_sweep(now=later)

        assert result.checked == 0
        mock_gateway.verify_charge.assert_not_called()
