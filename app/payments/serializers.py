"""
DRF serializers for payments app.

This module provides serializers for:
- Payment initialization responses (hosted checkout URL and fee breakdown)
- Escrow entry display
- Operator actions (refund, payout re-queue)
- Aggregate escrow statistics

Design Decisions:
    - Read and write serializers are separate for clarity
    - Amounts are integers in minor units (cents); clients format them
    - Gateway-internal fields (idempotency keys, recipient codes) are
      exposed to staff only

Usage:
    serializer = EscrowEntrySerializer(entry, context={"request": request})
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import EscrowEntry, PayoutAttempt


# =============================================================================
# Payment Initialization
# =============================================================================


class PaymentBreakdownSerializer(serializers.Serializer):
    """Fee split of a charge, in minor units."""

    total_amount = serializers.IntegerField(read_only=True)
    platform_fee = serializers.IntegerField(read_only=True)
    provider_payout = serializers.IntegerField(read_only=True)


class PaymentInitializationSerializer(serializers.Serializer):
    """
    What the client needs to complete checkout.

    Fields:
        escrow_entry_id: The PENDING escrow entry
        authorization_url: Hosted checkout URL to redirect the client to
        reference: Charge reference
        breakdown: Fee split of the charge
    """

    escrow_entry_id = serializers.UUIDField(source="entry.id", read_only=True)
    authorization_url = serializers.URLField(read_only=True)
    reference = serializers.CharField(read_only=True)
    breakdown = PaymentBreakdownSerializer(read_only=True)


# =============================================================================
# Escrow Entries
# =============================================================================


class PayoutAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutAttempt
        fields = [
            "epoch",
            "idempotency_key",
            "transfer_reference",
            "outcome",
            "error",
            "created_at",
            "finished_at",
        ]
        read_only_fields = fields


class EscrowEntrySerializer(serializers.ModelSerializer):
    """
    Escrow entry as seen by the booking's client and provider.
    """

    booking_id = serializers.UUIDField(read_only=True)
    payout_delayed = serializers.BooleanField(source="booking.payout_delayed", read_only=True)

    class Meta:
        model = EscrowEntry
        fields = [
            "id",
            "booking_id",
            "state",
            "amount_held",
            "platform_fee",
            "provider_payout",
            "currency",
            "charge_reference",
            "payout_delayed",
            "funded_at",
            "release_requested_at",
            "released_at",
            "refunded_at",
            "created_at",
            "updated_at",
            "version",
        ]
        read_only_fields = fields


class StaffEscrowEntrySerializer(EscrowEntrySerializer):
    """
    Escrow entry with payout bookkeeping, for staff.

    Includes the current payout episode's idempotency key and the history
    of payout attempts so operators can decide whether to re-queue.
    """

    payout_attempts = PayoutAttemptSerializer(many=True, read_only=True)

    class Meta(EscrowEntrySerializer.Meta):
        fields = EscrowEntrySerializer.Meta.fields + [
            "transfer_reference",
            "idempotency_key",
            "refund_reference",
            "release_epoch",
            "attempt_count",
            "last_error",
            "failed_at",
            "metadata",
            "payout_attempts",
        ]
        read_only_fields = fields


# =============================================================================
# Operator Actions
# =============================================================================


class RefundRequestSerializer(serializers.Serializer):
    """Refund held funds back to the client."""

    reason = serializers.CharField(
        max_length=500,
        required=False,
        allow_blank=True,
        default="",
        help_text="Why the refund was issued (kept in the entry metadata)",
    )


class RequeueRequestSerializer(serializers.Serializer):
    """
    Re-queue a FAILED payout.

    Passing the version the operator saw makes the re-queue fail with 409
    if someone else changed the entry in the meantime.
    """

    expected_version = serializers.IntegerField(
        required=False,
        min_value=1,
        help_text="Entry version the operator last saw",
    )


# =============================================================================
# Statistics
# =============================================================================


class EscrowStatsSerializer(serializers.Serializer):
    counts = serializers.DictField(child=serializers.IntegerField(), read_only=True)
    held_in_escrow = serializers.IntegerField(read_only=True)
    released_to_providers = serializers.IntegerField(read_only=True)
    platform_fees_earned = serializers.IntegerField(read_only=True)
    currency = serializers.CharField(read_only=True)
    generated_at = serializers.DateTimeField(read_only=True)
