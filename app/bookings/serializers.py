"""
Serializers for bookings API.

Bookings are created and scheduled elsewhere; this API exposes them to
their participants and accepts the status actions each party performs.
"""

from __future__ import annotations

from rest_framework import serializers

from bookings.models import Booking


class BookingSerializer(serializers.ModelSerializer):
    """
    Booking as seen by its client and provider.

    escrow_state is the payment state (None until checkout starts).
    """

    provider_name = serializers.CharField(source="provider.business_name", read_only=True)
    escrow_state = serializers.SerializerMethodField(
        help_text="State of the escrowed payment, if any"
    )

    class Meta:
        model = Booking
        fields = [
            "id",
            "client",
            "provider",
            "provider_name",
            "service_name",
            "scheduled_at",
            "address",
            "status",
            "total_amount",
            "platform_fee",
            "provider_completed_at",
            "client_confirmed_at",
            "auto_confirmed",
            "payout_delayed",
            "cancelled_at",
            "escrow_state",
            "created_at",
        ]
        read_only_fields = fields

    def get_escrow_state(self, obj: Booking) -> str | None:
        entry = getattr(obj, "escrow_entry", None)
        return entry.state if entry is not None else None


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
