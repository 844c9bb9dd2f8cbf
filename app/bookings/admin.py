"""
Booking admin configuration.
"""

from django.contrib import admin

from bookings.models import Booking, ServiceProvider


@admin.register(ServiceProvider)
class ServiceProviderAdmin(admin.ModelAdmin):
    list_display = ["business_name", "user", "bank_name", "has_recipient", "created_at"]
    search_fields = ["business_name", "user__email", "account_holder_name"]
    readonly_fields = ["recipient_code", "created_at", "updated_at"]

    @admin.display(boolean=True, description="Recipient")
    def has_recipient(self, obj: ServiceProvider) -> bool:
        return bool(obj.recipient_code)


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """
    Admin configuration for Booking.

    Status changes must go through BookingService so escrow release
    happens; the status field is read-only here.
    """

    list_display = [
        "id",
        "service_name",
        "client",
        "provider",
        "status",
        "total_amount",
        "payout_delayed",
        "scheduled_at",
    ]
    list_filter = ["status", "auto_confirmed", "payout_delayed"]
    search_fields = ["id", "service_name", "client__email", "provider__business_name"]
    readonly_fields = [
        "id",
        "status",
        "platform_fee",
        "provider_completed_at",
        "client_confirmed_at",
        "auto_confirmed",
        "cancelled_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "scheduled_at"
    ordering = ["-scheduled_at"]
