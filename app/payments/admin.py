"""
Payment admin configuration.

Registers the escrow ledger, payout attempts and webhook events with the
Django admin. Everything is read-only: state changes go through the
service layer, which the bulk actions below call.
"""

from django.contrib import admin

from payments.models import EscrowEntry, PayoutAttempt, WebhookEvent
from payments.state_machines import EscrowState

__all__ = [
    "EscrowEntryAdmin",
    "PayoutAttemptAdmin",
    "WebhookEventAdmin",
]


class PayoutAttemptInline(admin.TabularInline):
    """Inline display of payout episodes for an escrow entry."""

    model = PayoutAttempt
    extra = 0
    readonly_fields = [
        "epoch",
        "idempotency_key",
        "transfer_reference",
        "outcome",
        "error",
        "created_at",
        "finished_at",
    ]
    can_delete = False
    ordering = ["epoch"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(EscrowEntry)
class EscrowEntryAdmin(admin.ModelAdmin):
    """
    Admin configuration for EscrowEntry.

    Provides visibility into held funds and payout progress.
    State changes must be made through the ledger, not admin.
    """

    list_display = [
        "id",
        "booking",
        "amount_display",
        "state",
        "release_epoch",
        "attempt_count",
        "created_at",
    ]
    list_filter = ["state", "currency", "created_at"]
    search_fields = [
        "id",
        "booking__id",
        "charge_reference",
        "transfer_reference",
        "idempotency_key",
    ]
    readonly_fields = [field.name for field in EscrowEntry._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PayoutAttemptInline]
    actions = ["requeue_failed_payouts"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "booking", "state", "version"),
            },
        ),
        (
            "Amounts",
            {
                "fields": ("amount_held", "platform_fee", "provider_payout", "currency"),
            },
        ),
        (
            "Gateway",
            {
                "fields": (
                    "charge_reference",
                    "authorization_url",
                    "transfer_reference",
                    "refund_reference",
                ),
            },
        ),
        (
            "Payout",
            {
                "fields": ("idempotency_key", "release_epoch", "attempt_count", "last_error"),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": (
                    "funded_at",
                    "release_requested_at",
                    "released_at",
                    "refunded_at",
                    "failed_at",
                    "created_at",
                    "updated_at",
                ),
            },
        ),
    )

    def amount_display(self, obj: EscrowEntry) -> str:
        """Display the held amount in major units."""
        return f"{obj.amount_held / 100:.2f} {obj.currency}"

    amount_display.short_description = "Amount"

    @admin.action(description="Re-queue selected failed payouts")
    def requeue_failed_payouts(self, request, queryset):
        """Start a new payout episode for each selected FAILED entry."""
        from payments.services import EscrowService

        requeued = 0
        for entry_id in queryset.filter(state=EscrowState.FAILED).values_list("id", flat=True):
            if EscrowService.requeue(entry_id).success:
                requeued += 1
        self.message_user(request, f"Re-queued {requeued} payouts.")

    def has_add_permission(self, request) -> bool:
        """Entries are created by checkout only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for escrow entries (audit trail)."""
        return False


@admin.register(PayoutAttempt)
class PayoutAttemptAdmin(admin.ModelAdmin):
    list_display = [
        "idempotency_key",
        "escrow_entry",
        "epoch",
        "outcome",
        "transfer_reference",
        "created_at",
    ]
    list_filter = ["outcome", "created_at"]
    search_fields = ["idempotency_key", "transfer_reference", "escrow_entry__id"]
    readonly_fields = [field.name for field in PayoutAttempt._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "event_type",
        "external_reference",
        "processed",
        "retry_count",
        "processed_at",
        "received_at",
    ]
    list_filter = ["processed", "event_type", "received_at"]
    search_fields = ["id", "external_reference"]
    readonly_fields = [field.name for field in WebhookEvent._meta.fields]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]
    actions = ["retry_selected"]

    @admin.action(description="Retry selected unprocessed events")
    def retry_selected(self, request, queryset):
        """Queue unprocessed events for another processing attempt."""
        from payments.tasks import process_webhook_event

        count = 0
        for event_id in queryset.filter(processed=False).values_list("id", flat=True):
            process_webhook_event.delay(str(event_id))
            count += 1
        self.message_user(request, f"Queued {count} webhook events for retry.")

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        """Webhook events are read-only."""
        return False
