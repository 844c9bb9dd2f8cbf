"""
Payments app configuration.

This app provides the escrow payment lifecycle:
- Checkout through the Paystack gateway
- Escrow ledger with row-locked state transitions
- Provider payouts with bounded retry
- Webhook ingestion and reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self):
        from payments.services import EscrowStatsService

        # One cache per process, shared by every request
        self.stats_service = EscrowStatsService()
