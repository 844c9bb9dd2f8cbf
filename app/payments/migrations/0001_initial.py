import uuid

import django.db.models.deletion
import django.db.models.expressions
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="EscrowEntry",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("amount_held", models.PositiveBigIntegerField(help_text="Amount charged to the client in minor units")),
                ("platform_fee", models.PositiveBigIntegerField(help_text="Platform fee in minor units")),
                ("provider_payout", models.PositiveBigIntegerField(help_text="Amount due to the provider in minor units")),
                ("currency", models.CharField(default="ZAR", help_text="ISO 4217 currency code", max_length=3)),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("escrow", "Held in Escrow"),
                            ("processing_release", "Processing Release"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current escrow state (managed by FSM)",
                        max_length=50,
                    ),
                ),
                ("charge_reference", models.CharField(help_text="Gateway transaction reference for the client charge", max_length=100, unique=True)),
                ("authorization_url", models.URLField(blank=True, default="", help_text="Hosted checkout URL returned by the gateway", max_length=500)),
                ("transfer_reference", models.CharField(blank=True, help_text="Gateway transfer code (TRF_xxx) of the current payout", max_length=100, null=True, unique=True)),
                ("idempotency_key", models.CharField(blank=True, help_text="Key of the in-flight payout episode; never reused", max_length=64, null=True, unique=True)),
                ("refund_reference", models.CharField(blank=True, help_text="Gateway refund identifier", max_length=100, null=True)),
                ("release_epoch", models.PositiveIntegerField(default=0, help_text="Number of release episodes started for this entry")),
                ("attempt_count", models.PositiveSmallIntegerField(default=0, help_text="Transfer attempts made in the current release episode")),
                ("last_error", models.TextField(blank=True, default="", help_text="Most recent failure message (never shown to end users)")),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each save")),
                ("funded_at", models.DateTimeField(blank=True, help_text="When the charge was confirmed and funds entered escrow", null=True)),
                ("release_requested_at", models.DateTimeField(blank=True, db_index=True, help_text="When the current release episode started", null=True)),
                ("released_at", models.DateTimeField(blank=True, help_text="When the payout was confirmed", null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When the refund was confirmed", null=True)),
                ("failed_at", models.DateTimeField(blank=True, help_text="When the current release episode failed", null=True)),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Arbitrary JSON metadata for extensibility")),
                (
                    "booking",
                    models.OneToOneField(
                        help_text="Booking whose payment this entry holds",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_entry",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow Entry",
                "verbose_name_plural": "Escrow Entries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["state", "release_requested_at"], name="escrow_state_release_idx"),
                    models.Index(fields=["state", "created_at"], name="escrow_state_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount_held__gt", 0)), name="escrow_entry_amount_positive"),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "amount_held",
                                django.db.models.expressions.CombinedExpression(
                                    models.F("platform_fee"), "+", models.F("provider_payout")
                                ),
                            )
                        ),
                        name="escrow_entry_amount_split",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutAttempt",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("epoch", models.PositiveIntegerField(help_text="Release episode number")),
                ("idempotency_key", models.CharField(help_text="Transfer reference shared by every try in this episode", max_length=64, unique=True)),
                ("transfer_reference", models.CharField(blank=True, help_text="Gateway transfer code (TRF_xxx)", max_length=100, null=True)),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("in_flight", "In Flight"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("superseded", "Superseded"),
                        ],
                        db_index=True,
                        default="in_flight",
                        help_text="Outcome of this episode",
                        max_length=20,
                    ),
                ),
                ("error", models.TextField(blank=True, default="", help_text="Failure detail if the episode failed")),
                ("finished_at", models.DateTimeField(blank=True, help_text="When the outcome was recorded", null=True)),
                (
                    "escrow_entry",
                    models.ForeignKey(
                        help_text="Escrow entry being paid out",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_attempts",
                        to="payments.escrowentry",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Attempt",
                "verbose_name_plural": "Payout Attempts",
                "ordering": ["escrow_entry", "-epoch"],
                "constraints": [
                    models.UniqueConstraint(fields=("escrow_entry", "epoch"), name="payout_attempt_unique_epoch"),
                    models.UniqueConstraint(
                        condition=models.Q(("outcome", "succeeded")),
                        fields=("escrow_entry",),
                        name="payout_attempt_single_success",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("event_type", models.CharField(db_index=True, help_text="Gateway event type (e.g., 'charge.success')", max_length=100)),
                ("external_reference", models.CharField(help_text="Charge or transfer reference the event refers to", max_length=100)),
                ("payload", models.JSONField(help_text="Full webhook envelope from the gateway (JSON)")),
                ("processed", models.BooleanField(db_index=True, default=False, help_text="Whether the event has been applied")),
                ("processed_at", models.DateTimeField(blank=True, help_text="When processing finished", null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0, help_text="Number of failed processing attempts")),
                ("last_error", models.TextField(blank=True, default="", help_text="Error note from the latest processing attempt")),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When the first delivery arrived")),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-received_at"],
                "indexes": [
                    models.Index(fields=["processed", "retry_count"], name="webhook_event_retry_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("event_type", "external_reference"), name="webhook_event_natural_key"),
                ],
            },
        ),
    ]
