import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ServiceProvider",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("business_name", models.CharField(help_text="Business or trading name shown to clients", max_length=200)),
                ("bank_name", models.CharField(blank=True, help_text="Bank name as captured during onboarding", max_length=100)),
                ("bank_code", models.CharField(blank=True, help_text="Gateway bank code; resolved from bank_name when blank", max_length=20)),
                ("account_number", models.CharField(blank=True, help_text="Destination bank account number", max_length=20)),
                ("account_holder_name", models.CharField(blank=True, help_text="Name on the destination bank account", max_length=200)),
                ("recipient_code", models.CharField(blank=True, help_text="Gateway transfer recipient code (RCP_xxx)", max_length=100, null=True)),
                (
                    "user",
                    models.OneToOneField(
                        help_text="User account of the provider",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="service_provider",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Service Provider",
                "verbose_name_plural": "Service Providers",
                "ordering": ["business_name"],
            },
        ),
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID v4)", primary_key=True, serialize=False)),
                ("service_name", models.CharField(help_text="Name of the booked service", max_length=200)),
                ("scheduled_at", models.DateTimeField(help_text="When the service is scheduled")),
                ("address", models.TextField(help_text="Service address")),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("requested", "Requested"),
                            ("confirmed", "Confirmed"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="requested",
                        help_text="Current booking status (managed by FSM)",
                        max_length=50,
                    ),
                ),
                ("total_amount", models.PositiveBigIntegerField(help_text="Total charged to the client in minor units")),
                ("platform_fee", models.PositiveBigIntegerField(default=0, help_text="Platform fee in minor units (set at payment initialization)")),
                ("provider_completed_at", models.DateTimeField(blank=True, db_index=True, help_text="When the provider marked the job completed", null=True)),
                ("client_confirmed_at", models.DateTimeField(blank=True, help_text="When completion was confirmed", null=True)),
                ("auto_confirmed", models.BooleanField(default=False, help_text="Completion was confirmed by the auto-confirmation timer")),
                ("payout_delayed", models.BooleanField(default=False, help_text="Payout failed and support has been notified")),
                ("cancelled_at", models.DateTimeField(blank=True, help_text="When the booking was cancelled", null=True)),
                ("cancellation_reason", models.TextField(blank=True, default="", help_text="Reason given for cancellation")),
                (
                    "client",
                    models.ForeignKey(
                        help_text="User who booked the service",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="client_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        help_text="Provider performing the service",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="bookings.serviceprovider",
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "ordering": ["-scheduled_at"],
                "indexes": [
                    models.Index(fields=["status", "provider_completed_at"], name="booking_status_completed_idx"),
                    models.Index(fields=["client", "status"], name="booking_client_status_idx"),
                    models.Index(fields=["provider", "status"], name="booking_provider_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("total_amount__gt", 0)), name="booking_total_amount_positive"),
                ],
            },
        ),
    ]
