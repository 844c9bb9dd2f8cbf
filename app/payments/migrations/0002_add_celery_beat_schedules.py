"""
Add celery-beat schedules for the escrow background jobs.

This migration creates the periodic task schedules for:
- run_reconciliation_sweep: every 15 minutes, polls the gateway for
  entries whose webhooks never arrived
- auto_confirm_completed_bookings: every hour, confirms bookings the
  client did not confirm within the auto-confirmation window
- retry_unprocessed_webhooks: every 5 minutes, re-runs webhook events
  whose processing failed
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Escrow Reconciliation Sweep",
        "task": "payments.workers.reconciliation_worker.run_reconciliation_sweep",
        "every": 15,
        "description": (
            "Checks stale PENDING and PROCESSING_RELEASE entries with the "
            "gateway and applies missed charge and transfer results."
        ),
    },
    {
        "name": "Auto-confirm Completed Bookings",
        "task": "payments.workers.auto_confirmation.auto_confirm_completed_bookings",
        "every": 60,
        "description": (
            "Confirms completed bookings past the auto-confirmation window "
            "and starts releasing their escrowed funds."
        ),
    },
    {
        "name": "Retry Unprocessed Webhooks",
        "task": "payments.tasks.retry_unprocessed_webhooks",
        "every": 5,
        "description": (
            "Queues unprocessed webhook events with retry budget left "
            "for another processing attempt."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the escrow background jobs."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for definition in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=definition["every"],
            period="minutes",
        )

        PeriodicTask.objects.get_or_create(
            name=definition["name"],
            defaults={
                "task": definition["task"],
                "interval": schedule,
                "enabled": True,
                "description": definition["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[definition["name"] for definition in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
