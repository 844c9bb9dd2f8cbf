"""
Celery configuration for the Django application.

Celery runs everything that must not block a web request:
- Payout disbursement (transfer calls with retry/backoff)
- Periodic sweeps (auto-confirmation, gateway reconciliation,
  unprocessed webhook retries) scheduled through django-celery-beat
- Notification fan-out to connected clients

Redis is both the message broker and the result backend. Tasks are
auto-discovered from the tasks.py module of every installed app.

Usage:
    from payments.tasks import disburse_payout

    disburse_payout.delay(str(entry.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
