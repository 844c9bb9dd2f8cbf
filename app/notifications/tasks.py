"""
Celery tasks for notification delivery.

Tasks:
    broadcast_payment_event: Push a payment lifecycle event to each target
        user's WebSocket notification group

Design:
    - Delivery is best-effort: a user with no open connection simply misses
      the live event and sees the new state on next fetch
    - The channel layer call is retried a few times for broker hiccups

Usage:
    from notifications.tasks import broadcast_payment_event

    # Normally enqueued by NotificationFanout.publish()
    broadcast_payment_event.delay([user.id], "payment.released", {...})
"""

from __future__ import annotations

import logging

from asgiref.sync import async_to_sync
from celery import shared_task
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group_name(user_id) -> str:
    """Channel group a user's notification sockets join."""
    return f"user_{user_id}_notifications"


@shared_task(
    bind=True,
    autoretry_for=(ConnectionError, OSError),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def broadcast_payment_event(self, user_ids: list, event_type: str, payload: dict) -> int:
    """
    Broadcast a payment event via Django Channels.

    Args:
        user_ids: Users to notify
        event_type: Event name (e.g., 'payment.escrow_funded')
        payload: JSON-serializable event body

    Returns:
        Number of groups the event was sent to
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning(
            "No channel layer configured, dropping payment event",
            extra={"event_type": event_type},
        )
        return 0

    sent = 0
    for user_id in user_ids:
        async_to_sync(channel_layer.group_send)(
            user_group_name(user_id),
            {
                "type": "notification.payment",
                "event_type": event_type,
                "payload": payload,
            },
        )
        sent += 1

    logger.info(
        f"Broadcast {event_type} to {sent} user group(s)",
        extra={"event_type": event_type, "user_count": sent},
    )
    return sent
