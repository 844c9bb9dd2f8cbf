"""
Notification fan-out for payment lifecycle events.

Payment code hands events to NotificationFanout and moves on. Publishing
never raises: an enqueue failure is logged and the ledger mutation that
triggered it stands.

Usage:
    from notifications.services import NotificationFanout

    NotificationFanout.publish(
        [booking.client_id, booking.provider.user_id],
        "payment.escrow_funded",
        {"booking_id": str(booking.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


class NotificationFanout(BaseService):
    """Best-effort fan-out of events to users' live notification channels."""

    @classmethod
    def publish(
        cls,
        target_user_ids: Iterable,
        event_type: str,
        payload: dict[str, Any],
    ) -> bool:
        """
        Enqueue a broadcast of event_type to each target user.

        Returns:
            True if the broadcast task was enqueued, False otherwise
        """
        from notifications.tasks import broadcast_payment_event

        user_ids = sorted({str(user_id) for user_id in target_user_ids if user_id is not None})
        if not user_ids:
            return False

        try:
            broadcast_payment_event.delay(user_ids, event_type, payload)
        except Exception as e:
            cls.get_logger().error(
                f"Failed to enqueue notification {event_type}: {e}",
                extra={"event_type": event_type, "user_ids": user_ids},
            )
            return False
        return True
