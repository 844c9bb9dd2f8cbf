"""
Aggregate escrow statistics for staff, memoized for a short TTL.

The summary runs several aggregate queries; the cache keeps the staff
endpoint cheap under repeated polling. The service owns its cache, so
invalidation and expiry are explicit and testable with a fake clock.

Usage:
    from django.apps import apps

    stats = apps.get_app_config("payments").stats_service
    summary = stats.summary()
    stats.invalidate()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Count, Sum
from django.utils import timezone

from core.cache import ExpiringCache
from core.services import BaseService

from payments.models import EscrowEntry
from payments.state_machines import EscrowState

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any


SUMMARY_CACHE_KEY = "escrow:summary"

# States in which the platform is holding the client's money
HELD_STATES = (EscrowState.ESCROW, EscrowState.PROCESSING_RELEASE, EscrowState.FAILED)


class EscrowStatsService(BaseService):
    """
    Escrow counts and totals with a time-boxed cache.

    Args:
        ttl: Seconds a computed summary stays fresh
            (defaults to ESCROW_STATS_CACHE_TTL_SECONDS)
        clock: Monotonic clock for the cache (injectable for tests)
    """

    def __init__(self, ttl: float | None = None, clock: Callable[[], float] | None = None) -> None:
        if ttl is None:
            ttl = settings.ESCROW_STATS_CACHE_TTL_SECONDS
        self.cache = ExpiringCache(default_ttl=ttl, clock=clock)

    def summary(self) -> dict[str, Any]:
        """Return the cached summary, computing it if missing or expired."""
        return self.cache.get_or_compute(SUMMARY_CACHE_KEY, self._compute)

    def invalidate(self) -> None:
        self.cache.invalidate()

    def _compute(self) -> dict[str, Any]:
        counts = {state: 0 for state in EscrowState.values}
        rows = EscrowEntry.objects.order_by().values("state").annotate(count=Count("id"))
        for row in rows:
            counts[row["state"]] = row["count"]

        held = EscrowEntry.objects.filter(state__in=HELD_STATES).aggregate(
            total=Sum("amount_held")
        )
        released = EscrowEntry.objects.filter(state=EscrowState.RELEASED).aggregate(
            payouts=Sum("provider_payout"),
            fees=Sum("platform_fee"),
        )

        self.get_logger().debug("Escrow summary recomputed")
        return {
            "counts": counts,
            "held_in_escrow": held["total"] or 0,
            "released_to_providers": released["payouts"] or 0,
            "platform_fees_earned": released["fees"] or 0,
            "currency": settings.PLATFORM_CURRENCY,
            "generated_at": timezone.now().isoformat(),
        }
