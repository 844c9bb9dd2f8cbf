"""
Core views providing infrastructure endpoints.

These views are not part of the marketplace domain but are needed by
load balancers and orchestration, such as the health check.
"""

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Reports database and cache connectivity, and whether the payment
    gateway credentials needed to take payments and verify webhooks are
    present. Only the database is critical: a missing cache degrades
    stats caching and locking, and missing gateway credentials are an
    operator error surfaced here rather than a liveness failure.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "payment_gateway": "configured"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "payment_gateway": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        # Cache backends raise their own client errors (redis, memcached)
        health_status["cache"] = "disconnected"

    gateway_ready = bool(settings.PAYSTACK_SECRET_KEY and settings.PAYSTACK_WEBHOOK_SECRET)
    health_status["payment_gateway"] = "configured" if gateway_ready else "missing_credentials"

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
