"""
Infrastructure views (not part of the payments domain).
"""

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django_redis import get_redis_connection
from redis.exceptions import RedisError


def health_check(request):
    """
    Health check endpoint for load balancers and container health checks.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy", "degraded" or "unhealthy"
        - database: "connected" or "disconnected"
        - redis: "connected" or "disconnected" (refund locks need it)
        - gateway: "configured" or "unconfigured"

    HTTP Status Codes:
        200: Database reachable (possibly degraded)
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "connected",
        "redis": "connected",
        "gateway": "configured" if settings.GATEWAY_TERMINAL_ID else "unconfigured",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        return JsonResponse(health_status, status=503)

    # Charges and webhooks still work without Redis; refunds do not
    try:
        get_redis_connection("default").ping()
    except RedisError:
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"

    return JsonResponse(health_status, status=200)
