"""Health check endpoints for load balancers and uptime monitors."""

import os
import time
from typing import Any, Dict

from django.conf import settings
from django.db import connections
from django.db.utils import OperationalError
from django.http import JsonResponse
from django.utils import timezone

from invoicepro.env_validation import configured_processors

APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")
APP_START_TIME = time.time()


def _uptime() -> Dict[str, Any]:
    uptime_seconds = int(time.time() - APP_START_TIME)
    days, remainder = divmod(uptime_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")

    return {"seconds": uptime_seconds, "formatted": " ".join(parts)}


def _database_up() -> bool:
    try:
        connections["default"].cursor()
    except OperationalError:
        return False
    return True


def health_check(request):
    """
    Liveness plus a database check. Returns 503 when the database is
    unreachable so orchestrators stop routing traffic to this instance.
    """
    database_up = _database_up()
    response = JsonResponse(
        {
            "status": "healthy" if database_up else "degraded",
            "version": APP_VERSION,
            "environment": "production" if not settings.DEBUG else "development",
            "timestamp": timezone.now().isoformat(),
            "uptime": _uptime(),
            "database": "up" if database_up else "down",
            "payment_processors": configured_processors(),
        },
        status=200 if database_up else 503,
    )
    # Stale health responses cause false failures.
    response["Cache-Control"] = "no-cache, no-store, must-revalidate, max-age=0"
    response["Pragma"] = "no-cache"
    return response
