"""
Permission classes for API access control.
"""
import hmac
import logging

from django.conf import settings
from rest_framework import permissions

from ..validation import AuthenticationError

logger = logging.getLogger(__name__)


class IsOwner(permissions.BasePermission):
    """Object-level check: only the owning user may touch the object."""

    def has_object_permission(self, request, view, obj):
        return obj.user_id == request.user.id


class HasCronSecret(permissions.BasePermission):
    """
    Shared-secret check for the scheduler trigger.

    The ``X-Cron-Secret`` header is compared in constant time against
    ``CRON_SECRET``; with no secret configured every call is rejected.
    """

    def has_permission(self, request, view):
        expected = getattr(settings, "CRON_SECRET", "")
        provided = request.headers.get("X-Cron-Secret", "")
        if not expected:
            logger.error("Recurring trigger called but CRON_SECRET is not configured")
            raise AuthenticationError("Scheduler trigger is not configured")
        if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning("Recurring trigger called with a missing or invalid secret")
            raise AuthenticationError("Invalid cron secret")
        return True
