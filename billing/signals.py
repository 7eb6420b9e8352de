"""
Signal handlers for the billing app.
"""

import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_business_profile(sender, instance, created: bool, **kwargs):
    if not created or kwargs.get("raw"):
        return
    from .models import BusinessProfile

    BusinessProfile.objects.get_or_create(user=instance)
    logger.info(f"Business profile created for new user {instance.pk}")
