import logging
from typing import Any, Dict

from django.db import transaction

from ..currency import is_supported, normalize_code
from ..models import BusinessProfile, Estimate, Invoice
from ..validation import ValidationError

logger = logging.getLogger(__name__)


class BusinessProfileService:
    EDITABLE_FIELDS = (
        'business_name', 'business_email', 'business_phone', 'business_address', 'tax_id',
        'default_currency', 'default_tax_rate', 'default_payment_terms_days', 'default_hourly_rate',
        'default_notes', 'default_terms', 'invoice_prefix', 'estimate_prefix',
    )

    @staticmethod
    def get_profile(user) -> BusinessProfile:
        profile, created = BusinessProfile.objects.get_or_create(user=user)
        if created:
            logger.info(f"Business profile created for user {user.id}")
        return profile

    @classmethod
    @transaction.atomic
    def update_profile(cls, user, data: Dict[str, Any]) -> BusinessProfile:
        profile = cls.get_profile(user)

        if 'default_currency' in data:
            code = normalize_code(data['default_currency'])
            if not is_supported(code):
                raise ValidationError(f"Unsupported currency: {code}", field_name='default_currency')
            data['default_currency'] = code

        changed = []
        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(profile, field, data[field])
                changed.append(field)

        if changed:
            profile.save(update_fields=changed + ['updated_at'])
            logger.info(f"Business profile for user {user.id} updated: {', '.join(changed)}")
        return profile

    @classmethod
    def _allocate(cls, user, model, number_field: str, prefix_field: str, counter_field: str, default_prefix: str) -> str:
        profile = BusinessProfile.objects.select_for_update().get(pk=cls.get_profile(user).pk)
        prefix = getattr(profile, prefix_field) or default_prefix
        number = getattr(profile, counter_field)

        candidate = f"{prefix}-{number:05d}"
        while model.objects.filter(user=user, **{number_field: candidate}).exists():
            number += 1
            candidate = f"{prefix}-{number:05d}"

        setattr(profile, counter_field, number + 1)
        profile.save(update_fields=[counter_field, 'updated_at'])
        return candidate

    @classmethod
    @transaction.atomic
    def allocate_invoice_number(cls, user) -> str:
        """Hand out the next ``PREFIX-00001`` style number, skipping any taken manually."""
        return cls._allocate(user, Invoice, 'invoice_number', 'invoice_prefix', 'next_invoice_number', 'INV')

    @classmethod
    @transaction.atomic
    def allocate_estimate_number(cls, user) -> str:
        return cls._allocate(user, Estimate, 'estimate_number', 'estimate_prefix', 'next_estimate_number', 'EST')
