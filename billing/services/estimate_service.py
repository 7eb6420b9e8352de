"""
Estimates: quotes with their own numbering and a lifecycle ending in
conversion to an invoice.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.utils import timezone

from ..currency import normalize_code
from ..models import Estimate, EstimateItem, Invoice, InvoiceActivity
from ..utils import to_decimal
from ..validation import BusinessRuleError, InvalidTransitionError, NotFoundError, ValidationError
from .invoice_service import InvoiceService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)


class EstimateService:
    # Conversion is a separate operation and is not requested through a status change.
    TRANSITIONS = {
        Estimate.Status.DRAFT: [Estimate.Status.SENT],
        Estimate.Status.SENT: [Estimate.Status.ACCEPTED, Estimate.Status.DECLINED, Estimate.Status.EXPIRED],
        Estimate.Status.EXPIRED: [Estimate.Status.SENT],
        Estimate.Status.ACCEPTED: [],
        Estimate.Status.DECLINED: [],
        Estimate.Status.CONVERTED: [],
    }

    EDITABLE_FIELDS = ('issue_date', 'valid_until', 'notes', 'terms', 'discount_type')

    @staticmethod
    def default_validity_days() -> int:
        return getattr(settings, 'DEFAULT_ESTIMATE_VALIDITY_DAYS', 30)

    @staticmethod
    def get_estimate(user, estimate_id) -> Estimate:
        try:
            return Estimate.objects.select_related('client', 'converted_invoice').get(pk=estimate_id, user=user)
        except (Estimate.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Estimate not found")

    @staticmethod
    def list_estimates(user, status: str = "", client_id: Optional[str] = None, search: str = "") -> QuerySet:
        queryset = Estimate.objects.filter(user=user).select_related('client')
        today = timezone.localdate()
        if status == Estimate.Status.EXPIRED:
            queryset = queryset.filter(Q(status=Estimate.Status.EXPIRED) | Q(status=Estimate.Status.SENT, valid_until__lt=today))
        elif status == Estimate.Status.SENT:
            queryset = queryset.filter(status=Estimate.Status.SENT, valid_until__gte=today)
        elif status:
            queryset = queryset.filter(status=status)
        if client_id:
            queryset = queryset.filter(client_id=client_id)
        if search:
            queryset = queryset.filter(Q(estimate_number__icontains=search) | Q(client__name__icontains=search))
        return queryset

    @staticmethod
    def _write_items(estimate: Estimate, items: List[Dict[str, Any]]) -> None:
        EstimateItem.objects.bulk_create([
            EstimateItem(
                estimate=estimate,
                description=item['description'].strip(),
                quantity=to_decimal(item.get('quantity'), Decimal('1')),
                rate=to_decimal(item.get('rate')),
                amount=InvoiceService.calculate_line_amount(item.get('quantity'), item.get('rate')),
                position=idx,
            )
            for idx, item in enumerate(items)
        ])

    @staticmethod
    def _apply_totals(estimate: Estimate, items: List[Dict[str, Any]]) -> None:
        totals = InvoiceService.calculate_invoice_totals(
            items,
            discount_type=estimate.discount_type,
            discount_amount=estimate.discount_amount,
            tax_rate=estimate.tax_rate,
        )
        estimate.subtotal = totals['subtotal']
        estimate.discount_value = totals['discount_value']
        estimate.tax_amount = totals['tax_amount']
        estimate.total = totals['total']

    @staticmethod
    def _validate_dates(issue_date, valid_until) -> None:
        if issue_date and valid_until and valid_until < issue_date:
            raise ValidationError("Valid-until date cannot be before the issue date", field_name='valid_until')

    @classmethod
    @transaction.atomic
    def create_estimate(cls, user, data: Dict[str, Any], items: List[Dict[str, Any]]) -> Estimate:
        # Same line item and client rules as invoices.
        InvoiceService.validate_invoice_data(data, items)

        profile = BusinessProfileService.get_profile(user)
        client = InvoiceService._resolve_client(user, data)

        issue_date = data.get('issue_date') or timezone.localdate()
        valid_until = data.get('valid_until') or issue_date + timedelta(days=cls.default_validity_days())
        cls._validate_dates(issue_date, valid_until)

        estimate = Estimate(
            user=user,
            client=client,
            estimate_number=BusinessProfileService.allocate_estimate_number(user),
            issue_date=issue_date,
            valid_until=valid_until,
            currency=normalize_code(data.get('currency') or client.default_currency or profile.default_currency),
            discount_type=data.get('discount_type') or Invoice.DiscountType.FIXED,
            discount_amount=to_decimal(data.get('discount_amount')),
            tax_rate=to_decimal(data['tax_rate']) if data.get('tax_rate') is not None else profile.default_tax_rate,
            notes=data.get('notes', ''),
            terms=data.get('terms', ''),
        )
        cls._apply_totals(estimate, items)
        estimate.save()
        cls._write_items(estimate, items)

        logger.info(f"Estimate {estimate.id} ({estimate.estimate_number}) created by user {user.id}")
        return estimate

    @classmethod
    @transaction.atomic
    def update_estimate(cls, estimate: Estimate, data: Dict[str, Any], items: Optional[List[Dict[str, Any]]] = None) -> Estimate:
        estimate = Estimate.objects.select_for_update().get(pk=estimate.pk)
        if not estimate.can_edit:
            raise BusinessRuleError(f"Estimate in status '{estimate.status}' cannot be edited")

        InvoiceService.validate_invoice_data(data, items, is_update=True)
        cls._validate_dates(data.get('issue_date', estimate.issue_date), data.get('valid_until', estimate.valid_until))

        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(estimate, field, data[field])
        if 'currency' in data:
            estimate.currency = normalize_code(data['currency'])
        if 'discount_amount' in data:
            estimate.discount_amount = to_decimal(data['discount_amount'])
        if data.get('tax_rate') is not None:
            estimate.tax_rate = to_decimal(data['tax_rate'])

        if items is not None:
            estimate.items.all().delete()
            cls._write_items(estimate, items)
        cls._apply_totals(estimate, [{'quantity': i.quantity, 'rate': i.rate} for i in estimate.items.all()])
        estimate.save()

        logger.info(f"Estimate {estimate.id} updated")
        return estimate

    @staticmethod
    def delete_estimate(estimate: Estimate) -> None:
        if estimate.status == Estimate.Status.CONVERTED:
            raise BusinessRuleError("Converted estimates cannot be deleted")
        estimate_id = estimate.id
        estimate.delete()
        logger.info(f"Estimate {estimate_id} deleted")

    @classmethod
    @transaction.atomic
    def transition_status(cls, estimate: Estimate, new_status: str) -> Estimate:
        estimate = Estimate.objects.select_for_update().get(pk=estimate.pk)
        old_status = estimate.status

        if new_status not in cls.TRANSITIONS.get(old_status, []):
            raise InvalidTransitionError(old_status, new_status)
        if new_status == Estimate.Status.ACCEPTED and estimate.is_expired:
            raise BusinessRuleError(f"Estimate expired on {estimate.valid_until}; extend it and send it again")
        if new_status == Estimate.Status.SENT and estimate.valid_until < timezone.localdate():
            raise BusinessRuleError("Move the valid-until date forward before sending")

        now = timezone.now()
        estimate.status = new_status
        if new_status == Estimate.Status.SENT:
            estimate.sent_at = now
        elif new_status == Estimate.Status.ACCEPTED:
            estimate.accepted_at = now
        elif new_status == Estimate.Status.DECLINED:
            estimate.declined_at = now
        estimate.save()

        logger.info(f"Estimate {estimate.id} transitioned from {old_status} to {new_status}")
        return estimate

    @classmethod
    @transaction.atomic
    def convert_to_invoice(cls, estimate: Estimate, user) -> Invoice:
        """Create a draft invoice from a sent or accepted estimate; an estimate converts once."""
        estimate = Estimate.objects.select_for_update().get(pk=estimate.pk)
        if estimate.status == Estimate.Status.CONVERTED:
            raise BusinessRuleError(f"Estimate {estimate.estimate_number} was already converted")
        if estimate.status not in Estimate.CONVERTIBLE_STATUSES:
            raise InvalidTransitionError(estimate.status, Estimate.Status.CONVERTED)
        if estimate.is_expired:
            raise BusinessRuleError(f"Estimate expired on {estimate.valid_until}")

        items = [
            {'description': item.description, 'quantity': item.quantity, 'rate': item.rate}
            for item in estimate.items.all()
        ]
        invoice = InvoiceService.create_invoice(
            user,
            {
                'client_id': estimate.client_id,
                'currency': estimate.currency,
                'discount_type': estimate.discount_type,
                'discount_amount': estimate.discount_amount,
                'tax_rate': estimate.tax_rate,
                'notes': estimate.notes,
                'terms': estimate.terms,
            },
            items,
        )

        estimate.status = Estimate.Status.CONVERTED
        estimate.converted_invoice = invoice
        estimate.converted_at = timezone.now()
        estimate.save()

        InvoiceService.log_activity(
            invoice, user, InvoiceActivity.ActionType.CREATED,
            f"Created from estimate {estimate.estimate_number}",
            metadata={'estimate_id': estimate.id},
        )
        logger.info(f"Estimate {estimate.id} converted to invoice {invoice.id}")
        return invoice

    @classmethod
    @transaction.atomic
    def duplicate_estimate(cls, estimate: Estimate) -> Estimate:
        today = timezone.localdate()
        copy = Estimate.objects.create(
            user=estimate.user,
            client=estimate.client,
            estimate_number=BusinessProfileService.allocate_estimate_number(estimate.user),
            issue_date=today,
            valid_until=today + timedelta(days=cls.default_validity_days()),
            currency=estimate.currency,
            subtotal=estimate.subtotal,
            discount_type=estimate.discount_type,
            discount_amount=estimate.discount_amount,
            discount_value=estimate.discount_value,
            tax_rate=estimate.tax_rate,
            tax_amount=estimate.tax_amount,
            total=estimate.total,
            notes=estimate.notes,
            terms=estimate.terms,
        )
        EstimateItem.objects.bulk_create([
            EstimateItem(
                estimate=copy,
                description=item.description,
                quantity=item.quantity,
                rate=item.rate,
                amount=item.amount,
                position=item.position,
            )
            for item in estimate.items.all()
        ])
        logger.info(f"Estimate {estimate.id} duplicated as {copy.id}")
        return copy

    @staticmethod
    def get_estimate_stats(user) -> Dict[str, Any]:
        today = timezone.localdate()
        estimates = Estimate.objects.filter(user=user)
        open_q = Q(status=Estimate.Status.SENT, valid_until__gte=today) | Q(status=Estimate.Status.ACCEPTED)
        sums = estimates.aggregate(
            total=Count('id'),
            pending=Count('id', filter=Q(status=Estimate.Status.SENT, valid_until__gte=today)),
            accepted=Count('id', filter=Q(status=Estimate.Status.ACCEPTED)),
            converted=Count('id', filter=Q(status=Estimate.Status.CONVERTED)),
            open_value=Sum('total', filter=open_q),
        )
        sums['open_value'] = sums['open_value'] or Decimal('0.00')
        return sums
