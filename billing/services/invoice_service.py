import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.utils import timezone

from ..currency import is_supported, normalize_code
from ..models import Client, Invoice, InvoiceActivity, LineItem, RecurringInvoice
from ..utils import to_decimal
from ..validation import (
    BusinessRuleError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..validation.errors import FieldError
from .client_service import ClientService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class InvoiceService:
    # Every edge any actor may take. Overdue is derived at read time and never stored.
    VALID_TRANSITIONS = {
        Invoice.Status.DRAFT: [Invoice.Status.SENT, Invoice.Status.CANCELLED],
        Invoice.Status.SENT: [Invoice.Status.VIEWED, Invoice.Status.PARTIAL, Invoice.Status.PAID, Invoice.Status.CANCELLED],
        Invoice.Status.VIEWED: [Invoice.Status.PARTIAL, Invoice.Status.PAID],
        Invoice.Status.PARTIAL: [Invoice.Status.PARTIAL, Invoice.Status.PAID, Invoice.Status.SENT],
        Invoice.Status.PAID: [Invoice.Status.PARTIAL, Invoice.Status.PAID, Invoice.Status.REFUNDED],
        Invoice.Status.REFUNDED: [],
        Invoice.Status.CANCELLED: [],
    }

    # Transitions the owning user may request explicitly.
    USER_TRANSITIONS = {
        Invoice.Status.DRAFT: [Invoice.Status.SENT, Invoice.Status.CANCELLED],
        Invoice.Status.SENT: [Invoice.Status.CANCELLED],
    }

    EDITABLE_FIELDS = ('issue_date', 'due_date', 'payment_terms_days', 'currency', 'notes', 'terms')

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def available_user_transitions(cls, invoice: Invoice) -> List[str]:
        return [str(s) for s in cls.USER_TRANSITIONS.get(invoice.status, [])]

    # ------------------------------------------------------------------
    # Totals engine
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_line_amount(quantity: Any, rate: Any) -> Decimal:
        return _cents(to_decimal(quantity) * to_decimal(rate))

    @classmethod
    def calculate_invoice_totals(
        cls,
        items: List[Dict[str, Any]],
        discount_type: str = Invoice.DiscountType.FIXED,
        discount_amount: Any = Decimal('0'),
        tax_rate: Any = Decimal('0'),
        amount_paid: Any = Decimal('0'),
    ) -> Dict[str, Any]:
        """
        Recompute invoice totals from line items.

        Order is fixed: subtotal, discount, taxable amount, tax, total, balance.
        The taxable amount is not floored; a negative value is reported in
        ``warnings`` rather than silently clamped.
        """
        subtotal = sum(
            (cls.calculate_line_amount(item.get('quantity'), item.get('rate')) for item in items),
            Decimal('0.00'),
        )

        discount_amount = to_decimal(discount_amount)
        if discount_type == Invoice.DiscountType.PERCENTAGE:
            discount_value = _cents(subtotal * discount_amount / HUNDRED)
        else:
            discount_value = _cents(discount_amount)

        taxable_amount = subtotal - discount_value
        tax_amount = _cents(taxable_amount * to_decimal(tax_rate) / HUNDRED)
        total = _cents(taxable_amount + tax_amount)
        balance_due = max(Decimal('0.00'), _cents(total - to_decimal(amount_paid)))

        warnings = []
        if taxable_amount < 0:
            warnings.append("Discount exceeds subtotal; taxable amount is negative")

        return {
            'subtotal': _cents(subtotal),
            'discount_value': discount_value,
            'taxable_amount': _cents(taxable_amount),
            'tax_amount': tax_amount,
            'total': total,
            'balance_due': balance_due,
            'warnings': warnings,
        }

    @classmethod
    def apply_totals(cls, invoice: Invoice, items: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Write recomputed totals onto ``invoice`` (unsaved)."""
        if items is None:
            items = [{'quantity': i.quantity, 'rate': i.rate} for i in invoice.items.all()]
        totals = cls.calculate_invoice_totals(
            items,
            discount_type=invoice.discount_type,
            discount_amount=invoice.discount_amount,
            tax_rate=invoice.tax_rate,
            amount_paid=invoice.amount_paid,
        )
        invoice.subtotal = totals['subtotal']
        invoice.discount_value = totals['discount_value']
        invoice.tax_amount = totals['tax_amount']
        invoice.total = totals['total']
        invoice.balance_due = totals['balance_due']
        return totals

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def get_invoice(user, invoice_id) -> Invoice:
        try:
            return Invoice.objects.select_related('client').get(pk=invoice_id, user=user)
        except (Invoice.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Invoice not found")

    @staticmethod
    def validate_invoice_data(data: Dict[str, Any], items: Optional[List[Dict[str, Any]]], is_update: bool = False) -> None:
        errors = []

        if not is_update and not data.get('client_id') and not (data.get('client_name') and data.get('client_email')):
            errors.append(FieldError('client', ErrorCode.FIELD_REQUIRED.value, 'A client id or client name and email is required'))

        issue_date = data.get('issue_date')
        due_date = data.get('due_date')
        if issue_date and due_date and due_date < issue_date:
            errors.append(FieldError('due_date', ErrorCode.FIELD_INVALID.value, 'Due date cannot be before issue date'))

        if 'currency' in data and not is_supported(data['currency']):
            errors.append(FieldError('currency', ErrorCode.FIELD_INVALID.value, f"Unsupported currency: {data['currency']}"))

        if data.get('discount_type') == Invoice.DiscountType.PERCENTAGE and to_decimal(data.get('discount_amount')) > HUNDRED:
            errors.append(FieldError('discount_amount', ErrorCode.FIELD_OUT_OF_RANGE.value, 'Percentage discount cannot exceed 100'))

        if items is not None:
            if not items:
                errors.append(FieldError('items', ErrorCode.FIELD_REQUIRED.value, 'At least one line item is required'))
            for i, item in enumerate(items):
                if not (item.get('description') or '').strip():
                    errors.append(FieldError(f'items.{i}.description', ErrorCode.FIELD_REQUIRED.value, 'Description is required'))
                if to_decimal(item.get('quantity')) <= 0:
                    errors.append(FieldError(f'items.{i}.quantity', ErrorCode.FIELD_OUT_OF_RANGE.value, 'Quantity must be greater than 0'))
                if to_decimal(item.get('rate')) < 0:
                    errors.append(FieldError(f'items.{i}.rate', ErrorCode.FIELD_OUT_OF_RANGE.value, 'Rate cannot be negative'))

        if errors:
            raise ValidationError("Invoice validation failed", fields=errors)

    @classmethod
    def _resolve_client(cls, user, data: Dict[str, Any]) -> Client:
        if data.get('client_id'):
            client = ClientService.get_client(user, data['client_id'])
        else:
            client = ClientService.get_or_create_for_invoice(
                user,
                data.get('client_name'),
                data.get('client_email'),
                company=data.get('client_company', ''),
                address=data.get('client_address', ''),
            )
        if not client.is_active:
            raise ValidationError("Cannot invoice an inactive client", field_name='client')
        return client

    @staticmethod
    def _write_items(invoice: Invoice, items: List[Dict[str, Any]]) -> None:
        LineItem.objects.bulk_create([
            LineItem(
                invoice=invoice,
                description=item['description'].strip(),
                quantity=to_decimal(item.get('quantity'), Decimal('1')),
                rate=to_decimal(item.get('rate')),
                amount=InvoiceService.calculate_line_amount(item.get('quantity'), item.get('rate')),
                position=idx,
            )
            for idx, item in enumerate(items)
        ])

    @classmethod
    @transaction.atomic
    def create_invoice(cls, user, data: Dict[str, Any], items: List[Dict[str, Any]]) -> Invoice:
        cls.validate_invoice_data(data, items)

        profile = BusinessProfileService.get_profile(user)
        client = cls._resolve_client(user, data)

        invoice_number = (data.get('invoice_number') or '').strip()
        if invoice_number:
            if Invoice.objects.filter(user=user, invoice_number=invoice_number).exists():
                raise ValidationError(f"Invoice number {invoice_number} is already in use", field_name='invoice_number')
        else:
            invoice_number = BusinessProfileService.allocate_invoice_number(user)

        issue_date = data.get('issue_date') or timezone.localdate()
        terms_days = data.get('payment_terms_days')
        due_date = data.get('due_date') or issue_date + timedelta(
            days=terms_days or client.payment_terms_days or profile.default_payment_terms_days
        )

        invoice = Invoice(
            user=user,
            client=client,
            invoice_number=invoice_number,
            status=Invoice.Status.DRAFT,
            issue_date=issue_date,
            due_date=due_date,
            payment_terms_days=terms_days,
            currency=normalize_code(data.get('currency') or client.default_currency or profile.default_currency),
            discount_type=data.get('discount_type') or Invoice.DiscountType.FIXED,
            discount_amount=to_decimal(data.get('discount_amount')),
            tax_rate=to_decimal(data['tax_rate']) if data.get('tax_rate') is not None else profile.default_tax_rate,
            notes=data.get('notes', profile.default_notes),
            terms=data.get('terms', profile.default_terms),
        )
        cls.apply_totals(invoice, items)
        invoice.save()
        cls._write_items(invoice, items)

        cls.log_activity(invoice, user, InvoiceActivity.ActionType.CREATED, f"Invoice {invoice_number} created")
        logger.info(f"Invoice {invoice.id} created by user {user.id}")
        return invoice

    @classmethod
    @transaction.atomic
    def update_invoice(cls, invoice: Invoice, user, data: Dict[str, Any], items: Optional[List[Dict[str, Any]]] = None) -> Invoice:
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if not invoice.can_edit:
            raise BusinessRuleError(f"Invoice in status '{invoice.status}' cannot be edited")

        merged = {'issue_date': invoice.issue_date, 'due_date': invoice.due_date, **data}
        cls.validate_invoice_data(merged, items, is_update=True)

        if data.get('client_id'):
            invoice.client = cls._resolve_client(user, data)

        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(invoice, field, data[field])
        invoice.currency = normalize_code(invoice.currency)
        if 'discount_type' in data:
            invoice.discount_type = data['discount_type']
        if 'discount_amount' in data:
            invoice.discount_amount = to_decimal(data['discount_amount'])
        if data.get('tax_rate') is not None:
            invoice.tax_rate = to_decimal(data['tax_rate'])

        if items is not None:
            invoice.items.all().delete()
            cls._write_items(invoice, items)

        cls.apply_totals(invoice)
        invoice.save()

        cls.log_activity(invoice, user, InvoiceActivity.ActionType.UPDATED, "Invoice updated")
        logger.info(f"Invoice {invoice.id} updated by user {user.id}")
        return invoice

    @staticmethod
    @transaction.atomic
    def delete_invoice(invoice: Invoice) -> None:
        if invoice.payments.exists():
            raise BusinessRuleError(
                "Invoices with recorded payments cannot be deleted; cancel it instead",
                code=ErrorCode.INVOICE_HAS_PAYMENTS,
            )
        if invoice.recurring_templates.filter(status__in=RecurringInvoice.LIVE_STATUSES).exists():
            raise BusinessRuleError("Invoice is the template of a recurring schedule; cancel the schedule first")

        # Finished schedules keep their history; their template link is nulled.
        invoice_id = invoice.id
        invoice.delete()
        logger.info(f"Invoice {invoice_id} deleted")

    # ------------------------------------------------------------------
    # Status machine
    # ------------------------------------------------------------------

    @classmethod
    @transaction.atomic
    def transition_status(cls, invoice: Invoice, user, new_status: str, reason: str = "") -> Invoice:
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        old_status = invoice.status

        if new_status not in cls.USER_TRANSITIONS.get(old_status, []):
            raise InvalidTransitionError(old_status, new_status)

        invoice.status = new_status
        action = InvoiceActivity.ActionType.STATUS_CHANGED
        if new_status == Invoice.Status.SENT and not invoice.sent_at:
            invoice.sent_at = timezone.now()
        elif new_status == Invoice.Status.CANCELLED:
            invoice.cancelled_at = timezone.now()
            action = InvoiceActivity.ActionType.CANCELLED
        invoice.save()

        cls.log_activity(
            invoice, user, action,
            f"Status changed from {old_status} to {new_status}. {reason}".strip(),
            metadata={'old_status': old_status, 'new_status': new_status},
        )
        logger.info(f"Invoice {invoice.id} transitioned from {old_status} to {new_status}")
        return invoice

    @classmethod
    @transaction.atomic
    def mark_sent(cls, invoice: Invoice, user=None, recipient: str = "") -> Invoice:
        """Record a successful delivery; drafts become sent, later statuses are left alone."""
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.status == Invoice.Status.CANCELLED:
            raise InvalidTransitionError(invoice.status, Invoice.Status.SENT)

        if invoice.status == Invoice.Status.DRAFT:
            invoice.status = Invoice.Status.SENT
        invoice.sent_at = timezone.now()
        invoice.save(update_fields=['status', 'sent_at', 'updated_at'])

        cls.log_activity(
            invoice, user, InvoiceActivity.ActionType.SENT,
            f"Invoice sent to {recipient}" if recipient else "Invoice sent",
            metadata={'recipient': recipient},
        )
        return invoice

    @classmethod
    def record_view(cls, invoice: Invoice, ip_address: Optional[str] = None) -> Invoice:
        """Portal view: sent becomes viewed exactly once; no other status is touched."""
        now = timezone.now()
        updated = Invoice.objects.filter(pk=invoice.pk, status=Invoice.Status.SENT).update(
            status=Invoice.Status.VIEWED, viewed_at=now, updated_at=now,
        )
        if updated:
            InvoiceActivity.objects.create(
                invoice=invoice,
                action=InvoiceActivity.ActionType.VIEWED,
                description="Invoice viewed via client portal",
                ip_address=ip_address,
                is_system=True,
            )
            logger.info(f"Invoice {invoice.id} viewed via portal")
        invoice.refresh_from_db()
        return invoice

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def filter_invoices(queryset: QuerySet, search: str = "", status: str = "", client_id: Optional[str] = None) -> QuerySet:
        if search:
            queryset = queryset.filter(
                Q(invoice_number__icontains=search)
                | Q(client__name__icontains=search)
                | Q(client__email__icontains=search)
            )
        if status == Invoice.Status.OVERDUE:
            queryset = queryset.filter(Invoice.overdue_q())
        elif status in (Invoice.Status.SENT, Invoice.Status.VIEWED):
            queryset = queryset.filter(status=status).exclude(Invoice.overdue_q())
        elif status:
            queryset = queryset.filter(status=status)
        if client_id:
            queryset = queryset.filter(client_id=client_id)
        return queryset

    @staticmethod
    def get_invoice_stats(user) -> Dict[str, Any]:
        invoices = Invoice.objects.filter(user=user)
        overdue = invoices.filter(Invoice.overdue_q())
        by_status = {
            row['status']: {'count': row['count'], 'total': row['total'] or Decimal('0.00')}
            for row in invoices.values('status').annotate(count=Count('id'), total=Sum('total'))
        }
        billed = invoices.exclude(status__in=[Invoice.Status.DRAFT, Invoice.Status.CANCELLED])
        sums = billed.aggregate(total_invoiced=Sum('total'), total_paid=Sum('amount_paid'), outstanding=Sum('balance_due'))
        return {
            'invoice_count': invoices.count(),
            'by_status': by_status,
            'overdue_count': overdue.count(),
            'overdue_amount': overdue.aggregate(total=Sum('balance_due'))['total'] or Decimal('0.00'),
            'total_invoiced': sums['total_invoiced'] or Decimal('0.00'),
            'total_paid': sums['total_paid'] or Decimal('0.00'),
            'outstanding': sums['outstanding'] or Decimal('0.00'),
        }

    @staticmethod
    def default_payment_terms_days() -> int:
        return getattr(settings, 'DEFAULT_PAYMENT_TERMS_DAYS', 30)

    @staticmethod
    def log_activity(invoice: Invoice, user, action: str, description: str,
                     metadata: Optional[Dict] = None, is_system: bool = False) -> InvoiceActivity:
        return InvoiceActivity.objects.create(
            invoice=invoice,
            user=user,
            action=action,
            description=description,
            metadata=metadata or {},
            is_system=is_system or user is None,
        )
