import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.db.models.functions import TruncMonth

from ..currency import is_supported, normalize_code
from ..models import Client, Expense, Invoice
from ..utils import to_decimal
from ..validation import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class ExpenseService:
    EDITABLE_FIELDS = (
        'description', 'amount', 'currency', 'category', 'date', 'vendor', 'payment_method',
        'billable', 'reimbursable', 'tax_deductible', 'receipt_url', 'notes',
    )

    @staticmethod
    def get_expense(user, expense_id) -> Expense:
        try:
            return Expense.objects.select_related('client', 'invoice').get(pk=expense_id, user=user)
        except (Expense.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Expense not found")

    @staticmethod
    def get_expenses_queryset(user, filters: Optional[Dict[str, Any]] = None) -> QuerySet:
        queryset = Expense.objects.filter(user=user).select_related('client', 'invoice')

        if not filters:
            return queryset

        if filters.get('category'):
            queryset = queryset.filter(category=filters['category'])
        if filters.get('client_id'):
            queryset = queryset.filter(client_id=filters['client_id'])
        if filters.get('billable') is not None:
            queryset = queryset.filter(billable=filters['billable'])
        if filters.get('reimbursable') is not None:
            queryset = queryset.filter(reimbursable=filters['reimbursable'])
        if filters.get('date_from'):
            queryset = queryset.filter(date__gte=filters['date_from'])
        if filters.get('date_to'):
            queryset = queryset.filter(date__lte=filters['date_to'])
        if filters.get('search'):
            search_term = filters['search']
            queryset = queryset.filter(
                Q(description__icontains=search_term) |
                Q(vendor__icontains=search_term) |
                Q(notes__icontains=search_term)
            )

        return queryset

    @staticmethod
    def _resolve_links(user, data: Dict[str, Any]) -> Dict[str, Any]:
        links = {}
        if 'client_id' in data:
            links['client'] = None
            if data['client_id']:
                links['client'] = Client.objects.filter(pk=data['client_id'], user=user).first()
                if links['client'] is None:
                    raise ValidationError("Client not found", field_name='client_id')
        if 'invoice_id' in data:
            links['invoice'] = None
            if data['invoice_id']:
                links['invoice'] = Invoice.objects.filter(pk=data['invoice_id'], user=user).first()
                if links['invoice'] is None:
                    raise ValidationError("Invoice not found", field_name='invoice_id')
        return links

    @classmethod
    def _validate(cls, data: Dict[str, Any]) -> None:
        if 'amount' in data and to_decimal(data['amount'], default=Decimal('-1')) <= 0:
            raise ValidationError("Amount must be greater than 0", field_name='amount')
        if 'category' in data and data['category'] not in Expense.Category.values:
            raise ValidationError(f"Unknown expense category: {data['category']}", field_name='category')
        if 'currency' in data:
            if not is_supported(data['currency']):
                raise ValidationError(f"Unsupported currency: {data['currency']}", field_name='currency')
            data['currency'] = normalize_code(data['currency'])
        if 'description' in data and not (data['description'] or '').strip():
            raise ValidationError("Description is required", field_name='description')

    @classmethod
    @transaction.atomic
    def create_expense(cls, user, data: Dict[str, Any]) -> Expense:
        if not data.get('description'):
            raise ValidationError("Description is required", field_name='description')
        if data.get('amount') is None:
            raise ValidationError("Amount is required", field_name='amount')
        cls._validate(data)

        fields = {field: data[field] for field in cls.EDITABLE_FIELDS if field in data}
        fields['amount'] = to_decimal(fields['amount'])
        fields.update(cls._resolve_links(user, data))

        expense = Expense.objects.create(user=user, **fields)
        logger.info(f"Created expense {expense.id} ({expense.category}) for user {user.id}")
        return expense

    @classmethod
    @transaction.atomic
    def update_expense(cls, expense: Expense, data: Dict[str, Any]) -> Expense:
        cls._validate(data)

        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(expense, field, data[field])
        if 'amount' in data:
            expense.amount = to_decimal(data['amount'])
        for field, value in cls._resolve_links(expense.user, data).items():
            setattr(expense, field, value)

        expense.save()
        logger.info(f"Updated expense {expense.id}")
        return expense

    @staticmethod
    def delete_expense(expense: Expense) -> None:
        expense_id = expense.id
        expense.delete()
        logger.info(f"Deleted expense {expense_id}")

    @staticmethod
    def get_categories():
        return [{'value': value, 'label': label} for value, label in Expense.Category.choices]

    @staticmethod
    def get_expense_summary(user, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, Any]:
        queryset = Expense.objects.filter(user=user)

        if date_from:
            queryset = queryset.filter(date__gte=date_from)
        if date_to:
            queryset = queryset.filter(date__lte=date_to)

        summary = queryset.aggregate(
            total_expenses=Sum('amount'),
            expense_count=Count('id'),
            billable_total=Sum('amount', filter=Q(billable=True)),
            reimbursable_total=Sum('amount', filter=Q(reimbursable=True)),
            tax_deductible_total=Sum('amount', filter=Q(tax_deductible=True)),
        )

        for key in summary:
            if summary[key] is None:
                summary[key] = Decimal('0.00') if 'total' in key else 0

        grand_total = summary['total_expenses']
        labels = dict(Expense.Category.choices)

        by_category = []
        for row in queryset.values('category').annotate(total=Sum('amount'), count=Count('id')).order_by('-total'):
            share = (row['total'] / grand_total * 100).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP) if grand_total else Decimal('0.0')
            by_category.append({
                'category': row['category'],
                'label': labels.get(row['category'], row['category']),
                'total': row['total'],
                'count': row['count'],
                'percentage': share,
            })

        by_period = [
            {'period': row['month'].strftime('%Y-%m'), 'total': row['total'], 'count': row['count']}
            for row in queryset.annotate(month=TruncMonth('date')).values('month').annotate(
                total=Sum('amount'), count=Count('id')
            ).order_by('month')
        ]

        summary['by_category'] = by_category
        summary['by_period'] = by_period
        summary['date_from'] = date_from
        summary['date_to'] = date_to
        return summary
