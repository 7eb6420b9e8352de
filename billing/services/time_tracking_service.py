import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from ..models import Client, Invoice, TimeEntry
from ..utils import to_decimal
from ..validation import BusinessRuleError, NotFoundError, ValidationError
from .invoice_service import InvoiceService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)


class TimeTrackingService:
    EDITABLE_FIELDS = ('description', 'project_name', 'billable')

    @staticmethod
    def get_entry(user, entry_id) -> TimeEntry:
        try:
            return TimeEntry.objects.select_related('client', 'invoice').get(pk=entry_id, user=user)
        except (TimeEntry.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Time entry not found")

    @staticmethod
    def get_entries_queryset(user, filters: Optional[Dict[str, Any]] = None) -> QuerySet:
        queryset = TimeEntry.objects.filter(user=user).select_related('client', 'invoice')

        if not filters:
            return queryset

        if filters.get('client_id'):
            queryset = queryset.filter(client_id=filters['client_id'])
        if filters.get('billable') is not None:
            queryset = queryset.filter(billable=filters['billable'])
        if filters.get('unbilled'):
            queryset = queryset.filter(billable=True, invoice__isnull=True, ended_at__isnull=False)
        if filters.get('date_from'):
            queryset = queryset.filter(started_at__date__gte=filters['date_from'])
        if filters.get('date_to'):
            queryset = queryset.filter(started_at__date__lte=filters['date_to'])
        if filters.get('search'):
            search_term = filters['search']
            queryset = queryset.filter(
                Q(description__icontains=search_term) |
                Q(project_name__icontains=search_term)
            )

        return queryset

    @staticmethod
    def _resolve_client(user, client_id) -> Optional[Client]:
        if not client_id:
            return None
        client = Client.objects.filter(pk=client_id, user=user).first()
        if client is None:
            raise ValidationError("Client not found", field_name='client_id')
        return client

    @staticmethod
    def _default_rate(user, client: Optional[Client]) -> Decimal:
        if client is not None and client.default_hourly_rate:
            return client.default_hourly_rate
        return BusinessProfileService.get_profile(user).default_hourly_rate

    @staticmethod
    def _validate_rate(data: Dict[str, Any]) -> None:
        if data.get('hourly_rate') is not None and to_decimal(data['hourly_rate'], Decimal('-1')) < 0:
            raise ValidationError("Hourly rate cannot be negative", field_name='hourly_rate')

    @staticmethod
    def get_running_timer(user) -> Optional[TimeEntry]:
        return TimeEntry.objects.filter(user=user, ended_at__isnull=True).first()

    @classmethod
    @transaction.atomic
    def start_timer(cls, user, data: Dict[str, Any]) -> TimeEntry:
        if not (data.get('description') or '').strip():
            raise ValidationError("Description is required", field_name='description')
        cls._validate_rate(data)

        running = cls.get_running_timer(user)
        if running is not None:
            raise BusinessRuleError(f"Timer {running.id} is already running; stop it first")

        client = cls._resolve_client(user, data.get('client_id'))
        rate = data.get('hourly_rate')
        try:
            with transaction.atomic():
                entry = TimeEntry.objects.create(
                    user=user,
                    client=client,
                    description=data['description'].strip(),
                    project_name=data.get('project_name', ''),
                    started_at=timezone.now(),
                    hourly_rate=to_decimal(rate) if rate is not None else cls._default_rate(user, client),
                    billable=data.get('billable', True),
                )
        except IntegrityError:
            raise BusinessRuleError("A timer is already running; stop it first")

        logger.info(f"Timer {entry.id} started for user {user.id}")
        return entry

    @staticmethod
    @transaction.atomic
    def stop_timer(entry: TimeEntry) -> TimeEntry:
        entry = TimeEntry.objects.select_for_update().get(pk=entry.pk)
        if not entry.is_running:
            raise BusinessRuleError("Timer is not running")

        entry.ended_at = timezone.now()
        entry.duration_seconds = max(0, int((entry.ended_at - entry.started_at).total_seconds()))
        entry.save()

        logger.info(f"Timer {entry.id} stopped after {entry.duration_seconds}s")
        return entry

    @staticmethod
    def _span(started_at: datetime, ended_at: Optional[datetime], duration_seconds: Any) -> Dict[str, Any]:
        if ended_at is not None:
            if ended_at < started_at:
                raise ValidationError("End time cannot be before start time", field_name='ended_at')
            return {'ended_at': ended_at, 'duration_seconds': int((ended_at - started_at).total_seconds())}

        try:
            seconds = int(duration_seconds)
        except (TypeError, ValueError):
            raise ValidationError("Either an end time or a duration is required", field_name='duration_seconds')
        if seconds < 0:
            raise ValidationError("Duration cannot be negative", field_name='duration_seconds')
        return {'ended_at': started_at + timedelta(seconds=seconds), 'duration_seconds': seconds}

    @classmethod
    @transaction.atomic
    def create_entry(cls, user, data: Dict[str, Any]) -> TimeEntry:
        """Record finished work by hand, from an end time or a duration."""
        if not (data.get('description') or '').strip():
            raise ValidationError("Description is required", field_name='description')
        cls._validate_rate(data)

        client = cls._resolve_client(user, data.get('client_id'))
        started_at = data.get('started_at') or timezone.now()
        span = cls._span(started_at, data.get('ended_at'), data.get('duration_seconds'))
        rate = data.get('hourly_rate')

        entry = TimeEntry.objects.create(
            user=user,
            client=client,
            description=data['description'].strip(),
            project_name=data.get('project_name', ''),
            started_at=started_at,
            hourly_rate=to_decimal(rate) if rate is not None else cls._default_rate(user, client),
            billable=data.get('billable', True),
            **span,
        )
        logger.info(f"Time entry {entry.id} recorded for user {user.id} ({entry.duration_seconds}s)")
        return entry

    @classmethod
    @transaction.atomic
    def update_entry(cls, entry: TimeEntry, data: Dict[str, Any]) -> TimeEntry:
        entry = TimeEntry.objects.select_for_update().get(pk=entry.pk)
        if entry.is_invoiced:
            raise BusinessRuleError("Invoiced time entries cannot be changed")
        if 'description' in data and not (data['description'] or '').strip():
            raise ValidationError("Description is required", field_name='description')
        cls._validate_rate(data)

        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(entry, field, data[field])
        if data.get('hourly_rate') is not None:
            entry.hourly_rate = to_decimal(data['hourly_rate'])
        if 'client_id' in data:
            entry.client = cls._resolve_client(entry.user, data['client_id'])

        timing = {key: data[key] for key in ('started_at', 'ended_at', 'duration_seconds') if key in data}
        if timing:
            if entry.is_running:
                raise BusinessRuleError("Stop the timer before changing its times")
            entry.started_at = timing.get('started_at') or entry.started_at
            ended_at = timing.get('ended_at')
            if ended_at is None and 'duration_seconds' not in timing:
                ended_at = entry.started_at + timedelta(seconds=entry.duration_seconds)
            for field, value in cls._span(entry.started_at, ended_at, timing.get('duration_seconds')).items():
                setattr(entry, field, value)

        entry.save()
        logger.info(f"Time entry {entry.id} updated")
        return entry

    @staticmethod
    def delete_entry(entry: TimeEntry) -> None:
        if entry.is_invoiced:
            raise BusinessRuleError("Invoiced time entries cannot be deleted")
        entry_id = entry.id
        entry.delete()
        logger.info(f"Time entry {entry_id} deleted")

    @classmethod
    @transaction.atomic
    def create_invoice_from_entries(cls, user, entry_ids: List[int], data: Optional[Dict[str, Any]] = None) -> Invoice:
        """
        Bill stopped, billable, uninvoiced entries of a single client as one
        draft invoice, one line item per entry at its hours and hourly rate.
        """
        if not entry_ids:
            raise ValidationError("Select at least one time entry", field_name='entry_ids')

        entries = list(
            TimeEntry.objects.select_for_update()
            .filter(user=user, pk__in=entry_ids)
            .order_by('started_at', 'id')
        )
        if len(entries) != len(set(entry_ids)):
            raise NotFoundError("Time entry not found")

        for entry in entries:
            if entry.is_running:
                raise BusinessRuleError(f"Time entry {entry.id} is still running")
            if not entry.billable:
                raise BusinessRuleError(f"Time entry {entry.id} is not billable")
            if entry.is_invoiced:
                raise BusinessRuleError(f"Time entry {entry.id} is already on invoice {entry.invoice_id}")
            if entry.hours <= 0:
                raise BusinessRuleError(f"Time entry {entry.id} has no recorded time")

        client_ids = {entry.client_id for entry in entries}
        if len(client_ids) != 1 or None in client_ids:
            raise BusinessRuleError("Time entries must all belong to the same client")

        items = []
        for entry in entries:
            label = f"{entry.project_name}: {entry.description}" if entry.project_name else entry.description
            items.append({
                'description': f"{label} ({entry.started_at:%Y-%m-%d})",
                'quantity': entry.hours,
                'rate': entry.hourly_rate,
            })

        invoice = InvoiceService.create_invoice(user, {**(data or {}), 'client_id': client_ids.pop()}, items)
        TimeEntry.objects.filter(pk__in=[entry.pk for entry in entries]).update(invoice=invoice, updated_at=timezone.now())

        logger.info(f"Invoice {invoice.id} created from {len(entries)} time entries")
        return invoice

    @staticmethod
    def get_summary(user) -> Dict[str, Any]:
        today = timezone.localdate()
        week_start = today - timedelta(days=today.weekday())
        finished = TimeEntry.objects.filter(user=user, ended_at__isnull=False)

        week_seconds = 0
        week_billable_amount = Decimal('0.00')
        for entry in finished.filter(started_at__date__gte=week_start):
            week_seconds += entry.duration_seconds
            if entry.billable:
                week_billable_amount += entry.amount

        unbilled = finished.filter(billable=True, invoice__isnull=True)
        unbilled_amount = sum((entry.amount for entry in unbilled), Decimal('0.00'))

        running = TimeEntry.objects.filter(user=user, ended_at__isnull=True).first()
        return {
            'week_start': week_start,
            'week_hours': (Decimal(week_seconds) / Decimal(3600)).quantize(Decimal('0.01')),
            'week_billable_amount': week_billable_amount,
            'unbilled_count': unbilled.count(),
            'unbilled_amount': unbilled_amount,
            'running_timer_id': running.id if running else None,
        }
