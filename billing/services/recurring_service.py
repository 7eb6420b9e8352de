import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, QuerySet
from django.utils import timezone

from ..models import Invoice, InvoiceActivity, LineItem, RecurringInvoice
from ..utils import add_interval, compute_next_run_date, is_valid_frequency, utc_today
from ..validation import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from .invoice_service import InvoiceService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)

RUNNABLE_STATUSES = RecurringInvoice.LIVE_STATUSES


class RecurringInvoiceService:
    UPDATABLE_FIELDS = ('frequency', 'start_date', 'end_date', 'auto_send')

    @staticmethod
    def list_schedules(user, status: str = "") -> QuerySet:
        queryset = RecurringInvoice.objects.filter(user=user).select_related('client', 'template_invoice')
        if status:
            queryset = queryset.filter(status=status)
        return queryset

    @staticmethod
    def get_schedule(user, schedule_id) -> RecurringInvoice:
        try:
            return RecurringInvoice.objects.select_related('client', 'template_invoice').get(pk=schedule_id, user=user)
        except (RecurringInvoice.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Recurring invoice not found")

    @staticmethod
    def _validate(frequency: Optional[str], start_date: Optional[date], end_date: Optional[date]) -> None:
        if frequency is not None and not is_valid_frequency(frequency):
            raise ValidationError(f"Unknown frequency: {frequency}", field_name='frequency')
        if start_date and end_date and end_date < start_date:
            raise ValidationError("End date cannot be before start date", field_name='end_date')

    @classmethod
    @transaction.atomic
    def create_schedule(cls, user, data: Dict[str, Any]) -> RecurringInvoice:
        template = Invoice.objects.filter(pk=data.get('template_invoice_id'), user=user).select_related('client').first()
        if template is None:
            raise ValidationError("Template invoice not found", field_name='template_invoice_id')

        client = template.client
        if data.get('client_id'):
            if str(data['client_id']) != str(template.client_id):
                raise ValidationError("Client must match the template invoice's client", field_name='client_id')

        frequency = data.get('frequency') or RecurringInvoice.Frequency.MONTHLY
        start_date = data.get('start_date') or utc_today()
        end_date = data.get('end_date')
        cls._validate(frequency, start_date, end_date)

        schedule = RecurringInvoice.objects.create(
            user=user,
            template_invoice=template,
            client=client,
            frequency=frequency,
            start_date=start_date,
            end_date=end_date,
            next_run_date=compute_next_run_date(start_date, None, frequency),
            auto_send=bool(data.get('auto_send', False)),
        )
        logger.info(f"Created recurring invoice {schedule.id} ({frequency}) from template {template.id}")
        return schedule

    @classmethod
    @transaction.atomic
    def update_schedule(cls, schedule: RecurringInvoice, data: Dict[str, Any]) -> RecurringInvoice:
        schedule = RecurringInvoice.objects.select_for_update().get(pk=schedule.pk)
        if schedule.is_terminal:
            raise BusinessRuleError(f"A {schedule.status} schedule cannot be updated")

        frequency = data.get('frequency', schedule.frequency)
        start_date = data.get('start_date', schedule.start_date)
        end_date = data.get('end_date', schedule.end_date)
        cls._validate(frequency, start_date, end_date)

        reschedule = frequency != schedule.frequency or start_date != schedule.start_date
        for field in cls.UPDATABLE_FIELDS:
            if field in data:
                setattr(schedule, field, data[field])
        if reschedule:
            schedule.next_run_date = compute_next_run_date(schedule.start_date, schedule.last_run_date, schedule.frequency)

        schedule.save()
        logger.info(f"Updated recurring invoice {schedule.id}")
        return schedule

    @staticmethod
    @transaction.atomic
    def pause_schedule(schedule: RecurringInvoice) -> RecurringInvoice:
        if schedule.status != RecurringInvoice.Status.ACTIVE:
            raise BusinessRuleError("Only active schedules can be paused")
        schedule.status = RecurringInvoice.Status.PAUSED
        schedule.paused_at = timezone.now()
        schedule.save(update_fields=['status', 'paused_at', 'updated_at'])
        logger.info(f"Paused recurring invoice {schedule.id}")
        return schedule

    @staticmethod
    @transaction.atomic
    def resume_schedule(schedule: RecurringInvoice) -> RecurringInvoice:
        if schedule.status != RecurringInvoice.Status.PAUSED:
            raise BusinessRuleError("Only paused schedules can be resumed")
        schedule.status = RecurringInvoice.Status.ACTIVE
        schedule.paused_at = None
        schedule.save(update_fields=['status', 'paused_at', 'updated_at'])
        logger.info(f"Resumed recurring invoice {schedule.id}")
        return schedule

    @staticmethod
    @transaction.atomic
    def cancel_schedule(schedule: RecurringInvoice) -> RecurringInvoice:
        if schedule.is_terminal:
            raise BusinessRuleError("Schedule is already cancelled or completed")
        schedule.status = RecurringInvoice.Status.CANCELLED
        schedule.cancelled_at = timezone.now()
        schedule.save(update_fields=['status', 'cancelled_at', 'updated_at'])
        logger.info(f"Cancelled recurring invoice {schedule.id}")
        return schedule

    @staticmethod
    def generated_invoices(schedule: RecurringInvoice) -> QuerySet:
        return schedule.generated_invoices.select_related('client').order_by('-recurring_run_date')


class RecurringInvoiceGenerator:
    """Clones template invoices for schedules whose run date has arrived."""

    @staticmethod
    def get_due_schedules(today: Optional[date] = None) -> List[RecurringInvoice]:
        today = today or utc_today()
        return list(
            RecurringInvoice.objects.filter(
                status=RecurringInvoice.Status.ACTIVE,
                next_run_date__lte=today,
            ).select_related('user', 'client', 'template_invoice').order_by('next_run_date', 'id')
        )

    @staticmethod
    def _clone_template(schedule: RecurringInvoice, today: date) -> Invoice:
        template = schedule.template_invoice
        terms_days = template.payment_terms_days or InvoiceService.default_payment_terms_days()

        invoice = Invoice(
            user=schedule.user,
            client=schedule.client,
            invoice_number=BusinessProfileService.allocate_invoice_number(schedule.user),
            status=Invoice.Status.DRAFT,
            issue_date=today,
            due_date=today + timedelta(days=terms_days),
            payment_terms_days=template.payment_terms_days,
            currency=template.currency,
            discount_type=template.discount_type,
            discount_amount=template.discount_amount,
            tax_rate=template.tax_rate,
            amount_paid=Decimal('0.00'),
            notes=template.notes,
            terms=template.terms,
            recurring_invoice=schedule,
            recurring_run_date=today,
        )
        template_items = list(template.items.all())
        InvoiceService.apply_totals(invoice, [{'quantity': i.quantity, 'rate': i.rate} for i in template_items])
        invoice.save()

        LineItem.objects.bulk_create([
            LineItem(
                invoice=invoice,
                description=item.description,
                quantity=item.quantity,
                rate=item.rate,
                amount=item.amount,
                position=item.position,
            )
            for item in template_items
        ])
        return invoice

    @classmethod
    def generate_for_schedule(cls, schedule: RecurringInvoice, today: Optional[date] = None, manual: bool = False) -> Invoice:
        """
        Generate one invoice for ``schedule`` and advance it.

        The schedule row is advanced with a conditional update on the
        ``next_run_date`` that was read; if another worker advanced it first
        nothing is created and ConflictError is raised. Auto-send is queued
        only after the transaction commits.
        """
        today = today or utc_today()
        allowed = RUNNABLE_STATUSES if manual else (RecurringInvoice.Status.ACTIVE,)
        if schedule.status not in allowed:
            raise BusinessRuleError(f"A {schedule.status} schedule cannot generate invoices")

        observed_run_date = schedule.next_run_date
        template_total = schedule.template_invoice.total

        try:
            with transaction.atomic():
                claimed = RecurringInvoice.objects.filter(
                    pk=schedule.pk,
                    next_run_date=observed_run_date,
                    status__in=allowed,
                ).update(
                    next_run_date=add_interval(today, schedule.frequency),
                    last_run_date=today,
                    invoices_generated=F('invoices_generated') + 1,
                    total_amount_generated=F('total_amount_generated') + template_total,
                    updated_at=timezone.now(),
                )
                if not claimed:
                    raise ConflictError(f"Recurring invoice {schedule.id} was already processed")

                invoice = cls._clone_template(schedule, today)
                InvoiceService.log_activity(
                    invoice, None, InvoiceActivity.ActionType.GENERATED,
                    f"Generated from recurring schedule #{schedule.id}",
                    metadata={'recurring_invoice_id': schedule.id, 'run_date': today.isoformat(), 'manual': manual},
                )

                if schedule.auto_send:
                    from .notification_service import NotificationService

                    invoice_id = invoice.id
                    transaction.on_commit(lambda: NotificationService.queue_invoice_email(invoice_id))
        except IntegrityError:
            raise ConflictError(f"An invoice for recurring schedule {schedule.id} on {today} already exists")

        schedule.refresh_from_db()
        logger.info(f"Generated invoice {invoice.invoice_number} for recurring invoice {schedule.id}")
        return invoice

    @staticmethod
    def complete_if_ended(schedule: RecurringInvoice, today: date) -> bool:
        if not schedule.end_date or today <= schedule.end_date:
            return False
        RecurringInvoice.objects.filter(pk=schedule.pk, status=RecurringInvoice.Status.ACTIVE).update(
            status=RecurringInvoice.Status.COMPLETED, updated_at=timezone.now(),
        )
        logger.info(f"Recurring invoice {schedule.id} completed (end date {schedule.end_date} passed)")
        return True

    @classmethod
    def process_due(cls, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or utc_today()
        schedules = cls.get_due_schedules(today)

        results = {
            'processed': 0,
            'failed': 0,
            'invoices_created': [],
            'errors': [],
            'completed': 0,
            'skipped': 0,
        }

        for schedule in schedules:
            try:
                if cls.complete_if_ended(schedule, today):
                    results['completed'] += 1
                    continue
                invoice = cls.generate_for_schedule(schedule, today)
            except ConflictError as e:
                logger.info(f"Skipping recurring invoice {schedule.id}: {e.message}")
                results['skipped'] += 1
                continue
            except Exception as e:
                logger.exception(f"Error generating invoice for recurring invoice {schedule.id}")
                results['failed'] += 1
                results['errors'].append({'recurring_invoice_id': schedule.id, 'error': str(e)})
                continue

            results['processed'] += 1
            results['invoices_created'].append(invoice.invoice_number)

        logger.info(
            f"Recurring run for {today}: {results['processed']} processed, {results['failed']} failed, "
            f"{results['skipped']} skipped, {results['completed']} completed"
        )
        return results
