"""
Recurring schedules: generation, idempotency of runs, lifecycle and the
cron/command entry points.
"""
from datetime import date
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from billing.models import Invoice, InvoiceActivity, RecurringInvoice
from billing.services.invoice_service import InvoiceService
from billing.services.recurring_service import RecurringInvoiceGenerator, RecurringInvoiceService
from billing.validation import BusinessRuleError, ConflictError, ValidationError
from tests.factories import InvoiceFactory, RecurringInvoiceFactory

JAN_1 = date(2025, 1, 1)


@pytest.fixture
def schedule(user, customer):
    template = InvoiceFactory(
        user=user,
        client=customer,
        items=[{"description": "Retainer", "quantity": Decimal("12"), "rate": Decimal("100.00")}],
    )
    return RecurringInvoiceFactory(
        user=user, template_invoice=template, start_date=JAN_1, next_run_date=JAN_1,
    )


@pytest.mark.django_db
class TestGeneration:
    def test_first_run_clones_template(self, schedule):
        results = RecurringInvoiceGenerator.process_due(JAN_1)

        assert results["processed"] == 1
        assert results["failed"] == 0
        schedule.refresh_from_db()
        assert schedule.next_run_date == date(2025, 2, 1)
        assert schedule.last_run_date == JAN_1
        assert schedule.invoices_generated == 1
        assert schedule.total_amount_generated == Decimal("1200.00")

        generated = Invoice.objects.get(recurring_invoice=schedule)
        assert generated.invoice_number in results["invoices_created"]
        assert generated.issue_date == JAN_1
        assert generated.due_date == date(2025, 1, 31)
        assert generated.status == Invoice.Status.DRAFT
        assert generated.total == Decimal("1200.00")
        assert generated.items.count() == 1
        assert generated.activities.filter(action=InvoiceActivity.ActionType.GENERATED, is_system=True).exists()

    def test_second_run_same_day_creates_nothing(self, schedule):
        RecurringInvoiceGenerator.process_due(JAN_1)
        results = RecurringInvoiceGenerator.process_due(JAN_1)

        assert results["processed"] == 0
        assert Invoice.objects.filter(recurring_invoice=schedule).count() == 1

    def test_stale_schedule_loses_the_race(self, schedule):
        stale = RecurringInvoice.objects.get(pk=schedule.pk)
        RecurringInvoiceGenerator.generate_for_schedule(schedule, JAN_1)

        with pytest.raises(ConflictError):
            RecurringInvoiceGenerator.generate_for_schedule(stale, JAN_1)
        assert Invoice.objects.filter(recurring_invoice=schedule).count() == 1

    def test_manual_generate_on_run_day_conflicts(self, schedule):
        RecurringInvoiceGenerator.process_due(JAN_1)
        schedule.refresh_from_db()

        with pytest.raises(ConflictError):
            RecurringInvoiceGenerator.generate_for_schedule(schedule, JAN_1, manual=True)

        schedule.refresh_from_db()
        assert schedule.next_run_date == date(2025, 2, 1)
        assert schedule.invoices_generated == 1

    def test_missed_runs_advance_from_trigger_date(self, schedule):
        results = RecurringInvoiceGenerator.process_due(date(2025, 3, 15))

        assert results["processed"] == 1
        schedule.refresh_from_db()
        assert schedule.next_run_date == date(2025, 4, 15)

    def test_paused_schedule_is_not_processed(self, schedule):
        RecurringInvoiceService.pause_schedule(schedule)
        results = RecurringInvoiceGenerator.process_due(JAN_1)
        assert results["processed"] == 0

    def test_paused_schedule_can_generate_manually(self, schedule):
        RecurringInvoiceService.pause_schedule(schedule)
        invoice = RecurringInvoiceGenerator.generate_for_schedule(schedule, JAN_1, manual=True)
        assert invoice.recurring_invoice_id == schedule.id

    def test_schedule_past_end_date_completes(self, schedule):
        schedule.end_date = date(2025, 1, 15)
        schedule.next_run_date = date(2025, 2, 1)
        schedule.save()

        results = RecurringInvoiceGenerator.process_due(date(2025, 2, 1))

        assert results["completed"] == 1
        assert results["processed"] == 0
        schedule.refresh_from_db()
        assert schedule.status == RecurringInvoice.Status.COMPLETED
        assert not Invoice.objects.filter(recurring_invoice=schedule).exists()

    def test_one_failure_does_not_stop_the_run(self, schedule, user, customer):
        healthy = RecurringInvoiceFactory(
            user=user,
            template_invoice=InvoiceFactory(user=user, client=customer),
            start_date=JAN_1,
            next_run_date=JAN_1,
        )
        clone = RecurringInvoiceGenerator._clone_template

        def failing_clone(target, today):
            if target.pk == schedule.pk:
                raise RuntimeError("template unreadable")
            return clone(target, today)

        with patch.object(RecurringInvoiceGenerator, "_clone_template", side_effect=failing_clone):
            results = RecurringInvoiceGenerator.process_due(JAN_1)

        assert results["processed"] == 1
        assert results["failed"] == 1
        assert results["errors"] == [{"recurring_invoice_id": schedule.id, "error": "template unreadable"}]
        schedule.refresh_from_db()
        healthy.refresh_from_db()
        assert schedule.next_run_date == JAN_1
        assert healthy.next_run_date == date(2025, 2, 1)

    def test_auto_send_queues_after_commit(self, schedule, django_capture_on_commit_callbacks):
        schedule.auto_send = True
        schedule.save()

        with patch("billing.services.notification_service.NotificationService.queue_invoice_email") as queue:
            with django_capture_on_commit_callbacks(execute=True):
                RecurringInvoiceGenerator.process_due(JAN_1)

        generated = Invoice.objects.get(recurring_invoice=schedule)
        queue.assert_called_once_with(generated.id)


@pytest.mark.django_db
class TestScheduleLifecycle:
    def test_create_starts_on_start_date(self, user, customer):
        template = InvoiceFactory(user=user, client=customer)
        schedule = RecurringInvoiceService.create_schedule(user, {
            "template_invoice_id": template.id,
            "frequency": "quarterly",
            "start_date": date(2025, 6, 1),
        })
        assert schedule.next_run_date == date(2025, 6, 1)
        assert schedule.client_id == customer.id

    def test_create_rejects_unknown_frequency(self, user, customer):
        template = InvoiceFactory(user=user, client=customer)
        with pytest.raises(ValidationError):
            RecurringInvoiceService.create_schedule(user, {"template_invoice_id": template.id, "frequency": "daily"})

    def test_create_rejects_other_users_template(self, user, other_user):
        template = InvoiceFactory(user=other_user)
        with pytest.raises(ValidationError):
            RecurringInvoiceService.create_schedule(user, {"template_invoice_id": template.id})

    def test_pause_resume_cancel(self, schedule):
        RecurringInvoiceService.pause_schedule(schedule)
        assert schedule.status == RecurringInvoice.Status.PAUSED
        assert schedule.paused_at is not None

        RecurringInvoiceService.resume_schedule(schedule)
        assert schedule.status == RecurringInvoice.Status.ACTIVE

        RecurringInvoiceService.cancel_schedule(schedule)
        assert schedule.status == RecurringInvoice.Status.CANCELLED

        with pytest.raises(BusinessRuleError):
            RecurringInvoiceService.resume_schedule(schedule)
        with pytest.raises(BusinessRuleError):
            RecurringInvoiceService.update_schedule(schedule, {"auto_send": True})

    def test_cancelled_schedule_cannot_generate(self, schedule):
        RecurringInvoiceService.cancel_schedule(schedule)
        with pytest.raises(BusinessRuleError):
            RecurringInvoiceGenerator.generate_for_schedule(schedule, JAN_1, manual=True)

    @pytest.mark.parametrize("pause", [False, True])
    def test_live_schedule_blocks_template_deletion(self, schedule, pause):
        if pause:
            RecurringInvoiceService.pause_schedule(schedule)

        with pytest.raises(BusinessRuleError):
            InvoiceService.delete_invoice(schedule.template_invoice)
        assert Invoice.objects.filter(pk=schedule.template_invoice_id).exists()

    def test_template_of_cancelled_schedule_can_be_deleted(self, schedule):
        RecurringInvoiceGenerator.generate_for_schedule(schedule, JAN_1, manual=True)
        RecurringInvoiceService.cancel_schedule(schedule)
        template_id = schedule.template_invoice_id

        InvoiceService.delete_invoice(schedule.template_invoice)

        schedule.refresh_from_db()
        assert not Invoice.objects.filter(pk=template_id).exists()
        assert schedule.template_invoice is None
        assert schedule.status == RecurringInvoice.Status.CANCELLED
        assert schedule.generated_invoices.count() == 1

    def test_template_of_completed_schedule_can_be_deleted(self, api_client, schedule):
        RecurringInvoice.objects.filter(pk=schedule.pk).update(status=RecurringInvoice.Status.COMPLETED)

        response = api_client.delete(f"/api/v1/invoices/{schedule.template_invoice_id}/")
        assert response.status_code == 200

        response = api_client.get(f"/api/v1/recurring/{schedule.id}/")
        assert response.status_code == 200
        assert response.json()["data"]["template_invoice"] is None
        assert response.json()["data"]["template_invoice_number"] is None

    def test_frequency_change_recomputes_next_run(self, schedule):
        RecurringInvoiceGenerator.process_due(JAN_1)
        schedule.refresh_from_db()

        updated = RecurringInvoiceService.update_schedule(schedule, {"frequency": "weekly"})
        assert updated.next_run_date == date(2025, 1, 8)


@pytest.mark.django_db
class TestRecurringEndpoints:
    def test_generate_action(self, api_client, schedule):
        response = api_client.post(f"/api/v1/recurring/{schedule.id}/generate/")

        assert response.status_code == 201
        assert response.json()["data"]["status"] == "draft"

    def test_cron_trigger_requires_secret(self, anon_client, settings, schedule):
        settings.CRON_SECRET = "s" * 32

        response = anon_client.post("/api/v1/recurring/run/")
        assert response.status_code == 401

        response = anon_client.post("/api/v1/recurring/run/", HTTP_X_CRON_SECRET="wrong")
        assert response.status_code == 401

    def test_cron_trigger_rejects_when_unconfigured(self, anon_client, settings):
        settings.CRON_SECRET = ""
        response = anon_client.post("/api/v1/recurring/run/", HTTP_X_CRON_SECRET="anything")
        assert response.status_code == 401

    def test_cron_trigger_runs_due_schedules(self, anon_client, settings, user, customer):
        settings.CRON_SECRET = "s" * 32
        RecurringInvoiceFactory(user=user, template_invoice=InvoiceFactory(user=user, client=customer))

        response = anon_client.post("/api/v1/recurring/run/", HTTP_X_CRON_SECRET="s" * 32)

        assert response.status_code == 200
        assert response.json()["data"]["processed"] == 1

    def test_other_users_schedule_is_hidden(self, api_client, other_user):
        foreign = RecurringInvoiceFactory(user=other_user)
        response = api_client.get(f"/api/v1/recurring/{foreign.id}/")
        assert response.status_code == 404


@pytest.mark.django_db
class TestProcessRecurringCommand:
    def test_command_generates(self, schedule):
        out = StringIO()
        call_command("process_recurring_invoices", "--date", "2025-01-01", stdout=out)

        assert "1 generated" in out.getvalue()
        assert Invoice.objects.filter(recurring_invoice=schedule).count() == 1

    def test_dry_run_changes_nothing(self, schedule):
        out = StringIO()
        call_command("process_recurring_invoices", "--date", "2025-01-01", "--dry-run", stdout=out)

        assert "Found 1 schedules" in out.getvalue()
        assert not Invoice.objects.filter(recurring_invoice=schedule).exists()

    def test_invalid_date(self):
        with pytest.raises(CommandError):
            call_command("process_recurring_invoices", "--date", "01/01/2025")
