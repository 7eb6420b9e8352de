import logging
from datetime import date

from django.core.management.base import BaseCommand, CommandError

from billing.services.recurring_service import RecurringInvoiceGenerator
from billing.utils import utc_today

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Generate invoices for recurring schedules whose run date has arrived"

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            type=str,
            help='Target date for processing (YYYY-MM-DD). Defaults to today (UTC).',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be processed without generating invoices.',
        )

    def handle(self, *args, **options):
        target_date = utc_today()
        if options['date']:
            try:
                target_date = date.fromisoformat(options['date'])
            except ValueError:
                raise CommandError(f"Invalid date format: {options['date']}")

        self.stdout.write(f"Processing recurring invoices for {target_date}")

        if options['dry_run']:
            schedules = RecurringInvoiceGenerator.get_due_schedules(target_date)
            self.stdout.write(f"[DRY RUN] Found {len(schedules)} schedules due for processing:")
            for schedule in schedules:
                self.stdout.write(
                    f"  - Recurring #{schedule.id}: {schedule.client.name} "
                    f"({schedule.frequency}) due {schedule.next_run_date}, "
                    f"template {schedule.template_invoice.invoice_number}"
                )
            return

        results = RecurringInvoiceGenerator.process_due(target_date)

        self.stdout.write(self.style.SUCCESS(
            f"Processing complete: "
            f"{results['processed']} generated, "
            f"{results['failed']} failed, "
            f"{results['skipped']} skipped, "
            f"{results['completed']} completed"
        ))
        for number in results['invoices_created']:
            self.stdout.write(f"  + {number}")

        if results['failed'] > 0:
            self.stdout.write(self.style.WARNING(
                f"Check logs for details on {results['failed']} failed generations."
            ))
