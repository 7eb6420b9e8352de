from datetime import timedelta
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone

from billing.models import Client, Estimate, EstimateItem, Expense, Invoice, LineItem, RecurringInvoice, TimeEntry
from billing.services.invoice_service import InvoiceService


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.django.Password("TestPass123!")


class ClientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Client

    user = factory.SubFactory(UserFactory)
    name = factory.Sequence(lambda n: f"Client {n}")
    email = factory.Sequence(lambda n: f"client{n}@example.com")
    company = "Acme Ltd"


class InvoiceFactory(factory.django.DjangoModelFactory):
    """Invoice with one 500.00 line item unless ``items`` is passed."""

    class Meta:
        model = Invoice
        skip_postgeneration_save = True

    user = factory.SubFactory(UserFactory)
    client = factory.SubFactory(ClientFactory, user=factory.SelfAttribute("..user"))
    invoice_number = factory.Sequence(lambda n: f"TEST-{n:05d}")
    status = Invoice.Status.DRAFT
    issue_date = factory.LazyFunction(timezone.localdate)
    due_date = factory.LazyAttribute(lambda o: o.issue_date + timedelta(days=30))
    currency = "USD"

    @factory.post_generation
    def items(self, create, extracted, **kwargs):
        if not create:
            return
        rows = extracted if extracted is not None else [
            {"description": "Consulting", "quantity": Decimal("1"), "rate": Decimal("500.00")},
        ]
        for position, row in enumerate(rows):
            LineItem.objects.create(
                invoice=self,
                position=position,
                amount=InvoiceService.calculate_line_amount(row["quantity"], row["rate"]),
                **row,
            )
        InvoiceService.apply_totals(self)
        self.save()


class LineItemFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = LineItem

    invoice = factory.SubFactory(InvoiceFactory, items=[])
    description = "Design work"
    quantity = Decimal("2")
    rate = Decimal("75.00")
    amount = factory.LazyAttribute(lambda o: InvoiceService.calculate_line_amount(o.quantity, o.rate))


class RecurringInvoiceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RecurringInvoice

    user = factory.SubFactory(UserFactory)
    template_invoice = factory.SubFactory(InvoiceFactory, user=factory.SelfAttribute("..user"))
    client = factory.SelfAttribute("template_invoice.client")
    frequency = RecurringInvoice.Frequency.MONTHLY
    start_date = factory.LazyFunction(timezone.localdate)
    next_run_date = factory.SelfAttribute("start_date")


class ExpenseFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Expense

    user = factory.SubFactory(UserFactory)
    description = factory.Sequence(lambda n: f"Expense {n}")
    amount = Decimal("100.00")
    category = Expense.Category.SOFTWARE
    date = factory.LazyFunction(timezone.localdate)


class EstimateFactory(factory.django.DjangoModelFactory):
    """Estimate with one 500.00 item unless ``items`` is passed."""

    class Meta:
        model = Estimate
        skip_postgeneration_save = True

    user = factory.SubFactory(UserFactory)
    client = factory.SubFactory(ClientFactory, user=factory.SelfAttribute("..user"))
    estimate_number = factory.Sequence(lambda n: f"QUOTE-{n:05d}")
    status = Estimate.Status.DRAFT
    issue_date = factory.LazyFunction(timezone.localdate)
    valid_until = factory.LazyAttribute(lambda o: o.issue_date + timedelta(days=30))
    currency = "USD"

    @factory.post_generation
    def items(self, create, extracted, **kwargs):
        if not create:
            return
        rows = extracted if extracted is not None else [
            {"description": "Website redesign", "quantity": Decimal("1"), "rate": Decimal("500.00")},
        ]
        for position, row in enumerate(rows):
            EstimateItem.objects.create(
                estimate=self,
                position=position,
                amount=InvoiceService.calculate_line_amount(row["quantity"], row["rate"]),
                **row,
            )
        totals = InvoiceService.calculate_invoice_totals(
            rows, discount_type=self.discount_type, discount_amount=self.discount_amount, tax_rate=self.tax_rate,
        )
        self.subtotal = totals["subtotal"]
        self.discount_value = totals["discount_value"]
        self.tax_amount = totals["tax_amount"]
        self.total = totals["total"]
        self.save()


class TimeEntryFactory(factory.django.DjangoModelFactory):
    """A finished 90 minute billable entry at 80.00 an hour."""

    class Meta:
        model = TimeEntry

    user = factory.SubFactory(UserFactory)
    client = factory.SubFactory(ClientFactory, user=factory.SelfAttribute("..user"))
    description = factory.Sequence(lambda n: f"Development {n}")
    started_at = factory.LazyFunction(lambda: timezone.now() - timedelta(hours=2))
    duration_seconds = 5400
    ended_at = factory.LazyAttribute(lambda o: o.started_at + timedelta(seconds=o.duration_seconds))
    hourly_rate = Decimal("80.00")
    billable = True
