from __future__ import annotations

import secrets
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class BusinessProfile(models.Model):
    """Per-user business identity and the defaults used to pre-fill new invoices."""

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="business_profile")
    business_name = models.CharField(max_length=255, blank=True)
    business_email = models.EmailField(blank=True)
    business_phone = models.CharField(max_length=50, blank=True)
    business_address = models.TextField(blank=True)
    tax_id = models.CharField(max_length=50, blank=True)

    default_currency = models.CharField(max_length=3, default="USD")
    default_tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    default_payment_terms_days = models.PositiveIntegerField(default=30)
    default_notes = models.TextField(blank=True)
    default_terms = models.TextField(blank=True)
    default_hourly_rate = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))

    invoice_prefix = models.CharField(max_length=10, default="INV")
    next_invoice_number = models.PositiveIntegerField(default=1)
    estimate_prefix = models.CharField(max_length=10, default="EST")
    next_estimate_number = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.business_name or f"Business profile for {self.user}"

    @property
    def display_name(self):
        return self.business_name or self.user.get_full_name() or self.user.get_username()


class Client(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="clients")
    name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=50, blank=True)
    company = models.CharField(max_length=255, blank=True)
    tax_id = models.CharField(max_length=50, blank=True)

    address = models.TextField(blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=100, blank=True)

    default_currency = models.CharField(max_length=3, default="USD")
    payment_terms_days = models.PositiveIntegerField(null=True, blank=True)
    default_hourly_rate = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True)
    tags = models.JSONField(default=list, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)
    portal_enabled = models.BooleanField(default=False)
    portal_token = models.CharField(max_length=64, unique=True, null=True, blank=True)
    portal_token_created_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(fields=['user', 'email'], name='unique_client_email_per_user'),
        ]
        indexes = [
            models.Index(fields=['user', 'is_active'], name='billing_cli_user_id_6f1c2a_idx'),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_portal_token():
        return secrets.token_hex(32)


class Invoice(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        VIEWED = "viewed", "Viewed"
        PARTIAL = "partial", "Partially Paid"
        PAID = "paid", "Paid"
        OVERDUE = "overdue", "Overdue"
        REFUNDED = "refunded", "Refunded"
        CANCELLED = "cancelled", "Cancelled"

    class DiscountType(models.TextChoices):
        FIXED = "fixed", "Fixed Amount"
        PERCENTAGE = "percentage", "Percentage"

    # Stored statuses that read as overdue once past due with a balance.
    OVERDUE_ELIGIBLE_STATUSES = (Status.SENT, Status.VIEWED)
    EDITABLE_STATUSES = (Status.DRAFT, Status.SENT)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="invoices")
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="invoices")
    invoice_number = models.CharField(max_length=50, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True)

    issue_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField()
    payment_terms_days = models.PositiveIntegerField(null=True, blank=True)
    currency = models.CharField(max_length=3, default="USD")

    subtotal = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    discount_type = models.CharField(max_length=20, choices=DiscountType.choices, default=DiscountType.FIXED)
    discount_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    discount_value = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    amount_paid = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    balance_due = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))

    notes = models.TextField(blank=True)
    terms = models.TextField(blank=True)

    recurring_invoice = models.ForeignKey(
        'RecurringInvoice', on_delete=models.SET_NULL, null=True, blank=True, related_name="generated_invoices"
    )
    recurring_run_date = models.DateField(null=True, blank=True)

    sent_at = models.DateTimeField(null=True, blank=True)
    viewed_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'invoice_number'], name='unique_invoice_number_per_user'),
            models.UniqueConstraint(
                fields=['recurring_invoice', 'recurring_run_date'],
                condition=Q(recurring_invoice__isnull=False, recurring_run_date__isnull=False),
                name='unique_recurring_run_per_date',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'status'], name='billing_inv_user_id_41c7d5_idx'),
            models.Index(fields=['user', 'due_date'], name='billing_inv_user_id_9a0e6b_idx'),
            models.Index(fields=['client', 'status'], name='billing_inv_client__c5f218_idx'),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.client.name}"

    @property
    def is_overdue(self):
        if self.status not in self.OVERDUE_ELIGIBLE_STATUSES:
            return False
        return self.due_date < timezone.localdate() and self.balance_due > 0

    @property
    def effective_status(self):
        return self.Status.OVERDUE.value if self.is_overdue else self.status

    @property
    def can_edit(self):
        return self.status in self.EDITABLE_STATUSES

    @classmethod
    def overdue_q(cls, today=None):
        today = today or timezone.localdate()
        return Q(status__in=cls.OVERDUE_ELIGIBLE_STATUSES, due_date__lt=today, balance_due__gt=0)


class LineItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="items")
    description = models.CharField(max_length=500)
    quantity = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal('1.0000'))
    rate = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['position', 'id']

    def __str__(self):
        return self.description


class InvoiceActivity(models.Model):
    class ActionType(models.TextChoices):
        CREATED = "created", "Invoice Created"
        UPDATED = "updated", "Invoice Updated"
        SENT = "sent", "Invoice Sent"
        VIEWED = "viewed", "Invoice Viewed"
        STATUS_CHANGED = "status_changed", "Status Changed"
        PAYMENT_RECEIVED = "payment_received", "Payment Received"
        PAYMENT_FAILED = "payment_failed", "Payment Failed"
        PAYMENT_REFUNDED = "payment_refunded", "Payment Refunded"
        GENERATED = "generated", "Generated From Recurring Schedule"
        CANCELLED = "cancelled", "Invoice Cancelled"

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="activities")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=50, choices=ActionType.choices)
    description = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    is_system = models.BooleanField(default=False)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp', '-id']
        verbose_name_plural = "Invoice activities"

    def __str__(self):
        return f"{self.action} on {self.invoice_id}"


class RecurringInvoice(models.Model):
    class Frequency(models.TextChoices):
        WEEKLY = "weekly", "Weekly"
        BIWEEKLY = "biweekly", "Every 2 Weeks"
        MONTHLY = "monthly", "Monthly"
        QUARTERLY = "quarterly", "Quarterly"
        YEARLY = "yearly", "Yearly"

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PAUSED = "paused", "Paused"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    LIVE_STATUSES = (Status.ACTIVE, Status.PAUSED)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="recurring_invoices")
    # Null only once a finished schedule's template has been deleted.
    template_invoice = models.ForeignKey(
        Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name="recurring_templates"
    )
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="recurring_invoices")

    frequency = models.CharField(max_length=20, choices=Frequency.choices, default=Frequency.MONTHLY)
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    next_run_date = models.DateField(db_index=True)
    last_run_date = models.DateField(null=True, blank=True)

    auto_send = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE, db_index=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    invoices_generated = models.PositiveIntegerField(default=0)
    total_amount_generated = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'next_run_date'], name='billing_rec_status_3b9e41_idx'),
            models.Index(fields=['user', 'status'], name='billing_rec_user_id_8d2f07_idx'),
        ]

    def __str__(self):
        return f"Recurring #{self.id} - {self.client.name} ({self.frequency})"

    @property
    def is_terminal(self):
        return self.status in (self.Status.CANCELLED, self.Status.COMPLETED)


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    class Method(models.TextChoices):
        STRIPE = "stripe", "Stripe"
        PAYPAL = "paypal", "PayPal"
        MANUAL = "manual", "Manual"

    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    method = models.CharField(max_length=20, choices=Method.choices, default=Method.MANUAL)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    external_reference = models.CharField(max_length=255, blank=True, db_index=True)
    event_id = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['method', 'external_reference', 'status'],
                condition=~Q(external_reference=''),
                name='unique_payment_reference_per_status',
            ),
        ]

    def __str__(self):
        return f"Payment {self.id} for Invoice {self.invoice.invoice_number}"


class Expense(models.Model):
    class Category(models.TextChoices):
        ADVERTISING = "advertising", "Advertising & Marketing"
        SOFTWARE = "software", "Software & Subscriptions"
        OFFICE = "office", "Office Supplies"
        EQUIPMENT = "equipment", "Equipment"
        TRAVEL = "travel", "Travel"
        MEALS = "meals", "Meals & Entertainment"
        PROFESSIONAL = "professional", "Professional Services"
        UTILITIES = "utilities", "Utilities"
        RENT = "rent", "Rent & Lease"
        INSURANCE = "insurance", "Insurance"
        TAXES = "taxes", "Taxes & Licenses"
        SHIPPING = "shipping", "Shipping & Postage"
        CONTRACTORS = "contractors", "Contractors"
        EDUCATION = "education", "Education & Training"
        OTHER = "other", "Other"

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        CARD = "card", "Card"
        BANK_TRANSFER = "bank_transfer", "Bank Transfer"
        CHECK = "check", "Check"
        PAYPAL = "paypal", "PayPal"
        OTHER = "other", "Other"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="expenses")
    description = models.CharField(max_length=500)
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.OTHER, db_index=True)
    date = models.DateField(default=timezone.localdate, db_index=True)
    vendor = models.CharField(max_length=255, blank=True)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CARD)

    client = models.ForeignKey(Client, on_delete=models.SET_NULL, null=True, blank=True, related_name="expenses")
    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name="expenses")

    billable = models.BooleanField(default=False)
    reimbursable = models.BooleanField(default=False)
    tax_deductible = models.BooleanField(default=True)

    receipt_url = models.URLField(blank=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date', '-created_at']
        indexes = [
            models.Index(fields=['user', 'date'], name='billing_exp_user_id_2e7a90_idx'),
            models.Index(fields=['user', 'category'], name='billing_exp_user_id_f4b3c1_idx'),
        ]

    def __str__(self):
        return f"{self.description} ({self.amount} {self.currency})"


class Estimate(models.Model):
    """A quote sent ahead of work; accepted estimates convert into invoices."""

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        ACCEPTED = "accepted", "Accepted"
        DECLINED = "declined", "Declined"
        EXPIRED = "expired", "Expired"
        CONVERTED = "converted", "Converted"

    EDITABLE_STATUSES = (Status.DRAFT, Status.SENT)
    CONVERTIBLE_STATUSES = (Status.SENT, Status.ACCEPTED)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="estimates")
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="estimates")
    estimate_number = models.CharField(max_length=50, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True)

    issue_date = models.DateField(default=timezone.localdate)
    valid_until = models.DateField()
    currency = models.CharField(max_length=3, default="USD")

    subtotal = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    discount_type = models.CharField(max_length=20, choices=Invoice.DiscountType.choices, default=Invoice.DiscountType.FIXED)
    discount_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    discount_value = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))

    notes = models.TextField(blank=True)
    terms = models.TextField(blank=True)

    sent_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    converted_at = models.DateTimeField(null=True, blank=True)
    converted_invoice = models.OneToOneField(
        Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name="source_estimate"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['user', 'estimate_number'], name='unique_estimate_number_per_user'),
        ]
        indexes = [
            models.Index(fields=['user', 'status'], name='billing_est_user_id_5c8e12_idx'),
        ]

    def __str__(self):
        return f"{self.estimate_number} - {self.client.name}"

    @property
    def is_expired(self):
        if self.status == self.Status.EXPIRED:
            return True
        return self.status == self.Status.SENT and self.valid_until < timezone.localdate()

    @property
    def effective_status(self):
        return self.Status.EXPIRED.value if self.is_expired else self.status

    @property
    def can_edit(self):
        return self.status in self.EDITABLE_STATUSES


class EstimateItem(models.Model):
    estimate = models.ForeignKey(Estimate, on_delete=models.CASCADE, related_name="items")
    description = models.CharField(max_length=500)
    quantity = models.DecimalField(max_digits=15, decimal_places=4, default=Decimal('1.0000'))
    rate = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    amount = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['position', 'id']

    def __str__(self):
        return self.description


class TimeEntry(models.Model):
    """Tracked work; billable entries are rolled into invoice line items once."""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="time_entries")
    client = models.ForeignKey(Client, on_delete=models.SET_NULL, null=True, blank=True, related_name="time_entries")
    description = models.CharField(max_length=500)
    project_name = models.CharField(max_length=255, blank=True)

    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)
    duration_seconds = models.PositiveIntegerField(default=0)
    hourly_rate = models.DecimalField(max_digits=15, decimal_places=2, default=Decimal('0.00'))
    billable = models.BooleanField(default=True)

    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name="time_entries")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-started_at', '-id']
        verbose_name_plural = "Time entries"
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=Q(ended_at__isnull=True),
                name='one_running_timer_per_user',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'started_at'], name='billing_tim_user_id_a71d4e_idx'),
            models.Index(fields=['user', 'billable'], name='billing_tim_user_id_3f0b9c_idx'),
        ]

    def __str__(self):
        return f"{self.description} ({self.duration_seconds}s)"

    @property
    def is_running(self):
        return self.ended_at is None

    @property
    def is_invoiced(self):
        return self.invoice_id is not None

    @property
    def hours(self):
        return (Decimal(self.duration_seconds) / Decimal(3600)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @property
    def amount(self):
        return (self.hours * self.hourly_rate).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
