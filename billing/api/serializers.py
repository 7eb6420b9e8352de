from decimal import Decimal

from rest_framework import serializers

from ..currency import CURRENCY_CHOICES
from ..models import (
    BusinessProfile,
    Client,
    Estimate,
    EstimateItem,
    Expense,
    Invoice,
    InvoiceActivity,
    LineItem,
    Payment,
    RecurringInvoice,
    TimeEntry,
)
from ..services.client_service import PortalAction
from ..services.invoice_service import InvoiceService


class LineItemSerializer(serializers.ModelSerializer):
    description = serializers.CharField(max_length=500, min_length=1)
    quantity = serializers.DecimalField(max_digits=15, decimal_places=4, min_value=Decimal("0.0001"))
    rate = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal("0"))

    class Meta:
        model = LineItem
        fields = ["id", "description", "quantity", "rate", "amount", "position"]
        read_only_fields = ["id", "amount", "position"]


class ClientSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "name", "email", "company"]
        read_only_fields = fields


# ------------------------------
# Invoices
# ------------------------------

class InvoiceListSerializer(serializers.ModelSerializer):
    client = ClientSummarySerializer(read_only=True)
    effective_status = serializers.CharField(read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "client",
            "status",
            "effective_status",
            "issue_date",
            "due_date",
            "currency",
            "total",
            "amount_paid",
            "balance_due",
            "recurring_invoice",
            "created_at",
        ]
        read_only_fields = fields


class InvoiceDetailSerializer(serializers.ModelSerializer):
    client = ClientSummarySerializer(read_only=True)
    items = LineItemSerializer(many=True, read_only=True)
    effective_status = serializers.CharField(read_only=True)
    available_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "client",
            "status",
            "effective_status",
            "available_transitions",
            "issue_date",
            "due_date",
            "payment_terms_days",
            "currency",
            "subtotal",
            "discount_type",
            "discount_amount",
            "discount_value",
            "tax_rate",
            "tax_amount",
            "total",
            "amount_paid",
            "balance_due",
            "notes",
            "terms",
            "items",
            "recurring_invoice",
            "recurring_run_date",
            "sent_at",
            "viewed_at",
            "paid_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_available_transitions(self, obj) -> list:
        return InvoiceService.available_user_transitions(obj)


class InvoiceWriteSerializer(serializers.Serializer):
    """Input for create/update. Totals are always computed server-side and never accepted."""

    client_id = serializers.IntegerField(required=False)
    client_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    client_email = serializers.EmailField(required=False, allow_blank=True)
    client_company = serializers.CharField(max_length=255, required=False, allow_blank=True)
    client_address = serializers.CharField(required=False, allow_blank=True)

    invoice_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    issue_date = serializers.DateField(required=False)
    due_date = serializers.DateField(required=False)
    payment_terms_days = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=365)
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)

    discount_type = serializers.ChoiceField(choices=Invoice.DiscountType.choices, required=False)
    discount_amount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal("0"), required=False)
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    terms = serializers.CharField(required=False, allow_blank=True)

    items = LineItemSerializer(many=True, required=False)


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[Invoice.Status.SENT, Invoice.Status.CANCELLED])
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class InvoiceSendSerializer(serializers.Serializer):
    to = serializers.EmailField(required=False, allow_blank=True)
    subject = serializers.CharField(max_length=255, required=False, allow_blank=True)
    message = serializers.CharField(required=False, allow_blank=True, default="")
    pdf_attachment = serializers.CharField(required=False, allow_blank=True)


class InvoiceHistorySerializer(serializers.ModelSerializer):
    action_display = serializers.CharField(source="get_action_display", read_only=True)
    user_email = serializers.EmailField(source="user.email", read_only=True, allow_null=True, default=None)

    class Meta:
        model = InvoiceActivity
        fields = [
            "id",
            "action",
            "action_display",
            "description",
            "metadata",
            "user_email",
            "is_system",
            "timestamp",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "amount",
            "currency",
            "method",
            "status",
            "external_reference",
            "error_message",
            "created_at",
        ]
        read_only_fields = fields


# ------------------------------
# Clients
# ------------------------------

class ClientSerializer(serializers.ModelSerializer):
    invoice_count = serializers.IntegerField(read_only=True)
    total_invoiced = serializers.DecimalField(max_digits=15, decimal_places=2, read_only=True)
    total_paid = serializers.DecimalField(max_digits=15, decimal_places=2, read_only=True)
    outstanding = serializers.DecimalField(max_digits=15, decimal_places=2, read_only=True)
    last_invoice_date = serializers.DateField(read_only=True)

    class Meta:
        model = Client
        fields = [
            "id",
            "name",
            "email",
            "phone",
            "company",
            "tax_id",
            "address",
            "city",
            "state",
            "postal_code",
            "country",
            "default_currency",
            "payment_terms_days",
            "default_hourly_rate",
            "notes",
            "tags",
            "is_active",
            "portal_enabled",
            "portal_token",
            "portal_token_created_at",
            "invoice_count",
            "total_invoiced",
            "total_paid",
            "outstanding",
            "last_invoice_date",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ClientWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True)
    company = serializers.CharField(max_length=255, required=False, allow_blank=True)
    tax_id = serializers.CharField(max_length=50, required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    city = serializers.CharField(max_length=100, required=False, allow_blank=True)
    state = serializers.CharField(max_length=100, required=False, allow_blank=True)
    postal_code = serializers.CharField(max_length=20, required=False, allow_blank=True)
    country = serializers.CharField(max_length=100, required=False, allow_blank=True)
    default_currency = serializers.CharField(max_length=3, required=False)
    payment_terms_days = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=365)
    default_hourly_rate = serializers.DecimalField(
        max_digits=15, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    tags = serializers.ListField(child=serializers.CharField(max_length=50), required=False)
    is_active = serializers.BooleanField(required=False)


class ClientPortalActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=[a.value for a in PortalAction])


# ------------------------------
# Client portal (redacted views)
# ------------------------------

class PortalClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["name", "company", "email"]
        read_only_fields = fields


class PortalLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = LineItem
        fields = ["description", "quantity", "rate", "amount"]
        read_only_fields = fields


class PortalInvoiceSerializer(serializers.ModelSerializer):
    status = serializers.CharField(source="effective_status", read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "status",
            "issue_date",
            "due_date",
            "currency",
            "total",
            "amount_paid",
            "balance_due",
        ]
        read_only_fields = fields


class PortalInvoiceDetailSerializer(PortalInvoiceSerializer):
    items = PortalLineItemSerializer(many=True, read_only=True)

    class Meta(PortalInvoiceSerializer.Meta):
        fields = PortalInvoiceSerializer.Meta.fields + [
            "subtotal",
            "discount_value",
            "tax_rate",
            "tax_amount",
            "notes",
            "terms",
            "items",
        ]
        read_only_fields = fields


# ------------------------------
# Recurring invoices
# ------------------------------

class RecurringInvoiceSerializer(serializers.ModelSerializer):
    client = ClientSummarySerializer(read_only=True)
    template_invoice_number = serializers.CharField(source="template_invoice.invoice_number", read_only=True, default=None)

    class Meta:
        model = RecurringInvoice
        fields = [
            "id",
            "template_invoice",
            "template_invoice_number",
            "client",
            "frequency",
            "start_date",
            "end_date",
            "next_run_date",
            "last_run_date",
            "auto_send",
            "status",
            "paused_at",
            "cancelled_at",
            "invoices_generated",
            "total_amount_generated",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class RecurringInvoiceWriteSerializer(serializers.Serializer):
    template_invoice_id = serializers.IntegerField(required=False)
    client_id = serializers.IntegerField(required=False)
    frequency = serializers.CharField(max_length=20, required=False)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False, allow_null=True)
    auto_send = serializers.BooleanField(required=False)


# ------------------------------
# Expenses
# ------------------------------

class ExpenseSerializer(serializers.ModelSerializer):
    category_display = serializers.CharField(source="get_category_display", read_only=True)
    client_name = serializers.CharField(source="client.name", read_only=True, default=None)
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True, default=None)

    class Meta:
        model = Expense
        fields = [
            "id",
            "description",
            "amount",
            "currency",
            "category",
            "category_display",
            "date",
            "vendor",
            "payment_method",
            "client",
            "client_name",
            "invoice",
            "invoice_number",
            "billable",
            "reimbursable",
            "tax_deductible",
            "receipt_url",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ExpenseWriteSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=500, required=False)
    amount = serializers.DecimalField(max_digits=15, decimal_places=2, required=False)
    currency = serializers.CharField(max_length=3, required=False)
    category = serializers.CharField(max_length=20, required=False)
    date = serializers.DateField(required=False)
    vendor = serializers.CharField(max_length=255, required=False, allow_blank=True)
    payment_method = serializers.ChoiceField(choices=Expense.PaymentMethod.choices, required=False)
    client_id = serializers.IntegerField(required=False, allow_null=True)
    invoice_id = serializers.IntegerField(required=False, allow_null=True)
    billable = serializers.BooleanField(required=False)
    reimbursable = serializers.BooleanField(required=False)
    tax_deductible = serializers.BooleanField(required=False)
    receipt_url = serializers.URLField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


# ------------------------------
# Estimates
# ------------------------------

class EstimateItemSerializer(LineItemSerializer):
    class Meta(LineItemSerializer.Meta):
        model = EstimateItem


class EstimateSerializer(serializers.ModelSerializer):
    client = ClientSummarySerializer(read_only=True)
    items = EstimateItemSerializer(many=True, read_only=True)
    effective_status = serializers.CharField(read_only=True)
    converted_invoice_number = serializers.CharField(
        source="converted_invoice.invoice_number", read_only=True, default=None,
    )

    class Meta:
        model = Estimate
        fields = [
            "id",
            "estimate_number",
            "client",
            "status",
            "effective_status",
            "issue_date",
            "valid_until",
            "currency",
            "subtotal",
            "discount_type",
            "discount_amount",
            "discount_value",
            "tax_rate",
            "tax_amount",
            "total",
            "notes",
            "terms",
            "items",
            "sent_at",
            "accepted_at",
            "declined_at",
            "converted_at",
            "converted_invoice",
            "converted_invoice_number",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class EstimateWriteSerializer(serializers.Serializer):
    client_id = serializers.IntegerField(required=False)
    client_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    client_email = serializers.EmailField(required=False, allow_blank=True)

    issue_date = serializers.DateField(required=False)
    valid_until = serializers.DateField(required=False)
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)

    discount_type = serializers.ChoiceField(choices=Invoice.DiscountType.choices, required=False)
    discount_amount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal("0"), required=False)
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    terms = serializers.CharField(required=False, allow_blank=True)

    items = EstimateItemSerializer(many=True, required=False)


class EstimateStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[
        Estimate.Status.SENT, Estimate.Status.ACCEPTED, Estimate.Status.DECLINED, Estimate.Status.EXPIRED,
    ])


# ------------------------------
# Time tracking
# ------------------------------

class TimeEntrySerializer(serializers.ModelSerializer):
    client_name = serializers.CharField(source="client.name", read_only=True, default=None)
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True, default=None)
    hours = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    amount = serializers.DecimalField(max_digits=15, decimal_places=2, read_only=True)
    is_running = serializers.BooleanField(read_only=True)

    class Meta:
        model = TimeEntry
        fields = [
            "id",
            "description",
            "project_name",
            "client",
            "client_name",
            "started_at",
            "ended_at",
            "duration_seconds",
            "hours",
            "hourly_rate",
            "amount",
            "billable",
            "is_running",
            "invoice",
            "invoice_number",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class TimeEntryWriteSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=500, required=False)
    project_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    client_id = serializers.IntegerField(required=False, allow_null=True)
    started_at = serializers.DateTimeField(required=False)
    ended_at = serializers.DateTimeField(required=False, allow_null=True)
    duration_seconds = serializers.IntegerField(required=False, min_value=0)
    hourly_rate = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal("0"), required=False)
    billable = serializers.BooleanField(required=False)


class TimeEntryInvoiceSerializer(serializers.Serializer):
    entry_ids = serializers.ListField(child=serializers.IntegerField(), min_length=1)
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), required=False,
    )
    due_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


# ------------------------------
# Business profile
# ------------------------------

class BusinessProfileSerializer(serializers.ModelSerializer):
    class Meta:
        model = BusinessProfile
        fields = [
            "business_name",
            "business_email",
            "business_phone",
            "business_address",
            "tax_id",
            "default_currency",
            "default_tax_rate",
            "default_payment_terms_days",
            "default_hourly_rate",
            "default_notes",
            "default_terms",
            "invoice_prefix",
            "next_invoice_number",
            "estimate_prefix",
            "next_estimate_number",
            "updated_at",
        ]
        read_only_fields = ["next_invoice_number", "next_estimate_number", "updated_at"]
