from django.contrib import admin

from .models import (
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
from .services.payment_service import PaymentReconciliationService


class LineItemInline(admin.TabularInline):
    model = LineItem
    extra = 0
    readonly_fields = ('amount',)


@admin.register(BusinessProfile)
class BusinessProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'business_name', 'default_currency', 'invoice_prefix', 'next_invoice_number')
    search_fields = ('business_name', 'user__username', 'user__email')


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'company', 'user', 'is_active', 'portal_enabled', 'created_at')
    list_filter = ('is_active', 'portal_enabled')
    search_fields = ('name', 'email', 'company')
    readonly_fields = ('portal_token', 'portal_token_created_at', 'created_at', 'updated_at')


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'client', 'status', 'total', 'balance_due', 'due_date', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('invoice_number', 'client__name', 'client__email')
    readonly_fields = (
        'subtotal', 'discount_value', 'tax_amount', 'total', 'amount_paid', 'balance_due',
        'ledger_balance', 'created_at', 'updated_at',
    )
    inlines = [LineItemInline]

    @admin.display(description="Ledger balance")
    def ledger_balance(self, obj):
        if obj.pk is None:
            return "-"
        balance = PaymentReconciliationService.ledger_balance(obj)
        if balance != obj.amount_paid:
            return f"{balance} (amount paid is {obj.amount_paid})"
        return balance


@admin.register(InvoiceActivity)
class InvoiceActivityAdmin(admin.ModelAdmin):
    list_display = ('invoice', 'action', 'user', 'is_system', 'timestamp')
    list_filter = ('action', 'is_system')


@admin.register(RecurringInvoice)
class RecurringInvoiceAdmin(admin.ModelAdmin):
    list_display = ('id', 'client', 'frequency', 'status', 'next_run_date', 'last_run_date', 'invoices_generated')
    list_filter = ('status', 'frequency')
    search_fields = ('client__name',)
    readonly_fields = ('invoices_generated', 'total_amount_generated', 'created_at', 'updated_at')


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'invoice', 'amount', 'currency', 'method', 'status', 'external_reference', 'created_at')
    list_filter = ('method', 'status')
    search_fields = ('external_reference', 'event_id', 'invoice__invoice_number')

    # The ledger is append-only.
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ('description', 'amount', 'currency', 'category', 'date', 'user')
    list_filter = ('category', 'billable', 'reimbursable', 'tax_deductible')
    search_fields = ('description', 'vendor', 'notes')


class EstimateItemInline(admin.TabularInline):
    model = EstimateItem
    extra = 0
    readonly_fields = ('amount',)


@admin.register(Estimate)
class EstimateAdmin(admin.ModelAdmin):
    list_display = ('estimate_number', 'client', 'status', 'total', 'valid_until', 'converted_invoice', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('estimate_number', 'client__name', 'client__email')
    readonly_fields = ('subtotal', 'discount_value', 'tax_amount', 'total', 'converted_invoice', 'created_at', 'updated_at')
    inlines = [EstimateItemInline]


@admin.register(TimeEntry)
class TimeEntryAdmin(admin.ModelAdmin):
    list_display = ('description', 'client', 'user', 'started_at', 'duration_seconds', 'hourly_rate', 'billable', 'invoice')
    list_filter = ('billable',)
    search_fields = ('description', 'project_name', 'client__name')
