"""API URL routing for InvoicePro."""
from django.urls import path
from rest_framework.routers import DefaultRouter

from .. import webhook_views
from . import public_views
from .views import (
    BusinessProfileView,
    ClientViewSet,
    EstimateViewSet,
    ExpenseViewSet,
    InvoiceViewSet,
    RecurringInvoiceViewSet,
    TimeEntryViewSet,
)

router = DefaultRouter()
router.register(r'invoices', InvoiceViewSet, basename='invoices')
router.register(r'clients', ClientViewSet, basename='clients')
router.register(r'recurring', RecurringInvoiceViewSet, basename='recurring')
router.register(r'expenses', ExpenseViewSet, basename='expenses')
router.register(r'estimates', EstimateViewSet, basename='estimates')
router.register(r'time-entries', TimeEntryViewSet, basename='time-entries')

urlpatterns = [
    path('recurring/run/', public_views.run_recurring, name='recurring-run'),
    path('business-profile/', BusinessProfileView.as_view(), name='business-profile'),
    path('currencies/', public_views.currency_list, name='currency-list'),
    path('currencies/convert/', public_views.currency_convert, name='currency-convert'),
    path('currencies/rates/', public_views.currency_rates, name='currency-rates'),
    path('portal/<str:token>/', public_views.portal_detail, name='portal-detail'),
    path('portal/<str:token>/invoices/<int:invoice_id>/', public_views.portal_invoice_detail, name='portal-invoice-detail'),
    path('portal/<str:token>/invoices/<int:invoice_id>/pay/', public_views.portal_invoice_pay, name='portal-invoice-pay'),
    path('webhooks/stripe/', webhook_views.stripe_webhook, name='api-stripe-webhook'),
    path('webhooks/paypal/', webhook_views.paypal_webhook, name='api-paypal-webhook'),
] + router.urls
