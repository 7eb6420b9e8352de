"""
Billing services layer.

Views parse requests and map responses; every business rule, transaction and
side effect lives in these services.
"""

from .client_service import ClientService, PortalAction
from .currency_service import ExchangeRateService, get_exchange_rate_service
from .estimate_service import EstimateService
from .expense_service import ExpenseService
from .invoice_service import InvoiceService
from .notification_service import InvoiceEmailService, NotificationService
from .payment_service import PaymentReconciliationService
from .portal_service import ClientPortalService
from .profile_service import BusinessProfileService
from .recurring_service import RecurringInvoiceGenerator, RecurringInvoiceService
from .time_tracking_service import TimeTrackingService

__all__ = [
    "BusinessProfileService",
    "ClientPortalService",
    "ClientService",
    "EstimateService",
    "ExchangeRateService",
    "ExpenseService",
    "InvoiceEmailService",
    "InvoiceService",
    "NotificationService",
    "PaymentReconciliationService",
    "PortalAction",
    "RecurringInvoiceGenerator",
    "RecurringInvoiceService",
    "TimeTrackingService",
    "get_exchange_rate_service",
]
