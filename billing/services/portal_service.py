import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.urls import reverse

from .. import stripe_service
from ..models import Client, Invoice
from ..validation import BusinessRuleError, NotFoundError
from .client_service import ClientService
from .invoice_service import InvoiceService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)

HIDDEN_STATUSES = (Invoice.Status.DRAFT, Invoice.Status.CANCELLED)
UNPAYABLE_STATUSES = (Invoice.Status.DRAFT, Invoice.Status.CANCELLED, Invoice.Status.PAID, Invoice.Status.REFUNDED)


class ClientPortalService:
    """Read-only invoice access for a client holding a portal token."""

    @staticmethod
    def get_client(token: str) -> Client:
        return ClientService.get_by_portal_token(token)

    @staticmethod
    def visible_invoices(client: Client):
        return (
            client.invoices.exclude(status__in=HIDDEN_STATUSES)
            .select_related('client')
            .order_by('-issue_date', '-id')
        )

    @classmethod
    def get_invoice(cls, client: Client, invoice_id) -> Invoice:
        try:
            return cls.visible_invoices(client).prefetch_related('items').get(pk=invoice_id)
        except (Invoice.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Invoice not found")

    @classmethod
    def get_overview(cls, token: str) -> Dict[str, Any]:
        client = cls.get_client(token)
        profile = BusinessProfileService.get_profile(client.user)
        return {
            'business_name': profile.display_name,
            'client': client,
            'invoices': list(cls.visible_invoices(client)),
        }

    @classmethod
    def view_invoice(cls, token: str, invoice_id, ip_address: Optional[str] = None) -> Invoice:
        client = cls.get_client(token)
        invoice = cls.get_invoice(client, invoice_id)
        return InvoiceService.record_view(invoice, ip_address=ip_address)

    @classmethod
    def start_payment(cls, token: str, invoice_id) -> Dict[str, str]:
        client = cls.get_client(token)
        invoice = cls.get_invoice(client, invoice_id)
        if invoice.status in UNPAYABLE_STATUSES or invoice.balance_due <= 0:
            raise BusinessRuleError(f"Invoice {invoice.invoice_number} has no balance to pay")

        return_url = f"{getattr(settings, 'SITE_URL', '')}" + reverse(
            'portal-invoice-detail', kwargs={'token': token, 'invoice_id': invoice.pk}
        )
        session = stripe_service.get_stripe_service().create_checkout_session(
            invoice,
            success_url=f"{return_url}?payment=success",
            cancel_url=f"{return_url}?payment=cancelled",
        )
        logger.info(f"Portal payment started for invoice {invoice.id}")
        return {'checkout_url': session['url'], 'session_id': session['id']}
