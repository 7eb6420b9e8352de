"""
Invoice email delivery.

Explicit sends from the owning user are synchronous so provider failures reach
the caller. Scheduler-driven sends are fire-and-forget: they run on a small
background thread pool and only ever log failures.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import close_old_connections
from django.template.loader import render_to_string
from django.urls import reverse
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Disposition,
    FileContent,
    FileName,
    FileType,
    From,
    Mail,
    ReplyTo,
    To,
)

from ..currency import format_currency
from ..models import Invoice
from ..validation import ExternalServiceError, InvalidTransitionError, ValidationError
from .invoice_service import InvoiceService
from .profile_service import BusinessProfileService

logger = logging.getLogger(__name__)

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        with _executor_lock:
            if _executor is None:
                _executor = ThreadPoolExecutor(
                    max_workers=getattr(settings, "EMAIL_DISPATCH_WORKERS", 2),
                    thread_name_prefix="invoice_email",
                )
    return _executor


class InvoiceEmailService:
    """Builds and delivers the HTML invoice email through SendGrid."""

    def __init__(self):
        self.api_key = getattr(settings, "SENDGRID_API_KEY", "")
        self.from_email = getattr(settings, "DEFAULT_FROM_EMAIL", "invoices@example.com")
        self.is_configured = bool(self.api_key)

    @staticmethod
    def decode_pdf(pdf_base64: Optional[str]) -> Optional[str]:
        """Accept raw base64 or a ``data:application/pdf;base64,`` URI; return clean base64."""
        if not pdf_base64:
            return None
        payload = pdf_base64.split(",", 1)[1] if pdf_base64.startswith("data:") else pdf_base64
        try:
            base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("PDF attachment is not valid base64", field_name='pdf_attachment')
        return payload

    @staticmethod
    def portal_url(invoice: Invoice) -> Optional[str]:
        client = invoice.client
        if not (client.portal_enabled and client.portal_token):
            return None
        path = reverse('portal-invoice-detail', kwargs={'token': client.portal_token, 'invoice_id': invoice.pk})
        return f"{getattr(settings, 'SITE_URL', '')}{path}"

    def build_context(self, invoice: Invoice, message: str = "") -> Dict[str, Any]:
        profile = BusinessProfileService.get_profile(invoice.user)
        currency = invoice.currency
        return {
            "invoice": invoice,
            "business_name": profile.display_name,
            "business_email": profile.business_email,
            "client": invoice.client,
            "message": message,
            "items": [
                {
                    "description": item.description,
                    "quantity": item.quantity.normalize(),
                    "rate": format_currency(item.rate, currency),
                    "amount": format_currency(item.amount, currency),
                }
                for item in invoice.items.all()
            ],
            "subtotal": format_currency(invoice.subtotal, currency),
            "discount": format_currency(invoice.discount_value, currency) if invoice.discount_value else None,
            "tax": format_currency(invoice.tax_amount, currency) if invoice.tax_amount else None,
            "total": format_currency(invoice.total, currency),
            "amount_paid": format_currency(invoice.amount_paid, currency) if invoice.amount_paid else None,
            "balance_due": format_currency(invoice.balance_due, currency),
            "portal_url": self.portal_url(invoice),
        }

    def build_message(
        self,
        invoice: Invoice,
        to: str,
        subject: Optional[str] = None,
        message: str = "",
        pdf_base64: Optional[str] = None,
    ) -> Mail:
        context = self.build_context(invoice, message)
        html = render_to_string("billing/emails/invoice.html", context)
        subject = subject or f"Invoice {invoice.invoice_number} from {context['business_name']}"

        mail = Mail(
            from_email=From(self.from_email, context['business_name']),
            to_emails=To(to),
            subject=subject,
            html_content=html,
        )
        if context['business_email']:
            mail.reply_to = ReplyTo(context['business_email'])

        attachment = self.decode_pdf(pdf_base64)
        if attachment:
            mail.attachment = Attachment(
                FileContent(attachment),
                FileName(f"Invoice_{invoice.invoice_number}.pdf"),
                FileType("application/pdf"),
                Disposition("attachment"),
            )
        return mail

    def send(self, mail: Mail) -> int:
        if not self.is_configured:
            raise ExternalServiceError("email", "SendGrid API key is not configured")
        try:
            response = SendGridAPIClient(self.api_key).send(mail)
        except Exception as e:
            logger.exception("SendGrid delivery failed")
            raise ExternalServiceError("email", f"Delivery failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"SendGrid returned error status: {response.status_code}")
            raise ExternalServiceError("email", f"Provider returned status {response.status_code}")
        return response.status_code


class NotificationService:
    @staticmethod
    def send_invoice(
        invoice: Invoice,
        user=None,
        to: Optional[str] = None,
        subject: Optional[str] = None,
        message: str = "",
        pdf_base64: Optional[str] = None,
    ) -> Invoice:
        """Deliver the invoice now; on success a draft becomes sent."""
        if invoice.status == Invoice.Status.CANCELLED:
            raise InvalidTransitionError(invoice.status, Invoice.Status.SENT)

        recipient = (to or invoice.client.email or "").strip()
        if not recipient:
            raise ValidationError("Recipient email is required", field_name='to')

        email_service = InvoiceEmailService()
        mail = email_service.build_message(invoice, recipient, subject, message, pdf_base64)
        email_service.send(mail)

        logger.info(f"Invoice {invoice.id} emailed to {recipient}")
        return InvoiceService.mark_sent(invoice, user=user, recipient=recipient)

    @classmethod
    def queue_invoice_email(cls, invoice_id: int) -> Future:
        """Fire-and-forget delivery; never raises into the caller."""
        return _get_executor().submit(cls._deliver_in_background, invoice_id)

    @classmethod
    def _deliver_in_background(cls, invoice_id: int) -> bool:
        close_old_connections()
        try:
            invoice = Invoice.objects.select_related('client', 'user').get(pk=invoice_id)
            cls.send_invoice(invoice)
            return True
        except Invoice.DoesNotExist:
            logger.warning(f"Queued email skipped: invoice {invoice_id} no longer exists")
        except Exception:
            logger.exception(f"Background delivery of invoice {invoice_id} failed")
        finally:
            close_old_connections()
        return False
