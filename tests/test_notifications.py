import base64
from unittest.mock import MagicMock, patch

import pytest

from billing.models import Invoice, InvoiceActivity
from billing.services.client_service import ClientService
from billing.services.notification_service import InvoiceEmailService, NotificationService
from billing.validation import ExternalServiceError, InvalidTransitionError, ValidationError
from tests.factories import InvoiceFactory


@pytest.fixture
def sendgrid(settings):
    settings.SENDGRID_API_KEY = "SG.test-key"
    with patch("billing.services.notification_service.SendGridAPIClient") as client_class:
        client_class.return_value.send.return_value = MagicMock(status_code=202)
        yield client_class


@pytest.fixture
def draft(user, customer):
    return InvoiceFactory(user=user, client=customer)


@pytest.mark.django_db
class TestSendInvoice:
    def test_send_marks_draft_sent(self, api_client, sendgrid, draft):
        response = api_client.post(f"/api/v1/invoices/{draft.id}/send/", {"message": "Thanks!"}, format="json")

        assert response.status_code == 200
        draft.refresh_from_db()
        assert draft.status == Invoice.Status.SENT
        assert draft.sent_at is not None
        sent = draft.activities.get(action=InvoiceActivity.ActionType.SENT)
        assert sent.metadata["recipient"] == draft.client.email
        sendgrid.assert_called_once_with("SG.test-key")

    def test_resend_keeps_status(self, sendgrid, user, customer):
        partial = InvoiceFactory(user=user, client=customer, status="partial")
        NotificationService.send_invoice(partial, user=user, to="accounts@globex.example")

        partial.refresh_from_db()
        assert partial.status == Invoice.Status.PARTIAL

    def test_provider_error_leaves_draft(self, api_client, sendgrid, draft):
        sendgrid.return_value.send.return_value = MagicMock(status_code=500)

        response = api_client.post(f"/api/v1/invoices/{draft.id}/send/", {}, format="json")

        assert response.status_code == 502
        draft.refresh_from_db()
        assert draft.status == Invoice.Status.DRAFT

    def test_provider_exception(self, sendgrid, draft):
        sendgrid.return_value.send.side_effect = RuntimeError("connection reset")
        with pytest.raises(ExternalServiceError):
            NotificationService.send_invoice(draft)

    def test_unconfigured_provider(self, settings, draft):
        settings.SENDGRID_API_KEY = ""
        with pytest.raises(ExternalServiceError):
            NotificationService.send_invoice(draft)

    def test_cancelled_invoice_is_not_sent(self, sendgrid, user, customer):
        cancelled = InvoiceFactory(user=user, client=customer, status="cancelled")
        with pytest.raises(InvalidTransitionError):
            NotificationService.send_invoice(cancelled)
        sendgrid.return_value.send.assert_not_called()


@pytest.mark.django_db
class TestMessage:
    def test_message_contents(self, settings, draft):
        settings.SENDGRID_API_KEY = "SG.test-key"
        ClientService.apply_portal_action(draft.client, "enable_portal")
        draft.refresh_from_db()

        mail = InvoiceEmailService().build_message(draft, "ap@globex.example", message="See attached.")
        body = mail.get()

        assert body["subject"] == f"Invoice {draft.invoice_number} from testuser"
        html = body["content"][0]["value"]
        assert "$500.00" in html
        assert "See attached." in html
        assert draft.client.portal_token in html

    def test_pdf_attachment_from_data_uri(self, draft):
        pdf = base64.b64encode(b"%PDF-1.4 test").decode()
        mail = InvoiceEmailService().build_message(draft, "ap@globex.example", pdf_base64=f"data:application/pdf;base64,{pdf}")

        attachment = mail.get()["attachments"][0]
        assert attachment["content"] == pdf
        assert attachment["filename"] == f"Invoice_{draft.invoice_number}.pdf"

    def test_invalid_pdf(self, draft):
        with pytest.raises(ValidationError):
            InvoiceEmailService().build_message(draft, "ap@globex.example", pdf_base64="not base64!")


@pytest.mark.django_db(transaction=True)
class TestBackgroundDelivery:
    def test_failure_is_logged_not_raised(self, settings, user, customer):
        settings.SENDGRID_API_KEY = ""
        invoice = InvoiceFactory(user=user, client=customer)

        assert NotificationService._deliver_in_background(invoice.id) is False
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.DRAFT

    def test_missing_invoice(self, db):
        assert NotificationService._deliver_in_background(999999) is False

    def test_success(self, sendgrid, user, customer):
        invoice = InvoiceFactory(user=user, client=customer)

        assert NotificationService._deliver_in_background(invoice.id) is True
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.SENT
