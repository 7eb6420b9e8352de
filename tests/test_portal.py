"""
Client portal: token access, view tracking and Stripe Checkout payments.
"""
from unittest.mock import MagicMock, patch

import pytest
import stripe

from billing.models import Invoice, InvoiceActivity
from billing.services.client_service import ClientService
from tests.factories import InvoiceFactory


@pytest.fixture
def portal_client(customer):
    return ClientService.apply_portal_action(customer, "enable_portal")


def portal_url(client, invoice=None, suffix=""):
    url = f"/api/v1/portal/{client.portal_token}/"
    if invoice is not None:
        url += f"invoices/{invoice.id}/{suffix}"
    return url


@pytest.mark.django_db
class TestPortalAccess:
    def test_overview_hides_drafts_and_cancelled(self, anon_client, user, portal_client, sent_invoice):
        InvoiceFactory(user=user, client=portal_client, status="draft")
        InvoiceFactory(user=user, client=portal_client, status="cancelled")

        response = anon_client.get(portal_url(portal_client))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["client"]["email"] == portal_client.email
        assert [i["invoice_number"] for i in data["invoices"]] == [sent_invoice.invoice_number]

    def test_unknown_token(self, anon_client, db):
        assert anon_client.get(f"/api/v1/portal/{'0' * 64}/").status_code == 404
        assert anon_client.get("/api/v1/portal/short/").status_code == 404

    def test_draft_invoice_is_not_found(self, anon_client, user, portal_client):
        draft = InvoiceFactory(user=user, client=portal_client)
        assert anon_client.get(portal_url(portal_client, draft)).status_code == 404

    def test_other_clients_invoice_is_not_found(self, anon_client, user, portal_client):
        other = InvoiceFactory(user=user, status="sent")
        assert anon_client.get(portal_url(portal_client, other)).status_code == 404


@pytest.mark.django_db
class TestViewTracking:
    def test_first_view_marks_viewed_once(self, anon_client, portal_client, sent_invoice):
        first = anon_client.get(portal_url(portal_client, sent_invoice), REMOTE_ADDR="203.0.113.7")
        anon_client.get(portal_url(portal_client, sent_invoice))

        assert first.json()["data"]["status"] == "viewed"
        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.VIEWED
        assert sent_invoice.viewed_at is not None
        views = sent_invoice.activities.filter(action=InvoiceActivity.ActionType.VIEWED)
        assert views.count() == 1
        assert views.get().ip_address == "203.0.113.7"

    def test_paid_invoice_is_not_downgraded(self, anon_client, user, portal_client):
        paid = InvoiceFactory(user=user, client=portal_client, status="paid")
        anon_client.get(portal_url(portal_client, paid))

        paid.refresh_from_db()
        assert paid.status == Invoice.Status.PAID


@pytest.mark.django_db
class TestPortalPayment:
    def test_checkout_session(self, anon_client, settings, portal_client, sent_invoice):
        settings.STRIPE_SECRET_KEY = "sk_test_123"
        session = MagicMock(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")

        with patch("billing.stripe_service.stripe.checkout.Session.create", return_value=session) as create:
            response = anon_client.post(portal_url(portal_client, sent_invoice, "pay/"))

        assert response.status_code == 200
        assert response.json()["data"] == {"checkout_url": session.url, "session_id": "cs_test_1"}
        kwargs = create.call_args.kwargs
        assert kwargs["metadata"]["invoice_id"] == str(sent_invoice.id)
        assert kwargs["payment_intent_data"]["metadata"]["invoice_id"] == str(sent_invoice.id)
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 50000
        assert kwargs["success_url"].endswith("?payment=success")

    def test_paid_invoice_cannot_be_paid(self, anon_client, settings, user, portal_client):
        settings.STRIPE_SECRET_KEY = "sk_test_123"
        paid = InvoiceFactory(user=user, client=portal_client, status="paid")
        assert anon_client.post(portal_url(portal_client, paid, "pay/")).status_code == 422

    def test_stripe_not_configured(self, anon_client, settings, portal_client, sent_invoice):
        settings.STRIPE_SECRET_KEY = ""
        assert anon_client.post(portal_url(portal_client, sent_invoice, "pay/")).status_code == 502

    def test_stripe_error(self, anon_client, settings, portal_client, sent_invoice):
        settings.STRIPE_SECRET_KEY = "sk_test_123"
        error = stripe.APIConnectionError("Network error")
        with patch("billing.stripe_service.stripe.checkout.Session.create", side_effect=error):
            response = anon_client.post(portal_url(portal_client, sent_invoice, "pay/"))

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "EXTERNAL_SERVICE_ERROR"
