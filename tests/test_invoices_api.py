"""
Invoice API: creation with server-side totals, editing rules, the status
machine and the derived overdue view.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from billing.models import Invoice, InvoiceActivity, Payment
from tests.factories import InvoiceFactory


def past_due(user, customer, status="sent", **kwargs):
    issue_date = timezone.localdate() - timedelta(days=45)
    return InvoiceFactory(
        user=user, client=customer, status=status,
        issue_date=issue_date, due_date=issue_date + timedelta(days=30), **kwargs,
    )


@pytest.mark.django_db
class TestAuthentication:
    def test_anonymous_is_rejected(self, anon_client):
        response = anon_client.get("/api/v1/invoices/")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    def test_bearer_token(self, user):
        token = Token.objects.create(user=user)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.key}")

        assert client.get("/api/v1/invoices/").status_code == 200


@pytest.mark.django_db
class TestCreateInvoice:
    def test_totals_are_computed_server_side(self, api_client):
        response = api_client.post(
            "/api/v1/invoices/",
            {
                "client_name": "Wayne Enterprises",
                "client_email": "ap@wayne.example",
                "tax_rate": "10",
                "total": "1.00",
                "items": [
                    {"description": "Audit", "quantity": "2", "rate": "50.00"},
                ],
            },
            format="json",
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["invoice_number"] == "INV-00001"
        assert data["status"] == "draft"
        assert data["subtotal"] == "100.00"
        assert data["tax_amount"] == "10.00"
        assert data["total"] == "110.00"
        assert data["client"]["email"] == "ap@wayne.example"

    def test_numbers_increment(self, api_client, customer):
        payload = {"client_id": customer.id, "items": [{"description": "Work", "quantity": "1", "rate": "10"}]}
        first = api_client.post("/api/v1/invoices/", payload, format="json").json()["data"]
        second = api_client.post("/api/v1/invoices/", payload, format="json").json()["data"]

        assert (first["invoice_number"], second["invoice_number"]) == ("INV-00001", "INV-00002")

    def test_due_date_defaults_to_payment_terms(self, api_client, customer):
        payload = {
            "client_id": customer.id,
            "issue_date": "2025-03-01",
            "items": [{"description": "Work", "quantity": "1", "rate": "10"}],
        }
        data = api_client.post("/api/v1/invoices/", payload, format="json").json()["data"]
        assert data["due_date"] == "2025-03-31"

    def test_requires_items(self, api_client, customer):
        response = api_client.post("/api/v1/invoices/", {"client_id": customer.id, "items": []}, format="json")
        assert response.status_code == 400

    def test_due_before_issue_is_rejected(self, api_client, customer):
        response = api_client.post(
            "/api/v1/invoices/",
            {
                "client_id": customer.id,
                "issue_date": "2025-03-10",
                "due_date": "2025-03-01",
                "items": [{"description": "Work", "quantity": "1", "rate": "10"}],
            },
            format="json",
        )
        assert response.status_code == 400

    def test_duplicate_manual_number(self, api_client, sent_invoice):
        response = api_client.post(
            "/api/v1/invoices/",
            {
                "client_id": sent_invoice.client_id,
                "invoice_number": sent_invoice.invoice_number,
                "items": [{"description": "Work", "quantity": "1", "rate": "10"}],
            },
            format="json",
        )
        assert response.status_code == 400


@pytest.mark.django_db
class TestEditAndDelete:
    def test_update_recomputes_totals(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer)
        response = api_client.patch(
            f"/api/v1/invoices/{invoice.id}/",
            {"items": [{"description": "Extended", "quantity": "3", "rate": "100.00"}]},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["data"]["total"] == "300.00"
        assert invoice.items.count() == 1

    def test_paid_invoice_cannot_be_edited(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer, status="paid")
        response = api_client.patch(f"/api/v1/invoices/{invoice.id}/", {"notes": "late edit"}, format="json")
        assert response.status_code == 422

    def test_delete_draft(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer)
        assert api_client.delete(f"/api/v1/invoices/{invoice.id}/").status_code == 200
        assert not Invoice.objects.filter(pk=invoice.pk).exists()

    def test_delete_rejected_with_payments(self, api_client, sent_invoice):
        Payment.objects.create(
            invoice=sent_invoice, amount=Decimal("100.00"), method=Payment.Method.MANUAL, status=Payment.Status.COMPLETED,
        )
        response = api_client.delete(f"/api/v1/invoices/{sent_invoice.id}/")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVOICE_HAS_PAYMENTS"
        assert Invoice.objects.filter(pk=sent_invoice.pk).exists()


@pytest.mark.django_db
class TestStatusMachine:
    def test_draft_to_sent(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer)
        response = api_client.post(f"/api/v1/invoices/{invoice.id}/status/", {"status": "sent"}, format="json")

        assert response.status_code == 200
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.SENT
        assert invoice.sent_at is not None
        assert invoice.activities.filter(action=InvoiceActivity.ActionType.STATUS_CHANGED).exists()

    def test_sent_can_be_cancelled(self, api_client, sent_invoice):
        response = api_client.post(
            f"/api/v1/invoices/{sent_invoice.id}/status/", {"status": "cancelled", "reason": "Duplicate"}, format="json",
        )

        assert response.status_code == 200
        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.CANCELLED
        assert sent_invoice.cancelled_at is not None

    def test_paid_cannot_be_cancelled(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer, status="paid")
        response = api_client.post(f"/api/v1/invoices/{invoice.id}/status/", {"status": "cancelled"}, format="json")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    def test_payment_statuses_cannot_be_set_by_hand(self, api_client, sent_invoice):
        response = api_client.post(f"/api/v1/invoices/{sent_invoice.id}/status/", {"status": "paid"}, format="json")
        assert response.status_code == 400

    def test_history_lists_activity(self, api_client, user, customer):
        invoice = InvoiceFactory(user=user, client=customer)
        api_client.post(f"/api/v1/invoices/{invoice.id}/status/", {"status": "sent"}, format="json")

        history = api_client.get(f"/api/v1/invoices/{invoice.id}/history/").json()["data"]
        assert history[0]["action"] == "status_changed"


@pytest.mark.django_db
class TestOverdue:
    def test_overdue_is_derived(self, user, customer):
        invoice = past_due(user, customer)
        assert invoice.status == Invoice.Status.SENT
        assert invoice.effective_status == Invoice.Status.OVERDUE

    def test_draft_past_due_is_not_overdue(self, user, customer):
        assert past_due(user, customer, status="draft").effective_status == Invoice.Status.DRAFT

    def test_partial_past_due_keeps_partial(self, user, customer):
        invoice = past_due(user, customer, status="partial", amount_paid=Decimal("100.00"))
        assert invoice.effective_status == Invoice.Status.PARTIAL

    def test_overdue_filter(self, api_client, user, customer, sent_invoice):
        overdue = past_due(user, customer)

        listed = api_client.get("/api/v1/invoices/", {"status": "overdue"}).json()["data"]
        sent = api_client.get("/api/v1/invoices/", {"status": "sent"}).json()["data"]

        assert [i["id"] for i in listed] == [overdue.id]
        assert listed[0]["effective_status"] == "overdue"
        assert [i["id"] for i in sent] == [sent_invoice.id]

    def test_stats_count_overdue(self, api_client, user, customer):
        past_due(user, customer)
        stats = api_client.get("/api/v1/invoices/stats/").json()["data"]

        assert stats["overdue_count"] == 1
        assert Decimal(str(stats["overdue_amount"])) == Decimal("500.00")


@pytest.mark.django_db
class TestPagination:
    def test_page_metadata(self, api_client, user, customer):
        for _ in range(3):
            InvoiceFactory(user=user, client=customer)

        body = api_client.get("/api/v1/invoices/", {"page": 2, "page_size": 2}).json()

        assert len(body["data"]) == 1
        assert body["meta"]["pagination"] == {"page": 2, "page_size": 2, "total": 3, "total_pages": 2}
