import pytest

from billing.models import BusinessProfile
from tests.factories import UserFactory


@pytest.mark.django_db
def test_health_check(client):
    response = client.get("/health/")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "up"
    assert "no-store" in response["Cache-Control"]


@pytest.mark.django_db
def test_health_reports_configured_processors(client, monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_123")
    monkeypatch.delenv("PAYPAL_CLIENT_ID", raising=False)

    assert client.get("/health/").json()["payment_processors"] == ["stripe"]


@pytest.mark.django_db
class TestBusinessProfile:
    def test_profile_created_with_user(self):
        user = UserFactory()
        assert BusinessProfile.objects.filter(user=user).exists()

    def test_update_profile(self, api_client):
        response = api_client.patch(
            "/api/v1/business-profile/",
            {"business_name": "Stark Consulting", "invoice_prefix": "SC", "default_currency": "eur"},
            format="json",
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["business_name"] == "Stark Consulting"
        assert data["default_currency"] == "EUR"

    def test_prefix_used_for_numbers(self, api_client, customer):
        api_client.patch("/api/v1/business-profile/", {"invoice_prefix": "SC"}, format="json")
        data = api_client.post(
            "/api/v1/invoices/",
            {"client_id": customer.id, "items": [{"description": "Work", "quantity": "1", "rate": "10"}]},
            format="json",
        ).json()["data"]

        assert data["invoice_number"] == "SC-00001"
