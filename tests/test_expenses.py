from datetime import date
from decimal import Decimal

import pytest

from billing.models import Expense
from billing.services.expense_service import ExpenseService
from billing.validation import ValidationError
from tests.factories import ExpenseFactory


@pytest.mark.django_db
class TestExpenseLedger:
    def test_create_expense(self, api_client, customer):
        response = api_client.post(
            "/api/v1/expenses/",
            {
                "description": "Figma seats",
                "amount": "45.00",
                "currency": "eur",
                "category": "software",
                "date": "2025-02-03",
                "client_id": customer.id,
                "billable": True,
            },
            format="json",
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["currency"] == "EUR"
        assert data["client_name"] == customer.name
        assert data["category_display"] == "Software & Subscriptions"

    @pytest.mark.parametrize("payload", [
        {"description": "Zero", "amount": "0"},
        {"description": "Unknown category", "amount": "10", "category": "yachts"},
        {"description": "Bad currency", "amount": "10", "currency": "ZZZ"},
        {"amount": "10"},
    ])
    def test_create_validation(self, api_client, payload):
        assert api_client.post("/api/v1/expenses/", payload, format="json").status_code == 400

    def test_client_must_belong_to_user(self, user, other_user):
        foreign = other_user.clients.create(name="Foreign", email="f@example.com")
        with pytest.raises(ValidationError):
            ExpenseService.create_expense(user, {"description": "Lunch", "amount": "20", "client_id": foreign.id})

    def test_list_filters(self, api_client, user):
        ExpenseFactory(user=user, category=Expense.Category.TRAVEL, date=date(2025, 1, 10))
        ExpenseFactory(user=user, category=Expense.Category.SOFTWARE, date=date(2025, 2, 10))

        travel = api_client.get("/api/v1/expenses/", {"category": "travel"}).json()["data"]
        february = api_client.get("/api/v1/expenses/", {"start": "2025-02-01", "end": "2025-02-28"}).json()["data"]

        assert [e["category"] for e in travel] == ["travel"]
        assert [e["date"] for e in february] == ["2025-02-10"]

    def test_bad_date_filter(self, api_client):
        assert api_client.get("/api/v1/expenses/", {"start": "February"}).status_code == 400

    def test_update_and_delete(self, api_client, user):
        expense = ExpenseFactory(user=user)

        response = api_client.patch(f"/api/v1/expenses/{expense.id}/", {"amount": "150.00"}, format="json")
        assert response.json()["data"]["amount"] == "150.00"

        assert api_client.delete(f"/api/v1/expenses/{expense.id}/").status_code == 200
        assert not Expense.objects.filter(pk=expense.pk).exists()

    def test_categories(self, api_client):
        categories = api_client.get("/api/v1/expenses/categories/").json()["data"]
        assert {"value": "travel", "label": "Travel"} in categories


@pytest.mark.django_db
class TestExpenseSummary:
    def test_summary_totals(self, user):
        ExpenseFactory(user=user, amount=Decimal("300.00"), category=Expense.Category.TRAVEL,
                       billable=True, date=date(2025, 1, 5))
        ExpenseFactory(user=user, amount=Decimal("100.00"), category=Expense.Category.SOFTWARE,
                       tax_deductible=False, date=date(2025, 2, 5))

        summary = ExpenseService.get_expense_summary(user)

        assert summary["total_expenses"] == Decimal("400.00")
        assert summary["expense_count"] == 2
        assert summary["billable_total"] == Decimal("300.00")
        assert summary["reimbursable_total"] == Decimal("0.00")
        assert summary["tax_deductible_total"] == Decimal("300.00")
        assert summary["by_category"][0]["category"] == "travel"
        assert summary["by_category"][0]["percentage"] == Decimal("75.0")
        assert [p["period"] for p in summary["by_period"]] == ["2025-01", "2025-02"]

    def test_summary_date_range(self, api_client, user):
        ExpenseFactory(user=user, amount=Decimal("300.00"), date=date(2025, 1, 5))
        ExpenseFactory(user=user, amount=Decimal("100.00"), date=date(2025, 2, 5))

        data = api_client.get("/api/v1/expenses/summary/", {"start": "2025-02-01"}).json()["data"]
        assert data["expense_count"] == 1

    def test_empty_summary(self, user):
        summary = ExpenseService.get_expense_summary(user)
        assert summary["total_expenses"] == Decimal("0.00")
        assert summary["expense_count"] == 0
        assert summary["by_category"] == []
