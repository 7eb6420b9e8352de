"""
Totals engine: line amounts, discount, tax and balance rounding.
"""
from decimal import Decimal

import pytest

from billing.models import Invoice
from billing.services.invoice_service import InvoiceService
from tests.factories import InvoiceFactory


class TestLineAmounts:
    def test_line_amount_rounds_half_up(self):
        assert InvoiceService.calculate_line_amount(Decimal("3"), Decimal("0.335")) == Decimal("1.01")

    def test_fractional_quantity(self):
        assert InvoiceService.calculate_line_amount("1.5", "80.00") == Decimal("120.00")


class TestInvoiceTotals:
    def test_percentage_discount_then_tax(self):
        totals = InvoiceService.calculate_invoice_totals(
            [{"quantity": 2, "rate": "100.00"}, {"quantity": 1, "rate": "50.50"}],
            discount_type=Invoice.DiscountType.PERCENTAGE,
            discount_amount="10",
            tax_rate="8",
        )
        assert totals["subtotal"] == Decimal("250.50")
        assert totals["discount_value"] == Decimal("25.05")
        assert totals["taxable_amount"] == Decimal("225.45")
        assert totals["tax_amount"] == Decimal("18.04")
        assert totals["total"] == Decimal("243.49")
        assert totals["balance_due"] == Decimal("243.49")
        assert totals["warnings"] == []

    def test_fixed_discount(self):
        totals = InvoiceService.calculate_invoice_totals(
            [{"quantity": 1, "rate": "1000.00"}],
            discount_type=Invoice.DiscountType.FIXED,
            discount_amount="100",
            tax_rate="10",
        )
        assert totals["discount_value"] == Decimal("100.00")
        assert totals["tax_amount"] == Decimal("90.00")
        assert totals["total"] == Decimal("990.00")

    def test_balance_subtracts_amount_paid(self):
        totals = InvoiceService.calculate_invoice_totals(
            [{"quantity": 1, "rate": "500.00"}], amount_paid="200.00",
        )
        assert totals["balance_due"] == Decimal("300.00")

    def test_overpayment_floors_balance_at_zero(self):
        totals = InvoiceService.calculate_invoice_totals(
            [{"quantity": 1, "rate": "500.00"}], amount_paid="600.00",
        )
        assert totals["balance_due"] == Decimal("0.00")

    def test_discount_larger_than_subtotal_is_reported(self):
        totals = InvoiceService.calculate_invoice_totals(
            [{"quantity": 1, "rate": "100.00"}],
            discount_amount="150",
            tax_rate="10",
        )
        assert totals["taxable_amount"] == Decimal("-50.00")
        assert totals["balance_due"] == Decimal("0.00")
        assert totals["warnings"]

    def test_no_items(self):
        totals = InvoiceService.calculate_invoice_totals([])
        assert totals["subtotal"] == Decimal("0.00")
        assert totals["total"] == Decimal("0.00")


@pytest.mark.django_db
class TestApplyTotals:
    def test_apply_totals_reads_stored_items(self):
        invoice = InvoiceFactory(items=[
            {"description": "Hosting", "quantity": Decimal("12"), "rate": Decimal("100.00")},
        ])
        invoice.tax_rate = Decimal("5")
        InvoiceService.apply_totals(invoice)

        assert invoice.subtotal == Decimal("1200.00")
        assert invoice.tax_amount == Decimal("60.00")
        assert invoice.total == Decimal("1260.00")
        assert invoice.balance_due == Decimal("1260.00")
