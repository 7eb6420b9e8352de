"""
Processor-agnostic reconciliation: captures, failures, refunds and the
ledger invariant.
"""
from decimal import Decimal

import pytest
from django.contrib.admin.sites import AdminSite

from billing.admin import InvoiceAdmin
from billing.models import Invoice, InvoiceActivity, Payment
from billing.services.payment_service import (
    OUTCOME_CAPTURED,
    OUTCOME_DUPLICATE,
    OUTCOME_IGNORED,
    OUTCOME_REFUNDED,
    OUTCOME_UNMATCHED,
    PaymentReconciliationService,
)
from billing.validation import BusinessRuleError, IdempotencyConflict
from tests.factories import InvoiceFactory


def capture(invoice, amount="500.00", reference="pi_1", method=Payment.Method.STRIPE):
    return PaymentReconciliationService.apply_capture(
        invoice.id, Decimal(amount), "USD", method, reference, event_id=f"evt_{reference}",
    )


def refund(invoice, amount, reference="re_1", method=Payment.Method.STRIPE):
    return PaymentReconciliationService.apply_refund(
        invoice.id, Decimal(amount), "USD", method, reference, event_id=f"evt_{reference}",
    )


def assert_ledger_matches(invoice):
    invoice.refresh_from_db()
    assert PaymentReconciliationService.ledger_balance(invoice) == invoice.amount_paid


@pytest.mark.django_db
class TestCapture:
    def test_full_capture_marks_paid(self, sent_invoice):
        payment = capture(sent_invoice)

        sent_invoice.refresh_from_db()
        assert payment.status == Payment.Status.COMPLETED
        assert sent_invoice.status == Invoice.Status.PAID
        assert sent_invoice.amount_paid == Decimal("500.00")
        assert sent_invoice.balance_due == Decimal("0.00")
        assert sent_invoice.paid_at is not None
        assert sent_invoice.activities.filter(action=InvoiceActivity.ActionType.PAYMENT_RECEIVED).exists()
        assert_ledger_matches(sent_invoice)

    def test_partial_capture(self, sent_invoice):
        capture(sent_invoice, amount="200.00")

        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.PARTIAL
        assert sent_invoice.balance_due == Decimal("300.00")

    def test_partial_then_rest_is_paid(self, sent_invoice):
        capture(sent_invoice, amount="200.00", reference="pi_a")
        capture(sent_invoice, amount="300.00", reference="pi_b")

        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.PAID
        assert_ledger_matches(sent_invoice)

    def test_overpayment_keeps_excess_in_amount_paid(self, sent_invoice):
        capture(sent_invoice, amount="600.00")

        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.PAID
        assert sent_invoice.amount_paid == Decimal("600.00")
        assert sent_invoice.balance_due == Decimal("0.00")

    def test_redelivery_raises_idempotency_conflict(self, sent_invoice):
        capture(sent_invoice)
        with pytest.raises(IdempotencyConflict):
            capture(sent_invoice)

        sent_invoice.refresh_from_db()
        assert sent_invoice.amount_paid == Decimal("500.00")
        assert sent_invoice.payments.count() == 1

    def test_same_reference_on_other_processor_is_distinct(self, sent_invoice):
        capture(sent_invoice, amount="100.00", reference="ref-1", method=Payment.Method.STRIPE)
        capture(sent_invoice, amount="100.00", reference="ref-1", method=Payment.Method.PAYPAL)

        sent_invoice.refresh_from_db()
        assert sent_invoice.amount_paid == Decimal("200.00")

    def test_capture_on_draft_records_without_status_change(self, user, customer):
        draft = InvoiceFactory(user=user, client=customer)
        capture(draft)

        draft.refresh_from_db()
        assert draft.status == Invoice.Status.DRAFT
        assert draft.amount_paid == Decimal("500.00")


@pytest.mark.django_db
class TestFailure:
    def test_failure_is_recorded_without_status_change(self, sent_invoice):
        payment = PaymentReconciliationService.apply_failure(
            sent_invoice.id, Decimal("500.00"), "USD", Payment.Method.STRIPE, "evt_fail_1",
            error_message="Your card was declined.",
        )

        sent_invoice.refresh_from_db()
        assert payment.status == Payment.Status.FAILED
        assert payment.error_message == "Your card was declined."
        assert sent_invoice.status == Invoice.Status.SENT
        assert sent_invoice.amount_paid == Decimal("0.00")
        assert sent_invoice.activities.filter(action=InvoiceActivity.ActionType.PAYMENT_FAILED).exists()


@pytest.mark.django_db
class TestRefund:
    def test_partial_refund_of_paid_invoice(self, sent_invoice):
        capture(sent_invoice)
        payment = refund(sent_invoice, "200.00")

        sent_invoice.refresh_from_db()
        assert payment.amount == Decimal("-200.00")
        assert sent_invoice.status == Invoice.Status.PARTIAL
        assert sent_invoice.amount_paid == Decimal("300.00")
        assert sent_invoice.balance_due == Decimal("200.00")
        assert_ledger_matches(sent_invoice)

    def test_full_refund_of_paid_invoice(self, sent_invoice):
        capture(sent_invoice)
        refund(sent_invoice, "500.00")

        sent_invoice.refresh_from_db()
        assert sent_invoice.status == Invoice.Status.REFUNDED
        assert sent_invoice.amount_paid == Decimal("0.00")
        assert_ledger_matches(sent_invoice)

    def test_refund_is_clamped_to_amount_paid(self, sent_invoice):
        capture(sent_invoice, amount="300.00")
        payment = refund(sent_invoice, "1000.00")

        sent_invoice.refresh_from_db()
        assert payment.amount == Decimal("-300.00")
        assert payment.metadata["requested_amount"] == "1000.00"
        assert sent_invoice.amount_paid == Decimal("0.00")
        assert sent_invoice.status == Invoice.Status.SENT
        assert_ledger_matches(sent_invoice)

    def test_refund_redelivery(self, sent_invoice):
        capture(sent_invoice)
        refund(sent_invoice, "200.00")
        with pytest.raises(IdempotencyConflict):
            refund(sent_invoice, "200.00")

        sent_invoice.refresh_from_db()
        assert sent_invoice.amount_paid == Decimal("300.00")

    def test_refund_with_nothing_paid_records_nothing(self, sent_invoice):
        with pytest.raises(BusinessRuleError):
            refund(sent_invoice, "50.00", reference="re_early")

        sent_invoice.refresh_from_db()
        assert not sent_invoice.payments.exists()
        assert sent_invoice.status == Invoice.Status.SENT
        assert sent_invoice.amount_paid == Decimal("0.00")

    def test_refund_reference_stays_usable_after_nothing_paid(self, sent_invoice):
        outcome = PaymentReconciliationService.dispatch(
            OUTCOME_REFUNDED, sent_invoice.id, amount=Decimal("50.00"), currency="USD",
            method=Payment.Method.STRIPE, reference="re_early",
        )
        assert outcome == OUTCOME_UNMATCHED

        capture(sent_invoice)
        outcome = PaymentReconciliationService.dispatch(
            OUTCOME_REFUNDED, sent_invoice.id, amount=Decimal("50.00"), currency="USD",
            method=Payment.Method.STRIPE, reference="re_early",
        )

        assert outcome == OUTCOME_REFUNDED
        sent_invoice.refresh_from_db()
        assert sent_invoice.amount_paid == Decimal("450.00")
        assert_ledger_matches(sent_invoice)

    def test_cumulative_refunds_apply_the_difference(self, sent_invoice):
        capture(sent_invoice)
        first = PaymentReconciliationService.apply_refund(
            sent_invoice.id, Decimal("100.00"), "USD", Payment.Method.STRIPE, "evt_r1",
            source_reference="ch_1", cumulative=True,
        )
        second = PaymentReconciliationService.apply_refund(
            sent_invoice.id, Decimal("300.00"), "USD", Payment.Method.STRIPE, "evt_r2",
            source_reference="ch_1", cumulative=True,
        )

        assert first.amount == Decimal("-100.00")
        assert second.amount == Decimal("-200.00")
        assert second.metadata["refunded_total"] == "300.00"
        assert PaymentReconciliationService.refunded_against(sent_invoice, Payment.Method.STRIPE, "ch_1") == Decimal("300.00")
        assert_ledger_matches(sent_invoice)
        assert sent_invoice.amount_paid == Decimal("200.00")

    def test_cumulative_total_already_recorded_is_duplicate(self, sent_invoice):
        capture(sent_invoice)
        PaymentReconciliationService.apply_refund(
            sent_invoice.id, Decimal("100.00"), "USD", Payment.Method.STRIPE, "evt_r1",
            source_reference="ch_1", cumulative=True,
        )
        with pytest.raises(IdempotencyConflict):
            PaymentReconciliationService.apply_refund(
                sent_invoice.id, Decimal("100.00"), "USD", Payment.Method.STRIPE, "evt_r9",
                source_reference="ch_1", cumulative=True,
            )

        assert sent_invoice.payments.filter(status=Payment.Status.REFUNDED).count() == 1

    def test_cumulative_refunds_track_each_charge(self, sent_invoice):
        capture(sent_invoice, amount="250.00", reference="pi_a")
        capture(sent_invoice, amount="250.00", reference="pi_b")
        for reference, source in (("evt_a", "ch_a"), ("evt_b", "ch_b")):
            PaymentReconciliationService.apply_refund(
                sent_invoice.id, Decimal("100.00"), "USD", Payment.Method.STRIPE, reference,
                source_reference=source, cumulative=True,
            )

        sent_invoice.refresh_from_db()
        assert sent_invoice.amount_paid == Decimal("300.00")


@pytest.mark.django_db
class TestLedgerBalanceAdmin:
    def test_matching_ledger_shows_balance(self, sent_invoice):
        capture(sent_invoice, amount="200.00")
        sent_invoice.refresh_from_db()

        display = InvoiceAdmin(Invoice, AdminSite()).ledger_balance(sent_invoice)

        assert display == Decimal("200.00")

    def test_drift_is_flagged(self, sent_invoice):
        capture(sent_invoice, amount="200.00")
        Invoice.objects.filter(pk=sent_invoice.pk).update(amount_paid=Decimal("150.00"))
        sent_invoice.refresh_from_db()

        display = InvoiceAdmin(Invoice, AdminSite()).ledger_balance(sent_invoice)

        assert display == "200.00 (amount paid is 150.00)"

    def test_unsaved_invoice(self, db):
        assert InvoiceAdmin(Invoice, AdminSite()).ledger_balance(Invoice()) == "-"

    def test_listed_on_change_form(self, admin_client, sent_invoice):
        capture(sent_invoice, amount="200.00")

        response = admin_client.get(f"/admin/billing/invoice/{sent_invoice.pk}/change/")

        assert response.status_code == 200
        assert b"Ledger balance" in response.content


@pytest.mark.django_db
class TestDispatch:
    def test_outcomes(self, sent_invoice):
        kwargs = {"amount": Decimal("500.00"), "currency": "USD", "method": Payment.Method.PAYPAL, "reference": "CAP-1"}

        assert PaymentReconciliationService.dispatch(OUTCOME_CAPTURED, sent_invoice.id, **kwargs) == OUTCOME_CAPTURED
        assert PaymentReconciliationService.dispatch(OUTCOME_CAPTURED, sent_invoice.id, **kwargs) == OUTCOME_DUPLICATE

    def test_unknown_invoice_is_unmatched(self, db):
        outcome = PaymentReconciliationService.dispatch(
            OUTCOME_CAPTURED, 999999, amount=Decimal("10"), currency="USD", method=Payment.Method.STRIPE, reference="pi_x",
        )
        assert outcome == OUTCOME_UNMATCHED

    def test_missing_invoice_reference_is_unmatched(self, db):
        outcome = PaymentReconciliationService.dispatch(
            OUTCOME_REFUNDED, None, amount=Decimal("10"), currency="USD", method=Payment.Method.STRIPE, reference="re_x",
        )
        assert outcome == OUTCOME_UNMATCHED

    def test_zero_amount_is_ignored(self, sent_invoice):
        outcome = PaymentReconciliationService.dispatch(
            OUTCOME_CAPTURED, sent_invoice.id, amount=Decimal("0"), currency="USD",
            method=Payment.Method.STRIPE, reference="pi_zero",
        )
        assert outcome == OUTCOME_IGNORED
        assert not sent_invoice.payments.exists()

    def test_find_invoice_for_capture(self, sent_invoice):
        capture(sent_invoice, reference="pi_lookup")
        found = PaymentReconciliationService.find_invoice_for_capture(Payment.Method.STRIPE, "pi_lookup")
        assert found == sent_invoice.id
        assert PaymentReconciliationService.find_invoice_for_capture(Payment.Method.STRIPE, "") is None
