"""
Processor-agnostic payment reconciliation.

Each operation locks the invoice row, appends one ``Payment`` ledger row and
re-derives the invoice totals and status. Redelivered processor events hit the
ledger's unique constraint and raise ``IdempotencyConflict`` without changing
anything.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from ..currency import normalize_code
from ..models import Invoice, InvoiceActivity, Payment
from ..utils import money
from ..validation import BusinessRuleError, IdempotencyConflict, NotFoundError, ValidationError
from .invoice_service import InvoiceService

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

OUTCOME_CAPTURED = "captured"
OUTCOME_FAILED = "failed"
OUTCOME_REFUNDED = "refunded"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"
OUTCOME_UNMATCHED = "unmatched"

# Statuses a capture may move an invoice out of.
PAYABLE_STATUSES = (
    Invoice.Status.SENT,
    Invoice.Status.VIEWED,
    Invoice.Status.PARTIAL,
    Invoice.Status.PAID,
)


class PaymentReconciliationService:

    @staticmethod
    def _lock_invoice(invoice_id) -> Invoice:
        try:
            return Invoice.objects.select_for_update().get(pk=invoice_id)
        except (Invoice.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Invoice {invoice_id} not found")

    @staticmethod
    def _ensure_new(method: str, reference: str, status: str) -> None:
        if reference and Payment.objects.filter(method=method, external_reference=reference, status=status).exists():
            raise IdempotencyConflict(reference)

    @staticmethod
    def _record(invoice: Invoice, method: str, status: str, amount: Decimal, currency: str,
                reference: str, event_id: str = "", error_message: str = "",
                metadata: Optional[Dict[str, Any]] = None) -> Payment:
        PaymentReconciliationService._ensure_new(method, reference, status)
        try:
            with transaction.atomic():
                return Payment.objects.create(
                    invoice=invoice,
                    amount=amount,
                    currency=normalize_code(currency) or invoice.currency,
                    method=method,
                    status=status,
                    external_reference=reference or "",
                    event_id=event_id or "",
                    error_message=error_message,
                    metadata=metadata or {},
                )
        except IntegrityError:
            raise IdempotencyConflict(reference)

    @staticmethod
    def _check_amount(amount: Any) -> Decimal:
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0", field_name='amount')
        return amount

    @staticmethod
    def _warn_on_currency(invoice: Invoice, currency: str, reference: str) -> None:
        if currency and normalize_code(currency) != invoice.currency:
            logger.warning(
                f"Currency mismatch on {reference}: event {normalize_code(currency)}, invoice {invoice.currency}"
            )

    @staticmethod
    def _set_status(invoice: Invoice, new_status: str) -> None:
        old_status = invoice.status
        if new_status == old_status:
            return
        if not InvoiceService.can_transition(old_status, new_status):
            logger.warning(f"Invoice {invoice.id} kept status {old_status}; {new_status} is not reachable from it")
            return
        invoice.status = new_status
        if new_status == Invoice.Status.PAID:
            invoice.paid_at = timezone.now()
        elif new_status in (Invoice.Status.PARTIAL, Invoice.Status.SENT):
            invoice.paid_at = None

    @classmethod
    @transaction.atomic
    def apply_capture(cls, invoice_id, amount: Any, currency: str, method: str, reference: str,
                      event_id: str = "", metadata: Optional[Dict[str, Any]] = None) -> Payment:
        amount = cls._check_amount(amount)
        invoice = cls._lock_invoice(invoice_id)
        cls._warn_on_currency(invoice, currency, reference)

        payment = cls._record(
            invoice, method, Payment.Status.COMPLETED, amount, currency, reference, event_id, metadata=metadata,
        )

        old_status = invoice.status
        invoice.amount_paid = invoice.amount_paid + amount
        InvoiceService.apply_totals(invoice)
        if old_status in PAYABLE_STATUSES:
            cls._set_status(invoice, Invoice.Status.PAID if invoice.balance_due == 0 else Invoice.Status.PARTIAL)
        else:
            logger.warning(f"Payment {reference} captured against invoice {invoice.id} in status {old_status}")
        invoice.save()

        InvoiceService.log_activity(
            invoice, None, InvoiceActivity.ActionType.PAYMENT_RECEIVED,
            f"Payment of {amount} {invoice.currency} received via {method}",
            metadata={'payment_id': payment.id, 'reference': reference, 'old_status': old_status, 'new_status': invoice.status},
        )
        logger.info(f"Captured {amount} on invoice {invoice.id} ({reference}); status {old_status} -> {invoice.status}")
        return payment

    @classmethod
    @transaction.atomic
    def apply_failure(cls, invoice_id, amount: Any, currency: str, method: str, reference: str,
                      error_message: str = "", event_id: str = "",
                      metadata: Optional[Dict[str, Any]] = None) -> Payment:
        invoice = cls._lock_invoice(invoice_id)
        payment = cls._record(
            invoice, method, Payment.Status.FAILED, money(amount), currency, reference, event_id,
            error_message=error_message or "Payment failed", metadata=metadata,
        )

        InvoiceService.log_activity(
            invoice, None, InvoiceActivity.ActionType.PAYMENT_FAILED,
            f"Payment attempt via {method} failed: {payment.error_message}",
            metadata={'payment_id': payment.id, 'reference': reference},
        )
        logger.warning(f"Payment {reference} failed for invoice {invoice.id}: {payment.error_message}")
        return payment

    @classmethod
    @transaction.atomic
    def apply_refund(cls, invoice_id, amount: Any, currency: str, method: str, reference: str,
                     event_id: str = "", metadata: Optional[Dict[str, Any]] = None,
                     source_reference: str = "", cumulative: bool = False) -> Payment:
        """
        Refunds reduce ``amount_paid`` but never below zero; the ledger row
        carries the negative of the amount actually applied.

        ``source_reference`` names the charge or capture being refunded. With
        ``cumulative`` set, ``amount`` is the running total refunded on that
        source and only the part not yet recorded against it is applied.
        A refund with nothing paid to take it from raises BusinessRuleError
        and records nothing.
        """
        amount = cls._check_amount(amount)
        invoice = cls._lock_invoice(invoice_id)
        cls._warn_on_currency(invoice, currency, reference)
        cls._ensure_new(method, reference, Payment.Status.REFUNDED)

        requested = amount
        if cumulative:
            requested = amount - cls.refunded_against(invoice, method, source_reference)
            if requested <= 0:
                raise IdempotencyConflict(reference)

        applied = min(requested, invoice.amount_paid)
        if applied <= 0:
            raise BusinessRuleError(f"Nothing has been paid on invoice {invoice.id} to refund")

        extra = {'requested_amount': str(requested)}
        if source_reference:
            extra['source_reference'] = source_reference
        if cumulative:
            extra['refunded_total'] = str(amount)
        payment = cls._record(
            invoice, method, Payment.Status.REFUNDED, -applied, currency, reference, event_id,
            metadata={**(metadata or {}), **extra},
        )

        old_status = invoice.status
        invoice.amount_paid = max(ZERO, invoice.amount_paid - applied)
        InvoiceService.apply_totals(invoice)

        if invoice.amount_paid == 0:
            new_status = Invoice.Status.REFUNDED if old_status == Invoice.Status.PAID else Invoice.Status.SENT
        elif invoice.balance_due == 0:
            new_status = Invoice.Status.PAID
        else:
            new_status = Invoice.Status.PARTIAL
        cls._set_status(invoice, new_status)
        invoice.save()

        InvoiceService.log_activity(
            invoice, None, InvoiceActivity.ActionType.PAYMENT_REFUNDED,
            f"Refund of {applied} {invoice.currency} via {method}",
            metadata={'payment_id': payment.id, 'reference': reference, 'old_status': old_status, 'new_status': invoice.status},
        )
        if applied < requested:
            logger.warning(f"Refund {reference} of {requested} exceeds amount paid on invoice {invoice.id}; applied {applied}")
        logger.info(f"Refunded {applied} on invoice {invoice.id} ({reference}); status {old_status} -> {invoice.status}")
        return payment

    @classmethod
    def dispatch(cls, action: str, invoice_id, **kwargs) -> str:
        """
        Apply one processor event and report its outcome.

        Duplicates and events for unknown invoices are acknowledged, not
        raised, so processors stop retrying them.
        """
        operations = {
            OUTCOME_CAPTURED: cls.apply_capture,
            OUTCOME_FAILED: cls.apply_failure,
            OUTCOME_REFUNDED: cls.apply_refund,
        }
        if invoice_id is None:
            logger.warning(f"No invoice reference on {action} event {kwargs.get('event_id', '')}; acknowledging")
            return OUTCOME_UNMATCHED
        try:
            operations[action](invoice_id, **kwargs)
        except IdempotencyConflict as e:
            logger.info(f"Duplicate delivery of {e.reference}; nothing changed")
            return OUTCOME_DUPLICATE
        except NotFoundError:
            logger.warning(f"Invoice {invoice_id} from {action} event {kwargs.get('event_id', '')} not found; acknowledging")
            return OUTCOME_UNMATCHED
        except BusinessRuleError as e:
            logger.warning(f"Nothing to apply for {action} event {kwargs.get('event_id', '')}: {e.message}; acknowledging")
            return OUTCOME_UNMATCHED
        except ValidationError as e:
            logger.warning(f"Rejected {action} event for invoice {invoice_id}: {e.message}")
            return OUTCOME_IGNORED
        return action

    @staticmethod
    def find_invoice_for_capture(method: str, reference: str) -> Optional[int]:
        """Invoice id of the completed capture with ``reference``, if one was recorded."""
        if not reference:
            return None
        return Payment.objects.filter(
            method=method, external_reference=reference, status=Payment.Status.COMPLETED,
        ).values_list('invoice_id', flat=True).first()

    @staticmethod
    def ledger_balance(invoice: Invoice) -> Decimal:
        total = sum(
            invoice.payments.filter(status__in=[Payment.Status.COMPLETED, Payment.Status.REFUNDED])
            .values_list('amount', flat=True),
            ZERO,
        )
        return money(total)

    @staticmethod
    def refunded_against(invoice: Invoice, method: str, source_reference: str) -> Decimal:
        """Sum of refund amounts requested so far against one charge or capture."""
        if not source_reference:
            return ZERO
        total = ZERO
        for metadata in invoice.payments.filter(method=method, status=Payment.Status.REFUNDED).values_list('metadata', flat=True):
            if (metadata or {}).get('source_reference') == source_reference:
                total += money(metadata.get('requested_amount') or ZERO)
        return total
