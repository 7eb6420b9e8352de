"""
Stripe integration: webhook verification, event reconciliation and
Checkout sessions for client portal payments.
"""

import json
import logging
from typing import Any, Dict, Optional

import stripe
from django.conf import settings

from .currency import from_minor_units, normalize_code, to_minor_units
from .models import Invoice, Payment
from .services.payment_service import (
    OUTCOME_CAPTURED,
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    OUTCOME_REFUNDED,
    PaymentReconciliationService,
)
from .validation import ExternalServiceError, WebhookSignatureError

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = ("checkout.session.completed", "payment_intent.succeeded")
FAILURE_EVENTS = ("payment_intent.payment_failed",)
REFUND_EVENTS = ("charge.refunded",)


def _invoice_id_from(obj: Dict[str, Any]) -> Optional[str]:
    return (obj.get("metadata") or {}).get("invoice_id") or None


class StripeService:
    def __init__(self):
        self.secret_key = getattr(settings, "STRIPE_SECRET_KEY", "")
        self.webhook_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
        self.tolerance = getattr(settings, "STRIPE_WEBHOOK_TOLERANCE", 300)
        self.is_configured = bool(self.secret_key)

    # ---------------------------------------------------------------------
    # WEBHOOKS
    # ---------------------------------------------------------------------

    def verify_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Check the ``Stripe-Signature`` header and return the decoded event."""
        if not self.webhook_secret:
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise WebhookSignatureError("Stripe webhooks are not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookSignatureError("Payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid Stripe signature: {e}")
            raise WebhookSignatureError("Invalid Stripe signature")

        # Malformed JSON is left to the caller (json.JSONDecodeError).
        event = json.loads(body)
        if not isinstance(event, dict):
            raise ValueError("Stripe event must be a JSON object")
        return event

    def handle_event(self, event: Dict[str, Any]) -> str:
        event_type = event.get("type", "")
        event_id = event.get("id", "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in CAPTURE_EVENTS:
            return self._handle_capture(event_type, event_id, obj)
        if event_type in FAILURE_EVENTS:
            return self._handle_failure(event_id, obj)
        if event_type in REFUND_EVENTS:
            return self._handle_refund(event_id, obj)

        logger.info(f"Ignoring Stripe event type: {event_type}")
        return OUTCOME_IGNORED

    @staticmethod
    def _handle_capture(event_type: str, event_id: str, obj: Dict[str, Any]) -> str:
        currency = normalize_code(obj.get("currency"))
        if event_type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                logger.info(f"Checkout session {obj.get('id')} completed without payment; ignoring")
                return OUTCOME_IGNORED
            reference = obj.get("payment_intent") or obj.get("id", "")
            minor = obj.get("amount_total") or 0
        else:
            reference = obj.get("id", "")
            minor = obj.get("amount_received") or obj.get("amount") or 0

        return PaymentReconciliationService.dispatch(
            OUTCOME_CAPTURED,
            _invoice_id_from(obj),
            amount=from_minor_units(minor, currency),
            currency=currency,
            method=Payment.Method.STRIPE,
            reference=reference,
            event_id=event_id,
            metadata={"event_type": event_type},
        )

    @staticmethod
    def _handle_failure(event_id: str, obj: Dict[str, Any]) -> str:
        currency = normalize_code(obj.get("currency"))
        error = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
        # One intent can fail repeatedly; each failure is its own event.
        return PaymentReconciliationService.dispatch(
            OUTCOME_FAILED,
            _invoice_id_from(obj),
            amount=from_minor_units(obj.get("amount") or 0, currency),
            currency=currency,
            method=Payment.Method.STRIPE,
            reference=event_id or obj.get("id", ""),
            error_message=error,
            event_id=event_id,
            metadata={"payment_intent": obj.get("id", "")},
        )

    @staticmethod
    def _handle_refund(event_id: str, obj: Dict[str, Any]) -> str:
        """
        Map ``charge.refunded`` onto a ledger refund.

        When the newest refund object is embedded it is applied on its own
        id. Otherwise only the charge's cumulative ``amount_refunded`` is
        known, so the event id keys the row and the service applies the
        difference from what is already recorded against the charge.
        """
        currency = normalize_code(obj.get("currency"))
        charge_id = obj.get("id", "")
        refunds = (obj.get("refunds") or {}).get("data") or []
        if refunds:
            reference = refunds[0].get("id", "")
            minor = refunds[0].get("amount") or 0
            cumulative = False
        else:
            reference = event_id or charge_id
            minor = obj.get("amount_refunded") or 0
            cumulative = True

        invoice_id = (
            PaymentReconciliationService.find_invoice_for_capture(Payment.Method.STRIPE, obj.get("payment_intent"))
            or _invoice_id_from(obj)
        )
        return PaymentReconciliationService.dispatch(
            OUTCOME_REFUNDED,
            invoice_id,
            amount=from_minor_units(minor, currency),
            currency=currency,
            method=Payment.Method.STRIPE,
            reference=reference,
            event_id=event_id,
            metadata={"charge": charge_id, "payment_intent": obj.get("payment_intent", "")},
            source_reference=charge_id,
            cumulative=cumulative,
        )

    # ---------------------------------------------------------------------
    # CHECKOUT
    # ---------------------------------------------------------------------

    def create_checkout_session(self, invoice: Invoice, success_url: str, cancel_url: str) -> Dict[str, str]:
        if not self.is_configured:
            raise ExternalServiceError("stripe", "Stripe is not configured")

        metadata = {"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number}
        stripe.api_key = self.secret_key
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=invoice.client.email or None,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": invoice.currency.lower(),
                        "unit_amount": to_minor_units(invoice.balance_due, invoice.currency),
                        "product_data": {"name": f"Invoice {invoice.invoice_number}"},
                    },
                }],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as e:
            logger.exception(f"Stripe checkout session failed for invoice {invoice.id}")
            raise ExternalServiceError("stripe", str(e.user_message or e)) from e

        logger.info(f"Stripe checkout session {session.id} created for invoice {invoice.id}")
        return {"id": session.id, "url": session.url}


def get_stripe_service() -> StripeService:
    return StripeService()
