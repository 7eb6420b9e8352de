"""
PayPal webhook verification and event reconciliation.

Signatures are verified server-to-server through PayPal's
``verify-webhook-signature`` API using an OAuth client-credentials token.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import requests
from django.conf import settings
from django.core.cache import cache

from .currency import normalize_code
from .models import Payment
from .services.payment_service import (
    OUTCOME_CAPTURED,
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    OUTCOME_REFUNDED,
    PaymentReconciliationService,
)
from .utils import to_decimal
from .validation import ExternalServiceError, WebhookSignatureError

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "paypal:access_token"

# Header name -> field of the verify-webhook-signature request.
SIGNATURE_HEADERS = {
    "PAYPAL-AUTH-ALGO": "auth_algo",
    "PAYPAL-CERT-URL": "cert_url",
    "PAYPAL-TRANSMISSION-ID": "transmission_id",
    "PAYPAL-TRANSMISSION-SIG": "transmission_sig",
    "PAYPAL-TRANSMISSION-TIME": "transmission_time",
}


def _capture_id_from_links(resource: Dict[str, Any]) -> Optional[str]:
    for link in resource.get("links") or []:
        if link.get("rel") == "up" and "/captures/" in (link.get("href") or ""):
            return link["href"].rstrip("/").rsplit("/", 1)[-1]
    return None


def _invoice_id_from(resource: Dict[str, Any]) -> Optional[str]:
    return resource.get("custom_id") or resource.get("invoice_id") or None


class PayPalService:
    def __init__(self):
        self.client_id = getattr(settings, "PAYPAL_CLIENT_ID", "")
        self.client_secret = getattr(settings, "PAYPAL_CLIENT_SECRET", "")
        self.webhook_id = getattr(settings, "PAYPAL_WEBHOOK_ID", "")
        self.base_url = getattr(settings, "PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com").rstrip("/")
        self.is_configured = bool(self.client_id and self.client_secret and self.webhook_id)

    # ---------------------------------------------------------------------
    # AUTH
    # ---------------------------------------------------------------------

    def get_access_token(self) -> str:
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

        try:
            response = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=15,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"PayPal token request failed: {e}")
            raise ExternalServiceError("paypal", "Could not obtain an access token") from e
        except ValueError as e:
            raise ExternalServiceError("paypal", "Invalid token response") from e

        token = data.get("access_token")
        if not token:
            raise ExternalServiceError("paypal", "Token response did not include an access token")
        cache.set(TOKEN_CACHE_KEY, token, max(int(data.get("expires_in", 0)) - 60, 60))
        return token

    # ---------------------------------------------------------------------
    # WEBHOOKS
    # ---------------------------------------------------------------------

    def verify_event(self, headers: Mapping[str, str], event: Dict[str, Any]) -> None:
        if not self.is_configured:
            logger.error("PayPal webhook received but PayPal is not configured")
            raise WebhookSignatureError("PayPal webhooks are not configured")

        body = {field: headers.get(header, "") for header, field in SIGNATURE_HEADERS.items()}
        missing = [header for header, field in SIGNATURE_HEADERS.items() if not body[field]]
        if missing:
            raise WebhookSignatureError(f"Missing PayPal signature headers: {', '.join(missing)}")
        body.update(webhook_id=self.webhook_id, webhook_event=event)

        try:
            response = requests.post(
                f"{self.base_url}/v1/notifications/verify-webhook-signature",
                json=body,
                headers={"Authorization": f"Bearer {self.get_access_token()}"},
                timeout=15,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"PayPal signature verification request failed: {e}")
            raise ExternalServiceError("paypal", "Signature verification unavailable") from e
        except ValueError as e:
            raise ExternalServiceError("paypal", "Invalid verification response") from e

        if result.get("verification_status") != "SUCCESS":
            logger.warning(f"Invalid PayPal signature for event {event.get('id')}")
            raise WebhookSignatureError("Invalid PayPal signature")

    def handle_event(self, event: Dict[str, Any]) -> str:
        event_type = event.get("event_type", "")
        event_id = event.get("id", "")
        resource = event.get("resource") or {}
        amount = resource.get("amount") or {}
        currency = normalize_code(amount.get("currency_code"))
        value = to_decimal(amount.get("value"))

        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            return PaymentReconciliationService.dispatch(
                OUTCOME_CAPTURED,
                _invoice_id_from(resource),
                amount=value,
                currency=currency,
                method=Payment.Method.PAYPAL,
                reference=resource.get("id", ""),
                event_id=event_id,
                metadata={"event_type": event_type},
            )

        if event_type == "PAYMENT.CAPTURE.DENIED":
            reason = (resource.get("status_details") or {}).get("reason") or "Capture denied"
            return PaymentReconciliationService.dispatch(
                OUTCOME_FAILED,
                _invoice_id_from(resource),
                amount=value,
                currency=currency,
                method=Payment.Method.PAYPAL,
                reference=resource.get("id", ""),
                error_message=reason,
                event_id=event_id,
            )

        if event_type == "PAYMENT.CAPTURE.REFUNDED":
            capture_id = _capture_id_from_links(resource)
            invoice_id = (
                PaymentReconciliationService.find_invoice_for_capture(Payment.Method.PAYPAL, capture_id)
                or _invoice_id_from(resource)
            )
            return PaymentReconciliationService.dispatch(
                OUTCOME_REFUNDED,
                invoice_id,
                amount=value,
                currency=currency,
                method=Payment.Method.PAYPAL,
                reference=resource.get("id", ""),
                event_id=event_id,
                metadata={"capture_id": capture_id or ""},
                source_reference=capture_id or "",
            )

        logger.info(f"Ignoring PayPal event type: {event_type}")
        return OUTCOME_IGNORED


def get_paypal_service() -> PayPalService:
    return PayPalService()
