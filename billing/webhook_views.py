"""
Payment processor webhooks.

Every verified delivery is acknowledged with 200 once handled, including
duplicates, ignored event kinds and events for unknown invoices, so the
processor stops retrying. Only bad signatures and malformed payloads are
rejected.
"""

import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .paypal_service import get_paypal_service
from .stripe_service import get_stripe_service
from .validation import ExternalServiceError, WebhookSignatureError

logger = logging.getLogger(__name__)


def _received(outcome: str) -> JsonResponse:
    return JsonResponse({"received": True, "outcome": outcome})


def _rejected(message: str, status: int = 400) -> JsonResponse:
    return JsonResponse({"received": False, "error": message}, status=status)


# ---------------------------------------------------------------------
# STRIPE WEBHOOK
# ---------------------------------------------------------------------

@csrf_exempt
@require_POST
def stripe_webhook(request):
    service = get_stripe_service()
    signature = request.headers.get("Stripe-Signature", "")

    try:
        event = service.verify_event(request.body, signature)
    except WebhookSignatureError as e:
        return _rejected(e.message)
    except ValueError:
        logger.error("Invalid Stripe webhook payload JSON")
        return _rejected("Invalid JSON")

    logger.info(f"Stripe webhook received: {event.get('type')} ({event.get('id')})")
    outcome = service.handle_event(event)
    return _received(outcome)


# ---------------------------------------------------------------------
# PAYPAL WEBHOOK
# ---------------------------------------------------------------------

@csrf_exempt
@require_POST
def paypal_webhook(request):
    service = get_paypal_service()

    try:
        event = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.error("Invalid PayPal webhook payload JSON")
        return _rejected("Invalid JSON")
    if not isinstance(event, dict):
        return _rejected("Invalid JSON")

    try:
        service.verify_event(request.headers, event)
    except WebhookSignatureError as e:
        return _rejected(e.message)
    except ExternalServiceError as e:
        return _rejected(e.message, status=502)

    logger.info(f"PayPal webhook received: {event.get('event_type')} ({event.get('id')})")
    outcome = service.handle_event(event)
    return _received(outcome)
