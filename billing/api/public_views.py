"""
Endpoints that do not use user authentication: currency reference data,
the token-authenticated client portal and the cron-authenticated recurring
trigger.
"""

import logging

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response

from ..currency import list_currencies
from ..services import ClientPortalService, RecurringInvoiceGenerator, get_exchange_rate_service
from ..utils import get_client_ip
from ..validation import ValidationError
from .permissions import HasCronSecret
from .response import APIResponse
from .serializers import PortalClientSerializer, PortalInvoiceDetailSerializer, PortalInvoiceSerializer

logger = logging.getLogger(__name__)


# ------------------------------
# Currencies
# ------------------------------

@extend_schema(summary="List supported currencies")
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def currency_list(request: Request) -> Response:
    return APIResponse.success(data=list_currencies(), message="Currencies retrieved.")


@extend_schema(
    summary="Convert an amount between currencies",
    parameters=[
        OpenApiParameter(name="from", required=True, type=str),
        OpenApiParameter(name="to", required=True, type=str),
        OpenApiParameter(name="amount", required=True, type=str),
    ],
)
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def currency_convert(request: Request) -> Response:
    params = request.query_params
    if not params.get("amount"):
        raise ValidationError("amount is required", field_name="amount")
    result = get_exchange_rate_service().convert(params.get("amount"), params.get("from", ""), params.get("to", ""))
    for key in ("amount", "converted_amount", "rate"):
        result[key] = str(result[key])
    return APIResponse.success(data=result, message="Conversion complete.")


@extend_schema(
    summary="Exchange rates for a base currency",
    parameters=[OpenApiParameter(name="base", required=False, type=str)],
)
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def currency_rates(request: Request) -> Response:
    result = get_exchange_rate_service().get_rates(request.query_params.get("base", "USD"))
    result["rates"] = {code: str(rate) for code, rate in result["rates"].items()}
    return APIResponse.success(data=result, message="Exchange rates retrieved.")


# ------------------------------
# Client portal
# ------------------------------

@extend_schema(summary="Client portal overview")
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def portal_detail(request: Request, token: str) -> Response:
    overview = ClientPortalService.get_overview(token)
    return APIResponse.success(
        data={
            "business_name": overview["business_name"],
            "client": PortalClientSerializer(overview["client"]).data,
            "invoices": PortalInvoiceSerializer(overview["invoices"], many=True).data,
        },
        message="Portal loaded.",
    )


@extend_schema(summary="Client portal invoice", description="Viewing a sent invoice marks it viewed.")
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def portal_invoice_detail(request: Request, token: str, invoice_id: int) -> Response:
    invoice = ClientPortalService.view_invoice(token, invoice_id, ip_address=get_client_ip(request))
    return APIResponse.success(data=PortalInvoiceDetailSerializer(invoice).data, message="Invoice retrieved.")


@extend_schema(summary="Pay an invoice", description="Creates a Stripe Checkout session for the balance due.", request=None)
@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def portal_invoice_pay(request: Request, token: str, invoice_id: int) -> Response:
    session = ClientPortalService.start_payment(token, invoice_id)
    return APIResponse.success(data=session, message="Checkout session created.")


# ------------------------------
# Recurring trigger
# ------------------------------

@extend_schema(
    summary="Run due recurring invoices",
    description="Called by an external scheduler with the `X-Cron-Secret` header.",
    request=None,
    parameters=[OpenApiParameter(name="X-Cron-Secret", location=OpenApiParameter.HEADER, required=True, type=str)],
)
@api_view(["POST"])
@authentication_classes([])
@permission_classes([HasCronSecret])
def run_recurring(request: Request) -> Response:
    logger.info("Recurring invoice run triggered")
    results = RecurringInvoiceGenerator.process_due()
    return APIResponse.success(data=results, message="Recurring invoices processed.")
