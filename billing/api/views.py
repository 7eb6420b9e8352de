from typing import Any, Dict, Optional

from django.utils.dateparse import parse_date
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from ..models import Client, Estimate, Invoice, TimeEntry
from ..services import (
    BusinessProfileService,
    ClientService,
    EstimateService,
    ExpenseService,
    InvoiceService,
    NotificationService,
    RecurringInvoiceGenerator,
    RecurringInvoiceService,
    TimeTrackingService,
)
from ..validation import ValidationError
from .response import APIResponse
from .serializers import (
    BusinessProfileSerializer,
    ClientPortalActionSerializer,
    ClientSerializer,
    ClientWriteSerializer,
    EstimateSerializer,
    EstimateStatusSerializer,
    EstimateWriteSerializer,
    ExpenseSerializer,
    ExpenseWriteSerializer,
    InvoiceDetailSerializer,
    InvoiceHistorySerializer,
    InvoiceListSerializer,
    InvoiceSendSerializer,
    InvoiceStatusSerializer,
    InvoiceWriteSerializer,
    PaymentSerializer,
    RecurringInvoiceSerializer,
    RecurringInvoiceWriteSerializer,
    TimeEntryInvoiceSerializer,
    TimeEntrySerializer,
    TimeEntryWriteSerializer,
)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

ID_PARAM = OpenApiParameter(
    name="pk",
    description="Object ID",
    required=True,
    type=OpenApiTypes.INT,
    location=OpenApiParameter.PATH,
)


def _validated(serializer_class, data, partial: bool = False) -> Dict[str, Any]:
    serializer = serializer_class(data=data, partial=partial)
    serializer.is_valid(raise_exception=True)
    return dict(serializer.validated_data)


def _paginated(request: Request, queryset, serializer_class, message: str) -> Response:
    try:
        page = max(int(request.query_params.get("page", 1)), 1)
        page_size = min(max(int(request.query_params.get("page_size", DEFAULT_PAGE_SIZE)), 1), MAX_PAGE_SIZE)
    except ValueError:
        raise ValidationError("page and page_size must be integers", field_name="page")

    total = queryset.count()
    offset = (page - 1) * page_size
    rows = queryset[offset:offset + page_size]
    return APIResponse.paginated(
        data=serializer_class(rows, many=True).data,
        page=page,
        page_size=page_size,
        total=total,
        message=message,
    )


def _parse_date_param(request: Request, *names: str) -> Optional[Any]:
    for name in names:
        raw = request.query_params.get(name)
        if raw:
            value = parse_date(raw)
            if value is None:
                raise ValidationError(f"{name} must be a date (YYYY-MM-DD)", field_name=name)
            return value
    return None


def _parse_bool_param(request: Request, name: str) -> Optional[bool]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


# ------------------------------
# Invoice ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List invoices",
        description="Paginated invoices of the authenticated user. `status=overdue` selects the derived overdue set.",
        parameters=[
            OpenApiParameter(name="status", description="Filter by status, including derived `overdue`", required=False, type=str),
            OpenApiParameter(name="search", description="Search invoice number, client name or email", required=False, type=str),
            OpenApiParameter(name="client", description="Filter by client id", required=False, type=int),
        ],
        responses={200: InvoiceListSerializer(many=True)},
    ),
    retrieve=extend_schema(summary="Get invoice details", parameters=[ID_PARAM], responses={200: InvoiceDetailSerializer}),
    create=extend_schema(summary="Create invoice", request=InvoiceWriteSerializer, responses={201: InvoiceDetailSerializer}),
    partial_update=extend_schema(
        summary="Update invoice",
        description="Only draft and sent invoices are editable. Totals are recomputed server-side.",
        request=InvoiceWriteSerializer,
        parameters=[ID_PARAM],
        responses={200: InvoiceDetailSerializer},
    ),
    destroy=extend_schema(summary="Delete invoice", parameters=[ID_PARAM]),
)
class InvoiceViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk) -> Invoice:
        return InvoiceService.get_invoice(self.request.user, pk)

    def list(self, request: Request) -> Response:
        queryset = InvoiceService.filter_invoices(
            Invoice.objects.filter(user=request.user).select_related("client"),
            search=request.query_params.get("search", "").strip(),
            status=request.query_params.get("status", "").strip(),
            client_id=request.query_params.get("client") or None,
        )
        return _paginated(request, queryset, InvoiceListSerializer, "Invoices retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        return APIResponse.success(data=InvoiceDetailSerializer(self._get(pk)).data, message="Invoice retrieved.")

    def create(self, request: Request) -> Response:
        data = _validated(InvoiceWriteSerializer, request.data)
        items = data.pop("items", None) or []
        invoice = InvoiceService.create_invoice(request.user, data, items)
        return APIResponse.created(data=InvoiceDetailSerializer(invoice).data, message="Invoice created.")

    def partial_update(self, request: Request, pk=None) -> Response:
        invoice = self._get(pk)
        data = _validated(InvoiceWriteSerializer, request.data, partial=True)
        items = data.pop("items", None)
        invoice = InvoiceService.update_invoice(invoice, request.user, data, items)
        return APIResponse.success(data=InvoiceDetailSerializer(invoice).data, message="Invoice updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    def destroy(self, request: Request, pk=None) -> Response:
        InvoiceService.delete_invoice(self._get(pk))
        return APIResponse.success(message="Invoice deleted.")

    @extend_schema(
        summary="Update invoice status",
        description="User transitions only: draft to sent, draft or sent to cancelled.",
        request=InvoiceStatusSerializer,
        responses={200: InvoiceDetailSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk=None) -> Response:
        data = _validated(InvoiceStatusSerializer, request.data)
        invoice = InvoiceService.transition_status(self._get(pk), request.user, data["status"], data.get("reason", ""))
        return APIResponse.success(data=InvoiceDetailSerializer(invoice).data, message="Invoice status updated.")

    @extend_schema(summary="Get invoice history", responses={200: InvoiceHistorySerializer(many=True)}, parameters=[ID_PARAM])
    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request: Request, pk=None) -> Response:
        entries = self._get(pk).activities.select_related("user").all()
        return APIResponse.success(data=InvoiceHistorySerializer(entries, many=True).data, message="Invoice history retrieved.")

    @extend_schema(summary="List payments recorded against an invoice", responses={200: PaymentSerializer(many=True)}, parameters=[ID_PARAM])
    @action(detail=True, methods=["get"], url_path="payments")
    def payments(self, request: Request, pk=None) -> Response:
        payments = self._get(pk).payments.all()
        return APIResponse.success(data=PaymentSerializer(payments, many=True).data, message="Payments retrieved.")

    @extend_schema(
        summary="Email invoice",
        description="Deliver the invoice by email now. Drafts become sent on success; provider failures return 502.",
        request=InvoiceSendSerializer,
        responses={200: InvoiceDetailSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request: Request, pk=None) -> Response:
        data = _validated(InvoiceSendSerializer, request.data)
        invoice = NotificationService.send_invoice(
            self._get(pk),
            user=request.user,
            to=data.get("to") or None,
            subject=data.get("subject") or None,
            message=data.get("message", ""),
            pdf_base64=data.get("pdf_attachment") or None,
        )
        return APIResponse.success(data=InvoiceDetailSerializer(invoice).data, message="Invoice sent.")

    @extend_schema(summary="Invoice statistics", description="Counts and sums per status, including derived overdue.")
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request: Request) -> Response:
        return APIResponse.success(data=InvoiceService.get_invoice_stats(request.user), message="Invoice statistics loaded.")


# ------------------------------
# Client ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List clients",
        parameters=[
            OpenApiParameter(name="search", description="Search name, email or company", required=False, type=str),
            OpenApiParameter(name="tag", description="Only clients carrying this tag", required=False, type=str),
            OpenApiParameter(name="status", description="active (default), inactive or all", required=False, type=str),
        ],
        responses={200: ClientSerializer(many=True)},
    ),
    retrieve=extend_schema(summary="Get client with stats and recent invoices", parameters=[ID_PARAM]),
    create=extend_schema(summary="Create client", request=ClientWriteSerializer, responses={201: ClientSerializer}),
    partial_update=extend_schema(summary="Update client", request=ClientWriteSerializer, parameters=[ID_PARAM]),
    destroy=extend_schema(
        summary="Delete client",
        description="Clients without invoices are deleted; invoiced clients are deactivated instead.",
        parameters=[ID_PARAM],
    ),
)
class ClientViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk) -> Client:
        return ClientService.get_client(self.request.user, pk)

    @staticmethod
    def _with_stats(client: Client) -> Client:
        return ClientService.with_stats(Client.objects.filter(pk=client.pk)).get()

    def list(self, request: Request) -> Response:
        queryset = ClientService.list_clients(
            request.user,
            search=request.query_params.get("search", "").strip(),
            tag=request.query_params.get("tag", "").strip(),
            status=request.query_params.get("status", "active"),
        )
        return _paginated(request, queryset, ClientSerializer, "Clients retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        client = self._with_stats(self._get(pk))
        recent = client.invoices.exclude(status=Invoice.Status.CANCELLED).select_related("client").order_by("-issue_date", "-id")[:5]
        data = ClientSerializer(client).data
        data["recent_invoices"] = InvoiceListSerializer(recent, many=True).data
        return APIResponse.success(data=data, message="Client retrieved.")

    def create(self, request: Request) -> Response:
        client = ClientService.create_client(request.user, _validated(ClientWriteSerializer, request.data))
        return APIResponse.created(data=ClientSerializer(self._with_stats(client)).data, message="Client created.")

    def partial_update(self, request: Request, pk=None) -> Response:
        client = ClientService.update_client(self._get(pk), _validated(ClientWriteSerializer, request.data, partial=True))
        return APIResponse.success(data=ClientSerializer(self._with_stats(client)).data, message="Client updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    def destroy(self, request: Request, pk=None) -> Response:
        deleted = ClientService.delete_client(self._get(pk))
        return APIResponse.success(
            data={"deleted": deleted, "deactivated": not deleted},
            message="Client deleted." if deleted else "Client has invoices and was deactivated.",
        )

    @extend_schema(
        summary="Manage client portal access",
        description="`enable_portal`, `disable_portal` or `regenerate_token`.",
        request=ClientPortalActionSerializer,
        responses={200: ClientSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="portal")
    def portal(self, request: Request, pk=None) -> Response:
        data = _validated(ClientPortalActionSerializer, request.data)
        client = ClientService.apply_portal_action(self._get(pk), data["action"])
        return APIResponse.success(data=ClientSerializer(self._with_stats(client)).data, message="Portal settings updated.")


# ------------------------------
# Recurring invoice ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(summary="List recurring invoices", responses={200: RecurringInvoiceSerializer(many=True)}),
    retrieve=extend_schema(summary="Get recurring invoice", parameters=[ID_PARAM], responses={200: RecurringInvoiceSerializer}),
    create=extend_schema(summary="Create recurring invoice", request=RecurringInvoiceWriteSerializer, responses={201: RecurringInvoiceSerializer}),
    partial_update=extend_schema(summary="Update recurring invoice", request=RecurringInvoiceWriteSerializer, parameters=[ID_PARAM]),
)
class RecurringInvoiceViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk):
        return RecurringInvoiceService.get_schedule(self.request.user, pk)

    def list(self, request: Request) -> Response:
        queryset = RecurringInvoiceService.list_schedules(request.user, status=request.query_params.get("status", ""))
        return _paginated(request, queryset, RecurringInvoiceSerializer, "Recurring invoices retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        return APIResponse.success(data=RecurringInvoiceSerializer(self._get(pk)).data, message="Recurring invoice retrieved.")

    def create(self, request: Request) -> Response:
        schedule = RecurringInvoiceService.create_schedule(request.user, _validated(RecurringInvoiceWriteSerializer, request.data))
        return APIResponse.created(data=RecurringInvoiceSerializer(schedule).data, message="Recurring invoice created.")

    def partial_update(self, request: Request, pk=None) -> Response:
        data = _validated(RecurringInvoiceWriteSerializer, request.data, partial=True)
        data.pop("template_invoice_id", None)
        data.pop("client_id", None)
        schedule = RecurringInvoiceService.update_schedule(self._get(pk), data)
        return APIResponse.success(data=RecurringInvoiceSerializer(schedule).data, message="Recurring invoice updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    @extend_schema(summary="Pause schedule", request=None, responses={200: RecurringInvoiceSerializer}, parameters=[ID_PARAM])
    @action(detail=True, methods=["post"])
    def pause(self, request: Request, pk=None) -> Response:
        schedule = RecurringInvoiceService.pause_schedule(self._get(pk))
        return APIResponse.success(data=RecurringInvoiceSerializer(schedule).data, message="Recurring invoice paused.")

    @extend_schema(summary="Resume schedule", request=None, responses={200: RecurringInvoiceSerializer}, parameters=[ID_PARAM])
    @action(detail=True, methods=["post"])
    def resume(self, request: Request, pk=None) -> Response:
        schedule = RecurringInvoiceService.resume_schedule(self._get(pk))
        return APIResponse.success(data=RecurringInvoiceSerializer(schedule).data, message="Recurring invoice resumed.")

    @extend_schema(summary="Cancel schedule", description="Cancellation is irreversible.", request=None, parameters=[ID_PARAM])
    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk=None) -> Response:
        schedule = RecurringInvoiceService.cancel_schedule(self._get(pk))
        return APIResponse.success(data=RecurringInvoiceSerializer(schedule).data, message="Recurring invoice cancelled.")

    @extend_schema(
        summary="Generate now",
        description="Clone the template immediately and advance the schedule.",
        request=None,
        responses={201: InvoiceDetailSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"])
    def generate(self, request: Request, pk=None) -> Response:
        invoice = RecurringInvoiceGenerator.generate_for_schedule(self._get(pk), manual=True)
        return APIResponse.created(data=InvoiceDetailSerializer(invoice).data, message="Invoice generated.")

    @extend_schema(summary="Invoices generated by this schedule", responses={200: InvoiceListSerializer(many=True)}, parameters=[ID_PARAM])
    @action(detail=True, methods=["get"])
    def invoices(self, request: Request, pk=None) -> Response:
        queryset = RecurringInvoiceService.generated_invoices(self._get(pk))
        return _paginated(request, queryset, InvoiceListSerializer, "Generated invoices retrieved.")


# ------------------------------
# Expense ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List expenses",
        parameters=[
            OpenApiParameter(name="category", required=False, type=str),
            OpenApiParameter(name="client", required=False, type=int),
            OpenApiParameter(name="billable", required=False, type=bool),
            OpenApiParameter(name="start", description="From date (YYYY-MM-DD)", required=False, type=str),
            OpenApiParameter(name="end", description="To date (YYYY-MM-DD)", required=False, type=str),
            OpenApiParameter(name="search", required=False, type=str),
        ],
        responses={200: ExpenseSerializer(many=True)},
    ),
    retrieve=extend_schema(summary="Get expense", parameters=[ID_PARAM], responses={200: ExpenseSerializer}),
    create=extend_schema(summary="Create expense", request=ExpenseWriteSerializer, responses={201: ExpenseSerializer}),
    partial_update=extend_schema(summary="Update expense", request=ExpenseWriteSerializer, parameters=[ID_PARAM]),
    destroy=extend_schema(summary="Delete expense", parameters=[ID_PARAM]),
)
class ExpenseViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk):
        return ExpenseService.get_expense(self.request.user, pk)

    def list(self, request: Request) -> Response:
        filters = {
            "category": request.query_params.get("category"),
            "client_id": request.query_params.get("client"),
            "billable": _parse_bool_param(request, "billable"),
            "reimbursable": _parse_bool_param(request, "reimbursable"),
            "date_from": _parse_date_param(request, "start", "date_from"),
            "date_to": _parse_date_param(request, "end", "date_to"),
            "search": request.query_params.get("search", "").strip(),
        }
        queryset = ExpenseService.get_expenses_queryset(request.user, filters)
        return _paginated(request, queryset, ExpenseSerializer, "Expenses retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        return APIResponse.success(data=ExpenseSerializer(self._get(pk)).data, message="Expense retrieved.")

    def create(self, request: Request) -> Response:
        expense = ExpenseService.create_expense(request.user, _validated(ExpenseWriteSerializer, request.data))
        return APIResponse.created(data=ExpenseSerializer(expense).data, message="Expense created.")

    def partial_update(self, request: Request, pk=None) -> Response:
        expense = ExpenseService.update_expense(self._get(pk), _validated(ExpenseWriteSerializer, request.data, partial=True))
        return APIResponse.success(data=ExpenseSerializer(expense).data, message="Expense updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    def destroy(self, request: Request, pk=None) -> Response:
        ExpenseService.delete_expense(self._get(pk))
        return APIResponse.success(message="Expense deleted.")

    @extend_schema(summary="Expense categories")
    @action(detail=False, methods=["get"])
    def categories(self, request: Request) -> Response:
        return APIResponse.success(data=ExpenseService.get_categories(), message="Expense categories retrieved.")

    @extend_schema(
        summary="Expense summary",
        parameters=[
            OpenApiParameter(name="start", description="From date (YYYY-MM-DD)", required=False, type=str),
            OpenApiParameter(name="end", description="To date (YYYY-MM-DD)", required=False, type=str),
        ],
    )
    @action(detail=False, methods=["get"])
    def summary(self, request: Request) -> Response:
        summary = ExpenseService.get_expense_summary(
            request.user,
            date_from=_parse_date_param(request, "start", "date_from"),
            date_to=_parse_date_param(request, "end", "date_to"),
        )
        return APIResponse.success(data=summary, message="Expense summary loaded.")


# ------------------------------
# Estimate ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List estimates",
        description="Sent estimates past their valid-until date list under `status=expired`.",
        parameters=[
            OpenApiParameter(name="status", required=False, type=str),
            OpenApiParameter(name="client", required=False, type=int),
            OpenApiParameter(name="search", description="Search estimate number or client name", required=False, type=str),
        ],
        responses={200: EstimateSerializer(many=True)},
    ),
    retrieve=extend_schema(summary="Get estimate", parameters=[ID_PARAM], responses={200: EstimateSerializer}),
    create=extend_schema(summary="Create estimate", request=EstimateWriteSerializer, responses={201: EstimateSerializer}),
    partial_update=extend_schema(
        summary="Update estimate",
        description="Only draft and sent estimates are editable.",
        request=EstimateWriteSerializer,
        parameters=[ID_PARAM],
        responses={200: EstimateSerializer},
    ),
    destroy=extend_schema(summary="Delete estimate", parameters=[ID_PARAM]),
)
class EstimateViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk) -> Estimate:
        return EstimateService.get_estimate(self.request.user, pk)

    def list(self, request: Request) -> Response:
        queryset = EstimateService.list_estimates(
            request.user,
            status=request.query_params.get("status", "").strip(),
            client_id=request.query_params.get("client") or None,
            search=request.query_params.get("search", "").strip(),
        )
        return _paginated(request, queryset, EstimateSerializer, "Estimates retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        return APIResponse.success(data=EstimateSerializer(self._get(pk)).data, message="Estimate retrieved.")

    def create(self, request: Request) -> Response:
        data = _validated(EstimateWriteSerializer, request.data)
        items = data.pop("items", None) or []
        estimate = EstimateService.create_estimate(request.user, data, items)
        return APIResponse.created(data=EstimateSerializer(estimate).data, message="Estimate created.")

    def partial_update(self, request: Request, pk=None) -> Response:
        estimate = self._get(pk)
        data = _validated(EstimateWriteSerializer, request.data, partial=True)
        items = data.pop("items", None)
        estimate = EstimateService.update_estimate(estimate, data, items)
        return APIResponse.success(data=EstimateSerializer(estimate).data, message="Estimate updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    def destroy(self, request: Request, pk=None) -> Response:
        EstimateService.delete_estimate(self._get(pk))
        return APIResponse.success(message="Estimate deleted.")

    @extend_schema(
        summary="Update estimate status",
        description="draft to sent; sent to accepted, declined or expired; expired back to sent.",
        request=EstimateStatusSerializer,
        responses={200: EstimateSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request: Request, pk=None) -> Response:
        data = _validated(EstimateStatusSerializer, request.data)
        estimate = EstimateService.transition_status(self._get(pk), data["status"])
        return APIResponse.success(data=EstimateSerializer(estimate).data, message="Estimate status updated.")

    @extend_schema(
        summary="Convert estimate to invoice",
        description="Creates a draft invoice from a sent or accepted estimate. Each estimate converts once.",
        request=None,
        responses={201: InvoiceDetailSerializer},
        parameters=[ID_PARAM],
    )
    @action(detail=True, methods=["post"])
    def convert(self, request: Request, pk=None) -> Response:
        invoice = EstimateService.convert_to_invoice(self._get(pk), request.user)
        return APIResponse.created(data=InvoiceDetailSerializer(invoice).data, message="Estimate converted to invoice.")

    @extend_schema(summary="Duplicate estimate", request=None, responses={201: EstimateSerializer}, parameters=[ID_PARAM])
    @action(detail=True, methods=["post"])
    def duplicate(self, request: Request, pk=None) -> Response:
        estimate = EstimateService.duplicate_estimate(self._get(pk))
        return APIResponse.created(data=EstimateSerializer(estimate).data, message="Estimate duplicated.")

    @extend_schema(summary="Estimate statistics")
    @action(detail=False, methods=["get"])
    def stats(self, request: Request) -> Response:
        return APIResponse.success(data=EstimateService.get_estimate_stats(request.user), message="Estimate statistics loaded.")


# ------------------------------
# Time entry ViewSet
# ------------------------------
@extend_schema_view(
    list=extend_schema(
        summary="List time entries",
        parameters=[
            OpenApiParameter(name="client", required=False, type=int),
            OpenApiParameter(name="billable", required=False, type=bool),
            OpenApiParameter(name="unbilled", description="Only stopped billable entries not yet invoiced", required=False, type=bool),
            OpenApiParameter(name="start", description="From date (YYYY-MM-DD)", required=False, type=str),
            OpenApiParameter(name="end", description="To date (YYYY-MM-DD)", required=False, type=str),
            OpenApiParameter(name="search", required=False, type=str),
        ],
        responses={200: TimeEntrySerializer(many=True)},
    ),
    retrieve=extend_schema(summary="Get time entry", parameters=[ID_PARAM], responses={200: TimeEntrySerializer}),
    create=extend_schema(
        summary="Record time entry",
        description="Finished work, given an end time or a duration in seconds.",
        request=TimeEntryWriteSerializer,
        responses={201: TimeEntrySerializer},
    ),
    partial_update=extend_schema(summary="Update time entry", request=TimeEntryWriteSerializer, parameters=[ID_PARAM]),
    destroy=extend_schema(summary="Delete time entry", parameters=[ID_PARAM]),
)
class TimeEntryViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _get(self, pk) -> TimeEntry:
        return TimeTrackingService.get_entry(self.request.user, pk)

    def list(self, request: Request) -> Response:
        filters = {
            "client_id": request.query_params.get("client"),
            "billable": _parse_bool_param(request, "billable"),
            "unbilled": _parse_bool_param(request, "unbilled"),
            "date_from": _parse_date_param(request, "start", "date_from"),
            "date_to": _parse_date_param(request, "end", "date_to"),
            "search": request.query_params.get("search", "").strip(),
        }
        queryset = TimeTrackingService.get_entries_queryset(request.user, filters)
        return _paginated(request, queryset, TimeEntrySerializer, "Time entries retrieved.")

    def retrieve(self, request: Request, pk=None) -> Response:
        return APIResponse.success(data=TimeEntrySerializer(self._get(pk)).data, message="Time entry retrieved.")

    def create(self, request: Request) -> Response:
        entry = TimeTrackingService.create_entry(request.user, _validated(TimeEntryWriteSerializer, request.data))
        return APIResponse.created(data=TimeEntrySerializer(entry).data, message="Time entry recorded.")

    def partial_update(self, request: Request, pk=None) -> Response:
        entry = TimeTrackingService.update_entry(self._get(pk), _validated(TimeEntryWriteSerializer, request.data, partial=True))
        return APIResponse.success(data=TimeEntrySerializer(entry).data, message="Time entry updated.")

    def update(self, request: Request, pk=None) -> Response:
        return self.partial_update(request, pk)

    def destroy(self, request: Request, pk=None) -> Response:
        TimeTrackingService.delete_entry(self._get(pk))
        return APIResponse.success(message="Time entry deleted.")

    @extend_schema(summary="Start timer", request=TimeEntryWriteSerializer, responses={201: TimeEntrySerializer})
    @action(detail=False, methods=["post"])
    def start(self, request: Request) -> Response:
        entry = TimeTrackingService.start_timer(request.user, _validated(TimeEntryWriteSerializer, request.data))
        return APIResponse.created(data=TimeEntrySerializer(entry).data, message="Timer started.")

    @extend_schema(summary="Stop timer", request=None, responses={200: TimeEntrySerializer}, parameters=[ID_PARAM])
    @action(detail=True, methods=["post"])
    def stop(self, request: Request, pk=None) -> Response:
        entry = TimeTrackingService.stop_timer(self._get(pk))
        return APIResponse.success(data=TimeEntrySerializer(entry).data, message="Timer stopped.")

    @extend_schema(
        summary="Invoice time entries",
        description="Bills stopped, billable, uninvoiced entries of one client as a draft invoice.",
        request=TimeEntryInvoiceSerializer,
        responses={201: InvoiceDetailSerializer},
    )
    @action(detail=False, methods=["post"])
    def invoice(self, request: Request) -> Response:
        data = _validated(TimeEntryInvoiceSerializer, request.data)
        entry_ids = data.pop("entry_ids")
        invoice = TimeTrackingService.create_invoice_from_entries(request.user, entry_ids, data)
        return APIResponse.created(data=InvoiceDetailSerializer(invoice).data, message="Invoice created from time entries.")

    @extend_schema(summary="Time tracking summary", description="This week's hours and billable amount, and unbilled work.")
    @action(detail=False, methods=["get"])
    def summary(self, request: Request) -> Response:
        return APIResponse.success(data=TimeTrackingService.get_summary(request.user), message="Time summary loaded.")


# ------------------------------
# Business profile
# ------------------------------
class BusinessProfileView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Get business profile", responses={200: BusinessProfileSerializer})
    def get(self, request: Request) -> Response:
        profile = BusinessProfileService.get_profile(request.user)
        return APIResponse.success(data=BusinessProfileSerializer(profile).data, message="Business profile retrieved.")

    @extend_schema(summary="Update business profile", request=BusinessProfileSerializer, responses={200: BusinessProfileSerializer})
    def patch(self, request: Request) -> Response:
        data = _validated(BusinessProfileSerializer, request.data, partial=True)
        profile = BusinessProfileService.update_profile(request.user, data)
        return APIResponse.success(data=BusinessProfileSerializer(profile).data, message="Business profile updated.")
