import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, DecimalField, Max, Q, QuerySet, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from ..currency import is_supported, normalize_code
from ..models import Client, Invoice
from ..validation import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ZERO = Value(Decimal('0.00'), output_field=DecimalField(max_digits=15, decimal_places=2))

# Invoices that count towards invoiced/outstanding figures.
BILLED_FILTER = ~Q(invoices__status__in=[Invoice.Status.DRAFT, Invoice.Status.CANCELLED])


class PortalAction(str, Enum):
    ENABLE_PORTAL = "enable_portal"
    DISABLE_PORTAL = "disable_portal"
    REGENERATE_TOKEN = "regenerate_token"


class ClientService:
    EDITABLE_FIELDS = (
        'name', 'email', 'phone', 'company', 'tax_id', 'address', 'city', 'state',
        'postal_code', 'country', 'default_currency', 'payment_terms_days', 'default_hourly_rate', 'notes', 'tags',
    )

    @staticmethod
    def get_client(user, client_id) -> Client:
        try:
            return Client.objects.get(pk=client_id, user=user)
        except (Client.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Client not found")

    @staticmethod
    def with_stats(queryset: QuerySet) -> QuerySet:
        """Annotate clients with invoicing figures computed from their invoices."""
        return queryset.annotate(
            invoice_count=Count('invoices', distinct=True),
            total_invoiced=Coalesce(Sum('invoices__total', filter=BILLED_FILTER), ZERO),
            total_paid=Coalesce(Sum('invoices__amount_paid'), ZERO),
            outstanding=Coalesce(Sum('invoices__balance_due', filter=BILLED_FILTER), ZERO),
            last_invoice_date=Max('invoices__issue_date'),
        )

    @classmethod
    def get_stats(cls, client: Client) -> Dict[str, Any]:
        annotated = cls.with_stats(Client.objects.filter(pk=client.pk)).get()
        return {
            'invoice_count': annotated.invoice_count,
            'total_invoiced': annotated.total_invoiced,
            'total_paid': annotated.total_paid,
            'outstanding': annotated.outstanding,
            'last_invoice_date': annotated.last_invoice_date,
        }

    @classmethod
    def list_clients(cls, user, search: str = "", tag: str = "", status: str = "active") -> QuerySet:
        queryset = Client.objects.filter(user=user)

        if status == "active":
            queryset = queryset.filter(is_active=True)
        elif status == "inactive":
            queryset = queryset.filter(is_active=False)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(email__icontains=search) | Q(company__icontains=search)
            )

        if tag:
            # JSON containment is not portable across backends; match tags in Python.
            tagged_ids = [
                pk for pk, tags in queryset.values_list('pk', 'tags')
                if tag in (tags or [])
            ]
            queryset = queryset.filter(pk__in=tagged_ids)

        return cls.with_stats(queryset).order_by('name')

    @staticmethod
    def _check_email_available(user, email: str, exclude_pk: Optional[int] = None) -> str:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Client email is required", field_name='email')
        duplicates = Client.objects.filter(user=user, email=email)
        if exclude_pk:
            duplicates = duplicates.exclude(pk=exclude_pk)
        if duplicates.exists():
            raise ValidationError(f"A client with email {email} already exists", field_name='email')
        return email

    @classmethod
    @transaction.atomic
    def create_client(cls, user, data: Dict[str, Any]) -> Client:
        name = (data.get('name') or "").strip()
        if not name:
            raise ValidationError("Client name is required", field_name='name')
        email = cls._check_email_available(user, data.get('email'))

        fields = {field: data[field] for field in cls.EDITABLE_FIELDS if field in data}
        fields.update(name=name, email=email)
        if 'default_currency' in fields:
            fields['default_currency'] = cls._validated_currency(fields['default_currency'])

        try:
            with transaction.atomic():
                client = Client.objects.create(user=user, **fields)
        except IntegrityError:
            raise ValidationError(f"A client with email {email} already exists", field_name='email')

        logger.info(f"Client {client.id} created by user {user.id}")
        return client

    @classmethod
    @transaction.atomic
    def update_client(cls, client: Client, data: Dict[str, Any]) -> Client:
        if 'email' in data:
            data['email'] = cls._check_email_available(client.user, data['email'], exclude_pk=client.pk)
        if 'name' in data and not (data['name'] or "").strip():
            raise ValidationError("Client name is required", field_name='name')
        if 'default_currency' in data:
            data['default_currency'] = cls._validated_currency(data['default_currency'])

        for field in cls.EDITABLE_FIELDS:
            if field in data:
                setattr(client, field, data[field])
        if data.get('is_active') is True:
            client.is_active = True
        client.save()
        return client

    @staticmethod
    @transaction.atomic
    def delete_client(client: Client) -> bool:
        """
        Remove a client. Clients that were ever invoiced are only deactivated so
        their invoices keep a counterparty; returns True when hard-deleted.
        """
        if client.invoices.exists():
            client.is_active = False
            client.portal_enabled = False
            client.save(update_fields=['is_active', 'portal_enabled', 'updated_at'])
            logger.info(f"Client {client.id} deactivated (has invoices)")
            return False

        client_id = client.id
        client.delete()
        logger.info(f"Client {client_id} deleted")
        return True

    @classmethod
    def get_or_create_for_invoice(cls, user, name: str, email: str, **extra) -> Client:
        """Resolve the client named on an invoice by email, creating it when unknown."""
        email = (email or "").strip().lower()
        if not email or not (name or "").strip():
            raise ValidationError("Client name and email are required", field_name='client')

        client = Client.objects.filter(user=user, email=email).first()
        if client:
            return client

        data = {key: value for key, value in extra.items() if key in cls.EDITABLE_FIELDS and value}
        data.update(name=name, email=email)
        logger.info(f"Creating client {email} implicitly from invoice for user {user.id}")
        return cls.create_client(user, data)

    @staticmethod
    def _validated_currency(code: str) -> str:
        code = normalize_code(code)
        if not is_supported(code):
            raise ValidationError(f"Unsupported currency: {code}", field_name='default_currency')
        return code

    # ------------------------------------------------------------------
    # Portal access
    # ------------------------------------------------------------------

    @classmethod
    @transaction.atomic
    def apply_portal_action(cls, client: Client, action: str) -> Client:
        try:
            action = PortalAction(action)
        except ValueError:
            raise ValidationError(f"Unknown portal action: {action}", field_name='action')

        if action is PortalAction.ENABLE_PORTAL:
            if not client.is_active:
                raise ValidationError("Cannot enable the portal for an inactive client", field_name='action')
            if not client.portal_token:
                cls._issue_token(client)
            client.portal_enabled = True
        elif action is PortalAction.DISABLE_PORTAL:
            client.portal_enabled = False
        elif action is PortalAction.REGENERATE_TOKEN:
            cls._issue_token(client)
        else:
            raise ValidationError(f"Unhandled portal action: {action.value}", field_name='action')

        client.save(update_fields=['portal_enabled', 'portal_token', 'portal_token_created_at', 'updated_at'])
        logger.info(f"Portal action {action.value} applied to client {client.id}")
        return client

    @staticmethod
    def _issue_token(client: Client) -> None:
        client.portal_token = Client.generate_portal_token()
        client.portal_token_created_at = timezone.now()

    @staticmethod
    def get_by_portal_token(token: str) -> Client:
        if not token or len(token) != 64:
            raise NotFoundError("Portal link is invalid or has been disabled")
        client = Client.objects.select_related('user').filter(
            portal_token=token, portal_enabled=True, is_active=True,
        ).first()
        if client is None:
            raise NotFoundError("Portal link is invalid or has been disabled")
        return client
