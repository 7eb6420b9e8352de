"""
Standardized Error Handling

API error format: { success: false, error: { code, message, fields? }, request_id }

HTTP Status Code Standards:
- 400: Bad Request (validation errors, malformed input)
- 401: Unauthorized (missing/invalid credential or shared secret)
- 404: Not Found (absent or not owned by the caller)
- 409: Conflict (duplicate, concurrent modification)
- 422: Unprocessable Entity (business rule violation)
- 502: Bad Gateway (payment processor, email provider or rate API failure)
"""

from __future__ import annotations

import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from django.http import JsonResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FIELD_REQUIRED = "FIELD_REQUIRED"
    FIELD_INVALID = "FIELD_INVALID"
    FIELD_TOO_SHORT = "FIELD_TOO_SHORT"
    FIELD_TOO_LONG = "FIELD_TOO_LONG"
    FIELD_OUT_OF_RANGE = "FIELD_OUT_OF_RANGE"

    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_ALREADY_EXISTS = "RESOURCE_ALREADY_EXISTS"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    INVOICE_HAS_PAYMENTS = "INVOICE_HAS_PAYMENTS"

    DUPLICATE_DELIVERY = "DUPLICATE_DELIVERY"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class FieldError:
    field: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "field": self.field,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ErrorDetail:
    code: str
    message: str
    fields: Optional[List[FieldError]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.fields:
            result["fields"] = [f.to_dict() for f in self.fields]
        return result


@dataclass
class ErrorResponse:
    success: bool = False
    error: Optional[ErrorDetail] = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "request_id": self.request_id,
        }

    def to_json_response(self, status: int = 400) -> JsonResponse:
        return JsonResponse(self.to_dict(), status=status)


class APIError(Exception):
    status = 400

    def __init__(
        self,
        code: Union[ErrorCode, str],
        message: str,
        status: Optional[int] = None,
        fields: Optional[List[FieldError]] = None,
        request_id: Optional[str] = None,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        if status is not None:
            self.status = status
        self.fields = fields
        self.request_id = request_id or str(uuid.uuid4())
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            success=False,
            error=ErrorDetail(
                code=self.code,
                message=self.message,
                fields=self.fields,
            ),
            request_id=self.request_id,
        )

    def to_json_response(self) -> JsonResponse:
        return self.to_response().to_json_response(self.status)


class ValidationError(APIError):
    def __init__(
        self,
        message: str = "Validation failed",
        fields: Optional[List[FieldError]] = None,
        field_name: Optional[str] = None,
        code: Union[ErrorCode, str] = ErrorCode.VALIDATION_ERROR,
    ):
        if field_name and not fields:
            fields = [FieldError(field=field_name, code=ErrorCode.FIELD_INVALID.value, message=message)]
        super().__init__(code=code, message=message, status=400, fields=fields)


class AuthenticationError(APIError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(code=ErrorCode.AUTHENTICATION_FAILED, message=message, status=401)


class NotFoundError(APIError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(code=ErrorCode.RESOURCE_NOT_FOUND, message=message, status=404)


class ConflictError(APIError):
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(code=ErrorCode.RESOURCE_CONFLICT, message=message, status=409)


class BusinessRuleError(APIError):
    def __init__(
        self,
        message: str,
        code: Union[ErrorCode, str] = ErrorCode.BUSINESS_RULE_VIOLATION,
    ):
        super().__init__(code=code, message=message, status=422)


class InvalidTransitionError(BusinessRuleError):
    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition invoice from '{from_status}' to '{to_status}'",
            code=ErrorCode.INVALID_STATE_TRANSITION,
        )


class ExternalServiceError(APIError):
    def __init__(self, service: str, message: str = "External service unavailable"):
        self.service = service
        super().__init__(code=ErrorCode.EXTERNAL_SERVICE_ERROR, message=f"{service}: {message}", status=502)


class WebhookSignatureError(APIError):
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(code=ErrorCode.INVALID_SIGNATURE, message=message, status=400)


class IdempotencyConflict(APIError):
    """Raised when an already-applied processor event is delivered again."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(
            code=ErrorCode.DUPLICATE_DELIVERY,
            message=f"Event with reference {reference} was already processed",
            status=200,
        )


def format_validation_errors(
    errors: Dict[str, Any],
    prefix: str = "",
) -> List[FieldError]:
    field_errors = []

    for field_name, error_list in errors.items():
        full_field = f"{prefix}{field_name}" if prefix else field_name

        if isinstance(error_list, dict):
            field_errors.extend(format_validation_errors(error_list, f"{full_field}."))
        elif isinstance(error_list, list):
            for error in error_list:
                if isinstance(error, dict):
                    field_errors.extend(format_validation_errors(error, f"{full_field}."))
                else:
                    field_errors.append(FieldError(
                        field=full_field,
                        code=ErrorCode.FIELD_INVALID.value,
                        message=str(error),
                    ))
        else:
            field_errors.append(FieldError(
                field=full_field,
                code=ErrorCode.FIELD_INVALID.value,
                message=str(error_list),
            ))

    return field_errors
