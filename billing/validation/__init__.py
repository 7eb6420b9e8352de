"""
Error taxonomy shared by the service layer and the API.

Services raise these; the DRF exception handler renders them.
"""

from .errors import (
    APIError,
    AuthenticationError,
    BusinessRuleError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    ExternalServiceError,
    IdempotencyConflict,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
    format_validation_errors,
)

__all__ = [
    "APIError",
    "AuthenticationError",
    "BusinessRuleError",
    "ConflictError",
    "ErrorCode",
    "ErrorResponse",
    "ExternalServiceError",
    "IdempotencyConflict",
    "InvalidTransitionError",
    "NotFoundError",
    "ValidationError",
    "WebhookSignatureError",
    "format_validation_errors",
]
