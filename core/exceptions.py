"""
Error taxonomy for the stock ledger service and the DRF exception handler
that renders it.

Kinds:
    - VALIDATION_ERROR: malformed input (400)
    - NOT_FOUND: missing product / balance row (404)
    - CONFLICT: uniqueness clashes on catalog data (409)
    - BUSINESS_RULE_VIOLATION: insufficient stock, negative balance,
      over-reservation (409)
    - CONTENTION: balance row lock not acquired in time, retryable (409)
    - SERVER_ERROR: anything else (500), details hidden outside DEBUG
"""
import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .responses import error_body

logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = 'Internal server error occurred'


class InventoryError(APIException):
    """Base class for expected, classified errors."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = SERVER_ERROR_MESSAGE
    default_code = 'SERVER_ERROR'
    retryable = False

    def __init__(self, detail=None, *, errors=None):
        self.errors = errors
        super().__init__(detail or self.default_detail, self.default_code)

    @property
    def kind(self) -> str:
        return self.default_code

    @property
    def message(self) -> str:
        return str(self.detail)


class InventoryValidationError(InventoryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Validation failed'
    default_code = 'VALIDATION_ERROR'


class NotFoundError(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found'
    default_code = 'NOT_FOUND'


class ConflictError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource conflict'
    default_code = 'CONFLICT'


class BusinessRuleViolation(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Business rule violation'
    default_code = 'BUSINESS_RULE_VIOLATION'


class ContentionError(InventoryError):
    """The balance row stayed locked past the configured wait. Safe to retry."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Stock record is busy, please retry'
    default_code = 'CONTENTION'
    retryable = True


def _map_http_to_kind(code: int) -> str:
    return {
        status.HTTP_400_BAD_REQUEST: 'VALIDATION_ERROR',
        status.HTTP_401_UNAUTHORIZED: 'NOT_AUTHENTICATED',
        status.HTTP_403_FORBIDDEN: 'NOT_AUTHORIZED',
        status.HTTP_404_NOT_FOUND: 'NOT_FOUND',
        status.HTTP_405_METHOD_NOT_ALLOWED: 'METHOD_NOT_ALLOWED',
        status.HTTP_409_CONFLICT: 'CONFLICT',
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: 'UNSUPPORTED_MEDIA_TYPE',
        status.HTTP_429_TOO_MANY_REQUESTS: 'RATE_LIMIT_EXCEEDED',
    }.get(code, 'SERVER_ERROR')


def api_exception_handler(exc, context):
    """
    Render every error with the failure envelope.

    Classified errors keep their own kind and message. DRF errors are mapped
    by status code. Anything DRF does not recognize is logged with the view
    context and reported as a generic 500.
    """
    if isinstance(exc, DjangoValidationError):
        errors = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        exc = InventoryValidationError(errors=errors)

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            f"Unhandled error in {view.__class__.__name__ if view else 'unknown view'}: {exc!r}",
            exc_info=exc,
        )
        body = error_body('SERVER_ERROR', SERVER_ERROR_MESSAGE)
        if settings.DEBUG:
            body['detail'] = repr(exc)
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, InventoryError):
        body = error_body(exc.kind, exc.message, exc.errors)
        if exc.retryable:
            body['retryable'] = True
    elif response.status_code == status.HTTP_400_BAD_REQUEST:
        body = error_body('VALIDATION_ERROR', 'Validation failed', response.data)
    else:
        data = response.data
        message = data.get('detail') if isinstance(data, dict) else None
        body = error_body(_map_http_to_kind(response.status_code), str(message or 'Error'))

    response.data = body
    return response
