"""
Error taxonomy and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


def _authenticated_user_id(request):
    # Read the user DRF already resolved; never trigger authentication here
    user = getattr(getattr(request, '_request', None), 'user', None)
    if user is not None and getattr(user, 'is_authenticated', False):
        return str(user.id)
    return None


def _rate_limit_body(request_id=None):
    return {
        'error': 'Rate limit exceeded. Please try again later.',
        'code': 'RATE_LIMIT_EXCEEDED',
        'request_id': request_id,
        'retry_after': RATE_LIMIT_RETRY_AFTER,
    }


def ratelimit_view(request, exception):
    """
    Custom view for django-ratelimit to return 429 instead of 403.

    Called when a rate limit is exceeded with block=True.
    """
    from apps.core.logging import SecurityLogger
    from apps.core.middleware import get_client_ip

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path,
        ip_address=get_client_ip(request),
    )

    response = JsonResponse(
        _rate_limit_body(getattr(request, 'request_id', None)),
        status=429
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.

    - AuroraException subclasses map to their own status code and a
      ``{'error', 'code', 'details'}`` body.
    - DRF exceptions keep DRF's body, with ``request_id`` added.
    - Anything else is logged with full context and returned as a generic 500.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_context = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'view': context['view'].__class__.__name__ if context.get('view') else None,
        'user_id': _authenticated_user_id(request),
    }

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger
        from apps.core.middleware import get_client_ip

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=get_client_ip(request) if request else 'unknown',
        )
        response = Response(_rate_limit_body(request_id), status=status.HTTP_429_TOO_MANY_REQUESTS)
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, AuroraException):
        if exc.status_code >= 500:
            logger.error(
                f"API Exception: {exc.__class__.__name__}",
                extra={**log_context, 'exception': exc.message},
                exc_info=True
            )
        else:
            logger.warning(
                f"API Exception: {exc.__class__.__name__}",
                extra={**log_context, 'exception': exc.message},
            )
        return Response(exc.to_response_data(request_id), status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"Unhandled exception: {exc.__class__.__name__}",
            extra={**log_context, 'exception': str(exc)},
            exc_info=exc
        )
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(
        f"API Exception: {exc.__class__.__name__}",
        extra={**log_context, 'exception': str(exc)},
    )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


class AuroraException(Exception):
    """Base exception for Aurora-specific errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_response_data(self, request_id=None):
        data = {'error': self.message, 'code': self.code}
        if self.details:
            data['details'] = self.details
        if request_id:
            data['request_id'] = request_id
        return data


class Unauthenticated(AuroraException):
    """Raised when no valid credential accompanies the request."""
    status_code = 401
    code = 'UNAUTHENTICATED'


class InvalidCredentials(Unauthenticated):
    """
    Raised when login fails.

    Unknown email and wrong password raise the same error with the same
    message so callers cannot probe for registered addresses.
    """
    code = 'INVALID_CREDENTIALS'

    def __init__(self, message='Invalid email or password', details=None):
        super().__init__(message, details)


class PermissionDenied(AuroraException):
    """
    Raised when an authenticated user lacks required permissions.

    ``permissions`` holds the checked permission ids for server-side logging.
    They are never included in the response body.
    """
    status_code = 403
    code = 'PERMISSION_DENIED'

    def __init__(self, message='You do not have permission to perform this action', permissions=None):
        self.permissions = sorted(permissions or [])
        super().__init__(message)


class NotFound(AuroraException):
    """Raised when a referenced entity does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class Conflict(AuroraException):
    """Raised on uniqueness violations (duplicate names or assignments)."""
    status_code = 409
    code = 'CONFLICT'


class RoleInUse(Conflict):
    """Raised when deleting a role that is still assigned to users."""
    code = 'ROLE_IN_USE'


class ValidationError(AuroraException):
    """Raised when input validation fails. ``details`` maps field to messages."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class AuditWriteFailure(AuroraException):
    """Raised inside the audit write path. Never surfaced to callers."""
    code = 'AUDIT_WRITE_FAILURE'
