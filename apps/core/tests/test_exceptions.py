"""
Tests for the error taxonomy and the DRF exception handler.
"""
import pytest
from unittest.mock import Mock, patch
from django.test import RequestFactory
from django_ratelimit.exceptions import Ratelimited
from rest_framework import exceptions as drf_exceptions

from apps.core.exceptions import (
    custom_exception_handler, ratelimit_view,
    AuditWriteFailure, Conflict, InvalidCredentials, NotFound, PermissionDenied,
    RoleInUse, Unauthenticated, ValidationError,
)


@pytest.fixture
def context():
    request = RequestFactory().post('/v1/roles')
    request.request_id = 'req-123'
    return {'request': request, 'view': Mock()}


class TestTaxonomy:

    @pytest.mark.parametrize('exc, status_code, code', [
        (Unauthenticated('no token'), 401, 'UNAUTHENTICATED'),
        (InvalidCredentials(), 401, 'INVALID_CREDENTIALS'),
        (PermissionDenied(), 403, 'PERMISSION_DENIED'),
        (NotFound('Role not found'), 404, 'NOT_FOUND'),
        (Conflict('exists'), 409, 'CONFLICT'),
        (RoleInUse('in use'), 409, 'ROLE_IN_USE'),
        (ValidationError('bad'), 400, 'VALIDATION_ERROR'),
        (AuditWriteFailure('db down'), 500, 'AUDIT_WRITE_FAILURE'),
    ])
    def test_status_codes(self, exc, status_code, code):
        assert exc.status_code == status_code
        assert exc.code == code

    def test_role_in_use_is_a_conflict(self):
        assert isinstance(RoleInUse('in use'), Conflict)

    def test_permission_denied_keeps_checked_permissions(self):
        exc = PermissionDenied(permissions={'role:read', 'role:list'})
        assert exc.permissions == ['role:list', 'role:read']
        assert 'details' not in exc.to_response_data()

    def test_invalid_credentials_message_is_fixed(self):
        assert InvalidCredentials().message == 'Invalid email or password'


class TestExceptionHandler:

    def test_domain_error(self, context):
        response = custom_exception_handler(
            ValidationError('Invalid role', details={'name': ['Role name is required']}), context
        )

        assert response.status_code == 400
        assert response.data == {
            'error': 'Invalid role',
            'code': 'VALIDATION_ERROR',
            'details': {'name': ['Role name is required']},
            'request_id': 'req-123',
        }

    def test_drf_error_gets_request_id(self, context):
        response = custom_exception_handler(drf_exceptions.NotAuthenticated(), context)

        assert response.status_code == 401
        assert response.data['request_id'] == 'req-123'

    def test_unexpected_error_is_generic_500(self, context):
        with patch('apps.core.exceptions.logger') as mock_logger:
            response = custom_exception_handler(KeyError('internal detail'), context)

        assert response.status_code == 500
        assert response.data == {'error': 'Internal server error', 'code': 'INTERNAL_ERROR', 'request_id': 'req-123'}
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs['extra']['path'] == '/v1/roles'

    def test_server_side_domain_error_is_logged_as_error(self, context):
        with patch('apps.core.exceptions.logger') as mock_logger:
            response = custom_exception_handler(AuditWriteFailure('db down'), context)

        assert response.status_code == 500
        mock_logger.error.assert_called_once()

    def test_ratelimited(self, context):
        with patch('apps.core.logging.SecurityLogger.log_rate_limit_exceeded') as mock_log:
            response = custom_exception_handler(Ratelimited(), context)

        assert response.status_code == 429
        assert response['Retry-After'] == '60'
        assert response.data['code'] == 'RATE_LIMIT_EXCEEDED'
        mock_log.assert_called_once()


def test_ratelimit_view():
    request = RequestFactory().post('/v1/auth/login', REMOTE_ADDR='10.0.0.9')

    with patch('apps.core.logging.SecurityLogger.log_rate_limit_exceeded') as mock_log:
        response = ratelimit_view(request, Ratelimited())

    assert response.status_code == 429
    assert response['Retry-After'] == '60'
    mock_log.assert_called_once_with(endpoint='/v1/auth/login', ip_address='10.0.0.9')
