"""
Tests for RBAC permission classes and decorators.
"""
from datetime import datetime, timezone as dt_timezone

import pytest
from unittest.mock import Mock, patch
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory
from rest_framework.views import APIView

from apps.core.exceptions import PermissionDenied
from apps.core.permissions import HasPermissions, requires_permissions, MODE_ANY
from apps.rbac.services import Credential


def make_credential(*permissions):
    now = datetime.now(dt_timezone.utc)
    return Credential(
        user_id='user-123',
        session_id='session-123',
        email='test@example.com',
        name='Test User',
        permissions=frozenset(permissions),
        issued_at=now,
        expires_at=now,
    )


@pytest.fixture
def request_factory():
    """Provide Django request factory."""
    return RequestFactory()


@pytest.fixture
def mock_view():
    """Provide mock view instance."""
    view = Mock(spec=APIView)
    return view


@pytest.fixture
def mock_request(request_factory):
    """Provide an authenticated request whose credential holds no permissions."""
    request = request_factory.get('/test')
    request.user = Mock()
    request.user.id = 'user-123'
    request.user.is_authenticated = True
    request.auth = make_credential()
    request.request_id = 'req-123'
    return request


@pytest.fixture
def security_logger():
    with patch('apps.core.permissions.SecurityLogger') as mock_security:
        yield mock_security


class TestHasPermissions:
    """Test HasPermissions permission class."""

    def test_no_required_permissions_allows_access(self, mock_request, mock_view):
        """Views without required_permissions allow access."""
        assert HasPermissions().has_permission(mock_request, mock_view) is True

    def test_empty_required_permissions_allows_access(self, mock_request, mock_view):
        mock_view.required_permissions = set()
        assert HasPermissions().has_permission(mock_request, mock_view) is True

    def test_unauthenticated_request_is_refused(self, request_factory, mock_view):
        request = request_factory.get('/test')
        request.user = AnonymousUser()
        request.auth = None
        mock_view.required_permissions = {'role:list'}

        assert HasPermissions().has_permission(request, mock_view) is False

    def test_user_has_all_required_permissions(self, mock_request, mock_view):
        mock_request.auth = make_credential('role:list', 'role:read', 'user:read')
        mock_view.required_permissions = {'role:list', 'role:read'}

        assert HasPermissions().has_permission(mock_request, mock_view) is True

    def test_user_missing_one_permission(self, mock_request, mock_view, security_logger):
        mock_request.auth = make_credential('role:list')
        mock_view.required_permissions = {'role:list', 'role:read'}

        with pytest.raises(PermissionDenied) as exc_info:
            HasPermissions().has_permission(mock_request, mock_view)

        assert exc_info.value.permissions == ['role:list', 'role:read']
        kwargs = security_logger.log_permission_denied.call_args.kwargs
        assert kwargs['missing_permissions'] == {'role:read'}
        assert kwargs['path'] == '/test'

    def test_denial_body_does_not_list_permissions(self, mock_request, mock_view, security_logger):
        mock_view.required_permissions = {'role:delete'}

        with pytest.raises(PermissionDenied) as exc_info:
            HasPermissions().has_permission(mock_request, mock_view)

        assert 'role:delete' not in str(exc_info.value.to_response_data())

    def test_any_mode(self, mock_request, mock_view, security_logger):
        mock_view.required_permissions = {'role:read', 'role:list'}
        mock_view.permission_mode = MODE_ANY

        mock_request.auth = make_credential('role:read')
        assert HasPermissions().has_permission(mock_request, mock_view) is True

        mock_request.auth = make_credential('user:read')
        with pytest.raises(PermissionDenied):
            HasPermissions().has_permission(mock_request, mock_view)

    def test_required_permissions_as_string(self, mock_request, mock_view):
        mock_request.auth = make_credential('role:list')
        mock_view.required_permissions = 'role:list'

        assert HasPermissions().has_permission(mock_request, mock_view) is True

    def test_method_requirement_takes_precedence(self, mock_request, security_logger):
        @requires_permissions('role:list')
        class View(APIView):
            @requires_permissions('role:create')
            def post(self, request):
                pass

            def get(self, request):
                pass

        mock_request.auth = make_credential('role:list')
        assert HasPermissions().has_permission(mock_request, View()) is True

        mock_request.method = 'POST'
        with pytest.raises(PermissionDenied):
            HasPermissions().has_permission(mock_request, View())

    def test_request_without_credential_looks_permissions_up(self, mock_request, mock_view):
        mock_request.auth = None
        mock_view.required_permissions = {'role:list'}

        with patch('apps.rbac.services.RBACService.get_effective_permissions', return_value={'role:list'}) as lookup:
            assert HasPermissions().has_permission(mock_request, mock_view) is True

        lookup.assert_called_once_with(mock_request.user)

    def test_live_permissions_setting(self, mock_request, mock_view, settings, security_logger):
        settings.AUTH_LIVE_PERMISSIONS = True
        mock_request.auth = make_credential('role:list')
        mock_view.required_permissions = {'role:list'}

        with patch('apps.rbac.services.RBACService.get_effective_permissions', return_value=set()):
            with pytest.raises(PermissionDenied):
                HasPermissions().has_permission(mock_request, mock_view)


class TestRequiresPermissionsDecorator:
    """Test @requires_permissions decorator."""

    def test_decorator_on_class(self):
        @requires_permissions('role:read', 'role:list')
        class View(APIView):
            pass

        assert View.required_permissions == {'role:read', 'role:list'}
        assert View.permission_mode == 'all'

    def test_decorator_on_method(self):
        class View(APIView):
            @requires_permissions('role:create', mode=MODE_ANY)
            def post(self, request):
                pass

        assert View.post.required_permissions == {'role:create'}
        assert View.post.permission_mode == 'any'
        assert View.post.__name__ == 'post'

    def test_decorator_preserves_method_functionality(self):
        class View(APIView):
            @requires_permissions('role:read')
            def get(self, request, role_id):
                return {'role_id': role_id}

        assert View().get(Mock(), role_id='r1') == {'role_id': 'r1'}

    def test_different_permissions_on_different_methods(self):
        class View(APIView):
            @requires_permissions('role:list')
            def get(self, request):
                pass

            @requires_permissions('role:create')
            def post(self, request):
                pass

        assert View.get.required_permissions == {'role:list'}
        assert View.post.required_permissions == {'role:create'}

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            requires_permissions('role:read', mode='most')
