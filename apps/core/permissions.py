"""
DRF permission classes and decorators for RBAC permission enforcement.

This module provides:
- HasPermissions: DRF permission class that enforces permission requirements
- @requires_permissions: Decorator to declare required permissions on views
"""
import logging
from functools import wraps

from django.conf import settings
from rest_framework.permissions import BasePermission

from apps.core.exceptions import PermissionDenied
from apps.core.logging import SecurityLogger
from apps.core.middleware import get_client_ip

logger = logging.getLogger(__name__)

MODE_ALL = 'all'
MODE_ANY = 'any'


class HasPermissions(BasePermission):
    """
    DRF permission class that enforces permission requirements on API endpoints.

    Requirements are read from the handler method first (set by
    ``@requires_permissions`` on ``get``/``post``/...), then from the view
    class (``required_permissions`` and ``permission_mode``).

    Held permissions come from the credential's login-time snapshot
    (``request.auth``). With AUTH_LIVE_PERMISSIONS, or when the request was
    authenticated without a credential, they are looked up fresh.

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasPermissions]
            required_permissions = ['role:list']

    Unauthenticated requests get 401; authenticated requests missing a
    permission get 403 without any detail about what the user holds.
    """

    def _requirements(self, request, view):
        handler = getattr(view, request.method.lower(), None)
        required = getattr(handler, 'required_permissions', None)
        mode = getattr(handler, 'permission_mode', None)
        if required is None:
            required = getattr(view, 'required_permissions', None)
            mode = getattr(view, 'permission_mode', MODE_ALL)

        if isinstance(required, str):
            required = {required}
        return set(required or ()), mode or MODE_ALL

    def _held_permissions(self, request):
        from apps.rbac.services import Credential, RBACService

        credential = request.auth
        if isinstance(credential, Credential) and not getattr(settings, 'AUTH_LIVE_PERMISSIONS', False):
            return set(credential.permissions)
        return RBACService().get_effective_permissions(request.user)

    def has_permission(self, request, view):
        """
        Check if the request's user satisfies the view's requirements.

        Returns:
            bool: True if allowed, False if unauthenticated

        Raises:
            PermissionDenied: authenticated but missing required permissions
        """
        required, mode = self._requirements(request, view)

        # If no permissions required, allow access
        if not required:
            return True

        if not (request.user and request.user.is_authenticated):
            return False

        held = self._held_permissions(request)

        if mode == MODE_ANY:
            allowed = bool(required & held)
            missing = set() if allowed else required
        else:
            missing = required - held
            allowed = not missing

        if allowed:
            return True

        SecurityLogger.log_permission_denied(
            user=request.user,
            required_permissions=required,
            missing_permissions=missing,
            ip_address=get_client_ip(request),
            path=request.path,
        )
        logger.warning(
            f"Permission denied: {request.method} {request.path}",
            extra={
                'user_id': str(request.user.id),
                'required_permissions': sorted(required),
                'missing_permissions': sorted(missing),
                'permission_mode': mode,
                'view': view.__class__.__name__,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        raise PermissionDenied(permissions=required)


def requires_permissions(*permissions, mode=MODE_ALL):
    """
    Decorator to declare required permissions on view classes or methods.

    Usage:
        @requires_permissions('role:read')
        class RoleDetailView(APIView):
            permission_classes = [HasPermissions]

    Or on individual methods:
        class RoleListView(APIView):
            permission_classes = [HasPermissions]

            @requires_permissions('role:list')
            def get(self, request):
                pass

            @requires_permissions('role:create')
            def post(self, request):
                pass

    Args:
        *permissions: Permission ids required for access
        mode: 'all' (every permission) or 'any' (at least one)
    """
    if mode not in (MODE_ALL, MODE_ANY):
        raise ValueError(f"mode must be '{MODE_ALL}' or '{MODE_ANY}'")

    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permissions = set(permissions)
            view_or_method.permission_mode = mode
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            return view_or_method(self, request, *args, **kwargs)

        # Read by HasPermissions before the handler runs
        wrapped.required_permissions = set(permissions)
        wrapped.permission_mode = mode
        return wrapped

    return decorator
