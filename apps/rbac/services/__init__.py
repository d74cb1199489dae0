"""
RBAC and authentication services.

Implements:
- RBACService: permission evaluation, role assignment, role and permission lifecycle
- SessionRegistry: durable per-user session records
- AuthService: hybrid JWT + session authentication, registration, password flows
- UserService: administrative user lifecycle
"""
from apps.rbac.services.rbac_service import RBACService, PermissionCheck
from apps.rbac.services.session_registry import SessionRegistry
from apps.rbac.services.auth_service import AuthService, Credential, LoginResult, validate_password
from apps.rbac.services.user_service import UserService

__all__ = [
    'RBACService',
    'PermissionCheck',
    'SessionRegistry',
    'AuthService',
    'Credential',
    'LoginResult',
    'validate_password',
    'UserService',
]
