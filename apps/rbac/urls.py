"""
RBAC API URLs.

Provides endpoints for:
- Role management (CRUD, permission grants)
- User role assignments
- Permission listing
"""
from django.urls import path
from apps.rbac.views import (
    RoleListView,
    RoleDetailView,
    RolePermissionsView,
    UserRolesView,
    PermissionListView,
)

app_name = 'rbac'

urlpatterns = [
    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsView.as_view(), name='role-permissions'),

    # User role assignment endpoints
    path('users/<uuid:user_id>/roles', UserRolesView.as_view(), name='user-roles'),

    # Permission list endpoint
    path('permissions', PermissionListView.as_view(), name='permission-list'),
]
