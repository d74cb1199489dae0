"""
RBAC REST API views.

Implements endpoints for:
- Role management (CRUD, permission grants)
- User role assignments
- Permission catalogue
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.permissions import requires_permissions, HasPermissions
from apps.events.context import context_from_request
from apps.rbac.models import Role, Permission
from apps.rbac.services import RBACService
from apps.rbac.serializers import (
    PermissionSerializer, RoleSerializer, RoleCreateSerializer, RoleUpdateSerializer,
    RolePermissionSerializer, UserRoleSerializer,
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List all roles, ordered by name.

**Required permission:** `role:list`

Query parameters:
- `include_permissions`: Set to 'true' to include granted permission ids
        ''',
        parameters=[
            OpenApiParameter('include_permissions', OpenApiTypes.BOOL, description='Include permission ids'),
        ],
        responses={
            200: RoleSerializer(many=True),
            401: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
        }
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a new role. Names are unique and at most 50 characters.

**Required permission:** `role:create`

After creating a role, use `/v1/roles/{id}/permissions` to grant permissions.
        ''',
        request=RoleCreateSerializer,
        responses={
            201: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    )
)
class RoleListView(APIView):
    """
    GET /v1/roles
    POST /v1/roles
    """
    permission_classes = [HasPermissions]
    pagination_class = StandardResultsSetPagination

    @requires_permissions('role:list')
    def get(self, request):
        """List roles."""
        roles = Role.objects.order_by('name')

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(roles, request, view=self)

        serializer = RoleSerializer(
            page if page is not None else roles,
            many=True,
            context={'include_permissions': request.query_params.get('include_permissions') == 'true'}
        )

        if page is not None:
            return paginator.get_paginated_response(serializer.data)

        return Response({
            'count': roles.count(),
            'roles': serializer.data
        })

    @requires_permissions('role:create')
    def post(self, request):
        """Create a new role."""
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RBACService().create_role(
            name=serializer.validated_data['name'],
            description=serializer.validated_data.get('description'),
            created_by=request.user,
            context=context_from_request(request),
        )

        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        description='''
Get a role including its granted permission ids.

**Required permission:** `role:read`
        ''',
        responses={
            200: RoleSerializer,
            404: OpenApiTypes.OBJECT,
        }
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='''
Rename a role or change its description.

**Required permission:** `role:update`
        ''',
        request=RoleUpdateSerializer,
        responses={
            200: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='''
Delete a role and its permission grants.

A role that is still assigned to any user cannot be deleted (409 `ROLE_IN_USE`).

**Required permission:** `role:delete`
        ''',
        responses={
            204: None,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Role In Use',
                value={
                    'error': "Role 'Editor' is assigned to 2 user(s) and cannot be deleted",
                    'code': 'ROLE_IN_USE',
                    'details': {'assigned_users': 2}
                },
                response_only=True,
                status_codes=['409']
            )
        ]
    )
)
class RoleDetailView(APIView):
    """
    GET /v1/roles/{id}
    PATCH /v1/roles/{id}
    DELETE /v1/roles/{id}
    """
    permission_classes = [HasPermissions]

    @requires_permissions('role:read')
    def get(self, request, role_id):
        """Get role details."""
        role = RBACService().get_role(role_id)
        serializer = RoleSerializer(role, context={'include_permissions': True})
        return Response(serializer.data)

    @requires_permissions('role:update')
    def patch(self, request, role_id):
        """Update a role."""
        serializer = RoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RBACService().update_role(
            role_id,
            updated_by=request.user,
            context=context_from_request(request),
            **serializer.validated_data
        )

        return Response(RoleSerializer(role, context={'include_permissions': True}).data)

    @requires_permissions('role:delete')
    def delete(self, request, role_id):
        """Delete a role."""
        RBACService().delete_role(
            role_id,
            deleted_by=request.user,
            context=context_from_request(request),
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List role permissions',
        description='''
List the permissions granted by a role.

**Required permission:** `role:read`
        ''',
        responses={
            200: PermissionSerializer(many=True),
            404: OpenApiTypes.OBJECT,
        }
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Grant permission to role',
        description='''
Grant one permission to a role.

This immediately affects all users holding the role. Their cached
permission sets are invalidated.

**Required permission:** `role:manage`

**Example curl:**
```bash
curl -X POST https://api.example.com/v1/roles/{role_id}/permissions \\
  -H "Authorization: Bearer {token}" \\
  -H "Content-Type: application/json" \\
  -d '{"permission_id": "user:read"}'
```
        ''',
        request=RolePermissionSerializer,
        responses={
            201: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Revoke permission from role',
        description='''
Revoke one permission from a role.

**Required permission:** `role:manage`
        ''',
        request=RolePermissionSerializer,
        responses={
            204: None,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class RolePermissionsView(APIView):
    """
    GET /v1/roles/{id}/permissions
    POST /v1/roles/{id}/permissions
    DELETE /v1/roles/{id}/permissions
    """
    permission_classes = [HasPermissions]

    @requires_permissions('role:read')
    def get(self, request, role_id):
        """List permissions for a role."""
        role = RBACService().get_role(role_id)

        permissions = Permission.objects.filter(
            role_permissions__role=role
        ).order_by('module', 'id')

        serializer = PermissionSerializer(permissions, many=True)

        return Response({
            'role_id': str(role.id),
            'role_name': role.name,
            'count': len(serializer.data),
            'permissions': serializer.data
        })

    @requires_permissions('role:manage')
    def post(self, request, role_id):
        """Grant a permission to a role."""
        serializer = RolePermissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        grant = RBACService().assign_permission_to_role(
            role_id,
            serializer.validated_data['permission_id'],
            assigned_by=request.user,
            context=context_from_request(request),
        )

        return Response(
            {
                'role_id': str(grant.role_id),
                'permission_id': grant.permission_id,
                'message': 'Permission granted'
            },
            status=status.HTTP_201_CREATED
        )

    @requires_permissions('role:manage')
    def delete(self, request, role_id):
        """Revoke a permission from a role."""
        serializer = RolePermissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        RBACService().remove_permission_from_role(
            role_id,
            serializer.validated_data['permission_id'],
            removed_by=request.user,
            context=context_from_request(request),
        )

        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='List user roles',
        description='''
Roles assigned to a user, each with its permission ids, plus the user's
effective permission set.

**Required permission:** `user:read`
        ''',
        responses={
            200: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    ),
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Assign role to user',
        description='''
Assign a role to a user. Takes effect on the user's next login or token
refresh.

**Required permission:** `user:manage`
        ''',
        request=UserRoleSerializer,
        responses={
            201: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        }
    ),
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Remove role from user',
        description='''
Remove a role from a user.

**Required permission:** `user:manage`
        ''',
        request=UserRoleSerializer,
        responses={
            204: None,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
class UserRolesView(APIView):
    """
    GET /v1/users/{id}/roles
    POST /v1/users/{id}/roles
    DELETE /v1/users/{id}/roles
    """
    permission_classes = [HasPermissions]

    @requires_permissions('user:read')
    def get(self, request, user_id):
        """List a user's roles."""
        rbac = RBACService()
        user = rbac.get_user(user_id)

        return Response({
            'user_id': str(user.id),
            'roles': rbac.get_user_roles_with_permissions(user),
            'permissions': sorted(rbac.get_effective_permissions(user)),
        })

    @requires_permissions('user:manage')
    def post(self, request, user_id):
        """Assign a role to a user."""
        serializer = UserRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user_role = RBACService().assign_role(
            user_id,
            serializer.validated_data['role_id'],
            assigned_by=request.user,
            context=context_from_request(request),
        )

        return Response(
            {
                'user_id': str(user_role.user_id),
                'role_id': str(user_role.role_id),
                'assigned_at': user_role.created_at,
                'message': 'Role assigned'
            },
            status=status.HTTP_201_CREATED
        )

    @requires_permissions('user:manage')
    def delete(self, request, user_id):
        """Remove a role from a user."""
        serializer = UserRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        RBACService().remove_role(
            user_id,
            serializer.validated_data['role_id'],
            removed_by=request.user,
            context=context_from_request(request),
        )

        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions',
        description='''
List all permissions, ordered by module.

**Required permission:** `permission:list`

Query parameters:
- `module`: Filter by module (e.g., 'user', 'role', 'audit')
        ''',
        parameters=[
            OpenApiParameter('module', OpenApiTypes.STR, description='Filter by module'),
        ],
        responses={
            200: PermissionSerializer(many=True),
        }
    )
)
@requires_permissions('permission:list')
class PermissionListView(APIView):
    """
    GET /v1/permissions

    Required permission: permission:list
    """
    permission_classes = [HasPermissions]

    def get(self, request):
        """List permissions."""
        rbac = RBACService()
        module = request.query_params.get('module')
        permissions = rbac.get_permissions_by_module(module) if module else rbac.get_all_permissions()

        serializer = PermissionSerializer(permissions, many=True)

        return Response({
            'count': len(serializer.data),
            'permissions': serializer.data
        })
