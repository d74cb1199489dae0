"""
Permission store and evaluator.

Effective permissions are the de-duplicated union of the permissions of every
role assigned to a user. They are cached per user for PERMISSION_CACHE_TTL
seconds and the cache is invalidated by every change in this module that can
alter a user's set.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError

from apps.core.exceptions import Conflict, NotFound, RoleInUse, ValidationError
from apps.events.bus import event_bus
from apps.events.types import (
    EventContext, SystemEvent,
    UserRoleAssignedPayload, UserRoleRemovedPayload,
    RoleCreatedPayload, RoleUpdatedPayload, RoleDeletedPayload,
    RolePermissionAssignedPayload, RolePermissionRemovedPayload,
    PermissionCreatedPayload, PermissionUpdatedPayload, PermissionDeletedPayload,
)
from apps.rbac.models import (
    User, Role, Permission, RolePermission, UserRole, is_valid_permission_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionCheck:
    """
    Result of an AND check.

    ``missing`` lists the requested permissions the user lacks; it never
    reveals which permissions the user holds.
    """
    granted: bool
    missing: Tuple[str, ...] = ()

    def __bool__(self):
        return self.granted


def as_id(obj) -> Optional[str]:
    if obj is None:
        return None
    return str(getattr(obj, 'pk', obj))


def actor_context(context: Optional[EventContext], actor) -> EventContext:
    """Use the caller's context, or build a minimal one naming the actor."""
    if context is not None:
        return context
    return EventContext(user_id=as_id(actor))


class RBACService:
    """
    Service for RBAC operations: permission evaluation, role assignment,
    role and permission lifecycle.

    Every mutation publishes its event on the injected bus after the change
    is written. Publishing never raises, so a failing listener cannot undo
    or fail the mutation.
    """

    def __init__(self, bus=None):
        self.bus = bus or event_bus

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(user_id) -> str:
        return f"permissions:user:{user_id}"

    def get_effective_permissions(self, user, use_cache: bool = True) -> Set[str]:
        """
        Resolve all permission ids reachable from a user through its roles.

        Args:
            user: User instance or user id
            use_cache: read through the per-user cache (login bypasses it)

        Returns:
            Set of permission ids; empty when the user has no roles
        """
        user_id = as_id(user)
        cache_key = self._cache_key(user_id)

        if use_cache:
            cached = cache.get(cache_key)
            if cached is not None:
                return set(cached)

        permissions = set(
            RolePermission.objects.filter(
                role__user_roles__user_id=user_id
            ).values_list('permission_id', flat=True).distinct()
        )

        cache.set(cache_key, sorted(permissions), getattr(settings, 'PERMISSION_CACHE_TTL', 300))
        return permissions

    def invalidate_permission_cache(self, user):
        """Invalidate cached permissions for a user."""
        cache.delete(self._cache_key(as_id(user)))

    def invalidate_role_holders(self, role):
        """Invalidate cached permissions for every user holding ``role``."""
        user_ids = UserRole.objects.filter(role=role).values_list('user_id', flat=True)
        keys = [self._cache_key(user_id) for user_id in user_ids]
        if keys:
            cache.delete_many(keys)

    def has_permission(self, user, permission_id: str) -> bool:
        """Check if user has a specific permission."""
        return permission_id in self.get_effective_permissions(user)

    def has_any_permission(self, user, permission_ids: Iterable[str]) -> bool:
        """OR check. An empty request is never satisfied."""
        requested = set(permission_ids)
        if not requested:
            return False
        return bool(requested & self.get_effective_permissions(user))

    def has_all_permissions(self, user, permission_ids: Iterable[str]) -> PermissionCheck:
        """AND check. An empty request is always satisfied."""
        missing = set(permission_ids) - self.get_effective_permissions(user)
        return PermissionCheck(granted=not missing, missing=tuple(sorted(missing)))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_roles_with_permissions(self, user) -> List[Dict[str, Any]]:
        """Roles assigned to a user, each with its permission ids."""
        roles = Role.objects.filter(
            user_roles__user_id=as_id(user)
        ).prefetch_related('role_permissions').order_by('name')

        return [
            {
                'id': str(role.id),
                'name': role.name,
                'description': role.description,
                'permissions': sorted(rp.permission_id for rp in role.role_permissions.all()),
            }
            for role in roles
        ]

    def get_all_permissions(self):
        """All permissions ordered by module, then id."""
        return Permission.objects.order_by('module', 'id')

    def get_permissions_by_module(self, module: str):
        return Permission.objects.by_module(module).order_by('id')

    def permission_exists(self, permission_id: str) -> bool:
        return Permission.objects.filter(id=permission_id).exists()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _get(model, value, label):
        if isinstance(value, model):
            return value
        try:
            obj = model.objects.filter(pk=value).first()
        except (ValueError, DjangoValidationError):
            obj = None
        if obj is None:
            raise NotFound(f"{label} not found", details={'id': str(value)})
        return obj

    def get_user(self, user) -> User:
        return self._get(User, user, 'User')

    def get_role(self, role) -> Role:
        return self._get(Role, role, 'Role')

    def get_permission(self, permission) -> Permission:
        return self._get(Permission, permission, 'Permission')

    # ------------------------------------------------------------------
    # User role assignment
    # ------------------------------------------------------------------

    def assign_role(self, user, role, assigned_by=None, context: Optional[EventContext] = None) -> UserRole:
        """
        Assign a role to a user.

        Raises:
            NotFound: if the user or role does not exist
            Conflict: if the user already has the role
        """
        user = self.get_user(user)
        role = self.get_role(role)

        if UserRole.objects.filter(user=user, role=role).exists():
            raise Conflict(f"User already has role '{role.name}'")

        # A concurrent assignment loses on the unique constraint
        try:
            with transaction.atomic():
                user_role = UserRole.objects.create(user=user, role=role, assigned_by=assigned_by)
        except IntegrityError:
            raise Conflict(f"User already has role '{role.name}'")

        self.invalidate_permission_cache(user)

        logger.info(
            "Role assigned",
            extra={'user_id': str(user.id), 'role_id': str(role.id), 'assigned_by': as_id(assigned_by)}
        )

        self.bus.publish(
            SystemEvent.USER_ROLE_ASSIGNED,
            UserRoleAssignedPayload(
                user_id=str(user.id),
                role_id=str(role.id),
                role_name=role.name,
                assigned_by=as_id(assigned_by),
            ),
            actor_context(context, assigned_by),
        )

        return user_role

    def remove_role(self, user, role, removed_by=None, context: Optional[EventContext] = None):
        """
        Remove a role from a user.

        Raises:
            NotFound: if the user, the role or the assignment does not exist
        """
        user = self.get_user(user)
        role = self.get_role(role)

        deleted_count, _ = UserRole.objects.filter(user=user, role=role).delete()
        if not deleted_count:
            raise NotFound(f"User does not have role '{role.name}'")

        self.invalidate_permission_cache(user)

        self.bus.publish(
            SystemEvent.USER_ROLE_REMOVED,
            UserRoleRemovedPayload(
                user_id=str(user.id),
                role_id=str(role.id),
                role_name=role.name,
                removed_by=as_id(removed_by),
            ),
            actor_context(context, removed_by),
        )

    # ------------------------------------------------------------------
    # Role lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_role_name(name) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError('Invalid role', details={'name': ['Role name is required']})
        if len(name) > 50:
            raise ValidationError('Invalid role', details={'name': ['Role name cannot exceed 50 characters']})
        return name

    def create_role(self, name, description=None, created_by=None, context: Optional[EventContext] = None) -> Role:
        """
        Create a role.

        Raises:
            ValidationError: if the name is empty or too long
            Conflict: if a role with the same name exists
        """
        name = self._clean_role_name(name)

        if Role.objects.filter(name=name).exists():
            raise Conflict(f"Role '{name}' already exists")
        try:
            with transaction.atomic():
                role = Role.objects.create(name=name, description=description)
        except IntegrityError:
            raise Conflict(f"Role '{name}' already exists")

        self.bus.publish(
            SystemEvent.ROLE_CREATED,
            RoleCreatedPayload(
                role_id=str(role.id),
                name=role.name,
                description=role.description,
                created_by=as_id(created_by),
            ),
            actor_context(context, created_by),
        )
        return role

    def update_role(self, role, updated_by=None, context: Optional[EventContext] = None, **changes) -> Role:
        """Update a role's name and/or description. Unchanged fields are not reported."""
        role = self.get_role(role)

        if 'name' in changes:
            changes['name'] = self._clean_role_name(changes['name'])
            if Role.objects.filter(name=changes['name']).exclude(pk=role.pk).exists():
                raise Conflict(f"Role '{changes['name']}' already exists")

        old_values, new_values = {}, {}
        for field_name in ('name', 'description'):
            if field_name in changes and getattr(role, field_name) != changes[field_name]:
                old_values[field_name] = getattr(role, field_name)
                new_values[field_name] = changes[field_name]
                setattr(role, field_name, changes[field_name])

        if not new_values:
            return role

        try:
            with transaction.atomic():
                role.save(update_fields=list(new_values) + ['updated_at'])
        except IntegrityError:
            raise Conflict(f"Role '{role.name}' already exists")

        self.bus.publish(
            SystemEvent.ROLE_UPDATED,
            RoleUpdatedPayload(
                role_id=str(role.id),
                old_values=old_values,
                new_values=new_values,
                updated_by=as_id(updated_by),
            ),
            actor_context(context, updated_by),
        )
        return role

    def delete_role(self, role, deleted_by=None, context: Optional[EventContext] = None):
        """
        Delete a role and its permission grants.

        Raises:
            NotFound: if the role does not exist
            RoleInUse: if any user still has the role
        """
        role = self.get_role(role)

        assigned = UserRole.objects.filter(role=role).count()
        if assigned:
            raise RoleInUse(
                f"Role '{role.name}' is assigned to {assigned} user(s) and cannot be deleted",
                details={'assigned_users': assigned}
            )

        role_id, role_name = str(role.id), role.name
        try:
            with transaction.atomic():
                role.delete()
        except ProtectedError:
            # Assigned between the check and the delete
            raise RoleInUse(f"Role '{role_name}' is assigned to users and cannot be deleted")

        self.bus.publish(
            SystemEvent.ROLE_DELETED,
            RoleDeletedPayload(role_id=role_id, name=role_name, deleted_by=as_id(deleted_by)),
            actor_context(context, deleted_by),
        )

    # ------------------------------------------------------------------
    # Role permissions
    # ------------------------------------------------------------------

    def assign_permission_to_role(self, role, permission, assigned_by=None,
                                  context: Optional[EventContext] = None) -> RolePermission:
        """
        Grant a permission to a role.

        Raises:
            NotFound: if the role or permission does not exist
            Conflict: if the role already grants the permission
        """
        role = self.get_role(role)
        permission = self.get_permission(permission)

        if RolePermission.objects.filter(role=role, permission=permission).exists():
            raise Conflict(f"Role '{role.name}' already has permission '{permission.id}'")
        try:
            with transaction.atomic():
                role_permission = RolePermission.objects.create(role=role, permission=permission)
        except IntegrityError:
            raise Conflict(f"Role '{role.name}' already has permission '{permission.id}'")

        self.invalidate_role_holders(role)

        self.bus.publish(
            SystemEvent.ROLE_PERMISSION_ASSIGNED,
            RolePermissionAssignedPayload(
                role_id=str(role.id),
                role_name=role.name,
                permission_id=permission.id,
                assigned_by=as_id(assigned_by),
            ),
            actor_context(context, assigned_by),
        )
        return role_permission

    def remove_permission_from_role(self, role, permission, removed_by=None,
                                    context: Optional[EventContext] = None):
        """Revoke a permission from a role. Raises NotFound if it was not granted."""
        role = self.get_role(role)
        permission = self.get_permission(permission)

        # Collect holders before the grant disappears
        self.invalidate_role_holders(role)
        deleted_count, _ = RolePermission.objects.filter(role=role, permission=permission).delete()
        if not deleted_count:
            raise NotFound(f"Role '{role.name}' does not have permission '{permission.id}'")

        self.bus.publish(
            SystemEvent.ROLE_PERMISSION_REMOVED,
            RolePermissionRemovedPayload(
                role_id=str(role.id),
                role_name=role.name,
                permission_id=permission.id,
                removed_by=as_id(removed_by),
            ),
            actor_context(context, removed_by),
        )

    # ------------------------------------------------------------------
    # Permission lifecycle
    # ------------------------------------------------------------------

    def create_permission(self, permission_id, description='', created_by=None,
                          context: Optional[EventContext] = None) -> Permission:
        """
        Create a permission. The module is derived from the id.

        Raises:
            ValidationError: if the id is not ``module:action``
            Conflict: if the permission exists
        """
        if not is_valid_permission_id(permission_id):
            raise ValidationError(
                'Invalid permission',
                details={'id': ["Expected 'module:action' using lowercase letters and underscores"]}
            )
        if len(permission_id) > 100:
            raise ValidationError('Invalid permission', details={'id': ['Permission id cannot exceed 100 characters']})
        if self.permission_exists(permission_id):
            raise Conflict(f"Permission '{permission_id}' already exists")

        permission = Permission.objects.create(
            id=permission_id,
            module=Permission.module_of(permission_id),
            description=description or '',
        )

        self.bus.publish(
            SystemEvent.PERMISSION_CREATED,
            PermissionCreatedPayload(
                permission_id=permission.id,
                module=permission.module,
                description=permission.description,
                created_by=as_id(created_by),
            ),
            actor_context(context, created_by),
        )
        return permission

    def update_permission(self, permission, description, updated_by=None,
                          context: Optional[EventContext] = None) -> Permission:
        """Update a permission's description. The id is immutable."""
        permission = self.get_permission(permission)
        if permission.description == description:
            return permission

        old_values = {'description': permission.description}
        permission.description = description
        permission.save(update_fields=['description'])

        self.bus.publish(
            SystemEvent.PERMISSION_UPDATED,
            PermissionUpdatedPayload(
                permission_id=permission.id,
                old_values=old_values,
                new_values={'description': description},
                updated_by=as_id(updated_by),
            ),
            actor_context(context, updated_by),
        )
        return permission

    def delete_permission(self, permission, deleted_by=None, context: Optional[EventContext] = None):
        """
        Delete a permission no role references.

        Raises:
            Conflict: if any role grants the permission
        """
        permission = self.get_permission(permission)
        permission_id = permission.id

        if RolePermission.objects.filter(permission=permission).exists():
            raise Conflict(f"Permission '{permission_id}' is granted to roles and cannot be deleted")
        try:
            with transaction.atomic():
                permission.delete()
        except ProtectedError:
            raise Conflict(f"Permission '{permission_id}' is granted to roles and cannot be deleted")

        self.bus.publish(
            SystemEvent.PERMISSION_DELETED,
            PermissionDeletedPayload(permission_id=permission_id, deleted_by=as_id(deleted_by)),
            actor_context(context, deleted_by),
        )
