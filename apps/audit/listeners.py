"""
Event bus subscriber that turns system events into audit records.
"""
import logging
from typing import List, Optional

from apps.audit.services import AuditLogInput, AuditService
from apps.events.types import Event, SystemEvent

logger = logging.getLogger(__name__)


class AuditListener:
    """
    Maps each SystemEvent to one audit record (action, module, entity).

    The actor is the context's user when present, otherwise the actor field
    carried by the payload (``assigned_by``, ``created_by``, ...).
    """

    def __init__(self, audit_service: Optional[AuditService] = None):
        self.audit = audit_service or AuditService()
        self.handlers = {
            SystemEvent.USER_LOGGED_IN: self.on_user_logged_in,
            SystemEvent.USER_LOGGED_OUT: self.on_user_logged_out,
            SystemEvent.USER_REGISTERED: self.on_user_registered,
            SystemEvent.PASSWORD_RESET_REQUESTED: self.on_password_reset_requested,
            SystemEvent.PASSWORD_CHANGED: self.on_password_changed,
            SystemEvent.USER_CREATED: self.on_user_created,
            SystemEvent.USER_UPDATED: self.on_user_updated,
            SystemEvent.USER_DELETED: self.on_user_deleted,
            SystemEvent.USER_ROLE_ASSIGNED: self.on_user_role_assigned,
            SystemEvent.USER_ROLE_REMOVED: self.on_user_role_removed,
            SystemEvent.ROLE_CREATED: self.on_role_created,
            SystemEvent.ROLE_UPDATED: self.on_role_updated,
            SystemEvent.ROLE_DELETED: self.on_role_deleted,
            SystemEvent.ROLE_PERMISSION_ASSIGNED: self.on_role_permission_assigned,
            SystemEvent.ROLE_PERMISSION_REMOVED: self.on_role_permission_removed,
            SystemEvent.PERMISSION_CREATED: self.on_permission_created,
            SystemEvent.PERMISSION_UPDATED: self.on_permission_updated,
            SystemEvent.PERMISSION_DELETED: self.on_permission_deleted,
            SystemEvent.SESSION_EXPIRED: self.on_session_expired,
            SystemEvent.CONCURRENT_SESSION_DETECTED: self.on_concurrent_session,
        }

    def register(self, bus) -> List:
        """Subscribe every handler on ``bus``. Returns the subscription handles."""
        subscriptions = [bus.subscribe(event_type, handler) for event_type, handler in self.handlers.items()]
        logger.debug("Audit listener registered", extra={'listener_count': len(subscriptions)})
        return subscriptions

    def _record(self, event: Event, action, module, entity_type=None, entity_id=None,
                actor_id=None, old_values=None, new_values=None, metadata=None):
        context = event.context
        metadata = dict(metadata or {})
        metadata['event'] = event.type.value
        if context.area is not None:
            metadata['area'] = context.area.value

        self.audit.log(AuditLogInput(
            action=action,
            module=module,
            user_id=context.user_id or actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id,
            metadata=metadata,
            timestamp=event.timestamp,
        ))

    # Auth

    def on_user_logged_in(self, event: Event):
        p = event.payload
        self._record(
            event, 'login', 'auth', 'User', p.user_id,
            actor_id=p.user_id,
            metadata={'session_id': p.session_id, 'email': p.email},
        )

    def on_user_logged_out(self, event: Event):
        p = event.payload
        self._record(event, 'logout', 'auth', 'User', p.user_id, actor_id=p.user_id,
                     metadata={'session_id': p.session_id})

    def on_user_registered(self, event: Event):
        p = event.payload
        self._record(
            event, 'register', 'auth', 'User', p.user_id,
            actor_id=p.user_id,
            new_values={'email': p.email, 'first_name': p.first_name, 'last_name': p.last_name},
        )

    def on_password_reset_requested(self, event: Event):
        p = event.payload
        self._record(event, 'password_reset_request', 'auth', 'User', p.user_id,
                     actor_id=p.user_id, metadata={'expires_at': p.expires_at})

    def on_password_changed(self, event: Event):
        p = event.payload
        self._record(event, 'password_change', 'auth', 'User', p.user_id,
                     actor_id=p.user_id, metadata={'changed_by': p.changed_by})

    # Users

    def on_user_created(self, event: Event):
        p = event.payload
        self._record(event, 'create', 'users', 'User', p.user_id, actor_id=p.created_by,
                     new_values={'email': p.email, 'name': p.name})

    def on_user_updated(self, event: Event):
        p = event.payload
        self._record(event, 'update', 'users', 'User', p.user_id, actor_id=p.updated_by,
                     old_values=p.old_values, new_values=p.new_values)

    def on_user_deleted(self, event: Event):
        p = event.payload
        self._record(event, 'delete', 'users', 'User', p.user_id, actor_id=p.deleted_by,
                     old_values={'email': p.email})

    def on_user_role_assigned(self, event: Event):
        p = event.payload
        self._record(
            event, 'role_assign', 'roles', 'UserRole', f"{p.user_id}-{p.role_id}",
            actor_id=p.assigned_by,
            new_values={'user_id': p.user_id, 'role_id': p.role_id, 'role_name': p.role_name},
        )

    def on_user_role_removed(self, event: Event):
        p = event.payload
        self._record(
            event, 'role_remove', 'roles', 'UserRole', f"{p.user_id}-{p.role_id}",
            actor_id=p.removed_by,
            old_values={'user_id': p.user_id, 'role_id': p.role_id, 'role_name': p.role_name},
        )

    # Roles

    def on_role_created(self, event: Event):
        p = event.payload
        self._record(event, 'create', 'roles', 'Role', p.role_id, actor_id=p.created_by,
                     new_values={'name': p.name, 'description': p.description})

    def on_role_updated(self, event: Event):
        p = event.payload
        self._record(event, 'update', 'roles', 'Role', p.role_id, actor_id=p.updated_by,
                     old_values=p.old_values, new_values=p.new_values)

    def on_role_deleted(self, event: Event):
        p = event.payload
        self._record(event, 'delete', 'roles', 'Role', p.role_id, actor_id=p.deleted_by,
                     old_values={'name': p.name})

    def on_role_permission_assigned(self, event: Event):
        p = event.payload
        self._record(
            event, 'permission_assign', 'roles', 'RolePermission', f"{p.role_id}-{p.permission_id}",
            actor_id=p.assigned_by,
            new_values={'role_id': p.role_id, 'role_name': p.role_name, 'permission_id': p.permission_id},
        )

    def on_role_permission_removed(self, event: Event):
        p = event.payload
        self._record(
            event, 'permission_remove', 'roles', 'RolePermission', f"{p.role_id}-{p.permission_id}",
            actor_id=p.removed_by,
            old_values={'role_id': p.role_id, 'role_name': p.role_name, 'permission_id': p.permission_id},
        )

    # Permissions

    def on_permission_created(self, event: Event):
        p = event.payload
        self._record(event, 'create', 'permissions', 'Permission', p.permission_id, actor_id=p.created_by,
                     new_values={'id': p.permission_id, 'module': p.module, 'description': p.description})

    def on_permission_updated(self, event: Event):
        p = event.payload
        self._record(event, 'update', 'permissions', 'Permission', p.permission_id, actor_id=p.updated_by,
                     old_values=p.old_values, new_values=p.new_values)

    def on_permission_deleted(self, event: Event):
        p = event.payload
        self._record(event, 'delete', 'permissions', 'Permission', p.permission_id, actor_id=p.deleted_by)

    # Sessions

    def on_session_expired(self, event: Event):
        p = event.payload
        self._record(event, 'session_expire', 'auth', 'Session', p.session_id,
                     metadata={'user_id': p.user_id, 'expires_at': p.expires_at})

    def on_concurrent_session(self, event: Event):
        p = event.payload
        self._record(
            event, 'concurrent_session', 'auth', 'Session', p.new_session_id,
            actor_id=p.user_id,
            metadata={'existing_session_id': p.existing_session_id, 'ip_address': p.ip_address},
        )
