"""
System event taxonomy.

Each ``SystemEvent`` has exactly one payload dataclass, registered in
``EVENT_PAYLOADS``. Handlers receive an ``Event`` envelope whose ``payload``
is an instance of that class, so a handler for ``USER_ROLE_ASSIGNED`` can rely
on ``event.payload.role_id`` existing.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from django.utils import timezone


class SystemEvent(str, Enum):
    # Authentication
    USER_REGISTERED = 'user.registered'
    USER_LOGGED_IN = 'user.logged_in'
    USER_LOGGED_OUT = 'user.logged_out'
    PASSWORD_RESET_REQUESTED = 'password.reset_requested'
    PASSWORD_CHANGED = 'password.changed'

    # User lifecycle
    USER_CREATED = 'user.created'
    USER_UPDATED = 'user.updated'
    USER_DELETED = 'user.deleted'
    USER_ROLE_ASSIGNED = 'user.role_assigned'
    USER_ROLE_REMOVED = 'user.role_removed'

    # Roles
    ROLE_CREATED = 'role.created'
    ROLE_UPDATED = 'role.updated'
    ROLE_DELETED = 'role.deleted'
    ROLE_PERMISSION_ASSIGNED = 'role.permission_assigned'
    ROLE_PERMISSION_REMOVED = 'role.permission_removed'

    # Permissions
    PERMISSION_CREATED = 'permission.created'
    PERMISSION_UPDATED = 'permission.updated'
    PERMISSION_DELETED = 'permission.deleted'

    # Sessions
    SESSION_EXPIRED = 'session.expired'
    CONCURRENT_SESSION_DETECTED = 'session.concurrent_detected'


class EventArea(str, Enum):
    """Application area an event originated from."""
    ADMIN = 'admin'
    CUSTOMER = 'customer'
    PUBLIC = 'public'
    SYSTEM = 'system'


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserRegisteredPayload:
    user_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class UserLoggedInPayload:
    user_id: str
    email: str
    session_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class UserLoggedOutPayload:
    user_id: str
    session_id: str


@dataclass(frozen=True)
class PasswordResetRequestedPayload:
    user_id: str
    email: str
    expires_at: str


@dataclass(frozen=True)
class PasswordChangedPayload:
    user_id: str
    email: str
    changed_by: str = 'self'  # 'self' | 'admin'


@dataclass(frozen=True)
class UserCreatedPayload:
    user_id: str
    email: str
    name: Optional[str]
    created_by: Optional[str]


@dataclass(frozen=True)
class UserUpdatedPayload:
    user_id: str
    old_values: Dict[str, Any]
    new_values: Dict[str, Any]
    updated_by: Optional[str]


@dataclass(frozen=True)
class UserDeletedPayload:
    user_id: str
    email: str
    deleted_by: Optional[str]


@dataclass(frozen=True)
class UserRoleAssignedPayload:
    user_id: str
    role_id: str
    role_name: str
    assigned_by: Optional[str]


@dataclass(frozen=True)
class UserRoleRemovedPayload:
    user_id: str
    role_id: str
    role_name: str
    removed_by: Optional[str]


@dataclass(frozen=True)
class RoleCreatedPayload:
    role_id: str
    name: str
    description: Optional[str]
    created_by: Optional[str]


@dataclass(frozen=True)
class RoleUpdatedPayload:
    role_id: str
    old_values: Dict[str, Any]
    new_values: Dict[str, Any]
    updated_by: Optional[str]


@dataclass(frozen=True)
class RoleDeletedPayload:
    role_id: str
    name: str
    deleted_by: Optional[str]


@dataclass(frozen=True)
class RolePermissionAssignedPayload:
    role_id: str
    role_name: str
    permission_id: str
    assigned_by: Optional[str]


@dataclass(frozen=True)
class RolePermissionRemovedPayload:
    role_id: str
    role_name: str
    permission_id: str
    removed_by: Optional[str]


@dataclass(frozen=True)
class PermissionCreatedPayload:
    permission_id: str
    module: str
    description: Optional[str]
    created_by: Optional[str]


@dataclass(frozen=True)
class PermissionUpdatedPayload:
    permission_id: str
    old_values: Dict[str, Any]
    new_values: Dict[str, Any]
    updated_by: Optional[str]


@dataclass(frozen=True)
class PermissionDeletedPayload:
    permission_id: str
    deleted_by: Optional[str]


@dataclass(frozen=True)
class SessionExpiredPayload:
    user_id: str
    session_id: str
    expires_at: str


@dataclass(frozen=True)
class ConcurrentSessionDetectedPayload:
    user_id: str
    new_session_id: str
    existing_session_id: str
    ip_address: Optional[str] = None


EVENT_PAYLOADS = {
    SystemEvent.USER_REGISTERED: UserRegisteredPayload,
    SystemEvent.USER_LOGGED_IN: UserLoggedInPayload,
    SystemEvent.USER_LOGGED_OUT: UserLoggedOutPayload,
    SystemEvent.PASSWORD_RESET_REQUESTED: PasswordResetRequestedPayload,
    SystemEvent.PASSWORD_CHANGED: PasswordChangedPayload,
    SystemEvent.USER_CREATED: UserCreatedPayload,
    SystemEvent.USER_UPDATED: UserUpdatedPayload,
    SystemEvent.USER_DELETED: UserDeletedPayload,
    SystemEvent.USER_ROLE_ASSIGNED: UserRoleAssignedPayload,
    SystemEvent.USER_ROLE_REMOVED: UserRoleRemovedPayload,
    SystemEvent.ROLE_CREATED: RoleCreatedPayload,
    SystemEvent.ROLE_UPDATED: RoleUpdatedPayload,
    SystemEvent.ROLE_DELETED: RoleDeletedPayload,
    SystemEvent.ROLE_PERMISSION_ASSIGNED: RolePermissionAssignedPayload,
    SystemEvent.ROLE_PERMISSION_REMOVED: RolePermissionRemovedPayload,
    SystemEvent.PERMISSION_CREATED: PermissionCreatedPayload,
    SystemEvent.PERMISSION_UPDATED: PermissionUpdatedPayload,
    SystemEvent.PERMISSION_DELETED: PermissionDeletedPayload,
    SystemEvent.SESSION_EXPIRED: SessionExpiredPayload,
    SystemEvent.CONCURRENT_SESSION_DETECTED: ConcurrentSessionDetectedPayload,
}


@dataclass(frozen=True)
class EventContext:
    """
    Cross-cutting fields merged into every handler's view of an event.

    ``user_id`` is the acting user, which may differ from the subject of the
    payload (an admin assigning a role to someone else).
    """
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    area: Optional[EventArea] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Event:
    """Envelope delivered to handlers."""
    type: SystemEvent
    payload: Any
    context: EventContext = field(default_factory=EventContext)
    timestamp: datetime = field(default_factory=timezone.now)

    def payload_dict(self) -> Dict[str, Any]:
        return asdict(self.payload)
