"""
Administrative user lifecycle.
"""
import logging
from typing import Optional

from django.db import IntegrityError, transaction

from apps.core.exceptions import Conflict, ValidationError
from apps.events.bus import event_bus
from apps.events.types import (
    EventContext, SystemEvent,
    UserCreatedPayload, UserUpdatedPayload, UserDeletedPayload,
)
from apps.rbac.models import User
from apps.rbac.services.auth_service import validate_password
from apps.rbac.services.rbac_service import RBACService, actor_context, as_id

logger = logging.getLogger(__name__)


class UserService:
    """Create, update and delete users on behalf of an administrator."""

    UPDATABLE_FIELDS = ('email', 'first_name', 'last_name', 'is_active')

    def __init__(self, bus=None, rbac: Optional[RBACService] = None):
        self.bus = bus or event_bus
        self.rbac = rbac or RBACService(bus=self.bus)

    def create_user(self, email, password, first_name='', last_name='', created_by=None,
                    context: Optional[EventContext] = None) -> User:
        """
        Raises:
            ValidationError: missing email or weak password
            Conflict: email already registered
        """
        email = User.objects.normalize_email(email)
        if not email:
            raise ValidationError('Invalid user', details={'email': ['Email is required']})
        validate_password(password)

        if User.objects.filter(email=email).exists():
            raise Conflict('Email already registered')
        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email=email, password=password,
                    first_name=first_name or '', last_name=last_name or '',
                )
        except IntegrityError:
            raise Conflict('Email already registered')

        self.bus.publish(
            SystemEvent.USER_CREATED,
            UserCreatedPayload(
                user_id=str(user.id),
                email=user.email,
                name=user.get_full_name(),
                created_by=as_id(created_by),
            ),
            actor_context(context, created_by),
        )
        return user

    def update_user(self, user, updated_by=None, context: Optional[EventContext] = None, **changes) -> User:
        """Apply changes to the updatable fields. Only fields that actually change are reported."""
        user = self.rbac.get_user(user)

        if 'email' in changes:
            changes['email'] = User.objects.normalize_email(changes['email'])
            if not changes['email']:
                raise ValidationError('Invalid user', details={'email': ['Email is required']})
            if User.objects.filter(email=changes['email']).exclude(pk=user.pk).exists():
                raise Conflict('Email already registered')

        old_values, new_values = {}, {}
        for field_name in self.UPDATABLE_FIELDS:
            if field_name in changes and getattr(user, field_name) != changes[field_name]:
                old_values[field_name] = getattr(user, field_name)
                new_values[field_name] = changes[field_name]
                setattr(user, field_name, changes[field_name])

        if not new_values:
            return user

        try:
            with transaction.atomic():
                user.save(update_fields=list(new_values) + ['updated_at'])
        except IntegrityError:
            raise Conflict('Email already registered')

        self.bus.publish(
            SystemEvent.USER_UPDATED,
            UserUpdatedPayload(
                user_id=str(user.id),
                old_values=old_values,
                new_values=new_values,
                updated_by=as_id(updated_by),
            ),
            actor_context(context, updated_by),
        )
        return user

    def delete_user(self, user, deleted_by=None, context: Optional[EventContext] = None):
        """
        Delete a user together with their role assignments and sessions.
        Audit rows survive with a null actor.
        """
        user = self.rbac.get_user(user)
        user_id, email = str(user.id), user.email

        user.delete()
        self.rbac.invalidate_permission_cache(user_id)

        logger.info("User deleted", extra={'user_id': user_id, 'deleted_by': as_id(deleted_by)})

        self.bus.publish(
            SystemEvent.USER_DELETED,
            UserDeletedPayload(user_id=user_id, email=email, deleted_by=as_id(deleted_by)),
            actor_context(context, deleted_by),
        )
