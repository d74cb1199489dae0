"""
Audit log model.

Rows are append-only: once written they are never updated or deleted by the
application. Deleting the acting user keeps the row with a null actor.
"""
import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


class AuditLogQuerySet(models.QuerySet):
    """QuerySet with the filters used by audit queries."""

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def by_module(self, module):
        return self.filter(module=module)

    def by_action(self, action):
        return self.filter(action=action)

    def by_entity(self, entity_type, entity_id=None):
        qs = self.filter(entity_type=entity_type)
        if entity_id is not None:
            qs = qs.filter(entity_id=entity_id)
        return qs

    def by_request(self, request_id):
        return self.filter(request_id=request_id)

    def between(self, start=None, end=None):
        qs = self
        if start is not None:
            qs = qs.filter(timestamp__gte=start)
        if end is not None:
            qs = qs.filter(timestamp__lte=end)
        return qs


class AuditLog(models.Model):
    """
    One recorded privileged action.

    ``entity_id`` is free text: composite entities use ``{a}-{b}`` ids
    (UserRole: ``{user_id}-{role_id}``, RolePermission:
    ``{role_id}-{permission_id}``).
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'login', 'role_assign', 'update')"
    )
    module = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Functional module (e.g., 'auth', 'users', 'roles')"
    )
    entity_type = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Type of the affected entity (e.g., 'User', 'UserRole')"
    )
    entity_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Id of the affected entity"
    )
    old_values = models.JSONField(
        null=True,
        blank=True,
        help_text="State before the change"
    )
    new_values = models.JSONField(
        null=True,
        blank=True,
        help_text="State after the change"
    )
    ip_address = models.CharField(
        max_length=45,
        null=True,
        blank=True,
        help_text="Client IP address"
    )
    user_agent = models.TextField(
        null=True,
        blank=True,
        help_text="Client user agent"
    )
    request_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Request correlation id"
    )
    metadata = models.JSONField(
        null=True,
        blank=True,
        help_text="Additional context"
    )
    timestamp = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the action happened"
    )

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'audit_log'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id']),
            models.Index(fields=['module', 'action']),
            models.Index(fields=['user', 'timestamp']),
        ]

    def __str__(self):
        actor = self.user.email if self.user else 'System'
        return f"{actor} - {self.module}.{self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError("Audit logs are append-only and cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TypeError("Audit logs are append-only and cannot be deleted")
