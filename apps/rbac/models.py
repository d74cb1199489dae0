"""
RBAC models for admin access control.

Implements:
- User identity with hashed password
- Role and Permission definitions
- RolePermission (maps permissions to roles)
- UserRole (maps roles to users, recording who granted the assignment)
- UserSession (server-side record of every issued credential)
- PasswordResetToken (single-use reset tokens)
"""
import logging
import re
import secrets
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.hashers import make_password, check_password
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.models import BaseModel

logger = logging.getLogger(__name__)

# Permission ids are `module:action`, lowercase letters and underscores only
PERMISSION_ID_PATTERN = re.compile(r'^[a-z_]+:[a-z_]+$')

# Canonical permissions seeded by `manage.py seed_permissions`
SYSTEM_PERMISSIONS = {
    'user:create': 'Create users',
    'user:read': 'View user details',
    'user:update': 'Update users',
    'user:delete': 'Delete users',
    'user:list': 'List users',
    'user:manage': 'Assign and remove user roles',
    'role:create': 'Create roles',
    'role:read': 'View role details',
    'role:update': 'Update roles',
    'role:delete': 'Delete roles',
    'role:list': 'List roles',
    'role:manage': 'Grant and revoke role permissions',
    'permission:create': 'Create permissions',
    'permission:read': 'View permission details',
    'permission:update': 'Update permissions',
    'permission:delete': 'Delete permissions',
    'permission:list': 'List permissions',
    'permission:manage': 'Manage the permission catalogue',
    'system:admin': 'Full system administration',
    'system:config': 'Change system configuration',
    'audit:view': 'View the audit trail',
}

SUPER_ADMIN_ROLE = 'Super Admin'

# Default roles; None grants every system permission
SYSTEM_ROLES = {
    SUPER_ADMIN_ROLE: {
        'description': 'Full access to every system permission',
        'permissions': None,
    },
    'Administrator': {
        'description': 'Administrative access with limited permissions',
        'permissions': [
            'user:read', 'user:list', 'user:update',
            'role:read', 'role:list',
            'permission:read', 'permission:list',
        ],
    },
    'User': {
        'description': 'Standard user with basic permissions',
        'permissions': ['user:read', 'permission:read'],
    },
}


def is_valid_permission_id(value) -> bool:
    """Return True if ``value`` has the shape ``module:action``."""
    return isinstance(value, str) and bool(PERMISSION_ID_PATTERN.fullmatch(value))


def validate_permission_id(value):
    """Model field validator for permission ids."""
    if not is_valid_permission_id(value):
        raise ValidationError(
            f"'{value}' is not a valid permission id. Expected 'module:action' "
            f"using lowercase letters and underscores."
        )


class UserManager(models.Manager):
    """Manager for User queries."""

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email (case-insensitive)."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a new user with hashed password."""
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.password_hash = make_password(None)
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """Lowercase and strip the address. Emails are compared case-insensitively."""
        return (email or '').strip().lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    User identity.

    Authorization is never stored on the user directly: permissions reach a
    user only through role assignments (UserRole -> RolePermission).
    """

    email = models.EmailField(
        unique=True,
        help_text="User email address (unique, stored lowercase)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="User last name"
    )
    email_verified_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the email address was verified"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    @property
    def email_verified(self):
        return self.email_verified_at is not None

    def update_last_login(self):
        """Update last_login_at to current time."""
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at'])

    @property
    def is_authenticated(self):
        """Always True for User instances (Django auth compatibility)."""
        return True

    @property
    def is_anonymous(self):
        """Always False for User instances (Django auth compatibility)."""
        return False

    def natural_key(self):
        return (self.email,)


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def by_module(self, module):
        """Get all permissions in a module."""
        return self.filter(module=module)

    def get_or_create_permission(self, permission_id, description=''):
        """Get or create a permission; the module is derived from the id."""
        return self.get_or_create(
            id=permission_id,
            defaults={
                'module': Permission.module_of(permission_id),
                'description': description,
            }
        )


class Permission(models.Model):
    """
    A semantic capability identifier such as ``user:create``.

    The id is the primary key so authorization checks in calling code are
    self-documenting and stable across reseeding. A permission referenced by
    a role cannot be deleted (``on_delete=PROTECT`` on RolePermission).
    """

    id = models.CharField(
        max_length=100,
        primary_key=True,
        validators=[validate_permission_id],
        help_text="Permission id (e.g., 'user:create')"
    )
    module = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Module part of the id (e.g., 'user')"
    )
    description = models.TextField(
        blank=True,
        help_text="What this permission grants"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="Timestamp when the permission was created"
    )

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['module', 'id']

    def __str__(self):
        return self.id

    @staticmethod
    def module_of(permission_id):
        return permission_id.split(':', 1)[0]

    @property
    def action(self):
        return self.id.split(':', 1)[1]

    def save(self, *args, **kwargs):
        validate_permission_id(self.id)
        self.module = self.module_of(self.id)
        super().save(*args, **kwargs)


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Get role by name."""
        return self.filter(name=name).first()

    def for_user(self, user):
        """Roles assigned to a user."""
        return self.filter(user_roles__user=user).distinct()


class Role(BaseModel):
    """
    Named collection of permissions.

    A role cannot be deleted while assigned to any user; the service layer
    checks first and ``on_delete=PROTECT`` on UserRole backs the check.
    """

    name = models.CharField(
        max_length=50,
        unique=True,
        help_text="Role name (unique)"
    )
    description = models.TextField(
        blank=True,
        null=True,
        help_text="Role description"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    def get_permission_ids(self):
        """Permission ids granted by this role."""
        return set(self.role_permissions.values_list('permission_id', flat=True))


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def for_permission(self, permission):
        return self.filter(permission=permission)


class RolePermission(models.Model):
    """Maps permissions to roles."""

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.PROTECT,
        related_name='role_permissions',
        help_text="Permission being granted"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the permission was granted to the role"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        ordering = ['role', 'permission']
        constraints = [
            models.UniqueConstraint(fields=['role', 'permission'], name='uniq_role_permission'),
        ]

    def __str__(self):
        return f"{self.role.name} -> {self.permission_id}"


class UserRoleManager(models.Manager):
    """Manager for UserRole queries."""

    def for_user(self, user):
        return self.filter(user=user)

    def for_role(self, role):
        return self.filter(role=role)


class UserRole(models.Model):
    """
    Maps roles to users.

    ``assigned_by`` and ``created_at`` keep provenance in the schema itself,
    independent of the audit trail.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='user_roles',
        help_text="User who has this role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='user_roles',
        help_text="Role assigned to the user"
    )
    assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When role was assigned"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        ordering = ['user', 'role']
        constraints = [
            models.UniqueConstraint(fields=['user', 'role'], name='uniq_user_role'),
        ]

    def __str__(self):
        return f"{self.user.email} -> {self.role.name}"


class UserSessionQuerySet(models.QuerySet):
    """Chainable UserSession queries."""

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def active(self, now=None):
        return self.filter(expires_at__gt=now or timezone.now())

    def expired(self, now=None):
        return self.filter(expires_at__lte=now or timezone.now())


class UserSession(models.Model):
    """
    Server-side record of an issued credential.

    The primary key is the session id embedded in the credential, so a
    credential can always be correlated with its record. Records are
    deleted on logout, remote invalidation, bulk close or expiry sweep.
    """

    id = models.CharField(
        max_length=64,
        primary_key=True,
        help_text="Session id, identical to the credential's sid claim"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sessions',
        help_text="Session owner"
    )
    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When the session (and its credential) expires"
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the session was established"
    )
    ip_address = models.CharField(
        max_length=45,
        null=True,
        blank=True,
        help_text="Client IP at login"
    )
    user_agent = models.TextField(
        null=True,
        blank=True,
        help_text="Client user agent at login"
    )

    objects = UserSessionQuerySet.as_manager()

    class Meta:
        db_table = 'user_sessions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'expires_at']),
        ]

    def __str__(self):
        return f"Session {self.id[:8]} for user {self.user_id}"

    def is_expired(self, now=None):
        return self.expires_at <= (now or timezone.now())


class PasswordResetTokenManager(models.Manager):
    """Manager for PasswordResetToken queries."""

    def for_user(self, user):
        """Get all password reset tokens for a user."""
        return self.filter(user=user)

    def get_valid_token(self, token):
        """Get a valid (non-expired, unused) token by token string."""
        return self.filter(
            token=token,
            expires_at__gt=timezone.now(),
            used=False
        ).select_related('user').first()


class PasswordResetToken(BaseModel):
    """
    Password reset tokens for the forgot password flow.

    Tokens expire after PASSWORD_RESET_TOKEN_HOURS and can only be used once.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='password_reset_tokens',
        help_text="User this token belongs to"
    )
    token = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique reset token"
    )
    expires_at = models.DateTimeField(
        db_index=True,
        help_text="Token expiration time"
    )
    used = models.BooleanField(
        default=False,
        help_text="Whether token has been used"
    )
    used_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When token was used"
    )

    objects = PasswordResetTokenManager()

    class Meta:
        db_table = 'password_reset_tokens'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['token', 'expires_at', 'used']),
        ]

    def __str__(self):
        return f"Password reset token for {self.user.email}"

    def is_valid(self):
        """Check if token is still valid (not expired and not used)."""
        return not self.used and timezone.now() < self.expires_at

    def mark_as_used(self):
        """Mark token as used."""
        self.used = True
        self.used_at = timezone.now()
        self.save(update_fields=['used', 'used_at'])

    @classmethod
    def create_token(cls, user):
        """Create a new password reset token for a user."""
        hours = getattr(settings, 'PASSWORD_RESET_TOKEN_HOURS', 24)
        return cls.objects.create(
            user=user,
            token=secrets.token_urlsafe(32),
            expires_at=timezone.now() + timedelta(hours=hours)
        )
