"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (registration, login, password change and reset)
- Sessions
- Users and profile
- Roles, permissions and assignments
"""
from rest_framework import serializers

from apps.rbac.models import User, Permission, Role


# ===== AUTHENTICATION SERIALIZERS =====

class RegistrationSerializer(serializers.Serializer):
    """Serializer for user registration. Password policy is enforced by AuthService."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.strip().lower()


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.strip().lower()


class ChangePasswordSerializer(serializers.Serializer):
    """Serializer for changing the password of the authenticated user."""

    current_password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})
    new_password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})


class PasswordResetRequestSerializer(serializers.Serializer):
    """Serializer for requesting password reset."""

    email = serializers.EmailField(required=True)

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.strip().lower()


class PasswordResetSerializer(serializers.Serializer):
    """Serializer for resetting password with token."""

    token = serializers.CharField(required=True)
    new_password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


# ===== SESSION SERIALIZERS =====

class SessionSerializer(serializers.Serializer):
    """Active session as returned by AuthService.list_sessions."""

    id = serializers.CharField()
    created_at = serializers.DateTimeField()
    expires_at = serializers.DateTimeField()
    ip_address = serializers.CharField(allow_null=True)
    user_agent = serializers.CharField(allow_null=True)
    is_current = serializers.BooleanField()
    browser = serializers.CharField()
    os = serializers.CharField()
    device = serializers.CharField()


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'full_name',
            'is_active', 'email_verified', 'last_login_at',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class UserProfileSerializer(UserSerializer):
    """
    Serializer for the current user profile (GET /v1/auth/me).

    Adds assigned roles and the effective permission set, both supplied via
    serializer context so they come from the same evaluation as authorization.
    """

    roles = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['roles', 'permissions']
        read_only_fields = fields

    def get_roles(self, obj):
        return self.context.get('roles', [])

    def get_permissions(self, obj):
        return sorted(self.context.get('permissions', []))


# ===== ROLE AND PERMISSION SERIALIZERS =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    action = serializers.CharField(read_only=True)

    class Meta:
        model = Permission
        fields = ['id', 'module', 'action', 'description', 'created_at']
        read_only_fields = fields


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_count = serializers.SerializerMethodField()
    user_count = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description',
            'permission_count', 'user_count', 'permissions',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        """Get count of permissions for this role."""
        return obj.role_permissions.count()

    def get_user_count(self, obj):
        """Get count of users holding this role."""
        return obj.user_roles.count()

    def get_permissions(self, obj):
        """Get sorted permission ids, only when explicitly requested."""
        if self.context.get('include_permissions', False):
            return sorted(obj.get_permission_ids())
        return None


class RoleCreateSerializer(serializers.Serializer):
    """Serializer for creating roles. Uniqueness is enforced by RBACService."""

    name = serializers.CharField(required=True, max_length=50)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RoleUpdateSerializer(serializers.Serializer):
    """Serializer for partial role updates."""

    name = serializers.CharField(required=False, max_length=50)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide at least one of: name, description")
        return attrs


class RolePermissionSerializer(serializers.Serializer):
    """Serializer for granting or revoking one permission on a role."""

    permission_id = serializers.CharField(required=True, max_length=100)


class UserRoleSerializer(serializers.Serializer):
    """Serializer for assigning or removing one role on a user."""

    role_id = serializers.UUIDField(required=True)
