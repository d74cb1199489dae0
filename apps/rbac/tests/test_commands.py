"""
Tests for RBAC management commands and the session sweep task.
"""
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from apps.audit.models import AuditLog
from apps.rbac.models import (
    Permission, Role, RolePermission, User, UserRole, UserSession,
    SUPER_ADMIN_ROLE, SYSTEM_PERMISSIONS,
)
from apps.rbac.services import RBACService
from apps.rbac.tasks import sweep_expired_sessions


def run(*args, **kwargs):
    out = StringIO()
    call_command(*args, stdout=out, **kwargs)
    return out.getvalue()


@pytest.mark.django_db
class TestSeedPermissions:

    def test_seeds_permissions_and_roles(self):
        run('seed_permissions')

        assert set(Permission.objects.values_list('id', flat=True)) == set(SYSTEM_PERMISSIONS)
        super_admin = Role.objects.get(name=SUPER_ADMIN_ROLE)
        assert super_admin.get_permission_ids() == set(SYSTEM_PERMISSIONS)
        assert Role.objects.get(name='User').get_permission_ids() == {'user:read', 'permission:read'}

    def test_is_idempotent(self):
        run('seed_permissions')
        permission_count = Permission.objects.count()
        grant_count = RolePermission.objects.count()

        output = run('seed_permissions')

        assert Permission.objects.count() == permission_count
        assert RolePermission.objects.count() == grant_count
        assert '0 created, 0 updated' in output

    def test_restores_changed_description(self):
        Permission.objects.create(id='user:read', description='stale')

        run('seed_permissions', '--skip-roles')

        assert Permission.objects.get(id='user:read').description == SYSTEM_PERMISSIONS['user:read']
        assert not Role.objects.exists()

    def test_new_grant_reaches_cached_holders(self, user):
        run('seed_permissions')
        role = Role.objects.get(name='User')
        UserRole.objects.create(user=user, role=role)
        RolePermission.objects.filter(role=role, permission_id='permission:read').delete()
        rbac = RBACService()
        assert rbac.get_effective_permissions(user) == {'user:read'}

        run('seed_permissions')

        assert rbac.get_effective_permissions(user) == {'user:read', 'permission:read'}


@pytest.mark.django_db
class TestCreateAdmin:

    def test_requires_seeded_role(self, user):
        with pytest.raises(CommandError, match='seed_permissions'):
            run('create_admin', '--email', user.email)

    def test_assigns_role_to_existing_user(self, user):
        run('seed_permissions')

        output = run('create_admin', '--email', 'TEST@example.com')

        assert UserRole.objects.filter(user=user, role__name=SUPER_ADMIN_ROLE).exists()
        assert f'Assigned Super Admin role to {user.email}' in output
        assert f'Granted permissions: {len(SYSTEM_PERMISSIONS)}' in output
        log = AuditLog.objects.get(action='role_assign')
        assert log.user_id is None
        assert log.metadata['area'] == 'system'

    def test_second_run_is_a_no_op(self, user):
        run('seed_permissions')
        run('create_admin', '--email', user.email)

        output = run('create_admin', '--email', user.email)

        assert 'already assigned' in output
        assert UserRole.objects.filter(user=user).count() == 1

    def test_unknown_user(self):
        run('seed_permissions')
        with pytest.raises(CommandError, match='User not found'):
            run('create_admin', '--email', 'nobody@example.com')

    def test_create_user(self):
        run('seed_permissions')

        run('create_admin', '--email', 'root@example.com', '--create-user', '--password', 'SecurePass123')

        admin = User.objects.get(email='root@example.com')
        assert admin.check_password('SecurePass123')
        assert RBACService().has_permission(admin, 'system:admin')

    def test_create_user_needs_password(self):
        run('seed_permissions')
        with pytest.raises(CommandError, match='--password'):
            run('create_admin', '--email', 'root@example.com', '--create-user')

    def test_create_user_weak_password(self):
        run('seed_permissions')
        with pytest.raises(CommandError, match='Failed to create user'):
            run('create_admin', '--email', 'root@example.com', '--create-user', '--password', 'weak')


@pytest.fixture
def expired_session(user):
    return UserSession.objects.create(id='expired', user=user, expires_at=timezone.now() - timedelta(minutes=1))


@pytest.mark.django_db
class TestSessionSweep:

    def test_sweep_command(self, user, expired_session):
        UserSession.objects.create(id='live', user=user, expires_at=timezone.now() + timedelta(hours=1))

        output = run('sweep_sessions')

        assert 'Swept 1 expired session(s)' in output
        assert list(UserSession.objects.values_list('id', flat=True)) == ['live']
        log = AuditLog.objects.get(action='session_expire')
        assert log.entity_id == 'expired'

    def test_sweep_task(self, expired_session):
        result = sweep_expired_sessions.apply().get()

        assert result == {'status': 'success', 'swept': 1}
        assert not UserSession.objects.exists()
        assert AuditLog.objects.get(action='session_expire').request_id is not None
