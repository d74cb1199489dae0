"""
Tests for role, permission and user role endpoints.
"""
import uuid

import pytest

from apps.audit.models import AuditLog
from apps.rbac.models import Role, RolePermission, UserRole
from apps.rbac.services import RBACService


@pytest.fixture
def role_client(auth_client, user, make_role):
    """Client for a user holding exactly the given permissions."""
    def make(*permissions):
        UserRole.objects.create(user=user, role=make_role('Scoped', permissions))
        return auth_client(user)
    return make


@pytest.mark.django_db
class TestAuthorization:

    def test_unauthenticated_request(self, api_client):
        response = api_client.get('/v1/roles')

        assert response.status_code == 401
        assert response['WWW-Authenticate'] == 'Bearer'

    def test_missing_permission_is_forbidden(self, auth_client, user):
        response = auth_client(user).get('/v1/roles')

        assert response.status_code == 403
        assert response.data['code'] == 'PERMISSION_DENIED'
        assert 'role:list' not in str(response.data)

    def test_each_method_checks_its_own_permission(self, role_client):
        client = role_client('role:list')

        assert client.get('/v1/roles').status_code == 200
        assert client.post('/v1/roles', {'name': 'Auditor'}, format='json').status_code == 403
        assert not Role.objects.filter(name='Auditor').exists()

    def test_credential_snapshot_is_used(self, auth_client, user, make_role):
        role = make_role('Lister', ['role:list'])
        UserRole.objects.create(user=user, role=role)
        client = auth_client(user)
        RolePermission.objects.filter(role=role).delete()

        assert client.get('/v1/roles').status_code == 200

    def test_live_permissions_setting(self, auth_client, user, make_role, settings):
        role = make_role('Lister', ['role:list'])
        UserRole.objects.create(user=user, role=role)
        client = auth_client(user)
        RBACService().remove_permission_from_role(role, 'role:list')
        settings.AUTH_LIVE_PERMISSIONS = True

        assert client.get('/v1/roles').status_code == 403


@pytest.mark.django_db
class TestRoleEndpoints:

    def test_create_role(self, admin_client, admin_user):
        response = admin_client.post('/v1/roles', {'name': 'Editor', 'description': 'Edits things'}, format='json')

        assert response.status_code == 201
        assert response.data['name'] == 'Editor'
        assert response.data['description'] == 'Edits things'
        log = AuditLog.objects.get(action='create', module='roles')
        assert log.user_id == admin_user.id
        assert log.entity_id == response.data['id']

    def test_create_duplicate_role(self, admin_client, make_role):
        make_role('Editor')
        response = admin_client.post('/v1/roles', {'name': 'Editor'}, format='json')

        assert response.status_code == 409
        assert response.data['code'] == 'CONFLICT'

    def test_create_role_name_too_long(self, admin_client):
        response = admin_client.post('/v1/roles', {'name': 'x' * 51}, format='json')
        assert response.status_code == 400

    def test_list_roles(self, admin_client, make_role):
        make_role('Editor', ['post:read'])

        response = admin_client.get('/v1/roles?include_permissions=true')

        assert response.status_code == 200
        names = [r['name'] for r in response.data['results']]
        assert names == sorted(names)
        editor = next(r for r in response.data['results'] if r['name'] == 'Editor')
        assert editor['permissions'] == ['post:read']
        assert editor['user_count'] == 0

    def test_get_role(self, admin_client, make_role):
        role = make_role('Editor', ['post:update', 'post:read'])

        response = admin_client.get(f'/v1/roles/{role.id}')

        assert response.status_code == 200
        assert response.data['permissions'] == ['post:read', 'post:update']
        assert response.data['permission_count'] == 2

    def test_get_unknown_role(self, admin_client):
        response = admin_client.get(f'/v1/roles/{uuid.uuid4()}')

        assert response.status_code == 404
        assert response.data['code'] == 'NOT_FOUND'

    def test_update_role(self, admin_client, make_role):
        role = make_role('Editor')

        response = admin_client.patch(f'/v1/roles/{role.id}', {'name': 'Senior Editor'}, format='json')

        assert response.status_code == 200
        assert response.data['name'] == 'Senior Editor'
        log = AuditLog.objects.get(action='update', module='roles')
        assert log.old_values == {'name': 'Editor'}
        assert log.new_values == {'name': 'Senior Editor'}

    def test_update_role_requires_a_field(self, admin_client, make_role):
        role = make_role('Editor')
        assert admin_client.patch(f'/v1/roles/{role.id}', {}, format='json').status_code == 400

    def test_delete_role(self, admin_client, make_role):
        role = make_role('Editor', ['post:read'])

        response = admin_client.delete(f'/v1/roles/{role.id}')

        assert response.status_code == 204
        assert not Role.objects.filter(pk=role.pk).exists()
        assert not RolePermission.objects.filter(role_id=role.pk).exists()

    def test_delete_role_in_use(self, admin_client, make_role, user, other_user):
        role = make_role('Editor')
        UserRole.objects.create(user=user, role=role)
        UserRole.objects.create(user=other_user, role=role)

        response = admin_client.delete(f'/v1/roles/{role.id}')

        assert response.status_code == 409
        assert response.data['code'] == 'ROLE_IN_USE'
        assert response.data['details'] == {'assigned_users': 2}
        assert Role.objects.filter(pk=role.pk).exists()


@pytest.mark.django_db
class TestRolePermissionEndpoints:

    def test_grant_and_list(self, admin_client, make_role, make_permission):
        role = make_role('Editor')
        make_permission('post:read')

        response = admin_client.post(f'/v1/roles/{role.id}/permissions', {'permission_id': 'post:read'}, format='json')
        assert response.status_code == 201

        listing = admin_client.get(f'/v1/roles/{role.id}/permissions')
        assert listing.data['count'] == 1
        assert listing.data['permissions'][0]['id'] == 'post:read'
        assert listing.data['permissions'][0]['action'] == 'read'

    def test_grant_invalidates_holder_cache(self, admin_client, make_role, make_permission, user):
        role = make_role('Editor')
        make_permission('post:read')
        UserRole.objects.create(user=user, role=role)
        rbac = RBACService()
        assert rbac.get_effective_permissions(user) == set()

        admin_client.post(f'/v1/roles/{role.id}/permissions', {'permission_id': 'post:read'}, format='json')

        assert rbac.get_effective_permissions(user) == {'post:read'}

    def test_grant_twice(self, admin_client, make_role):
        role = make_role('Editor', ['post:read'])
        response = admin_client.post(f'/v1/roles/{role.id}/permissions', {'permission_id': 'post:read'}, format='json')
        assert response.status_code == 409

    def test_grant_unknown_permission(self, admin_client, make_role):
        role = make_role('Editor')
        response = admin_client.post(f'/v1/roles/{role.id}/permissions', {'permission_id': 'post:fly'}, format='json')
        assert response.status_code == 404

    def test_revoke(self, admin_client, make_role):
        role = make_role('Editor', ['post:read'])

        response = admin_client.delete(f'/v1/roles/{role.id}/permissions', {'permission_id': 'post:read'}, format='json')

        assert response.status_code == 204
        assert role.get_permission_ids() == set()
        assert AuditLog.objects.filter(action='permission_remove', entity_id=f'{role.id}-post:read').exists()


@pytest.mark.django_db
class TestUserRoleEndpoints:

    def test_assign_role(self, admin_client, admin_user, make_role, user):
        role = make_role('Editor', ['post:read'])

        response = admin_client.post(f'/v1/users/{user.id}/roles', {'role_id': str(role.id)}, format='json')

        assert response.status_code == 201
        assert UserRole.objects.get(user=user, role=role).assigned_by == admin_user
        log = AuditLog.objects.get(action='role_assign')
        assert log.user_id == admin_user.id
        assert log.entity_id == f'{user.id}-{role.id}'
        assert log.new_values['role_name'] == 'Editor'

    def test_assign_role_twice(self, admin_client, make_role, user):
        role = make_role('Editor')
        UserRole.objects.create(user=user, role=role)

        response = admin_client.post(f'/v1/users/{user.id}/roles', {'role_id': str(role.id)}, format='json')

        assert response.status_code == 409

    def test_assign_to_unknown_user(self, admin_client, make_role):
        role = make_role('Editor')
        response = admin_client.post(f'/v1/users/{uuid.uuid4()}/roles', {'role_id': str(role.id)}, format='json')
        assert response.status_code == 404

    def test_list_user_roles(self, admin_client, make_role, user):
        UserRole.objects.create(user=user, role=make_role('Editor', ['post:read']))
        UserRole.objects.create(user=user, role=make_role('Viewer', ['post:read', 'post:list']))

        response = admin_client.get(f'/v1/users/{user.id}/roles')

        assert response.status_code == 200
        assert [r['name'] for r in response.data['roles']] == ['Editor', 'Viewer']
        assert response.data['permissions'] == ['post:list', 'post:read']

    def test_remove_role(self, admin_client, make_role, user):
        role = make_role('Editor')
        UserRole.objects.create(user=user, role=role)

        response = admin_client.delete(f'/v1/users/{user.id}/roles', {'role_id': str(role.id)}, format='json')

        assert response.status_code == 204
        assert not UserRole.objects.filter(user=user).exists()

    def test_remove_role_not_held(self, admin_client, make_role, user):
        role = make_role('Editor')
        response = admin_client.delete(f'/v1/users/{user.id}/roles', {'role_id': str(role.id)}, format='json')
        assert response.status_code == 404


@pytest.mark.django_db
class TestPermissionEndpoints:

    def test_list_permissions(self, admin_client):
        response = admin_client.get('/v1/permissions')

        assert response.status_code == 200
        ids = [p['id'] for p in response.data['permissions']]
        assert 'role:list' in ids
        assert response.data['count'] == len(ids)

    def test_filter_by_module(self, admin_client):
        response = admin_client.get('/v1/permissions?module=audit')
        assert [p['id'] for p in response.data['permissions']] == ['audit:view']

    def test_requires_permission_list(self, role_client):
        assert role_client('role:list').get('/v1/permissions').status_code == 403
