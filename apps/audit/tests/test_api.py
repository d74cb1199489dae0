"""
Tests for the audit query endpoints.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.audit.services import AuditLogInput, AuditService
from apps.rbac.models import UserRole


@pytest.fixture
def auditor_client(auth_client, user, make_role):
    UserRole.objects.create(user=user, role=make_role('Auditor', ['audit:view']))
    return auth_client(user)


@pytest.fixture
def make_log():
    def make(action='update', module='roles', ago=timedelta(0), **kwargs):
        return AuditService().persist(AuditLogInput(
            action=action, module=module, timestamp=timezone.now() - ago, **kwargs
        ))
    return make


@pytest.mark.django_db
class TestAuditLogList:

    def test_requires_authentication(self, api_client):
        assert api_client.get('/v1/audit').status_code == 401

    def test_requires_audit_view(self, auth_client, user):
        response = auth_client(user).get('/v1/audit')
        assert response.status_code == 403

    def test_list(self, auditor_client, user):
        response = auditor_client.get('/v1/audit')

        assert response.status_code == 200
        assert response.data['total'] == 1
        log = response.data['logs'][0]
        assert log['action'] == 'login'
        assert log['user']['email'] == user.email
        assert response.data['has_more'] is False

    def test_filters_use_query_names(self, auditor_client, make_log):
        make_log(action='role_assign', entity_type='UserRole', entity_id='u-r', request_id='req-7')
        make_log(action='create', entity_type='Role', entity_id='r')

        response = auditor_client.get('/v1/audit', {
            'module': 'roles', 'action': 'role_assign', 'entityType': 'UserRole',
            'entityId': 'u-r', 'requestId': 'req-7',
        })

        assert response.data['total'] == 1
        assert response.data['logs'][0]['entity_id'] == 'u-r'

    def test_date_filters(self, auditor_client, make_log):
        make_log(action='old', ago=timedelta(days=10))
        since = (timezone.now() - timedelta(days=5)).date().isoformat()

        response = auditor_client.get('/v1/audit', {'module': 'roles', 'startDate': since})

        assert response.status_code == 200
        assert response.data['total'] == 0

    def test_limit_is_capped(self, auditor_client):
        response = auditor_client.get('/v1/audit', {'limit': 500})

        assert response.status_code == 200
        assert response.data['limit'] == 100

    def test_offset_past_the_end(self, auditor_client):
        response = auditor_client.get('/v1/audit', {'offset': 1000})

        assert response.data['logs'] == []
        assert response.data['has_more'] is False

    @pytest.mark.parametrize('params, field, message', [
        ({'startDate': 'yesterday'}, 'startDate', 'startDate must be a valid ISO 8601 date'),
        ({'endDate': '2026-13-45'}, 'endDate', 'endDate must be a valid ISO 8601 date'),
        ({'limit': 'ten'}, 'limit', 'limit must be a positive integer'),
        ({'limit': 0}, 'limit', 'limit must be a positive integer'),
        ({'offset': -1}, 'offset', 'offset must be a non-negative integer'),
        ({'userId': 'not-a-uuid'}, 'userId', 'userId must be a valid UUID'),
    ])
    def test_invalid_parameters(self, auditor_client, params, field, message):
        response = auditor_client.get('/v1/audit', params)

        assert response.status_code == 400
        assert response.data['error'] == 'Validation error'
        assert response.data['details'] == {field: message}

    def test_empty_parameters_are_ignored(self, auditor_client):
        response = auditor_client.get('/v1/audit', {'startDate': '', 'limit': ''})
        assert response.status_code == 200


@pytest.mark.django_db
class TestAuditStats:

    def test_stats(self, auditor_client, make_log, user):
        make_log(action='create', module='roles')

        response = auditor_client.get('/v1/audit/stats')

        assert response.status_code == 200
        assert response.data['total_logs'] == 2
        assert response.data['module_breakdown'] == {'auth': 1, 'roles': 1}
        assert response.data['top_users'][0]['email'] == user.email

    def test_stats_invalid_date(self, auditor_client):
        response = auditor_client.get('/v1/audit/stats', {'endDate': 'soon'})

        assert response.status_code == 400
        assert 'endDate' in response.data['details']

    def test_stats_requires_audit_view(self, auth_client, user):
        assert auth_client(user).get('/v1/audit/stats').status_code == 403
