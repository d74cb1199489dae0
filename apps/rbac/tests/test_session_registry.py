"""
Tests for the session registry.
"""
from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone

from apps.rbac.models import UserSession
from apps.rbac.services import SessionRegistry


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def make_session(registry):
    def make(user, session_id, expires_in=timedelta(days=1), created_ago=timedelta(0), **kwargs):
        session = registry.create(
            session_id=session_id,
            user_id=user.id,
            expires_at=timezone.now() + expires_in,
            **kwargs
        )
        if created_ago:
            UserSession.objects.filter(id=session_id).update(created_at=timezone.now() - created_ago)
        return session
    return make


@pytest.mark.django_db
class TestSessionRegistry:

    def test_create_and_get(self, registry, make_session, user):
        make_session(user, 's1', ip_address='10.0.0.1', user_agent='Firefox')

        session = registry.get('s1')

        assert session.user_id == user.id
        assert session.ip_address == '10.0.0.1'
        assert session.user_agent == 'Firefox'

    def test_duplicate_id_raises(self, registry, make_session, user):
        make_session(user, 's1')
        with pytest.raises(IntegrityError):
            make_session(user, 's1')

    def test_list_active_newest_first(self, registry, make_session, user):
        make_session(user, 'old', created_ago=timedelta(hours=2))
        make_session(user, 'new')
        make_session(user, 'middle', created_ago=timedelta(hours=1))

        assert [s.id for s in registry.list_active(user.id)] == ['new', 'middle', 'old']

    def test_list_active_excludes_expired(self, registry, make_session, user):
        make_session(user, 'live')
        make_session(user, 'dead', expires_in=timedelta(seconds=-1))

        assert [s.id for s in registry.list_active(user.id)] == ['live']
        assert {s.id for s in registry.list_active(user.id, include_expired=True)} == {'live', 'dead'}
        assert registry.count_active(user.id) == 1

    def test_get_active(self, registry, make_session, user, other_user):
        make_session(user, 'live')
        make_session(user, 'dead', expires_in=timedelta(seconds=-1))

        assert registry.get_active('live').id == 'live'
        assert registry.get_active('live', user_id=user.id).id == 'live'
        assert registry.get_active('live', user_id=other_user.id) is None
        assert registry.get_active('dead') is None
        assert registry.get_active('missing') is None

    def test_delete(self, registry, make_session, user):
        make_session(user, 's1')

        assert registry.delete('s1') is True
        assert registry.delete('s1') is False

    def test_delete_for_user_checks_owner(self, registry, make_session, user, other_user):
        make_session(user, 's1')

        assert registry.delete_for_user(other_user.id, 's1') is False
        assert registry.get('s1') is not None
        assert registry.delete_for_user(user.id, 's1') is True

    def test_delete_all_except(self, registry, make_session, user, other_user):
        make_session(user, 'keep')
        make_session(user, 'a')
        make_session(user, 'b')
        make_session(other_user, 'theirs')

        assert registry.delete_all_except(user.id, 'keep') == 2
        assert [s.id for s in registry.list_active(user.id)] == ['keep']
        assert registry.get('theirs') is not None

    def test_delete_all(self, registry, make_session, user, other_user):
        make_session(user, 'a')
        make_session(user, 'b')
        make_session(other_user, 'theirs')

        assert registry.delete_all(user.id) == 2
        assert registry.list_active(user.id) == []
        assert registry.count_active(other_user.id) == 1

    def test_sweep_expired(self, registry, make_session, user):
        make_session(user, 'live')
        make_session(user, 'dead1', expires_in=timedelta(hours=-1))
        make_session(user, 'dead2', expires_in=timedelta(seconds=-1))
        swept = []

        removed = registry.sweep_expired(on_expired=swept.append)

        assert removed == 2
        assert [s.id for s in swept] == ['dead1', 'dead2']
        assert list(UserSession.objects.values_list('id', flat=True)) == ['live']

    def test_sweep_twice_reports_each_record_once(self, registry, make_session, user):
        make_session(user, 'dead', expires_in=timedelta(seconds=-1))
        swept = []

        registry.sweep_expired(on_expired=swept.append)
        registry.sweep_expired(on_expired=swept.append)

        assert [s.id for s in swept] == ['dead']

    def test_sweep_with_explicit_now(self, registry, make_session, user):
        make_session(user, 'soon', expires_in=timedelta(minutes=5))

        assert registry.sweep_expired(now=timezone.now()) == 0
        assert registry.sweep_expired(now=timezone.now() + timedelta(minutes=10)) == 1

    def test_sessions_removed_with_user(self, registry, make_session, user):
        make_session(user, 's1')
        user.delete()
        assert registry.get('s1') is None
