"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command

TEST_PASSWORD = 'SecurePass123'


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'aurora-tests',
        }
    }
    settings.RATELIMIT_ENABLE = False
    settings.AUDIT_ASYNC = False
    settings.AUTH_ENFORCE_SESSION_REGISTRY = False
    settings.AUTH_LIVE_PERMISSIONS = False
    settings.CELERY_TASK_ALWAYS_EAGER = True
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clean_event_bus():
    """
    Reset the process-wide event bus to its production wiring (the audit
    listener only) and clear cached permission sets between tests.
    """
    from django.core.cache import cache
    from apps.audit.listeners import AuditListener
    from apps.events.bus import event_bus

    event_bus.unsubscribe_all()
    AuditListener().register(event_bus)
    cache.clear()
    yield
    event_bus.unsubscribe_all()
    AuditListener().register(event_bus)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def password():
    return TEST_PASSWORD


@pytest.fixture
def user(db):
    """Create a test user without roles."""
    from apps.rbac.models import User
    return User.objects.create_user(
        email='test@example.com',
        password=TEST_PASSWORD,
        first_name='Test',
        last_name='User'
    )


@pytest.fixture
def other_user(db):
    """Create a second test user."""
    from apps.rbac.models import User
    return User.objects.create_user(
        email='other@example.com',
        password=TEST_PASSWORD,
        first_name='Other',
        last_name='User'
    )


@pytest.fixture
def make_permission(db):
    """Factory for permissions (idempotent)."""
    from apps.rbac.models import Permission

    def make(permission_id, description=''):
        return Permission.objects.get_or_create_permission(permission_id, description=description)[0]

    return make


@pytest.fixture
def make_role(db, make_permission):
    """Factory for roles granting the given permission ids."""
    from apps.rbac.models import Role, RolePermission

    def make(name, permissions=()):
        role = Role.objects.create(name=name)
        for permission_id in permissions:
            RolePermission.objects.create(role=role, permission=make_permission(permission_id))
        return role

    return make


@pytest.fixture
def system_permissions(db):
    """Seed every canonical permission."""
    from apps.rbac.models import Permission, SYSTEM_PERMISSIONS
    return [
        Permission.objects.get_or_create_permission(permission_id, description=description)[0]
        for permission_id, description in SYSTEM_PERMISSIONS.items()
    ]


@pytest.fixture
def admin_user(db, system_permissions, make_role):
    """Create a user holding a role with every canonical permission."""
    from apps.rbac.models import User, UserRole
    admin = User.objects.create_user(
        email='admin@example.com',
        password=TEST_PASSWORD,
        first_name='Admin',
        last_name='User'
    )
    role = make_role('Test Super Admin', [p.id for p in system_permissions])
    UserRole.objects.create(user=admin, role=role)
    return admin


@pytest.fixture
def login():
    """Log a user in through AuthService and return the LoginResult."""
    from apps.rbac.services import AuthService

    def do_login(user, ip_address='127.0.0.1', user_agent='pytest'):
        return AuthService().login(
            email=user.email,
            password=TEST_PASSWORD,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    return do_login


@pytest.fixture
def auth_client(login):
    """Factory for API clients authenticated as a given user with a real credential."""
    from rest_framework.test import APIClient

    def make(user):
        result = login(user)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {result.token}')
        client.login_result = result
        return client

    return make


@pytest.fixture
def admin_client(auth_client, admin_user):
    """API client authenticated as admin_user."""
    return auth_client(admin_user)
