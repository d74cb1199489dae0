from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)

KEY_HINT = 'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(32))"'

# Integer settings that must be strictly positive
POSITIVE_SETTINGS = (
    'JWT_EXPIRATION_DAYS',
    'PERMISSION_CACHE_TTL',
    'PASSWORD_RESET_TOKEN_HOURS',
    'AUDIT_MAX_PAGE_SIZE',
)


def jwt_key_problems(jwt_secret, secret_key):
    """Return the reasons a JWT signing key is unfit for use (empty when it is fine)."""
    if not jwt_secret:
        return ["JWT_SECRET_KEY must be set"]

    problems = []
    if len(jwt_secret) < 32:
        problems.append(
            f"JWT_SECRET_KEY must be at least 32 characters long (got {len(jwt_secret)})"
        )
    if jwt_secret == secret_key:
        problems.append("JWT_SECRET_KEY must be different from SECRET_KEY")
    unique_chars = len(set(jwt_secret))
    if unique_chars < 16:
        problems.append(
            f"JWT_SECRET_KEY has insufficient entropy ({unique_chars} unique characters, need 16)"
        )
    return problems


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security-relevant settings when a server process starts.

        Management commands and the test runner skip it so they work with
        development defaults.
        """
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            return

        self._validate_jwt_configuration()
        self._validate_limits()

        logger.info("Startup configuration validated")

    def _validate_jwt_configuration(self):
        problems = jwt_key_problems(
            getattr(settings, 'JWT_SECRET_KEY', None),
            getattr(settings, 'SECRET_KEY', None),
        )
        if problems:
            raise ImproperlyConfigured(f"{'; '.join(problems)}. {KEY_HINT}")

    def _validate_limits(self):
        for name in POSITIVE_SETTINGS:
            value = getattr(settings, name, None)
            if not isinstance(value, int) or value < 1:
                raise ImproperlyConfigured(f"{name} must be a positive integer, got {value!r}")
