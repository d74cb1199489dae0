"""
Hybrid authentication: a signed, self-contained JWT plus a revocable
server-side session record sharing the same session id.

The credential carries a snapshot of the user's effective permissions taken
at login. The session record lets users list and revoke their sessions; the
credential stays valid until it expires unless AUTH_ENFORCE_SESSION_REGISTRY
makes authentication consult the registry.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import jwt
from django.conf import settings
from django.contrib.auth.hashers import make_password
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import (
    Conflict, InvalidCredentials, NotFound, Unauthenticated, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.events.bus import event_bus
from apps.events.context import system_context
from apps.events.types import (
    EventContext, SystemEvent,
    UserLoggedInPayload, UserLoggedOutPayload, UserRegisteredPayload,
    PasswordChangedPayload, PasswordResetRequestedPayload,
    SessionExpiredPayload, ConcurrentSessionDetectedPayload,
)
from apps.rbac.models import User, PasswordResetToken
from apps.rbac.services.rbac_service import RBACService, actor_context
from apps.rbac.services.session_registry import SessionRegistry
from apps.rbac.user_agent import parse_user_agent

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100
PASSWORD_COMPLEXITY = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)')


@dataclass(frozen=True)
class Credential:
    """Decoded, verified credential."""
    user_id: str
    session_id: str
    email: str
    name: str
    permissions: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    user: User
    token: str
    session_id: str
    expires_at: datetime
    permissions: FrozenSet[str]


def validate_password(password, field_name='password'):
    """
    Enforce password policy: 8-100 characters with a lower-case letter,
    an upper-case letter and a digit.

    Raises:
        ValidationError: with the offending field in ``details``
    """
    errors = []
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f'Password must be at least {PASSWORD_MIN_LENGTH} characters')
    elif len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f'Password cannot exceed {PASSWORD_MAX_LENGTH} characters')
    elif not PASSWORD_COMPLEXITY.match(password):
        errors.append('Password must contain at least one lowercase letter, one uppercase letter, and one number')

    if errors:
        raise ValidationError('Invalid password', details={field_name: errors})


class AuthService:
    """
    Service for authentication operations: login/logout, credential issue and
    verification, session management, registration and password flows.
    """

    def __init__(self, rbac: Optional[RBACService] = None, sessions: Optional[SessionRegistry] = None, bus=None):
        self.bus = bus or event_bus
        self.rbac = rbac or RBACService(bus=self.bus)
        self.sessions = sessions or SessionRegistry()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @staticmethod
    def session_max_age() -> timedelta:
        return timedelta(days=getattr(settings, 'JWT_EXPIRATION_DAYS', 30))

    def issue_credential(self, user: User, session_id: str, permissions, expires_at: Optional[datetime] = None) -> str:
        """
        Sign a credential for ``user`` bound to ``session_id``.

        Args:
            user: User instance
            session_id: Session registry id, embedded as the ``sid`` claim
            permissions: Effective permission snapshot
            expires_at: Expiry; defaults to now + JWT_EXPIRATION_DAYS

        Returns:
            JWT token string
        """
        now = timezone.now()
        payload = {
            'sub': str(user.id),
            'sid': session_id,
            'email': user.email,
            'name': user.get_full_name(),
            'first_name': user.first_name,
            'last_name': user.last_name,
            'permissions': sorted(permissions),
            'iat': now,
            'exp': expires_at or now + self.session_max_age(),
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    def decode_credential(self, token: str) -> Credential:
        """
        Verify a credential's signature and expiry.

        Raises:
            Unauthenticated: if the token is expired, malformed or tampered with
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')],
                options={'require': ['exp', 'iat', 'sub', 'sid']}
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated('Token has expired')
        except jwt.InvalidTokenError:
            raise Unauthenticated('Invalid token')

        return Credential(
            user_id=payload['sub'],
            session_id=payload['sid'],
            email=payload.get('email', ''),
            name=payload.get('name', ''),
            permissions=frozenset(payload.get('permissions') or []),
            issued_at=datetime.fromtimestamp(payload['iat'], tz=dt_timezone.utc),
            expires_at=datetime.fromtimestamp(payload['exp'], tz=dt_timezone.utc),
        )

    def authenticate_token(self, token: str) -> Tuple[User, Credential]:
        """
        Resolve a bearer token to its user.

        Raises:
            Unauthenticated: if the token is invalid, the user is gone or
                inactive, or (when enforced) the session was revoked
        """
        credential = self.decode_credential(token)

        user = User.objects.filter(id=credential.user_id, is_active=True).first()
        if user is None:
            raise Unauthenticated('User not found or inactive')

        if getattr(settings, 'AUTH_ENFORCE_SESSION_REGISTRY', False):
            if self.sessions.get_active(credential.session_id, user_id=user.id) is None:
                SecurityLogger.log_suspicious_activity(
                    'revoked_session_used',
                    'Credential presented for a session that is no longer registered',
                    user_id=str(user.id),
                    session_id=credential.session_id,
                )
                raise Unauthenticated('Session has been revoked')

        return user, credential

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip_address: Optional[str] = None,
              user_agent: Optional[str] = None, context: Optional[EventContext] = None) -> LoginResult:
        """
        Verify credentials and establish a session.

        Unknown email, inactive account and wrong password all raise the same
        InvalidCredentials error. Registry write and event publish failures
        are logged and do not fail the login.

        Raises:
            InvalidCredentials: if verification fails
        """
        user = User.objects.active().filter(email=User.objects.normalize_email(email)).first()
        if user is None:
            # Hash anyway so response time does not reveal unknown addresses
            make_password(password)
            raise InvalidCredentials()

        if not user.check_password(password):
            raise InvalidCredentials()

        session_id = str(uuid.uuid4())
        permissions = frozenset(self.rbac.get_effective_permissions(user, use_cache=False))
        expires_at = timezone.now() + self.session_max_age()
        token = self.issue_credential(user, session_id, permissions, expires_at=expires_at)

        try:
            user.update_last_login()
        except Exception as e:
            logger.error(
                f"Failed to record last login: {str(e)}",
                extra={'user_id': str(user.id), 'session_id': session_id},
                exc_info=True
            )

        existing_sessions = self.sessions.list_active(user.id)

        try:
            self.sessions.create(
                session_id=session_id,
                user_id=user.id,
                expires_at=expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception as e:
            logger.error(
                f"Failed to create session record: {str(e)}",
                extra={'user_id': str(user.id), 'session_id': session_id},
                exc_info=True
            )

        context = context or EventContext(user_id=str(user.id), ip_address=ip_address, user_agent=user_agent)

        self.bus.publish(
            SystemEvent.USER_LOGGED_IN,
            UserLoggedInPayload(
                user_id=str(user.id),
                email=user.email,
                session_id=session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            ),
            context,
        )

        if existing_sessions:
            self.bus.publish(
                SystemEvent.CONCURRENT_SESSION_DETECTED,
                ConcurrentSessionDetectedPayload(
                    user_id=str(user.id),
                    new_session_id=session_id,
                    existing_session_id=existing_sessions[0].id,
                    ip_address=ip_address,
                ),
                context,
            )

        logger.info(
            "User logged in",
            extra={'user_id': str(user.id), 'session_id': session_id, 'active_sessions': len(existing_sessions) + 1}
        )

        return LoginResult(
            user=user,
            token=token,
            session_id=session_id,
            expires_at=expires_at,
            permissions=permissions,
        )

    def logout(self, user: User, session_id: str, context: Optional[EventContext] = None) -> bool:
        """
        Delete the current session record and publish the logout event.

        The credential itself stays verifiable until it expires.

        Returns:
            True if a record was deleted
        """
        deleted = self.sessions.delete_for_user(user.id, session_id)

        self.bus.publish(
            SystemEvent.USER_LOGGED_OUT,
            UserLoggedOutPayload(user_id=str(user.id), session_id=session_id),
            actor_context(context, user),
        )

        logger.info("User logged out", extra={'user_id': str(user.id), 'session_id': session_id})
        return deleted

    def refresh_token(self, user: User, session_id: str) -> str:
        """
        Re-issue the credential for a live session with a fresh permission
        snapshot. The new credential expires with the session.

        Raises:
            Unauthenticated: if the session is no longer registered
        """
        session = self.sessions.get_active(session_id, user_id=user.id)
        if session is None:
            raise Unauthenticated('Session is no longer active')

        permissions = self.rbac.get_effective_permissions(user, use_cache=False)
        return self.issue_credential(user, session_id, permissions, expires_at=session.expires_at)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def list_sessions(self, user: User, current_session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active sessions of ``user``, the current one first, then newest first."""
        sessions = self.sessions.list_active(user.id)
        sessions.sort(key=lambda s: s.id != current_session_id)

        results = []
        for session in sessions:
            results.append({
                'id': session.id,
                'created_at': session.created_at,
                'expires_at': session.expires_at,
                'ip_address': session.ip_address,
                'user_agent': session.user_agent,
                'is_current': session.id == current_session_id,
                **parse_user_agent(session.user_agent),
            })
        return results

    def invalidate_session(self, user: User, session_id: str, current_session_id: Optional[str] = None,
                           ip_address: Optional[str] = None):
        """
        Revoke one of the user's other sessions.

        Raises:
            ValidationError: if ``session_id`` is the current session
            NotFound: if the session is not one of the user's active sessions
        """
        if current_session_id and session_id == current_session_id:
            raise ValidationError(
                'Cannot invalidate the current session. Use logout instead.',
                details={'session_id': ['Current session must be closed with logout']}
            )

        if self.sessions.get_active(session_id, user_id=user.id) is None:
            raise NotFound('Session not found')

        self.sessions.delete_for_user(user.id, session_id)

        SecurityLogger.log_session_revoked(str(user.id), reason='invalidate', session_count=1, ip_address=ip_address)

    def close_all_other_sessions(self, user: User, current_session_id: str, ip_address: Optional[str] = None) -> int:
        """Delete every session of ``user`` except the current one. Returns the count."""
        count = self.sessions.delete_all_except(user.id, current_session_id)

        SecurityLogger.log_session_revoked(
            str(user.id), reason='close_others', session_count=count, ip_address=ip_address
        )
        return count

    def close_all_sessions(self, user: User, ip_address: Optional[str] = None) -> int:
        """Delete every session of ``user``, forcing re-authentication. Returns the count."""
        count = self.sessions.delete_all(user.id)

        SecurityLogger.log_session_revoked(
            str(user.id), reason='close_all', session_count=count, ip_address=ip_address
        )
        return count

    def sweep_expired_sessions(self, request_id: Optional[str] = None) -> int:
        """Remove expired session records, publishing SESSION_EXPIRED for each."""
        context = system_context(request_id)

        def on_expired(session):
            self.bus.publish(
                SystemEvent.SESSION_EXPIRED,
                SessionExpiredPayload(
                    user_id=str(session.user_id),
                    session_id=session.id,
                    expires_at=session.expires_at.isoformat(),
                ),
                context,
            )

        return self.sessions.sweep_expired(on_expired=on_expired)

    # ------------------------------------------------------------------
    # Registration and passwords
    # ------------------------------------------------------------------

    def register_user(self, email: str, password: str, first_name: str = '', last_name: str = '',
                      context: Optional[EventContext] = None) -> User:
        """
        Register a new user. No role is assigned.

        Raises:
            ValidationError: if the email is missing or the password is weak
            Conflict: if the email is already registered
        """
        email = User.objects.normalize_email(email)
        if not email:
            raise ValidationError('Invalid registration', details={'email': ['Email is required']})
        validate_password(password)

        if User.objects.filter(email=email).exists():
            raise Conflict('Email already registered')

        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    email=email,
                    password=password,
                    first_name=first_name or '',
                    last_name=last_name or '',
                )
        except IntegrityError:
            raise Conflict('Email already registered')

        self.bus.publish(
            SystemEvent.USER_REGISTERED,
            UserRegisteredPayload(
                user_id=str(user.id),
                email=user.email,
                first_name=user.first_name or None,
                last_name=user.last_name or None,
            ),
            actor_context(context, user),
        )

        logger.info("User registered", extra={'user_id': str(user.id)})
        return user

    def change_password(self, user: User, current_password: str, new_password: str,
                        current_session_id: Optional[str] = None, context: Optional[EventContext] = None) -> int:
        """
        Change the password of an authenticated user and close their other
        sessions (all sessions when there is no current one).

        Returns:
            Number of sessions closed

        Raises:
            ValidationError: wrong current password, weak or unchanged new password
        """
        if not user.check_password(current_password):
            raise ValidationError(
                'Invalid password',
                details={'current_password': ['Current password is incorrect']}
            )
        validate_password(new_password, field_name='new_password')
        if current_password == new_password:
            raise ValidationError(
                'Invalid password',
                details={'new_password': ['New password must be different from the current password']}
            )

        user.set_password(new_password)
        user.save(update_fields=['password_hash', 'updated_at'])

        if current_session_id:
            closed = self.sessions.delete_all_except(user.id, current_session_id)
        else:
            closed = self.sessions.delete_all(user.id)

        self.bus.publish(
            SystemEvent.PASSWORD_CHANGED,
            PasswordChangedPayload(user_id=str(user.id), email=user.email, changed_by='self'),
            actor_context(context, user),
        )
        return closed

    def request_password_reset(self, email: str, context: Optional[EventContext] = None) -> Optional[str]:
        """
        Create a reset token for an active user.

        Returns:
            The token, or None if no active user has the address. Callers
            respond identically in both cases.
        """
        user = User.objects.active().filter(email=User.objects.normalize_email(email)).first()
        if user is None:
            return None

        reset_token = PasswordResetToken.create_token(user)

        self.bus.publish(
            SystemEvent.PASSWORD_RESET_REQUESTED,
            PasswordResetRequestedPayload(
                user_id=str(user.id),
                email=user.email,
                expires_at=reset_token.expires_at.isoformat(),
            ),
            context or EventContext(user_id=str(user.id)),
        )
        return reset_token.token

    def reset_password(self, token: str, new_password: str, context: Optional[EventContext] = None) -> User:
        """
        Set a new password using a reset token and close every session.

        Raises:
            ValidationError: if the token is invalid, expired or used, or the
                password is weak
        """
        reset_token = PasswordResetToken.objects.get_valid_token(token)
        if reset_token is None:
            raise ValidationError('Invalid or expired reset token', details={'token': ['Invalid or expired reset token']})
        validate_password(new_password)

        user = reset_token.user
        with transaction.atomic():
            user.set_password(new_password)
            user.save(update_fields=['password_hash', 'updated_at'])
            reset_token.mark_as_used()

        closed = self.sessions.delete_all(user.id)

        self.bus.publish(
            SystemEvent.PASSWORD_CHANGED,
            PasswordChangedPayload(user_id=str(user.id), email=user.email, changed_by='self'),
            context or EventContext(user_id=str(user.id)),
        )

        logger.info("Password reset completed", extra={'user_id': str(user.id), 'sessions_closed': closed})
        return user
