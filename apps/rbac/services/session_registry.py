"""
Durable per-user registry of active sessions.

A session record is created for every credential issued at login. Records
are the source of truth for "where am I signed in" and for revocation.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from django.db import transaction
from django.utils import timezone

from apps.rbac.models import UserSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Operations on UserSession records.

    All bulk deletes are single statements, so a concurrent reader sees
    either all or none of a bulk close.
    """

    def create(self, session_id: str, user_id, expires_at: datetime,
               ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> UserSession:
        """Insert a session record. Raises IntegrityError on a duplicate id."""
        with transaction.atomic():
            session = UserSession.objects.create(
                id=session_id,
                user_id=user_id,
                expires_at=expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        logger.debug(
            "Session created",
            extra={'session_id': session_id, 'user_id': str(user_id)}
        )
        return session

    def get(self, session_id: str) -> Optional[UserSession]:
        return UserSession.objects.filter(id=session_id).first()

    def get_active(self, session_id: str, user_id=None) -> Optional[UserSession]:
        """Return the session if it exists, has not expired and (optionally) belongs to ``user_id``."""
        sessions = UserSession.objects.active().filter(id=session_id)
        if user_id is not None:
            sessions = sessions.filter(user_id=user_id)
        return sessions.first()

    def list_active(self, user_id, include_expired: bool = False) -> List[UserSession]:
        """
        Sessions of a user, newest first.

        Expired records are excluded unless ``include_expired``; they stay in
        storage until the sweep removes them.
        """
        sessions = UserSession.objects.for_user(user_id)
        if not include_expired:
            sessions = sessions.active()
        return list(sessions.order_by('-created_at'))

    def count_active(self, user_id) -> int:
        return UserSession.objects.for_user(user_id).active().count()

    def delete(self, session_id: str) -> bool:
        """Delete one record. Returns False if it did not exist."""
        deleted_count, _ = UserSession.objects.filter(id=session_id).delete()
        return deleted_count > 0

    def delete_for_user(self, user_id, session_id: str) -> bool:
        """Delete one record only if it belongs to ``user_id``."""
        deleted_count, _ = UserSession.objects.filter(id=session_id, user_id=user_id).delete()
        return deleted_count > 0

    def delete_all_except(self, user_id, keep_session_id: str) -> int:
        """Delete every record of a user except ``keep_session_id``. Returns the count."""
        deleted_count, _ = UserSession.objects.for_user(user_id).exclude(id=keep_session_id).delete()
        return deleted_count

    def delete_all(self, user_id) -> int:
        """Delete every record of a user. Returns the count."""
        deleted_count, _ = UserSession.objects.for_user(user_id).delete()
        return deleted_count

    def sweep_expired(self, now: Optional[datetime] = None,
                      on_expired: Optional[Callable[[UserSession], None]] = None) -> int:
        """
        Delete every record whose expiry has passed.

        ``on_expired`` is called once for each record this call actually
        removed. A record deleted concurrently (by logout or another sweep)
        is skipped, so a record is never reported twice.

        Returns:
            Number of records removed
        """
        now = now or timezone.now()
        removed = 0

        for session in list(UserSession.objects.expired(now).order_by('expires_at')):
            deleted_count, _ = UserSession.objects.filter(
                id=session.id, expires_at__lte=now
            ).delete()
            if not deleted_count:
                continue

            removed += 1
            if on_expired is not None:
                on_expired(session)

        if removed:
            logger.info("Expired sessions swept", extra={'count': removed})

        return removed
