"""
Audit service: durable writes and filtered, paginated reads of the audit log.
"""
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.db.models import Count
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.audit.models import AuditLog
from apps.core.exceptions import AuditWriteFailure, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
REQUEST_LOGS_LIMIT = 100
TOP_USERS_LIMIT = 10


@dataclass
class AuditLogInput:
    """One audit record to be written. Everything except action and module is optional."""
    action: str
    module: str
    user_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable form, used as the Celery task argument."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogInput':
        data = dict(data)
        if isinstance(data.get('timestamp'), str):
            data['timestamp'] = parse_datetime(data['timestamp'])
        if not data.get('timestamp'):
            data.pop('timestamp', None)
        return cls(**data)


def serialize_log(log: AuditLog) -> Dict[str, Any]:
    """Audit row with its actor summary (None when the actor is gone or a system job)."""
    user = None
    if log.user is not None:
        user = {
            'id': str(log.user.id),
            'email': log.user.email,
            'name': log.user.get_full_name(),
        }

    return {
        'id': str(log.id),
        'user_id': str(log.user_id) if log.user_id else None,
        'action': log.action,
        'module': log.module,
        'entity_type': log.entity_type,
        'entity_id': log.entity_id,
        'old_values': log.old_values,
        'new_values': log.new_values,
        'ip_address': log.ip_address,
        'user_agent': log.user_agent,
        'request_id': log.request_id,
        'metadata': log.metadata,
        'timestamp': log.timestamp,
        'user': user,
    }


class AuditService:
    """
    Writes and queries audit records.

    ``log`` never raises: a failed write is logged and dropped so the
    business operation that triggered it is unaffected.
    """

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def log(self, entry: AuditLogInput) -> Optional[AuditLog]:
        """
        Record an audit entry.

        With AUDIT_ASYNC the write is handed to a Celery task and None is
        returned; otherwise the row is written immediately.
        """
        if getattr(settings, 'AUDIT_ASYNC', False):
            from apps.audit.tasks import write_audit_log

            try:
                write_audit_log.delay(entry.to_dict())
            except Exception as e:
                logger.error(
                    f"Failed to enqueue audit log: {str(e)}",
                    extra={'audit_action': entry.action, 'audit_module': entry.module,
                           'request_id': entry.request_id},
                    exc_info=True
                )
            return None

        try:
            return self.persist(entry)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={
                    'audit_action': entry.action,
                    'audit_module': entry.module,
                    'actor_id': entry.user_id,
                    'request_id': entry.request_id,
                },
                exc_info=True
            )
            return None

    def persist(self, entry: AuditLogInput) -> AuditLog:
        """
        Write one row.

        Raises:
            AuditWriteFailure: if the database rejects the write
        """
        try:
            with transaction.atomic():
                log = AuditLog.objects.create(
                    user_id=self._existing_user_id(entry.user_id),
                    action=entry.action,
                    module=entry.module,
                    entity_type=entry.entity_type,
                    entity_id=str(entry.entity_id) if entry.entity_id is not None else None,
                    old_values=entry.old_values,
                    new_values=entry.new_values,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    request_id=entry.request_id,
                    metadata=entry.metadata,
                    timestamp=entry.timestamp or timezone.now(),
                )
        except DatabaseError as e:
            raise AuditWriteFailure(f"Audit write failed: {str(e)}") from e

        logger.debug(
            "Audit log created",
            extra={
                'audit_action': entry.action,
                'audit_module': entry.module,
                'entity_type': entry.entity_type,
                'entity_id': entry.entity_id,
                'request_id': entry.request_id,
            }
        )
        return log

    @staticmethod
    def _existing_user_id(user_id):
        # The actor may have been deleted by the very operation being recorded
        if not user_id:
            return None
        from apps.rbac.models import User

        try:
            return user_id if User.objects.filter(pk=user_id).exists() else None
        except (ValueError, DjangoValidationError):
            return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _filter(user_id=None, module=None, action=None, entity_type=None, entity_id=None,
                request_id=None, start_date=None, end_date=None):
        qs = AuditLog.objects.all()
        if user_id:
            try:
                user_id = uuid.UUID(str(user_id))
            except ValueError:
                raise ValidationError(
                    'Validation error', details={'userId': 'userId must be a valid UUID'}
                )
            qs = qs.for_user(user_id)
        if module:
            qs = qs.by_module(module)
        if action:
            qs = qs.by_action(action)
        if entity_type:
            qs = qs.filter(entity_type=entity_type)
        if entity_id:
            qs = qs.filter(entity_id=entity_id)
        if request_id:
            qs = qs.by_request(request_id)
        return qs.between(start_date, end_date)

    @staticmethod
    def clamp_limit(limit) -> int:
        maximum = getattr(settings, 'AUDIT_MAX_PAGE_SIZE', 100)
        if limit is None:
            limit = getattr(settings, 'AUDIT_DEFAULT_PAGE_SIZE', DEFAULT_LIMIT)
        return max(1, min(int(limit), maximum))

    def get_logs(self, user_id=None, module=None, action=None, entity_type=None, entity_id=None,
                 request_id=None, start_date=None, end_date=None, limit=None, offset=0,
                 ascending=False) -> Dict[str, Any]:
        """
        Filtered, paginated audit rows, newest first.

        ``limit`` defaults to 50 and is silently capped at AUDIT_MAX_PAGE_SIZE.
        An ``offset`` past the end returns an empty page with has_more False.

        Returns:
            dict with logs, total, count, limit, offset, has_more
        """
        limit = self.clamp_limit(limit)
        offset = max(0, int(offset or 0))

        qs = self._filter(
            user_id=user_id, module=module, action=action, entity_type=entity_type,
            entity_id=entity_id, request_id=request_id, start_date=start_date, end_date=end_date,
        )
        total = qs.count()

        ordering = 'timestamp' if ascending else '-timestamp'
        logs = [
            serialize_log(log)
            for log in qs.select_related('user').order_by(ordering)[offset:offset + limit]
        ]
        count = len(logs)

        logger.debug(
            "Audit logs retrieved",
            extra={'total': total, 'count': count, 'limit': limit, 'offset': offset,
                   'audit_module': module, 'audit_action': action}
        )

        return {
            'logs': logs,
            'total': total,
            'count': count,
            'limit': limit,
            'offset': offset,
            'has_more': offset + count < total,
        }

    def get_entity_logs(self, entity_type: str, entity_id: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        """History of one entity, newest first."""
        return self.get_logs(entity_type=entity_type, entity_id=str(entity_id), limit=limit)['logs']

    def get_request_logs(self, request_id: str) -> List[Dict[str, Any]]:
        """Everything recorded for one request, in the order it happened."""
        return self.get_logs(request_id=request_id, limit=REQUEST_LOGS_LIMIT, ascending=True)['logs']

    def get_stats(self, start_date=None, end_date=None, module=None) -> Dict[str, Any]:
        """
        Aggregate counts over the filtered rows.

        Returns:
            dict with total_logs, action_breakdown, module_breakdown and
            top_users (up to 10 actors by row count)
        """
        qs = self._filter(module=module, start_date=start_date, end_date=end_date)

        # order_by() clears the default ordering so it does not join the GROUP BY
        action_breakdown = {
            row['action']: row['count']
            for row in qs.order_by().values('action').annotate(count=Count('id'))
        }
        module_breakdown = {
            row['module']: row['count']
            for row in qs.order_by().values('module').annotate(count=Count('id'))
        }

        user_rows = list(
            qs.filter(user__isnull=False)
            .order_by()
            .values('user_id', 'user__email')
            .annotate(count=Count('id'))
            .order_by('-count', 'user__email')[:TOP_USERS_LIMIT]
        )
        top_users = [
            {
                'user_id': str(row['user_id']),
                'email': row['user__email'] or 'Unknown',
                'count': row['count'],
            }
            for row in user_rows
        ]

        return {
            'total_logs': qs.count(),
            'action_breakdown': action_breakdown,
            'module_breakdown': module_breakdown,
            'top_users': top_users,
        }
