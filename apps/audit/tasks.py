"""
Celery tasks for asynchronous audit writes (AUDIT_ASYNC).
"""
import logging

from celery import shared_task

from apps.audit.services import AuditLogInput, AuditService
from apps.core.exceptions import AuditWriteFailure

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def write_audit_log(self, entry):
    """
    Persist one audit entry.

    Args:
        entry: AuditLogInput.to_dict() output

    Returns:
        dict: Result with status and the new row id
    """
    audit_input = AuditLogInput.from_dict(entry)

    try:
        log = AuditService().persist(audit_input)
    except AuditWriteFailure as e:
        if self.request.retries >= self.max_retries:
            logger.error(
                f"Failed to create audit log: {e.message}",
                extra={'audit_action': audit_input.action, 'audit_module': audit_input.module,
                       'request_id': audit_input.request_id},
                exc_info=True
            )
            return {'status': 'error', 'message': e.message}
        raise self.retry(exc=e, countdown=2 ** self.request.retries)

    return {'status': 'success', 'audit_log_id': str(log.id)}
