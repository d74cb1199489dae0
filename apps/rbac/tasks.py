"""
Celery tasks for session maintenance.
"""
import logging

from celery import shared_task

from apps.rbac.services import AuthService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def sweep_expired_sessions(self):
    """
    Delete expired session records. Scheduled hourly by Celery beat.

    Returns:
        dict: Number of sessions swept
    """
    swept = AuthService().sweep_expired_sessions(request_id=self.request.id)
    logger.info(f"Swept {swept} expired session(s)", extra={'task_id': self.request.id})
    return {'status': 'success', 'swept': swept}
