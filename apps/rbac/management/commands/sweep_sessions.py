"""
Management command to delete expired session records.

Runs the same sweep as the hourly Celery beat task, for deployments
without a beat scheduler.
"""
from django.core.management.base import BaseCommand

from apps.rbac.services import AuthService


class Command(BaseCommand):
    help = 'Delete expired session records'

    def handle(self, *args, **options):
        swept = AuthService().sweep_expired_sessions()
        self.stdout.write(self.style.SUCCESS(f'✓ Swept {swept} expired session(s)'))
