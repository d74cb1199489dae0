from django.apps import AppConfig


class AuditConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.audit'
    verbose_name = 'Audit'

    def ready(self):
        """Subscribe the audit listener to the process-wide event bus."""
        from apps.audit.listeners import AuditListener
        from apps.events.bus import event_bus

        AuditListener().register(event_bus)
