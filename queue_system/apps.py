from django.apps import AppConfig


class QueueSystemConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'queue_system'
    verbose_name = 'Queue'

    def ready(self):
        from . import signals  # noqa: F401
