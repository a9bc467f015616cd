from django.core.signals import setting_changed
from django.db.models.signals import post_migrate
from django.dispatch import receiver

from .store import reset_store


@receiver(post_migrate)
def create_windows_and_counters(sender, **kwargs):
    if sender.name != 'queue_system':
        return
    from .db_store import ensure_layout
    ensure_layout()


@receiver(setting_changed)
def rebuild_store_on_settings_change(setting, **kwargs):
    if setting.startswith('QUEUE_'):
        reset_store()
