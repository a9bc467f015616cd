import os
import django

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'frontdesk.settings')
django.setup()

from queue_system.db_store import DatabaseQueueStore, ensure_layout

# Windows and service counters first, then a few waiting tickets per service
ensure_layout()
created = DatabaseQueueStore().seed_demo()

print(f"Created {created} demo tickets")
