"""WSGI entry point.

Event streams are served by synchronous generators, so run the project
under a threaded WSGI server (``manage.py runserver`` or gunicorn with
``--threads``).
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'frontdesk.settings')

application = get_wsgi_application()
