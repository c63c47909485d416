"""WSGI config for the Support Desk automation service."""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'support_desk.settings')
application = get_wsgi_application()
