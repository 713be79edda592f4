"""WSGI config for the CBT platform."""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "cbt_platform.settings")

application = get_wsgi_application()
