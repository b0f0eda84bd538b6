"""WSGI config for the nextmetro project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "nextmetro.settings")

application = get_wsgi_application()
