"""
WSGI config for the authorized payments service.

Fallback entry point for traditional WSGI servers; exposes `application`.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
