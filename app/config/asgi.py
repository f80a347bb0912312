"""
ASGI config for the authorized payments service.

Exposes the ASGI callable as a module-level variable named `application`
(served by Uvicorn). The service is HTTP only.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
