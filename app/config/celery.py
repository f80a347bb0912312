"""
Celery application for the authorized payments service.

Redis is both the message broker and result backend. Tasks are
auto-discovered from installed apps; the periodic sweeps in
authorized_payments.tasks are scheduled by django-celery-beat's
DatabaseScheduler (rows created by a data migration).

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
