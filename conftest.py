"""
Root pytest configuration for the Django project.

Settings come from .env.development (see config.settings) unless the
environment already provides them. App-specific fixtures are defined in
each app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
