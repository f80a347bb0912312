"""
Authorized payments app configuration.
"""

from django.apps import AppConfig


class AuthorizedPaymentsConfig(AppConfig):
    """Configuration for the authorized payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "authorized_payments"
    verbose_name = "Authorized Payments"

    def ready(self):
        from authorized_payments.signals import register_signals

        register_signals()
