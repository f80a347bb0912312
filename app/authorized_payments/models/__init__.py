"""
Models for authorized payments.

Models:
    Authorization: Standing permission to draw up to a maximum amount
    Charge: One draw attempt against an Authorization
    TransactionRecord: Audit envelope for one gateway call
    WebhookEvent: Stored webhook delivery
"""

from authorized_payments.models.authorization import Authorization
from authorized_payments.models.charge import Charge
from authorized_payments.models.transaction_record import TransactionRecord
from authorized_payments.models.webhook_event import WebhookEvent

__all__ = [
    "Authorization",
    "Charge",
    "TransactionRecord",
    "WebhookEvent",
]
