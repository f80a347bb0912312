"""
State machine enums for authorized payment models.
"""

from authorized_payments.state_machines.states import (
    REFUNDABLE_STATES,
    SETTLED_SUCCESS_STATES,
    TERMINAL_AUTHORIZATION_STATES,
    AuthorizationStatus,
    ChargeStatus,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
    WebhookOutcome,
)

__all__ = [
    "REFUNDABLE_STATES",
    "SETTLED_SUCCESS_STATES",
    "TERMINAL_AUTHORIZATION_STATES",
    "AuthorizationStatus",
    "ChargeStatus",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
    "WebhookOutcome",
]
