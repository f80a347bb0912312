"""
State enums for authorized payment models.

These are Django TextChoices used as the choices of django-fsm fields.

State Machines Overview:

Authorization States:
    pending → active (gateway approval)
    active → expired (validity passed, scheduler)
    active → cancelled (merchant cancellation)
    pending/active → cancelled (gateway cancellation/expiry notice)

Charge States:
    pending → success | failed (first terminal gateway answer wins)
    success → partially_refunded → refunded
    success → refunded

TransactionRecord States:
    pending → success | failed | cancelled (set once)
"""

from django.db import models


class AuthorizationStatus(models.TextChoices):
    """
    States for the Authorization lifecycle.

    Terminal states: EXPIRED, CANCELLED
    """

    PENDING = "pending", "Pending"
    ACTIVE = "active", "Active"
    EXPIRED = "expired", "Expired"
    CANCELLED = "cancelled", "Cancelled"


class ChargeStatus(models.TextChoices):
    """
    States for the Charge lifecycle.

    SUCCESS and FAILED are the settlement outcomes. REFUNDED and
    PARTIALLY_REFUNDED only follow SUCCESS and never move backward.
    """

    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


class TransactionStatus(models.TextChoices):
    """Outcome of a single gateway call, set once per record."""

    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class TransactionType(models.TextChoices):
    """Kind of gateway call a TransactionRecord correlates."""

    AUTHORIZATION_REQUEST = "authorization_request", "Authorization Request"
    CHARGE = "charge", "Charge"
    REFUND = "refund", "Refund"
    CANCELLATION = "cancellation", "Cancellation"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    FAILED events are redelivered by the gateway, which reprocesses them.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class WebhookOutcome(models.TextChoices):
    """What applying a webhook did to local state."""

    APPLIED = "applied", "Applied"
    DUPLICATE = "duplicate", "Duplicate"
    UNKNOWN_EVENT = "unknown_event", "Unknown Event"
    UNMATCHED = "unmatched", "Unmatched"


# Charge states that count as a successful settlement
SETTLED_SUCCESS_STATES = frozenset(
    {
        ChargeStatus.SUCCESS,
        ChargeStatus.PARTIALLY_REFUNDED,
        ChargeStatus.REFUNDED,
    }
)

REFUNDABLE_STATES = frozenset(
    {
        ChargeStatus.SUCCESS,
        ChargeStatus.PARTIALLY_REFUNDED,
    }
)

TERMINAL_AUTHORIZATION_STATES = frozenset(
    {
        AuthorizationStatus.EXPIRED,
        AuthorizationStatus.CANCELLED,
    }
)
