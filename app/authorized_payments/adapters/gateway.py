"""
Gateway port: the operations the services need from the payment gateway.

Services depend on the PaymentGateway protocol, never on a concrete
client, so tests pass a MagicMock(spec=PaymentGateway) and production
wires MBWayGatewayAdapter.

Every method either returns one of the result dataclasses below or
raises a GatewayError subclass (see authorized_payments.exceptions).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


# Gateway payment statuses that mean the money moved
CHARGE_SUCCESS_STATUSES = frozenset({"Success", "Authorized", "Captured"})

# Gateway payment statuses that are definitive refusals
CHARGE_FAILURE_STATUSES = frozenset({"Failed", "Declined", "Error"})

REFUND_SUCCESS_STATUSES = frozenset({"Success", "Refunded"})

# Authorization statuses, lower-cased
AUTHORIZATION_APPROVED_STATUSES = frozenset({"approved", "active"})
AUTHORIZATION_CANCELLED_STATUSES = frozenset({"cancelled", "expired"})


@dataclass
class CheckoutResult:
    transaction_id: str
    transaction_signature: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthorizationRequestResult:
    """
    Answer to the signed authorization request.

    Attributes:
        status: Gateway status string (often "Pending" until the customer
            approves in the app)
        authorization_id: Present when the gateway approved synchronously
    """

    status: str
    authorization_id: str | None = None
    return_code: str | None = None
    return_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentResult:
    """Answer to a charge or refund request."""

    transaction_id: str | None
    payment_status: str
    return_code: str | None = None
    return_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    """Answer to a status query, for an authorization or a payment."""

    status: str
    authorization_id: str | None = None
    transaction_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PaymentGateway(Protocol):
    """Operations consumed from the payment gateway."""

    def create_checkout(
        self,
        merchant_reference: str,
        amount: Decimal,
        currency: str,
        description: str,
        validity_date: datetime,
    ) -> CheckoutResult: ...

    def create_authorization(
        self,
        transaction_id: str,
        transaction_signature: str,
        customer_phone: str,
        validity_date: datetime,
        description: str,
    ) -> AuthorizationRequestResult: ...

    def charge(
        self,
        authorization_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        merchant_reference: str,
    ) -> PaymentResult: ...

    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> PaymentResult: ...

    def cancel_authorization(self, authorization_id: str) -> None: ...

    def get_authorization_status(self, authorization_id: str) -> StatusResult: ...

    def get_payment_status(self, transaction_id: str) -> StatusResult: ...
