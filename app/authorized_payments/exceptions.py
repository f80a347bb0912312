"""
Exceptions for authorized payment operations.

Exception Hierarchy:
    AuthorizedPaymentError (base for the domain)
    ├── AuthorizationNotActiveError - Charge against a non-active authorization
    ├── AuthorizationExpiredError - Charge after the validity date
    ├── AmountExceedsLimitError - Charge larger than the remaining headroom
    ├── ChargeDeclinedError - Gateway refused a charge
    ├── NotRefundableError - Refund of a charge that cannot be refunded
    └── RefundFailedError - Gateway did not confirm a refund

    ValidationError (core)
    ├── InvalidAmountError - Non-positive or malformed amount
    └── InvalidRefundAmountError - Refund amount out of range

    NotFoundError (core)
    ├── AuthorizationNotFoundError
    └── ChargeNotFoundError

    ConflictError (core)
    ├── InvalidStateError - Transition not allowed from the current status
    ├── SettlementConflictError - Contradicting terminal answer
    ├── StaleRecordError - Optimistic locking conflict
    └── LockAcquisitionError - Distributed lock timeout (retryable)

    GatewayError (ExternalServiceError)
    ├── GatewayTimeoutError - Request timed out (transient)
    ├── GatewayUnavailableError - Connectivity, 5xx, rate limiting (transient)
    ├── GatewayRejectedError - 4xx business rejection (permanent)
    ├── GatewayAuthenticationError - Credentials refused (permanent)
    └── GatewayResponseError - Undecodable or incomplete response (permanent)

Usage:
    from authorized_payments.exceptions import AmountExceedsLimitError

    raise AmountExceedsLimitError(
        "Charge of 15.00 exceeds remaining 10.00",
        details={"amount": "15.00", "remaining": "10.00"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class AuthorizedPaymentError(BaseApplicationError):
    """Base exception for authorization/charge domain preconditions."""

    default_error_code: str = "AUTHORIZED_PAYMENT_ERROR"


class AuthorizationNotActiveError(AuthorizedPaymentError):
    default_error_code: str = "AUTHORIZATION_NOT_ACTIVE"


class AuthorizationExpiredError(AuthorizedPaymentError):
    default_error_code: str = "AUTHORIZATION_EXPIRED"


class AmountExceedsLimitError(AuthorizedPaymentError):
    """
    Raised when a charge would overspend the authorization.

    Details carry the requested amount and the headroom that was left.
    """

    default_error_code: str = "AMOUNT_EXCEEDS_LIMIT"


class ChargeDeclinedError(AuthorizedPaymentError):
    """Raised when the gateway answered a charge with a refusal."""

    default_error_code: str = "CHARGE_DECLINED"


class NotRefundableError(AuthorizedPaymentError):
    default_error_code: str = "NOT_REFUNDABLE"


class RefundFailedError(AuthorizedPaymentError):
    """Raised when the gateway rejects or fails a refund request."""

    default_error_code: str = "REFUND_FAILED"


class InvalidAmountError(ValidationError):
    default_error_code: str = "INVALID_AMOUNT"


class InvalidRefundAmountError(ValidationError):
    default_error_code: str = "INVALID_REFUND_AMOUNT"


class AuthorizationNotFoundError(NotFoundError):
    default_error_code: str = "AUTHORIZATION_NOT_FOUND"


class ChargeNotFoundError(NotFoundError):
    default_error_code: str = "CHARGE_NOT_FOUND"


# =============================================================================
# Concurrency & State Errors
# =============================================================================


class InvalidStateError(ConflictError):
    """
    Raised when a django-fsm transition is not allowed.

    Example:
        raise InvalidStateError(
            "Cannot cancel authorization in 'pending' status",
            details={"current_status": "pending", "action": "cancel"},
        )
    """

    default_error_code: str = "INVALID_STATE"


class SettlementConflictError(ConflictError):
    """
    Raised when an event contradicts an already-recorded terminal answer.

    Examples: a Failed notice for a Success charge, or an approval carrying
    a different gateway authorization id than the one stored.
    """

    default_error_code: str = "SETTLEMENT_CONFLICT"


class StaleRecordError(ConflictError):
    """Raised when the record version changed since it was read."""

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired in time.

    Another process is working on the same entity, so the request can be
    repeated once it finishes.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    is_retryable: bool = True


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base for all payment gateway failures.

    Attributes:
        status_code: HTTP status returned by the gateway, when there was one
        return_code: Gateway returnStatus.statusCode, when present
        is_retryable: Whether a later attempt may succeed
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        return_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        if return_code:
            details["return_code"] = return_code
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        self.return_code = return_code


# -----------------------------------------------------------------------------
# Transient Errors (retry later)
# -----------------------------------------------------------------------------


class GatewayTimeoutError(GatewayError):
    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """Connection failures, 5xx responses and rate limiting."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayRejectedError(GatewayError):
    default_error_code: str = "GATEWAY_REJECTED"


class GatewayAuthenticationError(GatewayError):
    default_error_code: str = "GATEWAY_AUTHENTICATION_FAILED"


class GatewayResponseError(GatewayError):
    default_error_code: str = "GATEWAY_INVALID_RESPONSE"


__all__ = [
    "AmountExceedsLimitError",
    "AuthorizationExpiredError",
    "AuthorizationNotActiveError",
    "AuthorizationNotFoundError",
    "AuthorizedPaymentError",
    "ChargeDeclinedError",
    "ChargeNotFoundError",
    "ConflictError",
    "GatewayAuthenticationError",
    "GatewayError",
    "GatewayRejectedError",
    "GatewayResponseError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "InvalidAmountError",
    "InvalidRefundAmountError",
    "InvalidStateError",
    "LockAcquisitionError",
    "NotRefundableError",
    "RefundFailedError",
    "SettlementConflictError",
    "StaleRecordError",
    "ValidationError",
]
