"""
Webhook classification and handlers for gateway notices.

Gateway notices carry no explicit event type, so the kind of notice is
inferred from the payload shape:

    authorizationId + status          -> authorization notice
    transactionID + paymentStatus     -> payment notice
    anything else                     -> unknown event (logged, dropped)

Handlers correlate the notice with a local entity (gateway id first,
then merchantTransactionId through the merchant reference or the
TransactionRecord that sent it) and hand the transition to the
ReconciliationService. A notice that matches nothing is logged and
dropped; entities are never created from a webhook.

Usage:
    from authorized_payments.webhooks.handlers import dispatch_webhook

    outcome = dispatch_webhook(payload, reconciliation_service)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.exceptions import ValidationError

from authorized_payments.adapters.gateway import (
    AUTHORIZATION_APPROVED_STATUSES,
    AUTHORIZATION_CANCELLED_STATUSES,
)
from authorized_payments.repositories import AuthorizationRepository, ChargeRepository
from authorized_payments.services.reconciliation_service import (
    classify_payment_status,
)
from authorized_payments.state_machines import WebhookOutcome

if TYPE_CHECKING:
    from typing import Any

    from authorized_payments.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)


AUTHORIZATION_NOTICE = "authorization"
PAYMENT_NOTICE = "payment"

Handler = Callable[["dict[str, Any]", "ReconciliationService"], str]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps notice kinds to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(kind: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook handler for a notice kind.

    Usage:
        @register_handler("payment")
        def handle_payment_notice(payload, reconciliation) -> str:
            ...
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[kind] = func
        logger.debug(f"Registered webhook handler for {kind}")
        return func

    return decorator


def classify_webhook(payload: dict[str, Any]) -> str | None:
    """Infer the notice kind from the fields present in the payload."""
    if payload.get("authorizationId") and payload.get("status"):
        return AUTHORIZATION_NOTICE
    if payload.get("transactionID") and payload.get("paymentStatus"):
        return PAYMENT_NOTICE
    return None


def dispatch_webhook(payload: dict[str, Any], reconciliation: ReconciliationService) -> str:
    """
    Route a payload to its handler.

    Returns:
        A WebhookOutcome value
    """
    kind = classify_webhook(payload)
    handler = WEBHOOK_HANDLERS.get(kind) if kind else None

    if handler is None:
        logger.info(
            "Unknown webhook event, ignoring",
            extra={"payload_keys": sorted(payload.keys())},
        )
        return WebhookOutcome.UNKNOWN_EVENT

    logger.info(f"Dispatching {kind} notice to handler")
    return handler(payload, reconciliation)


def _string_field(payload: dict[str, Any], name: str) -> str | None:
    value = payload.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(
            f"Webhook field {name} must be a string",
            details={"field": name},
        )
    return str(value)


def _applied(applied: bool) -> str:
    return WebhookOutcome.APPLIED if applied else WebhookOutcome.DUPLICATE


# =============================================================================
# Authorization Notices
# =============================================================================


@register_handler(AUTHORIZATION_NOTICE)
def handle_authorization_notice(
    payload: dict[str, Any],
    reconciliation: ReconciliationService,
) -> str:
    """
    Approve or revoke an authorization.

    "approved"/"active" approves it with the notice's authorizationId;
    "cancelled"/"expired" revokes it. Other statuses are unknown events.
    """
    gateway_authorization_id = _string_field(payload, "authorizationId")
    merchant_reference = _string_field(payload, "merchantTransactionId")
    status = str(payload.get("status")).lower()

    if status in AUTHORIZATION_APPROVED_STATUSES:
        action = "approve"
    elif status in AUTHORIZATION_CANCELLED_STATUSES:
        action = "revoke"
    else:
        logger.info(
            "Unhandled authorization status in webhook",
            extra={"gateway_authorization_id": gateway_authorization_id, "status": status},
        )
        return WebhookOutcome.UNKNOWN_EVENT

    authorization = AuthorizationRepository.find_by_gateway_id(gateway_authorization_id)
    if authorization is None and merchant_reference:
        authorization = AuthorizationRepository.find_by_reference(merchant_reference)
    if authorization is None:
        logger.warning(
            "Authorization notice matches no local authorization",
            extra={
                "gateway_authorization_id": gateway_authorization_id,
                "merchant_reference": merchant_reference,
                "status": status,
            },
        )
        return WebhookOutcome.UNMATCHED

    if action == "approve":
        _, applied = reconciliation.approve_authorization(
            authorization.pk, gateway_authorization_id
        )
    else:
        _, applied = reconciliation.revoke_authorization(authorization.pk)
    return _applied(applied)


# =============================================================================
# Payment Notices
# =============================================================================


@register_handler(PAYMENT_NOTICE)
def handle_payment_notice(
    payload: dict[str, Any],
    reconciliation: ReconciliationService,
) -> str:
    """
    Settle a charge from a payment notice.

    Success/Authorized/Captured settle as success and Failed/Declined/Error
    as failed, with returnStatus.statusDescription as the error message.
    Other payment statuses are unknown events.
    """
    transaction_id = _string_field(payload, "transactionID")
    merchant_reference = _string_field(payload, "merchantTransactionId")
    payment_status = str(payload.get("paymentStatus"))

    outcome = classify_payment_status(payment_status, strict=False)
    if outcome is None:
        logger.info(
            "Unhandled payment status in webhook",
            extra={"transaction_id": transaction_id, "payment_status": payment_status},
        )
        return WebhookOutcome.UNKNOWN_EVENT

    charge = ChargeRepository.find_by_transaction_id(transaction_id)
    if charge is None and merchant_reference:
        charge = ChargeRepository.find_by_reference(merchant_reference)
    if charge is None:
        logger.warning(
            "Payment notice matches no local charge",
            extra={
                "transaction_id": transaction_id,
                "merchant_reference": merchant_reference,
                "payment_status": payment_status,
            },
        )
        return WebhookOutcome.UNMATCHED

    return_status = payload.get("returnStatus")
    if not isinstance(return_status, dict):
        return_status = {}

    _, applied = reconciliation.settle_charge(
        charge.pk,
        outcome=outcome,
        gateway_transaction_id=transaction_id,
        response=payload,
        error_message=return_status.get("statusDescription"),
        return_code=return_status.get("statusCode"),
    )
    return _applied(applied)


__all__ = [
    "WEBHOOK_HANDLERS",
    "classify_webhook",
    "dispatch_webhook",
    "handle_authorization_notice",
    "handle_payment_notice",
    "register_handler",
]
