"""
Reconciliation of externally-sourced state changes.

Synchronous gateway answers, webhook notices and status polls all end up
in the methods below, so the three paths apply the same transition rules
and cannot diverge:

- Authorization approval: PENDING -> ACTIVE. Repeating the approval with
  the same gateway id is a no-op; a different gateway id is a conflict.
- Authorization revocation (gateway cancel/expiry notice): PENDING or
  ACTIVE -> CANCELLED. No-op once the authorization is terminal, so a
  late notice never resurrects or rewrites a closed record.
- Charge settlement: PENDING -> SUCCESS | FAILED. The first terminal
  answer wins; repeating it is a no-op, contradicting it raises
  SettlementConflictError.

Every mutation happens under select_for_update() inside
transaction.atomic(), so two concurrent settlement attempts are
serialized and the loser sees the winner's terminal state.

The transition methods raise domain errors and return (entity, applied)
tuples. apply_webhook(), poll_authorization() and poll_charge() are the
public entry points and return ServiceResult.

Usage:
    service = ReconciliationService(gateway=gateway, events=SignalEventSink())
    result = service.apply_webhook(payload)
    result.data  # "applied", "duplicate", "unknown_event" or "unmatched"
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.exceptions import BaseApplicationError, ValidationError
from core.services import BaseService, ServiceResult

from authorized_payments.adapters.gateway import (
    AUTHORIZATION_APPROVED_STATUSES,
    AUTHORIZATION_CANCELLED_STATUSES,
    CHARGE_FAILURE_STATUSES,
    CHARGE_SUCCESS_STATUSES,
)
from authorized_payments.config import PaymentsConfig
from authorized_payments.events import (
    AuthorizationActivated,
    AuthorizationCancelled,
    ChargeFailed,
    ChargeSettled,
    SignalEventSink,
)
from authorized_payments.exceptions import (
    GatewayError,
    InvalidStateError,
    SettlementConflictError,
)
from authorized_payments.repositories import (
    AuthorizationRepository,
    ChargeRepository,
    TransactionRecordRepository,
)
from authorized_payments.state_machines import (
    AuthorizationStatus,
    ChargeStatus,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID

    from authorized_payments.adapters.gateway import PaymentGateway, PaymentResult
    from authorized_payments.events import EventSink
    from authorized_payments.models import Authorization, Charge


SUCCESS = "success"
FAILED = "failed"

DEFAULT_CHARGE_FAILURE_MESSAGE = "Charge failed"


def classify_payment_status(payment_status: str | None, strict: bool) -> str | None:
    """
    Map a gateway payment status to a settlement outcome.

    Args:
        payment_status: Gateway string such as "Success" or "Declined"
        strict: Synchronous answers are definitive, so anything that is
            not a success status settles as failed. Webhooks and polls
            only settle on statuses known to be terminal.

    Returns:
        "success", "failed", or None when the status decides nothing
    """
    if payment_status in CHARGE_SUCCESS_STATUSES:
        return SUCCESS
    if strict or payment_status in CHARGE_FAILURE_STATUSES:
        return FAILED
    return None


class ReconciliationService(BaseService):
    """
    Single entry point for gateway-driven state changes.

    Args:
        gateway: Needed only by the poll_* methods
        config: Business configuration (defaults to Django settings)
        events: Sink for domain events (defaults to SignalEventSink)
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        config: PaymentsConfig | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PaymentsConfig.from_settings()
        self.events = events or SignalEventSink()

    # =========================================================================
    # Authorization Transitions
    # =========================================================================

    def approve_authorization(
        self,
        authorization_id: UUID | str,
        gateway_authorization_id: str,
    ) -> tuple[Authorization, bool]:
        """
        Activate a pending authorization.

        Returns:
            (authorization, applied); applied is False for a repeat of an
            approval already recorded

        Raises:
            AuthorizationNotFoundError: Unknown authorization
            SettlementConflictError: Already active under another gateway id,
                or the gateway id belongs to another authorization
            InvalidStateError: Authorization is expired or cancelled
        """
        with transaction.atomic():
            authorization = AuthorizationRepository.find(authorization_id, for_update=True)

            if authorization.status == AuthorizationStatus.ACTIVE:
                if authorization.gateway_authorization_id == gateway_authorization_id:
                    return authorization, False
                raise SettlementConflictError(
                    f"Authorization {authorization.id} is already active with "
                    f"a different gateway id",
                    details={
                        "authorization_id": str(authorization.id),
                        "current_gateway_id": authorization.gateway_authorization_id,
                        "received_gateway_id": gateway_authorization_id,
                    },
                )

            if authorization.status != AuthorizationStatus.PENDING:
                raise InvalidStateError(
                    f"Cannot approve authorization in '{authorization.status}' status",
                    details={
                        "authorization_id": str(authorization.id),
                        "current_status": authorization.status,
                        "action": "approve",
                    },
                )

            authorization.approve(gateway_authorization_id=gateway_authorization_id)
            try:
                with transaction.atomic():
                    authorization.save()
            except IntegrityError:
                raise SettlementConflictError(
                    f"Gateway authorization id {gateway_authorization_id} is "
                    f"already assigned to another authorization",
                    details={
                        "authorization_id": str(authorization.id),
                        "received_gateway_id": gateway_authorization_id,
                    },
                ) from None

            self.events.emit(
                AuthorizationActivated(
                    authorization_id=str(authorization.id),
                    gateway_authorization_id=gateway_authorization_id,
                )
            )

        self.get_logger().info(
            "Authorization activated",
            extra={
                "authorization_id": str(authorization.id),
                "gateway_authorization_id": gateway_authorization_id,
            },
        )
        return authorization, True

    def revoke_authorization(self, authorization_id: UUID | str) -> tuple[Authorization, bool]:
        """
        Apply a gateway cancellation or expiry notice.

        Returns:
            (authorization, applied); applied is False when the
            authorization was already expired or cancelled. Records of
            gateway calls still open for it are closed as CANCELLED.
        """
        with transaction.atomic():
            authorization = AuthorizationRepository.find(authorization_id, for_update=True)
            if authorization.is_terminal:
                return authorization, False

            authorization.revoke()
            authorization.save()
            for record in (
                TransactionRecordRepository.for_owner(authorization)
                .filter(status=TransactionStatus.PENDING)
                .select_for_update()
            ):
                record.complete_cancelled(return_message="Authorization cancelled by the gateway")
                record.save()
            self.events.emit(
                AuthorizationCancelled(
                    authorization_id=str(authorization.id),
                    source="gateway",
                )
            )

        self.get_logger().info(
            "Authorization cancelled by gateway notice",
            extra={"authorization_id": str(authorization.id)},
        )
        return authorization, True

    # =========================================================================
    # Charge Settlement
    # =========================================================================

    def settle_charge(
        self,
        charge_id: UUID | str,
        outcome: str,
        gateway_transaction_id: str | None = None,
        response: dict[str, Any] | None = None,
        error_message: str | None = None,
        return_code: str | None = None,
    ) -> tuple[Charge, bool]:
        """
        Move a pending charge to SUCCESS or FAILED.

        The pending CHARGE TransactionRecord of the charge, if any, is
        completed in the same transaction.

        Args:
            outcome: "success" or "failed"

        Returns:
            (charge, applied); applied is False when the charge already
            holds the same terminal answer

        Raises:
            SettlementConflictError: The charge already holds the opposite
                answer, or the gateway transaction id is taken
        """
        succeeded = outcome == SUCCESS

        with transaction.atomic():
            charge = ChargeRepository.find(charge_id, for_update=True)

            if charge.status != ChargeStatus.PENDING:
                already_same = (
                    charge.is_settled_success if succeeded else charge.status == ChargeStatus.FAILED
                )
                if already_same:
                    return charge, False
                raise SettlementConflictError(
                    f"Charge {charge.id} already settled as '{charge.status}', "
                    f"refusing '{outcome}'",
                    details={
                        "charge_id": str(charge.id),
                        "current_status": charge.status,
                        "received_outcome": outcome,
                        "gateway_transaction_id": gateway_transaction_id,
                    },
                )

            if succeeded:
                charge.mark_success(gateway_transaction_id=gateway_transaction_id, response=response)
            else:
                charge.mark_failed(
                    error_message=error_message or DEFAULT_CHARGE_FAILURE_MESSAGE,
                    gateway_transaction_id=gateway_transaction_id,
                    response=response,
                )

            try:
                with transaction.atomic():
                    charge.save()
            except IntegrityError:
                raise SettlementConflictError(
                    f"Gateway transaction id {gateway_transaction_id} is already "
                    f"assigned to another charge",
                    details={
                        "charge_id": str(charge.id),
                        "gateway_transaction_id": gateway_transaction_id,
                    },
                ) from None

            self._complete_charge_record(charge, succeeded, response, return_code)
            self._emit_settlement(charge)

        self.get_logger().info(
            f"Charge settled as {charge.status}",
            extra={
                "charge_id": str(charge.id),
                "authorization_id": str(charge.authorization_id),
                "gateway_transaction_id": charge.gateway_transaction_id,
                "amount": str(charge.amount),
            },
        )
        return charge, True

    def apply_charge_response(
        self,
        charge_id: UUID | str,
        result: PaymentResult,
    ) -> tuple[Charge, bool]:
        """Settle a charge from the synchronous gateway answer."""
        outcome = classify_payment_status(result.payment_status, strict=True)
        return self.settle_charge(
            charge_id,
            outcome=outcome,
            gateway_transaction_id=result.transaction_id,
            response=result.raw_response,
            error_message=result.return_message,
            return_code=result.return_code,
        )

    def fail_charge_on_error(self, charge_id: UUID | str, error: GatewayError) -> tuple[Charge, bool]:
        """Settle a charge whose gateway call raised, without a gateway answer."""
        return self.settle_charge(
            charge_id,
            outcome=FAILED,
            response={"error_code": error.error_code, "message": error.message},
            error_message=error.message,
            return_code=error.return_code,
        )

    def _complete_charge_record(
        self,
        charge: Charge,
        succeeded: bool,
        response: dict[str, Any] | None,
        return_code: str | None,
    ) -> None:
        record = (
            TransactionRecordRepository.for_owner(charge)
            .filter(
                transaction_type=TransactionType.CHARGE,
                status=TransactionStatus.PENDING,
            )
            .select_for_update()
            .last()
        )
        if record is None:
            return
        if succeeded:
            record.complete_success(
                response_data=response,
                return_code=return_code,
                gateway_transaction_id=charge.gateway_transaction_id,
            )
        else:
            record.complete_failure(
                response_data=response,
                return_code=return_code,
                return_message=charge.error_message,
                gateway_transaction_id=charge.gateway_transaction_id,
            )
        record.save()

    def _emit_settlement(self, charge: Charge) -> None:
        if charge.status == ChargeStatus.SUCCESS:
            self.events.emit(
                ChargeSettled(
                    charge_id=str(charge.id),
                    authorization_id=str(charge.authorization_id),
                    amount=charge.amount,
                    gateway_transaction_id=charge.gateway_transaction_id,
                )
            )
            return
        self.events.emit(
            ChargeFailed(
                charge_id=str(charge.id),
                authorization_id=str(charge.authorization_id),
                amount=charge.amount,
                error_message=charge.error_message or DEFAULT_CHARGE_FAILURE_MESSAGE,
                retry_count=charge.root.retry_count,
            )
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def apply_webhook(self, payload: dict[str, Any]) -> ServiceResult[str]:
        """
        Apply a verified webhook payload.

        Returns:
            ServiceResult whose data is a WebhookOutcome value. Unknown
            event shapes and unmatched entities are successes; malformed
            payloads fail with VALIDATION_ERROR and conflicting notices
            with the ConflictError code.

        Raises:
            GatewayError, LockAcquisitionError, DatabaseError: Transient
                failures, left to the transport so the gateway redelivers
        """
        from authorized_payments.webhooks.handlers import dispatch_webhook

        if not isinstance(payload, dict):
            return self.handle_exception(
                ValidationError("Webhook payload must be a JSON object"),
                "Webhook rejected",
            )

        try:
            outcome = dispatch_webhook(payload, self)
        except BaseApplicationError as exc:
            if getattr(exc, "is_retryable", False):
                raise
            return self.handle_exception(exc, "Webhook not applied")
        return ServiceResult.success(outcome)

    # =========================================================================
    # Status Polling
    # =========================================================================

    def poll_authorization(self, authorization: Authorization) -> ServiceResult[Authorization]:
        """
        Query the gateway for an authorization and apply the answer.

        Only "active"-like statuses approve and "cancelled"/"expired"
        revoke; a terminal local record is never changed.
        """
        if not authorization.gateway_authorization_id:
            return ServiceResult.success(authorization)

        try:
            status = self.gateway.get_authorization_status(authorization.gateway_authorization_id)
            normalized = status.status.lower()
            if authorization.is_terminal:
                return ServiceResult.success(authorization)
            if normalized in AUTHORIZATION_APPROVED_STATUSES:
                authorization, _ = self.approve_authorization(
                    authorization.pk, authorization.gateway_authorization_id
                )
            elif normalized in AUTHORIZATION_CANCELLED_STATUSES:
                authorization, _ = self.revoke_authorization(authorization.pk)
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Authorization status poll failed")
        return ServiceResult.success(authorization)

    def poll_charge(self, charge: Charge) -> ServiceResult[Charge]:
        """Query the gateway for a charge and settle it if the answer is terminal."""
        if not charge.gateway_transaction_id:
            return ServiceResult.failure(
                f"Charge {charge.id} has no gateway transaction id to poll",
                error_code="CHARGE_NOT_SUBMITTED",
                details={"charge_id": str(charge.id)},
            )

        try:
            status = self.gateway.get_payment_status(charge.gateway_transaction_id)
            outcome = classify_payment_status(status.status, strict=False)
            if outcome is not None:
                charge, _ = self.settle_charge(
                    charge.pk,
                    outcome=outcome,
                    gateway_transaction_id=charge.gateway_transaction_id,
                    response=status.raw_response,
                    error_message=_status_description(status.raw_response),
                )
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Charge status poll failed")
        return ServiceResult.success(charge)


def _status_description(payload: dict[str, Any]) -> str | None:
    return_status = payload.get("returnStatus")
    if isinstance(return_status, dict):
        return return_status.get("statusDescription") or return_status.get("statusMsg")
    return None


__all__ = [
    "ReconciliationService",
    "classify_payment_status",
]
