"""
Charge service: draw against an authorization, refund, retry.

Charging follows the same two-phase shape as the rest of the payment
code:

1. Phase 1 (transaction): lock the Authorization row, check it is
   ACTIVE, still valid and has headroom for the amount, then create the
   PENDING Charge and its CHARGE TransactionRecord. The pending charge
   reserves its amount, so a concurrent charge taking the same lock
   afterwards sees the reduced headroom.
2. Phase 2 (no transaction): call the gateway and settle the charge
   through ReconciliationService, the same path webhooks use.

A gateway error is not retried inline: the charge settles as FAILED and
the scheduler's retry sweep creates the next attempt after the cooldown.

Refunds hold a Redis lock per charge for the duration of the gateway
call, since a row lock cannot be held across it.

Usage:
    service = ChargeService(gateway=get_gateway())
    result = service.initiate(authorization, Decimal("29.99"), "May")
    if not result.success:
        result.error_code  # e.g. "AMOUNT_EXCEEDS_LIMIT", "CHARGE_DECLINED"

    service.refund(result.data, Decimal("10.00"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.exceptions import BaseApplicationError, ConflictError
from core.services import BaseService, ServiceResult

from authorized_payments.adapters.gateway import REFUND_SUCCESS_STATUSES, PaymentResult
from authorized_payments.config import PaymentsConfig
from authorized_payments.events import ChargeRefunded, SignalEventSink
from authorized_payments.exceptions import (
    AmountExceedsLimitError,
    AuthorizationExpiredError,
    AuthorizationNotActiveError,
    ChargeDeclinedError,
    GatewayError,
    GatewayResponseError,
    InvalidRefundAmountError,
    InvalidStateError,
    LockAcquisitionError,
    NotRefundableError,
    RefundFailedError,
)
from authorized_payments.ledger import AmountLedger
from authorized_payments.locks import DistributedLock
from authorized_payments.models import Charge, TransactionRecord
from authorized_payments.repositories import AuthorizationRepository, ChargeRepository
from authorized_payments.services.reconciliation_service import ReconciliationService
from authorized_payments.state_machines import (
    SETTLED_SUCCESS_STATES,
    ChargeStatus,
    TransactionType,
)
from authorized_payments.validators import parse_amount

if TYPE_CHECKING:
    from datetime import datetime
    from collections.abc import Iterable
    from typing import Any
    from uuid import UUID

    from authorized_payments.adapters.gateway import PaymentGateway
    from authorized_payments.events import EventSink
    from authorized_payments.models import Authorization


# Refund lock TTL (seconds), covers the gateway timeout
REFUND_LOCK_TTL = 60

# How long a refund waits for another refund on the same charge (seconds)
REFUND_LOCK_TIMEOUT = 10.0

RETRY_SUFFIX = " (Retry)"


@dataclass(frozen=True)
class BatchChargeItem:
    """One charge of a batch passed to ChargeService.initiate_batch()."""

    authorization: Authorization
    amount: Decimal | str | int
    description: str | None = None


class ChargeService(BaseService):
    """
    Service for charges against authorizations.

    Args:
        gateway: PaymentGateway implementation
        config: Business configuration (defaults to Django settings)
        events: Sink for domain events (defaults to SignalEventSink)
        reconciliation: Shared settlement rules (built from the above
            when omitted)
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        config: PaymentsConfig | None = None,
        events: EventSink | None = None,
        reconciliation: ReconciliationService | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PaymentsConfig.from_settings()
        self.events = events or SignalEventSink()
        self.reconciliation = reconciliation or ReconciliationService(
            gateway=gateway, config=self.config, events=self.events
        )

    # =========================================================================
    # Initiate
    # =========================================================================

    def initiate(
        self,
        authorization: Authorization,
        amount: Decimal | str | int,
        description: str | None = None,
    ) -> ServiceResult[Charge]:
        """
        Charge `amount` against an authorization.

        Returns:
            ServiceResult with the SUCCESS charge. Failures carry the error
            kind; when a Charge row was created (declined or gateway error)
            it is in result.data and details["charge_id"].
        """
        try:
            amount = parse_amount(amount)
            description = self._charge_description(authorization, description)
            charge = self._reserve(authorization.pk, amount, description)
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Charge rejected")

        return self._submit(charge)

    def initiate_batch(self, items: Iterable[BatchChargeItem]) -> list[ServiceResult[Charge]]:
        """
        Charge several authorizations, one initiate() per item.

        Items are independent: a failure, expected or not, is recorded in
        that item's result and the batch continues.

        Returns:
            One ServiceResult per item, in input order
        """
        logger = self.get_logger()
        results: list[ServiceResult[Charge]] = []

        for item in items:
            try:
                result = self.initiate(item.authorization, item.amount, item.description)
            except Exception as e:
                logger.exception(
                    f"Batch charge failed: {e}",
                    extra={
                        "authorization_id": str(item.authorization.pk),
                        "amount": str(item.amount),
                    },
                )
                result = ServiceResult.failure(
                    f"Unexpected error while charging: {type(e).__name__}",
                    error_code="CHARGE_PROCESSING_ERROR",
                    details={"authorization_id": str(item.authorization.pk)},
                )
            results.append(result)

        succeeded = sum(1 for result in results if result.success)
        logger.info(
            f"Batch charges processed: {succeeded} of {len(results)} succeeded",
            extra={
                "total": len(results),
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
            },
        )
        return results

    def settle(
        self,
        charge: Charge,
        gateway_transaction_id: str | None,
        gateway_status: str,
        raw_response: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> ServiceResult[Charge]:
        """
        Settle a pending charge from a gateway answer.

        Success/Authorized/Captured settle as SUCCESS, anything else as
        FAILED. Repeating the same answer is a no-op; the opposite answer
        fails with SETTLEMENT_CONFLICT.
        """
        answer = PaymentResult(
            transaction_id=gateway_transaction_id,
            payment_status=gateway_status,
            return_message=error_message,
            raw_response=raw_response or {},
        )
        try:
            charge, _ = self.reconciliation.apply_charge_response(charge.pk, answer)
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Settlement rejected")
        return ServiceResult.success(charge)

    def _charge_description(self, authorization: Authorization, description: str | None) -> str:
        description = (description or "").strip() or f"Charge for {authorization.description}"
        return description[: self.config.description_max_length]

    def _check_chargeable(
        self,
        authorization: Authorization,
        amount: Decimal,
        now: datetime | None = None,
    ) -> None:
        """
        Raises:
            AuthorizationNotActiveError: Status is not ACTIVE
            AuthorizationExpiredError: Validity date has passed
            AmountExceedsLimitError: Amount is larger than the headroom
        """
        details = {"authorization_id": str(authorization.id), "amount": str(amount)}
        if not authorization.is_active:
            raise AuthorizationNotActiveError(
                f"Authorization {authorization.id} is not active",
                details={**details, "current_status": authorization.status},
            )
        if not authorization.is_valid_at(now or timezone.now()):
            raise AuthorizationExpiredError(
                f"Authorization {authorization.id} has expired",
                details={**details, "validity_date": authorization.validity_date.isoformat()},
            )
        remaining = AmountLedger.remaining(authorization)
        reserved = AmountLedger.reserved(authorization)
        if amount > remaining - reserved:
            raise AmountExceedsLimitError(
                f"Charge of {amount} exceeds remaining {remaining - reserved}",
                details={
                    **details,
                    "remaining": str(remaining),
                    "reserved": str(reserved),
                },
            )

    def _create_charge(
        self,
        authorization: Authorization,
        amount: Decimal,
        description: str,
        parent: Charge | None = None,
    ) -> Charge:
        """Create a PENDING charge and its CHARGE record. Caller holds the auth lock."""
        reference = f"CHARGE_{authorization.id}_{timezone.now():%Y%m%d%H%M%S%f}"
        charge = Charge.objects.create(
            authorization=authorization,
            parent=parent,
            merchant_reference=reference,
            amount=amount,
            currency=authorization.currency,
            description=description,
        )
        TransactionRecord.open(
            owner=charge,
            transaction_type=TransactionType.CHARGE,
            merchant_transaction_id=reference,
            amount=amount,
            currency=charge.currency,
            request_data={
                "authorizationId": authorization.gateway_authorization_id,
                "amount": {"value": str(amount), "currency": charge.currency},
                "description": description,
                "merchantTransactionId": reference,
            },
        )
        return charge

    def _reserve(self, authorization_id: UUID, amount: Decimal, description: str) -> Charge:
        with self.atomic():
            authorization = AuthorizationRepository.find(authorization_id, for_update=True)
            self._check_chargeable(authorization, amount)
            charge = self._create_charge(authorization, amount, description)

        self.get_logger().info(
            "Charge reserved",
            extra={
                "charge_id": str(charge.id),
                "authorization_id": str(authorization_id),
                "amount": str(amount),
            },
        )
        return charge

    def _submit(self, charge: Charge) -> ServiceResult[Charge]:
        """Send a PENDING charge to the gateway and settle it."""
        logger = self.get_logger()
        authorization = charge.authorization

        try:
            answer = self.gateway.charge(
                authorization_id=authorization.gateway_authorization_id,
                amount=charge.amount,
                currency=charge.currency,
                description=charge.description,
                merchant_reference=charge.merchant_reference,
            )
        except GatewayError as exc:
            logger.warning(
                "Charge gateway call failed, charge settles as failed",
                extra={
                    "charge_id": str(charge.id),
                    "error_code": exc.error_code,
                    "is_retryable": exc.is_retryable,
                },
            )
            try:
                charge, _ = self.reconciliation.fail_charge_on_error(charge.pk, exc)
            except ConflictError as conflict:
                return self._failed(ChargeRepository.find(charge.pk), conflict, "Charge settlement conflict")
            return self._failed(charge, exc, "Charge gateway call failed")
        except Exception as exc:
            self._fail_unexpected(charge, exc)
            raise

        try:
            charge, _ = self.reconciliation.apply_charge_response(charge.pk, answer)
        except ConflictError as exc:
            # A webhook already recorded the opposite answer; it stands.
            return self._failed(ChargeRepository.find(charge.pk), exc, "Charge settlement conflict")
        except Exception as exc:
            self._fail_unexpected(charge, exc)
            raise

        if charge.status == ChargeStatus.FAILED:
            declined = ChargeDeclinedError(
                charge.error_message or "Charge declined by gateway",
                details={"return_code": answer.return_code},
            )
            return self._failed(charge, declined, "Charge declined", logging.WARNING)

        return ServiceResult.success(charge)

    def _fail_unexpected(self, charge: Charge, exc: Exception) -> None:
        """Settle a charge FAILED after an unexpected error so it stops reserving headroom."""
        logger = self.get_logger()
        logger.exception(
            f"Unexpected error while charging: {exc}",
            extra={"charge_id": str(charge.id), "error_type": type(exc).__name__},
        )
        error = GatewayResponseError(
            f"Unexpected error while charging: {type(exc).__name__}",
            error_code="CHARGE_PROCESSING_ERROR",
        )
        try:
            self.reconciliation.fail_charge_on_error(charge.pk, error)
        except ConflictError:
            logger.warning(
                "Charge already settled with another answer, leaving it as recorded",
                extra={"charge_id": str(charge.id)},
            )

    def _failed(
        self,
        charge: Charge,
        exc: BaseApplicationError,
        context: str,
        log_level: int = logging.ERROR,
    ) -> ServiceResult[Charge]:
        exc.details["charge_id"] = str(charge.id)
        result = self.handle_exception(exc, context, log_level)
        result.data = charge
        return result

    # =========================================================================
    # Refund
    # =========================================================================

    def refund(
        self,
        charge: Charge,
        amount: Decimal | str | int | None = None,
    ) -> ServiceResult[Charge]:
        """
        Refund part or all of a settled charge.

        Args:
            amount: Defaults to the whole refundable balance

        Returns:
            ServiceResult with the PARTIALLY_REFUNDED or REFUNDED charge.
            Fails with NOT_REFUNDABLE, INVALID_REFUND_AMOUNT or
            REFUND_FAILED; on REFUND_FAILED the charge is unchanged.
        """
        try:
            with DistributedLock(
                f"charge:refund:{charge.pk}",
                ttl=REFUND_LOCK_TTL,
                timeout=REFUND_LOCK_TIMEOUT,
            ):
                return self._refund_with_lock(charge.pk, amount)
        except LockAcquisitionError as exc:
            return self.handle_exception(exc, "Refund already in progress")

    def _refund_amount(self, charge: Charge, amount: Decimal | str | int | None) -> Decimal:
        if not charge.is_refundable or not charge.gateway_transaction_id:
            raise NotRefundableError(
                f"Charge {charge.id} in '{charge.status}' status cannot be refunded",
                details={
                    "charge_id": str(charge.id),
                    "current_status": charge.status,
                    "refundable_amount": str(charge.refundable_amount),
                },
            )
        if amount is None:
            return charge.refundable_amount
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError):
            value = None
        if value is None or not value.is_finite() or value <= 0 or value > charge.refundable_amount:
            raise InvalidRefundAmountError(
                f"Refund amount must be between 0.01 and {charge.refundable_amount}",
                details={
                    "field": "amount",
                    "amount": str(amount),
                    "refundable_amount": str(charge.refundable_amount),
                },
            )
        return value

    def _refund_with_lock(
        self,
        charge_id: UUID,
        amount: Decimal | str | int | None,
    ) -> ServiceResult[Charge]:
        logger = self.get_logger()

        try:
            charge = ChargeRepository.find(charge_id)
            refund_amount = self._refund_amount(charge, amount)
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Refund rejected")

        description = f"Refund for charge {charge.id}"
        record = TransactionRecord.open(
            owner=charge,
            transaction_type=TransactionType.REFUND,
            merchant_transaction_id=charge.merchant_reference,
            amount=refund_amount,
            currency=charge.currency,
            request_data={
                "transactionId": charge.gateway_transaction_id,
                "amount": {"value": str(refund_amount), "currency": charge.currency},
                "description": description,
            },
        )

        logger.info(
            "Calling gateway refund",
            extra={
                "charge_id": str(charge.id),
                "gateway_transaction_id": charge.gateway_transaction_id,
                "amount": str(refund_amount),
            },
        )

        try:
            answer = self.gateway.refund(
                transaction_id=charge.gateway_transaction_id,
                amount=refund_amount,
                currency=charge.currency,
                description=description,
            )
        except GatewayError as exc:
            record.complete_failure(
                response_data=exc.details,
                return_code=exc.return_code,
                return_message=exc.message,
            )
            record.save()
            failure = RefundFailedError(
                f"Refund failed: {exc.message}",
                details={"charge_id": str(charge.id), "gateway_error_code": exc.error_code},
            )
            return self.handle_exception(failure, "Refund failed", logging.ERROR)

        if answer.payment_status not in REFUND_SUCCESS_STATUSES:
            record.complete_failure(
                response_data=answer.raw_response,
                return_code=answer.return_code,
                return_message=answer.return_message,
                gateway_transaction_id=answer.transaction_id,
            )
            record.save()
            failure = RefundFailedError(
                answer.return_message or "Refund rejected by gateway",
                details={
                    "charge_id": str(charge.id),
                    "payment_status": answer.payment_status,
                    "return_code": answer.return_code,
                },
            )
            return self.handle_exception(failure, "Refund rejected by gateway", logging.ERROR)

        with transaction.atomic():
            charge = ChargeRepository.find(charge_id, for_update=True)
            charge.apply_refund(refund_amount)
            charge.save()
            record.complete_success(
                response_data=answer.raw_response,
                return_code=answer.return_code,
                return_message=answer.return_message,
                gateway_transaction_id=answer.transaction_id,
            )
            record.save()
            self.events.emit(
                ChargeRefunded(
                    charge_id=str(charge.id),
                    amount=refund_amount,
                    refunded_amount=charge.refunded_amount,
                    status=charge.status,
                )
            )

        logger.info(
            "Charge refunded",
            extra={
                "charge_id": str(charge.id),
                "amount": str(refund_amount),
                "refunded_amount": str(charge.refunded_amount),
                "status": charge.status,
            },
        )
        return ServiceResult.success(charge)

    # =========================================================================
    # Retry
    # =========================================================================

    def retry(self, charge: Charge, now: datetime | None = None) -> ServiceResult[Charge]:
        """
        Create and submit a new attempt for a failed charge.

        The attempt references the root charge as its parent; the root's
        retry_count and last_retry_at are advanced in the same transaction.

        Returns:
            ServiceResult for the new attempt (same shape as initiate()).
            Fails with CHARGE_NOT_RETRYABLE when the chain is not eligible.
        """
        try:
            attempt = self._reserve_retry(charge.root.pk, now or timezone.now())
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Retry skipped", logging.INFO)
        return self._submit(attempt)

    def _check_retryable(self, root: Charge, now: datetime) -> None:
        reason = None
        if root.status != ChargeStatus.FAILED:
            reason = f"status is '{root.status}'"
        elif root.retry_count >= self.config.max_retries:
            reason = f"retry limit of {self.config.max_retries} reached"
        elif root.last_retry_at and now - root.last_retry_at < self.config.retry_delay:
            reason = "retry cooldown has not elapsed"
        elif root.attempts.filter(
            status__in=[ChargeStatus.PENDING, *SETTLED_SUCCESS_STATES]
        ).exists():
            reason = "an attempt is pending or succeeded"
        if reason:
            raise InvalidStateError(
                f"Charge {root.id} is not retryable: {reason}",
                error_code="CHARGE_NOT_RETRYABLE",
                details={"charge_id": str(root.id), "retry_count": root.retry_count},
            )

    def _reserve_retry(self, root_id: UUID, now: datetime) -> Charge:
        authorization_id = ChargeRepository.find(root_id).authorization_id

        with self.atomic():
            # Lock order matches initiate(): authorization, then charge
            authorization = AuthorizationRepository.find(authorization_id, for_update=True)
            root = ChargeRepository.find(root_id, for_update=True)
            self._check_retryable(root, now)
            self._check_chargeable(authorization, root.amount, now)

            root.retry_count += 1
            root.last_retry_at = now
            root.save(update_fields=["retry_count", "last_retry_at", "updated_at"])

            description = root.description
            max_base = self.config.description_max_length - len(RETRY_SUFFIX)
            attempt = self._create_charge(
                authorization,
                root.amount,
                description[:max_base] + RETRY_SUFFIX,
                parent=root,
            )

        self.get_logger().info(
            "Charge retry attempt created",
            extra={
                "charge_id": str(attempt.id),
                "root_charge_id": str(root.id),
                "retry_count": root.retry_count,
            },
        )
        return attempt
