"""
Authorization service: creation, approval and cancellation.

Creation is a two-phase gateway handshake:

1. Phase 1 (transaction): validate, create the PENDING Authorization and
   its AUTHORIZATION_REQUEST TransactionRecord.
2. Phase 2 (no transaction): open a checkout session, then submit the
   authorization request signed with the checkout's transaction
   signature.

If either gateway call fails the TransactionRecord is marked failed and
the Authorization stays PENDING; the caller decides whether to create a
new one. The authorization becomes ACTIVE when the gateway approves it,
usually through a webhook once the customer accepts in the MB WAY app.

Usage:
    service = AuthorizationService(gateway=get_gateway())

    result = service.create(
        AuthorizationRequest(
            customer_phone="+351 912 345 678",
            customer_email="ana@example.com",
            max_amount="100.00",
            description="Monthly subscription",
        )
    )
    if result.success:
        authorization = result.data
    else:
        result.error_code  # e.g. "INVALID_PHONE", "GATEWAY_TIMEOUT"
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from authorized_payments.adapters.gateway import AUTHORIZATION_APPROVED_STATUSES
from authorized_payments.adapters.mbway_adapter import mask_phone, sanitize_payload
from authorized_payments.config import PaymentsConfig
from authorized_payments.events import (
    AuthorizationCancelled,
    AuthorizationCreated,
    SignalEventSink,
)
from authorized_payments.exceptions import (
    ConflictError,
    GatewayError,
    InvalidStateError,
)
from authorized_payments.ledger import AmountLedger
from authorized_payments.models import Authorization, TransactionRecord
from authorized_payments.repositories import AuthorizationRepository
from authorized_payments.services.reconciliation_service import ReconciliationService
from authorized_payments.state_machines import AuthorizationStatus, TransactionType
from authorized_payments.validators import validate_authorization_request

if TYPE_CHECKING:
    from decimal import Decimal

    from django.db.models import QuerySet

    from authorized_payments.adapters.gateway import PaymentGateway
    from authorized_payments.events import EventSink
    from authorized_payments.validators import AuthorizationRequest


def _duplicate_reference(reference: str) -> ConflictError:
    return ConflictError(
        f"Merchant reference {reference} is already in use",
        error_code="DUPLICATE_MERCHANT_REFERENCE",
        details={"field": "merchant_reference"},
    )


class AuthorizationService(BaseService):
    """
    Service for the authorization lifecycle.

    Args:
        gateway: PaymentGateway implementation
        config: Business configuration (defaults to Django settings)
        events: Sink for domain events (defaults to SignalEventSink)
        reconciliation: Shared transition rules (built from the above
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
    # Creation
    # =========================================================================

    def create(self, request: AuthorizationRequest) -> ServiceResult[Authorization]:
        """
        Create an authorization and request it from the gateway.

        Returns:
            ServiceResult with the PENDING (or, when the gateway approved
            synchronously, ACTIVE) Authorization. On gateway failure the
            result fails with the gateway error code and
            details["authorization_id"] names the PENDING record left behind.
        """
        logger = self.get_logger()

        try:
            request = validate_authorization_request(request, self.config)
            if request.merchant_reference and AuthorizationRepository.reference_in_use(
                request.merchant_reference
            ):
                raise _duplicate_reference(request.merchant_reference)
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Authorization request rejected")

        logger.info(
            "Creating authorization request",
            extra={
                "customer_phone": mask_phone(request.customer_phone),
                "max_amount": str(request.max_amount),
                "merchant_reference": request.merchant_reference,
            },
        )

        # Phase 1: local records
        try:
            authorization, record = self._create_pending(request)
        except IntegrityError:
            if not request.merchant_reference:
                raise
            # A concurrent request took the reference after the check above
            return self.handle_exception(
                _duplicate_reference(request.merchant_reference),
                "Authorization request rejected",
            )
        checkout_reference = record.merchant_transaction_id

        # Phase 2: gateway handshake, outside any transaction
        try:
            checkout = self.gateway.create_checkout(
                merchant_reference=checkout_reference,
                amount=authorization.max_amount,
                currency=authorization.currency,
                description=authorization.description,
                validity_date=authorization.validity_date,
            )
            record.gateway_transaction_id = checkout.transaction_id
            record.save(update_fields=["gateway_transaction_id", "updated_at"])

            answer = self.gateway.create_authorization(
                transaction_id=checkout.transaction_id,
                transaction_signature=checkout.transaction_signature,
                customer_phone=authorization.customer_phone,
                validity_date=authorization.validity_date,
                description=authorization.description,
            )
        except GatewayError as exc:
            record.complete_failure(
                response_data=exc.details,
                return_code=exc.return_code,
                return_message=exc.message,
            )
            record.save()
            exc.details["authorization_id"] = str(authorization.id)
            return self.handle_exception(exc, "Authorization request failed", logging.ERROR)

        record.complete_success(
            response_data=sanitize_payload(answer.raw_response),
            return_code=answer.return_code,
            return_message=answer.return_message,
            gateway_transaction_id=checkout.transaction_id,
        )
        record.save()

        self.events.emit(
            AuthorizationCreated(
                authorization_id=str(authorization.id),
                max_amount=authorization.max_amount,
                merchant_reference=authorization.merchant_reference,
            )
        )
        logger.info(
            "Authorization request created",
            extra={
                "authorization_id": str(authorization.id),
                "transaction_id": checkout.transaction_id,
                "gateway_status": answer.status,
            },
        )

        if answer.authorization_id and answer.status.lower() in AUTHORIZATION_APPROVED_STATUSES:
            try:
                authorization, _ = self.reconciliation.approve_authorization(
                    authorization.pk, answer.authorization_id
                )
            except ConflictError as exc:
                return self.handle_exception(exc, "Synchronous approval not applied", logging.ERROR)

        return ServiceResult.success(authorization)

    def _create_pending(self, request: AuthorizationRequest) -> tuple[Authorization, TransactionRecord]:
        """Store the PENDING authorization and its AUTHORIZATION_REQUEST record."""
        with self.atomic():
            authorization = Authorization.objects.create(
                customer_phone=request.customer_phone,
                customer_email=request.customer_email,
                max_amount=request.max_amount,
                currency=request.currency,
                validity_date=request.validity_date,
                description=request.description,
                merchant_reference=request.merchant_reference,
                metadata=request.metadata,
            )
            checkout_reference = request.merchant_reference or f"AUTH_{authorization.id}"
            record = TransactionRecord.open(
                owner=authorization,
                transaction_type=TransactionType.AUTHORIZATION_REQUEST,
                merchant_transaction_id=checkout_reference,
                amount=authorization.max_amount,
                currency=authorization.currency,
                request_data=sanitize_payload(
                    {
                        "customerPhone": authorization.customer_phone,
                        "maxAmount": str(authorization.max_amount),
                        "currency": authorization.currency,
                        "validityDate": authorization.validity_date.isoformat(),
                        "description": authorization.description,
                        "merchantTransactionId": checkout_reference,
                    }
                ),
            )
        return authorization, record

    # =========================================================================
    # Transitions
    # =========================================================================

    def approve(
        self,
        authorization: Authorization,
        gateway_authorization_id: str,
    ) -> ServiceResult[Authorization]:
        """
        PENDING -> ACTIVE.

        Idempotent for the same gateway id; fails with SETTLEMENT_CONFLICT
        for a different one.
        """
        try:
            authorization, _ = self.reconciliation.approve_authorization(
                authorization.pk, gateway_authorization_id
            )
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Approval rejected")
        return ServiceResult.success(authorization)

    def cancel(self, authorization: Authorization) -> ServiceResult[Authorization]:
        """
        Merchant cancellation: ACTIVE -> CANCELLED.

        The gateway is told first when the authorization has a gateway id;
        if that call fails the authorization stays ACTIVE.

        Fails with INVALID_STATE for anything that is not ACTIVE.
        """
        logger = self.get_logger()

        try:
            authorization = AuthorizationRepository.find(authorization.pk)
            self._require_active(authorization, "cancel")
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Cancellation rejected")

        if authorization.gateway_authorization_id:
            record = TransactionRecord.open(
                owner=authorization,
                transaction_type=TransactionType.CANCELLATION,
                merchant_transaction_id=authorization.merchant_reference,
                amount=authorization.max_amount,
                currency=authorization.currency,
                request_data={"authorizationId": authorization.gateway_authorization_id},
            )
            try:
                self.gateway.cancel_authorization(authorization.gateway_authorization_id)
            except GatewayError as exc:
                record.complete_failure(
                    response_data=exc.details,
                    return_code=exc.return_code,
                    return_message=exc.message,
                )
                record.save()
                exc.details["authorization_id"] = str(authorization.id)
                return self.handle_exception(exc, "Gateway cancellation failed", logging.ERROR)
            record.complete_success(gateway_transaction_id=authorization.gateway_authorization_id)
            record.save()

        try:
            with transaction.atomic():
                authorization = AuthorizationRepository.find(authorization.pk, for_update=True)
                self._require_active(authorization, "cancel")
                authorization.cancel()
                authorization.save()
                self.events.emit(
                    AuthorizationCancelled(
                        authorization_id=str(authorization.id),
                        source="merchant",
                    )
                )
        except BaseApplicationError as exc:
            return self.handle_exception(exc, "Cancellation rejected")

        logger.info(
            "Authorization cancelled",
            extra={
                "authorization_id": str(authorization.id),
                "gateway_authorization_id": authorization.gateway_authorization_id,
            },
        )
        return ServiceResult.success(authorization)

    @staticmethod
    def _require_active(authorization: Authorization, action: str) -> None:
        if authorization.status != AuthorizationStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot {action} authorization in '{authorization.status}' status",
                details={
                    "authorization_id": str(authorization.id),
                    "current_status": authorization.status,
                    "action": action,
                },
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_remaining_amount(self, authorization: Authorization) -> Decimal:
        """max_amount minus the total of successful charges."""
        return AmountLedger.remaining(authorization)

    def list_active(
        self,
        customer_email: str | None = None,
        customer_phone: str | None = None,
    ) -> QuerySet[Authorization]:
        return AuthorizationRepository.list_active(
            customer_email=customer_email,
            customer_phone=customer_phone,
        )

    def list_expiring(self, days: int = 30) -> QuerySet[Authorization]:
        return AuthorizationRepository.list_expiring_within(days=days)
