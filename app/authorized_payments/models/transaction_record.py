"""
TransactionRecord model: audit envelope for one gateway call.

Every authorization request, charge, refund and cancellation call gets
its own record, owned by the Authorization or Charge it concerns through
a generic relation. Retries create new records; a record is completed
exactly once.

Records are only consulted for business decisions in one place: when a
webhook carries a merchant transaction id the owning entity does not
store itself (e.g. "AUTH_<uuid>" checkout references).

Usage:
    record = TransactionRecord.open(
        owner=authorization,
        transaction_type=TransactionType.AUTHORIZATION_REQUEST,
        merchant_transaction_id=f"AUTH_{authorization.id}",
        amount=authorization.max_amount,
        currency=authorization.currency,
        request_data={...},
    )
    record.complete_success(response_data=response, return_code="000")
    record.save()
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from authorized_payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from typing import Any


class TransactionRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Correlates one gateway call to its owning entity.

    Fields:
        transaction_type: Kind of gateway call
        owner: Authorization or Charge (generic relation)
        gateway_transaction_id: Id returned by the gateway, if any
        merchant_transaction_id: Reference we sent to the gateway
        request_data / response_data: Redacted snapshots
        return_code / return_message: Gateway returnStatus
        requested_at / completed_at: Call boundaries
        processing_duration_ms: completed_at - requested_at
    """

    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        db_index=True,
    )

    # ==========================================================================
    # Owner (polymorphic)
    # ==========================================================================

    content_type = models.ForeignKey(ContentType, on_delete=models.PROTECT)
    object_id = models.UUIDField()
    owner = GenericForeignKey("content_type", "object_id")

    # ==========================================================================
    # Correlation
    # ==========================================================================

    gateway_transaction_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
    )

    merchant_transaction_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
    )

    amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default="EUR")

    # ==========================================================================
    # Outcome
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
    )

    request_data = models.JSONField(null=True, blank=True)
    response_data = models.JSONField(null=True, blank=True)

    return_code = models.CharField(max_length=50, null=True, blank=True)
    return_message = models.TextField(null=True, blank=True)

    requested_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    processing_duration_ms = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction Record"
        verbose_name_plural = "Transaction Records"
        indexes = [
            models.Index(fields=["content_type", "object_id"], name="txrecord_owner_idx"),
            models.Index(fields=["status", "created_at"], name="txrecord_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"TransactionRecord({self.transaction_type}, {self.status})"

    @classmethod
    def open(
        cls,
        owner: models.Model,
        transaction_type: str,
        merchant_transaction_id: str | None = None,
        amount: Decimal | None = None,
        currency: str = "EUR",
        request_data: dict[str, Any] | None = None,
    ) -> TransactionRecord:
        """Create a pending record for a call about to be made."""
        return cls.objects.create(
            content_type=ContentType.objects.get_for_model(owner),
            object_id=owner.pk,
            transaction_type=transaction_type,
            merchant_transaction_id=merchant_transaction_id,
            amount=amount,
            currency=currency,
            request_data=request_data,
        )

    def _finish(
        self,
        response_data: dict[str, Any] | None,
        return_code: str | None,
        return_message: str | None,
        gateway_transaction_id: str | None,
    ) -> None:
        self.response_data = response_data
        self.return_code = return_code
        self.return_message = return_message
        if gateway_transaction_id:
            self.gateway_transaction_id = gateway_transaction_id
        self.completed_at = timezone.now()
        elapsed = self.completed_at - self.requested_at
        self.processing_duration_ms = max(int(elapsed.total_seconds() * 1000), 0)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=TransactionStatus.PENDING, target=TransactionStatus.SUCCESS)
    def complete_success(
        self,
        response_data: dict[str, Any] | None = None,
        return_code: str | None = None,
        return_message: str | None = None,
        gateway_transaction_id: str | None = None,
    ) -> None:
        self._finish(response_data, return_code, return_message, gateway_transaction_id)

    @transition(field=status, source=TransactionStatus.PENDING, target=TransactionStatus.FAILED)
    def complete_failure(
        self,
        response_data: dict[str, Any] | None = None,
        return_code: str | None = None,
        return_message: str | None = None,
        gateway_transaction_id: str | None = None,
    ) -> None:
        self._finish(response_data, return_code, return_message, gateway_transaction_id)

    @transition(field=status, source=TransactionStatus.PENDING, target=TransactionStatus.CANCELLED)
    def complete_cancelled(self, return_message: str | None = None) -> None:
        self._finish(None, None, return_message, None)
