"""
Charge model: one draw attempt against an Authorization.

A retry never reopens a failed charge. It creates a new Charge whose
parent is the original (root) charge, and the root keeps the retry
counter used for eligibility.

State Flow:
    PENDING -> SUCCESS -> PARTIALLY_REFUNDED -> REFUNDED
    PENDING -> SUCCESS -> REFUNDED
    PENDING -> FAILED
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.contrib.contenttypes.fields import GenericRelation
from django.db import models
from django.utils import timezone
from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from authorized_payments.exceptions import InvalidRefundAmountError
from authorized_payments.state_machines import (
    REFUNDABLE_STATES,
    SETTLED_SUCCESS_STATES,
    ChargeStatus,
)

if TYPE_CHECKING:
    from typing import Any


class Charge(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Single draw attempt against an authorization.

    Fields:
        authorization: Owning authorization (never reparented)
        parent: Root charge this attempt retries (null for roots)
        gateway_transaction_id: Gateway id, unique once assigned
        amount: Charged amount
        status: Lifecycle status (managed by FSM)
        merchant_reference: Ledger-unique reference sent to the gateway
        error_message: Gateway message for failed attempts
        retry_count: Retries spawned from this root charge
        last_retry_at: When the last retry was spawned
        refunded_amount: Total confirmed refunds (never decreases)
        gateway_response: Last raw gateway answer
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    authorization = models.ForeignKey(
        "authorized_payments.Authorization",
        on_delete=models.PROTECT,
        related_name="charges",
        help_text="Authorization this charge draws against",
    )

    parent = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="attempts",
        help_text="Original charge when this row is a retry attempt",
    )

    # ==========================================================================
    # Identity
    # ==========================================================================

    gateway_transaction_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway transaction id (unique once assigned)",
    )

    merchant_reference = models.CharField(
        max_length=100,
        unique=True,
        help_text="Merchant transaction id sent with the charge request",
    )

    # ==========================================================================
    # Amount
    # ==========================================================================

    amount = models.DecimalField(max_digits=10, decimal_places=2)

    currency = models.CharField(max_length=3, default="EUR")

    description = models.CharField(max_length=200)

    charged_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the charge attempt was initiated",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=ChargeStatus.PENDING,
        choices=ChargeStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the charge (managed by FSM)",
    )

    settled_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    gateway_response = models.JSONField(
        null=True,
        blank=True,
        help_text="Raw gateway response snapshot",
    )

    # ==========================================================================
    # Retry Bookkeeping
    # ==========================================================================

    retry_count = models.PositiveSmallIntegerField(default=0)

    last_retry_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Refunds
    # ==========================================================================

    refunded_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    refunded_at = models.DateTimeField(null=True, blank=True)

    transactions = GenericRelation(
        "authorized_payments.TransactionRecord",
        related_query_name="charge",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Charge"
        verbose_name_plural = "Charges"
        indexes = [
            models.Index(fields=["authorization", "status"], name="charge_auth_status_idx"),
            models.Index(
                fields=["status", "retry_count", "last_retry_at"],
                name="charge_retry_lookup_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="charge_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refunded_amount__gte=0)
                & models.Q(refunded_amount__lte=models.F("amount")),
                name="charge_refunded_amount_bounded",
            ),
        ]

    def __str__(self) -> str:
        return f"Charge({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_settled_success(self) -> bool:
        """Success, including charges that were later refunded."""
        return self.status in SETTLED_SUCCESS_STATES

    @property
    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_STATES and self.refundable_amount > 0

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    @property
    def root(self) -> Charge:
        return self.parent or self

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=ChargeStatus.PENDING,
        target=ChargeStatus.SUCCESS,
    )
    def mark_success(
        self,
        gateway_transaction_id: str | None,
        response: dict[str, Any] | None = None,
    ) -> None:
        """
        Settle as successful.

        Transition: PENDING -> SUCCESS
        """
        if gateway_transaction_id:
            self.gateway_transaction_id = gateway_transaction_id
        self.gateway_response = response
        self.error_message = None
        self.settled_at = timezone.now()

    @transition(
        field=status,
        source=ChargeStatus.PENDING,
        target=ChargeStatus.FAILED,
    )
    def mark_failed(
        self,
        error_message: str,
        gateway_transaction_id: str | None = None,
        response: dict[str, Any] | None = None,
    ) -> None:
        """
        Settle as failed.

        Transition: PENDING -> FAILED
        """
        if gateway_transaction_id:
            self.gateway_transaction_id = gateway_transaction_id
        self.gateway_response = response
        self.error_message = error_message
        self.settled_at = timezone.now()

    @transition(
        field=status,
        source=[ChargeStatus.SUCCESS, ChargeStatus.PARTIALLY_REFUNDED],
        target=RETURN_VALUE(ChargeStatus.PARTIALLY_REFUNDED, ChargeStatus.REFUNDED),
    )
    def apply_refund(self, amount: Decimal) -> str:
        """
        Add a gateway-confirmed refund.

        Transition: SUCCESS/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED/REFUNDED

        Raises:
            InvalidRefundAmountError: amount is not positive or exceeds the
                refundable balance (status is left unchanged)
        """
        if amount <= 0 or amount > self.refundable_amount:
            raise InvalidRefundAmountError(
                f"Refund of {amount} is outside 0 < amount <= {self.refundable_amount}",
                details={
                    "field": "amount",
                    "amount": str(amount),
                    "refundable_amount": str(self.refundable_amount),
                },
            )
        self.refunded_amount += amount
        self.refunded_at = timezone.now()
        if self.refunded_amount == self.amount:
            return ChargeStatus.REFUNDED
        return ChargeStatus.PARTIALLY_REFUNDED
