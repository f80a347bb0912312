"""
Authorization model: a standing, time-bounded permission to draw funds.

The customer approves the authorization once in their wallet app; the
merchant can then charge it any number of times until the sum of
successful charges reaches max_amount or validity_date passes.

State Flow:
    PENDING -> ACTIVE -> EXPIRED
    PENDING -> ACTIVE -> CANCELLED
    PENDING -> CANCELLED (gateway notice only)

Usage:
    from authorized_payments.models import Authorization

    auth = Authorization.objects.create(
        customer_phone="351912345678",
        customer_email="ana@example.com",
        max_amount=Decimal("100.00"),
        validity_date=timezone.now() + timedelta(days=365),
        description="Monthly subscription",
    )
    auth.approve(gateway_authorization_id="A1")
    auth.save()
"""

from __future__ import annotations

from datetime import datetime

from django.contrib.contenttypes.fields import GenericRelation
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from authorized_payments.state_machines import (
    TERMINAL_AUTHORIZATION_STATES,
    AuthorizationStatus,
)


class Authorization(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Standing authorization granted by a customer.

    Fields:
        gateway_authorization_id: Gateway id, assigned on approval
        customer_phone: Normalized phone, country code prefixed, digits only
        customer_email: Customer email
        max_amount: Upper bound for the sum of successful charges
        currency: ISO 4217 code
        validity_date: Last instant charges are accepted
        status: Lifecycle status (managed by FSM)
        description: Free text shown to the customer
        merchant_reference: Optional merchant idempotency key
        metadata: Free-form merchant data

    Note:
        The status field is protected; only transition methods change it.
        Re-read instances with Authorization.objects.get() rather than
        refresh_from_db().
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    gateway_authorization_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway authorization id (assigned when approved)",
    )

    merchant_reference = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        unique=True,
        help_text="Merchant idempotency key for correlating async responses",
    )

    # ==========================================================================
    # Customer
    # ==========================================================================

    customer_phone = models.CharField(
        max_length=20,
        db_index=True,
        help_text="Customer phone, country code prefixed, digits only",
    )

    customer_email = models.EmailField(
        max_length=320,
        db_index=True,
        help_text="Customer email",
    )

    # ==========================================================================
    # Amount & Validity
    # ==========================================================================

    max_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Maximum total of successful charges",
    )

    currency = models.CharField(
        max_length=3,
        default="EUR",
        help_text="ISO 4217 currency code",
    )

    validity_date = models.DateTimeField(
        db_index=True,
        help_text="Charges are refused after this instant",
    )

    description = models.CharField(
        max_length=200,
        help_text="Description shown to the customer",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form merchant data",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=AuthorizationStatus.PENDING,
        choices=AuthorizationStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the authorization (managed by FSM)",
    )

    activated_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    transactions = GenericRelation(
        "authorized_payments.TransactionRecord",
        related_query_name="authorization",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Authorization"
        verbose_name_plural = "Authorizations"
        indexes = [
            models.Index(fields=["status", "validity_date"], name="auth_status_validity_idx"),
            models.Index(fields=["customer_email", "status"], name="auth_email_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(max_amount__gt=0),
                name="authorization_max_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Authorization({self.id}, {self.status}, {self.max_amount} {self.currency})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status == AuthorizationStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_AUTHORIZATION_STATES

    def is_valid_at(self, moment: datetime | None = None) -> bool:
        """Whether validity_date is still in the future at `moment`."""
        return self.validity_date > (moment or timezone.now())

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=AuthorizationStatus.PENDING,
        target=AuthorizationStatus.ACTIVE,
    )
    def approve(self, gateway_authorization_id: str) -> None:
        """
        Record gateway approval.

        Transition: PENDING -> ACTIVE
        """
        self.gateway_authorization_id = gateway_authorization_id
        self.activated_at = timezone.now()

    @transition(
        field=status,
        source=AuthorizationStatus.ACTIVE,
        target=AuthorizationStatus.CANCELLED,
    )
    def cancel(self) -> None:
        """
        Merchant-initiated cancellation.

        Transition: ACTIVE -> CANCELLED
        """
        self.cancelled_at = timezone.now()

    @transition(
        field=status,
        source=[AuthorizationStatus.PENDING, AuthorizationStatus.ACTIVE],
        target=AuthorizationStatus.CANCELLED,
    )
    def revoke(self) -> None:
        """
        Gateway-side cancellation or expiry notice.

        Transition: PENDING/ACTIVE -> CANCELLED

        A customer declining the request in the wallet app arrives while
        the authorization is still pending, so both sources are allowed.
        """
        self.cancelled_at = timezone.now()

    @transition(
        field=status,
        source=AuthorizationStatus.ACTIVE,
        target=AuthorizationStatus.EXPIRED,
    )
    def expire(self) -> None:
        """
        Validity date has passed.

        Transition: ACTIVE -> EXPIRED
        """
        self.expired_at = timezone.now()
