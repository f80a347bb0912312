"""
Repositories for authorized payment entities.

Every query the services and workers need is a named method here, so
the lookup rules (gateway id first, then merchant reference, then
TransactionRecord correlation) live in one place.

Methods taking for_update=True must be called inside transaction.atomic();
they lock the returned row until the transaction ends.

Usage:
    from authorized_payments.repositories import AuthorizationRepository

    with transaction.atomic():
        auth = AuthorizationRepository.find_by_gateway_id("A1", for_update=True)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.contrib.contenttypes.models import ContentType
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from authorized_payments.exceptions import (
    AuthorizationNotFoundError,
    ChargeNotFoundError,
)
from authorized_payments.models import Authorization, Charge, TransactionRecord
from authorized_payments.state_machines import (
    SETTLED_SUCCESS_STATES,
    AuthorizationStatus,
    ChargeStatus,
    TransactionStatus,
)

if TYPE_CHECKING:
    from uuid import UUID

    from django.db.models import Model, QuerySet


ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def _queryset(model: type[Model], for_update: bool) -> QuerySet:
    queryset = model.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    return queryset


def _sum_amounts(queryset: QuerySet) -> Decimal:
    """Sum of `amount`, scaled to cents whatever the database returns."""
    total = queryset.aggregate(
        total=Coalesce(
            Sum("amount"),
            Value(ZERO),
            output_field=DecimalField(max_digits=10, decimal_places=2),
        )
    )["total"]
    return Decimal(total).quantize(CENT)


def _owner_id_for_reference(model: type[Model], reference: str) -> UUID | None:
    """Owner id of the TransactionRecord that sent `reference` to the gateway."""
    return (
        TransactionRecord.objects.filter(
            content_type=ContentType.objects.get_for_model(model),
            merchant_transaction_id=reference,
        )
        .order_by("-created_at")
        .values_list("object_id", flat=True)
        .first()
    )


class AuthorizationRepository:
    """Named queries over Authorization."""

    @staticmethod
    def find(pk: UUID | str, for_update: bool = False) -> Authorization:
        """
        Raises:
            AuthorizationNotFoundError: No authorization with this id
        """
        authorization = _queryset(Authorization, for_update).filter(pk=pk).first()
        if authorization is None:
            raise AuthorizationNotFoundError(
                f"Authorization {pk} not found",
                details={"authorization_id": str(pk)},
            )
        return authorization

    @staticmethod
    def find_by_gateway_id(
        gateway_authorization_id: str, for_update: bool = False
    ) -> Authorization | None:
        return (
            _queryset(Authorization, for_update)
            .filter(gateway_authorization_id=gateway_authorization_id)
            .first()
        )

    @staticmethod
    def find_by_reference(reference: str, for_update: bool = False) -> Authorization | None:
        """
        Find by merchant reference, falling back to TransactionRecord
        correlation for references the authorization does not store
        (checkout ids such as "AUTH_<uuid>").
        """
        authorization = (
            _queryset(Authorization, for_update).filter(merchant_reference=reference).first()
        )
        if authorization is not None:
            return authorization
        owner_id = _owner_id_for_reference(Authorization, reference)
        if owner_id is None:
            return None
        return _queryset(Authorization, for_update).filter(pk=owner_id).first()

    @staticmethod
    def reference_in_use(reference: str) -> bool:
        return Authorization.objects.filter(merchant_reference=reference).exists()

    @staticmethod
    def list_active_expiring_before(moment: datetime, limit: int) -> list[Authorization]:
        """Active authorizations whose validity ended before `moment`, oldest first."""
        return list(
            Authorization.objects.filter(
                status=AuthorizationStatus.ACTIVE,
                validity_date__lt=moment,
            ).order_by("validity_date")[:limit]
        )

    @staticmethod
    def list_active(
        customer_email: str | None = None,
        customer_phone: str | None = None,
    ) -> QuerySet[Authorization]:
        queryset = Authorization.objects.filter(
            status=AuthorizationStatus.ACTIVE,
            validity_date__gt=timezone.now(),
        )
        if customer_email:
            queryset = queryset.filter(customer_email=customer_email)
        if customer_phone:
            queryset = queryset.filter(customer_phone=customer_phone)
        return queryset.order_by("validity_date")

    @staticmethod
    def list_expiring_within(days: int = 30) -> QuerySet[Authorization]:
        """Active authorizations whose validity ends in the next `days` days."""
        now = timezone.now()
        return Authorization.objects.filter(
            status=AuthorizationStatus.ACTIVE,
            validity_date__gt=now,
            validity_date__lte=now + timedelta(days=days),
        ).order_by("validity_date")

    @staticmethod
    def save(authorization: Authorization) -> Authorization:
        authorization.save()
        return authorization


class ChargeRepository:
    """Named queries over Charge."""

    @staticmethod
    def find(pk: UUID | str, for_update: bool = False) -> Charge:
        """
        Raises:
            ChargeNotFoundError: No charge with this id
        """
        charge = _queryset(Charge, for_update).filter(pk=pk).first()
        if charge is None:
            raise ChargeNotFoundError(
                f"Charge {pk} not found",
                details={"charge_id": str(pk)},
            )
        return charge

    @staticmethod
    def find_by_transaction_id(
        gateway_transaction_id: str, for_update: bool = False
    ) -> Charge | None:
        return (
            _queryset(Charge, for_update)
            .filter(gateway_transaction_id=gateway_transaction_id)
            .first()
        )

    @staticmethod
    def find_by_reference(reference: str, for_update: bool = False) -> Charge | None:
        charge = _queryset(Charge, for_update).filter(merchant_reference=reference).first()
        if charge is not None:
            return charge
        owner_id = _owner_id_for_reference(Charge, reference)
        if owner_id is None:
            return None
        return _queryset(Charge, for_update).filter(pk=owner_id).first()

    @staticmethod
    def sum_settled(authorization: Authorization) -> Decimal:
        """Total of charges that settled successfully (refunded ones included)."""
        return _sum_amounts(
            Charge.objects.filter(authorization=authorization, status__in=SETTLED_SUCCESS_STATES)
        )

    @staticmethod
    def sum_pending(authorization: Authorization) -> Decimal:
        """Total of charges still waiting for a gateway answer."""
        return _sum_amounts(
            Charge.objects.filter(authorization=authorization, status=ChargeStatus.PENDING)
        )

    @staticmethod
    def list_retry_candidates(
        max_retries: int,
        retry_delay: timedelta,
        limit: int,
        now: datetime | None = None,
    ) -> list[Charge]:
        """
        Failed root charges eligible for another attempt.

        A candidate has retries left, is out of its cooldown window,
        belongs to an active authorization that is still valid, and has
        no attempt that is pending or succeeded.
        """
        now = now or timezone.now()
        return list(
            Charge.objects.filter(
                status=ChargeStatus.FAILED,
                parent__isnull=True,
                retry_count__lt=max_retries,
                authorization__status=AuthorizationStatus.ACTIVE,
                authorization__validity_date__gt=now,
            )
            .filter(Q(last_retry_at__isnull=True) | Q(last_retry_at__lte=now - retry_delay))
            .exclude(
                attempts__status__in=[ChargeStatus.PENDING, *SETTLED_SUCCESS_STATES],
            )
            .select_related("authorization")
            .order_by("created_at")[:limit]
        )

    @staticmethod
    def save(charge: Charge) -> Charge:
        charge.save()
        return charge


class TransactionRecordRepository:
    """Named queries over TransactionRecord."""

    @staticmethod
    def for_owner(owner: Model) -> QuerySet[TransactionRecord]:
        return TransactionRecord.objects.filter(
            content_type=ContentType.objects.get_for_model(owner),
            object_id=owner.pk,
        ).order_by("created_at")

    @staticmethod
    def list_purgeable(older_than: datetime) -> QuerySet[TransactionRecord]:
        """Completed successful/cancelled records created before `older_than`."""
        return TransactionRecord.objects.filter(
            status__in=[TransactionStatus.SUCCESS, TransactionStatus.CANCELLED],
            created_at__lt=older_than,
        )
