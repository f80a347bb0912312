"""
Amount ledger: how much of an authorization has been spent.

Pure queries over current Authorization/Charge rows, recomputed on every
call and never cached. To make a headroom check stick, call it inside the
transaction that holds the authorization row lock (select_for_update) and
create the pending Charge in that same transaction.

Definitions:
    consumed  = sum of charges that settled successfully
    remaining = max_amount - consumed
    reserved  = sum of charges still pending at the gateway
    headroom  = remaining - reserved

Refunds do not give headroom back: a refunded charge still counts as
consumed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.utils import timezone

from authorized_payments.models import Authorization
from authorized_payments.repositories import CENT, ChargeRepository


class AmountLedger:
    """Spending queries for a single authorization."""

    @staticmethod
    def consumed(authorization: Authorization) -> Decimal:
        return ChargeRepository.sum_settled(authorization)

    @staticmethod
    def remaining(authorization: Authorization) -> Decimal:
        """max_amount minus the total of successful charges."""
        return (authorization.max_amount - ChargeRepository.sum_settled(authorization)).quantize(CENT)

    @staticmethod
    def reserved(authorization: Authorization) -> Decimal:
        return ChargeRepository.sum_pending(authorization)

    @classmethod
    def headroom(cls, authorization: Authorization) -> Decimal:
        """Amount a new charge may still take, with in-flight charges set aside."""
        return cls.remaining(authorization) - cls.reserved(authorization)

    @classmethod
    def can_charge(
        cls,
        authorization: Authorization,
        amount: Decimal,
        now: datetime | None = None,
    ) -> bool:
        """
        Whether `amount` can be drawn right now.

        True iff the authorization is active, still valid, and the amount
        fits in the headroom.
        """
        return (
            authorization.is_active
            and authorization.is_valid_at(now or timezone.now())
            and amount <= cls.headroom(authorization)
        )
