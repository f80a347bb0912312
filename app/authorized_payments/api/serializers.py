"""
DRF serializers for the authorized payments API.

Read serializers expose model state; input serializers only shape the
request. Amount and phone validation stays in the service layer so the
API and direct callers share one set of rules.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from authorized_payments.ledger import AmountLedger
from authorized_payments.models import Authorization, Charge
from authorized_payments.validators import AuthorizationRequest


class AuthorizationSerializer(serializers.ModelSerializer):
    """
    Authorization with its computed remaining amount.

    remaining_amount is max_amount minus successful charges; pending
    charges are not subtracted.
    """

    remaining_amount = serializers.SerializerMethodField()

    class Meta:
        model = Authorization
        fields = [
            "id",
            "gateway_authorization_id",
            "merchant_reference",
            "customer_phone",
            "customer_email",
            "max_amount",
            "remaining_amount",
            "currency",
            "validity_date",
            "description",
            "status",
            "metadata",
            "activated_at",
            "cancelled_at",
            "expired_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_remaining_amount(self, obj: Authorization) -> Decimal:
        return AmountLedger.remaining(obj)


class AuthorizationCreateSerializer(serializers.Serializer):
    """Input for POST /authorizations/."""

    customer_phone = serializers.CharField(max_length=32)
    customer_email = serializers.CharField(max_length=320)
    max_amount = serializers.CharField(
        max_length=20,
        help_text="Decimal string, e.g. \"100.00\"",
    )
    description = serializers.CharField(max_length=500)
    validity_date = serializers.DateTimeField(required=False)
    merchant_reference = serializers.CharField(max_length=100, required=False)
    currency = serializers.CharField(max_length=3, required=False)
    metadata = serializers.DictField(required=False)

    def to_request(self) -> AuthorizationRequest:
        data = self.validated_data
        return AuthorizationRequest(
            customer_phone=data["customer_phone"],
            customer_email=data["customer_email"],
            max_amount=data["max_amount"],
            description=data["description"],
            validity_date=data.get("validity_date"),
            merchant_reference=data.get("merchant_reference"),
            currency=data.get("currency"),
            metadata=data.get("metadata", {}),
        )


class ChargeSerializer(serializers.ModelSerializer):
    """Charge attempt as stored."""

    authorization_id = serializers.UUIDField(read_only=True)
    parent_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Charge
        fields = [
            "id",
            "authorization_id",
            "parent_id",
            "gateway_transaction_id",
            "merchant_reference",
            "amount",
            "currency",
            "description",
            "status",
            "charged_at",
            "settled_at",
            "error_message",
            "retry_count",
            "last_retry_at",
            "refunded_amount",
            "refunded_at",
            "created_at",
        ]
        read_only_fields = fields


class ChargeCreateSerializer(serializers.Serializer):
    """Input for POST /authorizations/{id}/charge/."""

    amount = serializers.CharField(max_length=20)
    description = serializers.CharField(max_length=500, required=False)


class RefundSerializer(serializers.Serializer):
    """Input for POST /charges/{id}/refund/. Omit amount for a full refund."""

    amount = serializers.CharField(max_length=20, required=False)


class ErrorSerializer(serializers.Serializer):
    """Failure body returned by every action."""

    error = serializers.CharField()
    error_code = serializers.CharField()
    details = serializers.DictField(required=False)
