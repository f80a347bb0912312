"""
Input validation for authorization requests and amounts.

Every failure raises core ValidationError (or InvalidAmountError) with
the offending field in details["field"].

Usage:
    request = AuthorizationRequest(
        customer_phone="+351 912 345 678",
        customer_email="ana@example.com",
        max_amount="100.00",
        description="Monthly subscription",
    )
    cleaned = validate_authorization_request(request, config)
    cleaned.customer_phone  # "351912345678"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.utils import timezone

from core.exceptions import ValidationError

from authorized_payments.exceptions import InvalidAmountError

if TYPE_CHECKING:
    from typing import Any

    from authorized_payments.config import PaymentsConfig


CENT = Decimal("0.01")
EMAIL_MAX_LENGTH = 320
MERCHANT_REFERENCE_MAX_LENGTH = 50

PHONE_SEPARATORS = re.compile(r"[+\s.\-]")
MERCHANT_REFERENCE_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class AuthorizationRequest:
    """Data needed to request a new authorization."""

    customer_phone: str
    customer_email: str
    max_amount: Decimal | str | int
    description: str
    validity_date: datetime | None = None
    merchant_reference: str | None = None
    currency: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _invalid(field_name: str, message: str, error_code: str = "VALIDATION_ERROR") -> ValidationError:
    return ValidationError(message, error_code=error_code, details={"field": field_name})


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert `value` to a positive Decimal with at most two fractional digits.

    Floats are converted through str() so 29.99 stays 29.99.

    Raises:
        InvalidAmountError: Not a number, not positive, or too precise
    """
    if isinstance(value, bool):
        value = None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        amount = None
    if amount is None or not amount.is_finite():
        raise InvalidAmountError(
            f"{field_name} must be a decimal number",
            details={"field": field_name, "value": str(value)},
        )
    if amount <= 0:
        raise InvalidAmountError(
            f"{field_name} must be greater than 0",
            details={"field": field_name, "value": str(amount)},
        )
    if amount != amount.quantize(CENT):
        raise InvalidAmountError(
            f"{field_name} cannot have more than 2 decimal places",
            details={"field": field_name, "value": str(amount)},
        )
    return amount.quantize(CENT)


def normalize_phone(phone: str, country_code: str) -> str:
    """
    Strip "+", spaces, hyphens and dots, then require the country code
    followed by exactly nine digits.

    Raises:
        ValidationError: field customer_phone
    """
    normalized = PHONE_SEPARATORS.sub("", phone or "")
    if not re.fullmatch(rf"{re.escape(country_code)}[0-9]{{9}}", normalized):
        raise _invalid(
            "customer_phone",
            f"Phone number must be {country_code} followed by 9 digits",
            error_code="INVALID_PHONE",
        )
    return normalized


def validate_customer_email(email: str) -> str:
    email = (email or "").strip()
    if len(email) > EMAIL_MAX_LENGTH:
        raise _invalid("customer_email", "Email address is too long", "INVALID_EMAIL")
    try:
        validate_email(email)
    except DjangoValidationError:
        raise _invalid("customer_email", "Invalid email address", "INVALID_EMAIL") from None
    return email


def validate_description(description: str, max_length: int) -> str:
    description = (description or "").strip()
    if not description:
        raise _invalid("description", "Description is required")
    if len(description) > max_length:
        raise _invalid(
            "description",
            f"Description cannot exceed {max_length} characters",
        )
    return description


def validate_merchant_reference(reference: str | None) -> str | None:
    if reference is None or reference == "":
        return None
    if len(reference) > MERCHANT_REFERENCE_MAX_LENGTH:
        raise _invalid(
            "merchant_reference",
            f"Merchant reference cannot exceed {MERCHANT_REFERENCE_MAX_LENGTH} characters",
        )
    if not MERCHANT_REFERENCE_PATTERN.fullmatch(reference):
        raise _invalid(
            "merchant_reference",
            "Merchant reference may only contain letters, digits, '_' and '-'",
        )
    return reference


def validate_authorization_request(
    request: AuthorizationRequest,
    config: PaymentsConfig,
) -> AuthorizationRequest:
    """
    Validate and normalize an authorization request.

    Returns:
        A copy with normalized phone, Decimal amount, currency and
        validity date filled in

    Raises:
        ValidationError: The first invalid field, named in details["field"]
    """
    phone = normalize_phone(request.customer_phone, config.phone_country_code)
    email = validate_customer_email(request.customer_email)

    try:
        amount = parse_amount(request.max_amount, field_name="max_amount")
    except InvalidAmountError as exc:
        raise _invalid("max_amount", exc.message, "INVALID_AMOUNT") from None
    if amount < config.min_amount or amount > config.max_amount:
        raise _invalid(
            "max_amount",
            f"Amount must be between {config.min_amount} and {config.max_amount}",
            "INVALID_AMOUNT",
        )

    description = validate_description(request.description, config.description_max_length)
    reference = validate_merchant_reference(request.merchant_reference)

    currency = (request.currency or config.currency).upper()
    if currency != config.currency:
        raise _invalid(
            "currency",
            f"Only {config.currency} is supported",
            "UNSUPPORTED_CURRENCY",
        )

    validity_date = request.validity_date or timezone.now() + config.default_validity
    if validity_date <= timezone.now():
        raise _invalid("validity_date", "Validity date must be in the future")

    return replace(
        request,
        customer_phone=phone,
        customer_email=email,
        max_amount=amount,
        description=description,
        merchant_reference=reference,
        currency=currency,
        validity_date=validity_date,
    )
