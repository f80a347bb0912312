"""
Configuration value object for authorized payments.

Everything the services need to know about the deployment is gathered
once into an immutable PaymentsConfig and passed to each service at
construction. Services never read django.conf.settings themselves.

Usage:
    from authorized_payments.config import PaymentsConfig

    config = PaymentsConfig.from_settings()
    service = ChargeService(gateway=gateway, config=config)

    # Tests build their own
    config = PaymentsConfig(max_retries=1, retry_delay=timedelta(0))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings


SANDBOX_BASE_URL = "https://spg.qly.site1.sibs.pt"
PRODUCTION_BASE_URL = "https://spg.site1.sibs.pt"


@dataclass(frozen=True)
class GatewayConfig:
    """
    Connection settings for the payment gateway.

    Attributes:
        base_url: Gateway root URL (sandbox or production)
        terminal_id: Merchant terminal identifier
        auth_token: Bearer token for merchant calls
        client_id: Value for the X-IBM-Client-Id header
        channel: Merchant channel sent with checkouts
        timeout_seconds: Upper bound for a single HTTP call
        webhook_secret: HMAC secret for webhook signatures (empty = skip)
    """

    base_url: str = SANDBOX_BASE_URL
    terminal_id: str = ""
    auth_token: str = ""
    client_id: str = ""
    channel: str = "web"
    timeout_seconds: float = 30.0
    webhook_secret: str = ""


@dataclass(frozen=True)
class PaymentsConfig:
    """
    Business rules for authorizations, charges and sweeps.

    Attributes:
        currency: The single supported ISO 4217 currency
        min_amount / max_amount: Bounds for authorization maximum amounts
        default_validity: Validity used when creation omits a date
        max_retries: Retry attempts per failed logical charge
        retry_delay: Cooldown between retry attempts
        description_max_length: Maximum description length
        phone_country_code: Recognized customer phone country prefix
        expiry_batch_size / retry_batch_size: Sweep batch bounds
        cleanup_days: Age after which settled TransactionRecords are purged
    """

    currency: str = "EUR"
    min_amount: Decimal = Decimal("0.01")
    max_amount: Decimal = Decimal("10000.00")
    default_validity: timedelta = timedelta(days=365)
    max_retries: int = 3
    retry_delay: timedelta = timedelta(minutes=60)
    description_max_length: int = 200
    phone_country_code: str = "351"
    expiry_batch_size: int = 100
    retry_batch_size: int = 50
    cleanup_days: int = 90
    gateway: GatewayConfig = field(default_factory=GatewayConfig)

    @classmethod
    def from_settings(cls) -> PaymentsConfig:
        """Build the configuration from Django settings."""
        environment = getattr(settings, "GATEWAY_ENVIRONMENT", "sandbox")
        default_url = (
            PRODUCTION_BASE_URL if environment == "production" else SANDBOX_BASE_URL
        )
        gateway = GatewayConfig(
            base_url=getattr(settings, "GATEWAY_BASE_URL", "") or default_url,
            terminal_id=getattr(settings, "GATEWAY_TERMINAL_ID", ""),
            auth_token=getattr(settings, "GATEWAY_AUTH_TOKEN", ""),
            client_id=getattr(settings, "GATEWAY_CLIENT_ID", ""),
            channel=getattr(settings, "GATEWAY_CHANNEL", "web"),
            timeout_seconds=float(getattr(settings, "GATEWAY_TIMEOUT_SECONDS", 30)),
            webhook_secret=getattr(settings, "GATEWAY_WEBHOOK_SECRET", ""),
        )
        return cls(
            currency=getattr(settings, "AUTHORIZED_PAYMENTS_CURRENCY", "EUR"),
            min_amount=Decimal(
                str(getattr(settings, "AUTHORIZED_PAYMENTS_MIN_AMOUNT", "0.01"))
            ),
            max_amount=Decimal(
                str(getattr(settings, "AUTHORIZED_PAYMENTS_MAX_AMOUNT", "10000.00"))
            ),
            default_validity=timedelta(
                days=getattr(settings, "AUTHORIZED_PAYMENTS_DEFAULT_VALIDITY_DAYS", 365)
            ),
            max_retries=getattr(settings, "AUTHORIZED_PAYMENTS_MAX_RETRIES", 3),
            retry_delay=timedelta(
                minutes=getattr(settings, "AUTHORIZED_PAYMENTS_RETRY_DELAY_MINUTES", 60)
            ),
            description_max_length=getattr(
                settings, "AUTHORIZED_PAYMENTS_DESCRIPTION_MAX_LENGTH", 200
            ),
            phone_country_code=str(
                getattr(settings, "AUTHORIZED_PAYMENTS_PHONE_COUNTRY_CODE", "351")
            ),
            expiry_batch_size=getattr(settings, "AUTHORIZED_PAYMENTS_EXPIRY_BATCH_SIZE", 100),
            retry_batch_size=getattr(settings, "AUTHORIZED_PAYMENTS_RETRY_BATCH_SIZE", 50),
            cleanup_days=getattr(settings, "AUTHORIZED_PAYMENTS_CLEANUP_DAYS", 90),
            gateway=gateway,
        )
