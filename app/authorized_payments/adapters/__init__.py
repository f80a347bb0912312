"""
Gateway adapters.

Services talk to the PaymentGateway protocol; MBWayGatewayAdapter is the
HTTP implementation. get_gateway() returns the configured adapter; one
adapter (and so one httpx connection pool) is shared per configuration
within a process. close_gateways() releases them.

Usage:
    from authorized_payments.adapters import get_gateway

    gateway = get_gateway()
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from authorized_payments.adapters.gateway import (
    AUTHORIZATION_APPROVED_STATUSES,
    AUTHORIZATION_CANCELLED_STATUSES,
    CHARGE_FAILURE_STATUSES,
    CHARGE_SUCCESS_STATUSES,
    REFUND_SUCCESS_STATUSES,
    AuthorizationRequestResult,
    CheckoutResult,
    PaymentGateway,
    PaymentResult,
    StatusResult,
)
from authorized_payments.adapters.mbway_adapter import (
    MBWayGatewayAdapter,
    mask_phone,
    redact_headers,
    sanitize_payload,
)

if TYPE_CHECKING:
    from authorized_payments.config import GatewayConfig


_adapters: dict[GatewayConfig, MBWayGatewayAdapter] = {}
_adapters_lock = threading.Lock()


def get_gateway(config: GatewayConfig | None = None) -> PaymentGateway:
    """Shared HTTP gateway adapter for `config` (or Django settings)."""
    if config is None:
        from authorized_payments.config import PaymentsConfig

        config = PaymentsConfig.from_settings().gateway
    with _adapters_lock:
        adapter = _adapters.get(config)
        if adapter is None:
            adapter = _adapters[config] = MBWayGatewayAdapter(config)
    return adapter


def close_gateways() -> None:
    """Close every shared adapter; the next get_gateway() builds a fresh one."""
    with _adapters_lock:
        adapters = list(_adapters.values())
        _adapters.clear()
    for adapter in adapters:
        adapter.close()


__all__ = [
    "AUTHORIZATION_APPROVED_STATUSES",
    "AUTHORIZATION_CANCELLED_STATUSES",
    "CHARGE_FAILURE_STATUSES",
    "CHARGE_SUCCESS_STATUSES",
    "REFUND_SUCCESS_STATUSES",
    "AuthorizationRequestResult",
    "CheckoutResult",
    "MBWayGatewayAdapter",
    "PaymentGateway",
    "PaymentResult",
    "StatusResult",
    "close_gateways",
    "get_gateway",
    "mask_phone",
    "redact_headers",
    "sanitize_payload",
]
