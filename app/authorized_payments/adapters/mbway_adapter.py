"""
MB WAY (SIBS gateway) HTTP adapter.

All gateway calls go through MBWayGatewayAdapter so every request gets
the same headers, timeout, timing logs and error translation.

Features:
- Bounded timeout on every call (GATEWAY_TIMEOUT_SECONDS)
- HTTP and transport failures translated to GatewayError subclasses
- Structured logging with timing metrics
- Customer phones masked and Authorization headers redacted in logs
  and in the request snapshots stored on TransactionRecords

Usage:
    from authorized_payments.adapters import MBWayGatewayAdapter

    gateway = MBWayGatewayAdapter(config.gateway)
    checkout = gateway.create_checkout(
        merchant_reference="AUTH_1f0c...",
        amount=Decimal("100.00"),
        currency="EUR",
        description="Monthly subscription",
        validity_date=validity,
    )
    result = gateway.create_authorization(
        checkout.transaction_id,
        checkout.transaction_signature,
        customer_phone="351912345678",
        validity_date=validity,
        description="Monthly subscription",
    )

Tests pass `transport=httpx.MockTransport(handler)` to avoid the network.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, NoReturn

import httpx
from django.utils import timezone

from authorized_payments.adapters.gateway import (
    AuthorizationRequestResult,
    CheckoutResult,
    PaymentResult,
    StatusResult,
)
from authorized_payments.exceptions import (
    GatewayAuthenticationError,
    GatewayError,
    GatewayRejectedError,
    GatewayResponseError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)

if TYPE_CHECKING:
    from typing import Any

    from authorized_payments.config import GatewayConfig


PHONE_VISIBLE_CHARS = 6
REDACTED = "[REDACTED]"


# =============================================================================
# Redaction Helpers
# =============================================================================


def mask_phone(phone: str | None) -> str | None:
    """Keep the first six characters of a phone number, mask the rest."""
    if not phone:
        return phone
    return phone[:PHONE_VISIBLE_CHARS] + "*" * max(len(phone) - PHONE_VISIBLE_CHARS, 0)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        name: REDACTED if name.lower() == "authorization" else value
        for name, value in headers.items()
    }


def sanitize_payload(payload: Any) -> Any:
    """Copy of a request/response body with customer phones masked."""
    if isinstance(payload, dict):
        return {
            key: mask_phone(value)
            if key in ("customerPhone", "customer_phone") and isinstance(value, str)
            else sanitize_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item) for item in payload]
    return payload


def format_amount(amount: Decimal) -> float:
    return float(amount.quantize(Decimal("0.01")))


# =============================================================================
# MB WAY Adapter
# =============================================================================


class MBWayGatewayAdapter:
    """
    PaymentGateway implementation for the SIBS MB WAY API.

    One instance holds one httpx.Client; it is safe to share between
    requests of a single process. Call close() (or use it as a context
    manager) to release connections.
    """

    CHECKOUT_PATH = "/api/v2/payments"
    AUTHORIZE_PATH = "/api/v2/payments/{transaction_id}/mbway-id/authorize"
    CHARGE_PATH = "/api/v2/authorized-payments/{authorization_id}/charge"
    REFUND_PATH = "/api/v2/payments/{transaction_id}/refund"
    AUTHORIZATION_PATH = "/api/v2/authorized-payments/{authorization_id}"
    PAYMENT_STATUS_PATH = "/api/v2/payments/{transaction_id}/status"

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "X-IBM-Client-Id": config.client_id,
            },
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> MBWayGatewayAdapter:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # Operations
    # =========================================================================

    def create_checkout(
        self,
        merchant_reference: str,
        amount: Decimal,
        currency: str,
        description: str,
        validity_date: datetime,
    ) -> CheckoutResult:
        """
        Open a checkout session for an authorization request.

        Raises:
            GatewayResponseError: transactionID or transactionSignature missing
        """
        body = {
            "merchant": {
                "terminalId": self.config.terminal_id,
                "channel": self.config.channel,
                "merchantTransactionId": merchant_reference,
            },
            "transaction": {
                "transactionTimestamp": timezone.now().isoformat(),
                "description": description,
                "moto": False,
                "paymentType": "AUTH",
                "amount": {"value": format_amount(amount), "currency": currency},
                "paymentMethod": ["MBWAY"],
            },
            "recurringTransaction": self._recurring_block(validity_date, description),
        }
        data = self._request(
            "POST",
            self.CHECKOUT_PATH,
            operation="create_checkout",
            json_body=body,
            log_context={"merchant_reference": merchant_reference},
        )
        transaction_id = data.get("transactionID")
        signature = data.get("transactionSignature")
        if not transaction_id or not signature:
            raise GatewayResponseError(
                "Invalid checkout response from gateway",
                details={"missing": [k for k in ("transactionID", "transactionSignature") if not data.get(k)]},
            )
        return CheckoutResult(
            transaction_id=transaction_id,
            transaction_signature=signature,
            raw_response=data,
        )

    def create_authorization(
        self,
        transaction_id: str,
        transaction_signature: str,
        customer_phone: str,
        validity_date: datetime,
        description: str,
    ) -> AuthorizationRequestResult:
        body = {
            "customerPhone": customer_phone,
            "recurringTransaction": self._recurring_block(validity_date, description),
        }
        data = self._request(
            "POST",
            self.AUTHORIZE_PATH.format(transaction_id=transaction_id),
            operation="create_authorization",
            json_body=body,
            signature=transaction_signature,
            log_context={
                "transaction_id": transaction_id,
                "customer_phone": mask_phone(customer_phone),
            },
        )
        return_code, return_message = self._return_status(data)
        return AuthorizationRequestResult(
            status=str(data.get("status") or data.get("paymentStatus") or "Pending"),
            authorization_id=data.get("authorizationId"),
            return_code=return_code,
            return_message=return_message,
            raw_response=data,
        )

    def charge(
        self,
        authorization_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        merchant_reference: str,
    ) -> PaymentResult:
        body = {
            "amount": {"value": format_amount(amount), "currency": currency},
            "description": description,
            "merchantTransactionId": merchant_reference,
        }
        data = self._request(
            "POST",
            self.CHARGE_PATH.format(authorization_id=authorization_id),
            operation="charge",
            json_body=body,
            log_context={
                "authorization_id": authorization_id,
                "merchant_reference": merchant_reference,
                "amount": str(amount),
            },
        )
        return self._payment_result(data)

    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> PaymentResult:
        body = {
            "amount": {"value": format_amount(amount), "currency": currency},
            "description": description,
        }
        data = self._request(
            "POST",
            self.REFUND_PATH.format(transaction_id=transaction_id),
            operation="refund",
            json_body=body,
            log_context={"transaction_id": transaction_id, "amount": str(amount)},
        )
        return self._payment_result(data)

    def cancel_authorization(self, authorization_id: str) -> None:
        self._request(
            "DELETE",
            self.AUTHORIZATION_PATH.format(authorization_id=authorization_id),
            operation="cancel_authorization",
            log_context={"authorization_id": authorization_id},
        )

    def get_authorization_status(self, authorization_id: str) -> StatusResult:
        data = self._request(
            "GET",
            self.AUTHORIZATION_PATH.format(authorization_id=authorization_id),
            operation="get_authorization_status",
            log_context={"authorization_id": authorization_id},
        )
        return StatusResult(
            status=str(data.get("status") or "unknown"),
            authorization_id=data.get("authorizationId") or authorization_id,
            raw_response=data,
        )

    def get_payment_status(self, transaction_id: str) -> StatusResult:
        data = self._request(
            "GET",
            self.PAYMENT_STATUS_PATH.format(transaction_id=transaction_id),
            operation="get_payment_status",
            log_context={"transaction_id": transaction_id},
        )
        return StatusResult(
            status=str(data.get("paymentStatus") or data.get("status") or "Unknown"),
            transaction_id=data.get("transactionID") or transaction_id,
            raw_response=data,
        )

    # =========================================================================
    # HTTP Plumbing
    # =========================================================================

    @staticmethod
    def _recurring_block(validity_date: datetime, description: str) -> dict[str, str]:
        return {
            "validityDate": validity_date.isoformat(),
            "amountQualifier": "DEFAULT",
            "description": description,
        }

    @staticmethod
    def _return_status(data: dict[str, Any]) -> tuple[str | None, str | None]:
        return_status = data.get("returnStatus") or {}
        if not isinstance(return_status, dict):
            return None, None
        message = return_status.get("statusDescription") or return_status.get("statusMsg")
        return return_status.get("statusCode"), message

    def _payment_result(self, data: dict[str, Any]) -> PaymentResult:
        return_code, return_message = self._return_status(data)
        return PaymentResult(
            transaction_id=data.get("transactionID"),
            payment_status=str(data.get("paymentStatus") or "Unknown"),
            return_code=return_code,
            return_message=return_message,
            raw_response=data,
        )

    def _headers(self, signature: str | None) -> dict[str, str]:
        if signature:
            return {"Authorization": f"Digest {signature}"}
        return {"Authorization": f"Bearer {self.config.auth_token}"}

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json_body: dict[str, Any] | None = None,
        signature: str | None = None,
        log_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        logger = self.get_logger()
        headers = self._headers(signature)
        log_context = {
            "operation": operation,
            "method": method,
            "path": path,
            **(log_context or {}),
        }

        start_time = time.monotonic()
        logger.info(
            "Starting gateway operation",
            extra={
                **log_context,
                "headers": redact_headers(headers),
                "request": sanitize_payload(json_body),
            },
        )

        try:
            response = self._client.request(method, path, json=json_body, headers=headers)
        except httpx.TimeoutException as e:
            self._raise_transport_error(e, log_context, start_time, timed_out=True)
        except httpx.TransportError as e:
            self._raise_transport_error(e, log_context, start_time, timed_out=False)
        except httpx.HTTPError as e:
            # Decoding failures, redirect loops
            logger.error(
                "Gateway request failed",
                extra={**log_context, "error": str(e), "error_type": type(e).__name__},
            )
            raise GatewayResponseError(
                f"Gateway request failed: {e}",
                details={"operation": operation},
            ) from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code >= 400:
            self._raise_http_error(response, log_context, duration_ms)

        data = self._decode(response, log_context)
        logger.info(
            "Gateway operation completed",
            extra={
                **log_context,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return data

    def _decode(self, response: httpx.Response, log_context: dict[str, Any]) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            self.get_logger().error(
                "Invalid JSON response from gateway",
                extra={**log_context, "status_code": response.status_code},
            )
            raise GatewayResponseError(
                "Invalid JSON response from gateway",
                status_code=response.status_code,
                details={"operation": log_context["operation"]},
            ) from None
        if not isinstance(data, dict):
            raise GatewayResponseError(
                "Unexpected response shape from gateway",
                status_code=response.status_code,
                details={"operation": log_context["operation"]},
            )
        return data

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _raise_transport_error(
        self,
        error: httpx.TransportError,
        log_context: dict[str, Any],
        start_time: float,
        timed_out: bool,
    ) -> NoReturn:
        logger = self.get_logger()
        log_context = {
            **log_context,
            "duration_ms": (time.monotonic() - start_time) * 1000,
            "error": str(error),
        }
        if timed_out:
            logger.warning("Gateway request timed out", extra=log_context)
            raise GatewayTimeoutError(
                f"Gateway request timed out after {self.config.timeout_seconds}s",
                details={"operation": log_context["operation"]},
            ) from error
        logger.warning("Gateway connection failed", extra=log_context)
        raise GatewayUnavailableError(
            "Gateway is unreachable",
            details={"operation": log_context["operation"]},
        ) from error

    def _raise_http_error(
        self,
        response: httpx.Response,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> NoReturn:
        """
        Translate an HTTP error status to a GatewayError.

        Raises:
            GatewayUnavailableError: 5xx or 429
            GatewayAuthenticationError: 401 or 403
            GatewayRejectedError: any other 4xx
        """
        logger = self.get_logger()
        status_code = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        return_code, return_message = self._return_status(body if isinstance(body, dict) else {})
        log_context = {
            **log_context,
            "status_code": status_code,
            "return_code": return_code,
            "duration_ms": duration_ms,
        }
        details = {"operation": log_context["operation"]}

        error_class: type[GatewayError]
        if status_code >= 500 or status_code == 429:
            logger.warning("Gateway unavailable", extra=log_context)
            error_class = GatewayUnavailableError
        elif status_code in (401, 403):
            logger.error("Gateway authentication failed", extra=log_context)
            error_class = GatewayAuthenticationError
        else:
            logger.warning("Gateway rejected request", extra=log_context)
            error_class = GatewayRejectedError

        raise error_class(
            return_message or f"Gateway request failed with HTTP {status_code}",
            status_code=status_code,
            return_code=return_code,
            details=details,
        )
