"""
Pytest fixtures for authorized payment tests.

The gateway is a MagicMock(spec=PaymentGateway) answering every call
with a successful result; tests override return_value / side_effect for
the path they exercise. Services share one RecordingEventSink so tests
can assert on emitted domain events.

Usage:
    def test_charge(charge_service, active_authorization, gateway):
        gateway.charge.return_value = PaymentResult(
            transaction_id="TX-1", payment_status="Declined"
        )
        result = charge_service.initiate(active_authorization, "10.00")
        assert result.error_code == "CHARGE_DECLINED"
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from authorized_payments.adapters.gateway import (
    AuthorizationRequestResult,
    CheckoutResult,
    PaymentGateway,
    PaymentResult,
    StatusResult,
)
from authorized_payments.config import GatewayConfig, PaymentsConfig
from authorized_payments.events import RecordingEventSink
from authorized_payments.services import (
    AuthorizationService,
    ChargeService,
    ReconciliationService,
)
from authorized_payments.state_machines import ChargeStatus
from authorized_payments.tests.factories import (
    AuthorizationFactory,
    ChargeFactory,
    successful_charge_answer,
)


# =============================================================================
# Configuration & Collaborators
# =============================================================================


@pytest.fixture
def payments_config():
    """Business configuration with a one hour retry cooldown."""
    return PaymentsConfig(
        max_retries=3,
        retry_delay=timedelta(minutes=60),
        gateway=GatewayConfig(
            base_url="https://gateway.test",
            terminal_id="T-1000",
            auth_token="token",
            client_id="client",
        ),
    )


@pytest.fixture
def events():
    """In-memory event sink shared by all services of a test."""
    return RecordingEventSink()


@pytest.fixture
def gateway(mocker):
    """PaymentGateway mock answering every operation successfully."""
    mock_gateway = mocker.MagicMock(spec=PaymentGateway)
    mock_gateway.create_checkout.return_value = CheckoutResult(
        transaction_id="TX-CHECKOUT-1",
        transaction_signature="SIGNATURE-1",
        raw_response={"transactionID": "TX-CHECKOUT-1"},
    )
    mock_gateway.create_authorization.return_value = AuthorizationRequestResult(
        status="Pending",
        return_code="000",
        raw_response={"status": "Pending"},
    )
    mock_gateway.charge.side_effect = successful_charge_answer
    mock_gateway.refund.return_value = PaymentResult(
        transaction_id="RF-1",
        payment_status="Success",
        return_code="000",
        raw_response={"paymentStatus": "Success"},
    )
    mock_gateway.cancel_authorization.return_value = None
    mock_gateway.get_authorization_status.return_value = StatusResult(status="Pending")
    mock_gateway.get_payment_status.return_value = StatusResult(status="Pending")
    return mock_gateway


@pytest.fixture
def reconciliation(gateway, payments_config, events):
    return ReconciliationService(gateway=gateway, config=payments_config, events=events)


@pytest.fixture
def authorization_service(gateway, payments_config, events, reconciliation):
    return AuthorizationService(
        gateway=gateway,
        config=payments_config,
        events=events,
        reconciliation=reconciliation,
    )


@pytest.fixture
def charge_service(gateway, payments_config, events, reconciliation):
    return ChargeService(
        gateway=gateway,
        config=payments_config,
        events=events,
        reconciliation=reconciliation,
    )


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Locks are always granted and released.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch(
        "authorized_payments.locks.get_redis_connection",
        return_value=mock_client,
    )
    return mock_client


# =============================================================================
# Authorization Fixtures
# =============================================================================


@pytest.fixture
def pending_authorization(db):
    """Authorization waiting for customer approval."""
    return AuthorizationFactory()


@pytest.fixture
def active_authorization(db):
    """Approved authorization for 100.00 EUR, valid for a year."""
    return AuthorizationFactory(active=True, max_amount=Decimal("100.00"))


@pytest.fixture
def lapsed_authorization(db):
    """ACTIVE authorization whose validity date has already passed."""
    return AuthorizationFactory(
        active=True,
        validity_date=timezone.now() - timedelta(hours=1),
    )


# =============================================================================
# Charge Fixtures
# =============================================================================


@pytest.fixture
def settled_charge(db, active_authorization):
    """Successful 40.00 charge against the active authorization."""
    return ChargeFactory(
        authorization=active_authorization,
        amount=Decimal("40.00"),
        settled=True,
    )


@pytest.fixture
def failed_charge(db, active_authorization):
    """Failed root charge, never retried."""
    return ChargeFactory(
        authorization=active_authorization,
        amount=Decimal("25.00"),
        failed=True,
    )


@pytest.fixture
def pending_charge(db, active_authorization):
    """Charge waiting for its gateway answer."""
    return ChargeFactory(
        authorization=active_authorization,
        amount=Decimal("15.00"),
        gateway_transaction_id="TX-PENDING-1",
        status=ChargeStatus.PENDING,
    )
