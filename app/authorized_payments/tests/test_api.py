"""
Tests for the staff REST API.

Requests run as a logged-in staff user through DRF's APIClient; the
gateway factory used by the views is patched with the shared mock.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from authorized_payments.adapters.gateway import PaymentResult
from authorized_payments.exceptions import GatewayTimeoutError, GatewayUnavailableError
from authorized_payments.models import Authorization, Charge
from authorized_payments.state_machines import AuthorizationStatus, ChargeStatus
from authorized_payments.tests.factories import AuthorizationFactory, ChargeFactory


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="ops",
        email="ops@example.com",
        password="password",
        is_staff=True,
    )


@pytest.fixture
def api_client(staff_user):
    client = APIClient()
    client.force_login(staff_user)
    return client


@pytest.fixture(autouse=True)
def patched_gateway(mocker, gateway):
    mocker.patch("authorized_payments.api.views.get_gateway", return_value=gateway)
    return gateway


def authorization_payload(**overrides):
    data = {
        "customer_phone": "+351 912 345 678",
        "customer_email": "ana@example.com",
        "max_amount": "100.00",
        "description": "Monthly subscription",
    }
    data.update(overrides)
    return data


# =============================================================================
# Access
# =============================================================================


class TestAccess:
    def test_anonymous_forbidden(self, db):
        response = APIClient().get(reverse("authorized_payments:authorization-list"))

        assert response.status_code == 403

    def test_non_staff_forbidden(self, db):
        user = get_user_model().objects.create_user(username="customer", password="password")
        client = APIClient()
        client.force_login(user)

        response = client.get(reverse("authorized_payments:authorization-list"))

        assert response.status_code == 403


# =============================================================================
# Authorizations
# =============================================================================


class TestAuthorizationEndpoints:
    def test_create(self, api_client, patched_gateway):
        response = api_client.post(
            reverse("authorized_payments:authorization-list"),
            authorization_payload(merchant_reference="SUB-1"),
            format="json",
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == AuthorizationStatus.PENDING
        assert body["customer_phone"] == "351912345678"
        assert body["merchant_reference"] == "SUB-1"
        patched_gateway.create_authorization.assert_called_once()

    def test_create_invalid_phone(self, api_client):
        response = api_client.post(
            reverse("authorized_payments:authorization-list"),
            authorization_payload(customer_phone="12345"),
            format="json",
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_PHONE"
        assert response.json()["details"]["field"] == "customer_phone"
        assert not Authorization.objects.exists()

    def test_create_missing_field(self, api_client):
        payload = authorization_payload()
        del payload["customer_email"]

        response = api_client.post(
            reverse("authorized_payments:authorization-list"), payload, format="json"
        )

        assert response.status_code == 400

    def test_create_duplicate_reference(self, api_client):
        AuthorizationFactory(merchant_reference="SUB-1")

        response = api_client.post(
            reverse("authorized_payments:authorization-list"),
            authorization_payload(merchant_reference="SUB-1"),
            format="json",
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE_MERCHANT_REFERENCE"

    def test_create_gateway_timeout(self, api_client, patched_gateway):
        """A transient gateway failure is a 503 and leaves the PENDING record."""
        patched_gateway.create_authorization.side_effect = GatewayTimeoutError("timed out")

        response = api_client.post(
            reverse("authorized_payments:authorization-list"),
            authorization_payload(),
            format="json",
        )

        assert response.status_code == 503
        assert response.json()["error_code"] == "GATEWAY_TIMEOUT"
        assert Authorization.objects.get().status == AuthorizationStatus.PENDING

    def test_list_filters(self, api_client, active_authorization, pending_authorization):
        response = api_client.get(
            reverse("authorized_payments:authorization-list"),
            {"status": AuthorizationStatus.ACTIVE},
        )

        assert response.status_code == 200
        ids = [item["id"] for item in response.json()["results"]]
        assert ids == [str(active_authorization.pk)]

    def test_list_filters_email_case_insensitively(self, api_client, active_authorization):
        response = api_client.get(
            reverse("authorized_payments:authorization-list"),
            {"customer_email": active_authorization.customer_email.upper()},
        )

        assert [item["id"] for item in response.json()["results"]] == [str(active_authorization.pk)]

    def test_list_rejects_unknown_status(self, api_client):
        response = api_client.get(
            reverse("authorized_payments:authorization-list"), {"status": "WHATEVER"}
        )

        assert response.status_code == 400

    def test_retrieve_includes_remaining(self, api_client, settled_charge):
        authorization = settled_charge.authorization

        response = api_client.get(
            reverse("authorized_payments:authorization-detail", args=[authorization.pk])
        )

        assert response.status_code == 200
        assert Decimal(str(response.json()["remaining_amount"])) == Decimal("60.00")

    def test_expiring(self, api_client):
        soon = AuthorizationFactory(active=True, validity_date=timezone.now() + timedelta(days=3))
        AuthorizationFactory(active=True, validity_date=timezone.now() + timedelta(days=60))

        response = api_client.get(
            reverse("authorized_payments:authorization-expiring"), {"days": 7}
        )

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == [str(soon.pk)]

    def test_expiring_rejects_bad_days(self, api_client):
        response = api_client.get(
            reverse("authorized_payments:authorization-expiring"), {"days": "soon"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_cancel(self, api_client, active_authorization, patched_gateway):
        response = api_client.post(
            reverse("authorized_payments:authorization-cancel", args=[active_authorization.pk])
        )

        assert response.status_code == 200
        assert response.json()["status"] == AuthorizationStatus.CANCELLED
        patched_gateway.cancel_authorization.assert_called_once_with(
            active_authorization.gateway_authorization_id
        )

    def test_cancel_pending_conflicts(self, api_client, pending_authorization):
        response = api_client.post(
            reverse("authorized_payments:authorization-cancel", args=[pending_authorization.pk])
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"


# =============================================================================
# Charges
# =============================================================================


class TestChargeEndpoints:
    def test_charge(self, api_client, active_authorization):
        response = api_client.post(
            reverse("authorized_payments:authorization-charge", args=[active_authorization.pk]),
            {"amount": "25.00", "description": "June invoice"},
            format="json",
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == ChargeStatus.SUCCESS
        assert body["amount"] == "25.00"
        assert body["authorization_id"] == str(active_authorization.pk)

    def test_charge_over_limit(self, api_client, active_authorization):
        response = api_client.post(
            reverse("authorized_payments:authorization-charge", args=[active_authorization.pk]),
            {"amount": "100.01"},
            format="json",
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "AMOUNT_EXCEEDS_LIMIT"
        assert not Charge.objects.exists()

    def test_charge_invalid_amount(self, api_client, active_authorization):
        response = api_client.post(
            reverse("authorized_payments:authorization-charge", args=[active_authorization.pk]),
            {"amount": "ten"},
            format="json",
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_charge_pending_authorization(self, api_client, pending_authorization):
        response = api_client.post(
            reverse("authorized_payments:authorization-charge", args=[pending_authorization.pk]),
            {"amount": "10.00"},
            format="json",
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "AUTHORIZATION_NOT_ACTIVE"

    def test_charge_declined(self, api_client, active_authorization, patched_gateway):
        patched_gateway.charge.side_effect = None
        patched_gateway.charge.return_value = PaymentResult(
            transaction_id="TX-DECLINED",
            payment_status="Declined",
            return_code="E051",
            return_message="Insufficient funds",
        )

        response = api_client.post(
            reverse("authorized_payments:authorization-charge", args=[active_authorization.pk]),
            {"amount": "10.00"},
            format="json",
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "CHARGE_DECLINED"
        assert Charge.objects.get().status == ChargeStatus.FAILED

    def test_charge_unknown_authorization(self, api_client):
        response = api_client.post(
            reverse(
                "authorized_payments:authorization-charge",
                args=["00000000-0000-0000-0000-000000000000"],
            ),
            {"amount": "10.00"},
            format="json",
        )

        assert response.status_code == 404

    def test_list_by_authorization(self, api_client, settled_charge):
        ChargeFactory(settled=True)

        response = api_client.get(
            reverse("authorized_payments:charge-list"),
            {"authorization": str(settled_charge.authorization_id)},
        )

        assert [item["id"] for item in response.json()["results"]] == [str(settled_charge.pk)]

    def test_list_rejects_malformed_authorization_id(self, api_client):
        response = api_client.get(
            reverse("authorized_payments:charge-list"), {"authorization": "not-a-uuid"}
        )

        assert response.status_code == 400
        assert "authorization" in response.json()

    def test_full_refund(self, api_client, settled_charge, mock_redis, patched_gateway):
        response = api_client.post(
            reverse("authorized_payments:charge-refund", args=[settled_charge.pk]),
            {},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["status"] == ChargeStatus.REFUNDED
        assert response.json()["refunded_amount"] == "40.00"
        patched_gateway.refund.assert_called_once()

    def test_partial_refund(self, api_client, settled_charge, mock_redis):
        response = api_client.post(
            reverse("authorized_payments:charge-refund", args=[settled_charge.pk]),
            {"amount": "15.00"},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["status"] == ChargeStatus.PARTIALLY_REFUNDED

    def test_refund_failed_charge(self, api_client, failed_charge, mock_redis):
        response = api_client.post(
            reverse("authorized_payments:charge-refund", args=[failed_charge.pk]),
            {},
            format="json",
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "NOT_REFUNDABLE"

    def test_refund_over_balance(self, api_client, settled_charge, mock_redis):
        response = api_client.post(
            reverse("authorized_payments:charge-refund", args=[settled_charge.pk]),
            {"amount": "40.01"},
            format="json",
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REFUND_AMOUNT"

    def test_refund_gateway_down(self, api_client, settled_charge, mock_redis, patched_gateway):
        patched_gateway.refund.side_effect = GatewayUnavailableError("Gateway is unreachable")

        response = api_client.post(
            reverse("authorized_payments:charge-refund", args=[settled_charge.pk]),
            {},
            format="json",
        )

        assert response.json()["error_code"] == "REFUND_FAILED"
        assert Charge.objects.get(pk=settled_charge.pk).status == ChargeStatus.SUCCESS
