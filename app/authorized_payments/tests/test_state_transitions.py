"""
Tests for model state machines.

Covers the django-fsm transitions of Authorization, Charge and
TransactionRecord, including the ones that must be refused, and the
plain status helpers of WebhookEvent.
"""

from decimal import Decimal

import pytest
from django_fsm import TransitionNotAllowed

from authorized_payments.exceptions import InvalidRefundAmountError
from authorized_payments.models import Authorization, Charge
from authorized_payments.state_machines import (
    AuthorizationStatus,
    ChargeStatus,
    TransactionStatus,
    WebhookEventStatus,
    WebhookOutcome,
)
from authorized_payments.tests.factories import (
    AuthorizationFactory,
    ChargeFactory,
    TransactionRecordFactory,
    WebhookEventFactory,
)


# =============================================================================
# Authorization
# =============================================================================


class TestAuthorizationTransitions:
    """Tests for the Authorization lifecycle."""

    def test_approve_activates_pending(self, db, pending_authorization):
        """Should move PENDING to ACTIVE and store the gateway id."""
        pending_authorization.approve(gateway_authorization_id="AUTH-1")
        pending_authorization.save()

        reloaded = Authorization.objects.get(pk=pending_authorization.pk)
        assert reloaded.status == AuthorizationStatus.ACTIVE
        assert reloaded.gateway_authorization_id == "AUTH-1"
        assert reloaded.activated_at is not None

    def test_merchant_cannot_cancel_pending(self, db, pending_authorization):
        """Merchant cancellation is only allowed once active."""
        with pytest.raises(TransitionNotAllowed):
            pending_authorization.cancel()

        assert pending_authorization.status == AuthorizationStatus.PENDING

    def test_gateway_revoke_allowed_from_pending(self, db, pending_authorization):
        """A customer declining in the app cancels a pending authorization."""
        pending_authorization.revoke()
        pending_authorization.save()

        assert pending_authorization.status == AuthorizationStatus.CANCELLED
        assert pending_authorization.cancelled_at is not None

    def test_expire_active(self, db, active_authorization):
        """Should move ACTIVE to EXPIRED."""
        active_authorization.expire()
        active_authorization.save()

        assert active_authorization.status == AuthorizationStatus.EXPIRED
        assert active_authorization.expired_at is not None
        assert active_authorization.is_terminal

    @pytest.mark.parametrize(
        "status",
        [AuthorizationStatus.EXPIRED, AuthorizationStatus.CANCELLED],
    )
    def test_terminal_states_refuse_every_transition(self, db, status):
        """Expired and cancelled authorizations never change again."""
        authorization = AuthorizationFactory(status=status)

        for method, args in [
            (authorization.approve, ("AUTH-X",)),
            (authorization.cancel, ()),
            (authorization.revoke, ()),
            (authorization.expire, ()),
        ]:
            with pytest.raises(TransitionNotAllowed):
                method(*args)

    def test_status_is_protected(self, db, active_authorization):
        """Direct assignment of the status field is refused."""
        with pytest.raises(AttributeError):
            active_authorization.status = AuthorizationStatus.PENDING


# =============================================================================
# Charge
# =============================================================================


class TestChargeTransitions:
    """Tests for the Charge lifecycle."""

    def test_mark_success(self, db, pending_charge):
        """Should settle a pending charge as SUCCESS."""
        pending_charge.mark_success(gateway_transaction_id="TX-1", response={"ok": True})
        pending_charge.save()

        reloaded = Charge.objects.get(pk=pending_charge.pk)
        assert reloaded.status == ChargeStatus.SUCCESS
        assert reloaded.gateway_transaction_id == "TX-1"
        assert reloaded.settled_at is not None
        assert reloaded.is_settled_success

    def test_mark_failed_keeps_message(self, db, pending_charge):
        """Should settle a pending charge as FAILED with the gateway message."""
        pending_charge.mark_failed(error_message="Insufficient funds")
        pending_charge.save()

        assert pending_charge.status == ChargeStatus.FAILED
        assert pending_charge.error_message == "Insufficient funds"

    def test_settled_charge_cannot_settle_again(self, db, settled_charge):
        """The first terminal answer wins at the model level too."""
        with pytest.raises(TransitionNotAllowed):
            settled_charge.mark_failed(error_message="late")

    def test_partial_then_full_refund(self, db, settled_charge):
        """Refunds accumulate until the whole amount is refunded."""
        settled_charge.apply_refund(Decimal("15.00"))
        settled_charge.save()
        assert settled_charge.status == ChargeStatus.PARTIALLY_REFUNDED
        assert settled_charge.refunded_amount == Decimal("15.00")

        settled_charge.apply_refund(Decimal("25.00"))
        settled_charge.save()
        assert settled_charge.status == ChargeStatus.REFUNDED
        assert settled_charge.refundable_amount == Decimal("0.00")
        assert settled_charge.is_settled_success

    def test_refund_over_balance_leaves_status(self, db, settled_charge):
        """An out-of-range refund raises and does not move the charge."""
        with pytest.raises(InvalidRefundAmountError):
            settled_charge.apply_refund(Decimal("40.01"))

        assert settled_charge.status == ChargeStatus.SUCCESS
        assert settled_charge.refunded_amount == Decimal("0.00")

    def test_failed_charge_not_refundable(self, db, failed_charge):
        """Should refuse to refund a charge that never succeeded."""
        assert not failed_charge.is_refundable
        with pytest.raises(TransitionNotAllowed):
            failed_charge.apply_refund(Decimal("1.00"))

    def test_root_of_retry_attempt(self, db, failed_charge):
        """An attempt points at its root; a root is its own root."""
        attempt = ChargeFactory(authorization=failed_charge.authorization, parent=failed_charge)

        assert attempt.root == failed_charge
        assert failed_charge.root == failed_charge


# =============================================================================
# TransactionRecord
# =============================================================================


class TestTransactionRecordTransitions:
    """Tests for the TransactionRecord outcome."""

    def test_complete_success_records_duration(self, db):
        """Should set the outcome, completion time and duration."""
        record = TransactionRecordFactory()

        record.complete_success(
            response_data={"paymentStatus": "Success"},
            return_code="000",
            gateway_transaction_id="TX-9",
        )
        record.save()

        assert record.status == TransactionStatus.SUCCESS
        assert record.gateway_transaction_id == "TX-9"
        assert record.completed_at is not None
        assert record.processing_duration_ms >= 0

    def test_outcome_is_set_once(self, db):
        """A completed record cannot be completed again."""
        record = TransactionRecordFactory()
        record.complete_failure(return_message="Timeout")
        record.save()

        with pytest.raises(TransitionNotAllowed):
            record.complete_success()


# =============================================================================
# WebhookEvent
# =============================================================================


class TestWebhookEventStatus:
    def test_processing_counts_attempts(self, db):
        event = WebhookEventFactory()

        event.mark_processing()
        event.mark_failed("Gateway is unreachable")
        event.save()
        event.mark_processing()
        event.mark_processed(WebhookOutcome.APPLIED)
        event.save()

        assert event.attempt_count == 2
        assert event.is_processed
        assert event.outcome == WebhookOutcome.APPLIED
        assert event.error_message is None
        assert event.processed_at is not None

    def test_failed_is_not_processed(self, db):
        event = WebhookEventFactory()

        event.mark_failed("boom")

        assert event.status == WebhookEventStatus.FAILED
        assert not event.is_processed
