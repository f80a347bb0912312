"""
Tests for ChargeService.

Covers initiating charges against the ledger, settling gateway answers,
refunds under the distributed lock and retry attempts.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from authorized_payments.adapters.gateway import PaymentResult
from authorized_payments.events import ChargeFailed, ChargeRefunded, ChargeSettled
from authorized_payments.exceptions import GatewayTimeoutError, GatewayUnavailableError
from authorized_payments.ledger import AmountLedger
from authorized_payments.models import Charge
from authorized_payments.repositories import TransactionRecordRepository
from authorized_payments.services import BatchChargeItem
from authorized_payments.state_machines import (
    ChargeStatus,
    TransactionStatus,
    TransactionType,
)
from authorized_payments.tests.factories import ChargeFactory, successful_charge_answer


# =============================================================================
# Initiate
# =============================================================================


class TestInitiateCharge:
    """Tests for ChargeService.initiate."""

    def test_successful_charge(self, db, charge_service, active_authorization, gateway, events):
        """Should reserve, submit and settle the charge as SUCCESS."""
        result = charge_service.initiate(active_authorization, "29.99", "May invoice")

        assert result.success
        charge = result.data
        assert charge.status == ChargeStatus.SUCCESS
        assert charge.amount == Decimal("29.99")
        assert charge.gateway_transaction_id.startswith("TX-")
        assert charge.merchant_reference.startswith(f"CHARGE_{active_authorization.id}_")

        call = gateway.charge.call_args.kwargs
        assert call["authorization_id"] == active_authorization.gateway_authorization_id
        assert call["amount"] == Decimal("29.99")
        assert call["merchant_reference"] == charge.merchant_reference

        record = TransactionRecordRepository.for_owner(charge).get()
        assert record.transaction_type == TransactionType.CHARGE
        assert record.status == TransactionStatus.SUCCESS
        assert record.gateway_transaction_id == charge.gateway_transaction_id

        settled = events.of_type(ChargeSettled)
        assert [event.charge_id for event in settled] == [str(charge.id)]
        assert AmountLedger.remaining(active_authorization) == Decimal("70.01")

    def test_default_description(self, db, charge_service, active_authorization):
        charge = charge_service.initiate(active_authorization, "5.00").data

        assert charge.description == "Charge for Monthly subscription"

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "1.234"])
    def test_invalid_amount(self, db, charge_service, active_authorization, gateway, amount):
        result = charge_service.initiate(active_authorization, amount)

        assert result.error_code == "INVALID_AMOUNT"
        assert not Charge.objects.exists()
        gateway.charge.assert_not_called()

    def test_pending_authorization_not_active(self, db, charge_service, pending_authorization):
        result = charge_service.initiate(pending_authorization, "10.00")

        assert result.error_code == "AUTHORIZATION_NOT_ACTIVE"
        assert result.details["current_status"] == "pending"

    def test_lapsed_authorization_expired(self, db, charge_service, lapsed_authorization, gateway):
        """A past validity date refuses charges before the expiry sweep runs."""
        result = charge_service.initiate(lapsed_authorization, "10.00")

        assert result.error_code == "AUTHORIZATION_EXPIRED"
        gateway.charge.assert_not_called()

    def test_overspend_refused(self, db, charge_service, active_authorization, gateway):
        """The sum of successful charges never exceeds max_amount."""
        assert charge_service.initiate(active_authorization, "60.00").success
        assert charge_service.initiate(active_authorization, "40.00").success

        result = charge_service.initiate(active_authorization, "0.01")

        assert result.error_code == "AMOUNT_EXCEEDS_LIMIT"
        assert result.details["remaining"] == "0.00"
        assert gateway.charge.call_count == 2
        assert AmountLedger.consumed(active_authorization) == Decimal("100.00")

    def test_pending_charges_reserve_headroom(self, db, charge_service, active_authorization):
        """A charge still waiting for the gateway holds its amount."""
        ChargeFactory(authorization=active_authorization, amount=Decimal("90.00"))

        result = charge_service.initiate(active_authorization, "20.00")

        assert result.error_code == "AMOUNT_EXCEEDS_LIMIT"
        assert result.details["reserved"] == "90.00"

    def test_declined_charge(self, db, charge_service, active_authorization, gateway, events):
        """A declined charge is stored FAILED and returned with the error."""
        gateway.charge.side_effect = None
        gateway.charge.return_value = PaymentResult(
            transaction_id="TX-DECLINED",
            payment_status="Declined",
            return_code="E051",
            return_message="Insufficient funds",
        )

        result = charge_service.initiate(active_authorization, "10.00")

        assert result.error_code == "CHARGE_DECLINED"
        assert result.data.status == ChargeStatus.FAILED
        assert result.data.error_message == "Insufficient funds"
        assert result.details["charge_id"] == str(result.data.id)
        assert result.details["return_code"] == "E051"
        assert len(events.of_type(ChargeFailed)) == 1
        assert AmountLedger.headroom(active_authorization) == Decimal("100.00")

    def test_unknown_synchronous_status_fails(self, db, charge_service, active_authorization, gateway):
        """Synchronous answers are definitive: anything but success fails."""
        gateway.charge.side_effect = None
        gateway.charge.return_value = PaymentResult(transaction_id="TX-2", payment_status="Pending")

        result = charge_service.initiate(active_authorization, "10.00")

        assert result.error_code == "CHARGE_DECLINED"
        assert result.data.status == ChargeStatus.FAILED

    def test_gateway_error_settles_failed(self, db, charge_service, active_authorization, gateway):
        """A transport failure fails the charge with the gateway error kind."""
        gateway.charge.side_effect = GatewayTimeoutError("Gateway request timed out after 30s")

        result = charge_service.initiate(active_authorization, "10.00")

        assert result.error_code == "GATEWAY_TIMEOUT"
        assert result.data.status == ChargeStatus.FAILED
        record = TransactionRecordRepository.for_owner(result.data).get()
        assert record.status == TransactionStatus.FAILED

    def test_webhook_during_call_wins(
        self, db, charge_service, reconciliation, active_authorization, gateway
    ):
        """If a webhook settled the charge first, a contradicting answer is refused."""

        def webhook_then_success(**kwargs):
            charge = Charge.objects.get(merchant_reference=kwargs["merchant_reference"])
            reconciliation.settle_charge(charge.pk, "failed", error_message="Declined by issuer")
            return PaymentResult(transaction_id="TX-LATE", payment_status="Success")

        gateway.charge.side_effect = webhook_then_success

        result = charge_service.initiate(active_authorization, "10.00")

        assert result.error_code == "SETTLEMENT_CONFLICT"
        assert result.data.status == ChargeStatus.FAILED
        assert result.data.error_message == "Declined by issuer"

    def test_unexpected_error_settles_failed(self, db, charge_service, active_authorization, gateway):
        """An error outside the gateway taxonomy propagates, leaving no pending charge."""
        gateway.charge.side_effect = KeyError("transactionID")

        with pytest.raises(KeyError):
            charge_service.initiate(active_authorization, "10.00")

        charge = Charge.objects.get()
        assert charge.status == ChargeStatus.FAILED
        assert AmountLedger.reserved(active_authorization) == Decimal("0.00")
        record = TransactionRecordRepository.for_owner(charge).get()
        assert record.status == TransactionStatus.FAILED

    def test_concurrent_charges_cannot_overspend(
        self, db, charge_service, active_authorization, gateway
    ):
        """A second 60.00 charge arriving while the first is in flight is refused."""
        inner_results = []

        def second_charge_in_flight(**kwargs):
            if not inner_results:
                inner_results.append(charge_service.initiate(active_authorization, "60.00"))
            return successful_charge_answer()

        gateway.charge.side_effect = second_charge_in_flight

        outer = charge_service.initiate(active_authorization, "60.00")

        assert outer.success
        assert inner_results[0].error_code == "AMOUNT_EXCEEDS_LIMIT"
        assert inner_results[0].details["reserved"] == "60.00"
        assert gateway.charge.call_count == 1
        assert AmountLedger.consumed(active_authorization) == Decimal("60.00")
        assert Charge.objects.count() == 1


# =============================================================================
# Settle
# =============================================================================


class TestSettleCharge:
    """Tests for ChargeService.settle."""

    def test_settle_success_then_repeat(self, db, charge_service, pending_charge, events):
        """Repeating the same answer is a no-op."""
        first = charge_service.settle(pending_charge, "TX-PENDING-1", "Success")
        second = charge_service.settle(pending_charge, "TX-PENDING-1", "Success")

        assert first.success and second.success
        assert second.data.status == ChargeStatus.SUCCESS
        assert len(events.of_type(ChargeSettled)) == 1

    def test_opposite_answer_conflicts(self, db, charge_service, pending_charge):
        charge_service.settle(pending_charge, "TX-PENDING-1", "Success")

        result = charge_service.settle(pending_charge, "TX-PENDING-1", "Failed", error_message="x")

        assert result.error_code == "SETTLEMENT_CONFLICT"
        assert Charge.objects.get(pk=pending_charge.pk).status == ChargeStatus.SUCCESS


# =============================================================================
# Batch
# =============================================================================


class TestInitiateBatch:
    """Tests for ChargeService.initiate_batch."""

    def test_items_are_independent(
        self, db, charge_service, active_authorization, pending_authorization
    ):
        results = charge_service.initiate_batch(
            [
                BatchChargeItem(active_authorization, "10.00", "June"),
                BatchChargeItem(pending_authorization, "10.00"),
                BatchChargeItem(active_authorization, "ten"),
                BatchChargeItem(active_authorization, "20.00"),
            ]
        )

        assert [result.success for result in results] == [True, False, False, True]
        assert results[0].data.description == "June"
        assert results[1].error_code == "AUTHORIZATION_NOT_ACTIVE"
        assert results[2].error_code == "INVALID_AMOUNT"
        assert AmountLedger.consumed(active_authorization) == Decimal("30.00")

    def test_unexpected_error_does_not_stop_batch(
        self, db, charge_service, active_authorization, gateway
    ):
        gateway.charge.side_effect = [KeyError("transactionID"), successful_charge_answer()]

        results = charge_service.initiate_batch(
            [
                BatchChargeItem(active_authorization, "10.00"),
                BatchChargeItem(active_authorization, "20.00"),
            ]
        )

        assert results[0].error_code == "CHARGE_PROCESSING_ERROR"
        assert results[0].details == {"authorization_id": str(active_authorization.pk)}
        assert results[1].success
        assert AmountLedger.consumed(active_authorization) == Decimal("20.00")
        assert AmountLedger.reserved(active_authorization) == Decimal("0.00")

    def test_empty_batch(self, db, charge_service, gateway):
        assert charge_service.initiate_batch([]) == []
        gateway.charge.assert_not_called()


# =============================================================================
# Refund
# =============================================================================


class TestRefundCharge:
    """Tests for ChargeService.refund."""

    def test_full_refund_by_default(self, db, charge_service, settled_charge, gateway, mock_redis, events):
        """Without an amount the whole refundable balance is refunded."""
        result = charge_service.refund(settled_charge)

        assert result.success
        assert result.data.status == ChargeStatus.REFUNDED
        assert result.data.refunded_amount == Decimal("40.00")
        call = gateway.refund.call_args.kwargs
        assert call["transaction_id"] == settled_charge.gateway_transaction_id
        assert call["amount"] == Decimal("40.00")
        refunded = events.of_type(ChargeRefunded)
        assert refunded[0].status == ChargeStatus.REFUNDED
        mock_redis.set.assert_called_once()
        assert mock_redis.set.call_args[0][0] == f"lock:charge:refund:{settled_charge.pk}"

    def test_partial_refunds_accumulate(self, db, charge_service, settled_charge, mock_redis):
        charge_service.refund(settled_charge, "15.00")
        result = charge_service.refund(settled_charge, "25.00")

        assert result.data.status == ChargeStatus.REFUNDED
        records = TransactionRecordRepository.for_owner(settled_charge).filter(
            transaction_type=TransactionType.REFUND
        )
        assert records.count() == 2

    def test_refund_does_not_restore_headroom(
        self, db, charge_service, settled_charge, active_authorization, mock_redis
    ):
        charge_service.refund(settled_charge)

        assert AmountLedger.remaining(active_authorization) == Decimal("60.00")

    @pytest.mark.parametrize("amount", ["0", "40.01", "abc"])
    def test_invalid_refund_amount(self, db, charge_service, settled_charge, gateway, mock_redis, amount):
        result = charge_service.refund(settled_charge, amount)

        assert result.error_code == "INVALID_REFUND_AMOUNT"
        gateway.refund.assert_not_called()

    def test_failed_charge_not_refundable(self, db, charge_service, failed_charge, mock_redis):
        result = charge_service.refund(failed_charge)

        assert result.error_code == "NOT_REFUNDABLE"

    def test_fully_refunded_charge_not_refundable(self, db, charge_service, settled_charge, mock_redis):
        charge_service.refund(settled_charge)

        result = charge_service.refund(settled_charge, "1.00")

        assert result.error_code == "NOT_REFUNDABLE"

    def test_gateway_refusal_leaves_charge(self, db, charge_service, settled_charge, gateway, mock_redis):
        """A refund the gateway does not confirm changes nothing."""
        gateway.refund.return_value = PaymentResult(
            transaction_id=None,
            payment_status="Declined",
            return_message="Refund window closed",
        )

        result = charge_service.refund(settled_charge)

        assert result.error_code == "REFUND_FAILED"
        assert result.error == "Refund window closed"
        charge = Charge.objects.get(pk=settled_charge.pk)
        assert charge.status == ChargeStatus.SUCCESS
        assert charge.refunded_amount == Decimal("0.00")
        record = TransactionRecordRepository.for_owner(charge).get()
        assert record.status == TransactionStatus.FAILED

    def test_gateway_error_is_refund_failed(self, db, charge_service, settled_charge, gateway, mock_redis):
        gateway.refund.side_effect = GatewayUnavailableError("Gateway is unreachable")

        result = charge_service.refund(settled_charge)

        assert result.error_code == "REFUND_FAILED"
        assert result.details["gateway_error_code"] == "GATEWAY_UNAVAILABLE"

    def test_concurrent_refund_refused(self, db, charge_service, settled_charge, gateway, mock_redis, mocker):
        """Another refund holding the lock makes this one fail fast."""
        mocker.patch("authorized_payments.services.charge_service.REFUND_LOCK_TIMEOUT", 0.05)
        mock_redis.set.return_value = False

        result = charge_service.refund(settled_charge)

        assert result.error_code == "LOCK_ACQUISITION_FAILED"
        gateway.refund.assert_not_called()


# =============================================================================
# Retry
# =============================================================================


class TestRetryCharge:
    """Tests for ChargeService.retry."""

    def test_retry_creates_attempt(self, db, charge_service, failed_charge, gateway):
        """A retry is a new charge whose parent is the root."""
        now = timezone.now()

        result = charge_service.retry(failed_charge, now=now)

        assert result.success
        attempt = result.data
        assert attempt.pk != failed_charge.pk
        assert attempt.parent_id == failed_charge.pk
        assert attempt.amount == failed_charge.amount
        assert attempt.description == "May invoice (Retry)"
        assert attempt.status == ChargeStatus.SUCCESS

        root = Charge.objects.get(pk=failed_charge.pk)
        assert root.status == ChargeStatus.FAILED
        assert root.retry_count == 1
        assert root.last_retry_at == now

    def test_retry_within_cooldown_refused(self, db, charge_service, failed_charge, gateway):
        gateway.charge.side_effect = GatewayTimeoutError("timed out")
        now = timezone.now()
        charge_service.retry(failed_charge, now=now)

        result = charge_service.retry(failed_charge, now=now + timedelta(minutes=59))

        assert result.error_code == "CHARGE_NOT_RETRYABLE"
        assert Charge.objects.get(pk=failed_charge.pk).retry_count == 1

    def test_retry_of_attempt_targets_root(self, db, charge_service, failed_charge, gateway):
        """Retrying an attempt advances the root's counter."""
        gateway.charge.side_effect = GatewayTimeoutError("timed out")
        now = timezone.now()
        attempt = charge_service.retry(failed_charge, now=now).data

        charge_service.retry(attempt, now=now + timedelta(hours=2))

        root = Charge.objects.get(pk=failed_charge.pk)
        assert root.retry_count == 2
        assert root.attempts.count() == 2

    def test_retry_limit(self, db, charge_service, failed_charge, gateway):
        """No more than max_retries attempts per logical charge."""
        gateway.charge.side_effect = GatewayTimeoutError("timed out")
        now = timezone.now()
        for hour in range(3):
            assert charge_service.retry(failed_charge, now=now + timedelta(hours=hour)).data

        result = charge_service.retry(failed_charge, now=now + timedelta(hours=10))

        assert result.error_code == "CHARGE_NOT_RETRYABLE"
        assert "retry limit" in result.error

    def test_successful_chain_not_retried_again(self, db, charge_service, failed_charge):
        now = timezone.now()
        charge_service.retry(failed_charge, now=now)

        result = charge_service.retry(failed_charge, now=now + timedelta(hours=2))

        assert result.error_code == "CHARGE_NOT_RETRYABLE"

    def test_settled_charge_not_retryable(self, db, charge_service, settled_charge):
        result = charge_service.retry(settled_charge)

        assert result.error_code == "CHARGE_NOT_RETRYABLE"

    def test_retry_respects_headroom(self, db, charge_service, failed_charge, active_authorization):
        """A retry is a charge like any other and cannot overspend."""
        ChargeFactory(authorization=active_authorization, amount=Decimal("80.00"), settled=True)

        result = charge_service.retry(failed_charge)

        assert result.error_code == "AMOUNT_EXCEEDS_LIMIT"
        assert Charge.objects.get(pk=failed_charge.pk).retry_count == 0
