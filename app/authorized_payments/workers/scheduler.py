"""
Retry/expiry scheduler: periodic sweeps over wall-clock dependent state.

Sweeps:
- sweep_expired: ACTIVE authorizations whose validity date has passed
  become EXPIRED
- sweep_retries: failed root charges that are out of their cooldown get
  a new attempt through ChargeService.retry()
- cleanup_transaction_records: old successful/cancelled
  TransactionRecords are purged

Each sweep reads a bounded batch without locks, then re-reads every row
under select_for_update and re-checks it, so two schedulers running at
once never process the same row twice. Expiry compares the row version
read in the batch; retries re-check the whole chain under the
authorization and charge locks taken by ChargeService.retry().
One item failing is logged and does not stop the rest of the batch.

Usage:
    scheduler = RetryExpiryScheduler(charge_service=ChargeService(gateway))
    expired_count = scheduler.sweep_expired()
    attempts = scheduler.sweep_retries()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService

from authorized_payments.config import PaymentsConfig
from authorized_payments.events import AuthorizationExpired, SignalEventSink
from authorized_payments.exceptions import StaleRecordError
from authorized_payments.locks import check_version
from authorized_payments.models import Authorization
from authorized_payments.repositories import (
    AuthorizationRepository,
    ChargeRepository,
    TransactionRecordRepository,
)
from authorized_payments.state_machines import AuthorizationStatus

if TYPE_CHECKING:
    from datetime import datetime

    from authorized_payments.events import EventSink
    from authorized_payments.models import Charge
    from authorized_payments.services import ChargeService


@dataclass
class RetrySweepResult:
    """
    Outcome of one retry sweep.

    Attributes:
        attempts: New charge attempts created (settled or not)
        succeeded: Attempts that settled as SUCCESS
        failed: Ids of root charges whose retry failed or was skipped
    """

    attempts: list[Charge] = field(default_factory=list)
    succeeded: list[Charge] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class RetryExpiryScheduler(BaseService):
    """
    Periodic sweeps for expiry, charge retries and record cleanup.

    Args:
        charge_service: Used for retries (may be None for expiry-only use)
        config: Business configuration (defaults to Django settings)
        events: Sink for domain events (defaults to SignalEventSink)
    """

    def __init__(
        self,
        charge_service: ChargeService | None = None,
        config: PaymentsConfig | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.charge_service = charge_service
        self.config = config or PaymentsConfig.from_settings()
        self.events = events or SignalEventSink()

    # =========================================================================
    # Expiry
    # =========================================================================

    def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Expire ACTIVE authorizations past their validity date.

        Processes batches of config.expiry_batch_size until none are
        left. Rows that fail are skipped for the rest of this sweep.

        Returns:
            Number of authorizations moved to EXPIRED
        """
        logger = self.get_logger()
        now = now or timezone.now()
        processed = 0
        skipped: set = set()

        while True:
            batch = [
                authorization
                for authorization in AuthorizationRepository.list_active_expiring_before(
                    now, limit=self.config.expiry_batch_size + len(skipped)
                )
                if authorization.pk not in skipped
            ][: self.config.expiry_batch_size]
            if not batch:
                break

            for candidate in batch:
                try:
                    if self._expire_one(candidate, now):
                        processed += 1
                    else:
                        skipped.add(candidate.pk)
                except (StaleRecordError, NotFoundError) as e:
                    logger.info(
                        "Authorization changed during expiry sweep, skipping",
                        extra={"authorization_id": str(candidate.pk), "error": str(e)},
                    )
                    skipped.add(candidate.pk)
                except Exception as e:
                    logger.exception(
                        f"Failed to expire authorization: {e}",
                        extra={"authorization_id": str(candidate.pk)},
                    )
                    skipped.add(candidate.pk)

        logger.info(
            f"Expiry sweep complete: expired {processed} authorizations",
            extra={"expired_count": processed, "skipped_count": len(skipped)},
        )
        return processed

    def _expire_one(self, candidate: Authorization, now: datetime) -> bool:
        with transaction.atomic():
            authorization = check_version(Authorization, candidate.pk, candidate.version)
            if authorization.status != AuthorizationStatus.ACTIVE or authorization.is_valid_at(now):
                return False
            authorization.expire()
            authorization.save()
            self.events.emit(AuthorizationExpired(authorization_id=str(authorization.id)))

        self.get_logger().info(
            "Authorization expired",
            extra={
                "authorization_id": str(authorization.id),
                "validity_date": authorization.validity_date.isoformat(),
            },
        )
        return True

    # =========================================================================
    # Retries
    # =========================================================================

    def sweep_retries(self, now: datetime | None = None) -> RetrySweepResult:
        """
        Retry one batch of eligible failed charges.

        A single batch per sweep: an attempt that fails again starts a
        new cooldown and is picked up by a later sweep.

        Returns:
            RetrySweepResult with the new attempts
        """
        logger = self.get_logger()
        now = now or timezone.now()
        result = RetrySweepResult()

        candidates = ChargeRepository.list_retry_candidates(
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay,
            limit=self.config.retry_batch_size,
            now=now,
        )

        for candidate in candidates:
            try:
                retry_result = self.charge_service.retry(candidate, now=now)
            except Exception as e:
                logger.exception(
                    f"Failed to retry charge: {e}",
                    extra={"charge_id": str(candidate.pk)},
                )
                result.failed.append(str(candidate.pk))
                continue

            if retry_result.data is not None:
                result.attempts.append(retry_result.data)
            if retry_result.success:
                result.succeeded.append(retry_result.data)
            else:
                result.failed.append(str(candidate.pk))

        logger.info(
            f"Retry sweep complete: {len(result.attempts)} attempts, "
            f"{len(result.succeeded)} succeeded",
            extra={
                "candidate_count": len(candidates),
                "attempt_count": len(result.attempts),
                "succeeded_count": len(result.succeeded),
                "failed_count": len(result.failed),
            },
        )
        return result

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_transaction_records(
        self,
        days: int | None = None,
        dry_run: bool = False,
    ) -> int:
        """
        Delete SUCCESS/CANCELLED TransactionRecords older than `days`.

        Returns:
            Number of records deleted (or that would be, with dry_run)
        """
        days = self.config.cleanup_days if days is None else days
        cutoff = timezone.now() - timedelta(days=days)
        queryset = TransactionRecordRepository.list_purgeable(older_than=cutoff)

        if dry_run:
            count = queryset.count()
        else:
            count, _ = queryset.delete()

        self.get_logger().info(
            f"Transaction record cleanup {'(dry run) ' if dry_run else ''}"
            f"matched {count} records",
            extra={"days": days, "dry_run": dry_run, "count": count},
        )
        return count
