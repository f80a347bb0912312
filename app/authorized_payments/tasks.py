"""
Celery tasks for authorized payments.

Periodic tasks (scheduled through django-celery-beat, see migration
0002_add_periodic_sweeps):
- sweep_expired_authorizations: hourly
- sweep_retryable_charges: every 15 minutes
- cleanup_transaction_records: daily

Usage:
    from authorized_payments.tasks import sweep_expired_authorizations

    sweep_expired_authorizations.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from celery.signals import worker_process_shutdown

from authorized_payments.adapters import close_gateways, get_gateway
from authorized_payments.config import PaymentsConfig
from authorized_payments.services import ChargeService
from authorized_payments.workers.scheduler import RetryExpiryScheduler

logger = logging.getLogger(__name__)


@worker_process_shutdown.connect
def close_gateway_connections(**kwargs) -> None:
    close_gateways()


def build_scheduler() -> RetryExpiryScheduler:
    """Scheduler wired with the configured gateway."""
    config = PaymentsConfig.from_settings()
    charge_service = ChargeService(gateway=get_gateway(config.gateway), config=config)
    return RetryExpiryScheduler(charge_service=charge_service, config=config)


@shared_task(acks_late=True)
def sweep_expired_authorizations() -> dict:
    """
    Expire ACTIVE authorizations past their validity date.

    Idempotent: a second run right after the first expires nothing.
    """
    logger.info("Starting expired authorization sweep")
    config = PaymentsConfig.from_settings()
    expired_count = RetryExpiryScheduler(config=config).sweep_expired()
    return {"expired_count": expired_count}


@shared_task(acks_late=True)
def sweep_retryable_charges() -> dict:
    """Create new attempts for failed charges out of their cooldown."""
    logger.info("Starting charge retry sweep")
    result = build_scheduler().sweep_retries()
    return {
        "attempt_count": len(result.attempts),
        "attempt_ids": [str(attempt.id) for attempt in result.attempts],
        "succeeded_count": len(result.succeeded),
        "failed_charge_ids": result.failed,
    }


@shared_task
def cleanup_transaction_records(days: int | None = None, dry_run: bool = False) -> dict:
    """Purge old SUCCESS/CANCELLED TransactionRecords."""
    config = PaymentsConfig.from_settings()
    count = RetryExpiryScheduler(config=config).cleanup_transaction_records(
        days=days, dry_run=dry_run
    )
    return {"count": count, "dry_run": dry_run}


__all__ = [
    "cleanup_transaction_records",
    "sweep_expired_authorizations",
    "sweep_retryable_charges",
]
