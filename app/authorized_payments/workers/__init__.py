"""
Background sweeps for authorized payments.

RetryExpiryScheduler holds the sweep logic; the Celery entry points live
in authorized_payments.tasks.

Usage:
    from authorized_payments.workers import RetryExpiryScheduler

    RetryExpiryScheduler().sweep_expired()
"""

from authorized_payments.workers.scheduler import RetryExpiryScheduler, RetrySweepResult

__all__ = [
    "RetryExpiryScheduler",
    "RetrySweepResult",
]
