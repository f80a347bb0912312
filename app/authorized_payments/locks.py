"""
Concurrency control for authorized payment operations.

Two mechanisms complement the row locks taken by the services:

1. DistributedLock: Redis mutual exclusion for operations that call the
   gateway outside a database transaction (refunds), where a row lock
   cannot be held across the HTTP call.
2. check_version: lock a row and verify it has not changed since it was
   read. The expiry sweep reads candidates without locks, then claims
   each one with check_version so two sweepers never expire the same row.

Usage:
    with DistributedLock(f"charge:refund:{charge.id}", ttl=60):
        ...

    with transaction.atomic():
        charge = check_version(Charge, candidate.pk, candidate.version)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models
from django_redis import get_redis_connection

from core.exceptions import NotFoundError

from authorized_payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based lock with TTL and token ownership.

    The TTL releases the lock if the holder dies; the token makes sure a
    holder whose TTL expired cannot release somebody else's lock.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds before the lock auto-releases
        blocking: Wait for the lock instead of failing immediately
        timeout: Maximum wait in seconds when blocking

    Raises:
        LockAcquisitionError: From acquire() / __enter__ when not obtained
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if not self.blocking:
            if self._try_acquire(redis):
                return True
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )

        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            if self._try_acquire(redis):
                return True
            time.sleep(self.POLL_INTERVAL)
        self._token = None
        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Release the lock if we still own it. Safe to call twice."""
        if self._token is None:
            return False
        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(model_class: type[T], pk: Any, expected_version: int) -> T:
    """
    Lock a row and verify its version.

    Must be called inside transaction.atomic(); the row stays locked
    until that transaction ends.

    Raises:
        NotFoundError: The row does not exist
        StaleRecordError: The row was modified after it was read
    """
    instance = (
        model_class.objects.select_for_update()
        .filter(pk=pk, version=expected_version)
        .first()
    )
    if instance is not None:
        return instance

    model_name = model_class.__name__
    current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
    if current is None:
        raise NotFoundError(
            f"{model_name} {pk} not found",
            error_code=f"{model_name.upper()}_NOT_FOUND",
            details={"pk": str(pk)},
        )
    raise StaleRecordError(
        f"{model_name} {pk} has been modified "
        f"(expected version {expected_version}, current {current})",
        details={
            "pk": str(pk),
            "expected_version": expected_version,
            "current_version": current,
        },
    )


__all__ = [
    "DistributedLock",
    "check_version",
]
