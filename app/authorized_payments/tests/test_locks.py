"""
Tests for DistributedLock.

Redis is replaced by a MagicMock (see the mock_redis fixture), so these
tests check the calls the lock makes rather than real mutual exclusion.
"""

import pytest

from authorized_payments.exceptions import LockAcquisitionError
from authorized_payments.locks import DistributedLock


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_success(self, mock_redis):
        """Should acquire lock when available."""
        lock = DistributedLock("charge:refund:1", ttl=30, blocking=False)

        assert lock.acquire() is True
        assert lock._token is not None
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:charge:refund:1"
        assert kwargs == {"nx": True, "ex": 30}

    def test_each_acquisition_gets_its_own_token(self, mock_redis):
        lock1 = DistributedLock("key1", blocking=False)
        lock2 = DistributedLock("key2", blocking=False)

        lock1.acquire()
        lock2.acquire()

        assert lock1._token != lock2._token

    def test_non_blocking_raises_when_held(self, mock_redis):
        """Non-blocking mode should raise immediately if the lock is taken."""
        mock_redis.set.return_value = False

        lock = DistributedLock("key", blocking=False)
        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.is_retryable
        assert lock._token is None

    def test_blocking_waits_and_acquires(self, mock_redis):
        """Blocking mode should poll until the lock frees up."""
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("key", blocking=True, timeout=1.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_blocking_timeout_raises(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("key", blocking=True, timeout=0.1)
        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details == {"key": "lock:key", "timeout": 0.1}

    def test_release_runs_owner_checked_script(self, mock_redis):
        """Release deletes the key only through the token-checking script."""
        lock = DistributedLock("key", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        assert lock._token is None
        args = mock_redis.eval.call_args[0]
        assert args[0] == DistributedLock.RELEASE_SCRIPT
        assert args[1:] == (1, "lock:key", token)

    def test_release_twice_is_harmless(self, mock_redis):
        lock = DistributedLock("key", blocking=False)
        lock.acquire()
        lock.release()

        assert lock.release() is False
        assert mock_redis.eval.call_count == 1

    def test_release_of_expired_lock_returns_false(self, mock_redis):
        """A holder whose TTL ran out does not delete the next holder's key."""
        mock_redis.eval.return_value = 0

        lock = DistributedLock("key", blocking=False)
        lock.acquire()

        assert lock.release() is False

    def test_context_manager_releases_on_error(self, mock_redis):
        """The lock is released even when the body raises."""
        with pytest.raises(RuntimeError):
            with DistributedLock("key", blocking=False) as lock:
                assert lock._token is not None
                raise RuntimeError("boom")

        assert lock._token is None
        mock_redis.eval.assert_called_once()
