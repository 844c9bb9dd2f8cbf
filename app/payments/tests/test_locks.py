"""
Tests for concurrency control utilities.

DistributedLock runs against a mocked Redis connection; check_version
runs against the test database.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError
from payments.locks import DistributedLock, check_version
from payments.models import EscrowEntry


@pytest.fixture
def mock_redis():
    """Patch the Redis connection used by DistributedLock."""
    redis = MagicMock()
    with patch("payments.locks.get_redis_connection", return_value=redis):
        yield redis


# =============================================================================
# DistributedLock
# =============================================================================


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_success(self, mock_redis):
        """Should acquire lock when available."""
        mock_redis.set.return_value = True

        lock = DistributedLock("reconciliation:sweep", ttl=600, blocking=False)

        assert lock.acquire() is True
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:reconciliation:sweep"
        assert kwargs["nx"] is True
        assert kwargs["ex"] == 600

    def test_acquire_non_blocking_raises_when_held(self, mock_redis):
        """Non-blocking mode should raise immediately if lock unavailable."""
        mock_redis.set.return_value = False

        lock = DistributedLock("reconciliation:sweep", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.details["key"] == "lock:reconciliation:sweep"
        mock_redis.set.assert_called_once()

    def test_acquire_blocking_waits_and_acquires(self, mock_redis):
        """Blocking mode should retry until the lock frees up."""
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("test:key", blocking=True, timeout=1.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_acquire_blocking_timeout_raises_error(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("test:key", blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["timeout"] == 0.1

    def test_release_runs_owner_check_script(self, mock_redis):
        """Release deletes the key only through the token-checking script."""
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 1

        lock = DistributedLock("test:key", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        mock_redis.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:test:key", token
        )

    def test_release_without_acquire_returns_false(self, mock_redis):
        lock = DistributedLock("test:key", blocking=False)

        assert lock.release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        """The lock is released even if the body raises."""
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 1

        with pytest.raises(RuntimeError):
            with DistributedLock("test:key", blocking=False):
                raise RuntimeError("sweep crashed")

        mock_redis.eval.assert_called_once()

    def test_tokens_are_unique(self, mock_redis):
        mock_redis.set.return_value = True

        first = DistributedLock("a", blocking=False)
        second = DistributedLock("b", blocking=False)
        first.acquire()
        second.acquire()

        assert first._token != second._token


# =============================================================================
# Optimistic Locking
# =============================================================================


class TestCheckVersion:
    """Tests for check_version()."""

    def test_matching_version_returns_instance(self, db, pending_entry):
        entry = check_version(EscrowEntry, pending_entry.pk, expected_version=1)

        assert entry.pk == pending_entry.pk

    def test_stale_version_raises(self, db, pending_entry):
        """A concurrent save makes the caller's version stale."""
        pending_entry.last_error = "changed elsewhere"
        pending_entry.save()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(EscrowEntry, pending_entry.pk, expected_version=1)

        assert exc_info.value.details["current_version"] == 2
        assert exc_info.value.error_code == "STALE_RECORD"

    def test_missing_record_raises_not_found(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            check_version(EscrowEntry, uuid.uuid4(), expected_version=1)

        assert exc_info.value.error_code == "ESCROWENTRY_NOT_FOUND"
