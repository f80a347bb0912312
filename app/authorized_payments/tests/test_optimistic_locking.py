"""
Tests for optimistic locking.

Covers check_version and the version counter that VersionedMixin keeps
on Authorization and Charge.
"""

import uuid

import pytest
from django.db import transaction

from core.exceptions import NotFoundError

from authorized_payments.exceptions import StaleRecordError
from authorized_payments.locks import check_version
from authorized_payments.models import Authorization, Charge


class TestCheckVersion:
    """Tests for check_version function."""

    def test_returns_instance_when_version_matches(self, db, active_authorization):
        """Should return the locked instance when the version matches."""
        with transaction.atomic():
            result = check_version(
                Authorization,
                active_authorization.pk,
                expected_version=active_authorization.version,
            )

        assert result.pk == active_authorization.pk

    def test_raises_stale_record_when_version_mismatch(self, db, active_authorization):
        """Should raise StaleRecordError when the row moved on."""
        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Authorization, active_authorization.pk, expected_version=999)

        details = exc_info.value.details
        assert details["pk"] == str(active_authorization.pk)
        assert details["expected_version"] == 999
        assert details["current_version"] == active_authorization.version

    def test_raises_not_found_when_record_missing(self, db):
        fake_pk = uuid.uuid4()

        with pytest.raises(NotFoundError) as exc_info:
            check_version(Charge, fake_pk, expected_version=1)

        assert exc_info.value.error_code == "CHARGE_NOT_FOUND"
        assert exc_info.value.details["pk"] == str(fake_pk)

    def test_concurrent_writer_makes_reader_stale(self, db, failed_charge):
        """A copy read before another save can no longer be claimed."""
        stale_copy = Charge.objects.get(pk=failed_charge.pk)

        failed_charge.retry_count = 1
        failed_charge.save()

        with pytest.raises(StaleRecordError):
            with transaction.atomic():
                check_version(Charge, stale_copy.pk, stale_copy.version)


class TestVersionFieldBehavior:
    """Tests for the version counter on save."""

    def test_new_record_starts_at_one(self, db, active_authorization):
        assert active_authorization.version == 1

    def test_every_save_increments(self, db, active_authorization):
        """Version increases by one per save and is reloaded as an int."""
        active_authorization.description = "Updated"
        active_authorization.save()
        assert active_authorization.version == 2

        active_authorization.save()
        assert active_authorization.version == 3
        assert Authorization.objects.get(pk=active_authorization.pk).version == 3

    def test_update_fields_save_also_increments(self, db, failed_charge):
        """Partial saves bump the version too."""
        failed_charge.retry_count = 2
        failed_charge.save(update_fields=["retry_count"])

        reloaded = Charge.objects.get(pk=failed_charge.pk)
        assert reloaded.version == 2
        assert reloaded.retry_count == 2
