"""Unit tests for the skip-unchanged decision."""
from datetime import datetime, timedelta, timezone

from catalog_sync.db.models import SyncStatus
from catalog_sync.services.sync_state import SyncState, should_skip_unchanged

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _state(status=SyncStatus.SYNCED, source_updated_at=T0) -> SyncState:
    return SyncState(external_id="123", sync_status=status, source_updated_at=source_updated_at)


def test_synced_and_not_newer_is_skipped(make_record):
    assert should_skip_unchanged(_state(), make_record(updated_at=T0))
    assert should_skip_unchanged(_state(), make_record(updated_at=T0 - timedelta(hours=1)))


def test_newer_feed_data_is_not_skipped(make_record):
    assert not should_skip_unchanged(_state(), make_record(updated_at=T0 + timedelta(seconds=1)))


def test_unknown_product_is_not_skipped(make_record):
    assert not should_skip_unchanged(None, make_record())


def test_missing_stored_timestamp_is_not_skipped(make_record):
    assert not should_skip_unchanged(_state(source_updated_at=None), make_record())


def test_non_synced_states_are_not_skipped(make_record):
    for status in (SyncStatus.PENDING, SyncStatus.ERROR, SyncStatus.SKIPPED_FILTER):
        assert not should_skip_unchanged(_state(status=status), make_record(updated_at=T0))


def test_force_resync_never_skips(make_record):
    assert not should_skip_unchanged(_state(), make_record(updated_at=T0), force_resync=True)
