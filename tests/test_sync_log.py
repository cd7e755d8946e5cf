"""Tests for the sync log store."""
from datetime import datetime, timezone

import pytest

from gymledger.accounting.errors import InvalidInput, SyncLogNotFound
from gymledger.accounting.sync_log import SyncLogStore

GYM_ID = "gym_test"


class TestSyncLogLifecycle:

    @pytest.mark.asyncio
    async def test_create_starts_in_progress(self, db):
        store = SyncLogStore(db, GYM_ID)
        log_id = await store.create("quickbooks", "manual", triggered_by="user_1")

        log = await store.get(log_id)
        assert log.status == "in_progress"
        assert log.transactions_attempted == 0
        assert log.triggered_by == "user_1"
        assert log.completed_at is None

    @pytest.mark.asyncio
    async def test_complete_stamps_duration(self, db):
        store = SyncLogStore(db, GYM_ID)
        log_id = await store.create("xero", "automatic")

        log = await store.complete(
            log_id, "partial", 3, 2, 1,
            error_message="1 transactions failed to sync",
            error_details={"errors": [{"paymentId": "pay_1", "error": "boom"}], "warnings": []},
        )

        assert log.status == "partial"
        assert log.completed_at is not None
        assert log.duration_seconds is not None and log.duration_seconds >= 0
        assert log.error_details["errors"][0]["paymentId"] == "pay_1"

    @pytest.mark.asyncio
    async def test_terminal_log_is_immutable(self, db):
        store = SyncLogStore(db, GYM_ID)
        log_id = await store.create("quickbooks", "manual")
        await store.complete(log_id, "completed", 0, 0, 0)

        with pytest.raises(InvalidInput):
            await store.update(log_id, error_message="late edit")

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields_and_statuses(self, db):
        store = SyncLogStore(db, GYM_ID)
        log_id = await store.create("quickbooks", "manual")

        with pytest.raises(InvalidInput):
            await store.update(log_id, gym_id="other")
        with pytest.raises(InvalidInput):
            await store.update(log_id, status="exploded")
        with pytest.raises(InvalidInput):
            await store.complete(log_id, "in_progress", 0, 0, 0)

    @pytest.mark.asyncio
    async def test_invalid_sync_type(self, db):
        with pytest.raises(InvalidInput):
            await SyncLogStore(db, GYM_ID).create("quickbooks", "nightly")

    @pytest.mark.asyncio
    async def test_date_range_is_recorded(self, db):
        store = SyncLogStore(db, GYM_ID)
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2026, 1, 31, tzinfo=timezone.utc)
        log = await store.get(await store.create("quickbooks", "manual", date_range=(start, end)))
        assert log.date_range_start.replace(tzinfo=None) == start.replace(tzinfo=None)
        assert log.date_range_end.replace(tzinfo=None) == end.replace(tzinfo=None)


class TestSyncLogQueries:

    @pytest.mark.asyncio
    async def test_get_is_scoped_to_gym(self, db):
        log_id = await SyncLogStore(db, "gym_other").create("quickbooks", "manual")
        with pytest.raises(SyncLogNotFound):
            await SyncLogStore(db, GYM_ID).get(log_id)

    @pytest.mark.asyncio
    async def test_history_newest_first_and_filtered(self, db):
        store = SyncLogStore(db, GYM_ID)
        first = await store.create("quickbooks", "manual")
        second = await store.create("xero", "manual")
        third = await store.create("quickbooks", "automatic")

        logs = await store.history()
        assert [log.id for log in logs][0] == third
        assert {log.id for log in logs} == {first, second, third}

        qb_logs = await store.history(provider="quickbooks", limit=1)
        assert [log.id for log in qb_logs] == [third]
