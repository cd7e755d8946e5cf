"""Tests for the automatic sync trigger."""
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from gymledger.accounting.automatic import find_due_integrations, is_due, run_due_syncs
from gymledger.accounting.errors import PostingFailed, SyncAlreadyInProgress
from gymledger.accounting.sync import SyncOrchestrator
from gymledger.models import utcnow


def test_is_due():
    now = utcnow()
    never = SimpleNamespace(last_sync_at=None, sync_frequency_minutes=60)
    recent = SimpleNamespace(last_sync_at=now - timedelta(minutes=10), sync_frequency_minutes=60)
    elapsed = SimpleNamespace(last_sync_at=now - timedelta(minutes=60), sync_frequency_minutes=60)

    assert is_due(never, now) is True
    assert is_due(recent, now) is False
    assert is_due(elapsed, now) is True


@pytest.mark.asyncio
async def test_only_active_enabled_elapsed_integrations_are_due(db, make_integration):
    now = utcnow()
    await make_integration("quickbooks", last_sync_at=now - timedelta(hours=2))
    await make_integration("xero", last_sync_at=now - timedelta(minutes=5))
    await make_integration("quickbooks", gym_id="gym_paused", auto_sync_enabled=False)
    await make_integration("xero", gym_id="gym_gone", status="disconnected")
    await make_integration("xero", gym_id="gym_new")

    due = await find_due_integrations(db)

    assert sorted((i.gym_id, i.provider) for i in due) == [
        ("gym_new", "xero"),
        ("gym_test", "quickbooks"),
    ]


@pytest.mark.asyncio
async def test_due_integration_is_synced(db, vault, fake_adapter, make_integration, make_payment, map_categories):
    await make_integration("quickbooks")
    await map_categories("quickbooks")
    await make_payment()

    outcomes = await run_due_syncs(
        db,
        orchestrator_factory=lambda session, gym_id: SyncOrchestrator(session, gym_id, adapter=fake_adapter, vault=vault),
    )

    (outcome,) = outcomes
    assert outcome.error is None
    assert outcome.skipped is False
    assert outcome.result.status == "completed"
    assert outcome.result.succeeded == 1
    assert len(fake_adapter.posted) == 1

    # Just synced, so nothing is due on the next tick
    assert await run_due_syncs(db, orchestrator_factory=lambda session, gym_id: None) == []


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_rest(db, make_integration):
    await make_integration("quickbooks", gym_id="gym_locked")
    await make_integration("quickbooks", gym_id="gym_broken")
    await make_integration("quickbooks", gym_id="gym_crashing")
    await make_integration("quickbooks", gym_id="gym_fine")

    side_effects = {
        "gym_locked": SyncAlreadyInProgress("A sync is already in progress"),
        "gym_broken": PostingFailed("QuickBooks rejected the transaction (400)"),
        "gym_crashing": RuntimeError("boom"),
        "gym_fine": SimpleNamespace(status="completed"),
    }

    def factory(session, gym_id):
        orchestrator = MagicMock()
        effect = side_effects[gym_id]
        if isinstance(effect, Exception):
            orchestrator.run_sync = AsyncMock(side_effect=effect)
        else:
            orchestrator.run_sync = AsyncMock(return_value=effect)
        return orchestrator

    outcomes = {o.gym_id: o for o in await run_due_syncs(db, orchestrator_factory=factory)}

    assert outcomes["gym_locked"].skipped is True
    assert outcomes["gym_broken"].error == "QuickBooks rejected the transaction (400)"
    assert outcomes["gym_crashing"].error == "boom"
    assert outcomes["gym_fine"].result.status == "completed"
    assert outcomes["gym_fine"].error is None
