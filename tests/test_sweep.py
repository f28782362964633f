import asyncio
import sqlite3
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from conftest import GROUP_ID, HOLDER, MINT, OTHER_HOLDER
from solana_token_gate.errors import ConfigurationError
from solana_token_gate.models import EventType
from solana_token_gate.sweep import SweepOutcome, run_forever, run_ownership_sweep, sweep_once

THIRD_HOLDER = "11111111111111111111111111111111"
EXPIRES = datetime(2030, 1, 1, tzinfo=timezone.utc)


def _verified(store, external_id, wallet, balance=50.0):
    store.save_challenge(external_id, wallet, 0.000001, EXPIRES)
    store.mark_verified(external_id, balance)


@pytest.mark.asyncio
async def test_failure_for_one_identity_does_not_stop_the_sweep(service, store, ledger, access):
    _verified(store, "1", HOLDER)
    _verified(store, "2", OTHER_HOLDER, balance=70.0)
    _verified(store, "3", THIRD_HOLDER)
    ledger.balances[HOLDER] = 1.0  # below 0.1% of 10_000
    ledger.failing_wallets.add(OTHER_HOLDER)
    ledger.balances[THIRD_HOLDER] = 2.0

    report = await sweep_once(service)

    outcomes = {r.external_id: r.outcome for r in report.results}
    assert outcomes == {
        "1": SweepOutcome.REVOKED,
        "2": SweepOutcome.FAILED,
        "3": SweepOutcome.REVOKED,
    }
    assert not store.get("1").verified
    assert not store.get("3").verified
    assert store.get("2").verified
    assert store.get("2").last_known_balance == 70.0
    assert store.get("1").last_known_balance == 1.0
    assert [a[1] for a in access.of("revoke")] == ["1", "3"]


@pytest.mark.asyncio
async def test_failure_isolation_holds_with_parallel_workers(service, store, ledger):
    _verified(store, "1", HOLDER)
    _verified(store, "2", OTHER_HOLDER)
    _verified(store, "3", THIRD_HOLDER)
    ledger.balances.update({HOLDER: 1.0, THIRD_HOLDER: 20.0})
    ledger.failing_wallets.add(OTHER_HOLDER)

    report = await sweep_once(service, concurrency=3)

    assert report.count(SweepOutcome.REVOKED) == 1
    assert report.count(SweepOutcome.FAILED) == 1
    assert report.count(SweepOutcome.KEPT) == 1


@pytest.mark.asyncio
async def test_whitelisted_identities_are_never_revoked(service, store, ledger, access):
    _verified(store, "1", HOLDER)
    store.set_whitelisted("1", True)
    ledger.balances[HOLDER] = 0.0

    report = await sweep_once(service)

    assert report.results[0].outcome is SweepOutcome.SKIPPED
    assert store.get("1").verified
    assert access.of("revoke") == []
    assert ("get_balance", HOLDER, MINT) not in ledger.calls


@pytest.mark.asyncio
async def test_qualifying_holder_only_gets_balance_refreshed(service, store, ledger, access):
    _verified(store, "1", HOLDER, balance=50.0)
    before = store.get("1")
    ledger.balances[HOLDER] = 75.0

    await sweep_once(service)

    after = store.get("1")
    assert after.verified
    assert after.last_known_balance == 75.0
    assert after.verified_at == before.verified_at
    assert access.actions == []


@pytest.mark.asyncio
async def test_revocation_side_effects(service, store, ledger, access, settings):
    _verified(store, "1", HOLDER)
    ledger.balances[HOLDER] = 5.0

    await sweep_once(service)

    assert access.of("revoke", "1") == [("revoke", "1", GROUP_ID)]
    [(_, _, text)] = access.of("notify", "1")
    assert "0.0500%" in text and "0.1000%" in text
    assert access.of("notify", settings.admin_ids[0])
    revoked = store.list_events("1")[-1]
    assert revoked.event_type is EventType.REVOKED
    assert revoked.payload["balance"] == 5.0


@pytest.mark.asyncio
async def test_failed_removal_still_revokes(service, store, ledger, access):
    _verified(store, "1", HOLDER)
    ledger.balances[HOLDER] = 0.0
    access.fail_on.add(("revoke", "1"))

    report = await sweep_once(service)

    assert report.results[0].outcome is SweepOutcome.REVOKED
    assert not store.get("1").verified


@pytest.mark.asyncio
async def test_nothing_to_sweep(service, ledger):
    report = await sweep_once(service)

    assert report.results == []
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_missing_mint_aborts_before_any_lookup(store, ledger, access, settings):
    _verified(store, "1", HOLDER)
    with pytest.raises(ConfigurationError):
        await run_ownership_sweep(store, ledger, access, replace(settings, token_mint=""))
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_run_ownership_sweep_returns_nothing(store, ledger, access, settings):
    _verified(store, "1", HOLDER)
    ledger.balances[HOLDER] = 0.0

    assert await run_ownership_sweep(store, ledger, access, settings) is None
    assert not store.get("1").verified


@pytest.mark.asyncio
async def test_run_forever_survives_a_failed_tick(service, monkeypatch):
    ticks = []
    third_tick = asyncio.Event()

    def list_verified():
        ticks.append(len(ticks))
        if len(ticks) == 1:
            raise sqlite3.OperationalError("database is locked")
        if len(ticks) >= 3:
            third_tick.set()
        return []

    monkeypatch.setattr(service.store, "list_verified", list_verified)
    sweeper = asyncio.create_task(run_forever(service, interval_s=0))
    try:
        await asyncio.wait_for(third_tick.wait(), timeout=2)
    finally:
        sweeper.cancel()
    with pytest.raises(asyncio.CancelledError):
        await sweeper

    assert len(ticks) >= 3
