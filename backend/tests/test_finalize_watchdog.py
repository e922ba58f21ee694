"""
backend/tests/test_finalize_watchdog.py

Purpose:
    Bounded watchdog retry: re-dispatch while budget remains, poison with a
    Failed Job record and an alert once it is spent.
"""

from __future__ import annotations

import pytest

from conftest import LOCK_NOW, seed_fixture, seed_league, seed_team
from leagueops.services.errors import FixtureNotFoundError


async def _running_fixture(services, db):
    await seed_team(db, "T1", "Red Lions")
    await seed_team(db, "T2", "Blue Hawks")
    await seed_fixture(db)
    await services.lineup.lock_window_snapshot(now=LOCK_NOW)
    await services.dispatch.start_match("M1", "L1")


@pytest.mark.asyncio
async def test_played_fixture_stops_the_loop(services, fake_db, fake_worker):
    await _running_fixture(services, fake_db)
    await services.results.ingest("L1", "M1", {"score": {"home": 0, "away": 0}})

    outcome = await services.watchdog.run("M1", "L1", 0)

    assert outcome.outcome == "played"
    assert outcome.to_payload() == {"ok": True, "played": True, "attempt": 0}
    assert len(fake_worker.jobs) == 1
    assert "finalize_watchdog:L1:M1:1" not in fake_db.tasks.docs


@pytest.mark.asyncio
async def test_last_retry_redispatches_once_and_schedules_final_check(services, settings, fake_db, fake_worker):
    await _running_fixture(services, fake_db)
    last = settings.FINALIZE_MAX_RETRIES - 1

    outcome = await services.watchdog.run("M1", "L1", last)

    assert outcome.outcome == "retried"
    assert len(fake_worker.jobs) == 2
    watchdog_tasks = [k for k in fake_db.tasks.docs if k.startswith("finalize_watchdog:")]
    assert sorted(watchdog_tasks) == sorted([
        "finalize_watchdog:L1:M1:0",
        f"finalize_watchdog:L1:M1:{settings.FINALIZE_MAX_RETRIES}",
    ])
    task = fake_db.tasks.docs[f"finalize_watchdog:L1:M1:{settings.FINALIZE_MAX_RETRIES}"]
    assert task["payload"]["attempt"] == settings.FINALIZE_MAX_RETRIES
    assert fake_db.fixtures.docs["L1:M1"]["status"] == "running"


@pytest.mark.asyncio
async def test_exhausted_budget_poisons_fixture(services, settings, fake_db, fake_worker, fake_alerts):
    await seed_league(fake_db, state="active")
    await _running_fixture(services, fake_db)
    tasks_before = set(fake_db.tasks.docs)

    outcome = await services.watchdog.run("M1", "L1", settings.FINALIZE_MAX_RETRIES)

    assert outcome.outcome == "poisoned"
    fixture = fake_db.fixtures.docs["L1:M1"]
    assert fixture["status"] == "failed"
    assert "3 watchdog retries" in fixture["fail_reason"]
    assert list(fake_db.failed_jobs.docs) == ["M1"]
    assert fake_db.failed_jobs.docs["M1"]["last_status"] == "running"
    assert len(fake_worker.jobs) == 1
    assert set(fake_db.tasks.docs) == tasks_before
    assert len(fake_alerts.sent) == 1
    assert "L1/M1" in fake_alerts.sent[0]
    assert fake_db.leagues.docs["L1"]["state"] == "completed"


@pytest.mark.asyncio
async def test_repeated_poison_writes_one_record_and_one_alert(services, settings, fake_db, fake_alerts):
    await _running_fixture(services, fake_db)

    await services.watchdog.run("M1", "L1", settings.FINALIZE_MAX_RETRIES)
    again = await services.watchdog.run("M1", "L1", settings.FINALIZE_MAX_RETRIES)

    assert again.outcome == "failed"
    assert len(fake_db.failed_jobs.docs) == 1
    assert len(fake_alerts.sent) == 1


@pytest.mark.asyncio
async def test_worker_outage_still_schedules_next_attempt(services, fake_db, fake_worker):
    await _running_fixture(services, fake_db)
    fake_worker.fail = True

    outcome = await services.watchdog.run("M1", "L1", 0)

    assert outcome.outcome == "retried"
    assert "finalize_watchdog:L1:M1:1" in fake_db.tasks.docs


@pytest.mark.asyncio
async def test_unknown_fixture_is_a_hard_error(services):
    with pytest.raises(FixtureNotFoundError):
        await services.watchdog.run("missing", "L1", 0)
