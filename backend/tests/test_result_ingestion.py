"""
backend/tests/test_result_ingestion.py

Purpose:
    Transactional result ingestion: played transition plus both standings
    rows, idempotence under duplicate reports, and the storage-event path.
"""

from __future__ import annotations

import pytest

from conftest import seed_fixture, seed_league
from leagueops.models.ops import ResultReport
from leagueops.services.errors import (
    FixtureNotFoundError,
    FixtureTerminalError,
    StaleRequestTokenError,
    StorageNotConfiguredError,
)
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.result_service import ResultIngestionService


def _row(db, team_id: str) -> dict:
    return db.standings.docs[f"L1:{team_id}"]


def _summary(row: dict) -> tuple:
    return (
        row["played"], row["won"], row["drawn"], row["lost"],
        row["goals_for"], row["goals_against"], row["goal_difference"], row["points"],
    )


@pytest.mark.asyncio
async def test_report_commits_fixture_and_both_rows(services, fake_db):
    await seed_fixture(fake_db, status="running")

    outcome = await services.results.ingest("L1", "M1", {"score": {"home": 2, "away": 1}})

    assert outcome.counted
    fixture = fake_db.fixtures.docs["L1:M1"]
    assert fixture["status"] == "played"
    assert fixture["score"] == {"home": 2, "away": 1}
    assert fixture["replay"] == {"path": "replays/S1/L1/M1.json"}
    assert fixture["played_at"] is not None
    assert _summary(_row(fake_db, "T1")) == (1, 1, 0, 0, 2, 1, 1, 3)
    assert _summary(_row(fake_db, "T2")) == (1, 0, 0, 1, 1, 2, -1, 0)


@pytest.mark.asyncio
async def test_duplicate_report_counts_once(services, fake_db):
    await seed_fixture(fake_db, status="running")

    first = await services.results.ingest("L1", "M1", {"h": 3, "a": 0}, source="callback")
    second = await services.results.ingest("L1", "M1", {"h": 0, "a": 5}, source="storage")

    assert first.status == "played"
    assert second.status == "already_played"
    assert second.score == {"home": 3, "away": 0}
    assert _summary(_row(fake_db, "T1")) == (1, 1, 0, 0, 3, 0, 3, 3)
    assert _row(fake_db, "T2")["played"] == 1


@pytest.mark.asyncio
async def test_draw_updates_both_sides_symmetrically(services, fake_db):
    await seed_fixture(fake_db, status="running")

    await services.results.ingest("L1", "M1", {"result": {"homeGoals": 1, "awayGoals": 1}})

    for team in ("T1", "T2"):
        row = _row(fake_db, team)
        assert (row["won"], row["drawn"], row["lost"], row["points"]) == (0, 1, 0, 1)
        assert (row["goals_for"], row["goals_against"]) == (1, 1)


@pytest.mark.asyncio
async def test_existing_rows_accumulate(services, fake_db):
    await seed_fixture(fake_db, status="running")
    await seed_fixture(fake_db, match_id="M2", home="T2", away="T1", status="running")

    await services.results.ingest("L1", "M1", {"score": {"home": 2, "away": 0}})
    await services.results.ingest("L1", "M2", {"score": {"home": 1, "away": 1}})

    assert _summary(_row(fake_db, "T1")) == (2, 1, 1, 0, 3, 1, 2, 4)
    assert _summary(_row(fake_db, "T2")) == (2, 0, 1, 1, 1, 3, -2, 1)


@pytest.mark.asyncio
async def test_failed_fixture_rejects_result_without_side_effects(services, fake_db):
    await seed_fixture(fake_db, status="failed", fail_reason="poisoned")

    with pytest.raises(FixtureTerminalError):
        await services.results.ingest("L1", "M1", {"score": {"home": 1, "away": 0}})

    assert fake_db.fixtures.docs["L1:M1"]["status"] == "failed"
    assert fake_db.standings.docs == {}


@pytest.mark.asyncio
async def test_unknown_fixture_is_not_found(services):
    with pytest.raises(FixtureNotFoundError):
        await services.results.ingest("L1", "nope", {"score": {"home": 1, "away": 0}})


@pytest.mark.asyncio
async def test_stale_request_token_is_rejected(services, fake_db):
    await seed_fixture(fake_db, status="running", request_token="current")

    with pytest.raises(StaleRequestTokenError):
        await services.results.ingest("L1", "M1", {"h": 1, "a": 0}, request_token="old")

    outcome = await services.results.ingest("L1", "M1", {"h": 1, "a": 0}, request_token="current")
    assert outcome.counted


@pytest.mark.asyncio
async def test_standings_failure_rolls_back_fixture(services, fake_db, monkeypatch):
    await seed_fixture(fake_db, status="running")
    original = fake_db.standings.update_one
    calls = {"n": 0}

    async def flaky_update(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("write conflict")
        return await original(*args, **kwargs)

    monkeypatch.setattr(fake_db.standings, "update_one", flaky_update)

    with pytest.raises(RuntimeError):
        await services.results.ingest("L1", "M1", {"score": {"home": 2, "away": 2}})

    assert fake_db.fixtures.docs["L1:M1"]["status"] == "running"
    assert fake_db.standings.docs == {}


@pytest.mark.asyncio
async def test_last_result_completes_league(services, fake_db):
    await seed_league(fake_db, state="active")
    await seed_fixture(fake_db, status="running")

    await services.results.ingest("L1", "M1", {"score": {"home": 0, "away": 1}})

    assert fake_db.leagues.docs["L1"]["state"] == "completed"


@pytest.mark.asyncio
async def test_report_model_feeds_ingest(services, fake_db):
    await seed_fixture(fake_db, status="running")
    report = ResultReport.model_validate({
        "matchId": "M1",
        "leagueId": "L1",
        "seasonId": "S1",
        "score": {"home": 4, "away": 2},
        "replay": {"path": "replays/S1/L1/M1.json"},
    })

    outcome = await services.results.ingest_report(report)

    assert outcome.score == {"home": 4, "away": 2}
    assert fake_db.fixtures.docs["L1:M1"]["result_source"] == "callback"


@pytest.mark.asyncio
@pytest.mark.parametrize("score_fields", [
    {"h": 2, "a": 0},
    {"score": {"home": 2, "away": 0}},
    {"result": {"homeGoals": 2, "awayGoals": 0}},
])
async def test_every_score_shape_books_the_same_standings(services, fake_db, score_fields):
    await seed_fixture(fake_db, status="running")
    report = ResultReport.model_validate({"matchId": "M1", "leagueId": "L1", **score_fields})

    outcome = await services.results.ingest_report(report)

    assert outcome.counted
    assert fake_db.fixtures.docs["L1:M1"]["score"] == {"home": 2, "away": 0}
    assert _summary(_row(fake_db, "T1")) == (1, 1, 0, 0, 2, 0, 2, 3)
    assert _summary(_row(fake_db, "T2")) == (1, 0, 0, 1, 0, 2, -2, 0)


@pytest.mark.asyncio
async def test_storage_blob_is_ingested_by_path(settings, fake_db, fake_storage):
    await seed_fixture(fake_db, status="running")
    fake_storage.objects["results/S1/L1/M1.json"] = {
        "matchId": "M1", "leagueId": "L1", "h": 1, "a": 3,
    }

    service = ResultIngestionService(settings, fake_db, FixtureStore(fake_db), fake_storage)
    outcome = await service.ingest_blob("results/S1/L1/M1.json")

    assert outcome.counted
    assert fake_db.fixtures.docs["L1:M1"]["score"] == {"home": 1, "away": 3}
    assert fake_db.fixtures.docs["L1:M1"]["result_source"] == "storage"
    assert await service.ingest_blob("replays/S1/L1/M1.json") is None
    assert await service.ingest_blob("results/S1/L1/M9.json") is None


@pytest.mark.asyncio
async def test_storage_event_without_store_is_rejected(services):
    with pytest.raises(StorageNotConfiguredError):
        await services.results.ingest_blob("results/S1/L1/M1.json")
