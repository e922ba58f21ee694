"""
backend/leagueops/services/lineup_service.py

Purpose:
    Lineup lock. Inside the pre-kickoff window every scheduled fixture of
    tonight gets one immutable Match Plan holding both sides' formation,
    tactics, starters and substitutes plus the RNG seed. Plans are created
    with insert (never upsert), so overlapping invocations create exactly one
    plan per match and the loser simply skips.

Dependencies:
    - pymongo (DuplicateKeyError)
    - leagueops.services.fixture_store
    - leagueops.services.heartbeat_service
    - leagueops.utils.clock
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from pymongo.errors import DuplicateKeyError

from leagueops.config import Settings
from leagueops.models.fixtures import FixtureStatus, MatchPlan, PlanSide
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.heartbeat_service import HeartbeatService
from leagueops.utils import utcnow
from leagueops.utils.clock import civil_day, daily_window

logger = logging.getLogger("leagueops.lineup")

_SEED_MODULUS = 2**31 - 1


def make_seed(match_id: str, mode: str = "random") -> int:
    """31-bit positive RNG seed, either random or derived from the match id."""
    if mode == "deterministic":
        digest = hashlib.sha256(match_id.encode("utf-8")).hexdigest()
        return int(digest[:12], 16) % _SEED_MODULUS or 1
    return secrets.randbelow(_SEED_MODULUS - 1) + 1


class TeamDirectory:
    """Read access to the authoritative live team records."""

    def __init__(self, db) -> None:
        self._db = db

    async def get(self, team_id: str) -> dict | None:
        return await self._db.teams.find_one({"_id": team_id})


def freeze_side(team_id: str, team: dict) -> dict:
    """Copy the live lineup fields of a team record into a plan side."""
    lineup = team.get("lineup") or {}
    starters = lineup.get("starters") or team.get("starters") or []
    substitutes = lineup.get("substitutes") or lineup.get("subs") or team.get("substitutes") or []
    return {
        "team_id": team_id,
        "name": team.get("name") or team.get("clubName") or f"Team {team_id[:6]}",
        "formation": lineup.get("formation") or team.get("formation"),
        "tactics": copy.deepcopy(lineup.get("tactics") or team.get("tactics") or {}),
        "starters": copy.deepcopy(list(starters)),
        "substitutes": copy.deepcopy(list(substitutes)),
    }


@dataclass
class LockResult:
    day: str
    considered: int = 0
    created: int = 0
    existing: int = 0
    skipped: int = 0


class LineupSnapshotService:
    def __init__(
        self,
        settings: Settings,
        db,
        fixtures: FixtureStore,
        teams: TeamDirectory,
        heartbeat: HeartbeatService | None = None,
    ) -> None:
        self._db = db
        self._fixtures = fixtures
        self._teams = teams
        self._heartbeat = heartbeat
        self._tz = settings.OPERATING_TZ
        self._kickoff = settings.kickoff_time
        self._window_end = settings.window_end_time
        self._item_timeout = settings.LOCK_ITEM_TIMEOUT_SECONDS
        self._seed_mode = settings.SEED_MODE

    async def lock_window_snapshot(self, now: datetime | None = None) -> LockResult:
        now = now or utcnow()
        day = civil_day(now, self._tz)
        window = daily_window(day, self._tz, self._kickoff, self._window_end)
        fixtures = await self._fixtures.find_in_window(window, [FixtureStatus.SCHEDULED])

        result = LockResult(day=day, considered=len(fixtures))
        season_cache: dict[str, str | None] = {}  # per-invocation only

        for fixture in fixtures:
            league_id, match_id = fixture["league_id"], fixture["match_id"]
            try:
                outcome = await asyncio.wait_for(
                    self._lock_one(fixture, season_cache), timeout=self._item_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Lock timed out for %s/%s, skipped", league_id, match_id)
                result.skipped += 1
                continue
            except Exception as exc:
                logger.error(
                    "Lock failed for %s/%s (%s): %s", league_id, match_id, exc.__class__.__name__, exc,
                )
                result.skipped += 1
                continue

            if outcome == "created":
                result.created += 1
            elif outcome == "existing":
                result.existing += 1
            else:
                result.skipped += 1

        logger.info(
            "Lock %s: considered=%d created=%d existing=%d skipped=%d",
            day, result.considered, result.created, result.existing, result.skipped,
        )
        if self._heartbeat is not None:
            await self._heartbeat.mark_heartbeat({"lockOk": True, "lockCount": result.created}, day=day)
        return result

    async def _lock_one(self, fixture: dict, season_cache: dict[str, str | None]) -> str:
        league_id, match_id = fixture["league_id"], fixture["match_id"]
        now = utcnow()

        existing = await self._db.match_plans.find_one({"_id": match_id}, {"league_id": 1})
        if existing is not None:
            if existing.get("league_id") != league_id:
                return self._foreign_plan(league_id, match_id, existing)
            await self._fixtures.transition(
                league_id, match_id, FixtureStatus.LOCKED, fields={"locked_at": now},
            )
            return "existing"

        home = await self._teams.get(fixture["home_team_id"])
        away = await self._teams.get(fixture["away_team_id"])
        if home is None or away is None:
            logger.warning(
                "Skipping lock for %s/%s: team record missing (home=%s away=%s)",
                league_id, match_id,
                "ok" if home else fixture["home_team_id"],
                "ok" if away else fixture["away_team_id"],
            )
            return "skipped"

        seed = await self._fixtures.ensure_seed(fixture, make_seed(match_id, self._seed_mode))
        plan = MatchPlan(
            id=match_id,
            match_id=match_id,
            league_id=league_id,
            season_id=await self._season_for(fixture, season_cache),
            created_at=now,
            seed=seed,
            kickoff_at=fixture["kickoff_at"],
            home=PlanSide(**freeze_side(fixture["home_team_id"], home)),
            away=PlanSide(**freeze_side(fixture["away_team_id"], away)),
        )
        try:
            await self._db.match_plans.insert_one(plan.model_dump(by_alias=True))
        except DuplicateKeyError:
            winner = await self._db.match_plans.find_one({"_id": match_id}, {"league_id": 1})
            if winner is not None and winner.get("league_id") != league_id:
                return self._foreign_plan(league_id, match_id, winner)
            logger.info("Plan for %s created concurrently, skipping", match_id)
            outcome = "existing"
        else:
            outcome = "created"

        await self._fixtures.transition(
            league_id, match_id, FixtureStatus.LOCKED, fields={"locked_at": now, "seed": seed},
        )
        return outcome

    @staticmethod
    def _foreign_plan(league_id: str, match_id: str, plan: dict) -> str:
        # Plans are keyed by match id alone; a plan of another league is never reused.
        logger.warning(
            "Skipping lock for %s/%s: plan %s belongs to league %s",
            league_id, match_id, match_id, plan.get("league_id"),
        )
        return "skipped"

    async def _season_for(self, fixture: dict, cache: dict[str, str | None]) -> str | None:
        if fixture.get("season_id"):
            return fixture["season_id"]
        league_id = fixture["league_id"]
        if league_id not in cache:
            league = await self._db.leagues.find_one({"_id": league_id}, {"season_id": 1})
            cache[league_id] = (league or {}).get("season_id")
        return cache[league_id]
