"""
backend/leagueops/services/fixture_store.py

Purpose:
    Fixture reads and forward-only status transitions. Every status write is a
    compare-and-swap filtered on the statuses allowed to enter the target, so
    a racing writer can never move a fixture backwards or out of a terminal
    state.

Dependencies:
    - leagueops.models.fixtures
    - leagueops.utils.clock
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Iterable

from leagueops.models.fixtures import FixtureStatus, fixture_key, sources_for
from leagueops.services.errors import FixtureNotFoundError
from leagueops.utils import utcnow
from leagueops.utils.clock import UtcWindow

logger = logging.getLogger("leagueops.fixtures")


class FixtureStore:
    def __init__(self, db) -> None:
        self._db = db

    async def get(self, league_id: str, match_id: str, *, session=None) -> dict | None:
        return await self._db.fixtures.find_one(
            {"_id": fixture_key(league_id, match_id)}, session=session,
        )

    async def require(self, league_id: str, match_id: str) -> dict:
        fixture = await self.get(league_id, match_id)
        if fixture is None:
            raise FixtureNotFoundError(f"fixture {league_id}/{match_id} not found")
        return fixture

    async def find_in_window(
        self, window: UtcWindow, statuses: Iterable[str | FixtureStatus],
    ) -> list[dict]:
        """Fixtures across all leagues kicking off inside `window` (inclusive)."""
        wanted = [FixtureStatus(s).value for s in statuses]
        cursor = self._db.fixtures.find({
            "status": {"$in": wanted},
            "kickoff_at": {"$gte": window.start, "$lte": window.end},
        }).sort("kickoff_at", 1)
        return await cursor.to_list(length=None)

    async def transition(
        self,
        league_id: str,
        match_id: str,
        target: FixtureStatus,
        *,
        fields: dict[str, Any] | None = None,
        inc: dict[str, int] | None = None,
        session=None,
    ) -> bool:
        """Move a fixture to `target` if its current status allows it.

        Returns False (and writes nothing) when the fixture is missing or its
        status cannot enter `target`.
        """
        now = utcnow()
        update: dict[str, Any] = {
            "$set": {"status": target.value, "updated_at": now, **(fields or {})},
            "$push": {"status_history": {"status": target.value, "at": now}},
        }
        if inc:
            update["$inc"] = inc
        result = await self._db.fixtures.update_one(
            {"_id": fixture_key(league_id, match_id), "status": {"$in": sources_for(target)}},
            update,
            session=session,
        )
        moved = result.modified_count == 1
        if not moved:
            logger.debug("Transition %s/%s -> %s refused", league_id, match_id, target.value)
        return moved

    async def activate_league(self, league_id: str) -> bool:
        result = await self._db.leagues.update_one(
            {"_id": league_id, "state": "scheduled"},
            {"$set": {"state": "active", "updated_at": utcnow()}},
        )
        if result.modified_count:
            logger.info("League %s is now active", league_id)
        return result.modified_count == 1

    async def complete_league_if_done(self, league_id: str) -> bool:
        """Mark the league completed once no fixture is left to play."""
        open_statuses = [
            FixtureStatus.SCHEDULED.value, FixtureStatus.LOCKED.value, FixtureStatus.RUNNING.value,
        ]
        remaining = await self._db.fixtures.find_one(
            {"league_id": league_id, "status": {"$in": open_statuses}}, {"_id": 1},
        )
        if remaining is not None:
            return False
        result = await self._db.leagues.update_one(
            {"_id": league_id, "state": {"$ne": "completed"}},
            {"$set": {"state": "completed", "completed_at": utcnow()}},
        )
        if result.modified_count:
            logger.info("League %s completed", league_id)
        return result.modified_count == 1

    async def ensure_request_token(self, fixture: dict) -> str:
        """Mint the fixture's request token once; later calls reuse it."""
        if fixture.get("request_token"):
            return fixture["request_token"]
        token = secrets.token_urlsafe(16)
        result = await self._db.fixtures.update_one(
            {"_id": fixture["_id"], "request_token": None},
            {"$set": {"request_token": token}},
        )
        if result.modified_count == 1:
            fixture["request_token"] = token
            return token
        # Lost the race to another dispatcher; use the stored token.
        stored = await self._db.fixtures.find_one({"_id": fixture["_id"]})
        fixture["request_token"] = stored["request_token"]
        return fixture["request_token"]

    async def ensure_seed(self, fixture: dict, candidate: int) -> int:
        """Store `candidate` as the fixture's RNG seed unless one is already set."""
        if fixture.get("seed"):
            return fixture["seed"]
        result = await self._db.fixtures.update_one(
            {"_id": fixture["_id"], "seed": None},
            {"$set": {"seed": candidate}},
        )
        if result.modified_count == 1:
            fixture["seed"] = candidate
            return candidate
        stored = await self._db.fixtures.find_one({"_id": fixture["_id"]})
        fixture["seed"] = stored["seed"]
        return fixture["seed"]
