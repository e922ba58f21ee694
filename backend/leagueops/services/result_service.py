"""
backend/leagueops/services/result_service.py

Purpose:
    Result ingestion. Both entry points (worker HTTP callback and results-blob
    finalize event) funnel into ingest(), which flips the fixture to played
    and counts the result in both standings rows inside one transaction.
    A fixture that is already played makes ingest() a no-op, so duplicate
    reports from retries or double triggers never count twice.

Dependencies:
    - motor (client session / with_transaction)
    - leagueops.services.fixture_store
    - leagueops.services.standings
    - leagueops.services.storage_service
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import PyMongoError

from leagueops.config import Settings
from leagueops.models.fixtures import FixtureStatus, ReplayRef, Score, fixture_key, standing_key
from leagueops.models.ops import ResultReport
from leagueops.services.errors import (
    FixtureNotFoundError,
    FixtureTerminalError,
    MalformedScoreError,
    StaleRequestTokenError,
    StorageNotConfiguredError,
)
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.standings import apply_result, default_row
from leagueops.services.storage_service import BlobStore, replay_path
from leagueops.utils import utcnow

logger = logging.getLogger("leagueops.results")

_SCORE_SHAPES = (("home", "away"), ("h", "a"), ("homeGoals", "awayGoals"))
_RESULT_KEY_RE = re.compile(
    r"^results/(?P<season>[^/]+)/(?P<league>[^/]+)/(?P<match>[^/]+)\.json$"
)


# ---------- Score normalization ----------

def _coerce_goals(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _score_from(candidate: Any) -> Score | None:
    if not isinstance(candidate, dict):
        return None
    for home_key, away_key in _SCORE_SHAPES:
        if home_key in candidate and away_key in candidate:
            home = _coerce_goals(candidate[home_key])
            away = _coerce_goals(candidate[away_key])
            if home is not None and away is not None:
                return Score(home=home, away=away)
    return None


def normalize_score(payload: dict[str, Any], *, strict: bool = False) -> Score:
    """Coerce any accepted score shape to a canonical {home, away} pair.

    Looks at `score`, `result`, `result.score` and finally the payload
    itself, accepting {home,away}, {h,a} and {homeGoals,awayGoals}. When
    nothing parses the score defaults to 0-0, or MalformedScoreError is
    raised in strict mode.
    """
    result = payload.get("result")
    candidates = [
        payload.get("score"),
        result,
        result.get("score") if isinstance(result, dict) else None,
        payload,
    ]
    for candidate in candidates:
        score = _score_from(candidate)
        if score is not None:
            return score
    if strict:
        raise MalformedScoreError("no parseable score in report")
    logger.warning("Unparseable score payload, defaulting to 0-0: keys=%s", sorted(payload))
    return Score(home=0, away=0)


def parse_result_key(key: str) -> dict[str, str] | None:
    """Split `results/{season}/{league}/{match}.json` into its ids."""
    match = _RESULT_KEY_RE.match(key)
    if match is None:
        return None
    return {
        "season_id": match.group("season"),
        "league_id": match.group("league"),
        "match_id": match.group("match"),
    }


@dataclass
class IngestOutcome:
    league_id: str
    match_id: str
    status: str  # "played" | "already_played"
    score: dict[str, int] = field(default_factory=dict)

    @property
    def counted(self) -> bool:
        return self.status == "played"


class ResultIngestionService:
    def __init__(
        self,
        settings: Settings,
        db,
        fixtures: FixtureStore,
        storage: BlobStore | None = None,
    ) -> None:
        self._db = db
        self._fixtures = fixtures
        self._storage = storage
        self._strict = settings.STRICT_SCORE_PARSING

    async def ingest(
        self,
        league_id: str,
        match_id: str,
        payload: dict[str, Any],
        *,
        replay: str | None = None,
        request_token: str | None = None,
        source: str = "callback",
    ) -> IngestOutcome:
        score = normalize_score(payload, strict=self._strict)
        plan = await self._db.match_plans.find_one({"_id": match_id, "league_id": league_id}) or {}

        async def _commit(session) -> IngestOutcome:
            return await self._commit(
                session, league_id, match_id, score, replay, request_token, source, plan,
            )

        async with await self._db.client.start_session() as session:
            outcome = await session.with_transaction(_commit)

        if outcome.counted:
            logger.info(
                "Result %s/%s committed %d-%d via %s",
                league_id, match_id, score.home, score.away, source,
            )
            try:
                await self._fixtures.complete_league_if_done(league_id)
            except PyMongoError as exc:
                logger.warning("League completion check failed for %s: %s", league_id, exc)
        else:
            logger.info("Result %s/%s already played, %s report ignored", league_id, match_id, source)
        return outcome

    async def _commit(
        self,
        session,
        league_id: str,
        match_id: str,
        score: Score,
        replay: str | None,
        request_token: str | None,
        source: str,
        plan: dict,
    ) -> IngestOutcome:
        fixture = await self._db.fixtures.find_one(
            {"_id": fixture_key(league_id, match_id)}, session=session,
        )
        if fixture is None:
            raise FixtureNotFoundError(f"fixture {league_id}/{match_id} not found")

        status = fixture.get("status")
        if status == FixtureStatus.PLAYED.value:
            # Read-only path; with_transaction still commits the empty transaction.
            return IngestOutcome(league_id, match_id, "already_played", dict(fixture.get("score") or {}))
        if status == FixtureStatus.FAILED.value:
            raise FixtureTerminalError(f"fixture {league_id}/{match_id} is failed")

        stored_token = fixture.get("request_token")
        if request_token and stored_token and request_token != stored_token:
            raise StaleRequestTokenError(f"request token mismatch for {league_id}/{match_id}")

        now = utcnow()
        replay_ref = replay or replay_path(fixture.get("season_id"), league_id, match_id)
        moved = await self._fixtures.transition(
            league_id,
            match_id,
            FixtureStatus.PLAYED,
            fields={
                "score": score.model_dump(),
                "replay": ReplayRef(path=replay_ref).model_dump(),
                "played_at": now,
                "result_source": source,
            },
            session=session,
        )
        if not moved:
            raise FixtureTerminalError(f"fixture {league_id}/{match_id} changed during ingestion")

        sides = (
            (fixture["home_team_id"], score.home, score.away, (plan.get("home") or {}).get("name", "")),
            (fixture["away_team_id"], score.away, score.home, (plan.get("away") or {}).get("name", "")),
        )
        for team_id, scored, conceded, name in sides:
            key = standing_key(league_id, team_id)
            row = await self._db.standings.find_one({"_id": key}, session=session)
            if row is None:
                row = default_row(league_id, team_id, name)
            elif name and not row.get("name"):
                row["name"] = name
            updated = apply_result(row, scored, conceded)
            updated.pop("_id", None)
            updated["updated_at"] = now
            await self._db.standings.update_one(
                {"_id": key}, {"$set": updated}, upsert=True, session=session,
            )

        return IngestOutcome(league_id, match_id, "played", score.model_dump())

    async def ingest_report(self, report: ResultReport) -> IngestOutcome:
        return await self.ingest(
            report.league_id,
            report.match_id,
            report.score_payload(),
            replay=report.replay.path if report.replay else None,
            request_token=report.request_token,
            source="callback",
        )

    async def ingest_blob(self, key: str, bucket: str | None = None) -> IngestOutcome | None:
        """Storage-finalize entry point. Non-result keys are ignored (None)."""
        ids = parse_result_key(key)
        if ids is None:
            logger.debug("Ignoring finalize event for %s", key)
            return None
        if self._storage is None:
            raise StorageNotConfiguredError("blob storage not configured")

        body = await self._storage.get_json(key, bucket=bucket)
        if body is None:
            logger.warning("Result blob %s vanished before ingestion", key)
            return None

        league_id, match_id = ids["league_id"], ids["match_id"]
        if body.get("matchId") not in (None, match_id) or body.get("leagueId") not in (None, league_id):
            logger.warning(
                "Result blob %s body ids (%s/%s) disagree with path; using path",
                key, body.get("leagueId"), body.get("matchId"),
            )
        replay_field = body.get("replay")
        replay_ref = (replay_field.get("path") if isinstance(replay_field, dict) else None) or replay_path(
            ids["season_id"], league_id, match_id,
        )
        return await self.ingest(
            league_id,
            match_id,
            body,
            replay=replay_ref,
            request_token=body.get("requestToken"),
            source="storage",
        )
