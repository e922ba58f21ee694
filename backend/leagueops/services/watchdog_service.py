"""
backend/leagueops/services/watchdog_service.py

Purpose:
    Finalize watchdog. Runs as a delayed task after each dispatch and checks
    whether the fixture reached played. While budget remains it re-triggers
    the worker and schedules the next recheck; once the budget is spent the
    fixture is poisoned: marked failed, recorded in failed_jobs, alerted.

    Attempts are numbered from 0. Attempts below FINALIZE_MAX_RETRIES
    re-dispatch; attempt == FINALIZE_MAX_RETRIES poisons.

Dependencies:
    - leagueops.services.dispatch_service
    - leagueops.services.task_queue
    - leagueops.services.alert_service
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pymongo.errors import PyMongoError

from leagueops.config import Settings
from leagueops.models.fixtures import FailedJob, FixtureStatus
from leagueops.services.alert_service import AlertService
from leagueops.services.dispatch_service import DispatchService
from leagueops.services.errors import PipelineError
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.task_queue import KIND_FINALIZE_WATCHDOG, TaskQueue, finalize_task_key
from leagueops.utils import utcnow

logger = logging.getLogger("leagueops.watchdog")

OUTCOME_PLAYED = "played"
OUTCOME_RETRIED = "retried"
OUTCOME_POISONED = "poisoned"
OUTCOME_FAILED = "failed"


@dataclass
class WatchdogOutcome:
    league_id: str
    match_id: str
    attempt: int
    outcome: str

    def to_payload(self) -> dict:
        return {"ok": True, self.outcome: True, "attempt": self.attempt}


class FinalizeWatchdog:
    def __init__(
        self,
        settings: Settings,
        db,
        fixtures: FixtureStore,
        dispatch: DispatchService,
        queue: TaskQueue,
        alerts: AlertService,
    ) -> None:
        self._db = db
        self._fixtures = fixtures
        self._dispatch = dispatch
        self._queue = queue
        self._alerts = alerts
        self._max_retries = settings.FINALIZE_MAX_RETRIES
        self._delay = settings.FINALIZE_WATCHDOG_DELAY_SECONDS

    async def run(self, match_id: str, league_id: str, attempt: int) -> WatchdogOutcome:
        fixture = await self._fixtures.require(league_id, match_id)
        status = fixture.get("status")

        if status == FixtureStatus.PLAYED.value:
            logger.info("Watchdog %s/%s: played (attempt %d)", league_id, match_id, attempt)
            return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_PLAYED)
        if status == FixtureStatus.FAILED.value:
            logger.info("Watchdog %s/%s: already failed, nothing to do", league_id, match_id)
            return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_FAILED)

        if attempt < self._max_retries:
            return await self._retry(fixture, attempt)
        return await self._poison(fixture, attempt)

    async def _retry(self, fixture: dict, attempt: int) -> WatchdogOutcome:
        league_id, match_id = fixture["league_id"], fixture["match_id"]
        try:
            await self._dispatch.start_match(match_id, league_id, force_redispatch=True)
        except PipelineError as exc:
            # Worker unreachable counts like a dead worker: the next attempt retries it.
            logger.warning(
                "Watchdog %s/%s re-dispatch failed on attempt %d (%s): %s",
                league_id, match_id, attempt, exc.__class__.__name__, exc,
            )

        next_attempt = attempt + 1
        await self._queue.enqueue(
            KIND_FINALIZE_WATCHDOG,
            {"matchId": match_id, "leagueId": league_id, "attempt": next_attempt},
            delay_seconds=self._delay,
            dedup_key=finalize_task_key(league_id, match_id, next_attempt),
        )
        logger.info(
            "Watchdog %s/%s: re-dispatched, recheck %d scheduled in %ds",
            league_id, match_id, next_attempt, self._delay,
        )
        return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_RETRIED)

    async def _poison(self, fixture: dict, attempt: int) -> WatchdogOutcome:
        league_id, match_id = fixture["league_id"], fixture["match_id"]
        last_status = fixture.get("status")
        reason = f"not played after {attempt} watchdog retries (last status {last_status})"
        now = utcnow()

        moved = await self._fixtures.transition(
            league_id,
            match_id,
            FixtureStatus.FAILED,
            fields={"fail_reason": reason, "failed_at": now},
        )
        if not moved:
            current = await self._fixtures.get(league_id, match_id) or {}
            if current.get("status") == FixtureStatus.PLAYED.value:
                logger.info("Watchdog %s/%s: result arrived before poison", league_id, match_id)
                return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_PLAYED)
            logger.info("Watchdog %s/%s: already poisoned", league_id, match_id)
            return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_POISONED)

        record = FailedJob(
            id=match_id,
            match_id=match_id,
            league_id=league_id,
            last_status=last_status,
            reason=reason,
            attempts=attempt,
            created_at=now,
        )
        await self._db.failed_jobs.update_one(
            {"_id": match_id},
            {"$setOnInsert": record.model_dump(exclude={"id"})},
            upsert=True,
        )
        logger.error("Watchdog %s/%s poisoned: %s", league_id, match_id, reason)
        await self._alerts.send(f"Match {league_id}/{match_id} failed: {reason}")

        try:
            await self._fixtures.complete_league_if_done(league_id)
        except PyMongoError as exc:
            logger.warning("League completion check failed for %s: %s", league_id, exc)
        return WatchdogOutcome(league_id, match_id, attempt, OUTCOME_POISONED)
