"""
backend/leagueops/services/dispatch_service.py

Purpose:
    Match dispatch. start_match() hands one locked fixture to the simulation
    worker and flips it to running; dispatch_tonight() does that for every
    fixture due in tonight's window, either inline (serial) or by enqueueing
    one durable task per match (queued). Dispatch never writes a score or a
    standings row, so re-dispatching a fixture only re-triggers compute.

Dependencies:
    - leagueops.services.fixture_store
    - leagueops.services.simulation_worker
    - leagueops.services.task_queue
    - leagueops.services.storage_service
    - leagueops.services.heartbeat_service
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from leagueops.config import Settings
from leagueops.models.fixtures import DISPATCHABLE_STATUSES, TERMINAL_STATUSES, FixtureStatus
from leagueops.services.errors import MatchPlanMissingError, PipelineError
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.heartbeat_service import HeartbeatService
from leagueops.services.simulation_worker import SimulationWorkerClient
from leagueops.services.storage_service import BlobStore, replay_path, result_path
from leagueops.services.task_queue import (
    KIND_DISPATCH_MATCH,
    KIND_FINALIZE_WATCHDOG,
    TaskQueue,
    dispatch_task_key,
    finalize_task_key,
)
from leagueops.utils import elapsed_ms, ensure_utc, utcnow
from leagueops.utils.clock import civil_day, daily_window

logger = logging.getLogger("leagueops.dispatch")

DISPATCH_SERIAL = "serial"
DISPATCH_QUEUED = "queued"


async def build_match_job(
    fixture: dict,
    plan: dict,
    request_token: str,
    *,
    storage: BlobStore | None = None,
    callback_url: str = "",
) -> dict[str, Any]:
    """Worker input for one match: frozen sides, seed and reporting targets."""
    league_id, match_id = fixture["league_id"], fixture["match_id"]
    season_id = plan.get("season_id") or fixture.get("season_id")
    job: dict[str, Any] = {
        "matchId": match_id,
        "leagueId": league_id,
        "seasonId": season_id,
        "homeTeamId": fixture["home_team_id"],
        "awayTeamId": fixture["away_team_id"],
        "seed": plan["seed"],
        "kickoffAt": ensure_utc(plan.get("kickoff_at") or fixture["kickoff_at"]).isoformat(),
        "requestToken": request_token,
        "home": plan["home"],
        "away": plan["away"],
        "callbackUrl": callback_url or None,
        "resultPath": result_path(season_id, league_id, match_id),
        "replayPath": replay_path(season_id, league_id, match_id),
    }
    if storage is not None:
        job["resultUploadUrl"] = await storage.signed_put_url(job["resultPath"])
        job["replayUploadUrl"] = await storage.signed_put_url(job["replayPath"])
    return job


@dataclass
class DispatchOutcome:
    league_id: str
    match_id: str
    status: str  # running | already_running | skipped | superseded

    @property
    def dispatched(self) -> bool:
        return self.status == "running"


@dataclass
class DispatchRun:
    day: str
    count: int
    mode: str
    duration_ms: int
    failed: int = 0


class DispatchService:
    def __init__(
        self,
        settings: Settings,
        db,
        fixtures: FixtureStore,
        worker: SimulationWorkerClient,
        queue: TaskQueue,
        storage: BlobStore | None = None,
        heartbeat: HeartbeatService | None = None,
    ) -> None:
        self._db = db
        self._fixtures = fixtures
        self._worker = worker
        self._queue = queue
        self._storage = storage
        self._heartbeat = heartbeat
        self._tz = settings.OPERATING_TZ
        self._kickoff = settings.kickoff_time
        self._window_end = settings.window_end_time
        self._mode = settings.DISPATCH_MODE
        self._item_timeout = settings.DISPATCH_ITEM_TIMEOUT_SECONDS
        self._watchdog_delay = settings.FINALIZE_WATCHDOG_DELAY_SECONDS
        self._callback_url = settings.RESULTS_CALLBACK_URL

    async def start_match(
        self, match_id: str, league_id: str, force_redispatch: bool = False,
    ) -> DispatchOutcome:
        """Trigger the worker for one fixture and mark it running.

        Raises FixtureNotFoundError / MatchPlanMissingError when the fixture
        or its plan is missing, and WorkerTriggerError when the worker does
        not accept the job (status is left unchanged in that case).
        """
        fixture = await self._fixtures.require(league_id, match_id)
        status = FixtureStatus(fixture["status"])

        if status in TERMINAL_STATUSES:
            logger.info("Not dispatching %s/%s: already %s", league_id, match_id, status.value)
            return DispatchOutcome(league_id, match_id, "skipped")
        if status == FixtureStatus.RUNNING and not force_redispatch:
            logger.info("%s/%s already running, use forceRedispatch to re-trigger", league_id, match_id)
            return DispatchOutcome(league_id, match_id, "already_running")

        plan = await self._db.match_plans.find_one({"_id": match_id})
        if plan is None:
            raise MatchPlanMissingError(f"no match plan for {league_id}/{match_id}")
        if plan.get("league_id") != league_id:
            raise MatchPlanMissingError(
                f"match plan {match_id} belongs to league {plan.get('league_id')}, not {league_id}"
            )

        token = await self._fixtures.ensure_request_token(fixture)
        job = await build_match_job(
            fixture, plan, token, storage=self._storage, callback_url=self._callback_url,
        )
        await self._worker.trigger(job)

        moved = await self._fixtures.transition(
            league_id,
            match_id,
            FixtureStatus.RUNNING,
            fields={"last_dispatched_at": utcnow()},
            inc={"dispatch_attempts": 1},
        )
        if not moved:
            # A result (or poison) landed while the worker was being triggered.
            logger.info("%s/%s left running-eligible states during dispatch", league_id, match_id)
            return DispatchOutcome(league_id, match_id, "superseded")

        if not force_redispatch:
            await self._queue.enqueue(
                KIND_FINALIZE_WATCHDOG,
                {"matchId": match_id, "leagueId": league_id, "attempt": 0},
                delay_seconds=self._watchdog_delay,
                dedup_key=finalize_task_key(league_id, match_id, 0),
            )
        logger.info(
            "Dispatched %s/%s (force=%s, seed=%s)", league_id, match_id, force_redispatch, plan["seed"],
        )
        return DispatchOutcome(league_id, match_id, "running")

    async def dispatch_tonight(self, now: datetime | None = None) -> DispatchRun:
        started = utcnow()
        now = now or started
        day = civil_day(now, self._tz)
        window = daily_window(day, self._tz, self._kickoff, self._window_end)
        fixtures = await self._fixtures.find_in_window(window, DISPATCHABLE_STATUSES)
        mode = DISPATCH_QUEUED if self._mode == DISPATCH_QUEUED else DISPATCH_SERIAL

        count = 0
        failed = 0
        dispatched_leagues: set[str] = set()
        for fixture in fixtures:
            league_id, match_id = fixture["league_id"], fixture["match_id"]
            if mode == DISPATCH_QUEUED:
                if await self._queue.enqueue(
                    KIND_DISPATCH_MATCH,
                    {"matchId": match_id, "leagueId": league_id},
                    dedup_key=dispatch_task_key(league_id, match_id, day),
                ):
                    count += 1
                    dispatched_leagues.add(league_id)
                continue

            try:
                outcome = await asyncio.wait_for(
                    self.start_match(match_id, league_id), timeout=self._item_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Dispatch timed out for %s/%s, skipped", league_id, match_id)
                failed += 1
                continue
            except PipelineError as exc:
                logger.warning(
                    "Dispatch skipped %s/%s (%s): %s", league_id, match_id, exc.__class__.__name__, exc,
                )
                failed += 1
                continue
            except Exception as exc:
                logger.error(
                    "Dispatch failed for %s/%s (%s): %s", league_id, match_id, exc.__class__.__name__, exc,
                )
                failed += 1
                continue
            if outcome.dispatched:
                count += 1
                dispatched_leagues.add(league_id)

        for league_id in sorted(dispatched_leagues):
            await self._fixtures.activate_league(league_id)

        run = DispatchRun(day=day, count=count, mode=mode, duration_ms=elapsed_ms(started), failed=failed)
        logger.info(
            "Orchestrate %s (%s): considered=%d dispatched=%d failed=%d in %dms",
            day, mode, len(fixtures), count, failed, run.duration_ms,
        )
        if self._heartbeat is not None:
            await self._heartbeat.mark_heartbeat({"orchestrateOk": True, "dispatchCount": count}, day=day)
        return run
