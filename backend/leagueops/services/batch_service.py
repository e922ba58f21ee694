"""
backend/leagueops/services/batch_service.py

Purpose:
    Daily batch manifest for an external batch worker: every fixture due in a
    civil day's window, each with signed upload URLs for its result and
    replay, written to batches/{day}/batch.json. Returns a signed read URL so
    the worker can fetch the manifest without storage credentials.

Dependencies:
    - leagueops.services.storage_service (aioboto3)
    - leagueops.services.dispatch_service (job payload)
    - leagueops.services.heartbeat_service
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from leagueops.config import Settings
from leagueops.models.fixtures import DISPATCHABLE_STATUSES
from leagueops.services.dispatch_service import build_match_job
from leagueops.services.errors import StorageNotConfiguredError
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.heartbeat_service import HeartbeatService
from leagueops.services.lineup_service import make_seed
from leagueops.services.storage_service import BlobStore, batch_path
from leagueops.utils import utcnow
from leagueops.utils.clock import civil_day, daily_window, parse_day

logger = logging.getLogger("leagueops.batch")


@dataclass
class BatchManifest:
    day: str
    count: int
    batch_path: str
    batch_read_url: str


class DailyBatchService:
    def __init__(
        self,
        settings: Settings,
        db,
        fixtures: FixtureStore,
        storage: BlobStore | None,
        heartbeat: HeartbeatService | None = None,
    ) -> None:
        self._db = db
        self._fixtures = fixtures
        self._storage = storage
        self._heartbeat = heartbeat
        self._tz = settings.OPERATING_TZ
        self._kickoff = settings.kickoff_time
        self._window_end = settings.window_end_time
        self._seed_mode = settings.SEED_MODE
        self._callback_url = settings.RESULTS_CALLBACK_URL

    async def create_daily_batch(self, day: str | None = None) -> BatchManifest:
        if self._storage is None:
            raise StorageNotConfiguredError("blob storage is required for batch manifests")

        day = day or civil_day(utcnow(), self._tz)
        parse_day(day)  # ValueError on a malformed date
        window = daily_window(day, self._tz, self._kickoff, self._window_end)
        fixtures = await self._fixtures.find_in_window(window, DISPATCHABLE_STATUSES)

        matches = []
        for fixture in fixtures:
            plan = await self._db.match_plans.find_one(
                {"_id": fixture["match_id"], "league_id": fixture["league_id"]},
            )
            if plan is None:
                # Not locked yet: the worker gets ids and the stored seed but no frozen sides.
                seed = await self._fixtures.ensure_seed(
                    fixture, make_seed(fixture["match_id"], self._seed_mode),
                )
                plan = {
                    "season_id": fixture.get("season_id"),
                    "seed": seed,
                    "home": None,
                    "away": None,
                }
            token = await self._fixtures.ensure_request_token(fixture)
            matches.append(await build_match_job(
                fixture, plan, token, storage=self._storage, callback_url=self._callback_url,
            ))

        path = batch_path(day)
        manifest = {
            "meta": {
                "day": day,
                "tz": self._tz,
                "count": len(matches),
                "shard": 0,
                "shards": 1,
                "generatedAt": utcnow().isoformat(),
            },
            "matches": matches,
        }
        await self._storage.put_json(path, manifest)
        read_url = await self._storage.signed_get_url(path)
        logger.info("Batch %s written with %d matches to %s", day, len(matches), path)

        if self._heartbeat is not None:
            await self._heartbeat.mark_heartbeat(
                {"batchOk": True, "batchCount": len(matches), "info": f"batch {path}"}, day=day,
            )
        return BatchManifest(day=day, count=len(matches), batch_path=path, batch_read_url=read_url)
