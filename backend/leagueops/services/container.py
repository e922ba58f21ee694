"""
backend/leagueops/services/container.py

Purpose:
    Builds every pipeline service once from a Settings instance and a Motor
    database. main.py stores the result on app.state; the operator CLI
    builds its own.

Dependencies:
    - leagueops.services.*
    - leagueops.workers.task_runner
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from leagueops.config import Settings
from leagueops.services.alert_service import AlertService
from leagueops.services.batch_service import DailyBatchService
from leagueops.services.dispatch_service import DispatchService
from leagueops.services.fixture_store import FixtureStore
from leagueops.services.heartbeat_service import HeartbeatService
from leagueops.services.lineup_service import LineupSnapshotService, TeamDirectory
from leagueops.services.result_service import ResultIngestionService
from leagueops.services.simulation_worker import SimulationWorkerClient
from leagueops.services.storage_service import BlobStore
from leagueops.services.task_queue import TaskQueue
from leagueops.services.watchdog_service import FinalizeWatchdog
from leagueops.workers.task_runner import TaskRunner


@dataclass
class PipelineServices:
    settings: Settings
    db: object
    fixtures: FixtureStore
    alerts: AlertService
    worker: SimulationWorkerClient
    storage: BlobStore | None
    heartbeat: HeartbeatService
    queue: TaskQueue
    lineup: LineupSnapshotService
    dispatch: DispatchService
    results: ResultIngestionService
    watchdog: FinalizeWatchdog
    batch: DailyBatchService
    runner: TaskRunner

    async def aclose(self) -> None:
        await self.worker.aclose()
        await self.alerts.aclose()


def build_services(
    settings: Settings,
    db,
    *,
    worker: SimulationWorkerClient | None = None,
    alerts: AlertService | None = None,
    storage: BlobStore | None = None,
) -> PipelineServices:
    fixtures = FixtureStore(db)
    alerts = alerts or AlertService(settings)
    worker = worker or SimulationWorkerClient(settings)
    storage = storage if storage is not None else BlobStore.from_settings(settings)
    heartbeat = HeartbeatService(settings, db, alerts)
    queue = TaskQueue(settings, db)

    lineup = LineupSnapshotService(settings, db, fixtures, TeamDirectory(db), heartbeat)
    dispatch = DispatchService(settings, db, fixtures, worker, queue, storage, heartbeat)
    results = ResultIngestionService(settings, db, fixtures, storage)
    watchdog = FinalizeWatchdog(settings, db, fixtures, dispatch, queue, alerts)
    batch = DailyBatchService(settings, db, fixtures, storage, heartbeat)
    runner = TaskRunner(settings, queue, alerts)
    runner.register_pipeline(dispatch, watchdog)

    return PipelineServices(
        settings=settings,
        db=db,
        fixtures=fixtures,
        alerts=alerts,
        worker=worker,
        storage=storage,
        heartbeat=heartbeat,
        queue=queue,
        lineup=lineup,
        dispatch=dispatch,
        results=results,
        watchdog=watchdog,
        batch=batch,
        runner=runner,
    )


def get_services(request: Request) -> PipelineServices:
    """FastAPI dependency: the container built in the app lifespan."""
    return request.app.state.services
