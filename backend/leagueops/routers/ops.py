"""
backend/leagueops/routers/ops.py

Purpose:
    Scheduler- and queue-facing trigger endpoints for the daily pipeline:
    lineup lock, orchestrate, batch manifest, heartbeat watchdog, single
    dispatch, finalize watchdog and task queue drain.

Dependencies:
    - leagueops.services.container
    - leagueops.services.auth_service
"""

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from leagueops.models.ops import DailyBatchRequest, DispatchRequest, FinalizeWatchdogRequest
from leagueops.services.auth_service import require_scheduler, require_tasks
from leagueops.services.container import PipelineServices, get_services

logger = logging.getLogger("leagueops.routers.ops")

router = APIRouter(prefix="/ops", tags=["ops"])


# ---------- Daily stages (scheduler secret) ----------

@router.post("/lock-window", dependencies=[Depends(require_scheduler)])
async def lock_window(services: PipelineServices = Depends(get_services)):
    result = await services.lineup.lock_window_snapshot()
    return {
        "ok": True,
        "day": result.day,
        "matchesConsidered": result.considered,
        "created": result.created,
        "skipped": result.skipped,
    }


@router.post("/orchestrate", dependencies=[Depends(require_scheduler)])
async def orchestrate(services: PipelineServices = Depends(get_services)):
    run = await services.dispatch.dispatch_tonight()
    return {
        "ok": True,
        "day": run.day,
        "count": run.count,
        "mode": run.mode,
        "durationMs": run.duration_ms,
        "failed": run.failed,
    }


@router.post("/batch", dependencies=[Depends(require_scheduler)])
async def daily_batch(
    body: DailyBatchRequest | None = Body(default=None),
    services: PipelineServices = Depends(get_services),
):
    manifest = await services.batch.create_daily_batch(body.date if body else None)
    return {
        "ok": True,
        "day": manifest.day,
        "count": manifest.count,
        "batchPath": manifest.batch_path,
        "batchReadUrl": manifest.batch_read_url,
    }


@router.api_route("/watchdog", methods=["GET", "POST"], dependencies=[Depends(require_scheduler)])
async def heartbeat_watchdog(services: PipelineServices = Depends(get_services)):
    problems = await services.heartbeat.run_watchdog()
    if problems:
        return JSONResponse(status_code=500, content={"ok": False, "problems": problems})
    return {"ok": True}


# ---------- Queue tasks (tasks secret) ----------

@router.post("/dispatch", dependencies=[Depends(require_tasks)])
async def dispatch_one(body: DispatchRequest, services: PipelineServices = Depends(get_services)):
    outcome = await services.dispatch.start_match(body.match_id, body.league_id, body.force_redispatch)
    return {"ok": True, "status": outcome.status, "matchId": outcome.match_id, "leagueId": outcome.league_id}


@router.post("/finalize-watchdog", dependencies=[Depends(require_tasks)])
async def finalize_watchdog(
    body: FinalizeWatchdogRequest, services: PipelineServices = Depends(get_services),
):
    outcome = await services.watchdog.run(body.match_id, body.league_id, body.attempt)
    return outcome.to_payload()


@router.post("/tasks/drain", dependencies=[Depends(require_tasks)])
async def drain_tasks(services: PipelineServices = Depends(get_services)):
    stats = await services.runner.drain()
    return {"ok": True, **stats}
