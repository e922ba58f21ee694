"""
backend/leagueops/routers/results.py

Purpose:
    Result entry points: the simulation worker's HTTP callback and the
    object-store finalize notification for results/{season}/{league}/{match}.json.
    Both end in ResultIngestionService.ingest(), which is idempotent.

Dependencies:
    - leagueops.services.result_service
    - leagueops.services.auth_service
"""

import logging
from typing import Any
from urllib.parse import unquote_plus

from fastapi import APIRouter, Body, Depends

from leagueops.models.ops import ResultReport
from leagueops.services.auth_service import require_results
from leagueops.services.container import PipelineServices, get_services

logger = logging.getLogger("leagueops.routers.results")

router = APIRouter(prefix="/results", tags=["results"], dependencies=[Depends(require_results)])


def storage_event_objects(event: dict[str, Any]) -> list[tuple[str | None, str]]:
    """(bucket, key) pairs from an S3 `Records[]` notification or a flat {bucket, name} body."""
    objects: list[tuple[str | None, str]] = []
    for record in event.get("Records") or []:
        s3 = record.get("s3") or {}
        key = (s3.get("object") or {}).get("key")
        if key:
            objects.append(((s3.get("bucket") or {}).get("name"), unquote_plus(key)))
    name = event.get("name") or event.get("key")
    if name:
        objects.append((event.get("bucket"), name))
    return objects


@router.post("/report")
async def report_result(report: ResultReport, services: PipelineServices = Depends(get_services)):
    outcome = await services.results.ingest_report(report)
    return {"ok": True, "status": outcome.status, "score": outcome.score}


@router.post("/storage-event")
async def storage_event(
    event: dict[str, Any] = Body(...),
    services: PipelineServices = Depends(get_services),
):
    processed = []
    ignored = 0
    for bucket, key in storage_event_objects(event):
        outcome = await services.results.ingest_blob(key, bucket=bucket)
        if outcome is None:
            ignored += 1
            continue
        processed.append({"key": key, "status": outcome.status})
    logger.info("Storage event: %d result(s) processed, %d ignored", len(processed), ignored)
    return {"ok": True, "processed": processed, "ignored": ignored}
