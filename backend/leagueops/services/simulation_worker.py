"""
backend/leagueops/services/simulation_worker.py

Purpose:
    One-way trigger for the external match-simulation worker. The call
    returns once the worker accepted the job; completion is only ever
    observed through the result callback, the storage trigger, or the
    finalize watchdog.

Dependencies:
    - httpx (via leagueops.services.http_client)
    - leagueops.config
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from leagueops.config import Settings
from leagueops.services.errors import WorkerTriggerError
from leagueops.services.http_client import ResilientClient

logger = logging.getLogger("leagueops.sim_worker")


class SimulationWorkerClient:
    def __init__(self, settings: Settings, http: ResilientClient | None = None) -> None:
        self._url = settings.SIM_WORKER_URL
        self._token = settings.SIM_WORKER_TOKEN
        self._http = http or ResilientClient(
            "sim_worker",
            timeout=settings.SIM_WORKER_TIMEOUT_SECONDS,
            max_retries=settings.SIM_WORKER_MAX_RETRIES,
        )

    async def trigger(self, payload: dict[str, Any]) -> None:
        if not self._url:
            raise WorkerTriggerError("SIM_WORKER_URL not configured")

        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            resp = await self._http.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise WorkerTriggerError(
                f"worker trigger failed for {payload.get('matchId')}: {exc.__class__.__name__}"
            ) from exc

        if resp.status_code >= 300:
            raise WorkerTriggerError(
                f"worker rejected {payload.get('matchId')} with status {resp.status_code}"
            )
        logger.info(
            "Worker accepted match %s (league=%s)", payload.get("matchId"), payload.get("leagueId"),
        )

    async def aclose(self) -> None:
        await self._http.aclose()
