"""
backend/leagueops/services/alert_service.py

Purpose:
    Out-of-band operator alerts (poisoned fixtures, missing daily stages,
    dead tasks) posted to a Slack-compatible incoming webhook. An alert that
    cannot be delivered is still logged at ERROR.

Dependencies:
    - httpx (via leagueops.services.http_client)
    - leagueops.config
"""

from __future__ import annotations

import logging

import httpx

from leagueops.config import Settings
from leagueops.services.http_client import ResilientClient

logger = logging.getLogger("leagueops.alerts")


class AlertService:
    def __init__(self, settings: Settings, http: ResilientClient | None = None) -> None:
        self._webhook_url = settings.ALERT_WEBHOOK_URL
        self._http = http or ResilientClient("alerts", timeout=10.0, max_retries=1)

    async def send(self, text: str) -> bool:
        """Deliver one alert. Returns False when it only reached the log."""
        if not self._webhook_url:
            logger.error("ALERT (no webhook configured): %s", text)
            return False
        try:
            resp = await self._http.post(self._webhook_url, json={"text": text})
        except httpx.HTTPError as exc:
            logger.error("ALERT delivery failed (%s): %s", exc.__class__.__name__, text)
            return False
        if resp.status_code >= 300:
            logger.error("ALERT delivery rejected (%d): %s", resp.status_code, text)
            return False
        logger.warning("ALERT sent: %s", text)
        return True

    async def aclose(self) -> None:
        await self._http.aclose()
