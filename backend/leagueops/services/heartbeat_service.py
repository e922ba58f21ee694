"""
backend/leagueops/services/heartbeat_service.py

Purpose:
    Per-day ops checklist. Every stage merges its own flags/counters into
    ops_heartbeats/{day}; the daily health check lists the expected flags
    that are missing or false.

Dependencies:
    - leagueops.config
    - leagueops.utils.clock
"""

from __future__ import annotations

import logging
from typing import Any

from leagueops.config import Settings
from leagueops.services.alert_service import AlertService
from leagueops.utils import utcnow
from leagueops.utils.clock import civil_day

logger = logging.getLogger("leagueops.heartbeat")


class HeartbeatService:
    def __init__(self, settings: Settings, db, alerts: AlertService | None = None) -> None:
        self._db = db
        self._tz = settings.OPERATING_TZ
        self._required = settings.required_heartbeat_stages
        self._alerts = alerts

    def today(self) -> str:
        return civil_day(utcnow(), self._tz)

    async def mark_heartbeat(self, patch: dict[str, Any], *, day: str | None = None) -> str:
        """Merge `patch` into the day's heartbeat document. Never replaces it."""
        day = day or self.today()
        fields = {k: v for k, v in patch.items() if k not in ("_id", "lastUpdated")}
        fields["lastUpdated"] = utcnow()
        await self._db.ops_heartbeats.update_one(
            {"_id": day},
            {"$set": fields},
            upsert=True,
        )
        logger.debug("Heartbeat %s merged %s", day, sorted(fields))
        return day

    async def get_heartbeat(self, day: str | None = None) -> dict[str, Any]:
        day = day or self.today()
        return await self._db.ops_heartbeats.find_one({"_id": day}) or {}

    async def check_heartbeat(self, day: str | None = None) -> list[str]:
        """Names of expected stage flags that are false or absent."""
        doc = await self.get_heartbeat(day)
        return [stage for stage in self._required if not doc.get(stage)]

    async def run_watchdog(self, day: str | None = None) -> list[str]:
        """Check today's stages and alert once listing every missing one."""
        day = day or self.today()
        problems = await self.check_heartbeat(day)
        if problems:
            logger.error("Heartbeat %s missing stages: %s", day, problems)
            if self._alerts is not None:
                await self._alerts.send(f"Watchdog {day}: missing stages {' | '.join(problems)}")
        else:
            logger.info("Heartbeat %s complete", day)
        return problems
