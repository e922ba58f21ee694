"""
backend/leagueops/services/task_queue.py

Purpose:
    Durable delayed-task queue on the `tasks` collection with at-least-once
    delivery. A task is leased when claimed; if the lease runs out before
    complete()/fail() it becomes claimable again. The document _id doubles as
    the dedup key, so enqueueing the same logical task twice is a no-op.

Dependencies:
    - pymongo (ReturnDocument, DuplicateKeyError)
    - leagueops.config
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from leagueops.config import Settings
from leagueops.utils import utcnow

logger = logging.getLogger("leagueops.task_queue")

TASK_QUEUED = "queued"
TASK_LEASED = "leased"
TASK_DONE = "done"
TASK_DEAD = "dead"

KIND_DISPATCH_MATCH = "dispatch_match"
KIND_FINALIZE_WATCHDOG = "finalize_watchdog"


def finalize_task_key(league_id: str, match_id: str, attempt: int) -> str:
    return f"{KIND_FINALIZE_WATCHDOG}:{league_id}:{match_id}:{attempt}"


def dispatch_task_key(league_id: str, match_id: str, day: str) -> str:
    return f"{KIND_DISPATCH_MATCH}:{league_id}:{match_id}:{day}"


class TaskQueue:
    def __init__(self, settings: Settings, db) -> None:
        self._db = db
        self._lease = timedelta(seconds=settings.TASK_LEASE_SECONDS)
        self._backoff_seconds = settings.TASK_RETRY_BACKOFF_SECONDS
        self.max_deliveries = settings.TASK_MAX_DELIVERIES

    async def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        delay_seconds: float = 0,
        dedup_key: str | None = None,
    ) -> bool:
        """Persist a task. Returns False if a task with this key already exists."""
        now = utcnow()
        doc = {
            "_id": dedup_key or f"{kind}:{uuid.uuid4().hex}",
            "kind": kind,
            "payload": payload,
            "status": TASK_QUEUED,
            "run_at": now + timedelta(seconds=delay_seconds),
            "created_at": now,
            "deliveries": 0,
            "lease_until": None,
            "last_error": None,
        }
        try:
            await self._db.tasks.insert_one(doc)
        except DuplicateKeyError:
            logger.debug("Task %s already scheduled", doc["_id"])
            return False
        logger.debug("Enqueued %s (run_at=%s)", doc["_id"], doc["run_at"].isoformat())
        return True

    async def claim_due(self) -> dict | None:
        """Lease the oldest due task, including tasks whose lease expired."""
        now = utcnow()
        return await self._db.tasks.find_one_and_update(
            {
                "$or": [
                    {"status": TASK_QUEUED, "run_at": {"$lte": now}},
                    {"status": TASK_LEASED, "lease_until": {"$lte": now}},
                ]
            },
            {
                "$set": {"status": TASK_LEASED, "lease_until": now + self._lease, "leased_at": now},
                "$inc": {"deliveries": 1},
            },
            sort=[("run_at", 1)],
            return_document=ReturnDocument.AFTER,
        )

    async def complete(self, task: dict) -> None:
        await self._db.tasks.update_one(
            {"_id": task["_id"], "status": TASK_LEASED},
            {"$set": {"status": TASK_DONE, "finished_at": utcnow(), "lease_until": None}},
        )

    async def bury(self, task: dict, error: str) -> None:
        await self._db.tasks.update_one(
            {"_id": task["_id"]},
            {"$set": {
                "status": TASK_DEAD,
                "finished_at": utcnow(),
                "lease_until": None,
                "last_error": error[:500],
            }},
        )

    async def fail(self, task: dict, error: str) -> str:
        """Re-queue with linear backoff, or bury after the delivery budget."""
        deliveries = int(task.get("deliveries") or 0)
        if deliveries >= self.max_deliveries:
            await self.bury(task, error)
            return TASK_DEAD
        run_at = utcnow() + timedelta(seconds=self._backoff_seconds * deliveries)
        await self._db.tasks.update_one(
            {"_id": task["_id"], "status": TASK_LEASED},
            {"$set": {
                "status": TASK_QUEUED,
                "run_at": run_at,
                "lease_until": None,
                "last_error": error[:500],
            }},
        )
        return TASK_QUEUED
