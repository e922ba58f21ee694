"""Task queue runner.

Claims due tasks from the durable queue and runs the handler registered for
each kind. Driven by an APScheduler interval job or POST /ops/tasks/drain.
Handlers must be idempotent: a task whose lease expires mid-run is delivered
again.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from leagueops.config import Settings
from leagueops.models.ops import DispatchRequest, FinalizeWatchdogRequest
from leagueops.services.alert_service import AlertService
from leagueops.services.errors import (
    FixtureNotFoundError,
    MatchPlanMissingError,
    UnknownTaskKindError,
)
from leagueops.services.task_queue import (
    KIND_DISPATCH_MATCH,
    KIND_FINALIZE_WATCHDOG,
    TASK_DEAD,
    TaskQueue,
)

logger = logging.getLogger("leagueops.task_runner")

TaskHandler = Callable[[dict[str, Any]], Awaitable[Any]]

# Retrying these cannot succeed; the task is buried on first failure.
_PERMANENT_ERRORS = (
    FixtureNotFoundError,
    MatchPlanMissingError,
    UnknownTaskKindError,
    ValidationError,
)


class TaskRunner:
    def __init__(self, settings: Settings, queue: TaskQueue, alerts: AlertService | None = None) -> None:
        self._queue = queue
        self._alerts = alerts
        self._batch_size = settings.TASK_QUEUE_BATCH_SIZE
        self._handlers: dict[str, TaskHandler] = {}
        self._lock = asyncio.Lock()

    def register(self, kind: str, handler: TaskHandler) -> None:
        self._handlers[kind] = handler

    def register_pipeline(self, dispatch, watchdog) -> None:
        async def run_dispatch(payload: dict[str, Any]) -> Any:
            req = DispatchRequest.model_validate(payload)
            return await dispatch.start_match(req.match_id, req.league_id, req.force_redispatch)

        async def run_watchdog(payload: dict[str, Any]) -> Any:
            req = FinalizeWatchdogRequest.model_validate(payload)
            return await watchdog.run(req.match_id, req.league_id, req.attempt)

        self.register(KIND_DISPATCH_MATCH, run_dispatch)
        self.register(KIND_FINALIZE_WATCHDOG, run_watchdog)

    def handler_for(self, kind: str) -> TaskHandler:
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownTaskKindError(f"no handler registered for task kind {kind!r}")
        return handler

    async def drain(self, limit: int | None = None) -> dict[str, int]:
        """Run due tasks until the queue is empty or `limit` were claimed."""
        stats = {"claimed": 0, "done": 0, "requeued": 0, "dead": 0}
        if self._lock.locked():
            logger.debug("Drain already in progress, skipping")
            return stats

        async with self._lock:
            for _ in range(limit or self._batch_size):
                task = await self._queue.claim_due()
                if task is None:
                    break
                stats["claimed"] += 1
                stats[await self._execute(task)] += 1

        if stats["claimed"]:
            logger.info(
                "Drained %d tasks: done=%d requeued=%d dead=%d",
                stats["claimed"], stats["done"], stats["requeued"], stats["dead"],
            )
        return stats

    async def _execute(self, task: dict) -> str:
        kind = task.get("kind", "")
        try:
            handler = self.handler_for(kind)
            await handler(task.get("payload") or {})
        except _PERMANENT_ERRORS as exc:
            error = f"{exc.__class__.__name__}: {exc}"
            await self._queue.bury(task, error)
            await self._report_dead(task, error)
            return "dead"
        except Exception as exc:
            error = f"{exc.__class__.__name__}: {exc}"
            if await self._queue.fail(task, error) == TASK_DEAD:
                await self._report_dead(task, error)
                return "dead"
            logger.warning(
                "Task %s failed on delivery %s, requeued: %s", task["_id"], task.get("deliveries"), error,
            )
            return "requeued"

        await self._queue.complete(task)
        return "done"

    async def _report_dead(self, task: dict, error: str) -> None:
        logger.error("Task %s is dead after %s deliveries: %s", task["_id"], task.get("deliveries"), error)
        if self._alerts is not None:
            await self._alerts.send(f"Task {task['_id']} dead: {error}")
