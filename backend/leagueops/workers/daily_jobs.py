"""In-process APScheduler jobs: task queue drain and the optional daily cron.

The daily stages are normally triggered by an external scheduler hitting the
/ops endpoints. With DAILY_CRON_ENABLED the same stages run here instead, in
the operating timezone: lock at LOCK_WINDOW_START, batch 15 minutes before
kickoff, orchestrate at kickoff, heartbeat check 10 minutes after.
"""

import logging
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger("leagueops.daily_jobs")

TASK_DRAIN_JOB_ID = "task_queue_drain"
DAILY_JOB_IDS = ("lock_window", "daily_batch", "orchestrate", "heartbeat_watchdog")


def _shift(at: time, minutes: int) -> time:
    return (datetime.combine(date(2000, 1, 1), at) + timedelta(minutes=minutes)).time()


def _guarded(name: str, func):
    async def run() -> None:
        try:
            await func()
        except Exception:
            logger.exception("Scheduled job %s failed", name)
    run.__name__ = f"scheduled_{name}"
    return run


def register_task_drain(scheduler: AsyncIOScheduler, services) -> bool:
    settings = services.settings
    if not settings.TASK_QUEUE_ENABLED:
        logger.info("Task queue runner disabled via config")
        return False
    scheduler.add_job(
        _guarded(TASK_DRAIN_JOB_ID, services.runner.drain),
        "interval",
        id=TASK_DRAIN_JOB_ID,
        seconds=settings.TASK_QUEUE_TICK_SECONDS,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return True


def daily_job_specs(services) -> list[dict]:
    settings = services.settings
    kickoff = settings.kickoff_time
    specs = [
        {"id": "lock_window", "func": services.lineup.lock_window_snapshot, "at": settings.lock_window_start},
        {"id": "orchestrate", "func": services.dispatch.dispatch_tonight, "at": kickoff},
        {"id": "heartbeat_watchdog", "func": services.heartbeat.run_watchdog, "at": _shift(kickoff, 10)},
    ]
    if services.storage is not None:
        specs.append({"id": "daily_batch", "func": services.batch.create_daily_batch, "at": _shift(kickoff, -15)})
    return specs


def register_daily_jobs(scheduler: AsyncIOScheduler, services) -> int:
    settings = services.settings
    if not settings.DAILY_CRON_ENABLED:
        logger.info("Daily cron disabled, stages run from external triggers")
        return 0

    tz = ZoneInfo(settings.OPERATING_TZ)
    added = 0
    for spec in daily_job_specs(services):
        at = spec["at"]
        scheduler.add_job(
            _guarded(spec["id"], spec["func"]),
            "cron",
            id=spec["id"],
            hour=at.hour,
            minute=at.minute,
            timezone=tz,
            replace_existing=True,
        )
        added += 1
        logger.info("Daily job %s scheduled at %s %s", spec["id"], at.strftime("%H:%M"), settings.OPERATING_TZ)
    return added
