#!/usr/bin/env python3
"""Operator control for the daily match pipeline, straight against MongoDB.

Runs one pipeline stage in-process, without the HTTP server. Useful for
manual re-runs after an outage or for poking a single stuck fixture.

Usage:
    PYTHONPATH=backend python tools/pipeline_ctl.py lock
    PYTHONPATH=backend python tools/pipeline_ctl.py orchestrate
    PYTHONPATH=backend python tools/pipeline_ctl.py orchestrate --now 2025-05-01T16:00:00Z
    PYTHONPATH=backend python tools/pipeline_ctl.py batch --date 2025-05-01
    PYTHONPATH=backend python tools/pipeline_ctl.py health
    PYTHONPATH=backend python tools/pipeline_ctl.py drain --limit 50
    PYTHONPATH=backend python tools/pipeline_ctl.py watchdog --league L1 --match M1 --attempt 0
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

# Ensure backend is on sys.path so `leagueops.*` imports work
_backend = Path(__file__).resolve().parent.parent / "backend"
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

import leagueops.database as _db
from leagueops.config import Settings
from leagueops.middleware.logging import setup_logging
from leagueops.services.container import build_services
from leagueops.utils import parse_utc

log = logging.getLogger("leagueops.ctl")


def _as_of(args: argparse.Namespace):
    return parse_utc(args.now) if args.now else None


async def run_stage(args: argparse.Namespace) -> int:
    settings = Settings()
    db = await _db.connect_db(settings)
    services = build_services(settings, db)
    exit_code = 0
    try:
        if args.stage == "lock":
            result = asdict(await services.lineup.lock_window_snapshot(now=_as_of(args)))
        elif args.stage == "orchestrate":
            result = asdict(await services.dispatch.dispatch_tonight(now=_as_of(args)))
        elif args.stage == "batch":
            result = asdict(await services.batch.create_daily_batch(args.date))
        elif args.stage == "health":
            problems = await services.heartbeat.run_watchdog(args.date)
            result = {"ok": not problems, "problems": problems}
            exit_code = 1 if problems else 0
        elif args.stage == "drain":
            result = await services.runner.drain(args.limit)
        else:
            outcome = await services.watchdog.run(args.match, args.league, args.attempt)
            result = asdict(outcome)
        print(json.dumps(result, indent=2, default=str))
    finally:
        await services.aclose()
        await _db.close_db()
    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Run one stage of the daily match pipeline")
    sub = parser.add_subparsers(dest="stage", required=True)

    lock = sub.add_parser("lock", help="Freeze lineups for tonight's scheduled fixtures")
    lock.add_argument("--now", type=str, default=None, help="Run as of this ISO instant (replays after an outage)")

    orchestrate = sub.add_parser("orchestrate", help="Dispatch tonight's fixtures (DISPATCH_MODE decides serial/queued)")
    orchestrate.add_argument("--now", type=str, default=None, help="Run as of this ISO instant (replays after an outage)")

    batch = sub.add_parser("batch", help="Write the daily batch manifest")
    batch.add_argument("--date", type=str, default=None, help="Civil day YYYY-MM-DD (default: today)")

    health = sub.add_parser("health", help="Check the day's heartbeat and alert on missing stages")
    health.add_argument("--date", type=str, default=None, help="Civil day YYYY-MM-DD (default: today)")

    drain = sub.add_parser("drain", help="Run due task-queue tasks once")
    drain.add_argument("--limit", type=int, default=None, help="Max tasks to claim (default: TASK_QUEUE_BATCH_SIZE)")

    watchdog = sub.add_parser("watchdog", help="Run the finalize watchdog for one fixture")
    watchdog.add_argument("--league", required=True)
    watchdog.add_argument("--match", required=True)
    watchdog.add_argument("--attempt", type=int, default=0)

    args = parser.parse_args()
    setup_logging()
    sys.exit(asyncio.run(run_stage(args)))


if __name__ == "__main__":
    main()
