"""
backend/leagueops/database.py

Purpose:
    MongoDB connection bootstrap and index management for the pipeline
    collections. Transactions need a replica set (or sharded cluster).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - leagueops.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from leagueops.config import Settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("leagueops.database")


async def connect_db(settings: Settings) -> AsyncIOMotorDatabase:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=2,
        tz_aware=True,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()
    return db


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Fixtures (_id = "{league}:{match}") ----
    await db.fixtures.create_index([("league_id", 1), ("match_id", 1)], unique=True)
    # Tonight's window scans (lock, dispatch, batch)
    await db.fixtures.create_index([("status", 1), ("kickoff_at", 1)])
    await db.fixtures.create_index([("league_id", 1), ("status", 1)])

    # ---- Match plans (_id = match id, create-if-absent) ----
    await db.match_plans.create_index([("league_id", 1), ("kickoff_at", 1)])

    # ---- Standings (_id = "{league}:{team}") ----
    await db.standings.create_index([("league_id", 1), ("points", -1), ("goal_difference", -1)])

    # ---- Leagues ----
    await db.leagues.create_index("state")

    # ---- Ops ----
    await db.failed_jobs.create_index("created_at")
    await db.ops_heartbeats.create_index("lastUpdated")

    # ---- Task queue (_id = dedup key) ----
    await db.tasks.create_index([("status", 1), ("run_at", 1)])
    await db.tasks.create_index([("status", 1), ("lease_until", 1)])
    await db.tasks.create_index([("kind", 1), ("created_at", -1)])
    await db.tasks.create_index(
        "finished_at",
        expireAfterSeconds=60 * 60 * 24 * 30,  # TTL: 30 days for done tasks
        partialFilterExpression={"status": "done"},
    )
    logger.info("Indexes ensured")
