"""
backend/leagueops/config.py

Purpose:
    Central settings loading for the match pipeline. main.py builds one
    Settings instance at startup and hands it to every service constructor.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from datetime import time
from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


def _parse_clock(value: str) -> time:
    parts = [int(p) for p in value.split(":")]
    while len(parts) < 3:
        parts.append(0)
    return time(parts[0], parts[1], parts[2])


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017/?replicaSet=rs0"
    MONGO_DB: str = "leagueops"

    # Civil clock of the whole pipeline
    OPERATING_TZ: str = "Europe/Istanbul"
    KICKOFF_TIME: str = "19:00"
    WINDOW_END_TIME: str = "23:59:59"
    LOCK_WINDOW_START: str = "18:30"

    # Shared bearer secrets, one per endpoint group. Empty = group disabled.
    SCHEDULER_SECRET: str = ""
    RESULTS_SECRET: str = ""
    TASKS_SECRET: str = ""

    # Watchdog / retry
    FINALIZE_MAX_RETRIES: int = 3
    FINALIZE_WATCHDOG_DELAY_SECONDS: int = 1200

    # Dispatch
    DISPATCH_MODE: str = "serial"  # serial | queued
    LOCK_ITEM_TIMEOUT_SECONDS: float = 10.0
    DISPATCH_ITEM_TIMEOUT_SECONDS: float = 20.0
    SEED_MODE: str = "random"  # random | deterministic
    STRICT_SCORE_PARSING: bool = False

    # Simulation worker
    SIM_WORKER_URL: str = ""
    SIM_WORKER_TOKEN: str = ""
    SIM_WORKER_TIMEOUT_SECONDS: float = 15.0
    SIM_WORKER_MAX_RETRIES: int = 2
    RESULTS_CALLBACK_URL: str = ""

    # S3-compatible blob storage (results, replays, batch manifests)
    STORAGE_ENDPOINT_URL: str = ""
    STORAGE_ACCESS_KEY_ID: str = ""
    STORAGE_SECRET_ACCESS_KEY: str = ""
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = "auto"
    SIGNED_URL_TTL_SECONDS: int = 21600

    # Alerting (Slack-compatible incoming webhook)
    ALERT_WEBHOOK_URL: str = ""

    # Ops heartbeat
    HEARTBEAT_REQUIRED_STAGES: str = "lockOk,orchestrateOk"

    # Durable task queue
    TASK_QUEUE_ENABLED: bool = True
    TASK_QUEUE_TICK_SECONDS: int = 15
    TASK_QUEUE_BATCH_SIZE: int = 25
    TASK_LEASE_SECONDS: int = 300
    TASK_MAX_DELIVERIES: int = 5
    TASK_RETRY_BACKOFF_SECONDS: int = 30

    # In-process daily cron (external cron hitting the endpoints is the default)
    DAILY_CRON_ENABLED: bool = False

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }

    @property
    def kickoff_time(self) -> time:
        return _parse_clock(self.KICKOFF_TIME)

    @property
    def window_end_time(self) -> time:
        return _parse_clock(self.WINDOW_END_TIME)

    @property
    def lock_window_start(self) -> time:
        return _parse_clock(self.LOCK_WINDOW_START)

    @property
    def required_heartbeat_stages(self) -> list[str]:
        return [s.strip() for s in self.HEARTBEAT_REQUIRED_STAGES.split(",") if s.strip()]

    @property
    def storage_enabled(self) -> bool:
        return bool(self.STORAGE_BUCKET)


settings = Settings()
