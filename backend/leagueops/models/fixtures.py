"""
backend/leagueops/models/fixtures.py

Purpose:
    Fixture lifecycle, Match Plan snapshot, Standings Row and Failed Job
    contracts. Documents are stored as plain dicts; these models describe
    their shape and build the canonical storage keys.

Dependencies:
    - pydantic
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FixtureStatus(str, Enum):
    SCHEDULED = "scheduled"
    LOCKED = "locked"
    RUNNING = "running"
    PLAYED = "played"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({FixtureStatus.PLAYED, FixtureStatus.FAILED})
DISPATCHABLE_STATUSES = frozenset({FixtureStatus.SCHEDULED, FixtureStatus.LOCKED})

# Forward-only lifecycle. running -> running is the watchdog re-dispatch loop.
ALLOWED_TRANSITIONS: dict[FixtureStatus, frozenset[FixtureStatus]] = {
    FixtureStatus.SCHEDULED: frozenset({
        FixtureStatus.LOCKED, FixtureStatus.RUNNING, FixtureStatus.PLAYED, FixtureStatus.FAILED,
    }),
    FixtureStatus.LOCKED: frozenset({
        FixtureStatus.RUNNING, FixtureStatus.PLAYED, FixtureStatus.FAILED,
    }),
    FixtureStatus.RUNNING: frozenset({
        FixtureStatus.RUNNING, FixtureStatus.PLAYED, FixtureStatus.FAILED,
    }),
    FixtureStatus.PLAYED: frozenset(),
    FixtureStatus.FAILED: frozenset(),
}


def sources_for(target: str | FixtureStatus) -> list[str]:
    """Statuses from which `target` may be entered, as stored strings."""
    target = FixtureStatus(target)
    return [s.value for s, allowed in ALLOWED_TRANSITIONS.items() if target in allowed]


def fixture_key(league_id: str, match_id: str) -> str:
    return f"{league_id}:{match_id}"


def standing_key(league_id: str, team_id: str) -> str:
    return f"{league_id}:{team_id}"


class Score(BaseModel):
    home: int = 0
    away: int = 0


class ReplayRef(BaseModel):
    path: str


class PlanSide(BaseModel):
    team_id: str
    name: str = ""
    formation: str | None = None
    tactics: dict[str, Any] = Field(default_factory=dict)
    starters: list[Any] = Field(default_factory=list)
    substitutes: list[Any] = Field(default_factory=list)


class MatchPlan(BaseModel):
    """Frozen lineup snapshot. `_id` is the match id."""

    id: str = Field(alias="_id")
    match_id: str
    league_id: str
    season_id: str | None = None
    created_at: datetime
    seed: int
    kickoff_at: datetime
    home: PlanSide
    away: PlanSide

    model_config = ConfigDict(populate_by_name=True)


class StandingRow(BaseModel):
    team_id: str
    league_id: str
    name: str = ""
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0


class FailedJob(BaseModel):
    id: str = Field(alias="_id")
    match_id: str
    league_id: str
    last_status: str
    reason: str
    attempts: int
    created_at: datetime

    model_config = ConfigDict(populate_by_name=True)
