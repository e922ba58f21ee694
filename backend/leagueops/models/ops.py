"""
backend/leagueops/models/ops.py

Purpose:
    Request bodies for the pipeline's HTTP entry points. Field aliases keep
    the camelCase wire names used by the scheduler, the task queue and the
    simulation worker.

Dependencies:
    - pydantic
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DispatchRequest(_WireModel):
    match_id: str = Field(alias="matchId")
    league_id: str = Field(alias="leagueId")
    force_redispatch: bool = Field(default=False, alias="forceRedispatch")


class FinalizeWatchdogRequest(_WireModel):
    match_id: str = Field(alias="matchId")
    league_id: str = Field(alias="leagueId")
    attempt: int = Field(default=0, ge=0)


class DailyBatchRequest(_WireModel):
    date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class ReplayRefBody(_WireModel):
    path: str | None = None


class ResultReport(_WireModel):
    """Worker callback body. Score shape is validated later by normalize_score."""

    match_id: str = Field(alias="matchId")
    league_id: str = Field(alias="leagueId")
    season_id: str | None = Field(default=None, alias="seasonId")
    request_token: str | None = Field(default=None, alias="requestToken")
    score: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    replay: ReplayRefBody | None = None

    def score_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.model_extra or {})
        if self.score is not None:
            payload["score"] = self.score
        if self.result is not None:
            payload["result"] = self.result
        return payload
