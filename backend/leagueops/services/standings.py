"""Standings row arithmetic.

A row is only ever changed by apply_result(), which derives goal difference
and points from the counters so neither can drift from them.
"""

from __future__ import annotations

from leagueops.models.fixtures import StandingRow

WIN_POINTS = 3
DRAW_POINTS = 1
LOSS_POINTS = 0

_COUNTERS = ("played", "won", "drawn", "lost", "goals_for", "goals_against")


def default_row(league_id: str, team_id: str, name: str = "") -> dict:
    return StandingRow(league_id=league_id, team_id=team_id, name=name).model_dump()


def apply_result(row: dict, scored: int, conceded: int) -> dict:
    """Return a copy of `row` with one match (scored-conceded) counted."""
    updated = dict(row)
    for key in _COUNTERS:
        updated[key] = int(updated.get(key) or 0)

    updated["played"] += 1
    updated["goals_for"] += scored
    updated["goals_against"] += conceded
    if scored > conceded:
        updated["won"] += 1
    elif scored < conceded:
        updated["lost"] += 1
    else:
        updated["drawn"] += 1

    updated["goal_difference"] = updated["goals_for"] - updated["goals_against"]
    updated["points"] = (
        WIN_POINTS * updated["won"] + DRAW_POINTS * updated["drawn"] + LOSS_POINTS * updated["lost"]
    )
    return updated


def row_is_consistent(row: dict) -> bool:
    return (
        row["played"] == row["won"] + row["drawn"] + row["lost"]
        and row["points"] == WIN_POINTS * row["won"] + DRAW_POINTS * row["drawn"]
        and row["goal_difference"] == row["goals_for"] - row["goals_against"]
    )
