from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

from .models import CounterEntry, CounterSuggestion, TeamDefinition, round_half_up


def _team_name(team_id: str, teams_by_id: Mapping[str, TeamDefinition]) -> str:
    team = teams_by_id.get(team_id)
    return team.name if team is not None else team_id


def _as_power(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value) and value > 0:
        return float(value)
    return None


def _min_power(power: float | None, ratio: float) -> int | None:
    if power is None:
        return None
    scaled = power * ratio
    if not math.isfinite(scaled):
        return None
    return round_half_up(scaled)


def recommend_counters(
    team_id: str | None,
    counters: Mapping[str, Sequence[CounterEntry]],
    teams_by_id: Mapping[str, TeamDefinition] | None = None,
    enemy_power: float | int | None = None,
) -> list[CounterSuggestion]:
    """Counters for *team_id*, best confidence first.

    With an observed enemy power each row also carries the minimum power the
    attacking team should bring. Unknown ids give an empty list.
    """
    if not team_id:
        return []
    entries = counters.get(team_id)
    if not entries:
        return []

    names = teams_by_id or {}
    power = _as_power(enemy_power)
    out = [
        CounterSuggestion(
            team_id=entry.attacking_team_id,
            team_name=_team_name(entry.attacking_team_id, names),
            confidence=entry.confidence,
            min_power_ratio=entry.min_power_ratio,
            min_power=_min_power(power, entry.min_power_ratio),
            notes=entry.notes,
        )
        for entry in entries
    ]
    out.sort(key=lambda row: row.confidence, reverse=True)
    return out


def build_inverse_index(
    counters: Mapping[str, Sequence[CounterEntry]],
) -> dict[str, list[tuple[str, CounterEntry]]]:
    """attacking team id -> [(defending team id, entry)], best confidence first."""
    index: dict[str, list[tuple[str, CounterEntry]]] = {}
    for defense_id, entries in counters.items():
        for entry in entries:
            index.setdefault(entry.attacking_team_id, []).append((defense_id, entry))
    for rows in index.values():
        rows.sort(key=lambda row: row[1].confidence, reverse=True)
    return index


def what_can_beat(
    attacker_id: str,
    inverse_index: Mapping[str, Sequence[tuple[str, CounterEntry]]],
    teams_by_id: Mapping[str, TeamDefinition] | None = None,
) -> list[dict[str, object]]:
    names = teams_by_id or {}
    return [
        {
            "defenseId": defense_id,
            "defenseName": _team_name(defense_id, names),
            "confidence": entry.confidence,
            "notes": entry.notes,
        }
        for defense_id, entry in inverse_index.get(attacker_id, ())
    ]


def list_defense_teams(
    counters: Mapping[str, Sequence[CounterEntry]],
    teams_by_id: Mapping[str, TeamDefinition] | None = None,
) -> list[dict[str, object]]:
    names = teams_by_id or {}
    rows: list[dict[str, object]] = [
        {
            "teamId": team_id,
            "teamName": _team_name(team_id, names),
            "counterCount": len(entries),
        }
        for team_id, entries in counters.items()
    ]
    rows.sort(key=lambda row: str(row["teamName"]).lower())
    return rows
