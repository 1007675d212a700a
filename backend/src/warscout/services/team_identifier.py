from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from .models import MAX_TEAM_MEMBERS, MetaSquad, TeamDefinition, TeamIdentity, round_half_up

logger = logging.getLogger("warscout.team")

MIN_MATCH_COUNT = 3
_META_ID_PREFIX = "meta_"
_META_ID_MAX_LEN = 30


def _normalize_ids(char_ids: Iterable[str | None]) -> list[str]:
    normalized: list[str] = []
    seen: set[str] = set()
    for raw in char_ids:
        value = str(raw or "").strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        normalized.append(value)
    return normalized


def _overlap(recognized: Sequence[str], members: Iterable[str]) -> int:
    member_set = {str(m).strip().upper() for m in members}
    return sum(1 for cid in recognized if cid in member_set)


def _meta_team(squad: MetaSquad, display_names: Mapping[str, str]) -> TeamDefinition:
    members = tuple(squad.squad[:MAX_TEAM_MEMBERS])
    label = " + ".join(display_names.get(cid, cid) for cid in members[:3])
    return TeamDefinition(
        id=(_META_ID_PREFIX + "_".join(members))[: len(_META_ID_PREFIX) + _META_ID_MAX_LEN],
        name=f"{label}...",
        member_ids=members,
        is_meta_variant=True,
        popularity=squad.popularity,
    )


def identify_team(
    char_ids: Iterable[str | None],
    teams: Sequence[TeamDefinition],
    meta_squads: Sequence[MetaSquad] = (),
    display_names: Mapping[str, str] | None = None,
) -> TeamIdentity:
    """Pick the catalog team overlapping most with the recognized characters.

    Meta squads are consulted only when no catalog team reaches the minimum
    overlap, and win only with a strictly larger overlap.
    """
    recognized = _normalize_ids(char_ids)
    total = len(recognized)
    if total < MIN_MATCH_COUNT:
        logger.info("insufficient recognition: %d identities (min %d)", total, MIN_MATCH_COUNT)
        return TeamIdentity(team=None, match_count=0, confidence=0, recognized_count=total)

    best_team: TeamDefinition | None = None
    best_count = 0
    for team in teams:
        if not team.member_ids:
            continue
        count = _overlap(recognized, team.member_ids)
        if count > best_count:
            best_count = count
            best_team = team

    if best_team is None or best_count < MIN_MATCH_COUNT:
        best_meta: MetaSquad | None = None
        best_meta_count = 0
        for squad in meta_squads:
            if not squad.squad:
                continue
            count = _overlap(recognized, squad.squad)
            if count > best_meta_count:
                best_meta_count = count
                best_meta = squad

        if best_meta is not None and best_meta_count > best_count:
            best_team = _meta_team(best_meta, display_names or {})
            best_count = best_meta_count

    if best_team is None or best_count < MIN_MATCH_COUNT:
        logger.info(
            "no team reached %d overlaps: best=%s count=%d",
            MIN_MATCH_COUNT,
            best_team.id if best_team else None,
            best_count,
        )
        return TeamIdentity(team=None, match_count=best_count, confidence=0, recognized_count=total)

    confidence = round_half_up(best_count / min(MAX_TEAM_MEMBERS, total) * 100)
    return TeamIdentity(
        team=best_team,
        match_count=best_count,
        confidence=confidence,
        recognized_count=total,
    )
