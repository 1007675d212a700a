from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

FINGERPRINT_BITS = 64
FINGERPRINT_HEX_DIGITS = FINGERPRINT_BITS // 4
HUE_BINS = 36
MAX_TEAM_MEMBERS = 5

METHOD_HASH = "hash"
METHOD_HISTOGRAM = "histogram"
METHOD_FUZZY_NAME = "fuzzyName"

_HEX_PATTERN = re.compile(r"^[0-9a-f]{16}$")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, like a scoreboard would."""
    return int(math.floor(value + 0.5))


def is_fingerprint(value: object) -> bool:
    return isinstance(value, str) and bool(_HEX_PATTERN.match(value.strip().lower()))


@dataclass(frozen=True)
class ReferenceEntry:
    id: str
    display_name: str
    fingerprint: str | None = None
    hue_histogram: tuple[float, ...] = ()

    def has_histogram(self) -> bool:
        return len(self.hue_histogram) == HUE_BINS and any(self.hue_histogram)


@dataclass(frozen=True)
class TeamDefinition:
    id: str
    name: str
    member_ids: tuple[str, ...]
    localized_name: str | None = None
    is_meta_variant: bool = False
    popularity: float | None = None

    def __post_init__(self) -> None:
        if len(self.member_ids) > MAX_TEAM_MEMBERS:
            raise ValueError(
                f"team {self.id!r} has {len(self.member_ids)} members (max {MAX_TEAM_MEMBERS})"
            )


@dataclass(frozen=True)
class MetaSquad:
    squad: tuple[str, ...]
    popularity: float | None = None


@dataclass(frozen=True)
class CounterEntry:
    attacking_team_id: str
    confidence: float
    min_power_ratio: float = 1.0
    notes: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.min_power_ratio <= 0:
            raise ValueError(f"minPowerRatio must be positive: {self.min_power_ratio}")


@dataclass(frozen=True)
class Candidate:
    candidate_id: str
    similarity: float


@dataclass(frozen=True)
class MatchResult:
    candidate_id: str
    similarity: float
    method: str
    ambiguous: bool = False
    alternatives: tuple[Candidate, ...] = ()
    display_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidateId": self.candidate_id,
            "name": self.display_name or self.candidate_id,
            "similarity": self.similarity,
            "method": self.method,
            "ambiguous": self.ambiguous,
            "alternatives": [
                {"candidateId": alt.candidate_id, "similarity": alt.similarity}
                for alt in self.alternatives
            ],
        }


@dataclass(frozen=True)
class TeamIdentity:
    team: TeamDefinition | None
    match_count: int
    confidence: int
    recognized_count: int

    @property
    def resolved(self) -> bool:
        return self.team is not None


@dataclass(frozen=True)
class CounterSuggestion:
    team_id: str
    team_name: str
    confidence: float
    min_power_ratio: float
    min_power: int | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "teamId": self.team_id,
            "teamName": self.team_name,
            "confidence": self.confidence,
            "minPowerRatio": self.min_power_ratio,
            "minPower": self.min_power,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class VariantResolution:
    base_id: str
    variant_id: str
    modifiers: tuple[str, ...]
    counters: tuple[CounterEntry, ...]

    @property
    def is_variant(self) -> bool:
        return self.variant_id != self.base_id


class SessionState(str, Enum):
    COLLECTING = "collecting"
    MATCHING = "matching"
    AGGREGATING = "aggregating"
    RESOLVING = "resolving"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SlotResult:
    index: int
    match: MatchResult | None = None
    fingerprint: str | None = None
    hue_histogram: tuple[float, ...] | None = None
    text: str | None = None
    error: str | None = None

    @property
    def recognized(self) -> bool:
        return self.match is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.index,
            "match": self.match.to_dict() if self.match else None,
            "fingerprint": self.fingerprint,
            "text": self.text,
            "error": self.error,
        }


@dataclass
class AnalysisResult:
    state: SessionState
    slots: list[SlotResult] = field(default_factory=list)
    identity: TeamIdentity | None = None
    variant: VariantResolution | None = None
    variant_name: str | None = None
    counters: list[CounterSuggestion] = field(default_factory=list)
    message: str = ""

    @property
    def identified(self) -> bool:
        return self.state is SessionState.DONE and self.identity is not None and self.identity.resolved

    def to_dict(self) -> dict[str, Any]:
        team: dict[str, Any] | None = None
        if self.identity is not None and self.identity.team is not None:
            definition = self.identity.team
            team = {
                "id": definition.id,
                "name": definition.name,
                "localizedName": definition.localized_name,
                "isMetaTeam": definition.is_meta_variant,
                "variantId": self.variant.variant_id if self.variant else definition.id,
                "variantName": self.variant_name or definition.name,
            }
        return {
            "state": self.state.value,
            "identified": self.identified,
            "slots": [slot.to_dict() for slot in self.slots],
            "team": team,
            "matchCount": self.identity.match_count if self.identity else 0,
            "matchConfidence": self.identity.confidence if self.identity else 0,
            "counters": [row.to_dict() for row in self.counters],
            "message": self.message,
        }
