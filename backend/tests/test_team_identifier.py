from __future__ import annotations

import pytest

from warscout.services.models import MetaSquad, TeamDefinition
from warscout.services.team_identifier import identify_team


def _teams() -> list[TeamDefinition]:
    return [
        TeamDefinition("t", "Team T", ("A", "B", "C", "X", "Y")),
        TeamDefinition("u", "Team U", ("D", "E", "Q", "R", "S")),
        TeamDefinition("empty", "Empty", ()),
    ]


def test_best_overlap_and_confidence() -> None:
    identity = identify_team(["A", "B", "C", "D", "E"], _teams())

    assert identity.team is not None
    assert identity.team.id == "t"
    assert identity.match_count == 3
    assert identity.confidence == 60


def test_fewer_than_three_identities_is_insufficient() -> None:
    identity = identify_team(["A", "B"], _teams())

    assert identity.team is None
    assert identity.match_count == 0
    assert identity.confidence == 0
    assert not identity.resolved


def test_no_team_reaching_three_overlaps_is_unknown() -> None:
    identity = identify_team(["A", "B", "D", "E", "Z"], _teams())

    assert identity.team is None
    assert identity.match_count == 2
    assert identity.confidence == 0


def test_confidence_uses_recognized_count_below_five() -> None:
    identity = identify_team(["a", "b", "c"], _teams())

    assert identity.team is not None and identity.team.id == "t"
    assert identity.confidence == 100


def test_duplicate_identities_count_once() -> None:
    identity = identify_team(["A", "A", "B", "B", "C"], _teams())

    assert identity.recognized_count == 3
    assert identity.match_count == 3


def test_first_team_wins_ties() -> None:
    teams = [
        TeamDefinition("first", "First", ("A", "B", "C")),
        TeamDefinition("second", "Second", ("A", "B", "C")),
    ]
    identity = identify_team(["A", "B", "C"], teams)
    assert identity.team is not None and identity.team.id == "first"


def test_meta_squad_used_when_catalog_falls_short() -> None:
    squads = [MetaSquad(("A", "B", "D", "E", "Z"), popularity=0.2)]
    identity = identify_team(
        ["A", "B", "D", "E", "Z"],
        _teams(),
        squads,
        {"A": "Alpha", "B": "Bravo", "D": "Delta"},
    )

    assert identity.team is not None
    assert identity.team.is_meta_variant
    assert identity.team.id == "meta_A_B_D_E_Z"
    assert identity.team.name == "Alpha + Bravo + Delta..."
    assert identity.match_count == 5
    assert identity.confidence == 100


def test_meta_squad_ignored_when_catalog_team_matches() -> None:
    squads = [MetaSquad(("A", "B", "C", "D", "E"))]
    identity = identify_team(["A", "B", "C", "D", "E"], _teams(), squads)

    assert identity.team is not None
    assert identity.team.id == "t"
    assert not identity.team.is_meta_variant


def test_meta_squad_needs_strictly_better_overlap() -> None:
    squads = [MetaSquad(("A", "B", "M", "N", "O"))]
    identity = identify_team(["A", "B", "D", "E", "Z"], _teams(), squads)
    assert identity.team is None


def test_team_definition_caps_members() -> None:
    with pytest.raises(ValueError):
        TeamDefinition("big", "Big", ("A", "B", "C", "D", "E", "F"))
