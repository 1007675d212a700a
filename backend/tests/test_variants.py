from __future__ import annotations

from warscout.services.models import CounterEntry
from warscout.services.variants import (
    compose_variant_id,
    detect_modifiers,
    resolve_variant,
    variant_candidates,
    variant_display_name,
)


def _counters() -> dict[str, tuple[CounterEntry, ...]]:
    return {
        "asgardians": (CounterEntry("xmen", 75),),
        "asgardians_odin": (CounterEntry("inhumans", 80, 1.15),),
        "empty_team": (),
    }


def test_candidate_order_two_modifiers() -> None:
    assert variant_candidates("foo", ["a", "b"]) == ["foo_a_b", "foo_a", "foo_b", "foo"]


def test_candidate_order_three_modifiers() -> None:
    assert variant_candidates("foo", ["c", "a", "b"]) == [
        "foo_a_b_c",
        "foo_a_b",
        "foo_a_c",
        "foo_b_c",
        "foo_a",
        "foo_b",
        "foo_c",
        "foo",
    ]


def test_candidate_order_small_inputs() -> None:
    assert variant_candidates("foo", ["a"]) == ["foo_a", "foo"]
    assert variant_candidates("foo", []) == ["foo"]
    assert variant_candidates("foo", ["a", "a"]) == ["foo_a", "foo"]


def test_compose_variant_id_is_canonical() -> None:
    assert compose_variant_id("foo", ["b", "a"]) == "foo_a_b"
    assert compose_variant_id("foo", []) == "foo"


def test_detect_modifiers_maps_aliases_once() -> None:
    assert detect_modifiers(["odin", "KNULL", "THOR"]) == ["knull", "odin"]
    assert detect_modifiers(["PHOENIX", "JEANGREY"]) == ["phoenixforce"]
    assert detect_modifiers(["THOR", None]) == []


def test_detect_modifiers_with_custom_rules() -> None:
    assert detect_modifiers(["A", "B"], {"A": "x", "C": "y"}) == ["x"]


def test_resolve_variant_prefers_specific_counters() -> None:
    resolution = resolve_variant("asgardians", ["THOR", "LOKI", "ODIN"], _counters())

    assert resolution.variant_id == "asgardians_odin"
    assert resolution.is_variant
    assert resolution.modifiers == ("odin",)
    assert resolution.counters[0].attacking_team_id == "inhumans"


def test_resolve_variant_falls_back_to_base() -> None:
    resolution = resolve_variant("asgardians", ["THOR", "LOKI", "KNULL"], _counters())

    assert resolution.variant_id == "asgardians"
    assert not resolution.is_variant
    assert resolution.counters[0].attacking_team_id == "xmen"


def test_resolve_variant_without_any_counters() -> None:
    resolution = resolve_variant("empty_team", ["ODIN"], _counters())

    assert resolution.variant_id == "empty_team"
    assert resolution.counters == ()


def test_variant_display_name() -> None:
    assert variant_display_name("Asgardians", "asgardians", "asgardians_odin") == "Asgardians + Odin"
    assert variant_display_name("Asgardians", "asgardians", "asgardians") == "Asgardians"
    assert variant_display_name("X", "x", "x_knull_odin") == "X + Knull + Odin"
