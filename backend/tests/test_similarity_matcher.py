from __future__ import annotations

from warscout.services.models import METHOD_HASH, METHOD_HISTOGRAM, ReferenceEntry
from warscout.services.similarity_matcher import (
    PortraitMatcher,
    ReferenceItem,
    SimilarityMatcher,
    build_fingerprint_matcher,
)


def _bucket(index: int) -> tuple[float, ...]:
    hist = [0.0] * 36
    hist[index] = 1.0
    return tuple(hist)


def _linear_matcher(**kwargs: object) -> SimilarityMatcher[int, int]:
    items = [
        ReferenceItem("A", 10),
        ReferenceItem("B", 11),
        ReferenceItem("C", 12),
        ReferenceItem("D", 40),
    ]
    options: dict[str, object] = {"method": "linear", "threshold": 75.0, "min_gap": 3.0}
    options.update(kwargs)
    return SimilarityMatcher(items, lambda q, s: 100.0 - abs(q - s), **options)  # type: ignore[arg-type]


def test_exact_fingerprint_hit_is_full_confidence() -> None:
    entries = [
        ReferenceEntry("THOR", "Thor", fingerprint="abcd1234abcd1234"),
        ReferenceEntry("LOKI", "Loki", fingerprint="abcd1234abcd1235"),
    ]
    match = build_fingerprint_matcher(entries).match("abcd1234abcd1234")

    assert match is not None
    assert match.candidate_id == "THOR"
    assert match.similarity == 100.0
    assert match.method == METHOD_HASH
    assert not match.ambiguous


def test_close_candidates_mark_result_ambiguous() -> None:
    match = _linear_matcher().match(10)

    assert match is not None
    assert match.candidate_id == "A"
    assert match.ambiguous
    assert [alt.candidate_id for alt in match.alternatives] == ["B", "C"]


def test_clear_winner_has_no_alternatives() -> None:
    match = _linear_matcher().match(40)

    assert match is not None
    assert match.candidate_id == "D"
    assert not match.ambiguous
    assert match.alternatives == ()


def test_below_threshold_is_unrecognized() -> None:
    assert _linear_matcher().match(90) is None


def test_ties_keep_reference_order() -> None:
    items = [ReferenceItem("FIRST", 5), ReferenceItem("SECOND", 5)]
    matcher = SimilarityMatcher(items, lambda q, s: 100.0 - abs(q - s), method="m", threshold=50.0, min_gap=0.0)
    ranked = matcher.rank(5)
    assert [row.candidate_id for row in ranked] == ["FIRST", "SECOND"]
    match = matcher.match(5)
    assert match is not None and match.candidate_id == "FIRST"


def test_empty_matcher_returns_none() -> None:
    matcher: SimilarityMatcher[int, int] = SimilarityMatcher([], lambda q, s: 100.0, method="m", threshold=0.0, min_gap=0.0)
    assert len(matcher) == 0
    assert matcher.match(1) is None


def test_portrait_matcher_prefers_histogram() -> None:
    entries = [
        ReferenceEntry("CYCLOPS", "Cyclops", fingerprint="00000000ffffffff", hue_histogram=_bucket(0)),
        ReferenceEntry("STORM", "Storm", fingerprint="ffffffff00000000", hue_histogram=_bucket(12)),
    ]
    matcher = PortraitMatcher.from_entries(entries)
    match = matcher.match(hue_histogram=_bucket(12), fingerprint="00000000ffffffff")

    assert match is not None
    assert match.candidate_id == "STORM"
    assert match.method == METHOD_HISTOGRAM
    assert match.similarity == 100.0


def test_portrait_matcher_falls_back_to_fingerprint() -> None:
    entries = [
        ReferenceEntry("CYCLOPS", "Cyclops", fingerprint="00000000ffffffff", hue_histogram=_bucket(0)),
        ReferenceEntry("STORM", "Storm", fingerprint="ffffffff00000000", hue_histogram=_bucket(12)),
    ]
    matcher = PortraitMatcher.from_entries(entries)
    # A grey capture has no usable histogram.
    match = matcher.match(hue_histogram=tuple([0.0] * 36), fingerprint="ffffffff00000001")

    assert match is not None
    assert match.candidate_id == "STORM"
    assert match.method == METHOD_HASH
    assert match.similarity == 98.0


def test_portrait_matcher_without_any_signal_returns_none() -> None:
    entries = [ReferenceEntry("CYCLOPS", "Cyclops", fingerprint="00000000ffffffff", hue_histogram=_bucket(0))]
    matcher = PortraitMatcher.from_entries(entries)
    assert matcher.match(hue_histogram=_bucket(24), fingerprint="ffffffff00000000") is None
