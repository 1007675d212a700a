from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Mapping, Sequence, TypeVar

from .hue_histogram import hue_similarity
from .models import (
    METHOD_HASH,
    METHOD_HISTOGRAM,
    Candidate,
    MatchResult,
    ReferenceEntry,
)
from .phash import fingerprint_similarity

logger = logging.getLogger("warscout.matcher")

Q = TypeVar("Q")
S = TypeVar("S")

HISTOGRAM_THRESHOLD = 90.0
HISTOGRAM_MIN_GAP = 1.5
FINGERPRINT_THRESHOLD = 75.0
FINGERPRINT_MIN_GAP = 3.0
MAX_ALTERNATIVES = 2


@dataclass(frozen=True)
class ReferenceItem(Generic[S]):
    candidate_id: str
    signature: S
    display_name: str | None = None


class SimilarityMatcher(Generic[Q, S]):
    """Nearest-neighbour search over a fixed reference list.

    ``score`` returns a similarity on the 0..100 scale. ``exact_index`` maps
    a query value straight to a candidate id and skips the scan on a hit.
    """

    def __init__(
        self,
        items: Sequence[ReferenceItem[S]],
        score: Callable[[Q, S], float],
        *,
        method: str,
        threshold: float,
        min_gap: float,
        exact_index: Mapping[Q, str] | None = None,
    ) -> None:
        self._items = tuple(items)
        self._score = score
        self._exact_index = dict(exact_index or {})
        self._names = {item.candidate_id: item.display_name for item in self._items}
        self.method = method
        self.threshold = float(threshold)
        self.min_gap = float(min_gap)

    def __len__(self) -> int:
        return len(self._items)

    def rank(self, query: Q) -> list[Candidate]:
        scored = [
            Candidate(candidate_id=item.candidate_id, similarity=float(self._score(query, item.signature)))
            for item in self._items
        ]
        # Stable: ties keep reference order.
        scored.sort(key=lambda row: row.similarity, reverse=True)
        return scored

    def match(self, query: Q) -> MatchResult | None:
        exact_id = self._exact_index.get(query) if self._exact_index else None
        if exact_id is not None:
            return MatchResult(
                candidate_id=exact_id,
                similarity=100.0,
                method=self.method,
                display_name=self._names.get(exact_id),
            )

        ranked = self.rank(query)
        if not ranked:
            return None

        top = ranked[0]
        if top.similarity < self.threshold:
            logger.debug(
                "%s lookup miss: best=%s %.2f < %.2f",
                self.method,
                top.candidate_id,
                top.similarity,
                self.threshold,
            )
            return None

        runner_up = ranked[1].similarity if len(ranked) > 1 else None
        ambiguous = runner_up is not None and (top.similarity - runner_up) < self.min_gap
        alternatives: tuple[Candidate, ...] = ()
        if ambiguous:
            alternatives = tuple(ranked[1 : 1 + MAX_ALTERNATIVES])
            logger.debug(
                "%s ambiguous: %s %.2f vs %s",
                self.method,
                top.candidate_id,
                top.similarity,
                [(alt.candidate_id, alt.similarity) for alt in alternatives],
            )

        return MatchResult(
            candidate_id=top.candidate_id,
            similarity=top.similarity,
            method=self.method,
            ambiguous=ambiguous,
            alternatives=alternatives,
            display_name=self._names.get(top.candidate_id),
        )


def _histogram_score(query: Sequence[float], reference: Sequence[float]) -> float:
    return round(hue_similarity(query, reference) * 100.0, 2)


def _fingerprint_score(query: str, reference: str) -> float:
    return float(fingerprint_similarity(query, reference))


def build_histogram_matcher(
    entries: Sequence[ReferenceEntry],
    threshold: float = HISTOGRAM_THRESHOLD,
    min_gap: float = HISTOGRAM_MIN_GAP,
) -> SimilarityMatcher[Sequence[float], Sequence[float]]:
    items = [
        ReferenceItem(entry.id, entry.hue_histogram, entry.display_name)
        for entry in entries
        if entry.has_histogram()
    ]
    return SimilarityMatcher(
        items,
        _histogram_score,
        method=METHOD_HISTOGRAM,
        threshold=threshold,
        min_gap=min_gap,
    )


def build_fingerprint_matcher(
    entries: Sequence[ReferenceEntry],
    fingerprint_index: Mapping[str, str] | None = None,
    threshold: float = FINGERPRINT_THRESHOLD,
    min_gap: float = FINGERPRINT_MIN_GAP,
) -> SimilarityMatcher[str, str]:
    items = [
        ReferenceItem(entry.id, entry.fingerprint, entry.display_name)
        for entry in entries
        if entry.fingerprint
    ]
    index = fingerprint_index
    if index is None:
        index = {}
        for entry in entries:
            if entry.fingerprint:
                index.setdefault(entry.fingerprint, entry.id)
    return SimilarityMatcher(
        items,
        _fingerprint_score,
        method=METHOD_HASH,
        threshold=threshold,
        min_gap=min_gap,
        exact_index=index,
    )


class PortraitMatcher:
    """Histogram first, fingerprint as fallback."""

    def __init__(
        self,
        histogram: SimilarityMatcher[Sequence[float], Sequence[float]],
        fingerprint: SimilarityMatcher[str, str],
    ) -> None:
        self.histogram = histogram
        self.fingerprint = fingerprint

    @classmethod
    def from_entries(
        cls,
        entries: Sequence[ReferenceEntry],
        fingerprint_index: Mapping[str, str] | None = None,
    ) -> "PortraitMatcher":
        return cls(
            build_histogram_matcher(entries),
            build_fingerprint_matcher(entries, fingerprint_index),
        )

    def match(
        self,
        *,
        hue_histogram: Sequence[float] | None,
        fingerprint: str | None,
    ) -> MatchResult | None:
        by_histogram: MatchResult | None = None
        if hue_histogram is not None and any(hue_histogram) and len(self.histogram):
            by_histogram = self.histogram.match(hue_histogram)
            if by_histogram is not None and not by_histogram.ambiguous:
                return by_histogram

        by_fingerprint: MatchResult | None = None
        if fingerprint:
            by_fingerprint = self.fingerprint.match(fingerprint.strip().lower())
            if by_fingerprint is not None and not by_fingerprint.ambiguous:
                return by_fingerprint

        return by_histogram or by_fingerprint
