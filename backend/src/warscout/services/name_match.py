from __future__ import annotations

import re
from typing import Mapping

from rapidfuzz.distance import Levenshtein

from .models import METHOD_FUZZY_NAME, MatchResult, round_half_up
from .similarity_matcher import ReferenceItem, SimilarityMatcher

NAME_MATCH_THRESHOLD = 0.6
MIN_LETTERS = 3

_NOISE_PATTERN = re.compile(r"[_|\\/\[\]{}«»\"“”]")
_TRAILING_PUNCT_PATTERN = re.compile(r"\s*[.,;:!?]+\s*$")
_LEADING_JUNK_PATTERN = re.compile(r"^[^a-zA-Z(]+")
_TRAILING_JUNK_PATTERN = re.compile(r"[^a-zA-Z)]+$")
_CORRECTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bME\s*U\b", re.IGNORECASE), "MCU"),
    (re.compile(r"\b0\b"), "O"),
    (re.compile(r"\b1\b"), "I"),
    (re.compile(r"\bll\b", re.IGNORECASE), "II"),
)


def clean_ocr_text(text: str | None) -> str:
    """Normalize a recognized name; return "" when it looks like noise."""
    if not text:
        return ""

    out = text.strip().replace("\n", " ")
    out = re.sub(r"\s+", " ", out)
    out = _NOISE_PATTERN.sub("", out)
    out = _TRAILING_PUNCT_PATTERN.sub("", out).strip()

    for pattern, replacement in _CORRECTIONS:
        out = pattern.sub(replacement, out)
    out = out.strip()

    out = _LEADING_JUNK_PATTERN.sub("", out)
    out = _TRAILING_JUNK_PATTERN.sub("", out).strip()

    letters = re.sub(r"[^a-zA-Z]", "", out)
    if len(letters) < MIN_LETTERS:
        return ""
    return out.upper()


def levenshtein(a: str, b: str) -> int:
    return int(Levenshtein.distance(a, b))


def name_similarity(a: str, b: str) -> float:
    """(maxLen - distance) / maxLen, in [0, 1]."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein(a, b)) / max_len


class FuzzyNameMatcher:
    """Resolve recognized text against the known character names."""

    def __init__(
        self,
        name_to_id: Mapping[str, str | None],
        threshold: float = NAME_MATCH_THRESHOLD,
    ) -> None:
        self._ids: dict[str, str] = {}
        for raw_name, char_id in name_to_id.items():
            name = str(raw_name or "").strip().upper()
            if not name:
                continue
            self._ids.setdefault(name, str(char_id) if char_id else name)

        items = [ReferenceItem(name, name, name) for name in self._ids]
        self._matcher: SimilarityMatcher[str, str] = SimilarityMatcher(
            items,
            lambda query, known: name_similarity(query, known) * 100.0,
            method=METHOD_FUZZY_NAME,
            threshold=threshold * 100.0,
            min_gap=0.0,
            exact_index={name: name for name in self._ids},
        )

    @property
    def known_names(self) -> list[str]:
        return list(self._ids)

    def char_id_for(self, name: str) -> str | None:
        return self._ids.get(name.strip().upper())

    def match(self, text: str | None) -> MatchResult | None:
        if not text:
            return None
        query = text.strip().upper()
        if not query:
            return None

        hit = self._matcher.match(query)
        if hit is None:
            return None

        return MatchResult(
            candidate_id=self._ids[hit.candidate_id],
            similarity=float(round_half_up(hit.similarity)),
            method=METHOD_FUZZY_NAME,
            ambiguous=hit.ambiguous,
            alternatives=hit.alternatives,
            display_name=hit.candidate_id,
        )

    def match_raw(self, raw_text: str | None) -> MatchResult | None:
        """Clean OCR output first, then match."""
        return self.match(clean_ocr_text(raw_text))
