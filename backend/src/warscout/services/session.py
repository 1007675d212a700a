from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence, Union

import numpy as np

from .counter_recommend import recommend_counters
from .hue_histogram import compute_hue_histogram
from .image_normalize import (
    DEFAULT_DECODE_TIMEOUT_SECONDS,
    DecodeError,
    DecodeOutcome,
    RecognitionError,
    decode_image,
    decode_image_async,
    ensure_bgr,
    hash_sample,
    histogram_sample,
)
from .models import AnalysisResult, SessionState, SlotResult
from .name_match import clean_ocr_text
from .phash import compute_fingerprint
from .reference_db import ReferenceDatabase
from .team_identifier import MIN_MATCH_COUNT, identify_team
from .variants import resolve_variant, variant_display_name

logger = logging.getLogger("warscout.session")

MAX_SLOTS = 5
DEFAULT_SLOT_WORKERS = 5

Capture = Union[bytes, np.ndarray]


class SessionInputError(RecognitionError):
    """Raised when the captures handed to a session are unusable as a whole."""


def extract_signatures(image: np.ndarray) -> tuple[str, tuple[float, ...]]:
    """Fingerprint and hue histogram of one decoded portrait."""
    fingerprint = compute_fingerprint(hash_sample(image))
    histogram = compute_hue_histogram(histogram_sample(image))
    return fingerprint, histogram


class RecognitionSession:
    """One analysis run over up to five captured slots.

    Created per call and thrown away afterwards; the reference database is
    only read.
    """

    def __init__(
        self,
        db: ReferenceDatabase,
        *,
        enemy_power: float | int | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.db = db
        self.enemy_power = enemy_power
        self.max_workers = max(1, max_workers or DEFAULT_SLOT_WORKERS)
        self.state = SessionState.COLLECTING
        self.slots: list[SlotResult] = []

    def _transition(self, state: SessionState) -> None:
        logger.debug("session %s -> %s", self.state.value, state.value)
        self.state = state

    def _check_slot_count(self, count: int) -> None:
        if count == 0:
            raise SessionInputError("at least one capture is required")
        if count > MAX_SLOTS:
            raise SessionInputError(f"at most {MAX_SLOTS} captures are supported, got {count}")

    def _match_image(self, index: int, image: np.ndarray) -> SlotResult:
        try:
            fingerprint, histogram = extract_signatures(ensure_bgr(image))
        except DecodeError as exc:
            return SlotResult(index=index, error=str(exc))

        match = self.db.portrait_matcher.match(hue_histogram=histogram, fingerprint=fingerprint)
        if match is None:
            logger.info("slot %d: no portrait match (fingerprint=%s)", index, fingerprint)
        else:
            logger.info(
                "slot %d: %s %.1f%% via %s%s",
                index,
                match.candidate_id,
                match.similarity,
                match.method,
                " (ambiguous)" if match.ambiguous else "",
            )
        return SlotResult(index=index, match=match, fingerprint=fingerprint, hue_histogram=histogram)

    def _process_capture(self, index: int, capture: Capture) -> SlotResult:
        try:
            image = decode_image(capture) if isinstance(capture, (bytes, bytearray)) else capture
        except DecodeError as exc:
            logger.warning("slot %d: decode failed: %s", index, exc)
            return SlotResult(index=index, error=str(exc))
        return self._match_image(index, image)

    def _process_outcome(self, index: int, outcome: DecodeOutcome) -> SlotResult:
        if not outcome.ok:
            logger.warning("slot %d: decode failed: %s", index, outcome.error)
            return SlotResult(index=index, error=outcome.error)
        return self._match_image(index, outcome.image)  # type: ignore[arg-type]

    def _process_text(self, index: int, raw_text: str | None) -> SlotResult:
        text = clean_ocr_text(raw_text)
        if not text:
            return SlotResult(index=index, text=str(raw_text or ""))
        match = self.db.name_matcher.match(text)
        if match is None:
            logger.info("slot %d: no name match for %r", index, text)
        return SlotResult(index=index, match=match, text=text)

    def run_portraits(self, captures: Sequence[Capture]) -> AnalysisResult:
        self._check_slot_count(len(captures))
        self._transition(SessionState.MATCHING)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(captures))) as pool:
            self.slots = list(pool.map(self._process_capture, range(len(captures)), captures))
        return self._finish()

    async def run_portraits_async(
        self,
        captures: Sequence[bytes],
        decode_timeout_seconds: float = DEFAULT_DECODE_TIMEOUT_SECONDS,
    ) -> AnalysisResult:
        self._check_slot_count(len(captures))
        self._transition(SessionState.MATCHING)
        outcomes = await asyncio.gather(
            *(decode_image_async(capture, decode_timeout_seconds) for capture in captures)
        )

        def _match_all() -> list[SlotResult]:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(outcomes))) as pool:
                return list(pool.map(self._process_outcome, range(len(outcomes)), outcomes))

        self.slots = await asyncio.to_thread(_match_all)
        return self._finish()

    def run_names(self, texts: Sequence[str | None]) -> AnalysisResult:
        self._check_slot_count(len(texts))
        self._transition(SessionState.MATCHING)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(texts))) as pool:
            self.slots = list(pool.map(self._process_text, range(len(texts)), texts))
        return self._finish()

    def _finish(self) -> AnalysisResult:
        self._transition(SessionState.AGGREGATING)
        char_ids = [slot.match.candidate_id for slot in self.slots if slot.match is not None]
        characters = [self.db.display_name(cid) for cid in char_ids]
        distinct = len({cid.upper() for cid in char_ids})

        if distinct < MIN_MATCH_COUNT:
            self._transition(SessionState.FAILED)
            return AnalysisResult(
                state=self.state,
                slots=self.slots,
                message=(
                    f"only {distinct} of {len(self.slots)} characters recognized "
                    f"(min {MIN_MATCH_COUNT} required)"
                ),
            )

        identity = identify_team(
            char_ids,
            self.db.teams,
            self.db.meta_squads,
            self.db.display_names,
        )
        if identity.team is None:
            self._transition(SessionState.DONE)
            return AnalysisResult(
                state=self.state,
                slots=self.slots,
                identity=identity,
                message=f"team not identified from {', '.join(characters)}",
            )

        self._transition(SessionState.RESOLVING)
        team = identity.team
        variant = resolve_variant(team.id, char_ids, self.db.counters, self.db.modifiers)
        variant_name = variant_display_name(team.name, team.id, variant.variant_id)
        counters = recommend_counters(
            variant.variant_id,
            self.db.counters,
            self.db.teams_by_id,
            self.enemy_power,
        )

        self._transition(SessionState.DONE)
        return AnalysisResult(
            state=self.state,
            slots=self.slots,
            identity=identity,
            variant=variant,
            variant_name=variant_name,
            counters=counters,
            message=f"{variant_name} identified ({identity.confidence}%)",
        )


def analyze_portraits(
    captures: Sequence[Capture],
    db: ReferenceDatabase,
    enemy_power: float | int | None = None,
    max_workers: int | None = None,
) -> AnalysisResult:
    started = time.perf_counter()
    result = RecognitionSession(db, enemy_power=enemy_power, max_workers=max_workers).run_portraits(
        captures
    )
    logger.info(
        "portrait analysis state=%s slots=%d duration_ms=%.2f",
        result.state.value,
        len(result.slots),
        (time.perf_counter() - started) * 1000.0,
    )
    return result


async def analyze_portraits_async(
    captures: Sequence[bytes],
    db: ReferenceDatabase,
    enemy_power: float | int | None = None,
    max_workers: int | None = None,
    decode_timeout_seconds: float = DEFAULT_DECODE_TIMEOUT_SECONDS,
) -> AnalysisResult:
    session = RecognitionSession(db, enemy_power=enemy_power, max_workers=max_workers)
    return await session.run_portraits_async(captures, decode_timeout_seconds)


def analyze_names(
    texts: Sequence[str | None],
    db: ReferenceDatabase,
    enemy_power: float | int | None = None,
) -> AnalysisResult:
    return RecognitionSession(db, enemy_power=enemy_power).run_names(texts)
