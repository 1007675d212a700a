from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from .counter_recommend import build_inverse_index
from .models import (
    HUE_BINS,
    CounterEntry,
    MetaSquad,
    ReferenceEntry,
    TeamDefinition,
    is_fingerprint,
)
from .name_match import FuzzyNameMatcher
from .similarity_matcher import PortraitMatcher
from .variants import DEFAULT_TEAM_MODIFIERS

logger = logging.getLogger("warscout.reference")

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[3] / "data"
DEFAULT_LOAD_TIMEOUT_SECONDS = 10.0

PORTRAITS_FILE = "portraits.json"
LEARNED_PORTRAITS_FILE = "learned-portraits.json"
TEAMS_FILE = "teams.json"
META_FILE = "war-meta.json"
COUNTERS_FILE = "counters.json"
NAMES_FILE = "ocr-names.json"

# Portrait record shapes found in the corpus files.
SHAPE_LEGACY_NAME = "legacy-name"
SHAPE_LEGACY_RECORD = "legacy-record"
SHAPE_ENTRY = "entry"


class ReferenceDataError(Exception):
    """Raised when reference data cannot be read or has an invalid shape."""


class ReferenceDatabase:
    """Portrait corpus, team catalog, meta squads and counters, built once.

    Every collection is exposed read-only; a new instance is built on reload.
    """

    def __init__(
        self,
        *,
        entries: Sequence[ReferenceEntry],
        teams: Sequence[TeamDefinition],
        meta_squads: Sequence[MetaSquad] = (),
        counters: Mapping[str, Sequence[CounterEntry]] | None = None,
        name_to_id: Mapping[str, str | None] | None = None,
        modifiers: Mapping[str, str] | None = None,
    ) -> None:
        self.entries: tuple[ReferenceEntry, ...] = tuple(entries)
        self.teams: tuple[TeamDefinition, ...] = tuple(teams)
        self.meta_squads: tuple[MetaSquad, ...] = tuple(meta_squads)
        self.counters: Mapping[str, tuple[CounterEntry, ...]] = MappingProxyType(
            {
                team_id: tuple(sorted(rows, key=lambda row: row.confidence, reverse=True))
                for team_id, rows in (counters or {}).items()
            }
        )
        self.modifiers: Mapping[str, str] = MappingProxyType(
            dict(DEFAULT_TEAM_MODIFIERS if modifiers is None else modifiers)
        )

        self.teams_by_id: Mapping[str, TeamDefinition] = MappingProxyType(
            {team.id: team for team in self.teams}
        )

        fingerprint_index: dict[str, str] = {}
        display_names: dict[str, str] = {}
        for entry in self.entries:
            if entry.fingerprint:
                fingerprint_index.setdefault(entry.fingerprint, entry.id)
            display_names.setdefault(entry.id, entry.display_name)
        names = dict(name_to_id or {})
        for name, char_id in names.items():
            if char_id:
                display_names.setdefault(str(char_id), str(name))
        self.fingerprint_index: Mapping[str, str] = MappingProxyType(fingerprint_index)
        self.display_names: Mapping[str, str] = MappingProxyType(display_names)

        self.portrait_matcher = PortraitMatcher.from_entries(self.entries, self.fingerprint_index)
        self.name_matcher = FuzzyNameMatcher(names)
        self.inverse_index = MappingProxyType(build_inverse_index(self.counters))

    def display_name(self, char_id: str) -> str:
        return self.display_names.get(char_id, char_id)

    def summary(self) -> dict[str, int]:
        return {
            "portraits": len(self.entries),
            "teams": len(self.teams),
            "metaSquads": len(self.meta_squads),
            "counters": len(self.counters),
            "names": len(self.name_matcher.known_names),
        }


def _read_json(path: Path, required: bool = False) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ReferenceDataError(f"missing reference file: {path}")
        logger.warning("reference file not found, using empty data: %s", path)
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ReferenceDataError(f"failed to read {path.name}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ReferenceDataError(f"unexpected payload shape in {path.name}: expected object")
    return payload


def _portrait_shape(key: str, raw: object) -> str:
    if isinstance(raw, str):
        return SHAPE_LEGACY_NAME
    if isinstance(raw, dict):
        if "hash" in raw or "hue" in raw:
            return SHAPE_ENTRY
        if is_fingerprint(key):
            return SHAPE_LEGACY_RECORD
    raise ValueError(f"unrecognized portrait record for key {key!r}")


def _decode_histogram(raw: object) -> tuple[float, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or len(raw) != HUE_BINS:
        raise ValueError(f"hue histogram must be a list of {HUE_BINS} numbers")
    return tuple(float(v) for v in raw)


def _decode_fingerprint(raw: object) -> str | None:
    if raw is None:
        return None
    if not is_fingerprint(raw):
        raise ValueError(f"invalid fingerprint: {raw!r}")
    return str(raw).strip().lower()


def decode_portrait_record(
    key: str,
    raw: object,
    name_to_id: Mapping[str, str | None],
) -> ReferenceEntry:
    """Normalize any stored portrait record into one ReferenceEntry."""
    shape = _portrait_shape(key, raw)

    if shape == SHAPE_LEGACY_NAME:
        name = str(raw).strip()
        char_id = name_to_id.get(name.upper()) or name
        return ReferenceEntry(id=str(char_id), display_name=name, fingerprint=_decode_fingerprint(key))

    record: dict[str, Any] = raw  # type: ignore[assignment]
    if shape == SHAPE_LEGACY_RECORD:
        name = str(record.get("name") or "").strip() or key
        char_id = record.get("charId") or name_to_id.get(name.upper()) or name
        return ReferenceEntry(id=str(char_id), display_name=name, fingerprint=_decode_fingerprint(key))

    char_id = str(record.get("charId") or key).strip()
    name = str(record.get("name") or char_id).strip()
    return ReferenceEntry(
        id=char_id,
        display_name=name,
        fingerprint=_decode_fingerprint(record.get("hash")),
        hue_histogram=_decode_histogram(record.get("hue")),
    )


def _decode_portraits(
    payload: Mapping[str, Any],
    name_to_id: Mapping[str, str | None],
    source: str,
) -> list[ReferenceEntry]:
    raw_portraits = payload.get("portraits", {})
    if not isinstance(raw_portraits, dict):
        raise ReferenceDataError(f"{source}: 'portraits' must be an object")
    entries: list[ReferenceEntry] = []
    for key, raw in raw_portraits.items():
        try:
            entries.append(decode_portrait_record(str(key), raw, name_to_id))
        except (TypeError, ValueError) as exc:
            raise ReferenceDataError(f"{source}: invalid portrait {key!r}: {exc}") from exc
    return entries


def _decode_teams(payload: Mapping[str, Any]) -> list[TeamDefinition]:
    raw_teams = payload.get("teams", [])
    if not isinstance(raw_teams, list):
        raise ReferenceDataError("teams.json: 'teams' must be a list")
    teams: list[TeamDefinition] = []
    for idx, raw in enumerate(raw_teams):
        try:
            members = raw.get("memberIds") or []
            popularity = raw.get("popularity")
            teams.append(
                TeamDefinition(
                    id=str(raw["id"]),
                    name=str(raw.get("name") or raw["id"]),
                    localized_name=raw.get("localizedName") or raw.get("nameFr"),
                    member_ids=tuple(str(m) for m in members),
                    is_meta_variant=bool(raw.get("isMetaVariant", False)),
                    popularity=float(popularity) if popularity is not None else None,
                )
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ReferenceDataError(f"invalid team at index {idx}: {exc}") from exc
    return teams


def _decode_meta(payload: Mapping[str, Any]) -> list[MetaSquad]:
    raw_teams = payload.get("teams", [])
    if not isinstance(raw_teams, list):
        raise ReferenceDataError("war-meta.json: 'teams' must be a list")
    squads: list[MetaSquad] = []
    for idx, raw in enumerate(raw_teams):
        try:
            squad = raw.get("squad") or []
            popularity = raw.get("popularity")
            squads.append(
                MetaSquad(
                    squad=tuple(str(m) for m in squad),
                    popularity=float(popularity) if popularity is not None else None,
                )
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise ReferenceDataError(f"invalid meta squad at index {idx}: {exc}") from exc
    return squads


def decode_counters(raw_counters: object) -> dict[str, list[CounterEntry]]:
    if not isinstance(raw_counters, dict):
        raise ReferenceDataError("'counters' must be an object keyed by team id")
    table: dict[str, list[CounterEntry]] = {}
    for team_id, rows in raw_counters.items():
        if not isinstance(rows, list):
            raise ReferenceDataError(f"counters for {team_id!r} must be a list")
        entries: list[CounterEntry] = []
        for idx, raw in enumerate(rows):
            try:
                ratio = raw.get("minPowerRatio")
                entries.append(
                    CounterEntry(
                        attacking_team_id=str(raw["team"]),
                        confidence=float(raw["confidence"]),
                        min_power_ratio=float(ratio) if ratio is not None else 1.0,
                        notes=raw.get("notes") or None,
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise ReferenceDataError(
                    f"invalid counter for {team_id!r} at index {idx}: {exc}"
                ) from exc
        table[str(team_id)] = entries
    return table


def _decode_names(payload: Mapping[str, Any]) -> dict[str, str | None]:
    names = payload.get("names", [])
    name_to_id = payload.get("nameToId", {})
    if not isinstance(names, list) or not isinstance(name_to_id, dict):
        raise ReferenceDataError("ocr-names.json: expected 'names' list and 'nameToId' object")
    out: dict[str, str | None] = {}
    for name in names:
        key = str(name).strip().upper()
        if key:
            out[key] = None
    for name, char_id in name_to_id.items():
        key = str(name).strip().upper()
        if key:
            out[key] = str(char_id) if char_id else None
    return out


def _merge_learned(
    defaults: Iterable[ReferenceEntry],
    learned: Sequence[ReferenceEntry],
) -> list[ReferenceEntry]:
    learned_ids = {entry.id for entry in learned}
    return [*learned, *(entry for entry in defaults if entry.id not in learned_ids)]


def load_reference_database(data_dir: Path | str) -> ReferenceDatabase:
    root = Path(data_dir)
    started = time.perf_counter()

    name_to_id = _decode_names(_read_json(root / NAMES_FILE))
    entries = _decode_portraits(_read_json(root / PORTRAITS_FILE), name_to_id, PORTRAITS_FILE)
    learned_path = root / LEARNED_PORTRAITS_FILE
    if learned_path.exists():
        learned = _decode_portraits(_read_json(learned_path), name_to_id, LEARNED_PORTRAITS_FILE)
        entries = _merge_learned(entries, learned)
        logger.info("learned portraits merged: %d", len(learned))

    db = ReferenceDatabase(
        entries=entries,
        teams=_decode_teams(_read_json(root / TEAMS_FILE, required=True)),
        meta_squads=_decode_meta(_read_json(root / META_FILE)),
        counters=decode_counters(_read_json(root / COUNTERS_FILE).get("counters", {})),
        name_to_id=name_to_id,
    )
    logger.info(
        "reference database loaded from %s in %.2fs: %s",
        root,
        time.perf_counter() - started,
        db.summary(),
    )
    return db


class ReferenceStore:
    """Loads the reference database once and hands the same instance to every caller."""

    def __init__(self, data_dir: Path | str | None = None) -> None:
        self._lock = threading.Lock()
        self._db: ReferenceDatabase | None = None
        self._data_dir = Path(
            data_dir if data_dir is not None else os.getenv("WARSCOUT_DATA_DIR", DEFAULT_DATA_DIR)
        )

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._db is not None

    def get(self) -> ReferenceDatabase:
        with self._lock:
            if self._db is None:
                self._db = load_reference_database(self._data_dir)
            return self._db

    async def get_async(
        self,
        timeout_seconds: float = DEFAULT_LOAD_TIMEOUT_SECONDS,
    ) -> ReferenceDatabase:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.get), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ReferenceDataError(
                f"reference data load exceeded {timeout_seconds:.2f}s"
            ) from exc

    def reload(self) -> ReferenceDatabase:
        db = load_reference_database(self._data_dir)
        with self._lock:
            self._db = db
        return db
