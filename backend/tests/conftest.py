from __future__ import annotations

import json
import sys
from pathlib import Path

import numpy as np
import pytest


BACKEND_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = BACKEND_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from warscout.services.models import ReferenceEntry  # noqa: E402
from warscout.services.reference_db import (  # noqa: E402
    ReferenceDatabase,
    _decode_meta,
    _decode_names,
    _decode_teams,
    decode_counters,
)
from warscout.services.session import extract_signatures  # noqa: E402


# One saturated base colour per character, plus a white block whose position
# gives each portrait a distinct fingerprint without touching its hue.
PORTRAIT_STYLES: dict[str, tuple[tuple[int, int, int], tuple[int, int]]] = {
    "CYCLOPS": ((0, 0, 255), (20, 20)),
    "WOLVERINE": ((0, 255, 255), (20, 60)),
    "STORM": ((0, 255, 0), (60, 20)),
    "PHOENIX": ((255, 255, 0), (60, 60)),
    "GAMBIT": ((255, 0, 0), (40, 40)),
    "ODIN": ((255, 0, 255), (30, 50)),
}

TEAMS = {
    "teams": [
        {
            "id": "xmen",
            "name": "X-Men",
            "memberIds": ["CYCLOPS", "WOLVERINE", "STORM", "PHOENIX", "GAMBIT"],
        },
        {
            "id": "avengers",
            "name": "Avengers",
            "memberIds": ["CAPTAINAMERICA", "IRONMAN", "THOR", "BLACKWIDOW", "HAWKEYE"],
        },
        {
            "id": "inhumans",
            "name": "Inhumans",
            "memberIds": ["BLACKBOLT", "MEDUSA", "KARNAK", "CRYSTAL", "GORGON"],
        },
        {
            "id": "asgardians",
            "name": "Asgardians",
            "memberIds": ["THOR", "LOKI", "SIF", "HEIMDALL", "BETARAYBILL"],
        },
    ]
}

COUNTERS = {
    "counters": {
        "xmen": [
            {"team": "avengers", "confidence": 90, "minPowerRatio": 1.1},
            {"team": "inhumans", "confidence": 70, "minPowerRatio": 1.0},
        ],
        "asgardians": [
            {"team": "xmen", "confidence": 75, "minPowerRatio": 1.0},
        ],
        "asgardians_odin": [
            {"team": "inhumans", "confidence": 80, "minPowerRatio": 1.15, "notes": "Odin revives once"},
        ],
    }
}

META = {"teams": [{"squad": ["KNULL", "GORR", "VENOM", "CARNAGE", "VOID"], "popularity": 0.12}]}

NAMES = {
    "names": ["CYCLOPS", "WOLVERINE", "STORM", "PHOENIX", "GAMBIT", "THOR", "LOKI", "SIF", "HEIMDALL", "ODIN"],
    "nameToId": {
        "CYCLOPS": "CYCLOPS",
        "WOLVERINE": "WOLVERINE",
        "STORM": "STORM",
        "PHOENIX": "PHOENIX",
        "GAMBIT": "GAMBIT",
        "THOR": "THOR",
        "LOKI": "LOKI",
        "SIF": "SIF",
        "HEIMDALL": "HEIMDALL",
        "ODIN": "ODIN",
    },
}


def make_portrait(char_id: str, size: int = 100) -> np.ndarray:
    colour, (top, left) = PORTRAIT_STYLES[char_id]
    image = np.zeros((size, size, 3), dtype=np.uint8)
    image[:, :] = colour
    image[top : top + 20, left : left + 20] = (255, 255, 255)
    return image


def _portrait_records() -> dict[str, dict[str, object]]:
    records: dict[str, dict[str, object]] = {}
    for char_id in PORTRAIT_STYLES:
        fingerprint, histogram = extract_signatures(make_portrait(char_id))
        records[char_id] = {"name": char_id.title(), "hash": fingerprint, "hue": list(histogram)}
    return records


@pytest.fixture
def portraits() -> dict[str, np.ndarray]:
    return {char_id: make_portrait(char_id) for char_id in PORTRAIT_STYLES}


@pytest.fixture
def reference_db() -> ReferenceDatabase:
    entries = []
    for char_id, record in _portrait_records().items():
        entries.append(
            ReferenceEntry(
                id=char_id,
                display_name=str(record["name"]),
                fingerprint=str(record["hash"]),
                hue_histogram=tuple(record["hue"]),  # type: ignore[arg-type]
            )
        )

    return ReferenceDatabase(
        entries=entries,
        teams=_decode_teams(TEAMS),
        meta_squads=_decode_meta(META),
        counters=decode_counters(COUNTERS["counters"]),
        name_to_id=_decode_names(NAMES),
    )


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    files = {
        "teams.json": TEAMS,
        "counters.json": COUNTERS,
        "war-meta.json": META,
        "ocr-names.json": NAMES,
        "portraits.json": {"version": 3, "portraits": _portrait_records()},
    }
    for name, payload in files.items():
        (tmp_path / name).write_text(json.dumps(payload), encoding="utf-8")
    return tmp_path
