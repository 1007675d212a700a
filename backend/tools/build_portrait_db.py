from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = BACKEND_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from warscout.services.image_normalize import DecodeError, decode_image  # noqa: E402
from warscout.services.session import extract_signatures  # noqa: E402


DEFAULT_DATA_DIR = BACKEND_DIR / "data"
IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build portraits.json from a directory of portrait images.")
    parser.add_argument("portraits_dir", type=Path, help="directory of <charId>.png portraits")
    parser.add_argument("--output", type=Path, default=DEFAULT_DATA_DIR / "portraits.json")
    parser.add_argument("--names", type=Path, default=DEFAULT_DATA_DIR / "ocr-names.json")
    return parser.parse_args()


def _load_display_names(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    payload = json.loads(path.read_text(encoding="utf-8"))
    name_to_id = payload.get("nameToId") if isinstance(payload, dict) else None
    if not isinstance(name_to_id, dict):
        return {}
    out: dict[str, str] = {}
    for name, char_id in name_to_id.items():
        if isinstance(char_id, str) and char_id:
            out.setdefault(char_id.upper(), str(name).title())
    return out


def main() -> None:
    args = parse_args()
    portraits_dir = args.portraits_dir.resolve()
    if not portraits_dir.is_dir():
        raise FileNotFoundError(f"portraits directory not found: {portraits_dir}")

    display_names = _load_display_names(args.names.resolve())
    portraits: dict[str, dict[str, object]] = {}
    failed = 0

    for path in sorted(portraits_dir.iterdir()):
        if not path.is_file() or path.suffix.lower() not in IMAGE_SUFFIXES:
            continue
        char_id = path.stem.upper()
        try:
            image = decode_image(path.read_bytes())
        except DecodeError as exc:
            print(f"[SKIP] {path.name}: {exc}")
            failed += 1
            continue

        fingerprint, histogram = extract_signatures(image)
        portraits[char_id] = {
            "name": display_names.get(char_id, path.stem),
            "hash": fingerprint,
            "hue": [round(v, 6) for v in histogram],
        }

    output = {
        "description": "Portrait fingerprints and hue histograms",
        "version": 3,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "count": len(portraits),
        "portraits": portraits,
    }
    args.output.write_text(json.dumps(output, indent=2), encoding="utf-8")

    print("\n=== Portrait DB ===")
    print(f"portraits: {len(portraits)}")
    print(f"failed: {failed}")
    print(f"output: {args.output}")


if __name__ == "__main__":
    main()
