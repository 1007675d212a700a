from __future__ import annotations

import re
import shutil
from typing import Any

import cv2
import numpy as np

from .image_normalize import RecognitionError, ensure_bgr
from .name_match import clean_ocr_text

NAME_SCALE = 3
POWER_SCALE = 4
MIN_POWER_DIGITS = 5
DARK_BACKGROUND_MEAN = 100.0
VERY_DARK_MEAN = 80.0

_POWER_GROUP_PATTERN = re.compile(r"[\d,.\s]+")


class OcrDependencyError(RecognitionError):
    """Raised when required OCR dependency is missing."""


class OcrEngineUnavailableError(RecognitionError):
    """Raised when OCR engine is installed but unavailable at runtime."""


def preprocess_name_crop(image: np.ndarray, scale: int = NAME_SCALE) -> np.ndarray:
    """Upscale, binarize with Otsu and return dark text on a light background."""
    bgr = ensure_bgr(image)
    h, w = bgr.shape[:2]
    enlarged = cv2.resize(bgr, (w * scale, h * scale), interpolation=cv2.INTER_CUBIC)
    gray = cv2.cvtColor(enlarged, cv2.COLOR_BGR2GRAY)

    mean = float(np.mean(gray))
    threshold, _ = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    if mean < VERY_DARK_MEAN:
        threshold = max(60.0, threshold - 30.0)

    # Light text on a dark banner: flip so the glyphs end up black.
    if mean < DARK_BACKGROUND_MEAN:
        gray = 255 - gray
    _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY)
    return binary


def preprocess_power_crop(image: np.ndarray, scale: int = POWER_SCALE) -> np.ndarray:
    bgr = ensure_bgr(image)
    h, w = bgr.shape[:2]
    enlarged = cv2.resize(bgr, (w * scale, h * scale), interpolation=cv2.INTER_CUBIC)
    gray = cv2.cvtColor(enlarged, cv2.COLOR_BGR2GRAY)
    return 255 - gray


def parse_power_text(raw_text: str | None) -> int | None:
    """Largest number of at least five digits in *raw_text*, separators ignored."""
    if not raw_text:
        return None
    candidates: list[int] = []
    for group in _POWER_GROUP_PATTERN.findall(raw_text):
        digits = re.sub(r"[,.\s]", "", group)
        if digits.isdigit() and len(digits) >= MIN_POWER_DIGITS:
            candidates.append(int(digits))
    if not candidates:
        return None
    return max(candidates)


def _run_tesseract(image: np.ndarray, config: str, lang: str = "eng") -> str:
    try:
        import pytesseract  # type: ignore
        from pytesseract import TesseractNotFoundError  # type: ignore
    except Exception as exc:  # noqa: BLE001
        raise OcrDependencyError("pytesseract is required") from exc

    try:
        return str(pytesseract.image_to_string(image, lang=lang, config=config) or "")
    except TesseractNotFoundError as exc:
        raise OcrEngineUnavailableError(
            "pytesseract failed: tesseract is not installed or not in PATH"
        ) from exc
    except Exception as exc:  # noqa: BLE001
        raise OcrEngineUnavailableError(f"tesseract OCR failed: {exc}") from exc


def recognize_name(image: np.ndarray, lang: str = "eng") -> str:
    raw = _run_tesseract(preprocess_name_crop(image), config="--oem 1 --psm 7", lang=lang)
    return clean_ocr_text(raw)


def recognize_power(image: np.ndarray) -> tuple[int | None, str]:
    raw = _run_tesseract(
        preprocess_power_crop(image),
        config="--oem 1 --psm 7 -c tessedit_char_whitelist=0123456789,.",
    )
    return parse_power_text(raw), raw.strip()


def inspect_ocr_runtime() -> dict[str, Any]:
    status: dict[str, Any] = {
        "pytesseract": False,
        "tesseract_cmd": shutil.which("tesseract") or "",
        "errors": [],
    }
    try:
        import pytesseract  # type: ignore # noqa: F401

        status["pytesseract"] = True
    except Exception as exc:  # noqa: BLE001
        status["errors"].append(f"pytesseract unavailable: {exc}")
    if not status["tesseract_cmd"]:
        status["errors"].append("tesseract binary not found in PATH")
    return status
