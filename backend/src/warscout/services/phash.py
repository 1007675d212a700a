"""Grid-mean perceptual fingerprints for portrait identification."""

from __future__ import annotations

import numpy as np

from .models import FINGERPRINT_BITS, FINGERPRINT_HEX_DIGITS, round_half_up

GRID_SIZE = 8


def _cell_means(gray: np.ndarray) -> np.ndarray:
    h, w = gray.shape[:2]
    means = np.zeros(GRID_SIZE * GRID_SIZE, dtype=np.float64)
    for y in range(GRID_SIZE):
        y0 = (y * h) // GRID_SIZE
        y1 = ((y + 1) * h) // GRID_SIZE
        for x in range(GRID_SIZE):
            x0 = (x * w) // GRID_SIZE
            x1 = ((x + 1) * w) // GRID_SIZE
            block = gray[y0:y1, x0:x1]
            means[y * GRID_SIZE + x] = float(block.mean()) if block.size else 0.0
    return means


def compute_fingerprint(gray: np.ndarray) -> str:
    """Return the 64-bit fingerprint of a canonical grayscale buffer as 16 hex digits."""
    if not isinstance(gray, np.ndarray) or gray.ndim != 2:
        raise ValueError("fingerprint expects a 2-D grayscale buffer")
    if gray.shape[0] < GRID_SIZE or gray.shape[1] < GRID_SIZE:
        raise ValueError(f"buffer must be at least {GRID_SIZE}x{GRID_SIZE}")

    means = _cell_means(gray)
    # Upper median of the 64 cell means.
    median = np.sort(means)[means.size // 2]

    bits = 0
    for value in means:
        bits = (bits << 1) | (1 if value > median else 0)
    return f"{bits:0{FINGERPRINT_HEX_DIGITS}x}"


def _parse(code: str) -> int:
    if not isinstance(code, str):
        raise ValueError("fingerprint must be a string")
    cleaned = code.strip().lower()
    if len(cleaned) != FINGERPRINT_HEX_DIGITS:
        raise ValueError(f"fingerprint must have {FINGERPRINT_HEX_DIGITS} hex digits: {code!r}")
    try:
        return int(cleaned, 16)
    except ValueError as exc:
        raise ValueError(f"fingerprint is not hexadecimal: {code!r}") from exc


def hamming_distance(h1: str, h2: str) -> int:
    return (_parse(h1) ^ _parse(h2)).bit_count()


def fingerprint_similarity(h1: str, h2: str) -> int:
    """Similarity percentage: 100 for identical codes, 0 when every bit differs."""
    distance = hamming_distance(h1, h2)
    return round_half_up((1.0 - distance / FINGERPRINT_BITS) * 100)
