"""Saturation-weighted hue histograms for shape-independent colour matching."""

from __future__ import annotations

from typing import Sequence

import cv2
import numpy as np

from .models import HUE_BINS

MIN_SATURATION = 0.2
MIN_VALUE = 0.2
_BIN_DEGREES = 360.0 / HUE_BINS


def compute_hue_histogram(image: np.ndarray) -> tuple[float, ...]:
    """Return a 36-bucket hue distribution of a BGR uint8 buffer.

    Pixels that are nearly grey or dark are skipped; the rest weigh in by
    saturation times value. The zero vector means no pixel qualified.
    """
    if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("hue histogram expects a BGR colour buffer")
    if image.size == 0:
        return tuple([0.0] * HUE_BINS)

    scaled = image.astype(np.float32) / 255.0
    hsv = cv2.cvtColor(scaled, cv2.COLOR_BGR2HSV).reshape(-1, 3)
    hue = hsv[:, 0].astype(np.float64)
    sat = hsv[:, 1].astype(np.float64)
    val = hsv[:, 2].astype(np.float64)

    mask = (sat > MIN_SATURATION) & (val > MIN_VALUE)
    if not np.any(mask):
        return tuple([0.0] * HUE_BINS)

    buckets = np.minimum((hue[mask] // _BIN_DEGREES).astype(np.int64), HUE_BINS - 1)
    weights = sat[mask] * val[mask]
    hist = np.bincount(buckets, weights=weights, minlength=HUE_BINS)

    total = float(hist.sum())
    if total <= 0.0:
        return tuple([0.0] * HUE_BINS)
    return tuple(float(v) for v in hist / total)


def hue_similarity(p: Sequence[float], q: Sequence[float]) -> float:
    """Bhattacharyya coefficient of two hue distributions, clamped to [0, 1].

    The zero vector carries no colour, so it scores 0 even against itself.
    """
    if len(p) != len(q):
        raise ValueError("histograms must have the same number of buckets")
    if not p:
        return 0.0
    a = np.clip(np.asarray(p, dtype=np.float64), 0.0, None)
    b = np.clip(np.asarray(q, dtype=np.float64), 0.0, None)
    score = float(np.sum(np.sqrt(a * b)))
    return float(max(0.0, min(1.0, score)))
