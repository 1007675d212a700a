from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import cv2
import numpy as np

logger = logging.getLogger("warscout.image")

DEFAULT_DECODE_TIMEOUT_SECONDS = 10.0
HASH_SAMPLE_SIZE = 32
HISTOGRAM_SAMPLE_SIZE = 64
HASH_CENTER_CROP_RATIO = 0.6
HISTOGRAM_CROP_FRACTION = 0.30

_LUMA_WEIGHTS_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float64)


class RecognitionError(Exception):
    """Base exception for the recognition pipeline."""


class DecodeError(RecognitionError):
    """Raised when a capture cannot be decoded or has zero dimensions."""


@dataclass(frozen=True)
class DecodeOutcome:
    image: np.ndarray | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


def decode_image(image_bytes: bytes) -> np.ndarray:
    if not image_bytes:
        raise DecodeError("empty image bytes")
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if image is None:
        raise DecodeError("failed to decode image bytes")
    return ensure_bgr(image)


async def decode_image_async(
    image_bytes: bytes,
    timeout_seconds: float = DEFAULT_DECODE_TIMEOUT_SECONDS,
) -> DecodeOutcome:
    try:
        image = await asyncio.wait_for(
            asyncio.to_thread(decode_image, image_bytes),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("image decode exceeded %.2fs", timeout_seconds)
        return DecodeOutcome(image=None, error=f"decode timed out after {timeout_seconds:.2f}s")
    except DecodeError as exc:
        return DecodeOutcome(image=None, error=str(exc))
    return DecodeOutcome(image=image)


def ensure_bgr(image: Any) -> np.ndarray:
    """Return *image* as a 3-channel uint8 BGR raster."""
    if not isinstance(image, np.ndarray):
        raise DecodeError("raster must be a numpy array")
    if image.ndim not in (2, 3) or image.shape[0] <= 0 or image.shape[1] <= 0:
        raise DecodeError("invalid image size")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    if channels == 3:
        return image
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    raise DecodeError(f"unsupported channel count: {channels}")


def crop_top(image: np.ndarray, crop_fraction: float) -> np.ndarray:
    """Keep the top ``1 - crop_fraction`` of *image*; 0 keeps everything."""
    if not 0.0 <= crop_fraction < 1.0:
        raise ValueError("crop_fraction must be in [0, 1)")
    h = image.shape[0]
    if crop_fraction == 0.0:
        return image
    keep = max(1, int(round(h * (1.0 - crop_fraction))))
    return image[:keep]


def center_square_crop(image: np.ndarray, ratio: float) -> np.ndarray:
    if not 0.0 < ratio <= 1.0:
        raise ValueError("ratio must be in (0, 1]")
    h, w = image.shape[:2]
    side = max(1, int(min(h, w) * ratio))
    y0 = (h - side) // 2
    x0 = (w - side) // 2
    return image[y0 : y0 + side, x0 : x0 + side]


def to_luminance(image: np.ndarray) -> np.ndarray:
    return image.astype(np.float64) @ _LUMA_WEIGHTS_BGR


def normalize_portrait(
    image: np.ndarray,
    *,
    size: int,
    crop_fraction: float = 0.0,
    center_crop_ratio: float | None = None,
    grayscale: bool = False,
) -> np.ndarray:
    """Return a deterministic size-by-size buffer of a portrait raster.

    Resampling is area-averaged so small portraits do not alias. Grayscale
    output is float64 luminance; colour output stays BGR uint8.
    """
    if size <= 0:
        raise ValueError("size must be a positive integer")

    work = ensure_bgr(image)
    if center_crop_ratio is not None:
        work = center_square_crop(work, center_crop_ratio)
    work = crop_top(work, crop_fraction)

    resized = cv2.resize(work, (size, size), interpolation=cv2.INTER_AREA)
    if grayscale:
        return to_luminance(resized)
    return resized


def hash_sample(image: np.ndarray) -> np.ndarray:
    return normalize_portrait(
        image,
        size=HASH_SAMPLE_SIZE,
        center_crop_ratio=HASH_CENTER_CROP_RATIO,
        grayscale=True,
    )


def histogram_sample(image: np.ndarray) -> np.ndarray:
    return normalize_portrait(
        image,
        size=HISTOGRAM_SAMPLE_SIZE,
        crop_fraction=HISTOGRAM_CROP_FRACTION,
    )
