from __future__ import annotations

import asyncio

import cv2
import numpy as np
import pytest

from warscout.services.image_normalize import (
    DecodeError,
    crop_top,
    decode_image,
    decode_image_async,
    ensure_bgr,
    hash_sample,
    histogram_sample,
    normalize_portrait,
)


def _portrait() -> np.ndarray:
    rng = np.random.default_rng(11)
    return rng.integers(0, 256, size=(120, 90, 3), dtype=np.uint8)


def test_hash_and_histogram_samples_have_canonical_shapes() -> None:
    image = _portrait()
    assert hash_sample(image).shape == (32, 32)
    assert histogram_sample(image).shape == (64, 64, 3)


def test_normalize_is_deterministic() -> None:
    image = _portrait()
    first = normalize_portrait(image, size=32, grayscale=True)
    second = normalize_portrait(image.copy(), size=32, grayscale=True)
    assert np.array_equal(first, second)


def test_small_inputs_are_upsampled() -> None:
    tiny = np.full((4, 4, 3), 77, dtype=np.uint8)
    out = normalize_portrait(tiny, size=32, grayscale=True)
    assert out.shape == (32, 32)
    assert np.allclose(out, 77.0)


def test_downsampling_averages_instead_of_point_sampling() -> None:
    stripes = np.zeros((64, 64, 3), dtype=np.uint8)
    stripes[:, ::2] = 255
    out = normalize_portrait(stripes, size=32, grayscale=True)
    assert np.all((out > 126.0) & (out < 129.0))


def test_crop_top_keeps_upper_part() -> None:
    image = np.zeros((100, 10, 3), dtype=np.uint8)
    assert crop_top(image, 0.3).shape[0] == 70
    assert crop_top(image, 0.0) is image
    with pytest.raises(ValueError):
        crop_top(image, 1.0)


def test_ensure_bgr_accepts_gray_and_bgra() -> None:
    gray = np.zeros((10, 12), dtype=np.uint8)
    bgra = np.zeros((10, 12, 4), dtype=np.uint8)
    assert ensure_bgr(gray).shape == (10, 12, 3)
    assert ensure_bgr(bgra).shape == (10, 12, 3)


def test_ensure_bgr_rejects_zero_dimensions() -> None:
    with pytest.raises(DecodeError):
        ensure_bgr(np.zeros((0, 10, 3), dtype=np.uint8))
    with pytest.raises(DecodeError):
        ensure_bgr("not an image")


def test_decode_image_roundtrips_png() -> None:
    image = _portrait()
    ok, buf = cv2.imencode(".png", image)
    assert ok
    decoded = decode_image(buf.tobytes())
    assert np.array_equal(decoded, image)


def test_decode_image_rejects_empty_and_garbage() -> None:
    with pytest.raises(DecodeError):
        decode_image(b"")
    with pytest.raises(DecodeError):
        decode_image(b"definitely not a png")


def test_decode_image_async_reports_failure_as_outcome() -> None:
    outcome = asyncio.run(decode_image_async(b"garbage", timeout_seconds=5.0))
    assert not outcome.ok
    assert outcome.error
