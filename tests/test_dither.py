# tests/test_dither.py
from __future__ import annotations

import numpy as np
import pytest

from dither import (
    DitheringEffectiveness,
    analyze_banding,
    assign_without_dithering,
    floyd_steinberg,
    gradient_test_pattern,
    is_valid_palette,
)
from quantize import CancelToken, QuantizationCancelled

QUADRANT_PALETTE = np.array([(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)], dtype=np.uint8)
BLACK_WHITE = np.array([(0, 0, 0), (255, 255, 255)], dtype=np.uint8)


def test_exact_palette_has_no_error(quadrant_image):
    res = floyd_steinberg(quadrant_image, QUADRANT_PALETTE, strength=1.0)
    assert res.indices.shape == (64, 64)
    assert res.indices[0, 0] == 0
    assert res.indices[0, 63] == 1
    assert res.indices[63, 0] == 2
    assert res.indices[63, 63] == 3
    assert res.average_error == 0.0
    assert res.max_error == 0.0
    assert res.quality_score == pytest.approx(100.0)
    assert res.effectiveness is DitheringEffectiveness.EXCELLENT
    assert res.is_effective
    np.testing.assert_array_equal(res.dithered_pixels(), quadrant_image)


def test_dithering_mixes_colors_on_a_gradient():
    ramp = gradient_test_pattern(64, 16)
    res = floyd_steinberg(ramp, BLACK_WHITE, strength=1.0)
    # a dark gray region should still get some white dots
    region = res.indices[:, 10:21]
    assert 0 < region.sum() < region.size
    out = res.dithered_pixels()[..., 0].astype(float)
    assert abs(out.mean() - ramp[..., 0].mean()) < 15.0


def test_zero_strength_is_a_hard_threshold():
    ramp = gradient_test_pattern(64, 4)
    res = floyd_steinberg(ramp, BLACK_WHITE, strength=0.0)
    row = res.indices[0]
    assert np.all(np.diff(row) >= 0)
    assert row[0] == 0 and row[-1] == 1
    assert res.dithering_strength == 0.0


def test_banding_score():
    flat = floyd_steinberg(np.full((32, 32, 3), 255, dtype=np.uint8), BLACK_WHITE, strength=1.0)
    assert analyze_banding(flat) == 0.0

    ramp = gradient_test_pattern(64, 32)
    dithered = floyd_steinberg(ramp, BLACK_WHITE, strength=1.0)
    hard = floyd_steinberg(ramp, BLACK_WHITE, strength=0.0)
    # a single hard edge per row changes the gradient far less often than dot patterns do
    assert 0.0 < analyze_banding(hard) < analyze_banding(dithered)


def test_serpentine_only_uses_palette_indices():
    ramp = gradient_test_pattern(48, 12)
    res = floyd_steinberg(ramp, BLACK_WHITE, strength=0.8, serpentine=True, error_clamp=False)
    assert set(np.unique(res.indices).tolist()) <= {0, 1}
    assert res.error_map.shape == (12, 48)
    assert 0.0 <= res.max_error <= 1.0


def test_error_map_normalised(quadrant_image):
    res = floyd_steinberg(quadrant_image, [(0, 0, 0)], strength=0.5)
    # pure red against black: 255 / sqrt(3 * 255^2)
    assert res.error_at(0, 0) == pytest.approx(1 / np.sqrt(3), abs=1e-4)
    assert res.error_at(-1, 0) == 0.0
    assert res.error_at(64, 64) == 0.0
    assert not res.is_effective


def test_color_counts(quadrant_image):
    res = floyd_steinberg(quadrant_image, QUADRANT_PALETTE[:2], strength=0.8)
    assert res.original_color_count == 4
    assert res.quantized_color_count == 2
    assert res.color_reduction_ratio == pytest.approx(0.5)


@pytest.mark.parametrize("strength", [-0.1, 1.5])
def test_invalid_strength(quadrant_image, strength):
    with pytest.raises(ValueError):
        floyd_steinberg(quadrant_image, QUADRANT_PALETTE, strength=strength)


def test_empty_palette(quadrant_image):
    with pytest.raises(ValueError, match="palette"):
        floyd_steinberg(quadrant_image, [])


def test_cancel_token_is_checked(quadrant_image):
    token = CancelToken()
    token.cancel()
    with pytest.raises(QuantizationCancelled):
        floyd_steinberg(quadrant_image, QUADRANT_PALETTE, cancel_token=token)


def test_assign_without_dithering(quadrant_image):
    labels = np.zeros((64, 64), dtype=int)
    labels[:32, 32:] = 1
    labels[32:, :32] = 2
    labels[32:, 32:] = 3
    res = assign_without_dithering(quadrant_image, QUADRANT_PALETTE, labels.ravel())
    assert res.dithering_strength == 0.0
    np.testing.assert_array_equal(res.indices, labels)
    assert res.average_error == 0.0


# ────────────────────────────────────────────────────────────────────────────
# helpers
# ────────────────────────────────────────────────────────────────────────────

def test_is_valid_palette():
    assert not is_valid_palette([])
    assert not is_valid_palette([(1, 2, 3), (1, 2, 3)])
    assert is_valid_palette([(1, 2, 3), (3, 2, 1)])
    assert is_valid_palette(QUADRANT_PALETTE)


def test_gradient_test_pattern():
    ramp = gradient_test_pattern(32, 5)
    assert ramp.shape == (5, 32, 3)
    assert ramp.dtype == np.uint8
    assert ramp[0, 0].tolist() == [0, 0, 0]
    assert ramp[4, 31].tolist() == [255, 255, 255]
    assert np.all(np.diff(ramp[0, :, 0].astype(int)) >= 0)
