# tests/test_color_space.py
from __future__ import annotations

import numpy as np
import pytest

from color_space import (
    LabColor,
    RGBColor,
    is_valid_lab,
    lab_hash_key,
    lab_to_rgb,
    lab_to_srgb_u8,
    labs_equal,
    rgb_to_lab,
    srgb_to_lab,
)


def test_black_and_white_lightness():
    assert rgb_to_lab(0, 0, 0).l == pytest.approx(0.0, abs=1.0)
    assert rgb_to_lab(255, 255, 255).l == pytest.approx(100.0, abs=1.0)


def test_white_is_neutral():
    lab = rgb_to_lab(255, 255, 255)
    assert abs(lab.a) < 0.5
    assert abs(lab.b) < 0.5


def test_round_trip_grid_within_three_units():
    levels = np.array(list(range(0, 256, 15)) + [255])
    r, g, b = np.meshgrid(levels, levels, levels, indexing="ij")
    rgb = np.stack([r, g, b], axis=-1).reshape(-1, 3).astype(np.uint8)
    back = lab_to_srgb_u8(srgb_to_lab(rgb)).astype(int)
    assert np.max(np.abs(back - rgb.astype(int))) <= 3


@pytest.mark.parametrize("rgb", [(255, 0, 0), (12, 200, 77), (128, 128, 128), (1, 2, 3)])
def test_scalar_round_trip(rgb):
    back = lab_to_rgb(rgb_to_lab(*rgb))
    assert all(abs(x - y) <= 3 for x, y in zip(back.rgb, rgb))


def test_vector_and_scalar_agree():
    lab = srgb_to_lab(np.array([[10, 120, 240]]))[0]
    scalar = rgb_to_lab(10, 120, 240)
    assert labs_equal(LabColor(*lab), scalar)


def test_labs_equal_uses_epsilon():
    x = LabColor(50.0, 10.0, -10.0)
    assert labs_equal(x, LabColor(50.0005, 10.0, -10.0))
    assert not labs_equal(x, LabColor(50.01, 10.0, -10.0))


def test_lab_hash_key_matches_for_near_equal():
    assert lab_hash_key(LabColor(50.0, 1.0, 2.0)) == lab_hash_key(LabColor(50.0001, 1.0, 2.0))


def test_is_valid_lab():
    assert is_valid_lab(LabColor(50, 0, 0))
    assert not is_valid_lab(LabColor(101, 0, 0))
    assert not is_valid_lab(LabColor(50, 200, 0))


# ────────────────────────────────────────────────────────────────────────────
# RGBColor
# ────────────────────────────────────────────────────────────────────────────

def test_rgb_color_from_hex():
    assert RGBColor.from_hex("#FF8000").rgb == (255, 128, 0)
    assert RGBColor.from_hex("fff").rgb == (255, 255, 255)


def test_rgb_color_hex_and_alpha_default():
    c = RGBColor(1, 2, 255)
    assert c.hex == "#0102FF"
    assert c.alpha == 255


@pytest.mark.parametrize("value", ["#12345", "", "#GGGGGG"])
def test_rgb_color_from_hex_rejects_garbage(value):
    with pytest.raises(ValueError):
        RGBColor.from_hex(value)
