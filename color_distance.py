# color_distance.py
# Perceptual color distances (weighted RGB, Lab ΔE76, CIEDE2000) and the
# similarity-percentage scale used for match confidence.

from __future__ import annotations
from enum import Enum
from typing import Callable, Sequence, TypeVar
import math
import numpy as np

from color_space import LabColor, color_to_lab, srgb_to_lab, lab_to_srgb

T = TypeVar("T")

# luma weights, sum to 1.0
RGB_WEIGHTS = np.array([0.299, 0.587, 0.114])

WEIGHTED_RGB_MAX_DISTANCE = math.sqrt(float(np.sum(RGB_WEIGHTS)) * 255.0 ** 2)
LAB_MAX_DISTANCE = 373.0
# practical upper bound for ΔE00, not a theoretical maximum
CIEDE2000_MAX_DISTANCE = 100.0

SIMILAR_THRESHOLD = 3.0
LIGHT_LUMA_THRESHOLD = 186.0

_POW25_7 = 25.0 ** 7


class ColorDistanceAlgorithm(str, Enum):
    EUCLIDEAN = "euclidean"          # luma-weighted RGB
    LAB_EUCLIDEAN = "labEuclidean"   # ΔE76
    CIEDE2000 = "ciede2000"

    @property
    def max_distance(self) -> float:
        return _MAX_DISTANCE[self]

    @classmethod
    def parse(cls, value) -> "ColorDistanceAlgorithm":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        for algo in cls:
            if key.lower() in (algo.value.lower(), algo.name.lower()):
                return algo
        raise ValueError(f"Unknown color distance algorithm: {value!r}")


_MAX_DISTANCE = {
    ColorDistanceAlgorithm.EUCLIDEAN: WEIGHTED_RGB_MAX_DISTANCE,
    ColorDistanceAlgorithm.LAB_EUCLIDEAN: LAB_MAX_DISTANCE,
    ColorDistanceAlgorithm.CIEDE2000: CIEDE2000_MAX_DISTANCE,
}


def _rgb_triple(color) -> np.ndarray:
    if hasattr(color, "rgb"):
        return np.asarray(color.rgb, dtype=np.float64)
    return np.asarray(tuple(color)[:3], dtype=np.float64)


# ---- array kernels (broadcasting over leading dims) ----

def weighted_rgb_distance_array(rgb1, rgb2) -> np.ndarray:
    d = np.asarray(rgb1, dtype=np.float64) - np.asarray(rgb2, dtype=np.float64)
    return np.sqrt(np.sum(RGB_WEIGHTS * d * d, axis=-1))


def lab_distance_array(lab1, lab2) -> np.ndarray:
    d = np.asarray(lab1, dtype=np.float64) - np.asarray(lab2, dtype=np.float64)
    return np.sqrt(np.sum(d * d, axis=-1))


def ciede2000_array(lab1, lab2) -> np.ndarray:
    """ΔE00 with kL = kC = kH = 1 (Sharma, Wu & Dalal formulation)."""
    lab1 = np.asarray(lab1, dtype=np.float64)
    lab2 = np.asarray(lab2, dtype=np.float64)
    L1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    L2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    c_mean = (np.hypot(a1, b1) + np.hypot(a2, b2)) / 2.0
    c_mean7 = c_mean ** 7
    g = 0.5 * (1.0 - np.sqrt(c_mean7 / (c_mean7 + _POW25_7)))

    a1p = a1 * (1.0 + g)
    a2p = a2 * (1.0 + g)
    c1p = np.hypot(a1p, b1)
    c2p = np.hypot(a2p, b2)
    h1p = np.degrees(np.arctan2(b1, a1p)) % 360.0
    h2p = np.degrees(np.arctan2(b2, a2p)) % 360.0

    chroma_zero = (c1p * c2p) == 0.0

    dLp = L2 - L1
    dCp = c2p - c1p
    dhp = h2p - h1p
    dhp = np.where(dhp > 180.0, dhp - 360.0, dhp)
    dhp = np.where(dhp < -180.0, dhp + 360.0, dhp)
    dhp = np.where(chroma_zero, 0.0, dhp)
    dHp = 2.0 * np.sqrt(c1p * c2p) * np.sin(np.radians(dhp) / 2.0)

    Lp_mean = (L1 + L2) / 2.0
    Cp_mean = (c1p + c2p) / 2.0
    h_sum = h1p + h2p
    hp_mean = np.where(
        np.abs(h1p - h2p) <= 180.0,
        h_sum / 2.0,
        np.where(h_sum < 360.0, (h_sum + 360.0) / 2.0, (h_sum - 360.0) / 2.0),
    )
    hp_mean = np.where(chroma_zero, h_sum, hp_mean)

    t = (1.0
         - 0.17 * np.cos(np.radians(hp_mean - 30.0))
         + 0.24 * np.cos(np.radians(2.0 * hp_mean))
         + 0.32 * np.cos(np.radians(3.0 * hp_mean + 6.0))
         - 0.20 * np.cos(np.radians(4.0 * hp_mean - 63.0)))
    d_theta = 30.0 * np.exp(-(((hp_mean - 275.0) / 25.0) ** 2))
    cp_mean7 = Cp_mean ** 7
    r_c = 2.0 * np.sqrt(cp_mean7 / (cp_mean7 + _POW25_7))
    r_t = -np.sin(np.radians(2.0 * d_theta)) * r_c

    l50 = (Lp_mean - 50.0) ** 2
    s_l = 1.0 + 0.015 * l50 / np.sqrt(20.0 + l50)
    s_c = 1.0 + 0.045 * Cp_mean
    s_h = 1.0 + 0.015 * Cp_mean * t

    tl = dLp / s_l
    tc = dCp / s_c
    th = dHp / s_h
    return np.sqrt(np.maximum(tl * tl + tc * tc + th * th + r_t * tc * th, 0.0))


def pairwise_distances(algorithm: ColorDistanceAlgorithm, lab_a, lab_b) -> np.ndarray:
    """(N,3) x (M,3) Lab arrays -> (N, M) distances under ``algorithm``."""
    a = np.asarray(lab_a, dtype=np.float64)[:, None, :]
    b = np.asarray(lab_b, dtype=np.float64)[None, :, :]
    if algorithm is ColorDistanceAlgorithm.CIEDE2000:
        return ciede2000_array(a, b)
    if algorithm is ColorDistanceAlgorithm.LAB_EUCLIDEAN:
        return lab_distance_array(a, b)
    return weighted_rgb_distance_array(lab_to_srgb(a), lab_to_srgb(b))


# ---- scalar API ----

def weighted_rgb_distance(color1, color2) -> float:
    return float(weighted_rgb_distance_array(_rgb_triple(color1), _rgb_triple(color2)))


def lab_distance(lab1: LabColor, lab2: LabColor) -> float:
    return float(lab_distance_array(tuple(lab1), tuple(lab2)))


def ciede2000(lab1: LabColor, lab2: LabColor) -> float:
    return float(ciede2000_array(tuple(lab1), tuple(lab2)))


def ciede2000_distance(color1, color2) -> float:
    """ΔE00 between two RGB-like colors."""
    return ciede2000(color_to_lab(color1), color_to_lab(color2))


def color_distance(color1, color2, algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> float:
    algorithm = ColorDistanceAlgorithm.parse(algorithm)
    if algorithm is ColorDistanceAlgorithm.EUCLIDEAN:
        return weighted_rgb_distance(color1, color2)
    lab1, lab2 = color_to_lab(color1), color_to_lab(color2)
    if algorithm is ColorDistanceAlgorithm.LAB_EUCLIDEAN:
        return lab_distance(lab1, lab2)
    return ciede2000(lab1, lab2)


def similarity_percentage(distance: float, max_distance: float) -> float:
    """max(0, 1 - d/max) * 100, clamped; degenerate input maps to 0."""
    if max_distance <= 0 or not math.isfinite(distance):
        return 0.0
    return min(100.0, max(0.0, 1.0 - distance / max_distance) * 100.0)


def similarity_percentage_array(distances, max_distance: float) -> np.ndarray:
    d = np.nan_to_num(np.asarray(distances, dtype=np.float64), nan=max_distance, posinf=max_distance)
    return np.clip((1.0 - d / max_distance) * 100.0, 0.0, 100.0)


def calculate_similarity_percentage(color1, color2,
                                    algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> float:
    algorithm = ColorDistanceAlgorithm.parse(algorithm)
    return similarity_percentage(color_distance(color1, color2, algorithm), algorithm.max_distance)


def are_colors_similar(color1, color2, threshold: float = SIMILAR_THRESHOLD) -> bool:
    """ΔE00 < 1 is indistinguishable, < 3 similar, < 6 acceptable."""
    return ciede2000_distance(color1, color2) < threshold


def find_most_similar_color(target, candidates: Sequence[T], key: Callable[[T], object] = lambda c: c,
                            algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> T:
    """Candidate whose ``key(candidate)`` color is closest to ``target``; first wins on ties."""
    if not candidates:
        raise ValueError("Colors list cannot be empty")
    algorithm = ColorDistanceAlgorithm.parse(algorithm)
    target_rgb = _rgb_triple(target)
    cand_rgb = np.stack([_rgb_triple(key(c)) for c in candidates])
    if algorithm is ColorDistanceAlgorithm.EUCLIDEAN:
        d = weighted_rgb_distance_array(target_rgb, cand_rgb)
    else:
        d = pairwise_distances(algorithm, srgb_to_lab(target_rgb)[None, :], srgb_to_lab(cand_rgb))[0]
    return candidates[int(np.argmin(d))]


def luma(color) -> float:
    return float(np.dot(RGB_WEIGHTS, _rgb_triple(color)))


def is_light_color(color) -> bool:
    return luma(color) > LIGHT_LUMA_THRESHOLD
