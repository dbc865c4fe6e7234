# color_space.py
# sRGB <-> XYZ <-> CIE Lab conversions under the D65 illuminant.
# Scalar helpers for single colors, numpy versions for pixel buffers.

from __future__ import annotations
from typing import NamedTuple, Tuple
import numpy as np

# D65 reference white (XYZ scaled to Y = 100)
XN, YN, ZN = 95.047, 100.0, 108.883

# CIE constants
EPSILON = 216.0 / 24389.0
KAPPA = 24389.0 / 27.0

LAB_EPSILON = 0.001

_RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])

_XYZ_TO_RGB = np.array([
    [3.2404542, -1.5371385, -0.4985314],
    [-0.9692660, 1.8760108, 0.0415560],
    [0.0556434, -0.2040259, 1.0572252],
])

_WHITE = np.array([XN, YN, ZN])


class RGBColor(NamedTuple):
    red: int
    green: int
    blue: int
    alpha: int = 255

    @classmethod
    def from_hex(cls, value: str) -> "RGBColor":
        s = value.strip().lstrip("#")
        if len(s) == 3:
            s = "".join(c * 2 for c in s)
        if len(s) != 6:
            raise ValueError(f"Invalid hex color: {value!r}")
        return cls(int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.red, self.green, self.blue)

    @property
    def hex(self) -> str:
        return '#%02X%02X%02X' % self.rgb


class LabColor(NamedTuple):
    """L in [0, 100], a and b roughly in [-128, 127]."""
    l: float
    a: float
    b: float


def labs_equal(x: LabColor, y: LabColor, epsilon: float = LAB_EPSILON) -> bool:
    """Tolerant comparison; plain ``==`` on LabColor is exact."""
    return (abs(x.l - y.l) < epsilon
            and abs(x.a - y.a) < epsilon
            and abs(x.b - y.b) < epsilon)


def lab_hash_key(lab: LabColor) -> Tuple[int, int, int]:
    return (int(round(lab.l * 1000)), int(round(lab.a * 1000)), int(round(lab.b * 1000)))


def is_valid_lab(lab: LabColor) -> bool:
    return 0.0 <= lab.l <= 100.0 and -128.0 <= lab.a <= 127.0 and -128.0 <= lab.b <= 127.0


# ---- vectorised conversions ----

def _srgb_to_linear(c: np.ndarray) -> np.ndarray:
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def _linear_to_srgb(c: np.ndarray) -> np.ndarray:
    # negative linear values come from out-of-gamut Lab; keep the power curve real
    c = np.maximum(c, 0.0)
    return np.where(c <= 0.0031308, 12.92 * c, 1.055 * np.power(c, 1.0 / 2.4) - 0.055)


def _lab_f(t: np.ndarray) -> np.ndarray:
    return np.where(t > EPSILON, np.cbrt(t), (KAPPA * t + 16.0) / 116.0)


def _lab_f_inv(f: np.ndarray) -> np.ndarray:
    f3 = f ** 3
    return np.where(f3 > EPSILON, f3, (116.0 * f - 16.0) / KAPPA)


def srgb_to_lab(rgb) -> np.ndarray:
    """(..., 3) array of 0-255 sRGB values -> (..., 3) float Lab."""
    c = np.asarray(rgb, dtype=np.float64)[..., :3] / 255.0
    xyz = _srgb_to_linear(c) @ _RGB_TO_XYZ.T * 100.0
    f = _lab_f(xyz / _WHITE)
    L = 116.0 * f[..., 1] - 16.0
    a = 500.0 * (f[..., 0] - f[..., 1])
    b = 200.0 * (f[..., 1] - f[..., 2])
    return np.stack([L, a, b], axis=-1)


def lab_to_srgb(lab) -> np.ndarray:
    """(..., 3) Lab -> (..., 3) float sRGB clipped to [0, 255], not rounded."""
    lab = np.asarray(lab, dtype=np.float64)
    fy = (lab[..., 0] + 16.0) / 116.0
    fx = lab[..., 1] / 500.0 + fy
    fz = fy - lab[..., 2] / 200.0
    xyz = _lab_f_inv(np.stack([fx, fy, fz], axis=-1)) * _WHITE
    linear = (xyz / 100.0) @ _XYZ_TO_RGB.T
    return np.clip(_linear_to_srgb(linear) * 255.0, 0.0, 255.0)


def lab_to_srgb_u8(lab) -> np.ndarray:
    return np.rint(lab_to_srgb(lab)).astype(np.uint8)


# ---- scalar API ----

def rgb_to_lab(r: int, g: int, b: int) -> LabColor:
    L, a, bb = srgb_to_lab((r, g, b))
    return LabColor(float(L), float(a), float(bb))


def lab_to_rgb(lab: LabColor) -> RGBColor:
    r, g, b = lab_to_srgb_u8(tuple(lab))
    return RGBColor(int(r), int(g), int(b))


def color_to_lab(color) -> LabColor:
    """Accepts RGBColor, ThreadColor or any (r, g, b[, a]) sequence."""
    if hasattr(color, "rgb"):
        return rgb_to_lab(*color.rgb)
    r, g, b = tuple(color)[:3]
    return rgb_to_lab(r, g, b)
