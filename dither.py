# dither.py
# Floyd-Steinberg error diffusion onto a fixed palette, plus the error map
# used to score how well the reduced image holds up.

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence, Tuple
import logging
import math
import time
import numpy as np

logger = logging.getLogger(__name__)

# sqrt(3 * 255^2), normalises per-pixel error to 0..1
MAX_RGB_DISTANCE = 441.6729559300637

ERROR_CLAMP_MIN = -128.0
ERROR_CLAMP_MAX = 127.0

# (dx, dy, weight); dx is mirrored on right-to-left rows
FS_WEIGHTS = ((1, 0, 7.0 / 16.0), (-1, 1, 3.0 / 16.0), (0, 1, 5.0 / 16.0), (1, 1, 1.0 / 16.0))

_R_W, _G_W, _B_W = 0.299, 0.587, 0.114

COLOR_COUNT_SAMPLE_TARGET = 5000
COLOR_COUNT_CAP = 10000


class DitheringEffectiveness(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class DitheringResult:
    indices: np.ndarray        # (H, W) palette index per pixel
    error_map: np.ndarray      # (H, W) quantization error, 0..1
    palette: np.ndarray        # (P, 3) uint8
    original_color_count: int
    quantized_color_count: int
    dithering_strength: float
    processing_time_ms: int = 0

    @property
    def width(self) -> int:
        return int(self.indices.shape[1])

    @property
    def height(self) -> int:
        return int(self.indices.shape[0])

    @property
    def pixel_count(self) -> int:
        return int(self.indices.size)

    @property
    def average_error(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.mean(np.abs(self.error_map)))

    @property
    def max_error(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.max(np.abs(self.error_map)))

    @property
    def error_variance(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.mean((np.abs(self.error_map) - self.average_error) ** 2))

    @property
    def quality_score(self) -> float:
        """Mean of a low-error score and an error-uniformity score, 0-100."""
        if self.error_map.size == 0:
            return 100.0
        error_score = max(0.0, 100.0 - self.average_error * 100.0)
        uniformity_score = max(0.0, 100.0 - self.error_variance * 10.0)
        return (error_score + uniformity_score) / 2.0

    @property
    def color_reduction_ratio(self) -> float:
        if self.original_color_count == 0:
            return 0.0
        return min(1.0, max(0.0, 1.0 - self.quantized_color_count / self.original_color_count))

    @property
    def effectiveness(self) -> DitheringEffectiveness:
        score = self.quality_score
        if score >= 80:
            return DitheringEffectiveness.EXCELLENT
        if score >= 60:
            return DitheringEffectiveness.GOOD
        if score >= 40:
            return DitheringEffectiveness.FAIR
        return DitheringEffectiveness.POOR

    @property
    def is_effective(self) -> bool:
        return self.quality_score > 50.0 and self.average_error < 0.5

    def error_at(self, x: int, y: int) -> float:
        if not (0 <= x < self.width and 0 <= y < self.height):
            return 0.0
        return float(self.error_map[y, x])

    def dithered_pixels(self) -> np.ndarray:
        """(H, W, 3) uint8 image rendered in palette colors."""
        return self.palette[self.indices]

    def __str__(self) -> str:
        return (f"DitheringResult(colors: {self.original_color_count}->{self.quantized_color_count}, "
                f"error: {self.average_error:.3f}, quality: {self.quality_score:.1f}, "
                f"time: {self.processing_time_ms}ms)")


def _as_palette(palette) -> np.ndarray:
    pal = np.asarray(palette, dtype=np.float64)
    if pal.size == 0:
        raise ValueError("Color palette cannot be empty")
    pal = pal.reshape(-1, pal.shape[-1])[:, :3]
    return np.clip(np.rint(pal), 0, 255).astype(np.uint8)


def _as_image(rgb_pixels) -> np.ndarray:
    img = np.asarray(rgb_pixels, dtype=np.uint8)
    if img.ndim != 3 or img.shape[2] < 3:
        raise ValueError("Expected an HxWx3 image")
    return img[..., :3]


def estimate_color_count(rgb_pixels) -> int:
    """Distinct colors on a strided grid, capped so huge images stay cheap."""
    img = _as_image(rgb_pixels)
    h, w = img.shape[:2]
    step = max(1, int(math.ceil(h * w / COLOR_COUNT_SAMPLE_TARGET)))
    sample = img[::step, ::step].reshape(-1, 3).astype(np.uint32)
    packed = (sample[:, 0] << 16) | (sample[:, 1] << 8) | sample[:, 2]
    return int(min(len(np.unique(packed)), COLOR_COUNT_CAP + 1))


def _nearest(r: int, g: int, b: int, palette: List[Tuple[int, int, int]]) -> int:
    best, best_d = 0, math.inf
    for i, (pr, pg, pb) in enumerate(palette):
        dr, dg, db = r - pr, g - pg, b - pb
        d = _R_W * dr * dr + _G_W * dg * dg + _B_W * db * db
        if d < best_d:
            best, best_d = i, d
    return best


def floyd_steinberg(
    rgb_pixels,
    palette,
    strength: float = 0.8,
    *,
    serpentine: bool = False,
    error_clamp: bool = True,
    cancel_token=None,
) -> DitheringResult:
    """
    rgb_pixels: HxWx3 uint8 image
    palette: (P, 3) colors the output is restricted to
    strength: scales the diffused error; 0 is plain nearest-color mapping
    """
    if not 0.0 <= strength <= 1.0:
        raise ValueError("Invalid dithering parameters")
    pal = _as_palette(palette)
    img = _as_image(rgb_pixels)
    h, w = img.shape[:2]
    started = time.perf_counter()

    original_colors = estimate_color_count(img)
    pal_list = [tuple(int(c) for c in p) for p in pal]
    cache: Dict[int, int] = {}

    indices = np.zeros((h, w), dtype=np.intp)
    error_map = np.zeros((h, w), dtype=np.float32)

    # two error rows with one cell of padding on each side
    cur = [[0.0] * (w + 2) for _ in range(3)]
    for y in range(h):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        nxt = [[0.0] * (w + 2) for _ in range(3)]
        reverse = serpentine and y % 2 == 1
        step = -1 if reverse else 1
        xs = range(w - 1, -1, -1) if reverse else range(w)
        row = img[y].tolist()
        idx_row = [0] * w
        err_row = [0.0] * w
        has_next = y + 1 < h

        for x in xs:
            i = x + 1
            pr, pg, pb = row[x]
            r = min(255.0, max(0.0, pr + cur[0][i]))
            g = min(255.0, max(0.0, pg + cur[1][i]))
            b = min(255.0, max(0.0, pb + cur[2][i]))

            key = (int(r) << 16) | (int(g) << 8) | int(b)
            k = cache.get(key)
            if k is None:
                k = _nearest(int(r), int(g), int(b), pal_list)
                cache[key] = k
            qr, qg, qb = pal_list[k]
            er, eg, eb = r - qr, g - qg, b - qb
            idx_row[x] = k
            err_row[x] = math.sqrt(er * er + eg * eg + eb * eb) / MAX_RGB_DISTANCE

            if strength <= 0:
                continue
            for dx, dy, weight in FS_WEIGHTS:
                nx = x + dx * step
                if nx < 0 or nx >= w or (dy and not has_next):
                    continue
                target = nxt if dy else cur
                j = nx + 1
                f = weight * strength
                for c, e in ((0, er), (1, eg), (2, eb)):
                    v = target[c][j] + e * f
                    if error_clamp:
                        v = min(ERROR_CLAMP_MAX, max(ERROR_CLAMP_MIN, v))
                    target[c][j] = v

        indices[y] = idx_row
        error_map[y] = err_row
        cur = nxt

    elapsed_ms = int(round((time.perf_counter() - started) * 1000))
    logger.debug("Dithered %dx%d onto %d colors (strength=%.2f, cache=%d)", w, h, len(pal), strength, len(cache))
    return DitheringResult(
        indices=indices,
        error_map=error_map,
        palette=pal,
        original_color_count=original_colors,
        quantized_color_count=len(pal),
        dithering_strength=float(strength),
        processing_time_ms=elapsed_ms,
    )


def assign_without_dithering(rgb_pixels, palette, labels) -> DitheringResult:
    """Use precomputed per-pixel labels as the output; strength is recorded as 0."""
    started = time.perf_counter()
    pal = _as_palette(palette)
    img = _as_image(rgb_pixels)
    h, w = img.shape[:2]
    indices = np.asarray(labels, dtype=np.intp).reshape(h, w)
    diff = img.astype(np.float64) - pal[indices].astype(np.float64)
    error_map = (np.sqrt(np.sum(diff * diff, axis=-1)) / MAX_RGB_DISTANCE).astype(np.float32)
    return DitheringResult(
        indices=indices,
        error_map=error_map,
        palette=pal,
        original_color_count=estimate_color_count(img),
        quantized_color_count=len(pal),
        dithering_strength=0.0,
        processing_time_ms=int(round((time.perf_counter() - started) * 1000)),
    )


def is_valid_palette(palette: Sequence) -> bool:
    """Non-empty and no repeated colors."""
    if len(palette) == 0:
        return False
    colors = {tuple(int(c) for c in tuple(p)[:3]) for p in palette}
    return len(colors) == len(palette)


def gradient_test_pattern(width: int, height: int) -> np.ndarray:
    """Horizontal black-to-white ramp, HxWx3 uint8."""
    if width <= 1:
        ramp = np.zeros(max(width, 0))
    else:
        ramp = np.clip(np.rint(np.arange(width) * 255.0 / (width - 1)), 0, 255)
    row = np.repeat(ramp.astype(np.uint8)[:, None], 3, axis=1)
    return np.broadcast_to(row, (height, width, 3)).copy()


def analyze_banding(result: DitheringResult) -> float:
    """Mean change in horizontal gradient across the middle rows; lower is smoother."""
    img = result.dithered_pixels().astype(np.float64)
    h, w = img.shape[:2]
    rows = img[h // 4: 3 * h // 4: 4]
    if rows.shape[0] == 0 or w < 3:
        return 0.0
    intensity = rows.mean(axis=-1)
    g1 = np.abs(intensity[:, 1:-1] - intensity[:, :-2])
    g2 = np.abs(intensity[:, 2:] - intensity[:, 1:-1])
    return float(np.mean(np.abs(g1 - g2)))
