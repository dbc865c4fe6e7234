# color_matcher.py
# Map arbitrary colors onto real threads across one or more catalogs.
# Catalogs are scanned in the order given; ties go to the earliest entry.
from __future__ import annotations
from collections.abc import Mapping
from typing import Dict, Iterable, List, Optional, Sequence, Union
import logging
import numpy as np

from color_space import RGBColor, srgb_to_lab
from color_distance import (
    ColorDistanceAlgorithm,
    WEIGHTED_RGB_MAX_DISTANCE,
    ciede2000_array,
    lab_distance_array,
    similarity_percentage,
    similarity_percentage_array,
    weighted_rgb_distance_array,
)
from thread_colors import ThreadCatalogSet, ThreadColor

logger = logging.getLogger(__name__)

Catalogs = Union[ThreadCatalogSet, Mapping, Sequence[Sequence[ThreadColor]]]

EMPTY_CATALOGS_ERROR = "Thread catalogs cannot be empty"


def _catalog_lists(catalogs: Catalogs) -> List[Sequence[ThreadColor]]:
    if isinstance(catalogs, ThreadCatalogSet):
        lists = catalogs.catalogs()
    elif isinstance(catalogs, Mapping):
        lists = list(catalogs.values())
    else:
        lists = list(catalogs or [])
    if not lists:
        raise ValueError(EMPTY_CATALOGS_ERROR)
    return lists


def flatten_catalogs(catalogs: Catalogs) -> List[ThreadColor]:
    """Every thread in scan order; raises ValueError when there are none."""
    threads = [t for catalog in _catalog_lists(catalogs) for t in catalog]
    if not threads:
        raise ValueError(EMPTY_CATALOGS_ERROR)
    return threads


def _as_rgb(color) -> RGBColor:
    if isinstance(color, RGBColor):
        return color
    if isinstance(color, str):
        return RGBColor.from_hex(color)
    if hasattr(color, "rgb"):
        return RGBColor(*color.rgb)
    r, g, b = tuple(int(c) for c in tuple(color)[:3])
    return RGBColor(r, g, b)


def _distances(algorithm: ColorDistanceAlgorithm, rgb: Sequence[int], threads: Sequence[ThreadColor]) -> np.ndarray:
    target = np.asarray(rgb[:3], dtype=np.float64)
    table = np.array([t.rgb for t in threads], dtype=np.float64)
    if algorithm is ColorDistanceAlgorithm.EUCLIDEAN:
        return weighted_rgb_distance_array(table, target)
    target_lab = srgb_to_lab(target)
    table_lab = srgb_to_lab(table)
    if algorithm is ColorDistanceAlgorithm.LAB_EUCLIDEAN:
        return lab_distance_array(table_lab, target_lab)
    return ciede2000_array(target_lab, table_lab)


# ---- exact lookups ----

def find_color(red: int, green: int, blue: int, catalogs: Catalogs,
               allow_nearby: bool = False) -> Optional[ThreadColor]:
    """First thread with exactly this RGB, scanning every catalog in order."""
    for catalog in _catalog_lists(catalogs):
        for thread in catalog:
            if thread.rgb == (red, green, blue):
                return thread
    if allow_nearby:
        return find_nearest_color(red, green, blue, catalogs)
    return None


def find_all_exact_colors(red: int, green: int, blue: int, catalogs: Catalogs) -> List[ThreadColor]:
    """One exact match per catalog, where the catalog has one."""
    out: List[ThreadColor] = []
    for catalog in _catalog_lists(catalogs):
        hit = next((t for t in catalog if t.rgb == (red, green, blue)), None)
        if hit is not None:
            out.append(hit)
    return out


def find_by_code_and_catalog(code: str, catalog: str, catalogs: Mapping,
                             *, sentinel: bool = True) -> Optional[ThreadColor]:
    """Catalog entry for ``(code, catalog)``.

    Misses return the mid-gray "Unknown" thread so callers building thread
    lists stay total; pass ``sentinel=False`` to get ``None`` instead.
    """
    threads = catalogs.get(catalog)
    if threads is not None:
        for thread in threads:
            if thread.code == code:
                return thread
    logger.debug("Thread %s not found in catalog %s", code, catalog)
    return ThreadColor.unknown(code, catalog) if sentinel else None


# ---- weighted-RGB searches ----

def find_nearest_color(red: int, green: int, blue: int, catalogs: Catalogs) -> ThreadColor:
    threads = flatten_catalogs(catalogs)
    d = _distances(ColorDistanceAlgorithm.EUCLIDEAN, (red, green, blue), threads)
    best = int(np.argmin(d))
    return threads[best].with_percentage(similarity_percentage(float(d[best]), WEIGHTED_RGB_MAX_DISTANCE))


def find_k_nearest_colors(red: int, green: int, blue: int, catalogs: Catalogs, k: int) -> List[ThreadColor]:
    if k <= 0:
        raise ValueError("k must be positive")
    threads = flatten_catalogs(catalogs)
    d = _distances(ColorDistanceAlgorithm.EUCLIDEAN, (red, green, blue), threads)
    order = np.argsort(d, kind="stable")[:k]
    pct = similarity_percentage_array(d[order], WEIGHTED_RGB_MAX_DISTANCE)
    return [threads[i].with_percentage(p) for i, p in zip(order.tolist(), pct.tolist())]


def calculate_color_difference(thread: ThreadColor, red: int, green: int, blue: int) -> float:
    """Weighted-RGB similarity of ``thread`` to the given color, 0-100."""
    d = weighted_rgb_distance_array(thread.rgb, (red, green, blue))
    return similarity_percentage(float(d), WEIGHTED_RGB_MAX_DISTANCE)


# ---- perceptual searches ----

def find_optimal_match(color, catalogs: Catalogs,
                       algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
                       allow_nearby: bool = True) -> Optional[ThreadColor]:
    """Exact match if one exists, otherwise the global best under ``algorithm``."""
    rgb = _as_rgb(color)
    threads = flatten_catalogs(catalogs)
    exact = find_color(rgb.red, rgb.green, rgb.blue, catalogs)
    if exact is not None:
        return exact
    if not allow_nearby:
        return None
    algorithm = ColorDistanceAlgorithm.parse(algorithm)
    d = _distances(algorithm, rgb.rgb, threads)
    best = int(np.argmin(d))
    return threads[best].with_percentage(similarity_percentage(float(d[best]), algorithm.max_distance))


def find_top_matches(color, catalogs: Catalogs, count: int,
                     algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> List[ThreadColor]:
    if count <= 0:
        raise ValueError("Count must be positive")
    algorithm = ColorDistanceAlgorithm.parse(algorithm)
    threads = flatten_catalogs(catalogs)
    d = _distances(algorithm, _as_rgb(color).rgb, threads)
    order = np.argsort(d, kind="stable")[:count]
    pct = similarity_percentage_array(d[order], algorithm.max_distance)
    return [threads[i].with_percentage(p) for i, p in zip(order.tolist(), pct.tolist())]


def batch_color_match(colors: Iterable, catalogs: Catalogs,
                      algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> Dict[RGBColor, ThreadColor]:
    """Independent optimal match per distinct color."""
    flatten_catalogs(catalogs)
    results: Dict[RGBColor, ThreadColor] = {}
    for color in colors:
        key = _as_rgb(color)
        if key in results:
            continue
        match = find_optimal_match(key, catalogs, algorithm=algorithm)
        if match is not None:
            results[key] = match
    return results


def map_palette_to_catalogs(palette_rgb: Sequence, catalogs: Catalogs,
                            algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000) -> List[dict]:
    """Return a list (same length as palette_rgb) of dicts with nearest thread info."""
    out = []
    for color in palette_rgb:
        rgb = _as_rgb(color)
        thread = find_optimal_match(rgb, catalogs, algorithm=algorithm)
        info = thread.to_dict()
        info["source_rgb"] = rgb.rgb
        info["source_hex"] = rgb.hex
        out.append(info)
    return out
