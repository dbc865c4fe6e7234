# kmeans.py
# K-means color clustering in CIE Lab with k-means++ seeding.
# Runs on the distinct colors of the image weighted by pixel count, which
# gives the same centroids as clustering every pixel.

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Tuple
import logging
import time
import numpy as np
from sklearn.utils import check_random_state

from color_space import RGBColor, srgb_to_lab, lab_to_srgb_u8
from color_distance import ColorDistanceAlgorithm, lab_distance_array, pairwise_distances

logger = logging.getLogger(__name__)

MAX_CLUSTERS = 64
MAX_ITERATIONS = 100
CONVERGENCE_THRESHOLD = 0.001
WELL_FORMED_VARIANCE = 100.0

# rows per distance block; keeps the (rows x k) temporaries small
_CHUNK = 65536


@dataclass(frozen=True)
class ClusteringResult:
    centroids: np.ndarray       # (k, 3) Lab
    labels: np.ndarray          # (N,) cluster index per pixel
    member_counts: np.ndarray   # (k,) pixels per cluster
    variances: np.ndarray       # (k,) mean squared ΔE76 to the centroid
    total_variance: float
    iterations: int
    converged: bool
    processing_time_ms: int = 0

    @property
    def cluster_count(self) -> int:
        return int(len(self.centroids))

    @property
    def total_pixels(self) -> int:
        return int(self.member_counts.sum())

    @property
    def palette(self) -> np.ndarray:
        """Centroids as (k, 3) uint8 sRGB."""
        return lab_to_srgb_u8(self.centroids)

    @property
    def dominant_colors(self) -> List[RGBColor]:
        return [RGBColor(int(r), int(g), int(b)) for r, g, b in self.palette]

    def cluster_quality(self, index: int) -> float:
        variance_score = min(100.0, max(0.0, 100.0 - float(self.variances[index])))
        member_score = min(100.0, float(self.member_counts[index]) / 10.0 * 100.0)
        return (variance_score + member_score) / 2.0

    @property
    def average_quality(self) -> float:
        if self.cluster_count == 0:
            return 0.0
        return sum(self.cluster_quality(i) for i in range(self.cluster_count)) / self.cluster_count

    @property
    def is_valid(self) -> bool:
        return self.converged and self.cluster_count > 0 and bool(np.isfinite(self.total_variance))

    def is_well_formed(self, index: int) -> bool:
        return float(self.variances[index]) < WELL_FORMED_VARIANCE


def _distinct_colors(rgb_pixels) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(distinct colors (U,3), inverse index (N,), counts (U,))"""
    px = np.asarray(rgb_pixels, dtype=np.uint8)[..., :3].reshape(-1, 3)
    packed = (px[:, 0].astype(np.uint32) << 16) | (px[:, 1].astype(np.uint32) << 8) | px[:, 2]
    uniq, inverse, counts = np.unique(packed, return_inverse=True, return_counts=True)
    colors = np.stack([(uniq >> 16) & 0xFF, (uniq >> 8) & 0xFF, uniq & 0xFF], axis=1)
    return colors.astype(np.float64), inverse.reshape(-1), counts


def _assign(lab: np.ndarray, centroids: np.ndarray, algorithm: ColorDistanceAlgorithm) -> Tuple[np.ndarray, np.ndarray]:
    """Nearest centroid and its distance for every row of ``lab``."""
    labels = np.empty(len(lab), dtype=np.intp)
    nearest = np.empty(len(lab), dtype=np.float64)
    for start in range(0, len(lab), _CHUNK):
        d = pairwise_distances(algorithm, lab[start:start + _CHUNK], centroids)
        idx = np.argmin(d, axis=1)
        labels[start:start + _CHUNK] = idx
        nearest[start:start + _CHUNK] = d[np.arange(len(idx)), idx]
    return labels, nearest


def _kmeans_plus_plus(lab: np.ndarray, weights: np.ndarray, k: int,
                      algorithm: ColorDistanceAlgorithm, rng: np.random.RandomState,
                      cancel_token=None) -> np.ndarray:
    n = len(lab)
    centers = [lab[rng.randint(n)]]
    _, closest = _assign(lab, np.asarray(centers), algorithm)
    for _ in range(1, k):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        d2 = closest * closest * weights
        total = float(d2.sum())
        if total > 0 and np.isfinite(total):
            idx = int(np.searchsorted(np.cumsum(d2), rng.random_sample() * total, side="right"))
            idx = min(idx, n - 1)
        else:
            idx = int(rng.randint(n))
        centers.append(lab[idx])
        _, d_new = _assign(lab, lab[idx][None, :], algorithm)
        closest = np.minimum(closest, d_new)
    return np.asarray(centers, dtype=np.float64)


def _farthest_point(lab: np.ndarray, centroids: np.ndarray, algorithm: ColorDistanceAlgorithm) -> np.ndarray:
    _, nearest = _assign(lab, centroids, algorithm)
    return lab[int(np.argmax(nearest))]


def cluster_colors(
    rgb_pixels,
    cluster_count: int,
    algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
    *,
    max_iterations: int = MAX_ITERATIONS,
    convergence_threshold: float = CONVERGENCE_THRESHOLD,
    random_state=None,
    cancel_token=None,
) -> ClusteringResult:
    """
    rgb_pixels: (..., 3) uint8 sRGB (an HxWx3 image works)
    returns: ClusteringResult whose labels follow the flattened pixel order
    """
    if not 1 <= cluster_count <= MAX_CLUSTERS:
        raise ValueError(f"Cluster count must be between 1 and {MAX_CLUSTERS}")
    if not (0 < max_iterations <= 1000 and 0.0 < convergence_threshold < 1.0):
        raise ValueError("Invalid K-means parameters")
    algorithm = ColorDistanceAlgorithm.parse(algorithm)

    started = time.perf_counter()
    colors, inverse, counts = _distinct_colors(rgb_pixels)
    if len(colors) == 0:
        raise ValueError("No pixels to cluster")

    lab = srgb_to_lab(colors)
    weights = counts.astype(np.float64)
    # never ask for more clusters than there are distinct colors
    k = int(min(cluster_count, len(colors)))
    rng = check_random_state(random_state)

    centroids = _kmeans_plus_plus(lab, weights, k, algorithm, rng, cancel_token)
    converged = False
    iterations = 0

    for iterations in range(1, max_iterations + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        labels, _ = _assign(lab, centroids, algorithm)
        mass = np.bincount(labels, weights=weights, minlength=k)
        sums = np.zeros((k, 3))
        np.add.at(sums, labels, lab * weights[:, None])

        updated = centroids.copy()
        filled = mass > 0
        updated[filled] = sums[filled] / mass[filled, None]
        for j in np.flatnonzero(~filled):
            updated[j] = _farthest_point(lab, updated, algorithm)
            logger.debug("Reseeded empty cluster %d at iteration %d", j, iterations)

        movement = float(np.max(lab_distance_array(centroids, updated)))
        centroids = updated
        if movement < convergence_threshold:
            converged = True
            break

    labels, _ = _assign(lab, centroids, algorithm)
    member_counts = np.bincount(labels, weights=counts, minlength=k).astype(np.int64)
    sq = lab_distance_array(lab, centroids[labels]) ** 2
    sq_sums = np.bincount(labels, weights=sq * weights, minlength=k)
    variances = np.divide(sq_sums, member_counts, out=np.zeros(k), where=member_counts > 0)
    total_pixels = int(member_counts.sum())
    total_variance = float(sq_sums.sum() / total_pixels) if total_pixels else 0.0

    elapsed_ms = int(round((time.perf_counter() - started) * 1000))
    logger.debug("K-means: k=%d distinct=%d iterations=%d converged=%s variance=%.2f",
                 k, len(colors), iterations, converged, total_variance)

    return ClusteringResult(
        centroids=centroids,
        labels=labels[inverse],
        member_counts=member_counts,
        variances=variances,
        total_variance=total_variance,
        iterations=iterations,
        converged=converged,
        processing_time_ms=elapsed_ms,
    )


def estimate_optimal_clusters(rgb_pixels, max_clusters: int = 16, sample_target: int = 10000) -> int:
    """Roughly sqrt(distinct colors) over a strided sample, clamped to [2, max_clusters]."""
    px = np.asarray(rgb_pixels, dtype=np.uint8)[..., :3].reshape(-1, 3)
    step = max(1, int(np.ceil(len(px) / sample_target)))
    colors, _, _ = _distinct_colors(px[::step])
    estimated = int(round(np.sqrt(len(colors))))
    return int(min(max(estimated, 2), max_clusters))
