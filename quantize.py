# quantize.py
# Reduce an image to a small set of real embroidery threads.
# Pipeline: cluster in Lab -> dither onto the cluster palette -> match each
# palette color to the closest catalog thread -> usage and quality scoring.

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional
import asyncio
import inspect
import logging
import math
import numbers
import time
import numpy as np
from PIL import Image

from color_space import RGBColor, srgb_to_lab
from color_distance import (
    CIEDE2000_MAX_DISTANCE,
    ColorDistanceAlgorithm,
    calculate_similarity_percentage,
    ciede2000_array,
    similarity_percentage_array,
)
from color_matcher import Catalogs, find_nearest_color, find_optimal_match, flatten_catalogs
from dither import DitheringEffectiveness, DitheringResult, assign_without_dithering, floyd_steinberg
from kmeans import ClusteringResult, cluster_colors
from preprocess import image_size, image_to_rgb_array
from thread_colors import ThreadColor

logger = logging.getLogger(__name__)

MIN_COLOR_LIMIT = 2
MAX_COLOR_LIMIT = 20
MIN_IMAGE_SIZE = 32
MAX_IMAGE_SIZE = 4096

# thread cost model
PIXELS_PER_METER = 1000.0
COST_PER_METER = 0.50

VISUAL_SAMPLE_TARGET = 1000

STAGE_START = "Starting color quantization..."
STAGE_CLUSTERING = "Performing K-means clustering..."
STAGE_DITHERING = "Applying Floyd-Steinberg dithering..."
STAGE_MATCHING = "Mapping colors to thread catalog..."
STAGE_USAGE = "Calculating thread usage statistics..."
STAGE_QUALITY = "Assessing quality metrics..."
STAGE_DONE = "Color quantization complete"

CANCELLED_MESSAGE = "Color quantization was cancelled"

ProgressCallback = Callable[[float, str], object]


class QuantizationCancelled(Exception):
    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


class CancelToken:
    """Cooperative cancellation flag; once set it stays set."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise QuantizationCancelled()


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"


def _is_integer(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _is_real(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool) and not math.isnan(value)


@dataclass(frozen=True)
class QuantizationParameters:
    color_limit: int = 16
    enable_dithering: bool = True
    dithering_strength: float = 0.8
    quality_threshold: float = 70.0
    color_distance_algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000

    def validation_errors(self) -> List[str]:
        errors = []
        if not _is_integer(self.color_limit) or not MIN_COLOR_LIMIT <= self.color_limit <= MAX_COLOR_LIMIT:
            errors.append(f"color_limit must be between {MIN_COLOR_LIMIT} and {MAX_COLOR_LIMIT}")
        if not _is_real(self.dithering_strength) or not 0.0 <= self.dithering_strength <= 1.0:
            errors.append("dithering_strength must be between 0.0 and 1.0")
        if not _is_real(self.quality_threshold) or not 0.0 <= self.quality_threshold <= 100.0:
            errors.append("quality_threshold must be between 0 and 100")
        try:
            ColorDistanceAlgorithm.parse(self.color_distance_algorithm)
        except ValueError as e:
            errors.append(str(e))
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @property
    def algorithm(self) -> ColorDistanceAlgorithm:
        return ColorDistanceAlgorithm.parse(self.color_distance_algorithm)

    def __str__(self) -> str:
        return (f"QuantizationParameters(colors: {self.color_limit}, "
                f"dithering: {self.enable_dithering}({self.dithering_strength}), "
                f"algorithm: {self.algorithm.value})")


DEFAULT_PARAMETERS = QuantizationParameters()


@dataclass(frozen=True)
class ThreadUsageStatistics:
    """Per-thread usage, most used first."""
    thread_colors: List[ThreadColor]
    pixel_counts: List[int]
    coverage_percentages: List[float]
    estimated_lengths: List[float]    # meters
    estimated_cost: float
    recommendations: List[str] = field(default_factory=list)

    @property
    def primary_thread(self) -> Optional[ThreadColor]:
        return self.thread_colors[0] if self.thread_colors else None

    @property
    def total_thread_length(self) -> float:
        return float(sum(self.estimated_lengths))

    @property
    def thread_count(self) -> int:
        return len(self.thread_colors)

    def to_dict(self) -> dict:
        return {
            "threads": [
                dict(t.to_dict(), pixels=n, coverage=round(c, 2), length_m=round(m, 3))
                for t, n, c, m in zip(self.thread_colors, self.pixel_counts,
                                      self.coverage_percentages, self.estimated_lengths)
            ],
            "total_length_m": round(self.total_thread_length, 3),
            "estimated_cost": round(self.estimated_cost, 2),
            "recommendations": list(self.recommendations),
        }

    def __str__(self) -> str:
        return (f"ThreadUsage(threads: {self.thread_count}, length: {self.total_thread_length:.1f}m, "
                f"cost: ${self.estimated_cost:.2f})")


@dataclass(frozen=True)
class QualityMetrics:
    color_accuracy: float
    dithering_quality: float
    clustering_quality: float
    thread_match_quality: float
    visual_similarity: float
    overall_score: float

    @property
    def quality_level(self) -> QualityLevel:
        if self.overall_score >= 90:
            return QualityLevel.EXCELLENT
        if self.overall_score >= 80:
            return QualityLevel.GOOD
        if self.overall_score >= 60:
            return QualityLevel.ACCEPTABLE
        return QualityLevel.POOR

    @property
    def improvement_areas(self) -> List[str]:
        areas = []
        if self.color_accuracy < 80:
            areas.append("Color accuracy needs improvement")
        if self.dithering_quality < 70:
            areas.append("Dithering quality could be enhanced")
        if self.clustering_quality < 75:
            areas.append("Color clustering needs refinement")
        if self.thread_match_quality < 80:
            areas.append("Thread color matching accuracy")
        if self.visual_similarity < 75:
            areas.append("Visual similarity to original")
        return areas

    def to_dict(self) -> dict:
        return {
            "color_accuracy": round(self.color_accuracy, 2),
            "dithering_quality": round(self.dithering_quality, 2),
            "clustering_quality": round(self.clustering_quality, 2),
            "thread_match_quality": round(self.thread_match_quality, 2),
            "visual_similarity": round(self.visual_similarity, 2),
            "overall_score": round(self.overall_score, 2),
            "quality_level": self.quality_level.value,
            "improvement_areas": self.improvement_areas,
        }


@dataclass(frozen=True)
class QuantizationSummary:
    thread_count: int
    color_reduction_ratio: float
    processing_time_ms: int
    quality_score: float
    dithering_effectiveness: DitheringEffectiveness
    thread_cost_estimate: float

    @property
    def color_reduction_percentage(self) -> float:
        return self.color_reduction_ratio * 100.0

    @property
    def processing_time_seconds(self) -> float:
        return self.processing_time_ms / 1000.0

    def __str__(self) -> str:
        return (f"QuantizationSummary(threads: {self.thread_count}, "
                f"reduction: {self.color_reduction_percentage:.1f}%, "
                f"quality: {self.quality_score:.1f}, time: {self.processing_time_seconds:.1f}s)")


@dataclass(frozen=True)
class QuantizationResult:
    color_mapping: Dict[RGBColor, ThreadColor]
    clustering: ClusteringResult
    dithering: DitheringResult
    thread_usage: ThreadUsageStatistics
    quality: QualityMetrics
    processing_time_ms: int
    quality_threshold: float = DEFAULT_PARAMETERS.quality_threshold

    @property
    def palette(self) -> np.ndarray:
        """(P, 3) uint8 cluster colors the indices refer to."""
        return self.dithering.palette

    @property
    def indices(self) -> np.ndarray:
        return self.dithering.indices

    @property
    def width(self) -> int:
        return self.dithering.width

    @property
    def height(self) -> int:
        return self.dithering.height

    @property
    def thread_count(self) -> int:
        return len(self.color_mapping)

    @property
    def overall_quality(self) -> float:
        return self.quality.overall_score

    @property
    def meets_quality_threshold(self) -> bool:
        return self.overall_quality >= self.quality_threshold

    def summary(self) -> QuantizationSummary:
        return QuantizationSummary(
            thread_count=self.thread_count,
            color_reduction_ratio=self.dithering.color_reduction_ratio,
            processing_time_ms=self.processing_time_ms,
            quality_score=self.overall_quality,
            dithering_effectiveness=self.dithering.effectiveness,
            thread_cost_estimate=self.thread_usage.estimated_cost,
        )

    def thread_palette(self) -> np.ndarray:
        """Matched thread color for every palette entry, (P, 3) uint8."""
        rows = []
        for color in _palette_colors(self.palette):
            thread = self.color_mapping.get(color)
            rows.append(thread.rgb if thread is not None else color.rgb)
        return np.asarray(rows, dtype=np.uint8).reshape(-1, 3)

    def quantized_pixels(self) -> np.ndarray:
        """HxWx3 uint8 image in cluster colors."""
        return self.dithering.dithered_pixels()

    def preview_image(self) -> Image.Image:
        """The image as it would be stitched, in thread colors."""
        return Image.fromarray(self.thread_palette()[self.indices])

    def thread_list(self) -> List[dict]:
        """One dict per palette color, in palette order."""
        counts = np.bincount(self.indices.ravel(), minlength=len(self.palette))
        total = max(1, self.indices.size)
        out = []
        for i, color in enumerate(_palette_colors(self.palette)):
            thread = self.color_mapping.get(color)
            if thread is None:
                continue
            info = thread.to_dict()
            info["source_rgb"] = color.rgb
            info["source_hex"] = color.hex
            info["pixels"] = int(counts[i])
            info["coverage"] = round(float(counts[i]) * 100.0 / total, 2)
            out.append(info)
        return out

    def __str__(self) -> str:
        return (f"QuantizationResult(threads: {self.thread_count}, "
                f"quality: {self.overall_quality:.1f}, time: {self.processing_time_ms}ms)")


@dataclass(frozen=True)
class QuantizationOutcome:
    success: bool
    result: Optional[QuantizationResult] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: QuantizationResult) -> "QuantizationOutcome":
        return cls(success=True, result=result)

    @classmethod
    def failure(cls, error: str) -> "QuantizationOutcome":
        return cls(success=False, error=error)

    @property
    def is_failure(self) -> bool:
        return not self.success


def _palette_colors(palette: np.ndarray) -> List[RGBColor]:
    return [RGBColor(int(r), int(g), int(b)) for r, g, b in np.asarray(palette)[:, :3]]


def validate_image_size(width: int, height: int) -> Optional[str]:
    if width < MIN_IMAGE_SIZE or height < MIN_IMAGE_SIZE:
        return f"Image too small (minimum {MIN_IMAGE_SIZE}x{MIN_IMAGE_SIZE} pixels)"
    if width > MAX_IMAGE_SIZE or height > MAX_IMAGE_SIZE:
        return f"Image too large (maximum {MAX_IMAGE_SIZE}x{MAX_IMAGE_SIZE} pixels)"
    return None


def map_colors_to_threads(palette, catalogs: Catalogs, algorithm: ColorDistanceAlgorithm,
                          cancel_token: Optional[CancelToken] = None) -> Dict[RGBColor, ThreadColor]:
    mapping: Dict[RGBColor, ThreadColor] = {}
    for color in _palette_colors(palette):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if color in mapping:
            continue
        thread = find_optimal_match(color, catalogs, algorithm=algorithm)
        if thread is None:
            thread = find_nearest_color(color.red, color.green, color.blue, catalogs)
        mapping[color] = thread
    return mapping


def _thread_recommendations(threads: List[ThreadColor], coverages: List[float], lengths: List[float]) -> List[str]:
    recs: List[str] = []
    if not threads:
        return recs

    if coverages[0] > 50:
        recs.append(f"Primary thread ({threads[0].name}) covers {coverages[0]:.1f}% of design")

    minor = sum(1 for c in coverages if c < 5.0)
    if minor > len(threads) / 2:
        recs.append(f"Consider consolidating {minor} minor thread colors")

    total_length = sum(lengths)
    if total_length > 100:
        recs.append(f"High thread usage ({total_length:.1f}m) - consider reducing colors")

    catalogs = {t.catalog for t in threads}
    if len(catalogs) > 3:
        recs.append(f"Using threads from {len(catalogs)} catalogs - may affect availability")
    return recs


def calculate_thread_usage(dithering: DitheringResult, color_mapping: Dict[RGBColor, ThreadColor]) -> ThreadUsageStatistics:
    counts = np.bincount(dithering.indices.ravel(), minlength=len(dithering.palette))
    per_color: Dict[RGBColor, int] = {}
    for color, n in zip(_palette_colors(dithering.palette), counts.tolist()):
        if n:
            per_color[color] = per_color.get(color, 0) + int(n)

    total = max(1, dithering.pixel_count)
    threads, pixels, coverages, lengths = [], [], [], []
    for color, n in sorted(per_color.items(), key=lambda kv: -kv[1]):
        thread = color_mapping.get(color)
        if thread is None:
            continue
        threads.append(thread)
        pixels.append(n)
        coverages.append(n * 100.0 / total)
        lengths.append(n / PIXELS_PER_METER)

    return ThreadUsageStatistics(
        thread_colors=threads,
        pixel_counts=pixels,
        coverage_percentages=coverages,
        estimated_lengths=lengths,
        estimated_cost=sum(lengths) * COST_PER_METER,
        recommendations=_thread_recommendations(threads, coverages, lengths),
    )


def visual_similarity(original: np.ndarray, quantized: np.ndarray) -> float:
    """Mean ΔE00 similarity over a strided pixel sample, 0-100."""
    if original.shape != quantized.shape:
        return 0.0
    h, w = original.shape[:2]
    rate = max(1, int(math.ceil(h * w / VISUAL_SAMPLE_TARGET)))
    a = original[::rate, ::rate].reshape(-1, 3)
    b = quantized[::rate, ::rate].reshape(-1, 3)
    if len(a) == 0:
        return 0.0
    d = ciede2000_array(srgb_to_lab(a), srgb_to_lab(b))
    return float(np.mean(similarity_percentage_array(d, CIEDE2000_MAX_DISTANCE)))


def calculate_quality_metrics(original: np.ndarray, dithering: DitheringResult, clustering: ClusteringResult,
                              color_mapping: Dict[RGBColor, ThreadColor]) -> QualityMetrics:
    clustering_quality = max(0.0, 100.0 - clustering.total_variance)
    dithering_quality = dithering.quality_score

    thread_match = 0.0
    if color_mapping:
        thread_match = sum(calculate_similarity_percentage(color, thread.rgb)
                           for color, thread in color_mapping.items()) / len(color_mapping)

    similarity = visual_similarity(original, dithering.dithered_pixels())
    accuracy = (clustering_quality + thread_match) / 2.0
    overall = (accuracy * 0.3
               + dithering_quality * 0.25
               + clustering_quality * 0.2
               + thread_match * 0.15
               + similarity * 0.1)
    return QualityMetrics(
        color_accuracy=accuracy,
        dithering_quality=dithering_quality,
        clustering_quality=clustering_quality,
        thread_match_quality=thread_match,
        visual_similarity=similarity,
        overall_score=overall,
    )


async def _report(callback: Optional[ProgressCallback], progress: float, stage: str) -> None:
    logger.debug("quantize %3.0f%% %s", progress * 100, stage)
    if callback is not None:
        ret = callback(progress, stage)
        if inspect.isawaitable(ret):
            await ret
    await asyncio.sleep(0)


def _check(cancel_token: Optional[CancelToken]) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()


async def quantize_image(
    image,
    catalogs: Catalogs,
    params: QuantizationParameters = DEFAULT_PARAMETERS,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancelToken] = None,
    random_state=None,
) -> QuantizationOutcome:
    """
    image: PIL image or HxWx3/HxWx4 uint8 array
    catalogs: ThreadCatalogSet or thread lists in scan order
    returns: QuantizationOutcome; failures carry a readable message, never a partial result
    """
    errors = params.validation_errors()
    if errors:
        return QuantizationOutcome.failure("Invalid quantization parameters: " + "; ".join(errors))
    try:
        flatten_catalogs(catalogs)
        width, height = image_size(image)
    except ValueError as e:
        return QuantizationOutcome.failure(str(e))
    size_error = validate_image_size(width, height)
    if size_error:
        return QuantizationOutcome.failure(size_error)

    algorithm = params.algorithm
    started = time.perf_counter()
    try:
        pixels = image_to_rgb_array(image)

        await _report(progress_callback, 0.0, STAGE_START)
        _check(cancel_token)

        await _report(progress_callback, 0.1, STAGE_CLUSTERING)
        _check(cancel_token)
        clustering = cluster_colors(pixels, params.color_limit, algorithm,
                                    random_state=random_state, cancel_token=cancel_token)

        await _report(progress_callback, 0.4, STAGE_DITHERING)
        _check(cancel_token)
        palette = clustering.palette
        if params.enable_dithering:
            dithering = floyd_steinberg(pixels, palette, params.dithering_strength, cancel_token=cancel_token)
        else:
            dithering = assign_without_dithering(pixels, palette, clustering.labels)

        await _report(progress_callback, 0.6, STAGE_MATCHING)
        _check(cancel_token)
        color_mapping = map_colors_to_threads(palette, catalogs, algorithm, cancel_token)

        await _report(progress_callback, 0.8, STAGE_USAGE)
        _check(cancel_token)
        usage = calculate_thread_usage(dithering, color_mapping)

        await _report(progress_callback, 0.9, STAGE_QUALITY)
        _check(cancel_token)
        quality = calculate_quality_metrics(pixels, dithering, clustering, color_mapping)

        result = QuantizationResult(
            color_mapping=color_mapping,
            clustering=clustering,
            dithering=dithering,
            thread_usage=usage,
            quality=quality,
            processing_time_ms=max(1, int(math.ceil((time.perf_counter() - started) * 1000))),
            quality_threshold=params.quality_threshold,
        )
        await _report(progress_callback, 1.0, STAGE_DONE)
    except QuantizationCancelled as e:
        logger.info("Color quantization cancelled")
        return QuantizationOutcome.failure(str(e))
    except Exception as e:
        logger.exception("Color quantization failed")
        return QuantizationOutcome.failure(f"Color quantization failed: {e}")

    logger.info("Quantized %dx%d image to %d threads in %dms (quality %.1f)",
                width, height, result.thread_count, result.processing_time_ms, result.overall_quality)
    return QuantizationOutcome.ok(result)


def estimate_processing_time(image, params: QuantizationParameters = DEFAULT_PARAMETERS) -> timedelta:
    width, height = image_size(image)
    seconds = int(math.ceil(width * height / 10000))
    if params.enable_dithering:
        seconds = int(math.ceil(seconds * 1.5))
    if params.algorithm is ColorDistanceAlgorithm.CIEDE2000:
        seconds = int(math.ceil(seconds * 1.2))
    return timedelta(seconds=seconds)


def get_optimal_parameters(image) -> QuantizationParameters:
    """Fewer colors for small images, up to the maximum for large ones."""
    width, height = image_size(image)
    pixel_count = width * height
    if pixel_count < 100_000:
        color_limit = 8
    elif pixel_count < 500_000:
        color_limit = 16
    else:
        color_limit = MAX_COLOR_LIMIT
    return QuantizationParameters(
        color_limit=color_limit,
        enable_dithering=True,
        dithering_strength=0.8,
        quality_threshold=70.0,
        color_distance_algorithm=ColorDistanceAlgorithm.CIEDE2000,
    )
