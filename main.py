import os, io, logging
from functools import lru_cache
from typing import List, Optional
from fastapi import Depends, FastAPI, UploadFile, File, HTTPException, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from color_distance import ColorDistanceAlgorithm
from color_matcher import find_by_code_and_catalog, find_top_matches, map_palette_to_catalogs
from color_space import RGBColor
from preprocess import load_image_bytes
from quantize import QuantizationOutcome, QuantizationParameters, quantize_image
from thread_colors import ThreadCatalogSet, load_default_catalogs

# --- config ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
THREAD_CATALOGS = [c.strip() for c in os.environ.get("THREAD_CATALOGS", "").split(",") if c.strip()]
INCLUDE_MACHINE_CHARTS = os.environ.get("INCLUDE_MACHINE_CHARTS", "1").lower() not in ("0", "false", "no")
QUANTIZE_RANDOM_SEED = os.environ.get("QUANTIZE_RANDOM_SEED")
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("thread-quantize-worker")


@lru_cache(maxsize=1)
def get_catalogs() -> ThreadCatalogSet:
    catalogs = load_default_catalogs(include_machine_charts=INCLUDE_MACHINE_CHARTS)
    if THREAD_CATALOGS:
        catalogs = catalogs.subset(THREAD_CATALOGS)
    logger.info("Thread catalogs: %r", catalogs)
    return catalogs


def _random_state() -> Optional[int]:
    return int(QUANTIZE_RANDOM_SEED) if QUANTIZE_RANDOM_SEED else None


def _parse_algorithm(value: str) -> ColorDistanceAlgorithm:
    try:
        return ColorDistanceAlgorithm.parse(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- FastAPI app ---
app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class MatchRequest(BaseModel):
    colors: List[str]
    algorithm: str = ColorDistanceAlgorithm.CIEDE2000.value
    count: int = 1


# health
@app.get("/")
def root():
    return {"ok": True, "service": "thread-quantize-worker"}


@app.get("/catalogs")
def list_catalogs(catalogs: ThreadCatalogSet = Depends(get_catalogs)):
    return {"catalogs": [{"name": name, "threads": len(threads)} for name, threads in catalogs.items()]}


@app.get("/catalogs/{catalog}/{code}")
def lookup_thread(catalog: str, code: str, catalogs: ThreadCatalogSet = Depends(get_catalogs)):
    thread = find_by_code_and_catalog(code, catalog, catalogs)
    if thread.is_unknown:
        raise HTTPException(status_code=404, detail=f"Thread {code} not found in {catalog}")
    return thread.to_dict()


# nearest threads for a list of hex colors
@app.post("/match")
def match_colors(req: MatchRequest, catalogs: ThreadCatalogSet = Depends(get_catalogs)):
    algorithm = _parse_algorithm(req.algorithm)
    if req.count <= 0:
        raise HTTPException(status_code=400, detail="count must be positive")
    try:
        colors = [RGBColor.from_hex(c) for c in req.colors]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if req.count == 1:
        return {"matches": map_palette_to_catalogs(colors, catalogs, algorithm=algorithm)}
    return {
        "matches": [
            {"source_hex": c.hex, "threads": [t.to_dict() for t in find_top_matches(c, catalogs, req.count, algorithm)]}
            for c in colors
        ]
    }


async def _run_quantize(file: UploadFile, colors: int, dithering: bool, strength: float,
                        algorithm: str, quality_threshold: float, catalogs: ThreadCatalogSet):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Upload larger than {MAX_UPLOAD_BYTES} bytes")
    try:
        image = load_image_bytes(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    params = QuantizationParameters(
        color_limit=int(colors),
        enable_dithering=bool(dithering),
        dithering_strength=float(strength),
        quality_threshold=float(quality_threshold),
        color_distance_algorithm=_parse_algorithm(algorithm),
    )
    outcome: QuantizationOutcome = await quantize_image(image, catalogs, params, random_state=_random_state())
    if not outcome.success:
        logger.error("JOB ERROR: %s (%s)", outcome.error, file.filename)
        status = 400 if outcome.error.startswith(("Invalid", "Image too", "Thread catalogs")) else 422
        raise HTTPException(status_code=status, detail=outcome.error)
    return outcome.result


# quantize upload -> thread list, usage and quality
@app.post("/quantize")
async def quantize(
    file: UploadFile = File(...),
    colors: int = Form(16),
    dithering: bool = Form(True),
    strength: float = Form(0.8),
    algorithm: str = Form(ColorDistanceAlgorithm.CIEDE2000.value),
    quality_threshold: float = Form(70.0),
    catalogs: ThreadCatalogSet = Depends(get_catalogs),
):
    result = await _run_quantize(file, colors, dithering, strength, algorithm, quality_threshold, catalogs)
    summary = result.summary()
    return {
        "width": result.width,
        "height": result.height,
        "threadCount": result.thread_count,
        "processingTimeMs": result.processing_time_ms,
        "meetsQualityThreshold": result.meets_quality_threshold,
        "threads": result.thread_list(),
        "usage": result.thread_usage.to_dict(),
        "quality": result.quality.to_dict(),
        "summary": {
            "colorReduction": round(summary.color_reduction_percentage, 2),
            "ditheringEffectiveness": summary.dithering_effectiveness.value,
            "threadCostEstimate": round(summary.thread_cost_estimate, 2),
        },
    }


# same pipeline, returns the PNG rendered in thread colors
@app.post("/quantize/preview")
async def quantize_preview(
    file: UploadFile = File(...),
    colors: int = Form(16),
    dithering: bool = Form(True),
    strength: float = Form(0.8),
    algorithm: str = Form(ColorDistanceAlgorithm.CIEDE2000.value),
    catalogs: ThreadCatalogSet = Depends(get_catalogs),
):
    result = await _run_quantize(file, colors, dithering, strength, algorithm, 0.0, catalogs)
    buf = io.BytesIO()
    result.preview_image().save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")
