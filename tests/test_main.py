# tests/test_main.py
from __future__ import annotations

import io

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

import main


@pytest.fixture
def client(small_catalogs):
    main.app.dependency_overrides[main.get_catalogs] = lambda: small_catalogs
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


@pytest.fixture
def quadrant_png(quadrant_image) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(quadrant_image).save(buf, format="PNG")
    return buf.getvalue()


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_list_catalogs(client):
    r = client.get("/catalogs")
    assert r.json() == {"catalogs": [{"name": "Primary", "threads": 3}, {"name": "Secondary", "threads": 4}]}


def test_lookup_thread(client):
    r = client.get("/catalogs/Secondary/Y1")
    assert r.status_code == 200
    assert r.json()["name"] == "Yellow"
    assert r.json()["hex"] == "#FFFF00"


def test_lookup_missing_thread(client):
    assert client.get("/catalogs/Secondary/nope").status_code == 404
    assert client.get("/catalogs/Missing/Y1").status_code == 404


# ────────────────────────────────────────────────────────────────────────────
# /match
# ────────────────────────────────────────────────────────────────────────────

def test_match_single(client):
    r = client.post("/match", json={"colors": ["#FA0505", "#0000FF"]})
    assert r.status_code == 200
    matches = r.json()["matches"]
    assert [m["code"] for m in matches] == ["R1", "B1"]
    assert matches[0]["source_hex"] == "#FA0505"


def test_match_top_n(client):
    r = client.post("/match", json={"colors": ["#FAFA0A"], "count": 2, "algorithm": "labEuclidean"})
    assert r.status_code == 200
    threads = r.json()["matches"][0]["threads"]
    assert len(threads) == 2
    assert threads[0]["code"] == "Y1"


@pytest.mark.parametrize(
    "body",
    [
        {"colors": ["#FA0505"], "algorithm": "manhattan"},
        {"colors": ["not-a-color"]},
        {"colors": ["#FA0505"], "count": 0},
    ],
)
def test_match_bad_request(client, body):
    assert client.post("/match", json=body).status_code == 400


# ────────────────────────────────────────────────────────────────────────────
# /quantize
# ────────────────────────────────────────────────────────────────────────────

def test_quantize(client, quadrant_png):
    r = client.post("/quantize", files={"file": ("q.png", quadrant_png, "image/png")}, data={"colors": "8"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["threadCount"] == 4
    assert {t["code"] for t in body["threads"]} == {"R1", "G1", "B1", "Y1"}
    assert sum(t["coverage"] for t in body["usage"]["threads"]) == pytest.approx(100.0, abs=1.0)
    assert body["quality"]["quality_level"] == "excellent"


def test_quantize_rejects_bad_colors(client, quadrant_png):
    r = client.post("/quantize", files={"file": ("q.png", quadrant_png, "image/png")}, data={"colors": "50"})
    assert r.status_code == 400
    assert "Invalid quantization parameters" in r.json()["detail"]


def test_quantize_rejects_non_image(client):
    r = client.post("/quantize", files={"file": ("q.txt", b"hello", "text/plain")})
    assert r.status_code == 400


def test_quantize_rejects_tiny_image(client):
    buf = io.BytesIO()
    Image.new("RGB", (8, 8)).save(buf, format="PNG")
    r = client.post("/quantize", files={"file": ("tiny.png", buf.getvalue(), "image/png")})
    assert r.status_code == 400
    assert "Image too small" in r.json()["detail"]


def test_quantize_preview(client, quadrant_png):
    r = client.post("/quantize/preview", files={"file": ("q.png", quadrant_png, "image/png")},
                    data={"dithering": "false"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    img = Image.open(io.BytesIO(r.content))
    assert img.size == (64, 64)
    assert np.array(img.convert("RGB"))[63, 63].tolist() == [255, 255, 0]
