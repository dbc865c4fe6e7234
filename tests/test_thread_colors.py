# tests/test_thread_colors.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

import thread_colors as tc
from thread_colors import (
    GUNOLD_COTTY_ZUSATZ,
    MADEIRA_CLASSIC_40,
    STATIC_CATALOGS,
    ThreadCatalogSet,
    ThreadColor,
)


def test_unknown_thread_is_mid_gray():
    t = ThreadColor.unknown("999", "Nowhere")
    assert t.rgb == (127, 127, 127)
    assert t.name == "Unknown"
    assert t.is_unknown
    assert (t.code, t.catalog) == ("999", "Nowhere")


def test_thread_hex_and_dict():
    t = ThreadColor(code="1500", catalog="Madeira", name="Red", red=220, green=30, blue=40)
    assert t.hex == "#DC1E28"
    d = t.to_dict()
    assert d["brand"] == "Madeira"
    assert d["rgb"] == (220, 30, 40)
    assert d["percentage"] == 100.0


def test_with_percentage_returns_copy():
    t = ThreadColor(code="1", catalog="c", name="n", red=1, green=2, blue=3)
    scored = t.with_percentage(87.5)
    assert scored.percentage == 87.5
    assert t.percentage == 100.0
    assert scored.code == t.code


# ────────────────────────────────────────────────────────────────────────────
# ThreadCatalogSet
# ────────────────────────────────────────────────────────────────────────────

def test_catalog_set_preserves_order(small_catalogs):
    assert list(small_catalogs) == ["Primary", "Secondary"]
    assert [len(c) for c in small_catalogs.catalogs()] == [3, 4]
    assert len(small_catalogs.flattened()) == 7


def test_catalog_set_rejects_duplicate_codes():
    t = ThreadColor(code="1", catalog="c", name="n", red=1, green=2, blue=3)
    with pytest.raises(ValueError):
        ThreadCatalogSet([("c", [t, t])])


def test_catalog_set_subset(small_catalogs):
    sub = small_catalogs.subset(["Secondary"])
    assert list(sub) == ["Secondary"]
    with pytest.raises(KeyError):
        small_catalogs.subset(["Missing"])


def test_catalog_set_merged_keeps_first(small_catalogs):
    other = ThreadCatalogSet([
        ("Primary", []),
        ("Extra", [ThreadColor(code="X", catalog="Extra", name="x", red=0, green=0, blue=1)]),
    ])
    merged = small_catalogs.merged(other)
    assert list(merged) == ["Primary", "Secondary", "Extra"]
    assert len(merged["Primary"]) == 3


def test_static_catalogs():
    assert list(STATIC_CATALOGS) == [MADEIRA_CLASSIC_40, GUNOLD_COTTY_ZUSATZ]
    assert len(STATIC_CATALOGS[MADEIRA_CLASSIC_40]) == 24
    assert len(STATIC_CATALOGS[GUNOLD_COTTY_ZUSATZ]) == 64
    assert all(t.catalog == GUNOLD_COTTY_ZUSATZ for t in STATIC_CATALOGS[GUNOLD_COTTY_ZUSATZ])


def test_default_catalogs_without_machine_charts():
    assert tc.load_default_catalogs(include_machine_charts=False) is STATIC_CATALOGS


# ────────────────────────────────────────────────────────────────────────────
# machine charts
# ────────────────────────────────────────────────────────────────────────────

def test_threads_from_chart_skips_placeholders_and_duplicates():
    chart = [
        SimpleNamespace(catalog_number="0", description="Unknown", color=0x000000),
        SimpleNamespace(catalog_number="1", description="Prussian Blue", color=0x0E1F7C),
        SimpleNamespace(catalog_number="1", description="Again", color=0xFFFFFF),
        SimpleNamespace(catalog_number="", description="No code", color=0x123456),
        SimpleNamespace(catalog_number="2", description="Blue", color=0xFF0A55F0),
    ]
    name, threads = tc._threads_from_chart("Test Chart", chart)
    assert name == "Test Chart"
    assert [t.code for t in threads] == ["1", "2"]
    assert threads[0].rgb == (0x0E, 0x1F, 0x7C)
    assert threads[1].rgb == (0x0A, 0x55, 0xF0)


def test_load_machine_charts():
    pytest.importorskip("pyembroidery")
    charts = tc.load_machine_charts()
    assert "Brother PEC" in charts
    pec = charts["Brother PEC"]
    assert len(pec) > 10
    assert not any(t.name == "Unknown" for t in pec)
