# tests/conftest.py
from __future__ import annotations

import numpy as np
import pytest

from thread_colors import ThreadCatalogSet, ThreadColor

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
YELLOW = (255, 255, 0)


def _thread(code, catalog, name, rgb):
    r, g, b = rgb
    return ThreadColor(code=code, catalog=catalog, name=name, red=r, green=g, blue=b)


@pytest.fixture
def quadrant_image() -> np.ndarray:
    """64x64 image: red / green on top, blue / yellow below."""
    img = np.zeros((64, 64, 3), dtype=np.uint8)
    img[:32, :32] = RED
    img[:32, 32:] = GREEN
    img[32:, :32] = BLUE
    img[32:, 32:] = YELLOW
    return img


@pytest.fixture
def small_catalogs() -> ThreadCatalogSet:
    """Two catalogs; red exists in both so scan order is observable."""
    return ThreadCatalogSet([
        ("Primary", [
            _thread("R1", "Primary", "Red", RED),
            _thread("G1", "Primary", "Green", GREEN),
            _thread("B1", "Primary", "Blue", BLUE),
        ]),
        ("Secondary", [
            _thread("Y1", "Secondary", "Yellow", YELLOW),
            _thread("K1", "Secondary", "Black", (0, 0, 0)),
            _thread("W1", "Secondary", "White", (255, 255, 255)),
            _thread("R2", "Secondary", "Signal Red", RED),
        ]),
    ])
