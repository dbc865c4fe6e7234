# thread_colors.py
# Thread catalog model and the static manufacturer palettes the matcher
# searches. Catalogs are built once and never mutated afterwards.
from __future__ import annotations
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging

from color_space import RGBColor

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

UNKNOWN_THREAD_NAME = "Unknown"
UNKNOWN_THREAD_RGB: RGB = (127, 127, 127)


@dataclass(frozen=True)
class ThreadColor:
    code: str
    catalog: str
    name: str
    red: int
    green: int
    blue: int
    percentage: float = 100.0   # match confidence when produced by a search

    @classmethod
    def unknown(cls, code: str, catalog: str) -> "ThreadColor":
        r, g, b = UNKNOWN_THREAD_RGB
        return cls(code=code, catalog=catalog, name=UNKNOWN_THREAD_NAME, red=r, green=g, blue=b)

    @property
    def rgb(self) -> RGB:
        return (self.red, self.green, self.blue)

    @property
    def hex(self) -> str:
        return '#%02X%02X%02X' % self.rgb

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_THREAD_NAME and self.rgb == UNKNOWN_THREAD_RGB

    def with_percentage(self, percentage: float) -> "ThreadColor":
        return replace(self, percentage=float(percentage))

    def to_rgb_color(self) -> RGBColor:
        return RGBColor(self.red, self.green, self.blue)

    def to_dict(self) -> dict:
        return {
            "brand": self.catalog,
            "code": self.code,
            "name": self.name,
            "rgb": self.rgb,
            "hex": self.hex,
            "percentage": round(self.percentage, 2),
        }

    def __str__(self) -> str:
        return f"{self.catalog} ({self.code}) {self.percentage:.1f}%"


class ThreadCatalogSet(Mapping):
    """Ordered, read-only ``catalog name -> threads`` mapping.

    Iteration order is the scan order used by every matcher, so ties go to
    the catalog registered first.
    """

    def __init__(self, catalogs: Iterable[Tuple[str, Iterable[ThreadColor]]] = ()):
        items = catalogs.items() if isinstance(catalogs, Mapping) else catalogs
        self._catalogs: Dict[str, Tuple[ThreadColor, ...]] = {}
        for name, threads in items:
            threads = tuple(threads)
            seen = set()
            for t in threads:
                if t.code in seen:
                    raise ValueError(f"Duplicate thread code {t.code!r} in catalog {name!r}")
                seen.add(t.code)
            self._catalogs[name] = threads
        self._flat = tuple(t for threads in self._catalogs.values() for t in threads)

    def __getitem__(self, name: str) -> Tuple[ThreadColor, ...]:
        return self._catalogs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._catalogs)

    def __len__(self) -> int:
        return len(self._catalogs)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{k}: {len(v)}" for k, v in self._catalogs.items())
        return f"ThreadCatalogSet({sizes})"

    def catalogs(self) -> List[Tuple[ThreadColor, ...]]:
        return list(self._catalogs.values())

    def flattened(self) -> Tuple[ThreadColor, ...]:
        return self._flat

    def subset(self, names: Sequence[str]) -> "ThreadCatalogSet":
        missing = [n for n in names if n not in self._catalogs]
        if missing:
            raise KeyError(f"Unknown thread catalogs: {', '.join(missing)}")
        return ThreadCatalogSet((n, self._catalogs[n]) for n in names)

    def merged(self, other: "ThreadCatalogSet") -> "ThreadCatalogSet":
        combined = dict(self._catalogs)
        for name, threads in other.items():
            combined.setdefault(name, threads)
        return ThreadCatalogSet(combined)


def _catalog(name: str, rows: Iterable[Tuple[str, str, RGB]]) -> Tuple[str, Tuple[ThreadColor, ...]]:
    return name, tuple(ThreadColor(code=code, catalog=name, name=label, red=r, green=g, blue=b)
                       for code, label, (r, g, b) in rows)


# ---- Static manufacturer palettes (code, name, rgb) ----
MADEIRA_CLASSIC_40 = "Madeira Classic 40"
GUNOLD_COTTY_ZUSATZ = "Gunold COTTY-Zusatz"

_MADEIRA_CLASSIC_40: List[Tuple[str, str, RGB]] = [
    ("1000", "Snow White", (255, 255, 255)),
    ("1005", "Ivory", (250, 246, 230)),
    ("1061", "Pale Yellow", (255, 233, 128)),
    ("1072", "Lemon", (255, 242, 0)),
    ("1078", "Yellow", (255, 210, 0)),
    ("1114", "Gold", (204, 153, 0)),
    ("1147", "Orange", (255, 140, 0)),
    ("1183", "Burnt Orange", (198, 108, 58)),
    ("1222", "Beige", (232, 216, 186)),
    ("1243", "Light Tan", (214, 184, 141)),
    ("1267", "Tan", (196, 164, 124)),
    ("1305", "Camel", (190, 146, 93)),
    ("1311", "Brown", (145, 100, 60)),
    ("1334", "Dark Brown", (102, 71, 41)),
    ("1398", "Chocolate", (76, 50, 32)),
    ("1500", "Red", (220, 30, 40)),
    ("1624", "Magenta", (186, 80, 160)),
    ("1755", "Lavender", (176, 148, 209)),
    ("1805", "Sky Blue", (146, 206, 235)),
    ("1842", "Royal Blue", (54, 90, 210)),
    ("1860", "Navy", (0, 36, 102)),
    ("1952", "Emerald", (0, 160, 98)),
    ("1960", "Green", (0, 128, 0)),
    ("1999", "Black", (0, 0, 0)),
]

_GUNOLD_COTTY_ZUSATZ: List[Tuple[str, str, RGB]] = [
    ("10", "Golden Cream", (224, 177, 92)),
    ("68", "Kelly", (0, 124, 64)),
    ("11", "Nutmeg", (133, 91, 79)),
    ("69", "Date", (154, 107, 52)),
    ("12", "Old World Buff", (222, 180, 122)),
    ("70", "Medium Purple", (104, 70, 128)),
    ("13", "Auburn", (152, 78, 34)),
    ("71", "Saffron Orange", (202, 75, 39)),
    ("14", "Raspberry Ice", (185, 54, 52)),
    ("72", "MD Lime", (150, 162, 61)),
    ("15", "Dark Jade Green", (60, 102, 83)),
    ("73", "Dusk", (137, 121, 116)),
    ("16", "Dark Peach", (231, 127, 118)),
    ("17", "Blueball", (63, 113, 159)),
    ("18", "Claret", (130, 23, 73)),
    ("19", "French Raspberry Red", (93, 19, 54)),
    ("20", "Medium Rust Red", (155, 27, 43)),
    ("21", "Bright Peacock", (0, 162, 171)),
    ("22", "Green", (0, 101, 48)),
    ("23", "Buttercup", (255, 219, 124)),
    ("24", "Blue", (0, 71, 138)),
    ("25", "Perfect Ruby", (149, 44, 60)),
    ("26", "Dark Aqua Green", (0, 114, 130)),
    ("27", "Peacock", (0, 85, 114)),
    ("28", "Deep Plum", (176, 55, 117)),
    ("29", "Royal Blue", (37, 29, 90)),
    ("30", "Medium Purple", (165, 73, 118)),
    ("31", "Fire Blue", (0, 86, 133)),
    ("32", "Medium Blue/Green", (102, 118, 82)),
    ("33", "Grape Shake", (99, 39, 62)),
    ("34", "Avocado Medium Dark", (77, 88, 57)),
    ("35", "Green", (21, 93, 45)),
    ("36", "Green Gables", (30, 92, 46)),
    ("37", "Endicott Bay", (92, 137, 85)),
    ("38", "Olive", (74, 74, 62)),
    ("39", "Lemon", (250, 228, 69)),
    ("40", "Salmon Dark", (222, 1, 86)),
    ("41", "Boysenberry", (143, 48, 96)),
    ("42", "Dark Red", (149, 34, 100)),
    ("43", "Dark Purple", (124, 20, 91)),
    ("44", "Capri", (73, 143, 159)),
    ("45", "Peacock", (0, 94, 118)),
    ("46", "Dk. Navy", (41, 16, 31)),
    ("47", "Baked Apple", (173, 70, 64)),
    ("48", "Dark Turquoise", (0, 117, 123)),
    ("49", "Dark Sepia", (95, 39, 42)),
    ("50", "Blithe", (66, 146, 193)),
    ("51", "Dark Blue", (21, 71, 127)),
    ("52", "Burnt Sienna", (182, 93, 72)),
    ("53", "Peacock Blue dark", (0, 105, 143)),
    ("54", "Blue", (0, 77, 149)),
    ("55", "Deep Periwinkle", (120, 127, 189)),
    ("56", "Ruby Glint", (211, 80, 137)),
    ("57", "Rich Burgundy", (74, 28, 36)),
    ("58", "Baja Blue", (99, 105, 164)),
    ("59", "Teaberry", (201, 55, 90)),
    ("60", "Lafayette Rose", (216, 53, 77)),
    ("61", "Medium Lime", (77, 169, 69)),
    ("62", "Autumn Green", (140, 116, 53)),
    ("63", "Royal", (39, 64, 125)),
    ("64", "Amaranth Purple", (69, 28, 83)),
    ("65", "Huckleberry", (77, 47, 106)),
    ("66", "Redish Purple", (104, 35, 107)),
    ("67", "Meadow Green", (106, 138, 38)),
]

STATIC_CATALOGS = ThreadCatalogSet([
    _catalog(MADEIRA_CLASSIC_40, _MADEIRA_CLASSIC_40),
    _catalog(GUNOLD_COTTY_ZUSATZ, _GUNOLD_COTTY_ZUSATZ),
])


# ---- Machine thread charts shipped with pyembroidery ----
# charts reserve slot 0 for a placeholder entry
_PLACEHOLDER_LABELS = {UNKNOWN_THREAD_NAME, "Placeholder"}


def _threads_from_chart(name: str, chart: Iterable) -> Tuple[str, Tuple[ThreadColor, ...]]:
    threads: List[ThreadColor] = []
    seen = set()
    for t in chart:
        code = str(getattr(t, "catalog_number", "") or "").strip()
        label = str(getattr(t, "description", "") or "").strip()
        if not code or label in _PLACEHOLDER_LABELS or code in seen:
            continue
        seen.add(code)
        color = int(t.color) & 0xFFFFFF
        threads.append(ThreadColor(code=code, catalog=name, name=label,
                                   red=(color >> 16) & 0xFF, green=(color >> 8) & 0xFF, blue=color & 0xFF))
    return name, tuple(threads)


def load_machine_charts() -> ThreadCatalogSet:
    """Brother PEC and Janome JEF charts from pyembroidery."""
    from pyembroidery.EmbThreadPec import get_thread_set as pec_thread_set
    from pyembroidery.EmbThreadJef import get_thread_set as jef_thread_set

    charts = ThreadCatalogSet(
        (name, threads) for name, threads in (
            _threads_from_chart("Brother PEC", pec_thread_set()),
            _threads_from_chart("Janome JEF", jef_thread_set()),
        ) if threads
    )
    logger.debug("Loaded machine thread charts: %r", charts)
    return charts


_DEFAULT_CATALOGS: Optional[ThreadCatalogSet] = None


def load_default_catalogs(include_machine_charts: bool = True) -> ThreadCatalogSet:
    """Process-wide catalog set, built on first use."""
    global _DEFAULT_CATALOGS
    if not include_machine_charts:
        return STATIC_CATALOGS
    if _DEFAULT_CATALOGS is None:
        _DEFAULT_CATALOGS = STATIC_CATALOGS.merged(load_machine_charts())
    return _DEFAULT_CATALOGS
