"""
Layout vocabulary: internal layout names <-> external layout codes, and
resolution of the cell each widget occupies.
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from deskboard.models import Widget
from deskboard.widget_kinds import defaults_for, widget_title
from deskboard.wire import WidgetPlacement

FREE_FLOATING = "free-floating"

# Internal name -> external code. The reverse table is derived so the two
# can never drift apart.
LAYOUT_TO_EXTERNAL: Dict[str, str] = {
    FREE_FLOATING: FREE_FLOATING,

    "1-grid": "g11",

    "2-grid-vertical": "g21",
    "2-grid-horizontal": "g22",

    "3-grid-left-large": "g34",
    "3-grid-right-large": "g36",
    "3-grid-top-large": "g35",
    "3-grid-bottom-large": "g33",
    "3-grid-rows": "g31",
    "3-grid-columns": "g32",

    "4-grid": "g41",
    "4-grid-columns": "g42",
    "4-grid-rows": "g43",
    "4-grid-top-large": "g44",
    "4-grid-left-large": "g45",
    "4-grid-right-large": "g46",
    "4-grid-bottom-large": "g47",

    "5-grid-rows": "g51",
    "5-grid-columns": "g52",
    "5-grid-complex": "g53",

    "6-grid-2x3": "g61",
    "6-grid-3x2": "g62",
    "6-grid-left-large": "g64",

    "7-grid-complex1": "g71",
    "7-grid-complex2": "g72",
    "7-grid-left": "g73",
    "7-grid-large": "g74",

    "8-grid-2x4": "g81",
    "8-grid-4x2": "g82",
    "8-grid-columns": "g83",
    "8-grid-rows": "g84",

    "9-grid": "g91",

    "12-grid-3x4": "g121",
    "12-grid-4x3": "g122",

    "16-grid": "g161",

    "24-grid-4x6": "g241",
    "24-grid-6x4": "g242",
    "24-grid-3x8": "g243",
    "24-grid-8x3": "g244",

    "28-grid-4x7": "g281",
    "28-grid-7x4": "g282",

    "32-grid-4x8": "g321",
    "32-grid-8x4": "g322",
}

EXTERNAL_TO_LAYOUT: Dict[str, str] = {code: name for name, code in LAYOUT_TO_EXTERNAL.items()}


# ── Translation ───────────────────────────────────────

def to_external(layout: str) -> str:
    """Internal layout name -> external code. Unknown names pass through."""
    return LAYOUT_TO_EXTERNAL.get(layout, layout)


def from_external(code: str) -> str:
    """External code -> internal layout name. Unknown codes pass through."""
    return EXTERNAL_TO_LAYOUT.get(code, code)


def layout_type_for_api(layout: str) -> str:
    return FREE_FLOATING if layout == FREE_FLOATING else "grid"


def normalize_layout_type(layout_type: Optional[str], is_free_floating: bool = False) -> str:
    """Reported layoutType -> 'grid' or 'free-floating'. 'Details' is a legacy grid spelling."""
    if layout_type == FREE_FLOATING or (not layout_type and is_free_floating):
        return FREE_FLOATING
    return "grid"


# ── Area resolution ───────────────────────────────────

def parse_filled_areas(raw: Optional[str]) -> List[str]:
    """'g22_1,,g22_2' -> ['g22_1', 'g22_2']."""
    if not raw:
        return []
    return [area for area in raw.split(",") if area.strip() != ""]


def _raw_position(widget: Any) -> Any:
    if isinstance(widget, Mapping):
        return widget.get("position")
    return getattr(widget, "position", None)


def resolve_widget_area(widget: Any, layout_type: str, index: int, filled_areas: Sequence[str]) -> str:
    """
    Decide which cell a fetched widget owns.

    The widget's own position wins; otherwise the template's filled areas are
    matched by fetch order; otherwise the widget gets ``area-{index+1}``.
    """
    position = _raw_position(widget)
    if isinstance(position, str) and position.strip() != "":
        return position
    if filled_areas and len(filled_areas) > index:
        return filled_areas[index]
    return f"area-{index + 1}"


_GRID_CELL = re.compile(r"^g\d+_(\d+)")
_TABBED_CELL = re.compile(r"^gt\d+_(\d+)")
_AREA = re.compile(r"^area-(\d+)")


def find_widget_at(widgets: Sequence[Widget], position: str) -> Optional[Widget]:
    """
    Find the widget occupying ``position``.

    Grid cells (``g22_1``) and tabbed cells (``gt22_1``) are equivalent to the
    numbered fallback ``area-1`` and vice versa.
    """
    for w in widgets:
        if w.position == position:
            return w

    for pattern in (_GRID_CELL, _TABBED_CELL):
        m = pattern.match(position)
        if m:
            area = f"area-{m.group(1)}"
            for w in widgets:
                if w.position == area:
                    return w

    m = _AREA.match(position)
    if m:
        number = m.group(1)
        for cell in (re.compile(rf"^g\d+_{number}$"), re.compile(rf"^gt\d+_{number}$")):
            for w in widgets:
                if cell.match(w.position):
                    return w
    return None


# ── Placement capture ─────────────────────────────────

def capture_placements(widgets: Sequence[Widget], layout: str) -> Tuple[List[WidgetPlacement], str]:
    """
    Build the create-request placements and the filledAreas string for a
    template's widgets.
    """
    placements: List[WidgetPlacement] = []
    filled: List[str] = []
    free_floating = layout == FREE_FLOATING

    for index, widget in enumerate(widgets):
        defaults = defaults_for(widget.name)
        settings = widget.settings
        placement = WidgetPlacement(
            widget_title=widget_title(widget.name),
            module=settings.module or defaults.module,
            symbols=settings.symbols or defaults.symbols,
            additional_settings=settings.additional_settings or defaults.additional_settings,
            z_index=10 + index,
        )
        coords = settings.coordinates
        if coords is not None:
            placement.top_pos = round(coords.top)
            placement.left_pos = round(coords.left)
            placement.height = round(coords.height)
            placement.width = round(coords.width)
        placements.append(placement)
        filled.append("area-1" if free_floating else widget.position)

    return placements, ",".join(filled)
