"""design.py

Immutable poster design constants and the static print-size catalog.

Everything here is built once at import time and handed to the layout
engine, renderer and compositor explicitly.  Nothing mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .models import PosterSizeOption

# ------------------------------------------------------------
# Trail palette
# ------------------------------------------------------------

TRAIL_COLORS: Tuple[Tuple[str, str], ...] = (
    ("Gold", "#d4a035"),
    ("Copper", "#c4704b"),
    ("Forest", "#2d6a4f"),
    ("Ocean", "#2563eb"),
    ("Crimson", "#dc2626"),
    ("Slate", "#64748b"),
    ("White", "#ffffff"),
    ("Black", "#1a1a1a"),
)


# ------------------------------------------------------------
# Design values
# ------------------------------------------------------------

@dataclass(frozen=True)
class HillshadePass:
    """One hillshade layer of the double-lit relief."""

    exaggeration: float
    illumination_direction: float
    shadow_color: str
    highlight_color: str
    accent_color: str


@dataclass(frozen=True)
class TrailStyle:
    default_color: str = "#d4a035"
    width: float = 2.0
    opacity: float = 0.75
    glow_width: float = 6.0
    glow_opacity: float = 0.15
    glow_blur: float = 4.0


@dataclass(frozen=True)
class ContourStyle:
    color: str = "#c0c0c0"
    opacity: float = 0.4
    interval_m: float = 10.0
    # contour index -> line width in px; anything else uses default_width
    widths: Tuple[Tuple[int, float], ...] = ((5, 0.8), (10, 1.0))
    default_width: float = 0.4

    def width_for(self, index: int) -> float:
        for idx, width in self.widths:
            if idx == index:
                return width
        return self.default_width


@dataclass(frozen=True)
class TextStyle:
    title_color: str = "#1a1a1a"
    location_color: str = "#6b7280"
    stats_color: str = "#9ca3af"
    title_size_ratio: float = 0.045
    location_size_ratio: float = 0.025
    stats_size_ratio: float = 0.02
    title_spacing_ratio: float = 0.15
    location_spacing_ratio: float = 0.15
    stats_spacing_ratio: float = 0.1
    title_line_height: float = 1.35
    max_width_ratio: float = 0.75
    stats_separator: str = "  ·  "


@dataclass(frozen=True)
class PosterDesign:
    """Every proportion and colour that shapes a rendered poster."""

    background_color: str = "#f5f5f5"
    canvas_color: str = "#ffffff"
    hillshade: Tuple[HillshadePass, ...] = (
        HillshadePass(1.0, 315.0, "#2a2a2a", "#ffffff", "#1a1a1a"),
        HillshadePass(0.5, 135.0, "#3a3a3a", "#fafafa", "#2a2a2a"),
    )
    contour: ContourStyle = field(default_factory=ContourStyle)
    trail: TrailStyle = field(default_factory=TrailStyle)
    text: TextStyle = field(default_factory=TextStyle)
    # Layout proportions
    poster_padding_ratio: float = 0.08
    map_area_ratio: float = 0.80
    map_padding_px: float = 36.0
    reference_width: float = 400.0
    max_texture_size: int = 4096


DEFAULT_DESIGN = PosterDesign()


# ------------------------------------------------------------
# Size catalog
# ------------------------------------------------------------

POSTER_SIZES: Tuple[PosterSizeOption, ...] = (
    PosterSizeOption(
        key="12x18",
        label='12" × 18"',
        subtitle="Perfect for desks",
        price_cents=2900,
        print_width=2400,
        print_height=3600,
        external_variant_id=3876,
    ),
    PosterSizeOption(
        key="18x24",
        label='18" × 24"',
        subtitle="Most popular",
        price_cents=3900,
        print_width=3600,
        print_height=4800,
        external_variant_id=1,
    ),
    PosterSizeOption(
        key="24x36",
        label='24" × 36"',
        subtitle="Statement piece",
        price_cents=4900,
        print_width=4800,
        print_height=7200,
        external_variant_id=2,
    ),
)

_SIZES_BY_KEY: Dict[str, PosterSizeOption] = {s.key: s for s in POSTER_SIZES}

# Test renders use the 18x24 print resolution.
PREVIEW_SIZE_KEY = "18x24"


def get_size(key: str) -> Optional[PosterSizeOption]:
    """Look up a catalog entry by key, or None if unknown."""
    return _SIZES_BY_KEY.get(key)
