"""layout.py

Typography layout for the poster's bottom text band.

:func:`layout_poster_text` is pure: it turns a canvas width, a text band
and a :class:`PosterConfig` into positioned, letter-spaced
:class:`TextLine` instructions.  Glyph widths come from a
:class:`TextMeasurer`, so the same layout can be computed against real
Pillow fonts or a fixed-advance measurer.  :func:`draw_text_layout`
paints a layout onto a Pillow image.

All vertical positions are text *middles*; all horizontal positions are
centres.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Protocol, Tuple

from PIL import Image, ImageDraw

from .design import DEFAULT_DESIGN, PosterDesign
from .fonts import load_font
from .geo import round_half_up
from .models import PosterConfig

logger = logging.getLogger(__name__)

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


# ------------------------------------------------------------
# Measuring
# ------------------------------------------------------------

class TextMeasurer(Protocol):
    def measure(self, text: str, size: int) -> float:
        """Advance width of *text* at font size *size*, in pixels."""
        ...


class PillowMeasurer:
    """Measures text with the poster TrueType font."""

    def __init__(self, font_path: Optional[str] = None):
        self.font_path = font_path

    def measure(self, text: str, size: int) -> float:
        return float(load_font(size, self.font_path).getlength(text))


def spaced_width(measurer: TextMeasurer, text: str, size: int, spacing: float) -> float:
    """Width of *text* with *spacing* added between (not after) glyphs."""
    if not text:
        return 0.0
    return measurer.measure(text, size) + spacing * (len(text) - 1)


def wrap_spaced_text(
    measurer: TextMeasurer, text: str, size: int, max_width: float, spacing: float
) -> List[str]:
    """Greedy word wrap; words are never split, so one long word may overflow."""
    lines: List[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if spaced_width(measurer, candidate, size, spacing) > max_width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


# ------------------------------------------------------------
# Text content
# ------------------------------------------------------------

def format_date(value: str) -> str:
    """``"2026-01-15"`` -> ``"January 15, 2026"``; empty or invalid -> ``""``."""
    if not value:
        return ""
    try:
        d = date.fromisoformat(value.strip())
    except ValueError:
        logger.debug("Ignoring unparseable poster date %r", value)
        return ""
    return f"{_MONTHS[d.month - 1]} {d.day}, {d.year}"


def build_stats_line(config: PosterConfig, separator: str = "  ·  ") -> str:
    items = []
    if config.distance:
        items.append(f"{config.distance} MI")
    if config.elevation:
        items.append(f"{config.elevation} FT")
    formatted = format_date(config.date)
    if formatted:
        items.append(formatted.upper())
    return separator.join(items)


# ------------------------------------------------------------
# Layout
# ------------------------------------------------------------

@dataclass(frozen=True)
class TextLine:
    role: str  # "title", "location" or "stats"
    text: str
    center_x: float
    y: float
    font_size: int
    letter_spacing: float
    color: str

    def glyph_positions(self, measurer: TextMeasurer) -> List[Tuple[str, float]]:
        """Centre x of every glyph, advancing by glyph width plus spacing."""
        total = spaced_width(measurer, self.text, self.font_size, self.letter_spacing)
        x = self.center_x - total / 2
        out: List[Tuple[str, float]] = []
        for ch in self.text:
            w = measurer.measure(ch, self.font_size)
            out.append((ch, x + w / 2))
            x += w + self.letter_spacing
        return out


@dataclass(frozen=True)
class TextLayout:
    width: int
    top: float
    height: float
    lines: Tuple[TextLine, ...]

    def by_role(self, role: str) -> List[TextLine]:
        return [line for line in self.lines if line.role == role]


def layout_poster_text(
    config: PosterConfig,
    canvas_width: int,
    band_top: float,
    band_height: float,
    measurer: TextMeasurer,
    design: PosterDesign = DEFAULT_DESIGN,
) -> TextLayout:
    """Place title, optional location and optional stats line in the text band.

    Args:
        config: Poster text and colour.
        canvas_width: Full poster width in pixels; all sizes derive from it.
        band_top: Top of the text band in pixels.
        band_height: Height of the text band in pixels.
        measurer: Glyph width source.
        design: Proportions and colours.

    Returns:
        A :class:`TextLayout` whose lines are in drawing order.
    """
    style = design.text
    center_x = canvas_width / 2
    max_width = canvas_width * style.max_width_ratio
    lines: List[TextLine] = []

    title_size = int(round_half_up(canvas_width * style.title_size_ratio))
    title_spacing = title_size * style.title_spacing_ratio
    title_lines = wrap_spaced_text(
        measurer, config.title.upper(), title_size, max_width, title_spacing
    )
    line_height = title_size * style.title_line_height
    y = band_top + band_height * 0.25 - len(title_lines) * line_height / 2
    for text in title_lines:
        y += line_height
        lines.append(
            TextLine("title", text, center_x, y, title_size, title_spacing, style.title_color)
        )

    next_y = y + line_height * 0.8

    if config.location:
        loc_size = int(round_half_up(canvas_width * style.location_size_ratio))
        lines.append(
            TextLine(
                "location",
                config.location.upper(),
                center_x,
                next_y,
                loc_size,
                loc_size * style.location_spacing_ratio,
                style.location_color,
            )
        )
        next_y += loc_size * 2

    stats_text = build_stats_line(config, style.stats_separator)
    if stats_text:
        stats_size = int(round_half_up(canvas_width * style.stats_size_ratio))
        lines.append(
            TextLine(
                "stats",
                stats_text,
                center_x,
                next_y,
                stats_size,
                stats_size * style.stats_spacing_ratio,
                style.stats_color,
            )
        )

    return TextLayout(width=canvas_width, top=band_top, height=band_height, lines=tuple(lines))


# ------------------------------------------------------------
# Drawing
# ------------------------------------------------------------

def draw_text_layout(
    image: Image.Image, layout: TextLayout, font_path: Optional[str] = None
) -> None:
    """Paint every line of *layout* onto *image*, glyph by glyph."""
    draw = ImageDraw.Draw(image)
    measurer = PillowMeasurer(font_path)
    for line in layout.lines:
        font = load_font(line.font_size, font_path)
        for ch, x in line.glyph_positions(measurer):
            draw.text((x, line.y), ch, font=font, fill=line.color, anchor="mm")
