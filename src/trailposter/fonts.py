"""fonts.py

TrueType font discovery for poster text.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from PIL import ImageFont

logger = logging.getLogger(__name__)

PILFont = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]

# Serif faces closest to Cinzel first.
_SYSTEM_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSerif-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/Library/Fonts/Georgia Bold.ttf",
    "/System/Library/Fonts/Supplemental/Georgia Bold.ttf",
    "C:/Windows/Fonts/georgiab.ttf",
)

_FONT_NAMES = ("Cinzel-SemiBold", "DejaVuSerif-Bold", "LiberationSerif-Bold", "DejaVuSans-Bold")


@lru_cache(maxsize=8)
def find_font(preferred: Optional[str] = None) -> Optional[str]:
    """Probe for a usable TrueType font and return its path or name.

    Args:
        preferred: Explicit font path tried before any system candidate.

    Returns:
        A value accepted by ``ImageFont.truetype``, or None.
    """
    candidates = [preferred] if preferred else []
    candidates += [p for p in _SYSTEM_FONT_CANDIDATES if Path(p).exists()]
    candidates += list(_FONT_NAMES)
    for candidate in candidates:
        try:
            ImageFont.truetype(candidate, 12)
            return candidate
        except OSError:
            continue
    return None


@lru_cache(maxsize=64)
def load_font(size: int, preferred: Optional[str] = None) -> PILFont:
    """Load the poster font at *size* px, cached per (size, font)."""
    path = find_font(preferred)
    if path is not None:
        return ImageFont.truetype(path, size)
    logger.warning("No TrueType font found; using Pillow's default font")
    return ImageFont.load_default(size=size)
