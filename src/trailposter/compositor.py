"""compositor.py

Builds the finished poster raster: the map region rendered off-screen and
scaled into place, with the typography band composited underneath.

Poster frame (all sizes from the print size)::

    +------------------------------+
    |  padding (8% of width)       |
    |   +----------------------+   |
    |   |        map           |   |  map area = top 80% of the height
    |   +----------------------+   |
    |        text band             |  from map bottom edge to poster bottom
    +------------------------------+

Map renders above the renderer's texture limit are drawn at a reduced
size and upscaled into the frame.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Optional, Tuple

from PIL import Image

from .design import DEFAULT_DESIGN, PosterDesign
from .errors import RenderError, RenderTimeoutError, TileFetchError
from .geo import round_half_up
from .layout import PillowMeasurer, TextMeasurer, draw_text_layout, layout_poster_text
from .models import PosterConfig, TrailBounds, TrailGeometry
from .renderer import LineLayer, MapRenderer, MapStyle

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT_S = 30.0

RendererFactory = Callable[[], MapRenderer]


# ------------------------------------------------------------
# Frame geometry
# ------------------------------------------------------------

@dataclass(frozen=True)
class PosterFrame:
    """Pixel layout of one poster at one print size."""

    print_width: int
    print_height: int
    padding: int
    map_width: int
    map_height: int
    render_width: int
    render_height: int

    @property
    def map_box(self) -> Tuple[int, int, int, int]:
        return (self.padding, self.padding,
                self.padding + self.map_width, self.padding + self.map_height)

    @property
    def text_top(self) -> int:
        return self.padding + self.map_height

    @property
    def text_height(self) -> int:
        return self.print_height - self.text_top

    @property
    def upscaled(self) -> bool:
        return (self.render_width, self.render_height) != (self.map_width, self.map_height)


def compute_frame(
    print_width: int, print_height: int, design: PosterDesign = DEFAULT_DESIGN
) -> PosterFrame:
    """Lay out the map region and texture-capped render size for a print size."""
    if print_width <= 0 or print_height <= 0:
        raise ValueError(f"invalid print size {print_width}x{print_height}")
    padding = int(round_half_up(print_width * design.poster_padding_ratio))
    map_area_height = int(round_half_up(print_height * design.map_area_ratio))
    map_width = print_width - padding * 2
    map_height = map_area_height - padding * 2
    if map_width <= 0 or map_height <= 0:
        raise ValueError(f"print size {print_width}x{print_height} leaves no map area")

    scale = min(1.0, design.max_texture_size / max(map_width, map_height))
    return PosterFrame(
        print_width=print_width,
        print_height=print_height,
        padding=padding,
        map_width=map_width,
        map_height=map_height,
        render_width=int(round_half_up(map_width * scale)),
        render_height=int(round_half_up(map_height * scale)),
    )


def trail_layers(
    trail_color: str, render_width: int, design: PosterDesign = DEFAULT_DESIGN
) -> Tuple[LineLayer, LineLayer]:
    """Glow and line layers, sized for *render_width*."""
    scale = render_width / design.reference_width
    t = design.trail
    glow = LineLayer(
        id="trail-glow",
        color=trail_color,
        width=t.glow_width * scale * 0.5,
        opacity=t.glow_opacity,
        blur=t.glow_blur * scale * 0.5,
    )
    line = LineLayer(
        id="trail-line",
        color=trail_color,
        width=t.width * scale * 0.5,
        opacity=t.opacity,
    )
    return glow, line


# ------------------------------------------------------------
# Map render
# ------------------------------------------------------------

async def _drive(
    renderer: MapRenderer,
    geometry: TrailGeometry,
    bounds: TrailBounds,
    trail_color: str,
    width: int,
    height: int,
    design: PosterDesign,
) -> Image.Image:
    await renderer.start(MapStyle.from_design(design), width, height)
    renderer.add_trail(geometry, trail_layers(trail_color, width, design))
    padding = design.map_padding_px * (width / design.reference_width)
    renderer.fit_bounds(bounds, padding=padding, duration=0.0)
    await renderer.wait_idle()
    return renderer.snapshot()


async def render_map_image(
    geometry: TrailGeometry,
    bounds: TrailBounds,
    trail_color: str,
    width: int,
    height: int,
    renderer_factory: RendererFactory,
    design: PosterDesign = DEFAULT_DESIGN,
    timeout_s: float = DEFAULT_RENDER_TIMEOUT_S,
) -> Image.Image:
    """Render the map region with a fresh renderer, releasing it on every path.

    Raises:
        RenderTimeoutError: The renderer did not become idle within *timeout_s*.
        RenderError: The renderer reported a fault.
    """
    renderer = renderer_factory()
    try:
        return await asyncio.wait_for(
            _drive(renderer, geometry, bounds, trail_color, width, height, design),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError:
        logger.error("Map render timed out after %ss", timeout_s)
        raise RenderTimeoutError(timeout_s) from None
    except TileFetchError as e:
        logger.error("Map render failed: %s", e)
        raise RenderError(f"Map render failed: {e}") from e
    except RenderError as e:
        logger.error("Map render failed: %s", e)
        raise
    except Exception as e:
        logger.exception("Map renderer raised unexpectedly")
        raise RenderError(f"Map render failed: {e}") from e
    finally:
        renderer.close()


# ------------------------------------------------------------
# Compositing
# ------------------------------------------------------------

def composite_poster(
    map_image: Image.Image,
    config: PosterConfig,
    frame: PosterFrame,
    design: PosterDesign = DEFAULT_DESIGN,
    measurer: Optional[TextMeasurer] = None,
    font_path: Optional[str] = None,
) -> Image.Image:
    """Place the map and draw the text band on an opaque white RGB canvas."""
    canvas = Image.new("RGB", (frame.print_width, frame.print_height), design.canvas_color)
    if map_image.size != (frame.map_width, frame.map_height):
        map_image = map_image.resize((frame.map_width, frame.map_height), Image.Resampling.LANCZOS)
    canvas.paste(map_image.convert("RGB"), (frame.padding, frame.padding))

    layout = layout_poster_text(
        config,
        frame.print_width,
        frame.text_top,
        frame.text_height,
        measurer or PillowMeasurer(font_path),
        design,
    )
    draw_text_layout(canvas, layout, font_path)
    return canvas


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


async def render_poster_image(
    config: PosterConfig,
    geometry: TrailGeometry,
    bounds: TrailBounds,
    print_width: int,
    print_height: int,
    renderer_factory: RendererFactory,
    design: PosterDesign = DEFAULT_DESIGN,
    timeout_s: float = DEFAULT_RENDER_TIMEOUT_S,
    font_path: Optional[str] = None,
) -> Image.Image:
    """Full poster at ``print_width x print_height`` as an RGB image."""
    frame = compute_frame(print_width, print_height, design)
    if frame.upscaled:
        logger.info(
            "Map %dx%d exceeds texture limit; rendering at %dx%d and upscaling",
            frame.map_width, frame.map_height, frame.render_width, frame.render_height,
        )
    map_image = await render_map_image(
        geometry,
        bounds,
        config.trail_color,
        frame.render_width,
        frame.render_height,
        renderer_factory,
        design,
        timeout_s,
    )
    return composite_poster(map_image, config, frame, design, font_path=font_path)


async def render_poster_png(
    config: PosterConfig,
    geometry: TrailGeometry,
    bounds: TrailBounds,
    print_width: int,
    print_height: int,
    renderer_factory: RendererFactory,
    design: PosterDesign = DEFAULT_DESIGN,
    timeout_s: float = DEFAULT_RENDER_TIMEOUT_S,
    font_path: Optional[str] = None,
) -> bytes:
    """Same as :func:`render_poster_image`, encoded as PNG."""
    image = await render_poster_image(
        config, geometry, bounds, print_width, print_height,
        renderer_factory, design, timeout_s, font_path,
    )
    return encode_png(image)
