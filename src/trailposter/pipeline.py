"""pipeline.py

End-to-end poster rendering: track text in, PNG bytes out.

Each call builds its own renderer through the factory and releases it
before returning, so repeated calls share no state.  Concurrent calls are
not deduplicated; callers that re-render while a render is in flight must
serialize or drop the older request themselves.

Usage::

    import asyncio
    from trailposter.pipeline import default_config, render_print
    from trailposter.track_parser import parse_gpx_file

    track = parse_gpx_file("hike.gpx")
    config = default_config(track, file_name="hike.gpx")
    png = asyncio.run(render_print(config, track, "18x24"))
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from .compositor import RendererFactory, render_poster_png
from .design import DEFAULT_DESIGN, PREVIEW_SIZE_KEY, PosterDesign, get_size
from .models import ParsedTrack, PosterConfig
from .renderer import TerrainMapRenderer
from .settings import Settings, get_settings
from .tiles import CachedTileSource, FlatTileSource, MapboxTileSource, TileSource
from .track_parser import parse_gpx_string

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Renderer wiring
# ------------------------------------------------------------

def tile_source_from_settings(settings: Settings) -> TileSource:
    """Live Mapbox tiles when a token is configured, flat terrain otherwise."""
    if not settings.mapbox_token:
        logger.info("No Mapbox token configured; rendering without terrain relief")
        return FlatTileSource()
    source: TileSource = MapboxTileSource(settings.mapbox_token)
    if settings.tile_cache_dir is not None:
        source = CachedTileSource(source, settings.tile_cache_dir)
    return source


def default_renderer_factory(
    settings: Optional[Settings] = None, design: PosterDesign = DEFAULT_DESIGN
) -> RendererFactory:
    settings = settings or get_settings()
    source = tile_source_from_settings(settings)

    def factory() -> TerrainMapRenderer:
        return TerrainMapRenderer(
            source,
            max_texture_size=design.max_texture_size,
            timeout_s=settings.render_timeout_s,
        )

    return factory


# ------------------------------------------------------------
# Config seeding
# ------------------------------------------------------------

def title_from_file_name(file_name: str) -> str:
    """``"mt-tam_loop.gpx"`` -> ``"mt tam loop"``."""
    return re.sub(r"[-_]", " ", Path(file_name).name.replace(".gpx", "", 1))


def default_config(track: ParsedTrack, file_name: Optional[str] = None) -> PosterConfig:
    """Initial poster config seeded from the track's statistics."""
    base = PosterConfig()
    gain = track.stats.elevation_gain_ft
    title = base.title
    if file_name:
        title = title_from_file_name(file_name) or base.title
    return base.model_copy(
        update={
            "title": title,
            "distance": str(track.stats.distance_miles),
            "elevation": f"{gain:,}" if gain > 0 else "",
        }
    )


# ------------------------------------------------------------
# Rendering
# ------------------------------------------------------------

async def render_poster(
    config: PosterConfig,
    track: ParsedTrack,
    print_width: int,
    print_height: int,
    renderer_factory: Optional[RendererFactory] = None,
    design: PosterDesign = DEFAULT_DESIGN,
    settings: Optional[Settings] = None,
) -> bytes:
    """Render *track* with *config* to PNG bytes at the given pixel size.

    Raises:
        RenderTimeoutError: The map did not finish rendering in time.
        RenderError: The map renderer failed.
    """
    settings = settings or get_settings()
    factory = renderer_factory or default_renderer_factory(settings, design)
    if track.is_sample:
        logger.info("Rendering poster from the sample trail")
    return await render_poster_png(
        config,
        track.geometry,
        track.bounds,
        print_width,
        print_height,
        factory,
        design,
        timeout_s=settings.render_timeout_s,
        font_path=str(settings.font_path) if settings.font_path else None,
    )


async def render_print(
    config: PosterConfig,
    track: ParsedTrack,
    size_key: str,
    renderer_factory: Optional[RendererFactory] = None,
    design: PosterDesign = DEFAULT_DESIGN,
    settings: Optional[Settings] = None,
) -> bytes:
    """Render at the print resolution of a catalog size."""
    size = get_size(size_key)
    if size is None:
        raise KeyError(f"unknown poster size {size_key!r}")
    return await render_poster(
        config, track, size.print_width, size.print_height,
        renderer_factory, design, settings,
    )


async def render_preview(
    config: PosterConfig,
    track: ParsedTrack,
    renderer_factory: Optional[RendererFactory] = None,
    design: PosterDesign = DEFAULT_DESIGN,
    settings: Optional[Settings] = None,
) -> bytes:
    """Test render at the fixed 18x24 print resolution."""
    return await render_print(
        config, track, PREVIEW_SIZE_KEY, renderer_factory, design, settings
    )


async def render_from_gpx(
    gpx_text: Optional[str],
    config: Optional[PosterConfig] = None,
    size_key: str = PREVIEW_SIZE_KEY,
    renderer_factory: Optional[RendererFactory] = None,
    design: PosterDesign = DEFAULT_DESIGN,
    settings: Optional[Settings] = None,
) -> bytes:
    """Parse raw GPX text (or None for the sample trail) and render it."""
    track = parse_gpx_string(gpx_text)
    config = config or default_config(track)
    return await render_print(config, track, size_key, renderer_factory, design, settings)
