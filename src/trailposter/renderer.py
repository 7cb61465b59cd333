"""renderer.py

Off-screen map rendering of the poster style: background, double-lit
hillshade, contour lines and the trail (glow + line) on top.

:class:`MapRenderer` is the contract the compositor drives.  Its two
awaitable steps are ``start`` (style load) and ``wait_idle`` (tiles
fetched and the frame rasterized); everything else is synchronous.

:class:`TerrainMapRenderer` implements it on terrain-RGB elevation
tiles.  Camera framing follows Web-Mercator ``fitBounds`` semantics on
512 px world tiles, so a given size, bounds and padding always produce
the same frame.  Tile I/O and rasterization run on the renderer's own
worker thread; the calling coroutine only suspends at the two await
points.  ``close`` cancels queued work and stops an in-flight render at
the next tile or raster pass.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from math import atan, cos, floor, log, log2, pi, radians, sinh, tan
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFilter

from .design import DEFAULT_DESIGN, ContourStyle, HillshadePass, PosterDesign
from .errors import RenderError, TileFetchError
from .models import TrailBounds, TrailGeometry
from .tiles import TileSource, decode_terrain_rgb

logger = logging.getLogger(__name__)

WORLD_TILE_SIZE = 512
MAX_ZOOM = 22.0
EARTH_CIRCUMFERENCE_M = 40075016.686


# ------------------------------------------------------------
# Style
# ------------------------------------------------------------

@dataclass(frozen=True)
class LineLayer:
    """A stroked line layer over the trail source.  Sizes are in pixels."""

    id: str
    color: str
    width: float
    opacity: float
    blur: float = 0.0


@dataclass(frozen=True)
class MapStyle:
    background_color: str
    hillshade: Tuple[HillshadePass, ...]
    contour: ContourStyle

    @classmethod
    def from_design(cls, design: PosterDesign = DEFAULT_DESIGN) -> "MapStyle":
        return cls(
            background_color=design.background_color,
            hillshade=design.hillshade,
            contour=design.contour,
        )


# ------------------------------------------------------------
# Camera (Web Mercator)
# ------------------------------------------------------------

def lnglat_to_world(lng: float, lat: float) -> Tuple[float, float]:
    """Normalized Web-Mercator coordinates in [0, 1], y growing southwards."""
    x = (lng + 180.0) / 360.0
    lat = max(min(lat, 85.051129), -85.051129)
    y = 0.5 - log(tan(pi / 4 + radians(lat) / 2)) / (2 * pi)
    return x, y


def world_to_lnglat(x: float, y: float) -> Tuple[float, float]:
    lng = x * 360.0 - 180.0
    lat = atan(sinh(pi * (1 - 2 * y))) * 180.0 / pi
    return lng, lat


@dataclass(frozen=True)
class Camera:
    """A view of ``width x height`` pixels centred on a world point at a zoom."""

    center_x: float
    center_y: float
    zoom: float
    width: int
    height: int

    @property
    def world_size(self) -> float:
        return WORLD_TILE_SIZE * 2 ** self.zoom

    def project(self, lng: float, lat: float) -> Tuple[float, float]:
        wx, wy = lnglat_to_world(lng, lat)
        ws = self.world_size
        return (
            (wx - self.center_x) * ws + self.width / 2,
            (wy - self.center_y) * ws + self.height / 2,
        )

    def unproject(self, px: float, py: float) -> Tuple[float, float]:
        ws = self.world_size
        return world_to_lnglat(
            self.center_x + (px - self.width / 2) / ws,
            self.center_y + (py - self.height / 2) / ws,
        )

    def meters_per_pixel(self) -> float:
        _, lat = world_to_lnglat(self.center_x, self.center_y)
        return EARTH_CIRCUMFERENCE_M * cos(radians(lat)) / self.world_size


def fit_bounds(
    bounds: TrailBounds, width: int, height: int, padding: float, max_zoom: float = MAX_ZOOM
) -> Camera:
    """Largest zoom at which *bounds* fit inside the view minus *padding* per side."""
    x0, y1 = lnglat_to_world(bounds.min_lng, bounds.min_lat)
    x1, y0 = lnglat_to_world(bounds.max_lng, bounds.max_lat)
    avail_w = max(width - 2 * padding, 1.0)
    avail_h = max(height - 2 * padding, 1.0)
    span_x = (x1 - x0) * WORLD_TILE_SIZE
    span_y = (y1 - y0) * WORLD_TILE_SIZE
    scales = [s for s in (avail_w / span_x if span_x > 0 else None,
                          avail_h / span_y if span_y > 0 else None) if s is not None]
    zoom = min(log2(min(scales)), max_zoom) if scales else max_zoom
    return Camera(
        center_x=(x0 + x1) / 2,
        center_y=(y0 + y1) / 2,
        zoom=zoom,
        width=width,
        height=height,
    )


# ------------------------------------------------------------
# Raster helpers
# ------------------------------------------------------------

def _rgb(color: str) -> np.ndarray:
    return np.array(ImageColor.getrgb(color)[:3], dtype=np.float32)


def _blend(base: np.ndarray, color: str, alpha: np.ndarray) -> np.ndarray:
    a = np.clip(alpha, 0.0, 1.0)[..., None]
    return base * (1.0 - a) + _rgb(color) * a


def hillshade_intensity(
    elevation: np.ndarray, meters_per_pixel: float, azimuth_deg: float
) -> Tuple[np.ndarray, np.ndarray]:
    """Directional illumination in [-1, 1] and slope angle in radians.

    Positive illumination faces the light; the azimuth is clockwise from
    the top of the view.
    """
    dz_dy, dz_dx = np.gradient(elevation, meters_per_pixel)
    dz_dn = -dz_dy  # image rows grow southwards
    az = radians(azimuth_deg)
    light_e, light_n = np.sin(az), np.cos(az)
    grad = np.hypot(dz_dx, dz_dn)
    illum = -(dz_dx * light_e + dz_dn * light_n) / np.sqrt(1.0 + grad ** 2)
    return illum, np.arctan(grad)


def contour_index(levels: np.ndarray) -> np.ndarray:
    """Contour ``index`` attribute: 10 every tenth level, 5 every fifth, else 1."""
    idx = np.ones_like(levels, dtype=np.int64)
    idx[levels % 5 == 0] = 5
    idx[levels % 10 == 0] = 10
    return idx


def contour_alpha(elevation: np.ndarray, style: ContourStyle) -> np.ndarray:
    """Per-pixel coverage of contour lines crossing between neighbouring pixels."""
    levels = np.floor(elevation / style.interval_m).astype(np.int64)
    crossed = np.zeros_like(levels)
    edge = np.zeros(levels.shape, dtype=bool)

    right = levels[:, :-1] != levels[:, 1:]
    crossed[:, :-1][right] = np.maximum(levels[:, :-1], levels[:, 1:])[right]
    edge[:, :-1] |= right

    down = levels[:-1, :] != levels[1:, :]
    crossed[:-1, :][down] = np.maximum(levels[:-1, :], levels[1:, :])[down]
    edge[:-1, :] |= down

    widths = np.full(levels.shape, style.default_width)
    idx = contour_index(crossed)
    for index, width in style.widths:
        widths[idx == index] = width
    return np.where(edge, style.opacity * np.minimum(widths, 1.0), 0.0)


def _stroke(
    size: Tuple[int, int], points: List[Tuple[float, float]], layer: LineLayer
) -> Image.Image:
    """Draw one round-capped, round-joined line layer on a transparent canvas."""
    color = ImageColor.getrgb(layer.color)[:3]
    canvas = Image.new("RGBA", size, color + (0,))
    draw = ImageDraw.Draw(canvas)
    width = max(1, int(round(layer.width)))
    radius = layer.width / 2
    if len(points) > 1:
        draw.line(points, fill=color + (255,), width=width, joint="curve")
    for x, y in (points[0], points[-1]):
        draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=color + (255,))
    if layer.blur > 0:
        canvas = canvas.filter(ImageFilter.GaussianBlur(layer.blur / 2))
    alpha = canvas.getchannel("A").point(lambda a: int(a * layer.opacity + 0.5))
    canvas.putalpha(alpha)
    return canvas


# ------------------------------------------------------------
# Renderer contract
# ------------------------------------------------------------

class MapRenderer(Protocol):
    async def start(self, style: MapStyle, width: int, height: int) -> None:
        """Prepare an off-screen surface and load the style."""
        ...

    def add_trail(self, geometry: TrailGeometry, layers: Sequence[LineLayer]) -> None:
        ...

    def fit_bounds(self, bounds: TrailBounds, padding: float, duration: float = 0.0) -> None:
        ...

    async def wait_idle(self) -> None:
        """Suspend until every tile is loaded and the frame is drawn."""
        ...

    def snapshot(self) -> Image.Image:
        """Copy of the rendered frame (RGB)."""
        ...

    def close(self) -> None:
        """Release the surface.  Safe to call more than once."""
        ...


# ------------------------------------------------------------
# Terrain renderer
# ------------------------------------------------------------

class TerrainMapRenderer:
    """Renders the poster map style from terrain-RGB elevation tiles.

    Example::

        renderer = TerrainMapRenderer(FlatTileSource())
        await renderer.start(MapStyle.from_design(), 800, 1000)
        renderer.add_trail(track.geometry, layers)
        renderer.fit_bounds(track.bounds, padding=72)
        await renderer.wait_idle()
        image = renderer.snapshot()
        renderer.close()
    """

    def __init__(
        self,
        tile_source: TileSource,
        max_texture_size: int = 4096,
        timeout_s: Optional[float] = None,
    ):
        self.tile_source = tile_source
        self.max_texture_size = max_texture_size
        self.timeout_s = timeout_s
        self.closed = False
        self._cancelled = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="trailposter-render")
        self._deadline: Optional[float] = None
        self._style: Optional[MapStyle] = None
        self._size: Tuple[int, int] = (0, 0)
        self._camera: Optional[Camera] = None
        self._trail: Optional[TrailGeometry] = None
        self._layers: Tuple[LineLayer, ...] = ()
        self._frame: Optional[Image.Image] = None

    # --------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RenderError("renderer was closed while rendering")

    def _require_open(self) -> None:
        if self.closed:
            raise RenderError("renderer has been closed")
        if self._style is None:
            raise RenderError("renderer has not been started")

    async def start(self, style: MapStyle, width: int, height: int) -> None:
        if self.closed:
            raise RenderError("renderer has been closed")
        if width <= 0 or height <= 0:
            raise RenderError(f"invalid render size {width}x{height}")
        if max(width, height) > self.max_texture_size:
            raise RenderError(
                f"render size {width}x{height} exceeds texture limit {self.max_texture_size}"
            )
        self._style = style
        self._size = (width, height)
        if self.timeout_s is not None:
            self._deadline = time.monotonic() + self.timeout_s
        await asyncio.sleep(0)

    def add_trail(self, geometry: TrailGeometry, layers: Sequence[LineLayer]) -> None:
        self._require_open()
        self._trail = geometry
        self._layers = tuple(layers)

    def fit_bounds(self, bounds: TrailBounds, padding: float, duration: float = 0.0) -> None:
        self._require_open()
        if duration:
            logger.debug("Ignoring fit_bounds duration %s; off-screen renders are static", duration)
        width, height = self._size
        self._camera = fit_bounds(bounds, width, height, padding)

    # --------------------------------------------------------

    def _tile_zoom(self, camera: Camera) -> int:
        return max(0, min(int(floor(camera.zoom + 0.5)), self.tile_source.max_zoom))

    async def _load_dem(self, camera: Camera) -> np.ndarray:
        """Fetch the covering tiles and resample them to one elevation per pixel."""
        z = self._tile_zoom(camera)
        ts = self.tile_source.tile_size
        n = 2 ** z
        scale = ts * n  # world pixels at tile zoom
        width, height = camera.width, camera.height

        # world-pixel coordinates of every output pixel centre at tile zoom
        step = scale / camera.world_size
        xs = (camera.center_x * scale) + (np.arange(width) + 0.5 - width / 2) * step
        ys = (camera.center_y * scale) + (np.arange(height) + 0.5 - height / 2) * step
        ys = np.clip(ys, 0, scale - 1)

        tx0, tx1 = int(floor(xs[0] / ts)), int(floor(xs[-1] / ts))
        ty0, ty1 = int(floor(ys[0] / ts)), int(floor(ys[-1] / ts))
        mosaic = np.zeros(((ty1 - ty0 + 1) * ts, (tx1 - tx0 + 1) * ts), dtype=np.float32)

        loop = asyncio.get_running_loop()
        for ty in range(ty0, ty1 + 1):
            for tx in range(tx0, tx1 + 1):
                self._check_cancelled()
                fetch = partial(self.tile_source.fetch, z, tx % n, ty, deadline=self._deadline)
                tile = await loop.run_in_executor(self._executor, fetch)
                r, c = (ty - ty0) * ts, (tx - tx0) * ts
                mosaic[r:r + ts, c:c + ts] = decode_terrain_rgb(tile)

        # bilinear sample
        fx = np.clip(xs - tx0 * ts - 0.5, 0, mosaic.shape[1] - 1)
        fy = np.clip(ys - ty0 * ts - 0.5, 0, mosaic.shape[0] - 1)
        x0 = np.floor(fx).astype(np.int64)
        y0 = np.floor(fy).astype(np.int64)
        x1 = np.minimum(x0 + 1, mosaic.shape[1] - 1)
        y1 = np.minimum(y0 + 1, mosaic.shape[0] - 1)
        wx = (fx - x0)[None, :]
        wy = (fy - y0)[:, None]
        top = mosaic[np.ix_(y0, x0)] * (1 - wx) + mosaic[np.ix_(y0, x1)] * wx
        bottom = mosaic[np.ix_(y1, x0)] * (1 - wx) + mosaic[np.ix_(y1, x1)] * wx
        return top * (1 - wy) + bottom * wy

    def _rasterize(self, camera: Camera, elevation: np.ndarray) -> Image.Image:
        style, trail, layers = self._style, self._trail, self._layers
        assert style is not None
        width, height = camera.width, camera.height
        mpp = camera.meters_per_pixel()

        base = np.empty((height, width, 3), dtype=np.float32)
        base[...] = _rgb(style.background_color)
        for shade in style.hillshade:
            self._check_cancelled()
            illum, slope = hillshade_intensity(elevation, mpp, shade.illumination_direction)
            k = shade.exaggeration
            base = _blend(base, shade.shadow_color, np.clip(-illum, 0, 1) * k)
            base = _blend(base, shade.highlight_color, np.clip(illum, 0, 1) * k)
            base = _blend(base, shade.accent_color, (slope / (pi / 2)) ** 2 * k * 0.5)
        self._check_cancelled()
        base = _blend(base, style.contour.color, contour_alpha(elevation, style.contour))

        frame = Image.fromarray(np.clip(base + 0.5, 0, 255).astype(np.uint8), "RGB").convert("RGBA")
        if trail is not None and layers:
            points = [camera.project(c[0], c[1]) for c in trail.coordinates]
            for layer in layers:
                self._check_cancelled()
                frame.alpha_composite(_stroke((width, height), points, layer))
        return frame.convert("RGB")

    async def wait_idle(self) -> None:
        self._require_open()
        if self._camera is None:
            width, height = self._size
            self._camera = Camera(0.5, 0.5, 0.0, width, height)
        camera = self._camera
        try:
            elevation = await self._load_dem(camera)
        except TileFetchError as e:
            raise RenderError(f"Map render failed: {e}") from e
        self._check_cancelled()
        loop = asyncio.get_running_loop()
        frame = await loop.run_in_executor(self._executor, self._rasterize, camera, elevation)
        if self.closed:
            raise RenderError("renderer was closed while rendering")
        self._frame = frame

    def snapshot(self) -> Image.Image:
        self._require_open()
        if self._frame is None:
            raise RenderError("renderer is not idle yet")
        return self._frame.copy()

    def close(self) -> None:
        self.closed = True
        self._cancelled.set()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._frame = None
        self._trail = None
        self._layers = ()
