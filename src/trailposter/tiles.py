"""tiles.py

Terrain-RGB elevation tile sources for the map renderer.

``MapboxTileSource`` fetches live tiles over HTTP; ``CachedTileSource``
keeps a copy of every tile on disk; ``FlatTileSource`` produces sea-level
tiles so posters can be rendered offline (the relief is then blank but
layout and trail are unchanged).

Usage::

    from trailposter.tiles import CachedTileSource, MapboxTileSource

    source = CachedTileSource(MapboxTileSource(token), Path("~/.cache/tiles"))
    elevations = decode_terrain_rgb(source.fetch(12, 655, 1583))
"""

from __future__ import annotations

import logging
import time
from io import BytesIO
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from .errors import TileFetchError

logger = logging.getLogger(__name__)

MAPBOX_TILE_URL = "https://api.mapbox.com/v4/{tileset}/{z}/{x}/{y}@2x.pngraw"
TERRAIN_DEM_TILESET = "mapbox.mapbox-terrain-dem-v1"


class TileSource(Protocol):
    tileset: str
    tile_size: int
    max_zoom: int

    def fetch(self, z: int, x: int, y: int, deadline: Optional[float] = None) -> Image.Image:
        """Return the terrain-RGB tile at ``z/x/y``.  Raises TileFetchError.

        *deadline* is a ``time.monotonic()`` instant; sources that block on
        I/O must give up once it has passed.
        """
        ...


# ------------------------------------------------------------
# Terrain-RGB encoding
# ------------------------------------------------------------

def decode_terrain_rgb(tile: Image.Image) -> np.ndarray:
    """Elevation in meters: ``-10000 + (R * 65536 + G * 256 + B) * 0.1``."""
    rgb = np.asarray(tile.convert("RGB"), dtype=np.float64)
    return -10000.0 + (rgb[..., 0] * 65536.0 + rgb[..., 1] * 256.0 + rgb[..., 2]) * 0.1


def encode_terrain_rgb(elevation_m: float) -> tuple[int, int, int]:
    """Terrain-RGB pixel for a single elevation (inverse of the decoder)."""
    v = int(round((elevation_m + 10000.0) / 0.1))
    return (v >> 16) & 0xFF, (v >> 8) & 0xFF, v & 0xFF


# ------------------------------------------------------------
# Sources
# ------------------------------------------------------------

class FlatTileSource:
    """Uniform elevation everywhere; no network access."""

    tileset = "flat"
    max_zoom = 14

    def __init__(self, elevation_m: float = 0.0, tile_size: int = 512):
        self.tile_size = tile_size
        self._color = encode_terrain_rgb(elevation_m)

    def fetch(self, z: int, x: int, y: int, deadline: Optional[float] = None) -> Image.Image:
        return Image.new("RGB", (self.tile_size, self.tile_size), self._color)


class MapboxTileSource:
    """Mapbox raster-DEM tiles (512 px, terrain-RGB, max zoom 14)."""

    tile_size = 512
    max_zoom = 14

    def __init__(
        self,
        access_token: str,
        tileset: str = TERRAIN_DEM_TILESET,
        max_retries: int = 3,
        timeout_s: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.access_token = access_token
        self.tileset = tileset
        self.max_retries = max_retries
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def _remaining(self, z: int, x: int, y: int, deadline: Optional[float]) -> float:
        """Seconds left for this tile; raises once the deadline has passed."""
        if deadline is None:
            return self.timeout_s
        left = deadline - time.monotonic()
        if left <= 0:
            raise TileFetchError(f"Tile {z}/{x}/{y} abandoned: render deadline passed")
        return min(self.timeout_s, left)

    def fetch(self, z: int, x: int, y: int, deadline: Optional[float] = None) -> Image.Image:
        url = MAPBOX_TILE_URL.format(tileset=self.tileset, z=z, x=x, y=y)
        for attempt in range(self.max_retries):
            timeout = self._remaining(z, x, y, deadline)
            try:
                resp = self.session.get(
                    url, params={"access_token": self.access_token}, timeout=timeout
                )
                if resp.status_code == 404:
                    # no data (open ocean); treat as sea level
                    return FlatTileSource(0.0, self.tile_size).fetch(z, x, y)
                resp.raise_for_status()
                return Image.open(BytesIO(resp.content)).convert("RGB")
            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        "Tile %s/%s/%s request failed (attempt %d/%d): %s",
                        z, x, y, attempt + 1, self.max_retries, e,
                    )
                    time.sleep(min(2 ** attempt, self._remaining(z, x, y, deadline)))
                else:
                    raise TileFetchError(
                        f"Tile {z}/{x}/{y} failed after {self.max_retries} attempts: {e}"
                    ) from e
            except (UnidentifiedImageError, OSError) as e:
                raise TileFetchError(f"Tile {z}/{x}/{y} is not a valid image: {e}") from e
        raise TileFetchError(f"Tile {z}/{x}/{y} was never requested")


class CachedTileSource:
    """On-disk cache in front of another source, keyed by tileset/z/x/y."""

    def __init__(self, inner: TileSource, cache_dir: Path):
        self.inner = inner
        self.cache_dir = Path(cache_dir).expanduser()
        self.tileset = inner.tileset
        self.tile_size = inner.tile_size
        self.max_zoom = inner.max_zoom

    def _path(self, z: int, x: int, y: int) -> Path:
        return self.cache_dir / self.tileset / str(z) / str(x) / f"{y}.png"

    def fetch(self, z: int, x: int, y: int, deadline: Optional[float] = None) -> Image.Image:
        path = self._path(z, x, y)
        if path.exists():
            try:
                with Image.open(path) as img:
                    return img.convert("RGB")
            except (UnidentifiedImageError, OSError) as e:
                logger.warning("Discarding unreadable cached tile %s: %s", path, e)
                path.unlink(missing_ok=True)

        tile = self.inner.fetch(z, x, y, deadline=deadline)
        path.parent.mkdir(parents=True, exist_ok=True)
        tile.save(path, format="PNG")
        return tile
