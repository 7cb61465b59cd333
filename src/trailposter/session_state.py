"""session_state.py

Client-held state carried between the upload, customize, preview and
success steps, stored as JSON strings under fixed keys in any
``MutableMapping[str, str]`` (a browser-session-like store).

A missing or unreadable geometry/bounds pair falls back to the sample
trail so every step can still show a poster.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import MutableMapping, Optional, Tuple

from pydantic import ValidationError

from .models import ParsedTrack, PosterConfig, TrailBounds, TrailGeometry
from .track_parser import generate_sample_trail, parse_gpx_string

logger = logging.getLogger(__name__)

GPX_CONTENT_KEY = "gpxContent"
GPX_FILE_NAME_KEY = "gpxFileName"
POSTER_CONFIG_KEY = "posterConfig"
TRAIL_GEOJSON_KEY = "trailGeoJSON"
TRAIL_BOUNDS_KEY = "trailBounds"

ALL_KEYS = (
    GPX_CONTENT_KEY,
    GPX_FILE_NAME_KEY,
    POSTER_CONFIG_KEY,
    TRAIL_GEOJSON_KEY,
    TRAIL_BOUNDS_KEY,
)

Store = MutableMapping[str, str]


@dataclass(frozen=True)
class PosterSnapshot:
    config: PosterConfig
    geometry: TrailGeometry
    bounds: TrailBounds
    is_sample: bool


def store_upload(store: Store, gpx_text: str, file_name: str) -> None:
    store[GPX_CONTENT_KEY] = gpx_text
    store[GPX_FILE_NAME_KEY] = file_name


def load_upload(store: Store) -> Tuple[ParsedTrack, Optional[str]]:
    """Parse the stored upload, or the sample trail when there is none."""
    text = store.get(GPX_CONTENT_KEY)
    track = parse_gpx_string(text) if text else generate_sample_trail()
    return track, store.get(GPX_FILE_NAME_KEY)


def save_snapshot(
    store: Store, config: PosterConfig, geometry: TrailGeometry, bounds: TrailBounds
) -> None:
    store[POSTER_CONFIG_KEY] = config.model_dump_json(by_alias=True)
    store[TRAIL_GEOJSON_KEY] = geometry.model_dump_json()
    store[TRAIL_BOUNDS_KEY] = bounds.model_dump_json(by_alias=True)


def _load(store: Store, key: str, model):
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Ignoring unreadable %s in session store: %s", key, e)
        return None


def load_snapshot(store: Store) -> PosterSnapshot:
    """Restore the saved poster, substituting defaults for anything missing."""
    config = _load(store, POSTER_CONFIG_KEY, PosterConfig) or PosterConfig()
    geometry = _load(store, TRAIL_GEOJSON_KEY, TrailGeometry)
    bounds = _load(store, TRAIL_BOUNDS_KEY, TrailBounds)
    if geometry is not None and bounds is not None:
        return PosterSnapshot(config, geometry, bounds, is_sample=False)

    logger.info("No saved trail in session; using the sample trail")
    sample = generate_sample_trail()
    return PosterSnapshot(config, sample.geometry, sample.bounds, is_sample=True)


def clear(store: Store) -> None:
    for key in ALL_KEYS:
        store.pop(key, None)
