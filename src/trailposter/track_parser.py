"""track_parser.py

Turns raw GPX text into trail geometry, bounds and summary statistics.

Parsing never fails from the caller's point of view: documents that
yield no usable track points are replaced by a deterministic synthetic
trail, and the result is tagged with :class:`TrackSource` so callers can
tell the two apart.

Usage::

    from trailposter.track_parser import parse_gpx_string

    track = parse_gpx_string(text)
    print(track.stats.distance_miles, track.is_sample)
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from math import cos, pi, sin
from pathlib import Path
from typing import List, Optional, Sequence, Union

import gpxpy
import gpxpy.gpx

from .geo import (
    FEET_PER_METER,
    elevation_gain_m,
    extract_track_points,
    path_length_miles,
    round_half_up,
)
from .models import (
    ParsedTrack,
    TrackPoint,
    TrackSource,
    TrailBounds,
    TrailGeometry,
    TrailStats,
)

logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# Synthetic trail constants
# ------------------------------------------------------------

SAMPLE_BASE_LAT = 37.7749
SAMPLE_BASE_LNG = -122.4194
SAMPLE_POINT_COUNT = 100
SAMPLE_STEP_DEG = 0.0008


# ------------------------------------------------------------
# Point extraction
# ------------------------------------------------------------

def _to_float(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    # NaN never compares equal to itself
    return None if value != value else value


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _points_from_gpxpy(gpx: gpxpy.gpx.GPX) -> List[TrackPoint]:
    points: List[TrackPoint] = []
    for lat, lng, ele in extract_track_points(gpx):
        if not lat and not lng:
            continue
        points.append(TrackPoint(latitude=lat, longitude=lng, elevation=ele))
    return points


def _points_from_etree(text: str) -> List[TrackPoint]:
    """Lenient scan of every ``trkpt`` element, namespace-agnostic.

    Missing or unparseable coordinates read as 0; a point is dropped only
    when both are 0.  A bad ``ele`` makes the elevation unknown.
    """
    root = ET.fromstring(text)
    points: List[TrackPoint] = []
    for elem in root.iter():
        if not isinstance(elem.tag, str) or _local_name(elem.tag) != "trkpt":
            continue
        lat = _to_float(elem.get("lat")) or 0.0
        lng = _to_float(elem.get("lon")) or 0.0
        if not lat and not lng:
            continue
        ele: Optional[float] = None
        for child in elem:
            if isinstance(child.tag, str) and _local_name(child.tag) == "ele":
                ele = _to_float(child.text)
                break
        points.append(TrackPoint(latitude=lat, longitude=lng, elevation=ele))
    return points


def extract_points(text: str) -> List[TrackPoint]:
    """Return the usable track points of a GPX document, possibly empty."""
    try:
        points = _points_from_gpxpy(gpxpy.parse(text))
        if points:
            return points
        logger.debug("gpxpy found no track points; scanning trkpt elements")
    except (gpxpy.gpx.GPXException, ValueError, TypeError) as e:
        logger.debug("gpxpy rejected document (%s); scanning trkpt elements", e)
    try:
        return _points_from_etree(text)
    except ET.ParseError as e:
        logger.debug("Track document is not well-formed XML: %s", e)
        return []


# ------------------------------------------------------------
# Derived data
# ------------------------------------------------------------

def compute_stats(points: Sequence[TrackPoint]) -> TrailStats:
    """Distance (miles, 1 decimal) and positive elevation gain (feet)."""
    distance = path_length_miles([(p.latitude, p.longitude) for p in points])
    gain_ft = elevation_gain_m([p.elevation for p in points]) * FEET_PER_METER
    return TrailStats(
        distance_miles=round_half_up(distance, 1),
        elevation_gain_ft=int(round_half_up(gain_ft)),
    )


def compute_bounds(points: Sequence[TrackPoint]) -> TrailBounds:
    if not points:
        raise ValueError("cannot compute bounds of an empty track")
    lngs = [p.longitude for p in points]
    lats = [p.latitude for p in points]
    return TrailBounds(min_lng=min(lngs), max_lng=max(lngs), min_lat=min(lats), max_lat=max(lats))


def build_track(
    points: Sequence[TrackPoint], source: TrackSource = TrackSource.PARSED
) -> ParsedTrack:
    """Assemble geometry, stats and bounds for a non-empty point sequence."""
    return ParsedTrack(
        geometry=TrailGeometry.from_points(points),
        stats=compute_stats(points),
        bounds=compute_bounds(points),
        source=source,
    )


# ------------------------------------------------------------
# Synthetic trail
# ------------------------------------------------------------

def sample_points() -> List[TrackPoint]:
    """The fixed 100-point spiral used when no real track is available."""
    lat = SAMPLE_BASE_LAT
    lng = SAMPLE_BASE_LNG
    points: List[TrackPoint] = []
    for i in range(SAMPLE_POINT_COUNT):
        angle = (i / SAMPLE_POINT_COUNT) * pi * 2 + sin(i * 0.3) * 0.5
        lat += cos(angle) * SAMPLE_STEP_DEG
        lng += sin(angle) * SAMPLE_STEP_DEG
        points.append(TrackPoint(latitude=lat, longitude=lng, elevation=200 + sin(i * 0.1) * 50))
    return points


def generate_sample_trail() -> ParsedTrack:
    """Deterministic demo trail.  Every call returns an identical result."""
    return build_track(sample_points(), source=TrackSource.SAMPLE)


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def parse_gpx_string(text: Optional[str]) -> ParsedTrack:
    """Parse GPX text, falling back to the sample trail when nothing usable is found.

    Args:
        text: Raw GPX document, or None to request the sample trail.

    Returns:
        A :class:`ParsedTrack`; ``is_sample`` is True when the fallback was used.
    """
    points = extract_points(text) if text else []
    if not points:
        logger.info("No usable track points; using the sample trail")
        return generate_sample_trail()
    return build_track(points)


def parse_gpx_file(path: Union[str, Path]) -> ParsedTrack:
    """Read and parse a GPX file.  Unreadable files also fall back to the sample."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.info("Could not read %s (%s); using the sample trail", path, e)
        return generate_sample_trail()
    return parse_gpx_string(text)
