"""models.py

Pydantic models for trail data and poster configuration.

Trail geometry is kept in the GeoJSON shape the browser client stores
between pages (a FeatureCollection holding a single LineString feature),
so snapshots round-trip through JSON unchanged.  Field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class _WireModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ------------------------------------------------------------
# Track points
# ------------------------------------------------------------

@dataclass(frozen=True)
class TrackPoint:
    """One GPS fix.  Produced by the parser, never persisted."""

    latitude: float
    longitude: float
    elevation: Optional[float] = None


# ------------------------------------------------------------
# Geometry (GeoJSON)
# ------------------------------------------------------------

class LineStringGeometry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["LineString"] = "LineString"
    coordinates: List[List[float]] = Field(min_length=1)

    @field_validator("coordinates")
    @classmethod
    def _check_positions(cls, v: List[List[float]]) -> List[List[float]]:
        for pos in v:
            if len(pos) not in (2, 3):
                raise ValueError("positions must be [lng, lat] or [lng, lat, ele]")
        return v


class TrailFeature(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["Feature"] = "Feature"
    geometry: LineStringGeometry
    properties: Dict[str, Any] = Field(default_factory=dict)


class TrailGeometry(BaseModel):
    """An ordered path of ``[lng, lat(, ele)]`` positions.

    Point order is the track's document order; nothing is reordered or
    deduplicated.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: List[TrailFeature] = Field(min_length=1, max_length=1)

    @classmethod
    def from_coordinates(cls, coordinates: Sequence[Sequence[float]]) -> "TrailGeometry":
        line = LineStringGeometry(coordinates=[list(c) for c in coordinates])
        return cls(features=[TrailFeature(geometry=line)])

    @classmethod
    def from_points(cls, points: Sequence[TrackPoint]) -> "TrailGeometry":
        """Build geometry from track points, keeping elevation only when known."""
        coords: List[List[float]] = []
        for p in points:
            if p.elevation is not None:
                coords.append([p.longitude, p.latitude, p.elevation])
            else:
                coords.append([p.longitude, p.latitude])
        return cls.from_coordinates(coords)

    @property
    def coordinates(self) -> List[List[float]]:
        return self.features[0].geometry.coordinates

    def __len__(self) -> int:
        return len(self.coordinates)


# ------------------------------------------------------------
# Derived data
# ------------------------------------------------------------

class TrailBounds(_WireModel):
    """Axis-aligned bounding box.  Single-point (degenerate) boxes are legal."""

    model_config = ConfigDict(frozen=True)

    min_lng: float
    max_lng: float
    min_lat: float
    max_lat: float

    @model_validator(mode="after")
    def _check_order(self) -> "TrailBounds":
        if self.min_lng > self.max_lng or self.min_lat > self.max_lat:
            raise ValueError("bounds minimum exceeds maximum")
        return self


class TrailStats(_WireModel):
    model_config = ConfigDict(frozen=True)

    distance_miles: float = Field(ge=0)
    elevation_gain_ft: int = Field(ge=0)


class TrackSource(str, Enum):
    PARSED = "parsed"
    SAMPLE = "sample"


class ParsedTrack(BaseModel):
    """Parser result.  ``source`` tells real uploads apart from the sample trail."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    geometry: TrailGeometry
    stats: TrailStats
    bounds: TrailBounds
    source: TrackSource = TrackSource.PARSED

    @property
    def is_sample(self) -> bool:
        return self.source is TrackSource.SAMPLE


# ------------------------------------------------------------
# Poster configuration
# ------------------------------------------------------------

class PosterConfig(_WireModel):
    """User-editable poster text and colour.  Holds no derived data."""

    title: str = "Mountain Peak Trail"
    date: str = "2026-01-15"
    location: str = "California, USA"
    distance: str = ""
    elevation: str = ""
    trail_color: str = "#d4a035"

    @field_validator("trail_color")
    @classmethod
    def _check_color(cls, v: str) -> str:
        if not _HEX_COLOR_RE.match(v):
            raise ValueError(f"trail colour must be a hex colour, got {v!r}")
        return v


class PosterSizeOption(_WireModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    subtitle: str = ""
    price_cents: int = Field(gt=0)
    print_width: int = Field(gt=0)
    print_height: int = Field(gt=0)
    external_variant_id: int
