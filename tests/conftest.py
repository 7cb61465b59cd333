# conftest.py
import asyncio
from typing import List, Optional

import pytest
from PIL import Image

from trailposter.errors import RenderError
from trailposter.models import PosterConfig, TrailBounds, TrailGeometry
from trailposter.settings import Settings
from trailposter.track_parser import generate_sample_trail

THREE_POINT_GPX = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1">
  <trk><name>Test</name><trkseg>
    <trkpt lat="37.0" lon="-122.0"><ele>100</ele></trkpt>
    <trkpt lat="37.01" lon="-122.0"><ele>150</ele></trkpt>
    <trkpt lat="37.0" lon="-122.01"><ele>120</ele></trkpt>
  </trkseg></trk>
</gpx>
"""


class FixedMeasurer:
    """Every glyph advances 0.6 x font size."""

    def measure(self, text: str, size: int) -> float:
        return len(text) * size * 0.6


class FakeRenderer:
    """In-memory MapRenderer returning a solid frame."""

    def __init__(self, color=(10, 120, 200), idle_delay: float = 0.0,
                 fail_with: Optional[Exception] = None):
        self.color = color
        self.idle_delay = idle_delay
        self.fail_with = fail_with
        self.size = None
        self.style = None
        self.layers = ()
        self.geometry = None
        self.bounds = None
        self.padding = None
        self.duration = None
        self.closed = False
        self.close_calls = 0

    async def start(self, style, width, height):
        self.style = style
        self.size = (width, height)

    def add_trail(self, geometry, layers):
        self.geometry = geometry
        self.layers = tuple(layers)

    def fit_bounds(self, bounds, padding, duration=0.0):
        self.bounds = bounds
        self.padding = padding
        self.duration = duration

    async def wait_idle(self):
        if self.idle_delay:
            await asyncio.sleep(self.idle_delay)
        if self.fail_with is not None:
            raise self.fail_with

    def snapshot(self):
        if self.closed:
            raise RenderError("closed")
        return Image.new("RGB", self.size, self.color)

    def close(self):
        self.closed = True
        self.close_calls += 1


@pytest.fixture
def three_point_gpx() -> str:
    return THREE_POINT_GPX


@pytest.fixture
def measurer() -> FixedMeasurer:
    return FixedMeasurer()


@pytest.fixture
def sample_track():
    return generate_sample_trail()


@pytest.fixture
def poster_config() -> PosterConfig:
    return PosterConfig(
        title="Mountain Peak Trail",
        date="2026-01-15",
        location="California, USA",
        distance="5.2",
        elevation="1,234",
        trail_color="#d4a035",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, mapbox_token=None, font_path=None, render_timeout_s=5)


@pytest.fixture
def renderer_factory():
    """Factory that records every renderer it hands out."""
    created: List[FakeRenderer] = []

    def factory(**kwargs):
        def make():
            r = FakeRenderer(**kwargs)
            created.append(r)
            return r
        make.created = created
        return make

    return factory


@pytest.fixture
def small_geometry() -> TrailGeometry:
    return TrailGeometry.from_coordinates([[-122.0, 37.0, 100.0], [-121.99, 37.01]])


@pytest.fixture
def small_bounds() -> TrailBounds:
    return TrailBounds(min_lng=-122.0, max_lng=-121.99, min_lat=37.0, max_lat=37.01)
