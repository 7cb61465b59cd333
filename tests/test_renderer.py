import asyncio
import threading
import time
from math import pi

import numpy as np
import pytest

from trailposter.compositor import render_map_image, trail_layers
from trailposter.design import ContourStyle
from trailposter.errors import RenderError, RenderTimeoutError, TileFetchError
from trailposter.models import TrailBounds
from trailposter.renderer import (
    MAX_ZOOM,
    MapStyle,
    TerrainMapRenderer,
    contour_alpha,
    contour_index,
    fit_bounds,
    hillshade_intensity,
    lnglat_to_world,
)
from trailposter.tiles import FlatTileSource

BACKGROUND = (245, 245, 245)


class RecordingTileSource(FlatTileSource):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.requests = []

    def fetch(self, z, x, y, deadline=None):
        self.requests.append((z, x, y))
        return super().fetch(z, x, y)


class BrokenTileSource(FlatTileSource):
    def fetch(self, z, x, y, deadline=None):
        raise TileFetchError(f"Tile {z}/{x}/{y} failed after 3 attempts")


class StalledTileSource(FlatTileSource):
    """Blocks every fetch until released, like a hung tile server."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.deadlines = []

    def fetch(self, z, x, y, deadline=None):
        self.deadlines.append(deadline)
        self.release.wait(3.0)
        return super().fetch(z, x, y)


class TestFitBounds:
    def test_bounds_fill_the_padded_view(self, small_bounds):
        cam = fit_bounds(small_bounds, 400, 300, padding=36)
        x0, y0 = cam.project(small_bounds.min_lng, small_bounds.max_lat)
        x1, y1 = cam.project(small_bounds.max_lng, small_bounds.min_lat)
        eps = 1e-6
        assert 36 - eps <= x0 <= x1 <= 364 + eps
        assert 36 - eps <= y0 <= y1 <= 264 + eps
        # the limiting axis touches the padding on both sides
        assert (x1 - x0) == pytest.approx(328) or (y1 - y0) == pytest.approx(228)

    def test_bounds_are_centred(self, small_bounds):
        cam = fit_bounds(small_bounds, 400, 300, padding=36)
        x0, y0 = cam.project(small_bounds.min_lng, small_bounds.max_lat)
        x1, y1 = cam.project(small_bounds.max_lng, small_bounds.min_lat)
        assert (x0 + x1) / 2 == pytest.approx(200)
        assert (y0 + y1) / 2 == pytest.approx(150)

    def test_degenerate_bounds_use_max_zoom(self):
        b = TrailBounds(min_lng=7.5, max_lng=7.5, min_lat=46.5, max_lat=46.5)
        cam = fit_bounds(b, 200, 200, padding=10)
        assert cam.zoom == MAX_ZOOM
        assert (cam.center_x, cam.center_y) == pytest.approx(lnglat_to_world(7.5, 46.5))

    def test_unproject_inverts_project(self, small_bounds):
        cam = fit_bounds(small_bounds, 400, 300, padding=36)
        lng, lat = cam.unproject(*cam.project(-121.995, 37.004))
        assert (lng, lat) == pytest.approx((-121.995, 37.004))


class TestHillshade:
    def test_flat_terrain_is_unlit(self):
        illum, slope = hillshade_intensity(np.zeros((5, 5)), 10.0, 315.0)
        assert np.allclose(illum, 0.0)
        assert np.allclose(slope, 0.0)

    def test_slope_facing_the_light_is_bright(self):
        # rises 1 m per metre towards the east
        elev = np.tile(np.arange(5, dtype=float) * 10.0, (5, 1))
        lit_from_west, slope = hillshade_intensity(elev, 10.0, 270.0)
        lit_from_east, _ = hillshade_intensity(elev, 10.0, 90.0)
        assert np.allclose(slope, pi / 4)
        assert np.allclose(lit_from_west, 1 / np.sqrt(2))
        assert np.allclose(lit_from_east, -1 / np.sqrt(2))

    def test_north_light_on_north_rising_slope(self):
        # row 0 is north; elevation grows towards it
        elev = np.tile((np.arange(5, dtype=float)[::-1] * 10.0)[:, None], (1, 5))
        illum, _ = hillshade_intensity(elev, 10.0, 0.0)
        assert np.all(illum < 0)


class TestContours:
    def test_index_attribute(self):
        levels = np.array([1, 5, 10, 20, 15, -5, 3])
        assert contour_index(levels).tolist() == [1, 5, 10, 10, 5, 5, 1]

    def test_minor_crossing(self):
        alpha = contour_alpha(np.array([[5.0, 5.0, 15.0, 15.0]]), ContourStyle())
        assert np.allclose(alpha, [[0.0, 0.16, 0.0, 0.0]])

    def test_index_ten_crossing_is_full_width(self):
        alpha = contour_alpha(np.array([[95.0, 105.0]]), ContourStyle())
        assert alpha[0, 0] == pytest.approx(0.4)

    def test_flat_terrain_has_no_contours(self):
        assert not contour_alpha(np.full((4, 4), 123.0), ContourStyle()).any()


def _render(renderer, geometry, bounds, size=(200, 160), color="#dc2626"):
    async def run():
        try:
            await renderer.start(MapStyle.from_design(), *size)
            renderer.add_trail(geometry, trail_layers(color, size[0]))
            renderer.fit_bounds(bounds, padding=18)
            await renderer.wait_idle()
            return renderer.snapshot()
        finally:
            renderer.close()

    return asyncio.run(run())


class TestTerrainMapRenderer:
    def test_renders_background_and_trail(self, small_geometry, small_bounds):
        source = RecordingTileSource()
        image = _render(TerrainMapRenderer(source), small_geometry, small_bounds)
        assert image.mode == "RGB"
        assert image.size == (200, 160)
        assert image.getpixel((1, 1)) == BACKGROUND
        # a straight two-point trail crosses the centre of its own bounds
        assert image.getpixel((100, 80)) != BACKGROUND
        assert source.requests
        assert all(z <= source.max_zoom for z, _, _ in source.requests)

    def test_render_is_deterministic(self, small_geometry, small_bounds):
        a = _render(TerrainMapRenderer(FlatTileSource()), small_geometry, small_bounds)
        b = _render(TerrainMapRenderer(FlatTileSource()), small_geometry, small_bounds)
        assert a.tobytes() == b.tobytes()

    def test_texture_limit(self):
        renderer = TerrainMapRenderer(FlatTileSource(), max_texture_size=100)
        with pytest.raises(RenderError, match="texture limit"):
            asyncio.run(renderer.start(MapStyle.from_design(), 200, 80))

    def test_tile_failure_surfaces_as_render_error(self, small_geometry, small_bounds):
        with pytest.raises(RenderError, match="failed after 3 attempts"):
            _render(TerrainMapRenderer(BrokenTileSource()), small_geometry, small_bounds)

    def test_snapshot_before_idle(self):
        renderer = TerrainMapRenderer(FlatTileSource())
        asyncio.run(renderer.start(MapStyle.from_design(), 50, 50))
        with pytest.raises(RenderError):
            renderer.snapshot()

    def test_closed_renderer_refuses_work(self, small_geometry, small_bounds):
        renderer = TerrainMapRenderer(FlatTileSource())
        _render(renderer, small_geometry, small_bounds)
        renderer.close()  # second close is harmless
        with pytest.raises(RenderError):
            renderer.snapshot()
        with pytest.raises(RenderError):
            asyncio.run(renderer.start(MapStyle.from_design(), 50, 50))

    def test_close_stops_rasterizing(self, small_bounds):
        renderer = TerrainMapRenderer(FlatTileSource())
        asyncio.run(renderer.start(MapStyle.from_design(), 20, 20))
        camera = fit_bounds(small_bounds, 20, 20, padding=2)
        renderer.close()
        with pytest.raises(RenderError, match="closed while rendering"):
            renderer._rasterize(camera, np.zeros((20, 20)))


class TestRenderTimeout:
    def test_timeout_does_not_wait_for_stalled_tiles(self, small_geometry, small_bounds):
        source = StalledTileSource()
        renderers = []

        def make():
            renderers.append(TerrainMapRenderer(source, timeout_s=0.2))
            return renderers[-1]

        started = time.monotonic()
        try:
            with pytest.raises(RenderTimeoutError):
                asyncio.run(
                    render_map_image(
                        small_geometry, small_bounds, "#d4a035", 200, 160, make, timeout_s=0.2
                    )
                )
            elapsed = time.monotonic() - started
        finally:
            source.release.set()

        assert elapsed < 1.0
        assert renderers[0].closed
        # tile fetches carry the render deadline so network sources can stop early
        assert source.deadlines[0] == pytest.approx(started + 0.2, abs=0.5)
