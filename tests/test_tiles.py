import time
from io import BytesIO
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests
from PIL import Image

from trailposter.errors import TileFetchError
from trailposter.tiles import (
    CachedTileSource,
    FlatTileSource,
    MapboxTileSource,
    decode_terrain_rgb,
    encode_terrain_rgb,
)


def _png(color, size=4) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (size, size), color).save(buf, format="PNG")
    return buf.getvalue()


def _response(status=200, content=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


def test_decode_known_pixels():
    img = Image.new("RGB", (2, 1))
    img.putpixel((0, 0), (1, 134, 160))  # 100000 * 0.1 - 10000 = 0 m
    img.putpixel((1, 0), (1, 159, 203))  # 106443 -> 644.3 m
    elev = decode_terrain_rgb(img)
    assert elev.shape == (1, 2)
    assert elev[0, 0] == pytest.approx(0.0, abs=1e-6)
    assert elev[0, 1] == pytest.approx(644.3)


def test_encode_matches_decoder():
    assert encode_terrain_rgb(0.0) == (1, 134, 160)
    assert encode_terrain_rgb(644.3) == (1, 159, 203)


def test_flat_source_is_uniform():
    source = FlatTileSource(elevation_m=1200.0, tile_size=8)
    elev = decode_terrain_rgb(source.fetch(3, 1, 2))
    assert elev.shape == (8, 8)
    assert np.allclose(elev, 1200.0)


class TestMapboxTileSource:
    def test_fetch_builds_tile_url(self):
        session = MagicMock()
        session.get.return_value = _response(content=_png((1, 159, 203)))
        source = MapboxTileSource("pk.test", session=session)

        tile = source.fetch(12, 655, 1583)

        assert tile.mode == "RGB"
        args, kwargs = session.get.call_args
        assert args[0] == (
            "https://api.mapbox.com/v4/mapbox.mapbox-terrain-dem-v1/12/655/1583@2x.pngraw"
        )
        assert kwargs["params"] == {"access_token": "pk.test"}
        assert kwargs["timeout"] == 30.0
        assert np.allclose(decode_terrain_rgb(tile), 644.3)

    def test_missing_tile_is_sea_level(self):
        session = MagicMock()
        session.get.return_value = _response(status=404)
        tile = MapboxTileSource("pk.test", session=session).fetch(5, 1, 1)
        assert tile.size == (512, 512)
        assert np.allclose(decode_terrain_rgb(tile), 0.0, atol=1e-6)

    @patch("trailposter.tiles.time.sleep")
    def test_retries_then_succeeds(self, mock_sleep):
        session = MagicMock()
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            _response(status=503),
            _response(content=_png((1, 134, 160))),
        ]
        tile = MapboxTileSource("pk.test", session=session).fetch(1, 0, 0)
        assert tile.size == (4, 4)
        assert session.get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("trailposter.tiles.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(TileFetchError, match="after 2 attempts"):
            MapboxTileSource("pk.test", max_retries=2, session=session).fetch(1, 0, 0)
        assert session.get.call_count == 2
        assert mock_sleep.call_count == 1

    def test_past_deadline_skips_request(self):
        session = MagicMock()
        with pytest.raises(TileFetchError, match="deadline"):
            MapboxTileSource("pk.test", session=session).fetch(
                1, 0, 0, deadline=time.monotonic() - 1
            )
        session.get.assert_not_called()

    def test_request_timeout_capped_by_deadline(self):
        session = MagicMock()
        session.get.return_value = _response(content=_png((1, 134, 160)))
        MapboxTileSource("pk.test", session=session).fetch(
            1, 0, 0, deadline=time.monotonic() + 5
        )
        assert 0 < session.get.call_args.kwargs["timeout"] <= 5

    @patch("trailposter.tiles.time.sleep")
    def test_backoff_capped_by_deadline(self, mock_sleep):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("reset")
        source = MapboxTileSource("pk.test", max_retries=2, session=session)
        with pytest.raises(TileFetchError):
            source.fetch(1, 0, 0, deadline=time.monotonic() + 0.5)
        (call,) = mock_sleep.call_args_list
        assert call.args[0] <= 0.5

    def test_invalid_image(self):
        session = MagicMock()
        session.get.return_value = _response(content=b"<html>nope</html>")
        with pytest.raises(TileFetchError, match="not a valid image"):
            MapboxTileSource("pk.test", session=session).fetch(1, 0, 0)


class CountingSource(FlatTileSource):
    tileset = "counting"

    def __init__(self):
        super().__init__(elevation_m=50.0, tile_size=4)
        self.calls = 0

    def fetch(self, z, x, y, deadline=None):
        self.calls += 1
        return super().fetch(z, x, y)


class TestCachedTileSource:
    def test_second_fetch_is_served_from_disk(self, tmp_path):
        inner = CountingSource()
        cache = CachedTileSource(inner, tmp_path)

        first = cache.fetch(3, 2, 1)
        second = cache.fetch(3, 2, 1)

        assert inner.calls == 1
        assert (tmp_path / "counting" / "3" / "2" / "1.png").is_file()
        assert first.tobytes() == second.tobytes()

    def test_mirrors_inner_metadata(self, tmp_path):
        cache = CachedTileSource(CountingSource(), tmp_path)
        assert (cache.tileset, cache.tile_size, cache.max_zoom) == ("counting", 4, 14)

    def test_corrupt_cache_entry_is_refetched(self, tmp_path):
        inner = CountingSource()
        cache = CachedTileSource(inner, tmp_path)
        path = tmp_path / "counting" / "0" / "0" / "0.png"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"garbage")

        tile = cache.fetch(0, 0, 0)

        assert inner.calls == 1
        assert np.allclose(decode_terrain_rgb(tile), 50.0)
        with Image.open(path) as img:
            assert img.size == (4, 4)

    def test_deadline_reaches_inner_source(self, tmp_path):
        inner = MagicMock(tileset="mock", tile_size=4, max_zoom=14)
        inner.fetch.return_value = Image.new("RGB", (4, 4), (1, 134, 160))
        CachedTileSource(inner, tmp_path).fetch(2, 1, 1, deadline=123.0)
        inner.fetch.assert_called_once_with(2, 1, 1, deadline=123.0)
