"""
cli.py: render trail posters from the command line.

Usage:
    trailposter stats hike.gpx                       # distance, gain, bounds
    trailposter render hike.gpx                      # 18x24 test render
    trailposter render hike.gpx --size 24x36 -o poster.png
    trailposter render --sample --title "Demo Loop"  # synthetic trail

Environment:
    TRAILPOSTER_MAPBOX_TOKEN     terrain tiles (flat relief when unset)
    TRAILPOSTER_TILE_CACHE_DIR   on-disk tile cache
    TRAILPOSTER_FONT_PATH        TrueType font for poster text
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .design import POSTER_SIZES, PREVIEW_SIZE_KEY
from .errors import RenderError
from .models import ParsedTrack
from .pipeline import default_config, render_print
from .settings import get_settings
from .track_parser import generate_sample_trail, parse_gpx_file

logger = logging.getLogger("trailposter")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="trailposter", description=__doc__,
                                 formatter_class=argparse.RawDescriptionHelpFormatter)
    sub = ap.add_subparsers(dest="command", required=True)

    st = sub.add_parser("stats", help="print track statistics")
    st.add_argument("gpx", type=Path)

    rd = sub.add_parser("render", help="render a poster PNG")
    rd.add_argument("gpx", type=Path, nargs="?", help="GPX file (omit with --sample)")
    rd.add_argument("--sample", action="store_true", help="use the built-in sample trail")
    rd.add_argument("--size", default=PREVIEW_SIZE_KEY,
                    choices=[s.key for s in POSTER_SIZES], help="print size (default: %(default)s)")
    rd.add_argument("--title")
    rd.add_argument("--date", help="ISO date, e.g. 2026-01-15")
    rd.add_argument("--location")
    rd.add_argument("--color", help="trail colour as #rrggbb")
    rd.add_argument("-o", "--out", type=Path, help="output PNG (default: <title>-<size>.png)")
    return ap.parse_args(argv)


def _load_track(args: argparse.Namespace) -> ParsedTrack:
    if args.sample or args.gpx is None:
        return generate_sample_trail()
    return parse_gpx_file(args.gpx)


def cmd_stats(args: argparse.Namespace) -> int:
    track = parse_gpx_file(args.gpx)
    b = track.bounds
    print(f"distance   {track.stats.distance_miles} mi")
    print(f"gain       {track.stats.elevation_gain_ft:,} ft")
    print(f"points     {len(track.geometry)}")
    print(f"bounds     {b.min_lng:.5f},{b.min_lat:.5f} .. {b.max_lng:.5f},{b.max_lat:.5f}")
    if track.is_sample:
        print("note       no usable track points; showing the sample trail")
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    track = _load_track(args)
    file_name = args.gpx.name if args.gpx is not None and not args.sample else None
    config = default_config(track, file_name)
    updates = {
        k: v for k, v in (
            ("title", args.title),
            ("date", args.date),
            ("location", args.location),
            ("trail_color", args.color),
        ) if v is not None
    }
    try:
        config = config.model_validate({**config.model_dump(), **updates})
    except ValidationError as e:
        logger.error("Invalid poster options: %s", e)
        return 2

    out = args.out or Path(f"{config.title.replace(' ', '-').lower()}-{args.size}.png")
    try:
        png = asyncio.run(render_print(config, track, args.size))
    except RenderError as e:
        logger.error("Render failed: %s", e)
        return 1
    out.write_bytes(png)
    logger.info("Wrote %s (%d bytes)", out, len(png))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    if args.command == "stats":
        return cmd_stats(args)
    return cmd_render(args)


if __name__ == "__main__":
    sys.exit(main())
