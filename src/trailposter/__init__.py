"""trailposter: GPX track in, print-ready trail map poster out."""

__version__ = "0.1.0"
