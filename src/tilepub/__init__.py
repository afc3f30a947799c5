"""Extract per-region PMTiles from a planet file and publish them to a content-addressed store."""

__version__ = "0.1.0"
