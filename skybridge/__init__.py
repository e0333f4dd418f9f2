"""SkyBridge: cross-post X posts to Bluesky."""

__version__ = "0.1.0"
