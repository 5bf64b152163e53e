"""PlaceCache - nearby places served from a local cache of provider results."""

__version__ = "1.0.0"
