"""
Exceptions raised by the place cache.

Provider and upsert failures are expected in normal operation; callers
decide whether to degrade (read path) or retry later (refresh job).
"""


class PlaceCacheError(Exception):
    """Base class for place cache errors"""


class ProviderError(PlaceCacheError):
    """The places provider could not be reached or returned an unusable response"""


class PlaceUpsertError(PlaceCacheError):
    """Every record in a non-empty upsert batch failed"""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class InvalidQueryError(PlaceCacheError, ValueError):
    """Coordinates out of range or a non-positive radius"""
