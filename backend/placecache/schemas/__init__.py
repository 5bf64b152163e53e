from .place import (
    CacheStatus,
    CleanupResult,
    NearbyResult,
    PlaceIn,
    PlaceOut,
    RefreshReport,
    UpsertResult,
)

__all__ = [
    "CacheStatus",
    "CleanupResult",
    "NearbyResult",
    "PlaceIn",
    "PlaceOut",
    "RefreshReport",
    "UpsertResult",
]
