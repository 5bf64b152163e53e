from .place import Place
from .cached_region import (
    CachedRegion,
    REGION_STATUSES,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_REFRESHING,
    category_key,
)

__all__ = [
    "Place",
    "CachedRegion",
    "REGION_STATUSES",
    "STATUS_ACTIVE",
    "STATUS_EXPIRED",
    "STATUS_REFRESHING",
    "category_key",
]
