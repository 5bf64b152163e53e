"""
Cached Region Model

Remembers that a (center, radius, categories) query was answered from the
provider and until when its results may be served from the places table.
"""
from datetime import datetime
from typing import FrozenSet, Optional, Tuple
from sqlalchemy import Column, Integer, String, Float, JSON, Index

from ..core.database import Base
from .types import UTCDateTime, utcnow

# Region status values. expires_at decides freshness; status is the refresh
# lock ('refreshing') plus housekeeping ('expired').
STATUS_ACTIVE = "active"
STATUS_REFRESHING = "refreshing"
STATUS_EXPIRED = "expired"
REGION_STATUSES = (STATUS_ACTIVE, STATUS_REFRESHING, STATUS_EXPIRED)


def category_key(categories) -> str:
    """Canonical, order-independent key for a category set"""
    return ",".join(sorted(set(categories)))


class CachedRegion(Base):
    __tablename__ = "cached_regions"

    id = Column(Integer, primary_key=True, index=True)

    # Region center and radius
    center_latitude = Column(Float, nullable=False, index=True)
    center_longitude = Column(Float, nullable=False, index=True)
    radius_meters = Column(Float, nullable=False)

    # Categories covered by the query (sorted list) and its canonical key
    categories = Column(JSON, nullable=False)
    category_key = Column(String(512), nullable=False, index=True)

    place_count = Column(Integer, default=0, nullable=False)

    # Cache timing
    cached_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    last_refreshed_at = Column(UTCDateTime, default=utcnow, nullable=False)
    refresh_count = Column(Integer, default=0, nullable=False)

    status = Column(String(20), default=STATUS_ACTIVE, nullable=False, index=True)
    source = Column(String(32), default="geoapify", nullable=False)  # geoapify, manual

    __table_args__ = (
        Index("ix_cached_regions_status_expires", "status", "expires_at"),
        Index("ix_cached_regions_center", "center_latitude", "center_longitude"),
    )

    @property
    def center(self) -> Tuple[float, float]:
        """(longitude, latitude)"""
        return (self.center_longitude, self.center_latitude)

    @property
    def category_set(self) -> FrozenSet[str]:
        return frozenset(self.categories or [])

    @property
    def primary_category(self) -> Optional[str]:
        return self.categories[0] if self.categories else None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now >= self.expires_at

    def __repr__(self):
        return (
            f"<CachedRegion {self.id} ({self.center_latitude:.5f}, {self.center_longitude:.5f}) "
            f"r={self.radius_meters:.0f}m [{self.category_key}] {self.status}>"
        )
