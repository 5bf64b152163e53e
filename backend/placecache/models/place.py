from datetime import datetime, timedelta
from typing import Optional, Tuple
from sqlalchemy import Column, Integer, String, Float, Text, JSON, Index

from ..core.database import Base
from .types import UTCDateTime, utcnow


class Place(Base):
    """A cached point of interest. Exactly one row per provider-assigned external_id."""
    __tablename__ = "places"

    id = Column(Integer, primary_key=True, index=True)

    # Provider identifier (natural key for upserts)
    external_id = Column(String(255), unique=True, index=True, nullable=False)

    name = Column(String(255), nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)  # restaurants, hospitals, parks, ...
    category_label = Column(String(100), nullable=False)
    icon = Column(String(16), default="📍")
    color = Column(String(16), default="#999999")

    # Location
    latitude = Column(Float, nullable=False, index=True)
    longitude = Column(Float, nullable=False, index=True)

    # Address
    formatted_address = Column(String(512))
    street = Column(String(255))
    house_number = Column(String(50))
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    postal_code = Column(String(20))

    # Contact
    phone = Column(String(50))
    website = Column(String(512))
    email = Column(String(255))

    # Raw provider data
    provider_categories = Column(JSON)  # e.g. ["catering", "catering.cafe"]
    opening_hours = Column(Text)

    # Cache metadata
    first_cached_at = Column(UTCDateTime, default=utcnow, nullable=False)
    last_updated_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    last_verified_at = Column(UTCDateTime, default=utcnow, nullable=False)
    update_count = Column(Integer, default=0, nullable=False)
    source = Column(String(32), default="geoapify", nullable=False)  # geoapify, manual, user_contribution

    __table_args__ = (
        Index("ix_places_category_location", "category", "latitude", "longitude"),
    )

    @property
    def location(self) -> Tuple[float, float]:
        """(longitude, latitude)"""
        return (self.longitude, self.latitude)

    @property
    def cache_metadata(self) -> dict:
        return {
            "first_cached_at": self.first_cached_at,
            "last_updated_at": self.last_updated_at,
            "last_verified_at": self.last_verified_at,
            "update_count": self.update_count,
            "source": self.source,
        }

    def is_stale(self, max_age_hours: float = 24, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now - self.last_updated_at > timedelta(hours=max_age_hours)

    def __repr__(self):
        return f"<Place {self.external_id} {self.name!r} ({self.category})>"
