import json
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, List, Literal, Optional
from datetime import datetime

from ..services.categories import (
    OTHER_CATEGORY,
    category_color,
    category_icon,
    category_label,
)


class PlaceIn(BaseModel):
    """A place record as delivered by a provider adapter (or a client cache request)"""
    external_id: str = Field(..., min_length=1, max_length=255)
    name: str = "Unknown Place"
    category: str = OTHER_CATEGORY
    category_label: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    formatted_address: Optional[str] = None
    street: Optional[str] = None
    house_number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    provider_categories: List[str] = Field(default_factory=list)
    opening_hours: Optional[str] = None
    source: str = "geoapify"

    @model_validator(mode="before")
    @classmethod
    def unpack_location(cls, data: Any) -> Any:
        """Accept a `location` given as (longitude, latitude) or GeoJSON Point"""
        if not isinstance(data, dict) or "location" not in data:
            return data
        data = dict(data)
        location = data.pop("location")
        if isinstance(location, dict):
            location = location.get("coordinates")
        if isinstance(location, (list, tuple)) and len(location) == 2:
            data.setdefault("longitude", location[0])
            data.setdefault("latitude", location[1])
        return data

    @field_validator("name", mode="before")
    @classmethod
    def default_name(cls, value):
        return value or "Unknown Place"

    @field_validator("opening_hours", mode="before")
    @classmethod
    def stringify_opening_hours(cls, value):
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    @model_validator(mode="after")
    def fill_display_fields(self):
        self.category_label = self.category_label or category_label(self.category)
        self.icon = self.icon or category_icon(self.category)
        self.color = self.color or category_color(self.category)
        return self


class PlaceOut(BaseModel):
    id: Optional[int] = None
    external_id: str
    name: str
    category: str
    category_label: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    distance_meters: float = 0.0


class UpsertResult(BaseModel):
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    failed_ids: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.inserted + self.updated


class NearbyResult(BaseModel):
    source: Literal["cache", "provider"]
    places: List[PlaceOut] = Field(default_factory=list)
    count: int = 0
    cached: bool = False
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    stale_count: int = 0


class CacheStatus(BaseModel):
    cached: bool
    place_count: int = 0
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    expired: Optional[bool] = None


class CleanupResult(BaseModel):
    regions_marked_expired: int = 0


class RefreshReport(BaseModel):
    skipped: bool = False
    regions_found: int = 0
    regions_refreshed: int = 0
    regions_failed: int = 0
    places_upserted: int = 0
