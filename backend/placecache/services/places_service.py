"""
Places Service - cache-first nearby place lookups

1. Look for a fresh cached region close enough to the query.
2. Hit: read places from the database.
3. Miss: fetch from the provider, upsert the places, register the region.

A miss always leaves a region behind, which becomes the cache key for
nearby queries that follow.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import PlaceUpsertError, ProviderError
from ..models.cached_region import STATUS_EXPIRED
from ..models.place import Place
from ..schemas.place import CacheStatus, CleanupResult, NearbyResult, PlaceIn, PlaceOut, UpsertResult
from . import place_store, region_index
from .categories import normalize_categories
from .freshness import FreshnessPolicy, default_policy
from .geo import distance_meters, validate_query
from .providers import PlaceProvider, fetch_with_timeout

logger = logging.getLogger(__name__)


def format_place(place, distance: float) -> PlaceOut:
    """Client-facing shape for a stored Place or a freshly fetched PlaceIn"""
    return PlaceOut(
        id=place.id if isinstance(place, Place) else None,
        external_id=place.external_id,
        name=place.name,
        category=place.category,
        category_label=place.category_label,
        latitude=place.latitude,
        longitude=place.longitude,
        address=place.formatted_address,
        icon=place.icon,
        color=place.color,
        phone=place.phone,
        website=place.website,
        distance_meters=round(distance, 1),
    )


class PlacesService:
    def __init__(
        self,
        provider: PlaceProvider,
        policy: Optional[FreshnessPolicy] = None,
        result_limit: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.policy = policy or default_policy
        self.result_limit = result_limit or settings.NEARBY_RESULT_LIMIT
        self.fetch_timeout = fetch_timeout or settings.PROVIDER_CALL_TIMEOUT_SECONDS

    async def get_nearby(
        self,
        db: Session,
        center: Tuple[float, float],
        radius_meters: Optional[float] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> NearbyResult:
        """
        Nearby places around center (longitude, latitude).

        Provider failures degrade to an empty provider result carrying the
        error message. Cache bookkeeping failures after a successful fetch
        are logged and the fetched places are still returned.
        """
        if radius_meters is None:
            radius_meters = settings.DEFAULT_RADIUS_METERS
        center = validate_query(center, radius_meters)
        categories = normalize_categories(categories)

        region = region_index.find_cached_region(db, center, radius_meters, categories)
        if region is not None:
            logger.info(f"Cache hit: region {region.id} for {center} r={radius_meters:.0f}m {categories}")
            nearby = place_store.find_nearby(db, center, radius_meters, categories, limit=self.result_limit)
            stale = [place for place, _ in nearby if place.is_stale(settings.STALE_PLACE_HOURS)]
            if stale:
                logger.warning(f"{len(stale)} of {len(nearby)} cached places are older than {settings.STALE_PLACE_HOURS:.0f}h, region {region.id} expires {region.expires_at.isoformat()}")
            places = [format_place(place, distance) for place, distance in nearby]
            return NearbyResult(
                source="cache",
                places=places,
                count=len(places),
                cached=True,
                cached_at=region.cached_at,
                expires_at=region.expires_at,
                stale_count=len(stale),
            )

        logger.info(f"Cache miss for {center} r={radius_meters:.0f}m {categories}, fetching from {self.provider.name}")
        try:
            records = await fetch_with_timeout(self.provider, center, radius_meters, categories, self.fetch_timeout)
        except ProviderError as e:
            logger.error(f"Provider fetch failed for {center}: {e}")
            return NearbyResult(source="provider", error=str(e))

        self._save(db, records, center, radius_meters, categories)

        places = self._select(records, center, radius_meters, categories)
        return NearbyResult(source="provider", places=places, count=len(places))

    def check_cache_status(
        self,
        db: Session,
        center: Tuple[float, float],
        radius_meters: Optional[float] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> CacheStatus:
        """Read-only: is this query answerable from cache, and until when?"""
        if radius_meters is None:
            radius_meters = settings.DEFAULT_RADIUS_METERS
        center = validate_query(center, radius_meters)
        categories = normalize_categories(categories)
        now = datetime.now(timezone.utc)

        region = region_index.find_cached_region(db, center, radius_meters, categories, now=now)
        if region is None:
            region = region_index.find_cached_region(db, center, radius_meters, categories, now=now, include_expired=True)
        if region is None:
            return CacheStatus(cached=False, place_count=0)

        expired = region.is_expired(now) or region.status == STATUS_EXPIRED
        return CacheStatus(
            cached=not expired,
            place_count=region.place_count,
            cached_at=region.cached_at,
            expires_at=region.expires_at,
            expired=expired,
        )

    def cleanup_expired(self, db: Session) -> CleanupResult:
        """Flag active regions past expiry as expired. Idempotent."""
        logger.info("Cleaning up expired cache regions")
        flagged = region_index.cleanup_expired(db)
        logger.info(f"Marked {flagged} regions as expired")
        return CleanupResult(regions_marked_expired=flagged)

    def cache_places(
        self,
        db: Session,
        records: Sequence,
        center: Tuple[float, float],
        radius_meters: Optional[float] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> UpsertResult:
        """Store places fetched elsewhere (e.g. by a client) and register their region"""
        if radius_meters is None:
            radius_meters = settings.DEFAULT_RADIUS_METERS
        center = validate_query(center, radius_meters)
        categories = normalize_categories(categories)

        result = place_store.upsert_many(db, records)
        region_index.upsert_region(
            db, center, radius_meters, categories, len(records), policy=self.policy, source="manual",
        )
        return result

    def cache_stats(self, db: Session) -> dict:
        stats = place_store.place_stats(db)
        stats.update(region_index.region_stats(db))
        return stats

    def _save(self, db: Session, records: List, center, radius_meters: float, categories: List[str]) -> None:
        """Upsert places and register the region. Failures are logged, never raised."""
        logger.info(f"Saving {len(records)} places to the cache")
        try:
            place_store.upsert_many(db, records)
        except (PlaceUpsertError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Error saving places for {center}: {e}")

        try:
            region_index.upsert_region(db, center, radius_meters, categories, len(records), policy=self.policy)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error registering cached region for {center}: {e}")

    def _select(self, records: List, center, radius_meters: float, categories: List[str]) -> List[PlaceOut]:
        """Same selection a later cache hit would make: in radius, in categories, nearest first"""
        lon, lat = center
        valid, _ = place_store.parse_places(records)

        # Last record wins for duplicate ids, matching the upsert order
        by_id = {}
        for place in valid:
            by_id[place.external_id] = place

        selected: List[Tuple[PlaceIn, float]] = []
        for place in by_id.values():
            if place.category not in categories:
                continue
            distance = distance_meters(lat, lon, place.latitude, place.longitude)
            if distance <= radius_meters:
                selected.append((place, distance))

        selected.sort(key=lambda item: item[1])
        return [format_place(place, distance) for place, distance in selected[:self.result_limit]]
