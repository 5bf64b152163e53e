"""
Region Index

Remembers which (center, radius, categories) queries were fetched from the
provider and answers "is there a fresh cached region close enough to this
query?".

Reads use a fuzzy match (centre drift, radius band, category superset);
writes match exactly on (center, radius, category set) so two distinct
queries are never merged into one region.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.cached_region import (
    CachedRegion,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_REFRESHING,
    REGION_STATUSES,
    category_key,
)
from .categories import normalize_categories
from .freshness import FreshnessPolicy, default_policy
from .geo import bbox_filters, distance_meters

logger = logging.getLogger(__name__)


def find_cached_region(
    db: Session,
    center: Tuple[float, float],
    radius_meters: float,
    categories: Iterable[str],
    now: Optional[datetime] = None,
    include_expired: bool = False,
) -> Optional[CachedRegion]:
    """
    Find a cached region that can answer this query.

    A region matches when
      - its centre lies within 1.5x the larger of the two radii of the query centre,
      - its radius is within +/-20% of the requested radius,
      - its categories are a superset of the requested ones,
      - it is 'active' and expires_at is still in the future.
    The expiry time is authoritative: an 'active' region past expires_at is a miss.
    With include_expired, the status/expiry checks are relaxed to 'active' or
    'expired' regardless of expires_at (used for status reporting only).
    The nearest matching centre wins.
    """
    lon, lat = center
    now = now or datetime.now(timezone.utc)
    requested = set(normalize_categories(categories))

    radius_tolerance = settings.REGION_RADIUS_TOLERANCE
    center_tolerance = settings.REGION_CENTER_TOLERANCE
    min_radius = radius_meters * (1 - radius_tolerance)
    max_radius = radius_meters * (1 + radius_tolerance)

    filters = bbox_filters(
        CachedRegion.center_latitude, CachedRegion.center_longitude,
        lat, lon, max_radius * center_tolerance,
    )
    filters.append(CachedRegion.radius_meters.between(min_radius, max_radius))
    if include_expired:
        filters.append(CachedRegion.status.in_([STATUS_ACTIVE, STATUS_EXPIRED]))
    else:
        filters.append(CachedRegion.status == STATUS_ACTIVE)
        filters.append(CachedRegion.expires_at > now)

    candidates = []
    for region in db.query(CachedRegion).filter(*filters).all():
        distance = distance_meters(lat, lon, region.center_latitude, region.center_longitude)
        if distance > max(radius_meters, region.radius_meters) * center_tolerance:
            continue
        if not requested.issubset(region.category_set):
            continue
        candidates.append((distance, region.id, region))

    if not candidates:
        return None

    candidates.sort(key=lambda item: (item[0], item[1]))
    return candidates[0][2]


def find_exact_region(
    db: Session,
    center: Tuple[float, float],
    radius_meters: float,
    categories: Iterable[str],
) -> Optional[CachedRegion]:
    """Live (active or refreshing) region for exactly this centre, radius and category set"""
    lon, lat = center
    return db.query(CachedRegion).filter(
        CachedRegion.center_longitude == lon,
        CachedRegion.center_latitude == lat,
        CachedRegion.radius_meters == radius_meters,
        CachedRegion.category_key == category_key(normalize_categories(categories)),
        CachedRegion.status.in_([STATUS_ACTIVE, STATUS_REFRESHING]),
    ).order_by(CachedRegion.id).first()


def upsert_region(
    db: Session,
    center: Tuple[float, float],
    radius_meters: float,
    categories: Iterable[str],
    place_count: int,
    policy: Optional[FreshnessPolicy] = None,
    source: str = "geoapify",
    now: Optional[datetime] = None,
) -> CachedRegion:
    """
    Create or refresh the region for exactly this query.

    expires_at comes from the most volatile category in the set. An existing
    live region gets new timing and an incremented refresh_count; its status
    is left alone so a concurrent refresh keeps its lock. Expired regions are
    never revived: a new region supersedes them.
    """
    policy = policy or default_policy
    now = now or datetime.now(timezone.utc)
    lon, lat = center
    categories = normalize_categories(categories)
    expires_at = policy.expiry_for_categories(categories, now)

    region = find_exact_region(db, center, radius_meters, categories)
    if region:
        region.place_count = place_count
        region.expires_at = expires_at
        region.last_refreshed_at = now
        region.refresh_count = CachedRegion.refresh_count + 1
    else:
        region = CachedRegion(
            center_longitude=lon,
            center_latitude=lat,
            radius_meters=radius_meters,
            categories=categories,
            category_key=category_key(categories),
            place_count=place_count,
            cached_at=now,
            expires_at=expires_at,
            last_refreshed_at=now,
            refresh_count=0,
            status=STATUS_ACTIVE,
            source=source,
        )
        db.add(region)

    db.commit()
    db.refresh(region)
    logger.info(f"Cached region {region.id} for {len(categories)} categories, {place_count} places, expires {expires_at.isoformat()}")
    return region


def mark_refreshing(db: Session, region: CachedRegion) -> bool:
    """
    active -> refreshing. Takes the region out of fuzzy-match candidacy.
    Returns False when the region was not active (someone else holds it).
    """
    claimed = db.query(CachedRegion).filter(
        CachedRegion.id == region.id,
        CachedRegion.status == STATUS_ACTIVE,
    ).update({CachedRegion.status: STATUS_REFRESHING}, synchronize_session=False)
    db.commit()
    db.refresh(region)
    return claimed == 1


def complete_refresh(
    db: Session,
    region: CachedRegion,
    place_count: int,
    expires_at: datetime,
    now: Optional[datetime] = None,
) -> CachedRegion:
    """refreshing -> active after a successful fetch, with new expiry and refresh_count + 1"""
    now = now or datetime.now(timezone.utc)
    region.status = STATUS_ACTIVE
    region.place_count = place_count
    region.expires_at = expires_at
    region.last_refreshed_at = now
    region.refresh_count = CachedRegion.refresh_count + 1
    db.commit()
    db.refresh(region)
    return region


def release_refresh(db: Session, region: CachedRegion) -> CachedRegion:
    """refreshing -> active after a failed fetch. expires_at is untouched so the next cycle retries."""
    region.status = STATUS_ACTIVE
    db.commit()
    db.refresh(region)
    return region


def find_expired_regions(db: Session, limit: int = 10, now: Optional[datetime] = None) -> List[CachedRegion]:
    """Active regions past their expiry, oldest expiry first"""
    now = now or datetime.now(timezone.utc)
    return db.query(CachedRegion).filter(
        CachedRegion.status == STATUS_ACTIVE,
        CachedRegion.expires_at < now,
    ).order_by(CachedRegion.expires_at, CachedRegion.id).limit(limit).all()


def cleanup_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Housekeeping sweep: flag active regions past expiry as 'expired'. Returns the number flagged."""
    now = now or datetime.now(timezone.utc)
    flagged = db.query(CachedRegion).filter(
        CachedRegion.status == STATUS_ACTIVE,
        CachedRegion.expires_at < now,
    ).update({CachedRegion.status: STATUS_EXPIRED}, synchronize_session=False)
    db.commit()
    return flagged


def region_stats(db: Session) -> dict:
    counts = dict(db.query(CachedRegion.status, func.count(CachedRegion.id)).group_by(CachedRegion.status).all())
    return {
        "total_regions": sum(counts.values()),
        "regions_by_status": {status: counts.get(status, 0) for status in REGION_STATUSES},
    }
