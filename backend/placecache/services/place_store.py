"""
Place Store

Normalized storage of provider place records keyed by external_id.

Bulk upserts take a fast path first (one multi-row INSERT that skips rows
whose external_id already exists) and then upsert every remaining record
individually inside its own savepoint, so one bad record never loses the
rest of the batch.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import PlaceUpsertError
from ..models.place import Place
from ..schemas.place import PlaceIn, UpsertResult
from .geo import bbox_filters, distance_meters

logger = logging.getLogger(__name__)

# Columns overwritten on every upsert. Cache metadata is handled separately.
PLACE_FIELDS = (
    "name", "category", "category_label", "icon", "color",
    "latitude", "longitude",
    "formatted_address", "street", "house_number", "city", "state", "country", "postal_code",
    "phone", "website", "email",
    "provider_categories", "opening_hours",
)

# Dialects with INSERT ... ON CONFLICT DO NOTHING ... RETURNING
_BULK_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _record_id(record) -> str:
    if isinstance(record, PlaceIn):
        return record.external_id
    if isinstance(record, dict):
        return str(record.get("external_id") or "<missing external_id>")
    return f"<{type(record).__name__}>"


def parse_place(record) -> PlaceIn:
    """Validate a provider record. Raises pydantic.ValidationError on bad data."""
    if isinstance(record, PlaceIn):
        return record
    return PlaceIn.model_validate(record)


def parse_places(records: Iterable) -> Tuple[List[PlaceIn], List[str]]:
    """Split records into valid places and the identities of rejected ones"""
    valid, rejected = [], []
    for record in records:
        try:
            valid.append(parse_place(record))
        except ValidationError:
            rejected.append(_record_id(record))
    return valid, rejected


def _fields_for(place: PlaceIn) -> dict:
    return {field: getattr(place, field) for field in PLACE_FIELDS}


def _insert_row(place: PlaceIn, now: datetime) -> dict:
    row = _fields_for(place)
    row.update(
        external_id=place.external_id,
        first_cached_at=now,
        last_updated_at=now,
        last_verified_at=now,
        update_count=0,
        source=place.source,
    )
    return row


def _bulk_insert(db: Session, places: List[PlaceIn], now: datetime) -> set:
    """
    Insert all places in one statement, skipping external_ids that already exist.
    Returns the external_ids actually inserted (empty when the fast path is unavailable).
    """
    insert = _BULK_INSERTS.get(db.get_bind().dialect.name)
    if insert is None or not places:
        return set()

    stmt = (
        insert(Place)
        .values([_insert_row(place, now) for place in places])
        .on_conflict_do_nothing(index_elements=["external_id"])
        .returning(Place.external_id)
    )
    try:
        with db.begin_nested():
            return set(db.execute(stmt).scalars().all())
    except SQLAlchemyError as e:
        logger.warning(f"Batch insert of {len(places)} places failed, falling back to per-record upserts: {e}")
        return set()


def upsert_place(db: Session, place: PlaceIn, now: Optional[datetime] = None) -> Tuple[Place, bool]:
    """
    Insert or update one place matched on external_id.

    Updates overwrite the descriptive fields, bump last_updated_at and
    increment update_count. first_cached_at and source are only set on insert.
    Returns (place, created).
    """
    now = now or datetime.now(timezone.utc)
    existing = db.query(Place).filter(Place.external_id == place.external_id).first()

    if existing:
        for field, value in _fields_for(place).items():
            setattr(existing, field, value)
        existing.last_updated_at = now
        existing.last_verified_at = now
        existing.update_count = Place.update_count + 1
        db.flush()
        return existing, False

    new_place = Place(**_insert_row(place, now))
    db.add(new_place)
    db.flush()
    return new_place, True


def upsert_many(db: Session, records: Iterable, now: Optional[datetime] = None) -> UpsertResult:
    """
    Upsert a batch of provider records.

    Invalid records and per-record database errors are logged and counted as
    failed; the rest of the batch continues. Raises PlaceUpsertError only
    when every record of a non-empty batch failed.
    """
    now = now or datetime.now(timezone.utc)
    records = list(records)
    result = UpsertResult()

    places: List[PlaceIn] = []
    for record in records:
        try:
            places.append(parse_place(record))
        except ValidationError as e:
            result.failed += 1
            result.failed_ids.append(_record_id(record))
            logger.error(f"Rejected place {_record_id(record)}: {e.error_count()} validation error(s): {e.errors()[0]['msg']}")

    # Fast path: first occurrence of each external_id in one INSERT
    first_seen = {}
    for place in places:
        first_seen.setdefault(place.external_id, place)
    inserted_ids = _bulk_insert(db, list(first_seen.values()), now)

    for place in places:
        if place.external_id in inserted_ids and first_seen[place.external_id] is place:
            result.inserted += 1
            continue

        try:
            with db.begin_nested():
                _, created = upsert_place(db, place, now)
        except SQLAlchemyError as e:
            result.failed += 1
            result.failed_ids.append(place.external_id)
            logger.error(f"Error upserting place {place.external_id}: {e}")
            continue

        if created:
            result.inserted += 1
        else:
            result.updated += 1

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error committing {result.succeeded} places: {e}")
        result = UpsertResult(failed=len(records), failed_ids=[_record_id(r) for r in records])

    if records and result.succeeded == 0:
        raise PlaceUpsertError(f"All {len(records)} places failed to upsert", result=result)

    logger.info(f"Upserted places: {result.inserted} inserted, {result.updated} updated, {result.failed} failed")
    return result


def find_nearby(
    db: Session,
    center: Tuple[float, float],
    radius_meters: float,
    categories: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> List[Tuple[Place, float]]:
    """Places within radius_meters of center (longitude, latitude), nearest first, as (place, distance) pairs"""
    lon, lat = center
    limit = limit or settings.NEARBY_RESULT_LIMIT

    filters = bbox_filters(Place.latitude, Place.longitude, lat, lon, radius_meters)
    categories = list(categories or [])
    if categories:
        filters.append(Place.category.in_(categories))

    nearby = []
    for place in db.query(Place).filter(*filters).all():
        distance = distance_meters(lat, lon, place.latitude, place.longitude)
        if distance <= radius_meters:
            nearby.append((place, distance))

    nearby.sort(key=lambda item: (item[1], item[0].id))
    return nearby[:limit]


def find_stale_places(
    db: Session,
    max_age_hours: float = 24,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Place]:
    """Places not updated for more than max_age_hours, oldest first"""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=max_age_hours)
    query = db.query(Place).filter(Place.last_updated_at < cutoff).order_by(Place.last_updated_at)
    if limit:
        query = query.limit(limit)
    return query.all()


def place_stats(db: Session, now: Optional[datetime] = None) -> dict:
    """Place totals per category and freshness buckets (<24h, 1-7 days, >7 days)"""
    now = now or datetime.now(timezone.utc)
    one_day_ago = now - timedelta(days=1)
    one_week_ago = now - timedelta(days=7)

    by_category = db.query(Place.category, func.count(Place.id)).group_by(Place.category).all()
    last_updated = db.query(func.max(Place.last_updated_at)).scalar()

    def count(*filters) -> int:
        return db.query(func.count(Place.id)).filter(*filters).scalar() or 0

    return {
        "total_places": count(),
        "places_by_category": {category: total for category, total in by_category},
        "freshness": {
            "fresh": count(Place.last_updated_at >= one_day_ago),
            "recent": count(Place.last_updated_at >= one_week_ago, Place.last_updated_at < one_day_ago),
            "stale": count(Place.last_updated_at < one_week_ago),
        },
        "last_updated": last_updated.isoformat() if last_updated else None,
    }
