"""
Place Background Refresh

Periodically re-fetches cached regions whose results have expired so the
cache does not silently go stale between client requests.

Each cycle handles a small batch of expired regions. A region is locked
('refreshing') while its provider call runs, which also hides it from
readers; on failure it is released without a new expiry and retried on
the next cycle.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import SessionLocal
from ..core.exceptions import PlaceUpsertError, ProviderError
from ..models.cached_region import CachedRegion
from ..schemas.place import RefreshReport
from . import place_store, region_index
from .freshness import FreshnessPolicy, default_policy
from .providers import PlaceProvider, fetch_with_timeout

logger = logging.getLogger(__name__)


class PlaceRefreshJob:
    """Refreshes expired cached regions. At most one cycle runs at a time per process."""

    def __init__(
        self,
        provider: PlaceProvider,
        session_factory: Callable[[], Session] = SessionLocal,
        policy: Optional[FreshnessPolicy] = None,
        batch_size: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.policy = policy or default_policy
        self.batch_size = batch_size or settings.REFRESH_BATCH_SIZE
        self.fetch_timeout = fetch_timeout or settings.PROVIDER_CALL_TIMEOUT_SECONDS
        self.is_running = False

    async def refresh_expired_regions(self) -> RefreshReport:
        """One refresh cycle. Skipped entirely if a cycle is already running."""
        if self.is_running:
            logger.warning("Place refresh already running, skipping this tick")
            return RefreshReport(skipped=True)

        self.is_running = True
        report = RefreshReport()
        start_time = datetime.now(timezone.utc)
        db = self.session_factory()

        try:
            logger.info("Starting place refresh cycle")
            regions = region_index.find_expired_regions(db, limit=self.batch_size)
            report.regions_found = len(regions)

            if not regions:
                logger.info("No expired regions found")
                return report

            logger.info(f"Found {len(regions)} expired regions")
            for region in regions:
                upserted = await self.refresh_region(db, region)
                if upserted is None:
                    report.regions_failed += 1
                else:
                    report.regions_refreshed += 1
                    report.places_upserted += upserted

        except Exception as e:
            logger.exception(f"Place refresh cycle failed: {e}")
            db.rollback()
        finally:
            db.close()
            self.is_running = False

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Place refresh completed: {report.regions_refreshed} refreshed, "
            f"{report.regions_failed} failed in {elapsed:.1f} seconds"
        )
        return report

    async def refresh_region(self, db: Session, region: CachedRegion) -> Optional[int]:
        """
        Refresh one region: lock, fetch, upsert, set new expiry, unlock.
        Returns the number of places upserted, or None when the region was not refreshed.
        """
        if not region_index.mark_refreshing(db, region):
            logger.info(f"Region {region.id} is no longer active, skipping")
            return None

        logger.info(
            f"Refreshing region {region.id} at ({region.center_latitude}, {region.center_longitude}) "
            f"r={region.radius_meters:.0f}m categories: {', '.join(region.categories)}"
        )

        try:
            records = await fetch_with_timeout(
                self.provider, region.center, region.radius_meters, region.categories, self.fetch_timeout,
            )
            try:
                result = place_store.upsert_many(db, records)
            except PlaceUpsertError as e:
                logger.error(f"Region {region.id}: {e}")
                self._release(db, region)
                return None

            now = datetime.now(timezone.utc)
            expires_at = self.policy.expiry_for(region.primary_category, now)
            region_index.complete_refresh(db, region, place_count=len(records), expires_at=expires_at, now=now)

        except asyncio.CancelledError:
            # A cancelled refresh must leave the region active
            logger.warning(f"Refresh of region {region.id} cancelled, releasing it")
            db.rollback()
            self._release(db, region)
            raise
        except ProviderError as e:
            logger.error(f"Error refreshing region {region.id}: {e}")
            db.rollback()
            self._release(db, region)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error refreshing region {region.id}: {e}")
            db.rollback()
            self._release(db, region)
            return None

        logger.info(f"Region {region.id} refreshed with {result.succeeded} places, next refresh {expires_at.isoformat()}")
        return result.succeeded

    def _release(self, db: Session, region: CachedRegion) -> None:
        try:
            region_index.release_refresh(db, region)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not release region {region.id} after failed refresh: {e}")


def run_region_cleanup(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """Scheduled housekeeping: flag active regions past expiry as expired"""
    db = session_factory()
    try:
        flagged = region_index.cleanup_expired(db)
        logger.info(f"Region cleanup marked {flagged} regions as expired")
        return flagged
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Region cleanup failed: {e}")
        return 0
    finally:
        db.close()
