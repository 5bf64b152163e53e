import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from placecache.core.config import settings
from placecache.models import CachedRegion, Place, STATUS_ACTIVE, STATUS_EXPIRED
from placecache.services import region_index, scheduler
from placecache.services.freshness import FreshnessPolicy
from placecache.services.place_refresh import PlaceRefreshJob, run_region_cleanup

from factories import BANGALORE, FakeProvider, failing_provider, make_place, offset_point


def _expired_region(db, center=BANGALORE, categories=("restaurants",), days_ago=30):
    return region_index.upsert_region(
        db, center, 3000, list(categories), place_count=1,
        now=datetime.now(timezone.utc) - timedelta(days=days_ago),
    )


async def test_refresh_updates_expired_region(db, session_factory):
    region = _expired_region(db)
    old_expiry = region.expires_at
    provider = FakeProvider([make_place("r1", meters=100), make_place("r2", meters=200)])
    policy = FreshnessPolicy({"restaurants": 48})
    job = PlaceRefreshJob(provider, session_factory=session_factory, policy=policy)

    report = await job.refresh_expired_regions()

    assert report.regions_found == 1
    assert report.regions_refreshed == 1
    assert report.places_upserted == 2
    assert len(provider.calls) == 1
    assert provider.calls[0][2] == ["restaurants"]

    db.expire_all()
    region = db.get(CachedRegion, region.id)
    assert region.status == STATUS_ACTIVE
    assert region.refresh_count == 1
    assert region.place_count == 2
    assert region.expires_at > old_expiry
    assert region.expires_at > datetime.now(timezone.utc) + timedelta(hours=47)
    assert db.query(Place).count() == 2
    assert job.is_running is False


async def test_refresh_expiry_follows_primary_category(db, session_factory):
    region = _expired_region(db, categories=["parks", "cafes"])
    policy = FreshnessPolicy({"cafes": 10, "parks": 1000})
    job = PlaceRefreshJob(FakeProvider([make_place("p1", category="parks")]), session_factory=session_factory, policy=policy)

    await job.refresh_expired_regions()

    db.expire_all()
    region = db.get(CachedRegion, region.id)
    # categories are stored sorted, so "cafes" is the primary category
    assert region.primary_category == "cafes"
    assert region.expires_at < datetime.now(timezone.utc) + timedelta(hours=11)


async def test_provider_failure_reverts_region(db, session_factory):
    region = _expired_region(db)
    old_expiry = region.expires_at
    job = PlaceRefreshJob(failing_provider(), session_factory=session_factory)

    report = await job.refresh_expired_regions()

    assert report.regions_failed == 1
    assert report.regions_refreshed == 0
    db.expire_all()
    region = db.get(CachedRegion, region.id)
    assert region.status == STATUS_ACTIVE
    assert region.expires_at == old_expiry
    assert region.refresh_count == 0

    # Still expired, so the next cycle retries it
    assert [r.id for r in region_index.find_expired_regions(db)] == [region.id]


async def test_all_records_failing_reverts_region(db, session_factory):
    region = _expired_region(db)
    old_expiry = region.expires_at
    job = PlaceRefreshJob(FakeProvider([make_place("bad", latitude=500)]), session_factory=session_factory)

    report = await job.refresh_expired_regions()

    assert report.regions_failed == 1
    db.expire_all()
    region = db.get(CachedRegion, region.id)
    assert region.status == STATUS_ACTIVE
    assert region.expires_at == old_expiry


async def test_one_failing_region_does_not_stop_the_batch(db, session_factory):
    _expired_region(db, categories=["restaurants"], days_ago=40)
    _expired_region(db, center=offset_point(BANGALORE, 20000), categories=["restaurants"], days_ago=30)

    class FlakyProvider(FakeProvider):
        async def fetch_places(self, center, radius_meters, categories):
            if not self.calls:
                self.calls.append(center)
                raise RuntimeError("connection reset")
            return await super().fetch_places(center, radius_meters, categories)

    provider = FlakyProvider([make_place("r1")])
    job = PlaceRefreshJob(provider, session_factory=session_factory)

    report = await job.refresh_expired_regions()

    assert report.regions_found == 2
    assert report.regions_failed == 1
    assert report.regions_refreshed == 1


async def test_batch_size_limits_regions_per_cycle(db, session_factory):
    for i in range(3):
        _expired_region(db, center=offset_point(BANGALORE, 20000 * (i + 1)))
    provider = FakeProvider([make_place("r1")])
    job = PlaceRefreshJob(provider, session_factory=session_factory, batch_size=2)

    report = await job.refresh_expired_regions()

    assert report.regions_found == 2
    assert len(provider.calls) == 2
    assert len(region_index.find_expired_regions(db)) == 1


async def test_no_expired_regions_makes_no_provider_calls(db, session_factory):
    region_index.upsert_region(db, BANGALORE, 3000, ["restaurants"], place_count=1)
    provider = FakeProvider([make_place("r1")])
    job = PlaceRefreshJob(provider, session_factory=session_factory)

    report = await job.refresh_expired_regions()

    assert report.regions_found == 0
    assert provider.calls == []


async def test_overlapping_cycle_is_skipped(db, session_factory):
    _expired_region(db)
    gate = asyncio.Event()
    provider = FakeProvider([make_place("r1")], gate=gate)
    job = PlaceRefreshJob(provider, session_factory=session_factory)

    first = asyncio.create_task(job.refresh_expired_regions())
    await asyncio.wait_for(provider.started.wait(), timeout=5)
    assert job.is_running is True

    second = await job.refresh_expired_regions()

    assert second.skipped is True
    assert len(provider.calls) == 1

    gate.set()
    report = await first
    assert report.regions_refreshed == 1
    assert len(provider.calls) == 1
    assert job.is_running is False


def test_run_region_cleanup(db, session_factory):
    _expired_region(db)
    assert run_region_cleanup(session_factory) == 1

    db.expire_all()
    assert db.query(CachedRegion).one().status == STATUS_EXPIRED


async def test_scheduler_registers_jobs(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", True)
    job = PlaceRefreshJob(FakeProvider(), session_factory=session_factory)

    started = scheduler.start_scheduler(job)
    try:
        assert started is not None
        assert {j.id for j in started.get_jobs()} == {"place_refresh", "place_refresh_startup", "region_cleanup_daily"}
        assert started.get_job("place_refresh").max_instances == 1
        # A second start is a no-op
        assert scheduler.start_scheduler(job) is started
    finally:
        scheduler.stop_scheduler()

    assert scheduler.scheduler is None


async def test_scheduler_disabled(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    assert scheduler.start_scheduler(PlaceRefreshJob(FakeProvider(), session_factory=session_factory)) is None


def test_trigger_refresh_requires_running_scheduler():
    with pytest.raises(RuntimeError):
        scheduler.trigger_refresh()


async def test_cancelled_refresh_releases_region(db, session_factory):
    region = _expired_region(db)
    provider = FakeProvider([make_place("r1")], gate=asyncio.Event())
    job = PlaceRefreshJob(provider, session_factory=session_factory)

    task = asyncio.create_task(job.refresh_expired_regions())
    await asyncio.wait_for(provider.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    db.expire_all()
    assert db.get(CachedRegion, region.id).status == STATUS_ACTIVE
    assert [r.id for r in region_index.find_expired_regions(db)] == [region.id]
    assert job.is_running is False


async def test_manual_trigger_queues_guarded_refresh(db, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", True)
    _expired_region(db)
    gate = asyncio.Event()
    provider = FakeProvider([make_place("r1")], gate=gate)
    job = PlaceRefreshJob(provider, session_factory=session_factory)

    running = asyncio.create_task(job.refresh_expired_regions())
    await asyncio.wait_for(provider.started.wait(), timeout=5)

    started = scheduler.start_scheduler(job)
    try:
        scheduler.trigger_refresh()
        manual = started.get_job("place_refresh_manual")
        assert manual is not None
        assert manual.func == job.refresh_expired_regions

        # Same guard as the interval job: no second provider call while a cycle runs
        report = await manual.func()
        assert report.skipped is True
        assert len(provider.calls) == 1
    finally:
        scheduler.stop_scheduler()
        gate.set()

    assert (await running).regions_refreshed == 1
