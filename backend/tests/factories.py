"""Test helpers: a scriptable place provider and record builders"""
import asyncio
from typing import List, Optional, Tuple

from geopy.distance import geodesic

from placecache.core.exceptions import ProviderError
from placecache.services.providers import PlaceProvider

BANGALORE = (77.59, 12.97)  # (longitude, latitude)


def offset_point(center: Tuple[float, float], meters: float, bearing: float = 90) -> Tuple[float, float]:
    """(longitude, latitude) of the point `meters` away from center along bearing"""
    lon, lat = center
    point = geodesic(meters=meters).destination((lat, lon), bearing)
    return (point.longitude, point.latitude)


def make_place(external_id: str, center=BANGALORE, meters: float = 0, bearing: float = 90,
               category: str = "restaurants", **fields) -> dict:
    lon, lat = offset_point(center, meters, bearing) if meters else center
    record = {
        "external_id": external_id,
        "name": f"Place {external_id}",
        "category": category,
        "longitude": lon,
        "latitude": lat,
        "formatted_address": f"{external_id} Main Road",
        "source": "geoapify",
    }
    record.update(fields)
    return record


class FakeProvider(PlaceProvider):
    name = "fake"

    def __init__(self, records: Optional[List[dict]] = None, error: Optional[Exception] = None,
                 gate: Optional[asyncio.Event] = None):
        self.records = records or []
        self.error = error
        self.gate = gate
        self.calls = []
        self.started = asyncio.Event()

    async def fetch_places(self, center, radius_meters, categories):
        self.calls.append((tuple(center), radius_meters, list(categories)))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [dict(record) for record in self.records]


def failing_provider(message: str = "provider down") -> FakeProvider:
    return FakeProvider(error=ProviderError(message))
