import asyncio

import httpx
import pytest

from placecache.core.exceptions import ProviderError
from placecache.services.providers import GeoapifyProvider, PlaceProvider, fetch_with_timeout

from factories import BANGALORE, FakeProvider


def _feature(place_id="abc123", name="Koshy's", categories=("catering", "catering.restaurant"), lon=77.6, lat=12.97, **props):
    properties = {
        "place_id": place_id,
        "name": name,
        "categories": list(categories),
        "formatted": "39 St Marks Rd, Bengaluru",
        "address_line1": "Koshy's",
        "street": "St Marks Road",
        "housenumber": "39",
        "city": "Bengaluru",
        "state": "Karnataka",
        "country": "India",
        "postcode": "560001",
        "contact": {"phone": "+91 80 2221 3793"},
        "opening_hours": "Mo-Su 09:00-23:00",
    }
    properties.update(props)
    return {"type": "Feature", "properties": properties, "geometry": {"type": "Point", "coordinates": [lon, lat]}}


def _provider(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeoapifyProvider(api_key="test-key", base_url="https://api.geoapify.test/v2/places", client=client, limit=50)


async def test_request_params():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={"type": "FeatureCollection", "features": []})

    places = await _provider(handler).fetch_places(BANGALORE, 3000, ["restaurants"])

    assert places == []
    assert seen["filter"] == "circle:77.59,12.97,3000"
    assert seen["bias"] == "proximity:77.59,12.97"
    assert seen["limit"] == "50"
    assert seen["apiKey"] == "test-key"
    assert "catering.restaurant" in seen["categories"].split(",")


async def test_features_are_parsed_into_place_records():
    def handler(request):
        return httpx.Response(200, json={"features": [_feature(), _feature(place_id="p2", name=None, categories=["healthcare.hospital"])]})

    places = await _provider(handler).fetch_places(BANGALORE, 3000, ["restaurants", "hospitals"])

    first, second = places
    assert first["external_id"] == "abc123"
    assert first["category"] == "restaurants"
    assert first["longitude"] == 77.6
    assert first["latitude"] == 12.97
    assert first["formatted_address"] == "39 St Marks Rd, Bengaluru"
    assert first["house_number"] == "39"
    assert first["postal_code"] == "560001"
    assert first["phone"] == "+91 80 2221 3793"
    assert first["source"] == "geoapify"
    assert second["name"] == "Koshy's"  # falls back to address_line1
    assert second["category"] == "hospitals"


def test_parse_feature_defaults():
    record = GeoapifyProvider.parse_feature({"properties": {"place_id": "x"}, "geometry": {}})
    assert record["name"] == "Unknown Place"
    assert record["category"] == "other"
    assert record["latitude"] is None


async def test_non_200_raises_provider_error():
    provider = _provider(lambda request: httpx.Response(401, json={"message": "Invalid apiKey"}))
    with pytest.raises(ProviderError, match="401"):
        await provider.fetch_places(BANGALORE, 3000, ["restaurants"])


async def test_invalid_json_raises_provider_error():
    provider = _provider(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(ProviderError, match="invalid JSON"):
        await provider.fetch_places(BANGALORE, 3000, ["restaurants"])


async def test_missing_features_raises_provider_error():
    provider = _provider(lambda request: httpx.Response(200, json={"error": "quota"}))
    with pytest.raises(ProviderError, match="features"):
        await provider.fetch_places(BANGALORE, 3000, ["restaurants"])


async def test_transport_error_raises_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError):
        await _provider(handler).fetch_places(BANGALORE, 3000, ["restaurants"])


async def test_timeout_raises_provider_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderError, match="timed out"):
        await _provider(handler).fetch_places(BANGALORE, 3000, ["restaurants"])


async def test_unmapped_categories_raise_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"features": []})

    with pytest.raises(ProviderError):
        await _provider(handler).fetch_places(BANGALORE, 3000, ["zoos"])
    assert calls == []


async def test_fetch_with_timeout_wraps_unexpected_errors():
    provider = FakeProvider(error=KeyError("boom"))
    with pytest.raises(ProviderError, match="KeyError"):
        await fetch_with_timeout(provider, BANGALORE, 3000, ["restaurants"])


async def test_fetch_with_timeout_bounds_slow_providers():
    provider = FakeProvider(gate=asyncio.Event())
    with pytest.raises(ProviderError, match="did not respond"):
        await fetch_with_timeout(provider, BANGALORE, 3000, ["restaurants"], timeout=0.05)


async def test_fetch_with_timeout_rejects_non_list():
    class BadProvider(PlaceProvider):
        name = "bad"

        async def fetch_places(self, center, radius_meters, categories):
            return {"features": []}

    with pytest.raises(ProviderError, match="expected a list"):
        await fetch_with_timeout(BadProvider(), BANGALORE, 3000, ["restaurants"])
