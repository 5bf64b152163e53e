"""
Place Providers

The cache core only needs something that can fetch place records for a
(center, radius, categories) query. Provider specifics (query syntax,
taxonomy translation, credentials) stay in the adapter.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import httpx

from ..core.config import settings
from ..core.exceptions import ProviderError
from .categories import category_from_provider, provider_categories_for

logger = logging.getLogger(__name__)


class PlaceProvider(ABC):
    """Fetches place records around a point. Each record must carry a stable external_id."""

    name = "provider"

    @abstractmethod
    async def fetch_places(
        self,
        center: Tuple[float, float],
        radius_meters: float,
        categories: Sequence[str],
    ) -> List[dict]:
        """Return place records for the circle around center (longitude, latitude)"""


async def fetch_with_timeout(
    provider: PlaceProvider,
    center: Tuple[float, float],
    radius_meters: float,
    categories: Sequence[str],
    timeout: Optional[float] = None,
) -> List[dict]:
    """
    Call a provider with an upper time bound.
    Any failure, including a timeout, is raised as ProviderError.
    """
    timeout = timeout or settings.PROVIDER_CALL_TIMEOUT_SECONDS
    try:
        records = await asyncio.wait_for(
            provider.fetch_places(center, radius_meters, list(categories)),
            timeout=timeout,
        )
    except ProviderError:
        raise
    except asyncio.TimeoutError:
        raise ProviderError(f"{provider.name} did not respond within {timeout:.0f}s")
    except Exception as e:
        raise ProviderError(f"{provider.name} fetch failed: {type(e).__name__}: {e}") from e

    if records is None:
        return []
    if not isinstance(records, list):
        raise ProviderError(f"{provider.name} returned {type(records).__name__}, expected a list of places")
    return records


class GeoapifyProvider(PlaceProvider):
    """Geoapify Places API v2 adapter"""

    name = "geoapify"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        limit: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEOAPIFY_API_KEY
        self.base_url = base_url or settings.GEOAPIFY_BASE_URL
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.limit = limit or settings.PROVIDER_RESULT_LIMIT
        self.client = client

        if not self.api_key:
            logger.warning("GEOAPIFY_API_KEY is not set, Geoapify requests will be rejected")

    def build_params(self, center: Tuple[float, float], radius_meters: float, categories: Sequence[str]) -> dict:
        lon, lat = center
        return {
            "categories": ",".join(provider_categories_for(categories)),
            "filter": f"circle:{lon},{lat},{int(round(radius_meters))}",
            "bias": f"proximity:{lon},{lat}",
            "limit": self.limit,
            "apiKey": self.api_key,
        }

    async def fetch_places(self, center, radius_meters, categories) -> List[dict]:
        params = self.build_params(center, radius_meters, categories)
        if not params["categories"]:
            raise ProviderError(f"No Geoapify categories for {list(categories)}")

        logger.info(f"Fetching places from Geoapify around {center} r={radius_meters:.0f}m, categories: {list(categories)}")

        try:
            if self.client is not None:
                response = await self.client.get(self.base_url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.base_url, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Geoapify request timed out after {self.timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Geoapify request failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise ProviderError(f"Geoapify API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("Geoapify returned invalid JSON") from e

        features = data.get("features") if isinstance(data, dict) else None
        if not isinstance(features, list):
            raise ProviderError("Geoapify response has no features list")

        places = [self.parse_feature(feature, categories) for feature in features if isinstance(feature, dict)]
        logger.info(f"Fetched {len(places)} places from Geoapify")
        return places

    @staticmethod
    def parse_feature(feature: dict, requested: Sequence[str] = ()) -> dict:
        """Convert a GeoJSON feature into a place record. Geometry problems are left for validation."""
        props = feature.get("properties") or {}
        coordinates = (feature.get("geometry") or {}).get("coordinates") or [None, None]
        longitude, latitude = (list(coordinates) + [None, None])[:2]
        contact = props.get("contact") or {}
        provider_categories = props.get("categories") or []
        category = category_from_provider(provider_categories, requested)

        return {
            "external_id": props.get("place_id"),
            "name": props.get("name") or props.get("address_line1") or "Unknown Place",
            "category": category,
            "longitude": longitude,
            "latitude": latitude,
            "formatted_address": props.get("formatted") or props.get("address_line1"),
            "street": props.get("street"),
            "house_number": props.get("housenumber"),
            "city": props.get("city"),
            "state": props.get("state"),
            "country": props.get("country"),
            "postal_code": props.get("postcode"),
            "phone": contact.get("phone"),
            "website": props.get("website") or contact.get("website"),
            "email": contact.get("email"),
            "provider_categories": provider_categories,
            "opening_hours": props.get("opening_hours"),
            "source": "geoapify",
        }
