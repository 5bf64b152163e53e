"""
Place Category Catalog

Internal category enumeration with display data, freshness rules and the
Geoapify taxonomy each category is queried with. Pure data plus lookups;
nothing here touches the database or the network.
"""
from typing import Dict, Iterable, List, Optional

OTHER_CATEGORY = "other"

DEFAULT_LABEL = "Place"
DEFAULT_ICON = "📍"
DEFAULT_COLOR = "#999999"

# Order matters: when a provider category maps to several internal ones
# with equal specificity, the earlier entry wins (unless one was requested).
CATEGORY_CATALOG: Dict[str, dict] = {
    "cafes": {
        "label": "Cafe",
        "icon": "☕",
        "color": "#A0522D",
        "ttl_hours": 7 * 24,  # menus/hours change often
        "provider_categories": ["catering.cafe", "catering.bakery", "catering.ice_cream"],
    },
    "restaurants": {
        "label": "Restaurant",
        "icon": "🍽️",
        "color": "#FF6B6B",
        "ttl_hours": 7 * 24,
        "provider_categories": ["catering.restaurant", "catering.cafe", "catering.fast_food", "catering"],
    },
    "hospitals": {
        "label": "Hospital",
        "icon": "🏥",
        "color": "#FF4757",
        "ttl_hours": 90 * 24,  # rarely change
        "provider_categories": [
            "healthcare.hospital", "healthcare.clinic_or_praxis", "healthcare.pharmacy", "healthcare",
        ],
    },
    "malls": {
        "label": "Mall",
        "icon": "🛍️",
        "color": "#5F27CD",
        "ttl_hours": 30 * 24,
        "provider_categories": [
            "commercial.shopping_mall", "commercial.department_store", "commercial.marketplace",
        ],
    },
    "supermarkets": {
        "label": "Supermarket",
        "icon": "🏪",
        "color": "#48DBFB",
        "ttl_hours": 30 * 24,
        "provider_categories": ["commercial.supermarket", "commercial.convenience", "commercial.food_and_drink"],
    },
    "petrol_pumps": {
        "label": "Petrol Pump",
        "icon": "⛽",
        "color": "#FFA502",
        "ttl_hours": 30 * 24,
        "provider_categories": ["service.vehicle.fuel", "service.vehicle.charging_station", "commercial.gas"],
    },
    "banks": {
        "label": "Bank",
        "icon": "🏦",
        "color": "#1E90FF",
        "ttl_hours": 60 * 24,
        "provider_categories": ["service.financial.bank", "service.financial.atm", "service.financial"],
    },
    "entertainment": {
        "label": "Entertainment",
        "icon": "🎬",
        "color": "#E84393",
        "ttl_hours": 14 * 24,  # events and programmes change
        "provider_categories": [
            "entertainment.cinema", "entertainment.culture", "entertainment.activity_park",
            "tourism.attraction", "entertainment",
        ],
    },
    "hotels": {
        "label": "Hotel",
        "icon": "🏨",
        "color": "#FD79A8",
        "ttl_hours": 30 * 24,
        "provider_categories": ["accommodation.hotel", "accommodation"],
    },
    "parks": {
        "label": "Park",
        "icon": "🌳",
        "color": "#00B894",
        "ttl_hours": 180 * 24,  # very stable
        "provider_categories": ["leisure.park", "national_park", "leisure.park.garden"],
    },
    "transport": {
        "label": "Transport",
        "icon": "🚉",
        "color": "#636E72",
        "ttl_hours": 60 * 24,
        "provider_categories": ["public_transport.train", "public_transport.subway", "public_transport"],
    },
    "parking": {
        "label": "Parking",
        "icon": "🅿️",
        "color": "#B2BEC3",
        "ttl_hours": 90 * 24,
        "provider_categories": ["parking"],
    },
}


def _build_provider_index() -> Dict[str, List[str]]:
    index: Dict[str, List[str]] = {}
    for category, info in CATEGORY_CATALOG.items():
        for provider_category in info["provider_categories"]:
            index.setdefault(provider_category, []).append(category)
    return index


PROVIDER_CATEGORY_INDEX = _build_provider_index()


def known_categories() -> List[str]:
    return list(CATEGORY_CATALOG.keys())


def normalize_categories(categories: Optional[Iterable[str]]) -> List[str]:
    """Strip, lowercase, deduplicate and sort. An empty selection means every catalogued category."""
    if isinstance(categories, str):
        categories = categories.split(",")
    cleaned = sorted({c.strip().lower() for c in (categories or []) if c and c.strip()})
    if not cleaned:
        return sorted(CATEGORY_CATALOG.keys())
    return cleaned


def provider_categories_for(categories: Iterable[str]) -> List[str]:
    """Translate internal categories to the provider taxonomy (ordered, deduplicated)"""
    result: List[str] = []
    for category in categories:
        for provider_category in CATEGORY_CATALOG.get(category, {}).get("provider_categories", []):
            if provider_category not in result:
                result.append(provider_category)
    return result


def category_from_provider(
    provider_categories: Optional[Iterable[str]],
    requested: Optional[Iterable[str]] = None,
) -> str:
    """
    Pick the internal category for a provider record.

    Each provider category is matched on its longest known prefix
    ("catering.restaurant.pizza" -> "catering.restaurant"). The most specific
    match wins; ties prefer a requested category, then catalog order.
    """
    requested_set = set(requested or [])
    catalog_order = {category: i for i, category in enumerate(CATEGORY_CATALOG)}

    best = None
    for provider_category in provider_categories or []:
        parts = str(provider_category).split(".")
        for depth in range(len(parts), 0, -1):
            prefix = ".".join(parts[:depth])
            for category in PROVIDER_CATEGORY_INDEX.get(prefix, []):
                rank = (depth, category in requested_set, -catalog_order[category])
                if best is None or rank > best[0]:
                    best = (rank, category)
            if prefix in PROVIDER_CATEGORY_INDEX:
                break

    return best[1] if best else OTHER_CATEGORY


def category_label(category: str) -> str:
    return CATEGORY_CATALOG.get(category, {}).get("label", DEFAULT_LABEL)


def category_icon(category: str) -> str:
    return CATEGORY_CATALOG.get(category, {}).get("icon", DEFAULT_ICON)


def category_color(category: str) -> str:
    return CATEGORY_CATALOG.get(category, {}).get("color", DEFAULT_COLOR)
