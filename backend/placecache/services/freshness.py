"""
Freshness Policy

Maps a category to how long its cached results can be trusted. Different
kinds of places go stale at different rates: restaurants churn within
weeks, parks barely change in months.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

from ..core.config import settings
from .categories import CATEGORY_CATALOG


class FreshnessPolicy:
    """Category -> TTL lookup. Deterministic and total: unknown categories get the default."""

    def __init__(self, rules: Optional[Dict[str, float]] = None, default_hours: Optional[float] = None):
        if rules is None:
            rules = {category: info["ttl_hours"] for category, info in CATEGORY_CATALOG.items()}
        if default_hours is None:
            default_hours = settings.DEFAULT_TTL_HOURS

        for category, hours in list(rules.items()) + [("<default>", default_hours)]:
            if not isinstance(hours, (int, float)) or not math.isfinite(hours) or hours <= 0:
                raise ValueError(f"TTL for {category} must be a positive number of hours, got {hours!r}")

        self.rules = dict(rules)
        self.default_hours = float(default_hours)

    def ttl_hours(self, category: Optional[str]) -> float:
        return float(self.rules.get(category, self.default_hours))

    def ttl(self, category: Optional[str]) -> timedelta:
        return timedelta(hours=self.ttl_hours(category))

    def narrowest_ttl(self, categories: Iterable[str]) -> timedelta:
        """TTL of the most volatile category in the set"""
        ttls = [self.ttl(category) for category in categories]
        return min(ttls) if ttls else self.ttl(None)

    def expiry_for(self, category: Optional[str], now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now + self.ttl(category)

    def expiry_for_categories(self, categories: Iterable[str], now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now + self.narrowest_ttl(categories)


default_policy = FreshnessPolicy()
