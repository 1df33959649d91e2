# freightdesk/modules/pricing/cache.py
import threading
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from freightdesk.modules.pricing.schemas import PricingInput, PriceEstimate

logger = logging.getLogger(__name__)


def cache_key(pricing_input: PricingInput) -> str:
    """Route + cargo signature, description normalised"""
    normalized_desc = " ".join((pricing_input.description or "").lower().split())
    distance = "" if pricing_input.distance_km is None else f"{pricing_input.distance_km:g}"
    return "|".join([
        pricing_input.from_city.strip().lower(),
        pricing_input.to_city.strip().lower(),
        distance,
        (pricing_input.goods_type or "").strip().lower(),
        "h" if pricing_input.needs_handling else "",
        normalized_desc,
    ])


class PriceEstimateCache:
    """Process-local TTL cache. Losing it only costs a recomputation."""

    def __init__(self, ttl: timedelta = timedelta(hours=12), clock: Callable[[], datetime] = datetime.now):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[datetime, PriceEstimate]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[PriceEstimate]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, estimate = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return estimate

    def set(self, key: str, estimate: PriceEstimate) -> None:
        with self._lock:
            self._evict_expired_locked()
            self._entries[key] = (self._clock(), estimate)

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_expired_locked()

    def _evict_expired_locked(self) -> int:
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired price estimates")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
