# freightdesk/modules/pricing/engine.py
import asyncio
import logging
from datetime import timedelta
from typing import Optional, Protocol

from fastapi import Request

from freightdesk.config.settings import settings
from freightdesk.modules.pricing.schemas import PricingInput, MarketQuote, PriceEstimate
from freightdesk.modules.pricing.heuristic import heuristic_quote
from freightdesk.modules.pricing.cache import PriceEstimateCache, cache_key
from freightdesk.modules.pricing.ai_estimator import OpenAIPriceEstimator, PricingUnavailable

logger = logging.getLogger(__name__)

# ===== RECONCILIATION & SPLIT CONSTANTS =====
DEVIATION_THRESHOLD = 0.6
CONFIDENCE_FLOOR = 0.65
TRANSPORTER_SHARE_PERCENT = 60
PLATFORM_SHARE_PERCENT = 100 - TRANSPORTER_SHARE_PERCENT
MIN_PLATFORM_FEE = 200
MIN_CLIENT_TOTAL = MIN_PLATFORM_FEE * 100 // PLATFORM_SHARE_PERCENT
MAX_CLIENT_TOTAL = 20000

SOURCE_AI = "ai"
SOURCE_HEURISTIC = "heuristic"


class PriceEstimator(Protocol):
    async def estimate(self, pricing_input: PricingInput) -> MarketQuote:
        ...


def split_total(total: int):
    """
    Clamp to the ceiling, raise to the floor, then split 60/40.
    Returns (client_total, transporter_fee, platform_fee) with
    platform_fee >= MIN_PLATFORM_FEE.
    """
    total = min(int(total), MAX_CLIENT_TOTAL)
    total = max(total, MIN_CLIENT_TOTAL)
    transporter_fee = total * TRANSPORTER_SHARE_PERCENT // 100
    platform_fee = total - transporter_fee
    return total, transporter_fee, platform_fee


def deviation(candidate: int, reference: int) -> float:
    if reference <= 0:
        return 0.0 if candidate <= 0 else float("inf")
    return abs(candidate - reference) / reference


class PricingEngine:
    """Produces a client / transporter / platform split. Never raises."""

    def __init__(
        self,
        cache: PriceEstimateCache,
        estimator: Optional[PriceEstimator] = None,
        timeout_seconds: float = 20.0,
    ):
        self.cache = cache
        self.estimator = estimator
        self.timeout_seconds = timeout_seconds

    async def estimate(self, pricing_input: PricingInput) -> PriceEstimate:
        key = cache_key(pricing_input)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"💾 Pricing cache hit: {pricing_input.from_city} -> {pricing_input.to_city}")
            return cached.model_copy(deep=True)

        heuristic = heuristic_quote(pricing_input)

        if self.estimator is None:
            return self._build(heuristic, SOURCE_HEURISTIC)

        try:
            external = await self._call_estimator(pricing_input)
        except PricingUnavailable as e:
            logger.warning(f"⚠️ External estimator unavailable, using heuristic: {e}")
            return self._build(heuristic, SOURCE_HEURISTIC, "External estimator unavailable")

        drift = deviation(external.marketplace_price, heuristic.marketplace_price)
        if drift > DEVIATION_THRESHOLD and external.confidence < CONFIDENCE_FLOOR:
            logger.warning(
                f"⚠️ External estimate {external.marketplace_price} deviates {drift:.0%} from heuristic "
                f"{heuristic.marketplace_price} with confidence {external.confidence:.2f}, using heuristic"
            )
            return self._build(heuristic, SOURCE_HEURISTIC, "External estimate rejected (too far from tariff)")

        estimate = self._build(external, SOURCE_AI)
        # callers get their own copy, the cached entry stays untouched
        self.cache.set(key, estimate.model_copy(deep=True))
        logger.info(
            f"✅ Priced {pricing_input.from_city} -> {pricing_input.to_city}: "
            f"{estimate.client_total} MAD (confidence {estimate.confidence:.2f})"
        )
        return estimate

    async def _call_estimator(self, pricing_input: PricingInput) -> MarketQuote:
        """Every estimator failure becomes PricingUnavailable"""
        try:
            return await asyncio.wait_for(
                self.estimator.estimate(pricing_input),
                timeout=self.timeout_seconds,
            )
        except PricingUnavailable:
            raise
        except asyncio.TimeoutError:
            raise PricingUnavailable(f"No answer within {self.timeout_seconds}s")
        except Exception as e:
            logger.exception("Unexpected estimator failure")
            raise PricingUnavailable(str(e)) from e

    @staticmethod
    def _build(quote: MarketQuote, source: str, note: Optional[str] = None) -> PriceEstimate:
        client_total, transporter_fee, platform_fee = split_total(quote.marketplace_price)
        reasoning = list(quote.reasoning)
        if note:
            reasoning.insert(0, note)
        if client_total != quote.marketplace_price:
            reasoning.append(f"Total adjusted to {client_total} MAD (bounds {MIN_CLIENT_TOTAL}-{MAX_CLIENT_TOTAL})")
        return PriceEstimate(
            client_total=client_total,
            transporter_fee=transporter_fee,
            platform_fee=platform_fee,
            confidence=quote.confidence,
            reasoning=reasoning,
            source=source,
            traditional_price=quote.traditional_price,
        )


def build_pricing_engine() -> PricingEngine:
    """Engine wired from settings, one per application"""
    cache = PriceEstimateCache(ttl=timedelta(hours=settings.pricing_cache_ttl_hours))
    estimator = None
    if settings.ai_pricing_enabled and settings.ai_api_key:
        estimator = OpenAIPriceEstimator()
    else:
        logger.info("⚠️ External pricing disabled, heuristic tariff only")
    return PricingEngine(cache=cache, estimator=estimator, timeout_seconds=settings.ai_timeout_seconds)


def get_pricing_engine(request: Request) -> PricingEngine:
    """FastAPI dependency, engine lives on app.state"""
    return request.app.state.pricing_engine
