# freightdesk/modules/pricing/ai_estimator.py
import json
import logging
from typing import Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from freightdesk.config.settings import settings
from freightdesk.modules.pricing.schemas import PricingInput, MarketQuote, ExternalEstimatorReply
from freightdesk.modules.pricing.heuristic import MARKETPLACE_DISCOUNT

logger = logging.getLogger(__name__)

MAX_EXTERNAL_PRICE = 20000

SYSTEM_PROMPT = (
    "You are a freight pricing expert for the Moroccan market. "
    "Answer ONLY with valid JSON in the requested format."
)


class PricingUnavailable(Exception):
    """External estimator failed or answered with something unusable"""


def build_prompt(pricing_input: PricingInput) -> str:
    distance = (
        f"{pricing_input.distance_km:g} km" if pricing_input.distance_km
        else "not computed (assume ~100-200 km)"
    )
    lines = [
        "Estimate the cost of this transport job in Moroccan dirhams (MAD).",
        "",
        f"- Client description: \"{(pricing_input.description or 'not specified')[:1000]}\"",
        f"- Goods category: {pricing_input.goods_type or 'uncategorised'}",
        f"- Distance: {distance}",
        f"- Route: {pricing_input.from_city} -> {pricing_input.to_city}",
        f"- Handling required: {'yes' if pricing_input.needs_handling else 'no'}",
    ]
    if pricing_input.estimated_weight_kg:
        lines.append(f"- Declared weight: {pricing_input.estimated_weight_kg:g} kg")
    lines += [
        "",
        "Give the price a traditional carrier would charge, and the discounted price "
        "on a marketplace that fills return and shared loads.",
        "",
        "Required JSON:",
        '{"traditional_price_mad": <number>, "marketplace_price_mad": <number>, '
        '"confidence": <0.0-1.0>, "reasoning": ["assumption 1", "assumption 2"]}',
    ]
    return "\n".join(lines)


class OpenAIPriceEstimator:
    """Client for an OpenAI-compatible chat completions endpoint"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.ai_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ai_api_key
        self.model = model or settings.ai_model
        self.timeout = timeout or settings.ai_timeout_seconds
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def estimate(self, pricing_input: PricingInput) -> MarketQuote:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(pricing_input)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.7,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers=self._get_headers(),
                )
        except httpx.TimeoutException:
            raise PricingUnavailable(f"Estimator timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise PricingUnavailable(f"Could not reach estimator: {e}")

        if response.status_code != 200:
            raise PricingUnavailable(f"Estimator error: {response.status_code} - {response.text[:200]}")

        return self.parse_reply(response.json())

    @staticmethod
    def parse_reply(payload: dict) -> MarketQuote:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise PricingUnavailable("Estimator response has no message content")
        if not content:
            raise PricingUnavailable("Estimator returned an empty message")

        try:
            reply = ExternalEstimatorReply(**json.loads(content))
        except (json.JSONDecodeError, TypeError, PydanticValidationError) as e:
            raise PricingUnavailable(f"Malformed estimator JSON: {e}")

        traditional = min(round(reply.traditional_price_mad), MAX_EXTERNAL_PRICE)
        marketplace = reply.marketplace_price_mad
        if marketplace is None:
            marketplace = traditional * MARKETPLACE_DISCOUNT
        marketplace = min(round(marketplace), MAX_EXTERNAL_PRICE)

        return MarketQuote(
            traditional_price=traditional,
            marketplace_price=marketplace,
            confidence=reply.confidence,
            reasoning=reply.reasoning or ["External estimate"],
        )
