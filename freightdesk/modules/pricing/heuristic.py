# freightdesk/modules/pricing/heuristic.py
from freightdesk.modules.pricing.schemas import PricingInput, MarketQuote

# ===== TARIFF CONSTANTS (MAD) =====
BASE_FARE = 700
PER_KM_RATE = 3.5
HANDLING_FEE = 400
DEFAULT_DISTANCE_KM = 100
MARKETPLACE_DISCOUNT = 0.8
HEURISTIC_CONFIDENCE = 0.3

# First matching keyword wins
CATEGORY_MULTIPLIERS = [
    (("déménagement", "demenagement"), 1.3),
    (("fragile",), 1.2),
    (("vrac", "construction"), 0.9),
]


def category_multiplier(goods_type: str) -> float:
    lowered = (goods_type or "").lower()
    for keywords, multiplier in CATEGORY_MULTIPLIERS:
        if any(keyword in lowered for keyword in keywords):
            return multiplier
    return 1.0


def heuristic_quote(pricing_input: PricingInput) -> MarketQuote:
    """
    Deterministic tariff:
    base_fare + distance_km * per_km_rate * category_multiplier + handling fee,
    then the marketplace discount
    """
    distance = pricing_input.distance_km
    if distance is None or distance <= 0:
        distance = DEFAULT_DISTANCE_KM

    multiplier = category_multiplier(pricing_input.goods_type)
    distance_cost = distance * PER_KM_RATE * multiplier
    handling = HANDLING_FEE if pricing_input.needs_handling else 0

    traditional = BASE_FARE + distance_cost + handling
    marketplace = traditional * MARKETPLACE_DISCOUNT

    reasoning = [
        "Heuristic tariff",
        f"Base fare: {BASE_FARE} MAD",
        f"Distance: {distance:g} km x {PER_KM_RATE} MAD/km x {multiplier} = {round(distance_cost)} MAD",
    ]
    if handling:
        reasoning.append(f"Handling: {HANDLING_FEE} MAD")
    reasoning.append(f"Marketplace discount: {round((1 - MARKETPLACE_DISCOUNT) * 100)}%")

    return MarketQuote(
        traditional_price=round(traditional),
        marketplace_price=round(marketplace),
        confidence=HEURISTIC_CONFIDENCE,
        reasoning=reasoning,
    )
