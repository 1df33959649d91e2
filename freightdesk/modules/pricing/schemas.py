# freightdesk/modules/pricing/schemas.py
from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime


class PricingInput(BaseModel):
    """Route and cargo signature the engine prices"""
    from_city: str
    to_city: str
    distance_km: Optional[float] = None
    goods_type: str = ""
    description: str = ""
    estimated_weight_kg: Optional[float] = None
    handling_required: bool = False
    departure_floor: Optional[int] = None
    departure_elevator: Optional[bool] = None
    arrival_floor: Optional[int] = None
    arrival_elevator: Optional[bool] = None

    @property
    def needs_handling(self) -> bool:
        """Explicit handling, or stairs at either end"""
        if self.handling_required:
            return True
        for floor, elevator in (
            (self.departure_floor, self.departure_elevator),
            (self.arrival_floor, self.arrival_elevator),
        ):
            if floor and floor > 0 and not elevator:
                return True
        return False

    @classmethod
    def from_request(cls, request) -> "PricingInput":
        return cls(
            from_city=request.from_city,
            to_city=request.to_city,
            distance_km=request.distance_km,
            goods_type=request.goods_type or "",
            description=request.description or "",
            estimated_weight_kg=request.estimated_weight_kg,
            handling_required=bool(request.handling_required),
            departure_floor=request.departure_floor,
            departure_elevator=request.departure_elevator,
            arrival_floor=request.arrival_floor,
            arrival_elevator=request.arrival_elevator,
        )


class MarketQuote(BaseModel):
    """Traditional-market and discounted marketplace price for one request"""
    traditional_price: int = Field(..., ge=0)
    marketplace_price: int = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)
    reasoning: List[str] = []


class ExternalEstimatorReply(BaseModel):
    """Structured JSON the external estimator must answer with"""
    traditional_price_mad: float
    marketplace_price_mad: Optional[float] = None
    confidence: float = 0.5
    reasoning: List[str] = []

    @validator('traditional_price_mad', 'marketplace_price_mad')
    def validate_price(cls, v):
        if v is not None and v < 0:
            raise ValueError('Price cannot be negative')
        return v

    @validator('confidence')
    def clamp_confidence(cls, v):
        return max(0.0, min(1.0, v))

    @validator('reasoning', pre=True)
    def coerce_reasoning(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v]


class PriceEstimate(BaseModel):
    """Three-way split returned by the engine"""
    client_total: int
    transporter_fee: int
    platform_fee: int
    confidence: float
    reasoning: List[str]
    source: str = Field(..., description="ai or heuristic")
    traditional_price: Optional[int] = None
    estimated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_fallback(self) -> bool:
        return self.source == "heuristic"


class PricingPreviewResponse(BaseModel):
    request_id: int
    reference_code: str
    estimate: PriceEstimate
    current_client_total: Optional[int] = None
