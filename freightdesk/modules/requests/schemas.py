# freightdesk/modules/requests/schemas.py
from pydantic import BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.schemas.lifecycle import ArchiveReason, PaymentStatus



# ===== INPUTS =====

class TransportRequestCreate(BaseModel):
    """Request posted by a client"""
    from_city: str = Field(..., min_length=1, max_length=120)
    from_address: Optional[str] = Field(None, max_length=255)
    to_city: str = Field(..., min_length=1, max_length=120)
    to_address: Optional[str] = Field(None, max_length=255)
    distance_km: Optional[float] = Field(None, ge=0)
    goods_type: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    estimated_weight_kg: Optional[float] = Field(None, ge=0)
    handling_required: bool = False
    departure_floor: Optional[int] = Field(None, ge=0, le=60)
    departure_elevator: Optional[bool] = None
    arrival_floor: Optional[int] = Field(None, ge=0, le=60)
    arrival_elevator: Optional[bool] = None
    desired_date: datetime
    client_id: Optional[int] = Field(None, description="Only staff may post on behalf of a client")

    @validator('from_city', 'to_city', 'goods_type', 'description')
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Field cannot be blank')
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "from_city": "Casablanca",
                "to_city": "Marrakech",
                "distance_km": 240,
                "goods_type": "Déménagement",
                "description": "Studio: bed, fridge, 15 boxes",
                "handling_required": True,
                "departure_floor": 3,
                "departure_elevator": False,
                "desired_date": "2026-11-02T09:00:00"
            }
        }


class QualifyRequest(BaseModel):
    """Optional coordinator overrides of the suggested price"""
    client_total: Optional[int] = Field(None, ge=0)
    transporter_fee: Optional[int] = Field(None, ge=0)
    platform_fee: Optional[int] = Field(None, ge=0)
    reset_timestamps: bool = Field(False, description="Restamp qualification even if already set")
    note: Optional[str] = None


class CompleteRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)


class CancelRequest(BaseModel):
    reason: str = Field(..., description="Mandatory cancellation reason")

    @validator('reason')
    def strip_reason(cls, v):
        return v.strip()


class ArchiveRequest(BaseModel):
    reason: ArchiveReason
    comment: Optional[str] = None


class RequalifyRequest(BaseModel):
    reason: str

    @validator('reason')
    def strip_reason(cls, v):
        return v.strip()


class MarkAsPaidRequest(BaseModel):
    receipt_reference: str = Field(..., max_length=255)

    @validator('receipt_reference')
    def strip_receipt(cls, v):
        return v.strip()


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


# ===== OUTPUTS =====

class TransportRequestResponse(BaseModel):
    id: int
    reference_code: str
    client_id: int
    from_city: str
    from_address: Optional[str] = None
    to_city: str
    to_address: Optional[str] = None
    distance_km: Optional[float] = None
    goods_type: str
    description: str
    estimated_weight_kg: Optional[float] = None
    handling_required: bool = False
    departure_floor: Optional[int] = None
    departure_elevator: Optional[bool] = None
    arrival_floor: Optional[int] = None
    arrival_elevator: Optional[bool] = None
    desired_date: datetime

    client_total: Optional[int] = None
    transporter_fee: Optional[int] = None
    platform_fee: Optional[int] = None
    pricing_confidence: Optional[float] = None
    pricing_source: Optional[str] = None
    pricing_reasoning: Optional[List[str]] = None

    status: str
    coordination_status: str
    coordination_reminder_date: Optional[datetime] = None
    assigned_coordinator_id: Optional[int] = None
    assigned_transporter_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    accepted_offer_id: Optional[int] = None
    is_hidden: bool = False
    archive_reason: Optional[str] = None
    archive_comment: Optional[str] = None
    cancellation_reason: Optional[str] = None
    requalification_reason: Optional[str] = None

    payment_status: str
    payment_receipt_reference: Optional[str] = None
    payment_date: Optional[datetime] = None

    created_at: Optional[datetime] = None
    qualified_at: Optional[datetime] = None
    published_for_matching_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OpenRequestResponse(BaseModel):
    """Transporter-facing view: no client total, no platform margin"""
    id: int
    reference_code: str
    from_city: str
    to_city: str
    distance_km: Optional[float] = None
    goods_type: str
    description: str
    estimated_weight_kg: Optional[float] = None
    handling_required: bool = False
    desired_date: datetime
    transporter_fee: Optional[int] = None
    published_for_matching_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RequestActionResponse(BaseResponse):
    request: TransportRequestResponse


class RequestListResponse(BaseResponse):
    requests: List[TransportRequestResponse]
    count: int


class OpenRequestListResponse(BaseResponse):
    requests: List[OpenRequestResponse]
    count: int


class RequestEventResponse(BaseModel):
    id: int
    kind: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
