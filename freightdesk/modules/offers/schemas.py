# freightdesk/modules/offers/schemas.py
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.schemas.lifecycle import LoadType
from freightdesk.modules.requests.schemas import TransportRequestResponse


class OfferCreate(BaseModel):
    request_id: int
    amount: int = Field(..., gt=0, description="Price asked by the transporter (MAD)")
    load_type: LoadType
    pickup_date: datetime


class OfferResponse(BaseModel):
    id: int
    request_id: int
    transporter_id: int
    amount: int
    client_amount: int = Field(..., description="Amount the client pays if this offer is accepted, platform fee included")
    load_type: str
    pickup_date: datetime
    status: str
    created_at: Optional[datetime] = None


class OfferListResponse(BaseResponse):
    offers: List[OfferResponse]
    count: int


class OfferActionResponse(BaseResponse):
    offer: OfferResponse


class OfferAcceptResponse(BaseResponse):
    offer: OfferResponse
    request: TransportRequestResponse
