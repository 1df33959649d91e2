# freightdesk/modules/matching/schemas.py
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.services.profiles import TransporterProfile
from freightdesk.modules.requests.schemas import TransportRequestResponse


class ExpressInterestRequest(BaseModel):
    availability_date: datetime = Field(..., description="Date the transporter can do the job")
    transporter_id: Optional[int] = Field(None, description="Staff only: signal on behalf of a transporter")


class AssignTransporterRequest(BaseModel):
    transporter_id: int
    transporter_fee: Optional[int] = Field(None, ge=0, description="Defaults to the qualified fee")
    platform_fee: Optional[int] = Field(None, ge=0, description="Defaults to the qualified fee")


class InterestVisibilityUpdate(BaseModel):
    hidden: bool


class InterestSignalResponse(BaseModel):
    id: int
    request_id: int
    transporter_id: int
    availability_date: datetime
    date_match: str = Field(..., description="exact or alternative")
    is_hidden_from_client: bool
    is_selected: bool
    invalidated_at: Optional[datetime] = None
    invalidation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    transporter: Optional[TransporterProfile] = None


class InterestResponse(BaseResponse):
    interest: InterestSignalResponse


class InterestedListResponse(BaseResponse):
    request_id: int
    interests: List[InterestSignalResponse]
    count: int


class AssignmentResponse(BaseResponse):
    request: TransportRequestResponse
    invalidated_interests: int
