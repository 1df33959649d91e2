# freightdesk/modules/coordination/schemas.py
from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime

from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.schemas.lifecycle import CoordinationStatus
from freightdesk.modules.requests.schemas import TransportRequestResponse, RequestEventResponse


class CoordinationStatusUpdate(BaseModel):
    coordination_status: CoordinationStatus
    reminder_date: Optional[datetime] = Field(None, description="Follow-up date, e.g. for rappel_prevu")


class VisibilityUpdate(BaseModel):
    hidden: bool


class NoteCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)

    @validator('body')
    def validate_body(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Note cannot be empty')
        return v


class NoteResponse(BaseModel):
    id: int
    request_id: int
    author_id: int
    body: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CoordinationResponse(BaseResponse):
    request: TransportRequestResponse


class NoteListResponse(BaseResponse):
    notes: List[NoteResponse]
    count: int


class HistoryResponse(BaseResponse):
    request_id: int
    events: List[RequestEventResponse]
