# freightdesk/shared/schemas/common.py
from pydantic import BaseModel, Field
from datetime import datetime

class BaseResponse(BaseModel):
    """Envelope shared by every endpoint response"""
    success: bool
    message: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
