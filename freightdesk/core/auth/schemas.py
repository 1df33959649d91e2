# freightdesk/core/auth/schemas.py
from pydantic import BaseModel, Field
from typing import Optional


class TokenPayload(BaseModel):
    """Claims we rely on in tokens issued by the auth service"""
    user_id: int = Field(..., description="ID of the authenticated user")
    role: Optional[str] = Field(None, description="Role claim, informational only")
    exp: Optional[int] = None


class CurrentUser(BaseModel):
    id: int
    name: Optional[str] = None
    role: str
    is_active: bool

    class Config:
        from_attributes = True
