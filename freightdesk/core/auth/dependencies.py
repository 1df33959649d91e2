# freightdesk/core/auth/dependencies.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from freightdesk.config.database import get_db
from freightdesk.shared.database.models import User
from freightdesk.shared.schemas.lifecycle import UserRole
from freightdesk.core.auth.service import AuthService
from freightdesk.core.auth.roles import normalize_role, STAFF_ROLES

security = HTTPBearer()

class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the current user from the bearer token"""

    payload = AuthService.verify_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    user = db.query(User).filter(User.id == payload.user_id).first()

    if user is None:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("Inactive user")

    return user

def require_roles(allowed_roles: List[str]):
    """Factory for a dependency restricted to the given roles"""
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        role = normalize_role(current_user.role)
        if role not in allowed_roles:
            raise AuthorizationError(
                f"Role '{current_user.role}' not allowed. Allowed roles: {allowed_roles}"
            )
        return current_user
    return role_checker

def get_client_user(current_user: User = Depends(require_roles([UserRole.CLIENT.value] + STAFF_ROLES))):
    return current_user

def get_transporter_user(current_user: User = Depends(require_roles([UserRole.TRANSPORTER.value] + STAFF_ROLES))):
    return current_user

def get_staff_user(current_user: User = Depends(require_roles(STAFF_ROLES))):
    """Coordinators and admins"""
    return current_user
