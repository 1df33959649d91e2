# freightdesk/core/auth/service.py
from datetime import datetime, timedelta
from typing import Optional
import logging

from jose import jwt, JWTError
from pydantic import ValidationError as PydanticValidationError

from freightdesk.config.settings import settings
from freightdesk.core.auth.schemas import TokenPayload

logger = logging.getLogger(__name__)


class AuthService:
    """Token verification. Issuing belongs to the external auth service."""

    @staticmethod
    def create_access_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
        """Sign a token with the shared secret (seed scripts and tests)"""
        expire = datetime.utcnow() + (expires_delta or timedelta(hours=12))
        to_encode = {"user_id": user_id, "role": role, "exp": expire}
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    @staticmethod
    def verify_token(token: str) -> Optional[TokenPayload]:
        """Decode and validate a bearer token, None when invalid or expired"""
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            return None
        try:
            return TokenPayload(**payload)
        except PydanticValidationError:
            logger.warning("Token payload is missing user_id")
            return None
