# freightdesk/shared/services/profiles.py
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from freightdesk.shared.database.models import User
from freightdesk.core.auth.roles import normalize_role

logger = logging.getLogger(__name__)


class TransporterProfile(BaseModel):
    id: int
    name: Optional[str] = None
    phone_number: Optional[str] = None
    city: Optional[str] = None
    rating: float = 0.0
    total_ratings: int = 0
    total_trips: int = 0
    truck_photos: List[str] = []
    is_verified: bool = False


class ProfileService:
    """Read access to accounts owned by the auth/profile service"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_transporter(self, user_id: int) -> Optional[User]:
        user = self.get_user(user_id)
        if user is None or normalize_role(user.role) != "transporter":
            return None
        return user

    def get_profiles(self, user_ids: Iterable[int]) -> Dict[int, TransporterProfile]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(ids)).all()
        return {user.id: self.to_profile(user) for user in users}

    @staticmethod
    def to_profile(user: User) -> TransporterProfile:
        return TransporterProfile(
            id=user.id,
            name=user.name,
            phone_number=user.phone_number,
            city=user.city,
            rating=float(user.rating or 0),
            total_ratings=user.total_ratings or 0,
            total_trips=user.total_trips or 0,
            truck_photos=list(user.truck_photos or []),
            is_verified=bool(user.is_verified),
        )

    @staticmethod
    def apply_completion(user: User, rating: Optional[int] = None) -> None:
        """Count the trip and fold the rating into the running average. No commit."""
        user.total_trips = (user.total_trips or 0) + 1
        if rating is None:
            return
        count = user.total_ratings or 0
        current = Decimal(str(user.rating or 0))
        average = (current * count + Decimal(rating)) / (count + 1)
        user.rating = average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        user.total_ratings = count + 1
        logger.info(f"⭐ Transporter {user.id} rated {rating}, average now {user.rating}")
