# freightdesk/modules/matching/repository.py
from sqlalchemy.orm import Session
from sqlalchemy import and_
from typing import List, Optional
from datetime import datetime
import logging

from freightdesk.shared.database.models import TransporterInterest

logger = logging.getLogger(__name__)


class InterestRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, interest_id: int) -> Optional[TransporterInterest]:
        return self.db.query(TransporterInterest).filter(TransporterInterest.id == interest_id).first()

    def get_active(self, request_id: int, transporter_id: int) -> Optional[TransporterInterest]:
        return self.db.query(TransporterInterest).filter(
            and_(
                TransporterInterest.request_id == request_id,
                TransporterInterest.transporter_id == transporter_id,
                TransporterInterest.invalidated_at.is_(None),
            )
        ).first()

    def list_for_request(self, request_id: int, include_invalidated: bool = False,
                         include_hidden: bool = True) -> List[TransporterInterest]:
        """Earliest submission first"""
        query = self.db.query(TransporterInterest).filter(TransporterInterest.request_id == request_id)
        if not include_invalidated:
            query = query.filter(TransporterInterest.invalidated_at.is_(None))
        if not include_hidden:
            query = query.filter(TransporterInterest.is_hidden_from_client == False)
        return query.order_by(TransporterInterest.created_at.asc(), TransporterInterest.id.asc()).all()

    def create(self, request_id: int, transporter_id: int, availability_date: datetime) -> TransporterInterest:
        now = datetime.now()
        interest = TransporterInterest(
            request_id=request_id,
            transporter_id=transporter_id,
            availability_date=availability_date,
            is_hidden_from_client=False,
            is_selected=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(interest)
        self.db.flush()
        return interest

    def delete(self, interest: TransporterInterest) -> None:
        self.db.delete(interest)
        self.db.flush()
