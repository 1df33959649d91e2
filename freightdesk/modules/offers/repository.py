# freightdesk/modules/offers/repository.py
from sqlalchemy.orm import Session
from sqlalchemy import and_
from typing import List, Optional
from datetime import datetime

from freightdesk.shared.database.models import Offer
from freightdesk.shared.schemas.lifecycle import OfferStatus


class OfferRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, offer_id: int) -> Optional[Offer]:
        return self.db.query(Offer).filter(Offer.id == offer_id).first()

    def get_for_transporter(self, request_id: int, transporter_id: int) -> Optional[Offer]:
        return self.db.query(Offer).filter(
            and_(Offer.request_id == request_id, Offer.transporter_id == transporter_id)
        ).first()

    def list_for_request(self, request_id: int) -> List[Offer]:
        return (
            self.db.query(Offer)
            .filter(Offer.request_id == request_id)
            .order_by(Offer.created_at.asc(), Offer.id.asc())
            .all()
        )

    def list_for_transporter(self, transporter_id: int) -> List[Offer]:
        return (
            self.db.query(Offer)
            .filter(Offer.transporter_id == transporter_id)
            .order_by(Offer.created_at.desc(), Offer.id.desc())
            .all()
        )

    def create(self, request_id: int, transporter_id: int, amount: int,
               load_type: str, pickup_date: datetime) -> Offer:
        offer = Offer(
            request_id=request_id,
            transporter_id=transporter_id,
            amount=amount,
            load_type=load_type,
            pickup_date=pickup_date,
            status=OfferStatus.PENDING.value,
            created_at=datetime.now(),
        )
        self.db.add(offer)
        self.db.flush()
        return offer

    def mark_accepted(self, offer_id: int) -> bool:
        """Conditional on the offer still being pending"""
        updated = self.db.query(Offer).filter(
            and_(Offer.id == offer_id, Offer.status == OfferStatus.PENDING.value)
        ).update({"status": OfferStatus.ACCEPTED.value}, synchronize_session="fetch")
        return updated == 1
