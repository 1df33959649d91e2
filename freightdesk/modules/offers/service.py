# freightdesk/modules/offers/service.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from freightdesk.config.settings import settings
from freightdesk.core.auth.roles import is_staff
from freightdesk.core.exceptions import (
    NotFound, ValidationError, InvalidTransition, AlreadyAssigned, PermissionDenied
)
from freightdesk.shared.database.models import Offer, TransportRequest, User
from freightdesk.shared.schemas.lifecycle import (
    RequestStatus, OfferStatus, LoadType, InterestInvalidation
)
from freightdesk.shared.services.notifications import NotificationDispatcher
from freightdesk.modules.pricing.engine import MIN_PLATFORM_FEE
from freightdesk.modules.requests.repository import RequestRepository
from freightdesk.modules.requests.state_machine import RequestStateMachine, COMMITTED_STATUSES
from .repository import OfferRepository
from .schemas import OfferResponse

logger = logging.getLogger(__name__)

OFFER_OPEN_STATUSES = {
    RequestStatus.OPEN.value,
    RequestStatus.PUBLISHED_FOR_MATCHING.value,
}


def commission_for(amount: int, percentage: Optional[int] = None) -> int:
    percentage = settings.commission_percentage if percentage is None else percentage
    return round(amount * percentage / 100)


def platform_fee_for(amount: int) -> int:
    """Commission, never below the platform minimum"""
    return max(commission_for(amount), MIN_PLATFORM_FEE)


def client_amount_for(amount: int) -> int:
    return amount + platform_fee_for(amount)


def to_response(offer: Offer) -> OfferResponse:
    return OfferResponse(
        id=offer.id,
        request_id=offer.request_id,
        transporter_id=offer.transporter_id,
        amount=offer.amount,
        client_amount=client_amount_for(offer.amount),
        load_type=offer.load_type,
        pickup_date=offer.pickup_date,
        status=offer.status,
        created_at=offer.created_at,
    )


class OfferService:
    """Legacy direct-offer path, exclusive with the interest/assignment path"""

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repository = OfferRepository(db)
        self.requests = RequestRepository(db)
        self.state_machine = RequestStateMachine(self.requests)
        self.notifier = notifier

    def _get_request(self, request_id: int) -> TransportRequest:
        transport_request = self.requests.get(request_id)
        if transport_request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return transport_request

    def _notify(self, transport_request: TransportRequest, event: str, **extra) -> None:
        if self.notifier is not None:
            self.notifier.notify(transport_request, event, **extra)

    async def submit_offer(self, request_id: int, transporter_id: int, amount: int,
                           load_type: LoadType, pickup_date: datetime) -> Offer:
        """One offer per transporter per request, only while the request is open"""
        if amount <= 0:
            raise ValidationError("amount must be positive", amount=amount)
        load_type = LoadType(load_type)

        transport_request = self._get_request(request_id)
        if transport_request.status not in OFFER_OPEN_STATUSES:
            raise InvalidTransition(
                "submit_offer", transport_request.status, message="Request no longer accepts offers"
            )
        if self.repository.get_for_transporter(request_id, transporter_id) is not None:
            raise ValidationError("You already made an offer on this request", request_id=request_id)

        try:
            offer = self.repository.create(request_id, transporter_id, amount, load_type.value, pickup_date)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("You already made an offer on this request", request_id=request_id)
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error saving offer on request {request_id}")
            raise HTTPException(status_code=500, detail=f"Error saving offer: {str(e)}")

        logger.info(f"✅ Offer {offer.id}: transporter {transporter_id} asks {amount} MAD for {transport_request.reference_code}")
        self._notify(transport_request, "offer_received", offer_id=offer.id)
        return offer

    async def list_offers(self, actor: User, request_id: Optional[int] = None) -> List[Offer]:
        if request_id is None:
            return self.repository.list_for_transporter(actor.id)
        transport_request = self._get_request(request_id)
        if is_staff(actor.role) or transport_request.client_id == actor.id:
            return self.repository.list_for_request(request_id)
        # transporters only see their own offer
        return [o for o in self.repository.list_for_request(request_id) if o.transporter_id == actor.id]

    async def accept_offer(self, offer_id: int, actor: User) -> Tuple[Offer, TransportRequest]:
        """
        Commit an offer. Same compare-and-set on the request status as an
        assignment, so at most one of the two paths can ever win.
        """
        try:
            offer = self.repository.get(offer_id)
            if offer is None:
                raise NotFound(f"Offer {offer_id} not found", offer_id=offer_id)
            transport_request = self._get_request(offer.request_id)
            if transport_request.client_id != actor.id and not is_staff(actor.role):
                raise PermissionDenied("Only the client or a coordinator can accept an offer")

            if transport_request.status in {s.value for s in COMMITTED_STATUSES}:
                raise AlreadyAssigned(transport_request.reference_code)
            if offer.status != OfferStatus.PENDING.value:
                raise InvalidTransition(
                    "accept_offer", transport_request.status,
                    message=f"Offer is '{offer.status}', only pending offers can be accepted",
                )

            platform_fee = platform_fee_for(offer.amount)
            now = datetime.now()

            try:
                self.state_machine.apply(
                    transport_request, "accept_offer", actor.id,
                    {
                        "assigned_transporter_id": offer.transporter_id,
                        "assigned_at": now,
                        "accepted_offer_id": offer.id,
                        "transporter_fee": offer.amount,
                        "platform_fee": platform_fee,
                        "client_total": client_amount_for(offer.amount),
                    },
                    details={"offer_id": offer.id, "amount": offer.amount, "platform_fee": platform_fee},
                    now=now,
                )
            except InvalidTransition as e:
                if e.current_status in {s.value for s in COMMITTED_STATUSES}:
                    raise AlreadyAssigned(transport_request.reference_code)
                raise

            if not self.repository.mark_accepted(offer.id):
                raise InvalidTransition("accept_offer", transport_request.status, message="Offer is no longer pending")
            self.requests.reject_offers(offer.request_id, [OfferStatus.PENDING.value], keep_offer_id=offer.id)
            self.requests.invalidate_interests(offer.request_id, InterestInvalidation.OFFER_ACCEPTED.value, now)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error accepting offer {offer_id}")
            raise HTTPException(status_code=500, detail=f"Error accepting offer: {str(e)}")

        logger.info(
            f"✅ Offer {offer.id} accepted for {transport_request.reference_code}: "
            f"{offer.amount} + {platform_fee} MAD"
        )
        self._notify(transport_request, "offer_accepted", offer_id=offer.id, transporter_id=offer.transporter_id)
        return offer, transport_request
