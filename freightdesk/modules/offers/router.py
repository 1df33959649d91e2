# freightdesk/modules/offers/router.py
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from typing import Optional

from freightdesk.config.database import get_db
from freightdesk.core.auth.dependencies import get_current_user, get_transporter_user
from freightdesk.shared.services.notifications import NotificationDispatcher, get_notifier
from freightdesk.modules.requests.schemas import TransportRequestResponse
from .service import OfferService, to_response
from .schemas import OfferCreate, OfferListResponse, OfferActionResponse, OfferAcceptResponse

router = APIRouter()


def get_offer_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OfferService:
    return OfferService(db, notifier=notifier)


@router.post("", response_model=OfferActionResponse, status_code=201)
async def submit_offer(
    data: OfferCreate,
    current_user = Depends(get_transporter_user),
    service: OfferService = Depends(get_offer_service)
):
    """
    Propose a price directly (legacy path)

    **Rules:**
    - One offer per transporter per request
    - Only on `open` or `published_for_matching` requests
    - `load_type`: `return` or `shared`
    """
    offer = await service.submit_offer(
        data.request_id, current_user.id, data.amount, data.load_type, data.pickup_date
    )
    return OfferActionResponse(success=True, message="Offer submitted", offer=to_response(offer))


@router.get("", response_model=OfferListResponse)
async def list_offers(
    request_id: Optional[int] = Query(None, description="Offers on one request; omit for your own offers"),
    current_user = Depends(get_current_user),
    service: OfferService = Depends(get_offer_service)
):
    offers = await service.list_offers(current_user, request_id)
    return OfferListResponse(
        success=True, offers=[to_response(o) for o in offers], count=len(offers)
    )


@router.post("/{offer_id}/accept", response_model=OfferAcceptResponse)
async def accept_offer(
    offer_id: int = Path(..., description="Offer ID"),
    current_user = Depends(get_current_user),
    service: OfferService = Depends(get_offer_service)
):
    """
    Accept an offer

    The request moves to `accepted`, other offers are rejected and every
    interest signal is invalidated. Fails with `409 already_assigned` when a
    transporter was committed first.
    """
    offer, transport_request = await service.accept_offer(offer_id, current_user)
    return OfferAcceptResponse(
        success=True,
        message="Offer accepted",
        offer=to_response(offer),
        request=TransportRequestResponse.model_validate(transport_request),
    )
