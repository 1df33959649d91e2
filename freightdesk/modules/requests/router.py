# freightdesk/modules/requests/router.py
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from typing import Optional

from freightdesk.config.database import get_db
from freightdesk.core.auth.dependencies import (
    get_current_user, get_client_user, get_transporter_user, get_staff_user
)
from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.schemas.lifecycle import RequestStatus, CoordinationStatus, TriageGroup
from freightdesk.shared.services.notifications import NotificationDispatcher, get_notifier
from freightdesk.modules.pricing.engine import PricingEngine, get_pricing_engine
from .service import RequestService
from .schemas import (
    TransportRequestCreate, QualifyRequest, CompleteRequest, CancelRequest, ArchiveRequest,
    RequalifyRequest, MarkAsPaidRequest, PaymentStatusUpdate,
    TransportRequestResponse, OpenRequestResponse, RequestActionResponse,
    RequestListResponse, OpenRequestListResponse
)

router = APIRouter()


def get_request_service(
    db: Session = Depends(get_db),
    pricing_engine: PricingEngine = Depends(get_pricing_engine),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> RequestService:
    return RequestService(db, pricing_engine=pricing_engine, notifier=notifier)


def _action_response(transport_request, message: str) -> RequestActionResponse:
    return RequestActionResponse(
        success=True,
        message=message,
        request=TransportRequestResponse.model_validate(transport_request),
    )


# ===== CREATE / READ =====

@router.post("", response_model=RequestActionResponse, status_code=201)
async def create_request(
    data: TransportRequestCreate,
    current_user = Depends(get_client_user),
    service: RequestService = Depends(get_request_service)
):
    """
    Post a new transport request

    **Behaviour:**
    - Starts in `qualification_pending` (coordination `qualification_pending`)
    - Gets the next `CMD-<year>-<sequence>` reference code
    - Staff may post on behalf of a client with `client_id`
    """
    transport_request = await service.create_request(data, current_user)
    return _action_response(transport_request, f"Request {transport_request.reference_code} created")


@router.get("", response_model=RequestListResponse)
async def list_requests(
    status: Optional[RequestStatus] = Query(None),
    coordination_status: Optional[CoordinationStatus] = Query(None),
    triage: Optional[TriageGroup] = Query(None, description="Staff only: en_action or prioritaire"),
    include_hidden: bool = Query(True, description="Staff only"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user = Depends(get_current_user),
    service: RequestService = Depends(get_request_service)
):
    """Staff see every request, clients their own"""
    requests = await service.list_requests(
        current_user,
        status=status.value if status else None,
        coordination_status=coordination_status.value if coordination_status else None,
        triage=triage,
        include_hidden=include_hidden,
        limit=limit,
        offset=offset,
    )
    return RequestListResponse(
        success=True,
        requests=[TransportRequestResponse.model_validate(r) for r in requests],
        count=len(requests),
    )


@router.get("/open", response_model=OpenRequestListResponse)
async def list_open_requests(
    limit: int = Query(100, ge=1, le=500),
    current_user = Depends(get_transporter_user),
    service: RequestService = Depends(get_request_service)
):
    """
    Transporter feed

    Requests published for matching and not hidden. Only the transporter fee
    is exposed.
    """
    requests = await service.list_open_for_transporters(limit=limit)
    return OpenRequestListResponse(
        success=True,
        requests=[OpenRequestResponse.model_validate(r) for r in requests],
        count=len(requests),
    )


@router.get("/{request_id}", response_model=TransportRequestResponse)
async def get_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_current_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.get_request(request_id, current_user)
    return TransportRequestResponse.model_validate(transport_request)


@router.delete("/{request_id}", response_model=BaseResponse)
async def delete_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_current_user),
    service: RequestService = Depends(get_request_service)
):
    """Hard delete with interests, offers, notes and history"""
    await service.delete_request(request_id, current_user)
    return BaseResponse(success=True, message=f"Request {request_id} deleted")


# ===== LIFECYCLE =====

@router.post("/{request_id}/qualify", response_model=RequestActionResponse)
async def qualify_request(
    request_id: int = Path(..., description="Request ID"),
    overrides: Optional[QualifyRequest] = None,
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    """
    Qualify and publish for matching

    **Pricing:**
    - Without overrides the pricing engine suggests the split
    - `client_total` alone is split 60/40 with the minimum platform fee
    - `transporter_fee` + `platform_fee` are taken as given (platform fee >= 200)

    **Timestamps:** `qualified_at` and `published_for_matching_at` are only set
    the first time unless `reset_timestamps` is true.
    """
    transport_request = await service.qualify(request_id, current_user, overrides)
    return _action_response(transport_request, "Request qualified and published for matching")


@router.post("/{request_id}/start", response_model=RequestActionResponse)
async def start_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_current_user),
    service: RequestService = Depends(get_request_service)
):
    """Pickup confirmed by the assigned transporter or a coordinator"""
    transport_request = await service.start(request_id, current_user)
    return _action_response(transport_request, "Transport started")


@router.post("/{request_id}/complete", response_model=RequestActionResponse)
async def complete_request(
    request_id: int = Path(..., description="Request ID"),
    data: CompleteRequest = CompleteRequest(),
    current_user = Depends(get_current_user),
    service: RequestService = Depends(get_request_service)
):
    """Delivery confirmed, with an optional 1-5 rating of the transporter"""
    transport_request = await service.complete(request_id, current_user, data.rating)
    return _action_response(transport_request, "Transport completed")


@router.post("/{request_id}/cancel", response_model=RequestActionResponse)
async def cancel_request(
    data: CancelRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.cancel(request_id, current_user, data.reason)
    return _action_response(transport_request, "Request cancelled")


@router.post("/{request_id}/archive", response_model=RequestActionResponse)
async def archive_request(
    data: ArchiveRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.archive(request_id, current_user, data.reason, data.comment)
    return _action_response(transport_request, "Request archived")


@router.post("/{request_id}/republish", response_model=RequestActionResponse)
async def republish_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    """Bring an archived request back to qualification"""
    transport_request = await service.republish(request_id, current_user)
    return _action_response(transport_request, "Request republished")


@router.post("/{request_id}/requalify", response_model=RequestActionResponse)
async def requalify_request(
    data: RequalifyRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    """
    Cancel the assignment and requalify

    The assignee is cleared, every interest is invalidated and the request
    goes back to `published_for_matching`.
    """
    transport_request = await service.requalify(request_id, current_user, data.reason)
    return _action_response(transport_request, "Request requalified")


# ===== PAYMENT =====

@router.post("/{request_id}/payment/mark-for-billing", response_model=RequestActionResponse)
async def mark_for_billing(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_transporter_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.mark_for_billing(request_id, current_user)
    return _action_response(transport_request, "Awaiting client payment")


@router.post("/{request_id}/payment/mark-as-paid", response_model=RequestActionResponse)
async def mark_as_paid(
    data: MarkAsPaidRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_client_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.mark_as_paid(request_id, current_user, data.receipt_reference)
    return _action_response(transport_request, "Payment submitted for validation")


@router.post("/{request_id}/payment/validate", response_model=RequestActionResponse)
async def validate_payment(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    transport_request = await service.validate_payment(request_id, current_user)
    return _action_response(transport_request, "Payment validated")


@router.patch("/{request_id}/payment-status", response_model=RequestActionResponse)
async def set_payment_status(
    data: PaymentStatusUpdate,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: RequestService = Depends(get_request_service)
):
    """Coordinator override, forward only"""
    transport_request = await service.set_payment_status(request_id, current_user, data.payment_status)
    return _action_response(transport_request, f"Payment status set to {data.payment_status.value}")
