# freightdesk/modules/matching/router.py
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from typing import Optional

from freightdesk.config.database import get_db
from freightdesk.core.auth.dependencies import get_current_user, get_transporter_user, get_staff_user
from freightdesk.core.auth.roles import is_staff
from freightdesk.core.exceptions import PermissionDenied, NotFound
from freightdesk.shared.schemas.common import BaseResponse
from freightdesk.shared.services.notifications import NotificationDispatcher, get_notifier
from freightdesk.modules.requests.schemas import TransportRequestResponse
from .service import MatchingService, to_signal
from .schemas import (
    ExpressInterestRequest, AssignTransporterRequest, InterestVisibilityUpdate,
    InterestResponse, InterestedListResponse, AssignmentResponse
)

router = APIRouter()


def get_matching_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> MatchingService:
    return MatchingService(db, notifier=notifier)


def _resolve_transporter(current_user, transporter_id):
    if transporter_id is None or transporter_id == current_user.id:
        return current_user.id
    if not is_staff(current_user.role):
        raise PermissionDenied("You can only manage your own interest")
    return transporter_id


@router.post("/requests/{request_id}/interest", response_model=InterestResponse)
async def express_interest(
    data: ExpressInterestRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_transporter_user),
    service: MatchingService = Depends(get_matching_service)
):
    """
    Express or update availability for a published request

    **Idempotent:** a second call from the same transporter updates the
    availability date instead of creating another signal.
    """
    transporter_id = _resolve_transporter(current_user, data.transporter_id)
    interest, created = await service.express_interest(request_id, transporter_id, data.availability_date)
    return InterestResponse(
        success=True,
        message="Interest registered" if created else "Availability updated",
        interest=to_signal(interest, interest.request.desired_date),
    )


@router.delete("/requests/{request_id}/interest", response_model=BaseResponse)
async def withdraw_interest(
    request_id: int = Path(..., description="Request ID"),
    transporter_id: Optional[int] = Query(None, description="Staff only"),
    current_user = Depends(get_transporter_user),
    service: MatchingService = Depends(get_matching_service)
):
    removed = await service.withdraw_interest(request_id, _resolve_transporter(current_user, transporter_id))
    return BaseResponse(success=True, message="Interest withdrawn" if removed else "No active interest")


@router.get("/requests/{request_id}/interested", response_model=InterestedListResponse)
async def list_interested(
    request_id: int = Path(..., description="Request ID"),
    include_invalidated: bool = Query(False, description="Include signals invalidated by an assignment"),
    current_user = Depends(get_current_user),
    service: MatchingService = Depends(get_matching_service)
):
    """
    Transporters interested in a request, earliest first

    **Annotations:**
    - `date_match`: `exact` when the availability matches the desired date, else `alternative`
    - Clients only see active signals not hidden by a coordinator
    """
    staff = is_staff(current_user.role)
    if not staff:
        transport_request = service.requests.get(request_id)
        if transport_request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        if transport_request.client_id != current_user.id:
            raise PermissionDenied("Only the client or a coordinator can see interested transporters")

    interests = await service.list_interested(
        request_id, include_invalidated=include_invalidated, for_client=not staff
    )
    return InterestedListResponse(
        success=True, request_id=request_id, interests=interests, count=len(interests)
    )


@router.post("/requests/{request_id}/assign", response_model=AssignmentResponse)
async def assign_transporter(
    data: AssignTransporterRequest,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: MatchingService = Depends(get_matching_service)
):
    """
    Commit one interested transporter

    **Concurrency:**
    - Only one assignment can win for a request
    - The loser gets `409 already_assigned`
    - Other interest signals are invalidated, not deleted
    """
    transport_request, invalidated = await service.assign_transporter(
        request_id, data.transporter_id, current_user,
        transporter_fee=data.transporter_fee, platform_fee=data.platform_fee,
    )
    return AssignmentResponse(
        success=True,
        message=f"Request {transport_request.reference_code} assigned",
        request=TransportRequestResponse.model_validate(transport_request),
        invalidated_interests=invalidated,
    )


@router.patch("/interests/{interest_id}/visibility", response_model=BaseResponse)
async def set_interest_visibility(
    data: InterestVisibilityUpdate,
    interest_id: int = Path(..., description="Interest ID"),
    current_user = Depends(get_staff_user),
    service: MatchingService = Depends(get_matching_service)
):
    await service.set_interest_visibility(interest_id, data.hidden, current_user)
    return BaseResponse(
        success=True,
        message="Interest hidden from client" if data.hidden else "Interest visible to client",
    )
