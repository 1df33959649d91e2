# freightdesk/modules/coordination/router.py
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from freightdesk.config.database import get_db
from freightdesk.core.auth.dependencies import get_staff_user
from freightdesk.shared.services.notifications import NotificationDispatcher, get_notifier
from freightdesk.modules.requests.schemas import TransportRequestResponse, RequestEventResponse
from .service import CoordinationService
from .schemas import (
    CoordinationStatusUpdate, VisibilityUpdate, NoteCreate, NoteResponse,
    CoordinationResponse, NoteListResponse, HistoryResponse
)

router = APIRouter()


def get_coordination_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> CoordinationService:
    return CoordinationService(db, notifier=notifier)


def _response(transport_request, message: str) -> CoordinationResponse:
    return CoordinationResponse(
        success=True, message=message,
        request=TransportRequestResponse.model_validate(transport_request),
    )


@router.patch("/requests/{request_id}/status", response_model=CoordinationResponse)
async def set_coordination_status(
    data: CoordinationStatusUpdate,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    """
    Move a request on the triage board

    **Accepted values:** `nouveau`, the *en action* values
    (`client_injoignable`, `infos_manquantes`, `photos_a_recuperer`,
    `rappel_prevu`, `attente_concurrence`, `refus_tarif`) and the
    *prioritaires* (`livraison_urgente`, `client_interesse`,
    `transporteur_interesse`, `menace_annulation`).

    `qualification_pending`, `matching` and `archive` follow the request
    lifecycle and cannot be set here.
    """
    transport_request = await service.set_coordination_status(
        request_id, current_user, data.coordination_status, data.reminder_date
    )
    return _response(transport_request, f"Coordination status set to {data.coordination_status.value}")


@router.patch("/requests/{request_id}/visibility", response_model=CoordinationResponse)
async def set_visibility(
    data: VisibilityUpdate,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    transport_request = await service.set_visibility(request_id, current_user, data.hidden)
    return _response(transport_request, "Request hidden" if data.hidden else "Request visible")


@router.patch("/requests/{request_id}/claim", response_model=CoordinationResponse)
async def claim_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    transport_request = await service.claim(request_id, current_user)
    return _response(transport_request, "Request claimed")


@router.patch("/requests/{request_id}/release", response_model=CoordinationResponse)
async def release_request(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    transport_request = await service.release(request_id, current_user)
    return _response(transport_request, "Request released")


@router.post("/requests/{request_id}/notes", response_model=NoteResponse, status_code=201)
async def add_note(
    data: NoteCreate,
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    note = await service.add_note(request_id, current_user, data.body)
    return NoteResponse.model_validate(note)


@router.get("/requests/{request_id}/notes", response_model=NoteListResponse)
async def list_notes(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    notes = await service.list_notes(request_id)
    return NoteListResponse(
        success=True, notes=[NoteResponse.model_validate(n) for n in notes], count=len(notes)
    )


@router.get("/requests/{request_id}/history", response_model=HistoryResponse)
async def request_history(
    request_id: int = Path(..., description="Request ID"),
    current_user = Depends(get_staff_user),
    service: CoordinationService = Depends(get_coordination_service)
):
    """Every transition and ledger change, oldest first"""
    events = await service.history(request_id)
    return HistoryResponse(
        success=True, request_id=request_id,
        events=[RequestEventResponse.model_validate(e) for e in events],
    )
