# freightdesk/modules/coordination/service.py
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from freightdesk.core.exceptions import NotFound, ValidationError, InvalidTransition, AlreadyClaimed
from freightdesk.shared.database.models import TransportRequest, CoordinationNote, RequestEvent, User
from freightdesk.shared.schemas.lifecycle import (
    RequestStatus, CoordinationStatus, LIFECYCLE_COORDINATION_STATUSES, EventKind
)
from freightdesk.shared.services.notifications import NotificationDispatcher
from freightdesk.modules.requests.repository import RequestRepository
from .repository import CoordinationRepository

logger = logging.getLogger(__name__)


class CoordinationService:
    """Triage metadata. No lifecycle logic beyond 'write if the request exists'."""

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repository = CoordinationRepository(db)
        self.requests = RequestRepository(db)
        self.notifier = notifier

    def _get_request(self, request_id: int) -> TransportRequest:
        transport_request = self.requests.get(request_id)
        if transport_request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return transport_request

    def _commit(self, action: str, request_id: int) -> None:
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error during {action} on request {request_id}")
            raise HTTPException(status_code=500, detail=f"Error during {action}: {str(e)}")

    async def set_coordination_status(self, request_id: int, actor: User,
                                      coordination_status: CoordinationStatus,
                                      reminder_date: Optional[datetime] = None) -> TransportRequest:
        """Manual triage. Lifecycle-owned values are rejected."""
        coordination_status = CoordinationStatus(coordination_status)
        if coordination_status in LIFECYCLE_COORDINATION_STATUSES:
            raise ValidationError(
                f"'{coordination_status.value}' is set by lifecycle transitions only",
                coordination_status=coordination_status.value,
            )
        if coordination_status == CoordinationStatus.RAPPEL_PREVU and reminder_date is None:
            raise ValidationError("A reminder date is required for rappel_prevu")

        transport_request = self._get_request(request_id)
        if transport_request.status == RequestStatus.ARCHIVED.value:
            raise InvalidTransition(
                "set_coordination_status", transport_request.status,
                message="Republish the request before triaging it",
            )

        previous = transport_request.coordination_status
        now = datetime.now()
        transport_request.coordination_status = coordination_status.value
        transport_request.coordination_reminder_date = reminder_date
        transport_request.coordination_updated_at = now
        transport_request.coordination_updated_by = actor.id
        self.requests.add_event(
            request_id=request_id,
            kind=EventKind.COORDINATION_UPDATED.value,
            actor_id=actor.id,
            details={"from": previous, "to": coordination_status.value},
            created_at=now,
        )
        self._commit("set_coordination_status", request_id)
        logger.info(f"🗂️ {transport_request.reference_code} triage: {previous} -> {coordination_status.value}")
        return transport_request

    async def set_visibility(self, request_id: int, actor: User, hidden: bool) -> TransportRequest:
        transport_request = self._get_request(request_id)
        transport_request.is_hidden = hidden
        self.requests.add_event(
            request_id=request_id,
            kind=EventKind.VISIBILITY_CHANGED.value,
            actor_id=actor.id,
            details={"hidden": hidden},
        )
        self._commit("set_visibility", request_id)
        if self.notifier is not None:
            self.notifier.notify(transport_request, "request_hidden" if hidden else "request_visible")
        return transport_request

    async def claim(self, request_id: int, actor: User) -> TransportRequest:
        transport_request = self._get_request(request_id)
        if not self.repository.claim(request_id, actor.id, datetime.now()):
            self.db.rollback()
            raise AlreadyClaimed(
                f"Request already handled by coordinator {transport_request.assigned_coordinator_id}",
                assigned_coordinator_id=transport_request.assigned_coordinator_id,
            )
        self.requests.add_event(request_id=request_id, kind=EventKind.CLAIMED.value, actor_id=actor.id)
        self._commit("claim", request_id)
        return transport_request

    async def release(self, request_id: int, actor: User) -> TransportRequest:
        transport_request = self._get_request(request_id)
        if transport_request.assigned_coordinator_id is None:
            return transport_request
        previous = transport_request.assigned_coordinator_id
        transport_request.assigned_coordinator_id = None
        self.requests.add_event(
            request_id=request_id, kind=EventKind.RELEASED.value, actor_id=actor.id,
            details={"previous_coordinator_id": previous},
        )
        self._commit("release", request_id)
        return transport_request

    async def add_note(self, request_id: int, actor: User, body: str) -> CoordinationNote:
        body = (body or "").strip()
        if not body:
            raise ValidationError("Note cannot be empty")
        self._get_request(request_id)
        note = self.repository.add_note(request_id, actor.id, body)
        self._commit("add_note", request_id)
        return note

    async def list_notes(self, request_id: int) -> List[CoordinationNote]:
        self._get_request(request_id)
        return self.repository.list_notes(request_id)

    async def history(self, request_id: int) -> List[RequestEvent]:
        self._get_request(request_id)
        return self.requests.list_events(request_id)
