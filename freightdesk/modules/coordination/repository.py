# freightdesk/modules/coordination/repository.py
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_
from typing import List
from datetime import datetime

from freightdesk.shared.database.models import CoordinationNote, TransportRequest


class CoordinationRepository:
    def __init__(self, db: Session):
        self.db = db

    def add_note(self, request_id: int, author_id: int, body: str) -> CoordinationNote:
        note = CoordinationNote(
            request_id=request_id,
            author_id=author_id,
            body=body,
            created_at=datetime.now(),
        )
        self.db.add(note)
        self.db.flush()
        return note

    def list_notes(self, request_id: int) -> List[CoordinationNote]:
        return (
            self.db.query(CoordinationNote)
            .filter(CoordinationNote.request_id == request_id)
            .order_by(CoordinationNote.created_at.asc(), CoordinationNote.id.asc())
            .all()
        )

    def claim(self, request_id: int, coordinator_id: int, now: datetime) -> bool:
        """Take triage ownership unless another coordinator holds it"""
        updated = self.db.query(TransportRequest).filter(
            and_(
                TransportRequest.id == request_id,
                or_(
                    TransportRequest.assigned_coordinator_id.is_(None),
                    TransportRequest.assigned_coordinator_id == coordinator_id,
                ),
            )
        ).update(
            {"assigned_coordinator_id": coordinator_id, "updated_at": now},
            synchronize_session="fetch",
        )
        return updated == 1
