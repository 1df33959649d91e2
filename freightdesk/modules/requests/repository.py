# freightdesk/modules/requests/repository.py
from sqlalchemy.orm import Session
from sqlalchemy import and_
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
import logging

from freightdesk.shared.database.models import (
    TransportRequest, TransporterInterest, Offer, RequestEvent
)
from freightdesk.shared.schemas.lifecycle import RequestStatus, OfferStatus

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "CMD"


class RequestRepository:
    def __init__(self, db: Session):
        self.db = db

    # ===== READS =====

    def get(self, request_id: int, for_update: bool = False) -> Optional[TransportRequest]:
        query = self.db.query(TransportRequest).filter(TransportRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def current_status(self, request_id: int) -> Optional[str]:
        """Fresh read of the status column, bypassing the identity map"""
        return (
            self.db.query(TransportRequest.status)
            .filter(TransportRequest.id == request_id)
            .scalar()
        )

    def list(
        self,
        status: Optional[str] = None,
        coordination_status: Optional[str] = None,
        coordination_statuses: Optional[Iterable[str]] = None,
        client_id: Optional[int] = None,
        include_hidden: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> List[TransportRequest]:
        query = self.db.query(TransportRequest)
        if status:
            query = query.filter(TransportRequest.status == status)
        if coordination_status:
            query = query.filter(TransportRequest.coordination_status == coordination_status)
        if coordination_statuses is not None:
            query = query.filter(TransportRequest.coordination_status.in_(list(coordination_statuses)))
        if client_id is not None:
            query = query.filter(TransportRequest.client_id == client_id)
        if not include_hidden:
            query = query.filter(TransportRequest.is_hidden == False)
        return (
            query.order_by(TransportRequest.created_at.desc(), TransportRequest.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_open_for_transporters(self, limit: int = 100) -> List[TransportRequest]:
        return (
            self.db.query(TransportRequest)
            .filter(
                and_(
                    TransportRequest.status == RequestStatus.PUBLISHED_FOR_MATCHING.value,
                    TransportRequest.is_hidden == False,
                )
            )
            .order_by(TransportRequest.published_for_matching_at.asc(), TransportRequest.id.asc())
            .limit(limit)
            .all()
        )

    def list_events(self, request_id: int) -> List[RequestEvent]:
        return (
            self.db.query(RequestEvent)
            .filter(RequestEvent.request_id == request_id)
            .order_by(RequestEvent.created_at.asc(), RequestEvent.id.asc())
            .all()
        )

    # ===== WRITES (caller commits) =====

    def next_reference_code(self, now: Optional[datetime] = None) -> str:
        """CMD-<year>-<5 digit sequence>, sequence restarts every year"""
        year = (now or datetime.now()).year
        prefix = f"{REFERENCE_PREFIX}-{year}-"
        last = (
            self.db.query(TransportRequest.reference_code)
            .filter(TransportRequest.reference_code.like(f"{prefix}%"))
            .order_by(TransportRequest.reference_code.desc())
            .first()
        )
        sequence = 1
        if last and last[0]:
            try:
                sequence = int(last[0].rsplit("-", 1)[1]) + 1
            except (IndexError, ValueError):
                logger.warning(f"⚠️ Unparseable reference code {last[0]}, counting rows instead")
                sequence = (
                    self.db.query(TransportRequest)
                    .filter(TransportRequest.reference_code.like(f"{prefix}%"))
                    .count()
                ) + 1
        return f"{prefix}{sequence:05d}"

    def add(self, transport_request: TransportRequest) -> TransportRequest:
        self.db.add(transport_request)
        self.db.flush()
        return transport_request

    def delete(self, transport_request: TransportRequest) -> None:
        self.db.delete(transport_request)
        self.db.flush()

    def compare_and_set(
        self,
        request_id: int,
        values: Dict[str, Any],
        statuses: Optional[Iterable[str]] = None,
        payment_statuses: Optional[Iterable[str]] = None,
    ) -> bool:
        """
        Single conditional UPDATE. Returns False when the row no longer
        matches the expected statuses (someone else got there first).
        """
        query = self.db.query(TransportRequest).filter(TransportRequest.id == request_id)
        if statuses is not None:
            query = query.filter(TransportRequest.status.in_(list(statuses)))
        if payment_statuses is not None:
            query = query.filter(TransportRequest.payment_status.in_(list(payment_statuses)))
        values = dict(values)
        values.setdefault("updated_at", datetime.now())
        updated = query.update(values, synchronize_session="fetch")
        return updated == 1

    def add_event(self, request_id: int, kind: str, actor_id: Optional[int] = None,
                  from_status: Optional[str] = None, to_status: Optional[str] = None,
                  reason: Optional[str] = None, details: Optional[Dict[str, Any]] = None,
                  created_at: Optional[datetime] = None) -> RequestEvent:
        event = RequestEvent(
            request_id=request_id,
            kind=kind,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            reason=reason,
            details=details,
            created_at=created_at or datetime.now(),
        )
        self.db.add(event)
        return event

    # ===== SIDE EFFECTS ON CHILD ROWS =====

    def invalidate_interests(self, request_id: int, reason: str, now: datetime,
                             keep_interest_id: Optional[int] = None) -> int:
        """Mark active signals invalidated (kept for audit)"""
        query = self.db.query(TransporterInterest).filter(
            and_(
                TransporterInterest.request_id == request_id,
                TransporterInterest.invalidated_at.is_(None),
            )
        )
        if keep_interest_id is not None:
            query = query.filter(TransporterInterest.id != keep_interest_id)
        return query.update(
            {"invalidated_at": now, "invalidation_reason": reason, "updated_at": now},
            synchronize_session="fetch",
        )

    def reject_offers(self, request_id: int, statuses: Iterable[str],
                      keep_offer_id: Optional[int] = None) -> int:
        query = self.db.query(Offer).filter(
            and_(
                Offer.request_id == request_id,
                Offer.status.in_(list(statuses)),
            )
        )
        if keep_offer_id is not None:
            query = query.filter(Offer.id != keep_offer_id)
        return query.update({"status": OfferStatus.REJECTED.value}, synchronize_session="fetch")

    def set_offer_status(self, offer_id: Optional[int], status: str) -> None:
        if offer_id is None:
            return
        self.db.query(Offer).filter(Offer.id == offer_id).update(
            {"status": status}, synchronize_session="fetch"
        )
