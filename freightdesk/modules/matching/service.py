# freightdesk/modules/matching/service.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from freightdesk.core.auth.roles import is_staff
from freightdesk.core.exceptions import (
    NotFound, ValidationError, InvalidTransition, AlreadyAssigned, PermissionDenied
)
from freightdesk.shared.database.models import TransportRequest, TransporterInterest, User
from freightdesk.shared.schemas.lifecycle import (
    RequestStatus, OfferStatus, InterestInvalidation, EventKind
)
from freightdesk.shared.services.notifications import NotificationDispatcher
from freightdesk.shared.services.profiles import ProfileService, TransporterProfile
from freightdesk.modules.pricing.engine import MIN_PLATFORM_FEE
from freightdesk.modules.requests.repository import RequestRepository
from freightdesk.modules.requests.state_machine import RequestStateMachine, COMMITTED_STATUSES, ensure_allowed
from .repository import InterestRepository
from .schemas import InterestSignalResponse

logger = logging.getLogger(__name__)

UPSERT_ATTEMPTS = 2


def date_match(availability_date: datetime, desired_date: datetime) -> str:
    if availability_date and desired_date and availability_date.date() == desired_date.date():
        return "exact"
    return "alternative"


def to_signal(interest: TransporterInterest, desired_date: datetime,
              profile: Optional[TransporterProfile] = None) -> InterestSignalResponse:
    return InterestSignalResponse(
        id=interest.id,
        request_id=interest.request_id,
        transporter_id=interest.transporter_id,
        availability_date=interest.availability_date,
        date_match=date_match(interest.availability_date, desired_date),
        is_hidden_from_client=interest.is_hidden_from_client,
        is_selected=interest.is_selected,
        invalidated_at=interest.invalidated_at,
        invalidation_reason=interest.invalidation_reason,
        created_at=interest.created_at,
        transporter=profile,
    )


class MatchingService:
    """Interest signals and the single committed assignment"""

    def __init__(self, db: Session, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repository = InterestRepository(db)
        self.requests = RequestRepository(db)
        self.state_machine = RequestStateMachine(self.requests)
        self.profiles = ProfileService(db)
        self.notifier = notifier

    def _get_request(self, request_id: int, for_update: bool = False) -> TransportRequest:
        transport_request = self.requests.get(request_id, for_update=for_update)
        if transport_request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return transport_request

    def _get_transporter(self, transporter_id: int) -> User:
        transporter = self.profiles.get_transporter(transporter_id)
        if transporter is None:
            raise NotFound(f"Transporter {transporter_id} not found", transporter_id=transporter_id)
        return transporter

    def _notify(self, transport_request: TransportRequest, event: str, **extra) -> None:
        if self.notifier is not None:
            self.notifier.notify(transport_request, event, **extra)

    # ===== EXPRESS / WITHDRAW =====

    async def express_interest(self, request_id: int, transporter_id: int,
                               availability_date: datetime) -> Tuple[TransporterInterest, bool]:
        """
        Idempotent upsert of a transporter's availability.
        Returns (interest, created).
        """
        self._get_transporter(transporter_id)

        for attempt in range(1, UPSERT_ATTEMPTS + 1):
            try:
                transport_request = self._get_request(request_id)
                if transport_request.status != RequestStatus.PUBLISHED_FOR_MATCHING.value:
                    raise InvalidTransition(
                        "express_interest", transport_request.status,
                        message="Request is not open for matching",
                    )

                interest = self.repository.get_active(request_id, transporter_id)
                created = interest is None
                if created:
                    interest = self.repository.create(request_id, transporter_id, availability_date)
                else:
                    interest.availability_date = availability_date
                    interest.updated_at = datetime.now()
                self.db.commit()
                break
            except IntegrityError:
                # A concurrent call inserted the active row first; retry as an update
                self.db.rollback()
                if attempt == UPSERT_ATTEMPTS:
                    raise HTTPException(status_code=409, detail="Concurrent interest update, retry")
                logger.info(f"⚠️ Concurrent interest insert on request {request_id}, retrying")
            except HTTPException:
                self.db.rollback()
                raise
            except Exception as e:
                self.db.rollback()
                logger.exception(f"❌ Error saving interest on request {request_id}")
                raise HTTPException(status_code=500, detail=f"Error saving interest: {str(e)}")

        logger.info(
            f"✅ Transporter {transporter_id} {'expressed' if created else 'updated'} interest "
            f"for {transport_request.reference_code} on {availability_date.date()}"
        )
        if created:
            self._notify(transport_request, "interest_expressed", transporter_id=transporter_id)
        return interest, created

    async def withdraw_interest(self, request_id: int, transporter_id: int) -> bool:
        """Remove the active signal. False when there was nothing to remove."""
        self._get_request(request_id)
        interest = self.repository.get_active(request_id, transporter_id)
        if interest is None:
            return False
        if interest.is_selected:
            raise ValidationError("The selected transporter cannot withdraw, requalify the request instead")
        try:
            self.repository.delete(interest)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error withdrawing interest on request {request_id}")
            raise HTTPException(status_code=500, detail=f"Error withdrawing interest: {str(e)}")
        logger.info(f"↩️ Transporter {transporter_id} withdrew from request {request_id}")
        return True

    # ===== READ =====

    async def list_interested(self, request_id: int, include_invalidated: bool = False,
                              for_client: bool = False) -> List[InterestSignalResponse]:
        """Signals with profile data, earliest first, annotated with the date match"""
        transport_request = self._get_request(request_id)
        interests = self.repository.list_for_request(
            request_id,
            include_invalidated=include_invalidated and not for_client,
            include_hidden=not for_client,
        )
        profiles = self.profiles.get_profiles(i.transporter_id for i in interests)

        return [
            to_signal(interest, transport_request.desired_date, profiles.get(interest.transporter_id))
            for interest in interests
        ]

    async def set_interest_visibility(self, interest_id: int, hidden: bool, actor: User) -> TransporterInterest:
        """Hide a transporter from client-facing lists without removing the signal"""
        if not is_staff(actor.role):
            raise PermissionDenied("Only coordinators can change interest visibility")
        interest = self.repository.get(interest_id)
        if interest is None:
            raise NotFound(f"Interest {interest_id} not found", interest_id=interest_id)
        try:
            interest.is_hidden_from_client = hidden
            interest.updated_at = datetime.now()
            self.requests.add_event(
                request_id=interest.request_id,
                kind=EventKind.VISIBILITY_CHANGED.value,
                actor_id=actor.id,
                details={"interest_id": interest.id, "transporter_id": interest.transporter_id, "hidden": hidden},
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error updating interest {interest_id}")
            raise HTTPException(status_code=500, detail=f"Error updating interest: {str(e)}")
        return interest

    # ===== ASSIGN =====

    async def assign_transporter(self, request_id: int, transporter_id: int, actor: User,
                                 transporter_fee: Optional[int] = None,
                                 platform_fee: Optional[int] = None) -> Tuple[TransportRequest, int]:
        """
        At-most-once commitment of a transporter.

        The status write is a compare-and-set from published_for_matching, so of
        two concurrent calls exactly one wins and the other gets AlreadyAssigned.
        Returns (request, number of other signals invalidated).
        """
        try:
            # ===== 1. PRE-CHECKS =====
            transport_request = self._get_request(request_id, for_update=True)
            if transport_request.status in {s.value for s in COMMITTED_STATUSES}:
                raise AlreadyAssigned(transport_request.reference_code)
            ensure_allowed("assign", transport_request.status)

            self._get_transporter(transporter_id)
            interest = self.repository.get_active(request_id, transporter_id)
            if interest is None:
                # a concurrent winner invalidates every other signal
                if self.requests.current_status(request_id) in {s.value for s in COMMITTED_STATUSES}:
                    raise AlreadyAssigned(transport_request.reference_code)
                raise ValidationError(
                    f"Transporter {transporter_id} has no active interest on this request",
                    transporter_id=transporter_id,
                )

            # ===== 2. FEES =====
            transporter_fee = transport_request.transporter_fee if transporter_fee is None else transporter_fee
            platform_fee = transport_request.platform_fee if platform_fee is None else platform_fee
            if transporter_fee is None or platform_fee is None:
                raise ValidationError("Request has no qualified fees, provide transporter_fee and platform_fee")
            if platform_fee < MIN_PLATFORM_FEE:
                raise ValidationError(f"platform_fee must be at least {MIN_PLATFORM_FEE}", platform_fee=platform_fee)

            # ===== 3. COMPARE-AND-SET =====
            now = datetime.now()
            try:
                self.state_machine.apply(
                    transport_request, "assign", actor.id,
                    {
                        "assigned_transporter_id": transporter_id,
                        "assigned_by_coordinator_id": actor.id,
                        "assigned_at": now,
                        "transporter_fee": transporter_fee,
                        "platform_fee": platform_fee,
                        "client_total": transporter_fee + platform_fee,
                    },
                    details={
                        "transporter_id": transporter_id,
                        "transporter_fee": transporter_fee,
                        "platform_fee": platform_fee,
                    },
                    now=now,
                )
            except InvalidTransition as e:
                if e.current_status in {s.value for s in COMMITTED_STATUSES}:
                    raise AlreadyAssigned(transport_request.reference_code)
                raise

            # ===== 4. SIDE EFFECTS =====
            interest.is_selected = True
            interest.updated_at = now
            invalidated = self.requests.invalidate_interests(
                request_id, InterestInvalidation.ASSIGNED_TO_OTHER.value, now, keep_interest_id=interest.id
            )
            self.requests.reject_offers(request_id, [OfferStatus.PENDING.value])
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(f"❌ Error assigning request {request_id}")
            raise HTTPException(status_code=500, detail=f"Error assigning transporter: {str(e)}")

        logger.info(
            f"✅ {transport_request.reference_code} assigned to transporter {transporter_id} "
            f"({invalidated} other signals invalidated)"
        )
        self._notify(transport_request, "request_assigned", transporter_id=transporter_id)
        return transport_request, invalidated
