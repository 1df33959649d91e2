# freightdesk/modules/requests/service.py
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from freightdesk.core.auth.roles import is_staff, normalize_role
from freightdesk.core.exceptions import NotFound, ValidationError, PermissionDenied, InvalidTransition
from freightdesk.shared.database.models import TransportRequest, User, RequestEvent
from freightdesk.shared.schemas.lifecycle import (
    RequestStatus, CoordinationStatus, PaymentStatus, PAYMENT_ORDER, OfferStatus,
    InterestInvalidation, EventKind, ArchiveReason, TriageGroup, TRIAGE_GROUPS
)
from freightdesk.shared.services.notifications import NotificationDispatcher
from freightdesk.shared.services.profiles import ProfileService
from freightdesk.modules.pricing.engine import PricingEngine, split_total, MIN_PLATFORM_FEE
from freightdesk.modules.pricing.cache import PriceEstimateCache
from freightdesk.modules.pricing.schemas import PricingInput, PriceEstimate
from .repository import RequestRepository
from .state_machine import RequestStateMachine, ensure_allowed
from .schemas import TransportRequestCreate, QualifyRequest

logger = logging.getLogger(__name__)

REFERENCE_CODE_ATTEMPTS = 3
PRE_ASSIGNMENT_STATUSES = {
    RequestStatus.OPEN.value,
    RequestStatus.QUALIFICATION_PENDING.value,
    RequestStatus.PUBLISHED_FOR_MATCHING.value,
    RequestStatus.ARCHIVED.value,
    RequestStatus.CANCELLED.value,
}


class RequestService:
    """Request lifecycle: creation, qualification, transitions and payment"""

    def __init__(self, db: Session, pricing_engine: Optional[PricingEngine] = None,
                 notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repository = RequestRepository(db)
        self.state_machine = RequestStateMachine(self.repository)
        self.profiles = ProfileService(db)
        # heuristic-only engine when none is injected
        self.pricing_engine = pricing_engine or PricingEngine(cache=PriceEstimateCache())
        self.notifier = notifier

    # ===== HELPERS =====

    def get_or_404(self, request_id: int, for_update: bool = False) -> TransportRequest:
        transport_request = self.repository.get(request_id, for_update=for_update)
        if transport_request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return transport_request

    def _notify(self, transport_request: TransportRequest, event: str, **extra) -> None:
        if self.notifier is not None:
            self.notifier.notify(transport_request, event, **extra)

    def _ensure_can_view(self, transport_request: TransportRequest, actor: User) -> None:
        if is_staff(actor.role) or transport_request.client_id == actor.id:
            return
        if transport_request.assigned_transporter_id == actor.id:
            return
        if (normalize_role(actor.role) == "transporter"
                and transport_request.status == RequestStatus.PUBLISHED_FOR_MATCHING.value
                and not transport_request.is_hidden):
            return
        raise PermissionDenied("You cannot access this request")

    def _fail(self, action: str, request_id: Optional[int], error: Exception) -> HTTPException:
        self.db.rollback()
        logger.exception(f"❌ Error during {action} on request {request_id}: {error}")
        return HTTPException(status_code=500, detail=f"Error during {action}: {str(error)}")

    # ===== CREATE / READ / DELETE =====

    async def create_request(self, data: TransportRequestCreate, actor: User) -> TransportRequest:
        """Store a new request in qualification_pending with the next reference code"""
        client_id = actor.id
        if data.client_id is not None and data.client_id != actor.id:
            if not is_staff(actor.role):
                raise PermissionDenied("Only staff can post a request for another client")
            if self.profiles.get_user(data.client_id) is None:
                raise NotFound(f"Client {data.client_id} not found", client_id=data.client_id)
            client_id = data.client_id

        fields = data.dict(exclude={"client_id"})

        for attempt in range(1, REFERENCE_CODE_ATTEMPTS + 1):
            try:
                now = datetime.now()
                transport_request = TransportRequest(
                    **fields,
                    client_id=client_id,
                    reference_code=self.repository.next_reference_code(now),
                    status=RequestStatus.QUALIFICATION_PENDING.value,
                    coordination_status=CoordinationStatus.QUALIFICATION_PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                self.repository.add(transport_request)
                self.repository.add_event(
                    request_id=transport_request.id,
                    kind=EventKind.CREATED.value,
                    to_status=transport_request.status,
                    actor_id=actor.id,
                    created_at=now,
                )
                self.db.commit()
                break
            except IntegrityError:
                # Another request took the same reference code
                self.db.rollback()
                if attempt == REFERENCE_CODE_ATTEMPTS:
                    logger.error("❌ Could not allocate a reference code")
                    raise HTTPException(status_code=503, detail="Could not allocate a reference code, retry")
                logger.warning(f"⚠️ Reference code collision, retrying ({attempt})")
            except HTTPException:
                self.db.rollback()
                raise
            except Exception as e:
                raise self._fail("create", None, e)

        logger.info(f"✅ Request {transport_request.reference_code} created by {actor.id}")
        self._notify(transport_request, "request_created")
        return transport_request

    async def get_request(self, request_id: int, actor: User) -> TransportRequest:
        transport_request = self.get_or_404(request_id)
        self._ensure_can_view(transport_request, actor)
        return transport_request

    async def list_requests(self, actor: User, status: Optional[str] = None,
                            coordination_status: Optional[str] = None,
                            triage: Optional[TriageGroup] = None,
                            include_hidden: bool = True,
                            limit: int = 100, offset: int = 0) -> List[TransportRequest]:
        """Staff see everything, clients only their own requests"""
        if is_staff(actor.role):
            return self.repository.list(
                status=status, coordination_status=coordination_status,
                coordination_statuses=self._triage_statuses(triage),
                include_hidden=include_hidden, limit=limit, offset=offset,
            )
        return self.repository.list(
            status=status, client_id=actor.id, include_hidden=False, limit=limit, offset=offset,
        )

    @staticmethod
    def _triage_statuses(triage: Optional[TriageGroup]) -> Optional[List[str]]:
        """Coordination statuses behind a triage group (en action, prioritaires)"""
        if triage is None:
            return None
        try:
            group = TriageGroup(triage)
        except ValueError:
            raise ValidationError(f"Unknown triage group '{triage}'", triage=triage)
        return sorted(s.value for s in TRIAGE_GROUPS[group])

    async def list_open_for_transporters(self, limit: int = 100) -> List[TransportRequest]:
        return self.repository.list_open_for_transporters(limit=limit)

    async def delete_request(self, request_id: int, actor: User) -> None:
        """Hard delete, cascades to interests, offers, notes and history"""
        transport_request = self.get_or_404(request_id)
        if not is_staff(actor.role):
            if transport_request.client_id != actor.id:
                raise PermissionDenied("You cannot delete this request")
            if transport_request.status not in PRE_ASSIGNMENT_STATUSES:
                raise InvalidTransition("delete", transport_request.status)
        reference = transport_request.reference_code
        try:
            self.repository.delete(transport_request)
            self.db.commit()
        except Exception as e:
            raise self._fail("delete", request_id, e)
        logger.info(f"🗑️ Request {reference} deleted by {actor.id}")

    async def get_history(self, request_id: int) -> List[RequestEvent]:
        self.get_or_404(request_id)
        return self.repository.list_events(request_id)

    # ===== QUALIFY =====

    async def estimate_price(self, transport_request: TransportRequest) -> PriceEstimate:
        return await self.pricing_engine.estimate(PricingInput.from_request(transport_request))

    async def qualify(self, request_id: int, actor: User,
                      overrides: Optional[QualifyRequest] = None) -> TransportRequest:
        """
        Price the request then publish it for matching.

        The price is computed before any write so no row lock is held while
        the external estimator answers.
        """
        overrides = overrides or QualifyRequest()

        # ===== 1. PRE-CHECK =====
        transport_request = self.get_or_404(request_id)
        ensure_allowed("qualify", transport_request.status)

        # ===== 2. PRICE =====
        pricing = self._manual_pricing(overrides)
        if pricing is None:
            pricing_input = PricingInput.from_request(transport_request)
            # release the read snapshot before the network call
            self.db.commit()
            estimate = await self.pricing_engine.estimate(pricing_input)
            pricing = {
                "client_total": estimate.client_total,
                "transporter_fee": estimate.transporter_fee,
                "platform_fee": estimate.platform_fee,
                "pricing_confidence": estimate.confidence,
                "pricing_source": estimate.source,
                "pricing_reasoning": estimate.reasoning,
            }

        # ===== 3. COMMIT TRANSITION =====
        try:
            transport_request = self.get_or_404(request_id)
            now = datetime.now()
            values = dict(pricing)
            if overrides.reset_timestamps or transport_request.qualified_at is None:
                values["qualified_at"] = now
            if overrides.reset_timestamps or transport_request.published_for_matching_at is None:
                values["published_for_matching_at"] = now

            self.state_machine.apply(
                transport_request, "qualify", actor.id, values,
                reason=overrides.note,
                details={
                    "client_total": values["client_total"],
                    "transporter_fee": values["transporter_fee"],
                    "platform_fee": values["platform_fee"],
                    "source": values["pricing_source"],
                },
                now=now,
            )
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("qualify", request_id, e)

        logger.info(
            f"✅ {transport_request.reference_code} qualified at {transport_request.client_total} MAD "
            f"({transport_request.transporter_fee}/{transport_request.platform_fee})"
        )
        self._notify(transport_request, "request_published")
        return transport_request

    @staticmethod
    def _manual_pricing(overrides: QualifyRequest) -> Optional[dict]:
        """Coordinator-supplied split, or None to ask the pricing engine"""
        has_transporter = overrides.transporter_fee is not None
        has_platform = overrides.platform_fee is not None

        if has_transporter != has_platform:
            raise ValidationError("transporter_fee and platform_fee must be given together")

        if has_transporter:
            total = overrides.transporter_fee + overrides.platform_fee
            if overrides.client_total is not None and overrides.client_total != total:
                raise ValidationError(
                    "client_total must equal transporter_fee + platform_fee",
                    client_total=overrides.client_total, expected=total,
                )
            if overrides.platform_fee < MIN_PLATFORM_FEE:
                raise ValidationError(
                    f"platform_fee must be at least {MIN_PLATFORM_FEE}",
                    platform_fee=overrides.platform_fee,
                )
            transporter_fee, platform_fee = overrides.transporter_fee, overrides.platform_fee
        elif overrides.client_total is not None:
            total, transporter_fee, platform_fee = split_total(overrides.client_total)
        else:
            return None

        return {
            "client_total": total,
            "transporter_fee": transporter_fee,
            "platform_fee": platform_fee,
            "pricing_confidence": None,
            "pricing_source": "manual",
            "pricing_reasoning": ["Price set by coordinator"],
        }

    # ===== EXECUTION =====

    def _ensure_executor(self, transport_request: TransportRequest, actor: User,
                         allow_client: bool = False) -> None:
        if is_staff(actor.role):
            return
        if transport_request.assigned_transporter_id == actor.id:
            return
        if allow_client and transport_request.client_id == actor.id:
            return
        raise PermissionDenied("Only the assigned transporter or a coordinator can do this")

    async def start(self, request_id: int, actor: User) -> TransportRequest:
        """Pickup: accepted -> in_progress"""
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            self._ensure_executor(transport_request, actor)
            now = datetime.now()
            self.state_machine.apply(transport_request, "start", actor.id, {"picked_up_at": now}, now=now)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("start", request_id, e)

        self._notify(transport_request, "request_started")
        return transport_request

    async def complete(self, request_id: int, actor: User, rating: Optional[int] = None) -> TransportRequest:
        """Delivery confirmed. An optional 1-5 rating updates the transporter's average."""
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5", rating=rating)
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            self._ensure_executor(transport_request, actor, allow_client=True)
            if rating is not None and actor.id == transport_request.assigned_transporter_id:
                raise ValidationError("A transporter cannot rate their own job")

            now = datetime.now()
            self.state_machine.apply(
                transport_request, "complete", actor.id, {"completed_at": now},
                details={"rating": rating} if rating is not None else None,
                now=now,
            )
            self.repository.set_offer_status(transport_request.accepted_offer_id, OfferStatus.COMPLETED.value)

            transporter = self.profiles.get_user(transport_request.assigned_transporter_id) \
                if transport_request.assigned_transporter_id else None
            if transporter is not None:
                self.profiles.apply_completion(transporter, rating)

            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("complete", request_id, e)

        self._notify(transport_request, "request_completed", rating=rating)
        return transport_request

    # ===== SIDE BRANCHES =====

    async def cancel(self, request_id: int, actor: User, reason: Optional[str]) -> TransportRequest:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A cancellation reason is required")
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            now = datetime.now()
            self.state_machine.apply(
                transport_request, "cancel", actor.id,
                {"cancellation_reason": reason, "cancelled_at": now},
                reason=reason, now=now,
            )
            self.repository.invalidate_interests(request_id, InterestInvalidation.CANCELLED.value, now)
            self.repository.reject_offers(request_id, [OfferStatus.PENDING.value])
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("cancel", request_id, e)

        self._notify(transport_request, "request_cancelled", reason=reason)
        return transport_request

    async def archive(self, request_id: int, actor: User, reason: ArchiveReason,
                      comment: Optional[str] = None) -> TransportRequest:
        try:
            reason = ArchiveReason(reason)
        except ValueError:
            raise ValidationError(f"Unknown archive reason '{reason}'")
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            now = datetime.now()
            self.state_machine.apply(
                transport_request, "archive", actor.id,
                {"archive_reason": reason.value, "archive_comment": comment, "archived_at": now},
                reason=reason.value, details={"comment": comment} if comment else None, now=now,
            )
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("archive", request_id, e)

        self._notify(transport_request, "request_archived", reason=reason.value)
        return transport_request

    async def republish(self, request_id: int, actor: User) -> TransportRequest:
        """archived -> qualification_pending. Qualification timestamps are kept."""
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            now = datetime.now()
            self.state_machine.apply(
                transport_request, "republish", actor.id,
                {
                    "archive_reason": None,
                    "archive_comment": None,
                    "archived_at": None,
                    "assigned_transporter_id": None,
                    "assigned_by_coordinator_id": None,
                    "assigned_at": None,
                    "accepted_offer_id": None,
                },
                reason=transport_request.archive_reason, now=now,
            )
            self.repository.invalidate_interests(request_id, InterestInvalidation.REPUBLISHED.value, now)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("republish", request_id, e)

        self._notify(transport_request, "request_republished")
        return transport_request

    async def requalify(self, request_id: int, actor: User, reason: Optional[str]) -> TransportRequest:
        """
        Cancel & requalify: drop the committed transporter and put the request
        back into the matching pool with an empty interest set.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A requalification reason is required")
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            previous_transporter = transport_request.assigned_transporter_id
            previous_offer = transport_request.accepted_offer_id
            now = datetime.now()
            self.state_machine.apply(
                transport_request, "requalify", actor.id,
                {
                    "assigned_transporter_id": None,
                    "assigned_by_coordinator_id": None,
                    "assigned_at": None,
                    "accepted_offer_id": None,
                    "picked_up_at": None,
                    "requalification_reason": reason,
                    "published_for_matching_at": now,
                },
                reason=reason,
                details={"previous_transporter_id": previous_transporter, "previous_offer_id": previous_offer},
                now=now,
            )
            self.repository.invalidate_interests(request_id, InterestInvalidation.REQUALIFIED.value, now)
            self.repository.set_offer_status(previous_offer, OfferStatus.REJECTED.value)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("requalify", request_id, e)

        self._notify(transport_request, "request_requalified", previous_transporter_id=previous_transporter)
        return transport_request

    # ===== PAYMENT =====

    def _advance_payment(self, transport_request: TransportRequest, actor: User,
                         expected: PaymentStatus, target: PaymentStatus,
                         action: str, extra: Optional[dict] = None) -> None:
        allowed_statuses = [RequestStatus.COMPLETED.value, RequestStatus.IN_PROGRESS.value]
        if transport_request.status not in allowed_statuses:
            raise InvalidTransition(action, transport_request.status)
        if transport_request.payment_status != expected.value:
            raise InvalidTransition(
                action, transport_request.payment_status,
                message=f"Payment is '{transport_request.payment_status}', expected '{expected.value}'",
            )
        values = {"payment_status": target.value}
        values.update(extra or {})
        applied = self.repository.compare_and_set(
            transport_request.id, values,
            statuses=allowed_statuses, payment_statuses=[expected.value],
        )
        if not applied:
            raise InvalidTransition(action, self.repository.current_status(transport_request.id) or "")
        self.repository.add_event(
            request_id=transport_request.id,
            kind=EventKind.PAYMENT_UPDATED.value,
            from_status=expected.value,
            to_status=target.value,
            actor_id=actor.id,
            details=extra and {k: str(v) for k, v in extra.items()},
        )

    async def mark_for_billing(self, request_id: int, actor: User) -> TransportRequest:
        """Assigned transporter asks to be paid: pending -> awaiting_payment"""
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            self._ensure_executor(transport_request, actor)
            self._advance_payment(
                transport_request, actor, PaymentStatus.PENDING, PaymentStatus.AWAITING_PAYMENT, "mark_for_billing"
            )
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("mark_for_billing", request_id, e)

        self._notify(transport_request, "payment_requested")
        return transport_request

    async def mark_as_paid(self, request_id: int, actor: User, receipt_reference: Optional[str]) -> TransportRequest:
        """Client declares payment with a receipt: awaiting_payment -> pending_admin_validation"""
        receipt_reference = (receipt_reference or "").strip()
        if not receipt_reference:
            raise ValidationError("A payment receipt reference is required")
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            if transport_request.client_id != actor.id and not is_staff(actor.role):
                raise PermissionDenied("Only the client who posted the request can pay it")
            self._advance_payment(
                transport_request, actor, PaymentStatus.AWAITING_PAYMENT,
                PaymentStatus.PENDING_ADMIN_VALIDATION, "mark_as_paid",
                {"payment_receipt_reference": receipt_reference},
            )
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("mark_as_paid", request_id, e)

        self._notify(transport_request, "payment_submitted")
        return transport_request

    async def validate_payment(self, request_id: int, actor: User) -> TransportRequest:
        """Staff confirm the receipt: pending_admin_validation -> paid"""
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            self._advance_payment(
                transport_request, actor, PaymentStatus.PENDING_ADMIN_VALIDATION, PaymentStatus.PAID,
                "validate_payment", {"payment_date": datetime.now()},
            )
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("validate_payment", request_id, e)

        self._notify(transport_request, "payment_validated")
        return transport_request

    async def set_payment_status(self, request_id: int, actor: User, payment_status: PaymentStatus) -> TransportRequest:
        """Staff override, forward only"""
        target = PaymentStatus(payment_status)
        try:
            transport_request = self.get_or_404(request_id, for_update=True)
            current = PaymentStatus(transport_request.payment_status)
            if PAYMENT_ORDER.index(target) <= PAYMENT_ORDER.index(current):
                raise InvalidTransition(
                    "set_payment_status", current.value,
                    message=f"Payment cannot move from '{current.value}' to '{target.value}'",
                )
            extra = {"payment_date": datetime.now()} if target == PaymentStatus.PAID else None
            self._advance_payment(transport_request, actor, current, target, "set_payment_status", extra)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            raise self._fail("set_payment_status", request_id, e)

        self._notify(transport_request, "payment_updated", payment_status=target.value)
        return transport_request
