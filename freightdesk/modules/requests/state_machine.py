# freightdesk/modules/requests/state_machine.py
import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, NamedTuple, Optional

from freightdesk.core.exceptions import InvalidTransition
from freightdesk.shared.database.models import TransportRequest
from freightdesk.shared.schemas.lifecycle import (
    RequestStatus, CoordinationStatus, EventKind, NON_TERMINAL_STATUSES
)

logger = logging.getLogger(__name__)


class Transition(NamedTuple):
    sources: FrozenSet[RequestStatus]
    target: RequestStatus
    event: EventKind
    coordination: Optional[CoordinationStatus] = None


# action -> legal sources, target status, history kind, coordination status written with it
TRANSITIONS: Dict[str, Transition] = {
    "qualify": Transition(
        frozenset({RequestStatus.OPEN, RequestStatus.QUALIFICATION_PENDING}),
        RequestStatus.PUBLISHED_FOR_MATCHING, EventKind.QUALIFIED, CoordinationStatus.MATCHING,
    ),
    "assign": Transition(
        frozenset({RequestStatus.PUBLISHED_FOR_MATCHING}),
        RequestStatus.ACCEPTED, EventKind.ASSIGNED,
    ),
    "accept_offer": Transition(
        frozenset({RequestStatus.OPEN, RequestStatus.PUBLISHED_FOR_MATCHING}),
        RequestStatus.ACCEPTED, EventKind.OFFER_ACCEPTED,
    ),
    "start": Transition(
        frozenset({RequestStatus.ACCEPTED}),
        RequestStatus.IN_PROGRESS, EventKind.STARTED,
    ),
    "complete": Transition(
        frozenset({RequestStatus.ACCEPTED, RequestStatus.IN_PROGRESS}),
        RequestStatus.COMPLETED, EventKind.COMPLETED,
    ),
    "cancel": Transition(
        NON_TERMINAL_STATUSES,
        RequestStatus.CANCELLED, EventKind.CANCELLED,
    ),
    "archive": Transition(
        NON_TERMINAL_STATUSES,
        RequestStatus.ARCHIVED, EventKind.ARCHIVED, CoordinationStatus.ARCHIVE,
    ),
    "republish": Transition(
        frozenset({RequestStatus.ARCHIVED}),
        RequestStatus.QUALIFICATION_PENDING, EventKind.REPUBLISHED, CoordinationStatus.QUALIFICATION_PENDING,
    ),
    "requalify": Transition(
        frozenset({RequestStatus.ACCEPTED, RequestStatus.IN_PROGRESS}),
        RequestStatus.PUBLISHED_FOR_MATCHING, EventKind.REQUALIFIED, CoordinationStatus.MATCHING,
    ),
}

COMMITTED_STATUSES = frozenset({
    RequestStatus.ACCEPTED,
    RequestStatus.IN_PROGRESS,
    RequestStatus.COMPLETED,
})


def get_transition(action: str) -> Transition:
    try:
        return TRANSITIONS[action]
    except KeyError:
        raise ValueError(f"Unknown transition '{action}'")


def can_transition(action: str, current_status: str) -> bool:
    return current_status in {s.value for s in get_transition(action).sources}


def ensure_allowed(action: str, current_status: str) -> Transition:
    transition = get_transition(action)
    if not can_transition(action, current_status):
        raise InvalidTransition(action, current_status)
    return transition


class RequestStateMachine:
    """
    Applies a transition as one conditional UPDATE on the request row.

    The UPDATE only matches while the row is still in one of the legal source
    statuses, so two concurrent callers can never both succeed. The history
    row is added to the same session; the caller owns the commit.
    """

    def __init__(self, repository):
        self.repository = repository

    def apply(
        self,
        transport_request: TransportRequest,
        action: str,
        actor_id: Optional[int],
        values: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Returns the status the request left"""
        transition = ensure_allowed(action, transport_request.status)
        now = now or datetime.now()
        from_status = transport_request.status

        updates = dict(values or {})
        updates["status"] = transition.target.value
        if transition.coordination is not None:
            updates["coordination_status"] = transition.coordination.value
            updates["coordination_updated_at"] = now
            updates["coordination_updated_by"] = actor_id

        applied = self.repository.compare_and_set(
            transport_request.id,
            updates,
            statuses=[s.value for s in transition.sources],
        )
        if not applied:
            # Lost the race: report the status the winner left behind
            current = self.repository.current_status(transport_request.id)
            logger.info(
                f"⚠️ {action} on {transport_request.reference_code} lost to a concurrent update "
                f"(now '{current}')"
            )
            raise InvalidTransition(action, current or from_status)

        self.repository.add_event(
            request_id=transport_request.id,
            kind=transition.event.value,
            from_status=from_status,
            to_status=transition.target.value,
            actor_id=actor_id,
            reason=reason,
            details=details,
            created_at=now,
        )
        logger.info(
            f"🔄 {transport_request.reference_code}: {from_status} -> {transition.target.value} "
            f"({action} by {actor_id})"
        )
        return from_status
