# tests/test_request_transitions.py
from datetime import datetime
import re

import pytest

from freightdesk.core.exceptions import InvalidTransition, ValidationError, PermissionDenied, NotFound
from freightdesk.modules.requests.schemas import QualifyRequest
from freightdesk.modules.requests.state_machine import TRANSITIONS, can_transition
from freightdesk.shared.database.models import TransportRequest, TransporterInterest, RequestEvent, User
from freightdesk.shared.schemas.lifecycle import ArchiveReason, PaymentStatus

from tests.conftest import run, request_payload


def event_kinds(request_service, request_id):
    return [e.kind for e in run(request_service.get_history(request_id))]


# -------------------------
# Creation
# -------------------------

def test_create_starts_in_qualification_pending(new_request, request_service, notifier):
    transport_request = new_request()

    assert transport_request.status == "qualification_pending"
    assert transport_request.coordination_status == "qualification_pending"
    assert transport_request.payment_status == "pending"
    assert transport_request.client_total is None
    assert event_kinds(request_service, transport_request.id) == ["created"]
    assert notifier.kinds() == ["request_created"]


def test_reference_codes_are_sequential_per_year(new_request):
    first = new_request()
    second = new_request(to_city="Rabat")
    year = datetime.now().year

    assert re.fullmatch(rf"CMD-{year}-\d{{5}}", first.reference_code)
    assert first.reference_code == f"CMD-{year}-00001"
    assert second.reference_code == f"CMD-{year}-00002"


def test_client_cannot_post_for_someone_else(request_service, users):
    with pytest.raises(PermissionDenied):
        run(request_service.create_request(request_payload(client_id=users.other_client.id), users.client))


def test_staff_can_post_for_a_client(request_service, users):
    transport_request = run(request_service.create_request(
        request_payload(client_id=users.client.id), users.coordinator
    ))
    assert transport_request.client_id == users.client.id


# -------------------------
# Qualification
# -------------------------

def test_qualify_publishes_with_suggested_split(published_request):
    transport_request = published_request()

    assert transport_request.status == "published_for_matching"
    assert transport_request.coordination_status == "matching"
    assert (transport_request.client_total, transport_request.transporter_fee,
            transport_request.platform_fee) == (1232, 739, 493)
    assert transport_request.pricing_source == "heuristic"
    assert transport_request.qualified_at is not None
    assert transport_request.published_for_matching_at is not None


def test_qualify_client_total_override_is_floored(new_request, request_service, users):
    transport_request = new_request()
    transport_request = run(request_service.qualify(
        transport_request.id, users.coordinator, QualifyRequest(client_total=300)
    ))
    assert (transport_request.client_total, transport_request.transporter_fee,
            transport_request.platform_fee) == (500, 300, 200)
    assert transport_request.pricing_source == "manual"


def test_qualify_explicit_fees(new_request, request_service, users):
    transport_request = new_request()
    transport_request = run(request_service.qualify(
        transport_request.id, users.coordinator, QualifyRequest(transporter_fee=1000, platform_fee=350)
    ))
    assert transport_request.client_total == 1350


@pytest.mark.parametrize("overrides", [
    QualifyRequest(transporter_fee=1000, platform_fee=150),
    QualifyRequest(transporter_fee=1000),
    QualifyRequest(client_total=2000, transporter_fee=1000, platform_fee=400),
])
def test_qualify_rejects_bad_fees_without_writing(new_request, request_service, users, db, overrides):
    transport_request = new_request()
    with pytest.raises(ValidationError):
        run(request_service.qualify(transport_request.id, users.coordinator, overrides))

    db.expire_all()
    stored = db.get(TransportRequest, transport_request.id)
    assert stored.status == "qualification_pending"
    assert stored.client_total is None


def test_qualify_twice_is_invalid(published_request, request_service, users):
    transport_request = published_request()
    with pytest.raises(InvalidTransition) as error:
        run(request_service.qualify(transport_request.id, users.coordinator))
    assert error.value.current_status == "published_for_matching"


def test_qualification_timestamps_are_set_once(published_request, request_service, users):
    transport_request = published_request()
    qualified_at = transport_request.qualified_at
    published_at = transport_request.published_for_matching_at

    run(request_service.archive(transport_request.id, users.coordinator, ArchiveReason.A_REPRENDRE_PLUS_TARD))
    run(request_service.republish(transport_request.id, users.coordinator))
    transport_request = run(request_service.qualify(transport_request.id, users.coordinator))

    assert transport_request.qualified_at == qualified_at
    assert transport_request.published_for_matching_at == published_at


def test_reset_timestamps_restamps_qualification(published_request, request_service, users):
    transport_request = published_request()
    qualified_at = transport_request.qualified_at

    run(request_service.archive(transport_request.id, users.coordinator, ArchiveReason.A_REPRENDRE_PLUS_TARD))
    run(request_service.republish(transport_request.id, users.coordinator))
    transport_request = run(request_service.qualify(
        transport_request.id, users.coordinator, QualifyRequest(reset_timestamps=True)
    ))
    assert transport_request.qualified_at > qualified_at


# -------------------------
# Illegal transitions leave no trace
# -------------------------

def test_illegal_transition_leaves_request_untouched(new_request, request_service, users, db):
    transport_request = new_request()

    with pytest.raises(InvalidTransition):
        run(request_service.start(transport_request.id, users.coordinator))
    with pytest.raises(InvalidTransition):
        run(request_service.requalify(transport_request.id, users.coordinator, "no transporter yet"))

    db.expire_all()
    stored = db.get(TransportRequest, transport_request.id)
    assert stored.status == "qualification_pending"
    assert stored.picked_up_at is None
    assert event_kinds(request_service, transport_request.id) == ["created"]


def test_terminal_statuses_have_no_exits():
    for action in TRANSITIONS:
        if action == "republish":
            continue
        for status in ("completed", "cancelled", "archived"):
            assert not can_transition(action, status), (action, status)
    assert can_transition("republish", "archived")


def test_unknown_request_is_not_found(request_service, users):
    with pytest.raises(NotFound):
        run(request_service.start(999, users.coordinator))


# -------------------------
# Execution
# -------------------------

def test_start_and_complete_with_rating(assigned_request, request_service, users, db):
    transport_request = assigned_request()

    transport_request = run(request_service.start(transport_request.id, users.transporter))
    assert transport_request.status == "in_progress"
    assert transport_request.picked_up_at is not None

    transport_request = run(request_service.complete(transport_request.id, users.client, rating=4))
    assert transport_request.status == "completed"
    assert transport_request.completed_at is not None

    transporter = db.get(User, users.transporter.id)
    assert float(transporter.rating) == 4.0
    assert transporter.total_ratings == 1
    assert transporter.total_trips == 1


def test_rating_average_accumulates(assigned_request, request_service, users, db):
    first = assigned_request()
    run(request_service.complete(first.id, users.client, rating=5))
    second = assigned_request(to_city="Agadir")
    run(request_service.complete(second.id, users.client, rating=2))

    transporter = db.get(User, users.transporter.id)
    assert float(transporter.rating) == 3.5
    assert transporter.total_ratings == 2
    assert transporter.total_trips == 2


def test_transporter_cannot_rate_own_job(assigned_request, request_service, users):
    transport_request = assigned_request()
    with pytest.raises(ValidationError):
        run(request_service.complete(transport_request.id, users.transporter, rating=5))


def test_other_transporter_cannot_start(assigned_request, request_service, users):
    transport_request = assigned_request()
    with pytest.raises(PermissionDenied):
        run(request_service.start(transport_request.id, users.second_transporter))


# -------------------------
# Cancel / archive / republish / requalify
# -------------------------

@pytest.mark.parametrize("reason", [None, "", "   "])
def test_cancel_requires_reason(published_request, request_service, users, reason):
    transport_request = published_request()
    with pytest.raises(ValidationError):
        run(request_service.cancel(transport_request.id, users.coordinator, reason))


def test_cancel_invalidates_interests(published_request, matching_service, request_service, users, db):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, datetime(2026, 11, 2)))

    transport_request = run(request_service.cancel(transport_request.id, users.coordinator, "Client changed plans"))

    assert transport_request.status == "cancelled"
    assert transport_request.cancellation_reason == "Client changed plans"
    interest = db.query(TransporterInterest).filter_by(request_id=transport_request.id).one()
    assert interest.invalidation_reason == "cancelled"

    with pytest.raises(InvalidTransition):
        run(request_service.qualify(transport_request.id, users.coordinator))


def test_archive_then_republish(published_request, request_service, users):
    transport_request = published_request()

    transport_request = run(request_service.archive(
        transport_request.id, users.coordinator, ArchiveReason.BUDGET_INSUFFISANT, "Budget 600 MAD max"
    ))
    assert transport_request.status == "archived"
    assert transport_request.coordination_status == "archive"
    assert transport_request.archive_reason == "budget_insuffisant"

    transport_request = run(request_service.republish(transport_request.id, users.coordinator))
    assert transport_request.status == "qualification_pending"
    assert transport_request.coordination_status == "qualification_pending"
    assert transport_request.archive_reason is None
    assert transport_request.archived_at is None
    assert transport_request.qualified_at is not None

    assert event_kinds(request_service, transport_request.id) == [
        "created", "qualified", "archived", "republished"
    ]


def test_archive_rejects_unknown_reason(published_request, request_service, users):
    transport_request = published_request()
    with pytest.raises(ValidationError):
        run(request_service.archive(transport_request.id, users.coordinator, "bored"))


def test_requalify_clears_assignment(assigned_request, request_service, matching_service, users):
    transport_request = assigned_request()
    run(request_service.start(transport_request.id, users.transporter))

    transport_request = run(request_service.requalify(
        transport_request.id, users.coordinator, "Truck broke down"
    ))

    assert transport_request.status == "published_for_matching"
    assert transport_request.coordination_status == "matching"
    assert transport_request.assigned_transporter_id is None
    assert transport_request.picked_up_at is None
    assert transport_request.requalification_reason == "Truck broke down"
    assert run(matching_service.list_interested(transport_request.id)) == []

    history = run(matching_service.list_interested(transport_request.id, include_invalidated=True))
    reasons = {signal.transporter_id: signal.invalidation_reason for signal in history}
    assert reasons[users.transporter.id] == "requalified"
    assert reasons[users.second_transporter.id] == "assigned_to_other"


def test_requalified_request_can_be_assigned_again(assigned_request, request_service, matching_service, users):
    transport_request = assigned_request()
    run(request_service.requalify(transport_request.id, users.coordinator, "Client moved the date"))

    run(matching_service.express_interest(
        transport_request.id, users.third_transporter.id, transport_request.desired_date
    ))
    transport_request, _ = run(matching_service.assign_transporter(
        transport_request.id, users.third_transporter.id, users.coordinator
    ))
    assert transport_request.status == "accepted"
    assert transport_request.assigned_transporter_id == users.third_transporter.id


# -------------------------
# Payment
# -------------------------

def test_payment_flow(assigned_request, request_service, users):
    transport_request = assigned_request()
    run(request_service.complete(transport_request.id, users.client))

    transport_request = run(request_service.mark_for_billing(transport_request.id, users.transporter))
    assert transport_request.payment_status == "awaiting_payment"

    with pytest.raises(ValidationError):
        run(request_service.mark_as_paid(transport_request.id, users.client, None))

    transport_request = run(request_service.mark_as_paid(transport_request.id, users.client, "VIR-2026-118"))
    assert transport_request.payment_status == "pending_admin_validation"
    assert transport_request.payment_receipt_reference == "VIR-2026-118"

    transport_request = run(request_service.validate_payment(transport_request.id, users.admin))
    assert transport_request.payment_status == "paid"
    assert transport_request.payment_date is not None

    kinds = event_kinds(request_service, transport_request.id)
    assert kinds.count("payment_updated") == 3


def test_payment_needs_a_started_job(assigned_request, request_service, users):
    transport_request = assigned_request()
    with pytest.raises(InvalidTransition):
        run(request_service.mark_for_billing(transport_request.id, users.transporter))


def test_payment_cannot_skip_steps(assigned_request, request_service, users):
    transport_request = assigned_request()
    run(request_service.complete(transport_request.id, users.client))
    with pytest.raises(InvalidTransition):
        run(request_service.validate_payment(transport_request.id, users.admin))


def test_payment_override_moves_forward_only(assigned_request, request_service, users):
    transport_request = assigned_request()
    run(request_service.complete(transport_request.id, users.client))

    transport_request = run(request_service.set_payment_status(
        transport_request.id, users.coordinator, PaymentStatus.PAID
    ))
    assert transport_request.payment_status == "paid"
    assert transport_request.payment_date is not None

    with pytest.raises(InvalidTransition):
        run(request_service.set_payment_status(transport_request.id, users.coordinator, PaymentStatus.PENDING))


# -------------------------
# Delete
# -------------------------

def test_delete_cascades_to_children(published_request, matching_service, request_service, users, db):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, datetime(2026, 11, 2)))

    run(request_service.delete_request(transport_request.id, users.admin))

    assert db.get(TransportRequest, transport_request.id) is None
    assert db.query(TransporterInterest).count() == 0
    assert db.query(RequestEvent).count() == 0


def test_client_cannot_delete_assigned_request(assigned_request, request_service, users):
    transport_request = assigned_request()
    with pytest.raises(InvalidTransition):
        run(request_service.delete_request(transport_request.id, users.client))
