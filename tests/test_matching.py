# tests/test_matching.py
import threading
from datetime import datetime

import pytest

from freightdesk.core.exceptions import (
    AlreadyAssigned, InvalidTransition, ValidationError, NotFound, PermissionDenied
)
from freightdesk.modules.matching.service import MatchingService, date_match
from freightdesk.modules.offers.service import OfferService
from freightdesk.shared.database.models import TransportRequest, TransporterInterest, Offer, User

from tests.conftest import run


NOV_2 = datetime(2026, 11, 2, 9, 0)
NOV_4 = datetime(2026, 11, 4, 14, 0)


def test_date_match():
    assert date_match(datetime(2026, 11, 2, 18, 30), NOV_2) == "exact"
    assert date_match(NOV_4, NOV_2) == "alternative"


# -------------------------
# Express / withdraw
# -------------------------

def test_express_interest_is_idempotent(published_request, matching_service, users, db, notifier):
    transport_request = published_request()

    first, created = run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    assert created
    second, created = run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_4))
    assert not created

    assert second.id == first.id
    assert second.availability_date == NOV_4
    assert db.query(TransporterInterest).filter_by(request_id=transport_request.id).count() == 1
    assert notifier.kinds().count("interest_expressed") == 1


def test_express_interest_needs_published_request(new_request, matching_service, users):
    transport_request = new_request()
    with pytest.raises(InvalidTransition) as error:
        run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    assert error.value.current_status == "qualification_pending"


def test_express_interest_needs_a_transporter(published_request, matching_service, users):
    transport_request = published_request()
    with pytest.raises(NotFound):
        run(matching_service.express_interest(transport_request.id, users.client.id, NOV_2))


def test_withdraw_interest(published_request, matching_service, users):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))

    assert run(matching_service.withdraw_interest(transport_request.id, users.transporter.id)) is True
    assert run(matching_service.withdraw_interest(transport_request.id, users.transporter.id)) is False
    assert run(matching_service.list_interested(transport_request.id)) == []


def test_selected_transporter_cannot_withdraw(assigned_request, matching_service, users):
    transport_request = assigned_request()
    with pytest.raises(ValidationError):
        run(matching_service.withdraw_interest(transport_request.id, users.transporter.id))


# -------------------------
# Listing
# -------------------------

def test_list_interested_is_ordered_and_annotated(published_request, matching_service, users):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.second_transporter.id, NOV_4))
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))

    signals = run(matching_service.list_interested(transport_request.id))

    assert [s.transporter_id for s in signals] == [users.second_transporter.id, users.transporter.id]
    assert [s.date_match for s in signals] == ["alternative", "exact"]
    assert signals[1].transporter.name == "Atlas"
    assert signals[1].transporter.truck_photos == ["a.jpg"]


def test_hidden_interest_is_not_shown_to_client(published_request, matching_service, users):
    transport_request = published_request()
    interest, _ = run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    run(matching_service.express_interest(transport_request.id, users.second_transporter.id, NOV_2))

    run(matching_service.set_interest_visibility(interest.id, True, users.coordinator))

    for_client = run(matching_service.list_interested(transport_request.id, for_client=True))
    for_staff = run(matching_service.list_interested(transport_request.id))
    assert [s.transporter_id for s in for_client] == [users.second_transporter.id]
    assert len(for_staff) == 2


def test_only_staff_change_interest_visibility(published_request, matching_service, users):
    transport_request = published_request()
    interest, _ = run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    with pytest.raises(PermissionDenied):
        run(matching_service.set_interest_visibility(interest.id, True, users.client))


# -------------------------
# Assignment
# -------------------------

def test_assign_invalidates_other_interests(published_request, matching_service, users, db, notifier):
    transport_request = published_request()
    for transporter in (users.transporter, users.second_transporter, users.third_transporter):
        run(matching_service.express_interest(transport_request.id, transporter.id, NOV_2))

    transport_request, invalidated = run(matching_service.assign_transporter(
        transport_request.id, users.transporter.id, users.coordinator
    ))

    assert invalidated == 2
    assert transport_request.status == "accepted"
    assert transport_request.assigned_transporter_id == users.transporter.id
    assert transport_request.assigned_by_coordinator_id == users.coordinator.id
    assert (transport_request.transporter_fee, transport_request.platform_fee,
            transport_request.client_total) == (739, 493, 1232)

    rows = db.query(TransporterInterest).filter_by(request_id=transport_request.id).all()
    assert len(rows) == 3
    winner = [r for r in rows if r.transporter_id == users.transporter.id][0]
    assert winner.is_selected and winner.invalidated_at is None
    assert {r.invalidation_reason for r in rows if r is not winner} == {"assigned_to_other"}
    assert "request_assigned" in notifier.kinds()


def test_assign_with_fee_override(published_request, matching_service, users):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    transport_request, _ = run(matching_service.assign_transporter(
        transport_request.id, users.transporter.id, users.coordinator, transporter_fee=900, platform_fee=300
    ))
    assert transport_request.client_total == 1200


def test_assign_rejects_small_platform_fee(published_request, matching_service, users, db):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    with pytest.raises(ValidationError):
        run(matching_service.assign_transporter(
            transport_request.id, users.transporter.id, users.coordinator, transporter_fee=900, platform_fee=100
        ))
    db.expire_all()
    assert db.get(TransportRequest, transport_request.id).status == "published_for_matching"


def test_assign_needs_an_active_interest(published_request, matching_service, users):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    with pytest.raises(ValidationError):
        run(matching_service.assign_transporter(transport_request.id, users.second_transporter.id, users.coordinator))


def test_second_assign_is_already_assigned(assigned_request, matching_service, users):
    transport_request = assigned_request()
    with pytest.raises(AlreadyAssigned):
        run(matching_service.assign_transporter(transport_request.id, users.second_transporter.id, users.coordinator))


def test_assign_before_qualification_is_invalid(new_request, matching_service, users, db):
    transport_request = new_request()

    with pytest.raises(InvalidTransition) as excinfo:
        run(matching_service.assign_transporter(
            transport_request.id, users.transporter.id, users.coordinator, transporter_fee=900, platform_fee=300
        ))
    assert excinfo.value.current_status == "qualification_pending"
    db.expire_all()
    stored = db.get(TransportRequest, transport_request.id)
    assert stored.status == "qualification_pending"
    assert stored.assigned_transporter_id is None


def test_assign_cancelled_request_is_invalid(published_request, request_service, matching_service, users):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    run(request_service.cancel(transport_request.id, users.coordinator, "Client changed plans"))

    with pytest.raises(InvalidTransition) as excinfo:
        run(matching_service.assign_transporter(transport_request.id, users.transporter.id, users.coordinator))
    assert excinfo.value.current_status == "cancelled"


def test_assign_rejects_pending_offers(published_request, matching_service, users, db):
    transport_request = published_request()
    run(OfferService(db).submit_offer(transport_request.id, users.third_transporter.id, 1100, "return", NOV_2))
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))

    run(matching_service.assign_transporter(transport_request.id, users.transporter.id, users.coordinator))

    offer = db.query(Offer).filter_by(request_id=transport_request.id).one()
    assert offer.status == "rejected"


# -------------------------
# Concurrency
# -------------------------

def _two_coordinators_race(session_factory, request_id, transporter_ids, coordinator_ids):
    """
    Each coordinator reads the published request in its own session, then
    both assign at the same moment from separate threads.
    Returns the outcomes in thread order: the assigned transporter id or the exception.
    """
    barrier = threading.Barrier(len(transporter_ids))
    outcomes = [None] * len(transporter_ids)

    def coordinate(slot):
        session = session_factory()
        try:
            assert session.get(TransportRequest, request_id).status == "published_for_matching"
            coordinator = session.get(User, coordinator_ids[slot])
            barrier.wait(timeout=5)
            winner, _ = run(MatchingService(session).assign_transporter(
                request_id, transporter_ids[slot], coordinator
            ))
            outcomes[slot] = winner.assigned_transporter_id
        except Exception as e:
            outcomes[slot] = e
        finally:
            session.close()

    threads = [threading.Thread(target=coordinate, args=(slot,)) for slot in range(len(transporter_ids))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    winners = [o for o in outcomes if isinstance(o, int)]
    losers = [o for o in outcomes if not isinstance(o, int)]
    assert len(winners) == 1, outcomes
    assert all(isinstance(o, AlreadyAssigned) for o in losers), outcomes
    return winners[0]


def test_concurrent_assign_of_different_transporters(published_request, matching_service, users, session_factory, db):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))
    run(matching_service.express_interest(transport_request.id, users.second_transporter.id, NOV_2))

    winner = _two_coordinators_race(
        session_factory, transport_request.id,
        [users.transporter.id, users.second_transporter.id],
        [users.coordinator.id, users.other_coordinator.id],
    )

    db.expire_all()
    stored = db.get(TransportRequest, transport_request.id)
    assert stored.status == "accepted"
    assert stored.assigned_transporter_id == winner
    assert winner in (users.transporter.id, users.second_transporter.id)
    assert [e.kind for e in stored.events].count("assigned") == 1
    selected = db.query(TransporterInterest).filter_by(request_id=transport_request.id, is_selected=True).all()
    assert [i.transporter_id for i in selected] == [winner]


def test_concurrent_assign_of_same_transporter(published_request, matching_service, users, session_factory, db):
    transport_request = published_request()
    run(matching_service.express_interest(transport_request.id, users.transporter.id, NOV_2))

    _two_coordinators_race(
        session_factory, transport_request.id,
        [users.transporter.id, users.transporter.id],
        [users.coordinator.id, users.other_coordinator.id],
    )

    db.expire_all()
    stored = db.get(TransportRequest, transport_request.id)
    assert stored.status == "accepted"
    assert [e.kind for e in stored.events].count("assigned") == 1
