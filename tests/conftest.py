# tests/conftest.py
import asyncio
import os
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

# Must be set before freightdesk.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("AI_API_KEY", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from freightdesk.shared.database.models import Base, User
from freightdesk.modules.pricing.cache import PriceEstimateCache
from freightdesk.modules.pricing.engine import PricingEngine
from freightdesk.modules.pricing.schemas import MarketQuote
from freightdesk.modules.requests.schemas import TransportRequestCreate
from freightdesk.modules.requests.service import RequestService
from freightdesk.modules.matching.service import MatchingService


# -------------------------
# Fakes
# -------------------------

class FakeEstimator:
    """Stands in for the external estimator"""
    def __init__(self, quote: Optional[MarketQuote] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.quote = quote
        self.error = error
        self.delay = delay
        self.calls = 0

    async def estimate(self, pricing_input):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.quote


class RecordingNotifier:
    def __init__(self):
        self.events: List[Tuple[str, int, Dict[str, Any]]] = []

    def notify(self, transport_request, event: str, **extra):
        self.events.append((event, transport_request.id, extra))

    def kinds(self) -> List[str]:
        return [event for event, _, _ in self.events]


class FakeClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 10, 1, 8, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def quote(marketplace: int, confidence: float = 0.9, traditional: Optional[int] = None) -> MarketQuote:
    return MarketQuote(
        traditional_price=traditional or round(marketplace / 0.8),
        marketplace_price=marketplace,
        confidence=confidence,
        reasoning=["fake estimate"],
    )


def run(coro):
    return asyncio.run(coro)


# -------------------------
# Database
# -------------------------

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'freightdesk.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def users(db):
    def make(name, role, phone, **extra):
        user = User(name=name, role=role, phone_number=phone, is_active=True, is_verified=True, **extra)
        db.add(user)
        return user

    people = SimpleNamespace(
        admin=make("Admin", "admin", "+212600000001"),
        coordinator=make("Salma", "coordinator", "+212600000002"),
        other_coordinator=make("Karim", "coordinateur", "+212600000003"),
        client=make("Youssef", "client", "+212600000004"),
        other_client=make("Nadia", "client", "+212600000005"),
        transporter=make("Atlas", "transporter", "+212600000006", city="Marrakech", truck_photos=["a.jpg"]),
        second_transporter=make("Rif", "transporteur", "+212600000007", city="Tanger"),
        third_transporter=make("Souss", "transporter", "+212600000008", city="Agadir"),
    )
    db.commit()
    return people


# -------------------------
# Services
# -------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def estimator():
    return FakeEstimator(error=RuntimeError("estimator offline"))


@pytest.fixture
def pricing_engine(clock, estimator):
    return PricingEngine(
        cache=PriceEstimateCache(ttl=timedelta(hours=12), clock=clock),
        estimator=estimator,
        timeout_seconds=1.0,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def request_service(db, pricing_engine, notifier):
    return RequestService(db, pricing_engine=pricing_engine, notifier=notifier)


def request_payload(**overrides) -> TransportRequestCreate:
    data = {
        "from_city": "Casablanca",
        "to_city": "Marrakech",
        "distance_km": 240,
        "goods_type": "Meubles",
        "description": "Canapé, table et 10 cartons",
        "desired_date": datetime(2026, 11, 2, 9, 0),
    }
    data.update(overrides)
    return TransportRequestCreate(**data)


@pytest.fixture
def new_request(request_service, users):
    """Factory: a request in qualification_pending"""
    def make(**overrides):
        return run(request_service.create_request(request_payload(**overrides), users.client))
    return make


@pytest.fixture
def published_request(request_service, users, new_request):
    """Factory: a request qualified with the heuristic tariff (1232 = 739 + 493)"""
    def make(**overrides):
        transport_request = new_request(**overrides)
        return run(request_service.qualify(transport_request.id, users.coordinator))
    return make


@pytest.fixture
def matching_service(db, notifier):
    return MatchingService(db, notifier=notifier)


@pytest.fixture
def assigned_request(users, published_request, matching_service):
    """Factory: published, two interested transporters, the first one assigned"""
    def make(**overrides):
        transport_request = published_request(**overrides)
        desired = transport_request.desired_date
        run(matching_service.express_interest(transport_request.id, users.transporter.id, desired))
        run(matching_service.express_interest(transport_request.id, users.second_transporter.id, desired))
        transport_request, _ = run(matching_service.assign_transporter(
            transport_request.id, users.transporter.id, users.coordinator
        ))
        return transport_request
    return make
