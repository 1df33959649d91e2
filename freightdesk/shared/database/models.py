# freightdesk/shared/database/models.py
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Float,
    Numeric, ForeignKey, UniqueConstraint, Index, JSON,
    func
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# =====================================================
# TIMESTAMP MIXIN
# =====================================================
class TimestampMixin:
    """Adds created_at / updated_at columns"""
    created_at = Column(DateTime, nullable=False, server_default=func.current_timestamp())
    updated_at = Column(DateTime, nullable=False, server_default=func.current_timestamp(), onupdate=func.current_timestamp())


# =====================================================
# USERS (owned by the auth/profile collaborator)
# =====================================================

class User(Base):
    """Client, transporter, coordinator or admin account"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String(30), unique=True, nullable=False)
    name = Column(String(255))
    role = Column(String(20))
    city = Column(String(120))
    truck_photos = Column(JSON, default=list)
    rating = Column(Numeric(3, 2), default=0)
    total_ratings = Column(Integer, default=0)
    total_trips = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    is_verified = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.current_timestamp())


# =====================================================
# TRANSPORT REQUESTS
# =====================================================

class TransportRequest(Base, TimestampMixin):
    """A transport job posted by a client"""
    __tablename__ = "transport_requests"

    # Identity
    id = Column(Integer, primary_key=True, index=True)
    reference_code = Column(String(30), unique=True, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Route
    from_city = Column(String(120), nullable=False)
    from_address = Column(String(255))
    to_city = Column(String(120), nullable=False)
    to_address = Column(String(255))
    distance_km = Column(Float)

    # Cargo
    goods_type = Column(String(120), nullable=False)
    description = Column(Text, nullable=False)
    estimated_weight_kg = Column(Float)
    handling_required = Column(Boolean, default=False)
    departure_floor = Column(Integer)
    departure_elevator = Column(Boolean)
    arrival_floor = Column(Integer)
    arrival_elevator = Column(Boolean)

    # Scheduling (naive)
    desired_date = Column(DateTime, nullable=False)

    # Commercial - client_total == transporter_fee + platform_fee once qualified
    client_total = Column(Integer)
    transporter_fee = Column(Integer)
    platform_fee = Column(Integer)
    pricing_confidence = Column(Float)
    pricing_source = Column(String(20))
    pricing_reasoning = Column(JSON)

    # Lifecycle
    status = Column(String(50), nullable=False, default='qualification_pending', index=True)
    coordination_status = Column(String(50), nullable=False, default='qualification_pending', index=True)
    coordination_updated_at = Column(DateTime)
    coordination_updated_by = Column(Integer, ForeignKey("users.id"))
    coordination_reminder_date = Column(DateTime)

    # Ownership
    assigned_coordinator_id = Column(Integer, ForeignKey("users.id"))
    assigned_transporter_id = Column(Integer, ForeignKey("users.id"), index=True)
    assigned_by_coordinator_id = Column(Integer, ForeignKey("users.id"))
    assigned_at = Column(DateTime)
    accepted_offer_id = Column(Integer)

    # Ledger
    is_hidden = Column(Boolean, nullable=False, default=False)
    archive_reason = Column(String(50))
    archive_comment = Column(Text)
    cancellation_reason = Column(Text)
    requalification_reason = Column(Text)

    # Payment
    payment_status = Column(String(50), nullable=False, default='pending')
    payment_receipt_reference = Column(String(255))
    payment_date = Column(DateTime)

    # Transition timestamps
    qualified_at = Column(DateTime)
    published_for_matching_at = Column(DateTime)
    picked_up_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    archived_at = Column(DateTime)

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    assigned_transporter = relationship("User", foreign_keys=[assigned_transporter_id])
    interests = relationship(
        "TransporterInterest", back_populates="request",
        cascade="all, delete-orphan"
    )
    offers = relationship(
        "Offer", back_populates="request",
        cascade="all, delete-orphan"
    )
    notes = relationship(
        "CoordinationNote", back_populates="request",
        cascade="all, delete-orphan"
    )
    events = relationship(
        "RequestEvent", back_populates="request",
        cascade="all, delete-orphan"
    )


# =====================================================
# TRANSPORTER INTEREST & OFFERS
# =====================================================

class TransporterInterest(Base, TimestampMixin):
    """Non-binding availability signal of a transporter for a request"""
    __tablename__ = "transporter_interests"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("transport_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    transporter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    availability_date = Column(DateTime, nullable=False)
    is_hidden_from_client = Column(Boolean, nullable=False, default=False)
    is_selected = Column(Boolean, nullable=False, default=False)
    invalidated_at = Column(DateTime)
    invalidation_reason = Column(String(50))

    request = relationship("TransportRequest", back_populates="interests")
    transporter = relationship("User")

    __table_args__ = (
        # at most one active signal per (request, transporter)
        Index(
            "uq_active_interest_per_transporter",
            "request_id", "transporter_id",
            unique=True,
            postgresql_where=invalidated_at.is_(None),
            sqlite_where=invalidated_at.is_(None),
        ),
    )


class Offer(Base):
    """Legacy direct price proposal from a transporter"""
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("transport_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    transporter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    load_type = Column(String(20), nullable=False)
    pickup_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    created_at = Column(DateTime, server_default=func.current_timestamp())

    request = relationship("TransportRequest", back_populates="offers")
    transporter = relationship("User")

    __table_args__ = (
        UniqueConstraint("request_id", "transporter_id", name="uq_offer_per_transporter"),
    )


# =====================================================
# COORDINATION LEDGER
# =====================================================

class CoordinationNote(Base):
    """Internal coordinator note, append-only"""
    __tablename__ = "coordination_notes"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("transport_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.current_timestamp())

    request = relationship("TransportRequest", back_populates="notes")


class RequestEvent(Base):
    """History row written by every transition in the same transaction"""
    __tablename__ = "request_events"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("transport_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(50), nullable=False)
    from_status = Column(String(50))
    to_status = Column(String(50))
    actor_id = Column(Integer, ForeignKey("users.id"))
    reason = Column(Text)
    details = Column(JSON)
    created_at = Column(DateTime, server_default=func.current_timestamp())

    request = relationship("TransportRequest", back_populates="events")
