import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .utils.time import utcnow


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


class Customer(Base):
    """Authenticated identity (auth user). Owns bookings and items."""

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    profile = relationship("CustomerProfile", back_populates="customer", uselist=False)


class CustomerProfile(Base):
    """Customer profile and subscription state"""

    __tablename__ = "customer_profiles"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("customers.id"), unique=True, nullable=False)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    delivery_address = Column(JSON, nullable=True)  # {street, unit, city, state, zip}

    # Billing (kept in sync by the payment webhook)
    stripe_customer_id = Column(String(255), unique=True, nullable=True)
    subscription_status = Column(String(50), default="inactive", nullable=False)
    subscription_id = Column(String(255), nullable=True)
    last_payment_at = Column(DateTime(timezone=True), nullable=True)
    last_payment_failed_at = Column(DateTime(timezone=True), nullable=True)

    # Service area soft gate (ops review, not rejection)
    out_of_service_area = Column(Boolean, default=False, nullable=False)
    needs_manual_refund = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    customer = relationship("Customer", back_populates="profile")


class Staff(Base):
    """Staff registry - membership is required to complete or confirm services"""

    __tablename__ = "staff"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("customers.id"), unique=True, nullable=False)
    role = Column(String(50), default="operator", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class Booking(Base):
    """
    One scheduled pickup or delivery visit ("action").

    Status workflow: pending_items → pending_confirmation → confirmed → completed
    canceled is reachable from every non-terminal status.
    """

    __tablename__ = "actions"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("customers.id"), nullable=False)

    service_type = Column(String(20), default="pickup", nullable=False)
    status = Column(String(50), default="pending_items", nullable=False, index=True)

    scheduled_start = Column(DateTime(timezone=True), nullable=True)
    scheduled_end = Column(DateTime(timezone=True), nullable=True)

    # Disjoint sets of item ids this visit collects / returns
    pickup_item_ids = Column(JSON, default=list, nullable=False)
    delivery_item_ids = Column(JSON, default=list, nullable=False)

    # Calendly correlation (unique - makes scheduling ingestion idempotent)
    calendly_event_uri = Column(String(500), unique=True, nullable=True)
    calendly_payload = Column(JSON, nullable=True)

    # Address snapshot at booking time (does not follow later profile edits)
    service_address = Column(JSON, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (Index("idx_actions_user_status", "user_id", "status"),)


class Item(Base):
    """One physical object in a customer's inventory"""

    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)

    # home | scheduled | stored - only changed as a side effect of booking transitions
    status = Column(String(50), default="home", nullable=False, index=True)

    label = Column(String(255), nullable=True)
    category = Column(String(100), nullable=True)
    photo_paths = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class WebhookEvent(Base):
    """Processed external event ids (idempotency ledger)"""

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class BookingEvent(Base):
    """Append-only audit log. Never read by business logic."""

    __tablename__ = "booking_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    action_id = Column(String(36), nullable=True, index=True)  # null for orphan events
    event_type = Column(String(100), nullable=False)
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_booking_events_type_created", "event_type", "created_at"),)


