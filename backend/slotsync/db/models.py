from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, Boolean, UniqueConstraint
from datetime import datetime, timezone
from .session import Base
import uuid


def gen_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class ProviderConnection(Base):
    """One link from an internal user to one remote calendar account."""
    __tablename__ = "provider_connections"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, nullable=False, index=True)
    vendor = Column(String, nullable=False, index=True)  # 'google' | 'outlook'
    external_calendar_id = Column(String, nullable=False, default="primary")
    scopes = Column(JSON, nullable=True)
    access_token_encrypted = Column(String, nullable=True)
    refresh_token_encrypted = Column(String, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    # Opaque vendor cursor (Google syncToken / Graph deltaLink)
    sync_cursor = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CalendarEvent(Base):
    """Local mirror of an externally sourced busy interval."""
    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint("connection_id", "external_event_id", name="uq_calendar_events_connection_external"),
    )
    id = Column(String, primary_key=True, default=gen_uuid)
    connection_id = Column(
        String, ForeignKey("provider_connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String, nullable=False, index=True)
    external_event_id = Column(String, nullable=False)
    title = Column(String, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    all_day = Column(Boolean, nullable=False, default=False)
    busy = Column(Boolean, nullable=False, default=True)
    etag = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class InternalBooking(Base):
    __tablename__ = "internal_bookings"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="confirmed", index=True)
    attendee_name = Column(String, nullable=True)
    attendee_phone = Column(String, nullable=True)
    attendee_email = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    confirmation_code = Column(String, nullable=True)
    # Set once the booking has been mirrored onto the person's remote calendar
    connection_id = Column(String, nullable=True)
    external_event_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AvailabilityRule(Base):
    """Working-hours template for one person."""
    __tablename__ = "availability_rules"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    # {"monday": [{"start": "09:00", "end": "17:00"}], ...}
    schedule = Column(JSON, nullable=False, default=dict)
    timezone = Column(String, nullable=False, default="UTC")
    # [{"date": "2025-12-25", "available": false}]
    date_overrides = Column(JSON, nullable=False, default=list)
    slot_granularity = Column(Integer, nullable=True)
    buffer_before = Column(Integer, nullable=False, default=0)
    buffer_after = Column(Integer, nullable=False, default=0)
    min_booking_notice = Column(Integer, nullable=False, default=0)
    max_booking_notice = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgentAssignment(Base):
    """People a voice agent may book with."""
    __tablename__ = "agent_assignments"
    id = Column(String, primary_key=True, default=gen_uuid)
    agent_id = Column(String, nullable=False, unique=True, index=True)
    assignable_user_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
