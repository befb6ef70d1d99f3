from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional

from ..db.session import get_db
from ..services.booking_service import BookingRequest, BookingService
from .deps import get_booking_service

router = APIRouter(prefix="/bookings", tags=["bookings"])


class BookingCreate(BaseModel):
    start: datetime
    duration: int = Field(30, gt=0)
    person_id: Optional[str] = Field(None, alias="personId")
    agent_id: Optional[str] = Field(None, alias="agentId")
    attendee_name: Optional[str] = Field(None, alias="attendeeName")
    attendee_phone: Optional[str] = Field(None, alias="attendeePhone")
    attendee_email: Optional[str] = Field(None, alias="attendeeEmail")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class BookingOut(BaseModel):
    id: str
    person_id: str = Field(..., alias="personId")
    start: datetime
    end: datetime
    status: str
    confirmation_code: str = Field(..., alias="confirmationCode")
    calendar_event_id: Optional[str] = Field(None, alias="calendarEventId")

    model_config = ConfigDict(populate_by_name=True)


@router.post("", response_model=BookingOut, response_model_by_alias=True, status_code=201)
def create_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
):
    booking = service.confirm(
        db,
        BookingRequest(
            start=body.start,
            duration_minutes=body.duration,
            person_id=body.person_id,
            agent_id=body.agent_id,
            attendee_name=body.attendee_name,
            attendee_phone=body.attendee_phone,
            attendee_email=body.attendee_email,
            notes=body.notes,
        ),
    )
    return _booking_out(booking)


@router.delete("/{booking_id}", response_model=BookingOut, response_model_by_alias=True)
def cancel_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
):
    return _booking_out(service.cancel(db, booking_id))


def _booking_out(booking) -> BookingOut:
    return BookingOut(
        id=booking.id,
        person_id=booking.user_id,
        start=booking.start_at,
        end=booking.end_at,
        status=booking.status,
        confirmation_code=booking.confirmation_code,
        calendar_event_id=booking.external_event_id,
    )
