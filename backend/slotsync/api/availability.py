from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional, List

from ..db.session import get_db
from ..services.availability_service import AvailabilityRequest, AvailabilityService, parse_request_date
from .deps import get_availability_service

router = APIRouter(prefix="/availability", tags=["availability"])


class SlotQuery(BaseModel):
    date: str
    duration: int = Field(30, description="minutes")
    timezone: Optional[str] = None
    person_ids: List[str] = Field(default_factory=list, alias="personIds")
    agent_id: Optional[str] = Field(None, alias="agentId")
    granularity: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)


class SlotOut(BaseModel):
    start: datetime
    end: datetime
    person_id: str = Field(..., alias="personId")

    model_config = ConfigDict(populate_by_name=True)


class SummaryOut(BaseModel):
    total: int
    first_available: Optional[str] = Field(None, alias="firstAvailable")
    last_available: Optional[str] = Field(None, alias="lastAvailable")
    message: str

    model_config = ConfigDict(populate_by_name=True)


class SlotQueryOut(BaseModel):
    date: str
    timezone: str
    slots: List[SlotOut]
    total: int
    summary: SummaryOut


@router.post("/slots", response_model=SlotQueryOut, response_model_by_alias=True)
def query_slots(
    body: SlotQuery,
    db: Session = Depends(get_db),
    service: AvailabilityService = Depends(get_availability_service),
):
    request = AvailabilityRequest(
        date=parse_request_date(body.date),
        duration_minutes=body.duration,
        timezone=body.timezone,
        person_ids=tuple(body.person_ids),
        agent_id=body.agent_id,
        granularity_minutes=body.granularity,
    )
    result = service.query(db, request)
    return SlotQueryOut(
        date=body.date,
        timezone=result.timezone,
        slots=[SlotOut(start=s.start, end=s.end, person_id=s.person_id) for s in result.slots],
        total=result.total,
        summary=SummaryOut(
            total=result.summary.total,
            first_available=result.summary.first_available,
            last_available=result.summary.last_available,
            message=result.summary.message,
        ),
    )
