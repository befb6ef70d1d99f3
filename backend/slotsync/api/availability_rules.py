from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Dict, List, Optional

from ..db.session import get_db
from ..db import models
from ..services.rule_service import AvailabilityRuleService

router = APIRouter(prefix="/availability/rules", tags=["availability-rules"])


class WorkingHours(BaseModel):
    start: str
    end: str


class DateOverride(BaseModel):
    date: str
    available: bool = False


class RuleCreate(BaseModel):
    user_id: str = Field(..., alias="userId")
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    schedule: Dict[str, List[WorkingHours]]
    timezone: str = "UTC"
    date_overrides: List[DateOverride] = Field(default_factory=list, alias="dateOverrides")
    slot_granularity: Optional[int] = Field(None, gt=0, alias="slotGranularity")
    buffer_before: int = Field(0, ge=0, alias="bufferBefore")
    buffer_after: int = Field(0, ge=0, alias="bufferAfter")
    min_booking_notice: int = Field(60, ge=0, alias="minBookingNotice")
    max_booking_notice: Optional[int] = Field(43200, ge=0, alias="maxBookingNotice")
    is_default: bool = Field(False, alias="isDefault")
    active: bool = True

    model_config = ConfigDict(populate_by_name=True)


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    schedule: Optional[Dict[str, List[WorkingHours]]] = None
    timezone: Optional[str] = None
    date_overrides: Optional[List[DateOverride]] = Field(None, alias="dateOverrides")
    slot_granularity: Optional[int] = Field(None, gt=0, alias="slotGranularity")
    buffer_before: Optional[int] = Field(None, ge=0, alias="bufferBefore")
    buffer_after: Optional[int] = Field(None, ge=0, alias="bufferAfter")
    min_booking_notice: Optional[int] = Field(None, ge=0, alias="minBookingNotice")
    max_booking_notice: Optional[int] = Field(None, ge=0, alias="maxBookingNotice")
    is_default: Optional[bool] = Field(None, alias="isDefault")
    active: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)


class RuleOut(BaseModel):
    id: str
    user_id: str = Field(..., alias="userId")
    name: Optional[str] = None
    description: Optional[str] = None
    schedule: Dict[str, List[WorkingHours]]
    timezone: str
    date_overrides: List[DateOverride] = Field(default_factory=list, alias="dateOverrides")
    slot_granularity: Optional[int] = Field(None, alias="slotGranularity")
    buffer_before: int = Field(0, alias="bufferBefore")
    buffer_after: int = Field(0, alias="bufferAfter")
    min_booking_notice: int = Field(0, alias="minBookingNotice")
    max_booking_notice: Optional[int] = Field(None, alias="maxBookingNotice")
    is_default: bool = Field(False, alias="isDefault")
    active: bool = True
    created_at: datetime = Field(..., alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


def _rule_out(rule: models.AvailabilityRule) -> RuleOut:
    return RuleOut(
        id=rule.id,
        user_id=rule.user_id,
        name=rule.name,
        description=rule.description,
        schedule=rule.schedule or {},
        timezone=rule.timezone,
        date_overrides=rule.date_overrides or [],
        slot_granularity=rule.slot_granularity,
        buffer_before=rule.buffer_before or 0,
        buffer_after=rule.buffer_after or 0,
        min_booking_notice=rule.min_booking_notice or 0,
        max_booking_notice=rule.max_booking_notice,
        is_default=bool(rule.is_default),
        active=bool(rule.active),
        created_at=rule.created_at,
    )


def get_rule_service() -> AvailabilityRuleService:
    return AvailabilityRuleService()


@router.get("")
def list_rules(
    user_id: str = Query(..., alias="userId"),
    db: Session = Depends(get_db),
    service: AvailabilityRuleService = Depends(get_rule_service),
):
    rules = [_rule_out(r).model_dump(by_alias=True) for r in service.list_rules(db, user_id)]
    return {"rules": rules, "total": len(rules)}


@router.post("", response_model=RuleOut, response_model_by_alias=True, status_code=201)
def create_rule(
    body: RuleCreate,
    db: Session = Depends(get_db),
    service: AvailabilityRuleService = Depends(get_rule_service),
):
    fields = body.model_dump(exclude={"user_id"})
    return _rule_out(service.create_rule(db, body.user_id, fields))


@router.get("/{rule_id}", response_model=RuleOut, response_model_by_alias=True)
def get_rule(
    rule_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    service: AvailabilityRuleService = Depends(get_rule_service),
):
    return _rule_out(service.get_rule(db, rule_id, user_id))


@router.put("/{rule_id}", response_model=RuleOut, response_model_by_alias=True)
def update_rule(
    rule_id: str,
    body: RuleUpdate,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    service: AvailabilityRuleService = Depends(get_rule_service),
):
    return _rule_out(service.update_rule(db, rule_id, body.model_dump(exclude_unset=True), user_id))


@router.delete("/{rule_id}", status_code=204)
def delete_rule(
    rule_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    service: AvailabilityRuleService = Depends(get_rule_service),
):
    service.delete_rule(db, rule_id, user_id)
