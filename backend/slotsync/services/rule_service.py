from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db import models
from ..errors import NotFoundError, ValidationAppError
from ..repositories.booking_repository import RuleRepository, SqlAlchemyRuleRepository
from .availability_service import WEEKDAYS, _parse_clock, resolve_zone

_EDITABLE = (
    "name",
    "description",
    "schedule",
    "timezone",
    "date_overrides",
    "slot_granularity",
    "buffer_before",
    "buffer_after",
    "min_booking_notice",
    "max_booking_notice",
    "active",
    "is_default",
)


def validate_schedule(schedule: Dict[str, List[Dict[str, str]]]) -> None:
    for day, hours in schedule.items():
        if day not in WEEKDAYS:
            raise ValidationAppError("INVALID_WORKING_HOURS", f"unknown weekday: {day}")
        for entry in hours or []:
            start = _parse_clock(entry.get("start", ""))
            end = _parse_clock(entry.get("end", ""))
            if start is None or (end is not None and end <= start):
                raise ValidationAppError("INVALID_WORKING_HOURS", f"{day}: end must be after start")


def validate_overrides(overrides: List[Dict[str, Any]]) -> None:
    for override in overrides:
        try:
            date.fromisoformat(override.get("date", ""))
        except (TypeError, ValueError):
            raise ValidationAppError("INVALID_DATE", f"bad override date: {override.get('date')!r}")


class AvailabilityRuleService:
    """Working-hours templates; at most one default rule per person."""

    def __init__(self, rule_repo: RuleRepository | None = None):
        self.rule_repo = rule_repo or SqlAlchemyRuleRepository()

    def list_rules(self, db: Session, user_id: str) -> List[models.AvailabilityRule]:
        return self.rule_repo.list_for_user(db, user_id)

    def get_rule(self, db: Session, rule_id: str, user_id: Optional[str] = None) -> models.AvailabilityRule:
        rule = self.rule_repo.get(db, rule_id)
        if rule is None or (user_id is not None and rule.user_id != user_id):
            raise NotFoundError("RULE_NOT_FOUND", "Rule not found")
        return rule

    def create_rule(self, db: Session, user_id: str, fields: Dict[str, Any]) -> models.AvailabilityRule:
        self._validate(fields)
        rule = models.AvailabilityRule(user_id=user_id, **{k: v for k, v in fields.items() if k in _EDITABLE})
        if rule.is_default:
            self.rule_repo.clear_default(db, user_id)
        self.rule_repo.add(db, rule)
        db.commit()
        db.refresh(rule)
        return rule

    def update_rule(
        self, db: Session, rule_id: str, changes: Dict[str, Any], user_id: Optional[str] = None
    ) -> models.AvailabilityRule:
        rule = self.get_rule(db, rule_id, user_id)
        self._validate(changes)
        if changes.get("is_default"):
            self.rule_repo.clear_default(db, rule.user_id, keep_id=rule.id)
        for key, value in changes.items():
            if key in _EDITABLE:
                setattr(rule, key, value)
        db.commit()
        db.refresh(rule)
        return rule

    def delete_rule(self, db: Session, rule_id: str, user_id: Optional[str] = None) -> None:
        rule = self.get_rule(db, rule_id, user_id)
        self.rule_repo.delete(db, rule)
        db.commit()

    @staticmethod
    def _validate(fields: Dict[str, Any]) -> None:
        if fields.get("schedule") is not None:
            validate_schedule(fields["schedule"])
        if fields.get("timezone") is not None:
            resolve_zone(fields["timezone"])
        if fields.get("date_overrides") is not None:
            validate_overrides(fields["date_overrides"])
