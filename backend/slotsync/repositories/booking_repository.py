from __future__ import annotations
from typing import Protocol, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session

from ..db import models
from ..domain.enums import BookingStatus


class BookingRepository(Protocol):
    def get(self, db: Session, booking_id: str) -> Optional[models.InternalBooking]: ...
    def find_overlapping(self, db: Session, user_id: str, start: datetime, end: datetime) -> List[models.InternalBooking]: ...
    def add(self, db: Session, booking: models.InternalBooking) -> models.InternalBooking: ...


class SqlAlchemyBookingRepository:
    def get(self, db: Session, booking_id: str) -> Optional[models.InternalBooking]:
        return db.get(models.InternalBooking, booking_id)

    def find_overlapping(self, db: Session, user_id: str, start: datetime, end: datetime) -> List[models.InternalBooking]:
        q = db.query(models.InternalBooking)
        q = q.filter(models.InternalBooking.user_id == user_id)
        q = q.filter(models.InternalBooking.status == BookingStatus.CONFIRMED.value)
        q = q.filter(models.InternalBooking.start_at < end)
        q = q.filter(models.InternalBooking.end_at > start)
        return q.all()

    def add(self, db: Session, booking: models.InternalBooking) -> models.InternalBooking:
        db.add(booking)
        return booking


class RuleRepository(Protocol):
    def default_rule(self, db: Session, user_id: str) -> Optional[models.AvailabilityRule]: ...
    def persons_with_rules(self, db: Session) -> List[str]: ...
    def assignable_persons(self, db: Session, agent_id: str) -> List[str]: ...
    def get(self, db: Session, rule_id: str) -> Optional[models.AvailabilityRule]: ...
    def list_for_user(self, db: Session, user_id: str) -> List[models.AvailabilityRule]: ...
    def add(self, db: Session, rule: models.AvailabilityRule) -> models.AvailabilityRule: ...
    def clear_default(self, db: Session, user_id: str, keep_id: Optional[str] = None) -> None: ...
    def delete(self, db: Session, rule: models.AvailabilityRule) -> None: ...


class SqlAlchemyRuleRepository:
    def default_rule(self, db: Session, user_id: str) -> Optional[models.AvailabilityRule]:
        return (
            db.query(models.AvailabilityRule)
            .filter(models.AvailabilityRule.user_id == user_id, models.AvailabilityRule.active.is_(True))
            .order_by(models.AvailabilityRule.is_default.desc(), models.AvailabilityRule.created_at)
            .first()
        )

    def persons_with_rules(self, db: Session) -> List[str]:
        rows = (
            db.query(models.AvailabilityRule.user_id)
            .filter(models.AvailabilityRule.active.is_(True))
            .distinct()
            .all()
        )
        return sorted(r[0] for r in rows)

    def assignable_persons(self, db: Session, agent_id: str) -> List[str]:
        row = db.query(models.AgentAssignment).filter(models.AgentAssignment.agent_id == agent_id).first()
        if not row or not row.assignable_user_ids:
            return []
        return [str(u) for u in row.assignable_user_ids]

    def get(self, db: Session, rule_id: str) -> Optional[models.AvailabilityRule]:
        return db.get(models.AvailabilityRule, rule_id)

    def list_for_user(self, db: Session, user_id: str) -> List[models.AvailabilityRule]:
        return (
            db.query(models.AvailabilityRule)
            .filter(models.AvailabilityRule.user_id == user_id)
            .order_by(models.AvailabilityRule.is_default.desc(), models.AvailabilityRule.created_at.desc())
            .all()
        )

    def add(self, db: Session, rule: models.AvailabilityRule) -> models.AvailabilityRule:
        db.add(rule)
        return rule

    def clear_default(self, db: Session, user_id: str, keep_id: Optional[str] = None) -> None:
        q = db.query(models.AvailabilityRule).filter(
            models.AvailabilityRule.user_id == user_id, models.AvailabilityRule.is_default.is_(True)
        )
        if keep_id:
            q = q.filter(models.AvailabilityRule.id != keep_id)
        q.update({models.AvailabilityRule.is_default: False}, synchronize_session=False)

    def delete(self, db: Session, rule: models.AvailabilityRule) -> None:
        db.delete(rule)
