"""Availability solver.

``solve`` is pure: it takes working-hours rules and busy intervals that were
already loaded and returns free slots. All interval math happens on UTC
instants; the request timezone is only used to turn the requested date and
the "HH:MM" working hours into instants, and to format the summary.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import models
from ..domain.intervals import Interval, ensure_utc, first_overlap, merge_intervals
from ..errors import ValidationAppError
from ..metrics import SLOT_QUERY_COUNT, SLOT_QUERY_DURATION
from ..repositories.booking_repository import (
    BookingRepository,
    RuleRepository,
    SqlAlchemyBookingRepository,
    SqlAlchemyRuleRepository,
)
from ..repositories.event_repository import EventRepository, SqlAlchemyEventRepository

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
SUMMARY_PREVIEW = 5


@dataclass(frozen=True)
class AvailabilityRequest:
    date: date
    duration_minutes: int
    timezone: Optional[str] = None
    person_ids: Sequence[str] = ()
    agent_id: Optional[str] = None
    granularity_minutes: Optional[int] = None


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    person_id: str


@dataclass(frozen=True)
class WorkingRule:
    schedule: Dict[str, List[Dict[str, str]]]
    timezone: str = "UTC"
    date_overrides: Sequence[Dict] = ()
    granularity_minutes: Optional[int] = None
    buffer_before: int = 0
    buffer_after: int = 0
    min_booking_notice: int = 0
    max_booking_notice: Optional[int] = None

    @classmethod
    def from_model(cls, rule: models.AvailabilityRule) -> "WorkingRule":
        return cls(
            schedule=rule.schedule or {},
            timezone=rule.timezone or "UTC",
            date_overrides=tuple(rule.date_overrides or ()),
            granularity_minutes=rule.slot_granularity,
            buffer_before=rule.buffer_before or 0,
            buffer_after=rule.buffer_after or 0,
            min_booking_notice=rule.min_booking_notice or 0,
            max_booking_notice=rule.max_booking_notice,
        )


@dataclass
class SlotSummary:
    total: int
    first_available: Optional[str]
    last_available: Optional[str]
    message: str


@dataclass
class SlotQueryResult:
    slots: List[Slot] = field(default_factory=list)
    total: int = 0
    summary: Optional[SlotSummary] = None
    timezone: str = "UTC"


# --- input parsing ---

def parse_request_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationAppError("INVALID_DATE", "Date parameter required (YYYY-MM-DD)")


def resolve_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationAppError("INVALID_TIMEZONE", f"unknown timezone: {name}")


def _parse_clock(value: str) -> time | None:
    """'HH:MM' -> time; '24:00' -> None (end of day)."""
    try:
        hours, minutes = (int(p) for p in value.split(":", 1))
    except (AttributeError, ValueError):
        raise ValidationAppError("INVALID_WORKING_HOURS", f"bad working hours value: {value!r}")
    if hours == 24 and minutes == 0:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValidationAppError("INVALID_WORKING_HOURS", f"bad working hours value: {value!r}")
    return time(hours, minutes)


# --- pure computation ---

def day_bounds(day: date, tz: ZoneInfo) -> Interval:
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return Interval(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def working_windows(day: date, rule: WorkingRule, tz: ZoneInfo) -> List[Interval]:
    """Working-hours windows of ``day`` as UTC intervals (empty on days off)."""
    day_key = day.isoformat()
    for override in rule.date_overrides:
        if override.get("date") == day_key and not override.get("available", True):
            return []
    windows: List[Interval] = []
    for hours in rule.schedule.get(WEEKDAYS[day.weekday()]) or []:
        start_t = _parse_clock(hours.get("start", ""))
        end_t = _parse_clock(hours.get("end", ""))
        if start_t is None:
            continue
        start = datetime.combine(day, start_t, tzinfo=tz)
        if end_t is None:
            end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
        else:
            end = datetime.combine(day, end_t, tzinfo=tz)
        start_utc, end_utc = start.astimezone(timezone.utc), end.astimezone(timezone.utc)
        if end_utc > start_utc:
            windows.append(Interval(start_utc, end_utc))
    return merge_intervals(windows)


def slots_for_person(
    person_id: str,
    day: date,
    duration: timedelta,
    step: timedelta,
    rule: WorkingRule,
    tz: ZoneInfo,
    busy: Iterable[Interval],
    now: Optional[datetime] = None,
) -> List[Slot]:
    merged = merge_intervals(busy)
    before = timedelta(minutes=rule.buffer_before)
    after = timedelta(minutes=rule.buffer_after)
    earliest = latest = None
    if now is not None:
        earliest = now + timedelta(minutes=rule.min_booking_notice)
        if rule.max_booking_notice is not None:
            latest = now + timedelta(minutes=rule.max_booking_notice)

    slots: List[Slot] = []
    for window in working_windows(day, rule, tz):
        cur = window.start
        while cur + duration <= window.end:
            candidate = Interval(cur, cur + duration)
            too_soon = earliest is not None and cur < earliest
            too_late = latest is not None and cur > latest
            if not too_soon and not too_late and first_overlap(candidate.widened(before, after), merged) is None:
                slots.append(Slot(start=candidate.start, end=candidate.end, person_id=person_id))
            cur += step
    return slots


def solve(
    request: AvailabilityRequest,
    rules: Dict[str, Optional[WorkingRule]],
    busy: Dict[str, List[Interval]],
    now: Optional[datetime] = None,
    default_granularity: int = 30,
) -> List[Slot]:
    """Free slots for every candidate, sorted by (start, person id)."""
    if request.duration_minutes is None or request.duration_minutes <= 0:
        raise ValidationAppError("INVALID_DURATION", "duration must be a positive number of minutes")
    request_tz = resolve_zone(request.timezone) if request.timezone else None
    duration = timedelta(minutes=request.duration_minutes)

    slots: List[Slot] = []
    for person_id in sorted(set(request.person_ids)):
        rule = rules.get(person_id)
        if rule is None:
            continue
        tz = request_tz or resolve_zone(rule.timezone)
        granularity = request.granularity_minutes or rule.granularity_minutes or default_granularity
        if granularity <= 0:
            raise ValidationAppError("INVALID_GRANULARITY", "granularity must be positive")
        slots.extend(
            slots_for_person(
                person_id,
                request.date,
                duration,
                timedelta(minutes=granularity),
                rule,
                tz,
                busy.get(person_id, []),
                now=now,
            )
        )
    slots.sort(key=lambda s: (s.start, s.person_id))
    return slots


def within_rule(slot: Interval, rule: WorkingRule, now: Optional[datetime] = None) -> bool:
    """True when ``slot`` sits inside one working window and honours the notice limits."""
    tz = resolve_zone(rule.timezone)
    day = slot.start.astimezone(tz).date()
    if not any(w.start <= slot.start and slot.end <= w.end for w in working_windows(day, rule, tz)):
        return False
    if now is not None:
        if slot.start < now + timedelta(minutes=rule.min_booking_notice):
            return False
        if rule.max_booking_notice is not None and slot.start > now + timedelta(minutes=rule.max_booking_notice):
            return False
    return True


def format_clock(value: datetime, tz: ZoneInfo) -> str:
    local = value.astimezone(tz)
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def summarize(slots: List[Slot], day: date, tz: ZoneInfo) -> SlotSummary:
    """Voice-friendly summary: counts plus the first few start times."""
    if not slots:
        return SlotSummary(
            total=0,
            first_available=None,
            last_available=None,
            message=f"No available time slots found for {day.isoformat()}",
        )
    preview = ", ".join(format_clock(s.start, tz) for s in slots[:SUMMARY_PREVIEW])
    return SlotSummary(
        total=len(slots),
        first_available=format_clock(slots[0].start, tz),
        last_available=format_clock(slots[-1].start, tz),
        message=f"I have {len(slots)} available slots on {day.isoformat()}. The first few are: {preview}.",
    )


# --- data loading ---

class AvailabilityService:
    def __init__(
        self,
        event_repo: EventRepository | None = None,
        booking_repo: BookingRepository | None = None,
        rule_repo: RuleRepository | None = None,
        clock: Callable[[], datetime] | None = None,
        default_granularity: int | None = None,
    ):
        self.event_repo = event_repo or SqlAlchemyEventRepository()
        self.booking_repo = booking_repo or SqlAlchemyBookingRepository()
        self.rule_repo = rule_repo or SqlAlchemyRuleRepository()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.default_granularity = default_granularity or get_settings().default_slot_granularity_minutes

    def now(self) -> datetime:
        return self._clock()

    def resolve_candidates(self, db: Session, request: AvailabilityRequest) -> List[str]:
        if request.person_ids:
            return sorted(set(request.person_ids))
        if request.agent_id:
            assigned = self.rule_repo.assignable_persons(db, request.agent_id)
            if assigned:
                return sorted(set(assigned))
        return self.rule_repo.persons_with_rules(db)

    def load_busy(self, db: Session, person_id: str, window: Interval) -> List[Interval]:
        busy = [
            Interval(ensure_utc(e.start_at), ensure_utc(e.end_at))
            for e in self.event_repo.find_busy_overlapping(db, person_id, window.start, window.end)
        ]
        busy.extend(
            Interval(ensure_utc(b.start_at), ensure_utc(b.end_at))
            for b in self.booking_repo.find_overlapping(db, person_id, window.start, window.end)
        )
        return busy

    def query(self, db: Session, request: AvailabilityRequest) -> SlotQueryResult:
        SLOT_QUERY_COUNT.inc()
        with SLOT_QUERY_DURATION.time():
            candidates = self.resolve_candidates(db, request)
            request = AvailabilityRequest(
                date=request.date,
                duration_minutes=request.duration_minutes,
                timezone=request.timezone,
                person_ids=tuple(candidates),
                agent_id=request.agent_id,
                granularity_minutes=request.granularity_minutes,
            )
            rules: Dict[str, Optional[WorkingRule]] = {}
            busy: Dict[str, List[Interval]] = {}
            for person_id in candidates:
                model = self.rule_repo.default_rule(db, person_id)
                if model is None:
                    rules[person_id] = None
                    continue
                rule = WorkingRule.from_model(model)
                rules[person_id] = rule
                tz = resolve_zone(request.timezone or rule.timezone)
                bounds = day_bounds(request.date, tz).widened(
                    timedelta(minutes=rule.buffer_before), timedelta(minutes=rule.buffer_after)
                )
                busy[person_id] = self.load_busy(db, person_id, bounds)

            slots = solve(request, rules, busy, now=self.now(), default_granularity=self.default_granularity)

        summary_tz_name = request.timezone or next((r.timezone for r in rules.values() if r), "UTC")
        summary = summarize(slots, request.date, resolve_zone(summary_tz_name))
        logger.debug("Slot query for %s over %d people -> %d slots", request.date, len(candidates), len(slots))
        return SlotQueryResult(slots=slots, total=len(slots), summary=summary, timezone=summary_tz_name)
