"""
Calendar query composition.

Turns the calendar filter bar state plus the viewer's capabilities into a
`CalendarQuery`: an immutable description of the read that is only turned
into SQL when applied to a query.

Visibility rules:
- unassigned events (talent_id IS NULL) are always part of the result
- calendar:edit viewers see every talent, optionally narrowed by the talent filter
- calendar:edit_own viewers see only their linked talents (narrowed further by the filter)
- anyone else sees nothing
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import FrozenSet, Iterable, List, Optional, Tuple

import pytz
import structlog
from sqlalchemy import false, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import CALENDAR_STATUSES, CalendarEvent, Profile
from .business import linked_talent_ids
from .errors import CalendarLoadError, ValidationError
from .permissions import CALENDAR_EDIT, CALENDAR_EDIT_OWN, resolve_capabilities


logger = structlog.get_logger(__name__)

DATE_RANGE_DAYS = {"next7": 7, "next30": 30, "next90": 90}


def local_today() -> date:
    return datetime.now(pytz.timezone(settings.tz_default)).date()


def clamp_year(year: int) -> int:
    return max(settings.calendar_min_year, min(settings.calendar_max_year, int(year)))


def resolve_date_range(date_range: Optional[str], selected_year: Optional[int], today: date) -> Tuple[date, date]:
    days = DATE_RANGE_DAYS.get(date_range or "")
    if days is not None:
        return today, today + timedelta(days=days)
    year = clamp_year(selected_year if selected_year is not None else today.year)
    return date(year, 1, 1), date(year, 12, 31)


@dataclass(frozen=True)
class CalendarFilters:
    date_range: str = "year"
    selected_year: Optional[int] = None
    statuses: Tuple[str, ...] = CALENDAR_STATUSES
    talent_ids: Tuple[uuid.UUID, ...] = ()
    hide_not_available: bool = False


@dataclass(frozen=True)
class Viewer:
    user_id: Optional[uuid.UUID]
    capabilities: FrozenSet[str]
    linked_talent_ids: FrozenSet[uuid.UUID] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CalendarQuery:
    range_start: date
    range_end: date
    # None: no status predicate at all
    statuses: Optional[Tuple[str, ...]]
    exclude_statuses: Tuple[str, ...] = ()
    # None: every talent; otherwise these talents plus unassigned events
    talent_scope: Optional[Tuple[uuid.UUID, ...]] = None
    denied: bool = False

    def clauses(self) -> list:
        if self.denied:
            return [false()]
        clauses = [
            CalendarEvent.start_date <= self.range_end,
            func.coalesce(CalendarEvent.end_date, CalendarEvent.start_date) >= self.range_start,
        ]
        if self.statuses is not None:
            clauses.append(CalendarEvent.status.in_(self.statuses))
        if self.exclude_statuses:
            clauses.append(CalendarEvent.status.notin_(self.exclude_statuses))
        if self.talent_scope is not None:
            if self.talent_scope:
                clauses.append(or_(
                    CalendarEvent.talent_id.is_(None),
                    CalendarEvent.talent_id.in_(self.talent_scope),
                ))
            else:
                clauses.append(CalendarEvent.talent_id.is_(None))
        return clauses

    def apply(self, query):
        """Works on both ORM Query and Core Select."""
        return query.filter(*self.clauses()).order_by(
            CalendarEvent.start_date.asc(),
            CalendarEvent.start_time.asc(),
        )

    def describe(self) -> dict:
        return {
            "range": [self.range_start.isoformat(), self.range_end.isoformat()],
            "statuses": list(self.statuses) if self.statuses is not None else None,
            "exclude_statuses": list(self.exclude_statuses),
            "talent_scope": [str(t) for t in self.talent_scope] if self.talent_scope is not None else None,
            "include_unassigned": not self.denied,
            "denied": self.denied,
            "order_by": "start_date",
        }


def _status_selection(statuses: Iterable[str]) -> Optional[Tuple[str, ...]]:
    selected = set(statuses)
    unknown = selected - set(CALENDAR_STATUSES)
    if unknown:
        raise ValidationError(f"Unknown status: {', '.join(sorted(unknown))}")
    if selected >= set(CALENDAR_STATUSES):
        return None
    return tuple(s for s in CALENDAR_STATUSES if s in selected)


def compose_calendar_query(filters: CalendarFilters, viewer: Viewer, today: Optional[date] = None) -> CalendarQuery:
    today = today or local_today()
    start, end = resolve_date_range(filters.date_range, filters.selected_year, today)
    statuses = _status_selection(filters.statuses)
    exclude = ("not_available",) if filters.hide_not_available else ()
    requested = tuple(dict.fromkeys(filters.talent_ids))

    if CALENDAR_EDIT in viewer.capabilities:
        scope = requested or None
    elif CALENDAR_EDIT_OWN in viewer.capabilities:
        own = viewer.linked_talent_ids
        if requested:
            scope = tuple(t for t in requested if t in own)
        else:
            scope = tuple(sorted(own, key=str))
    else:
        return CalendarQuery(range_start=start, range_end=end, statuses=statuses, denied=True)

    return CalendarQuery(
        range_start=start,
        range_end=end,
        statuses=statuses,
        exclude_statuses=exclude,
        talent_scope=scope,
    )


def viewer_for(db: Session, profile: Profile) -> Viewer:
    caps = resolve_capabilities(profile.role) if profile.active else frozenset()
    linked: FrozenSet[uuid.UUID] = frozenset()
    if CALENDAR_EDIT_OWN in caps and CALENDAR_EDIT not in caps:
        linked = frozenset(linked_talent_ids(db, profile))
    return Viewer(user_id=profile.user_id, capabilities=caps, linked_talent_ids=linked)


def fetch_calendar_events(db: Session, query: CalendarQuery) -> List[CalendarEvent]:
    if query.denied:
        return []
    try:
        return query.apply(db.query(CalendarEvent)).all()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("calendar_load_failed", error=str(e), query=query.describe())
        raise CalendarLoadError()
