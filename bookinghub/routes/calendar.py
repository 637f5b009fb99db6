import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_profile, require_capabilities
from ..db import get_db
from ..models.models import CALENDAR_STATUSES, CalendarEvent, Profile, TalentProfile
from ..schemas.calendar import (
    CalendarEventCreate,
    CalendarEventUpdate,
    CalendarEventResponse,
    CalendarListResponse,
    ImportResponse,
)
from ..services.calendar_import import import_calendar_csv
from ..services.calendar_query import (
    CalendarFilters,
    Viewer,
    compose_calendar_query,
    fetch_calendar_events,
    viewer_for,
)
from ..services.change_feed import feed
from ..services.errors import ServiceError, to_http
from ..services.ics import build_event_ics, ics_filename
from ..services.permissions import CALENDAR_EDIT, CALENDAR_EDIT_OWN, CALENDAR_VIEW


router = APIRouter(prefix="/calendar", tags=["calendar"])

TABLE = "calendar_events"


def _event_out(ev: CalendarEvent) -> CalendarEventResponse:
    out = CalendarEventResponse.model_validate(ev)
    out.talent_name = ev.talent.name if ev.talent else None
    return out


def _parse_statuses(statuses: Optional[str]):
    # Absent: every status. Present but empty: an empty selection.
    if statuses is None:
        return CALENDAR_STATUSES
    return tuple(s.strip() for s in statuses.split(",") if s.strip())


def _can_see(viewer: Viewer, talent_id: Optional[uuid.UUID]) -> bool:
    if CALENDAR_EDIT in viewer.capabilities:
        return True
    if CALENDAR_EDIT_OWN in viewer.capabilities:
        return talent_id is None or talent_id in viewer.linked_talent_ids
    return False


def _can_write(viewer: Viewer, talent_id: Optional[uuid.UUID]) -> bool:
    if CALENDAR_EDIT in viewer.capabilities:
        return True
    # Own-calendar editors never touch unassigned events
    return CALENDAR_EDIT_OWN in viewer.capabilities and talent_id is not None and talent_id in viewer.linked_talent_ids


def _check_talent(db: Session, talent_id: Optional[uuid.UUID]) -> None:
    if talent_id is not None and db.query(TalentProfile.id).filter(TalentProfile.id == talent_id).first() is None:
        raise HTTPException(status_code=400, detail="Unknown talent_id")


def _check_dates(start_date, end_date) -> None:
    if end_date is not None and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")


def _get_event(db: Session, event_id: uuid.UUID) -> CalendarEvent:
    ev = db.query(CalendarEvent).filter(CalendarEvent.id == event_id).first()
    if not ev:
        raise HTTPException(status_code=404, detail="Event not found")
    return ev


@router.get("/events", response_model=CalendarListResponse)
def list_events(
    date_range: str = "year",
    year: Optional[int] = None,
    statuses: Optional[str] = Query(None, description="Comma separated; omit for all"),
    talent_id: Optional[str] = Query(None, description="Comma separated talent IDs"),
    hide_not_available: bool = False,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_VIEW)),
):
    try:
        talent_ids = tuple(uuid.UUID(t.strip()) for t in (talent_id or "").split(",") if t.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid talent_id")
    filters = CalendarFilters(
        date_range=date_range,
        selected_year=year,
        statuses=_parse_statuses(statuses),
        talent_ids=talent_ids,
        hide_not_available=hide_not_available,
    )
    try:
        query = compose_calendar_query(filters, viewer_for(db, me))
        events = fetch_calendar_events(db, query)
    except ServiceError as e:
        raise to_http(e)
    return CalendarListResponse(events=[_event_out(e) for e in events], query=query.describe())


@router.post("/events", response_model=CalendarEventResponse, status_code=201)
def create_event(
    body: CalendarEventCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_EDIT, CALENDAR_EDIT_OWN)),
):
    if not _can_write(viewer_for(db, me), body.talent_id):
        raise HTTPException(status_code=403, detail="Not allowed to edit this calendar")
    if not body.event_title.strip():
        raise HTTPException(status_code=400, detail="event_title cannot be empty")
    _check_talent(db, body.talent_id)
    _check_dates(body.start_date, body.end_date)
    ev = CalendarEvent(**body.model_dump(), created_by=me.user_id)
    if ev.end_date is None:
        ev.end_date = ev.start_date
    db.add(ev)
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "INSERT", ev.id)
    return _event_out(ev)


@router.get("/events/{event_id}.ics")
def event_ics(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_VIEW)),
):
    ev = _get_event(db, event_id)
    if not _can_see(viewer_for(db, me), ev.talent_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return Response(
        content=build_event_ics(ev),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{ics_filename(ev)}"'},
    )


@router.get("/events/{event_id}", response_model=CalendarEventResponse)
def get_event(
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_VIEW)),
):
    ev = _get_event(db, event_id)
    if not _can_see(viewer_for(db, me), ev.talent_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return _event_out(ev)


@router.patch("/events/{event_id}", response_model=CalendarEventResponse)
def update_event(
    event_id: uuid.UUID,
    body: CalendarEventUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_EDIT, CALENDAR_EDIT_OWN)),
):
    ev = _get_event(db, event_id)
    viewer = viewer_for(db, me)
    changes = body.model_dump(exclude_unset=True)
    if not _can_write(viewer, ev.talent_id):
        raise HTTPException(status_code=403, detail="Not allowed to edit this event")
    if "talent_id" in changes and not _can_write(viewer, changes["talent_id"]):
        raise HTTPException(status_code=403, detail="Not allowed to move the event to this talent")
    if "event_title" in changes and not changes["event_title"].strip():
        raise HTTPException(status_code=400, detail="event_title cannot be empty")
    if "talent_id" in changes:
        _check_talent(db, changes["talent_id"])
    _check_dates(changes.get("start_date", ev.start_date), changes.get("end_date", ev.end_date))
    for k, v in changes.items():
        setattr(ev, k, v)
    db.commit()
    db.refresh(ev)
    background_tasks.add_task(feed.publish, TABLE, "UPDATE", ev.id)
    return _event_out(ev)


@router.delete("/events/{event_id}")
def delete_event(
    event_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_EDIT, CALENDAR_EDIT_OWN)),
):
    ev = _get_event(db, event_id)
    if not _can_write(viewer_for(db, me), ev.talent_id):
        raise HTTPException(status_code=403, detail="Not allowed to edit this event")
    db.delete(ev)
    db.commit()
    background_tasks.add_task(feed.publish, TABLE, "DELETE", event_id)
    return {"status": "ok"}


@router.post("/import", response_model=ImportResponse)
async def import_events(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    dry_run: bool = True,
    talent_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    me: Profile = Depends(require_capabilities(CALENDAR_EDIT)),
):
    content = await file.read()
    try:
        result = await run_in_threadpool(
            import_calendar_csv,
            db,
            content,
            source_file=file.filename,
            created_by=me.user_id,
            default_talent_id=talent_id,
            dry_run=dry_run,
        )
    except ServiceError as e:
        raise to_http(e)
    if not dry_run and result.created:
        background_tasks.add_task(feed.publish, TABLE, "INSERT", None)
    return ImportResponse(
        dry_run=result.dry_run,
        mapping=result.mapping,
        created=result.created,
        skipped=result.skipped,
        rows=[{"row_index": r.row_index, "values": r.values, "errors": r.errors} for r in result.rows[:50]],
    )
